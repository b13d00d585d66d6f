from pydantic import BaseModel
from typing import List, Optional
from datetime import datetime
from decimal import Decimal

from ticketa.auth.permissions import Role

class RoleAssignment(BaseModel):
    """Role grant request"""
    role: Role

class AdminUserSummary(BaseModel):
    """User row in the admin user list"""
    id: int
    email: str
    full_name: Optional[str] = None
    roles: List[str] = []
    created_at: Optional[datetime] = None

class AdminUserList(BaseModel):
    users: List[AdminUserSummary]
    total: int

class RoleChange(BaseModel):
    user_id: int
    role: Role
    changed: bool
    roles: List[str]

class DashboardMetrics(BaseModel):
    """Platform totals for the admin dashboard"""
    total_companies: int
    pending_companies: int
    total_users: int
    total_trips: int
    total_tickets: int
    active_tickets: int
    used_tickets: int
    total_revenue: Decimal
    recent_tickets: int

class DashboardData(BaseModel):
    metrics: DashboardMetrics
    generated_at: datetime
