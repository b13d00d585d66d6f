from typing import List, Optional, Tuple
from datetime import datetime, timedelta, timezone
from decimal import Decimal
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from ticketa.admin.schemas import AdminUserSummary, DashboardMetrics, DashboardData, RoleChange
from ticketa.auth.permissions import Identity, Role
from ticketa.auth.service import UserService
from ticketa.bookings.schemas import TicketStatus, PaymentStatus
from ticketa.models import BusCompany, User, Trip, Ticket

logger = logging.getLogger(__name__)

class AdminManagementService:
    """Platform administration: users, roles and dashboard figures"""

    def __init__(self, db: Session):
        self.db = db

    def list_users(self, search: Optional[str] = None, skip: int = 0, limit: int = 50) -> Tuple[List[AdminUserSummary], int]:
        query = self.db.query(User).options(joinedload(User.profile))
        if search:
            query = query.filter(User.email.ilike(f"%{search.strip()}%"))

        total = query.count()
        users = query.order_by(User.id).offset(skip).limit(limit).all()

        return [
            AdminUserSummary(
                id=user.id,
                email=user.email,
                full_name=user.profile.full_name if user.profile else None,
                roles=sorted(UserService.get_user_roles(self.db, user.id)),
                created_at=user.created_at
            )
            for user in users
        ], total

    def grant_role(self, user_id: int, role: Role, admin: Identity) -> Optional[RoleChange]:
        """Returns None when the user does not exist"""
        if UserService.get_user_by_id(self.db, user_id) is None:
            return None
        changed = UserService.assign_role(self.db, user_id, role)
        logger.info("Admin %s granted %s to user %s (changed=%s)", admin.user_id, role.value, user_id, changed)
        return RoleChange(
            user_id=user_id,
            role=role,
            changed=changed,
            roles=sorted(UserService.get_user_roles(self.db, user_id))
        )

    def revoke_role(self, user_id: int, role: Role, admin: Identity) -> Optional[RoleChange]:
        if UserService.get_user_by_id(self.db, user_id) is None:
            return None
        changed = UserService.remove_role(self.db, user_id, role)
        logger.info("Admin %s revoked %s from user %s (changed=%s)", admin.user_id, role.value, user_id, changed)
        return RoleChange(
            user_id=user_id,
            role=role,
            changed=changed,
            roles=sorted(UserService.get_user_roles(self.db, user_id))
        )

    def get_dashboard(self, now: Optional[datetime] = None) -> DashboardData:
        now = now or datetime.now(timezone.utc)
        since = now - timedelta(days=1)

        ticket_counts = dict(
            self.db.query(Ticket.status, func.count(Ticket.id)).group_by(Ticket.status).all()
        )

        revenue = self.db.query(func.sum(Ticket.price_paid)).filter(
            Ticket.payment_status == PaymentStatus.COMPLETED.value
        ).scalar() or Decimal("0")

        metrics = DashboardMetrics(
            total_companies=self.db.query(BusCompany).count(),
            pending_companies=self.db.query(BusCompany).filter(BusCompany.is_approved.is_(False)).count(),
            total_users=self.db.query(User).count(),
            total_trips=self.db.query(Trip).count(),
            total_tickets=sum(ticket_counts.values()),
            active_tickets=ticket_counts.get(TicketStatus.ACTIVE.value, 0),
            used_tickets=ticket_counts.get(TicketStatus.USED.value, 0),
            total_revenue=Decimal(str(revenue)),
            recent_tickets=self.db.query(Ticket).filter(Ticket.purchased_at >= since).count()
        )

        return DashboardData(metrics=metrics, generated_at=now)
