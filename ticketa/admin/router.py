from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session
from typing import List, Optional

from ticketa.database import get_db
from ticketa.auth.dependencies import require_admin
from ticketa.auth.permissions import Identity, Role
from ticketa.admin.schemas import AdminUserList, RoleAssignment, RoleChange, DashboardData
from ticketa.admin.admin_service import AdminManagementService
from ticketa.companies.schemas import Company
from ticketa.companies.service import CompanyService
from ticketa.exceptions import CompanyNotFound

router = APIRouter()

# Dashboard
@router.get("/dashboard", response_model=DashboardData)
def get_dashboard(
    admin: Identity = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Get admin dashboard data"""
    return AdminManagementService(db).get_dashboard()

# Company approval
@router.get("/companies", response_model=List[Company])
def list_companies(
    approved: Optional[bool] = Query(None, description="Filter by approval state"),
    admin: Identity = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """All companies, including those waiting for approval"""
    return CompanyService.list_companies(db, approved=approved)

def _set_company_flags(db: Session, company_id: int, admin: Identity, **flags):
    try:
        return CompanyService.set_company_flags(db, company_id, admin, **flags)
    except CompanyNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

@router.post("/companies/{company_id}/approve", response_model=Company)
def approve_company(
    company_id: int,
    admin: Identity = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Make a company's trips visible to passengers"""
    return _set_company_flags(db, company_id, admin, is_approved=True)

@router.post("/companies/{company_id}/suspend", response_model=Company)
def suspend_company(
    company_id: int,
    admin: Identity = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return _set_company_flags(db, company_id, admin, is_active=False)

@router.post("/companies/{company_id}/activate", response_model=Company)
def activate_company(
    company_id: int,
    admin: Identity = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return _set_company_flags(db, company_id, admin, is_active=True)

# User management
@router.get("/users", response_model=AdminUserList)
def list_users(
    search: Optional[str] = Query(None, description="Email contains"),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    admin: Identity = Depends(require_admin),
    db: Session = Depends(get_db)
):
    users, total = AdminManagementService(db).list_users(search=search, skip=skip, limit=limit)
    return AdminUserList(users=users, total=total)

@router.post("/users/{user_id}/roles", response_model=RoleChange)
def grant_role(
    user_id: int,
    assignment: RoleAssignment,
    admin: Identity = Depends(require_admin),
    db: Session = Depends(get_db)
):
    change = AdminManagementService(db).grant_role(user_id, assignment.role, admin)
    if change is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return change

@router.delete("/users/{user_id}/roles/{role}", response_model=RoleChange)
def revoke_role(
    user_id: int,
    role: Role,
    admin: Identity = Depends(require_admin),
    db: Session = Depends(get_db)
):
    if user_id == admin.user_id and role == Role.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Admins cannot revoke their own admin role"
        )
    change = AdminManagementService(db).revoke_role(user_id, role, admin)
    if change is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return change
