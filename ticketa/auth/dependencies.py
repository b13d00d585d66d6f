from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session
from ticketa.database import get_db
from ticketa.auth.utils import verify_token
from ticketa.auth.service import UserService
from ticketa.auth.permissions import Identity, Role, is_admin

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/token")

def get_current_user(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)):
    """Get current authenticated user"""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    token_data = verify_token(token, credentials_exception)

    user = UserService.get_user_by_id(db, user_id=token_data["user_id"])
    if user is None:
        raise credentials_exception

    return user

def get_identity(current_user = Depends(get_current_user), db: Session = Depends(get_db)) -> Identity:
    """Roles and company memberships of the caller"""
    return UserService.build_identity(db, current_user)

def require_role(role: Role):
    """Dependency factory requiring a role (admins always pass)"""
    def checker(identity: Identity = Depends(get_identity)) -> Identity:
        if not identity.has_role(role) and not is_admin(identity):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Not enough permissions"
            )
        return identity
    return checker

def require_admin(identity: Identity = Depends(get_identity)) -> Identity:
    """Require admin role for access"""
    if not is_admin(identity):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not enough permissions"
        )
    return identity
