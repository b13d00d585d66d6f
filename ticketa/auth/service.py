import logging
from sqlalchemy.orm import Session, joinedload
from sqlalchemy.exc import IntegrityError
from typing import List, Optional

from ticketa.models import User, Profile, UserRole, CompanyAdmin
from ticketa.auth.schemas import UserCreate, UserUpdate, UserAccount
from ticketa.auth.permissions import Identity, Role, parse_roles
from ticketa.auth.utils import get_password_hash, verify_password

logger = logging.getLogger(__name__)

class UserService:
    @staticmethod
    def get_user_by_email(db: Session, email: str) -> Optional[User]:
        """Get user by email"""
        return db.query(User).filter(User.email == email.lower()).first()

    @staticmethod
    def get_user_by_id(db: Session, user_id: int) -> Optional[User]:
        """Get user by ID with profile"""
        return db.query(User).options(joinedload(User.profile)).filter(User.id == user_id).first()

    @staticmethod
    def create_user(db: Session, user: UserCreate) -> User:
        """Create a new user with a profile and the default passenger role"""
        db_user = User(
            email=user.email.lower(),
            password=get_password_hash(user.password)
        )

        try:
            db.add(db_user)
            db.flush()

            db.add(Profile(user_id=db_user.id, full_name=user.full_name, phone=user.phone))
            db.add(UserRole(user_id=db_user.id, role=Role.PASSENGER.value))

            db.commit()
            db.refresh(db_user)
            logger.info("Registered user %s", db_user.id)
            return db_user

        except IntegrityError:
            db.rollback()
            raise ValueError("Email already registered")

    @staticmethod
    def authenticate_user(db: Session, email: str, password: str) -> Optional[User]:
        """Authenticate user with email and password"""
        user = UserService.get_user_by_email(db, email)
        if not user:
            return None
        if not verify_password(password, user.password):
            return None
        return user

    @staticmethod
    def update_user(db: Session, user_id: int, user_update: UserUpdate) -> Optional[User]:
        """Update password and profile fields"""
        db_user = UserService.get_user_by_id(db, user_id)
        if not db_user:
            return None

        update_data = user_update.model_dump(exclude_unset=True)

        if "password" in update_data:
            db_user.password = get_password_hash(update_data.pop("password"))

        if update_data:
            if db_user.profile is None:
                db_user.profile = Profile(user_id=db_user.id)
            for field, value in update_data.items():
                setattr(db_user.profile, field, value)

        db.commit()
        db.refresh(db_user)
        return db_user

    @staticmethod
    def get_user_roles(db: Session, user_id: int) -> List[str]:
        """Get user's role names"""
        rows = db.query(UserRole.role).filter(UserRole.user_id == user_id).all()
        return [row.role for row in rows]

    @staticmethod
    def get_company_ids(db: Session, user_id: int) -> List[int]:
        """Companies the user administers"""
        rows = db.query(CompanyAdmin.company_id).filter(CompanyAdmin.user_id == user_id).all()
        return [row.company_id for row in rows]

    @staticmethod
    def assign_role(db: Session, user_id: int, role: Role, commit: bool = True) -> bool:
        """Grant a role; returns False when the user already has it"""
        exists = db.query(UserRole).filter(
            UserRole.user_id == user_id, UserRole.role == role.value
        ).first()
        if exists:
            return False

        db.add(UserRole(user_id=user_id, role=role.value))
        if commit:
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                return False
        logger.info("Granted role %s to user %s", role.value, user_id)
        return True

    @staticmethod
    def remove_role(db: Session, user_id: int, role: Role) -> bool:
        """Revoke a role; returns False when the user did not have it"""
        deleted = db.query(UserRole).filter(
            UserRole.user_id == user_id, UserRole.role == role.value
        ).delete(synchronize_session=False)
        db.commit()
        if deleted:
            logger.info("Revoked role %s from user %s", role.value, user_id)
        return bool(deleted)

    @staticmethod
    def build_identity(db: Session, user: User) -> Identity:
        """Resolve roles and administered companies for an authenticated user"""
        return Identity(
            user_id=user.id,
            email=user.email,
            roles=parse_roles(UserService.get_user_roles(db, user.id)),
            company_ids=frozenset(UserService.get_company_ids(db, user.id))
        )

    @staticmethod
    def to_account(db: Session, user: User) -> UserAccount:
        identity = UserService.build_identity(db, user)
        return UserAccount(
            id=user.id,
            email=user.email,
            roles=sorted(identity.roles, key=lambda r: r.value),
            profile=user.profile,
            company_ids=sorted(identity.company_ids),
            created_at=user.created_at
        )
