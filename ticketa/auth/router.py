from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session
from datetime import timedelta
from ticketa.database import get_db
from ticketa.auth.schemas import UserCreate, UserUpdate, LoginRequest, AuthResponse, UserAccount, Token
from ticketa.auth.service import UserService
from ticketa.auth.utils import create_access_token
from ticketa.auth.dependencies import get_current_user
from ticketa.config import settings

router = APIRouter()

def _issue_token(user) -> str:
    access_token_expires = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    return create_access_token(
        data={"sub": str(user.id), "email": user.email}, expires_delta=access_token_expires
    )

@router.post("/register", response_model=UserAccount, status_code=status.HTTP_201_CREATED)
def register_user(user: UserCreate, db: Session = Depends(get_db)):
    """Register a new passenger account"""
    try:
        db_user = UserService.create_user(db=db, user=user)
        return UserService.to_account(db, db_user)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )

@router.post("/login", response_model=AuthResponse)
def login(login_data: LoginRequest, db: Session = Depends(get_db)):
    """Log in with email and password"""
    user = UserService.authenticate_user(db, login_data.email, login_data.password)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return AuthResponse(
        access_token=_issue_token(user),
        token_type="bearer",
        user=UserService.to_account(db, user)
    )

@router.post("/token", response_model=Token)
def login_for_access_token(form_data: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)):
    """OAuth2 password flow used by the interactive docs"""
    user = UserService.authenticate_user(db, form_data.username, form_data.password)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return Token(access_token=_issue_token(user), token_type="bearer")

@router.get("/me", response_model=UserAccount)
def read_users_me(current_user = Depends(get_current_user), db: Session = Depends(get_db)):
    """Get current user profile and roles"""
    return UserService.to_account(db, current_user)

@router.put("/me", response_model=UserAccount)
def update_user_profile(
    user_update: UserUpdate,
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Update current user profile"""
    updated_user = UserService.update_user(db=db, user_id=current_user.id, user_update=user_update)
    if not updated_user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )
    return UserService.to_account(db, updated_user)
