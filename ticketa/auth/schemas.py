from pydantic import BaseModel, EmailStr, Field
from typing import Optional, List
from datetime import datetime

from ticketa.auth.permissions import Role

class UserBase(BaseModel):
    email: EmailStr

class UserCreate(UserBase):
    password: str = Field(..., min_length=6)
    full_name: str = Field(..., min_length=2, max_length=255)
    phone: Optional[str] = None

class UserUpdate(BaseModel):
    full_name: Optional[str] = None
    phone: Optional[str] = None
    avatar_url: Optional[str] = None
    password: Optional[str] = Field(None, min_length=6)

class Profile(BaseModel):
    full_name: Optional[str] = None
    phone: Optional[str] = None
    avatar_url: Optional[str] = None

    class Config:
        from_attributes = True

# User with profile and roles, returned by /me and /login
class UserAccount(UserBase):
    id: int
    roles: List[Role] = []
    profile: Optional[Profile] = None
    company_ids: List[int] = []
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class LoginRequest(BaseModel):
    email: EmailStr
    password: str

class AuthResponse(BaseModel):
    access_token: str
    token_type: str
    user: UserAccount

class Token(BaseModel):
    access_token: str
    token_type: str
