"""
User models for authentication and authorization.
"""
from pydantic import BaseModel, EmailStr, Field
from typing import Optional
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    """Staff roles in the system."""
    ADMIN = "admin"
    REGULACAO = "regulacao"
    RECEPCAO = "recepcao"


# Labels used in activity descriptions
ROLE_LABELS = {
    Role.ADMIN: "Administrador",
    Role.REGULACAO: "Regulação",
    Role.RECEPCAO: "Atendente",
}


class UserBase(BaseModel):
    """Base user model."""
    username: str = Field(..., min_length=3, max_length=100)
    email: Optional[EmailStr] = None
    full_name: str = Field(..., min_length=2, max_length=100)
    role: Role = Role.RECEPCAO
    health_unit_id: Optional[int] = None


class UserCreate(UserBase):
    """Model for creating a new user."""
    password: str = Field(..., min_length=8)


class UserResponse(UserBase):
    """User model for API responses (no password)."""
    id: int
    is_active: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class User(UserBase):
    """User model for internal use."""
    id: int
    is_active: bool = True


class Token(BaseModel):
    """JWT Token model."""
    access_token: str
    token_type: str = "bearer"


class PasswordChange(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=8)


class UserUpdate(BaseModel):
    """Fields an administrator may change on an account."""
    email: Optional[EmailStr] = None
    full_name: Optional[str] = Field(None, min_length=2, max_length=100)
    role: Optional[Role] = None
    health_unit_id: Optional[int] = None
