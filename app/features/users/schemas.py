"""
Pydantic schemas for user-related requests and responses.
"""
from datetime import datetime
from pydantic import BaseModel, EmailStr, Field, ConfigDict

from app.features.permissions.schemas import (
    EffectivePermissionsResponse,
    PermissionResponse,
)


class UserBase(BaseModel):
    """Base user schema with common fields."""
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr = Field(..., max_length=255)


class UserCreate(UserBase):
    """Admin-side user creation; roles and permissions are complete name lists."""
    password: str = Field(..., min_length=1, max_length=128)
    password_confirmation: str
    roles: list[str] = Field(default_factory=list)
    permissions: list[str] = Field(default_factory=list)


class UserUpdate(UserBase):
    """
    Admin-side user update.
    
    An empty or missing password keeps the current one. roles and permissions
    always replace the current assignments; omitting them clears them.
    """
    password: str | None = Field(None, max_length=128)
    password_confirmation: str | None = None
    roles: list[str] = Field(default_factory=list)
    permissions: list[str] = Field(default_factory=list)


class UserRegister(UserBase):
    password: str = Field(..., min_length=1, max_length=128)
    password_confirmation: str


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class RoleSummary(BaseModel):
    id: str
    name: str
    guard_name: str
    
    model_config = ConfigDict(from_attributes=True)


class UserResponse(UserBase):
    """Schema for user responses; never includes the password hash."""
    id: str
    created_at: datetime
    updated_at: datetime
    roles: list[RoleSummary] = []
    permissions: list[PermissionResponse] = []
    
    model_config = ConfigDict(from_attributes=True)


class UserListResponse(BaseModel):
    items: list[UserResponse]
    total: int
    page: int
    per_page: int
    last_page: int
    search: str = ""
    roles: list[RoleSummary] = []  # options for the assignment pickers
    permissions: list[PermissionResponse] = []


class MeResponse(BaseModel):
    user: UserResponse
    auth: EffectivePermissionsResponse
