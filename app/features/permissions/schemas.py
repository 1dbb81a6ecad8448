"""
Pydantic schemas for role and permission management.
"""
from datetime import datetime
from typing import Dict, List
from pydantic import BaseModel, Field, ConfigDict, field_validator


def _strip_name(v: str) -> str:
    v = v.strip()
    if not v:
        raise ValueError("The name field is required.")
    return v


# ============================================================================
# Permission Schemas
# ============================================================================

class PermissionCreate(BaseModel):
    """Schema for creating or renaming a permission."""
    name: str = Field(..., min_length=1, max_length=255, description="Permission name, e.g. 'posts.edit'")

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        """Strip surrounding whitespace."""
        return _strip_name(v)


class PermissionUpdate(PermissionCreate):
    pass


class PermissionResponse(BaseModel):
    id: str
    name: str
    guard_name: str
    created_at: datetime
    updated_at: datetime
    
    model_config = ConfigDict(from_attributes=True)


class PermissionListResponse(BaseModel):
    items: List[PermissionResponse]
    total: int
    page: int
    per_page: int
    last_page: int
    search: str = ""


# ============================================================================
# Role Schemas
# ============================================================================

class RoleCreate(BaseModel):
    """Schema for creating a role with its initial permissions."""
    name: str = Field(..., min_length=1, max_length=255, description="Unique role name")
    permissions: List[str] = Field(default_factory=list, description="Complete list of permission names")

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        """Strip surrounding whitespace."""
        return _strip_name(v)


class RoleUpdate(RoleCreate):
    """Omitting permissions clears every permission from the role."""


class RoleResponse(BaseModel):
    id: str
    name: str
    guard_name: str
    created_at: datetime
    updated_at: datetime
    permissions: List[PermissionResponse] = []
    
    model_config = ConfigDict(from_attributes=True)


class RoleListResponse(BaseModel):
    items: List[RoleResponse]
    total: int
    page: int
    per_page: int
    last_page: int
    search: str = ""
    permissions: List[PermissionResponse] = []  # options for the assignment picker


# ============================================================================
# Effective permissions
# ============================================================================

class EffectivePermissionsResponse(BaseModel):
    """Per-request payload the UI uses to decide what to render."""
    roleNames: List[str]
    permissionNames: List[str]
    permissionLookup: Dict[str, bool]


class StatsResponse(BaseModel):
    users: int
    roles: int
    permissions: int
