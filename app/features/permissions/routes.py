"""
Role and permission management API routes.

Each router is mounted under /admin and guarded by its coarse-grained
permission ("manage roles" / "manage permissions").
"""
from typing import Annotated
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.cache import CachePort, get_cache
from app.core.database.engine import get_db
from app.features.permissions import service
from app.features.permissions.dependencies import require_permission
from app.features.permissions.schemas import (
    PermissionCreate,
    PermissionListResponse,
    PermissionResponse,
    PermissionUpdate,
    RoleCreate,
    RoleListResponse,
    RoleResponse,
    RoleUpdate,
)
from app.features.users.models import User


role_router = APIRouter()
permission_router = APIRouter()

ManageRoles = Annotated[User, Depends(require_permission("manage roles"))]
ManagePermissions = Annotated[User, Depends(require_permission("manage permissions"))]


# ============================================================================
# Role Routes
# ============================================================================

@role_router.get("", response_model=RoleListResponse)
async def list_roles(
    _admin: ManageRoles,
    db: Annotated[AsyncSession, Depends(get_db)],
    search: str = "",
    page: int = 1,
):
    """List roles with their permissions, ordered by name."""
    result = await service.list_roles(db, search=search, page=page)
    return RoleListResponse(
        items=[RoleResponse.model_validate(r) for r in result.items],
        search=search,
        permissions=[PermissionResponse.model_validate(p) for p in await service.all_permissions(db)],
        **result.meta(),
    )


@role_router.post("", response_model=RoleResponse, status_code=status.HTTP_201_CREATED)
async def create_role(
    payload: RoleCreate,
    _admin: ManageRoles,
    db: Annotated[AsyncSession, Depends(get_db)],
    cache: Annotated[CachePort, Depends(get_cache)],
):
    """Create a role and assign its initial permissions."""
    return await service.create_role(db, cache, name=payload.name, permissions=payload.permissions)


@role_router.put("/{role_id}", response_model=RoleResponse)
async def update_role(
    role_id: str,
    payload: RoleUpdate,
    _admin: ManageRoles,
    db: Annotated[AsyncSession, Depends(get_db)],
    cache: Annotated[CachePort, Depends(get_cache)],
):
    """Rename a role and replace its permissions with the submitted list."""
    return await service.update_role(db, cache, role_id, name=payload.name, permissions=payload.permissions)


@role_router.delete("/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_role(
    role_id: str,
    _admin: ManageRoles,
    db: Annotated[AsyncSession, Depends(get_db)],
    cache: Annotated[CachePort, Depends(get_cache)],
):
    """Delete a role and detach it from every user."""
    await service.delete_role(db, cache, role_id)
    return None


# ============================================================================
# Permission Routes
# ============================================================================

@permission_router.get("", response_model=PermissionListResponse)
async def list_permissions(
    _admin: ManagePermissions,
    db: Annotated[AsyncSession, Depends(get_db)],
    search: str = "",
    page: int = 1,
):
    """List permissions in creation order."""
    result = await service.list_permissions(db, search=search, page=page)
    return PermissionListResponse(
        items=[PermissionResponse.model_validate(p) for p in result.items],
        search=search,
        **result.meta(),
    )


@permission_router.post("", response_model=PermissionResponse, status_code=status.HTTP_201_CREATED)
async def create_permission(
    payload: PermissionCreate,
    _admin: ManagePermissions,
    db: Annotated[AsyncSession, Depends(get_db)],
    cache: Annotated[CachePort, Depends(get_cache)],
):
    return await service.create_permission(db, cache, name=payload.name)


@permission_router.put("/{permission_id}", response_model=PermissionResponse)
async def update_permission(
    permission_id: str,
    payload: PermissionUpdate,
    _admin: ManagePermissions,
    db: Annotated[AsyncSession, Depends(get_db)],
    cache: Annotated[CachePort, Depends(get_cache)],
):
    return await service.update_permission(db, cache, permission_id, name=payload.name)


@permission_router.delete("/{permission_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_permission(
    permission_id: str,
    _admin: ManagePermissions,
    db: Annotated[AsyncSession, Depends(get_db)],
    cache: Annotated[CachePort, Depends(get_cache)],
):
    """Delete a permission and revoke it from every role and user."""
    await service.delete_permission(db, cache, permission_id)
    return None
