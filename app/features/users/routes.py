"""
User management and authentication routes.
"""
from typing import Annotated
from fastapi import APIRouter, Depends, HTTPException, status
from slowapi.util import get_remote_address
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import Request

from app.core import config
from app.core.cache import CachePort, get_cache
from app.core.database.engine import get_db
from app.core.rate_limit import limiter
from app.features.permissions.dependencies import get_effective_permissions, require_permission
from app.features.permissions.resolver import EffectivePermissions, load_permission_graph
from app.features.permissions.schemas import PermissionResponse
from app.features.permissions.service import all_permissions, all_roles
from app.features.users import service
from app.features.users.auth import create_access_token, verify_password
from app.features.users.dependencies import get_current_user
from app.features.users.models import User
from app.features.users.schemas import (
    LoginRequest,
    MeResponse,
    RoleSummary,
    TokenResponse,
    UserCreate,
    UserListResponse,
    UserRegister,
    UserResponse,
    UserUpdate,
)
from app.utils import get_logger


log = get_logger(__name__)

router = APIRouter()
auth_router = APIRouter()

ManageUsers = Annotated[User, Depends(require_permission("manage users"))]


# ============================================================================
# Admin user management
# ============================================================================

@router.get("", response_model=UserListResponse)
async def list_users(
    _admin: ManageUsers,
    db: Annotated[AsyncSession, Depends(get_db)],
    search: str = "",
    page: int = 1,
):
    """List users with their roles and direct permissions."""
    result = await service.list_users(db, search=search, page=page)
    return UserListResponse(
        items=[UserResponse.model_validate(u) for u in result.items],
        search=search,
        roles=[RoleSummary.model_validate(r) for r in await all_roles(db)],
        permissions=[PermissionResponse.model_validate(p) for p in await all_permissions(db)],
        **result.meta(),
    )


@router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    payload: UserCreate,
    _admin: ManageUsers,
    db: Annotated[AsyncSession, Depends(get_db)],
    cache: Annotated[CachePort, Depends(get_cache)],
):
    """Create a user, then assign roles and direct permissions."""
    return await service.create_user(
        db,
        cache,
        name=payload.name,
        email=payload.email,
        password=payload.password,
        password_confirmation=payload.password_confirmation,
        roles=payload.roles,
        permissions=payload.permissions,
    )


@router.put("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: str,
    payload: UserUpdate,
    _admin: ManageUsers,
    db: Annotated[AsyncSession, Depends(get_db)],
    cache: Annotated[CachePort, Depends(get_cache)],
):
    """Update a user; roles and permissions are replaced with the submitted lists."""
    return await service.update_user(
        db,
        cache,
        user_id,
        name=payload.name,
        email=payload.email,
        password=payload.password,
        password_confirmation=payload.password_confirmation,
        roles=payload.roles,
        permissions=payload.permissions,
    )


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_user(
    user_id: str,
    admin: ManageUsers,
    db: Annotated[AsyncSession, Depends(get_db)],
    cache: Annotated[CachePort, Depends(get_cache)],
):
    """Delete a user (never the caller's own account)."""
    await service.delete_user(db, cache, user_id, acting_user_id=admin.id)
    return None


# ============================================================================
# Authentication
# ============================================================================

@auth_router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def register(
    payload: UserRegister,
    db: Annotated[AsyncSession, Depends(get_db)],
    cache: Annotated[CachePort, Depends(get_cache)],
):
    """Self-service sign-up; new accounts start without roles."""
    return await service.create_user(
        db,
        cache,
        name=payload.name,
        email=payload.email,
        password=payload.password,
        password_confirmation=payload.password_confirmation,
    )


@auth_router.post("/login", response_model=TokenResponse)
@limiter.limit(config.LOGIN_RATE_LIMIT, key_func=get_remote_address)
async def login(
    request: Request,
    payload: LoginRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Exchange email and password for a bearer token."""
    user = await service.get_user_by_email(db, payload.email)
    if user is None or not verify_password(payload.password, user.password):
        log.info("Failed login for %s", payload.email)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="These credentials do not match our records.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return TokenResponse(access_token=create_access_token(user.id))


@auth_router.get("/me", response_model=MeResponse)
async def me(
    user: Annotated[User, Depends(get_current_user)],
    effective: Annotated[EffectivePermissions, Depends(get_effective_permissions)],
    db: Annotated[AsyncSession, Depends(get_db)],
    cache: Annotated[CachePort, Depends(get_cache)],
):
    """Current user plus the effective-permission payload for the UI."""
    graph = await load_permission_graph(db, cache)
    return MeResponse(
        user=UserResponse.model_validate(user),
        auth=effective.to_payload(graph.permission_names),
    )
