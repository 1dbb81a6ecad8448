"""
Route protection dependencies built on the permission resolver.
"""
from typing import Annotated
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.cache import CachePort, get_cache
from app.core.database.engine import get_db
from app.core.errors import PermissionDeniedError
from app.features.permissions.resolver import EffectivePermissions, check_permission, resolve
from app.features.users.dependencies import get_current_user
from app.features.users.models import User


async def get_effective_permissions(
    db: Annotated[AsyncSession, Depends(get_db)],
    cache: Annotated[CachePort, Depends(get_cache)],
    current_user: Annotated[User, Depends(get_current_user)],
) -> EffectivePermissions:
    """Resolve the caller's roles and permissions for this request."""
    return await resolve(db, cache, current_user.id)


def require_permission(permission_name: str):
    """
    FastAPI dependency to require a specific permission.
    
    Usage:
        @router.post("/roles")
        async def create_role(
            current_user: User = Depends(require_permission("manage roles"))
        ):
            ...
    
    Raises:
        PermissionDeniedError: 403 if the caller lacks the permission
    """
    async def permission_dependency(
        db: Annotated[AsyncSession, Depends(get_db)],
        cache: Annotated[CachePort, Depends(get_cache)],
        current_user: Annotated[User, Depends(get_current_user)],
    ) -> User:
        if not await check_permission(db, cache, current_user.id, permission_name):
            raise PermissionDeniedError(permission_name)
        return current_user
    
    return permission_dependency
