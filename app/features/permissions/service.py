"""
Role and permission CRUD.

Every write runs inside write_transaction so that assignment syncs and
cascading junction deletes are all-or-nothing, and the permission graph
cache is invalidated only after commit.
"""
from typing import Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.cache import CachePort
from app.core.database.pagination import PageResult, paginate
from app.core.database.transaction import write_transaction
from app.core.errors import NotFoundError, ValidationError
from app.features.permissions.models import (
    Permission,
    Role,
    role_has_permissions,
    user_has_permissions,
    user_has_roles,
)
from app.features.permissions.sync import apply_sync
from app.utils import get_logger


log = get_logger(__name__)

NAME_TAKEN = {"name": "The name has already been taken."}

# Integrity error fragments for the (name, guard_name) constraints: SQLite names
# the columns, PostgreSQL the constraint
PERMISSION_CONFLICTS = {"permissions.name": NAME_TAKEN, "uq_permissions_name_guard": NAME_TAKEN}
ROLE_CONFLICTS = {"roles.name": NAME_TAKEN, "uq_roles_name_guard": NAME_TAKEN}


async def _ensure_unique_name(
    db: AsyncSession,
    model: type,
    name: str,
    guard_name: str,
    exclude_id: Optional[str] = None,
) -> None:
    stmt = select(model.id).where(model.name == name, model.guard_name == guard_name)
    if exclude_id is not None:
        stmt = stmt.where(model.id != exclude_id)
    if (await db.execute(stmt)).first():
        raise ValidationError(NAME_TAKEN)


# ============================================================================
# Permissions
# ============================================================================

async def get_permission(db: AsyncSession, permission_id: str) -> Permission:
    result = await db.execute(select(Permission).where(Permission.id == permission_id))
    permission = result.scalar_one_or_none()
    if permission is None:
        raise NotFoundError("Permission")
    return permission


async def list_permissions(
    db: AsyncSession,
    search: str = "",
    page: int = 1,
    per_page: int = config.PAGE_SIZE,
) -> PageResult[Permission]:
    """Permissions in creation order, optionally filtered by name substring."""
    stmt = select(Permission)
    if search:
        stmt = stmt.where(func.lower(Permission.name).contains(search.lower(), autoescape=True))
    stmt = stmt.order_by(Permission.id)
    return await paginate(db, stmt, page, per_page)


async def all_permissions(db: AsyncSession) -> list[Permission]:
    result = await db.execute(select(Permission).order_by(Permission.name))
    return list(result.scalars().all())


async def create_permission(
    db: AsyncSession,
    cache: Optional[CachePort],
    name: str,
    guard_name: str = config.DEFAULT_GUARD,
) -> Permission:
    await _ensure_unique_name(db, Permission, name, guard_name)
    async with write_transaction(db, cache, conflicts=PERMISSION_CONFLICTS) as tx:
        permission = Permission(name=name, guard_name=guard_name)
        db.add(permission)
        tx.touch_graph()
    log.info("Created permission %r", name)
    await db.refresh(permission)
    return permission


async def update_permission(
    db: AsyncSession,
    cache: Optional[CachePort],
    permission_id: str,
    name: str,
) -> Permission:
    permission = await get_permission(db, permission_id)
    await _ensure_unique_name(db, Permission, name, permission.guard_name, exclude_id=permission.id)
    async with write_transaction(db, cache, conflicts=PERMISSION_CONFLICTS) as tx:
        if permission.name != name:
            log.info("Renaming permission %r to %r", permission.name, name)
            permission.name = name
            tx.touch_graph()
    await db.refresh(permission)
    return permission


async def delete_permission(
    db: AsyncSession,
    cache: Optional[CachePort],
    permission_id: str,
) -> None:
    """Delete a permission together with every role and user grant of it."""
    permission = await get_permission(db, permission_id)
    async with write_transaction(db, cache) as tx:
        await db.execute(
            delete(role_has_permissions).where(role_has_permissions.c.permission_id == permission.id)
        )
        await db.execute(
            delete(user_has_permissions).where(user_has_permissions.c.permission_id == permission.id)
        )
        await db.delete(permission)
        tx.touch_graph()
    log.info("Deleted permission %r", permission.name)


# ============================================================================
# Roles
# ============================================================================

async def get_role(db: AsyncSession, role_id: str) -> Role:
    result = await db.execute(
        select(Role).where(Role.id == role_id).execution_options(populate_existing=True)
    )
    role = result.scalar_one_or_none()
    if role is None:
        raise NotFoundError("Role")
    return role


async def list_roles(
    db: AsyncSession,
    search: str = "",
    page: int = 1,
    per_page: int = config.PAGE_SIZE,
) -> PageResult[Role]:
    """Roles with their permissions, ordered by name."""
    stmt = select(Role)
    if search:
        stmt = stmt.where(func.lower(Role.name).contains(search.lower(), autoescape=True))
    stmt = stmt.order_by(Role.name).execution_options(populate_existing=True)
    return await paginate(db, stmt, page, per_page)


async def all_roles(db: AsyncSession) -> list[Role]:
    result = await db.execute(select(Role).order_by(Role.name))
    return list(result.scalars().all())


async def create_role(
    db: AsyncSession,
    cache: Optional[CachePort],
    name: str,
    permissions: Optional[list[str]] = None,
    guard_name: str = config.DEFAULT_GUARD,
) -> Role:
    await _ensure_unique_name(db, Role, name, guard_name)
    async with write_transaction(db, cache, conflicts=ROLE_CONFLICTS) as tx:
        role = Role(name=name, guard_name=guard_name)
        db.add(role)
        await db.flush()
        if permissions:
            await apply_sync(tx, role, "permissions", permissions)
        tx.touch_graph()
    log.info("Created role %r", name)
    return await get_role(db, role.id)


async def update_role(
    db: AsyncSession,
    cache: Optional[CachePort],
    role_id: str,
    name: str,
    permissions: Optional[list[str]] = None,
) -> Role:
    """Rename a role and replace its permissions; None or [] clears them."""
    role = await get_role(db, role_id)
    await _ensure_unique_name(db, Role, name, role.guard_name, exclude_id=role.id)
    async with write_transaction(db, cache, conflicts=ROLE_CONFLICTS) as tx:
        if role.name != name:
            log.info("Renaming role %r to %r", role.name, name)
            role.name = name
            tx.touch_graph()
        await apply_sync(tx, role, "permissions", permissions or [])
    return await get_role(db, role.id)


async def delete_role(
    db: AsyncSession,
    cache: Optional[CachePort],
    role_id: str,
) -> None:
    """Delete a role, its permission grants and its user assignments."""
    role = await get_role(db, role_id)
    async with write_transaction(db, cache) as tx:
        await db.execute(delete(role_has_permissions).where(role_has_permissions.c.role_id == role.id))
        await db.execute(delete(user_has_roles).where(user_has_roles.c.role_id == role.id))
        await db.delete(role)
        tx.touch_graph()
    log.info("Deleted role %r", role.name)
