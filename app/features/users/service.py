"""
User CRUD with role and direct-permission synchronization.
"""
from typing import Optional

from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.cache import CachePort
from app.core.database.pagination import PageResult, paginate
from app.core.database.transaction import write_transaction
from app.core.errors import NotFoundError, SelfDeletionError, ValidationError
from app.features.permissions.models import user_has_permissions, user_has_roles
from app.features.permissions.sync import apply_sync
from app.features.users.auth import hash_password
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)

EMAIL_TAKEN = {"email": "The email has already been taken."}

# Integrity error fragments for the unique email index (SQLite, PostgreSQL)
EMAIL_CONFLICTS = {"users.email": EMAIL_TAKEN, "ix_users_email": EMAIL_TAKEN}


def _check_password(password: str, confirmation: Optional[str]) -> None:
    if len(password) < config.PASSWORD_MIN_LENGTH:
        raise ValidationError(
            {"password": f"The password field must be at least {config.PASSWORD_MIN_LENGTH} characters."}
        )
    if confirmation is not None and password != confirmation:
        raise ValidationError({"password": "The password field confirmation does not match."})


async def _ensure_unique_email(db: AsyncSession, email: str, exclude_id: Optional[str] = None) -> None:
    stmt = select(User.id).where(func.lower(User.email) == email.lower())
    if exclude_id is not None:
        stmt = stmt.where(User.id != exclude_id)
    if (await db.execute(stmt)).first():
        raise ValidationError(EMAIL_TAKEN)


async def get_user(db: AsyncSession, user_id: str) -> User:
    result = await db.execute(
        select(User).where(User.id == user_id).execution_options(populate_existing=True)
    )
    user = result.scalar_one_or_none()
    if user is None:
        raise NotFoundError("User")
    return user


async def get_user_by_email(db: AsyncSession, email: str) -> Optional[User]:
    result = await db.execute(select(User).where(func.lower(User.email) == email.lower()))
    return result.scalar_one_or_none()


async def list_users(
    db: AsyncSession,
    search: str = "",
    page: int = 1,
    per_page: int = config.PAGE_SIZE,
) -> PageResult[User]:
    """Users in creation order with roles and direct permissions loaded."""
    stmt = select(User)
    if search:
        stmt = stmt.where(
            or_(func.lower(User.name).contains(search.lower(), autoescape=True),
                func.lower(User.email).contains(search.lower(), autoescape=True))
        )
    stmt = stmt.order_by(User.id).execution_options(populate_existing=True)
    return await paginate(db, stmt, page, per_page)


async def create_user(
    db: AsyncSession,
    cache: Optional[CachePort],
    name: str,
    email: str,
    password: str,
    password_confirmation: Optional[str] = None,
    roles: Optional[list[str]] = None,
    permissions: Optional[list[str]] = None,
) -> User:
    """
    Create a user and assign the given roles and direct permissions.

    Raises:
        ValidationError: duplicate email or unacceptable password
        UnknownAssignmentError: a role or permission name does not exist
    """
    _check_password(password, password_confirmation)
    await _ensure_unique_email(db, email)

    async with write_transaction(db, cache, conflicts=EMAIL_CONFLICTS) as tx:
        user = User(name=name, email=email, password=hash_password(password))
        db.add(user)
        await db.flush()
        if roles:
            await apply_sync(tx, user, "roles", roles)
        if permissions:
            await apply_sync(tx, user, "permissions", permissions)
    log.info("Created user %s <%s>", user.id, email)
    return await get_user(db, user.id)


async def update_user(
    db: AsyncSession,
    cache: Optional[CachePort],
    user_id: str,
    name: str,
    email: str,
    password: Optional[str] = None,
    password_confirmation: Optional[str] = None,
    roles: Optional[list[str]] = None,
    permissions: Optional[list[str]] = None,
) -> User:
    """
    Update profile fields and replace role/permission assignments.

    The password is only rehashed when a non-empty one is supplied. Omitted
    role or permission lists clear that kind of assignment.
    """
    user = await get_user(db, user_id)
    if password:
        _check_password(password, password_confirmation)
    await _ensure_unique_email(db, email, exclude_id=user.id)

    async with write_transaction(db, cache, conflicts=EMAIL_CONFLICTS) as tx:
        user.name = name
        user.email = email
        if password:
            user.password = hash_password(password)
        await apply_sync(tx, user, "roles", roles or [])
        await apply_sync(tx, user, "permissions", permissions or [])
    log.info("Updated user %s", user.id)
    return await get_user(db, user.id)


async def delete_user(
    db: AsyncSession,
    cache: Optional[CachePort],
    user_id: str,
    acting_user_id: str,
) -> None:
    """
    Delete a user and their role/permission assignments.

    Raises:
        SelfDeletionError: user_id is the caller's own account; nothing changes
    """
    if user_id == acting_user_id:
        log.info("User %s attempted to delete their own account", acting_user_id)
        raise SelfDeletionError()

    user = await get_user(db, user_id)
    async with write_transaction(db, cache) as tx:
        await db.execute(delete(user_has_roles).where(user_has_roles.c.user_id == user.id))
        await db.execute(delete(user_has_permissions).where(user_has_permissions.c.user_id == user.id))
        await db.delete(user)
        tx.touch_graph()
    log.info("Deleted user %s", user_id)
