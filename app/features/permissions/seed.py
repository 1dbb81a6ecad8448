"""
Default permission vocabulary and roles.

provision() is create-if-absent throughout and safe to run repeatedly:
- every permission in DEFAULT_PERMISSIONS exists
- every role in DEFAULT_ROLES exists and holds at least its listed permissions
- the super-admin role exists and, if nobody holds it, the first-created user gets it
"""
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.cache import CachePort
from app.core.database.transaction import write_transaction
from app.features.permissions.models import Permission, Role, user_has_roles
from app.features.permissions.sync import apply_sync, current_assignments
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)


DEFAULT_PERMISSIONS = [
    # User management
    "users.view",
    "users.create",
    "users.edit",
    "users.delete",
    "manage users",

    # Role management
    "roles.view",
    "roles.create",
    "roles.edit",
    "roles.delete",
    "manage roles",

    # Permission management
    "permissions.view",
    "permissions.create",
    "permissions.edit",
    "permissions.delete",
    "manage permissions",

    # Content management (examples)
    "posts.view",
    "posts.create",
    "posts.edit",
    "posts.delete",
    "posts.publish",
]


DEFAULT_ROLES = {
    # Every permission that exists when provisioning runs; unlike the bypass
    # role it does not gain permissions created afterwards
    "admin": "ALL",
    "editor": [
        "posts.view",
        "posts.create",
        "posts.edit",
        "posts.publish",
    ],
    "user": [
        "posts.view",
    ],
}


async def _get_or_create(db: AsyncSession, model: type, name: str) -> tuple[object, bool]:
    stmt = select(model).where(model.name == name, model.guard_name == config.DEFAULT_GUARD)
    existing = (await db.execute(stmt)).scalars().first()
    if existing:
        return existing, False
    obj = model(name=name, guard_name=config.DEFAULT_GUARD)
    db.add(obj)
    await db.flush()
    return obj, True


async def provision(db: AsyncSession, cache: Optional[CachePort] = None) -> bool:
    """
    Create the default permissions and roles.

    Returns:
        True if anything was written
    """
    async with write_transaction(db, cache) as tx:
        created = 0
        for name in DEFAULT_PERMISSIONS:
            _, was_created = await _get_or_create(db, Permission, name)
            if was_created:
                log.info(f"Created permission: {name}")
                created += 1

        # admin receives every permission present now, not only the vocabulary above
        existing = await db.execute(
            select(Permission.name).where(Permission.guard_name == config.DEFAULT_GUARD)
        )
        all_names = set(existing.scalars().all())

        for role_name, wanted in DEFAULT_ROLES.items():
            role, was_created = await _get_or_create(db, Role, role_name)
            if was_created:
                log.info(f"Created role: {role_name}")
                created += 1
            names = all_names if wanted == "ALL" else wanted
            # givePermissionTo semantics: add what is missing, keep extra grants
            held = set((await current_assignments(db, role, "permissions")).values())
            if not set(names) <= held:
                await apply_sync(tx, role, "permissions", held | set(names))
                created += 1

        bypass_role, was_created = await _get_or_create(db, Role, config.SUPER_ADMIN_ROLE)
        if was_created:
            log.info(f"Created role: {config.SUPER_ADMIN_ROLE} (bypasses every permission check)")
            created += 1

        holder = await db.execute(
            select(user_has_roles.c.user_id).where(user_has_roles.c.role_id == bypass_role.id).limit(1)
        )
        if holder.first() is None:
            first_user = (await db.execute(select(User).order_by(User.id).limit(1))).scalars().first()
            if first_user is not None:
                held_roles = set((await current_assignments(db, first_user, "roles")).values())
                await apply_sync(tx, first_user, "roles", held_roles | {config.SUPER_ADMIN_ROLE})
                log.info(f"Assigned {config.SUPER_ADMIN_ROLE} to first user {first_user.email}")
                created += 1

        if created:
            tx.touch_graph()

    log.info("Provisioning finished, %d change(s)", created)
    return created > 0
