"""
Effective permission resolution and the super-admin bypass rule.

A user's effective permissions are the union of their direct grants and the
permissions of every role assigned to them. Role -> permission data is read
from the materialized permission graph kept in the process cache; the
user's own role ids and direct grants are always read from the database,
so per-call cost scales with the user's assignments only.
"""
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.cache import PERMISSION_GRAPH_GENERATION_KEY, PERMISSION_GRAPH_KEY, CacheError, CachePort
from app.features.permissions.models import (
    Permission,
    Role,
    role_has_permissions,
    user_has_permissions,
    user_has_roles,
)
from app.utils import get_logger


log = get_logger(__name__)


@dataclass(frozen=True)
class PermissionGraph:
    """Snapshot of every role, the permission names it grants and every known permission name."""
    role_names: Mapping[str, str] = field(default_factory=dict)
    role_permissions: Mapping[str, frozenset[str]] = field(default_factory=dict)
    permission_names: frozenset[str] = frozenset()

    def permissions_for(self, role_id: str) -> frozenset[str]:
        return self.role_permissions.get(role_id, frozenset())


@dataclass(frozen=True)
class EffectivePermissions:
    """Roles and permissions a user holds at the time of resolution."""
    user_id: str
    role_names: frozenset[str] = frozenset()
    permission_names: frozenset[str] = frozenset()

    @property
    def is_super_admin(self) -> bool:
        return self.has_role(config.SUPER_ADMIN_ROLE)

    def can(self, permission_name: str) -> bool:
        """Super-admins pass every check, even for names that do not exist."""
        if self.is_super_admin:
            return True
        return permission_name in self.permission_names

    def has_role(self, role_name: str) -> bool:
        return role_name in self.role_names

    def to_payload(self, known_permissions: Iterable[str] = ()) -> dict[str, Any]:
        """
        Shape consumed by the presentation layer.

        The UI decides what to render from permissionLookup alone, so a
        super-admin gets every name in known_permissions marked as granted.
        """
        permission_names = sorted(self.permission_names)
        granted = set(permission_names)
        if self.is_super_admin:
            granted |= set(known_permissions)
        return {
            "roleNames": sorted(self.role_names),
            "permissionNames": permission_names,
            "permissionLookup": {name: True for name in sorted(granted)},
        }


async def build_permission_graph(db: AsyncSession) -> PermissionGraph:
    """Materialize the role -> permission graph from the database."""
    roles = await db.execute(select(Role.id, Role.name))
    role_names = {role_id: name for role_id, name in roles.all()}

    stmt = (
        select(role_has_permissions.c.role_id, Permission.name)
        .join(Permission, Permission.id == role_has_permissions.c.permission_id)
    )
    grants: dict[str, set[str]] = {role_id: set() for role_id in role_names}
    for role_id, permission_name in (await db.execute(stmt)).all():
        grants.setdefault(role_id, set()).add(permission_name)

    permission_names = (await db.execute(select(Permission.name))).scalars().all()

    return PermissionGraph(
        role_names=role_names,
        role_permissions={role_id: frozenset(names) for role_id, names in grants.items()},
        permission_names=frozenset(permission_names),
    )


async def load_permission_graph(
    db: AsyncSession,
    cache: Optional[CachePort],
    refresh: bool = False,
) -> PermissionGraph:
    """
    Return the cached graph, rebuilding and caching it on a miss.

    Cache store failures fall back to the database. A graph built while a
    write committed and invalidated the cache is returned but not stored.
    """
    generation = None
    if cache is not None:
        try:
            generation = cache.get(PERMISSION_GRAPH_GENERATION_KEY)
            graph = None if refresh else cache.get(PERMISSION_GRAPH_KEY)
        except CacheError as e:
            log.warning("Cache read failed for %s: %s", PERMISSION_GRAPH_KEY, e)
            graph = None
        if graph is not None:
            return graph

    log.debug("Permission graph cache miss, rebuilding")
    graph = await build_permission_graph(db)

    if cache is not None:
        try:
            if cache.get(PERMISSION_GRAPH_GENERATION_KEY) == generation:
                cache.set(PERMISSION_GRAPH_KEY, graph)
            else:
                log.debug("Permission graph changed during rebuild, not caching")
        except CacheError as e:
            log.warning("Cache write failed for %s: %s", PERMISSION_GRAPH_KEY, e)
    return graph


async def resolve(
    db: AsyncSession,
    cache: Optional[CachePort],
    user_id: str,
) -> EffectivePermissions:
    """
    Compute a user's role names and effective permission names.

    Usage:
        effective = await resolve(db, cache, user.id)
        effective.permission_names  # direct grants | role grants
    """
    role_rows = await db.execute(
        select(user_has_roles.c.role_id).where(user_has_roles.c.user_id == user_id)
    )
    role_ids = set(role_rows.scalars().all())

    direct_rows = await db.execute(
        select(Permission.name)
        .join(user_has_permissions, user_has_permissions.c.permission_id == Permission.id)
        .where(user_has_permissions.c.user_id == user_id)
    )
    permission_names = set(direct_rows.scalars().all())

    graph = await load_permission_graph(db, cache)
    if not role_ids <= graph.role_names.keys():
        # Role created after the graph was cached without an invalidation reaching us
        graph = await load_permission_graph(db, cache, refresh=True)

    role_names = set()
    for role_id in role_ids:
        if role_id in graph.role_names:
            role_names.add(graph.role_names[role_id])
            permission_names |= graph.permissions_for(role_id)

    return EffectivePermissions(
        user_id=user_id,
        role_names=frozenset(role_names),
        permission_names=frozenset(permission_names),
    )


async def check_permission(
    db: AsyncSession,
    cache: Optional[CachePort],
    user_id: str,
    permission_name: str,
) -> bool:
    """
    Decide whether user_id may perform permission_name.

    Re-resolved on every call; holders of the super-admin role always pass.
    """
    effective = await resolve(db, cache, user_id)
    allowed = effective.can(permission_name)
    if not allowed:
        log.debug("User %s denied %r", user_id, permission_name)
    return allowed
