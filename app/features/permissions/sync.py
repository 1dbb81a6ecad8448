"""
Assignment synchronizer.

Replaces the complete set of roles or permissions held by a user or role
with a submitted list of names. The list is the desired end state, not a
delta: submitting an empty list clears every assignment of that kind.

Supported (target, kind) pairs:
    User, "roles"        -> user_has_roles
    User, "permissions"  -> user_has_permissions
    Role, "permissions"  -> role_has_permissions
"""
from dataclasses import dataclass
from typing import Iterable, Literal, Optional, Union

from sqlalchemy import Table, and_, delete, insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.cache import CachePort
from app.core.database.transaction import WriteTransaction, write_transaction
from app.core.errors import UnknownAssignmentError
from app.features.permissions.models import (
    Permission,
    Role,
    role_has_permissions,
    user_has_permissions,
    user_has_roles,
)
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)

AssignmentKind = Literal["roles", "permissions"]


# ============================================================================
# Validated name value types
# ============================================================================

@dataclass(frozen=True)
class PermissionName:
    """A permission name known to exist; only built by lookup_names."""
    id: str
    name: str


@dataclass(frozen=True)
class RoleName:
    """A role name known to exist; only built by lookup_names."""
    id: str
    name: str


@dataclass(frozen=True)
class _Assignment:
    table: Table
    owner_column: str
    item_column: str
    model: type


_ASSIGNMENTS: dict[tuple[type, str], _Assignment] = {
    (User, "roles"): _Assignment(user_has_roles, "user_id", "role_id", Role),
    (User, "permissions"): _Assignment(user_has_permissions, "user_id", "permission_id", Permission),
    (Role, "permissions"): _Assignment(role_has_permissions, "role_id", "permission_id", Permission),
}


@dataclass(frozen=True)
class SyncResult:
    """Names added and removed by one synchronization."""
    added: frozenset[str] = frozenset()
    removed: frozenset[str] = frozenset()

    @property
    def changed(self) -> bool:
        return bool(self.added or self.removed)


def _assignment_for(target: Union[User, Role], kind: str) -> _Assignment:
    try:
        return _ASSIGNMENTS[(type(target), kind)]
    except KeyError:
        raise ValueError(f"Cannot assign {kind} to {type(target).__name__}") from None


async def lookup_names(
    db: AsyncSession,
    kind: AssignmentKind,
    names: Iterable[str],
    guard_name: str = config.DEFAULT_GUARD,
) -> list[Union[RoleName, PermissionName]]:
    """
    Resolve raw names into validated value objects.

    Raises:
        UnknownAssignmentError: if any name has no matching row; nothing is returned
    """
    model, value_type = (Role, RoleName) if kind == "roles" else (Permission, PermissionName)
    wanted = set(names)
    if not wanted:
        return []

    stmt = select(model.id, model.name).where(
        and_(model.name.in_(wanted), model.guard_name == guard_name)
    )
    result = await db.execute(stmt)
    found = {name: row_id for row_id, name in result.all()}

    missing = wanted - found.keys()
    if missing:
        log.info("Rejected unknown %s: %s", kind, sorted(missing))
        raise UnknownAssignmentError(kind, missing)

    return [value_type(id=found[name], name=name) for name in sorted(wanted)]


async def current_assignments(
    db: AsyncSession,
    target: Union[User, Role],
    kind: AssignmentKind,
) -> dict[str, str]:
    """Return {item id: item name} currently assigned to target."""
    spec = _assignment_for(target, kind)
    owner = spec.table.c[spec.owner_column]
    item = spec.table.c[spec.item_column]
    stmt = (
        select(spec.model.id, spec.model.name)
        .join(spec.table, item == spec.model.id)
        .where(owner == target.id)
    )
    result = await db.execute(stmt)
    return {row_id: name for row_id, name in result.all()}


async def apply_sync(
    tx: WriteTransaction,
    target: Union[User, Role],
    kind: AssignmentKind,
    desired: Iterable[str],
) -> SyncResult:
    """
    Bring target's assignments of `kind` in line with `desired` inside an open transaction.

    Validation happens before any write. The caller's write_transaction commits and
    invalidates the permission graph cache when something changed.
    """
    spec = _assignment_for(target, kind)
    db = tx.db

    wanted = await lookup_names(db, kind, desired, getattr(target, "guard_name", config.DEFAULT_GUARD))
    wanted_ids = {ref.id: ref.name for ref in wanted}
    current = await current_assignments(db, target, kind)

    to_add = wanted_ids.keys() - current.keys()
    to_remove = current.keys() - wanted_ids.keys()

    if not to_add and not to_remove:
        return SyncResult()

    owner = spec.table.c[spec.owner_column]
    item = spec.table.c[spec.item_column]

    if to_remove:
        await db.execute(
            delete(spec.table).where(and_(owner == target.id, item.in_(to_remove)))
        )
    if to_add:
        await db.execute(
            insert(spec.table),
            [{spec.owner_column: target.id, spec.item_column: item_id} for item_id in sorted(to_add)],
        )

    tx.touch_graph()
    result = SyncResult(
        added=frozenset(wanted_ids[i] for i in to_add),
        removed=frozenset(current[i] for i in to_remove),
    )
    log.info(
        "Synced %s for %s %s: +%s -%s",
        kind, type(target).__name__.lower(), target.id, sorted(result.added), sorted(result.removed),
    )
    return result


async def synchronize(
    db: AsyncSession,
    cache: Optional[CachePort],
    target: Union[User, Role],
    kind: AssignmentKind,
    desired: Iterable[str],
) -> SyncResult:
    """
    Replace target's `kind` assignments with `desired` in its own transaction.

    Usage:
        await synchronize(db, cache, role, "permissions", ["posts.view", "posts.edit"])

    Raises:
        UnknownAssignmentError: a name does not exist; no assignment is changed
        TransactionError: the database write failed and was rolled back
    """
    async with write_transaction(db, cache) as tx:
        result = await apply_sync(tx, target, kind, desired)
    return result
