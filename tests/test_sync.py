import pytest
from sqlalchemy import select

from app.core.cache import PERMISSION_GRAPH_KEY, InMemoryCache
from app.core.errors import TransactionError, UnknownAssignmentError
from app.features.permissions.models import Permission, role_has_permissions, user_has_roles
from app.features.permissions.sync import (
    PermissionName,
    RoleName,
    SyncResult,
    current_assignments,
    lookup_names,
    synchronize,
)
from app.features.users.models import User
from tests.factories import junction_rows, make_permissions, make_role, make_user


class RecordingCache(InMemoryCache):
    def __init__(self):
        super().__init__()
        self.invalidations = 0

    def invalidate(self, key: str) -> None:
        self.invalidations += 1
        super().invalidate(key)


async def test_diff_removes_and_adds_exactly_the_difference(db) -> None:
    await make_permissions(db, "A", "B", "C", "D")
    role = await make_role(db, "editor", permissions=["A", "B", "C"])

    result = await synchronize(db, None, role, "permissions", ["B", "C", "D"])

    assert result.added == {"D"}
    assert result.removed == {"A"}
    assert set((await current_assignments(db, role, "permissions")).values()) == {"B", "C", "D"}


async def test_second_identical_sync_writes_nothing(db) -> None:
    await make_permissions(db, "posts.view", "posts.edit")
    role = await make_role(db, "editor")
    cache = RecordingCache()

    first = await synchronize(db, cache, role, "permissions", ["posts.view", "posts.edit"])
    before = await junction_rows(db, role_has_permissions)
    second = await synchronize(db, cache, role, "permissions", ["posts.edit", "posts.view"])

    assert first.changed
    assert second == SyncResult()
    assert not second.changed
    assert await junction_rows(db, role_has_permissions) == before
    assert cache.invalidations == 1


async def test_empty_list_clears_assignments(db) -> None:
    await make_permissions(db, "posts.view")
    role = await make_role(db, "user", permissions=["posts.view"])

    result = await synchronize(db, None, role, "permissions", [])

    assert result.removed == {"posts.view"}
    assert await current_assignments(db, role, "permissions") == {}


async def test_unknown_name_is_rejected_without_partial_changes(db) -> None:
    await make_permissions(db, "posts.view", "posts.edit")
    role = await make_role(db, "editor", permissions=["posts.view"])
    before = await junction_rows(db, role_has_permissions)
    cache = RecordingCache()

    with pytest.raises(UnknownAssignmentError) as excinfo:
        await synchronize(db, cache, role, "permissions", ["posts.edit", "nonexistent.permission"])

    assert excinfo.value.names == ["nonexistent.permission"]
    assert excinfo.value.errors == {"permissions": "Unknown permissions: nonexistent.permission"}
    assert await junction_rows(db, role_has_permissions) == before
    assert cache.invalidations == 0


async def test_unknown_names_are_never_created(db) -> None:
    role = await make_role(db, "editor")

    with pytest.raises(UnknownAssignmentError):
        await synchronize(db, None, role, "permissions", ["ghost.create"])

    result = await db.execute(select(Permission).where(Permission.name == "ghost.create"))
    assert result.first() is None


async def test_user_role_sync(db) -> None:
    await make_role(db, "editor")
    await make_role(db, "user")
    user = await make_user(db)

    await synchronize(db, None, user, "roles", ["editor", "user"])
    result = await synchronize(db, None, user, "roles", ["user"])

    assert result.removed == {"editor"}
    assert set((await current_assignments(db, user, "roles")).values()) == {"user"}


async def test_roles_cannot_be_assigned_to_roles(db) -> None:
    role = await make_role(db, "editor")

    with pytest.raises(ValueError):
        await synchronize(db, None, role, "roles", ["editor"])


async def test_lookup_names_returns_value_objects(db) -> None:
    await make_permissions(db, "posts.view")
    await make_role(db, "editor")

    permissions = await lookup_names(db, "permissions", ["posts.view", "posts.view"])
    roles = await lookup_names(db, "roles", ["editor"])

    assert [type(p) for p in permissions] == [PermissionName]
    assert permissions[0].name == "posts.view"
    assert isinstance(roles[0], RoleName)


async def test_failed_write_rolls_back_and_skips_invalidation(db) -> None:
    await make_role(db, "editor")
    ghost = User(id="01HZZZZZZZZZZZZZZZZZZZZZZZ", name="Ghost", email="ghost@example.com", password="x")
    cache = RecordingCache()
    cache.set(PERMISSION_GRAPH_KEY, "graph")

    # The user row was never inserted, so the junction insert violates its foreign key
    with pytest.raises(TransactionError):
        await synchronize(db, cache, ghost, "roles", ["editor"])

    assert await junction_rows(db, user_has_roles) == set()
    assert cache.invalidations == 0
    assert cache.get(PERMISSION_GRAPH_KEY) == "graph"
