import pytest
import pytest_asyncio

from app.core import config
from app.features.permissions.models import user_has_roles
from tests.factories import auth_headers, junction_rows, make_permissions, make_role, make_user


@pytest_asyncio.fixture()
async def admin(db):
    """A user holding every coarse-grained management permission."""
    await make_permissions(db, "manage users", "manage roles", "manage permissions")
    return await make_user(
        db, "Admin", permissions=["manage users", "manage roles", "manage permissions"]
    )


@pytest.fixture()
def headers(admin) -> dict[str, str]:
    return auth_headers(admin)


# ============================================================================
# Access control
# ============================================================================

@pytest.mark.parametrize("path", ["/admin/users", "/admin/roles", "/admin/permissions"])
async def test_admin_routes_require_manage_permission(client, db, path) -> None:
    user = await make_user(db, "Nobody")

    response = await client.get(path, headers=auth_headers(user))

    assert response.status_code == 403
    assert response.json()["detail"].startswith("Permission denied: manage ")


async def test_admin_routes_require_authentication(client) -> None:
    response = await client.get("/admin/users")

    assert response.status_code in (401, 403)


async def test_invalid_token_is_rejected(client) -> None:
    response = await client.get("/admin/users", headers={"Authorization": "Bearer not-a-token"})

    assert response.status_code == 401


async def test_super_admin_bypasses_route_guards(client, db) -> None:
    await make_role(db, config.SUPER_ADMIN_ROLE)
    root = await make_user(db, "Root", roles=[config.SUPER_ADMIN_ROLE])

    for path in ("/admin/users", "/admin/roles", "/admin/permissions"):
        response = await client.get(path, headers=auth_headers(root))
        assert response.status_code == 200, path


async def test_permission_granted_through_role_opens_route(client, db) -> None:
    await make_permissions(db, "manage roles")
    await make_role(db, "role-manager", permissions=["manage roles"])
    user = await make_user(db, "Manager", roles=["role-manager"])

    assert (await client.get("/admin/roles", headers=auth_headers(user))).status_code == 200
    assert (await client.get("/admin/users", headers=auth_headers(user))).status_code == 403


# ============================================================================
# Users
# ============================================================================

async def test_create_and_list_users(client, db, headers) -> None:
    await make_permissions(db, "posts.view")
    await make_role(db, "editor", permissions=["posts.view"])

    response = await client.post(
        "/admin/users",
        headers=headers,
        json={
            "name": "Grace",
            "email": "grace@example.com",
            "password": "password123",
            "password_confirmation": "password123",
            "roles": ["editor"],
            "permissions": ["posts.view"],
        },
    )
    assert response.status_code == 201
    created = response.json()
    assert "password" not in created
    assert [r["name"] for r in created["roles"]] == ["editor"]
    assert [p["name"] for p in created["permissions"]] == ["posts.view"]

    listing = (await client.get("/admin/users", params={"search": "grace"}, headers=headers)).json()
    assert listing["total"] == 1
    assert listing["items"][0]["id"] == created["id"]
    assert [r["name"] for r in listing["roles"]] == ["editor"]
    assert "posts.view" in [p["name"] for p in listing["permissions"]]


async def test_create_user_with_unknown_role_is_rejected(client, headers) -> None:
    response = await client.post(
        "/admin/users",
        headers=headers,
        json={
            "name": "Grace",
            "email": "grace@example.com",
            "password": "password123",
            "password_confirmation": "password123",
            "roles": ["wizard"],
        },
    )

    assert response.status_code == 422
    assert response.json() == {"errors": {"roles": "Unknown roles: wizard"}}


async def test_invalid_email_is_a_request_error(client, headers) -> None:
    response = await client.post(
        "/admin/users",
        headers=headers,
        json={
            "name": "Grace",
            "email": "not-an-email",
            "password": "password123",
            "password_confirmation": "password123",
        },
    )

    assert response.status_code == 400
    assert "email" in response.json()


async def test_admin_create_requires_password_confirmation(client, headers) -> None:
    response = await client.post(
        "/admin/users",
        headers=headers,
        json={"name": "Grace", "email": "grace@example.com", "password": "password123"},
    )

    assert response.status_code == 400
    assert "password_confirmation" in response.json()
    listing = (await client.get("/admin/users", headers=headers)).json()
    assert listing["total"] == 1


async def test_update_user_replaces_roles(client, db, headers) -> None:
    await make_role(db, "editor")
    await make_role(db, "user")
    grace = await make_user(db, "Grace", roles=["editor"])

    response = await client.put(
        f"/admin/users/{grace.id}",
        headers=headers,
        json={"name": "Grace", "email": "grace@example.com", "roles": ["user"]},
    )

    assert response.status_code == 200
    assert [r["name"] for r in response.json()["roles"]] == ["user"]


async def test_update_missing_user_is_404(client, headers) -> None:
    response = await client.put(
        "/admin/users/01HNOTAREALUSERID000000000",
        headers=headers,
        json={"name": "Ghost", "email": "ghost@example.com"},
    )

    assert response.status_code == 404
    assert response.json() == {"detail": "User not found"}


async def test_delete_user(client, db, headers) -> None:
    grace = await make_user(db, "Grace")

    response = await client.delete(f"/admin/users/{grace.id}", headers=headers)

    assert response.status_code == 204
    listing = (await client.get("/admin/users", headers=headers)).json()
    assert [u["name"] for u in listing["items"]] == ["Admin"]


async def test_admin_cannot_delete_own_account(client, admin, headers) -> None:
    response = await client.delete(f"/admin/users/{admin.id}", headers=headers)

    assert response.status_code == 422
    assert response.json() == {"errors": {"error": "You cannot delete your own account."}}
    listing = (await client.get("/admin/users", headers=headers)).json()
    assert listing["total"] == 1


# ============================================================================
# Roles
# ============================================================================

async def test_role_crud(client, db, headers) -> None:
    await make_permissions(db, "posts.view", "posts.edit")

    created = await client.post(
        "/admin/roles", headers=headers, json={"name": "editor", "permissions": ["posts.view"]}
    )
    assert created.status_code == 201
    role_id = created.json()["id"]

    updated = await client.put(
        f"/admin/roles/{role_id}",
        headers=headers,
        json={"name": "writer", "permissions": ["posts.edit", "posts.view"]},
    )
    assert updated.status_code == 200
    assert updated.json()["name"] == "writer"
    assert [p["name"] for p in updated.json()["permissions"]] == ["posts.edit", "posts.view"]

    listing = (await client.get("/admin/roles", headers=headers)).json()
    assert [r["name"] for r in listing["items"]] == ["writer"]
    assert {p["name"] for p in listing["permissions"]} >= {"posts.view", "posts.edit"}

    deleted = await client.delete(f"/admin/roles/{role_id}", headers=headers)
    assert deleted.status_code == 204
    assert (await client.get("/admin/roles", headers=headers)).json()["total"] == 0


async def test_create_role_with_unknown_permission(client, headers) -> None:
    response = await client.post(
        "/admin/roles", headers=headers, json={"name": "editor", "permissions": ["nonexistent.permission"]}
    )

    assert response.status_code == 422
    assert response.json() == {"errors": {"permissions": "Unknown permissions: nonexistent.permission"}}
    assert (await client.get("/admin/roles", headers=headers)).json()["total"] == 0


async def test_blank_role_name_is_rejected(client, headers) -> None:
    response = await client.post("/admin/roles", headers=headers, json={"name": "   "})

    assert response.status_code == 400
    assert "name" in response.json()


async def test_deleting_role_revokes_access_immediately(client, db, admin, headers) -> None:
    role = await make_role(db, "role-manager", permissions=["manage roles"])
    manager = await make_user(db, "Manager", roles=["role-manager"])
    assert (await client.get("/admin/roles", headers=auth_headers(manager))).status_code == 200

    response = await client.delete(f"/admin/roles/{role.id}", headers=headers)

    assert response.status_code == 204
    assert (await client.get("/admin/roles", headers=auth_headers(manager))).status_code == 403
    assert await junction_rows(db, user_has_roles) == set()


# ============================================================================
# Permissions
# ============================================================================

async def test_permission_crud(client, headers) -> None:
    created = await client.post("/admin/permissions", headers=headers, json={"name": "reports.export"})
    assert created.status_code == 201
    permission = created.json()
    assert permission["guard_name"] == "web"

    duplicate = await client.post("/admin/permissions", headers=headers, json={"name": "reports.export"})
    assert duplicate.status_code == 422
    assert duplicate.json() == {"errors": {"name": "The name has already been taken."}}

    renamed = await client.put(
        f"/admin/permissions/{permission['id']}", headers=headers, json={"name": "reports.download"}
    )
    assert renamed.status_code == 200
    assert renamed.json()["name"] == "reports.download"

    listing = (await client.get("/admin/permissions", params={"search": "reports"}, headers=headers)).json()
    assert [p["name"] for p in listing["items"]] == ["reports.download"]

    deleted = await client.delete(f"/admin/permissions/{permission['id']}", headers=headers)
    assert deleted.status_code == 204
    missing = await client.delete(f"/admin/permissions/{permission['id']}", headers=headers)
    assert missing.status_code == 404


async def test_permission_list_paginates(client, db, headers) -> None:
    await make_permissions(db, *[f"posts.p{i}" for i in range(20)])

    response = await client.get("/admin/permissions", params={"page": 3}, headers=headers)

    body = response.json()
    assert body["total"] == 23
    assert body["per_page"] == 10
    assert body["last_page"] == 3
    assert len(body["items"]) == 3


# ============================================================================
# Authentication
# ============================================================================

async def test_register_login_and_me(client, db) -> None:
    await make_permissions(db, "x.y", "posts.edit", "posts.view")
    await make_role(db, "editor", permissions=["posts.edit", "posts.view"])

    registered = await client.post(
        "/auth/register",
        json={
            "name": "Grace",
            "email": "grace@example.com",
            "password": "password123",
            "password_confirmation": "password123",
        },
    )
    assert registered.status_code == 201
    assert registered.json()["roles"] == []

    login = await client.post("/auth/login", json={"email": "grace@example.com", "password": "password123"})
    assert login.status_code == 200
    token = login.json()["access_token"]

    me = await client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["user"]["email"] == "grace@example.com"
    assert me.json()["auth"] == {"roleNames": [], "permissionNames": [], "permissionLookup": {}}


async def test_me_reports_effective_permissions(client, db) -> None:
    await make_permissions(db, "x.y", "posts.edit", "posts.view")
    await make_role(db, "editor", permissions=["posts.edit", "posts.view"])
    user = await make_user(db, "Grace", roles=["editor"], permissions=["x.y"])

    response = await client.get("/auth/me", headers=auth_headers(user))

    assert response.json()["auth"] == {
        "roleNames": ["editor"],
        "permissionNames": ["posts.edit", "posts.view", "x.y"],
        "permissionLookup": {"posts.edit": True, "posts.view": True, "x.y": True},
    }


async def test_me_marks_everything_granted_for_super_admin(client, db) -> None:
    await make_permissions(db, "manage users", "posts.view")
    await make_role(db, config.SUPER_ADMIN_ROLE)
    root = await make_user(db, "Root", roles=[config.SUPER_ADMIN_ROLE])

    response = await client.get("/auth/me", headers=auth_headers(root))

    auth = response.json()["auth"]
    assert auth["roleNames"] == [config.SUPER_ADMIN_ROLE]
    assert auth["permissionNames"] == []
    assert auth["permissionLookup"] == {"manage users": True, "posts.view": True}


async def test_me_lookup_includes_permissions_created_later(client, db) -> None:
    await make_role(db, config.SUPER_ADMIN_ROLE)
    root = await make_user(db, "Root", roles=[config.SUPER_ADMIN_ROLE])
    assert (await client.get("/auth/me", headers=auth_headers(root))).json()["auth"]["permissionLookup"] == {}

    created = await client.post("/admin/permissions", headers=auth_headers(root), json={"name": "reports.export"})
    assert created.status_code == 201

    auth = (await client.get("/auth/me", headers=auth_headers(root))).json()["auth"]
    assert auth["permissionLookup"] == {"reports.export": True}


async def test_login_with_wrong_password(client, db) -> None:
    await make_user(db, "Grace")

    response = await client.post("/auth/login", json={"email": "grace@example.com", "password": "wrong-password"})

    assert response.status_code == 401
    assert response.json() == {"detail": "These credentials do not match our records."}


async def test_stats(client, db, headers) -> None:
    await make_role(db, "editor")

    response = await client.get("/admin/stats", headers=headers)

    assert response.json() == {"users": 1, "roles": 1, "permissions": 3}


async def test_health(client) -> None:
    assert (await client.get("/health")).json() == {"status": "healthy"}
