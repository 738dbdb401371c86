from __future__ import annotations

from uuid import uuid4

from fastapi.testclient import TestClient

from rbac_engine.models import Role, User
from rbac_engine.services.authorization import PermissionResolver
from rbac_engine.services.cache import get_permission_cache


def authorize(client: TestClient, user: User, permissions: list[str], **extra) -> dict:
    payload = {"user_id": str(user.id), "permissions": permissions, **extra}
    response = client.post("/api/v1/authorize", json=payload)
    response.raise_for_status()
    return response.json()


def test_health_check(client: TestClient) -> None:
    response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_user_without_billing_permission_is_denied(client: TestClient, seeded, make_user) -> None:
    member = make_user("user")

    body = authorize(client, member, ["billing.invoice.create"])

    assert body == {
        "allowed": False,
        "reason": "missing:billing.invoice.create",
        "missing": ["billing.invoice.create"],
    }


def test_any_mode_and_admin_bypass(client: TestClient, seeded, make_user) -> None:
    manager = make_user("manager")
    admin = make_user("admin")

    assert authorize(client, manager, ["billing.invoice.create", "reports.view"], mode="any")["allowed"] is True
    assert authorize(client, admin, ["system.settings.update"])["reason"] == "admin-bypass"

    strict = authorize(client, admin, ["system.settings.update"], allow_admin=False)
    assert strict["allowed"] is False
    assert strict["missing"] == ["system.settings.update"]


def test_ownership_is_checked_when_owner_given(client: TestClient, seeded, make_user) -> None:
    manager = make_user("manager")

    own = authorize(client, manager, ["reports.generate"], owner_id=str(manager.id))
    other = authorize(client, manager, ["reports.generate"], owner_id=str(uuid4()))

    assert own["allowed"] is True
    assert other == {"allowed": False, "reason": "not-owner", "missing": []}


def test_authorize_unknown_user_returns_404(client: TestClient, seeded) -> None:
    response = client.post("/api/v1/authorize", json={"user_id": str(uuid4()), "permissions": ["users.view"]})

    assert response.status_code == 404


def test_authorize_requires_a_permission(client: TestClient, seeded, make_user) -> None:
    member = make_user("user")

    response = client.post("/api/v1/authorize", json={"user_id": str(member.id), "permissions": []})

    assert response.status_code == 422


def test_guard_without_actor_returns_401(client: TestClient, seeded) -> None:
    response = client.get("/api/v1/roles")

    assert response.status_code == 401
    assert response.json()["detail"] == "Authentication required"


def test_guard_with_unknown_or_inactive_actor_returns_401(client: TestClient, seeded, make_user, headers_for) -> None:
    inactive = make_user("admin", is_active=False)

    unknown = client.get("/api/v1/roles", headers={"X-Actor-Id": str(uuid4())})
    disabled = client.get("/api/v1/roles", headers=headers_for(inactive))

    assert unknown.status_code == 401
    assert disabled.status_code == 401


def test_guard_denies_with_missing_permissions(client: TestClient, seeded, make_user, headers_for) -> None:
    member = make_user("user")

    response = client.post(
        "/api/v1/users",
        json={"email": "x@example.com", "name": "X"},
        headers=headers_for(member),
    )

    assert response.status_code == 403
    assert response.json() == {
        "detail": "Missing permission: users.create",
        "reason": "missing:users.create",
        "missing": ["users.create"],
    }


def test_user_bound_to_inactive_role_resolves_empty(session, seeded, make_user) -> None:
    manager = make_user("manager")
    role = session.query(Role).filter(Role.name == "manager").one()
    role.is_active = False
    session.flush()

    resolved = PermissionResolver(session).resolve_live(manager.id)

    assert resolved.permissions == frozenset()
    assert resolved.is_admin is False


def test_resolution_excludes_inactive_permissions(session, seeded, make_user) -> None:
    manager = make_user("manager")
    role = session.query(Role).filter(Role.name == "manager").one()
    next(p for p in role.permissions if p.name == "reports.generate").is_active = False
    session.flush()

    resolved = PermissionResolver(session).resolve_live(manager.id)

    assert "reports.generate" not in resolved.permissions
    assert "reports.view" in resolved.permissions


def test_deactivation_invalidates_cached_permissions(client: TestClient, seeded, make_user, headers_for) -> None:
    admin = make_user("admin")
    manager = make_user("manager")

    assert authorize(client, manager, ["reports.view"])["allowed"] is True
    cached = get_permission_cache().get(str(manager.id))
    assert cached is not None
    assert cached.role == "manager"

    response = client.patch(f"/api/v1/users/{manager.id}", json={"is_active": False}, headers=headers_for(admin))
    assert response.status_code == 200
    assert get_permission_cache().get(str(manager.id)) is None

    denied = client.post("/api/v1/authorize", json={"user_id": str(manager.id), "permissions": ["reports.view"]})
    assert denied.status_code == 403
    assert denied.json()["reason"] == "user-inactive"
