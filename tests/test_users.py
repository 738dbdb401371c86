from __future__ import annotations

from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from rbac_engine.models import User
from rbac_engine.schemas.user import UserCreate, UserUpdate
from rbac_engine.services.bindings import AdminFloorViolationError
from rbac_engine.services.roles import RoleNotFoundError
from rbac_engine.services.users import SelfDeletionError, UserConflictError, UserService


def test_new_users_get_the_default_role(session, seeded) -> None:
    service = UserService(session)

    user = service.create_user(UserCreate(email="Ada@Example.com", name="Ada"))

    assert user.email == "ada@example.com"
    assert user.role == "user"
    assert user.role_id is not None

    with pytest.raises(UserConflictError):
        service.create_user(UserCreate(email="ada@example.com", name="Ada again"))


def test_assign_role_writes_name_and_reference_together(session, seeded, make_user) -> None:
    member = make_user("user")
    service = UserService(session)

    updated = service.assign_role(member.id, "Manager")

    assert updated.role == "manager"
    assert updated.role_ref.name == "manager"
    assert updated.role_id == updated.role_ref.id


def test_assign_unknown_role_fails(session, seeded, make_user) -> None:
    member = make_user("user")

    with pytest.raises(RoleNotFoundError):
        UserService(session).assign_role(member.id, "ghost")


def test_sole_admin_cannot_be_demoted(session, seeded, make_user) -> None:
    admin = make_user("admin")

    with pytest.raises(AdminFloorViolationError) as excinfo:
        UserService(session).assign_role(admin.id, "user")

    assert excinfo.value.reason == "admin-floor-violation"


def test_admin_can_be_demoted_while_another_remains(session, seeded, make_user) -> None:
    first = make_user("admin")
    make_user("admin")

    demoted = UserService(session).assign_role(first.id, "user")

    assert demoted.role == "user"


def test_inactive_admins_do_not_count_toward_floor(session, seeded, make_user) -> None:
    admin = make_user("admin")
    make_user("admin", is_active=False)

    with pytest.raises(AdminFloorViolationError):
        UserService(session).update_user(admin.id, UserUpdate(is_active=False))


def test_last_admin_cannot_be_deleted_and_self_deletion_is_blocked(session, seeded, make_user) -> None:
    admin = make_user("admin")
    other = make_user("user")
    service = UserService(session)

    with pytest.raises(SelfDeletionError):
        service.delete_user(admin.id, actor_id=admin.id)
    with pytest.raises(AdminFloorViolationError):
        service.delete_user(admin.id, actor_id=other.id)

    service.delete_user(other.id, actor_id=admin.id)
    assert session.get(User, other.id) is None


def test_list_users_filters_and_paginates(session, seeded, make_user) -> None:
    for _ in range(3):
        make_user("user")
    make_user("manager", email="boss@example.com")
    service = UserService(session)

    users, total = service.list_users(role="user", limit=2)
    assert total == 3
    assert len(users) == 2

    found, total = service.list_users(search="BOSS")
    assert total == 1
    assert found[0].email == "boss@example.com"


def test_users_api_lifecycle(client: TestClient, seeded, make_user, headers_for) -> None:
    headers = headers_for(make_user("admin"))

    created = client.post("/api/v1/users", json={"email": "lin@example.com", "name": "Lin"}, headers=headers)
    assert created.status_code == 201
    user_id = created.json()["id"]
    assert created.json()["role"] == "user"

    assigned = client.put(f"/api/v1/users/{user_id}/role", json={"role": "manager"}, headers=headers)
    assert assigned.status_code == 200
    assert assigned.json()["role"] == "manager"

    resolved = client.get(f"/api/v1/users/{user_id}/permissions", headers=headers)
    assert resolved.status_code == 200
    assert resolved.json()["permissions"] == ["reports.generate", "reports.view", "roles.view", "users.view"]
    assert resolved.json()["is_admin"] is False

    listing = client.get("/api/v1/users", params={"role": "manager"}, headers=headers)
    assert listing.json()["total"] == 1
    assert listing.json()["pages"] == 1

    deactivated = client.patch(f"/api/v1/users/{user_id}", json={"is_active": False}, headers=headers)
    assert deactivated.status_code == 200
    assert deactivated.json()["is_active"] is False

    deleted = client.delete(f"/api/v1/users/{user_id}", headers=headers)
    assert deleted.status_code == 200
    assert client.get(f"/api/v1/users/{user_id}", headers=headers).status_code == 404


def test_users_api_rejects_self_deletion(client: TestClient, seeded, make_user, headers_for) -> None:
    admin = make_user("admin")
    make_user("admin")

    response = client.delete(f"/api/v1/users/{admin.id}", headers=headers_for(admin))

    assert response.status_code == 400
    assert response.json()["reason"] == "self-deletion-forbidden"


def test_users_api_rejects_demoting_last_admin(client: TestClient, seeded, make_user, headers_for) -> None:
    admin = make_user("admin")

    response = client.put(f"/api/v1/users/{admin.id}/role", json={"role": "user"}, headers=headers_for(admin))

    assert response.status_code == 409
    assert response.json()["reason"] == "admin-floor-violation"
    assert client.get(f"/api/v1/users/{admin.id}", headers=headers_for(admin)).json()["role"] == "admin"


def test_users_api_unknown_user(client: TestClient, seeded, make_user, headers_for) -> None:
    response = client.get(f"/api/v1/users/{uuid4()}", headers=headers_for(make_user("admin")))

    assert response.status_code == 404
