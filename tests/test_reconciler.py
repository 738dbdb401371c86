from __future__ import annotations

import threading
from datetime import timedelta
from pathlib import Path

import pytest
import yaml

from rbac_engine.core.database import SessionLocal
from rbac_engine.models import Permission, ReconciliationLock, Role, User
from rbac_engine.schemas.permission import PermissionSpec
from rbac_engine.services import run_lock
from rbac_engine.services.cache import InMemoryPermissionCache
from rbac_engine.services.decision import ResolvedPermissions
from rbac_engine.services.declaration import DeclarationError, parse_declaration
from rbac_engine.services.permissions import PermissionRegistry
from rbac_engine.services.reconciler import (
    STEP_PERMISSIONS,
    STEP_ROLES,
    STEP_USERS,
    Reconciler,
    ReconciliationInProgressError,
)

LAB_PERMISSIONS = [
    "soil.sessions.view",
    "soil.sessions.create",
    "soil.samples.update",
    "soil.reports.generate",
    "water.sessions.view",
    "water.sessions.create",
    "water.samples.update",
    "water.reports.generate",
    "fertilizer.samples.view",
    "fertilizer.samples.update",
]


def run(data: dict, *, cache=None, **options):
    db = SessionLocal()
    try:
        return Reconciler(db, cache=cache).run(parse_declaration(data), **options)
    finally:
        db.close()


def test_new_permission_is_created(declaration_data) -> None:
    run(declaration_data)
    declaration_data["permissions"].append({"name": "billing.receipt.create"})

    report = run(declaration_data)

    assert report.permissions.created == 1
    assert report.permissions.unchanged == len(declaration_data["permissions"]) - 1


def test_first_run_creates_everything(declaration_data) -> None:
    report = run(declaration_data)

    assert report.ok
    assert report.permissions.created == len(declaration_data["permissions"])
    assert report.roles.created == 4
    assert report.completed_steps == [STEP_PERMISSIONS, STEP_ROLES, STEP_USERS]


def test_role_is_created_then_unchanged() -> None:
    data = {
        "permissions": [{"name": name} for name in LAB_PERMISSIONS],
        "roles": [{"name": "lab_technician", "permissions": list(LAB_PERMISSIONS)}],
    }

    first = run(data)
    second = run(data)

    assert first.roles.created == 1
    assert second.roles.unchanged == 1
    assert second.roles.created == second.roles.updated == 0
    assert second.permissions.unchanged == len(LAB_PERMISSIONS)


def test_reconcile_is_idempotent(declaration_data) -> None:
    run(declaration_data)

    report = run(declaration_data)

    assert report.permissions.created == report.permissions.updated == 0
    assert report.roles.created == report.roles.updated == report.roles.rejected == 0
    assert report.users_refreshed == 0


def test_inactive_permission_rejects_only_the_referencing_role(declaration_data) -> None:
    db = SessionLocal()
    try:
        PermissionRegistry(db).upsert(PermissionSpec(name="reports.generate", active=False))
        db.commit()
    finally:
        db.close()

    report = run(declaration_data)

    rejected = {rejection.role: rejection.reason for rejection in report.rejected_roles}
    assert "manager" in rejected
    assert rejected["manager"] == "inactive-permission-reference"
    assert not report.ok

    db = SessionLocal()
    try:
        assistant = db.query(Role).filter(Role.name == "assistant").one()
        assert assistant.permission_names == ["projects.view", "reports.view"]
        assert db.query(Role).filter(Role.name == "manager").one_or_none() is None
    finally:
        db.close()


def test_system_roles_need_force(declaration_data) -> None:
    run(declaration_data)
    user_role = next(role for role in declaration_data["roles"] if role["name"] == "user")
    user_role["permissions"].append("reports.view")

    rejected = run(declaration_data)
    assert [rejection.reason for rejection in rejected.rejected_roles] == ["system-role-protected"]

    forced = run(declaration_data, force=True)
    assert forced.ok
    assert forced.roles.updated == 1


def test_dry_run_writes_nothing(declaration_data) -> None:
    report = run(declaration_data, dry_run=True)

    assert report.dry_run
    assert report.permissions.created == len(declaration_data["permissions"])
    assert report.roles.created == 4
    assert report.ok

    db = SessionLocal()
    try:
        assert db.query(Permission).count() == 0
        assert db.query(Role).count() == 0
    finally:
        db.close()


def test_dry_run_predicts_inactive_references(declaration_data) -> None:
    for permission in declaration_data["permissions"]:
        if permission["name"] == "reports.generate":
            permission["active"] = False

    report = run(declaration_data, dry_run=True)

    rejected = {rejection.role for rejection in report.rejected_roles}
    assert rejected == {"admin", "manager"}


def test_role_change_propagates_to_bound_users(declaration_data, make_user) -> None:
    run(declaration_data)
    manager = make_user("manager")
    cache = InMemoryPermissionCache()
    cache.set(str(manager.id), ResolvedPermissions(user_id=manager.id, role="manager"))

    manager_role = next(role for role in declaration_data["roles"] if role["name"] == "manager")
    manager_role["permissions"].append("projects.view")
    report = run(declaration_data, cache=cache)

    assert report.roles.updated == 1
    assert report.users_invalidated == 1
    assert cache.get(str(manager.id)) is None


def test_drifted_binding_is_repaired(declaration_data, make_user) -> None:
    run(declaration_data)
    member = make_user("user")
    db = SessionLocal()
    try:
        stale = db.get(User, member.id)
        stale.role_id = db.query(Role).filter(Role.name == "assistant").one().id
        db.commit()
    finally:
        db.close()

    report = run(declaration_data)

    assert report.users_refreshed == 1
    db = SessionLocal()
    try:
        repaired = db.get(User, member.id)
        assert repaired.role_id == db.query(Role).filter(Role.name == "user").one().id
    finally:
        db.close()


def test_undeclared_permissions_are_reported_not_deleted(declaration_data) -> None:
    run(declaration_data)
    declaration_data["permissions"] = [p for p in declaration_data["permissions"] if p["name"] != "projects.view"]
    for role in declaration_data["roles"]:
        role["permissions"] = [name for name in role["permissions"] if name != "projects.view"]

    report = run(declaration_data, force=True)

    assert report.undeclared_permissions == ["projects.view"]
    db = SessionLocal()
    try:
        assert db.query(Permission).filter(Permission.name == "projects.view").count() == 1
    finally:
        db.close()


def test_invalid_declaration_is_rejected_before_any_write(declaration_data) -> None:
    declaration_data["roles"][1]["permissions"].append("reports.fly")

    with pytest.raises(DeclarationError):
        run(declaration_data)

    db = SessionLocal()
    try:
        assert db.query(Permission).count() == 0
    finally:
        db.close()


def hold_lease(*, expires_in: timedelta) -> None:
    db = SessionLocal()
    try:
        now = run_lock._utcnow()
        db.add(
            ReconciliationLock(
                name=run_lock.LOCK_NAME,
                holder="other-process",
                acquired_at=now,
                expires_at=now + expires_in,
            )
        )
        db.commit()
    finally:
        db.close()


def lease_rows() -> int:
    db = SessionLocal()
    try:
        return db.query(ReconciliationLock).count()
    finally:
        db.close()


def test_concurrent_run_in_same_process_is_refused(declaration_data) -> None:
    assert run_lock._process_lock.acquire(blocking=False)
    try:
        with pytest.raises(ReconciliationInProgressError):
            run(declaration_data)
    finally:
        run_lock._process_lock.release()


def test_run_is_refused_while_another_process_holds_the_lease(declaration_data) -> None:
    hold_lease(expires_in=timedelta(minutes=5))

    with pytest.raises(ReconciliationInProgressError):
        run(declaration_data)

    assert lease_rows() == 1
    db = SessionLocal()
    try:
        assert db.query(Permission).count() == 0
    finally:
        db.close()


def test_expired_lease_is_taken_over_and_released(declaration_data) -> None:
    hold_lease(expires_in=timedelta(minutes=-1))

    report = run(declaration_data)

    assert report.roles.created == 4
    assert lease_rows() == 0


def test_cancellation_stops_between_steps(declaration_data) -> None:
    cancel = threading.Event()
    cancel.set()

    report = run(declaration_data, cancel=cancel)

    assert report.cancelled
    assert report.completed_steps == [STEP_PERMISSIONS]
    db = SessionLocal()
    try:
        assert db.query(Permission).count() == len(declaration_data["permissions"])
        assert db.query(Role).count() == 0
    finally:
        db.close()

    resumed = run(declaration_data)
    assert resumed.roles.created == 4
    assert resumed.permissions.unchanged == len(declaration_data["permissions"])


def test_run_file_reads_yaml(tmp_path: Path, declaration_data) -> None:
    path = tmp_path / "permissions.yml"
    path.write_text(yaml.safe_dump(declaration_data), encoding="utf-8")

    db = SessionLocal()
    try:
        report = Reconciler(db).run_file(path)
    finally:
        db.close()

    assert report.roles.created == 4
    assert report.to_dict()["roles"]["created"] == 4


def test_dry_run_with_force_previews_system_role_update(declaration_data) -> None:
    run(declaration_data)
    user_role = next(role for role in declaration_data["roles"] if role["name"] == "user")
    user_role["permissions"].append("reports.view")

    report = run(declaration_data, dry_run=True, force=True)

    assert report.ok
    assert report.rejected_roles == []
    assert report.roles.updated == 1
    db = SessionLocal()
    try:
        stored = db.query(Role).filter(Role.name == "user").one()
        assert stored.permission_names == ["projects.view"]
    finally:
        db.close()


def test_deactivating_a_permission_drops_cached_holders(declaration_data, make_user) -> None:
    run(declaration_data)
    manager = make_user("manager")
    member = make_user("user")
    cache = InMemoryPermissionCache()
    cache.set(str(manager.id), ResolvedPermissions(user_id=manager.id, role="manager"))
    cache.set(str(member.id), ResolvedPermissions(user_id=member.id, role="user"))

    for permission in declaration_data["permissions"]:
        if permission["name"] == "reports.generate":
            permission["active"] = False
    report = run(declaration_data, cache=cache)

    assert {rejection.role for rejection in report.rejected_roles} == {"admin", "manager"}
    assert report.users_invalidated == 1
    assert cache.get(str(manager.id)) is None
    assert cache.get(str(member.id)) is not None
