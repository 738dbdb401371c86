from __future__ import annotations

import json
from datetime import timedelta
from pathlib import Path

import yaml

from rbac_engine import cli
from rbac_engine.core.database import SessionLocal
from rbac_engine.models import ReconciliationLock, Role
from rbac_engine.services import run_lock


def write_declaration(tmp_path: Path, data: dict) -> Path:
    path = tmp_path / "permissions.yml"
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


def test_cli_reconciles_and_prints_json(tmp_path: Path, declaration_data, capsys) -> None:
    path = write_declaration(tmp_path, declaration_data)

    exit_code = cli.main(["--config", str(path), "--json"])

    assert exit_code == cli.EXIT_OK
    report = json.loads(capsys.readouterr().out)
    assert report["roles"]["created"] == 4
    assert report["dry_run"] is False


def test_cli_dry_run_leaves_storage_untouched(tmp_path: Path, declaration_data, capsys) -> None:
    path = write_declaration(tmp_path, declaration_data)

    exit_code = cli.main(["--config", str(path), "--dry-run"])

    assert exit_code == cli.EXIT_OK
    assert "[dry-run] roles: created=4" in capsys.readouterr().out
    db = SessionLocal()
    try:
        assert db.query(Role).count() == 0
    finally:
        db.close()


def test_cli_fails_on_invalid_declaration(tmp_path: Path) -> None:
    path = write_declaration(tmp_path, {"permissions": [{"name": "users.fly"}], "roles": []})

    assert cli.main(["--config", str(path)]) == cli.EXIT_FAILED


def test_cli_fails_on_rejected_roles(tmp_path: Path, declaration_data, capsys) -> None:
    path = write_declaration(tmp_path, declaration_data)
    assert cli.main(["--config", str(path)]) == cli.EXIT_OK

    user_role = next(role for role in declaration_data["roles"] if role["name"] == "user")
    user_role["permissions"].append("reports.view")
    path = write_declaration(tmp_path, declaration_data)

    assert cli.main(["--config", str(path)]) == cli.EXIT_FAILED
    assert "rejected role user (system-role-protected)" in capsys.readouterr().out
    assert cli.main(["--config", str(path), "--force"]) == cli.EXIT_OK


def test_cli_reports_run_in_progress(tmp_path: Path, declaration_data) -> None:
    path = write_declaration(tmp_path, declaration_data)

    db = SessionLocal()
    try:
        now = run_lock._utcnow()
        db.add(
            ReconciliationLock(
                name=run_lock.LOCK_NAME,
                holder="other-process",
                acquired_at=now,
                expires_at=now + timedelta(minutes=5),
            )
        )
        db.commit()
    finally:
        db.close()

    assert cli.main(["--config", str(path)]) == cli.EXIT_IN_PROGRESS


def test_cli_dry_run_with_force_previews_system_role_update(tmp_path: Path, declaration_data, capsys) -> None:
    path = write_declaration(tmp_path, declaration_data)
    assert cli.main(["--config", str(path)]) == cli.EXIT_OK
    capsys.readouterr()

    user_role = next(role for role in declaration_data["roles"] if role["name"] == "user")
    user_role["permissions"].append("reports.view")
    path = write_declaration(tmp_path, declaration_data)

    assert cli.main(["--config", str(path), "--dry-run", "--force"]) == cli.EXIT_OK
    output = capsys.readouterr().out
    assert "[dry-run] roles: created=0 updated=1 unchanged=3 rejected=0" in output
    assert "rejected role" not in output
    db = SessionLocal()
    try:
        assert db.query(Role).filter(Role.name == "user").one().permission_names == ["projects.view"]
    finally:
        db.close()
