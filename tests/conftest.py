import os
import sys
from pathlib import Path
from typing import Callable, Dict, Iterator, Optional

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("RBAC_ENVIRONMENT", "test")
os.environ.setdefault("RBAC_DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("RBAC_SEED_ON_STARTUP", "false")
os.environ.setdefault("RBAC_LOG_JSON", "false")
os.environ.setdefault("RBAC_REDIS_URL", "")
os.environ.setdefault("RBAC_REDIS_TOKEN", "")

PROJECT_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(PROJECT_ROOT))

from rbac_engine.core.config import get_settings

get_settings.cache_clear()

from rbac_engine.core.database import SessionLocal, engine  # noqa: E402
from rbac_engine.main import create_app  # noqa: E402
from rbac_engine.models import Base, Role, User  # noqa: E402
from rbac_engine.services import cache as cache_module  # noqa: E402
from rbac_engine.services.declaration import parse_declaration  # noqa: E402
from rbac_engine.services.reconciler import Reconciler  # noqa: E402

ADMIN_PERMISSIONS = [
    "users.view",
    "users.create",
    "users.update",
    "users.delete",
    "users.assign",
    "roles.view",
    "roles.create",
    "roles.update",
    "roles.delete",
    "permissions.view",
    "permissions.update",
    "projects.view",
    "reports.view",
    "reports.generate",
    "billing.invoice.create",
]


def base_declaration() -> dict:
    """A small but complete declaration; returns a fresh copy each call."""

    return {
        "permissions": [{"name": name} for name in ADMIN_PERMISSIONS],
        "roles": [
            {
                "name": "admin",
                "displayName": "Administrator",
                "isSystem": True,
                "priority": 1,
                "permissions": list(ADMIN_PERMISSIONS),
            },
            {
                "name": "manager",
                "priority": 10,
                "permissions": ["users.view", "roles.view", "reports.view", "reports.generate"],
            },
            {
                "name": "assistant",
                "isSystem": True,
                "priority": 30,
                "permissions": ["projects.view", "reports.view"],
            },
            {
                "name": "user",
                "isSystem": True,
                "priority": 100,
                "permissions": ["projects.view"],
            },
        ],
    }


@pytest.fixture(autouse=True)
def reset_database() -> Iterator[None]:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    cache_module.set_permission_cache(cache_module.InMemoryPermissionCache(ttl_seconds=60))
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def client() -> Iterator[TestClient]:
    app = create_app()
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture()
def session():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.rollback()
        db.close()


@pytest.fixture()
def declaration_data() -> dict:
    return base_declaration()


@pytest.fixture()
def seeded() -> None:
    """Reconcile the base declaration into the empty database."""

    db = SessionLocal()
    try:
        report = Reconciler(db).run(parse_declaration(base_declaration()))
        assert report.ok
    finally:
        db.close()


@pytest.fixture()
def make_user() -> Callable[..., User]:
    counter = {"value": 0}

    def _make_user(role_name: str, *, email: Optional[str] = None, is_active: bool = True) -> User:
        counter["value"] += 1
        db = SessionLocal()
        try:
            role = db.query(Role).filter(Role.name == role_name).one()
            user = User(
                email=email or f"{role_name}{counter['value']}@example.com",
                name=role_name.replace("_", " ").title(),
                role=role.name,
                role_id=role.id,
                is_active=is_active,
            )
            db.add(user)
            db.commit()
            return user
        finally:
            db.close()

    return _make_user


@pytest.fixture()
def headers_for() -> Callable[[User], Dict[str, str]]:
    def _headers(user: User) -> Dict[str, str]:
        return {"X-Actor-Id": str(user.id)}

    return _headers
