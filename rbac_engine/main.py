"""FastAPI application factory."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from rbac_engine.api.error_handlers import register_exception_handlers
from rbac_engine.api.routers import get_api_router
from rbac_engine.core.config import AppSettings, get_settings
from rbac_engine.core.database import session_scope
from rbac_engine.core.logging import configure_logging
from rbac_engine.services.reconciler import Reconciler, ReconciliationInProgressError, default_declaration_path

logger = logging.getLogger("rbac_engine.main")


@asynccontextmanager
async def lifespan(app: FastAPI):  # noqa: D401
    """Application lifespan context for startup/shutdown hooks."""

    settings = get_settings()
    path = default_declaration_path(settings)
    if settings.seed_on_startup:
        if path.exists():
            try:
                with session_scope() as session:
                    report = Reconciler(session, settings=settings).run_file(path)
            except ReconciliationInProgressError:
                logger.warning("startup_reconciliation_skipped", extra={"path": str(path), "reason": "in-progress"})
            else:
                logger.info("startup_reconciliation_finished", extra={"ok": report.ok, "path": str(path)})
        else:
            logger.warning("startup_declaration_missing", extra={"path": str(path)})

    yield


def create_app(settings: AppSettings | None = None) -> FastAPI:
    """Application factory."""

    settings = settings or get_settings()
    configure_logging(settings)

    app = FastAPI(
        title="RBAC Engine",
        version="1.0.0",
        lifespan=lifespan,
    )

    register_exception_handlers(app)
    app.include_router(get_api_router())
    return app


app = create_app()
