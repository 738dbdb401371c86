"""Converges stored permissions and roles to a declared target state.

A run validates the whole declaration first, then syncs permissions, then
roles, then propagates role changes to bound users. Each of the three steps
is committed on its own: every write is idempotent, so a run interrupted
between steps is resumed by simply running again. Rejections never abort
the run; they are collected into the report.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Set, Tuple, Union

from sqlalchemy import select
from sqlalchemy.orm import Session

from rbac_engine.core.config import AppSettings, get_settings
from rbac_engine.models.permission import Permission
from rbac_engine.models.role import Role
from rbac_engine.schemas.declaration import Declaration
from rbac_engine.services.bindings import (
    PropagationResult,
    count_bound_users,
    propagate_role,
    repair_drift,
)
from rbac_engine.services.cache import PermissionCache, get_permission_cache
from rbac_engine.services.declaration import load_declaration
from rbac_engine.services.permissions import PermissionLookup, PermissionRegistry, UpsertOutcome
from rbac_engine.services.roles import RoleService
from rbac_engine.services.run_lock import ReconciliationInProgressError, reconciliation_lock  # noqa: F401

STEP_PERMISSIONS = "permissions"
STEP_ROLES = "roles"
STEP_USERS = "users"


class CancelToken(Protocol):
    def is_set(self) -> bool:
        ...


@dataclass
class EntityCounts:
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    rejected: int = 0

    def record(self, outcome: UpsertOutcome) -> None:
        setattr(self, outcome.value, getattr(self, outcome.value) + 1)


@dataclass
class RoleRejection:
    role: str
    reason: str
    message: str


@dataclass
class ReconciliationReport:
    dry_run: bool = False
    force: bool = False
    permissions: EntityCounts = field(default_factory=EntityCounts)
    roles: EntityCounts = field(default_factory=EntityCounts)
    users_refreshed: int = 0
    users_invalidated: int = 0
    rejected_roles: List[RoleRejection] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    undeclared_permissions: List[str] = field(default_factory=list)
    completed_steps: List[str] = field(default_factory=list)
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return not self.rejected_roles and not self.cancelled

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)


class Reconciler:
    """Batch synchronization of the declarative document into storage."""

    def __init__(
        self,
        session: Session,
        *,
        cache: Optional[PermissionCache] = None,
        settings: Optional[AppSettings] = None,
    ) -> None:
        self._session = session
        self._cache = cache if cache is not None else get_permission_cache()
        self._settings = settings or get_settings()
        self._permissions = PermissionRegistry(session, cache=self._cache)
        self._roles = RoleService(session, permissions=self._permissions, cache=self._cache, settings=self._settings)
        self._logger = logging.getLogger("rbac_engine.services.reconciler")

    def run_file(
        self,
        path: Union[str, Path],
        *,
        dry_run: bool = False,
        force: bool = False,
        cancel: Optional[CancelToken] = None,
    ) -> ReconciliationReport:
        declaration = load_declaration(path)
        return self.run(declaration, dry_run=dry_run, force=force, cancel=cancel)

    def run(
        self,
        declaration: Declaration,
        *,
        dry_run: bool = False,
        force: bool = False,
        cancel: Optional[CancelToken] = None,
    ) -> ReconciliationReport:
        """Reconcile storage with an already validated ``declaration``."""

        with reconciliation_lock(self._session, lease_seconds=self._settings.reconcile_lease_seconds):
            return self._run(declaration, dry_run=dry_run, force=force, cancel=cancel)

    def _run(
        self,
        declaration: Declaration,
        *,
        dry_run: bool,
        force: bool,
        cancel: Optional[CancelToken],
    ) -> ReconciliationReport:
        report = ReconciliationReport(dry_run=dry_run, force=force)
        self._logger.info(
            "reconciliation_started",
            extra={
                "permissions": len(declaration.permissions),
                "roles": len(declaration.roles),
                "dry_run": dry_run,
                "force": force,
            },
        )

        self._sync_permissions(declaration, report, dry_run=dry_run)
        self._finish_step(STEP_PERMISSIONS, report, dry_run=dry_run)
        if self._cancelled(cancel, report):
            return report

        changed = self._sync_roles(declaration, report, dry_run=dry_run, force=force)
        self._finish_step(STEP_ROLES, report, dry_run=dry_run)
        if self._cancelled(cancel, report):
            return report

        self._propagate(declaration, changed, report, dry_run=dry_run)
        self._finish_step(STEP_USERS, report, dry_run=dry_run)

        self._logger.info(
            "reconciliation_finished",
            extra={
                "dry_run": dry_run,
                "permissions": asdict(report.permissions),
                "roles": asdict(report.roles),
                "users_refreshed": report.users_refreshed,
                "users_invalidated": report.users_invalidated,
                "rejected_roles": [rejection.role for rejection in report.rejected_roles],
            },
        )
        return report

    def _sync_permissions(self, declaration: Declaration, report: ReconciliationReport, *, dry_run: bool) -> None:
        for spec in declaration.permissions:
            result = self._permissions.upsert(spec, dry_run=dry_run)
            report.permissions.record(result.outcome)
            report.warnings.extend(result.warnings)
            report.users_invalidated += result.invalidated

        declared = set(declaration.permission_names)
        report.undeclared_permissions = sorted(self._permissions.list_names() - declared)
        if report.undeclared_permissions:
            self._logger.info(
                "undeclared_permissions_present",
                extra={"permissions": report.undeclared_permissions},
            )

    def _sync_roles(
        self,
        declaration: Declaration,
        report: ReconciliationReport,
        *,
        dry_run: bool,
        force: bool,
    ) -> Dict[str, Optional[Role]]:
        """Upsert every declared role; returns created/updated roles by name."""

        overlay = self._declared_catalog(declaration) if dry_run else None
        changed: Dict[str, Optional[Role]] = {}
        for spec in declaration.roles:
            lookup = self._overlay_lookup(overlay, spec.permissions) if overlay is not None else None
            result = self._roles.upsert(spec, force=force, dry_run=dry_run, lookup=lookup)
            report.roles.record(result.outcome)
            report.warnings.extend(result.warnings)
            if result.rejected:
                report.rejected_roles.append(
                    RoleRejection(role=spec.name, reason=result.reason or "", message=result.message or "")
                )
            elif result.outcome in (UpsertOutcome.CREATED, UpsertOutcome.UPDATED):
                changed[spec.name] = result.role
        return changed

    def _propagate(
        self,
        declaration: Declaration,
        changed: Dict[str, Optional[Role]],
        report: ReconciliationReport,
        *,
        dry_run: bool,
    ) -> None:
        total = PropagationResult()
        for name, role in changed.items():
            if role is None:
                # Dry run of a role that does not exist yet.
                bound = count_bound_users(self._session, name)
                total += PropagationResult(refreshed=bound, invalidated=bound)
                continue
            total += propagate_role(self._session, role, self._cache, dry_run=dry_run)

        untouched = [name for name in declaration.role_names if name not in changed]
        total += repair_drift(self._session, untouched, self._cache, dry_run=dry_run)

        report.users_refreshed += total.refreshed
        report.users_invalidated += total.invalidated

    def _declared_catalog(self, declaration: Declaration) -> Dict[str, Tuple[Optional[Permission], bool]]:
        """Permission catalog as it would look after the permission step."""

        names = declaration.permission_names
        stored = {
            permission.name: permission
            for permission in self._session.scalars(select(Permission).where(Permission.name.in_(names)))
        }
        catalog: Dict[str, Tuple[Optional[Permission], bool]] = {}
        for spec in declaration.permissions:
            permission = stored.get(spec.name)
            if spec.active is not None:
                active = spec.active
            else:
                active = permission.is_active if permission is not None else True
            catalog[spec.name] = (permission, active)
        return catalog

    @staticmethod
    def _overlay_lookup(catalog: Dict[str, Tuple[Optional[Permission], bool]], names: List[str]) -> PermissionLookup:
        lookup = PermissionLookup()
        wanted: Set[str] = set(names)
        for name in wanted:
            if name not in catalog:
                lookup.missing.add(name)
                continue
            permission, active = catalog[name]
            if active:
                lookup.found[name] = permission
            else:
                lookup.inactive.add(name)
        return lookup

    def _finish_step(self, step: str, report: ReconciliationReport, *, dry_run: bool) -> None:
        if not dry_run:
            self._session.commit()
        report.completed_steps.append(step)
        self._logger.info("reconciliation_step_completed", extra={"step": step, "dry_run": dry_run})

    def _cancelled(self, cancel: Optional[CancelToken], report: ReconciliationReport) -> bool:
        if cancel is None or not cancel.is_set():
            return False
        report.cancelled = True
        self._logger.warning("reconciliation_cancelled", extra={"completed_steps": report.completed_steps})
        return True


def default_declaration_path(settings: Optional[AppSettings] = None) -> Path:
    settings = settings or get_settings()
    return Path(settings.declaration_path)
