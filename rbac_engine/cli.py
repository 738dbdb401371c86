"""Command line entry point for reconciling the permission declaration."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Optional

from rbac_engine.core.config import get_settings
from rbac_engine.core.database import session_scope
from rbac_engine.services.declaration import DeclarationError
from rbac_engine.services.reconciler import (
    ReconciliationInProgressError,
    ReconciliationReport,
    Reconciler,
    default_declaration_path,
)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_IN_PROGRESS = 2


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Reconcile stored roles and permissions with the declaration file.")
    parser.add_argument("--config", default=None, help="Path to the YAML declaration (defaults to RBAC_DECLARATION_PATH).")
    parser.add_argument("--dry-run", action="store_true", help="Report what would change without writing.")
    parser.add_argument("--force", action="store_true", help="Allow updates to system roles.")
    parser.add_argument("--json", action="store_true", help="Print the report as JSON.")
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging.")
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    settings = get_settings()
    path = args.config or default_declaration_path(settings)

    try:
        with session_scope() as session:
            report = Reconciler(session, settings=settings).run_file(path, dry_run=args.dry_run, force=args.force)
    except DeclarationError as exc:
        logging.error("Declaration rejected: %s", exc)
        for error in exc.errors:
            logging.error("  %s", error)
        return EXIT_FAILED
    except ReconciliationInProgressError as exc:
        logging.error("%s", exc)
        return EXIT_IN_PROGRESS

    if args.json:
        print(json.dumps(report.to_dict(), indent=2, sort_keys=True))
    else:
        _print_summary(report)
    return EXIT_OK if report.ok else EXIT_FAILED


def _print_summary(report: ReconciliationReport) -> None:
    prefix = "[dry-run] " if report.dry_run else ""
    for label, counts in (("permissions", report.permissions), ("roles", report.roles)):
        print(
            f"{prefix}{label}: created={counts.created} updated={counts.updated} "
            f"unchanged={counts.unchanged} rejected={counts.rejected}"
        )
    print(f"{prefix}users: refreshed={report.users_refreshed} invalidated={report.users_invalidated}")
    for rejection in report.rejected_roles:
        print(f"{prefix}rejected role {rejection.role} ({rejection.reason}): {rejection.message}")
    for warning in report.warnings:
        print(f"{prefix}warning: {warning}")
    if report.undeclared_permissions:
        print(f"{prefix}undeclared permissions kept: {', '.join(report.undeclared_permissions)}")


if __name__ == "__main__":
    sys.exit(main())
