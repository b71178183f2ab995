"""center_registry.cli

Unified command line for the registry.

Modes:
  check_duplicate   read-only duplicate check for --email/--phone in --program
  register_csv      register every row of --csv-path (reject CSV + run report)
  link_siblings     link --person-id to each --sibling-id
  unlink_siblings   soft-remove the edge between --person-id and each --sibling-id
  detect_siblings   list potential siblings of --person-id (read-only)

Writes run inside one outer transaction that commits on success and rolls
back on --dry-run or on any DB error (exit 1).
"""

from __future__ import annotations

import json
import sys
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import click
import psycopg

from center_registry.config import (
    DEFAULT_CONFIG_PATH,
    ConfigValidationError,
    RegistrationConfig,
    load_config,
)
from center_registry.db import connect
from center_registry.duplicate_detection import check_duplicate
from center_registry.errors import RegistryError
from center_registry.models import Program
from center_registry.registration import (
    CsvHeaderError,
    RegistrationCounters,
    build_registration_report,
    run_registration_import,
)
from center_registry.shared import RejectWriter, utc_now_iso, write_run_report
from center_registry.sibling_detection import detect_potential_siblings
from center_registry.siblings import link_siblings, remove_sibling

MODES = [
    "check_duplicate",
    "register_csv",
    "link_siblings",
    "unlink_siblings",
    "detect_siblings",
]


@dataclass
class UnlinkSummary:
    removed: int = 0
    failed: int = 0
    failures: list[tuple[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "removed": self.removed,
            "failed": self.failed,
            "failures": [{"siblingId": s, "error": e} for s, e in self.failures],
        }


# ---------------------------------------------------------------------------
# Flag validation
# ---------------------------------------------------------------------------

def _fail(run_id: str, message: str) -> None:
    click.echo(f"[{run_id}] ERROR: {message}", err=True)
    sys.exit(1)


def _validate_check_duplicate_flags(
    email: str | None,
    phone: str | None,
    program: str | None,
    run_id: str,
) -> None:
    if not email and not phone:
        _fail(run_id, "--email or --phone is required for check_duplicate mode.")
    if not program:
        _fail(run_id, "--program is required for check_duplicate mode.")


def _validate_person_flags(
    mode: str,
    person_id: str | None,
    sibling_ids: tuple[str, ...],
    run_id: str,
    need_siblings: bool = True,
) -> None:
    if not person_id:
        _fail(run_id, f"--person-id is required for {mode} mode.")
    if need_siblings and not sibling_ids:
        _fail(run_id, f"at least one --sibling-id is required for {mode} mode.")


def _load_config_or_exit(config_path: str | None, run_id: str) -> RegistrationConfig:
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
    if not path.exists():
        if config_path:
            _fail(run_id, f"config file not found: {path}")
        click.echo(f"[{run_id}] No config at {path}; using defaults")
        return RegistrationConfig()
    try:
        config = load_config(path)
    except ConfigValidationError as exc:
        _fail(run_id, f"invalid config {path}: {exc}")
    click.echo(f"[{run_id}] Config {path} sha256={config.yaml_hash}")
    return config


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


# ---------------------------------------------------------------------------
# Mode runners
# ---------------------------------------------------------------------------

def _run_check_duplicate(
    run_id: str,
    db_dsn: str,
    email: str | None,
    phone: str | None,
    program: Program,
) -> None:
    conn = connect(db_dsn)
    try:
        with conn.transaction(force_rollback=True):
            result = check_duplicate(conn, email, phone, program)
    finally:
        conn.close()
    _echo_json(result.to_dict())
    for w in result.warnings:
        click.echo(f"[{run_id}] WARNING: {w}", err=True)


def _run_register_csv(
    run_id: str,
    started_at: str,
    db_dsn: str,
    config: RegistrationConfig,
    csv_path: str,
    rejects_path: str,
    dry_run: bool,
) -> None:
    counters = RegistrationCounters()
    rejects = RejectWriter(Path(rejects_path))
    conn = connect(db_dsn)
    try:
        with conn.transaction(force_rollback=dry_run):
            run_registration_import(conn, Path(csv_path), config, rejects, counters)
            if counters.db_errors > 0 and not dry_run:
                raise psycopg.Rollback()
    except CsvHeaderError as exc:
        _fail(run_id, f"FATAL: {exc}")
    finally:
        conn.close()
        rejects.close()

    click.echo(build_registration_report(counters, dry_run=dry_run))
    report_path = write_run_report(
        run_id, started_at, "register_csv", dry_run,
        {"csv_path": csv_path, "rejects_path": rejects_path,
         "config_hash": config.yaml_hash},
        counters,
    )
    click.echo(f"[{run_id}] Run report: {report_path}")

    if dry_run:
        click.echo(f"[{run_id}] DRY RUN; rolled back.")
    if counters.db_errors > 0:
        _fail(run_id, f"{counters.db_errors} DB error(s); rolled back.")


def _run_link_siblings(
    run_id: str,
    started_at: str,
    db_dsn: str,
    person_id: str,
    sibling_ids: list[str],
    dry_run: bool,
) -> None:
    conn = connect(db_dsn)
    try:
        with conn.transaction(force_rollback=dry_run):
            result = link_siblings(conn, person_id, sibling_ids)
    finally:
        conn.close()

    _echo_json(result.to_dict())
    report_path = write_run_report(
        run_id, started_at, "link_siblings", dry_run,
        {"person_id": person_id, "sibling_ids": sibling_ids},
        result,
    )
    click.echo(f"[{run_id}] Run report: {report_path}")
    if dry_run:
        click.echo(f"[{run_id}] DRY RUN; rolled back.")
    if result.failed > 0:
        _fail(run_id, f"{result.failed} sibling link(s) failed; {result.added} added.")


def _run_unlink_siblings(
    run_id: str,
    started_at: str,
    db_dsn: str,
    person_id: str,
    sibling_ids: list[str],
    dry_run: bool,
) -> None:
    summary = UnlinkSummary()
    conn = connect(db_dsn)
    try:
        with conn.transaction(force_rollback=dry_run):
            for sibling_id in sibling_ids:
                result = remove_sibling(conn, person_id, sibling_id)
                if result.success:
                    summary.removed += 1
                else:
                    summary.failed += 1
                    summary.failures.append((sibling_id, result.error or ""))
    finally:
        conn.close()

    _echo_json(summary.to_dict())
    report_path = write_run_report(
        run_id, started_at, "unlink_siblings", dry_run,
        {"person_id": person_id, "sibling_ids": sibling_ids},
        summary,
    )
    click.echo(f"[{run_id}] Run report: {report_path}")
    if dry_run:
        click.echo(f"[{run_id}] DRY RUN; rolled back.")
    if summary.failed > 0:
        _fail(run_id, f"{summary.failed} sibling unlink(s) failed.")


def _run_detect_siblings(run_id: str, db_dsn: str, person_id: str) -> None:
    conn = connect(db_dsn)
    try:
        with conn.transaction(force_rollback=True):
            candidates = detect_potential_siblings(conn, person_id)
    except RegistryError as exc:
        _fail(run_id, str(exc))
    finally:
        conn.close()
    _echo_json([c.to_dict() for c in candidates])
    click.echo(f"[{run_id}] {len(candidates)} potential sibling(s)")


# ---------------------------------------------------------------------------
# Unified CLI
# ---------------------------------------------------------------------------

@click.command()
@click.option(
    "--mode",
    required=True,
    type=click.Choice(MODES),
    help="Operation to run",
)
@click.option("--db-dsn", required=True, envvar="DB_DSN", help="PostgreSQL DSN")
@click.option("--config", "config_path", default=None, type=click.Path(),
              help=f"Registration YAML (default {DEFAULT_CONFIG_PATH})")
@click.option("--email", default=None, help="[check_duplicate] Email to look up")
@click.option("--phone", default=None, help="[check_duplicate] Phone to look up")
@click.option(
    "--program",
    default=None,
    type=click.Choice([p.value for p in Program]),
    help="[check_duplicate] Program being registered into",
)
@click.option("--csv-path", default=None, type=click.Path(), help="[register_csv] Input CSV")
@click.option(
    "--rejects-path",
    default="./artifacts/rejects/registration_rejects.csv",
    show_default=True,
    help="[register_csv] Reject CSV",
)
@click.option("--person-id", default=None, help="[link_siblings|unlink_siblings|detect_siblings] Person id")
@click.option("--sibling-id", "sibling_ids", multiple=True, help="[link_siblings|unlink_siblings] Sibling person id (repeatable)")
@click.option("--dry-run", is_flag=True, default=False)
@click.option("--run-id", default=None, help="Override UUID for log correlation")
def main(
    mode: str,
    db_dsn: str,
    config_path: str | None,
    email: str | None,
    phone: str | None,
    program: str | None,
    csv_path: str | None,
    rejects_path: str,
    person_id: str | None,
    sibling_ids: tuple[str, ...],
    dry_run: bool,
    run_id: str | None,
) -> None:
    """Center registry CLI."""
    run_id = run_id or str(uuid.uuid4())
    started_at = utc_now_iso()

    click.echo(f"[{run_id}] Starting {mode} run (dry_run={dry_run})")

    if mode == "check_duplicate":
        _validate_check_duplicate_flags(email, phone, program, run_id)
        _run_check_duplicate(run_id, db_dsn, email, phone, Program(program))
    elif mode == "register_csv":
        if not csv_path:
            _fail(run_id, "--csv-path is required for register_csv mode.")
        config = _load_config_or_exit(config_path, run_id)
        _run_register_csv(
            run_id, started_at, db_dsn, config,
            csv_path=csv_path,  # type: ignore[arg-type]
            rejects_path=rejects_path,
            dry_run=dry_run,
        )
    elif mode == "link_siblings":
        _validate_person_flags(mode, person_id, sibling_ids, run_id)
        _run_link_siblings(
            run_id, started_at, db_dsn,
            person_id=person_id,  # type: ignore[arg-type]
            sibling_ids=list(sibling_ids),
            dry_run=dry_run,
        )
    elif mode == "unlink_siblings":
        _validate_person_flags(mode, person_id, sibling_ids, run_id)
        _run_unlink_siblings(
            run_id, started_at, db_dsn,
            person_id=person_id,  # type: ignore[arg-type]
            sibling_ids=list(sibling_ids),
            dry_run=dry_run,
        )
    elif mode == "detect_siblings":
        _validate_person_flags(mode, person_id, sibling_ids, run_id, need_siblings=False)
        _run_detect_siblings(run_id, db_dsn, person_id)  # type: ignore[arg-type]


if __name__ == "__main__":
    main()
