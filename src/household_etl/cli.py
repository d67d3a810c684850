"""household_etl.cli

Unified CLI entrypoint for the household database.

Modes (--mode):
  household_import — replace household_member from a profile export CSV
  master_import    — replace master_record from an HHID master list CSV
  count            — print the stored member count
  search           — print members matching --query (hhid / first / last name)
  roster           — print the roster for --hhid, head first
  autofill         — print the master-list match for --hhid

Usage (household_import):
    python -m household_etl.cli \\
        --mode household_import \\
        --db-dsn "$DB_DSN" \\
        --csv-path "rawEvidence/masterlist_extract.csv" \\
        --encoding cp1252 \\
        --rejects-path "artifacts/rejects/household_rejects.csv"

Usage (search):
    python -m household_etl.cli --mode search --query "DELA CRUZ"
"""

from __future__ import annotations

import logging
import sys
import uuid
from datetime import datetime
from pathlib import Path

import click
import psycopg

from household_etl.import_household_profile import (
    run_household_import,
    run_master_import,
)
from household_etl.lookup import HouseholdLookup, MasterIndex, find_head
from household_etl.settings import (
    IngestSettings,
    SettingsValidationError,
    load_settings,
)
from household_etl.shared import (
    IngestCounters,
    InputValidationError,
    RejectWriter,
    write_run_report,
)
from household_etl.store import HouseholdStore

IMPORT_MODES = ("household_import", "master_import")
READ_MODES = ("count", "search", "roster", "autofill")


def _progress_echo(run_id: str, label: str):
    last = {"pct": -1}

    def _echo(pct: int) -> None:
        # one line per 10% step
        if pct // 10 != last["pct"] // 10:
            click.echo(f"[{run_id}] {label}: {pct}%")
        last["pct"] = pct

    return _echo


def _run_household_import(
    run_id: str,
    store: HouseholdStore,
    csv_path: Path,
    settings: IngestSettings,
    counters: IngestCounters,
    rejects: RejectWriter,
) -> None:
    try:
        run_household_import(
            store,
            csv_path,
            settings=settings,
            counters=counters,
            rejects=rejects,
            on_parse_progress=_progress_echo(run_id, "Parsing CSV"),
            on_persist_progress=_progress_echo(run_id, "Saving to database"),
        )
    except InputValidationError as exc:
        click.echo(f"[{run_id}] FATAL: Import Error: {exc}", err=True)
        sys.exit(1)
    except psycopg.Error as exc:
        click.echo(
            f"[{run_id}] FATAL: database error during import: {exc}; "
            "batches committed before the failure remain in the store",
            err=True,
        )
        sys.exit(1)

    click.echo(
        f"[{run_id}] Done: {counters.lines_read} lines read, "
        f"{counters.rows_rejected} rejected, "
        f"{counters.rows_written} rows written "
        f"({counters.entry_ids_synthesized} entry ids synthesized, "
        f"encoding={counters.encoding})"
    )
    for warning in counters.warnings:
        click.echo(f"[{run_id}] WARNING: {warning}", err=True)


def _print_member_line(member) -> None:
    click.echo(
        f"{member.hhid}\t{member.entry_id}\t{member.last_name}, {member.first_name}"
        f"\t{member.relationship}\t{member.barangay}, {member.municipality}"
    )


@click.command()
@click.option(
    "--mode",
    type=click.Choice(IMPORT_MODES + READ_MODES),
    default="household_import",
    show_default=True,
)
@click.option("--db-dsn", required=True, envvar="DB_DSN", help="PostgreSQL DSN (or $DB_DSN)")
@click.option("--csv-path", default=None, type=click.Path(), help="[*_import] Input CSV")
@click.option(
    "--encoding",
    default=None,
    help="[*_import] Source encoding, e.g. utf-8, cp1252; 'auto' tries UTF-8 first",
)
@click.option("--chunk-size", default=None, type=int, help="[household_import] Lines per parse chunk")
@click.option("--batch-size", default=None, type=int, help="[household_import] Rows per write transaction")
@click.option("--settings-file", default=None, type=click.Path(), help="YAML settings file")
@click.option("--query", default=None, help="[search] Fragment of HHID, first or last name")
@click.option("--hhid", default=None, help="[roster|autofill] Household ID")
@click.option(
    "--rejects-path",
    default=None,
    type=click.Path(),
    help="[household_import] Write rejected lines to this CSV",
)
@click.option("--run-id", default=None, help="Override UUID for log correlation")
@click.option("--verbose", "-v", is_flag=True, default=False)
def main(
    mode: str,
    db_dsn: str,
    csv_path: str | None,
    encoding: str | None,
    chunk_size: int | None,
    batch_size: int | None,
    settings_file: str | None,
    query: str | None,
    hhid: str | None,
    rejects_path: str | None,
    run_id: str | None,
    verbose: bool,
) -> None:
    """Household database import and lookup CLI."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    run_id = run_id or str(uuid.uuid4())
    started_at = datetime.utcnow().isoformat()

    try:
        settings = load_settings(Path(settings_file) if settings_file else None)
        settings = settings.with_overrides(
            parse_chunk_size=chunk_size,
            persist_batch_size=batch_size,
            encoding=encoding,
        )
    except (SettingsValidationError, FileNotFoundError) as exc:
        click.echo(f"[{run_id}] FATAL: invalid settings: {exc}", err=True)
        sys.exit(1)

    if mode in IMPORT_MODES and not csv_path:
        click.echo(f"[{run_id}] ERROR: --csv-path is required for {mode}", err=True)
        sys.exit(1)

    try:
        store = HouseholdStore.connect(db_dsn, read_only=mode in READ_MODES)
    except psycopg.Error as exc:
        click.echo(f"[{run_id}] FATAL: cannot open database: {exc}", err=True)
        sys.exit(1)

    with store:
        if mode == "household_import":
            click.echo(f"[{run_id}] Starting {mode} run")
            counters = IngestCounters()
            rejects = RejectWriter(Path(rejects_path) if rejects_path else None)
            _run_household_import(
                run_id, store, Path(csv_path), settings, counters, rejects,  # type: ignore[arg-type]
            )
            report_path = write_run_report(
                run_id, started_at, mode, {"csv_path": str(csv_path)}, counters,
            )
            click.echo(f"[{run_id}] Run report: {report_path}")
        elif mode == "master_import":
            click.echo(f"[{run_id}] Starting {mode} run")
            try:
                counters = run_master_import(store, Path(csv_path), settings.encoding)  # type: ignore[arg-type]
            except (InputValidationError, psycopg.Error) as exc:
                click.echo(f"[{run_id}] FATAL: master import failed: {exc}", err=True)
                sys.exit(1)
            click.echo(
                f"[{run_id}] Done: {counters.master_rows_written} master records saved"
            )
            write_run_report(
                run_id, started_at, mode, {"csv_path": str(csv_path)}, counters,
            )
        elif mode == "count":
            click.echo(str(store.count()))
        elif mode == "search":
            lookup = HouseholdLookup.from_settings(store, settings)
            results = lookup.search_by_fragment(query)
            for member in results:
                _print_member_line(member)
            click.echo(f"[{run_id}] {len(results)} match(es)", err=True)
        elif mode == "roster":
            lookup = HouseholdLookup.from_settings(store, settings)
            roster = lookup.find_by_key(hhid)
            if not roster:
                click.echo(f"[{run_id}] No members found for HHID {hhid!r}", err=True)
                return
            head = find_head(roster)
            for member in [head] + [m for m in roster if m is not head]:
                _print_member_line(member)
        elif mode == "autofill":
            index = MasterIndex().load_from(store)
            result = index.match(hhid)
            if not result.matched:
                click.echo(f"[{run_id}] {result.status.value}: {hhid!r}", err=True)
                sys.exit(2)
            record = result.record
            click.echo(
                f"{record.hhid}\t{record.province}\t{record.municipality}"
                f"\t{record.barangay}\t{record.grantee_name}"
            )


if __name__ == "__main__":
    main()
