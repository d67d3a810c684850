"""household_etl.store

Local PostgreSQL store for household profile data.

Two independently-replaced collections:
  - household_member — PK entry_id; secondary indexes on hhid and last_name
  - master_record    — PK hhid

One HouseholdStore wraps one long-lived psycopg connection for the whole
session.  The connection runs in autocommit mode and every write goes
through an explicit ``conn.transaction()`` block, so a bulk replace is:

  1. TRUNCATE household_member              (own transaction, committed)
  2. INSERT batch 0 .. batch N              (one transaction per batch)

A failure in batch k leaves batches 0..k-1 committed; the error propagates.

Schema versions are ordered SQL files under ``migrations/``; each one only
adds tables/indexes, and the applied version is recorded in
store_schema_version.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Sequence
from pathlib import Path

import psycopg

from household_etl.models import (
    MASTER_COLUMNS,
    MEMBER_COLUMNS,
    HouseholdMember,
    MasterRecord,
    master_from_row,
    member_from_row,
)
from household_etl.normalize import escape_like

log = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"
DEFAULT_BATCH_SIZE = 5000
DEFAULT_SEARCH_LIMIT = 50

_MIGRATION_NAME = re.compile(r"^(\d{4})_.+\.sql$")

_MEMBER_COLS_SQL = ", ".join(MEMBER_COLUMNS)
_MASTER_COLS_SQL = ", ".join(MASTER_COLUMNS)

_INSERT_MEMBER_SQL = (
    f"INSERT INTO household_member ({_MEMBER_COLS_SQL}) "
    f"VALUES ({', '.join(['%s'] * len(MEMBER_COLUMNS))}) "
    "ON CONFLICT (entry_id) DO UPDATE SET "
    + ", ".join(f"{c} = EXCLUDED.{c}" for c in MEMBER_COLUMNS if c != "entry_id")
)

_INSERT_MASTER_SQL = (
    f"INSERT INTO master_record ({_MASTER_COLS_SQL}) "
    f"VALUES ({', '.join(['%s'] * len(MASTER_COLUMNS))}) "
    "ON CONFLICT (hhid) DO UPDATE SET "
    + ", ".join(f"{c} = EXCLUDED.{c}" for c in MASTER_COLUMNS if c != "hhid")
)


def list_migrations(migrations_dir: Path = MIGRATIONS_DIR) -> list[tuple[int, Path]]:
    """Return (version, path) for every migration file, ordered by version."""
    out = []
    for path in migrations_dir.iterdir():
        m = _MIGRATION_NAME.match(path.name)
        if m:
            out.append((int(m.group(1)), path))
    return sorted(out)


def _member_params(record: HouseholdMember) -> tuple:
    return tuple(getattr(record, c) for c in MEMBER_COLUMNS)


def _master_params(record: MasterRecord) -> tuple:
    return tuple(getattr(record, c) for c in MASTER_COLUMNS)


class HouseholdStore:
    """Session-scoped handle on the household database."""

    def __init__(self, conn: psycopg.Connection) -> None:
        if not conn.autocommit:
            conn.autocommit = True
        self._conn = conn

    @classmethod
    def connect(cls, dsn: str, read_only: bool = False) -> HouseholdStore:
        """Open the store, applying any pending migrations first."""
        conn = psycopg.connect(dsn, autocommit=True)
        store = cls(conn)
        try:
            store.ensure_schema()
        except Exception:
            conn.close()
            raise
        if read_only:
            conn.read_only = True
        return store

    @property
    def conn(self) -> psycopg.Connection:
        return self._conn

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> HouseholdStore:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # -----------------------------------------------------------------------
    # Schema
    # -----------------------------------------------------------------------

    def schema_version(self) -> int:
        row = self._conn.execute(
            "SELECT to_regclass('store_schema_version') IS NOT NULL"
        ).fetchone()
        if not row or not row[0]:
            return 0
        row = self._conn.execute(
            "SELECT coalesce(max(version), 0) FROM store_schema_version"
        ).fetchone()
        return int(row[0]) if row else 0

    def ensure_schema(self, migrations_dir: Path = MIGRATIONS_DIR) -> int:
        """Apply migrations newer than the recorded version; return the version."""
        with self._conn.transaction():
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS store_schema_version (
                    version    integer PRIMARY KEY,
                    applied_at timestamptz NOT NULL DEFAULT now()
                )
                """
            )
        current = self.schema_version()
        for version, path in list_migrations(migrations_dir):
            if version <= current:
                continue
            log.info("applying migration %s", path.name)
            with self._conn.transaction():
                self._conn.execute(path.read_text(encoding="utf-8"))
                self._conn.execute(
                    "INSERT INTO store_schema_version (version) VALUES (%s)",
                    (version,),
                )
            current = version
        return current

    # -----------------------------------------------------------------------
    # household_member writes
    # -----------------------------------------------------------------------

    def clear(self) -> None:
        with self._conn.transaction():
            self._conn.execute("TRUNCATE household_member")

    def bulk_replace(
        self,
        records: Sequence[HouseholdMember],
        batch_size: int = DEFAULT_BATCH_SIZE,
        on_progress: Callable[[int], None] | None = None,
    ) -> int:
        """Replace every household_member row with ``records``.

        The clear is committed before the first batch is written.  Progress
        (0-100) is reported after each committed batch.  Returns the number
        of records written.
        """
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        total = len(records)
        self.clear()
        log.info("household_member cleared; writing %d rows", total)
        if total == 0:
            if on_progress:
                on_progress(100)
            return 0

        written = 0
        for start in range(0, total, batch_size):
            batch = records[start:start + batch_size]
            try:
                with self._conn.transaction():
                    with self._conn.cursor() as cur:
                        cur.executemany(
                            _INSERT_MEMBER_SQL, [_member_params(r) for r in batch]
                        )
            except psycopg.Error:
                log.error(
                    "batch at offset %d failed; %d rows already committed",
                    start, written,
                )
                raise
            written += len(batch)
            log.debug("committed batch ending at %d of %d", written, total)
            if on_progress:
                on_progress(written * 100 // total)
        return written

    # -----------------------------------------------------------------------
    # household_member reads
    # -----------------------------------------------------------------------

    def count(self) -> int:
        row = self._conn.execute("SELECT count(*) FROM household_member").fetchone()
        return int(row[0]) if row else 0

    def get_by_group_key(self, hhid: str) -> list[HouseholdMember]:
        """All members sharing ``hhid`` (exact match on the hhid index)."""
        rows = self._conn.execute(
            f"SELECT {_MEMBER_COLS_SQL} FROM household_member "
            "WHERE hhid = %s ORDER BY entry_id",
            (hhid,),
        ).fetchall()
        return [member_from_row(r) for r in rows]

    def search(
        self, fragment: str, limit: int = DEFAULT_SEARCH_LIMIT
    ) -> list[HouseholdMember]:
        """Case-insensitive substring match on hhid, first name or last name.

        Walks household_member in primary-key order and stops as soon as
        ``limit`` rows have matched.
        """
        pattern = f"%{escape_like(fragment)}%"
        rows = self._conn.execute(
            f"SELECT {_MEMBER_COLS_SQL} FROM household_member "
            "WHERE hhid ILIKE %(p)s OR first_name ILIKE %(p)s OR last_name ILIKE %(p)s "
            "ORDER BY entry_id LIMIT %(limit)s",
            {"p": pattern, "limit": limit},
        ).fetchall()
        return [member_from_row(r) for r in rows]

    # -----------------------------------------------------------------------
    # master_record
    # -----------------------------------------------------------------------

    def replace_all_master(self, records: Sequence[MasterRecord]) -> int:
        """Replace the master list in a single transaction."""
        with self._conn.transaction():
            self._conn.execute("TRUNCATE master_record")
            if records:
                with self._conn.cursor() as cur:
                    cur.executemany(
                        _INSERT_MASTER_SQL, [_master_params(r) for r in records]
                    )
        log.info("master_record replaced with %d rows", len(records))
        return len(records)

    def get_all_master(self) -> list[MasterRecord]:
        rows = self._conn.execute(
            f"SELECT {_MASTER_COLS_SQL} FROM master_record ORDER BY hhid"
        ).fetchall()
        return [master_from_row(r) for r in rows]
