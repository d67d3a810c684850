"""household_etl.import_household_profile

Household profile ingestion pipeline.

Consumes one household profile export (CSV, UTF-8 or a legacy single-byte
encoding) and replaces the household_member collection with its rows.

Processing order:
  1. Decode bytes at the read boundary (explicit encoding, or auto:
     UTF-8 first, then cp1252, then latin-1).
  2. Validate the header row and resolve columns.   → fatal errors stop here;
                                                      the store is untouched
  3. Parse in chunks into memory                    → parse progress 0-100
  4. Bulk replace the store in batches              → persist progress 0-100
  5. Signal completion (no payload)

Parsing finishes completely before the first store write, so the whole
dataset is held in memory once as HouseholdMember objects.

Also hosts the master-list import, which is small enough to replace in
one transaction.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Protocol

from household_etl.member_parser import (
    ProgressCallback,
    iter_member_chunks,
    open_member_file,
    parse_master_records,
)
from household_etl.models import HouseholdMember, MasterRecord
from household_etl.settings import AUTO_ENCODING, IngestSettings
from household_etl.shared import IngestCounters, InputValidationError, RejectWriter

log = logging.getLogger(__name__)

# tried in order when the encoding is "auto"
AUTO_ENCODINGS = ("utf-8-sig", "cp1252", "latin-1")


class MemberSink(Protocol):
    def bulk_replace(
        self,
        records: Sequence[HouseholdMember],
        batch_size: int = ...,
        on_progress: Callable[[int], None] | None = ...,
    ) -> int: ...

    def replace_all_master(self, records: Sequence[MasterRecord]) -> int: ...


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------

def decode_bytes(raw: bytes, encoding: str = AUTO_ENCODING) -> tuple[str, str]:
    """Decode ``raw`` and return (text, encoding actually used).

    With an explicit encoding, undecodable bytes are a fatal input error
    rather than being silently replaced.
    """
    if encoding == AUTO_ENCODING:
        for candidate in AUTO_ENCODINGS:
            try:
                return raw.decode(candidate), candidate
            except UnicodeDecodeError:
                continue
    try:
        return raw.decode(encoding), encoding
    except LookupError as exc:
        raise InputValidationError(f"Unknown encoding: {encoding!r}") from exc
    except UnicodeDecodeError as exc:
        raise InputValidationError(
            f"File is not valid {encoding} (byte {exc.start}); "
            "choose the export's encoding explicitly"
        ) from exc


def read_source(source: Path | bytes, encoding: str = AUTO_ENCODING) -> tuple[str, str]:
    """Read and decode a file path or raw bytes."""
    if isinstance(source, Path):
        try:
            raw = source.read_bytes()
        except OSError as exc:
            raise InputValidationError(f"File unreadable: {source}: {exc}") from exc
    else:
        raw = source
    return decode_bytes(raw, encoding)


# ---------------------------------------------------------------------------
# Household profile import
# ---------------------------------------------------------------------------

def ingest_household_text(
    store: MemberSink,
    text: str,
    settings: IngestSettings | None = None,
    counters: IngestCounters | None = None,
    rejects: RejectWriter | None = None,
    on_parse_progress: ProgressCallback | None = None,
    on_persist_progress: ProgressCallback | None = None,
    on_complete: Callable[[], None] | None = None,
) -> IngestCounters:
    """Parse already-decoded ``text`` and replace the stored member rows.

    Raises InputValidationError before any store mutation when the input is
    unusable.  Storage errors propagate from the store unchanged.
    """
    settings = settings or IngestSettings()
    counters = counters if counters is not None else IngestCounters()

    member_file = open_member_file(text)
    counters.unresolved_columns = member_file.unresolved
    if member_file.unresolved:
        log.info("columns not found in header: %s", ", ".join(member_file.unresolved))

    records: list[HouseholdMember] = []
    for chunk in iter_member_chunks(
        member_file,
        chunk_size=settings.parse_chunk_size,
        min_columns=settings.min_columns,
        counters=counters,
        rejects=rejects,
        on_progress=on_parse_progress,
    ):
        records.extend(chunk)
    del member_file

    if not records:
        raise InputValidationError(
            f"No valid data rows ({counters.rows_rejected} line(s) rejected)."
        )

    distinct = len({r.entry_id for r in records})
    if distinct != len(records):
        counters.duplicate_entry_ids = len(records) - distinct
        counters.warnings.append(
            f"{counters.duplicate_entry_ids} duplicate ENTRY_ID value(s); "
            "later rows overwrite earlier ones"
        )

    log.info(
        "parsed %d rows (%d rejected) in %d chunks; persisting",
        len(records), counters.rows_rejected, counters.parse_chunks,
    )

    def _persist_progress(pct: int) -> None:
        counters.persist_batches += 1
        if on_persist_progress:
            on_persist_progress(pct)

    counters.rows_written = store.bulk_replace(
        records,
        batch_size=settings.persist_batch_size,
        on_progress=_persist_progress,
    )

    if on_complete:
        on_complete()
    return counters


def run_household_import(
    store: MemberSink,
    source: Path | bytes,
    settings: IngestSettings | None = None,
    counters: IngestCounters | None = None,
    rejects: RejectWriter | None = None,
    on_parse_progress: ProgressCallback | None = None,
    on_persist_progress: ProgressCallback | None = None,
    on_complete: Callable[[], None] | None = None,
) -> IngestCounters:
    """Decode ``source`` and run the household profile import."""
    settings = settings or IngestSettings()
    counters = counters if counters is not None else IngestCounters()

    text, used = read_source(source, settings.encoding)
    counters.encoding = used
    log.info("decoded source as %s", used)

    try:
        return ingest_household_text(
            store, text, settings, counters, rejects,
            on_parse_progress, on_persist_progress, on_complete,
        )
    finally:
        if rejects is not None:
            rejects.close()


# ---------------------------------------------------------------------------
# Master list import
# ---------------------------------------------------------------------------

def run_master_import(
    store: MemberSink,
    source: Path | bytes,
    encoding: str = AUTO_ENCODING,
    counters: IngestCounters | None = None,
) -> IngestCounters:
    """Decode, parse and replace the HHID master list."""
    counters = counters if counters is not None else IngestCounters()
    text, used = read_source(source, encoding)
    counters.encoding = used
    records = parse_master_records(text)
    counters.rows_parsed = len(records)
    if not records:
        raise InputValidationError("Master CSV has no rows with an HHID.")
    counters.master_rows_written = store.replace_all_master(records)
    return counters
