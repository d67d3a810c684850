"""household_etl.member_parser

Chunked parser for household profile ("masterlist extract") CSV exports,
plus the small master-list parser used for entry-form auto-fill.

Column resolution is name-based.  Header cells are trimmed and uppercased,
then each semantic field is resolved ONCE per import against FIELD_SYNONYMS:
  1. first header that equals any synonym
  2. otherwise, first header that contains any synonym and that no other
     field matched exactly
Rows are then read by plain index access.

Rows are produced lazily in chunks of ``chunk_size`` lines so a caller can
report progress and do other work between chunks; a 700k-line export is
several hundred chunks at the default size.
"""

from __future__ import annotations

import csv
import logging
import re
from collections.abc import Callable, Iterator
from dataclasses import dataclass

from household_etl.models import HouseholdMember, MasterRecord
from household_etl.normalize import (
    normalize_header,
    parse_int_safe,
    trim,
)
from household_etl.shared import IngestCounters, InputValidationError, RejectWriter

log = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]

DEFAULT_CHUNK_SIZE = 2000
MIN_COLUMNS = 5

# semantic field → accepted header synonyms, in priority order
FIELD_SYNONYMS: dict[str, tuple[str, ...]] = {
    "region": ("REGION",),
    "province": ("PROVINCE",),
    "municipality": ("MUNICIPALITY",),
    "barangay": ("BARANGAY",),
    "hhid": ("HH_ID", "HHID"),
    "entry_id": ("ENTRY_ID",),
    "first_name": ("FIRST_NAME",),
    "middle_name": ("MIDDLE_NAME",),
    "last_name": ("LAST_NAME",),
    "ext_name": ("EXT_NAME",),
    "birthday": ("BIRTHDAY",),
    "age": ("AGE",),
    "sex": ("SEX",),
    "client_status": ("CLIENT_STATUS",),
    "cs_category": ("CS_CATEGORY",),
    "member_status": ("MEMBER_STATUS",),
    "relationship": ("RELATION_TO_HH_HEAD",),
    "civil_status": ("CIVIL_STATUS",),
    "is_grantee": ("GRANTEE",),
    "hh_set": ("HH_SET",),
    "solo_parent": ("SOLO_PARENT",),
    "ip_affiliation": ("IP_AFFILIATION",),
    "pcn": ("PCN", "PHILSYS_CARD_NO"),
    "pcn_remarks": ("PCN_REMARKS",),
    "pregnancy_status": ("PREGNANCY_STATUS",),
    "lmp": ("LMP",),
    "health_monitored": ("HEALTH_MONITORED",),
    "health_facility": ("HEALTH_FACILITY",),
    "health_facility_status": ("HEALTH_FACILITY_STATUS",),
    "reason_not_attending_health": ("REASON_FOR_NOT_ATTENDING_HEALTH",),
    "health_remarks": ("REASON_HEALTH_REMARKS",),
    "disability": ("DISABILITY_TYPES",),
    "child_bene": ("CHILD_BENE",),
    "age_on_educ": ("AGE_ON_EDUC",),
    "grade_level": ("GRADE_LEVEL",),
    "shs_strand": ("SHS_STRAND",),
    "shs_track": ("SHS_TRACK",),
    "educ_monit": ("EDUC_MONIT",),
    "attending_school": ("ATTEND_SCHOOL",),
    "school_name": ("SCHOOL_NAME",),
    "reason_not_attending_school": ("REASON_FOR_NOT_ATTENDING_SCHOOL",),
    "educ_remarks": ("REASON_EDUC_REMARKS",),
    "lrn": ("LRN", "LEARNER'S ID", "LEARNER_ID"),
    "lrn_remarks": ("LRN_REMARKS",),
}

MASTER_SYNONYMS: dict[str, tuple[str, ...]] = {
    "hhid": ("hhid", "id", "hh id"),
    "province": ("province",),
    "municipality": ("municipality", "city", "muni"),
    "barangay": ("barangay", "brgy"),
    "grantee_name": ("granteename", "grantee_name", "name", "grantee name"),
}
DEFAULT_PROVINCE = "MASBATE"

_LINE_SPLIT = re.compile(r"\r?\n")


# ---------------------------------------------------------------------------
# Line-level helpers
# ---------------------------------------------------------------------------

def split_lines(text: str) -> list[str]:
    """Split decoded file text into physical lines (one record per line)."""
    return _LINE_SPLIT.split(text)


def parse_csv_line(line: str) -> list[str]:
    """Parse one CSV record line into trimmed cells.

    Quoted fields may contain commas; ``""`` inside quotes is a literal quote.
    Raises csv.Error on lines the csv module refuses.
    """
    reader = csv.reader([line], skipinitialspace=True)
    try:
        cells = next(reader)
    except StopIteration:
        return []
    return [c.strip() for c in cells]


def resolve_columns(
    headers: list[str],
    synonyms: dict[str, tuple[str, ...]] = FIELD_SYNONYMS,
) -> dict[str, int]:
    """Map each semantic field to a header index, or -1 when unresolved.

    ``headers`` must already be normalized (see normalize_header).  The
    substring fallback never picks a column another field matched exactly,
    so "PCN" does not fall back onto "PCN_REMARKS".
    """
    mapping: dict[str, int] = {
        field_name: next((i for i, h in enumerate(headers) if h in keys), -1)
        for field_name, keys in synonyms.items()
    }
    claimed = {idx for idx in mapping.values() if idx != -1}
    for field_name, keys in synonyms.items():
        if mapping[field_name] != -1:
            continue
        mapping[field_name] = next(
            (
                i for i, h in enumerate(headers)
                if i not in claimed and any(k in h for k in keys)
            ),
            -1,
        )
    return mapping


# ---------------------------------------------------------------------------
# Parsed member file
# ---------------------------------------------------------------------------

@dataclass
class MemberFile:
    """A validated member export: physical lines plus the resolved column map."""

    lines: list[str]
    columns: dict[str, int]

    @property
    def total_lines(self) -> int:
        return len(self.lines)

    @property
    def unresolved(self) -> list[str]:
        return sorted(k for k, v in self.columns.items() if v == -1)


def open_member_file(text: str) -> MemberFile:
    """Split and validate a member export; resolve columns from its header.

    Raises InputValidationError when the input has fewer than 2 lines, the
    header row carries no HHID column, or there is no non-blank data line.
    """
    lines = split_lines(text)
    if len(lines) < 2:
        raise InputValidationError("File empty or missing headers.")

    try:
        headers = [normalize_header(h) for h in parse_csv_line(lines[0])]
    except csv.Error as exc:
        raise InputValidationError(f"Unreadable header row: {exc}") from exc
    columns = resolve_columns(headers)
    if columns["hhid"] == -1:
        raise InputValidationError(
            "Missing header row: no HHID column found "
            f"(expected one of {list(FIELD_SYNONYMS['hhid'])})."
        )
    if not any(line.strip() for line in lines[1:]):
        raise InputValidationError("File has a header row but no data rows.")
    return MemberFile(lines=lines, columns=columns)


def _build_member(
    cells: list[str],
    columns: dict[str, int],
    line_no: int,
    counters: IngestCounters,
) -> HouseholdMember:
    def get(field_name: str) -> str:
        idx = columns[field_name]
        if 0 <= idx < len(cells):
            return cells[idx]
        return ""

    values = {name: get(name) for name in FIELD_SYNONYMS}
    values["age"] = parse_int_safe(values["age"])
    member = HouseholdMember(**values)
    if not member.entry_id:
        # positional discriminator: unique within one import
        member.entry_id = f"{member.hhid}-{line_no}"
        counters.entry_ids_synthesized += 1
    return member


def iter_member_chunks(
    member_file: MemberFile,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    min_columns: int = MIN_COLUMNS,
    counters: IngestCounters | None = None,
    rejects: RejectWriter | None = None,
    on_progress: ProgressCallback | None = None,
) -> Iterator[list[HouseholdMember]]:
    """Yield parsed members ``chunk_size`` lines at a time.

    Progress (0-100, non-decreasing, ending at 100) is reported after each
    chunk.  Lines with fewer than ``min_columns`` cells or that the csv module
    rejects are skipped; blank lines are ignored.
    """
    counters = counters if counters is not None else IngestCounters()
    rejects = rejects if rejects is not None else RejectWriter(None)
    lines = member_file.lines
    total = member_file.total_lines
    columns = member_file.columns

    line_idx = 1
    while line_idx < total:
        end = min(line_idx + chunk_size, total)
        chunk: list[HouseholdMember] = []
        for i in range(line_idx, end):
            line = lines[i]
            if not line.strip():
                continue
            counters.lines_read += 1
            line_no = i + 1
            try:
                cells = parse_csv_line(line)
            except csv.Error:
                rejects.write(line_no, line, "malformed_csv_line")
                counters.rows_rejected += 1
                continue
            if len(cells) < min_columns:
                rejects.write(line_no, line, "too_few_columns")
                counters.rows_rejected += 1
                continue
            chunk.append(_build_member(cells, columns, line_no, counters))

        line_idx = end
        counters.parse_chunks += 1
        counters.rows_parsed += len(chunk)
        log.debug("parsed lines up to %d of %d (%d rows)", end, total, len(chunk))
        if on_progress:
            on_progress(end * 100 // total)
        yield chunk


def parse_members(
    text: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    min_columns: int = MIN_COLUMNS,
) -> list[HouseholdMember]:
    """Parse a whole export eagerly.  Convenience wrapper for small inputs."""
    member_file = open_member_file(text)
    out: list[HouseholdMember] = []
    for chunk in iter_member_chunks(member_file, chunk_size, min_columns):
        out.extend(chunk)
    return out


# ---------------------------------------------------------------------------
# Master list
# ---------------------------------------------------------------------------

def parse_master_records(text: str) -> list[MasterRecord]:
    """Parse the HHID master list.

    Headers are matched case-insensitively against MASTER_SYNONYMS; for each
    field the first synonym column with a non-empty value wins.  Rows
    without an HHID are dropped.  A repeated HHID keeps the last row.
    Raises InputValidationError when no header matches an HHID synonym.
    """
    lines = [line for line in split_lines(text) if line.strip()]
    if len(lines) < 2:
        raise InputValidationError("Master CSV is missing headers.")

    try:
        rows = list(csv.reader(lines, skipinitialspace=True))
    except csv.Error as exc:
        raise InputValidationError(f"Unreadable master CSV: {exc}") from exc
    headers = [h.lstrip("\ufeff").strip().lower() for h in rows[0]]
    candidates = {
        field_name: [headers.index(k) for k in keys if k in headers]
        for field_name, keys in MASTER_SYNONYMS.items()
    }
    if not candidates["hhid"]:
        raise InputValidationError(
            "Master CSV has no HHID column "
            f"(expected one of {list(MASTER_SYNONYMS['hhid'])})."
        )

    def pick(cells: list[str], field_name: str) -> str:
        for idx in candidates[field_name]:
            if idx < len(cells):
                v = trim(cells[idx])
                if v:
                    return v
        return ""

    by_hhid: dict[str, MasterRecord] = {}
    for cells in rows[1:]:
        hhid = pick(cells, "hhid")
        if not hhid:
            continue
        by_hhid[hhid] = MasterRecord(
            hhid=hhid,
            province=pick(cells, "province") or DEFAULT_PROVINCE,
            municipality=pick(cells, "municipality"),
            barangay=pick(cells, "barangay"),
            grantee_name=pick(cells, "grantee_name"),
        )
    return list(by_hhid.values())
