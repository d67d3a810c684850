"""Normalization functions for household profile ingestion.

Unless noted, functions accept str | None.  Parsed member fields are never
None: absent or blank cells become "" and unparseable ages become 0.
"""

from __future__ import annotations

import re

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


# ---------------------------------------------------------------------------
# Rule 1: trim
# ---------------------------------------------------------------------------

def trim(value: str | None) -> str | None:
    """Strip leading/trailing whitespace; treat empty string as None."""
    if value is None:
        return None
    v = value.strip()
    return v if v else None


# ---------------------------------------------------------------------------
# Rule 2: normalize_header  (column resolution)
# ---------------------------------------------------------------------------

def normalize_header(value: str | None) -> str:
    """Trim and uppercase a header cell.  A leading BOM is dropped."""
    if value is None:
        return ""
    return value.lstrip("\ufeff").strip().upper()


# ---------------------------------------------------------------------------
# Rule 3: normalize_hhid  (lookup keys)
# ---------------------------------------------------------------------------

def normalize_hhid(value: str | None) -> str:
    """Uppercase and trim an HHID.  None → ""."""
    v = trim(value)
    return v.upper() if v else ""


def strip_dashes(value: str) -> str:
    return value.replace("-", "")


# ---------------------------------------------------------------------------
# Rule 4: parse_int_safe
# ---------------------------------------------------------------------------

def parse_int_safe(value: str | None, default: int = 0) -> int:
    """Parse the leading integer of a cell, returning ``default`` on failure.

    Mirrors spreadsheet exports where ages appear as "34", "34.0" or
    "34 yrs"; anything without a leading integer falls back to ``default``.
    """
    v = trim(value)
    if v is None:
        return default
    m = _LEADING_INT.match(v)
    if not m:
        return default
    return int(m.group(1))


# ---------------------------------------------------------------------------
# Rule 5: escape_like
# ---------------------------------------------------------------------------

def escape_like(fragment: str) -> str:
    """Escape LIKE/ILIKE wildcards so user input is matched literally."""
    return (
        fragment.replace("\\", "\\\\")
        .replace("%", "\\%")
        .replace("_", "\\_")
    )
