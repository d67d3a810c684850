"""household_etl.shared

Shared utilities used by the household-profile and master-list imports.
Includes the exception taxonomy, RejectWriter, IngestCounters, and
report-writing support.
"""

from __future__ import annotations

import csv
import json
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class InputValidationError(ValueError):
    """Raised for fatal input problems; the store is never touched after one.

    Covers: fewer than 2 lines, a header row without an HHID column, a file
    with no usable data rows, and bytes that cannot be decoded.
    """


# ---------------------------------------------------------------------------
# RejectWriter
# ---------------------------------------------------------------------------

class RejectWriter:
    """Lazy-open CSV writer for rejected source lines."""

    FIELDNAMES = ["line_no", "raw_line", "_reject_reason"]

    def __init__(self, path: Path | None) -> None:
        self._path = path
        self._fh = None
        self._writer = None
        self.count = 0

    def write(self, line_no: int, raw_line: str, reason: str) -> None:
        self.count += 1
        if self._path is None:
            return
        if self._fh is None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._fh = open(self._path, "w", newline="", encoding="utf-8")
            self._writer = csv.DictWriter(self._fh, fieldnames=self.FIELDNAMES)
            self._writer.writeheader()
        self._writer.writerow(
            {"line_no": line_no, "raw_line": raw_line, "_reject_reason": reason}
        )

    def close(self) -> None:
        if self._fh:
            self._fh.close()
            self._fh = None


# ---------------------------------------------------------------------------
# IngestCounters
# ---------------------------------------------------------------------------

@dataclass
class IngestCounters:
    encoding: str | None = None
    lines_read: int = 0
    rows_parsed: int = 0
    rows_rejected: int = 0
    entry_ids_synthesized: int = 0
    duplicate_entry_ids: int = 0
    parse_chunks: int = 0
    persist_batches: int = 0
    rows_written: int = 0
    master_rows_written: int = 0
    unresolved_columns: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        d = {k: v for k, v in self.__dict__.items() if k != "warnings"}
        d["warnings"] = self.warnings[:50]
        return d


# ---------------------------------------------------------------------------
# Run report
# ---------------------------------------------------------------------------

def write_run_report(
    run_id: str,
    started_at: str,
    mode: str,
    source_paths: dict[str, str],
    counters: IngestCounters,
    reports_dir: Path = Path("./artifacts/reports"),
) -> Path:
    report = {
        "run_id": run_id,
        "mode": mode,
        "started_at": started_at,
        "finished_at": datetime.utcnow().isoformat(),
        **source_paths,
        "counters": counters.to_dict(),
    }
    report_path = reports_dir / f"{run_id}.json"
    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.write_text(json.dumps(report, indent=2, default=str))
    return report_path
