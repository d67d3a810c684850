"""household_etl.settings

YAML-based tunables for ingestion and lookup.

Usage:
    from pathlib import Path
    from household_etl.settings import load_settings

    settings = load_settings(Path("config/household_etl.yml"))
    settings = settings.with_overrides(persist_batch_size=10000)
"""

from __future__ import annotations

import codecs
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

import yaml

AUTO_ENCODING = "auto"


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class SettingsValidationError(ValueError):
    """Raised when a settings file fails validation."""


# ---------------------------------------------------------------------------
# IngestSettings
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class IngestSettings:
    parse_chunk_size: int = 2000
    persist_batch_size: int = 5000
    min_columns: int = 5
    search_limit: int = 50
    min_fragment_length: int = 3
    encoding: str = AUTO_ENCODING

    def with_overrides(self, **overrides: Any) -> IngestSettings:
        """Return a copy with every non-None override applied and validated."""
        values = {k: v for k, v in overrides.items() if v is not None}
        updated = replace(self, **values)
        validate_settings(updated.__dict__)
        return updated


_INT_KEYS = frozenset(
    f.name for f in fields(IngestSettings) if f.type in ("int", int)
)
_KNOWN_KEYS = frozenset(f.name for f in fields(IngestSettings))


# ---------------------------------------------------------------------------
# Loader + validator
# ---------------------------------------------------------------------------

def validate_settings(data: dict[str, Any]) -> None:
    """Validate a settings mapping.

    Raises:
        SettingsValidationError: On unknown keys, non-positive integers, or an
            encoding Python does not know.
    """
    unknown = set(data) - _KNOWN_KEYS
    if unknown:
        raise SettingsValidationError(f"Unknown settings keys: {sorted(unknown)}")

    for key in _INT_KEYS & set(data):
        value = data[key]
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            raise SettingsValidationError(
                f"{key} must be a positive integer, got {value!r}"
            )

    encoding = data.get("encoding", AUTO_ENCODING)
    if not isinstance(encoding, str):
        raise SettingsValidationError(f"encoding must be a string, got {encoding!r}")
    if encoding != AUTO_ENCODING:
        try:
            codecs.lookup(encoding)
        except LookupError as exc:
            raise SettingsValidationError(f"Unknown encoding: {encoding!r}") from exc


def load_settings(yaml_path: Path | None) -> IngestSettings:
    """Load settings from ``yaml_path``; None or an empty file gives defaults.

    Raises:
        SettingsValidationError: If the file is not valid YAML or its content
            is invalid.
        FileNotFoundError: If the YAML file does not exist.
    """
    if yaml_path is None:
        return IngestSettings()
    raw = yaml_path.read_text(encoding="utf-8")
    try:
        data = yaml.safe_load(raw) or {}
    except yaml.YAMLError as exc:
        raise SettingsValidationError(f"{yaml_path.name}: invalid YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise SettingsValidationError(
            f"{yaml_path.name}: top level must be a mapping"
        )
    validate_settings(data)
    return IngestSettings(**data)
