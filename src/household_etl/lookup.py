"""household_etl.lookup

Read-only query layer used by interactive consumers:

  - HouseholdLookup.find_by_key        → household roster (detail view)
  - HouseholdLookup.search_by_fragment → bounded search-as-you-type results
  - MasterIndex.match                  → entry-form auto-fill by HHID

Read paths favour availability: a failing query is logged and degrades to
an empty roster / empty result list / NO_MATCH instead of raising.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Protocol

import psycopg

from household_etl.models import HouseholdMember, MasterRecord
from household_etl.normalize import normalize_hhid, strip_dashes, trim
from household_etl.settings import IngestSettings

log = logging.getLogger(__name__)

# Composite transaction IDs look like "<HHID>_uid_<timestamp>_<random>"
UID_SEPARATOR = "_uid_"


class MemberSource(Protocol):
    def get_by_group_key(self, hhid: str) -> list[HouseholdMember]: ...

    def search(self, fragment: str, limit: int = ...) -> list[HouseholdMember]: ...

    def get_all_master(self) -> list[MasterRecord]: ...


# ---------------------------------------------------------------------------
# Household roster + search
# ---------------------------------------------------------------------------

class HouseholdLookup:
    """Roster lookup and fragment search over a store handle."""

    def __init__(
        self,
        store: MemberSource,
        limit: int = 50,
        min_fragment_length: int = 3,
    ) -> None:
        self._store = store
        self.limit = limit
        self.min_fragment_length = min_fragment_length

    @classmethod
    def from_settings(cls, store: MemberSource, settings: IngestSettings) -> HouseholdLookup:
        return cls(
            store,
            limit=settings.search_limit,
            min_fragment_length=settings.min_fragment_length,
        )

    def find_by_key(self, hhid: str | None) -> list[HouseholdMember]:
        key = trim(hhid)
        if not key:
            return []
        try:
            return self._store.get_by_group_key(key)
        except psycopg.Error as exc:
            log.warning("roster lookup for %r failed: %s", key, exc)
            return []

    def search_by_fragment(self, text: str | None) -> list[HouseholdMember]:
        """Return at most ``limit`` members matching ``text``.

        Fragments shorter than ``min_fragment_length`` return [] without
        touching the store.  Callers typing interactively should debounce
        (about 400 ms) before calling.
        """
        fragment = trim(text)
        if not fragment or len(fragment) < self.min_fragment_length:
            return []
        try:
            return self._store.search(fragment, self.limit)[: self.limit]
        except psycopg.Error as exc:
            log.warning("search for %r failed: %s", fragment, exc)
            return []


def find_head(roster: Sequence[HouseholdMember]) -> HouseholdMember | None:
    """The household head, else the first member, else None for an empty roster."""
    for member in roster:
        if member.is_head:
            return member
    return roster[0] if roster else None


# ---------------------------------------------------------------------------
# Update history by household
# ---------------------------------------------------------------------------

def base_hhid(transaction_id: str) -> str:
    """Strip the ``_uid_...`` suffix from a composite transaction ID."""
    return transaction_id.split(UID_SEPARATOR, 1)[0]


def filter_updates_for_household(
    updates: Iterable[Mapping[str, Any]],
    hhid: str,
) -> list[Mapping[str, Any]]:
    """Update rows whose ``id`` starts with ``hhid``."""
    key = trim(hhid)
    if not key:
        return []
    return [u for u in updates if str(u.get("id", "")).startswith(key)]


# ---------------------------------------------------------------------------
# Master auto-fill
# ---------------------------------------------------------------------------

class AutoFillStatus(enum.Enum):
    MATCH = "match"
    NO_MATCH = "no_match"
    NOT_LOADED = "not_loaded"


@dataclass(frozen=True)
class AutoFillResult:
    status: AutoFillStatus
    record: MasterRecord | None = None

    @property
    def matched(self) -> bool:
        return self.status is AutoFillStatus.MATCH


class MasterIndex:
    """In-memory HHID → MasterRecord map.

    Each HHID is registered upper-cased and again with dashes removed, so
    "0541-0201-0807" and "054102010807" resolve to the same record.
    """

    def __init__(self) -> None:
        self._by_key: dict[str, MasterRecord] = {}
        self._loaded = False

    @property
    def loaded(self) -> bool:
        return self._loaded

    def __len__(self) -> int:
        return len({id(r) for r in self._by_key.values()})

    def load(self, records: Iterable[MasterRecord]) -> MasterIndex:
        by_key: dict[str, MasterRecord] = {}
        for record in records:
            key = normalize_hhid(record.hhid)
            if not key:
                continue
            by_key[key] = record
            by_key[strip_dashes(key)] = record
        self._by_key = by_key
        self._loaded = True
        return self

    def load_from(self, store: MemberSource) -> MasterIndex:
        """Load from the store; a failed read leaves the index NOT_LOADED."""
        try:
            records = store.get_all_master()
        except psycopg.Error as exc:
            log.warning("master list load failed: %s", exc)
            return self
        return self.load(records)

    def match(self, hhid: str | None) -> AutoFillResult:
        if not self._loaded:
            return AutoFillResult(AutoFillStatus.NOT_LOADED)
        key = normalize_hhid(hhid)
        if not key:
            return AutoFillResult(AutoFillStatus.NO_MATCH)
        record = self._by_key.get(key) or self._by_key.get(strip_dashes(key))
        if record is None:
            return AutoFillResult(AutoFillStatus.NO_MATCH)
        return AutoFillResult(AutoFillStatus.MATCH, record)
