"""Integration tests for household_etl.store against a real PostgreSQL."""

from __future__ import annotations

import psycopg
import pytest

from household_etl.models import HouseholdMember, MasterRecord
from household_etl.store import HouseholdStore, list_migrations


def _member(hhid: str, entry_id: str, first: str = "ANA", last: str = "CRUZ", **kw) -> HouseholdMember:
    return HouseholdMember(hhid=hhid, entry_id=entry_id, first_name=first, last_name=last, **kw)


def _members(n: int, prefix: str = "A") -> list[HouseholdMember]:
    return [_member(f"{prefix}H{i // 4}", f"{prefix}E{i:05d}", first=f"F{i}") for i in range(n)]


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

class TestSchema:
    def test_migrations_applied_on_connect(self, store):
        latest = list_migrations()[-1][0]
        assert store.schema_version() == latest
        assert store.count() == 0

    def test_ensure_schema_idempotent(self, store):
        before = store.schema_version()
        assert store.ensure_schema() == before
        rows = store.conn.execute("SELECT count(*) FROM store_schema_version").fetchone()
        assert rows[0] == len(list_migrations())

    def test_upgrade_adds_master_without_touching_members(self, db_dsn, tmp_path):
        first_only = tmp_path / "migrations"
        first_only.mkdir()
        version, path = list_migrations()[0]
        (first_only / path.name).write_text(path.read_text(encoding="utf-8"), encoding="utf-8")

        with HouseholdStore(psycopg.connect(db_dsn, autocommit=True)) as old:
            assert old.ensure_schema(first_only) == version
            old.bulk_replace(_members(6))
            missing = old.conn.execute("SELECT to_regclass('master_record')").fetchone()
            assert missing[0] is None

            assert old.ensure_schema() == list_migrations()[-1][0]
            assert old.count() == 6
            assert len(old.get_by_group_key("AH0")) == 4
            assert old.get_all_master() == []

    def test_read_only_store_rejects_writes(self, db_dsn, store):
        store.bulk_replace(_members(5))
        store.replace_all_master([MasterRecord("H1")])
        with HouseholdStore.connect(db_dsn, read_only=True) as reader:
            with pytest.raises(psycopg.Error):
                reader.bulk_replace(_members(2, prefix="B"))
            with pytest.raises(psycopg.Error):
                reader.replace_all_master([])
            assert reader.count() == 5
            assert reader.search("F1") != []
        assert len(store.get_all_master()) == 1

    def test_reconnect_keeps_data(self, db_dsn, store):
        store.bulk_replace(_members(3))
        with HouseholdStore.connect(db_dsn) as again:
            assert again.count() == 3


# ---------------------------------------------------------------------------
# bulk_replace
# ---------------------------------------------------------------------------

class TestBulkReplace:
    def test_batched_write_with_progress(self, store):
        progress: list[int] = []
        written = store.bulk_replace(_members(95), batch_size=20, on_progress=progress.append)
        assert written == 95
        assert store.count() == 95
        assert progress == [21, 42, 63, 84, 100]

    def test_replacement_leaves_no_residue(self, store):
        store.bulk_replace(_members(40, prefix="A"))
        store.bulk_replace(_members(7, prefix="B"))
        assert store.count() == 7
        assert store.get_by_group_key("AH0") == []
        assert len(store.get_by_group_key("BH0")) == 4

    def test_empty_replace_clears(self, store):
        store.bulk_replace(_members(5))
        progress: list[int] = []
        assert store.bulk_replace([], on_progress=progress.append) == 0
        assert store.count() == 0
        assert progress == [100]

    def test_duplicate_entry_id_last_wins(self, store):
        records = [_member("H1", "E1", first="OLD"), _member("H1", "E1", first="NEW")]
        store.bulk_replace(records)
        assert store.count() == 1
        assert store.get_by_group_key("H1")[0].first_name == "NEW"

    def test_all_fields_round_trip(self, store):
        original = _member(
            "H1", "E1", region="V", province="MASBATE", municipality="BALENO",
            barangay="GABI", age=41, sex="F", relationship="1 - HEAD",
            grade_level="GRADE 4", lrn="123456789012",
        )
        store.bulk_replace([original])
        assert store.get_by_group_key("H1") == [original]

    def test_storage_error_keeps_committed_batches(self, store):
        records = _members(30)
        records[15] = _member("AH3", None)  # NOT NULL violation in batch 2
        with pytest.raises(psycopg.Error):
            store.bulk_replace(records, batch_size=10)
        assert store.count() == 10

    def test_invalid_batch_size(self, store):
        with pytest.raises(ValueError):
            store.bulk_replace(_members(1), batch_size=0)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

class TestGetByGroupKey:
    def test_exact_subset_in_entry_order(self, store):
        store.bulk_replace([
            _member("H1", "E3"), _member("H2", "E2"), _member("H1", "E1"), _member("H10", "E4"),
        ])
        assert [m.entry_id for m in store.get_by_group_key("H1")] == ["E1", "E3"]

    def test_unknown_key(self, store):
        store.bulk_replace(_members(4))
        assert store.get_by_group_key("NOPE") == []


class TestSearch:
    def test_case_insensitive_on_names(self, store):
        store.bulk_replace([
            _member("H1", "E1", first="ROSE", last="ESQUILONA"),
            _member("H2", "E2", first="JUAN", last="DELA CRUZ"),
        ])
        assert [m.entry_id for m in store.search("esqui")] == ["E1"]
        assert [m.entry_id for m in store.search("juan")] == ["E2"]

    def test_matches_hhid_fragment(self, store):
        store.bulk_replace([
            _member("054102010-0807-00020", "E1"),
            _member("054102011-0001-00001", "E2"),
        ])
        assert [m.entry_id for m in store.search("0807")] == ["E1"]

    def test_capped_at_limit_in_entry_order(self, store):
        store.bulk_replace([_member(f"H{i}", f"E{i:04d}", last="SANTOS") for i in range(200)])
        results = store.search("SANTOS", limit=50)
        assert len(results) == 50
        assert results[0].entry_id == "E0000"
        assert results[-1].entry_id == "E0049"

    def test_wildcards_are_literal(self, store):
        store.bulk_replace([
            _member("H1", "E1", last="100%_SURE"),
            _member("H2", "E2", last="CRUZ"),
        ])
        assert [m.entry_id for m in store.search("%_")] == ["E1"]
        assert store.search("_") == [store.get_by_group_key("H1")[0]]

    def test_empty_store(self, store):
        assert store.search("CRUZ") == []


# ---------------------------------------------------------------------------
# master_record
# ---------------------------------------------------------------------------

class TestMaster:
    def test_replace_and_read_back(self, store):
        records = [
            MasterRecord("H2", "MASBATE", "AROROY", "POBLACION", "ANA CRUZ"),
            MasterRecord("H1", "MASBATE", "BALENO", "GABI", "ROSE ESQUILONA"),
        ]
        assert store.replace_all_master(records) == 2
        assert store.get_all_master() == sorted(records, key=lambda r: r.hhid)

    def test_second_replace_drops_old_rows(self, store):
        store.replace_all_master([MasterRecord("H1"), MasterRecord("H2")])
        store.replace_all_master([MasterRecord("H3", municipality="MANDAON")])
        assert [r.hhid for r in store.get_all_master()] == ["H3"]

    def test_master_and_members_independent(self, store):
        store.bulk_replace(_members(4))
        store.replace_all_master([MasterRecord("H1")])
        store.bulk_replace([])
        assert len(store.get_all_master()) == 1
