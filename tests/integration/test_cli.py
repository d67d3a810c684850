"""CLI tests: household_etl.cli main() driven through click's CliRunner."""

from __future__ import annotations

import json

import pytest
from click.testing import CliRunner

from household_etl.cli import main

PROFILE = (
    "HH_ID,ENTRY_ID,FIRST_NAME,LAST_NAME,AGE,SEX,RELATION_TO_HH_HEAD,BARANGAY,MUNICIPALITY\n"
    "H1,E1,JUAN,DELA CRUZ,8,M,3 - SON,GABI,BALENO\n"
    "H1,E2,ROSA,DELA CRUZ,38,F,1 - HEAD,GABI,BALENO\n"
    "H2,E3,ANA,SANTOS,30,F,1 - HEAD,POBLACION,AROROY\n"
)

MASTER = "HHID,City,Barangay,Name\n054102010-0807-00020,BALENO,GABI,ESQUILONA ROSE MARIE\n"


@pytest.fixture
def runner(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    return CliRunner()


def _invoke(runner, db_dsn, *args):
    return runner.invoke(main, ["--db-dsn", db_dsn, "--run-id", "test-run", *args])


def _import_profile(runner, db_dsn, tmp_path, text=PROFILE, *extra):
    path = tmp_path / "profile.csv"
    path.write_text(text, encoding="utf-8")
    return _invoke(runner, db_dsn, "--mode", "household_import", "--csv-path", str(path), *extra)


class TestHouseholdImportMode:
    def test_import_then_count(self, runner, db_dsn, tmp_path):
        result = _import_profile(runner, db_dsn, tmp_path)
        assert result.exit_code == 0, result.output
        assert "[test-run] Done: 3 lines read, 0 rejected, 3 rows written" in result.output
        assert "Parsing CSV: 100%" in result.output
        assert "Saving to database: 100%" in result.output

        count = _invoke(runner, db_dsn, "--mode", "count")
        assert count.exit_code == 0
        assert count.output.strip() == "3"

    def test_run_report_written(self, runner, db_dsn, tmp_path):
        _import_profile(runner, db_dsn, tmp_path)
        report = json.loads((tmp_path / "artifacts" / "reports" / "test-run.json").read_text())
        assert report["mode"] == "household_import"
        assert report["counters"]["rows_written"] == 3

    def test_rejects_file(self, runner, db_dsn, tmp_path):
        rejects = tmp_path / "rejects.csv"
        result = _import_profile(
            runner, db_dsn, tmp_path, PROFILE + "H3,E4\n", "--rejects-path", str(rejects),
        )
        assert result.exit_code == 0, result.output
        assert "1 rejected" in result.output
        assert "too_few_columns" in rejects.read_text(encoding="utf-8")

    def test_header_only_is_fatal(self, runner, db_dsn, tmp_path):
        _import_profile(runner, db_dsn, tmp_path)
        result = _import_profile(runner, db_dsn, tmp_path, PROFILE.splitlines()[0] + "\n")
        assert result.exit_code == 1
        assert "FATAL: Import Error" in result.output
        assert _invoke(runner, db_dsn, "--mode", "count").output.strip() == "3"

    def test_missing_csv_path(self, runner, db_dsn):
        result = _invoke(runner, db_dsn, "--mode", "household_import")
        assert result.exit_code == 1
        assert "--csv-path is required" in result.output

    def test_invalid_batch_size(self, runner, db_dsn, tmp_path):
        result = _import_profile(runner, db_dsn, tmp_path, PROFILE, "--batch-size", "0")
        assert result.exit_code == 1
        assert "invalid settings" in result.output


    def test_malformed_settings_file(self, runner, db_dsn, tmp_path):
        settings = tmp_path / "settings.yml"
        settings.write_text("parse_chunk_size: [oops\n", encoding="utf-8")
        result = _import_profile(runner, db_dsn, tmp_path, PROFILE, "--settings-file", str(settings))
        assert result.exit_code == 1
        assert "FATAL: invalid settings" in result.output


class TestReadModes:
    def test_search(self, runner, db_dsn, tmp_path):
        _import_profile(runner, db_dsn, tmp_path)
        result = _invoke(runner, db_dsn, "--mode", "search", "--query", "dela")
        assert result.exit_code == 0
        assert "E1\tDELA CRUZ, JUAN" in result.output
        assert "E2\tDELA CRUZ, ROSA" in result.output
        assert "SANTOS" not in result.output
        assert "2 match(es)" in result.output

    def test_search_short_fragment(self, runner, db_dsn, tmp_path):
        _import_profile(runner, db_dsn, tmp_path)
        result = _invoke(runner, db_dsn, "--mode", "search", "--query", "de")
        assert result.exit_code == 0
        assert "0 match(es)" in result.output

    def test_roster_head_first(self, runner, db_dsn, tmp_path):
        _import_profile(runner, db_dsn, tmp_path)
        result = _invoke(runner, db_dsn, "--mode", "roster", "--hhid", "H1")
        assert result.exit_code == 0
        member_lines = [line for line in result.output.splitlines() if line.startswith("H1\t")]
        assert [line.split("\t")[1] for line in member_lines] == ["E2", "E1"]

    def test_roster_unknown(self, runner, db_dsn):
        result = _invoke(runner, db_dsn, "--mode", "roster", "--hhid", "NOPE")
        assert result.exit_code == 0
        assert "No members found" in result.output


class TestMasterModes:
    def test_import_then_autofill(self, runner, db_dsn, tmp_path):
        path = tmp_path / "master.csv"
        path.write_text(MASTER, encoding="utf-8")
        result = _invoke(runner, db_dsn, "--mode", "master_import", "--csv-path", str(path))
        assert result.exit_code == 0, result.output
        assert "1 master records saved" in result.output

        filled = _invoke(runner, db_dsn, "--mode", "autofill", "--hhid", "054102010080700020")
        assert filled.exit_code == 0
        assert "054102010-0807-00020\tMASBATE\tBALENO\tGABI\tESQUILONA ROSE MARIE" in filled.output

    def test_master_without_hhid_column_keeps_existing_list(self, runner, db_dsn, tmp_path):
        good = tmp_path / "master.csv"
        good.write_text(MASTER, encoding="utf-8")
        _invoke(runner, db_dsn, "--mode", "master_import", "--csv-path", str(good))

        bad = tmp_path / "bad_master.csv"
        bad.write_text("HH_ID,MUNICIPALITY,BARANGAY,GRANTEE\nH2,AROROY,POBLACION,JUAN\n", encoding="utf-8")
        result = _invoke(runner, db_dsn, "--mode", "master_import", "--csv-path", str(bad))
        assert result.exit_code == 1
        assert "FATAL: master import failed" in result.output

        filled = _invoke(runner, db_dsn, "--mode", "autofill", "--hhid", "054102010-0807-00020")
        assert filled.exit_code == 0

    def test_autofill_no_match(self, runner, db_dsn):
        result = _invoke(runner, db_dsn, "--mode", "autofill", "--hhid", "H9")
        assert result.exit_code == 2
        assert "no_match" in result.output.lower()
