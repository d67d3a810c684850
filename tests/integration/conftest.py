"""Integration test fixtures.

Opens a HouseholdStore (which applies the package migrations) against an
ephemeral PostgreSQL database provided by pytest-postgresql.
"""

from __future__ import annotations

import pytest
from pytest_postgresql import factories

from household_etl.store import HouseholdStore

# ---------------------------------------------------------------------------
# pytest-postgresql process fixture
# ---------------------------------------------------------------------------

postgresql_proc = factories.postgresql_proc()
postgresql = factories.postgresql("postgresql_proc")


# ---------------------------------------------------------------------------
# Store fixtures: fresh database per test
# ---------------------------------------------------------------------------

@pytest.fixture(scope="function")
def db_dsn(postgresql):
    return (
        f"host={postgresql.info.host} "
        f"port={postgresql.info.port} "
        f"dbname={postgresql.info.dbname} "
        f"user={postgresql.info.user} "
        f"password={postgresql.info.password or ''}"
    )


@pytest.fixture(scope="function")
def store(db_dsn):
    """Return a HouseholdStore with schema applied."""
    s = HouseholdStore.connect(db_dsn)
    try:
        yield s
    finally:
        s.close()

