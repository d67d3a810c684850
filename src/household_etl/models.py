"""household_etl.models

Row types for the two local collections:
  - HouseholdMember — one person-row of an imported household profile export
  - MasterRecord    — HHID → location + grantee, used for entry-form auto-fill

Every HouseholdMember attribute is a plain string defaulted to "" except
``age`` (int, defaulted to 0).  Column order for SQL is derived from the
dataclass field order so the store and the parser never drift apart.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any


@dataclass
class HouseholdMember:
    # Identification
    hhid: str = ""
    entry_id: str = ""
    # Location
    region: str = ""
    province: str = ""
    municipality: str = ""
    barangay: str = ""
    # Personal
    first_name: str = ""
    middle_name: str = ""
    last_name: str = ""
    ext_name: str = ""
    birthday: str = ""
    age: int = 0
    sex: str = ""
    # Status
    client_status: str = ""
    cs_category: str = ""
    member_status: str = ""
    relationship: str = ""
    civil_status: str = ""
    # Program attributes
    is_grantee: str = ""
    hh_set: str = ""
    solo_parent: str = ""
    ip_affiliation: str = ""
    pcn: str = ""
    pcn_remarks: str = ""
    disability: str = ""
    child_bene: str = ""
    # Health
    pregnancy_status: str = ""
    lmp: str = ""
    health_monitored: str = ""
    health_facility: str = ""
    health_facility_status: str = ""
    reason_not_attending_health: str = ""
    health_remarks: str = ""
    # Education
    age_on_educ: str = ""
    grade_level: str = ""
    shs_strand: str = ""
    shs_track: str = ""
    educ_monit: str = ""
    attending_school: str = ""
    school_name: str = ""
    reason_not_attending_school: str = ""
    educ_remarks: str = ""
    lrn: str = ""
    lrn_remarks: str = ""

    @property
    def is_head(self) -> bool:
        return "HEAD" in self.relationship.upper()


@dataclass
class MasterRecord:
    hhid: str
    province: str = ""
    municipality: str = ""
    barangay: str = ""
    grantee_name: str = ""


MEMBER_COLUMNS: tuple[str, ...] = tuple(f.name for f in fields(HouseholdMember))
MASTER_COLUMNS: tuple[str, ...] = tuple(f.name for f in fields(MasterRecord))


def member_from_row(row: tuple[Any, ...]) -> HouseholdMember:
    """Build a HouseholdMember from a DB row selected in MEMBER_COLUMNS order."""
    return HouseholdMember(**dict(zip(MEMBER_COLUMNS, row)))


def master_from_row(row: tuple[Any, ...]) -> MasterRecord:
    return MasterRecord(**dict(zip(MASTER_COLUMNS, row)))
