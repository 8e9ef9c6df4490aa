"""SQLAlchemy table mappings for the crosswalk engine.

All tables use the `cw_` prefix. Set-valued and nested fields (keywords,
evidence types, aspects, resolution options, direct evidence) are stored as
JSON columns so the schema runs unchanged on PostgreSQL and SQLite.

Rows:
- FrameworkVersionRow - cw_framework_versions
- RequirementRow - cw_master_requirements
- ControlRow - cw_controls
- MappingRow - cw_crosswalk_mappings
- DriftRow - cw_compliance_drift (append and update only)
- GapRow - cw_custom_gaps
"""

from datetime import date, datetime

from sqlalchemy import JSON, Boolean, Date, DateTime, Float, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Declarative base for crosswalk engine tables."""


class FrameworkVersionRow(Base):
    """One dated revision of a framework."""

    __tablename__ = "cw_framework_versions"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    framework_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    version_code: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        index=True,
        comment="Lifecycle state: draft | published | active | superseded | retired",
    )
    published_date: Mapped[date] = mapped_column(Date, nullable=False)
    effective_date: Mapped[date] = mapped_column(Date, nullable=False)
    version_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    transition_deadline: Mapped[date | None] = mapped_column(Date, nullable=True)
    sunset_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    previous_version_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    changes: Mapped[list] = mapped_column(  # type: ignore[type-arg]
        JSON,
        nullable=False,
        default=list,
        comment="Documented VersionChange records relative to the previous version",
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class RequirementRow(Base):
    """One official requirement, owned by exactly one framework version."""

    __tablename__ = "cw_master_requirements"
    __table_args__ = (UniqueConstraint("framework_version_id", "requirement_code"),)

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    framework_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    framework_version_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    requirement_code: Mapped[str] = mapped_column(String(100), nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    official_text: Mapped[str] = mapped_column(Text, nullable=False)
    implementation_level: Mapped[str] = mapped_column(String(30), nullable=False)
    required_evidence_types: Mapped[list] = mapped_column(JSON, nullable=False, default=list)  # type: ignore[type-arg]
    verification_frequency: Mapped[str] = mapped_column(String(30), nullable=False)
    risk_weight: Mapped[int] = mapped_column(Integer, nullable=False, comment="1-10")
    effective_date: Mapped[date] = mapped_column(Date, nullable=False)
    emerging_tech_category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    keywords: Mapped[list] = mapped_column(JSON, nullable=False, default=list)  # type: ignore[type-arg]
    parent_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    domain: Mapped[str | None] = mapped_column(String(100), nullable=True)
    transition_period_days: Mapped[int | None] = mapped_column(Integer, nullable=True)


class ControlRow(Base):
    """An organization-defined control."""

    __tablename__ = "cw_controls"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    risk_level: Mapped[str] = mapped_column(String(20), nullable=False, default="medium")
    domain: Mapped[str] = mapped_column(String(100), nullable=False, default="", index=True)
    keywords: Mapped[list] = mapped_column(JSON, nullable=False, default=list)  # type: ignore[type-arg]


class MappingRow(Base):
    """Versioned control-to-requirement link."""

    __tablename__ = "cw_crosswalk_mappings"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    control_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    requirement_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    framework_version_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    mapping_strength: Mapped[str] = mapped_column(String(20), nullable=False)
    coverage_percentage: Mapped[float] = mapped_column(Float, nullable=False)
    valid_from_version: Mapped[str] = mapped_column(String(255), nullable=False)
    covered_aspects: Mapped[list] = mapped_column(JSON, nullable=False, default=list)  # type: ignore[type-arg]
    uncovered_aspects: Mapped[list] = mapped_column(JSON, nullable=False, default=list)  # type: ignore[type-arg]
    valid_until_version: Mapped[str | None] = mapped_column(String(255), nullable=True)
    superseded_by_mapping_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    drift_status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="current",
        comment="current | at_risk | drifted | invalidated; written only by the drift engine",
    )
    justification: Mapped[str] = mapped_column(Text, nullable=False, default="")
    is_auto_mapped: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    auto_map_confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    human_reviewed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_drift_check: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class DriftRow(Base):
    """A drift finding. Rows are never deleted."""

    __tablename__ = "cw_compliance_drift"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    control_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    mapping_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    requirement_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    old_framework_version_id: Mapped[str] = mapped_column(String(255), nullable=False)
    new_framework_version_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    drift_type: Mapped[str] = mapped_column(String(50), nullable=False)
    severity: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    previous_answer: Mapped[str] = mapped_column(String(20), nullable=False)
    answer_still_valid: Mapped[bool] = mapped_column(Boolean, nullable=False)
    validity_reason: Mapped[str] = mapped_column(Text, nullable=False)
    compliance_deadline: Mapped[date] = mapped_column(Date, nullable=False)
    previous_requirement_text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    new_requirement_text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    change_summary: Mapped[str] = mapped_column(Text, nullable=False, default="")
    impact_assessment: Mapped[str] = mapped_column(Text, nullable=False, default="")
    affected_evidence_types: Mapped[list] = mapped_column(JSON, nullable=False, default=list)  # type: ignore[type-arg]
    resolution_path: Mapped[list] = mapped_column(JSON, nullable=False, default=list)  # type: ignore[type-arg]
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="detected",
        index=True,
        comment="detected | acknowledged | in_review | resolved | accepted_risk",
    )
    selected_resolution: Mapped[str | None] = mapped_column(String(30), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class GapRow(Base):
    """A custom gap from the latest recalculation pass."""

    __tablename__ = "cw_custom_gaps"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    requirement_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    gap_type: Mapped[str] = mapped_column(String(50), nullable=False)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    missing_coverage: Mapped[list] = mapped_column(JSON, nullable=False, default=list)  # type: ignore[type-arg]
    resolution_options: Mapped[list] = mapped_column(JSON, nullable=False, default=list)  # type: ignore[type-arg]
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="identified", index=True)
    coverage: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    selected_resolution: Mapped[str | None] = mapped_column(String(30), nullable=True)
    direct_evidence: Mapped[list] = mapped_column(JSON, nullable=False, default=list)  # type: ignore[type-arg]
    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")
    identified_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    identified_by: Mapped[str] = mapped_column(String(255), nullable=False, default="system")
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
