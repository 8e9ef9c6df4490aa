"""SQLAlchemy repositories for the crosswalk engine.

Each repository implements the corresponding protocol from
core/interfaces.py over a synchronous Session. Repositories only flush; the
caller owns the session and decides when to commit or roll back, so a
recalculation pass that raises part-way leaves the committed state intact.

Rows are converted to fresh domain dataclasses on every read, so callers
hold snapshots exactly as with the in-memory adapter.

Repositories:
- SqlFrameworkVersionRepository
- SqlRequirementRepository
- SqlControlRepository
- SqlMappingRepository
- SqlDriftRepository
- SqlGapRepository
"""

from dataclasses import asdict
from datetime import UTC, datetime

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from crosswalk_engine.adapters.tables import (
    ControlRow,
    DriftRow,
    FrameworkVersionRow,
    GapRow,
    MappingRow,
    RequirementRow,
)
from crosswalk_engine.core.models import (
    ComplianceDrift,
    Control,
    CrosswalkMapping,
    CustomGap,
    DirectEvidence,
    DriftRecordStatus,
    DriftResolutionOption,
    DriftStatus,
    DriftType,
    FrameworkVersion,
    GapResolutionOption,
    GapResolutionType,
    GapStatus,
    GapType,
    ImplementationLevel,
    MappingStrength,
    MasterRequirement,
    ResolutionType,
    RiskLevel,
    Severity,
    VerificationFrequency,
    VersionChange,
    VersionStatus,
)
from crosswalk_engine.observability import get_logger

logger = get_logger(__name__)


def _aware(value: datetime | None) -> datetime | None:
    """Attach UTC to datetimes returned without tzinfo (SQLite drops it)."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


# ---------------------------------------------------------------------------
# Framework versions
# ---------------------------------------------------------------------------


def _version_to_domain(row: FrameworkVersionRow) -> FrameworkVersion:
    return FrameworkVersion(
        id=row.id,
        framework_id=row.framework_id,
        version_code=row.version_code,
        status=VersionStatus(row.status),
        published_date=row.published_date,
        effective_date=row.effective_date,
        version_name=row.version_name,
        transition_deadline=row.transition_deadline,
        sunset_date=row.sunset_date,
        previous_version_id=row.previous_version_id,
        changes=[VersionChange(**change) for change in row.changes],
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


def _version_to_row(version: FrameworkVersion) -> FrameworkVersionRow:
    return FrameworkVersionRow(
        id=version.id,
        framework_id=version.framework_id,
        version_code=version.version_code,
        status=str(version.status),
        published_date=version.published_date,
        effective_date=version.effective_date,
        version_name=version.version_name,
        transition_deadline=version.transition_deadline,
        sunset_date=version.sunset_date,
        previous_version_id=version.previous_version_id,
        changes=[asdict(change) for change in version.changes],
        created_at=version.created_at,
        updated_at=version.updated_at,
    )


class SqlFrameworkVersionRepository:
    """FrameworkVersion persistence.

    Args:
        session: SQLAlchemy session owned by the caller.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, version_id: str) -> FrameworkVersion | None:
        row = self._session.get(FrameworkVersionRow, version_id)
        return _version_to_domain(row) if row is not None else None

    def list_for_framework(self, framework_id: str) -> list[FrameworkVersion]:
        stmt = select(FrameworkVersionRow).where(FrameworkVersionRow.framework_id == framework_id)
        return [_version_to_domain(row) for row in self._session.scalars(stmt)]

    def list_all(self) -> list[FrameworkVersion]:
        return [_version_to_domain(row) for row in self._session.scalars(select(FrameworkVersionRow))]

    def add(self, version: FrameworkVersion) -> None:
        self._session.add(_version_to_row(version))
        self._session.flush()

    def save_many(self, versions: list[FrameworkVersion]) -> None:
        for version in versions:
            self._session.merge(_version_to_row(version))
        self._session.flush()


# ---------------------------------------------------------------------------
# Requirements
# ---------------------------------------------------------------------------


def _requirement_to_domain(row: RequirementRow) -> MasterRequirement:
    return MasterRequirement(
        id=row.id,
        framework_id=row.framework_id,
        framework_version_id=row.framework_version_id,
        requirement_code=row.requirement_code,
        title=row.title,
        official_text=row.official_text,
        implementation_level=ImplementationLevel(row.implementation_level),
        required_evidence_types=set(row.required_evidence_types),
        verification_frequency=VerificationFrequency(row.verification_frequency),
        risk_weight=row.risk_weight,
        effective_date=row.effective_date,
        emerging_tech_category=row.emerging_tech_category,
        keywords=set(row.keywords),
        parent_code=row.parent_code,
        domain=row.domain,
        transition_period_days=row.transition_period_days,
    )


class SqlRequirementRepository:
    """MasterRequirement persistence.

    Args:
        session: SQLAlchemy session owned by the caller.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, requirement_id: str) -> MasterRequirement | None:
        row = self._session.get(RequirementRow, requirement_id)
        return _requirement_to_domain(row) if row is not None else None

    def list_for_version(self, framework_version_id: str) -> list[MasterRequirement]:
        stmt = select(RequirementRow).where(RequirementRow.framework_version_id == framework_version_id)
        return [_requirement_to_domain(row) for row in self._session.scalars(stmt)]

    def list_all(self) -> list[MasterRequirement]:
        return [_requirement_to_domain(row) for row in self._session.scalars(select(RequirementRow))]

    def add(self, requirement: MasterRequirement) -> None:
        self._session.add(
            RequirementRow(
                id=requirement.id,
                framework_id=requirement.framework_id,
                framework_version_id=requirement.framework_version_id,
                requirement_code=requirement.requirement_code,
                title=requirement.title,
                official_text=requirement.official_text,
                implementation_level=str(requirement.implementation_level),
                required_evidence_types=sorted(requirement.required_evidence_types),
                verification_frequency=str(requirement.verification_frequency),
                risk_weight=requirement.risk_weight,
                effective_date=requirement.effective_date,
                emerging_tech_category=requirement.emerging_tech_category,
                keywords=sorted(requirement.keywords),
                parent_code=requirement.parent_code,
                domain=requirement.domain,
                transition_period_days=requirement.transition_period_days,
            )
        )
        self._session.flush()


# ---------------------------------------------------------------------------
# Controls
# ---------------------------------------------------------------------------


class SqlControlRepository:
    """Control catalog. `add` exists for seeding; the engine only reads.

    Args:
        session: SQLAlchemy session owned by the caller.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    @staticmethod
    def _to_domain(row: ControlRow) -> Control:
        return Control(
            id=row.id,
            title=row.title,
            risk_level=RiskLevel(row.risk_level),
            domain=row.domain,
            keywords=set(row.keywords),
        )

    def get(self, control_id: str) -> Control | None:
        row = self._session.get(ControlRow, control_id)
        return self._to_domain(row) if row is not None else None

    def list_all(self) -> list[Control]:
        stmt = select(ControlRow).order_by(ControlRow.id)
        return [self._to_domain(row) for row in self._session.scalars(stmt)]

    def add(self, control: Control) -> None:
        self._session.add(
            ControlRow(
                id=control.id,
                title=control.title,
                risk_level=str(control.risk_level),
                domain=control.domain,
                keywords=sorted(control.keywords),
            )
        )
        self._session.flush()


# ---------------------------------------------------------------------------
# Crosswalk mappings
# ---------------------------------------------------------------------------


def _mapping_to_domain(row: MappingRow) -> CrosswalkMapping:
    return CrosswalkMapping(
        id=row.id,
        control_id=row.control_id,
        requirement_id=row.requirement_id,
        framework_version_id=row.framework_version_id,
        mapping_strength=MappingStrength(row.mapping_strength),
        coverage_percentage=row.coverage_percentage,
        valid_from_version=row.valid_from_version,
        covered_aspects=set(row.covered_aspects),
        uncovered_aspects=set(row.uncovered_aspects),
        valid_until_version=row.valid_until_version,
        superseded_by_mapping_id=row.superseded_by_mapping_id,
        drift_status=DriftStatus(row.drift_status),
        justification=row.justification,
        is_auto_mapped=row.is_auto_mapped,
        auto_map_confidence=row.auto_map_confidence,
        human_reviewed=row.human_reviewed,
        last_drift_check=_aware(row.last_drift_check),
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


def _mapping_to_row(mapping: CrosswalkMapping) -> MappingRow:
    return MappingRow(
        id=mapping.id,
        control_id=mapping.control_id,
        requirement_id=mapping.requirement_id,
        framework_version_id=mapping.framework_version_id,
        mapping_strength=str(mapping.mapping_strength),
        coverage_percentage=mapping.coverage_percentage,
        valid_from_version=mapping.valid_from_version,
        covered_aspects=sorted(mapping.covered_aspects),
        uncovered_aspects=sorted(mapping.uncovered_aspects),
        valid_until_version=mapping.valid_until_version,
        superseded_by_mapping_id=mapping.superseded_by_mapping_id,
        drift_status=str(mapping.drift_status),
        justification=mapping.justification,
        is_auto_mapped=mapping.is_auto_mapped,
        auto_map_confidence=mapping.auto_map_confidence,
        human_reviewed=mapping.human_reviewed,
        last_drift_check=mapping.last_drift_check,
        created_at=mapping.created_at,
        updated_at=mapping.updated_at,
    )


class SqlMappingRepository:
    """CrosswalkMapping persistence.

    Args:
        session: SQLAlchemy session owned by the caller.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, mapping_id: str) -> CrosswalkMapping | None:
        row = self._session.get(MappingRow, mapping_id)
        return _mapping_to_domain(row) if row is not None else None

    def _list(self, *criteria) -> list[CrosswalkMapping]:
        stmt = select(MappingRow).where(*criteria).order_by(MappingRow.created_at, MappingRow.id)
        return [_mapping_to_domain(row) for row in self._session.scalars(stmt)]

    def list_for_requirement(self, requirement_id: str) -> list[CrosswalkMapping]:
        return self._list(MappingRow.requirement_id == requirement_id)

    def list_for_control(self, control_id: str) -> list[CrosswalkMapping]:
        return self._list(MappingRow.control_id == control_id)

    def list_for_version(self, framework_version_id: str) -> list[CrosswalkMapping]:
        return self._list(MappingRow.framework_version_id == framework_version_id)

    def list_all(self) -> list[CrosswalkMapping]:
        return self._list()

    def add(self, mapping: CrosswalkMapping) -> None:
        self._session.add(_mapping_to_row(mapping))
        self._session.flush()

    def save_many(self, mappings: list[CrosswalkMapping]) -> None:
        for mapping in mappings:
            self._session.merge(_mapping_to_row(mapping))
        self._session.flush()

    def remove(self, mapping_id: str) -> None:
        self._session.execute(delete(MappingRow).where(MappingRow.id == mapping_id))
        self._session.flush()


# ---------------------------------------------------------------------------
# Drift
# ---------------------------------------------------------------------------


def _drift_to_domain(row: DriftRow) -> ComplianceDrift:
    return ComplianceDrift(
        id=row.id,
        control_id=row.control_id,
        mapping_id=row.mapping_id,
        requirement_id=row.requirement_id,
        old_framework_version_id=row.old_framework_version_id,
        new_framework_version_id=row.new_framework_version_id,
        drift_type=DriftType(row.drift_type),
        severity=Severity(row.severity),
        previous_answer=row.previous_answer,
        answer_still_valid=row.answer_still_valid,
        validity_reason=row.validity_reason,
        compliance_deadline=row.compliance_deadline,
        previous_requirement_text=row.previous_requirement_text,
        new_requirement_text=row.new_requirement_text,
        change_summary=row.change_summary,
        impact_assessment=row.impact_assessment,
        affected_evidence_types=list(row.affected_evidence_types),
        resolution_path=[
            DriftResolutionOption(
                option_id=option["option_id"],
                type=ResolutionType(option["type"]),
                description=option["description"],
                effort=option["effort"],
                recommended_actions=list(option.get("recommended_actions", [])),
            )
            for option in row.resolution_path
        ],
        status=DriftRecordStatus(row.status),
        selected_resolution=ResolutionType(row.selected_resolution) if row.selected_resolution else None,
        resolved_at=_aware(row.resolved_at),
        resolved_by=row.resolved_by,
        notes=row.notes,
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


def _drift_to_row(drift: ComplianceDrift) -> DriftRow:
    return DriftRow(
        id=drift.id,
        control_id=drift.control_id,
        mapping_id=drift.mapping_id,
        requirement_id=drift.requirement_id,
        old_framework_version_id=drift.old_framework_version_id,
        new_framework_version_id=drift.new_framework_version_id,
        drift_type=str(drift.drift_type),
        severity=str(drift.severity),
        previous_answer=drift.previous_answer,
        answer_still_valid=drift.answer_still_valid,
        validity_reason=drift.validity_reason,
        compliance_deadline=drift.compliance_deadline,
        previous_requirement_text=drift.previous_requirement_text,
        new_requirement_text=drift.new_requirement_text,
        change_summary=drift.change_summary,
        impact_assessment=drift.impact_assessment,
        affected_evidence_types=list(drift.affected_evidence_types),
        resolution_path=[
            {
                "option_id": option.option_id,
                "type": str(option.type),
                "description": option.description,
                "effort": option.effort,
                "recommended_actions": list(option.recommended_actions),
            }
            for option in drift.resolution_path
        ],
        status=str(drift.status),
        selected_resolution=str(drift.selected_resolution) if drift.selected_resolution else None,
        resolved_at=drift.resolved_at,
        resolved_by=drift.resolved_by,
        notes=drift.notes,
        created_at=drift.created_at,
        updated_at=drift.updated_at,
    )


class SqlDriftRepository:
    """ComplianceDrift persistence. There is no delete.

    Args:
        session: SQLAlchemy session owned by the caller.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, drift_id: str) -> ComplianceDrift | None:
        row = self._session.get(DriftRow, drift_id)
        return _drift_to_domain(row) if row is not None else None

    def list_all(self) -> list[ComplianceDrift]:
        stmt = select(DriftRow).order_by(DriftRow.created_at, DriftRow.id)
        return [_drift_to_domain(row) for row in self._session.scalars(stmt)]

    def save_many(self, drifts: list[ComplianceDrift]) -> None:
        for drift in drifts:
            self._session.merge(_drift_to_row(drift))
        self._session.flush()


# ---------------------------------------------------------------------------
# Gaps
# ---------------------------------------------------------------------------


def _gap_to_domain(row: GapRow) -> CustomGap:
    return CustomGap(
        id=row.id,
        requirement_id=row.requirement_id,
        gap_type=GapType(row.gap_type),
        severity=Severity(row.severity),
        description=row.description,
        missing_coverage=list(row.missing_coverage),
        resolution_options=[
            GapResolutionOption(
                option_id=option["option_id"],
                type=GapResolutionType(option["type"]),
                description=option["description"],
                effort=option["effort"],
                recommended_templates=list(option.get("recommended_templates", [])),
            )
            for option in row.resolution_options
        ],
        status=GapStatus(row.status),
        coverage=row.coverage,
        selected_resolution=GapResolutionType(row.selected_resolution) if row.selected_resolution else None,
        direct_evidence=[
            DirectEvidence(
                id=evidence["id"],
                gap_id=evidence["gap_id"],
                title=evidence["title"],
                description=evidence["description"],
                uri=evidence["uri"],
                uploaded_by=evidence["uploaded_by"],
                uploaded_at=_aware(datetime.fromisoformat(evidence["uploaded_at"])),
            )
            for evidence in row.direct_evidence
        ],
        notes=row.notes,
        identified_at=_aware(row.identified_at),
        identified_by=row.identified_by,
        resolved_at=_aware(row.resolved_at),
        resolved_by=row.resolved_by,
    )


def _gap_to_row(gap: CustomGap) -> GapRow:
    return GapRow(
        id=gap.id,
        requirement_id=gap.requirement_id,
        gap_type=str(gap.gap_type),
        severity=str(gap.severity),
        description=gap.description,
        missing_coverage=list(gap.missing_coverage),
        resolution_options=[
            {
                "option_id": option.option_id,
                "type": str(option.type),
                "description": option.description,
                "effort": option.effort,
                "recommended_templates": list(option.recommended_templates),
            }
            for option in gap.resolution_options
        ],
        status=str(gap.status),
        coverage=gap.coverage,
        selected_resolution=str(gap.selected_resolution) if gap.selected_resolution else None,
        direct_evidence=[
            {
                "id": evidence.id,
                "gap_id": evidence.gap_id,
                "title": evidence.title,
                "description": evidence.description,
                "uri": evidence.uri,
                "uploaded_by": evidence.uploaded_by,
                "uploaded_at": evidence.uploaded_at.isoformat(),
            }
            for evidence in gap.direct_evidence
        ],
        notes=gap.notes,
        identified_at=gap.identified_at,
        identified_by=gap.identified_by,
        resolved_at=gap.resolved_at,
        resolved_by=gap.resolved_by,
    )


class SqlGapRepository:
    """CustomGap persistence.

    Args:
        session: SQLAlchemy session owned by the caller.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, gap_id: str) -> CustomGap | None:
        row = self._session.get(GapRow, gap_id)
        return _gap_to_domain(row) if row is not None else None

    def list_all(self) -> list[CustomGap]:
        stmt = select(GapRow).order_by(GapRow.requirement_id)
        return [_gap_to_domain(row) for row in self._session.scalars(stmt)]

    def save(self, gap: CustomGap) -> None:
        self._session.merge(_gap_to_row(gap))
        self._session.flush()

    def replace_all(self, gaps: list[CustomGap]) -> None:
        """Swap the gap table contents for a recalculation result within the caller's transaction."""
        self._session.execute(delete(GapRow))
        for gap in gaps:
            self._session.add(_gap_to_row(gap))
        self._session.flush()
        logger.debug("Gap table replaced", gap_count=len(gaps))
