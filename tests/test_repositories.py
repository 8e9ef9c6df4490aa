"""Tests for the SQLAlchemy repositories.

Runs against an in-memory SQLite database created from the table metadata.
Verifies:
- Domain objects round-trip through rows, including JSON-backed sets and lists
- Datetimes come back timezone-aware in UTC
- Gap replacement swaps the whole table within the caller's transaction
- The engine runs unchanged over the SQL adapters
"""

from collections.abc import Iterator
from dataclasses import replace
from datetime import date, datetime, timedelta, UTC

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from crosswalk_engine.adapters.repositories import (
    SqlControlRepository,
    SqlDriftRepository,
    SqlFrameworkVersionRepository,
    SqlGapRepository,
    SqlMappingRepository,
    SqlRequirementRepository,
)
from crosswalk_engine.adapters.tables import Base
from crosswalk_engine.api.schemas import DriftResolveRequest
from crosswalk_engine.core.drift import resolution_options
from crosswalk_engine.core.engine import CrosswalkEngine
from crosswalk_engine.core.gaps import gap_resolution_options
from crosswalk_engine.core.models import (
    ComplianceDrift,
    CustomGap,
    DirectEvidence,
    DriftRecordStatus,
    DriftStatus,
    DriftType,
    GapStatus,
    GapType,
    ResolutionType,
    RiskLevel,
    Severity,
    VersionChange,
    VersionStatus,
)
from crosswalk_engine.settings import Settings
from tests.conftest import (
    FIXED_NOW,
    MutableClock,
    SequentialIds,
    lookup_from,
    make_answer,
    make_control,
    make_mapping,
    make_requirement,
    make_version,
)


@pytest.fixture()
def session() -> Iterator[Session]:
    """Session over a fresh in-memory SQLite database.

    Yields:
        Session bound to a database with all crosswalk tables created.
    """
    engine = create_engine("sqlite://")
    Base.metadata.create_all(engine)
    with Session(engine) as db_session:
        yield db_session
    engine.dispose()


def _drift(drift_id: str = "d-1", **overrides) -> ComplianceDrift:
    fields = {
        "id": drift_id,
        "control_id": "ctrl-access",
        "mapping_id": "m-1",
        "requirement_id": "soc2_v2:CC6.1",
        "old_framework_version_id": "soc2_v1",
        "new_framework_version_id": "soc2_v2",
        "drift_type": DriftType.EVIDENCE_TYPE_CHANGED,
        "severity": Severity.MEDIUM,
        "previous_answer": "yes",
        "answer_still_valid": True,
        "validity_reason": "still valid",
        "compliance_deadline": date(2025, 3, 1),
        "affected_evidence_types": ["audit_log"],
        "resolution_path": resolution_options(DriftType.EVIDENCE_TYPE_CHANGED),
        "created_at": FIXED_NOW,
        "updated_at": FIXED_NOW,
    }
    fields.update(overrides)
    return ComplianceDrift(**fields)


def _gap(gap_id: str, requirement_id: str, **overrides) -> CustomGap:
    fields = {
        "id": gap_id,
        "requirement_id": requirement_id,
        "gap_type": GapType.NO_CONTROL_MAPPED,
        "severity": Severity.HIGH,
        "description": f"No controls are mapped to requirement {requirement_id}",
        "missing_coverage": ["Full requirement coverage"],
        "resolution_options": gap_resolution_options(),
        "identified_at": FIXED_NOW,
    }
    fields.update(overrides)
    return CustomGap(**fields)


class TestFrameworkVersionRepository:
    def test_round_trip_with_changes(self, session: Session) -> None:
        repo = SqlFrameworkVersionRepository(session)
        version = replace(
            make_version(),
            transition_deadline=date(2025, 12, 31),
            changes=[
                VersionChange(
                    change_id="chg-1",
                    change_type="strengthened",
                    affected_requirement_code="CC6.1",
                    impact_level="high",
                    tags=["access"],
                )
            ],
            created_at=FIXED_NOW,
            updated_at=FIXED_NOW,
        )

        repo.add(version)
        loaded = repo.get("soc2_v1")

        assert loaded == version
        assert loaded.created_at.tzinfo is not None

    def test_save_many_updates_status(self, session: Session) -> None:
        repo = SqlFrameworkVersionRepository(session)
        repo.add(make_version("soc2_v1"))
        repo.add(make_version("soc2_v2", version_code="v2", status="draft"))

        repo.save_many(
            [
                replace(repo.get("soc2_v1"), status=VersionStatus.SUPERSEDED),
                replace(repo.get("soc2_v2"), status=VersionStatus.ACTIVE),
            ]
        )

        statuses = {v.id: v.status for v in repo.list_for_framework("SOC2")}
        assert statuses == {"soc2_v1": VersionStatus.SUPERSEDED, "soc2_v2": VersionStatus.ACTIVE}

    def test_missing_version_is_none(self, session: Session) -> None:
        assert SqlFrameworkVersionRepository(session).get("missing") is None


class TestRequirementRepository:
    def test_round_trip_preserves_sets(self, session: Session) -> None:
        repo = SqlRequirementRepository(session)
        requirement = make_requirement(
            required_evidence_types={"policy", "audit_log"},
            keywords={"access", "mfa"},
            emerging_tech_category="ai_ml",
        )

        repo.add(requirement)

        assert repo.get(requirement.id) == requirement
        assert [r.id for r in repo.list_for_version("soc2_v1")] == [requirement.id]
        assert repo.list_for_version("soc2_v2") == []


class TestControlRepository:
    def test_list_all_ordered_by_id(self, session: Session) -> None:
        repo = SqlControlRepository(session)
        repo.add(make_control("ctrl-b", RiskLevel.HIGH, keywords={"audit"}))
        repo.add(make_control("ctrl-a"))

        controls = repo.list_all()

        assert [c.id for c in controls] == ["ctrl-a", "ctrl-b"]
        assert controls[1].risk_level == RiskLevel.HIGH
        assert controls[1].keywords == {"audit"}
        assert repo.get("ctrl-missing") is None


class TestMappingRepository:
    """Tests for mapping persistence and queries."""

    def test_add_and_query(self, session: Session) -> None:
        repo = SqlMappingRepository(session)
        first = replace(make_mapping("ctrl-a", "soc2_v1:CC6.1"), created_at=FIXED_NOW, updated_at=FIXED_NOW)
        second = replace(
            make_mapping("ctrl-b", "soc2_v1:CC6.1", coverage=40.0),
            covered_aspects={"mfa"},
            created_at=FIXED_NOW + timedelta(seconds=1),
            updated_at=FIXED_NOW,
        )
        repo.add(first)
        repo.add(second)

        assert [m.id for m in repo.list_for_requirement("soc2_v1:CC6.1")] == [first.id, second.id]
        assert [m.id for m in repo.list_for_control("ctrl-b")] == [second.id]
        assert len(repo.list_for_version("soc2_v1")) == 2
        assert repo.get(second.id) == second

    def test_save_many_and_remove(self, session: Session) -> None:
        repo = SqlMappingRepository(session)
        mapping = make_mapping("ctrl-a", "soc2_v1:CC6.1")
        repo.add(mapping)

        repo.save_many([replace(mapping, drift_status=DriftStatus.DRIFTED, last_drift_check=FIXED_NOW)])
        updated = repo.get(mapping.id)
        assert updated.drift_status == DriftStatus.DRIFTED
        assert updated.last_drift_check == FIXED_NOW

        repo.remove(mapping.id)
        assert repo.get(mapping.id) is None
        assert repo.list_all() == []


class TestDriftRepository:
    def test_round_trip_with_resolution_path(self, session: Session) -> None:
        repo = SqlDriftRepository(session)
        drift = _drift()

        repo.save_many([drift])

        assert repo.get("d-1") == drift

    def test_status_update_keeps_single_row(self, session: Session) -> None:
        repo = SqlDriftRepository(session)
        drift = _drift()
        repo.save_many([drift])

        resolved = replace(
            drift,
            status=DriftRecordStatus.RESOLVED,
            selected_resolution=ResolutionType.ADD_EVIDENCE,
            resolved_at=FIXED_NOW,
            resolved_by="ciso@example.com",
        )
        repo.save_many([resolved])

        assert repo.list_all() == [resolved]
        assert repo.get("d-1").resolved_at.tzinfo is not None

    def test_repository_has_no_delete(self, session: Session) -> None:
        repo = SqlDriftRepository(session)
        assert not hasattr(repo, "delete")
        assert not hasattr(repo, "remove")


class TestGapRepository:
    """Tests for gap persistence and whole-table replacement."""

    def test_replace_all_swaps_contents(self, session: Session) -> None:
        repo = SqlGapRepository(session)
        repo.replace_all([_gap("g-1", "soc2_v1:CC6.1"), _gap("g-2", "soc2_v1:CC7.2")])

        repo.replace_all([_gap("g-2", "soc2_v1:CC7.2", severity=Severity.MEDIUM), _gap("g-3", "soc2_v1:A1.2")])

        gaps = repo.list_all()
        assert [g.id for g in gaps] == ["g-3", "g-2"]
        assert gaps[1].severity == Severity.MEDIUM
        assert repo.get("g-1") is None

    def test_direct_evidence_round_trip(self, session: Session) -> None:
        repo = SqlGapRepository(session)
        gap = _gap(
            "g-1",
            "soc2_v1:CC6.1",
            status=GapStatus.ACKNOWLEDGED,
            notes="Tracking",
            direct_evidence=[
                DirectEvidence(
                    id="ev-1",
                    gap_id="g-1",
                    title="Access review export",
                    description="Quarterly review",
                    uri="s3://evidence/review.csv",
                    uploaded_by="auditor@example.com",
                    uploaded_at=datetime(2025, 1, 2, 9, 30, tzinfo=UTC),
                )
            ],
        )

        repo.save(gap)

        assert repo.get("g-1") == gap

    def test_rollback_restores_previous_gaps(self, session: Session) -> None:
        repo = SqlGapRepository(session)
        repo.replace_all([_gap("g-1", "soc2_v1:CC6.1")])
        session.commit()

        repo.replace_all([])
        session.rollback()

        assert [g.id for g in repo.list_all()] == ["g-1"]


class TestEngineOverSql:
    """The engine against the SQL adapters, end to end."""

    @pytest.fixture()
    def sql_engine(self, session: Session, settings: Settings) -> CrosswalkEngine:
        controls = SqlControlRepository(session)
        controls.add(make_control("ctrl-access", RiskLevel.CRITICAL, title="Access control", keywords={"access"}))
        answers = {"ctrl-access": make_answer("ctrl-access", answer="yes")}
        return CrosswalkEngine(
            version_repo=SqlFrameworkVersionRepository(session),
            requirement_repo=SqlRequirementRepository(session),
            mapping_repo=SqlMappingRepository(session),
            drift_repo=SqlDriftRepository(session),
            gap_repo=SqlGapRepository(session),
            control_repo=controls,
            answer_lookup=lookup_from(answers),
            id_generator=SequentialIds("sql"),
            clock=MutableClock(FIXED_NOW),
            settings=settings,
        )

    def test_activation_drift_and_resolution(self, sql_engine: CrosswalkEngine, session: Session) -> None:
        fields = {
            "title": "Logical access",
            "official_text": "The entity reviews access.",
            "implementation_level": "mandatory",
            "verification_frequency": "annual",
            "risk_weight": 5,
        }
        sql_engine.add_version(
            framework_id="SOC2",
            version_code="v1",
            published_date=date(2023, 1, 1),
            effective_date=date(2023, 6, 1),
            status="active",
            version_id="soc2_v1",
        )
        sql_engine.add_version(
            framework_id="SOC2",
            version_code="v2",
            published_date=date(2024, 10, 1),
            effective_date=date(2025, 3, 1),
            previous_version_id="soc2_v1",
            version_id="soc2_v2",
        )
        old = sql_engine.add_requirement("soc2_v1", "CC6.1", required_evidence_types=["policy"], **fields)
        sql_engine.add_requirement("soc2_v2", "CC6.1", required_evidence_types=["policy", "audit_log"], **fields)
        mapping = sql_engine.create_mapping("ctrl-access", old.id, "direct", 100)

        [drift] = sql_engine.activate_version("soc2_v2").drift
        session.commit()

        assert sql_engine.versions.get("soc2_v1").status == VersionStatus.SUPERSEDED
        assert sql_engine.crosswalk.get(mapping.id).drift_status == DriftStatus.AT_RISK
        assert [d.id for d in sql_engine.open_drift()] == [drift.id]
        assert sql_engine.open_drift()[0].days_remaining == 59
        gap_codes = [sql_engine.library.get(g.requirement_id).requirement_code for g in sql_engine.open_gaps()]
        assert gap_codes == ["CC6.1"]
        assert sql_engine.open_gaps()[0].requirement_id != old.id

        sql_engine.resolve_drift(
            drift.id,
            DriftResolveRequest(resolution_type=ResolutionType.ADD_EVIDENCE, resolved_by="ciso@example.com"),
        )
        session.commit()

        assert sql_engine.crosswalk.get(mapping.id).drift_status == DriftStatus.CURRENT
        assert sql_engine.drift_statistics().resolved == 1
