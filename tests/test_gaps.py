"""Tests for gap detection and the gap workflow."""

from datetime import date, timedelta

import pytest

from crosswalk_engine.api.schemas import DirectEvidenceCreateRequest, GapUpdateRequest
from crosswalk_engine.core.engine import CrosswalkEngine
from crosswalk_engine.core.gaps import FULL_REQUIREMENT_COVERAGE, gap_resolution_options, infer_gap_severity
from crosswalk_engine.core.models import GapResolutionType, GapStatus, Severity
from crosswalk_engine.errors import InvalidStateError, NotFoundError, ValidationError
from tests.conftest import make_requirement


def _add(engine: CrosswalkEngine, version_id: str, code: str, title: str, parent_code: str | None = None):
    return engine.add_requirement(
        version_id,
        code,
        title=title,
        official_text=f"{title} requirement text.",
        implementation_level="mandatory",
        required_evidence_types=["policy"],
        verification_frequency="annual",
        risk_weight=5,
        parent_code=parent_code,
    )


@pytest.fixture()
def gap_engine(soc2_versions: CrosswalkEngine) -> CrosswalkEngine:
    """SOC2 v1 with one unmapped, one under-covered and one well-covered requirement."""
    _add(soc2_versions, "soc2_v1", "CC6.1", "Logical access")
    monitoring = _add(soc2_versions, "soc2_v1", "CC7.2", "System monitoring")
    change = _add(soc2_versions, "soc2_v1", "CC8.1", "Change management")
    soc2_versions.create_mapping("ctrl-logging", monitoring.id, "partial", 40, uncovered_aspects=["alerting"])
    soc2_versions.create_mapping("ctrl-policy", change.id, "direct", 90)
    return soc2_versions


def _gap_by_code(engine: CrosswalkEngine, code: str):
    requirement = engine.library.get_by_code("soc2_v1", code)
    return engine.gaps.gap_for_requirement(requirement.id)


class TestInferGapSeverity:
    """Tests for the keyword severity heuristic."""

    @pytest.mark.parametrize(
        ("code", "title", "expected"),
        [
            ("A.8.24", "Use of cryptography and encryption", Severity.CRITICAL),
            ("A.8.5", "Secure authentication", Severity.CRITICAL),
            ("CC6.3", "Role changes", Severity.CRITICAL),
            ("164.312(a)(1)", "Standard", Severity.CRITICAL),
            ("A.5.24", "Incident management planning", Severity.HIGH),
            ("A.8.13", "Information backup", Severity.HIGH),
            ("A.6.3", "Security awareness training", Severity.MEDIUM),
            ("A.5.1", "Information security policy", Severity.MEDIUM),
            ("A.5.19", "Supplier relationships", Severity.LOW),
        ],
    )
    def test_keyword_rules(self, code: str, title: str, expected: Severity) -> None:
        assert infer_gap_severity(make_requirement(code=code, title=title)) == expected

    def test_empty_title_falls_back_to_low(self) -> None:
        assert infer_gap_severity(make_requirement(code="X", title="")) == Severity.LOW


class TestResolutionOptions:
    def test_fixed_order_with_effort(self) -> None:
        options = gap_resolution_options()
        assert [o.type for o in options] == [
            GapResolutionType.CREATE_CONTROL,
            GapResolutionType.UPLOAD_EVIDENCE,
            GapResolutionType.CREATE_POLICY,
            GapResolutionType.COMPENSATING_CONTROL,
            GapResolutionType.ACCEPT_RISK,
        ]
        assert [o.effort for o in options] == ["high", "low", "medium", "medium", "low"]


class TestRecalculate:
    """Tests for full gap recalculation passes."""

    def test_detects_unmapped_and_insufficient(self, gap_engine: CrosswalkEngine) -> None:
        gaps = gap_engine.recalculate_gaps()

        assert len(gaps) == 2
        unmapped = _gap_by_code(gap_engine, "CC6.1")
        assert unmapped.gap_type == "no_control_mapped"
        assert unmapped.severity == Severity.CRITICAL
        assert unmapped.coverage == 0
        assert unmapped.missing_coverage == [FULL_REQUIREMENT_COVERAGE]
        assert unmapped.description == "No controls are mapped to requirement CC6.1: Logical access"

        insufficient = _gap_by_code(gap_engine, "CC7.2")
        assert insufficient.gap_type == "insufficient_coverage"
        assert insufficient.severity == Severity.HIGH
        assert insufficient.coverage == 40
        assert insufficient.missing_coverage == ["alerting"]
        assert insufficient.description == "Controls only cover 40% of requirement CC7.2"

        assert _gap_by_code(gap_engine, "CC8.1") is None

    def test_coverage_between_thresholds_is_medium(self, gap_engine: CrosswalkEngine) -> None:
        requirement = gap_engine.library.get_by_code("soc2_v1", "CC6.1")
        gap_engine.create_mapping("ctrl-access", requirement.id, "partial", 60)

        gap = _gap_by_code(gap_engine, "CC6.1")

        assert gap.gap_type == "insufficient_coverage"
        assert gap.severity == Severity.MEDIUM

    def test_mapping_changes_recalculate_automatically(self, gap_engine: CrosswalkEngine) -> None:
        requirement = gap_engine.library.get_by_code("soc2_v1", "CC6.1")
        mapping = gap_engine.create_mapping("ctrl-access", requirement.id, "direct", 100)
        assert _gap_by_code(gap_engine, "CC6.1") is None

        gap_engine.remove_mapping(mapping.id)
        assert _gap_by_code(gap_engine, "CC6.1").gap_type == "no_control_mapped"

    def test_recalculation_is_stable(self, gap_engine: CrosswalkEngine) -> None:
        first = gap_engine.recalculate_gaps()
        second = gap_engine.recalculate_gaps()
        assert [g.model_dump() for g in first] == [g.model_dump() for g in second]

    def test_user_status_and_notes_survive_unrelated_change(self, gap_engine: CrosswalkEngine) -> None:
        gap = _gap_by_code(gap_engine, "CC7.2")
        gap_engine.update_gap(gap.id, GapUpdateRequest(status=GapStatus.ACKNOWLEDGED, notes="Tracking in Q3"))

        requirement = gap_engine.library.get_by_code("soc2_v1", "CC6.1")
        gap_engine.create_mapping("ctrl-access", requirement.id, "direct", 100)
        gap_engine.recalculate_gaps()

        kept = _gap_by_code(gap_engine, "CC7.2")
        assert kept.id == gap.id
        assert kept.status == GapStatus.ACKNOWLEDGED
        assert kept.notes == "Tracking in Q3"
        assert kept.identified_at == gap.identified_at

    def test_failed_pass_leaves_gaps_untouched(
        self, gap_engine: CrosswalkEngine, clock, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """CC6.1 is derived before CC7.2 fails; nothing from the pass is published."""
        gap = _gap_by_code(gap_engine, "CC6.1")
        gap_engine.update_gap(gap.id, GapUpdateRequest(status=GapStatus.IN_PROGRESS, notes="Owner assigned"))
        before = gap_engine.gaps.gaps_for_framework("SOC2")
        vendor = _add(gap_engine, "soc2_v1", "CC9.1", "Vendor management")
        clock.now = clock.now + timedelta(days=1)

        def failing_aggregate(coverages):
            raise InvalidStateError("Coverage percentage out of range")

        monkeypatch.setattr("crosswalk_engine.core.gaps.aggregate_coverage", failing_aggregate)

        with pytest.raises(InvalidStateError):
            gap_engine.recalculate_gaps()

        assert gap_engine.gaps.gaps_for_framework("SOC2") == before
        assert gap_engine.gaps.gap_for_requirement(vendor.id) is None

    def test_gap_for_covered_requirement_disappears(self, gap_engine: CrosswalkEngine) -> None:
        requirement = gap_engine.library.get_by_code("soc2_v1", "CC7.2")
        gap_engine.create_mapping("ctrl-access", requirement.id, "partial", 80)
        assert _gap_by_code(gap_engine, "CC7.2") is None

    def test_only_leaf_requirements_are_scanned(self, soc2_versions: CrosswalkEngine) -> None:
        _add(soc2_versions, "soc2_v1", "CC6", "Logical and physical access")
        _add(soc2_versions, "soc2_v1", "CC6.1", "Logical access", parent_code="CC6")

        gaps = soc2_versions.recalculate_gaps()

        assert [g.requirement_id for g in gaps] == [soc2_versions.library.get_by_code("soc2_v1", "CC6.1").id]

    def test_inactive_frameworks_use_latest_version(self, engine: CrosswalkEngine) -> None:
        engine.add_version(
            framework_id="ISO27001",
            version_code="2013",
            published_date=date(2013, 10, 1),
            effective_date=date(2013, 10, 1),
        )
        engine.add_version(
            framework_id="ISO27001",
            version_code="2022",
            published_date=date(2022, 10, 25),
            effective_date=date(2022, 10, 25),
        )
        _add(engine, "iso27001_2013", "A.9.1", "Access control policy")
        latest = _add(engine, "iso27001_2022", "A.5.15", "Access control")

        gaps = engine.recalculate_gaps()

        assert [g.requirement_id for g in gaps] == [latest.id]
        assert [g.requirement_id for g in engine.gaps_for_framework("ISO27001")] == [latest.id]

    def test_every_gap_offers_resolution_options(self, gap_engine: CrosswalkEngine) -> None:
        for gap in gap_engine.recalculate_gaps():
            assert [o.option_id for o in gap.resolution_options] == [
                "create_control",
                "upload_evidence",
                "create_policy",
                "compensating_control",
                "accept_risk",
            ]


class TestGapWorkflow:
    """Tests for gap updates, direct evidence and queries."""

    def test_resolving_stamps_resolution(self, gap_engine: CrosswalkEngine, clock) -> None:
        gap = _gap_by_code(gap_engine, "CC6.1")
        clock.now = clock.now + timedelta(days=3)

        response = gap_engine.update_gap(
            gap.id,
            GapUpdateRequest(
                status=GapStatus.RESOLVED,
                selected_resolution=GapResolutionType.UPLOAD_EVIDENCE,
                resolved_by="auditor@example.com",
            ),
        )

        assert response.status == "resolved"
        assert response.selected_resolution == "upload_evidence"
        assert response.resolved_by == "auditor@example.com"
        assert response.resolved_at == clock.now

    def test_resolved_gap_leaves_open_list(self, gap_engine: CrosswalkEngine) -> None:
        gap = _gap_by_code(gap_engine, "CC6.1")
        gap_engine.update_gap(gap.id, GapUpdateRequest(status=GapStatus.RESOLVED))
        gap_engine.recalculate_gaps()

        open_ids = [g.id for g in gap_engine.open_gaps()]

        assert gap.id not in open_ids
        assert _gap_by_code(gap_engine, "CC6.1").status == GapStatus.RESOLVED

    def test_open_gaps_most_severe_first(self, gap_engine: CrosswalkEngine) -> None:
        severities = [g.severity for g in gap_engine.open_gaps()]
        assert severities == ["critical", "high"]

    def test_unknown_status_rejected(self, gap_engine: CrosswalkEngine) -> None:
        gap = _gap_by_code(gap_engine, "CC6.1")
        with pytest.raises(ValidationError):
            gap_engine.gaps.update_gap(gap.id, status="closed")

    def test_unknown_gap_raises(self, gap_engine: CrosswalkEngine) -> None:
        with pytest.raises(NotFoundError):
            gap_engine.update_gap("missing", GapUpdateRequest(notes="x"))

    def test_direct_evidence_attached_and_preserved(self, gap_engine: CrosswalkEngine) -> None:
        gap = _gap_by_code(gap_engine, "CC6.1")

        evidence = gap_engine.add_gap_evidence(
            gap.id,
            DirectEvidenceCreateRequest(
                title="Access review export",
                description="Quarterly access review",
                uri="s3://evidence/access-review.csv",
                uploaded_by="auditor@example.com",
            ),
        )
        gap_engine.recalculate_gaps()

        stored = _gap_by_code(gap_engine, "CC6.1")
        assert evidence.gap_id == gap.id
        assert [e.id for e in stored.direct_evidence] == [evidence.id]

        progress = gap_engine.requirement_progress(stored.requirement_id)
        assert [e.title for e in progress.direct_evidence] == ["Access review export"]
        assert progress.status == "custom_gap"
