"""Tests for requirement version comparison and the positional word diff."""

from datetime import date

import pytest

from crosswalk_engine.api.schemas import AffectedControl
from crosswalk_engine.core.diff import (
    REVIEW_CONTROL_ACTION,
    current_compliance_status,
    projected_compliance_status,
    recommended_actions,
    word_diff,
)
from crosswalk_engine.core.engine import CrosswalkEngine
from crosswalk_engine.core.models import ImplementationLevel, Severity
from crosswalk_engine.errors import NotFoundError
from tests.conftest import make_answer, make_requirement


def _affected(answer: str, still_valid: bool = True) -> AffectedControl:
    return AffectedControl(
        control_id="c1",
        current_answer=answer,
        answer_still_valid=still_valid,
        required_action=REVIEW_CONTROL_ACTION,
    )


class TestWordDiff:
    """Tests for the lock-step word diff."""

    def test_identical_texts_have_no_highlights(self) -> None:
        assert word_diff("Access is reviewed", "Access  is\treviewed") == []

    def test_changed_words_at_same_position(self) -> None:
        highlights = word_diff("Access is reviewed annually", "Access is verified quarterly")

        assert [(h.type, h.start_index, h.end_index, h.old_text, h.new_text) for h in highlights] == [
            ("changed", 2, 3, "reviewed", "verified"),
            ("changed", 3, 4, "annually", "quarterly"),
        ]

    def test_trailing_words_are_one_added_span(self) -> None:
        highlights = word_diff("Access is reviewed", "Access is reviewed and logged daily")

        assert len(highlights) == 1
        added = highlights[0]
        assert (added.type, added.start_index, added.end_index) == ("added", 3, 6)
        assert added.new_text == "and logged daily"
        assert added.old_text is None

    def test_trailing_words_are_one_removed_span(self) -> None:
        highlights = word_diff("Access is reviewed and logged", "Access is reviewed")

        assert [(h.type, h.start_index, h.end_index, h.old_text) for h in highlights] == [
            ("removed", 3, 5, "and logged"),
        ]

    def test_early_insertion_shifts_into_changed_spans(self) -> None:
        """Not an LCS diff: inserting a word shifts everything after it."""
        highlights = word_diff("review access", "always review access")

        assert [h.type for h in highlights] == ["changed", "changed", "added"]
        assert highlights[-1].new_text == "access"
        assert highlights[-1].start_index == 2

    def test_empty_old_text_is_all_added(self) -> None:
        highlights = word_diff("", "New requirement text")
        assert [(h.type, h.start_index, h.end_index, h.new_text) for h in highlights] == [
            ("added", 0, 3, "New requirement text"),
        ]


class TestComplianceStatus:
    @pytest.mark.parametrize(
        ("answers", "expected"),
        [
            ([], "unknown"),
            (["yes", "yes"], "compliant"),
            (["yes", "no"], "partial"),
            (["partial"], "partial"),
            (["no", "na"], "non_compliant"),
        ],
    )
    def test_current(self, answers: list[str], expected: str) -> None:
        assert current_compliance_status([_affected(a) for a in answers]) == expected

    def test_projected_for_added_requirement(self) -> None:
        assert projected_compliance_status([], "added") == "needs_review"

    def test_projected_all_valid_yes(self) -> None:
        assert projected_compliance_status([_affected("yes"), _affected("yes")], "modified") == "compliant"

    def test_projected_some_valid(self) -> None:
        affected = [_affected("yes"), _affected("yes", still_valid=False)]
        assert projected_compliance_status(affected, "modified") == "at_risk"

    def test_projected_none_valid(self) -> None:
        affected = [_affected("na", still_valid=False)]
        assert projected_compliance_status(affected, "modified") == "non_compliant"

    def test_projected_valid_but_not_yes(self) -> None:
        assert projected_compliance_status([_affected("partial")], "modified") == "needs_review"


class TestRecommendedActions:
    def test_added_high_emerging(self) -> None:
        requirement = make_requirement(emerging_tech_category="ai_ml", effective_date=date(2025, 8, 2))

        actions = recommended_actions("added", Severity.HIGH, requirement)

        assert actions[0] == "Review the new requirement and assess applicability"
        assert "Prioritize immediate review by compliance team" in actions
        assert "Review ai_ml specific requirements" in actions
        assert actions[-1] == "Ensure compliance by 2025-08-02"

    def test_low_modified_gets_baseline_actions(self) -> None:
        actions = recommended_actions("modified", Severity.LOW, make_requirement(effective_date=date(2025, 6, 1)))
        assert actions == [
            "Update control documentation",
            "Collect required evidence",
            "Ensure compliance by 2025-06-01",
        ]


def _add(engine: CrosswalkEngine, version_id: str, code: str, **overrides):
    fields = {
        "title": "Logical access security",
        "official_text": "The entity reviews access rights annually.",
        "implementation_level": "mandatory",
        "required_evidence_types": ["policy"],
        "verification_frequency": "annual",
        "risk_weight": 5,
    }
    fields.update(overrides)
    return engine.add_requirement(version_id, code, **fields)


class TestCompareVersions:
    """Tests for side-by-side requirement comparison."""

    def test_modified_requirement(self, soc2_versions: CrosswalkEngine, answers: dict) -> None:
        old = _add(soc2_versions, "soc2_v1", "CC6.1")
        _add(
            soc2_versions,
            "soc2_v2",
            "CC6.1",
            official_text="The entity must review access rights quarterly.",
        )
        answers["ctrl-access"] = make_answer("ctrl-access", answer="yes")
        soc2_versions.create_mapping("ctrl-access", old.id, "direct", 100)

        comparison = soc2_versions.compare_versions("CC6.1", "soc2_v1", "soc2_v2")

        assert comparison.change_type == "modified"
        assert comparison.change_severity == "high"
        assert comparison.framework_id == "SOC2"
        assert comparison.current_version.version_code == "v1"
        assert comparison.new_version.text == "The entity must review access rights quarterly."
        assert [h.type for h in comparison.diff_highlights] == ["changed", "changed", "changed", "changed", "added"]
        assert [c.control_id for c in comparison.affected_controls] == ["ctrl-access"]
        assert comparison.affected_controls[0].required_action == REVIEW_CONTROL_ACTION
        assert comparison.current_compliance_status == "compliant"
        assert comparison.projected_compliance_status == "compliant"

    def test_added_requirement(self, soc2_versions: CrosswalkEngine) -> None:
        _add(soc2_versions, "soc2_v2", "CC9.3", implementation_level="recommended")

        comparison = soc2_versions.compare_versions("CC9.3", "soc2_v1", "soc2_v2")

        assert comparison.change_type == "added"
        assert comparison.change_severity == "medium"
        assert comparison.current_version is None
        assert comparison.affected_controls == []
        assert comparison.current_compliance_status == "unknown"
        assert comparison.projected_compliance_status == "needs_review"
        assert comparison.recommended_actions[0] == "Review the new requirement and assess applicability"

    def test_added_mandatory_requirement_is_high(self, soc2_versions: CrosswalkEngine) -> None:
        _add(soc2_versions, "soc2_v2", "CC9.3")
        assert soc2_versions.compare_versions("CC9.3", "soc2_v1", "soc2_v2").change_severity == "high"

    def test_unchanged_requirement(self, soc2_versions: CrosswalkEngine) -> None:
        _add(soc2_versions, "soc2_v1", "CC6.1")
        _add(soc2_versions, "soc2_v2", "CC6.1")

        comparison = soc2_versions.compare_versions("CC6.1", "soc2_v1", "soc2_v2")

        assert comparison.change_type == "unchanged"
        assert comparison.change_severity == "low"
        assert comparison.diff_highlights == []

    def test_escalation_invalidates_na_answer(self, soc2_versions: CrosswalkEngine, answers: dict) -> None:
        old = _add(soc2_versions, "soc2_v1", "CC7.1", implementation_level=str(ImplementationLevel.OPTIONAL))
        _add(soc2_versions, "soc2_v2", "CC7.1")
        answers["ctrl-logging"] = make_answer("ctrl-logging", answer="na")
        soc2_versions.create_mapping("ctrl-logging", old.id, "partial", 50)

        comparison = soc2_versions.compare_versions("CC7.1", "soc2_v1", "soc2_v2")

        assert comparison.change_type == "modified"
        assert comparison.diff_highlights == []
        assert comparison.change_severity == "critical"
        assert comparison.affected_controls[0].answer_still_valid is False
        assert comparison.current_compliance_status == "non_compliant"
        assert comparison.projected_compliance_status == "non_compliant"

    def test_escalation_keeps_unanswered_control_valid(self, soc2_versions: CrosswalkEngine) -> None:
        old = _add(soc2_versions, "soc2_v1", "CC7.1", implementation_level=str(ImplementationLevel.OPTIONAL))
        _add(soc2_versions, "soc2_v2", "CC7.1")
        soc2_versions.create_mapping("ctrl-logging", old.id, "partial", 50)

        comparison = soc2_versions.compare_versions("CC7.1", "soc2_v1", "soc2_v2")

        [affected] = comparison.affected_controls
        assert affected.current_answer == "no"
        assert affected.answer_still_valid is True
        assert comparison.current_compliance_status == "non_compliant"
        assert comparison.projected_compliance_status == "needs_review"

    def test_transition_deadline_from_period(self, soc2_versions: CrosswalkEngine) -> None:
        _add(soc2_versions, "soc2_v1", "CC6.1")
        _add(
            soc2_versions,
            "soc2_v2",
            "CC6.1",
            effective_date=date(2025, 3, 1),
            transition_period_days=90,
        )

        comparison = soc2_versions.compare_versions("CC6.1", "soc2_v1", "soc2_v2")

        assert comparison.current_version.transition_deadline is None
        assert comparison.new_version.transition_deadline == date(2025, 5, 30)

    def test_code_missing_from_new_version_raises(self, soc2_versions: CrosswalkEngine) -> None:
        _add(soc2_versions, "soc2_v1", "CC6.1")
        with pytest.raises(NotFoundError):
            soc2_versions.compare_versions("CC6.1", "soc2_v1", "soc2_v2")
