"""Version comparison and positional word diff for display.

`word_diff` walks both word lists in lock-step: a differing word at the same
position is a `changed` span, and whatever is left on the longer side once
the shorter side runs out is a single `added` or `removed` span. It is not
an LCS diff; an insertion early in the text shows up as a run of `changed`
spans followed by one `added` span, and UI consumers depend on exactly that.
"""

from collections.abc import Iterable
from datetime import timedelta

from crosswalk_engine.api.schemas import (
    AffectedControl,
    DiffHighlight,
    RequirementVersionComparison,
    RequirementVersionSnapshot,
)
from crosswalk_engine.core.drift import analyze_change, answer_value
from crosswalk_engine.core.interfaces import AnswerLookup, IMappingRepository
from crosswalk_engine.core.library import RequirementLibrary
from crosswalk_engine.core.models import (
    ANSWER_PARTIAL,
    ANSWER_YES,
    Control,
    FrameworkVersion,
    ImplementationLevel,
    MasterRequirement,
    Severity,
)
from crosswalk_engine.core.versions import FrameworkVersionManager
from crosswalk_engine.errors import NotFoundError
from crosswalk_engine.settings import Settings

REVIEW_CONTROL_ACTION = "Review and update control implementation"


def word_diff(old_text: str, new_text: str) -> list[DiffHighlight]:
    """Positional word-level diff of two texts.

    Args:
        old_text: Previous text.
        new_text: Updated text.

    Returns:
        Highlights in walk order. Indexes of `changed` and `removed` spans
        refer to old-text word positions; `added` spans refer to new-text positions.
    """
    old_words = old_text.split()
    new_words = new_text.split()
    highlights: list[DiffHighlight] = []

    index = 0
    while index < len(old_words) and index < len(new_words):
        if old_words[index] != new_words[index]:
            highlights.append(
                DiffHighlight(
                    type="changed",
                    start_index=index,
                    end_index=index + 1,
                    old_text=old_words[index],
                    new_text=new_words[index],
                )
            )
        index += 1

    if index < len(new_words):
        highlights.append(
            DiffHighlight(
                type="added",
                start_index=index,
                end_index=len(new_words),
                new_text=" ".join(new_words[index:]),
            )
        )
    elif index < len(old_words):
        highlights.append(
            DiffHighlight(
                type="removed",
                start_index=index,
                end_index=len(old_words),
                old_text=" ".join(old_words[index:]),
            )
        )
    return highlights


def current_compliance_status(affected: list[AffectedControl]) -> str:
    if not affected:
        return "unknown"
    yes_count = sum(1 for c in affected if c.current_answer == ANSWER_YES)
    partial_count = sum(1 for c in affected if c.current_answer == ANSWER_PARTIAL)
    if yes_count == len(affected):
        return "compliant"
    if yes_count + partial_count > 0:
        return "partial"
    return "non_compliant"


def projected_compliance_status(affected: list[AffectedControl], change_type: str) -> str:
    if change_type == "added":
        return "needs_review"
    valid_count = sum(1 for c in affected if c.answer_still_valid and c.current_answer == ANSWER_YES)
    if valid_count == len(affected):
        return "compliant"
    if valid_count > 0:
        return "at_risk"
    if any(not c.answer_still_valid for c in affected):
        return "non_compliant"
    return "needs_review"


def recommended_actions(change_type: str, severity: Severity, requirement: MasterRequirement) -> list[str]:
    actions = []
    if change_type == "added":
        actions.extend(
            [
                "Review the new requirement and assess applicability",
                "Identify controls that can address this requirement",
                "Create new controls if necessary",
            ]
        )
    if severity in (Severity.CRITICAL, Severity.HIGH):
        actions.extend(
            [
                "Prioritize immediate review by compliance team",
                "Assess impact on current certifications",
            ]
        )
    if requirement.emerging_tech_category:
        actions.extend(
            [
                f"Review {requirement.emerging_tech_category} specific requirements",
                "Consult with technical team on implementation feasibility",
            ]
        )
    actions.extend(
        [
            "Update control documentation",
            "Collect required evidence",
            f"Ensure compliance by {requirement.effective_date.isoformat()}",
        ]
    )
    return actions


def _snapshot(
    version: FrameworkVersion,
    requirement: MasterRequirement,
    with_deadline: bool,
) -> RequirementVersionSnapshot:
    deadline = None
    if with_deadline:
        deadline = version.transition_deadline
        if deadline is None and requirement.transition_period_days:
            deadline = requirement.effective_date + timedelta(days=requirement.transition_period_days)
    return RequirementVersionSnapshot(
        version_id=version.id,
        version_code=version.version_code,
        text=requirement.official_text,
        effective_date=requirement.effective_date,
        transition_deadline=deadline,
    )


class VersionComparator:
    """Builds side-by-side comparison records for one requirement transition.

    Args:
        versions: Framework version manager.
        library: Requirement library.
        mapping_repo: Repository implementing IMappingRepository.
        settings: Provides the drift risk weight jump.
    """

    def __init__(
        self,
        versions: FrameworkVersionManager,
        library: RequirementLibrary,
        mapping_repo: IMappingRepository,
        settings: Settings,
    ) -> None:
        self._versions = versions
        self._library = library
        self._mapping_repo = mapping_repo
        self._settings = settings

    def compare(
        self,
        requirement_code: str,
        old_version_id: str,
        new_version_id: str,
        controls: Iterable[Control],
        answer_lookup: AnswerLookup,
    ) -> RequirementVersionComparison:
        """Compare one requirement across two framework versions.

        Args:
            requirement_code: Code to compare.
            old_version_id: Current version.
            new_version_id: Incoming version.
            controls: Control catalog, used to scope affected controls.
            answer_lookup: Current answer per control id.

        Returns:
            RequirementVersionComparison.

        Raises:
            NotFoundError: If either version does not exist, or the code is
                absent from the new version.
        """
        old_version = self._versions.get(old_version_id)
        new_version = self._versions.get(new_version_id)
        old_req = self._library.get_by_code(old_version_id, requirement_code)
        new_req = self._library.get_by_code(new_version_id, requirement_code)
        if new_req is None:
            raise NotFoundError(resource="MasterRequirement", resource_id=f"{new_version_id}/{requirement_code}")

        known_controls = {c.id for c in controls}
        affected: list[AffectedControl] = []
        if old_req is not None:
            for mapping in self._mapping_repo.list_for_requirement(old_req.id):
                if not mapping.is_current or mapping.framework_version_id != old_version_id:
                    continue
                if known_controls and mapping.control_id not in known_controls:
                    continue
                answer = answer_lookup(mapping.control_id)
                current_answer = answer_value(answer)
                # Unanswered controls are shown as "no" but analysed without an answer.
                analysis = analyze_change(
                    old_req,
                    new_req,
                    current_answer if answer is not None else "",
                    self._settings.risk_weight_jump,
                )
                affected.append(
                    AffectedControl(
                        control_id=mapping.control_id,
                        current_answer=current_answer,
                        answer_still_valid=analysis.answer_still_valid,
                        required_action=REVIEW_CONTROL_ACTION,
                    )
                )

        if old_req is None:
            change_type = "added"
            severity = (
                Severity.HIGH if new_req.implementation_level == ImplementationLevel.MANDATORY else Severity.MEDIUM
            )
        else:
            analysis = analyze_change(old_req, new_req, ANSWER_YES, self._settings.risk_weight_jump)
            change_type = "modified" if analysis.has_drift else "unchanged"
            severity = analysis.severity if analysis.has_drift else Severity.LOW

        return RequirementVersionComparison(
            requirement_code=requirement_code,
            framework_id=new_req.framework_id,
            current_version=_snapshot(old_version, old_req, with_deadline=False) if old_req else None,
            new_version=_snapshot(new_version, new_req, with_deadline=True),
            change_type=change_type,
            change_severity=str(severity),
            diff_highlights=word_diff(old_req.official_text if old_req else "", new_req.official_text),
            affected_controls=affected,
            current_compliance_status=current_compliance_status(affected),
            projected_compliance_status=projected_compliance_status(affected, change_type),
            recommended_actions=recommended_actions(change_type, severity, new_req),
        )
