"""Coverage and scoring over the crosswalk.

Pure functions over snapshots of requirements, mappings, controls and
answers. Every percentage applies the same N/A exclusion rule: items whose
controls are all answered not applicable drop out of both numerator and
denominator.

Functions:
- aggregate_coverage - diminishing-returns stacking of mapping coverage
- framework_coverage - per-framework satisfied/excluded clause percentage
- domain_groups - per-domain implementation percentage
- weighted_scores - risk-weighted and unweighted scores with gap lists
- global_stats - catalog-wide status counts
- requirement_progress - auditor view of one requirement
"""

import math
from collections.abc import Iterable

from crosswalk_engine.api.schemas import (
    ClauseCoverage,
    DirectEvidenceResponse,
    DomainGroup,
    FrameworkCoverageSummary,
    GapInfo,
    GlobalStats,
    MappedControlSummary,
    RequirementProgress,
    RiskTierBreakdown,
    WeightedScoreResult,
)
from crosswalk_engine.core.interfaces import AnswerLookup
from crosswalk_engine.core.models import (
    STATUS_IMPLEMENTED,
    STATUS_IN_PROGRESS,
    STATUS_NOT_APPLICABLE,
    STATUS_NOT_STARTED,
    Control,
    CrosswalkMapping,
    CustomGap,
    MasterRequirement,
    RiskLevel,
)
from crosswalk_engine.errors import InvalidStateError

RISK_WEIGHTS: dict[RiskLevel, int] = {
    RiskLevel.CRITICAL: 4,
    RiskLevel.HIGH: 3,
    RiskLevel.MEDIUM: 2,
    RiskLevel.LOW: 1,
}

UNASSIGNED_DOMAIN = "unassigned"


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero for positive values."""
    return math.floor(value + 0.5)


def percentage(numerator: int | float, denominator: int | float) -> int:
    """Return round(numerator / denominator * 100), or 0 for an empty denominator."""
    if denominator <= 0:
        return 0
    return round_half_up(numerator / denominator * 100)


def aggregate_coverage(coverages: Iterable[float]) -> int:
    """Stack per-mapping coverage with diminishing returns.

    Mappings are applied in descending coverage order and each one only
    covers the share still uncovered:

        coverage += c * (1 - coverage / 100)

    Args:
        coverages: Coverage percentages of the mappings, each 0-100.

    Returns:
        Aggregate coverage rounded to an integer in [0, 100]; 0 for no mappings.

    Raises:
        InvalidStateError: If any percentage is negative or above 100.
    """
    values = sorted(coverages, reverse=True)
    for value in values:
        if value < 0 or value > 100:
            raise InvalidStateError(f"Coverage percentage {value} is outside [0, 100]")

    total = 0.0
    for value in values:
        total += value * (1 - total / 100)
        if total >= 100:
            break
    return min(100, max(0, round_half_up(total)))


def implementation_status(control_id: str, answer_lookup: AnswerLookup) -> str:
    """Collapse a control's answer into implemented | not_applicable | in_progress | not_started."""
    answer = answer_lookup(control_id)
    if answer is None:
        return STATUS_NOT_STARTED
    if answer.is_not_applicable:
        return STATUS_NOT_APPLICABLE
    if answer.is_implemented:
        return STATUS_IMPLEMENTED
    if answer.is_in_progress:
        return STATUS_IN_PROGRESS
    return STATUS_NOT_STARTED


# ---------------------------------------------------------------------------
# Framework coverage
# ---------------------------------------------------------------------------


def framework_coverage(
    framework_id: str,
    framework_version_id: str | None,
    requirements: Iterable[MasterRequirement],
    mappings: Iterable[CrosswalkMapping],
    answer_lookup: AnswerLookup,
) -> FrameworkCoverageSummary:
    """Compute the satisfied-clause percentage for one framework version.

    Only requirements mapped by at least one current mapping are counted.
    A requirement is satisfied when any mapped control is implemented and
    excluded when every mapped control is not applicable.

    Args:
        framework_id: Framework being summarized.
        framework_version_id: Version the requirements and mappings belong to.
        requirements: Requirements of that version.
        mappings: Mappings of that version.
        answer_lookup: Current answer per control id.

    Returns:
        FrameworkCoverageSummary with per-requirement clause rows.
    """
    by_requirement: dict[str, list[CrosswalkMapping]] = {}
    for mapping in mappings:
        if mapping.is_current:
            by_requirement.setdefault(mapping.requirement_id, []).append(mapping)

    clauses: list[ClauseCoverage] = []
    for requirement in sorted(requirements, key=lambda r: r.requirement_code):
        linked = by_requirement.get(requirement.id)
        if not linked:
            continue

        control_ids = sorted({m.control_id for m in linked})
        answers = [answer_lookup(control_id) for control_id in control_ids]
        excluded = all(a is not None and a.is_not_applicable for a in answers)
        satisfied = any(a is not None and a.is_implemented for a in answers)
        clauses.append(
            ClauseCoverage(
                requirement_id=requirement.id,
                requirement_code=requirement.requirement_code,
                title=requirement.title,
                control_ids=control_ids,
                satisfied=satisfied and not excluded,
                excluded=excluded,
                coverage=aggregate_coverage(m.coverage_percentage for m in linked),
            )
        )

    total = len(clauses)
    excluded_count = sum(1 for c in clauses if c.excluded)
    satisfied_count = sum(1 for c in clauses if c.satisfied)
    return FrameworkCoverageSummary(
        framework_id=framework_id,
        framework_version_id=framework_version_id,
        total_clauses=total,
        satisfied_clauses=satisfied_count,
        excluded_clauses=excluded_count,
        percentage=percentage(satisfied_count, total - excluded_count),
        clauses=clauses,
    )


# ---------------------------------------------------------------------------
# Control-level scores
# ---------------------------------------------------------------------------


def domain_groups(controls: Iterable[Control], answer_lookup: AnswerLookup) -> list[DomainGroup]:
    """Group controls by domain with an N/A-excluding implementation percentage.

    Args:
        controls: Control catalog.
        answer_lookup: Current answer per control id.

    Returns:
        One DomainGroup per domain, ordered by domain name.
    """
    grouped: dict[str, list[Control]] = {}
    for control in controls:
        grouped.setdefault(control.domain or UNASSIGNED_DOMAIN, []).append(control)

    groups = []
    for domain in sorted(grouped):
        members = grouped[domain]
        statuses = [implementation_status(c.id, answer_lookup) for c in members]
        na_count = statuses.count(STATUS_NOT_APPLICABLE)
        implemented = statuses.count(STATUS_IMPLEMENTED)
        groups.append(
            DomainGroup(
                domain=domain,
                control_ids=[c.id for c in members],
                total_controls=len(members),
                implemented_count=implemented,
                not_applicable_count=na_count,
                percentage=percentage(implemented, len(members) - na_count),
            )
        )
    return groups


def weighted_scores(controls: Iterable[Control], answer_lookup: AnswerLookup) -> WeightedScoreResult:
    """Compute risk-weighted and unweighted compliance scores.

    Weights: critical 4, high 3, medium 2, low 1. N/A controls are tallied
    per tier in `na_count` but contribute to neither score. Unimplemented
    critical and high controls are listed in `critical_gaps`/`high_gaps`.

    Args:
        controls: Control catalog.
        answer_lookup: Current answer per control id.

    Returns:
        WeightedScoreResult.
    """
    breakdown = {str(level): RiskTierBreakdown(weight=weight) for level, weight in RISK_WEIGHTS.items()}
    critical_gaps: list[str] = []
    high_gaps: list[str] = []
    total_weight = 0
    achieved_weight = 0
    applicable = 0
    implemented = 0

    for control in controls:
        level = RiskLevel(control.risk_level) if control.risk_level else RiskLevel.MEDIUM
        weight = RISK_WEIGHTS[level]
        tier = breakdown[str(level)]
        status = implementation_status(control.id, answer_lookup)

        if status == STATUS_NOT_APPLICABLE:
            tier.na_count += 1
            continue

        total_weight += weight
        applicable += 1
        tier.total += 1

        if status == STATUS_IMPLEMENTED:
            achieved_weight += weight
            implemented += 1
            tier.implemented += 1
        elif level == RiskLevel.CRITICAL:
            critical_gaps.append(control.id)
        elif level == RiskLevel.HIGH:
            high_gaps.append(control.id)

    return WeightedScoreResult(
        weighted_score=percentage(achieved_weight, total_weight),
        unweighted_score=percentage(implemented, applicable),
        risk_breakdown=breakdown,
        critical_gaps=critical_gaps,
        high_gaps=high_gaps,
    )


def global_stats(controls: Iterable[Control], answer_lookup: AnswerLookup) -> GlobalStats:
    """Count controls per implementation status across the catalog."""
    statuses = [implementation_status(c.id, answer_lookup) for c in controls]
    implemented = statuses.count(STATUS_IMPLEMENTED)
    na_count = statuses.count(STATUS_NOT_APPLICABLE)
    return GlobalStats(
        total_controls=len(statuses),
        implemented_controls=implemented,
        in_progress_controls=statuses.count(STATUS_IN_PROGRESS),
        not_started_controls=statuses.count(STATUS_NOT_STARTED),
        not_applicable_controls=na_count,
        overall_percentage=percentage(implemented, len(statuses) - na_count),
    )


# ---------------------------------------------------------------------------
# Requirement progress
# ---------------------------------------------------------------------------


def requirement_progress(
    requirement: MasterRequirement,
    mappings: Iterable[CrosswalkMapping],
    gap: CustomGap | None,
    controls_by_id: dict[str, Control],
    answer_lookup: AnswerLookup,
) -> RequirementProgress:
    """Build the auditor view of one requirement.

    Status precedence: an unresolved gap gives `custom_gap`; full coverage
    gives `compliant` when every mapped control is implemented, otherwise
    `in_progress`; partial coverage gives `partially_compliant`; no
    coverage gives `not_started`.
    """
    current = [m for m in mappings if m.is_current]
    total_coverage = aggregate_coverage(m.coverage_percentage for m in current)

    mapped_controls = []
    for mapping in current:
        control = controls_by_id.get(mapping.control_id)
        mapped_controls.append(
            MappedControlSummary(
                control_id=mapping.control_id,
                control_title=control.title if control else mapping.control_id,
                mapping_strength=str(mapping.mapping_strength),
                coverage_percentage=mapping.coverage_percentage,
                implementation_status=implementation_status(mapping.control_id, answer_lookup),
            )
        )

    has_gap = gap is not None and gap.is_open
    if has_gap:
        status = "custom_gap"
    elif total_coverage >= 100:
        all_implemented = all(c.implementation_status == STATUS_IMPLEMENTED for c in mapped_controls)
        status = "compliant" if all_implemented else "in_progress"
    elif total_coverage > 0:
        status = "partially_compliant"
    else:
        status = "not_started"

    gap_info = None
    direct_evidence: list[DirectEvidenceResponse] = []
    if gap is not None:
        gap_info = GapInfo(
            gap_type=str(gap.gap_type),
            description=gap.description,
            resolution=str(gap.selected_resolution) if gap.selected_resolution else None,
        )
        direct_evidence = [
            DirectEvidenceResponse(
                id=e.id,
                gap_id=e.gap_id,
                title=e.title,
                description=e.description,
                uri=e.uri,
                uploaded_by=e.uploaded_by,
                uploaded_at=e.uploaded_at,
            )
            for e in gap.direct_evidence
        ]

    return RequirementProgress(
        requirement_id=requirement.id,
        framework_id=requirement.framework_id,
        requirement_code=requirement.requirement_code,
        title=requirement.title,
        status=status,
        mapped_controls=mapped_controls,
        total_coverage=total_coverage,
        has_gap=has_gap,
        gap_info=gap_info,
        direct_evidence=direct_evidence,
    )
