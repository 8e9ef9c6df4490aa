"""Pydantic request and response schemas for the crosswalk engine.

The engine's outbound read models (dashboards, auditor views, drift and gap
queues) and the inbound request bodies for discrete mutations. Domain
objects stay dataclasses; these models are what collaborators receive.

Resources:
- Coverage - framework coverage, domain grouping, weighted scores, global stats
- RequirementProgress - auditor view of one requirement
- Drift - drift records, resolution requests, statistics
- Gap - custom gaps, gap updates, direct evidence
- Mapping - auto-mapping suggestions
- Comparison - side-by-side requirement version comparison with word diff
"""

from datetime import date, datetime

from pydantic import BaseModel, Field

from crosswalk_engine.core.models import GapResolutionType, GapStatus, ResolutionType

# ---------------------------------------------------------------------------
# Coverage & scoring schemas
# ---------------------------------------------------------------------------


class ClauseCoverage(BaseModel):
    """Coverage of one mapped requirement within a framework version."""

    requirement_id: str = Field(description="Requirement id")
    requirement_code: str = Field(description="Official requirement code")
    title: str = Field(description="Requirement title")
    control_ids: list[str] = Field(description="Controls currently mapped to the requirement")
    satisfied: bool = Field(description="At least one mapped control is implemented")
    excluded: bool = Field(description="Every mapped control is not applicable")
    coverage: int = Field(description="Diminishing-returns aggregate coverage, 0-100")


class FrameworkCoverageSummary(BaseModel):
    """Per-framework compliance percentage with N/A exclusion."""

    framework_id: str = Field(description="Framework id")
    framework_version_id: str | None = Field(description="Version the summary was computed for")
    total_clauses: int = Field(description="Requirements mapped by at least one control")
    satisfied_clauses: int = Field(description="Mapped requirements with an implemented control")
    excluded_clauses: int = Field(description="Mapped requirements where every control is N/A")
    percentage: int = Field(description="satisfied / (total - excluded), 0 when the denominator is 0")
    clauses: list[ClauseCoverage] = Field(default_factory=list, description="Per-requirement rows")


class DomainGroup(BaseModel):
    """Controls grouped by compliance domain."""

    domain: str = Field(description="Domain name")
    control_ids: list[str] = Field(description="Controls in the domain")
    total_controls: int = Field(description="Number of controls in the domain")
    implemented_count: int = Field(description="Implemented controls")
    not_applicable_count: int = Field(description="Controls answered not applicable")
    percentage: int = Field(description="implemented / applicable, 0 when no control is applicable")


class RiskTierBreakdown(BaseModel):
    """Tally for one risk tier in the weighted score."""

    total: int = Field(default=0, description="Applicable controls in the tier")
    implemented: int = Field(default=0, description="Implemented controls in the tier")
    weight: int = Field(description="Weight applied to the tier")
    na_count: int = Field(default=0, description="Controls in the tier answered not applicable")


class WeightedScoreResult(BaseModel):
    """Risk-weighted and unweighted compliance scores with gap lists."""

    weighted_score: int = Field(description="round(achievedWeight / totalWeight * 100)")
    unweighted_score: int = Field(description="round(implemented / applicable * 100)")
    risk_breakdown: dict[str, RiskTierBreakdown] = Field(description="Per-tier tallies keyed by risk level")
    critical_gaps: list[str] = Field(description="Unimplemented critical control ids")
    high_gaps: list[str] = Field(description="Unimplemented high control ids")


class GlobalStats(BaseModel):
    """Control status counts across the whole catalog."""

    total_controls: int
    implemented_controls: int
    in_progress_controls: int
    not_started_controls: int
    not_applicable_controls: int
    overall_percentage: int = Field(description="implemented / applicable, N/A excluded")


# ---------------------------------------------------------------------------
# Requirement progress (auditor view)
# ---------------------------------------------------------------------------


class MappedControlSummary(BaseModel):
    """One control mapped to a requirement, as seen by an auditor."""

    control_id: str
    control_title: str
    mapping_strength: str
    coverage_percentage: float
    implementation_status: str = Field(description="implemented | in_progress | not_applicable | not_started")


class DirectEvidenceResponse(BaseModel):
    """Evidence attached directly to a gap."""

    id: str
    gap_id: str
    title: str
    description: str
    uri: str
    uploaded_by: str
    uploaded_at: datetime


class GapInfo(BaseModel):
    """Short gap summary embedded in a requirement progress view."""

    gap_type: str
    description: str
    resolution: str | None = None


class RequirementProgress(BaseModel):
    """Coverage, status and gap information for one requirement."""

    requirement_id: str
    framework_id: str
    requirement_code: str
    title: str
    status: str = Field(
        description="custom_gap | compliant | in_progress | partially_compliant | not_started",
    )
    mapped_controls: list[MappedControlSummary]
    total_coverage: int
    has_gap: bool
    gap_info: GapInfo | None = None
    direct_evidence: list[DirectEvidenceResponse] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Drift schemas
# ---------------------------------------------------------------------------


class DriftResolutionOptionResponse(BaseModel):
    """One typed resolution option on a drift record."""

    option_id: str
    type: str
    description: str
    effort: str
    recommended_actions: list[str] = Field(default_factory=list)


class DriftResponse(BaseModel):
    """A drift record with days_remaining derived at read time."""

    id: str
    control_id: str
    mapping_id: str | None
    requirement_id: str
    old_framework_version_id: str
    new_framework_version_id: str
    drift_type: str
    severity: str
    previous_answer: str
    answer_still_valid: bool
    validity_reason: str
    previous_requirement_text: str
    new_requirement_text: str
    change_summary: str
    impact_assessment: str
    affected_evidence_types: list[str]
    resolution_path: list[DriftResolutionOptionResponse]
    status: str
    compliance_deadline: date
    days_remaining: int = Field(description="ceil((deadline - now) / 1 day), computed on read")
    selected_resolution: str | None = None
    resolved_at: datetime | None = None
    resolved_by: str | None = None
    notes: str = ""
    created_at: datetime
    updated_at: datetime


class DriftResolveRequest(BaseModel):
    """Request body for resolving a drift record."""

    resolution_type: ResolutionType = Field(description="Chosen resolution type")
    notes: str = Field(default="", description="Resolution notes")
    resolved_by: str = Field(min_length=1, description="Who resolved the drift")


class DriftAcceptRiskRequest(BaseModel):
    """Request body for accepting the risk of a drift record."""

    notes: str = Field(min_length=1, description="Risk acceptance justification")
    accepted_by: str = Field(min_length=1, description="Who accepted the risk")


class DriftSeverityCounts(BaseModel):
    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0


class DriftStatistics(BaseModel):
    """Aggregate drift queue statistics."""

    total_drift: int = Field(description="All drift records")
    by_severity: DriftSeverityCounts = Field(description="Unresolved records per severity")
    resolved: int = Field(description="Resolved or risk-accepted records")
    pending: int = Field(description="Open records")
    average_days_to_deadline: int = Field(description="Mean days_remaining over open records, 0 when none")
    frameworks_affected: list[str] = Field(description="Frameworks with at least one open record")


# ---------------------------------------------------------------------------
# Gap schemas
# ---------------------------------------------------------------------------


class GapResolutionOptionResponse(BaseModel):
    option_id: str
    type: str
    description: str
    effort: str
    recommended_templates: list[str] = Field(default_factory=list)


class GapResponse(BaseModel):
    """A custom gap from the latest recalculation pass."""

    id: str
    requirement_id: str
    gap_type: str
    severity: str
    description: str
    coverage: int
    missing_coverage: list[str]
    resolution_options: list[GapResolutionOptionResponse]
    status: str
    selected_resolution: str | None = None
    direct_evidence: list[DirectEvidenceResponse] = Field(default_factory=list)
    notes: str = ""
    identified_at: datetime
    identified_by: str
    resolved_at: datetime | None = None
    resolved_by: str | None = None


class GapUpdateRequest(BaseModel):
    """Request body for updating a gap's workflow fields."""

    status: GapStatus | None = None
    notes: str | None = None
    selected_resolution: GapResolutionType | None = None
    resolved_by: str | None = None


class DirectEvidenceCreateRequest(BaseModel):
    """Request body for attaching evidence directly to a gap."""

    title: str = Field(min_length=1)
    description: str = ""
    uri: str = Field(min_length=1, description="Location of the uploaded evidence")
    uploaded_by: str = Field(min_length=1)


# ---------------------------------------------------------------------------
# Mapping suggestions
# ---------------------------------------------------------------------------


class MappingSuggestion(BaseModel):
    """An auto-mapping candidate for a control."""

    control_id: str
    requirement_id: str
    requirement_code: str
    framework_id: str
    confidence: int = Field(description="Keyword overlap confidence, 0-100")
    matched_keywords: list[str]


# ---------------------------------------------------------------------------
# Version comparison schemas
# ---------------------------------------------------------------------------


class DiffHighlight(BaseModel):
    """One positional word-diff span."""

    type: str = Field(description="added | removed | changed")
    start_index: int
    end_index: int
    old_text: str | None = None
    new_text: str | None = None


class RequirementVersionSnapshot(BaseModel):
    """One side of a requirement version comparison."""

    version_id: str
    version_code: str
    text: str
    effective_date: date
    transition_deadline: date | None = None


class AffectedControl(BaseModel):
    control_id: str
    current_answer: str
    answer_still_valid: bool
    required_action: str


class RequirementVersionComparison(BaseModel):
    """Side-by-side comparison of a requirement across two framework versions."""

    requirement_code: str
    framework_id: str
    current_version: RequirementVersionSnapshot | None
    new_version: RequirementVersionSnapshot
    change_type: str = Field(description="added | modified | unchanged")
    change_severity: str
    diff_highlights: list[DiffHighlight]
    affected_controls: list[AffectedControl]
    current_compliance_status: str
    projected_compliance_status: str
    recommended_actions: list[str]
