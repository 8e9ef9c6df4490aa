"""Domain models for the crosswalk engine.

Plain dataclasses; the engine owns no persistence technology. Repositories
(see core/interfaces.py) store and return these objects; the SQLAlchemy
adapter maps them onto tables in adapters/tables.py.

Models:
- FrameworkVersion - one dated revision of a framework, with lifecycle status
- VersionChange - a single documented change between framework versions
- MasterRequirement - one official requirement, owned by exactly one FrameworkVersion
- Control - an organization-defined implementation unit
- ControlAnswer - the organization's current answer/status for a control
- CrosswalkMapping - versioned N:N link between a Control and a MasterRequirement
- ComplianceDrift - a finding produced by the drift scan
- CustomGap - a requirement with zero or insufficient crosswalk coverage
"""

import math
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from enum import StrEnum

# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class VersionStatus(StrEnum):
    DRAFT = "draft"
    PUBLISHED = "published"
    ACTIVE = "active"
    SUPERSEDED = "superseded"
    RETIRED = "retired"


class ImplementationLevel(StrEnum):
    MANDATORY = "mandatory"
    RECOMMENDED = "recommended"
    OPTIONAL = "optional"
    CONDITIONAL = "conditional"


class VerificationFrequency(StrEnum):
    """How often a requirement must be verified.

    Declaration order is the strictness order: once < annual < ... < continuous.
    """

    ONCE = "once"
    ANNUAL = "annual"
    SEMI_ANNUAL = "semi_annual"
    QUARTERLY = "quarterly"
    MONTHLY = "monthly"
    CONTINUOUS = "continuous"

    @property
    def rank(self) -> int:
        return list(VerificationFrequency).index(self)


class RiskLevel(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class MappingStrength(StrEnum):
    DIRECT = "direct"
    PARTIAL = "partial"
    SUPPORTIVE = "supportive"


class DriftStatus(StrEnum):
    """Drift state of a crosswalk mapping. Mutated only by the drift engine."""

    CURRENT = "current"
    AT_RISK = "at_risk"
    DRIFTED = "drifted"
    INVALIDATED = "invalidated"


class DriftType(StrEnum):
    REQUIREMENT_STRENGTHENED = "requirement_strengthened"
    REQUIREMENT_EXPANDED = "requirement_expanded"
    NEW_REQUIREMENT = "new_requirement"
    EVIDENCE_TYPE_CHANGED = "evidence_type_changed"
    VERIFICATION_FREQUENCY_CHANGED = "verification_frequency_changed"
    TECHNOLOGY_SPECIFIC = "technology_specific"
    DEADLINE_CHANGED = "deadline_changed"
    PENALTY_INCREASED = "penalty_increased"


class Severity(StrEnum):
    """Finding severity. Declaration order is ascending."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return list(Severity).index(self)

    def at_least(self, floor: "Severity") -> "Severity":
        """Return this severity raised to `floor` if it is lower."""
        return self if self.rank >= floor.rank else floor


class DriftRecordStatus(StrEnum):
    DETECTED = "detected"
    ACKNOWLEDGED = "acknowledged"
    IN_REVIEW = "in_review"
    RESOLVED = "resolved"
    ACCEPTED_RISK = "accepted_risk"


class ResolutionType(StrEnum):
    UPDATE_CONTROL = "update_control"
    ADD_EVIDENCE = "add_evidence"
    CREATE_NEW_CONTROL = "create_new_control"
    ACCEPT_RISK = "accept_risk"
    REQUEST_EXCEPTION = "request_exception"


class GapType(StrEnum):
    NO_CONTROL_MAPPED = "no_control_mapped"
    INSUFFICIENT_COVERAGE = "insufficient_coverage"
    CONTROL_NOT_IMPLEMENTED = "control_not_implemented"
    EVIDENCE_MISSING = "evidence_missing"


class GapStatus(StrEnum):
    IDENTIFIED = "identified"
    ACKNOWLEDGED = "acknowledged"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    ACCEPTED_RISK = "accepted_risk"


class GapResolutionType(StrEnum):
    CREATE_CONTROL = "create_control"
    UPLOAD_EVIDENCE = "upload_evidence"
    CREATE_POLICY = "create_policy"
    COMPENSATING_CONTROL = "compensating_control"
    ACCEPT_RISK = "accept_risk"


# Answer values submitted by the organization for a control
ANSWER_YES = "yes"
ANSWER_NO = "no"
ANSWER_PARTIAL = "partial"
ANSWER_NA = "na"

# Implementation statuses that may accompany (or replace) an answer
STATUS_IMPLEMENTED = "implemented"
STATUS_IN_PROGRESS = "in_progress"
STATUS_NOT_APPLICABLE = "not_applicable"
STATUS_NOT_STARTED = "not_started"


def utc_now() -> datetime:
    """Return the current UTC time."""
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Framework versions and requirements
# ---------------------------------------------------------------------------


@dataclass
class VersionChange:
    """A documented change between two framework versions.

    Attributes:
        change_id: Unique identifier.
        change_type: added | modified | removed | clarified | strengthened | relaxed.
        affected_requirement_code: Requirement code the change applies to.
        impact_level: critical | high | medium | low | informational.
        previous_text: Text before the change, if any.
        new_text: Text after the change, if any.
        compliance_impact: How the change affects compliance.
        action_required: What organizations need to do.
        affected_control_ids: Controls that may need updates.
        tags: Free-form categorization tags.
    """

    change_id: str
    change_type: str
    affected_requirement_code: str
    impact_level: str
    previous_text: str | None = None
    new_text: str | None = None
    compliance_impact: str = ""
    action_required: str = ""
    affected_control_ids: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)


@dataclass
class FrameworkVersion:
    """One dated revision of a framework (e.g., ISO 27001:2022).

    At most one version per framework_id is ACTIVE at any time; the
    FrameworkVersionManager enforces this.

    Attributes:
        id: Version identifier (e.g., "iso27001_2022").
        framework_id: Framework the version belongs to (e.g., "ISO27001").
        version_code: Version label (e.g., "2022", "v4.0").
        status: Lifecycle status.
        published_date: When the regulator published the version.
        effective_date: When the version becomes enforceable.
        version_name: Human-readable name.
        transition_deadline: Optional deadline for compliance with this version.
        sunset_date: Optional date after which the version is no longer valid.
        previous_version_id: Back-reference to the prior version (not ownership).
        changes: Documented changes relative to the prior version.
        created_at: Creation timestamp.
        updated_at: Last status change timestamp.
    """

    id: str
    framework_id: str
    version_code: str
    status: VersionStatus
    published_date: date
    effective_date: date
    version_name: str = ""
    transition_deadline: date | None = None
    sunset_date: date | None = None
    previous_version_id: str | None = None
    changes: list[VersionChange] = field(default_factory=list)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)


@dataclass
class MasterRequirement:
    """One official requirement, scoped to exactly one FrameworkVersion.

    Attributes:
        id: Globally unique requirement identifier.
        framework_id: Framework the requirement belongs to.
        framework_version_id: Owning FrameworkVersion id.
        requirement_code: Official code, unique within the version (e.g., "CC6.1").
        title: Short title.
        official_text: Verbatim regulatory text.
        implementation_level: mandatory | recommended | optional | conditional.
        required_evidence_types: Evidence types the requirement demands.
        verification_frequency: How often verification must happen.
        risk_weight: Integer weight 1-10.
        effective_date: When the requirement becomes enforceable.
        emerging_tech_category: Optional forward-looking regulatory area tag.
        keywords: Keywords used for matching and search.
        parent_code: Parent requirement code for hierarchical frameworks.
        domain: Compliance domain the requirement falls under.
        transition_period_days: Optional grace period after effective_date.
    """

    id: str
    framework_id: str
    framework_version_id: str
    requirement_code: str
    title: str
    official_text: str
    implementation_level: ImplementationLevel
    required_evidence_types: set[str]
    verification_frequency: VerificationFrequency
    risk_weight: int
    effective_date: date
    emerging_tech_category: str | None = None
    keywords: set[str] = field(default_factory=set)
    parent_code: str | None = None
    domain: str | None = None
    transition_period_days: int | None = None


# ---------------------------------------------------------------------------
# Controls and answers
# ---------------------------------------------------------------------------


@dataclass
class Control:
    """An organization-defined control, independent of any framework.

    Attributes:
        id: Control identifier.
        title: Control title.
        risk_level: low | medium | high | critical.
        domain: Compliance domain used for dashboard grouping.
        keywords: Keywords used for requirement matching.
    """

    id: str
    title: str
    risk_level: RiskLevel = RiskLevel.MEDIUM
    domain: str = ""
    keywords: set[str] = field(default_factory=set)


@dataclass
class ControlAnswer:
    """The organization's current answer for one control.

    Either field may be set; `answer` takes the questionnaire values
    yes | no | partial | na, `status` the implementation-tracker values
    implemented | in_progress | not_applicable | not_started.
    """

    control_id: str
    answer: str | None = None
    status: str | None = None
    evidence_urls: list[str] = field(default_factory=list)
    notes: str = ""
    answered_at: datetime | None = None

    @property
    def is_implemented(self) -> bool:
        return self.answer == ANSWER_YES or self.status == STATUS_IMPLEMENTED

    @property
    def is_not_applicable(self) -> bool:
        return self.answer == ANSWER_NA or self.status == STATUS_NOT_APPLICABLE

    @property
    def is_in_progress(self) -> bool:
        return self.answer == ANSWER_PARTIAL or self.status == STATUS_IN_PROGRESS


# ---------------------------------------------------------------------------
# Crosswalk
# ---------------------------------------------------------------------------


@dataclass
class CrosswalkMapping:
    """Versioned link between one Control and one MasterRequirement.

    Attributes:
        id: Mapping identifier.
        control_id: Linked control.
        requirement_id: Linked requirement (a specific requirement version).
        framework_version_id: Framework version the mapping applies to.
        mapping_strength: direct | partial | supportive.
        coverage_percentage: 0-100 share of the requirement this control covers.
        covered_aspects: Aspects of the requirement the control covers.
        uncovered_aspects: Aspects the control leaves open.
        valid_from_version: First framework version the mapping applies to.
        valid_until_version: Last framework version; None while the mapping is current.
        superseded_by_mapping_id: Successor mapping when superseded.
        drift_status: current | at_risk | drifted | invalidated.
        justification: Why the mapping exists.
        is_auto_mapped: Whether the mapping was created by the auto-mapper.
        auto_map_confidence: Auto-mapper confidence, if auto-mapped.
        human_reviewed: Whether a human has reviewed the mapping.
        last_drift_check: When the drift engine last evaluated the mapping.
        created_at: Creation timestamp.
        updated_at: Last update timestamp.
    """

    id: str
    control_id: str
    requirement_id: str
    framework_version_id: str
    mapping_strength: MappingStrength
    coverage_percentage: float
    valid_from_version: str
    covered_aspects: set[str] = field(default_factory=set)
    uncovered_aspects: set[str] = field(default_factory=set)
    valid_until_version: str | None = None
    superseded_by_mapping_id: str | None = None
    drift_status: DriftStatus = DriftStatus.CURRENT
    justification: str = ""
    is_auto_mapped: bool = False
    auto_map_confidence: float | None = None
    human_reviewed: bool = True
    last_drift_check: datetime | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def is_current(self) -> bool:
        """True while the mapping is neither superseded nor invalidated."""
        return self.valid_until_version is None and self.drift_status != DriftStatus.INVALIDATED


# ---------------------------------------------------------------------------
# Drift
# ---------------------------------------------------------------------------


@dataclass
class DriftResolutionOption:
    """One typed way of resolving a drift finding."""

    option_id: str
    type: ResolutionType
    description: str
    effort: str
    recommended_actions: list[str] = field(default_factory=list)


@dataclass
class ComplianceDrift:
    """A drift finding created by the drift scan, never by a user directly.

    Records are never deleted; they move through DriftRecordStatus values.
    `days_remaining` is derived from `compliance_deadline` at read time.

    Attributes:
        id: Drift identifier.
        control_id: Affected control.
        mapping_id: Affected mapping; None for new-requirement findings.
        requirement_id: Requirement in the new framework version.
        old_framework_version_id: Version the mapping was made against.
        new_framework_version_id: Version that introduced the change.
        drift_type: Classification of the change.
        severity: critical | high | medium | low.
        previous_answer: The control's answer at scan time.
        answer_still_valid: Whether the answer is expected to hold.
        validity_reason: Explanation for answer_still_valid.
        compliance_deadline: Date by which the drift must be addressed.
        previous_requirement_text: Old requirement text ("" for new requirements).
        new_requirement_text: New requirement text.
        change_summary: Sentence-joined list of detected changes.
        impact_assessment: Narrative impact on the control.
        affected_evidence_types: Evidence types implicated by the change.
        resolution_path: Ordered resolution options.
        status: Lifecycle status.
        selected_resolution: Resolution type chosen at resolve time.
        resolved_at: When the drift was resolved.
        resolved_by: Who resolved the drift.
        notes: Resolution or risk-acceptance notes.
        created_at: Creation timestamp.
        updated_at: Last update timestamp.
    """

    id: str
    control_id: str
    mapping_id: str | None
    requirement_id: str
    old_framework_version_id: str
    new_framework_version_id: str
    drift_type: DriftType
    severity: Severity
    previous_answer: str
    answer_still_valid: bool
    validity_reason: str
    compliance_deadline: date
    previous_requirement_text: str = ""
    new_requirement_text: str = ""
    change_summary: str = ""
    impact_assessment: str = ""
    affected_evidence_types: list[str] = field(default_factory=list)
    resolution_path: list[DriftResolutionOption] = field(default_factory=list)
    status: DriftRecordStatus = DriftRecordStatus.DETECTED
    selected_resolution: ResolutionType | None = None
    resolved_at: datetime | None = None
    resolved_by: str | None = None
    notes: str = ""
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def is_open(self) -> bool:
        return self.status not in (DriftRecordStatus.RESOLVED, DriftRecordStatus.ACCEPTED_RISK)

    @property
    def scan_key(self) -> tuple[str, str, str, str]:
        """Identity of the finding across repeated scans of the same transition."""
        return (
            self.control_id,
            self.requirement_id,
            self.old_framework_version_id,
            self.new_framework_version_id,
        )

    def days_remaining(self, now: datetime | None = None) -> int:
        """Whole days until the compliance deadline, rounded up.

        Args:
            now: Reference time; defaults to the current UTC time.

        Returns:
            ceil((deadline - now) / 1 day); negative once the deadline has passed.
        """
        reference = now or utc_now()
        deadline = datetime(
            self.compliance_deadline.year,
            self.compliance_deadline.month,
            self.compliance_deadline.day,
            tzinfo=UTC,
        )
        return math.ceil((deadline - reference).total_seconds() / 86400)


# ---------------------------------------------------------------------------
# Gaps
# ---------------------------------------------------------------------------


@dataclass
class GapResolutionOption:
    """A resolution template offered on every custom gap."""

    option_id: str
    type: GapResolutionType
    description: str
    effort: str
    recommended_templates: list[str] = field(default_factory=list)


@dataclass
class DirectEvidence:
    """Evidence attached directly to a gap, for gaps resolved without a control."""

    id: str
    gap_id: str
    title: str
    description: str
    uri: str
    uploaded_by: str
    uploaded_at: datetime = field(default_factory=utc_now)


@dataclass
class CustomGap:
    """A requirement with zero or insufficient crosswalk coverage.

    Re-derived on every recalculation pass; id, status, notes, selected
    resolution and direct evidence carry over by requirement_id.

    Attributes:
        id: Gap identifier.
        requirement_id: Requirement the gap is about.
        gap_type: Why the requirement is a gap.
        severity: critical | high | medium | low.
        description: Human-readable gap description.
        missing_coverage: Aspects not covered by any mapped control.
        resolution_options: Fixed ordered resolution templates.
        status: Lifecycle status.
        coverage: Aggregate coverage at the time of the pass.
        selected_resolution: Resolution chosen by the user.
        direct_evidence: Evidence attached without a control.
        notes: User notes.
        identified_at: When the gap was first identified.
        identified_by: Who identified the gap ("system" for recalculation).
        resolved_at: When the gap was resolved.
        resolved_by: Who resolved the gap.
    """

    id: str
    requirement_id: str
    gap_type: GapType
    severity: Severity
    description: str
    missing_coverage: list[str] = field(default_factory=list)
    resolution_options: list[GapResolutionOption] = field(default_factory=list)
    status: GapStatus = GapStatus.IDENTIFIED
    coverage: int = 0
    selected_resolution: GapResolutionType | None = None
    direct_evidence: list[DirectEvidence] = field(default_factory=list)
    notes: str = ""
    identified_at: datetime = field(default_factory=utc_now)
    identified_by: str = "system"
    resolved_at: datetime | None = None
    resolved_by: str | None = None

    @property
    def is_open(self) -> bool:
        return self.status != GapStatus.RESOLVED
