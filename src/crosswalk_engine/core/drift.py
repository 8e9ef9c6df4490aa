"""Compliance drift detection.

When a framework moves from an old version to a new one, every mapping made
against the old version is re-evaluated against the matching requirement
in the new version. The classification is a fixed sequence of rules over
the old/new requirement pair and the control's current answer:

    text changed                               -> requirement_expanded, low
    text adds must/shall/required/...          -> requirement_strengthened, high
    optional|recommended -> mandatory          -> requirement_strengthened, critical
    new required evidence types                -> evidence_type_changed, >= medium
    stricter verification frequency            -> verification_frequency_changed, >= medium
    risk weight up by more than the jump       -> severity >= high
    new emerging technology category           -> technology_specific, high, answer invalid

The last rule that fires sets the drift type. Requirements that are new in
the new version are matched to existing controls by keyword overlap and
produce new_requirement findings. Records are never deleted; re-scanning
the same transition refreshes open records in place and leaves resolved or
risk-accepted ones untouched.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from datetime import date, datetime

from crosswalk_engine.api.schemas import DriftSeverityCounts, DriftStatistics
from crosswalk_engine.core.interfaces import (
    AnswerLookup,
    Clock,
    IDriftRepository,
    IdGenerator,
    IMappingRepository,
)
from crosswalk_engine.core.library import RequirementLibrary
from crosswalk_engine.core.models import (
    ANSWER_NA,
    ANSWER_NO,
    ANSWER_PARTIAL,
    ANSWER_YES,
    ComplianceDrift,
    Control,
    ControlAnswer,
    CrosswalkMapping,
    DriftRecordStatus,
    DriftResolutionOption,
    DriftStatus,
    DriftType,
    FrameworkVersion,
    ImplementationLevel,
    MasterRequirement,
    ResolutionType,
    Severity,
    utc_now,
)
from crosswalk_engine.core.scoring import round_half_up
from crosswalk_engine.core.versions import FrameworkVersionManager
from crosswalk_engine.errors import InvalidStateError, NotFoundError, ValidationError
from crosswalk_engine.observability import get_logger
from crosswalk_engine.settings import Settings

logger = get_logger(__name__)

STRENGTHENING_KEYWORDS = ("must", "shall", "required", "mandatory", "always", "all")

_ESCALATED_FROM = (ImplementationLevel.OPTIONAL, ImplementationLevel.RECOMMENDED)

VALID_ANSWER_REASON = "Current implementation may still satisfy the updated requirement, but review is recommended"
INVALID_ANSWER_REASON = "Current implementation needs to be reassessed to meet updated requirement"
NEW_REQUIREMENT_REASON = "New requirement requires explicit assessment"


def answer_value(answer: ControlAnswer | None) -> str:
    """Return the questionnaire answer for a control, derived from its status when unanswered."""
    if answer is None:
        return ANSWER_NO
    if answer.answer:
        return answer.answer
    if answer.is_implemented:
        return ANSWER_YES
    if answer.is_not_applicable:
        return ANSWER_NA
    if answer.is_in_progress:
        return ANSWER_PARTIAL
    return ANSWER_NO


# ---------------------------------------------------------------------------
# Change analysis
# ---------------------------------------------------------------------------


@dataclass
class ChangeAnalysis:
    """Result of comparing one requirement across two versions for one answer."""

    has_drift: bool
    drift_type: DriftType
    severity: Severity
    changes: list[str]
    change_summary: str
    impact_assessment: str
    affected_evidence_types: list[str]
    answer_still_valid: bool
    validity_reason: str
    new_evidence_types: list[str] = field(default_factory=list)


def impact_assessment(changes: list[str], answer: str) -> str:
    if answer == ANSWER_YES:
        answer_status = "currently marked as compliant"
    elif answer == ANSWER_PARTIAL:
        answer_status = "currently marked as partially compliant"
    else:
        answer_status = "currently marked as non-compliant"
    return (
        f"This control is {answer_status}. "
        f"The following changes may affect your compliance status: {'; '.join(changes)}."
    )


def analyze_change(
    old: MasterRequirement,
    new: MasterRequirement,
    answer: str,
    risk_weight_jump: int = 2,
) -> ChangeAnalysis:
    """Classify the change between two versions of one requirement.

    Args:
        old: Requirement in the old version.
        new: Requirement with the same code in the new version.
        answer: The control's current answer (yes | no | partial | na), empty when unanswered.
        risk_weight_jump: Risk weight increase above which severity becomes at least high.

    Returns:
        ChangeAnalysis; has_drift is False when no rule fired.
    """
    changes: list[str] = []
    drift_type = DriftType.REQUIREMENT_EXPANDED
    severity = Severity.LOW
    answer_still_valid = True

    if old.official_text != new.official_text:
        changes.append("Requirement text has been updated")
        old_text = old.official_text.lower()
        new_text = new.official_text.lower()
        added = [k for k in STRENGTHENING_KEYWORDS if k in new_text and k not in old_text]
        if added:
            drift_type = DriftType.REQUIREMENT_STRENGTHENED
            severity = Severity.HIGH
            changes.append(f"Requirement strengthened with: {', '.join(added)}")

    if old.implementation_level in _ESCALATED_FROM and new.implementation_level == ImplementationLevel.MANDATORY:
        drift_type = DriftType.REQUIREMENT_STRENGTHENED
        severity = Severity.CRITICAL
        changes.append(f"Changed from {old.implementation_level} to {new.implementation_level}")
        if answer in (ANSWER_NO, ANSWER_NA):
            answer_still_valid = False

    new_evidence_types = sorted(new.required_evidence_types - old.required_evidence_types)
    if new_evidence_types:
        drift_type = DriftType.EVIDENCE_TYPE_CHANGED
        severity = Severity.CRITICAL if severity == Severity.CRITICAL else Severity.MEDIUM
        changes.append(f"New evidence types required: {', '.join(new_evidence_types)}")

    if new.verification_frequency.rank > old.verification_frequency.rank:
        drift_type = DriftType.VERIFICATION_FREQUENCY_CHANGED
        severity = Severity.CRITICAL if severity == Severity.CRITICAL else Severity.MEDIUM
        changes.append(
            f"Verification frequency increased from {old.verification_frequency} to {new.verification_frequency}"
        )

    if new.risk_weight > old.risk_weight + risk_weight_jump:
        severity = severity.at_least(Severity.HIGH)
        changes.append(f"Risk weight increased from {old.risk_weight} to {new.risk_weight}")

    if new.emerging_tech_category and not old.emerging_tech_category:
        drift_type = DriftType.TECHNOLOGY_SPECIFIC
        severity = Severity.HIGH
        changes.append(f"New technology-specific requirement: {new.emerging_tech_category}")
        answer_still_valid = False

    return ChangeAnalysis(
        has_drift=bool(changes),
        drift_type=drift_type,
        severity=severity,
        changes=changes,
        change_summary=". ".join(changes),
        impact_assessment=impact_assessment(changes, answer),
        affected_evidence_types=new_evidence_types or sorted(new.required_evidence_types),
        answer_still_valid=answer_still_valid,
        validity_reason=VALID_ANSWER_REASON if answer_still_valid else INVALID_ANSWER_REASON,
        new_evidence_types=new_evidence_types,
    )


def resolution_options(drift_type: DriftType) -> list[DriftResolutionOption]:
    """Ordered resolution options for a changed-requirement finding."""
    options = []
    if drift_type == DriftType.EVIDENCE_TYPE_CHANGED:
        options.append(
            DriftResolutionOption(
                option_id=str(ResolutionType.ADD_EVIDENCE),
                type=ResolutionType.ADD_EVIDENCE,
                description="Collect and upload the newly required evidence types",
                effort="low",
                recommended_actions=[
                    "Review the new evidence requirements",
                    "Gather the required documentation",
                    "Upload evidence to the system",
                    "Request verification",
                ],
            )
        )
    if drift_type in (DriftType.REQUIREMENT_STRENGTHENED, DriftType.TECHNOLOGY_SPECIFIC):
        options.append(
            DriftResolutionOption(
                option_id=str(ResolutionType.UPDATE_CONTROL),
                type=ResolutionType.UPDATE_CONTROL,
                description="Update your control implementation to meet stricter requirements",
                effort="medium",
                recommended_actions=[
                    "Review the updated requirement in detail",
                    "Identify gaps in current implementation",
                    "Update policies and procedures",
                    "Implement technical changes if needed",
                    "Update documentation",
                    "Re-test and validate",
                ],
            )
        )
    options.append(
        DriftResolutionOption(
            option_id=str(ResolutionType.ACCEPT_RISK),
            type=ResolutionType.ACCEPT_RISK,
            description="Accept the risk with documented justification (not recommended for critical changes)",
            effort="low",
            recommended_actions=[
                "Document business justification",
                "Assess residual risk",
                "Get management approval",
                "Set review date",
            ],
        )
    )
    return options


def new_requirement_resolution_options() -> list[DriftResolutionOption]:
    return [
        DriftResolutionOption(
            option_id=str(ResolutionType.UPDATE_CONTROL),
            type=ResolutionType.UPDATE_CONTROL,
            description="Update existing control to address new requirement",
            effort="medium",
            recommended_actions=[
                "Review the new requirement in detail",
                "Assess if current control implementation satisfies the requirement",
                "Update control documentation if needed",
                "Gather required evidence",
            ],
        ),
        DriftResolutionOption(
            option_id=str(ResolutionType.CREATE_NEW_CONTROL),
            type=ResolutionType.CREATE_NEW_CONTROL,
            description="Create a new dedicated control for this requirement",
            effort="high",
            recommended_actions=[
                "Design new control specific to this requirement",
                "Implement the control",
                "Document implementation",
                "Collect evidence",
            ],
        ),
    ]


# ---------------------------------------------------------------------------
# New requirements
# ---------------------------------------------------------------------------


@dataclass
class ControlMatch:
    control: Control
    confidence: float


def find_potential_control_matches(
    requirement: MasterRequirement,
    controls: Iterable[Control],
    threshold: float = 30.0,
    limit: int = 5,
) -> list[ControlMatch]:
    """Controls whose keywords overlap a new requirement's keywords and title.

    Both sides are keyword sets extended with lower-cased title tokens.
    confidence = shared / |requirement set| * 100. Never raises; a
    requirement with no keywords and an empty title matches nothing.
    """
    requirement_keywords = {k.lower() for k in requirement.keywords} | set(requirement.title.lower().split())
    denominator = max(len(requirement_keywords), 1)

    matches = []
    for control in controls:
        control_keywords = {k.lower() for k in control.keywords} | set(control.title.lower().split())
        confidence = len(control_keywords & requirement_keywords) / denominator * 100
        if confidence >= threshold and confidence > 0:
            matches.append(ControlMatch(control=control, confidence=confidence))

    matches.sort(key=lambda m: (-m.confidence, m.control.id))
    return matches[:limit]


def severity_for_new_requirement(requirement: MasterRequirement) -> Severity:
    mandatory = requirement.implementation_level == ImplementationLevel.MANDATORY
    if mandatory and requirement.risk_weight >= 8:
        return Severity.CRITICAL
    if mandatory:
        return Severity.HIGH
    if requirement.emerging_tech_category:
        return Severity.HIGH
    if requirement.risk_weight >= 7:
        return Severity.MEDIUM
    return Severity.LOW


def compliance_deadline(new_version: FrameworkVersion, requirement: MasterRequirement) -> date:
    """The new version's transition deadline, else the requirement's effective date."""
    return new_version.transition_deadline or requirement.effective_date


# ---------------------------------------------------------------------------
# Detector
# ---------------------------------------------------------------------------


class DriftDetector:
    """Runs drift scans and manages the drift record lifecycle.

    Args:
        versions: Framework version manager.
        library: Requirement library.
        mapping_repo: Repository implementing IMappingRepository.
        drift_repo: Repository implementing IDriftRepository.
        id_generator: Produces drift ids.
        settings: Matching thresholds and risk weight jump.
        clock: Callable returning the current UTC time.
    """

    def __init__(
        self,
        versions: FrameworkVersionManager,
        library: RequirementLibrary,
        mapping_repo: IMappingRepository,
        drift_repo: IDriftRepository,
        id_generator: IdGenerator,
        settings: Settings,
        clock: Clock | None = None,
    ) -> None:
        self._versions = versions
        self._library = library
        self._mapping_repo = mapping_repo
        self._drift_repo = drift_repo
        self._new_id = id_generator
        self._settings = settings
        self._now = clock or utc_now

    def detect(
        self,
        old_version_id: str,
        new_version_id: str,
        controls: Iterable[Control],
        answer_lookup: AnswerLookup,
    ) -> list[ComplianceDrift]:
        """Scan a framework transition for drift.

        The full result is computed before anything is written; drift
        records and mapping drift statuses are then published with one
        `save_many` call per repository.

        Args:
            old_version_id: Version the existing mappings were made against.
            new_version_id: Version being transitioned to.
            controls: Control catalog.
            answer_lookup: Current answer per control id.

        Returns:
            The open drift records produced or refreshed by this scan.

        Raises:
            NotFoundError: If either version does not exist.
        """
        self._versions.get(old_version_id)
        new_version = self._versions.get(new_version_id)
        now = self._now()

        controls_by_id = {c.id: c for c in controls}
        old_requirements = self._library.requirements_for_version(old_version_id)
        new_requirements = self._library.requirements_for_version(new_version_id)

        mappings_by_requirement: dict[str, list[CrosswalkMapping]] = {}
        for mapping in self._mapping_repo.list_for_version(old_version_id):
            if mapping.is_current:
                mappings_by_requirement.setdefault(mapping.requirement_id, []).append(mapping)

        existing = {d.scan_key: d for d in self._drift_repo.list_all()}
        records: list[ComplianceDrift] = []
        mapping_updates: dict[str, CrosswalkMapping] = {}
        skipped = 0

        for code in sorted(new_requirements):
            new_req = new_requirements[code]
            old_req = old_requirements.get(code)
            deadline = compliance_deadline(new_version, new_req)

            if old_req is None:
                matches = find_potential_control_matches(
                    new_req,
                    controls_by_id.values(),
                    threshold=self._settings.keyword_match_threshold,
                    limit=self._settings.max_keyword_matches,
                )
                for match in matches:
                    candidate = ComplianceDrift(
                        id="",
                        control_id=match.control.id,
                        mapping_id=None,
                        requirement_id=new_req.id,
                        old_framework_version_id=old_version_id,
                        new_framework_version_id=new_version_id,
                        drift_type=DriftType.NEW_REQUIREMENT,
                        severity=severity_for_new_requirement(new_req),
                        previous_answer=answer_value(answer_lookup(match.control.id)),
                        answer_still_valid=False,
                        validity_reason=NEW_REQUIREMENT_REASON,
                        compliance_deadline=deadline,
                        previous_requirement_text="",
                        new_requirement_text=new_req.official_text,
                        change_summary=f"New requirement added: {new_req.title}",
                        impact_assessment=(
                            f'This new requirement may affect control "{match.control.title}". Review needed.'
                        ),
                        affected_evidence_types=sorted(new_req.required_evidence_types),
                        resolution_path=new_requirement_resolution_options(),
                    )
                    record = self._merge(candidate, existing, now)
                    if record is not None:
                        records.append(record)
                continue

            for mapping in mappings_by_requirement.get(old_req.id, []):
                control = controls_by_id.get(mapping.control_id)
                answer = answer_lookup(mapping.control_id)
                if control is None or answer is None:
                    skipped += 1
                    continue

                previous_answer = answer_value(answer)
                analysis = analyze_change(old_req, new_req, previous_answer, self._settings.risk_weight_jump)
                if not analysis.has_drift:
                    continue

                candidate = ComplianceDrift(
                    id="",
                    control_id=mapping.control_id,
                    mapping_id=mapping.id,
                    requirement_id=new_req.id,
                    old_framework_version_id=old_version_id,
                    new_framework_version_id=new_version_id,
                    drift_type=analysis.drift_type,
                    severity=analysis.severity,
                    previous_answer=previous_answer,
                    answer_still_valid=analysis.answer_still_valid,
                    validity_reason=analysis.validity_reason,
                    compliance_deadline=deadline,
                    previous_requirement_text=old_req.official_text,
                    new_requirement_text=new_req.official_text,
                    change_summary=analysis.change_summary,
                    impact_assessment=analysis.impact_assessment,
                    affected_evidence_types=analysis.affected_evidence_types,
                    resolution_path=resolution_options(analysis.drift_type),
                )
                record = self._merge(candidate, existing, now)
                if record is None:
                    continue
                records.append(record)
                mapping_updates[mapping.id] = replace(
                    mapping,
                    drift_status=DriftStatus.AT_RISK if analysis.answer_still_valid else DriftStatus.DRIFTED,
                    last_drift_check=now,
                    updated_at=now,
                )

        for code, old_req in old_requirements.items():
            if code in new_requirements:
                continue
            for mapping in mappings_by_requirement.get(old_req.id, []):
                mapping_updates[mapping.id] = replace(
                    mapping,
                    drift_status=DriftStatus.INVALIDATED,
                    last_drift_check=now,
                    updated_at=now,
                )

        self._drift_repo.save_many(records)
        self._mapping_repo.save_many(list(mapping_updates.values()))

        logger.info(
            "Drift scan completed",
            old_version_id=old_version_id,
            new_version_id=new_version_id,
            drift_count=len(records),
            mappings_flagged=len(mapping_updates),
            mappings_skipped=skipped,
        )
        return records

    def _merge(
        self,
        candidate: ComplianceDrift,
        existing: dict[tuple[str, str, str, str], ComplianceDrift],
        now: datetime,
    ) -> ComplianceDrift | None:
        """Attach identity to a scan finding; None when a closed record already covers it."""
        previous = existing.get(candidate.scan_key)
        if previous is None:
            return replace(candidate, id=self._new_id(), created_at=now, updated_at=now)
        if not previous.is_open:
            return None
        return replace(
            candidate,
            id=previous.id,
            status=previous.status,
            notes=previous.notes,
            created_at=previous.created_at,
            updated_at=now,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def get(self, drift_id: str) -> ComplianceDrift:
        drift = self._drift_repo.get(drift_id)
        if drift is None:
            raise NotFoundError(resource="ComplianceDrift", resource_id=drift_id)
        return drift

    def _get_open(self, drift_id: str, action: str) -> ComplianceDrift:
        drift = self.get(drift_id)
        if not drift.is_open:
            raise InvalidStateError(f"Cannot {action} drift '{drift_id}' in status '{drift.status}'")
        return drift

    def acknowledge(self, drift_id: str) -> ComplianceDrift:
        """Mark a drift record as acknowledged.

        Raises:
            NotFoundError: If the record does not exist.
            InvalidStateError: If the record is resolved or risk-accepted.
        """
        drift = self._get_open(drift_id, "acknowledge")
        updated = replace(drift, status=DriftRecordStatus.ACKNOWLEDGED, updated_at=self._now())
        self._drift_repo.save_many([updated])
        logger.info("Drift acknowledged", drift_id=drift_id)
        return updated

    def start_review(self, drift_id: str) -> ComplianceDrift:
        """Move a drift record to in_review.

        Raises:
            NotFoundError: If the record does not exist.
            InvalidStateError: If the record is resolved or risk-accepted.
        """
        drift = self._get_open(drift_id, "review")
        updated = replace(drift, status=DriftRecordStatus.IN_REVIEW, updated_at=self._now())
        self._drift_repo.save_many([updated])
        logger.info("Drift review started", drift_id=drift_id)
        return updated

    def resolve(
        self,
        drift_id: str,
        resolution_type: str,
        resolved_by: str,
        notes: str = "",
    ) -> ComplianceDrift:
        """Resolve a drift record and reset its mapping to current.

        A mapping a later scan flagged invalidated stays invalidated: its
        requirement no longer exists in the newer version.

        Args:
            drift_id: Record to resolve.
            resolution_type: Chosen ResolutionType.
            resolved_by: Who resolved the drift.
            notes: Resolution notes.

        Returns:
            The resolved record.

        Raises:
            NotFoundError: If the record does not exist.
            InvalidStateError: If the record is already resolved or risk-accepted.
            ValidationError: On an unknown resolution type.
        """
        drift = self._get_open(drift_id, "resolve")
        try:
            selected = ResolutionType(resolution_type)
        except ValueError as exc:
            raise ValidationError(
                message=f"Unknown resolution type '{resolution_type}'",
                field="resolution_type",
            ) from exc

        now = self._now()
        resolved = replace(
            drift,
            status=DriftRecordStatus.RESOLVED,
            selected_resolution=selected,
            resolved_at=now,
            resolved_by=resolved_by,
            notes=notes,
            updated_at=now,
        )

        mapping_updates = []
        if drift.mapping_id:
            mapping = self._mapping_repo.get(drift.mapping_id)
            if mapping is None:
                logger.debug("Resolved drift references a removed mapping", mapping_id=drift.mapping_id)
            elif mapping.drift_status != DriftStatus.INVALIDATED:
                mapping_updates.append(replace(mapping, drift_status=DriftStatus.CURRENT, updated_at=now))

        self._drift_repo.save_many([resolved])
        self._mapping_repo.save_many(mapping_updates)
        logger.info(
            "Drift resolved",
            drift_id=drift_id,
            resolution=str(selected),
            resolved_by=resolved_by,
            mapping_reset=bool(mapping_updates),
        )
        return resolved

    def accept_risk(self, drift_id: str, notes: str, accepted_by: str) -> ComplianceDrift:
        """Close a drift record by accepting its risk. The mapping keeps its drift status.

        Raises:
            NotFoundError: If the record does not exist.
            InvalidStateError: If the record is already resolved or risk-accepted.
        """
        drift = self._get_open(drift_id, "accept risk on")
        now = self._now()
        accepted = replace(
            drift,
            status=DriftRecordStatus.ACCEPTED_RISK,
            selected_resolution=ResolutionType.ACCEPT_RISK,
            resolved_at=now,
            resolved_by=accepted_by,
            notes=notes,
            updated_at=now,
        )
        self._drift_repo.save_many([accepted])
        logger.info("Drift risk accepted", drift_id=drift_id, accepted_by=accepted_by)
        return accepted

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def open_drift(self, now: datetime | None = None) -> list[ComplianceDrift]:
        """Open records, nearest deadline first, most severe first on ties."""
        reference = now or self._now()
        drifts = [d for d in self._drift_repo.list_all() if d.is_open]
        return sorted(drifts, key=lambda d: (d.days_remaining(reference), -d.severity.rank, d.id))

    def drift_for_control(self, control_id: str) -> list[ComplianceDrift]:
        return [d for d in self._drift_repo.list_all() if d.control_id == control_id and d.is_open]

    def statistics(self, now: datetime | None = None) -> DriftStatistics:
        """Counts per severity (open records), resolved, pending and deadline average."""
        reference = now or self._now()
        drifts = self._drift_repo.list_all()
        open_drifts = [d for d in drifts if d.is_open]

        counts = DriftSeverityCounts()
        for drift in open_drifts:
            setattr(counts, str(drift.severity), getattr(counts, str(drift.severity)) + 1)

        average = 0
        if open_drifts:
            average = round_half_up(sum(d.days_remaining(reference) for d in open_drifts) / len(open_drifts))

        frameworks = set()
        for drift in open_drifts:
            version = self._versions.get(drift.new_framework_version_id)
            frameworks.add(version.framework_id)

        return DriftStatistics(
            total_drift=len(drifts),
            by_severity=counts,
            resolved=len(drifts) - len(open_drifts),
            pending=len(open_drifts),
            average_days_to_deadline=average,
            frameworks_affected=sorted(frameworks),
        )
