"""Gap detection over the crosswalk.

A custom gap is a leaf requirement with no mapped control, or whose mapped
controls stack to less than the configured coverage threshold. Gaps are
re-derived in full on every recalculation pass and published in one
`replace_all` write; user-owned fields (id, status, notes, selected
resolution, direct evidence, identification and resolution stamps) carry
over from the previous pass by requirement id.
"""

from dataclasses import replace
from datetime import datetime

from crosswalk_engine.core.interfaces import (
    Clock,
    IdGenerator,
    IGapRepository,
    IMappingRepository,
)
from crosswalk_engine.core.library import RequirementLibrary
from crosswalk_engine.core.models import (
    CustomGap,
    DirectEvidence,
    GapResolutionOption,
    GapResolutionType,
    GapStatus,
    GapType,
    MasterRequirement,
    Severity,
    utc_now,
)
from crosswalk_engine.core.scoring import aggregate_coverage
from crosswalk_engine.core.versions import FrameworkVersionManager
from crosswalk_engine.errors import NotFoundError, ValidationError
from crosswalk_engine.observability import get_logger
from crosswalk_engine.settings import Settings

logger = get_logger(__name__)

FULL_REQUIREMENT_COVERAGE = "Full requirement coverage"

# Title terms and code fragments that drive severity inference for unmapped requirements
_CRITICAL_TITLE_TERMS = ("critical", "encryption", "authentication")
_CRITICAL_CODE_FRAGMENTS = (
    "cc6",  # SOC 2 logical and physical access controls
    "164.312",  # HIPAA technical safeguards
)
_HIGH_TITLE_TERMS = ("access", "audit", "incident", "backup")
_MEDIUM_TITLE_TERMS = ("policy", "procedure", "training")


def infer_gap_severity(requirement: MasterRequirement) -> Severity:
    """Best-effort severity for a requirement with no mapped control.

    Never raises; anything unmatched is low.
    """
    title = (requirement.title or "").lower()
    code = (requirement.requirement_code or "").lower()

    if any(term in title for term in _CRITICAL_TITLE_TERMS) or any(
        fragment in code for fragment in _CRITICAL_CODE_FRAGMENTS
    ):
        return Severity.CRITICAL
    if any(term in title for term in _HIGH_TITLE_TERMS):
        return Severity.HIGH
    if any(term in title for term in _MEDIUM_TITLE_TERMS):
        return Severity.MEDIUM

    logger.debug("Gap severity fell back to low", requirement_code=requirement.requirement_code)
    return Severity.LOW


def gap_resolution_options() -> list[GapResolutionOption]:
    """The fixed, ordered resolution templates offered on every gap."""
    return [
        GapResolutionOption(
            option_id="create_control",
            type=GapResolutionType.CREATE_CONTROL,
            description="Create a new control to address this requirement",
            effort="high",
            recommended_templates=["control-template"],
        ),
        GapResolutionOption(
            option_id="upload_evidence",
            type=GapResolutionType.UPLOAD_EVIDENCE,
            description="Upload direct evidence showing compliance",
            effort="low",
        ),
        GapResolutionOption(
            option_id="create_policy",
            type=GapResolutionType.CREATE_POLICY,
            description="Create a policy document addressing this requirement",
            effort="medium",
            recommended_templates=["policy-template"],
        ),
        GapResolutionOption(
            option_id="compensating_control",
            type=GapResolutionType.COMPENSATING_CONTROL,
            description="Document a compensating control that provides equivalent protection",
            effort="medium",
        ),
        GapResolutionOption(
            option_id="accept_risk",
            type=GapResolutionType.ACCEPT_RISK,
            description="Accept the risk with documented justification",
            effort="low",
        ),
    ]


class GapDetector:
    """Recalculates and manages custom gaps.

    Args:
        versions: Framework version manager (scope: active or latest version per framework).
        library: Requirement library (scope: leaf requirements of that version).
        mapping_repo: Repository implementing IMappingRepository.
        gap_repo: Repository implementing IGapRepository.
        id_generator: Produces gap and evidence ids.
        settings: Coverage thresholds.
        clock: Callable returning the current UTC time.
    """

    def __init__(
        self,
        versions: FrameworkVersionManager,
        library: RequirementLibrary,
        mapping_repo: IMappingRepository,
        gap_repo: IGapRepository,
        id_generator: IdGenerator,
        settings: Settings,
        clock: Clock | None = None,
    ) -> None:
        self._versions = versions
        self._library = library
        self._mapping_repo = mapping_repo
        self._gap_repo = gap_repo
        self._new_id = id_generator
        self._settings = settings
        self._now = clock or utc_now

    def scoped_requirements(self, framework_id: str | None = None) -> list[MasterRequirement]:
        """Leaf requirements of each framework's active version, or its latest when none is active."""
        framework_ids = [framework_id] if framework_id is not None else self._versions.framework_ids()
        requirements: list[MasterRequirement] = []
        for fid in framework_ids:
            version = self._versions.get_active(fid) or self._versions.get_latest(fid)
            if version is not None:
                requirements.extend(self._library.leaf_requirements(version.id))
        return requirements

    def recalculate(self) -> list[CustomGap]:
        """Re-derive every gap and publish the full set in one write.

        Returns:
            The gaps produced by this pass.
        """
        existing = {gap.requirement_id: gap for gap in self._gap_repo.list_all()}
        now = self._now()
        gaps: list[CustomGap] = []

        for requirement in self.scoped_requirements():
            mappings = [m for m in self._mapping_repo.list_for_requirement(requirement.id) if m.is_current]
            previous = existing.get(requirement.id)

            if not mappings:
                derived = CustomGap(
                    id="",
                    requirement_id=requirement.id,
                    gap_type=GapType.NO_CONTROL_MAPPED,
                    severity=infer_gap_severity(requirement),
                    description=(
                        f"No controls are mapped to requirement {requirement.requirement_code}: {requirement.title}"
                    ),
                    missing_coverage=[FULL_REQUIREMENT_COVERAGE],
                    coverage=0,
                )
            else:
                coverage = aggregate_coverage(m.coverage_percentage for m in mappings)
                if coverage >= self._settings.gap_coverage_threshold:
                    continue
                uncovered = sorted({aspect for m in mappings for aspect in m.uncovered_aspects})
                derived = CustomGap(
                    id="",
                    requirement_id=requirement.id,
                    gap_type=GapType.INSUFFICIENT_COVERAGE,
                    severity=(
                        Severity.HIGH if coverage < self._settings.gap_high_severity_below else Severity.MEDIUM
                    ),
                    description=f"Controls only cover {coverage}% of requirement {requirement.requirement_code}",
                    missing_coverage=uncovered,
                    coverage=coverage,
                )

            gaps.append(self._carry_over(derived, previous, now))

        self._gap_repo.replace_all(gaps)
        logger.info(
            "Gap recalculation completed",
            gap_count=len(gaps),
            open_count=sum(1 for g in gaps if g.is_open),
        )
        return gaps

    def _carry_over(self, derived: CustomGap, previous: CustomGap | None, now: datetime) -> CustomGap:
        options = gap_resolution_options()
        if previous is None:
            return replace(derived, id=self._new_id(), resolution_options=options, identified_at=now)
        return replace(
            derived,
            id=previous.id,
            resolution_options=options,
            status=previous.status,
            selected_resolution=previous.selected_resolution,
            direct_evidence=previous.direct_evidence,
            notes=previous.notes,
            identified_at=previous.identified_at,
            identified_by=previous.identified_by,
            resolved_at=previous.resolved_at,
            resolved_by=previous.resolved_by,
        )

    # ------------------------------------------------------------------
    # Gap workflow
    # ------------------------------------------------------------------

    def get(self, gap_id: str) -> CustomGap:
        gap = self._gap_repo.get(gap_id)
        if gap is None:
            raise NotFoundError(resource="CustomGap", resource_id=gap_id)
        return gap

    def update_gap(
        self,
        gap_id: str,
        status: str | None = None,
        notes: str | None = None,
        selected_resolution: str | None = None,
        resolved_by: str | None = None,
    ) -> CustomGap:
        """Update a gap's workflow fields.

        Moving to resolved stamps resolved_at (and resolved_by when given).

        Raises:
            NotFoundError: If the gap does not exist.
            ValidationError: On an unknown status or resolution type.
        """
        gap = self.get(gap_id)
        changes: dict[str, object] = {}

        if status is not None:
            try:
                new_status = GapStatus(status)
            except ValueError as exc:
                raise ValidationError(message=f"Unknown gap status '{status}'", field="status") from exc
            changes["status"] = new_status
            if new_status == GapStatus.RESOLVED and gap.status != GapStatus.RESOLVED:
                changes["resolved_at"] = self._now()
                changes["resolved_by"] = resolved_by
        if selected_resolution is not None:
            try:
                changes["selected_resolution"] = GapResolutionType(selected_resolution)
            except ValueError as exc:
                raise ValidationError(
                    message=f"Unknown gap resolution '{selected_resolution}'",
                    field="selected_resolution",
                ) from exc
        if notes is not None:
            changes["notes"] = notes

        updated = replace(gap, **changes)
        self._gap_repo.save(updated)
        logger.info("Gap updated", gap_id=gap_id, status=str(updated.status))
        return updated

    def add_direct_evidence(
        self,
        gap_id: str,
        title: str,
        description: str,
        uri: str,
        uploaded_by: str,
    ) -> DirectEvidence:
        """Attach evidence directly to a gap, for gaps resolved without a control.

        Raises:
            NotFoundError: If the gap does not exist.
        """
        gap = self.get(gap_id)
        evidence = DirectEvidence(
            id=self._new_id(),
            gap_id=gap_id,
            title=title,
            description=description,
            uri=uri,
            uploaded_by=uploaded_by,
            uploaded_at=self._now(),
        )
        self._gap_repo.save(replace(gap, direct_evidence=[*gap.direct_evidence, evidence]))
        logger.info("Direct evidence attached to gap", gap_id=gap_id, evidence_id=evidence.id)
        return evidence

    def gap_for_requirement(self, requirement_id: str) -> CustomGap | None:
        for gap in self._gap_repo.list_all():
            if gap.requirement_id == requirement_id:
                return gap
        return None

    def gaps_for_framework(self, framework_id: str) -> list[CustomGap]:
        """Gaps on the framework's in-scope leaf requirements."""
        requirement_ids = {r.id for r in self.scoped_requirements(framework_id)}
        return [g for g in self._gap_repo.list_all() if g.requirement_id in requirement_ids]

    def open_gaps(self) -> list[CustomGap]:
        """Unresolved gaps, most severe first."""
        gaps = [g for g in self._gap_repo.list_all() if g.is_open]
        return sorted(gaps, key=lambda g: (-g.severity.rank, g.requirement_id))
