"""CrosswalkEngine: explicitly constructed facade over the crosswalk services.

The engine holds injected repositories, the control catalog, an answer
lookup, an id generator, a clock and Settings. Nothing is process-global,
so several engines (one per organization, or per test) can coexist.

Inbound operations: activate_version, create/update/remove/supersede
mapping, acknowledge/review/resolve/accept-risk drift, recalculate_gaps,
detect_drift, compare_versions, gap updates and direct evidence.

Outbound read models: framework_coverage_summary, domain_groups,
weighted_scores, global_stats, open_drift, drift_statistics, open_gaps,
gaps_for_framework, requirement_progress, suggest_mappings.
"""

import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime

from crosswalk_engine.adapters.memory import (
    InMemoryControlRepository,
    InMemoryDriftRepository,
    InMemoryFrameworkVersionRepository,
    InMemoryGapRepository,
    InMemoryMappingRepository,
    InMemoryRequirementRepository,
)
from crosswalk_engine.api.schemas import (
    DirectEvidenceCreateRequest,
    DirectEvidenceResponse,
    DomainGroup,
    DriftAcceptRiskRequest,
    DriftResolutionOptionResponse,
    DriftResolveRequest,
    DriftResponse,
    DriftStatistics,
    FrameworkCoverageSummary,
    GapResolutionOptionResponse,
    GapResponse,
    GapUpdateRequest,
    GlobalStats,
    MappingSuggestion,
    RequirementProgress,
    RequirementVersionComparison,
    WeightedScoreResult,
)
from crosswalk_engine.core import scoring
from crosswalk_engine.core.crosswalk import CrosswalkStore
from crosswalk_engine.core.diff import VersionComparator
from crosswalk_engine.core.drift import DriftDetector
from crosswalk_engine.core.gaps import GapDetector
from crosswalk_engine.core.interfaces import (
    AnswerLookup,
    Clock,
    IControlRepository,
    IDriftRepository,
    IdGenerator,
    IFrameworkVersionRepository,
    IGapRepository,
    IMappingRepository,
    IRequirementRepository,
)
from crosswalk_engine.core.library import RequirementLibrary
from crosswalk_engine.core.models import (
    ComplianceDrift,
    Control,
    ControlAnswer,
    CrosswalkMapping,
    CustomGap,
    DirectEvidence,
    FrameworkVersion,
    MasterRequirement,
    VersionChange,
    VersionStatus,
    utc_now,
)
from crosswalk_engine.core.versions import FrameworkVersionManager
from crosswalk_engine.errors import NotFoundError
from crosswalk_engine.observability import get_logger
from crosswalk_engine.settings import Settings, get_settings

logger = get_logger(__name__)


def _uuid_id() -> str:
    return str(uuid.uuid4())


@dataclass
class ActivationResult:
    """Outcome of activating a framework version."""

    version: FrameworkVersion
    superseded: FrameworkVersion | None = None
    drift: list[ComplianceDrift] = field(default_factory=list)


class CrosswalkEngine:
    """Regulatory crosswalk and compliance-drift engine.

    Args:
        version_repo: FrameworkVersion persistence.
        requirement_repo: MasterRequirement persistence.
        mapping_repo: CrosswalkMapping persistence.
        drift_repo: ComplianceDrift persistence.
        gap_repo: CustomGap persistence.
        control_repo: The organization's control catalog.
        answer_lookup: Current answer per control id.
        id_generator: Produces globally unique ids; defaults to uuid4 strings.
        clock: Returns the current UTC time; defaults to the system clock.
        settings: Engine settings; defaults to get_settings().
    """

    def __init__(
        self,
        version_repo: IFrameworkVersionRepository,
        requirement_repo: IRequirementRepository,
        mapping_repo: IMappingRepository,
        drift_repo: IDriftRepository,
        gap_repo: IGapRepository,
        control_repo: IControlRepository,
        answer_lookup: AnswerLookup,
        id_generator: IdGenerator | None = None,
        clock: Clock | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._now = clock or utc_now
        self._control_repo = control_repo
        self._answer_lookup = answer_lookup
        new_id = id_generator or _uuid_id

        self.versions = FrameworkVersionManager(version_repo, clock=self._now)
        self.library = RequirementLibrary(requirement_repo, version_repo, new_id)
        self.crosswalk = CrosswalkStore(
            mapping_repo,
            requirement_repo,
            new_id,
            self._settings,
            control_repo=control_repo,
            clock=self._now,
        )
        self.gaps = GapDetector(
            self.versions,
            self.library,
            mapping_repo,
            gap_repo,
            new_id,
            self._settings,
            clock=self._now,
        )
        self.drift = DriftDetector(
            self.versions,
            self.library,
            mapping_repo,
            drift_repo,
            new_id,
            self._settings,
            clock=self._now,
        )
        self.comparator = VersionComparator(self.versions, self.library, mapping_repo, self._settings)

    @classmethod
    def in_memory(
        cls,
        controls: Iterable[Control] = (),
        answers: dict[str, ControlAnswer] | None = None,
        id_generator: IdGenerator | None = None,
        clock: Clock | None = None,
        settings: Settings | None = None,
    ) -> "CrosswalkEngine":
        """Build an engine over the in-memory adapters.

        Args:
            controls: Control catalog to seed.
            answers: Answers keyed by control id. The dict is read live, so
                callers can change answers between operations.
            id_generator: Optional id generator.
            clock: Optional clock.
            settings: Optional settings.

        Returns:
            A CrosswalkEngine with empty version, requirement, mapping, drift and gap stores.
        """
        answer_store = answers if answers is not None else {}
        return cls(
            version_repo=InMemoryFrameworkVersionRepository(),
            requirement_repo=InMemoryRequirementRepository(),
            mapping_repo=InMemoryMappingRepository(),
            drift_repo=InMemoryDriftRepository(),
            gap_repo=InMemoryGapRepository(),
            control_repo=InMemoryControlRepository(list(controls)),
            answer_lookup=answer_store.get,
            id_generator=id_generator,
            clock=clock,
            settings=settings,
        )

    @property
    def settings(self) -> Settings:
        return self._settings

    # ------------------------------------------------------------------
    # Versions and requirements
    # ------------------------------------------------------------------

    def add_version(
        self,
        framework_id: str,
        version_code: str,
        published_date: date,
        effective_date: date,
        status: str = VersionStatus.DRAFT,
        version_name: str = "",
        transition_deadline: date | None = None,
        sunset_date: date | None = None,
        previous_version_id: str | None = None,
        changes: list[VersionChange] | None = None,
        version_id: str | None = None,
    ) -> FrameworkVersion:
        """Register a framework version. See FrameworkVersionManager.add_version.

        A version registered as active is stored as draft first and then
        goes through activate_version, so the drift scan and gap
        recalculation run exactly as for a later activation.
        """
        activate = status == VersionStatus.ACTIVE
        version = self.versions.add_version(
            framework_id=framework_id,
            version_code=version_code,
            published_date=published_date,
            effective_date=effective_date,
            status=VersionStatus.DRAFT if activate else status,
            version_name=version_name,
            transition_deadline=transition_deadline,
            sunset_date=sunset_date,
            previous_version_id=previous_version_id,
            changes=changes,
            version_id=version_id,
        )
        if activate:
            version = self.activate_version(version.id).version
        return version

    def add_requirement(self, framework_version_id: str, requirement_code: str, **fields) -> MasterRequirement:
        """Ingest a requirement. See RequirementLibrary.add_requirement."""
        return self.library.add_requirement(framework_version_id, requirement_code, **fields)

    def search_requirements(self, query: str, framework_id: str | None = None) -> list[MasterRequirement]:
        return self.library.search(query, framework_id)

    def activate_version(self, version_id: str) -> ActivationResult:
        """Activate a version and scan the transition from the prior version for drift.

        The prior version is the framework's previously active version, or
        the new version's previous_version_id when nothing was active.

        Args:
            version_id: Version to activate.

        Returns:
            ActivationResult with the activated version, the superseded
            version (if any) and the drift records of the scan.

        Raises:
            NotFoundError: If the version does not exist.
            InvalidStateError: If the version is retired.
        """
        activated, superseded = self.versions.activate(version_id)

        prior_id = superseded.id if superseded else activated.previous_version_id
        drift: list[ComplianceDrift] = []
        if prior_id is not None and prior_id != activated.id:
            drift = self.drift.detect(prior_id, activated.id, self._control_repo.list_all(), self._answer_lookup)

        if self._settings.auto_recalculate_gaps:
            self.gaps.recalculate()
        return ActivationResult(version=activated, superseded=superseded, drift=drift)

    # ------------------------------------------------------------------
    # Crosswalk
    # ------------------------------------------------------------------

    def _after_mapping_change(self) -> None:
        if self._settings.auto_recalculate_gaps:
            self.gaps.recalculate()

    def create_mapping(
        self,
        control_id: str,
        requirement_id: str,
        mapping_strength: str,
        coverage_percentage: float,
        covered_aspects: Iterable[str] = (),
        justification: str = "",
        uncovered_aspects: Iterable[str] = (),
        is_auto_mapped: bool = False,
        auto_map_confidence: float | None = None,
    ) -> CrosswalkMapping:
        """Create a crosswalk mapping and, when configured, recalculate gaps."""
        mapping = self.crosswalk.create_mapping(
            control_id=control_id,
            requirement_id=requirement_id,
            mapping_strength=mapping_strength,
            coverage_percentage=coverage_percentage,
            covered_aspects=covered_aspects,
            justification=justification,
            uncovered_aspects=uncovered_aspects,
            is_auto_mapped=is_auto_mapped,
            auto_map_confidence=auto_map_confidence,
        )
        self._after_mapping_change()
        return mapping

    def update_mapping(self, mapping_id: str, **fields) -> CrosswalkMapping:
        mapping = self.crosswalk.update_mapping(mapping_id, **fields)
        self._after_mapping_change()
        return mapping

    def remove_mapping(self, mapping_id: str) -> CrosswalkMapping:
        """Remove a mapping and, when configured, recalculate gaps.

        Raises:
            NotFoundError: If the mapping does not exist.
        """
        mapping = self.crosswalk.remove_mapping(mapping_id)
        self._after_mapping_change()
        return mapping

    def supersede_mapping(self, mapping_id: str, new_requirement_id: str) -> CrosswalkMapping:
        mapping = self.crosswalk.supersede_mapping(mapping_id, new_requirement_id)
        self._after_mapping_change()
        return mapping

    def suggest_mappings(self, control_id: str) -> list[MappingSuggestion]:
        """Auto-mapping suggestions for a control over the in-scope leaf requirements.

        Raises:
            NotFoundError: If the control does not exist.
        """
        control = self._control_repo.get(control_id)
        if control is None:
            raise NotFoundError(resource="Control", resource_id=control_id)
        return self.crosswalk.suggest_mappings(control, self.gaps.scoped_requirements())

    # ------------------------------------------------------------------
    # Drift
    # ------------------------------------------------------------------

    def detect_drift(
        self,
        old_version_id: str,
        new_version_id: str,
        controls: Iterable[Control] | None = None,
        answer_lookup: AnswerLookup | None = None,
    ) -> list[ComplianceDrift]:
        """Scan a version transition. Defaults to the injected catalog and answer lookup."""
        return self.drift.detect(
            old_version_id,
            new_version_id,
            self._control_repo.list_all() if controls is None else controls,
            answer_lookup or self._answer_lookup,
        )

    def acknowledge_drift(self, drift_id: str) -> DriftResponse:
        return _drift_to_response(self.drift.acknowledge(drift_id), self._now())

    def start_drift_review(self, drift_id: str) -> DriftResponse:
        return _drift_to_response(self.drift.start_review(drift_id), self._now())

    def resolve_drift(self, drift_id: str, resolution: DriftResolveRequest) -> DriftResponse:
        """Resolve a drift record; its mapping returns to current.

        Raises:
            NotFoundError: If the record does not exist.
            InvalidStateError: If the record is already closed.
        """
        drift = self.drift.resolve(
            drift_id,
            resolution_type=resolution.resolution_type,
            resolved_by=resolution.resolved_by,
            notes=resolution.notes,
        )
        return _drift_to_response(drift, self._now())

    def accept_drift_risk(self, drift_id: str, request: DriftAcceptRiskRequest) -> DriftResponse:
        drift = self.drift.accept_risk(drift_id, notes=request.notes, accepted_by=request.accepted_by)
        return _drift_to_response(drift, self._now())

    def open_drift(self) -> list[DriftResponse]:
        """Open drift records sorted by ascending days_remaining."""
        now = self._now()
        return [_drift_to_response(d, now) for d in self.drift.open_drift(now)]

    def drift_statistics(self) -> DriftStatistics:
        return self.drift.statistics(self._now())

    def compare_versions(
        self,
        requirement_code: str,
        old_version_id: str,
        new_version_id: str,
    ) -> RequirementVersionComparison:
        return self.comparator.compare(
            requirement_code,
            old_version_id,
            new_version_id,
            self._control_repo.list_all(),
            self._answer_lookup,
        )

    # ------------------------------------------------------------------
    # Gaps
    # ------------------------------------------------------------------

    def recalculate_gaps(self) -> list[GapResponse]:
        return [_gap_to_response(g) for g in self.gaps.recalculate()]

    def open_gaps(self) -> list[GapResponse]:
        return [_gap_to_response(g) for g in self.gaps.open_gaps()]

    def gaps_for_framework(self, framework_id: str) -> list[GapResponse]:
        return [_gap_to_response(g) for g in self.gaps.gaps_for_framework(framework_id)]

    def update_gap(self, gap_id: str, request: GapUpdateRequest) -> GapResponse:
        gap = self.gaps.update_gap(
            gap_id,
            status=request.status,
            notes=request.notes,
            selected_resolution=request.selected_resolution,
            resolved_by=request.resolved_by,
        )
        return _gap_to_response(gap)

    def add_gap_evidence(self, gap_id: str, request: DirectEvidenceCreateRequest) -> DirectEvidenceResponse:
        evidence = self.gaps.add_direct_evidence(
            gap_id,
            title=request.title,
            description=request.description,
            uri=request.uri,
            uploaded_by=request.uploaded_by,
        )
        return _evidence_to_response(evidence)

    # ------------------------------------------------------------------
    # Coverage and scores
    # ------------------------------------------------------------------

    def framework_coverage_summary(
        self,
        framework_id: str,
        framework_version_id: str | None = None,
    ) -> FrameworkCoverageSummary:
        """Framework percentage for a version; defaults to the active, else latest, version."""
        if framework_version_id is not None:
            version: FrameworkVersion | None = self.versions.get(framework_version_id)
        else:
            version = self.versions.get_active(framework_id) or self.versions.get_latest(framework_id)

        if version is None:
            return scoring.framework_coverage(framework_id, None, [], [], self._answer_lookup)
        return scoring.framework_coverage(
            framework_id,
            version.id,
            self.library.requirements_for_version(version.id).values(),
            self.crosswalk.mappings_for_version(version.id),
            self._answer_lookup,
        )

    def domain_groups(self) -> list[DomainGroup]:
        return scoring.domain_groups(self._control_repo.list_all(), self._answer_lookup)

    def weighted_scores(self) -> WeightedScoreResult:
        return scoring.weighted_scores(self._control_repo.list_all(), self._answer_lookup)

    def global_stats(self) -> GlobalStats:
        return scoring.global_stats(self._control_repo.list_all(), self._answer_lookup)

    def requirement_progress(self, requirement_id: str) -> RequirementProgress:
        """Auditor view of one requirement.

        Raises:
            NotFoundError: If the requirement does not exist.
        """
        requirement = self.library.get(requirement_id)
        return scoring.requirement_progress(
            requirement,
            self.crosswalk.mappings_for_requirement(requirement_id),
            self.gaps.gap_for_requirement(requirement_id),
            {c.id: c for c in self._control_repo.list_all()},
            self._answer_lookup,
        )


# ---------------------------------------------------------------------------
# Response converters
# ---------------------------------------------------------------------------


def _drift_to_response(drift: ComplianceDrift, now: datetime) -> DriftResponse:
    """Convert a ComplianceDrift to its read model, deriving days_remaining at `now`.

    Args:
        drift: The drift record.
        now: Reference time for days_remaining.

    Returns:
        DriftResponse Pydantic model.
    """
    return DriftResponse(
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
        previous_requirement_text=drift.previous_requirement_text,
        new_requirement_text=drift.new_requirement_text,
        change_summary=drift.change_summary,
        impact_assessment=drift.impact_assessment,
        affected_evidence_types=list(drift.affected_evidence_types),
        resolution_path=[
            DriftResolutionOptionResponse(
                option_id=option.option_id,
                type=str(option.type),
                description=option.description,
                effort=option.effort,
                recommended_actions=list(option.recommended_actions),
            )
            for option in drift.resolution_path
        ],
        status=str(drift.status),
        compliance_deadline=drift.compliance_deadline,
        days_remaining=drift.days_remaining(now),
        selected_resolution=str(drift.selected_resolution) if drift.selected_resolution else None,
        resolved_at=drift.resolved_at,
        resolved_by=drift.resolved_by,
        notes=drift.notes,
        created_at=drift.created_at,
        updated_at=drift.updated_at,
    )


def _evidence_to_response(evidence: DirectEvidence) -> DirectEvidenceResponse:
    return DirectEvidenceResponse(
        id=evidence.id,
        gap_id=evidence.gap_id,
        title=evidence.title,
        description=evidence.description,
        uri=evidence.uri,
        uploaded_by=evidence.uploaded_by,
        uploaded_at=evidence.uploaded_at,
    )


def _gap_to_response(gap: CustomGap) -> GapResponse:
    """Convert a CustomGap to its read model.

    Args:
        gap: The gap.

    Returns:
        GapResponse Pydantic model.
    """
    return GapResponse(
        id=gap.id,
        requirement_id=gap.requirement_id,
        gap_type=str(gap.gap_type),
        severity=str(gap.severity),
        description=gap.description,
        coverage=gap.coverage,
        missing_coverage=list(gap.missing_coverage),
        resolution_options=[
            GapResolutionOptionResponse(
                option_id=option.option_id,
                type=str(option.type),
                description=option.description,
                effort=option.effort,
                recommended_templates=list(option.recommended_templates),
            )
            for option in gap.resolution_options
        ],
        status=str(gap.status),
        selected_resolution=str(gap.selected_resolution) if gap.selected_resolution else None,
        direct_evidence=[_evidence_to_response(e) for e in gap.direct_evidence],
        notes=gap.notes,
        identified_at=gap.identified_at,
        identified_by=gap.identified_by,
        resolved_at=gap.resolved_at,
        resolved_by=gap.resolved_by,
    )
