"""Crosswalk store: the versioned N:N junction between controls and requirements.

Each CrosswalkMapping links one Control to one MasterRequirement inside one
FrameworkVersion. Mappings are created by humans or the auto-mapper,
superseded when a newer mapping replaces them, and have their drift_status
changed only by the drift engine.
"""

from collections.abc import Iterable
from dataclasses import replace

from crosswalk_engine.api.schemas import MappingSuggestion
from crosswalk_engine.core.interfaces import (
    Clock,
    IControlRepository,
    IdGenerator,
    IMappingRepository,
    IRequirementRepository,
)
from crosswalk_engine.core.models import (
    Control,
    CrosswalkMapping,
    DriftStatus,
    MappingStrength,
    MasterRequirement,
    utc_now,
)
from crosswalk_engine.core.scoring import round_half_up
from crosswalk_engine.errors import NotFoundError, ValidationError
from crosswalk_engine.observability import get_logger
from crosswalk_engine.settings import Settings

logger = get_logger(__name__)

# Description words this short carry no matching signal
_MIN_DESCRIPTION_WORD_LENGTH = 4


def _validate_strength(mapping_strength: str) -> MappingStrength:
    try:
        return MappingStrength(mapping_strength)
    except ValueError as exc:
        raise ValidationError(
            message=f"Unknown mapping strength '{mapping_strength}'",
            field="mapping_strength",
        ) from exc


def _validate_coverage(coverage_percentage: float) -> float:
    if isinstance(coverage_percentage, bool) or not isinstance(coverage_percentage, int | float):
        raise ValidationError(message="coverage_percentage must be a number", field="coverage_percentage")
    if not 0 <= coverage_percentage <= 100:
        raise ValidationError(
            message=f"coverage_percentage must be between 0 and 100, got {coverage_percentage}",
            field="coverage_percentage",
        )
    return float(coverage_percentage)


def _validate_aspects(aspects: Iterable[str], field_name: str) -> set[str]:
    if isinstance(aspects, str):
        raise ValidationError(message=f"{field_name} must be a list of strings", field=field_name)
    values = set(aspects)
    if not all(isinstance(a, str) for a in values):
        raise ValidationError(message=f"{field_name} must be a list of strings", field=field_name)
    return values


def tokenize(text: str) -> set[str]:
    """Lower-cased whitespace tokens of a text."""
    return set(text.lower().split())


class CrosswalkStore:
    """Create, query, supersede and suggest crosswalk mappings.

    Args:
        mapping_repo: Repository implementing IMappingRepository.
        requirement_repo: Repository implementing IRequirementRepository.
        control_repo: Optional control catalog; when given, control ids are validated.
        id_generator: Produces mapping ids.
        settings: Thresholds for auto-mapping suggestions.
        clock: Callable returning the current UTC time.
    """

    def __init__(
        self,
        mapping_repo: IMappingRepository,
        requirement_repo: IRequirementRepository,
        id_generator: IdGenerator,
        settings: Settings,
        control_repo: IControlRepository | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._mapping_repo = mapping_repo
        self._requirement_repo = requirement_repo
        self._control_repo = control_repo
        self._new_id = id_generator
        self._settings = settings
        self._now = clock or utc_now

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

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
        """Link a control to a specific requirement version.

        Args:
            control_id: Control to link.
            requirement_id: Requirement (version-specific) to link.
            mapping_strength: direct | partial | supportive.
            coverage_percentage: Share of the requirement covered, 0-100.
            covered_aspects: Aspects of the requirement the control covers.
            justification: Why the mapping exists.
            uncovered_aspects: Aspects the control leaves open.
            is_auto_mapped: Whether the auto-mapper proposed the mapping.
            auto_map_confidence: Auto-mapper confidence, if auto-mapped.

        Returns:
            The stored CrosswalkMapping with drift_status current.

        Raises:
            ValidationError: On bad strength, coverage or aspects, or a duplicate current mapping.
            NotFoundError: If the requirement or control does not exist.
        """
        strength = _validate_strength(mapping_strength)
        coverage = _validate_coverage(coverage_percentage)
        covered = _validate_aspects(covered_aspects, "covered_aspects")
        uncovered = _validate_aspects(uncovered_aspects, "uncovered_aspects")

        requirement = self._requirement_repo.get(requirement_id)
        if requirement is None:
            raise NotFoundError(resource="MasterRequirement", resource_id=requirement_id)
        if self._control_repo is not None and self._control_repo.get(control_id) is None:
            raise NotFoundError(resource="Control", resource_id=control_id)

        for existing in self._mapping_repo.list_for_requirement(requirement_id):
            if existing.control_id == control_id and existing.is_current:
                raise ValidationError(
                    message=f"Control '{control_id}' is already mapped to requirement '{requirement_id}'",
                    field="control_id",
                )

        now = self._now()
        mapping = CrosswalkMapping(
            id=self._new_id(),
            control_id=control_id,
            requirement_id=requirement_id,
            framework_version_id=requirement.framework_version_id,
            mapping_strength=strength,
            coverage_percentage=coverage,
            valid_from_version=requirement.framework_version_id,
            covered_aspects=covered,
            uncovered_aspects=uncovered,
            drift_status=DriftStatus.CURRENT,
            justification=justification,
            is_auto_mapped=is_auto_mapped,
            auto_map_confidence=auto_map_confidence,
            human_reviewed=not is_auto_mapped,
            created_at=now,
            updated_at=now,
        )
        self._mapping_repo.add(mapping)
        logger.info(
            "Crosswalk mapping created",
            mapping_id=mapping.id,
            control_id=control_id,
            requirement_id=requirement_id,
            strength=str(strength),
            coverage=coverage,
        )
        return mapping

    def update_mapping(
        self,
        mapping_id: str,
        coverage_percentage: float | None = None,
        mapping_strength: str | None = None,
        covered_aspects: Iterable[str] | None = None,
        uncovered_aspects: Iterable[str] | None = None,
        justification: str | None = None,
        human_reviewed: bool | None = None,
    ) -> CrosswalkMapping:
        """Update the user-editable fields of a mapping. drift_status is not editable here.

        Raises:
            NotFoundError: If the mapping does not exist.
            ValidationError: On bad strength, coverage or aspects.
        """
        mapping = self.get(mapping_id)
        changes: dict[str, object] = {}
        if coverage_percentage is not None:
            changes["coverage_percentage"] = _validate_coverage(coverage_percentage)
        if mapping_strength is not None:
            changes["mapping_strength"] = _validate_strength(mapping_strength)
        if covered_aspects is not None:
            changes["covered_aspects"] = _validate_aspects(covered_aspects, "covered_aspects")
        if uncovered_aspects is not None:
            changes["uncovered_aspects"] = _validate_aspects(uncovered_aspects, "uncovered_aspects")
        if justification is not None:
            changes["justification"] = justification
        if human_reviewed is not None:
            changes["human_reviewed"] = human_reviewed

        updated = replace(mapping, **changes, updated_at=self._now())
        self._mapping_repo.save_many([updated])
        logger.info("Crosswalk mapping updated", mapping_id=mapping_id, fields=sorted(changes))
        return updated

    def remove_mapping(self, mapping_id: str) -> CrosswalkMapping:
        """Delete a mapping.

        Returns:
            The removed mapping.

        Raises:
            NotFoundError: If the mapping does not exist.
        """
        mapping = self.get(mapping_id)
        self._mapping_repo.remove(mapping_id)
        logger.info(
            "Crosswalk mapping removed",
            mapping_id=mapping_id,
            control_id=mapping.control_id,
            requirement_id=mapping.requirement_id,
        )
        return mapping

    def supersede_mapping(self, mapping_id: str, new_requirement_id: str) -> CrosswalkMapping:
        """Replace a mapping with a successor on a newer requirement version.

        The successor carries over strength, coverage, aspects and
        justification. The old mapping gets valid_until_version set to its
        own framework version and points at its successor.

        Returns:
            The successor mapping.

        Raises:
            NotFoundError: If the mapping or the new requirement does not exist.
            ValidationError: If the mapping is already superseded.
        """
        old = self.get(mapping_id)
        if old.valid_until_version is not None:
            raise ValidationError(
                message=f"Mapping '{mapping_id}' is already superseded",
                field="mapping_id",
            )
        requirement = self._requirement_repo.get(new_requirement_id)
        if requirement is None:
            raise NotFoundError(resource="MasterRequirement", resource_id=new_requirement_id)

        now = self._now()
        successor = CrosswalkMapping(
            id=self._new_id(),
            control_id=old.control_id,
            requirement_id=requirement.id,
            framework_version_id=requirement.framework_version_id,
            mapping_strength=old.mapping_strength,
            coverage_percentage=old.coverage_percentage,
            valid_from_version=requirement.framework_version_id,
            covered_aspects=set(old.covered_aspects),
            uncovered_aspects=set(old.uncovered_aspects),
            drift_status=DriftStatus.CURRENT,
            justification=old.justification,
            is_auto_mapped=old.is_auto_mapped,
            auto_map_confidence=old.auto_map_confidence,
            human_reviewed=old.human_reviewed,
            created_at=now,
            updated_at=now,
        )
        retired = replace(
            old,
            valid_until_version=old.framework_version_id,
            superseded_by_mapping_id=successor.id,
            updated_at=now,
        )
        self._mapping_repo.add(successor)
        self._mapping_repo.save_many([retired])
        logger.info(
            "Crosswalk mapping superseded",
            mapping_id=mapping_id,
            successor_id=successor.id,
            framework_version_id=requirement.framework_version_id,
        )
        return successor

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, mapping_id: str) -> CrosswalkMapping:
        """Return a mapping by id.

        Raises:
            NotFoundError: If the mapping does not exist.
        """
        mapping = self._mapping_repo.get(mapping_id)
        if mapping is None:
            raise NotFoundError(resource="CrosswalkMapping", resource_id=mapping_id)
        return mapping

    def mappings_for_control(self, control_id: str) -> list[CrosswalkMapping]:
        return self._mapping_repo.list_for_control(control_id)

    def current_mappings_for_control(self, control_id: str) -> list[CrosswalkMapping]:
        """Mappings of a control that are neither superseded nor invalidated."""
        return [m for m in self._mapping_repo.list_for_control(control_id) if m.is_current]

    def mappings_for_requirement(self, requirement_id: str) -> list[CrosswalkMapping]:
        return self._mapping_repo.list_for_requirement(requirement_id)

    def mappings_for_version(self, framework_version_id: str) -> list[CrosswalkMapping]:
        return self._mapping_repo.list_for_version(framework_version_id)

    # ------------------------------------------------------------------
    # Auto-mapping
    # ------------------------------------------------------------------

    def suggest_mappings(
        self,
        control: Control,
        candidates: Iterable[MasterRequirement],
    ) -> list[MappingSuggestion]:
        """Rank candidate requirements for a control by keyword overlap.

        The control side is its keywords plus title tokens. A control
        keyword matches when it appears among the requirement's title
        tokens or longer description words, or inside the requirement
        title. confidence = matches / |control keywords| * 100, capped at
        100. Requirements the control already maps to are skipped.

        Args:
            control: Control to find requirements for.
            candidates: Requirements to consider.

        Returns:
            Suggestions at or above the auto-mapping threshold, best first,
            at most max_auto_mapping_suggestions.
        """
        already_mapped = {m.requirement_id for m in self._mapping_repo.list_for_control(control.id)}
        control_keywords = {k.lower() for k in control.keywords} | tokenize(control.title)
        if not control_keywords:
            logger.debug("Control has no keywords; no suggestions", control_id=control.id)
            return []

        suggestions = []
        for requirement in candidates:
            if requirement.id in already_mapped:
                continue
            title = requirement.title.lower()
            requirement_keywords = tokenize(requirement.title) | {
                word for word in tokenize(requirement.official_text) if len(word) >= _MIN_DESCRIPTION_WORD_LENGTH
            }
            matched = sorted(k for k in control_keywords if k in requirement_keywords or k in title)
            confidence = min(100, round_half_up(len(matched) / len(control_keywords) * 100))
            if confidence >= self._settings.auto_mapping_threshold:
                suggestions.append(
                    MappingSuggestion(
                        control_id=control.id,
                        requirement_id=requirement.id,
                        requirement_code=requirement.requirement_code,
                        framework_id=requirement.framework_id,
                        confidence=confidence,
                        matched_keywords=matched,
                    )
                )

        suggestions.sort(key=lambda s: (-s.confidence, s.requirement_code))
        return suggestions[: self._settings.max_auto_mapping_suggestions]
