"""Requirement library: versioned catalog of official requirements.

Each MasterRequirement belongs to exactly one FrameworkVersion. The engine
reads the library; `add_requirement` is the ingestion entry point used by
whatever loads regulator content.
"""

from datetime import date

from crosswalk_engine.core.interfaces import (
    IdGenerator,
    IFrameworkVersionRepository,
    IRequirementRepository,
)
from crosswalk_engine.core.models import ImplementationLevel, MasterRequirement, VerificationFrequency
from crosswalk_engine.errors import NotFoundError, ValidationError
from crosswalk_engine.observability import get_logger

logger = get_logger(__name__)

MIN_RISK_WEIGHT = 1
MAX_RISK_WEIGHT = 10


class RequirementLibrary:
    """Per-version requirement catalog with search.

    Args:
        requirement_repo: Repository implementing IRequirementRepository.
        version_repo: Repository implementing IFrameworkVersionRepository.
        id_generator: Produces ids for new requirements.
    """

    def __init__(
        self,
        requirement_repo: IRequirementRepository,
        version_repo: IFrameworkVersionRepository,
        id_generator: IdGenerator,
    ) -> None:
        self._requirement_repo = requirement_repo
        self._version_repo = version_repo
        self._new_id = id_generator

    def add_requirement(
        self,
        framework_version_id: str,
        requirement_code: str,
        title: str,
        official_text: str,
        implementation_level: str,
        required_evidence_types: set[str] | list[str],
        verification_frequency: str,
        risk_weight: int,
        effective_date: date | None = None,
        emerging_tech_category: str | None = None,
        keywords: set[str] | list[str] | None = None,
        parent_code: str | None = None,
        domain: str | None = None,
        transition_period_days: int | None = None,
        requirement_id: str | None = None,
    ) -> MasterRequirement:
        """Add a requirement to a framework version.

        Args:
            framework_version_id: Owning version.
            requirement_code: Official code, unique within the version.
            title: Short title.
            official_text: Verbatim regulatory text.
            implementation_level: mandatory | recommended | optional | conditional.
            required_evidence_types: Evidence types the requirement demands.
            verification_frequency: once | annual | semi_annual | quarterly | monthly | continuous.
            risk_weight: Integer 1-10.
            effective_date: Enforceable date; defaults to the version's effective date.
            emerging_tech_category: Optional emerging technology tag.
            keywords: Matching keywords.
            parent_code: Parent requirement code for hierarchical frameworks.
            domain: Compliance domain.
            transition_period_days: Optional grace period.
            requirement_id: Explicit id; generated when omitted.

        Returns:
            The stored MasterRequirement.

        Raises:
            NotFoundError: If the framework version does not exist.
            ValidationError: On an out-of-range risk weight, unknown enum value
                or duplicate code within the version.
        """
        version = self._version_repo.get(framework_version_id)
        if version is None:
            raise NotFoundError(resource="FrameworkVersion", resource_id=framework_version_id)

        if isinstance(risk_weight, bool) or not isinstance(risk_weight, int):
            raise ValidationError(message="risk_weight must be an integer", field="risk_weight")
        if not MIN_RISK_WEIGHT <= risk_weight <= MAX_RISK_WEIGHT:
            raise ValidationError(
                message=f"risk_weight must be between {MIN_RISK_WEIGHT} and {MAX_RISK_WEIGHT}, got {risk_weight}",
                field="risk_weight",
            )

        try:
            level = ImplementationLevel(implementation_level)
        except ValueError as exc:
            raise ValidationError(
                message=f"Unknown implementation level '{implementation_level}'",
                field="implementation_level",
            ) from exc

        try:
            frequency = VerificationFrequency(verification_frequency)
        except ValueError as exc:
            raise ValidationError(
                message=f"Unknown verification frequency '{verification_frequency}'",
                field="verification_frequency",
            ) from exc

        if not requirement_code.strip():
            raise ValidationError(message="requirement_code must not be empty", field="requirement_code")
        if self.get_by_code(framework_version_id, requirement_code) is not None:
            raise ValidationError(
                message=f"Requirement code '{requirement_code}' already exists in version '{framework_version_id}'",
                field="requirement_code",
            )

        requirement = MasterRequirement(
            id=requirement_id or self._new_id(),
            framework_id=version.framework_id,
            framework_version_id=framework_version_id,
            requirement_code=requirement_code,
            title=title,
            official_text=official_text,
            implementation_level=level,
            required_evidence_types=set(required_evidence_types),
            verification_frequency=frequency,
            risk_weight=risk_weight,
            effective_date=effective_date or version.effective_date,
            emerging_tech_category=emerging_tech_category,
            keywords={k.lower() for k in keywords or []},
            parent_code=parent_code,
            domain=domain,
            transition_period_days=transition_period_days,
        )
        self._requirement_repo.add(requirement)
        logger.info(
            "Requirement added",
            requirement_id=requirement.id,
            requirement_code=requirement_code,
            framework_version_id=framework_version_id,
        )
        return requirement

    def get(self, requirement_id: str) -> MasterRequirement:
        """Return a requirement by id.

        Raises:
            NotFoundError: If the requirement does not exist.
        """
        requirement = self._requirement_repo.get(requirement_id)
        if requirement is None:
            raise NotFoundError(resource="MasterRequirement", resource_id=requirement_id)
        return requirement

    def get_by_code(self, framework_version_id: str, requirement_code: str) -> MasterRequirement | None:
        """Return the requirement with this code in a version, or None."""
        return self.requirements_for_version(framework_version_id).get(requirement_code)

    def requirements_for_version(self, framework_version_id: str) -> dict[str, MasterRequirement]:
        """Return a version's requirements keyed by requirement code."""
        return {
            r.requirement_code: r for r in self._requirement_repo.list_for_version(framework_version_id)
        }

    def leaf_requirements(self, framework_version_id: str) -> list[MasterRequirement]:
        """Return the requirements no other requirement in the version names as parent.

        Flat frameworks have no parent codes, so every requirement is a leaf.
        """
        requirements = self._requirement_repo.list_for_version(framework_version_id)
        parents = {r.parent_code for r in requirements if r.parent_code}
        leaves = [r for r in requirements if r.requirement_code not in parents]
        return sorted(leaves, key=lambda r: r.requirement_code)

    def search(self, query: str, framework_id: str | None = None) -> list[MasterRequirement]:
        """Case-insensitive substring search over code, title, official text and keywords.

        Args:
            query: Text to look for.
            framework_id: Optional framework filter.

        Returns:
            Matching requirements ordered by framework version and code.
        """
        needle = query.lower()
        matches = []
        for requirement in self._requirement_repo.list_all():
            if framework_id is not None and requirement.framework_id != framework_id:
                continue
            haystacks = [
                requirement.requirement_code,
                requirement.title,
                requirement.official_text,
                *requirement.keywords,
            ]
            if any(needle in text.lower() for text in haystacks):
                matches.append(requirement)
        return sorted(matches, key=lambda r: (r.framework_version_id, r.requirement_code))
