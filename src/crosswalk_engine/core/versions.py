"""Framework version lifecycle management.

FrameworkVersionManager owns the draft → published → active → superseded →
retired lifecycle and the invariant that at most one version per framework
is active at any time. It mutates only version status and updated_at; it
never touches requirements or mappings.
"""

import re
from dataclasses import replace
from datetime import date

from crosswalk_engine.core.interfaces import Clock, IFrameworkVersionRepository
from crosswalk_engine.core.models import FrameworkVersion, VersionChange, VersionStatus, utc_now
from crosswalk_engine.errors import InvalidStateError, NotFoundError, ValidationError
from crosswalk_engine.observability import get_logger

logger = get_logger(__name__)

_WHITESPACE = re.compile(r"\s+")


def make_version_id(framework_id: str, version_code: str) -> str:
    """Build the conventional version id, e.g. ("ISO27001", "2022") -> "iso27001_2022"."""
    return _WHITESPACE.sub("_", f"{framework_id}_{version_code}".lower())


class FrameworkVersionManager:
    """Lifecycle of framework versions.

    Args:
        version_repo: Repository implementing IFrameworkVersionRepository.
        clock: Callable returning the current UTC time.
    """

    def __init__(
        self,
        version_repo: IFrameworkVersionRepository,
        clock: Clock | None = None,
    ) -> None:
        self._version_repo = version_repo
        self._now = clock or utc_now

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
        """Register a new framework version.

        Versions registered with status active go through `activate`, so the
        single-active invariant holds from the start.

        Args:
            framework_id: Framework the version belongs to.
            version_code: Version label.
            published_date: Publication date.
            effective_date: Date the version becomes enforceable.
            status: Initial lifecycle status.
            version_name: Human-readable name.
            transition_deadline: Optional compliance deadline for the version.
            sunset_date: Optional end-of-validity date.
            previous_version_id: Optional back-reference to the prior version.
            changes: Documented changes relative to the prior version.
            version_id: Explicit id; defaults to make_version_id().

        Returns:
            The stored FrameworkVersion.

        Raises:
            ValidationError: On an unknown status, inverted dates or a duplicate id.
            NotFoundError: If previous_version_id does not exist.
        """
        try:
            initial_status = VersionStatus(status)
        except ValueError as exc:
            raise ValidationError(message=f"Unknown version status '{status}'", field="status") from exc

        if effective_date < published_date:
            raise ValidationError(
                message="effective_date must not be before published_date",
                field="effective_date",
            )

        resolved_id = version_id or make_version_id(framework_id, version_code)
        if self._version_repo.get(resolved_id) is not None:
            raise ValidationError(message=f"Framework version '{resolved_id}' already exists", field="version_id")

        if previous_version_id is not None and self._version_repo.get(previous_version_id) is None:
            raise NotFoundError(resource="FrameworkVersion", resource_id=previous_version_id)

        now = self._now()
        version = FrameworkVersion(
            id=resolved_id,
            framework_id=framework_id,
            version_code=version_code,
            status=VersionStatus.DRAFT if initial_status == VersionStatus.ACTIVE else initial_status,
            published_date=published_date,
            effective_date=effective_date,
            version_name=version_name or f"{framework_id} {version_code}",
            transition_deadline=transition_deadline,
            sunset_date=sunset_date,
            previous_version_id=previous_version_id,
            changes=list(changes or []),
            created_at=now,
            updated_at=now,
        )
        self._version_repo.add(version)
        logger.info(
            "Framework version registered",
            version_id=version.id,
            framework_id=framework_id,
            status=str(initial_status),
        )

        if initial_status == VersionStatus.ACTIVE:
            version, _ = self.activate(version.id)
        return version

    def get(self, version_id: str) -> FrameworkVersion:
        """Return a version by id.

        Raises:
            NotFoundError: If the version does not exist.
        """
        version = self._version_repo.get(version_id)
        if version is None:
            raise NotFoundError(resource="FrameworkVersion", resource_id=version_id)
        return version

    def versions_for_framework(self, framework_id: str) -> list[FrameworkVersion]:
        """Return every version of a framework, newest effective date first."""
        versions = self._version_repo.list_for_framework(framework_id)
        return sorted(versions, key=lambda v: v.effective_date, reverse=True)

    def framework_ids(self) -> list[str]:
        """Return the ids of every framework with at least one version."""
        return sorted({v.framework_id for v in self._version_repo.list_all()})

    def activate(self, version_id: str) -> tuple[FrameworkVersion, FrameworkVersion | None]:
        """Make a version the framework's single active version.

        Any other active version of the same framework is set to superseded
        in the same repository write.

        Args:
            version_id: Version to activate.

        Returns:
            Tuple of (activated version, superseded version or None).

        Raises:
            NotFoundError: If the version does not exist.
            InvalidStateError: If the version is retired.
        """
        version = self.get(version_id)
        if version.status == VersionStatus.RETIRED:
            raise InvalidStateError(f"Framework version '{version_id}' is retired and cannot be activated")

        now = self._now()
        updates: list[FrameworkVersion] = []
        superseded: FrameworkVersion | None = None
        for other in self._version_repo.list_for_framework(version.framework_id):
            if other.id != version.id and other.status == VersionStatus.ACTIVE:
                superseded = replace(other, status=VersionStatus.SUPERSEDED, updated_at=now)
                updates.append(superseded)

        if version.status == VersionStatus.ACTIVE and superseded is None:
            return version, None

        activated = replace(version, status=VersionStatus.ACTIVE, updated_at=now)
        updates.append(activated)
        self._version_repo.save_many(updates)

        logger.info(
            "Framework version activated",
            version_id=activated.id,
            framework_id=activated.framework_id,
            superseded=superseded.id if superseded else None,
        )
        return activated, superseded

    def set_status(self, version_id: str, status: str) -> FrameworkVersion:
        """Move a version to another lifecycle status.

        Setting status active delegates to `activate`.

        Raises:
            NotFoundError: If the version does not exist.
            ValidationError: On an unknown status.
            InvalidStateError: If a retired version is activated.
        """
        try:
            new_status = VersionStatus(status)
        except ValueError as exc:
            raise ValidationError(message=f"Unknown version status '{status}'", field="status") from exc

        if new_status == VersionStatus.ACTIVE:
            activated, _ = self.activate(version_id)
            return activated

        version = self.get(version_id)
        updated = replace(version, status=new_status, updated_at=self._now())
        self._version_repo.save_many([updated])
        logger.info("Framework version status changed", version_id=version_id, status=str(new_status))
        return updated

    def get_active(self, framework_id: str) -> FrameworkVersion | None:
        """Return the framework's active version, or None."""
        for version in self._version_repo.list_for_framework(framework_id):
            if version.status == VersionStatus.ACTIVE:
                return version
        return None

    def get_latest(self, framework_id: str) -> FrameworkVersion | None:
        """Return the version with the most recent effective date, regardless of status."""
        versions = self._version_repo.list_for_framework(framework_id)
        if not versions:
            return None
        return max(versions, key=lambda v: v.effective_date)
