"""Abstract interfaces (Protocol classes) for the crosswalk engine.

Defines the contracts between the service layer and the adapter layer using
Python's typing.Protocol. Services depend on these protocols, never on
concrete adapter implementations, so the engine can run against the
in-memory adapter, the SQLAlchemy adapter, or test doubles.

Repositories hand out snapshots: mutating a returned object has no effect
until it is passed back through `save`/`save_many`.

Protocols defined:
- IFrameworkVersionRepository
- IRequirementRepository
- IMappingRepository
- IDriftRepository
- IGapRepository
- IControlRepository

Callable contracts:
- AnswerLookup - control id -> current ControlAnswer (or None)
- IdGenerator - produces globally unique opaque string ids
- Clock - returns the current UTC time
"""

from collections.abc import Callable
from datetime import datetime
from typing import Protocol

from crosswalk_engine.core.models import (
    ComplianceDrift,
    Control,
    ControlAnswer,
    CrosswalkMapping,
    CustomGap,
    FrameworkVersion,
    MasterRequirement,
)

AnswerLookup = Callable[[str], ControlAnswer | None]
IdGenerator = Callable[[], str]
Clock = Callable[[], datetime]


class IFrameworkVersionRepository(Protocol):
    """Repository contract for FrameworkVersion persistence."""

    def get(self, version_id: str) -> FrameworkVersion | None:
        """Return the version with this id, or None."""
        ...

    def list_for_framework(self, framework_id: str) -> list[FrameworkVersion]:
        """Return every version of one framework."""
        ...

    def list_all(self) -> list[FrameworkVersion]:
        """Return every known version."""
        ...

    def add(self, version: FrameworkVersion) -> None:
        """Persist a new version."""
        ...

    def save_many(self, versions: list[FrameworkVersion]) -> None:
        """Persist updates to existing versions as one unit."""
        ...


class IRequirementRepository(Protocol):
    """Repository contract for MasterRequirement persistence."""

    def get(self, requirement_id: str) -> MasterRequirement | None:
        """Return the requirement with this id, or None."""
        ...

    def list_for_version(self, framework_version_id: str) -> list[MasterRequirement]:
        """Return every requirement owned by one framework version."""
        ...

    def list_all(self) -> list[MasterRequirement]:
        """Return every requirement across all versions."""
        ...

    def add(self, requirement: MasterRequirement) -> None:
        """Persist a new requirement."""
        ...


class IMappingRepository(Protocol):
    """Repository contract for CrosswalkMapping persistence."""

    def get(self, mapping_id: str) -> CrosswalkMapping | None:
        """Return the mapping with this id, or None."""
        ...

    def list_for_requirement(self, requirement_id: str) -> list[CrosswalkMapping]:
        """Return every mapping pointing at one requirement."""
        ...

    def list_for_control(self, control_id: str) -> list[CrosswalkMapping]:
        """Return every mapping originating from one control."""
        ...

    def list_for_version(self, framework_version_id: str) -> list[CrosswalkMapping]:
        """Return every mapping made against one framework version."""
        ...

    def list_all(self) -> list[CrosswalkMapping]:
        """Return every mapping."""
        ...

    def add(self, mapping: CrosswalkMapping) -> None:
        """Persist a new mapping."""
        ...

    def save_many(self, mappings: list[CrosswalkMapping]) -> None:
        """Persist updates to existing mappings as one unit."""
        ...

    def remove(self, mapping_id: str) -> None:
        """Delete a mapping. Unknown ids are ignored at this layer."""
        ...


class IDriftRepository(Protocol):
    """Repository contract for ComplianceDrift persistence.

    There is deliberately no delete: drift records form an audit trail.
    """

    def get(self, drift_id: str) -> ComplianceDrift | None:
        """Return the drift record with this id, or None."""
        ...

    def list_all(self) -> list[ComplianceDrift]:
        """Return every drift record."""
        ...

    def save_many(self, drifts: list[ComplianceDrift]) -> None:
        """Insert or update drift records as one unit."""
        ...


class IGapRepository(Protocol):
    """Repository contract for CustomGap persistence."""

    def get(self, gap_id: str) -> CustomGap | None:
        """Return the gap with this id, or None."""
        ...

    def list_all(self) -> list[CustomGap]:
        """Return every gap from the latest recalculation pass."""
        ...

    def save(self, gap: CustomGap) -> None:
        """Persist an update to an existing gap."""
        ...

    def replace_all(self, gaps: list[CustomGap]) -> None:
        """Replace the whole gap collection with the result of a recalculation pass."""
        ...


class IControlRepository(Protocol):
    """Read-only contract for the organization's control catalog."""

    def get(self, control_id: str) -> Control | None:
        """Return the control with this id, or None."""
        ...

    def list_all(self) -> list[Control]:
        """Return every control."""
        ...
