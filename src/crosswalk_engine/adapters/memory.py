"""In-memory repositories for the crosswalk engine.

Implements every repository protocol from core/interfaces.py over plain
dicts. Objects are deep-copied on the way in and out, so callers only ever
hold snapshots and the stored state changes exclusively through the
repository methods. Bulk writes (`save_many`, `replace_all`) build the new
collection first and swap it in with a single assignment, which is what
makes recalculation passes all-or-nothing for this adapter.

Suitable for tests, CLIs and single-process deployments. Production
deployments swap in adapters/repositories.py (SQLAlchemy) which implements
the same interfaces.
"""

from __future__ import annotations

import copy
from typing import TypeVar

from crosswalk_engine.core.models import (
    ComplianceDrift,
    Control,
    CrosswalkMapping,
    CustomGap,
    FrameworkVersion,
    MasterRequirement,
)

_T = TypeVar("_T")


def _snapshot(obj: _T) -> _T:
    return copy.deepcopy(obj)


class InMemoryFrameworkVersionRepository:
    """FrameworkVersion store keyed by version id."""

    def __init__(self) -> None:
        self._versions: dict[str, FrameworkVersion] = {}

    def get(self, version_id: str) -> FrameworkVersion | None:
        version = self._versions.get(version_id)
        return _snapshot(version) if version is not None else None

    def list_for_framework(self, framework_id: str) -> list[FrameworkVersion]:
        return [_snapshot(v) for v in self._versions.values() if v.framework_id == framework_id]

    def list_all(self) -> list[FrameworkVersion]:
        return [_snapshot(v) for v in self._versions.values()]

    def add(self, version: FrameworkVersion) -> None:
        self._versions[version.id] = _snapshot(version)

    def save_many(self, versions: list[FrameworkVersion]) -> None:
        updated = dict(self._versions)
        for version in versions:
            updated[version.id] = _snapshot(version)
        self._versions = updated


class InMemoryRequirementRepository:
    """MasterRequirement store keyed by requirement id."""

    def __init__(self) -> None:
        self._requirements: dict[str, MasterRequirement] = {}

    def get(self, requirement_id: str) -> MasterRequirement | None:
        requirement = self._requirements.get(requirement_id)
        return _snapshot(requirement) if requirement is not None else None

    def list_for_version(self, framework_version_id: str) -> list[MasterRequirement]:
        return [
            _snapshot(r)
            for r in self._requirements.values()
            if r.framework_version_id == framework_version_id
        ]

    def list_all(self) -> list[MasterRequirement]:
        return [_snapshot(r) for r in self._requirements.values()]

    def add(self, requirement: MasterRequirement) -> None:
        self._requirements[requirement.id] = _snapshot(requirement)


class InMemoryMappingRepository:
    """CrosswalkMapping store keyed by mapping id."""

    def __init__(self) -> None:
        self._mappings: dict[str, CrosswalkMapping] = {}

    def get(self, mapping_id: str) -> CrosswalkMapping | None:
        mapping = self._mappings.get(mapping_id)
        return _snapshot(mapping) if mapping is not None else None

    def list_for_requirement(self, requirement_id: str) -> list[CrosswalkMapping]:
        return [_snapshot(m) for m in self._mappings.values() if m.requirement_id == requirement_id]

    def list_for_control(self, control_id: str) -> list[CrosswalkMapping]:
        return [_snapshot(m) for m in self._mappings.values() if m.control_id == control_id]

    def list_for_version(self, framework_version_id: str) -> list[CrosswalkMapping]:
        return [
            _snapshot(m)
            for m in self._mappings.values()
            if m.framework_version_id == framework_version_id
        ]

    def list_all(self) -> list[CrosswalkMapping]:
        return [_snapshot(m) for m in self._mappings.values()]

    def add(self, mapping: CrosswalkMapping) -> None:
        self._mappings[mapping.id] = _snapshot(mapping)

    def save_many(self, mappings: list[CrosswalkMapping]) -> None:
        updated = dict(self._mappings)
        for mapping in mappings:
            updated[mapping.id] = _snapshot(mapping)
        self._mappings = updated

    def remove(self, mapping_id: str) -> None:
        self._mappings.pop(mapping_id, None)


class InMemoryDriftRepository:
    """Append-and-update ComplianceDrift store. No delete operation exists."""

    def __init__(self) -> None:
        self._drifts: dict[str, ComplianceDrift] = {}

    def get(self, drift_id: str) -> ComplianceDrift | None:
        drift = self._drifts.get(drift_id)
        return _snapshot(drift) if drift is not None else None

    def list_all(self) -> list[ComplianceDrift]:
        return [_snapshot(d) for d in self._drifts.values()]

    def save_many(self, drifts: list[ComplianceDrift]) -> None:
        updated = dict(self._drifts)
        for drift in drifts:
            updated[drift.id] = _snapshot(drift)
        self._drifts = updated


class InMemoryGapRepository:
    """CustomGap store holding the result of the latest recalculation pass."""

    def __init__(self) -> None:
        self._gaps: dict[str, CustomGap] = {}

    def get(self, gap_id: str) -> CustomGap | None:
        gap = self._gaps.get(gap_id)
        return _snapshot(gap) if gap is not None else None

    def list_all(self) -> list[CustomGap]:
        return [_snapshot(g) for g in self._gaps.values()]

    def save(self, gap: CustomGap) -> None:
        self._gaps[gap.id] = _snapshot(gap)

    def replace_all(self, gaps: list[CustomGap]) -> None:
        self._gaps = {gap.id: _snapshot(gap) for gap in gaps}


class InMemoryControlRepository:
    """Control catalog. `add` exists for seeding; the engine only reads."""

    def __init__(self, controls: list[Control] | None = None) -> None:
        self._controls: dict[str, Control] = {}
        for control in controls or []:
            self.add(control)

    def get(self, control_id: str) -> Control | None:
        control = self._controls.get(control_id)
        return _snapshot(control) if control is not None else None

    def list_all(self) -> list[Control]:
        return [_snapshot(c) for c in self._controls.values()]

    def add(self, control: Control) -> None:
        self._controls[control.id] = _snapshot(control)
