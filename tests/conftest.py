"""Test fixtures for crosswalk-drift-engine.

Provides:
- now / clock: a fixed UTC time and a callable returning it
- id_generator: deterministic sequential ids
- settings: engine Settings with default thresholds
- answers: a mutable answer dict read live by the engine
- engine: a CrosswalkEngine over the in-memory adapters
- soc2_versions: an engine preloaded with SOC2 v1 (active) and v2 (draft)

Module-level builders (make_requirement, make_mapping, make_control,
make_answer) create domain objects directly for pure-function tests.
"""

from datetime import UTC, date, datetime

import pytest

from crosswalk_engine.core.engine import CrosswalkEngine
from crosswalk_engine.core.models import (
    Control,
    ControlAnswer,
    CrosswalkMapping,
    FrameworkVersion,
    ImplementationLevel,
    MappingStrength,
    MasterRequirement,
    RiskLevel,
    VerificationFrequency,
    VersionStatus,
)
from crosswalk_engine.settings import Settings

FIXED_NOW = datetime(2025, 1, 1, 12, 0, tzinfo=UTC)


class SequentialIds:
    """Callable id generator producing prefix-1, prefix-2, ..."""

    def __init__(self, prefix: str = "id") -> None:
        self._prefix = prefix
        self._counter = 0

    def __call__(self) -> str:
        self._counter += 1
        return f"{self._prefix}-{self._counter}"


class MutableClock:
    """Clock fixture whose time tests can move forward."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def make_requirement(
    code: str = "CC6.1",
    requirement_id: str | None = None,
    framework_id: str = "SOC2",
    framework_version_id: str = "soc2_v1",
    title: str = "Logical access security",
    official_text: str = "The entity implements logical access security software.",
    implementation_level: ImplementationLevel = ImplementationLevel.MANDATORY,
    required_evidence_types: set[str] | None = None,
    verification_frequency: VerificationFrequency = VerificationFrequency.ANNUAL,
    risk_weight: int = 5,
    effective_date: date = date(2025, 6, 1),
    emerging_tech_category: str | None = None,
    keywords: set[str] | None = None,
    parent_code: str | None = None,
) -> MasterRequirement:
    """Create a MasterRequirement for pure-function tests.

    Args:
        code: Requirement code.
        requirement_id: Explicit id; defaults to "<version>:<code>".
        framework_id: Framework id.
        framework_version_id: Owning version id.
        title: Requirement title.
        official_text: Requirement text.
        implementation_level: Implementation level.
        required_evidence_types: Evidence types; defaults to {"policy"}.
        verification_frequency: Verification frequency.
        risk_weight: Risk weight 1-10.
        effective_date: Effective date.
        emerging_tech_category: Optional emerging technology category.
        keywords: Matching keywords.
        parent_code: Optional parent code.

    Returns:
        MasterRequirement instance.
    """
    return MasterRequirement(
        id=requirement_id or f"{framework_version_id}:{code}",
        framework_id=framework_id,
        framework_version_id=framework_version_id,
        requirement_code=code,
        title=title,
        official_text=official_text,
        implementation_level=implementation_level,
        required_evidence_types=required_evidence_types if required_evidence_types is not None else {"policy"},
        verification_frequency=verification_frequency,
        risk_weight=risk_weight,
        effective_date=effective_date,
        emerging_tech_category=emerging_tech_category,
        keywords=keywords or set(),
        parent_code=parent_code,
    )


def make_mapping(
    control_id: str,
    requirement_id: str,
    coverage: float = 100.0,
    mapping_id: str | None = None,
    framework_version_id: str = "soc2_v1",
) -> CrosswalkMapping:
    """Create a current CrosswalkMapping for pure-function tests."""
    return CrosswalkMapping(
        id=mapping_id or f"m-{control_id}-{requirement_id}",
        control_id=control_id,
        requirement_id=requirement_id,
        framework_version_id=framework_version_id,
        mapping_strength=MappingStrength.DIRECT,
        coverage_percentage=coverage,
        valid_from_version=framework_version_id,
    )


def make_control(
    control_id: str,
    risk_level: RiskLevel = RiskLevel.MEDIUM,
    domain: str = "access",
    title: str | None = None,
    keywords: set[str] | None = None,
) -> Control:
    return Control(
        id=control_id,
        title=title or f"Control {control_id}",
        risk_level=risk_level,
        domain=domain,
        keywords=keywords or set(),
    )


def make_answer(control_id: str, answer: str | None = None, status: str | None = None) -> ControlAnswer:
    return ControlAnswer(control_id=control_id, answer=answer, status=status)


def make_version(
    version_id: str = "soc2_v1",
    framework_id: str = "SOC2",
    version_code: str = "v1",
    status: str = "active",
    effective_date: date = date(2024, 1, 1),
) -> FrameworkVersion:
    return FrameworkVersion(
        id=version_id,
        framework_id=framework_id,
        version_code=version_code,
        status=VersionStatus(status),
        published_date=effective_date,
        effective_date=effective_date,
    )


def lookup_from(answers: dict[str, ControlAnswer]):
    """Return an answer lookup over a dict of answers."""
    return answers.get


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def now() -> datetime:
    """Return the fixed reference time used across tests.

    Returns:
        2025-01-01T12:00:00+00:00.
    """
    return FIXED_NOW


@pytest.fixture()
def clock(now: datetime) -> MutableClock:
    return MutableClock(now)


@pytest.fixture()
def id_generator() -> SequentialIds:
    return SequentialIds()


@pytest.fixture()
def settings() -> Settings:
    """Return Settings with default thresholds, independent of the environment.

    Returns:
        Settings instance.
    """
    return Settings(
        keyword_match_threshold=30.0,
        max_keyword_matches=5,
        auto_mapping_threshold=30.0,
        max_auto_mapping_suggestions=10,
        gap_coverage_threshold=80,
        gap_high_severity_below=50,
        auto_recalculate_gaps=True,
        risk_weight_jump=2,
    )


@pytest.fixture()
def answers() -> dict[str, ControlAnswer]:
    return {}


@pytest.fixture()
def engine(
    answers: dict[str, ControlAnswer],
    id_generator: SequentialIds,
    clock: MutableClock,
    settings: Settings,
) -> CrosswalkEngine:
    """Create an in-memory CrosswalkEngine with a small control catalog.

    Controls:
        ctrl-access  (critical, domain access, keywords access/authentication/mfa)
        ctrl-logging (high, domain monitoring, keywords audit/logging/monitoring)
        ctrl-policy  (low, domain governance, keywords policy/training)

    Returns:
        CrosswalkEngine instance.
    """
    controls = [
        make_control(
            "ctrl-access",
            RiskLevel.CRITICAL,
            domain="access",
            title="Access control",
            keywords={"access", "authentication", "mfa"},
        ),
        make_control(
            "ctrl-logging",
            RiskLevel.HIGH,
            domain="monitoring",
            title="Audit logging",
            keywords={"audit", "logging", "monitoring"},
        ),
        make_control(
            "ctrl-policy",
            RiskLevel.LOW,
            domain="governance",
            title="Security policy",
            keywords={"policy", "training"},
        ),
    ]
    return CrosswalkEngine.in_memory(
        controls=controls,
        answers=answers,
        id_generator=id_generator,
        clock=clock,
        settings=settings,
    )


@pytest.fixture()
def soc2_versions(engine: CrosswalkEngine) -> CrosswalkEngine:
    """Engine with SOC2 v1 active and SOC2 v2 registered as draft.

    Returns:
        The engine fixture, preloaded.
    """
    engine.add_version(
        framework_id="SOC2",
        version_code="v1",
        published_date=date(2023, 1, 1),
        effective_date=date(2023, 6, 1),
        status="active",
        version_id="soc2_v1",
    )
    engine.add_version(
        framework_id="SOC2",
        version_code="v2",
        published_date=date(2024, 10, 1),
        effective_date=date(2025, 3, 1),
        previous_version_id="soc2_v1",
        version_id="soc2_v2",
    )
    return engine
