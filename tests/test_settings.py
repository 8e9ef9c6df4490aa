"""Tests for settings loading and logging configuration."""

from collections.abc import Iterator
from datetime import date

import pytest
import structlog
from pydantic import ValidationError as PydanticValidationError
from structlog.testing import capture_logs

from crosswalk_engine.core.engine import CrosswalkEngine
from crosswalk_engine.observability import configure_logging, get_logger
from crosswalk_engine.settings import Settings, get_settings
from tests.conftest import make_control


@pytest.fixture()
def reset_structlog() -> Iterator[None]:
    yield
    structlog.reset_defaults()


class TestSettings:
    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("CROSSWALK_GAP_COVERAGE_THRESHOLD", raising=False)
        settings = Settings()

        assert settings.keyword_match_threshold == 30.0
        assert settings.max_keyword_matches == 5
        assert settings.gap_coverage_threshold == 80
        assert settings.gap_high_severity_below == 50
        assert settings.risk_weight_jump == 2
        assert settings.auto_recalculate_gaps is True

    def test_environment_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CROSSWALK_GAP_COVERAGE_THRESHOLD", "90")
        monkeypatch.setenv("CROSSWALK_AUTO_RECALCULATE_GAPS", "false")

        settings = Settings()

        assert settings.gap_coverage_threshold == 90
        assert settings.auto_recalculate_gaps is False

    def test_out_of_range_threshold_rejected(self) -> None:
        with pytest.raises(PydanticValidationError):
            Settings(keyword_match_threshold=150)

    def test_get_settings_is_cached(self) -> None:
        assert get_settings() is get_settings()

    @pytest.mark.parametrize(("threshold", "expected"), [(80, []), (90, ["insufficient_coverage"])])
    def test_threshold_changes_gap_outcome(self, settings: Settings, threshold: int, expected: list[str]) -> None:
        """A mapping at 85% coverage is a gap only when the threshold is above it."""
        settings.gap_coverage_threshold = threshold
        engine = CrosswalkEngine.in_memory(controls=[make_control("ctrl-access")], settings=settings)
        engine.add_version(
            framework_id="SOC2",
            version_code="v1",
            published_date=date(2023, 1, 1),
            effective_date=date(2023, 6, 1),
        )
        requirement = engine.add_requirement(
            "soc2_v1",
            "CC6.1",
            title="Logical access",
            official_text="The entity reviews access.",
            implementation_level="mandatory",
            required_evidence_types=["policy"],
            verification_frequency="annual",
            risk_weight=5,
        )
        engine.create_mapping("ctrl-access", requirement.id, "direct", 85)

        assert [g.gap_type for g in engine.recalculate_gaps()] == expected


class TestLogging:
    def test_configure_logging_console_and_json(self, reset_structlog: None) -> None:
        configure_logging(Settings(log_level="debug"))
        configure_logging(Settings(log_json=True, log_level="warning"))
        assert structlog.is_configured()

    def test_unknown_level_falls_back_to_info(self, reset_structlog: None) -> None:
        configure_logging(Settings(log_level="verbose"))
        assert structlog.is_configured()

    def test_scan_logs_structured_event(self, soc2_versions: CrosswalkEngine) -> None:
        with capture_logs() as logs:
            soc2_versions.detect_drift("soc2_v1", "soc2_v2")

        events = [entry for entry in logs if entry["event"] == "Drift scan completed"]
        assert len(events) == 1
        assert events[0]["old_version_id"] == "soc2_v1"
        assert events[0]["drift_count"] == 0
        assert events[0]["log_level"] == "info"

    def test_get_logger_binds_context(self) -> None:
        with capture_logs() as logs:
            get_logger("crosswalk_engine.tests").bind(version_id="soc2_v1").info("Framework version activated")
        assert logs == [{"event": "Framework version activated", "version_id": "soc2_v1", "log_level": "info"}]
