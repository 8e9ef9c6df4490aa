"""Settings for the crosswalk engine.

All settings use the CROSSWALK_ environment prefix and cover:
- Keyword-matching heuristics (new-requirement matching, auto-mapping)
- Gap detection thresholds
- Drift analysis thresholds
- Logging
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings for the crosswalk engine.

    The keyword heuristics are best-effort classifiers; their thresholds live
    here so deployments can tune them without code changes.

    Environment variable prefix: CROSSWALK_
    """

    service_name: str = "crosswalk-drift-engine"

    # -------------------------------------------------------------------------
    # Keyword matching heuristics
    # -------------------------------------------------------------------------

    keyword_match_threshold: float = Field(
        default=30.0,
        ge=0.0,
        le=100.0,
        description="Minimum keyword overlap (percent of the requirement's keyword set) "
        "for a control to be flagged against a new requirement.",
    )
    max_keyword_matches: int = Field(
        default=5,
        ge=1,
        description="Maximum number of controls flagged per new requirement.",
    )
    auto_mapping_threshold: float = Field(
        default=30.0,
        ge=0.0,
        le=100.0,
        description="Minimum confidence (percent) for an auto-mapping suggestion.",
    )
    max_auto_mapping_suggestions: int = Field(
        default=10,
        ge=1,
        description="Maximum number of auto-mapping suggestions returned per control.",
    )

    # -------------------------------------------------------------------------
    # Gap detection
    # -------------------------------------------------------------------------

    gap_coverage_threshold: int = Field(
        default=80,
        ge=0,
        le=100,
        description="Aggregate coverage below this value produces an insufficient_coverage gap.",
    )
    gap_high_severity_below: int = Field(
        default=50,
        ge=0,
        le=100,
        description="Insufficient-coverage gaps below this value are high severity, otherwise medium.",
    )
    auto_recalculate_gaps: bool = Field(
        default=True,
        description="Recompute gaps after every mapping create/update/remove.",
    )

    # -------------------------------------------------------------------------
    # Drift analysis
    # -------------------------------------------------------------------------

    risk_weight_jump: int = Field(
        default=2,
        ge=0,
        description="A riskWeight increase larger than this raises drift severity to at least high.",
    )

    # -------------------------------------------------------------------------
    # Logging
    # -------------------------------------------------------------------------

    log_level: str = Field(default="INFO", description="Minimum log level.")
    log_json: bool = Field(default=False, description="Render log lines as JSON.")

    model_config = SettingsConfigDict(env_prefix="CROSSWALK_")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings instance.

    Returns:
        Cached Settings loaded from the environment.
    """
    return Settings()
