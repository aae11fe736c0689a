# scavenger/config.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Literal


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    app_env: Literal["dev", "staging", "prod"] = "dev"
    log_level: str = "INFO"
    log_json: bool = False  # JSON log lines (production)

    # Master switch for the whole fleet
    auto_scavenging_enabled: bool = True

    # Allocation
    max_resources: int = 99999  # Base per-slot ceiling, scaled by the number of eligible slots
    skip_level_1: bool = False  # Drop level 1 when other levels are free as well
    archers_enabled: bool = False  # World has archers / mounted archers

    # Dispatch protocol
    availability_max_attempts: int = 3     # Observations before a slot is skipped
    availability_retry_delay: float = 1.5  # Seconds between availability observations
    verify_delay: float = 2.0              # Seconds between submit and re-observation
    site_pacing_delay: float = 2.0         # Seconds between sites in the dispatch phase
    prefilter_pacing_delay: float = 1.0    # Seconds between sites in the pre-filter phase

    # Next-poll estimation
    fresh_state_window_seconds: int = 300  # A site updated within this window counts as "fresh"
    idle_site_fallback_seconds: int = 300  # Fresh site, every slot available, nothing went out
    unlocking_fallback_seconds: int = 600  # Unlocking slots without a readable countdown
    all_locked_wait_seconds: int = 3600    # Every slot locked

    # Next-pass scheduling
    error_recovery_seconds: int = 600  # Re-check interval when a site failed data collection
    min_delay_seconds: int = 30        # Shorter delays are replaced by fallback_delay_seconds
    fallback_delay_seconds: int = 300
    jitter_min_seconds: int = 30
    jitter_max_seconds: int = 90

    # Fleet state tracker
    tracker_ttl_seconds: int = 86400  # Entries older than this are evicted

    # Monitoring
    enable_metrics: bool = True

    @property
    def is_production(self) -> bool:
        return self.app_env == "prod"

    def validate_required_for_production(self) -> list[str]:
        """Validate settings that must hold in production"""
        if not self.is_production:
            return []

        invalid = []
        if self.availability_max_attempts < 1:
            invalid.append("availability_max_attempts")
        if self.max_resources <= 0:
            invalid.append("max_resources")
        return invalid


def warn_on_risky_config(s: "Settings") -> list[str]:
    warnings: list[str] = []

    # --- Dispatch protocol ---
    if s.availability_max_attempts < 1:
        warnings.append("availability_max_attempts < 1: every slot will be skipped without being observed.")
    if s.verify_delay <= 0:
        warnings.append("verify_delay <= 0: re-observation may run before the submission is registered.")

    # --- Allocation ---
    if s.max_resources <= 0:
        warnings.append("max_resources <= 0: every slot plan will be scaled down to zero units.")

    # --- Scheduling ---
    if s.jitter_min_seconds > s.jitter_max_seconds:
        warnings.append(
            f"jitter_min_seconds ({s.jitter_min_seconds}) > jitter_max_seconds ({s.jitter_max_seconds})."
        )
    if s.fallback_delay_seconds < s.min_delay_seconds:
        warnings.append("fallback_delay_seconds is below min_delay_seconds (tight polling loop).")

    if not s.auto_scavenging_enabled:
        warnings.append("auto_scavenging_enabled=False: fleet passes will not dispatch anything.")

    return warnings


def validate_or_warn(s: "Settings") -> None:
    """
    In prod: enforce required settings (hard fail).
    In non-prod: warn only.
    """
    invalid = s.validate_required_for_production()

    if invalid:
        raise RuntimeError(f"Invalid settings for production: {', '.join(invalid)}")

    from scavenger.infra.logging_config import get_logger
    logger = get_logger(__name__)
    for msg in warn_on_risky_config(s):
        logger.warning(f"[config] {msg}")


settings = Settings()
