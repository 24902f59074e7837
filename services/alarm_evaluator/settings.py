"""Environment-sourced settings for the alarm evaluator."""
from __future__ import annotations

from dataclasses import dataclass, field

from shared.config import float_env, int_env, optional_env, require_env

ENTITY_SOURCES = ("catalog", "cache_scan")


@dataclass
class RuleThresholds:
    """Durations and distances used by the detection rules."""
    bed_fall_dwell_seconds: float = 60
    bed_fall_motion_cm: float = 50
    bed_fall_state_ttl_seconds: int = 300
    reliability_conflict_seconds: float = 60
    bathroom_standing_seconds: float = 300
    bathroom_position_tolerance_cm: float = 30
    disappear_drop_cm: float = 60
    disappear_confirm_seconds: float = 30
    disappear_track_ttl_seconds: int = 120


@dataclass
class Settings:
    tenant_ids: list[str]

    db_host: str = "localhost"
    db_port: int = 5432
    db_user: str = "postgres"
    db_password: str = ""
    db_name: str = "owlrd"
    db_sslmode: str = "disable"
    database_url: str | None = None
    pg_pool_min: int = 1
    pg_pool_max: int = 5

    redis_addr: str = "localhost:6379"
    redis_password: str = ""
    redis_db: int = 0

    realtime_prefix: str = "vital-focus:card:"
    realtime_suffix: str = ":realtime"
    alarm_prefix: str = "vital-focus:card:"
    alarm_suffix: str = ":alarms"
    state_prefix: str = "alarm:state:"
    alarm_cache_ttl_seconds: int = 30

    poll_interval_seconds: float = 5
    batch_size: int = 10
    dedup_minutes: int = 10
    entity_source: str = "catalog"

    log_level: str = "INFO"
    log_format: str = "json"
    health_port: int = 8080

    thresholds: RuleThresholds = field(default_factory=RuleThresholds)

    @property
    def redis_host_port(self) -> tuple[str, int]:
        host, _, port = self.redis_addr.rpartition(":")
        if not host:
            return self.redis_addr, 6379
        return host, int(port)


def _load_thresholds() -> RuleThresholds:
    defaults = RuleThresholds()
    return RuleThresholds(
        bed_fall_dwell_seconds=float_env("BED_FALL_DWELL_SECONDS", defaults.bed_fall_dwell_seconds, minimum=0),
        bed_fall_motion_cm=float_env("BED_FALL_MOTION_CM", defaults.bed_fall_motion_cm, minimum=0),
        bed_fall_state_ttl_seconds=int_env("BED_FALL_STATE_TTL_SECONDS", defaults.bed_fall_state_ttl_seconds, minimum=1),
        reliability_conflict_seconds=float_env(
            "RELIABILITY_CONFLICT_SECONDS", defaults.reliability_conflict_seconds, minimum=0
        ),
        bathroom_standing_seconds=float_env("BATHROOM_STANDING_SECONDS", defaults.bathroom_standing_seconds, minimum=0),
        bathroom_position_tolerance_cm=float_env(
            "BATHROOM_POSITION_TOLERANCE_CM", defaults.bathroom_position_tolerance_cm, minimum=0
        ),
        disappear_drop_cm=float_env("DISAPPEAR_DROP_CM", defaults.disappear_drop_cm, minimum=0),
        disappear_confirm_seconds=float_env("DISAPPEAR_CONFIRM_SECONDS", defaults.disappear_confirm_seconds, minimum=0),
        disappear_track_ttl_seconds=int_env(
            "DISAPPEAR_TRACK_TTL_SECONDS", defaults.disappear_track_ttl_seconds, minimum=1
        ),
    )


def load_settings() -> Settings:
    """
    Build Settings from the environment.
    Raises RuntimeError when a required value is missing or a value is invalid.
    """
    tenant_ids = [t.strip() for t in require_env("TENANT_ID").split(",") if t.strip()]
    if not tenant_ids:
        raise RuntimeError("Environment variable 'TENANT_ID' must name at least one tenant")
    database_url = optional_env("DATABASE_URL") or None
    db_password = optional_env("DB_PASSWORD") if database_url else require_env("DB_PASSWORD")

    entity_source = optional_env("ENTITY_SOURCE", "catalog").lower()
    if entity_source not in ENTITY_SOURCES:
        raise RuntimeError(f"ENTITY_SOURCE must be one of {ENTITY_SOURCES}, got {entity_source!r}")

    return Settings(
        tenant_ids=tenant_ids,
        db_host=optional_env("DB_HOST", "localhost"),
        db_port=int_env("DB_PORT", 5432, minimum=1),
        db_user=optional_env("DB_USER", "postgres"),
        db_password=db_password,
        db_name=optional_env("DB_NAME", "owlrd"),
        db_sslmode=optional_env("DB_SSLMODE", "disable"),
        database_url=database_url,
        pg_pool_min=int_env("PG_POOL_MIN", 1, minimum=1),
        pg_pool_max=int_env("PG_POOL_MAX", 5, minimum=1),
        redis_addr=optional_env("REDIS_ADDR", "localhost:6379"),
        redis_password=optional_env("REDIS_PASSWORD"),
        redis_db=int_env("REDIS_DB", 0, minimum=0),
        realtime_prefix=optional_env("CACHE_REALTIME_PREFIX", "vital-focus:card:"),
        realtime_suffix=optional_env("CACHE_REALTIME_SUFFIX", ":realtime"),
        alarm_prefix=optional_env("CACHE_ALARM_PREFIX", "vital-focus:card:"),
        alarm_suffix=optional_env("CACHE_ALARM_SUFFIX", ":alarms"),
        state_prefix=optional_env("CACHE_STATE_PREFIX", "alarm:state:"),
        alarm_cache_ttl_seconds=int_env("ALARM_CACHE_TTL_SECONDS", 30, minimum=1),
        poll_interval_seconds=float_env("POLL_INTERVAL_SECONDS", 5, minimum=0.1),
        batch_size=int_env("EVAL_BATCH_SIZE", 10, minimum=1),
        dedup_minutes=int_env("ALARM_DEDUP_MINUTES", 10, minimum=0),
        entity_source=entity_source,
        log_level=optional_env("LOG_LEVEL", "INFO"),
        log_format=optional_env("LOG_FORMAT", "json"),
        health_port=int_env("HEALTH_PORT", 8080, minimum=0),
        thresholds=_load_thresholds(),
    )
