"""Sync configuration schemas with defaults.

All defaults are defined here in the schema. Uses Pydantic Settings so
deployments can override any default from the environment.
"""

from datetime import date
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from attendance_sync.core.exceptions import ConfigurationError, unpack_validation_error

# Fields that decide which chunks exist and what their indices are.
CHUNK_IDENTITY_FIELDS = ("date_range", "school_codes", "chunk_days", "calendar")


class DateRange(BaseModel):
    """Inclusive date range to synchronize."""

    model_config = ConfigDict(frozen=True)

    start_date: date
    end_date: date

    @model_validator(mode="after")
    def check_order(self) -> "DateRange":
        """Reject ranges that end before they start."""
        if self.start_date > self.end_date:
            raise ValueError(
                f"start_date {self.start_date} is after end_date {self.end_date}"
            )
        return self

    @property
    def days(self) -> int:
        return (self.end_date - self.start_date).days + 1


class RetryConfig(BaseModel):
    """Controls retry and backoff of transient batch failures."""

    model_config = ConfigDict(frozen=True)

    max_retries: int = Field(3, ge=0, description="Retries after the first attempt")
    initial_delay_seconds: float = Field(1.0, gt=0, description="Delay before the first retry")
    max_delay_seconds: float = Field(30.0, gt=0, description="Upper bound for any delay")
    backoff_multiplier: float = Field(2.0, ge=1, description="Growth factor between retries")
    jitter_ratio: float = Field(0.2, ge=0, le=1, description="Symmetric jitter around the delay")

    @model_validator(mode="after")
    def check_delays(self) -> "RetryConfig":
        """Max delay may not undercut the initial delay."""
        if self.max_delay_seconds < self.initial_delay_seconds:
            raise ValueError("max_delay_seconds must be >= initial_delay_seconds")
        return self


class MonitoringConfig(BaseModel):
    """Controls progress reporting and metrics."""

    model_config = ConfigDict(frozen=True)

    enable_progress_tracking: bool = Field(True, description="Emit progress.updated events")
    progress_interval_seconds: float = Field(5.0, gt=0, description="Minimum gap between updates")
    enable_metrics: bool = Field(True, description="Record Prometheus metrics when available")
    expected_records_per_day: int = Field(
        700, gt=0, description="Seed for the total estimate before real counts arrive"
    )
    throughput_window_seconds: float = Field(
        30.0, gt=0, description="Rolling window used for throughput"
    )


class CalendarConfig(BaseModel):
    """Non-school days that can be left out of chunk windows."""

    model_config = ConfigDict(frozen=True)

    exclude_non_school_days: bool = False
    weekend_days: Tuple[int, ...] = Field((6, 7), description="ISO weekdays (Mon=1)")
    holidays: Tuple[date, ...] = ()

    @field_validator("weekend_days")
    @classmethod
    def check_weekdays(cls, value: Tuple[int, ...]) -> Tuple[int, ...]:
        if any(day < 1 or day > 7 for day in value):
            raise ValueError("weekend_days must be ISO weekday numbers 1..7")
        return tuple(sorted(set(value)))

    @field_validator("holidays")
    @classmethod
    def normalize_holidays(cls, value: Tuple[date, ...]) -> Tuple[date, ...]:
        return tuple(sorted(set(value)))


class TimeoutConfig(BaseModel):
    """Per-call timeouts for the source and the sink."""

    model_config = ConfigDict(frozen=True)

    source_seconds: float = Field(30.0, gt=0)
    sink_seconds: float = Field(30.0, gt=0)


class CircuitBreakerConfig(BaseModel):
    """Per-school circuit breaker settings."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    failure_threshold: int = Field(5, ge=1, description="Chunk failures before a school trips")
    reset_timeout_seconds: float = Field(60.0, gt=0, description="Cooldown before half-open")


class SyncConfiguration(BaseSettings):
    """Configuration of one sync run, immutable once built.

    Env vars use double underscore as delimiter:
        SYNC__RETRY__MAX_RETRIES=5
        SYNC__MONITORING__ENABLE_METRICS=false
    """

    model_config = SettingsConfigDict(
        env_prefix="SYNC__",
        env_nested_delimiter="__",
        extra="ignore",
        frozen=True,
    )

    date_range: DateRange
    school_codes: Tuple[str, ...] = Field(
        (), description="Schools to sync; empty means every school"
    )
    batch_size: int = Field(500, gt=0, description="Records per source page")
    chunk_days: int = Field(30, gt=0, description="Maximum days per chunk window")
    parallelism: int = Field(3, ge=1, description="Concurrent chunk workers")
    checkpoint_every_chunks: int = Field(
        0, ge=0, description="Save a checkpoint every N completed chunks (0 = terminal only)"
    )

    retry: RetryConfig = Field(default_factory=RetryConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    calendar: CalendarConfig = Field(default_factory=CalendarConfig)
    timeouts: TimeoutConfig = Field(default_factory=TimeoutConfig)
    circuit_breaker: CircuitBreakerConfig = Field(default_factory=CircuitBreakerConfig)

    @field_validator("school_codes", mode="before")
    @classmethod
    def normalize_school_codes(cls, value: Any) -> Tuple[str, ...]:
        """Sort, strip and de-duplicate so chunk identity ignores input order."""
        if value is None:
            return ()
        if isinstance(value, str):
            value = [part for part in value.split(",")]
        codes = {str(code).strip() for code in value}
        if "" in codes:
            raise ValueError("school codes must be non-empty")
        return tuple(sorted(codes))

    # ========================================================================
    # CONSTRUCTION
    # ========================================================================

    @classmethod
    def parse(cls, value: Union["SyncConfiguration", Mapping[str, Any]]) -> "SyncConfiguration":
        """Build a configuration, raising ConfigurationError on invalid input.

        Args:
            value: An existing configuration (returned as is) or a mapping of fields.

        Raises:
            ConfigurationError: If any field is missing or out of range.
        """
        if isinstance(value, SyncConfiguration):
            return value
        if not isinstance(value, Mapping):
            raise ConfigurationError(
                f"Expected a SyncConfiguration or mapping, got {type(value).__name__}"
            )
        try:
            return cls(**dict(value))
        except ValidationError as exc:
            details = unpack_validation_error(exc)["errors"]
            rendered = "; ".join(f"{k}: {v}" for item in details for k, v in item.items())
            raise ConfigurationError(f"Invalid sync configuration: {rendered}") from exc

    def merge_with(self, overrides: Optional[dict]) -> "SyncConfiguration":
        """Merge this config with overrides dict, returning a new config.

        Args:
            overrides: Dict with partial config to merge. None values are ignored.

        Returns:
            New SyncConfiguration with overrides applied.
        """
        if not overrides:
            return self

        current = self.model_dump()
        _deep_merge(current, overrides)
        return SyncConfiguration.parse(current)

    # ========================================================================
    # CHUNK IDENTITY
    # ========================================================================

    def identity(self) -> Dict[str, Any]:
        """The fields that determine the chunk list, in JSON-compatible form."""
        return self.model_dump(mode="json", include=set(CHUNK_IDENTITY_FIELDS))

    def identity_mismatches(self, other: "SyncConfiguration") -> List[str]:
        """Names of chunk-identity fields that differ from ``other``."""
        mine, theirs = self.identity(), other.identity()
        return [name for name in CHUNK_IDENTITY_FIELDS if mine[name] != theirs[name]]

    def with_tuning_from(self, other: "SyncConfiguration") -> "SyncConfiguration":
        """Keep this config's chunk identity, take every other field from ``other``."""
        tuning = other.model_dump(exclude=set(CHUNK_IDENTITY_FIELDS))
        return self.model_copy(update={key: getattr(other, key) for key in tuning})

    # ========================================================================
    # PRESET FACTORIES
    # ========================================================================

    @classmethod
    def default(cls, start_date: date, end_date: date, **overrides: Any) -> "SyncConfiguration":
        """Default tuning over an explicit date range."""
        return cls.parse(
            {"date_range": {"start_date": start_date, "end_date": end_date}, **overrides}
        )

    @classmethod
    def full_school_year(
        cls,
        start_year: int,
        holidays: Optional[List[date]] = None,
        **overrides: Any,
    ) -> "SyncConfiguration":
        """Mid-August through mid-June, skipping weekends and the given holidays."""
        return cls.parse(
            {
                "date_range": {
                    "start_date": date(start_year, 8, 15),
                    "end_date": date(start_year + 1, 6, 12),
                },
                "calendar": {
                    "exclude_non_school_days": True,
                    "holidays": list(holidays or []),
                },
                **overrides,
            }
        )


def _deep_merge(base: dict, overrides: dict) -> None:
    """Deep merge overrides into base dict, ignoring None values."""
    for key, value in overrides.items():
        if value is None:
            continue
        if isinstance(value, dict) and key in base and isinstance(base[key], dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
