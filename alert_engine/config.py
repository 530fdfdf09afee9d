"""
Configuration management with environment variable support and validation.

Design principles:
- One canonical threshold table, every value overridable per deployment
- Validation at startup (fail fast)
- Type safety with Pydantic
- Logging configured once from the same source of truth
"""

import logging
import os
from functools import lru_cache
from typing import Literal, cast

import structlog
from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

# Load environment variables from .env file
load_dotenv()

MINUTE_MS = 60_000


class BloodPressureThresholds(BaseModel):
    """Blood pressure rule thresholds (mmHg)."""

    window_minutes: float = Field(default=10.0, gt=0.0, description="Lookback window")
    systolic_high: float = Field(default=180.0, description="Critical when systolic is above")
    diastolic_high: float = Field(default=120.0, description="Critical when diastolic is above")
    systolic_low: float = Field(default=90.0, description="Low when systolic is below")
    diastolic_low: float = Field(default=60.0, description="Low when diastolic is below")
    trend_samples: int = Field(default=3, ge=2, description="Samples forming a trend")
    trend_step: float = Field(
        default=10.0, gt=0.0, description="Minimum change between consecutive samples"
    )

    @model_validator(mode="after")
    def low_below_high(self) -> "BloodPressureThresholds":
        if self.systolic_low >= self.systolic_high or self.diastolic_low >= self.diastolic_high:
            raise ValueError("low blood pressure thresholds must be below high thresholds")
        return self

    @property
    def window_ms(self) -> int:
        return int(self.window_minutes * MINUTE_MS)


class HypoxemiaThresholds(BaseModel):
    """Combined low systolic pressure and low saturation thresholds."""

    window_minutes: float = Field(default=10.0, gt=0.0)
    systolic_below: float = Field(default=90.0)
    saturation_below: float = Field(default=92.0, ge=0.0, le=100.0)
    max_pairing_gap_minutes: float = Field(
        default=10.0, ge=0.0, description="Max distance between the two readings"
    )

    @property
    def window_ms(self) -> int:
        return int(self.window_minutes * MINUTE_MS)

    @property
    def max_pairing_gap_ms(self) -> int:
        return int(self.max_pairing_gap_minutes * MINUTE_MS)


class OxygenSaturationThresholds(BaseModel):
    """Oxygen saturation rule thresholds (percent)."""

    window_minutes: float = Field(default=10.0, gt=0.0)
    critical_below: float = Field(default=92.0, ge=0.0, le=100.0)
    rapid_drop_points: float = Field(
        default=5.0, gt=0.0, description="max - min over the window that counts as rapid"
    )
    drop_rate_per_minute: float = Field(
        default=0.5, gt=0.0, description="Oldest-to-newest drop rate in points per minute"
    )
    drop_checks: Literal["absolute", "rate", "both"] = Field(
        default="both", description="Which drop checks run after the critical check"
    )

    @property
    def window_ms(self) -> int:
        return int(self.window_minutes * MINUTE_MS)


class HeartRateThresholds(BaseModel):
    """Heart rate rule thresholds (bpm)."""

    window_minutes: float = Field(default=5.0, gt=0.0)
    bradycardia_below: float = Field(default=50.0, gt=0.0)
    tachycardia_above: float = Field(default=100.0, gt=0.0)
    irregular_min_samples: int = Field(default=5, ge=2)
    irregular_variation_ratio: float = Field(
        default=0.10, gt=0.0, description="Mean absolute step relative to mean rate"
    )

    @model_validator(mode="after")
    def bradycardia_below_tachycardia(self) -> "HeartRateThresholds":
        if self.bradycardia_below >= self.tachycardia_above:
            raise ValueError("bradycardia threshold must be below tachycardia threshold")
        return self

    @property
    def window_ms(self) -> int:
        return int(self.window_minutes * MINUTE_MS)


class ECGThresholds(BaseModel):
    """ECG anomaly rule settings (count based window)."""

    window_size: int = Field(default=30, ge=2, description="Most recent samples analysed")
    sigma_multiplier: float = Field(default=3.0, gt=0.0)


class ManualAlertThresholds(BaseModel):
    """Manual alert (nurse call button) settings."""

    window_minutes: float = Field(default=10.0, gt=0.0)
    triggered_value: float = Field(default=1.0)

    @property
    def window_ms(self) -> int:
        return int(self.window_minutes * MINUTE_MS)


class RuleConfig(BaseModel):
    """Thresholds for every configured rule strategy."""

    blood_pressure: BloodPressureThresholds = Field(default_factory=BloodPressureThresholds)
    hypoxemia: HypoxemiaThresholds = Field(default_factory=HypoxemiaThresholds)
    oxygen_saturation: OxygenSaturationThresholds = Field(
        default_factory=OxygenSaturationThresholds
    )
    heart_rate: HeartRateThresholds = Field(default_factory=HeartRateThresholds)
    ecg: ECGThresholds = Field(default_factory=ECGThresholds)
    manual: ManualAlertThresholds = Field(default_factory=ManualAlertThresholds)


class MonitoringConfig(BaseModel):
    """Periodic evaluation settings."""

    evaluation_interval_seconds: float = Field(
        default=5.0, gt=0.0, description="Interval between evaluation cycles"
    )
    max_concurrent_evaluations: int = Field(
        default=8, gt=0, description="Worker threads evaluating patients in parallel"
    )
    evaluation_timeout_seconds: float = Field(
        default=2.0, gt=0.0, description="Timeout for a single patient evaluation"
    )
    dispatch_history_size: int = Field(
        default=1000, gt=0, description="Delivery outcomes kept for inspection"
    )


class RepetitionConfig(BaseModel):
    """Repeat reminders for alerts that are still active."""

    enabled: bool = Field(default=False)
    repeat_interval_ms: int = Field(default=60_000, gt=0)
    max_repeats: int = Field(default=3, ge=0)


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    format: Literal["json", "console"] = Field(default="json", description="Logging format")


class AppConfig(BaseModel):
    """Main application configuration combining all subsystems."""

    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Environment"
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    rules: RuleConfig = Field(default_factory=RuleConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    repetition: RepetitionConfig = Field(default_factory=RepetitionConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def debug_only_in_dev(self) -> "AppConfig":
        """Ensure debug mode is only allowed in development environment."""
        if self.debug and self.environment != "development":
            raise ValueError("debug mode is only allowed in development environment")
        return self


def load_config_from_env() -> AppConfig:
    """Load configuration from environment variables with validation."""

    def _env_to_literal(val: str) -> Literal["development", "staging", "production"]:
        v = val.strip().lower()
        if v in {"dev", "development"}:
            return "development"
        if v in {"stage", "staging"}:
            return "staging"
        return "production"

    def _level_to_literal(val: str) -> Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
        v = val.strip().upper()
        return cast(
            Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
            v if v in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"} else "INFO",
        )

    def _parse_bool(val: str | None, default: bool) -> bool:
        if val is None:
            return default
        return val.strip().lower() in {"1", "true", "yes", "on"}

    environment = _env_to_literal(os.getenv("ENVIRONMENT", "development"))
    debug = environment == "development"

    rules = RuleConfig(
        blood_pressure=BloodPressureThresholds(
            window_minutes=float(os.getenv("BP_WINDOW_MINUTES", "10")),
        ),
        hypoxemia=HypoxemiaThresholds(
            window_minutes=float(os.getenv("BP_WINDOW_MINUTES", "10")),
        ),
        oxygen_saturation=OxygenSaturationThresholds(
            window_minutes=float(os.getenv("SPO2_WINDOW_MINUTES", "10")),
        ),
        heart_rate=HeartRateThresholds(
            window_minutes=float(os.getenv("HR_WINDOW_MINUTES", "5")),
        ),
        ecg=ECGThresholds(window_size=int(os.getenv("ECG_WINDOW_SIZE", "30"))),
    )

    monitoring_config = MonitoringConfig(
        evaluation_interval_seconds=float(os.getenv("EVALUATION_INTERVAL_SECONDS", "5.0")),
        max_concurrent_evaluations=int(os.getenv("MAX_CONCURRENT_EVALUATIONS", "8")),
        evaluation_timeout_seconds=float(os.getenv("EVALUATION_TIMEOUT_SECONDS", "2.0")),
    )

    repetition_config = RepetitionConfig(
        enabled=_parse_bool(os.getenv("ALERT_REPEAT_ENABLED"), False),
        repeat_interval_ms=int(os.getenv("ALERT_REPEAT_INTERVAL_MS", "60000")),
        max_repeats=int(os.getenv("ALERT_MAX_REPEATS", "3")),
    )

    logging_config = LoggingConfig(
        level=_level_to_literal(os.getenv("LOG_LEVEL", "INFO")),
        format="console" if debug else "json",
    )

    return AppConfig(
        environment=environment,
        debug=debug,
        rules=rules,
        monitoring=monitoring_config,
        repetition=repetition_config,
        logging=logging_config,
    )


@lru_cache
def get_config() -> AppConfig:
    """Get cached application configuration."""
    return load_config_from_env()


def configure_logging(logging_config: LoggingConfig) -> None:
    """Configure structlog for the whole process."""
    renderer = (
        structlog.dev.ConsoleRenderer()
        if logging_config.format == "console"
        else structlog.processors.JSONRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelNamesMapping()[logging_config.level]
        ),
        context_class=dict,
        cache_logger_on_first_use=True,
    )
