"""Configuration schema models using Pydantic."""

from enum import Enum

from pydantic import BaseModel, Field, field_validator, model_validator

from .duration import DurationParseError, parse_duration, validate_duration_range


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(str, Enum):
    """Log output formats."""

    JSON = "json"
    KEY_VALUE = "key-value"


class EmailProvider(str, Enum):
    """Supported delivery providers."""

    SMTP = "smtp"
    RESEND = "resend"
    LOG = "log"


def _checked_duration(value: str, min_seconds: int, max_seconds: int, label: str) -> str:
    """Validate a duration string against a range, returning it unchanged."""
    try:
        validate_duration_range(parse_duration(value), min_seconds, max_seconds, label=label)
    except DurationParseError as e:
        raise ValueError(str(e)) from e
    return value


class DeliveryConfig(BaseModel):
    """Retry and dispatch policy for notification delivery."""

    max_attempts: int = Field(3, ge=1, le=10, description="Attempts allowed per notification")
    retry_delay: str = Field("5s", description="Minimum backoff after a failed attempt")
    batch_size: int = Field(50, ge=1, le=500, description="Records claimed per dispatch batch")
    max_batches_per_pass: int = Field(
        20, ge=1, le=1000, description="Upper bound on batches in one dispatch pass"
    )
    send_timeout: str = Field("30s", description="Timeout for a single provider call")
    claim_timeout: str = Field(
        "30m", description="Age after which an unresolved claim is treated as abandoned"
    )
    send_workers: int = Field(4, ge=1, le=64, description="Threads available for provider calls")

    @field_validator("retry_delay")
    @classmethod
    def validate_retry_delay(cls, v: str) -> str:
        return _checked_duration(v, 1, 86400, "retry_delay")

    @field_validator("send_timeout")
    @classmethod
    def validate_send_timeout(cls, v: str) -> str:
        return _checked_duration(v, 1, 300, "send_timeout")

    @field_validator("claim_timeout")
    @classmethod
    def validate_claim_timeout(cls, v: str) -> str:
        return _checked_duration(v, 10, 86400, "claim_timeout")

    @model_validator(mode="after")
    def validate_claim_outlives_send(self):
        """An in-flight send must never be mistaken for an abandoned claim."""
        if self.claim_timeout_seconds <= self.send_timeout_seconds:
            raise ValueError(
                "claim_timeout must be longer than send_timeout "
                f"({self.claim_timeout} <= {self.send_timeout})"
            )
        return self

    @property
    def retry_delay_seconds(self) -> int:
        return parse_duration(self.retry_delay)

    @property
    def send_timeout_seconds(self) -> int:
        return parse_duration(self.send_timeout)

    @property
    def claim_timeout_seconds(self) -> int:
        return parse_duration(self.claim_timeout)


class SchedulerConfig(BaseModel):
    """Intervals for the two background passes."""

    dispatch_interval: str = Field("30s", description="Interval between dispatch passes")
    reconciliation_interval: str = Field(
        "5m", description="Interval between reconciliation passes"
    )
    run_on_start: bool = Field(True, description="Run both passes immediately on startup")

    @field_validator("dispatch_interval")
    @classmethod
    def validate_dispatch_interval(cls, v: str) -> str:
        return _checked_duration(v, 1, 3600, "dispatch_interval")

    @field_validator("reconciliation_interval")
    @classmethod
    def validate_reconciliation_interval(cls, v: str) -> str:
        return _checked_duration(v, 1, 86400, "reconciliation_interval")

    @property
    def dispatch_interval_seconds(self) -> int:
        return parse_duration(self.dispatch_interval)

    @property
    def reconciliation_interval_seconds(self) -> int:
        return parse_duration(self.reconciliation_interval)


class StatsConfig(BaseModel):
    """Statistics cache settings."""

    cache_enabled: bool = Field(True, description="Cache aggregate statistics")
    cache_ttl: str = Field("5m", description="How long cached statistics stay fresh")
    recent_failures_limit: int = Field(
        10, ge=0, le=100, description="Terminal failures listed alongside the counts"
    )

    @field_validator("cache_ttl")
    @classmethod
    def validate_cache_ttl(cls, v: str) -> str:
        return _checked_duration(v, 1, 3600, "cache_ttl")

    @property
    def cache_ttl_seconds(self) -> int:
        return parse_duration(self.cache_ttl)


class QueueConfig(BaseModel):
    """Optional Redis accelerator for the delivery queue."""

    accelerator_enabled: bool = Field(
        False, description="Mirror eligible records into a Redis sorted set"
    )
    accelerator_key: str = Field(
        "notifications:queue:email_processing",
        min_length=1,
        description="Redis key of the sorted set",
    )


class GatewayConfig(BaseModel):
    """Delivery provider selection and transport settings."""

    provider: EmailProvider = Field(EmailProvider.LOG, description="Delivery provider")
    use_tls: bool = Field(True, description="Use STARTTLS for SMTP connections")
    http_timeout: int = Field(
        20, ge=1, le=300, description="HTTP timeout for API providers (seconds)"
    )
    user_agent: str = Field("NotificationDeliveryEngine/1.0", min_length=1)

    model_config = {"use_enum_values": True}


class LinksConfig(BaseModel):
    """Values injected into templates."""

    platform_name: str = Field("CBA Platform", min_length=1)
    login_url: str = Field("http://localhost:3000/login", min_length=1)


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: LogLevel = Field(LogLevel.INFO, description="Log level")
    format: LogFormat = Field(LogFormat.KEY_VALUE, description="Log output format")

    model_config = {"use_enum_values": True}


class AppConfig(BaseModel):
    """Root configuration object for the notification delivery engine."""

    delivery: DeliveryConfig = Field(default_factory=DeliveryConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    stats: StatsConfig = Field(default_factory=StatsConfig)
    queue: QueueConfig = Field(default_factory=QueueConfig)
    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    links: LinksConfig = Field(default_factory=LinksConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"extra": "forbid"}
