"""
Ask Eve Assist Safety Core - Centralized Configuration.
All safety core configuration with externalized environment support.
"""
from __future__ import annotations
from typing import Any
from urllib.parse import urlparse
from pydantic import BaseModel, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
import structlog

logger = structlog.get_logger(__name__)

_TEAMS_HOST_SUFFIXES = ("webhook.office.com", "outlook.office.com")


class ServiceSettings(BaseSettings):
    """Service-wide settings from environment."""
    service_name: str = Field(default="askeve-safety")
    environment: str = Field(default="development")
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")
    model_config = SettingsConfigDict(
        env_prefix="SAFETY_", env_file=".env", extra="ignore", case_sensitive=False
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid:
            raise ValueError(f"Invalid log level: {v}")
        return upper


class ClassifierSettings(BaseSettings):
    """Message classifier configuration."""
    detection_budget_ms: int = Field(default=500, ge=1, le=10000)
    fuzzy_threshold: float = Field(default=0.8, ge=0.5, le=1.0)
    pattern_confidence: float = Field(default=0.9, ge=0, le=1)
    history_lookback_minutes: int = Field(default=60, ge=1, le=1440)
    distress_repeat_threshold: int = Field(default=3, ge=1, le=50)
    high_message_frequency: int = Field(default=10, ge=1, le=500)
    late_night_after_hour: int = Field(default=22, ge=0, le=23)
    late_night_before_hour: int = Field(default=6, ge=0, le=23)
    local_timezone: str = Field(default="Europe/London")
    trigger_catalog_path: str | None = Field(default=None, description="Override packaged triggers.json")
    model_config = SettingsConfigDict(env_prefix="CLASSIFIER_", env_file=".env", extra="ignore")


class ResponseSettings(BaseSettings):
    """Crisis response composer configuration."""
    responses_path: str | None = Field(default=None, description="Override packaged responses.json")
    model_config = SettingsConfigDict(env_prefix="RESPONSES_", env_file=".env", extra="ignore")


class DispatchSettings(BaseSettings):
    """Escalation dispatch configuration."""
    legacy_max_retries: int = Field(default=3, ge=1, le=10)
    legacy_retry_delay_seconds: float = Field(default=30.0, ge=0, le=600)
    status_retention_hours: int = Field(default=24, ge=1, le=720)
    dashboard_base_url: str = Field(default="https://dashboard.askeve.ai/safety/escalations")
    model_config = SettingsConfigDict(env_prefix="DISPATCH_", env_file=".env", extra="ignore")


class TeamsSettings(BaseSettings):
    """Teams webhook channel configuration."""
    enabled: bool = Field(default=True)
    webhook_url: str = Field(default="")
    crisis_webhook_url: str = Field(default="")
    high_concern_webhook_url: str = Field(default="")
    general_webhook_url: str = Field(default="")
    enable_adaptive_cards: bool = Field(default=True)
    max_retries: int = Field(default=3, ge=1, le=10)
    initial_delay_seconds: float = Field(default=1.0, ge=0, le=60)
    backoff_multiplier: float = Field(default=2.0, ge=1.0, le=10.0)
    timeout_seconds: float = Field(default=10.0, gt=0, le=300)
    model_config = SettingsConfigDict(env_prefix="TEAMS_", env_file=".env", extra="ignore")

    @field_validator("webhook_url", "crisis_webhook_url", "high_concern_webhook_url", "general_webhook_url")
    @classmethod
    def validate_webhook_url(cls, v: str) -> str:
        if not v:
            return v
        parsed = urlparse(v)
        if parsed.scheme != "https" or not (parsed.hostname or "").endswith(_TEAMS_HOST_SUFFIXES):
            raise ValueError(f"Invalid webhook URL: {parsed.scheme}://{parsed.hostname}")
        return v

    @property
    def is_configured(self) -> bool:
        return self.enabled and bool(self.webhook_url)


class EmailSettings(BaseSettings):
    """SMTP email channel configuration."""
    enabled: bool = Field(default=True)
    smtp_host: str = Field(default="localhost")
    smtp_port: int = Field(default=587, ge=1, le=65535)
    smtp_username: str = Field(default="")
    smtp_password: SecretStr = Field(default=SecretStr(""))
    use_tls: bool = Field(default=True)
    from_email: str = Field(default="safety-alerts@askeve.ai")
    from_name: str = Field(default="Ask Eve Assist")
    crisis_recipients: str = Field(default="")
    high_concern_recipients: str = Field(default="")
    general_recipients: str = Field(default="")
    max_retries: int = Field(default=3, ge=1, le=10)
    retry_delay_seconds: float = Field(default=1.0, ge=0, le=60)
    timeout_seconds: float = Field(default=30.0, gt=0, le=300)
    model_config = SettingsConfigDict(env_prefix="EMAIL_", env_file=".env", extra="ignore")

    @staticmethod
    def _split(value: str) -> list[str]:
        return [r.strip() for r in value.split(",") if r.strip()]

    @property
    def crisis_recipients_list(self) -> list[str]:
        return self._split(self.crisis_recipients)

    @property
    def high_concern_recipients_list(self) -> list[str]:
        return self._split(self.high_concern_recipients)

    @property
    def general_recipients_list(self) -> list[str]:
        return self._split(self.general_recipients)

    @property
    def is_configured(self) -> bool:
        return self.enabled and bool(self.crisis_recipients_list)


class SafetyConfig(BaseModel):
    """Aggregate configuration for the safety core."""
    service: ServiceSettings = Field(default_factory=ServiceSettings)
    classifier: ClassifierSettings = Field(default_factory=ClassifierSettings)
    responses: ResponseSettings = Field(default_factory=ResponseSettings)
    dispatch: DispatchSettings = Field(default_factory=DispatchSettings)
    teams: TeamsSettings = Field(default_factory=TeamsSettings)
    email: EmailSettings = Field(default_factory=EmailSettings)

    @classmethod
    def load(cls) -> SafetyConfig:
        """Load configuration from environment."""
        config = cls()
        logger.info(
            "safety_config_loaded",
            environment=config.service.environment,
            teams_configured=config.teams.is_configured,
            email_configured=config.email.is_configured,
            detection_budget_ms=config.classifier.detection_budget_ms,
        )
        return config

    def to_dict(self, hide_secrets: bool = True) -> dict[str, Any]:
        """Convert configuration to dictionary."""
        data = {
            "service": self.service.model_dump(),
            "classifier": self.classifier.model_dump(),
            "responses": self.responses.model_dump(),
            "dispatch": self.dispatch.model_dump(),
            "teams": self.teams.model_dump(),
            "email": self.email.model_dump(),
        }
        if hide_secrets:
            data["email"]["smtp_password"] = "***"
            for key in ("webhook_url", "crisis_webhook_url", "high_concern_webhook_url", "general_webhook_url"):
                if data["teams"][key]:
                    data["teams"][key] = "***"
        else:
            data["email"]["smtp_password"] = self.email.smtp_password.get_secret_value()
        return data


_config: SafetyConfig | None = None


def get_safety_config() -> SafetyConfig:
    """Get singleton safety configuration."""
    global _config
    if _config is None:
        _config = SafetyConfig.load()
    return _config


def reset_config() -> None:
    """Reset configuration singleton (for testing)."""
    global _config
    _config = None
