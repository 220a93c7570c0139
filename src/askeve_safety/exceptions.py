"""
Ask Eve Assist Safety Core - Exception Hierarchy.
Structured exceptions with correlation tracking for the safety and escalation core.
"""
from __future__ import annotations
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from pydantic import BaseModel, Field
import structlog

logger = structlog.get_logger(__name__)


class ErrorSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(str, Enum):
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    CONFIGURATION = "configuration"
    EXTERNAL_SERVICE = "external_service"
    SAFETY = "safety"
    INTERNAL = "internal"


class ErrorContext(BaseModel):
    """Structured context for error tracking."""
    correlation_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    service_name: str = Field(default="askeve-safety")
    operation: str | None = None
    escalation_id: str | None = None
    additional_data: dict[str, Any] = Field(default_factory=dict)
    model_config = {"frozen": True}

    def with_operation(self, operation: str) -> ErrorContext:
        return self.model_copy(update={"operation": operation})


class SafetyCoreError(Exception):
    """Base exception for the safety core with structured logging."""
    error_code: str = "SAFETY_CORE_ERROR"
    category: ErrorCategory = ErrorCategory.INTERNAL
    severity: ErrorSeverity = ErrorSeverity.MEDIUM

    def __init__(self, message: str, *, context: ErrorContext | None = None,
                 cause: Exception | None = None, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or ErrorContext()
        self.cause = cause
        self.details = details or {}
        self._log_error()

    def _log_error(self) -> None:
        log_data = {
            "error_code": self.error_code, "category": self.category.value,
            "severity": self.severity.value, "correlation_id": self.context.correlation_id,
            "operation": self.context.operation, "details": self.details,
        }
        if self.cause:
            log_data["cause_type"] = type(self.cause).__name__
            log_data["cause_message"] = str(self.cause)
        if self.severity in (ErrorSeverity.HIGH, ErrorSeverity.CRITICAL):
            logger.error(self.message, **log_data)
        else:
            logger.warning(self.message, **log_data)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "error": {"code": self.error_code, "message": self.message,
                      "category": self.category.value, "severity": self.severity.value,
                      "correlation_id": self.context.correlation_id,
                      "timestamp": self.context.timestamp.isoformat(),
                      "details": self.details},
        }
        if self.cause:
            result["error"]["cause"] = {"type": type(self.cause).__name__, "message": str(self.cause)}
        return result


class ConfigurationError(SafetyCoreError):
    error_code = "CONFIGURATION_ERROR"
    category = ErrorCategory.CONFIGURATION
    severity = ErrorSeverity.HIGH


class TriggerCatalogError(ConfigurationError):
    error_code = "TRIGGER_CATALOG_ERROR"

    def __init__(self, message: str, *, path: str | None = None, **kwargs: Any) -> None:
        details = kwargs.pop("details", {})
        if path:
            details["path"] = path
        super().__init__(message, details=details, **kwargs)
        self.path = path


class FlagsAlreadyAppliedError(SafetyCoreError):
    error_code = "FLAGS_ALREADY_APPLIED"
    category = ErrorCategory.CONFLICT
    severity = ErrorSeverity.MEDIUM

    def __init__(self, escalation_id: str, **kwargs: Any) -> None:
        details = kwargs.pop("details", {})
        details["escalation_id"] = escalation_id
        super().__init__(f"Dispatch flags already applied for escalation '{escalation_id}'",
                         details=details, **kwargs)
        self.escalation_id = escalation_id


class EscalationNotFoundError(SafetyCoreError):
    error_code = "ESCALATION_NOT_FOUND"
    category = ErrorCategory.NOT_FOUND
    severity = ErrorSeverity.LOW

    def __init__(self, escalation_id: str, record: str = "delivery status", **kwargs: Any) -> None:
        details = kwargs.pop("details", {})
        details["escalation_id"] = escalation_id
        super().__init__(f"No {record} found for escalation '{escalation_id}'",
                         details=details, **kwargs)
        self.escalation_id = escalation_id


class ChannelError(SafetyCoreError):
    error_code = "CHANNEL_ERROR"
    category = ErrorCategory.EXTERNAL_SERVICE
    severity = ErrorSeverity.HIGH

    def __init__(self, channel: str, message: str, **kwargs: Any) -> None:
        details = kwargs.pop("details", {})
        details["channel"] = channel
        super().__init__(message, details=details, **kwargs)
        self.channel = channel


class ChannelDeliveryError(ChannelError):
    error_code = "CHANNEL_DELIVERY_FAILED"

    def __init__(self, channel: str, reason: str, **kwargs: Any) -> None:
        super().__init__(channel, f"[{channel}] {reason}", **kwargs)
        self.reason = reason


class ChannelNotConfiguredError(ChannelError):
    error_code = "CHANNEL_NOT_CONFIGURED"
    severity = ErrorSeverity.MEDIUM

    def __init__(self, channel: str, **kwargs: Any) -> None:
        super().__init__(channel, f"{channel} channel not configured", **kwargs)


class AllChannelsFailedError(SafetyCoreError):
    """Every configured alert channel failed for one escalation."""
    error_code = "ALL_CHANNELS_FAILED"
    category = ErrorCategory.SAFETY
    severity = ErrorSeverity.CRITICAL

    def __init__(self, escalation_id: str, failures: list[str], **kwargs: Any) -> None:
        details = kwargs.pop("details", {})
        details.update({"escalation_id": escalation_id, "failures": list(failures)})
        message = f"All notification channels failed: {'; '.join(failures)}"
        super().__init__(message, details=details, **kwargs)
        self.escalation_id = escalation_id
        self.failures = list(failures)
