"""Ask Eve Assist Safety Core - Structured logging, correlation ids and delivery metrics."""
from __future__ import annotations
import logging
import uuid
from contextvars import ContextVar
from typing import Any, Callable
from prometheus_client import CollectorRegistry, Counter
import structlog

from askeve_safety.config import ServiceSettings

_correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")

_LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def get_correlation_id() -> str:
    """Get current correlation ID from context."""
    cid = _correlation_id.get()
    if not cid:
        cid = str(uuid.uuid4())
        _correlation_id.set(cid)
    return cid


def set_correlation_id(correlation_id: str) -> None:
    """Set correlation ID in context."""
    _correlation_id.set(correlation_id)


def configure_logging(settings: ServiceSettings | None = None) -> None:
    """Configure structured logging with structlog."""
    settings = settings or ServiceSettings()
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        _add_service_context(settings.service_name, settings.environment),
        _add_correlation_id,
    ]
    if settings.log_format == "json":
        processors.extend([
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ])
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(_LOG_LEVELS.get(settings.log_level, logging.INFO)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _add_service_context(service_name: str, environment: str) -> Callable[..., Any]:
    """Processor to add service context to logs."""
    def processor(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        event_dict["service"] = service_name
        event_dict["environment"] = environment
        return event_dict
    return processor


def _add_correlation_id(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Processor to add correlation ID to logs."""
    cid = _correlation_id.get()
    if cid:
        event_dict["correlation_id"] = cid
    return event_dict


class DeliveryMetrics:
    """Prometheus counters for alert channel outcomes, on an injectable registry."""

    DELIVERIES = "askeve_alert_deliveries_total"
    RETRIES = "askeve_alert_delivery_retries_total"

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self._registry = registry or CollectorRegistry()
        self._deliveries = Counter(
            "askeve_alert_deliveries", "Alert channel delivery outcomes",
            ["channel", "outcome"], registry=self._registry,
        )
        self._retries = Counter(
            "askeve_alert_delivery_retries", "Retries spent delivering alerts",
            ["channel"], registry=self._registry,
        )

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    def record(self, channel: str, outcome: str, retries: int = 0) -> None:
        self._deliveries.labels(channel=channel, outcome=outcome).inc()
        if retries:
            self._retries.labels(channel=channel).inc(retries)

    def get(self, channel: str, outcome: str) -> int:
        value = self._registry.get_sample_value(self.DELIVERIES, {"channel": channel, "outcome": outcome})
        return int(value or 0)

    def retries(self, channel: str) -> int:
        return int(self._registry.get_sample_value(self.RETRIES, {"channel": channel}) or 0)
