"""
Ask Eve Assist Alert Channels - Channel contract.

Each concrete channel implements a single timed delivery; the shared retry
loop turns attempts into a ChannelDeliveryResult without raising.
"""
from __future__ import annotations

import asyncio
import secrets
import time
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any

from pydantic import BaseModel, Field
import structlog

from askeve_safety.domain.models import (
    ChannelAuditTrail, ChannelDeliveryResult, ChannelKind, DeliveryState, NotificationPayload,
)
from askeve_safety.exceptions import ChannelDeliveryError

logger = structlog.get_logger(__name__)

TRIGGER_DISPLAY_LIMIT = 10
_TRACKING_RETENTION = timedelta(hours=24)


def sanitize_user_id(user_id: str) -> str:
    """Truncate a user id so alerts never carry the full identifier."""
    return f"{user_id[:8]}***"


def format_trigger_list(triggers: list[str], limit: int = TRIGGER_DISPLAY_LIMIT) -> str:
    text = ", ".join(triggers[:limit])
    if len(triggers) > limit:
        text += f" (+{len(triggers) - limit} more)"
    return text


def new_message_suffix() -> str:
    """Millisecond timestamp plus random token used in channel message ids."""
    return f"{int(time.time() * 1000)}_{secrets.token_hex(6)}"


class ChannelConfig(BaseModel):
    """Retry and timeout policy for one channel."""
    max_retries: int = Field(default=3, ge=1, le=10)
    retry_delay_seconds: float = Field(default=1.0, ge=0.0, le=60.0)
    backoff_multiplier: float = Field(default=1.0, ge=1.0, le=10.0)
    timeout_seconds: float = Field(default=30.0, gt=0.0, le=300.0)

    def delay_for(self, attempt: int) -> float:
        return self.retry_delay_seconds * self.backoff_multiplier ** (attempt - 1)


class DeliveryRecord(BaseModel):
    """Per-message delivery tracking entry."""
    message_id: str
    state: DeliveryState
    sent_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    target: str = ""


class AlertChannel(ABC):
    """
    Abstract alert channel.

    Subclasses implement ``_deliver``; ``send`` owns the retry loop and
    never raises, ``attempt`` performs exactly one timed delivery and raises
    on failure.
    """

    def __init__(self, config: ChannelConfig) -> None:
        self._config = config
        self._deliveries: dict[str, DeliveryRecord] = {}

    @property
    @abstractmethod
    def kind(self) -> ChannelKind:
        """Return the channel kind."""

    @property
    def label(self) -> str:
        return self.kind.label

    @property
    def config(self) -> ChannelConfig:
        return self._config

    @abstractmethod
    def _new_message_id(self, escalation_id: str) -> str:
        """Build a channel-specific message id."""

    @abstractmethod
    async def _deliver(self, payload: NotificationPayload, message_id: str) -> dict[str, Any]:
        """Deliver once; return channel-specific audit identifiers."""

    @abstractmethod
    async def _check_reachable(self) -> None:
        """Exercise the transport without an escalation; raise when unhealthy."""

    async def attempt(self, payload: NotificationPayload) -> tuple[str, dict[str, Any]]:
        """Single delivery bounded by the configured timeout."""
        message_id = self._new_message_id(payload.escalation_id)
        try:
            identifiers = await asyncio.wait_for(self._deliver(payload, message_id),
                                                 timeout=self._config.timeout_seconds)
        except asyncio.TimeoutError as e:
            raise TimeoutError(f"{self.label} delivery timed out after {self._config.timeout_seconds}s") from e
        self._track(DeliveryRecord(message_id=message_id, state=DeliveryState.SENT,
                                   target=str(identifiers.get("target", ""))))
        return message_id, identifiers

    async def send(self, payload: NotificationPayload) -> ChannelDeliveryResult:
        """Deliver with bounded retries. Retry state is local to this call."""
        last_error = "no attempt made"
        for attempt in range(1, self._config.max_retries + 1):
            try:
                message_id, identifiers = await self.attempt(payload)
            except Exception as e:
                last_error = self._describe(e)
                logger.warning("alert_channel_attempt_failed", channel=self.kind.value,
                               escalation_id=payload.escalation_id, attempt=attempt,
                               remaining=self._config.max_retries - attempt, error=last_error)
                if attempt < self._config.max_retries:
                    await asyncio.sleep(self._config.delay_for(attempt))
                continue

            delivered_at = datetime.now(timezone.utc)
            logger.info("alert_channel_delivered", channel=self.kind.value,
                        escalation_id=payload.escalation_id, message_id=message_id, retries=attempt - 1)
            return ChannelDeliveryResult(
                channel=self.kind,
                status=DeliveryState.SENT,
                message_id=message_id,
                delivered_at=delivered_at,
                retry_count=attempt - 1,
                audit_trail=ChannelAuditTrail(escalation_id=payload.escalation_id, channel=self.kind,
                                              timestamp=delivered_at, message_id=message_id,
                                              identifiers=identifiers),
            )

        logger.error("alert_channel_exhausted", channel=self.kind.value,
                     escalation_id=payload.escalation_id, attempts=self._config.max_retries, error=last_error)
        return ChannelDeliveryResult(
            channel=self.kind,
            status=DeliveryState.FAILED,
            retry_count=self._config.max_retries - 1,
            error=last_error,
            audit_trail=ChannelAuditTrail(escalation_id=payload.escalation_id, channel=self.kind),
        )

    async def test_connection(self) -> bool:
        """Return True when the transport accepts a connection check. Never raises."""
        try:
            await asyncio.wait_for(self._check_reachable(), timeout=self._config.timeout_seconds)
        except Exception as e:
            logger.error("alert_channel_connection_test_failed", channel=self.kind.value,
                         error=self._describe(e))
            return False
        logger.info("alert_channel_connection_test_passed", channel=self.kind.value)
        return True

    def get_delivery_status(self, message_id: str) -> DeliveryRecord | None:
        return self._deliveries.get(message_id)

    def _track(self, record: DeliveryRecord) -> None:
        self._deliveries[record.message_id] = record
        cutoff = datetime.now(timezone.utc) - _TRACKING_RETENTION
        for key in [k for k, v in self._deliveries.items() if v.sent_at < cutoff]:
            del self._deliveries[key]

    @staticmethod
    def _describe(error: Exception) -> str:
        if isinstance(error, ChannelDeliveryError):
            return error.reason
        return str(error) or type(error).__name__
