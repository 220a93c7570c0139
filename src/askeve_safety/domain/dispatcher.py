"""
Ask Eve Assist Escalation Dispatcher - Concurrent dual-channel alert delivery.

Fans a NotificationPayload out to every alert channel concurrently, waits for
all of them to settle, and aggregates per-channel outcomes. A single channel
failure degrades gracefully; total failure is raised.
"""
from __future__ import annotations
import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Protocol, runtime_checkable
import structlog

from askeve_safety.channels.base import AlertChannel
from askeve_safety.config import DispatchSettings
from askeve_safety.domain.models import (
    ChannelAuditTrail, ChannelDeliveryResult, ChannelKind, DeliveryConfirmation, DeliveryState,
    DeliveryStatus, DualDeliveryResult, FollowUpStatus, NotificationPayload,
)
from askeve_safety.exceptions import (
    AllChannelsFailedError, ChannelDeliveryError, ChannelNotConfiguredError, EscalationNotFoundError,
)
from askeve_safety.observability import DeliveryMetrics

logger = structlog.get_logger(__name__)


@runtime_checkable
class FollowUpChannel(Protocol):
    async def send_follow_up(self, escalation_id: str, status: FollowUpStatus, details: str) -> bool: ...


@dataclass(frozen=True)
class _ChannelOutcome:
    kind: ChannelKind
    state: DeliveryState
    result: ChannelDeliveryResult | None = None
    failure: str | None = None

    @property
    def delivered(self) -> bool:
        return self.state == DeliveryState.SENT


class EscalationDispatcher:
    """Delivers escalation alerts to the nurse team over Teams and email."""

    def __init__(self, teams_channel: AlertChannel | None = None, email_channel: AlertChannel | None = None,
                 settings: DispatchSettings | None = None, metrics: DeliveryMetrics | None = None) -> None:
        self._channels: dict[ChannelKind, AlertChannel | None] = {
            ChannelKind.TEAMS: teams_channel,
            ChannelKind.EMAIL: email_channel,
        }
        self._settings = settings or DispatchSettings()
        self._metrics = metrics or DeliveryMetrics()
        self._statuses: dict[str, DeliveryStatus] = {}
        self._lock = asyncio.Lock()
        logger.info("escalation_dispatcher_initialized",
                    teams_configured=teams_channel is not None, email_configured=email_channel is not None)

    @property
    def metrics(self) -> DeliveryMetrics:
        return self._metrics

    async def dispatch(self, payload: NotificationPayload) -> DualDeliveryResult:
        """Send to all channels concurrently and aggregate once every channel has settled."""
        outcomes = await asyncio.gather(*(self._send_via(kind, payload) for kind in self._channels))
        by_kind = {o.kind: o for o in outcomes}
        teams, email = by_kind[ChannelKind.TEAMS], by_kind[ChannelKind.EMAIL]
        failures = [o.failure for o in outcomes if o.failure]

        for outcome in outcomes:
            retries = outcome.result.retry_count if outcome.result else 0
            self._metrics.record(outcome.kind.value, outcome.state.value, retries)

        await self._record_status(DeliveryStatus.from_states(payload.escalation_id, teams.state, email.state))

        if not any(o.delivered for o in outcomes):
            logger.critical("all_notification_channels_failed", escalation_id=payload.escalation_id,
                            severity=payload.severity.value, failures=failures)
            raise AllChannelsFailedError(payload.escalation_id, failures)

        delivered = [o for o in outcomes if o.delivered]
        if failures:
            logger.warning("partial_notification_failure", escalation_id=payload.escalation_id,
                           delivered=[o.kind.value for o in delivered], failures=failures)
        else:
            logger.info("dual_crisis_alert_sent", escalation_id=payload.escalation_id,
                        teams_message_id=teams.result.message_id, email_message_id=email.result.message_id)

        return DualDeliveryResult(
            teams_delivered=teams.delivered,
            email_delivered=email.delivered,
            overall_success=True,
            failures=failures,
            delivery_confirmation=DeliveryConfirmation(
                escalation_id=payload.escalation_id,
                teams_message_id=teams.result.message_id if teams.delivered else None,
                email_message_id=email.result.message_id if email.delivered else None,
                delivered_at=max(o.result.delivered_at for o in delivered),
                channels=[o.kind for o in delivered],
            ),
            retry_count=sum(o.result.retry_count for o in outcomes if o.result),
            teams_result=teams.result,
            email_result=email.result,
        )

    async def _send_via(self, kind: ChannelKind, payload: NotificationPayload) -> _ChannelOutcome:
        channel = self._channels[kind]
        if channel is None:
            logger.warning("alert_channel_not_configured", channel=kind.value, escalation_id=payload.escalation_id)
            return _ChannelOutcome(kind, DeliveryState.NOT_CONFIGURED, failure=f"{kind.label}: channel not configured")
        try:
            result = await channel.send(payload)
        except Exception as e:
            logger.warning("alert_channel_raised", channel=kind.value, escalation_id=payload.escalation_id,
                           error=str(e))
            return _ChannelOutcome(kind, DeliveryState.FAILED, failure=f"{kind.label}: {e}")
        if result.succeeded:
            return _ChannelOutcome(kind, DeliveryState.SENT, result=result)
        return _ChannelOutcome(kind, DeliveryState.FAILED, result=result, failure=f"{kind.label}: {result.error}")

    async def _record_status(self, status: DeliveryStatus) -> None:
        cutoff = datetime.now(timezone.utc) - timedelta(hours=self._settings.status_retention_hours)
        async with self._lock:
            self._statuses[status.escalation_id] = status
            expired = [k for k, v in self._statuses.items() if v.updated_at < cutoff]
            for key in expired:
                del self._statuses[key]
        if expired:
            logger.debug("delivery_statuses_pruned", count=len(expired))

    async def status(self, escalation_id: str) -> DeliveryStatus:
        """Last recorded per-channel outcome for an escalation."""
        async with self._lock:
            status = self._statuses.get(escalation_id)
        if status is None:
            raise EscalationNotFoundError(escalation_id)
        return status

    async def send_crisis_alert(self, payload: NotificationPayload) -> ChannelDeliveryResult:
        """
        Single-channel delivery over the primary (Teams) channel.

        Runs its own retry loop with a fixed delay between attempts and raises
        ChannelDeliveryError once the attempts are exhausted.
        """
        channel = self._channels[ChannelKind.TEAMS]
        if channel is None:
            raise ChannelNotConfiguredError(ChannelKind.TEAMS.label)

        max_retries = self._settings.legacy_max_retries
        last_error = ""
        for attempt in range(1, max_retries + 1):
            try:
                message_id, identifiers = await channel.attempt(payload)
            except Exception as e:
                last_error = str(e) or type(e).__name__
                logger.warning("crisis_alert_attempt_failed", escalation_id=payload.escalation_id,
                               attempt=attempt, remaining=max_retries - attempt, error=last_error)
                if attempt < max_retries:
                    await asyncio.sleep(self._settings.legacy_retry_delay_seconds)
                continue
            delivered_at = datetime.now(timezone.utc)
            logger.info("crisis_alert_sent", escalation_id=payload.escalation_id, message_id=message_id,
                        retries=attempt - 1)
            self._metrics.record(channel.kind.value, DeliveryState.SENT.value, attempt - 1)
            return ChannelDeliveryResult(
                channel=channel.kind, status=DeliveryState.SENT, message_id=message_id,
                delivered_at=delivered_at, retry_count=attempt - 1,
                audit_trail=ChannelAuditTrail(escalation_id=payload.escalation_id, channel=channel.kind,
                                              timestamp=delivered_at, message_id=message_id,
                                              identifiers=identifiers),
            )

        self._metrics.record(channel.kind.value, DeliveryState.FAILED.value, max_retries - 1)
        raise ChannelDeliveryError(channel.label, f"Failed to send crisis alert after {max_retries} attempts: "
                                                  f"{last_error}")

    async def test_connections(self) -> bool:
        """True only when every configured channel passes its connection test."""
        configured = [c for c in self._channels.values() if c is not None]
        if not configured:
            logger.warning("no_alert_channels_configured")
            return False
        results = await asyncio.gather(*(c.test_connection() for c in configured))
        report = {c.kind.value: ok for c, ok in zip(configured, results)}
        if all(results):
            logger.info("alert_channel_connections_healthy", channels=report)
            return True
        logger.warning("alert_channel_connections_degraded", channels=report)
        return False

    async def send_follow_up(self, escalation_id: str, status: FollowUpStatus, details: str) -> bool:
        """Forward a follow-up to channels that support it; True when any accepted it."""
        targets = [c for c in self._channels.values() if isinstance(c, FollowUpChannel)]
        if not targets:
            logger.warning("follow_up_unsupported", escalation_id=escalation_id)
            return False
        results = await asyncio.gather(*(c.send_follow_up(escalation_id, status, details) for c in targets))
        return any(results)
