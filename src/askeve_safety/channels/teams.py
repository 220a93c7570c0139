"""
Ask Eve Assist Teams Channel - Incoming webhook alerts.

Posts Adaptive Card 1.4 attachments (or legacy MessageCards) to a Teams
incoming webhook selected by escalation severity.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from urllib.parse import urlparse

import httpx
import structlog

from askeve_safety.channels.base import (
    AlertChannel, ChannelConfig, format_trigger_list, new_message_suffix, sanitize_user_id,
)
from askeve_safety.config import DispatchSettings, TeamsSettings
from askeve_safety.domain.models import ChannelKind, FollowUpStatus, NotificationPayload, Severity, UrgencyLevel
from askeve_safety.exceptions import ChannelDeliveryError

logger = structlog.get_logger(__name__)

ADAPTIVE_CARD_CONTENT_TYPE = "application/vnd.microsoft.card.adaptive"
_ACCEPTED_BODIES = frozenset({"1", ""})

_URGENCY_MARKERS = {
    UrgencyLevel.IMMEDIATE: "🚨",
    UrgencyLevel.HIGH: "⚠️",
    UrgencyLevel.MEDIUM: "⚡",
    UrgencyLevel.LOW: "ℹ️",
}
_SEVERITY_STYLES = {
    Severity.CRISIS: ("attention", "CRISIS ALERT"),
    Severity.HIGH_CONCERN: ("warning", "HIGH CONCERN ALERT"),
}
_THEME_COLOURS = {"attention": "FF0000", "warning": "FF6600"}
_FOLLOW_UP_STYLES = {
    FollowUpStatus.RESOLVED: ("good", "✅ Escalation Resolved"),
    FollowUpStatus.ESCALATED: ("attention", "🔺 Escalation Raised Further"),
    FollowUpStatus.TIMEOUT: ("warning", "⏰ Escalation Response Timeout"),
}

COMPLIANCE_NOTICE = (
    "• This message contains confidential patient information protected under the Data Protection Act 2018\n"
    "• If you are not the intended recipient, please delete this message immediately\n"
    "• Do not forward this information without proper authorization\n"
    "• All escalations are logged for audit and compliance purposes"
)


def mask_webhook_url(url: str) -> str:
    parsed = urlparse(url)
    if not parsed.scheme or not parsed.hostname:
        return "***masked***"
    return f"{parsed.scheme}://{parsed.hostname}/***masked***"


def _text(text: str, **attrs: Any) -> dict[str, Any]:
    return {"type": "TextBlock", "text": text, "wrap": True, **attrs}


def _section(title: str, *items: dict[str, Any], **attrs: Any) -> dict[str, Any]:
    return {"type": "Container", **attrs,
            "items": [_text(f"**{title}**", size="medium", weight="bolder", spacing="medium"), *items]}


class TeamsWebhookChannel(AlertChannel):
    """Teams incoming-webhook channel using httpx."""

    def __init__(self, settings: TeamsSettings, dispatch_settings: DispatchSettings | None = None,
                 client: httpx.AsyncClient | None = None) -> None:
        super().__init__(ChannelConfig(
            max_retries=settings.max_retries,
            retry_delay_seconds=settings.initial_delay_seconds,
            backoff_multiplier=settings.backoff_multiplier,
            timeout_seconds=settings.timeout_seconds,
        ))
        self._settings = settings
        self._dashboard_base_url = (dispatch_settings or DispatchSettings()).dashboard_base_url.rstrip("/")
        self._client = client
        logger.info("teams_channel_configured", webhook=mask_webhook_url(settings.webhook_url),
                    adaptive_cards=settings.enable_adaptive_cards, max_retries=settings.max_retries)

    @property
    def kind(self) -> ChannelKind:
        return ChannelKind.TEAMS

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self._settings.timeout_seconds)
        return self._client

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()

    def webhook_for(self, severity: Severity) -> str:
        """Severity-specific webhook, falling back to the default webhook."""
        routed = {
            Severity.CRISIS: self._settings.crisis_webhook_url,
            Severity.HIGH_CONCERN: self._settings.high_concern_webhook_url,
        }.get(severity, self._settings.general_webhook_url)
        return routed or self._settings.webhook_url

    def _new_message_id(self, escalation_id: str) -> str:
        return f"teams_{escalation_id}_{new_message_suffix()}"

    def dashboard_url(self, escalation_id: str) -> str:
        return f"{self._dashboard_base_url}/{escalation_id}"

    def build_adaptive_card(self, payload: NotificationPayload) -> dict[str, Any]:
        style, alert_type = _SEVERITY_STYLES.get(payload.severity, ("default", "SUPPORT REQUEST"))
        body: list[dict[str, Any]] = [
            {"type": "Container", "style": style, "items": [{
                "type": "ColumnSet",
                "columns": [
                    {"type": "Column", "width": "auto",
                     "items": [_text(_URGENCY_MARKERS[payload.urgency], size="large", weight="bolder")]},
                    {"type": "Column", "width": "stretch", "items": [
                        _text(alert_type, size="large", weight="bolder", color=style),
                        _text("Ask Eve Assist Healthcare Bot", size="medium"),
                    ]},
                ],
            }]},
            _section("Escalation Details", {"type": "FactSet", "facts": [
                {"title": "Escalation ID", "value": payload.escalation_id},
                {"title": "Severity", "value": payload.severity.value.upper()},
                {"title": "Urgency", "value": payload.urgency.value.upper()},
                {"title": "User ID", "value": sanitize_user_id(payload.user_id)},
                {"title": "Timestamp", "value": payload.timestamp.isoformat()},
                {"title": "Requires Callback", "value": "YES ☎️" if payload.requires_callback else "No"},
            ]}),
        ]
        if payload.requires_callback:
            notice = "This escalation requires immediate callback to the user."
            if payload.preferred_contact_method:
                notice += f" Preferred contact: {payload.preferred_contact_method}."
            body.append({"type": "Container", "style": "attention", "items": [
                _text("⚠️ **Immediate Callback Required**", weight="bolder", color="attention"),
                _text(notice),
            ]})
        body.append(_section("Summary", _text(payload.summary)))
        body.append(_section("Trigger Matches", _text(format_trigger_list(payload.trigger_matches))))
        body.append({"type": "Container", "separator": True, "items": [
            _text("**⚖️ Important Information**", size="small", weight="bolder"),
            _text(COMPLIANCE_NOTICE, size="small"),
        ]})
        return {
            "type": "AdaptiveCard",
            "version": "1.4",
            "body": body,
            "actions": [{"type": "Action.OpenUrl", "title": "📊 View Safety Dashboard",
                         "url": self.dashboard_url(payload.escalation_id)}],
        }

    def build_message(self, card: dict[str, Any]) -> dict[str, Any]:
        """Wrap a card for posting; falls back to a MessageCard when adaptive cards are off."""
        if self._settings.enable_adaptive_cards:
            return {"type": "message",
                    "attachments": [{"contentType": ADAPTIVE_CARD_CONTENT_TYPE, "content": card}]}
        style = card["body"][0].get("style", "default")
        return {
            "@type": "MessageCard",
            "@context": "http://schema.org/extensions",
            "themeColor": _THEME_COLOURS.get(style, "0066CC"),
            "summary": "Crisis Alert - Ask Eve Assist",
            "text": "**CRISIS ALERT DETECTED**\n\nPlease check the safety dashboard immediately.",
        }

    async def _post(self, webhook_url: str, card: dict[str, Any], message_id: str) -> None:
        client = await self._get_client()
        response = await client.post(webhook_url, json=self.build_message(card),
                                     headers={"X-Message-ID": message_id})
        if not response.is_success:
            raise ChannelDeliveryError(self.label,
                                       f"Teams webhook failed: {response.status_code} - {response.text}")
        if response.text.strip() not in _ACCEPTED_BODIES:
            raise ChannelDeliveryError(self.label, f"Teams webhook unexpected response: {response.text}")
        logger.debug("teams_webhook_response", message_id=message_id, webhook=mask_webhook_url(webhook_url))

    async def _deliver(self, payload: NotificationPayload, message_id: str) -> dict[str, Any]:
        webhook_url = self.webhook_for(payload.severity)
        if not webhook_url:
            raise ChannelDeliveryError(self.label, f"No webhook configured for {payload.severity.value}")
        await self._post(webhook_url, self.build_adaptive_card(payload), message_id)
        return {"target": mask_webhook_url(webhook_url), "severity_route": payload.severity.value}

    async def _check_reachable(self) -> None:
        card = {
            "type": "AdaptiveCard",
            "version": "1.4",
            "body": [
                {"type": "Container", "style": "default", "items": [
                    _text("✅ Connection Test", size="large", weight="bolder"),
                    _text("Ask Eve Assist Teams Notification Service", size="medium"),
                ]},
                {"type": "FactSet", "facts": [
                    {"title": "Status", "value": "Testing webhook connection"},
                    {"title": "Timestamp", "value": datetime.now(timezone.utc).isoformat()},
                ]},
            ],
        }
        await self._post(self._settings.webhook_url, card, self._new_message_id("test"))

    async def send_follow_up(self, escalation_id: str, status: FollowUpStatus, details: str) -> bool:
        """Post a follow-up card for an earlier escalation. Never raises."""
        style, title = _FOLLOW_UP_STYLES[status]
        card = {
            "type": "AdaptiveCard",
            "version": "1.4",
            "body": [
                {"type": "Container", "style": style, "items": [_text(title, size="large", weight="bolder")]},
                {"type": "FactSet", "facts": [
                    {"title": "Escalation ID", "value": escalation_id},
                    {"title": "Status", "value": status.value.upper()},
                    {"title": "Timestamp", "value": datetime.now(timezone.utc).isoformat()},
                ]},
                _text(details),
            ],
            "actions": [{"type": "Action.OpenUrl", "title": "📊 View Safety Dashboard",
                         "url": self.dashboard_url(escalation_id)}],
        }
        try:
            await self._post(self._settings.webhook_url, card, self._new_message_id(escalation_id))
        except Exception as e:
            logger.error("teams_follow_up_failed", escalation_id=escalation_id, status=status.value,
                         error=self._describe(e))
            return False
        logger.info("teams_follow_up_sent", escalation_id=escalation_id, status=status.value)
        return True
