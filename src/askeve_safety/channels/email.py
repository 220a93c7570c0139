"""
Ask Eve Assist Email Channel - SMTP alerts to the nurse team.
"""
from __future__ import annotations

import re
from email.header import Header
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from typing import Any

import aiosmtplib
import structlog

from askeve_safety.channels.base import AlertChannel, ChannelConfig, new_message_suffix
from askeve_safety.channels.templates import EmailTemplateRenderer
from askeve_safety.config import DispatchSettings, EmailSettings
from askeve_safety.domain.models import ChannelKind, NotificationPayload, Severity, UrgencyLevel
from askeve_safety.exceptions import ChannelDeliveryError

logger = structlog.get_logger(__name__)

MESSAGE_ID_DOMAIN = "askeve.ai"

# Newlines and control characters enable header injection.
_HEADER_INJECTION_PATTERN = re.compile(r"[\r\n\x00\x0b\x0c]")
_EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")


def sanitize_header(value: str, max_length: int = 998) -> str:
    """Strip characters that could inject additional headers and cap the length."""
    if not value:
        return ""
    return _HEADER_INJECTION_PATTERN.sub("", value)[:max_length].strip()


def is_valid_email_address(email: str) -> bool:
    if not email or len(email) > 254:
        return False
    return _EMAIL_PATTERN.match(email) is not None


class EmailAlertChannel(AlertChannel):
    """Email alert channel using aiosmtplib."""

    def __init__(self, settings: EmailSettings, dispatch_settings: DispatchSettings | None = None,
                 renderer: EmailTemplateRenderer | None = None) -> None:
        super().__init__(ChannelConfig(
            max_retries=settings.max_retries,
            retry_delay_seconds=settings.retry_delay_seconds,
            timeout_seconds=settings.timeout_seconds,
        ))
        self._settings = settings
        self._dashboard_base_url = (dispatch_settings or DispatchSettings()).dashboard_base_url.rstrip("/")
        self._renderer = renderer or EmailTemplateRenderer()
        logger.info("email_channel_configured", smtp_host=settings.smtp_host, smtp_port=settings.smtp_port,
                    crisis_recipients=len(settings.crisis_recipients_list))

    @property
    def kind(self) -> ChannelKind:
        return ChannelKind.EMAIL

    def recipients_for(self, severity: Severity) -> list[str]:
        if severity == Severity.CRISIS:
            return self._settings.crisis_recipients_list
        if severity == Severity.HIGH_CONCERN:
            return self._settings.high_concern_recipients_list or self._settings.crisis_recipients_list
        return self._settings.general_recipients_list or self._settings.crisis_recipients_list

    def _new_message_id(self, escalation_id: str) -> str:
        return f"<{escalation_id}_{new_message_suffix()}@{MESSAGE_ID_DOMAIN}>"

    def build_message(self, payload: NotificationPayload, recipients: list[str], message_id: str) -> MIMEMultipart:
        rendered = self._renderer.render(payload, f"{self._dashboard_base_url}/{payload.escalation_id}")
        high_priority = payload.urgency in (UrgencyLevel.IMMEDIATE, UrgencyLevel.HIGH)

        message = MIMEMultipart("alternative")
        message["Subject"] = Header(sanitize_header(rendered.subject, max_length=200), "utf-8")
        message["From"] = formataddr((sanitize_header(self._settings.from_name, max_length=100),
                                      sanitize_header(self._settings.from_email)))
        message["To"] = ", ".join(recipients)
        message["Message-ID"] = message_id
        message["X-Message-ID"] = message_id
        message["X-Priority"] = "1" if high_priority else "3"
        message["Importance"] = "high" if high_priority else "normal"
        message.attach(MIMEText(rendered.text_body, "plain", "utf-8"))
        message.attach(MIMEText(rendered.html_body, "html", "utf-8"))
        return message

    def _validated_recipients(self, severity: Severity) -> list[str]:
        recipients = [sanitize_header(r) for r in self.recipients_for(severity)]
        if not recipients:
            raise ChannelDeliveryError(self.label, f"No recipients configured for {severity.value}")
        invalid = [r for r in recipients if not is_valid_email_address(r)]
        if invalid:
            raise ChannelDeliveryError(self.label, f"Invalid email address in recipients list: {invalid[0][:50]}")
        return recipients

    def _smtp(self) -> aiosmtplib.SMTP:
        return aiosmtplib.SMTP(
            hostname=self._settings.smtp_host,
            port=self._settings.smtp_port,
            start_tls=self._settings.use_tls,
            timeout=self._settings.timeout_seconds,
        )

    async def _login(self, smtp: aiosmtplib.SMTP) -> None:
        if self._settings.smtp_username:
            await smtp.login(self._settings.smtp_username, self._settings.smtp_password.get_secret_value())

    async def _deliver(self, payload: NotificationPayload, message_id: str) -> dict[str, Any]:
        recipients = self._validated_recipients(payload.severity)
        message = self.build_message(payload, recipients, message_id)
        async with self._smtp() as smtp:
            await self._login(smtp)
            await smtp.send_message(message)
        return {"target": f"{len(recipients)} recipients", "recipients": len(recipients)}

    async def _check_reachable(self) -> None:
        async with self._smtp() as smtp:
            await self._login(smtp)
            await smtp.noop()
