"""Alert channels delivering escalation notifications to the nurse team."""
from .base import AlertChannel, ChannelConfig, DeliveryRecord, sanitize_user_id
from .email import EmailAlertChannel
from .teams import TeamsWebhookChannel
from .templates import EmailTemplateRenderer

__all__ = [
    "AlertChannel",
    "ChannelConfig",
    "DeliveryRecord",
    "sanitize_user_id",
    "EmailAlertChannel",
    "TeamsWebhookChannel",
    "EmailTemplateRenderer",
]
