"""
Ask Eve Assist Alert Templates - Jinja2 rendering for email alerts.
"""
from __future__ import annotations

from typing import Any

from jinja2 import BaseLoader, Environment, StrictUndefined, TemplateError
from pydantic import BaseModel
import structlog

from askeve_safety.channels.base import format_trigger_list, sanitize_user_id
from askeve_safety.domain.models import NotificationPayload, Severity

logger = structlog.get_logger(__name__)

ALERT_TITLES = {
    Severity.CRISIS: "CRISIS ALERT",
    Severity.HIGH_CONCERN: "HIGH CONCERN",
}
DEFAULT_ALERT_TITLE = "SUPPORT REQUEST"

SUBJECT_TEMPLATE = "{{ alert_title }} - Ask Eve Assist - {{ escalation_id }}"

TEXT_TEMPLATE = """{{ alert_title }} - Ask Eve Assist

Escalation ID: {{ escalation_id }}
Severity: {{ severity }}
Urgency: {{ urgency }}
User: {{ user_ref }}
Time: {{ timestamp }}
{% if requires_callback %}
IMMEDIATE CALLBACK REQUIRED{% if contact_method %} (preferred contact: {{ contact_method }}){% endif %}
{% endif %}
Summary:
{{ summary }}

Trigger matches: {{ triggers }}

View in the safety dashboard: {{ dashboard_url }}

This message contains confidential information protected under the Data Protection Act 2018.
If you are not the intended recipient, please delete it immediately.
"""

HTML_TEMPLATE = """<html><body style="font-family: Arial, sans-serif;">
<h2 style="color: {{ colour }};">{{ alert_title }}</h2>
<p>Ask Eve Assist Healthcare Bot</p>
<table>
<tr><td><strong>Escalation ID</strong></td><td>{{ escalation_id }}</td></tr>
<tr><td><strong>Severity</strong></td><td>{{ severity }}</td></tr>
<tr><td><strong>Urgency</strong></td><td>{{ urgency }}</td></tr>
<tr><td><strong>User</strong></td><td>{{ user_ref }}</td></tr>
<tr><td><strong>Time</strong></td><td>{{ timestamp }}</td></tr>
</table>
{% if requires_callback %}<p style="color: #d32f2f;"><strong>Immediate callback required</strong>{% if contact_method %} (preferred contact: {{ contact_method }}){% endif %}</p>{% endif %}
<h3>Summary</h3>
<p>{{ summary }}</p>
<h3>Trigger Matches</h3>
<p>{{ triggers }}</p>
<p><a href="{{ dashboard_url }}">View Safety Dashboard</a></p>
<p style="font-size: small;">This message contains confidential information protected under the Data Protection Act 2018.</p>
</body></html>
"""

_COLOURS = {Severity.CRISIS: "#d32f2f", Severity.HIGH_CONCERN: "#f57c00"}


class RenderedEmail(BaseModel):
    subject: str
    text_body: str
    html_body: str


class EmailTemplateRenderer:
    """Renders alert emails. Undefined variables fail loudly."""

    def __init__(self) -> None:
        self._html_env = Environment(loader=BaseLoader(), autoescape=True, undefined=StrictUndefined)
        self._text_env = Environment(loader=BaseLoader(), autoescape=False, undefined=StrictUndefined)

    @staticmethod
    def alert_title(severity: Severity) -> str:
        return ALERT_TITLES.get(severity, DEFAULT_ALERT_TITLE)

    def build_variables(self, payload: NotificationPayload, dashboard_url: str) -> dict[str, Any]:
        return {
            "alert_title": self.alert_title(payload.severity),
            "escalation_id": payload.escalation_id,
            "severity": payload.severity.value.upper(),
            "urgency": payload.urgency.value.upper(),
            "user_ref": sanitize_user_id(payload.user_id),
            "timestamp": payload.timestamp.isoformat(),
            "summary": payload.summary,
            "triggers": format_trigger_list(payload.trigger_matches),
            "requires_callback": payload.requires_callback,
            "contact_method": payload.preferred_contact_method or "",
            "dashboard_url": dashboard_url,
            "colour": _COLOURS.get(payload.severity, "#1976d2"),
        }

    def render(self, payload: NotificationPayload, dashboard_url: str) -> RenderedEmail:
        variables = self.build_variables(payload, dashboard_url)
        try:
            return RenderedEmail(
                subject=self._text_env.from_string(SUBJECT_TEMPLATE).render(**variables),
                text_body=self._text_env.from_string(TEXT_TEMPLATE).render(**variables),
                html_body=self._html_env.from_string(HTML_TEMPLATE).render(**variables),
            )
        except TemplateError as e:
            logger.error("alert_template_render_failed", escalation_id=payload.escalation_id, error=str(e))
            raise
