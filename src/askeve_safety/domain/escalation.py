"""
Ask Eve Assist Escalation - Event construction and notification payload derivation.
Pure construction: no I/O happens here.
"""
from __future__ import annotations
import structlog

from askeve_safety.domain.models import (
    ContactDetails, EscalationEvent, EscalationType, MatchPosition, MatchType, NotificationPayload,
    SafetyResult, Severity, TriggerCategory, TriggerMatch, UrgencyLevel,
)

logger = structlog.get_logger(__name__)

_SUMMARY_CATEGORY_LIMIT = 3


def build_escalation_summary(event: EscalationEvent) -> str:
    """Short human-readable summary used as the alert headline body."""
    result = event.safety_result
    categories: list[str] = []
    for match in result.matches:
        if match.category.value not in categories:
            categories.append(match.category.value)
    shown = ", ".join(categories[:_SUMMARY_CATEGORY_LIMIT])
    return f"{event.severity.value.upper()} escalation: {len(result.matches)} triggers detected ({shown})"


def build_notification_payload(event: EscalationEvent) -> NotificationPayload:
    return NotificationPayload.from_event(event, build_escalation_summary(event))


class EscalationEventFactory:
    """Creates EscalationEvents from classification results or explicit callback requests."""

    def create(self, user_id: str, session_id: str, message: str, safety_result: SafetyResult,
               contact_details: ContactDetails | None = None) -> EscalationEvent:
        if safety_result.severity == Severity.CRISIS:
            escalation_type = EscalationType.CRISIS
        elif contact_details is not None or TriggerCategory.CALLBACK_REQUEST in safety_result.categories:
            escalation_type = EscalationType.NURSE_CALLBACK
        else:
            escalation_type = EscalationType.GENERAL_SUPPORT

        event = EscalationEvent(
            user_id=user_id,
            session_id=session_id,
            severity=safety_result.severity,
            safety_result=safety_result,
            user_message=message,
            contact_details=contact_details,
            escalation_type=escalation_type,
            callback_requested=escalation_type == EscalationType.NURSE_CALLBACK,
            preferred_contact_method=contact_details.preferred_contact.value if contact_details else None,
            urgency_level=UrgencyLevel.from_severity(safety_result.severity),
        )
        logger.info("escalation_event_created", escalation_id=event.id, severity=event.severity.value,
                    escalation_type=escalation_type.value, urgency=event.urgency_level.value)
        return event

    def create_callback(self, user_id: str, session_id: str, message: str,
                        contact_details: ContactDetails) -> EscalationEvent:
        """Build a nurse-callback event when no live classification exists."""
        safety_result = SafetyResult(
            severity=Severity.HIGH_CONCERN,
            confidence=0.9,
            requires_escalation=True,
            matches=[TriggerMatch(
                trigger="nurse_callback_request", confidence=0.8,
                category=TriggerCategory.CALLBACK_REQUEST, severity=Severity.HIGH_CONCERN,
                position=MatchPosition(start=0, end=len(message)), match_type=MatchType.CONTEXT,
            )],
            risk_factors=["nurse_callback_requested"],
            contextual_concerns=["professional_support_needed"],
            recommended_actions=["nurse_callback", "priority_support"],
        )
        event = EscalationEvent(
            user_id=user_id,
            session_id=session_id,
            severity=Severity.HIGH_CONCERN,
            safety_result=safety_result,
            user_message=message,
            contact_details=contact_details,
            escalation_type=EscalationType.NURSE_CALLBACK,
            callback_requested=True,
            preferred_contact_method=contact_details.preferred_contact.value,
            urgency_level=UrgencyLevel.HIGH,
        )
        logger.info("nurse_callback_event_created", escalation_id=event.id,
                    preferred_contact=event.preferred_contact_method)
        return event
