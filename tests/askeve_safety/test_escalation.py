"""
Unit tests for escalation event construction and payload derivation.
"""
import pytest

from askeve_safety.domain.escalation import (
    EscalationEventFactory, build_escalation_summary, build_notification_payload,
)
from askeve_safety.domain.models import (
    ContactDetails, ContactMethod, EscalationType, Severity, TriggerCategory, UrgencyLevel,
)

from tests.askeve_safety.factories import make_match, make_result


@pytest.fixture
def factory() -> EscalationEventFactory:
    return EscalationEventFactory()


@pytest.fixture
def phone_contact() -> ContactDetails:
    return ContactDetails(name="Alex", phone="07700 900456", preferred_contact=ContactMethod.PHONE,
                          best_time_to_call="after 6pm")


class TestEscalationEventFactory:
    """Tests for EscalationEventFactory.create."""

    def test_crisis_event(self, factory) -> None:
        result = make_result(make_match(TriggerCategory.SUICIDE_IDEATION, Severity.CRISIS, "want to die"))
        event = factory.create("user-1", "session-1", "I want to die", result)

        assert event.escalation_type == EscalationType.CRISIS
        assert event.urgency_level == UrgencyLevel.IMMEDIATE
        assert event.severity == Severity.CRISIS
        assert event.user_message == "I want to die"
        assert event.safety_result == result
        assert event.callback_requested is False
        assert (event.notification_sent, event.nurse_team_alerted, event.response_generated) == (False,) * 3

    def test_unique_ids(self, factory) -> None:
        result = make_result(make_match(TriggerCategory.SELF_HARM, Severity.CRISIS))
        ids = {factory.create("u", "s", "m", result).id for _ in range(20)}
        assert len(ids) == 20

    def test_high_concern_with_contact_is_nurse_callback(self, factory, phone_contact) -> None:
        result = make_result(make_match(TriggerCategory.MEDICAL_CONCERNS, Severity.HIGH_CONCERN))
        event = factory.create("user-1", "session-1", "found a lump", result, phone_contact)

        assert event.escalation_type == EscalationType.NURSE_CALLBACK
        assert event.callback_requested is True
        assert event.preferred_contact_method == "phone"
        assert event.urgency_level == UrgencyLevel.HIGH

    def test_callback_category_is_nurse_callback(self, factory) -> None:
        result = make_result(make_match(TriggerCategory.CALLBACK_REQUEST, Severity.HIGH_CONCERN))
        event = factory.create("user-1", "session-1", "please ring me", result)
        assert event.escalation_type == EscalationType.NURSE_CALLBACK

    def test_crisis_with_contact_stays_crisis(self, factory, phone_contact) -> None:
        result = make_result(make_match(TriggerCategory.SELF_HARM, Severity.CRISIS))
        event = factory.create("user-1", "session-1", "hurt myself", result, phone_contact)
        assert event.escalation_type == EscalationType.CRISIS
        assert event.contact_details == phone_contact

    @pytest.mark.parametrize("severity,urgency", [
        (Severity.EMOTIONAL_SUPPORT, UrgencyLevel.MEDIUM),
        (Severity.GENERAL, UrgencyLevel.LOW),
    ])
    def test_general_support_urgency(self, factory, severity, urgency) -> None:
        matches = [make_match(TriggerCategory.EMOTIONAL_SUPPORT, severity)] if severity != Severity.GENERAL else []
        result = make_result(*matches, requires_escalation=False)
        event = factory.create("user-1", "session-1", "hello", result)
        assert event.escalation_type == EscalationType.GENERAL_SUPPORT
        assert event.urgency_level == urgency


class TestCallbackEvent:
    """Tests for the explicit callback constructor."""

    def test_synthesized_high_concern_result(self, factory, phone_contact) -> None:
        event = factory.create_callback("user-1", "session-1", "Please call me", phone_contact)

        assert event.severity == Severity.HIGH_CONCERN
        assert event.escalation_type == EscalationType.NURSE_CALLBACK
        assert event.urgency_level == UrgencyLevel.HIGH
        assert event.callback_requested is True
        result = event.safety_result
        assert result.confidence == 0.9
        assert result.requires_escalation is True
        assert result.categories == {TriggerCategory.CALLBACK_REQUEST}
        assert result.risk_factors == ["nurse_callback_requested"]
        assert result.recommended_actions == ["nurse_callback", "priority_support"]


class TestNotificationPayload:
    """Tests for payload derivation."""

    def test_summary_lists_first_three_categories(self, factory) -> None:
        result = make_result(
            make_match(TriggerCategory.SUICIDE_IDEATION, Severity.CRISIS, "kill myself"),
            make_match(TriggerCategory.SUICIDE_IDEATION, Severity.CRISIS, "end it all"),
            make_match(TriggerCategory.SELF_HARM, Severity.CRISIS, "cut myself"),
            make_match(TriggerCategory.SEVERE_DISTRESS, Severity.CRISIS, "can t cope"),
            make_match(TriggerCategory.LIFE_THREATENING, Severity.CRISIS, "overdose"),
        )
        event = factory.create("user-1", "session-1", "...", result)
        assert build_escalation_summary(event) == (
            "CRISIS escalation: 5 triggers detected (suicide_ideation, self_harm, severe_distress)"
        )

    def test_payload_fields(self, factory) -> None:
        result = make_result(make_match(TriggerCategory.LIFE_THREATENING, Severity.CRISIS, "chest pain"))
        event = factory.create("user-1", "session-1", "chest pain", result)
        payload = build_notification_payload(event)

        assert payload.escalation_id == event.id
        assert payload.severity == Severity.CRISIS
        assert payload.urgency == UrgencyLevel.IMMEDIATE
        assert payload.trigger_matches == ["chest pain"]
        assert payload.timestamp == event.timestamp
        assert payload.requires_callback is True
        assert payload.escalation_type == EscalationType.CRISIS

    def test_high_concern_without_callback(self, factory) -> None:
        result = make_result(make_match(TriggerCategory.MEDICAL_CONCERNS, Severity.HIGH_CONCERN))
        payload = build_notification_payload(factory.create("user-1", "session-1", "lump", result))
        assert payload.requires_callback is False

    def test_payload_is_deterministic(self, factory) -> None:
        result = make_result(make_match(TriggerCategory.SELF_HARM, Severity.CRISIS))
        event = factory.create("user-1", "session-1", "hurt myself", result)
        assert build_notification_payload(event) == build_notification_payload(event)
