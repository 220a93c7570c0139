"""
Integration-style tests for the safety service pipeline.
"""
from unittest.mock import patch

import pytest

from askeve_safety.config import EmailSettings, SafetyConfig, TeamsSettings
from askeve_safety.domain.dispatcher import EscalationDispatcher
from askeve_safety.domain.models import (
    ChannelKind, ContactDetails, ContactMethod, EscalationType, OverallStatus, Severity,
)
from askeve_safety.domain.responses import ResponseComposer
from askeve_safety.domain.service import SafetyService
from askeve_safety.infrastructure.repository import InMemoryEscalationRepository

from tests.askeve_safety.factories import FakeChannel


@pytest.fixture
def repository() -> InMemoryEscalationRepository:
    return InMemoryEscalationRepository()


@pytest.fixture
def build_service(classifier, response_catalog, repository):
    def _build(teams: FakeChannel | None = None, email: FakeChannel | None = None) -> SafetyService:
        dispatcher = EscalationDispatcher(teams, email)
        return SafetyService(classifier, ResponseComposer(response_catalog), dispatcher, repository)
    return _build


class TestProcessMessage:
    """Tests for SafetyService.process_message."""

    @pytest.mark.asyncio
    async def test_crisis_escalated_to_both_channels(self, build_service, repository, context) -> None:
        teams, email = FakeChannel(ChannelKind.TEAMS), FakeChannel(ChannelKind.EMAIL)
        service = build_service(teams, email)

        outcome = await service.process_message("I want to kill myself", context)

        assert outcome.escalated
        assert outcome.safety_result.severity == Severity.CRISIS
        assert outcome.response.escalation_required is True
        assert outcome.delivery.overall_success is True
        assert outcome.notification_error is None
        assert (teams.calls, email.calls) == (1, 1)

        stored = await repository.get(outcome.escalation.id)
        assert stored.escalation_type == EscalationType.CRISIS
        assert (stored.notification_sent, stored.nurse_team_alerted, stored.response_generated) == (True,) * 3
        status = await repository.query_delivery_status(outcome.escalation.id)
        assert status.overall_status == OverallStatus.SENT
        assert service.stats["escalations"] == 1

    @pytest.mark.asyncio
    async def test_response_returned_when_all_channels_fail(self, build_service, repository, context) -> None:
        """Notification failure never blocks the user-facing response."""
        teams = FakeChannel(ChannelKind.TEAMS, outcomes=[ConnectionError("down")] * 3)
        email = FakeChannel(ChannelKind.EMAIL, outcomes=[ConnectionError("down")] * 3)
        service = build_service(teams, email)

        outcome = await service.process_message("I want to end it all", context)

        assert outcome.response.resources
        assert outcome.delivery is None
        assert outcome.notification_error.startswith("All notification channels failed")
        stored = await repository.get(outcome.escalation.id)
        assert stored.notification_sent is False
        assert stored.nurse_team_alerted is False
        assert stored.response_generated is True
        status = await service.delivery_status(outcome.escalation.id)
        assert status.overall_status == OverallStatus.FAILED
        assert service.stats["notification_failures"] == 1

    @pytest.mark.asyncio
    async def test_general_message_not_escalated(self, build_service, context) -> None:
        teams = FakeChannel(ChannelKind.TEAMS)
        service = build_service(teams, FakeChannel(ChannelKind.EMAIL))

        outcome = await service.process_message("What are the symptoms of ovarian cancer?", context)

        assert not outcome.escalated
        assert outcome.response.escalation_required is False
        assert outcome.delivery is None
        assert teams.calls == 0
        assert service.stats == {"messages_analyzed": 1, "escalations": 0, "callbacks": 0,
                                 "notification_failures": 0}

    @pytest.mark.asyncio
    async def test_contact_details_make_nurse_callback(self, build_service, context) -> None:
        service = build_service(FakeChannel(ChannelKind.TEAMS), FakeChannel(ChannelKind.EMAIL))
        contact = ContactDetails(phone="07700 900456", preferred_contact=ContactMethod.PHONE)

        outcome = await service.process_message("I found a lump and I want to speak to a nurse", context, contact)

        assert outcome.escalation.escalation_type == EscalationType.NURSE_CALLBACK
        assert outcome.escalation.contact_details == contact

    @pytest.mark.asyncio
    async def test_correlation_id_is_escalation_id(self, build_service, context) -> None:
        service = build_service(FakeChannel(ChannelKind.TEAMS))
        with patch("askeve_safety.domain.service.set_correlation_id") as mock_set:
            outcome = await service.process_message("I want to kill myself", context)
        mock_set.assert_called_once_with(outcome.escalation.id)


class TestRequestCallback:
    @pytest.mark.asyncio
    async def test_callback_escalation(self, build_service, repository) -> None:
        email = FakeChannel(ChannelKind.EMAIL)
        service = build_service(email=email)
        contact = ContactDetails(name="Sam", email="sam@eveappeal.org.uk", preferred_contact=ContactMethod.EMAIL)

        outcome = await service.request_callback("user-1", "session-1", "Can a nurse contact me?", contact)

        assert outcome.escalation.escalation_type == EscalationType.NURSE_CALLBACK
        assert outcome.safety_result.severity == Severity.HIGH_CONCERN
        assert outcome.response.follow_up_required is True
        assert outcome.delivery.failures == ["Teams: channel not configured"]
        assert email.calls == 1
        assert await service.get_escalation(outcome.escalation.id) is not None
        assert service.stats["callbacks"] == 1


class TestFromConfig:
    def test_unconfigured_channels_left_out(self) -> None:
        config = SafetyConfig(
            teams=TeamsSettings(webhook_url="https://eveappeal.webhook.office.com/webhookb2/x"),
            email=EmailSettings(crisis_recipients=""),
        )
        with patch("askeve_safety.domain.service.EscalationDispatcher") as mock_dispatcher:
            SafetyService.from_config(config)

        teams, email, dispatch = mock_dispatcher.call_args[0]
        assert teams is not None and teams.kind == ChannelKind.TEAMS
        assert email is None
        assert dispatch is config.dispatch
