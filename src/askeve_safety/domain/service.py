"""
Ask Eve Assist Safety Service - Orchestrates classification, response and escalation.

The user-facing CrisisResponse is always produced first and returned even
when human-team notification fails.
"""
from __future__ import annotations
from pathlib import Path
from typing import Any
from pydantic import BaseModel, ConfigDict
import structlog

from askeve_safety.channels.email import EmailAlertChannel
from askeve_safety.channels.teams import TeamsWebhookChannel
from askeve_safety.config import SafetyConfig
from askeve_safety.domain.classifier import MessageClassifier
from askeve_safety.domain.dispatcher import EscalationDispatcher
from askeve_safety.domain.escalation import EscalationEventFactory, build_notification_payload
from askeve_safety.domain.models import (
    ContactDetails, ConversationContext, CrisisResponse, DeliveryStatus, DispatchFlags, DualDeliveryResult,
    EscalationEvent, SafetyResult,
)
from askeve_safety.domain.responses import ResponseComposer, load_response_catalog
from askeve_safety.domain.triggers import load_trigger_catalog
from askeve_safety.exceptions import AllChannelsFailedError
from askeve_safety.infrastructure.repository import EscalationRepository, InMemoryEscalationRepository
from askeve_safety.observability import set_correlation_id

logger = structlog.get_logger(__name__)


class SafetyOutcome(BaseModel):
    """Everything produced while handling one inbound message."""
    model_config = ConfigDict(frozen=True)

    safety_result: SafetyResult
    response: CrisisResponse
    escalation: EscalationEvent | None = None
    delivery: DualDeliveryResult | None = None
    notification_error: str | None = None

    @property
    def escalated(self) -> bool:
        return self.escalation is not None


class SafetyService:
    """Main safety service wiring classifier, composer, factory, dispatcher and repository."""

    def __init__(self, classifier: MessageClassifier, composer: ResponseComposer,
                 dispatcher: EscalationDispatcher, repository: EscalationRepository | None = None,
                 factory: EscalationEventFactory | None = None) -> None:
        self._classifier = classifier
        self._composer = composer
        self._dispatcher = dispatcher
        self._repository = repository or InMemoryEscalationRepository()
        self._factory = factory or EscalationEventFactory()
        self._stats = {"messages_analyzed": 0, "escalations": 0, "callbacks": 0, "notification_failures": 0}

    @classmethod
    def from_config(cls, config: SafetyConfig | None = None) -> SafetyService:
        """Build a service from settings; unconfigured channels are left out of the dispatcher."""
        config = config or SafetyConfig.load()
        catalog = load_trigger_catalog(config.classifier.trigger_catalog_path)
        responses = load_response_catalog(
            Path(config.responses.responses_path) if config.responses.responses_path else None)
        teams = TeamsWebhookChannel(config.teams, config.dispatch) if config.teams.is_configured else None
        email = EmailAlertChannel(config.email, config.dispatch) if config.email.is_configured else None
        return cls(
            classifier=MessageClassifier(catalog, config.classifier),
            composer=ResponseComposer(responses),
            dispatcher=EscalationDispatcher(teams, email, config.dispatch),
        )

    @property
    def stats(self) -> dict[str, Any]:
        return dict(self._stats)

    async def process_message(self, message: str, context: ConversationContext,
                              contact_details: ContactDetails | None = None) -> SafetyOutcome:
        """Classify a message, compose the user response and escalate when required."""
        self._stats["messages_analyzed"] += 1
        result = self._classifier.analyze(message, context)
        response = self._composer.compose(result)
        if not result.requires_escalation:
            return SafetyOutcome(safety_result=result, response=response)

        event = self._factory.create(context.user_id, context.session_id, message, result, contact_details)
        self._stats["escalations"] += 1
        return await self._escalate(event, result, response)

    async def request_callback(self, user_id: str, session_id: str, message: str,
                               contact_details: ContactDetails) -> SafetyOutcome:
        """Escalate an explicit nurse-callback request."""
        event = self._factory.create_callback(user_id, session_id, message, contact_details)
        self._stats["callbacks"] += 1
        response = self._composer.compose(event.safety_result)
        return await self._escalate(event, event.safety_result, response)

    async def delivery_status(self, escalation_id: str) -> DeliveryStatus:
        return await self._dispatcher.status(escalation_id)

    async def get_escalation(self, escalation_id: str) -> EscalationEvent | None:
        return await self._repository.get(escalation_id)

    async def _escalate(self, event: EscalationEvent, result: SafetyResult,
                        response: CrisisResponse) -> SafetyOutcome:
        set_correlation_id(event.id)
        await self._repository.save(event)
        payload = build_notification_payload(event)
        delivery: DualDeliveryResult | None = None
        notification_error: str | None = None
        try:
            delivery = await self._dispatcher.dispatch(payload)
            flags = DispatchFlags(notification_sent=True, nurse_team_alerted=True, response_generated=True)
        except AllChannelsFailedError as e:
            self._stats["notification_failures"] += 1
            notification_error = e.message
            flags = DispatchFlags(response_generated=True)

        await self._repository.update_flags(event.id, flags)
        await self._repository.save_delivery_status(await self._dispatcher.status(event.id))
        logger.info("escalation_processed", escalation_id=event.id, severity=event.severity.value,
                    escalation_type=event.escalation_type.value, notification_sent=flags.notification_sent)
        return SafetyOutcome(safety_result=result, response=response, escalation=event,
                             delivery=delivery, notification_error=notification_error)
