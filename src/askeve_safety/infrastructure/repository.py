"""
Ask Eve Assist Escalation Repository.
Persistence abstraction for escalation events, dispatch flags and delivery status.
"""
from __future__ import annotations
import asyncio
from abc import ABC, abstractmethod
import structlog

from askeve_safety.domain.models import DeliveryStatus, DispatchFlags, EscalationEvent
from askeve_safety.exceptions import EscalationNotFoundError

logger = structlog.get_logger(__name__)


class EscalationRepository(ABC):
    """Abstract store for escalation events."""

    @abstractmethod
    async def save(self, event: EscalationEvent) -> EscalationEvent:
        """Persist a new escalation event."""

    @abstractmethod
    async def get(self, escalation_id: str) -> EscalationEvent | None:
        """Get an event by id."""

    @abstractmethod
    async def update_flags(self, escalation_id: str, flags: DispatchFlags) -> EscalationEvent:
        """Write dispatch flags once; raises when the event is unknown or already updated."""

    @abstractmethod
    async def save_delivery_status(self, status: DeliveryStatus) -> DeliveryStatus:
        """Record the aggregated delivery outcome."""

    @abstractmethod
    async def query_delivery_status(self, escalation_id: str) -> DeliveryStatus | None:
        """Get the last recorded delivery outcome."""


class InMemoryEscalationRepository(EscalationRepository):
    """In-memory implementation for development and testing."""

    def __init__(self) -> None:
        self._events: dict[str, EscalationEvent] = {}
        self._statuses: dict[str, DeliveryStatus] = {}
        self._lock = asyncio.Lock()

    async def save(self, event: EscalationEvent) -> EscalationEvent:
        async with self._lock:
            self._events[event.id] = event
            logger.debug("escalation_saved", escalation_id=event.id, severity=event.severity.value)
            return event

    async def get(self, escalation_id: str) -> EscalationEvent | None:
        return self._events.get(escalation_id)

    async def update_flags(self, escalation_id: str, flags: DispatchFlags) -> EscalationEvent:
        async with self._lock:
            event = self._events.get(escalation_id)
            if event is None:
                raise EscalationNotFoundError(escalation_id, record="escalation event")
            event.apply_dispatch_flags(flags)
            logger.debug("escalation_flags_updated", escalation_id=escalation_id,
                         notification_sent=flags.notification_sent)
            return event

    async def save_delivery_status(self, status: DeliveryStatus) -> DeliveryStatus:
        async with self._lock:
            self._statuses[status.escalation_id] = status
            return status

    async def query_delivery_status(self, escalation_id: str) -> DeliveryStatus | None:
        return self._statuses.get(escalation_id)
