"""Safety core domain package - Classification, responses and escalation."""
from .classifier import MessageClassifier
from .dispatcher import EscalationDispatcher
from .escalation import EscalationEventFactory, build_escalation_summary, build_notification_payload
from .responses import ResponseCatalog, ResponseComposer, load_response_catalog
from .service import SafetyOutcome, SafetyService
from .triggers import TriggerCatalog, load_trigger_catalog, normalize_text

__all__ = [
    "MessageClassifier",
    "EscalationDispatcher",
    "EscalationEventFactory",
    "build_escalation_summary",
    "build_notification_payload",
    "ResponseCatalog",
    "ResponseComposer",
    "load_response_catalog",
    "SafetyOutcome",
    "SafetyService",
    "TriggerCatalog",
    "load_trigger_catalog",
    "normalize_text",
]
