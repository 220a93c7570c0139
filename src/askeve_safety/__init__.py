"""
Ask Eve Assist Safety Core.

Crisis detection and escalation for the Ask Eve Assist health chatbot:
- Multi-strategy message classification against a trigger lexicon
- Safe user-facing crisis responses with signposted resources
- Concurrent Teams and email alerting of the nurse team
"""

from .config import SafetyConfig, get_safety_config
from .domain import (
    EscalationDispatcher,
    EscalationEventFactory,
    MessageClassifier,
    ResponseComposer,
    SafetyOutcome,
    SafetyService,
)
from .exceptions import AllChannelsFailedError, SafetyCoreError

__version__ = "1.0.0"

__all__ = [
    "AllChannelsFailedError",
    "EscalationDispatcher",
    "EscalationEventFactory",
    "MessageClassifier",
    "ResponseComposer",
    "SafetyConfig",
    "SafetyCoreError",
    "SafetyOutcome",
    "SafetyService",
    "get_safety_config",
]
