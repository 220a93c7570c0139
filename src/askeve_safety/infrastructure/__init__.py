"""Safety core infrastructure - Persistence."""
from .repository import EscalationRepository, InMemoryEscalationRepository

__all__ = ["EscalationRepository", "InMemoryEscalationRepository"]
