"""
Shared fixtures for the Ask Eve Assist safety core tests.
"""
from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from askeve_safety.config import ClassifierSettings
from askeve_safety.domain.classifier import MessageClassifier
from askeve_safety.domain.models import ConversationContext, ConversationMessage, NotificationPayload
from askeve_safety.domain.responses import load_response_catalog
from askeve_safety.domain.triggers import load_trigger_catalog

from tests.askeve_safety.factories import FIXED_NOW, make_payload


@pytest.fixture(scope="session")
def trigger_catalog():
    return load_trigger_catalog()


@pytest.fixture(scope="session")
def response_catalog():
    return load_response_catalog()


@pytest.fixture
def fixed_now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def classifier(trigger_catalog) -> MessageClassifier:
    return MessageClassifier(trigger_catalog, ClassifierSettings(), clock=lambda: FIXED_NOW)


@pytest.fixture
def context() -> ConversationContext:
    return ConversationContext(user_id="user-abcdef123456", session_id="session-1")


@pytest.fixture
def history_message():
    """Build a history message a given number of minutes before the fixed clock."""
    def _build(content: str, minutes_ago: int = 5, role: str = "user") -> ConversationMessage:
        return ConversationMessage(role=role, content=content, timestamp=FIXED_NOW - timedelta(minutes=minutes_ago))
    return _build


@pytest.fixture
def payload() -> NotificationPayload:
    return make_payload()
