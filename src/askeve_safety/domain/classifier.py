"""
Ask Eve Assist Message Classifier - Multi-strategy risk detection.

Runs exact, fuzzy, pattern and contextual detection over a normalized message
and aggregates the matches into a SafetyResult. Internal faults never surface
to the caller: they are replaced by a fail-safe crisis result.
"""
from __future__ import annotations
import re
import time
from datetime import datetime, timedelta, timezone
from typing import Callable
from zoneinfo import ZoneInfo
import structlog

from askeve_safety.config import ClassifierSettings
from askeve_safety.domain.models import (
    ConversationContext, ConversationMessage, MatchPosition, MatchType, SafetyResult, Severity,
    TriggerCategory, TriggerMatch,
)
from askeve_safety.domain.triggers import TriggerCatalog, normalize_text

logger = structlog.get_logger(__name__)

# Patterns run against normalized text, so apostrophes are already spaces ("can t").
_CRISIS_PATTERNS: tuple[tuple[re.Pattern[str], TriggerCategory], ...] = (
    (re.compile(r"\b(?:i\s+)?(?:want|wanna|gonna)\s+(?:to\s+)?(?:die|kill\s+myself)\b"),
     TriggerCategory.SUICIDE_IDEATION),
    (re.compile(r"\b(?:don\s?t|do\s+not)\s+want\s+to\s+(?:live|be\s+here)\b"), TriggerCategory.SUICIDE_IDEATION),
    (re.compile(r"\b(?:can\s?t|cannot)\s+(?:take|handle|cope|go\s+on)\b"), TriggerCategory.SEVERE_DISTRESS),
    (re.compile(r"\b(?:chest|heart)\s+pain\b"), TriggerCategory.LIFE_THREATENING),
    (re.compile(r"\b(?:can\s?t|cannot)\s+breathe\b"), TriggerCategory.LIFE_THREATENING),
    (re.compile(r"\bcut(?:ting)?\s+(?:myself|my)\b"), TriggerCategory.SELF_HARM),
)

_HISTORY_DISTRESS_TERMS = tuple(normalize_text(t) for t in (
    "worse", "getting bad", "can't handle", "breaking down",
))

_DISTRESS_TERMS = tuple(normalize_text(t) for t in (
    "overwhelmed", "can't cope", "struggling", "breaking down",
    "hopeless", "desperate", "exhausted", "giving up",
))

_HIGH_RISK_FLAG = "high_risk"


def levenshtein_distance(a: str, b: str) -> int:
    """Classic edit distance with a rolling row."""
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + (ca != cb),
            ))
        previous = current
    return previous[-1]


def similarity(a: str, b: str) -> float:
    """Edit-distance similarity normalized to [0, 1]."""
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - levenshtein_distance(a, b) / longest


class MessageClassifier:
    """
    Scores inbound messages for risk severity.

    Holds only read-only state (catalog and settings), so one instance can
    serve concurrent classification calls.
    """

    def __init__(self, catalog: TriggerCatalog, settings: ClassifierSettings | None = None,
                 clock: Callable[[], datetime] | None = None) -> None:
        self._catalog = catalog
        self._settings = settings or ClassifierSettings()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._timezone = ZoneInfo(self._settings.local_timezone)
        self._crisis_entries = catalog.crisis_phrases()
        logger.info("message_classifier_initialized", phrases=catalog.phrase_count,
                    catalog_version=catalog.version)

    def analyze(self, message: str, context: ConversationContext) -> SafetyResult:
        """Classify a message. Never raises for classification faults."""
        start = time.perf_counter()
        try:
            result = self._analyze(message, context, start)
        except Exception as e:
            elapsed = (time.perf_counter() - start) * 1000
            logger.exception("safety_analysis_failed", user_id=context.user_id, error=str(e))
            return SafetyResult.fail_safe(analysis_time_ms=elapsed)

        logger.info(
            "safety_analysis_complete",
            severity=result.severity.value,
            confidence=round(result.confidence, 3),
            requires_escalation=result.requires_escalation,
            match_count=len(result.matches),
            analysis_time_ms=round(result.analysis_time_ms, 2),
            user_id=context.user_id,
        )
        if result.analysis_time_ms > self._settings.detection_budget_ms:
            logger.warning("crisis_detection_budget_exceeded",
                           analysis_time_ms=round(result.analysis_time_ms, 2),
                           budget_ms=self._settings.detection_budget_ms)
        return result

    def _analyze(self, message: str, context: ConversationContext, start: float) -> SafetyResult:
        normalized = normalize_text(message)
        matches: list[TriggerMatch] = []
        if normalized:
            matches.extend(self._exact_matches(normalized))
            matches.extend(self._fuzzy_matches(normalized))
            matches.extend(self._pattern_matches(normalized))
            matches.extend(self._contextual_matches(normalized, context))

        severity = Severity.highest(m.severity for m in matches)
        confidence = self.aggregate_confidence(matches)
        requires_escalation = severity == Severity.CRISIS or (
            severity == Severity.HIGH_CONCERN and confidence > 0.8
        )
        return SafetyResult(
            severity=severity,
            confidence=confidence,
            requires_escalation=requires_escalation,
            matches=matches,
            risk_factors=self._risk_factors(matches, context),
            contextual_concerns=self._contextual_concerns(context),
            analysis_time_ms=(time.perf_counter() - start) * 1000,
            recommended_actions=self._recommended_actions(severity, matches),
        )

    @staticmethod
    def aggregate_confidence(matches: list[TriggerMatch]) -> float:
        """Mean match confidence plus a multi-match bonus, capped at 1."""
        if not matches:
            return 0.0
        mean = sum(m.confidence for m in matches) / len(matches)
        bonus = min(0.1 * len(matches), 0.3)
        return min(mean + bonus, 1.0)

    def _exact_matches(self, message: str) -> list[TriggerMatch]:
        matches = []
        for entry in self._catalog.iter_phrases():
            start = message.find(entry.phrase)
            if start == -1:
                continue
            matches.append(TriggerMatch(
                trigger=entry.phrase, confidence=1.0, category=entry.category,
                severity=entry.severity,
                position=MatchPosition(start=start, end=start + len(entry.phrase)),
                match_type=MatchType.EXACT,
            ))
        return matches

    def _fuzzy_matches(self, message: str) -> list[TriggerMatch]:
        """Sliding word-window comparison against crisis-tier phrases."""
        words = message.split(" ")
        matches = []
        for entry in self._crisis_entries:
            width = len(entry.phrase.split(" "))
            for i in range(len(words) - width + 1):
                window = " ".join(words[i:i + width])
                score = similarity(window, entry.phrase)
                if score > self._settings.fuzzy_threshold:
                    start = len(" ".join(words[:i])) + (1 if i > 0 else 0)
                    matches.append(TriggerMatch(
                        trigger=entry.phrase, confidence=score, category=entry.category,
                        severity=Severity.CRISIS,
                        position=MatchPosition(start=start, end=start + len(window)),
                        match_type=MatchType.FUZZY,
                    ))
                    break
        return matches

    def _pattern_matches(self, message: str) -> list[TriggerMatch]:
        matches = []
        for pattern, category in _CRISIS_PATTERNS:
            found = pattern.search(message)
            if found:
                matches.append(TriggerMatch(
                    trigger=found.group(0), confidence=self._settings.pattern_confidence,
                    category=category, severity=Severity.CRISIS,
                    position=MatchPosition(start=found.start(), end=found.end()),
                    match_type=MatchType.PATTERN,
                ))
        return matches

    def _recent_messages(self, context: ConversationContext) -> list[ConversationMessage]:
        cutoff = self._clock() - timedelta(minutes=self._settings.history_lookback_minutes)
        return [m for m in context.message_history if m.timestamp > cutoff]

    def _contextual_matches(self, message: str, context: ConversationContext) -> list[TriggerMatch]:
        matches = []
        whole = MatchPosition(start=0, end=len(message))

        distress_count = sum(
            1
            for m in self._recent_messages(context)
            for term in _HISTORY_DISTRESS_TERMS if term in normalize_text(m.content)
        )
        if distress_count >= self._settings.distress_repeat_threshold:
            matches.append(TriggerMatch(
                trigger="escalating_distress_pattern", confidence=0.8,
                category=TriggerCategory.SEVERE_DISTRESS, severity=Severity.HIGH_CONCERN,
                position=whole, match_type=MatchType.CONTEXT,
            ))

        flags = context.user_profile.vulnerability_flags if context.user_profile else []
        if _HIGH_RISK_FLAG in flags and any(term in message for term in _DISTRESS_TERMS):
            matches.append(TriggerMatch(
                trigger="high_risk_user_distress", confidence=0.9,
                category=TriggerCategory.SEVERE_DISTRESS, severity=Severity.CRISIS,
                position=whole, match_type=MatchType.CONTEXT,
            ))
        return matches

    @staticmethod
    def _risk_factors(matches: list[TriggerMatch], context: ConversationContext) -> list[str]:
        factors = []
        if sum(1 for m in matches if m.severity == Severity.CRISIS) > 1:
            factors.append("multiple_crisis_indicators")
        if any(m.confidence > 0.9 for m in matches):
            factors.append("high_confidence_triggers")
        profile = context.user_profile
        if profile and profile.vulnerability_flags:
            factors.append("vulnerable_user_profile")
        if profile and profile.previous_escalations:
            factors.append("previous_escalation_history")
        return factors

    def _contextual_concerns(self, context: ConversationContext) -> list[str]:
        concerns = []
        if len(self._recent_messages(context)) > self._settings.high_message_frequency:
            concerns.append("high_message_frequency")
        hour = self._clock().astimezone(self._timezone).hour
        if hour < self._settings.late_night_before_hour or hour > self._settings.late_night_after_hour:
            concerns.append("late_night_distress")
        return concerns

    @staticmethod
    def _recommended_actions(severity: Severity, matches: list[TriggerMatch]) -> list[str]:
        if severity == Severity.CRISIS:
            actions = ["immediate_nurse_notification", "crisis_resource_provision", "safety_plan_activation"]
            if any(m.category == TriggerCategory.LIFE_THREATENING for m in matches):
                actions.append("emergency_services_guidance")
            return actions
        if severity == Severity.HIGH_CONCERN:
            return ["nurse_notification", "support_resource_provision", "follow_up_scheduling"]
        if severity == Severity.EMOTIONAL_SUPPORT:
            return ["emotional_support_resources", "gentle_inquiry"]
        return []
