"""
Unit tests for the message classifier.
"""
import itertools
from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from askeve_safety.config import ClassifierSettings
from askeve_safety.domain.classifier import MessageClassifier, levenshtein_distance, similarity
from askeve_safety.domain.models import (
    ConversationContext, MatchType, Severity, TriggerCategory, UserProfile,
)

from tests.askeve_safety.factories import FIXED_NOW, make_match


class TestEditDistance:
    """Tests for the edit-distance helpers."""

    def test_identical_strings(self) -> None:
        """Identical strings have zero distance and full similarity."""
        assert levenshtein_distance("want to die", "want to die") == 0
        assert similarity("want to die", "want to die") == 1.0

    def test_transposition_costs_two(self) -> None:
        """A swapped letter pair costs two edits."""
        assert levenshtein_distance("wnat", "want") == 2

    def test_empty_strings(self) -> None:
        assert similarity("", "") == 1.0
        assert levenshtein_distance("", "abc") == 3


class TestCrisisDetection:
    """Scenarios covering crisis-tier phrases."""

    def test_explicit_suicidal_statement(self, classifier, context) -> None:
        """Scenario A: exact suicidal phrases escalate as crisis."""
        result = classifier.analyze("I want to kill myself and end it all", context)

        assert result.severity == Severity.CRISIS
        assert result.requires_escalation is True
        assert TriggerCategory.SUICIDE_IDEATION in result.categories
        exact = {m.trigger for m in result.matches if m.match_type == MatchType.EXACT}
        assert {"kill myself", "end it all"} <= exact

    def test_typo_detected_by_fuzzy_match(self, classifier, context) -> None:
        """Scenario B: a transposed word still produces a fuzzy crisis match."""
        result = classifier.analyze("i wnat to die", context)

        fuzzy = [m for m in result.matches if m.match_type == MatchType.FUZZY]
        assert fuzzy
        assert fuzzy[0].trigger == "want to die"
        assert fuzzy[0].confidence > 0.8
        assert result.severity == Severity.CRISIS
        assert result.requires_escalation is True

    def test_verbatim_phrase_also_reported_as_fuzzy(self, classifier, context) -> None:
        """A verbatim crisis phrase yields both an exact and a full-confidence fuzzy match."""
        result = classifier.analyze("I want to die", context)

        by_type = {m.match_type: m for m in result.matches if m.trigger == "want to die"}
        assert by_type[MatchType.EXACT].confidence == 1.0
        assert by_type[MatchType.FUZZY].confidence == 1.0
        assert by_type[MatchType.FUZZY].position == by_type[MatchType.EXACT].position

    def test_medical_emergency_recommends_emergency_services(self, classifier, context) -> None:
        """Scenario E: chest pain plus breathing difficulty is life threatening."""
        result = classifier.analyze("I have chest pain and I can't breathe", context)

        life_threatening = [m for m in result.matches if m.category == TriggerCategory.LIFE_THREATENING]
        assert len(life_threatening) >= 2
        assert {"chest pain", "can t breathe"} <= {m.trigger for m in life_threatening}
        assert result.severity == Severity.CRISIS
        assert "emergency_services_guidance" in result.recommended_actions

    @pytest.mark.parametrize("message", [
        "KILL MYSELF",
        "honestly... i might kill myself!!",
        "Sometimes I think about how I could kill myself, you know?",
    ])
    def test_case_and_punctuation_insensitive(self, classifier, context, message) -> None:
        """Crisis phrases match regardless of case or surrounding punctuation."""
        result = classifier.analyze(message, context)
        assert result.severity == Severity.CRISIS
        assert result.requires_escalation is True

    def test_pattern_match_for_paraphrase(self, classifier, context) -> None:
        """Paraphrases outside the lexicon are caught by patterns."""
        result = classifier.analyze("I really don't want to live anymore", context)

        patterns = [m for m in result.matches if m.match_type == MatchType.PATTERN]
        assert patterns
        assert patterns[0].confidence == 0.9
        assert patterns[0].category == TriggerCategory.SUICIDE_IDEATION

    def test_match_positions_point_into_normalized_message(self, classifier, context) -> None:
        result = classifier.analyze("please help, chest pain", context)
        match = next(m for m in result.matches if m.match_type == MatchType.EXACT)
        assert match.position.end - match.position.start == len("chest pain")


class TestSeverityAggregation:
    """Tests for severity, confidence and escalation aggregation."""

    def test_empty_message(self, classifier, context) -> None:
        """An empty message yields no matches and general severity."""
        for message in ("", "   ", "?!..."):
            result = classifier.analyze(message, context)
            assert result.severity == Severity.GENERAL
            assert result.matches == []
            assert result.confidence == 0.0
            assert result.requires_escalation is False

    def test_general_health_question(self, classifier, context) -> None:
        result = classifier.analyze("What are the symptoms of ovarian cancer?", context)
        assert result.severity == Severity.GENERAL
        assert result.requires_escalation is False
        assert result.recommended_actions == []

    def test_emotional_support(self, classifier, context) -> None:
        result = classifier.analyze("I feel anxious about my results", context)
        assert result.severity == Severity.EMOTIONAL_SUPPORT
        assert result.requires_escalation is False
        assert result.recommended_actions == ["emotional_support_resources", "gentle_inquiry"]

    def test_high_concern_with_callback_request(self, classifier, context) -> None:
        """High concern escalates once confidence exceeds 0.8."""
        result = classifier.analyze("I found a lump and I want to speak to a nurse", context)
        assert result.severity == Severity.HIGH_CONCERN
        assert result.confidence > 0.8
        assert result.requires_escalation is True
        assert TriggerCategory.CALLBACK_REQUEST in result.categories

    def test_confidence_bounded(self, classifier, context) -> None:
        """Many overlapping triggers never push confidence above 1."""
        message = ("suicide suicidal kill myself want to die end it all end my life "
                   "chest pain can't breathe overdose collapsed")
        result = classifier.analyze(message, context)
        assert len(result.matches) > 5
        assert 0.0 <= result.confidence <= 1.0

    def test_aggregate_confidence_bonus(self) -> None:
        """Mean confidence plus 0.1 per match, bonus capped at 0.3."""
        one = [make_match(TriggerCategory.EMOTIONAL_SUPPORT, Severity.EMOTIONAL_SUPPORT, confidence=0.5)]
        assert MessageClassifier.aggregate_confidence(one) == pytest.approx(0.6)
        many = one * 5
        assert MessageClassifier.aggregate_confidence(many) == pytest.approx(0.8)
        assert MessageClassifier.aggregate_confidence([]) == 0.0

    def test_adding_crisis_match_never_lowers_severity(self) -> None:
        """Severity aggregation is monotonic."""
        crisis = make_match(TriggerCategory.SELF_HARM, Severity.CRISIS)
        for severity in Severity:
            base = [make_match(TriggerCategory.GENERAL_WELLBEING, severity)]
            before = Severity.highest(m.severity for m in base)
            after = Severity.highest(m.severity for m in base + [crisis])
            assert after.priority >= before.priority
            assert after == Severity.CRISIS

    def test_deterministic(self, classifier, context) -> None:
        """Same input gives the same result apart from timing."""
        first = classifier.analyze("I can't cope, I want to die", context)
        second = classifier.analyze("I can't cope, I want to die", context)
        exclude = {"analysis_time_ms"}
        assert first.model_dump(exclude=exclude) == second.model_dump(exclude=exclude)


class TestContextualAnalysis:
    """Tests for history and profile based detection."""

    def test_repeated_distress_in_history(self, classifier, history_message) -> None:
        """Three recent distress mentions add a high concern context match."""
        context = ConversationContext(
            user_id="user-1", session_id="s-1",
            message_history=[history_message("things are getting worse", minutes_ago=m) for m in (10, 20, 30)],
        )
        result = classifier.analyze("I had another bad day", context)

        context_matches = [m for m in result.matches if m.match_type == MatchType.CONTEXT]
        assert [m.trigger for m in context_matches] == ["escalating_distress_pattern"]
        assert context_matches[0].confidence == 0.8
        assert result.severity == Severity.HIGH_CONCERN
        assert result.requires_escalation is True

    def test_messages_outside_lookback_ignored(self, classifier, history_message) -> None:
        """Only messages inside the 60-minute lookback are counted."""
        context = ConversationContext(
            user_id="user-1", session_id="s-1",
            message_history=[
                history_message("things are getting worse", minutes_ago=61),
                history_message("things are getting worse", minutes_ago=90),
                history_message("things are getting worse", minutes_ago=120),
                history_message("getting worse", minutes_ago=5),
            ],
        )
        result = classifier.analyze("I had another bad day", context)
        assert result.matches == []

    def test_assistant_messages_count_towards_distress(self, classifier, history_message) -> None:
        """Distress terms are counted across the whole recent history, whatever the role."""
        context = ConversationContext(
            user_id="user-1", session_id="s-1",
            message_history=[
                history_message("getting worse", minutes_ago=5),
                history_message("I'm sorry things are getting worse", minutes_ago=4, role="assistant"),
                history_message("Is it getting worse at night?", minutes_ago=3, role="assistant"),
            ],
        )
        result = classifier.analyze("I had another bad day", context)
        assert [m.trigger for m in result.matches] == ["escalating_distress_pattern"]

    def test_high_risk_profile_with_distress(self, classifier) -> None:
        """A high-risk user voicing distress is treated as crisis."""
        context = ConversationContext(
            user_id="user-1", session_id="s-1",
            user_profile=UserProfile(vulnerability_flags=["high_risk"], previous_escalations=["esc-1"]),
        )
        result = classifier.analyze("I feel so overwhelmed today", context)

        assert result.severity == Severity.CRISIS
        assert "high_risk_user_distress" in {m.trigger for m in result.matches}
        assert "vulnerable_user_profile" in result.risk_factors
        assert "previous_escalation_history" in result.risk_factors

    def test_late_night_concern(self, trigger_catalog, context) -> None:
        """Messages after 22:00 UK time carry a late-night concern."""
        late = datetime(2024, 1, 15, 23, 30, tzinfo=timezone.utc)
        classifier = MessageClassifier(trigger_catalog, ClassifierSettings(), clock=lambda: late)
        result = classifier.analyze("hello", context)
        assert "late_night_distress" in result.contextual_concerns

    def test_daytime_has_no_late_night_concern(self, classifier, context) -> None:
        result = classifier.analyze("hello", context)
        assert "late_night_distress" not in result.contextual_concerns

    def test_high_message_frequency(self, classifier, history_message) -> None:
        context = ConversationContext(
            user_id="user-1", session_id="s-1",
            message_history=[history_message(f"message {i}", minutes_ago=i + 1) for i in range(11)],
        )
        result = classifier.analyze("hello", context)
        assert "high_message_frequency" in result.contextual_concerns


class TestFailSafe:
    """Internal faults must never suppress escalation."""

    def test_internal_error_returns_crisis(self, classifier, context) -> None:
        with patch.object(classifier, "_exact_matches", side_effect=RuntimeError("lexicon exploded")):
            result = classifier.analyze("what time is it", context)

        assert result.severity == Severity.CRISIS
        assert result.confidence == 1.0
        assert result.requires_escalation is True
        assert result.risk_factors == ["analysis_failure"]
        assert result.recommended_actions == ["immediate_human_review"]

    def test_internal_error_is_logged(self, classifier, context) -> None:
        with patch.object(classifier, "_pattern_matches", side_effect=ValueError("bad pattern")), \
                patch("askeve_safety.domain.classifier.logger") as mock_logger:
            classifier.analyze("hello", context)
        mock_logger.exception.assert_called_once()
        assert mock_logger.exception.call_args[0][0] == "safety_analysis_failed"

    def test_budget_overrun_logged_not_failed(self, trigger_catalog, context) -> None:
        settings = ClassifierSettings(detection_budget_ms=1)
        classifier = MessageClassifier(trigger_catalog, settings, clock=lambda: FIXED_NOW)
        ticks = itertools.chain([0.0], itertools.repeat(0.5))
        with patch("askeve_safety.domain.classifier.time.perf_counter", side_effect=ticks), \
                patch("askeve_safety.domain.classifier.logger") as mock_logger:
            result = classifier.analyze("hello", context)
        assert result.analysis_time_ms == pytest.approx(500.0)
        mock_logger.warning.assert_called_once()
        assert mock_logger.warning.call_args[0][0] == "crisis_detection_budget_exceeded"
