"""
Ask Eve Assist Safety Core - Domain models.
Value objects and entities shared by classification, response composition and escalation dispatch.
"""
from __future__ import annotations
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Literal
from uuid import uuid4
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from askeve_safety.exceptions import FlagsAlreadyAppliedError


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _require_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        raise ValueError("timestamp must be timezone-aware")
    return value.astimezone(timezone.utc)


class Severity(str, Enum):
    """Risk severity tiers, highest priority first."""
    CRISIS = "crisis"
    HIGH_CONCERN = "high_concern"
    EMOTIONAL_SUPPORT = "emotional_support"
    GENERAL = "general"

    @property
    def priority(self) -> int:
        return _SEVERITY_PRIORITY[self]

    @property
    def escalation_level(self) -> int:
        """Response tier, 1 for general up to 4 for crisis."""
        return _SEVERITY_PRIORITY[self] + 1

    @classmethod
    def highest(cls, severities: Iterable[Severity]) -> Severity:
        """Highest-priority severity in the iterable, GENERAL when empty."""
        return max(severities, key=lambda s: s.priority, default=cls.GENERAL)


_SEVERITY_PRIORITY = {
    Severity.CRISIS: 3,
    Severity.HIGH_CONCERN: 2,
    Severity.EMOTIONAL_SUPPORT: 1,
    Severity.GENERAL: 0,
}


class TriggerCategory(str, Enum):
    SUICIDE_IDEATION = "suicide_ideation"
    SELF_HARM = "self_harm"
    SEVERE_DISTRESS = "severe_distress"
    LIFE_THREATENING = "life_threatening"
    SEVERE_BLEEDING = "severe_bleeding"
    EXTREME_PAIN = "extreme_pain"
    CONSCIOUSNESS_ISSUES = "consciousness_issues"
    IMMEDIATE_DANGER = "immediate_danger"
    MEDICAL_CONCERNS = "medical_concerns"
    MENTAL_HEALTH_CONCERNS = "mental_health_concerns"
    SOCIAL_CONCERNS = "social_concerns"
    EMOTIONAL_SUPPORT = "emotional_support"
    GENERAL_WELLBEING = "general_wellbeing"
    CALLBACK_REQUEST = "callback_request"
    CRISIS_SUPPORT = "crisis_support"


class MatchType(str, Enum):
    EXACT = "exact"
    FUZZY = "fuzzy"
    PATTERN = "pattern"
    CONTEXT = "context"


class UrgencyLevel(str, Enum):
    IMMEDIATE = "immediate"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @classmethod
    def from_severity(cls, severity: Severity) -> UrgencyLevel:
        """Map severity tier to escalation urgency."""
        mapping = {Severity.CRISIS: cls.IMMEDIATE, Severity.HIGH_CONCERN: cls.HIGH,
                   Severity.EMOTIONAL_SUPPORT: cls.MEDIUM}
        return mapping.get(severity, cls.LOW)


class ResponseType(str, Enum):
    """Kind of user-facing response, one per escalation level."""
    INFORMATION = "information"
    CONCERN = "concern"
    WARNING = "warning"
    CRISIS = "crisis"

    @classmethod
    def for_level(cls, level: int) -> ResponseType:
        return list(cls)[level - 1]


class ResponseTone(str, Enum):
    INFORMATIVE = "informative"
    SUPPORTIVE = "supportive"
    URGENT = "urgent"
    IMMEDIATE = "immediate"

    @classmethod
    def for_level(cls, level: int) -> ResponseTone:
        return list(cls)[level - 1]


class ContactPriority(str, Enum):
    IMMEDIATE = "immediate"
    URGENT = "urgent"
    STANDARD = "standard"


class EscalationType(str, Enum):
    CRISIS = "crisis"
    NURSE_CALLBACK = "nurse_callback"
    GENERAL_SUPPORT = "general_support"


class ContactMethod(str, Enum):
    PHONE = "phone"
    EMAIL = "email"
    BOTH = "both"


class ChannelKind(str, Enum):
    TEAMS = "teams"
    EMAIL = "email"

    @property
    def label(self) -> str:
        return "Teams" if self is ChannelKind.TEAMS else "Email"


class DeliveryState(str, Enum):
    SENT = "sent"
    FAILED = "failed"
    NOT_CONFIGURED = "not_configured"


class OverallStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    PARTIAL = "partial"
    FAILED = "failed"


class FollowUpStatus(str, Enum):
    RESOLVED = "resolved"
    ESCALATED = "escalated"
    TIMEOUT = "timeout"


class SafetyModel(BaseModel):
    """Frozen base with camelCase aliases for exchange with the conversation layer."""
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)


class MatchPosition(SafetyModel):
    start: int = Field(..., ge=0)
    end: int = Field(..., ge=0)

    @model_validator(mode="after")
    def validate_span(self) -> MatchPosition:
        if self.end < self.start:
            raise ValueError("position end must not precede start")
        return self


class TriggerMatch(SafetyModel):
    """A single phrase, pattern or context hit produced during one classification."""
    trigger: str = Field(..., min_length=1)
    confidence: float = Field(..., ge=0.0, le=1.0)
    category: TriggerCategory
    severity: Severity
    position: MatchPosition
    match_type: MatchType


class SafetyResult(SafetyModel):
    """Outcome of classifying one inbound message."""
    severity: Severity
    confidence: float = Field(..., ge=0.0, le=1.0)
    requires_escalation: bool
    matches: list[TriggerMatch] = Field(default_factory=list)
    risk_factors: list[str] = Field(default_factory=list)
    contextual_concerns: list[str] = Field(default_factory=list)
    analysis_time_ms: float = Field(default=0.0, ge=0.0, alias="analysisTime")
    recommended_actions: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_severity_matches(self) -> SafetyResult:
        expected = Severity.highest(m.severity for m in self.matches)
        if self.severity != expected:
            raise ValueError(f"severity {self.severity.value} does not match highest match severity {expected.value}")
        return self

    @property
    def categories(self) -> set[TriggerCategory]:
        return {m.category for m in self.matches}

    @classmethod
    def fail_safe(cls, analysis_time_ms: float = 0.0) -> SafetyResult:
        """Conservative crisis result used when analysis itself fails."""
        return cls(
            severity=Severity.CRISIS,
            confidence=1.0,
            requires_escalation=True,
            matches=[TriggerMatch(
                trigger="analysis_failure", confidence=1.0, category=TriggerCategory.SEVERE_DISTRESS,
                severity=Severity.CRISIS, position=MatchPosition(start=0, end=0),
                match_type=MatchType.CONTEXT,
            )],
            risk_factors=["analysis_failure"],
            contextual_concerns=["system_error"],
            analysis_time_ms=analysis_time_ms,
            recommended_actions=["immediate_human_review"],
        )


class CrisisResource(SafetyModel):
    name: str
    contact: str
    description: str = ""
    availability: str = "24/7"

    @classmethod
    def from_template(cls, template: str, description: str, availability: str = "24/7") -> CrisisResource:
        """Parse a configured 'Name: contact' template."""
        name, _, contact = template.partition(":")
        return cls(name=name.strip(), contact=contact.strip(), description=description,
                   availability=availability)


class EmergencyContact(SafetyModel):
    service: str
    number: str
    availability: str = "24/7"
    priority: ContactPriority | None = None


EMERGENCY_CONTACTS: tuple[EmergencyContact, ...] = (
    EmergencyContact(service="Emergency Services", number="999", priority=ContactPriority.IMMEDIATE),
    EmergencyContact(service="NHS 111", number="111", priority=ContactPriority.URGENT),
    EmergencyContact(service="Samaritans", number="116 123", priority=ContactPriority.URGENT),
    EmergencyContact(service="Crisis Text Line", number="85258", priority=ContactPriority.URGENT),
)


class EscalationMetadata(SafetyModel):
    """Nurse-team handling hints attached to crisis-level responses."""
    priority: UrgencyLevel
    requires_callback: bool
    estimated_response_time: str
    nurse_team_alert: bool

    @classmethod
    def immediate(cls) -> EscalationMetadata:
        return cls(priority=UrgencyLevel.IMMEDIATE, requires_callback=True,
                   estimated_response_time="Immediate", nurse_team_alert=True)


class CrisisResponse(SafetyModel):
    """
    User-facing projection of a SafetyResult.

    Responses are tiered by escalation level, from 1 (information) to
    4 (crisis). Response type and tone are fixed by the level.
    """
    immediate_message: str = Field(..., min_length=1)
    resources: list[CrisisResource] = Field(default_factory=list)
    escalation_required: bool
    follow_up_required: bool
    disclaimers: list[str] = Field(default_factory=list)
    escalation_level: int = Field(default=1, ge=1, le=4)
    response_type: ResponseType = ResponseType.INFORMATION
    tone: ResponseTone = ResponseTone.INFORMATIVE
    suggested_actions: list[str] = Field(default_factory=list)
    immediate_actions: list[str] = Field(default_factory=list)
    emergency_contacts: list[EmergencyContact] = Field(default_factory=list)
    nurse_escalation: bool = False
    escalation_metadata: EscalationMetadata | None = None
    response_time_ms: float = Field(default=0.0, ge=0.0, alias="responseTime")

    @model_validator(mode="after")
    def validate_tier(self) -> CrisisResponse:
        if self.response_type != ResponseType.for_level(self.escalation_level):
            raise ValueError(f"response type {self.response_type.value} does not match "
                             f"escalation level {self.escalation_level}")
        if self.tone != ResponseTone.for_level(self.escalation_level):
            raise ValueError(f"tone {self.tone.value} does not match escalation level {self.escalation_level}")
        return self

    @classmethod
    def safe_default(cls, response_time_ms: float = 0.0) -> CrisisResponse:
        return cls(
            immediate_message=("I'm concerned about what you've shared. Please contact emergency services "
                               "at 999 if you're in immediate danger, or call Samaritans at 116 123 for support."),
            resources=[
                CrisisResource(name="Emergency Services", contact="999",
                               description="For immediate emergencies"),
                CrisisResource(name="Samaritans", contact="116 123", description="Emotional support"),
            ],
            escalation_required=True,
            follow_up_required=True,
            disclaimers=[
                "This is general health information only and should not replace professional medical advice.",
                "If this is an emergency, call 999 immediately.",
            ],
            escalation_level=4,
            response_type=ResponseType.CRISIS,
            tone=ResponseTone.IMMEDIATE,
            suggested_actions=["Call 999 if immediate danger", "Call Samaritans now"],
            emergency_contacts=list(EMERGENCY_CONTACTS),
            nurse_escalation=True,
            escalation_metadata=EscalationMetadata.immediate(),
            response_time_ms=response_time_ms,
        )


class ContactDetails(SafetyModel):
    name: str | None = None
    phone: str | None = None
    email: EmailStr | None = None
    preferred_contact: ContactMethod
    best_time_to_call: str | None = None
    alternative_contact: str | None = None

    @model_validator(mode="after")
    def validate_reachable(self) -> ContactDetails:
        if self.preferred_contact in (ContactMethod.PHONE, ContactMethod.BOTH) and not self.phone:
            raise ValueError("phone is required for phone contact")
        if self.preferred_contact in (ContactMethod.EMAIL, ContactMethod.BOTH) and not self.email:
            raise ValueError("email is required for email contact")
        return self


class ConversationMessage(SafetyModel):
    role: Literal["user", "assistant"]
    content: str
    timestamp: datetime

    @field_validator("timestamp")
    @classmethod
    def validate_timestamp(cls, v: datetime) -> datetime:
        return _require_aware(v)


class UserProfile(SafetyModel):
    age: int | None = Field(default=None, ge=0, le=130)
    vulnerability_flags: list[str] = Field(default_factory=list)
    previous_escalations: list[str] = Field(default_factory=list)


class ConversationContext(SafetyModel):
    """Conversation state supplied by the conversation engine."""
    user_id: str = Field(..., min_length=1)
    session_id: str = Field(..., min_length=1)
    message_history: list[ConversationMessage] = Field(default_factory=list)
    user_profile: UserProfile | None = None


class DispatchFlags(SafetyModel):
    notification_sent: bool = False
    nurse_team_alerted: bool = False
    response_generated: bool = False


class EscalationEvent(BaseModel):
    """
    Escalation record persisted by the escalation subsystem.

    Every field is frozen. The dispatch flags start unset and are written once
    through apply_dispatch_flags after dispatch completes; assigning them
    directly raises a pydantic ValidationError.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, validate_assignment=True)

    id: str = Field(default_factory=lambda: str(uuid4()), min_length=1, frozen=True)
    user_id: str = Field(..., min_length=1, frozen=True)
    session_id: str = Field(..., min_length=1, frozen=True)
    severity: Severity = Field(..., frozen=True)
    safety_result: SafetyResult = Field(..., frozen=True)
    user_message: str = Field(..., frozen=True)
    timestamp: datetime = Field(default_factory=_utcnow, frozen=True)
    notification_sent: bool = Field(default=False, frozen=True)
    nurse_team_alerted: bool = Field(default=False, frozen=True)
    response_generated: bool = Field(default=False, frozen=True)
    flags_updated_at: datetime | None = Field(default=None, frozen=True)
    contact_details: ContactDetails | None = Field(default=None, frozen=True)
    escalation_type: EscalationType = Field(default=EscalationType.GENERAL_SUPPORT, frozen=True)
    callback_requested: bool = Field(default=False, frozen=True)
    preferred_contact_method: str | None = Field(default=None, frozen=True)
    urgency_level: UrgencyLevel = Field(default=UrgencyLevel.MEDIUM, frozen=True)

    @field_validator("timestamp")
    @classmethod
    def validate_timestamp(cls, v: datetime) -> datetime:
        return _require_aware(v)

    @model_validator(mode="after")
    def validate_consistency(self) -> EscalationEvent:
        if self.severity != self.safety_result.severity:
            raise ValueError("event severity must equal safety result severity")
        if self.urgency_level != UrgencyLevel.from_severity(self.severity):
            raise ValueError(f"urgency {self.urgency_level.value} inconsistent with severity {self.severity.value}")
        return self

    @property
    def flags(self) -> DispatchFlags:
        return DispatchFlags(notification_sent=self.notification_sent,
                             nurse_team_alerted=self.nurse_team_alerted,
                             response_generated=self.response_generated)

    def apply_dispatch_flags(self, flags: DispatchFlags) -> None:
        if self.flags_updated_at is not None:
            raise FlagsAlreadyAppliedError(self.id)
        # Only write path for the frozen flag fields.
        update = {**flags.model_dump(), "flags_updated_at": _utcnow()}
        self.__dict__.update(update)
        self.__pydantic_fields_set__.update(update)


class NotificationPayload(SafetyModel):
    """Alert content handed to every channel; derived from an EscalationEvent."""
    escalation_id: str = Field(..., min_length=1)
    severity: Severity
    user_id: str = Field(..., min_length=1)
    summary: str
    trigger_matches: list[str] = Field(default_factory=list)
    timestamp: datetime
    urgency: UrgencyLevel
    requires_callback: bool
    contact_details: ContactDetails | None = None
    escalation_type: EscalationType | None = None
    preferred_contact_method: str | None = None

    @field_validator("timestamp")
    @classmethod
    def validate_timestamp(cls, v: datetime) -> datetime:
        return _require_aware(v)

    @model_validator(mode="after")
    def validate_urgency(self) -> NotificationPayload:
        if self.urgency != UrgencyLevel.from_severity(self.severity):
            raise ValueError(f"urgency {self.urgency.value} inconsistent with severity {self.severity.value}")
        return self

    @classmethod
    def from_event(cls, event: EscalationEvent, summary: str) -> NotificationPayload:
        return cls(
            escalation_id=event.id,
            severity=event.severity,
            user_id=event.user_id,
            summary=summary,
            trigger_matches=[m.trigger for m in event.safety_result.matches],
            timestamp=event.timestamp,
            urgency=event.urgency_level,
            requires_callback=event.severity == Severity.CRISIS or event.callback_requested,
            contact_details=event.contact_details,
            escalation_type=event.escalation_type,
            preferred_contact_method=event.preferred_contact_method,
        )


class ChannelAuditTrail(SafetyModel):
    escalation_id: str
    channel: ChannelKind
    timestamp: datetime = Field(default_factory=_utcnow)
    message_id: str | None = None
    identifiers: dict[str, Any] = Field(default_factory=dict)


class ChannelDeliveryResult(SafetyModel):
    """Outcome of one channel's dispatch attempt sequence."""
    channel: ChannelKind
    status: DeliveryState
    message_id: str | None = None
    delivered_at: datetime | None = None
    retry_count: int = Field(default=0, ge=0)
    error: str | None = None
    audit_trail: ChannelAuditTrail

    @model_validator(mode="after")
    def validate_status(self) -> ChannelDeliveryResult:
        if self.status == DeliveryState.NOT_CONFIGURED:
            raise ValueError("channel results are either sent or failed")
        if self.status == DeliveryState.SENT and (not self.message_id or self.delivered_at is None):
            raise ValueError("sent results require message_id and delivered_at")
        return self

    @property
    def succeeded(self) -> bool:
        return self.status == DeliveryState.SENT


class DeliveryConfirmation(SafetyModel):
    escalation_id: str
    teams_message_id: str | None = None
    email_message_id: str | None = None
    delivered_at: datetime | None = None
    channels: list[ChannelKind] = Field(default_factory=list)


class DualDeliveryResult(SafetyModel):
    teams_delivered: bool
    email_delivered: bool
    overall_success: bool
    failures: list[str] = Field(default_factory=list)
    delivery_confirmation: DeliveryConfirmation
    retry_count: int = Field(default=0, ge=0)
    teams_result: ChannelDeliveryResult | None = None
    email_result: ChannelDeliveryResult | None = None

    @model_validator(mode="after")
    def validate_outcome(self) -> DualDeliveryResult:
        if self.overall_success != (self.teams_delivered or self.email_delivered):
            raise ValueError("overall_success must hold exactly when at least one channel delivered")
        delivered = {ChannelKind.TEAMS: self.teams_delivered, ChannelKind.EMAIL: self.email_delivered}
        if any(not delivered[c] for c in self.delivery_confirmation.channels):
            raise ValueError("confirmation lists a channel that did not deliver")
        return self


class DeliveryStatus(SafetyModel):
    """Queryable per-escalation delivery record."""
    escalation_id: str
    teams_status: DeliveryState
    email_status: DeliveryState
    overall_status: OverallStatus
    updated_at: datetime = Field(default_factory=_utcnow)

    @staticmethod
    def compute_overall(states: Iterable[DeliveryState]) -> OverallStatus:
        attempted = [s for s in states if s != DeliveryState.NOT_CONFIGURED]
        if attempted and all(s == DeliveryState.SENT for s in attempted):
            return OverallStatus.SENT
        if any(s == DeliveryState.SENT for s in attempted):
            return OverallStatus.PARTIAL
        return OverallStatus.FAILED

    @classmethod
    def from_states(cls, escalation_id: str, teams_status: DeliveryState,
                    email_status: DeliveryState) -> DeliveryStatus:
        return cls(escalation_id=escalation_id, teams_status=teams_status, email_status=email_status,
                   overall_status=cls.compute_overall((teams_status, email_status)))
