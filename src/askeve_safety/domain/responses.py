"""
Ask Eve Assist Response Composer - User-facing crisis responses.
Builds a CrisisResponse from a SafetyResult using configured response bundles.
"""
from __future__ import annotations
import json
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any
import structlog

from askeve_safety.domain.models import (
    EMERGENCY_CONTACTS, ContactPriority, CrisisResource, CrisisResponse, EscalationMetadata, ResponseTone,
    ResponseType, SafetyResult, Severity, TriggerCategory,
)
from askeve_safety.exceptions import ConfigurationError

logger = structlog.get_logger(__name__)

DEFAULT_RESPONSES_PATH = Path(__file__).resolve().parent.parent / "data" / "responses.json"

MEDICAL_EMERGENCY_CATEGORIES = frozenset({
    TriggerCategory.LIFE_THREATENING, TriggerCategory.SEVERE_BLEEDING,
    TriggerCategory.EXTREME_PAIN, TriggerCategory.CONSCIOUSNESS_ISSUES,
})
MENTAL_HEALTH_CRISIS_CATEGORIES = frozenset({
    TriggerCategory.SUICIDE_IDEATION, TriggerCategory.SELF_HARM, TriggerCategory.SEVERE_DISTRESS,
})
IMMEDIATE_DANGER_CATEGORIES = frozenset({TriggerCategory.IMMEDIATE_DANGER})
SELF_HARM_CATEGORIES = frozenset({TriggerCategory.SUICIDE_IDEATION, TriggerCategory.SELF_HARM})

_CRISIS_BUNDLES = ("medical_emergency", "mental_health", "domestic_violence")

SUGGESTED_ACTIONS = {
    1: ("Learn more", "Contact your GP", "Visit The Eve Appeal website"),
    2: ("Contact GP", "Speak to a nurse", "Access support services"),
    3: ("Call NHS 111", "Contact GP urgently", "Consider A&E if severe"),
}
SELF_HARM_SUGGESTED_ACTIONS = ("Call Samaritans now", "Text SHOUT", "Call 999 if immediate danger")
SELF_HARM_IMMEDIATE_ACTIONS = ("Reach out for support", "Call crisis helpline", "Stay safe")
MEDICAL_SUGGESTED_ACTIONS = ("Call 999 immediately", "Get emergency medical help", "Contact emergency services")
MEDICAL_IMMEDIATE_ACTIONS = ("Call 999 immediately", "Get to A&E", "Seek immediate medical help")


@dataclass(frozen=True)
class ResponseBundle:
    message: str
    resources: tuple[CrisisResource, ...]


@dataclass(frozen=True)
class ResponseCatalog:
    """Configured crisis messages, resources and compliance disclaimers."""
    bundles: dict[str, ResponseBundle]
    general_disclaimer: str
    medical_disclaimer: str
    emergency_disclaimer: str

    def bundle(self, name: str) -> ResponseBundle:
        return self.bundles[name]

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> ResponseCatalog:
        bundles: dict[str, ResponseBundle] = {}
        for name in _CRISIS_BUNDLES:
            section = data["crisis_responses"][name]
            description = section.get("description", "")
            bundles[name] = ResponseBundle(
                message=section["message"],
                resources=tuple(CrisisResource.from_template(r, description)
                                for r in section["immediate_resources"]),
            )
        for name in ("high_concern", "general"):
            section = data[name]
            bundles[name] = ResponseBundle(
                message=section["message"],
                resources=tuple(CrisisResource.model_validate(r) for r in section["resources"]),
            )
        disclaimers = data["disclaimers"]
        return cls(
            bundles=bundles,
            general_disclaimer=disclaimers["general"],
            medical_disclaimer=disclaimers["medical"],
            emergency_disclaimer=disclaimers["emergency"],
        )


def load_response_catalog(path: str | Path | None = None) -> ResponseCatalog:
    """Load response bundles from JSON configuration."""
    config_path = Path(path) if path else DEFAULT_RESPONSES_PATH
    if not config_path.exists():
        logger.error("response_config_missing", path=str(config_path))
        raise ConfigurationError(f"Response configuration not found: {config_path}",
                                 details={"path": str(config_path)})
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            catalog = ResponseCatalog.from_mapping(json.load(f))
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in response configuration: {e}",
                                 details={"path": str(config_path)}, cause=e)
    except (KeyError, TypeError, ValueError) as e:
        raise ConfigurationError(f"Malformed response configuration: {e}",
                                 details={"path": str(config_path)}, cause=e)
    logger.info("response_catalog_loaded", path=str(config_path), bundles=len(catalog.bundles))
    return catalog


class ResponseComposer:
    """Turns a SafetyResult into the message and resources shown to the user."""

    def __init__(self, catalog: ResponseCatalog) -> None:
        self._catalog = catalog

    def compose(self, result: SafetyResult) -> CrisisResponse:
        """Compose a response. Falls back to a fixed safe response on any fault."""
        start = time.perf_counter()
        try:
            bundle = self._catalog.bundle(self._select_bundle(result))
            disclaimers = [self._catalog.general_disclaimer, self._catalog.medical_disclaimer]
            if result.severity == Severity.CRISIS:
                disclaimers.append(self._catalog.emergency_disclaimer)
            level = result.severity.escalation_level
            response = CrisisResponse(
                immediate_message=bundle.message,
                resources=list(bundle.resources),
                escalation_required=result.requires_escalation,
                follow_up_required=result.severity in (Severity.CRISIS, Severity.HIGH_CONCERN),
                disclaimers=disclaimers,
                escalation_level=level,
                response_type=ResponseType.for_level(level),
                tone=ResponseTone.for_level(level),
                **self._tier_guidance(level, result),
                response_time_ms=(time.perf_counter() - start) * 1000,
            )
        except Exception as e:
            logger.exception("crisis_response_generation_failed", error=str(e))
            return CrisisResponse.safe_default(response_time_ms=(time.perf_counter() - start) * 1000)

        logger.info("crisis_response_generated", severity=result.severity.value,
                    escalation_level=response.escalation_level,
                    escalation_required=response.escalation_required,
                    nurse_escalation=response.nurse_escalation,
                    resource_count=len(response.resources))
        return response

    @staticmethod
    def _tier_guidance(level: int, result: SafetyResult) -> dict[str, Any]:
        """Actions, emergency contacts and nurse-team hints for an escalation level."""
        if level < 4:
            contacts = [c for c in EMERGENCY_CONTACTS if c.priority == ContactPriority.URGENT] if level == 3 else []
            return {"suggested_actions": list(SUGGESTED_ACTIONS[level]), "emergency_contacts": contacts}
        self_harm = bool(result.categories & SELF_HARM_CATEGORIES) or "suicide_risk" in result.risk_factors
        return {
            "suggested_actions": list(SELF_HARM_SUGGESTED_ACTIONS if self_harm else MEDICAL_SUGGESTED_ACTIONS),
            "immediate_actions": list(SELF_HARM_IMMEDIATE_ACTIONS if self_harm else MEDICAL_IMMEDIATE_ACTIONS),
            "emergency_contacts": list(EMERGENCY_CONTACTS),
            "nurse_escalation": True,
            "escalation_metadata": EscalationMetadata.immediate(),
        }

    @staticmethod
    def _select_bundle(result: SafetyResult) -> str:
        if result.severity == Severity.CRISIS:
            categories = result.categories
            if categories & MEDICAL_EMERGENCY_CATEGORIES:
                return "medical_emergency"
            if categories & MENTAL_HEALTH_CRISIS_CATEGORIES:
                return "mental_health"
            if categories & IMMEDIATE_DANGER_CATEGORIES:
                return "domestic_violence"
            return "mental_health"
        if result.severity == Severity.HIGH_CONCERN:
            return "high_concern"
        return "general"
