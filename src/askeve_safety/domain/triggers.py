"""
Ask Eve Assist Trigger Catalog - Immutable lexicon of categorized risk phrases.
Loaded once at startup from JSON configuration and injected into the classifier.
"""
from __future__ import annotations
import json
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator, Mapping
import structlog

from askeve_safety.domain.models import Severity, TriggerCategory
from askeve_safety.exceptions import TriggerCatalogError

logger = structlog.get_logger(__name__)

DEFAULT_CATALOG_PATH = Path(__file__).resolve().parent.parent / "data" / "triggers.json"

_NON_WORD = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    """Lowercase, trim, replace punctuation with spaces and collapse whitespace."""
    lowered = text.lower().strip()
    return _WHITESPACE.sub(" ", _NON_WORD.sub(" ", lowered)).strip()


@dataclass(frozen=True)
class TriggerEntry:
    severity: Severity
    group: str
    category: TriggerCategory
    phrase: str


@dataclass(frozen=True)
class TriggerCatalog:
    """Read-only severity -> group -> category -> phrases lexicon."""
    entries: tuple[TriggerEntry, ...]
    version: str = "unversioned"

    def __post_init__(self) -> None:
        if not self.entries:
            raise TriggerCatalogError("Trigger catalog is empty")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Mapping[str, Mapping[str, Any]]],
                     version: str = "unversioned") -> TriggerCatalog:
        """Build a catalog from already-parsed configuration data."""
        entries: list[TriggerEntry] = []
        seen: set[tuple[Severity, TriggerCategory, str]] = set()
        for severity_name, groups in data.items():
            try:
                severity = Severity(severity_name)
            except ValueError as e:
                raise TriggerCatalogError(f"Unknown severity tier in trigger catalog: {severity_name}", cause=e)
            if not isinstance(groups, Mapping):
                raise TriggerCatalogError(f"Severity tier '{severity_name}' must map groups to categories")
            for group, categories in groups.items():
                if not isinstance(categories, Mapping):
                    raise TriggerCatalogError(f"Group '{group}' must map categories to phrase lists")
                for category_name, phrases in categories.items():
                    try:
                        category = TriggerCategory(category_name)
                    except ValueError as e:
                        raise TriggerCatalogError(f"Unknown trigger category: {category_name}", cause=e)
                    if isinstance(phrases, str) or not isinstance(phrases, (list, tuple)):
                        raise TriggerCatalogError(f"Category '{category_name}' must hold a list of phrases")
                    for phrase in phrases:
                        if not isinstance(phrase, str):
                            raise TriggerCatalogError(f"Non-string phrase in category '{category_name}'")
                        normalized = normalize_text(phrase)
                        key = (severity, category, normalized)
                        if not normalized or key in seen:
                            continue
                        seen.add(key)
                        entries.append(TriggerEntry(severity, str(group), category, normalized))
        return cls(entries=tuple(entries), version=version)

    def iter_phrases(self, severity: Severity | None = None) -> Iterator[TriggerEntry]:
        for entry in self.entries:
            if severity is None or entry.severity == severity:
                yield entry

    def crisis_phrases(self) -> tuple[TriggerEntry, ...]:
        return tuple(self.iter_phrases(Severity.CRISIS))

    @property
    def phrase_count(self) -> int:
        return len(self.entries)

    @property
    def categories(self) -> frozenset[TriggerCategory]:
        return frozenset(e.category for e in self.entries)


def load_trigger_catalog(path: str | Path | None = None) -> TriggerCatalog:
    """
    Load the trigger catalog from JSON configuration.

    The document holds a ``version`` string and a ``tiers`` object keyed by
    severity tier, then group, then trigger category.
    """
    config_path = Path(path) if path else DEFAULT_CATALOG_PATH

    if not config_path.exists():
        logger.error("trigger_catalog_missing", path=str(config_path))
        raise TriggerCatalogError(f"Trigger catalog not found: {config_path}", path=str(config_path),
                                  cause=FileNotFoundError(str(config_path)))

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        logger.error("trigger_catalog_invalid_json", path=str(config_path), error=str(e))
        raise TriggerCatalogError(f"Invalid JSON in trigger catalog: {e}", path=str(config_path), cause=e)

    tiers = data.get("tiers") if isinstance(data, dict) else None
    if not isinstance(tiers, dict):
        raise TriggerCatalogError("Trigger catalog must contain a 'tiers' object", path=str(config_path))

    catalog = TriggerCatalog.from_mapping(tiers, version=str(data.get("version", "unversioned")))
    logger.info("trigger_catalog_loaded", path=str(config_path), count=catalog.phrase_count,
                version=catalog.version)
    return catalog
