"""Trigger resolver — maps inbound text to the sequence trigger to enroll.

Precedence: dynamic rule table (operator-editable, in Supabase) → static
alias table (config/triggers.yaml) → default trigger.
"""

from __future__ import annotations

import logging
import re
import unicodedata
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Callable, Mapping

logger = logging.getLogger(__name__)

# '#' followed by Unicode letters, digits or underscore
_HASHTAG_RE = re.compile(r"#(\w+)")

SOURCE_DYNAMIC = "dynamic"
SOURCE_ALIAS = "alias"
SOURCE_DEFAULT = "default"


@dataclass(frozen=True)
class Resolution:
    trigger: str
    cancel_triggers: list[str] = field(default_factory=list)
    source: str = SOURCE_DEFAULT

    @property
    def is_strong(self) -> bool:
        """Explicit signals may re-enroll an existing contact; the default may not."""
        return self.source in (SOURCE_DYNAMIC, SOURCE_ALIAS)


def normalize_tag(tag: str) -> str:
    """Normalize a hashtag key: NFKC, casefold, no leading '#'."""
    return unicodedata.normalize("NFKC", str(tag)).lstrip("#").strip().casefold()


def extract_hashtags(text: str) -> list[str]:
    """All hashtags in text, normalized and de-duplicated, first-seen order."""
    seen: list[str] = []
    for raw in _HASHTAG_RE.findall(unicodedata.normalize("NFKC", text or "")):
        tag = normalize_tag(raw)
        if tag and tag not in seen:
            seen.append(tag)
    return seen


def _parse_rule(row) -> Resolution | None:
    """Validate one dynamic rule row. Malformed rows are non-matches."""
    if not isinstance(row, Mapping):
        return None
    if row.get("active") is False:
        return None
    trigger = row.get("trigger")
    if not isinstance(trigger, str) or not trigger.strip():
        return None
    cancel = row.get("cancel_triggers") or []
    if not isinstance(cancel, (list, tuple)) or not all(isinstance(t, str) for t in cancel):
        return None
    return Resolution(trigger=trigger.strip(), cancel_triggers=list(cancel), source=SOURCE_DYNAMIC)


class TriggerResolver:
    """Resolves inbound text to a trigger using injected, immutable catalogs."""

    def __init__(
        self,
        aliases: Mapping[str, str],
        cancel_sets: Mapping[str, list[str]],
        rule_loader: Callable[[], Mapping[str, Mapping]] | None = None,
    ) -> None:
        self._aliases = MappingProxyType({normalize_tag(k): v for k, v in aliases.items()})
        self._cancel_sets = MappingProxyType({k: tuple(v) for k, v in cancel_sets.items()})
        self._rule_loader = rule_loader

    def _load_rules(self) -> dict[str, Mapping]:
        if self._rule_loader is None:
            return {}
        try:
            rules = self._rule_loader() or {}
        except Exception:
            logger.warning("Dynamic trigger rules unavailable, using static aliases", exc_info=True)
            return {}
        return {normalize_tag(k): v for k, v in rules.items()}

    def resolve(self, text: str, default_trigger: str) -> Resolution:
        tags = extract_hashtags(text)
        if not tags:
            return Resolution(trigger=default_trigger, source=SOURCE_DEFAULT)

        rules = self._load_rules()
        for tag in tags:
            resolution = _parse_rule(rules.get(tag)) if tag in rules else None
            if resolution:
                return resolution

        for tag in tags:
            trigger = self._aliases.get(tag)
            if trigger:
                return Resolution(
                    trigger=trigger,
                    cancel_triggers=list(self._cancel_sets.get(trigger, ())),
                    source=SOURCE_ALIAS,
                )

        return Resolution(trigger=default_trigger, source=SOURCE_DEFAULT)

    def cancel_set_for(self, trigger: str) -> list[str]:
        """Static companion triggers cancelled when `trigger` starts."""
        return list(self._cancel_sets.get(trigger, ()))
