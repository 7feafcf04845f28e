"""Enrollment suppression — decides whether a contact may (re-)enter a sequence.

Checked at first enrollment and whenever a later inbound message resolves
to a trigger.
"""

from __future__ import annotations

from dataclasses import dataclass


def _fold(values) -> frozenset[str]:
    return frozenset(str(v).casefold() for v in values or ())


def _first(values) -> str:
    return str(values[0]) if values else ""


@dataclass(frozen=True)
class SuppressionPolicy:
    converted_tags: frozenset[str] = frozenset()
    converted_stages: frozenset[str] = frozenset()
    intake_tags: frozenset[str] = frozenset()
    intake_stages: frozenset[str] = frozenset()
    top_of_funnel_triggers: frozenset[str] = frozenset()
    # Values the funnel hooks write: the first entry of each configured list
    converted_tag: str = ""
    converted_stage: str = ""
    intake_tag: str = ""

    @classmethod
    def from_config(cls, data: dict | None) -> "SuppressionPolicy":
        data = data or {}
        return cls(
            converted_tags=_fold(data.get("converted_tags")),
            converted_stages=_fold(data.get("converted_stages")),
            intake_tags=_fold(data.get("intake_tags")),
            intake_stages=_fold(data.get("intake_stages")),
            top_of_funnel_triggers=frozenset(data.get("top_of_funnel_triggers") or ()),
            converted_tag=_first(data.get("converted_tags")),
            converted_stage=_first(data.get("converted_stages")),
            intake_tag=_first(data.get("intake_tags")),
        )

    def reason(self, contact: dict, trigger: str) -> str | None:
        """Why enrollment is blocked, or None when it is allowed."""
        contact = contact or {}
        tags = _fold(contact.get("tags"))
        stage = str(contact.get("stage") or "").casefold()

        if contact.get("seq_paused"):
            return "paused"
        if stage in self.converted_stages or tags & self.converted_tags:
            return "converted"
        completed_intake = stage in self.intake_stages or bool(tags & self.intake_tags)
        if completed_intake and trigger in self.top_of_funnel_triggers:
            return "intake_completed"
        return None

    def should_block(self, contact: dict, trigger: str) -> bool:
        return self.reason(contact, trigger) is not None
