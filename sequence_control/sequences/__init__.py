"""Sequence authoring files — loads the YAML definitions shipped with the repo.

These are the source for `sync.sync_definitions()`, which pushes them into
the `sequences` table. The scheduler itself always reads the table.
"""

from pathlib import Path

import yaml

from sequence_control.config import SEQUENCES_DIR
from sequence_control.services.payloads import normalize_type


def normalize_definition(raw: dict) -> dict:
    """Fill defaults and canonicalize step types/delays of a definition."""
    trigger = str(raw.get("trigger") or raw.get("id") or "").strip()
    if not trigger:
        raise ValueError("Sequence definition needs an id or trigger")
    messages = []
    for step in raw.get("messages") or []:
        delay = float(step.get("delay", 0) or 0)
        if delay < 0:
            raise ValueError(f"Negative delay in sequence {trigger}: {delay}")
        messages.append({
            "type": normalize_type(step.get("type")).value,
            "content": str(step.get("content") or ""),
            "delay": delay,
        })
    return {
        "id": str(raw.get("id") or trigger),
        "trigger": trigger,
        "name": raw.get("name", trigger),
        "description": raw.get("description", ""),
        "active": raw.get("active", True) is not False,
        "messages": messages,
    }


def load_definitions(directory: Path = SEQUENCES_DIR) -> dict[str, dict]:
    """All YAML definitions in `directory`, keyed by id."""
    definitions: dict[str, dict] = {}
    for path in sorted(directory.glob("*.yaml")):
        definition = normalize_definition(yaml.safe_load(path.read_text()) or {})
        definitions[definition["id"]] = definition
    return definitions


def get_active_definitions(directory: Path = SEQUENCES_DIR) -> list[dict]:
    """Active authoring definitions."""
    return [d for d in load_definitions(directory).values() if d["active"]]
