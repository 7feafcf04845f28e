"""Static trigger catalog — loaded once from config/triggers.yaml."""

from functools import lru_cache
from pathlib import Path

import yaml

from sequence_control import supabase_client as db
from sequence_control.config import TRIGGERS_FILE
from sequence_control.services.suppression import SuppressionPolicy
from sequence_control.services.trigger_resolver import TriggerResolver


def load_catalog(path: Path = TRIGGERS_FILE) -> dict:
    """Read the catalog file. A missing file means an empty catalog."""
    if not path.exists():
        return {}
    data = yaml.safe_load(path.read_text()) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain a mapping, got {type(data).__name__}")
    return data


@lru_cache(maxsize=1)
def get_resolver() -> TriggerResolver:
    """Process-wide resolver over the static catalog + the trigger_rules table."""
    data = load_catalog()
    return TriggerResolver(
        aliases=data.get("aliases") or {},
        cancel_sets=data.get("cancel_sets") or {},
        rule_loader=db.get_trigger_rules,
    )


@lru_cache(maxsize=1)
def get_policy() -> SuppressionPolicy:
    """Process-wide suppression policy from the catalog's suppression section."""
    return SuppressionPolicy.from_config(load_catalog().get("suppression"))
