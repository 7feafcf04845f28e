"""Authoring files → Supabase sync for sequence definitions.

Reads the YAML files under sequence_control/sequences/ and upserts them into
the `sequences` table. Files win for content; definitions that exist only in
the table (authored elsewhere) are left alone.
"""

import logging
from pathlib import Path

from sequence_control import supabase_client as db
from sequence_control.config import SEQUENCES_DIR
from sequence_control.sequences import load_definitions

logger = logging.getLogger(__name__)


def sync_definitions(directory: Path = SEQUENCES_DIR) -> dict:
    """Upsert every authoring file into the store.

    Returns dict with counts: {"synced": N, "active": N, "inactive": N}.
    """
    stats = {"synced": 0, "active": 0, "inactive": 0}
    if not directory.exists():
        return stats

    for seq_id, definition in load_definitions(directory).items():
        db.upsert_sequence_definition(dict(definition))
        stats["synced"] += 1
        stats["active" if definition["active"] else "inactive"] += 1
        logger.info("Synced sequence %s (%d steps)", seq_id, len(definition["messages"]))

    if stats["synced"]:
        db.log_action("sequences_synced", "sequence", "", f"{stats['synced']} definitions synced")
    return stats
