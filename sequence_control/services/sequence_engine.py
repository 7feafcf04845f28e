"""Sequence engine — enrollment (cohort scheduling) and cancellation."""

import logging
import random
from datetime import datetime, timedelta, timezone

from sequence_control import supabase_client as db
from sequence_control.catalog import get_policy
from sequence_control.config import SHARD_COUNT, STEP_TIEBREAK_MS
from sequence_control.services.payloads import normalize_type

logger = logging.getLogger(__name__)

JOB_STATUSES = ("pending", "sent", "error")


def _as_utc(moment: datetime | None) -> datetime:
    if moment is None:
        return datetime.now(timezone.utc)
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def build_cohort(
    contact_id: str,
    trigger: str,
    messages: list[dict],
    start_at: datetime,
) -> list[dict]:
    """Compute one job per step.

    Each step's delay is minutes after the previous step, so due times are
    the running sum of delays plus an ordinal offset of STEP_TIEBREAK_MS per
    index. The offset keeps steps that land on the same minute strictly ordered.
    """
    start_at = _as_utc(start_at)
    created_at = db.now_iso()
    jobs = []
    elapsed_minutes = 0.0
    for idx, step in enumerate(messages):
        elapsed_minutes += max(float(step.get("delay") or 0), 0.0)
        due_at = start_at + timedelta(
            minutes=elapsed_minutes,
            milliseconds=idx * STEP_TIEBREAK_MS,
        )
        jobs.append({
            "contact_id": contact_id,
            "trigger": trigger,
            "step_index": idx,
            "payload": {
                "type": normalize_type(step.get("type")).value,
                "content": str(step.get("content") or ""),
            },
            "due_at": db.now_iso(due_at),
            "status": "pending",
            "shard": random.randrange(SHARD_COUNT),
            "created_at": created_at,
        })
    return jobs


def enroll(contact_id: str, trigger: str, start_at: datetime | None = None) -> int:
    """Schedule every step of the `trigger` sequence for a contact.

    Idempotent per (contact, trigger): the pending cohort is replaced, never
    duplicated. Returns the number of steps scheduled (0 when the definition
    is missing, inactive or empty; stale pending jobs are still purged).
    A contact the suppression policy blocks for `trigger` gets nothing
    scheduled and keeps its existing jobs.
    """
    contact = db.get_contact(contact_id)
    reason = get_policy().reason(contact, trigger) if contact else None
    if reason:
        logger.info("Enrollment of %s in %s suppressed: %s", contact_id, trigger, reason)
        return 0

    seq = db.get_sequence_definition(trigger)
    if not seq:
        db.delete_pending_jobs(contact_id, [trigger])
        logger.warning("No sequence definition for trigger %s (contact %s)", trigger, contact_id)
        return 0

    messages = seq.get("messages")
    if not isinstance(messages, list):
        messages = []
    if seq.get("active") is False or not messages:
        db.delete_pending_jobs(contact_id, [trigger])
        logger.info("Sequence %s inactive or empty, nothing scheduled for %s", trigger, contact_id)
        return 0

    jobs = build_cohort(contact_id, trigger, messages, _as_utc(start_at))

    # Purge + insert + contact flag commit together
    db.rpc("enroll_sequence_cohort", {
        "p_contact_id": contact_id,
        "p_trigger": trigger,
        "p_jobs": [
            {k: job[k] for k in ("step_index", "payload", "due_at", "shard", "created_at")}
            for job in jobs
        ],
    })

    db.log_action(
        "sequence_enrolled",
        "contact",
        contact_id,
        f"{contact_id} enrolled in {seq.get('name') or trigger}: {len(jobs)} steps",
    )
    return len(jobs)


def cancel(contact_id: str, triggers: list[str]) -> int:
    """Delete pending jobs of the given triggers for a contact. Returns count."""
    if not contact_id or not triggers:
        return 0
    deleted = db.delete_pending_jobs(contact_id, list(triggers))
    if deleted:
        db.log_action(
            "sequence_cancelled", "contact", contact_id,
            f"Cancelled {len(deleted)} pending jobs for {', '.join(triggers)}",
        )
    return len(deleted)


def cancel_all(contact_id: str) -> int:
    """Delete every pending job for a contact (opt-out, conversion)."""
    if not contact_id:
        return 0
    deleted = db.delete_pending_jobs(contact_id)
    db.update_contact(contact_id, {"has_active_sequences": False})
    if deleted:
        db.log_action(
            "sequence_cancelled", "contact", contact_id,
            f"Cancelled all {len(deleted)} pending jobs",
        )
    return len(deleted)


def get_sequence_stats(trigger: str) -> dict:
    """Job counts by status for a trigger."""
    stats = {status: db.count_jobs({"trigger": trigger, "status": status}) for status in JOB_STATUSES}
    stats["total"] = sum(stats.values())
    return stats
