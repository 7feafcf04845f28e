"""Inbound-event handling — turns chat messages into enrollments.

New contacts are enrolled on whatever the resolver returns (default
included). Existing contacts are only re-enrolled on an explicit signal
(dynamic rule or alias hashtag), and only if the suppression policy allows.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sequence_control import supabase_client as db
from sequence_control.catalog import get_policy, get_resolver
from sequence_control.config import AUTO_SAVE_CONTACTS, DEFAULT_TRIGGER, OPT_OUT_KEYWORDS
from sequence_control.services.sequence_engine import cancel, cancel_all, enroll
from sequence_control.services.trigger_resolver import Resolution

logger = logging.getLogger(__name__)


@dataclass
class InboundResult:
    status: str  # ignored | opted_out | enrolled | suppressed | recorded
    contact_id: str = ""
    trigger: str | None = None
    source: str | None = None
    scheduled: int = 0
    cancelled: int = 0
    reason: str | None = None
    created: bool = False
    extra: dict = field(default_factory=dict)


def is_opt_out(text: str) -> bool:
    """A message consisting only of an opt-out keyword."""
    return (text or "").strip().strip(".!¡").casefold() in OPT_OUT_KEYWORDS


def _start_sequence(contact: dict, resolution: Resolution, start_at: datetime) -> InboundResult:
    contact_id = contact["id"]
    reason = get_policy().reason(contact, resolution.trigger)
    if reason:
        logger.info("Enrollment of %s in %s suppressed: %s", contact_id, resolution.trigger, reason)
        return InboundResult(
            status="suppressed", contact_id=contact_id, trigger=resolution.trigger,
            source=resolution.source, reason=reason,
        )

    cancelled = 0
    companions = [t for t in resolution.cancel_triggers if t != resolution.trigger]
    if companions:
        cancelled = cancel(contact_id, companions)

    scheduled = enroll(contact_id, resolution.trigger, start_at)
    if scheduled:
        db.add_contact_tag(contact, resolution.trigger)
    return InboundResult(
        status="enrolled", contact_id=contact_id, trigger=resolution.trigger,
        source=resolution.source, scheduled=scheduled, cancelled=cancelled,
    )


def handle_inbound_message(
    contact_id: str,
    phone: str,
    text: str,
    display_name: str = "",
    from_me: bool = False,
) -> InboundResult:
    """Record an inbound chat message and enroll the contact when it applies."""
    if not contact_id or contact_id.endswith("@g.us"):
        return InboundResult(status="ignored", contact_id=contact_id, reason="group_or_missing_id")
    if from_me:
        return InboundResult(status="ignored", contact_id=contact_id, reason="outgoing")

    now = datetime.now(timezone.utc)
    contact = db.get_contact(contact_id)
    created = False

    if not contact:
        if not AUTO_SAVE_CONTACTS:
            logger.info("AUTO_SAVE_CONTACTS disabled, not saving contact %s", contact_id)
            return InboundResult(status="ignored", contact_id=contact_id, reason="auto_save_disabled")
        contact = db.create_contact({
            "id": contact_id,
            "phone": phone or contact_id.split("@")[0],
            "display_name": display_name or "Sin nombre",
            "tags": [],
            "stage": "nuevo",
            "source": "WhatsApp",
            "has_active_sequences": False,
            "seq_paused": False,
        }) or {"id": contact_id, "phone": phone, "display_name": display_name, "tags": []}
        created = True
        db.log_action("contact_created", "contact", contact_id, f"New contact: {display_name or phone}")

    db.log_contact_message(contact_id, content=text or "", sender="contact")

    if is_opt_out(text):
        db.update_contact(contact_id, {"seq_paused": True})
        cancelled = cancel_all(contact_id)
        db.log_action("contact_opted_out", "contact", contact_id, f"Opt-out, {cancelled} jobs cancelled")
        return InboundResult(status="opted_out", contact_id=contact_id, cancelled=cancelled, created=created)

    resolution = get_resolver().resolve(text or "", DEFAULT_TRIGGER)

    if not created and not resolution.is_strong:
        return InboundResult(
            status="recorded", contact_id=contact_id, trigger=resolution.trigger,
            source=resolution.source, reason="default_on_existing_contact",
        )

    result = _start_sequence(contact, resolution, now)
    result.created = created
    return result


def mark_converted(contact_id: str) -> int:
    """Contact purchased: tag, move stage and stop every pending sequence."""
    contact = db.get_contact(contact_id)
    if not contact:
        raise LookupError(f"Contact not found: {contact_id}")
    policy = get_policy()
    if policy.converted_tag:
        db.add_contact_tag(contact, policy.converted_tag)
    if policy.converted_stage:
        db.update_contact(contact_id, {"stage": policy.converted_stage})
    cancelled = cancel_all(contact_id)
    db.log_action("contact_converted", "contact", contact_id, f"{cancelled} pending jobs cancelled")
    return cancelled


def mark_form_submitted(contact_id: str, cancel_triggers: list[str] | None = None) -> int:
    """Contact completed the intake form: tag it and stop the intro sequences."""
    contact = db.get_contact(contact_id)
    if not contact:
        raise LookupError(f"Contact not found: {contact_id}")
    policy = get_policy()
    if policy.intake_tag:
        db.add_contact_tag(contact, policy.intake_tag)
    triggers = cancel_triggers if cancel_triggers is not None else sorted(policy.top_of_funnel_triggers)
    cancelled = cancel(contact_id, triggers)
    db.log_action("contact_form_submitted", "contact", contact_id, f"{cancelled} pending jobs cancelled")
    return cancelled
