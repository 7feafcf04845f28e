"""Queue consumer — one dispatch tick over due sequence jobs.

Jobs are delivered strictly one at a time in (due_at, step_index, created_at)
order. A failed job is marked `error` and the tick moves on.
"""

import asyncio
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone

from sequence_control import supabase_client as db
from sequence_control.config import DISPATCH_PAGE_SIZE, SEND_DELAY_MS, SEND_TIMEOUT_SECONDS
from sequence_control.services.messenger import DeliveryError, MediaMessage, Messenger, get_messenger
from sequence_control.services.payloads import (
    PAYLOAD_TYPES,
    AudioPayload,
    FormPayload,
    ImagePayload,
    MediaPayload,
    TextPayload,
    VideoNotePayload,
    VideoPayload,
    media_kind,
    parse_payload,
)
from sequence_control.services.templating import render, render_form

logger = logging.getLogger(__name__)

# Prevents overlapping ticks in one process (e.g. manual run during a scheduled one)
_processing_lock = asyncio.Lock()


@dataclass(frozen=True)
class Outgoing:
    """What was actually handed to the channel, for the contact's history."""

    content: str = ""
    media_type: str = "text"
    media_url: str | None = None


def _parse_instant(value) -> datetime:
    if isinstance(value, datetime):
        moment = value
    else:
        moment = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


def job_sort_key(job: dict) -> tuple:
    """Total order: due_at, then step_index, then created_at (missing last)."""
    created = job.get("created_at")
    created_ts = _parse_instant(created).timestamp() if created else math.inf
    return (
        _parse_instant(job["due_at"]).timestamp(),
        job.get("step_index") or 0,
        created_ts,
    )


# ---------------------------------------------------------------------------
# Per-variant handlers
# ---------------------------------------------------------------------------

async def _send_text(messenger: Messenger, contact: dict, phone: str, payload: TextPayload):
    text = render(payload.content, contact).strip()
    if not text:
        return None
    await messenger.send_text(phone, text)
    return Outgoing(content=text)


async def _send_form(messenger: Messenger, contact: dict, phone: str, payload: FormPayload):
    text = render_form(payload.content, contact).strip()
    if not text:
        return None
    await messenger.send_text(phone, text)
    return Outgoing(content=text)


async def _send_media(messenger: Messenger, contact: dict, phone: str, payload: MediaPayload):
    url = render(payload.content, contact).strip()
    if not url:
        return None
    kind = media_kind(payload)
    if messenger.supports_media:
        await messenger.send_media(phone, MediaMessage(kind=kind, url=url))
    else:
        await messenger.send_text(phone, url)
    return Outgoing(media_type=kind, media_url=url)


_HANDLERS = {
    TextPayload: _send_text,
    FormPayload: _send_form,
    AudioPayload: _send_media,
    ImagePayload: _send_media,
    VideoPayload: _send_media,
    VideoNotePayload: _send_media,
}

assert set(_HANDLERS) == set(PAYLOAD_TYPES.values()), "every payload variant needs a handler"


async def deliver_job(job: dict, messenger: Messenger) -> Outgoing | None:
    """Resolve the job's contact and hand its payload to the channel. Raises on failure."""
    contact = db.get_contact(job["contact_id"])
    if not contact:
        raise DeliveryError(f"Contact not found: {job['contact_id']}")

    phone = contact.get("phone") or contact.get("telefono")
    if not phone:
        raise DeliveryError(f"Contact {job['contact_id']} has no phone")

    payload = parse_payload(job.get("payload"))
    handler = _HANDLERS[type(payload)]
    return await asyncio.wait_for(
        handler(messenger, contact, str(phone), payload),
        timeout=SEND_TIMEOUT_SECONDS,
    )


def _error_message(exc: Exception) -> str:
    if isinstance(exc, asyncio.TimeoutError):
        return f"Send timed out after {SEND_TIMEOUT_SECONDS}s"
    return str(exc) or type(exc).__name__


async def process_due_jobs(
    limit: int | None = None,
    shard: int | None = None,
    messenger: Messenger | None = None,
) -> int:
    """Run one dispatch tick. Returns the number of jobs attempted (sent + error)."""
    if _processing_lock.locked():
        logger.info("process_due_jobs already running, skipping")
        return 0

    async with _processing_lock:
        jobs = db.get_due_jobs(db.now_iso(), limit or DISPATCH_PAGE_SIZE, shard)
        if not jobs:
            return 0

        jobs.sort(key=job_sort_key)
        messenger = messenger or get_messenger()

        sent = 0
        errors = 0
        for job in jobs:
            try:
                outgoing = await deliver_job(job, messenger)
            except Exception as e:
                errors += 1
                logger.warning(
                    "Job %s (%s step %s) failed: %s",
                    job["id"], job.get("trigger"), job.get("step_index"), _error_message(e),
                )
                db.update_job(job["id"], {
                    "status": "error",
                    "processed_at": db.now_iso(),
                    "error": _error_message(e),
                })
                continue

            # Delivered: store errors from here on propagate, the job stays sent
            db.update_job(job["id"], {"status": "sent", "processed_at": db.now_iso()})
            if outgoing:
                db.log_contact_message(
                    job["contact_id"],
                    content=outgoing.content,
                    media_type=outgoing.media_type,
                    media_url=outgoing.media_url,
                )
            else:
                db.update_contact(job["contact_id"], {"last_message_at": db.now_iso()})
            sent += 1
            await asyncio.sleep(SEND_DELAY_MS / 1000)

        logger.info("Dispatch tick: %d jobs, %d sent, %d errors", len(jobs), sent, errors)
        return len(jobs)
