"""Webhooks — inbound chat messages from the gateway + funnel-stage hooks."""

import logging
import time
from collections import defaultdict

from fastapi import APIRouter, Header, HTTPException, Request

from sequence_control.config import WEBHOOK_SECRET
from sequence_control.services.inbound import (
    handle_inbound_message,
    mark_converted,
    mark_form_submitted,
)
from sequence_control.services.messenger import phone_to_address

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks")

_MAX_NAME_LEN = 200
_MAX_TEXT_LEN = 4096

# In-memory rate limiter: {ip: [timestamp, ...]}
_rate_buckets: dict[str, list[float]] = defaultdict(list)
_RATE_LIMIT = 120      # max requests per window
_RATE_WINDOW = 60      # window in seconds


def _check_rate_limit(request: Request) -> None:
    """Raise 429 if IP exceeds rate limit. Simple sliding window."""
    ip = request.client.host if request.client else "unknown"
    now = time.monotonic()
    cutoff = now - _RATE_WINDOW
    _rate_buckets[ip] = bucket = [t for t in _rate_buckets[ip] if t > cutoff]
    if len(bucket) >= _RATE_LIMIT:
        raise HTTPException(status_code=429, detail="Rate limit exceeded")
    bucket.append(now)


def _check_auth(authorization: str) -> None:
    if WEBHOOK_SECRET and authorization != f"Bearer {WEBHOOK_SECRET}":
        raise HTTPException(status_code=401, detail="Invalid webhook secret")


def _truncate(value: str, max_len: int) -> str:
    """Truncate string to max length."""
    return value[:max_len] if value else ""


@router.post("/inbound")
async def inbound_webhook(
    request: Request,
    authorization: str = Header(""),
):
    """Inbound chat message relayed by the gateway.

    Payload: { phone, text, contact_id?, name?, from_me? }
    """
    _check_rate_limit(request)
    _check_auth(authorization)

    body = await request.json()
    phone = str(body.get("phone") or "").strip()
    contact_id = str(body.get("contact_id") or "").strip()
    if not phone and not contact_id:
        raise HTTPException(status_code=400, detail="phone or contact_id required")
    if not contact_id:
        contact_id = phone_to_address(phone)

    result = handle_inbound_message(
        contact_id=contact_id,
        phone=phone,
        text=_truncate(str(body.get("text") or ""), _MAX_TEXT_LEN),
        display_name=_truncate(str(body.get("name") or "").strip(), _MAX_NAME_LEN),
        from_me=bool(body.get("from_me")),
    )
    return {
        "status": result.status,
        "contact_id": result.contact_id,
        "trigger": result.trigger,
        "source": result.source,
        "scheduled": result.scheduled,
        "cancelled": result.cancelled,
        "reason": result.reason,
    }


@router.post("/conversion")
async def conversion_webhook(
    request: Request,
    authorization: str = Header(""),
):
    """Payment confirmed for a contact. Payload: { contact_id }."""
    _check_rate_limit(request)
    _check_auth(authorization)

    body = await request.json()
    contact_id = str(body.get("contact_id") or "").strip()
    if not contact_id:
        raise HTTPException(status_code=400, detail="contact_id required")
    try:
        cancelled = mark_converted(contact_id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"status": "ok", "cancelled": cancelled}


@router.post("/form-submitted")
async def form_submitted_webhook(
    request: Request,
    authorization: str = Header(""),
):
    """Intake form completed. Payload: { contact_id, cancel_triggers? }."""
    _check_rate_limit(request)
    _check_auth(authorization)

    body = await request.json()
    contact_id = str(body.get("contact_id") or "").strip()
    if not contact_id:
        raise HTTPException(status_code=400, detail="contact_id required")
    cancel_triggers = body.get("cancel_triggers")
    if cancel_triggers is not None and not isinstance(cancel_triggers, list):
        raise HTTPException(status_code=400, detail="cancel_triggers must be a list")
    try:
        cancelled = mark_form_submitted(contact_id, cancel_triggers)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"status": "ok", "cancelled": cancelled}
