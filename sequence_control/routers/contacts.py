"""Contacts router — scheduled jobs and cancellation per contact."""

from fastapi import APIRouter, Body

from sequence_control import supabase_client as db
from sequence_control.services.sequence_engine import cancel, cancel_all

router = APIRouter(prefix="/contacts")


@router.get("/{contact_id}/jobs")
async def contact_jobs(contact_id: str, status: str | None = None):
    """Jobs for a contact, oldest due first."""
    return db.get_contact_jobs(contact_id, status)


@router.post("/{contact_id}/cancel")
async def cancel_contact_jobs(
    contact_id: str,
    triggers: list[str] | None = Body(None, embed=True),
):
    """Cancel pending jobs for the given triggers, or all of them when omitted."""
    if triggers:
        cancelled = cancel(contact_id, triggers)
    else:
        cancelled = cancel_all(contact_id)
    return {"contact_id": contact_id, "cancelled": cancelled}
