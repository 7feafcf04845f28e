"""Sequences router — definition overview, manual enrollment, manual tick."""

from datetime import datetime

from fastapi import APIRouter, Body, HTTPException

from sequence_control import supabase_client as db
from sequence_control.catalog import get_policy
from sequence_control.services.dispatcher import process_due_jobs
from sequence_control.services.sequence_engine import enroll, get_sequence_stats

router = APIRouter(prefix="/sequences")


@router.get("/")
async def sequence_list():
    """List all definitions with job counts."""
    return [
        {
            "id": seq["id"],
            "trigger": seq.get("trigger"),
            "name": seq.get("name"),
            "active": seq.get("active", True) is not False,
            "steps": len(seq.get("messages") or []),
            "jobs": get_sequence_stats(seq.get("trigger") or seq["id"]),
        }
        for seq in db.list_sequence_definitions()
    ]


@router.post("/process-now")
async def process_now(shard: int | None = Body(None, embed=True)):
    """Run one dispatch tick immediately."""
    processed = await process_due_jobs(shard=shard)
    return {"processed": processed}


@router.post("/{trigger}/enroll")
async def enroll_contact(
    trigger: str,
    contact_id: str = Body(..., embed=True),
    start_at: datetime | None = Body(None, embed=True),
):
    """Enroll a contact in a sequence. Suppressed contacts get nothing scheduled."""
    contact = db.get_contact(contact_id)
    if not contact:
        raise HTTPException(status_code=404, detail=f"Contact {contact_id} not found")
    scheduled = enroll(contact_id, trigger, start_at)
    return {
        "trigger": trigger,
        "contact_id": contact_id,
        "scheduled": scheduled,
        "suppressed": get_policy().reason(contact, trigger),
    }
