"""Supabase connection and query helpers for the sequence tables."""

import threading
from datetime import datetime, timezone
from typing import Any

from supabase import Client, create_client

from sequence_control.config import SUPABASE_SERVICE_KEY, SUPABASE_URL

_client: Client | None = None
_client_lock = threading.Lock()

CONTACTS = "contacts"
CONTACT_MESSAGES = "contact_messages"
SEQUENCES = "sequences"
SEQUENCE_JOBS = "sequence_jobs"
TRIGGER_RULES = "trigger_rules"
AUDIT_LOG = "audit_log"


def get_client() -> Client:
    """Return the Supabase client singleton (thread-safe)."""
    global _client
    if _client is None:
        with _client_lock:
            if _client is None:
                if not SUPABASE_URL or not SUPABASE_SERVICE_KEY:
                    raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set")
                _client = create_client(SUPABASE_URL, SUPABASE_SERVICE_KEY)
    return _client


def now_iso(moment: datetime | None = None) -> str:
    """UTC ISO-8601 with millisecond precision, so lexical order == time order."""
    moment = moment or datetime.now(timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds")


# ---------------------------------------------------------------------------
# Generic helpers
# ---------------------------------------------------------------------------

def _table(name: str):
    """Return a table query builder."""
    return get_client().table(name)


def _apply_match(q, match: dict | None, match_in: dict | None = None):
    for k, v in (match or {}).items():
        q = q.eq(k, v)
    for k, values in (match_in or {}).items():
        q = q.in_(k, list(values))
    return q


def insert(table: str, data: dict) -> dict:
    """Insert a row and return it."""
    result = _table(table).insert(data).execute()
    return result.data[0] if result.data else {}


def upsert(table: str, data: dict, on_conflict: str = "") -> dict:
    """Upsert a row and return it."""
    if on_conflict:
        q = _table(table).upsert(data, on_conflict=on_conflict)
    else:
        q = _table(table).upsert(data)
    result = q.execute()
    return result.data[0] if result.data else {}


def update(table: str, data: dict, match: dict) -> dict:
    """Update rows matching conditions."""
    q = _apply_match(_table(table).update(data), match)
    result = q.execute()
    return result.data[0] if result.data else {}


def delete(table: str, match: dict, match_in: dict | None = None) -> list:
    """Delete rows matching conditions in a single statement."""
    q = _apply_match(_table(table).delete(), match, match_in)
    result = q.execute()
    return result.data or []


def select(table: str, columns: str = "*", match: dict | None = None,
           order: str | None = None, order_desc: bool = False,
           limit: int | None = None) -> list[dict]:
    """Select rows with optional filtering, ordering, and limit."""
    q = _apply_match(_table(table).select(columns), match)
    if order:
        q = q.order(order, desc=order_desc)
    if limit:
        q = q.limit(limit)
    result = q.execute()
    return result.data or []


def select_one(table: str, columns: str = "*", match: dict | None = None) -> dict | None:
    """Select a single row."""
    rows = select(table, columns, match, limit=1)
    return rows[0] if rows else None


def count(table: str, match: dict | None = None) -> int:
    """Count rows matching conditions."""
    q = _apply_match(_table(table).select("*", count="exact"), match)
    result = q.execute()
    return result.count or 0


def rpc(function: str, params: dict) -> Any:
    """Call a Postgres function. Runs inside a single transaction server-side."""
    result = get_client().rpc(function, params).execute()
    return result.data


# ---------------------------------------------------------------------------
# Contacts
# ---------------------------------------------------------------------------

def get_contact(contact_id: str) -> dict | None:
    """Get a contact by id (chat address)."""
    return select_one(CONTACTS, match={"id": contact_id})


def create_contact(data: dict) -> dict:
    """Insert a new contact."""
    data.setdefault("created_at", now_iso())
    return insert(CONTACTS, data)


def update_contact(contact_id: str, data: dict) -> dict:
    """Merge fields into a contact."""
    return update(CONTACTS, data, {"id": contact_id})


def add_contact_tag(contact: dict, tag: str) -> list[str]:
    """Add a tag to a contact (no-op if present). Returns the new tag list."""
    tags = list(contact.get("tags") or [])
    if tag not in tags:
        tags.append(tag)
        update_contact(contact["id"], {"tags": tags})
    return tags


def log_contact_message(contact_id: str, content: str = "", media_type: str = "text",
                        media_url: str | None = None, sender: str = "business") -> dict:
    """Append a message to a contact's history and touch last_message_at."""
    timestamp = now_iso()
    row = insert(CONTACT_MESSAGES, {
        "contact_id": contact_id,
        "content": content,
        "media_type": media_type,
        "media_url": media_url,
        "sender": sender,
        "timestamp": timestamp,
    })
    update_contact(contact_id, {"last_message_at": timestamp})
    return row


# ---------------------------------------------------------------------------
# Sequence definitions
# ---------------------------------------------------------------------------

def get_sequence_definition(trigger: str) -> dict | None:
    """Look a definition up by id, then by its trigger field."""
    return (
        select_one(SEQUENCES, match={"id": trigger})
        or select_one(SEQUENCES, match={"trigger": trigger})
    )


def list_sequence_definitions() -> list[dict]:
    """All definitions, ordered by id."""
    return select(SEQUENCES, order="id")


def upsert_sequence_definition(data: dict) -> dict:
    """Upsert a definition by id."""
    data["updated_at"] = now_iso()
    return upsert(SEQUENCES, data, on_conflict="id")


# ---------------------------------------------------------------------------
# Sequence jobs
# ---------------------------------------------------------------------------

def get_due_jobs(now: str, limit: int, shard: int | None = None) -> list[dict]:
    """Pending jobs due at or before `now`, ordered by due_at."""
    q = _table(SEQUENCE_JOBS).select("*")
    q = q.eq("status", "pending").lte("due_at", now)
    if shard is not None:
        q = q.eq("shard", shard)
    q = q.order("due_at").limit(limit)
    result = q.execute()
    return result.data or []


def get_contact_jobs(contact_id: str, status: str | None = None) -> list[dict]:
    """Jobs for a contact, oldest due first."""
    match = {"contact_id": contact_id}
    if status:
        match["status"] = status
    return select(SEQUENCE_JOBS, match=match, order="due_at")


def update_job(job_id: str, data: dict) -> dict:
    """Update a job by id."""
    return update(SEQUENCE_JOBS, data, {"id": job_id})


def delete_pending_jobs(contact_id: str, triggers: list[str] | None = None) -> list:
    """Delete pending jobs for a contact, optionally scoped to some triggers."""
    match_in = {"trigger": triggers} if triggers is not None else None
    return delete(
        SEQUENCE_JOBS,
        {"contact_id": contact_id, "status": "pending"},
        match_in,
    )


def count_jobs(match: dict | None = None) -> int:
    """Count jobs matching conditions."""
    return count(SEQUENCE_JOBS, match)


# ---------------------------------------------------------------------------
# Trigger rules
# ---------------------------------------------------------------------------

def get_trigger_rules() -> dict[str, dict]:
    """Dynamic rule table keyed by hashtag, as stored (not yet validated)."""
    rows = select(TRIGGER_RULES)
    return {str(r.get("hashtag", "")): r for r in rows if r.get("hashtag")}


# ---------------------------------------------------------------------------
# Audit Log
# ---------------------------------------------------------------------------

def log_action(action: str, entity_type: str = "", entity_id: str = "", details: str = "") -> dict:
    """Log an operator-visible action."""
    return insert(AUDIT_LOG, {
        "action": action,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "details": details,
        "created_at": now_iso(),
    })


def get_audit_log(limit: int = 50) -> list[dict]:
    """Get recent audit log entries."""
    return select(AUDIT_LOG, order="created_at", order_desc=True, limit=limit)
