"""Placeholder templating — fills {{field}} tokens from contact attributes."""

import re
import urllib.parse
from typing import Callable

_TOKEN_RE = re.compile(r"\{\{(\w+)\}\}")
_NEWLINES_RE = re.compile(r"\r?\n")


def digits_only(value) -> str:
    """Strip everything but digits."""
    return re.sub(r"\D", "", str(value or ""))


def first_name(full_name) -> str:
    """First whitespace-delimited token of a name."""
    parts = str(full_name or "").split()
    return parts[0] if parts else ""


def _field_value(field: str, contact: dict) -> str:
    if field == "telefono":
        return digits_only(contact.get("telefono") or contact.get("phone"))
    if field == "nombre":
        return first_name(contact.get("nombre") or contact.get("display_name"))
    value = contact.get(field)
    if value is None:
        return ""
    return str(value)


def render(template: str, contact: dict, escape: Callable[[str], str] | None = None) -> str:
    """Replace {{field}} tokens with contact values. Unknown fields render as ""."""
    contact = contact or {}

    def _sub(match: re.Match) -> str:
        value = _field_value(match.group(1), contact)
        return escape(value) if escape and value else value

    return _TOKEN_RE.sub(_sub, str(template or ""))


def render_form(template: str, contact: dict) -> str:
    """Render a form link: values URL-encoded, newlines collapsed to spaces."""
    text = render(template, contact, escape=urllib.parse.quote)
    return _NEWLINES_RE.sub(" ", text)
