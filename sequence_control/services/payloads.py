"""Message payload variants — one dataclass per step type."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class MessageType(str, Enum):
    TEXT = "text"
    FORM = "form"
    AUDIO = "audio"
    IMAGE = "image"
    VIDEO = "video"
    VIDEO_NOTE = "video_note"


# Names used by older authoring tools and the chat dashboard
_TYPE_ALIASES = {
    "texto": MessageType.TEXT,
    "formulario": MessageType.FORM,
    "clip": MessageType.AUDIO,
    "imagen": MessageType.IMAGE,
    "videonota": MessageType.VIDEO_NOTE,
    "video-note": MessageType.VIDEO_NOTE,
}


def normalize_type(raw: str | None) -> MessageType:
    """Map a stored step type to a MessageType. Unknown types become text."""
    key = str(raw or "text").strip().lower()
    if key in _TYPE_ALIASES:
        return _TYPE_ALIASES[key]
    try:
        return MessageType(key)
    except ValueError:
        return MessageType.TEXT


@dataclass(frozen=True)
class TextPayload:
    content: str


@dataclass(frozen=True)
class FormPayload:
    content: str


@dataclass(frozen=True)
class MediaPayload:
    """Base for payloads whose rendered content is a media URL."""

    content: str


@dataclass(frozen=True)
class AudioPayload(MediaPayload):
    pass


@dataclass(frozen=True)
class ImagePayload(MediaPayload):
    pass


@dataclass(frozen=True)
class VideoPayload(MediaPayload):
    pass


@dataclass(frozen=True)
class VideoNotePayload(MediaPayload):
    pass


Payload = TextPayload | FormPayload | AudioPayload | ImagePayload | VideoPayload | VideoNotePayload

PAYLOAD_TYPES: dict[MessageType, type] = {
    MessageType.TEXT: TextPayload,
    MessageType.FORM: FormPayload,
    MessageType.AUDIO: AudioPayload,
    MessageType.IMAGE: ImagePayload,
    MessageType.VIDEO: VideoPayload,
    MessageType.VIDEO_NOTE: VideoNotePayload,
}

assert set(PAYLOAD_TYPES) == set(MessageType), "every MessageType needs a payload class"


def parse_payload(raw: dict | None) -> Payload:
    """Build the typed payload from a job's stored {type, content} snapshot."""
    raw = raw or {}
    message_type = normalize_type(raw.get("type"))
    return PAYLOAD_TYPES[message_type](content=str(raw.get("content") or ""))


def media_kind(payload: MediaPayload) -> str:
    """The MessageType value of a media payload ("audio", "image", ...)."""
    for message_type, cls in PAYLOAD_TYPES.items():
        if type(payload) is cls:
            return message_type.value
    raise TypeError(f"Not a media payload: {payload!r}")
