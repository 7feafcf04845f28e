"""Outbound message-sending capability.

The dispatcher only sees the `Messenger` contract. `GatewayMessenger` talks
to the chat-gateway sidecar that owns the socket session; `LogOnlyMessenger`
is used when no gateway is configured (local development).
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass

import httpx

from sequence_control.config import SEND_TIMEOUT_SECONDS, WA_GATEWAY_TOKEN, WA_GATEWAY_URL

logger = logging.getLogger(__name__)


class DeliveryError(Exception):
    """A message could not be handed to the chat channel."""


@dataclass(frozen=True)
class MediaMessage:
    kind: str  # audio | image | video | video_note
    url: str


def normalize_phone(phone: str) -> str:
    """Digits for a chat address. Mexican mobiles need the 521 prefix."""
    num = re.sub(r"\D", "", str(phone or ""))
    if len(num) == 12 and num.startswith("52") and not num.startswith("521"):
        return "521" + num[2:]
    if len(num) == 10:
        return "521" + num
    return num


def phone_to_address(phone: str) -> str:
    """Phone → chat address (JID)."""
    return f"{normalize_phone(phone)}@s.whatsapp.net"


class Messenger(ABC):
    """Contract for outbound channels."""

    supports_media: bool = False

    @abstractmethod
    async def send_text(self, phone: str, text: str) -> None:
        """Send a plain text message. Raise on failure."""
        ...

    async def send_media(self, phone: str, media: MediaMessage) -> None:
        """Send a media message. Channels without media support send the URL."""
        await self.send_text(phone, media.url)


class GatewayMessenger(Messenger):
    """Sends through the chat gateway's HTTP API."""

    supports_media = True

    def __init__(
        self,
        base_url: str,
        token: str = "",
        timeout: float = SEND_TIMEOUT_SECONDS,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._timeout = timeout
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {"Authorization": f"Bearer {self._token}"} if self._token else {}
            self._client = httpx.AsyncClient(
                base_url=self._base_url, headers=headers, timeout=self._timeout,
            )
        return self._client

    async def _post(self, path: str, body: dict) -> dict:
        try:
            resp = await self._get_client().post(path, json=body)
        except httpx.TimeoutException as e:
            raise DeliveryError(f"Gateway timeout after {self._timeout}s") from e
        except httpx.HTTPError as e:
            raise DeliveryError(f"Gateway request failed: {e}") from e
        if resp.status_code >= 400:
            raise DeliveryError(f"Gateway returned {resp.status_code}: {resp.text[:200]}")
        return resp.json() if resp.content else {}

    async def send_text(self, phone: str, text: str) -> None:
        await self._post("/messages/text", {
            "to": phone_to_address(phone),
            "text": text,
            "link_preview": False,
        })

    async def send_media(self, phone: str, media: MediaMessage) -> None:
        body = {"to": phone_to_address(phone), "type": media.kind, "url": media.url}
        if media.kind == "audio":
            body["ptt"] = True
        await self._post("/messages/media", body)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class LogOnlyMessenger(Messenger):
    """Logs outbound messages instead of sending them."""

    async def send_text(self, phone: str, text: str) -> None:
        logger.info("WA_GATEWAY_URL not set, would send to %s: %s", phone, text[:80])


_messenger: Messenger | None = None


def get_messenger() -> Messenger:
    """Process-wide messenger, built from configuration on first use."""
    global _messenger
    if _messenger is None:
        if WA_GATEWAY_URL:
            _messenger = GatewayMessenger(WA_GATEWAY_URL, WA_GATEWAY_TOKEN)
        else:
            _messenger = LogOnlyMessenger()
    return _messenger


def set_messenger(messenger: Messenger | None) -> None:
    """Swap the process-wide messenger (tests, alternative channels)."""
    global _messenger
    _messenger = messenger
