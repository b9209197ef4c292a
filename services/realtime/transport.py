"""Chat transport contract and its WebSocket implementation."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional, Protocol

import httpx
from fastapi import WebSocket

from services.realtime.formatter import split_message
from utils.media_validation import decode_image_payload, ensure_image_bytes

LOGGER = logging.getLogger(__name__)

CONFIRMATION_ACTIONS: List[Dict[str, str]] = [
	{"action": "confirm", "text": "Confirm"},
	{"action": "refine", "text": "Refine"},
	{"action": "cancel", "text": "Cancel"},
]
RETRY_ACTIONS: List[Dict[str, str]] = [
	{"action": "retry", "text": "Retry"},
	{"action": "cancel", "text": "Cancel"},
]
IMAGE_DOWNLOAD_TIMEOUT = 30.0


class ChatTransport(Protocol):
	"""What the intake core needs from the chat layer."""

	async def send_notice(self, text: str) -> None: ...

	async def send_confirmation_prompt(self, text: str) -> None: ...

	async def send_retry_prompt(self, text: str) -> None: ...

	async def fetch_image(self, reference: Dict[str, Any]) -> bytes:
		"""Resolve an inbound image reference to raw bytes."""
		...


class WebSocketTransport:
	"""Render intake events as JSON frames on a FastAPI WebSocket."""

	def __init__(self, websocket: WebSocket, http_client: Optional[httpx.AsyncClient] = None) -> None:
		self.websocket = websocket
		self.http_client = http_client

	async def send_notice(self, text: str) -> None:
		for chunk in split_message(text):
			await self._send({"type": "notice", "text": chunk})

	async def send_confirmation_prompt(self, text: str) -> None:
		await self._send_prompt(text, CONFIRMATION_ACTIONS)

	async def send_retry_prompt(self, text: str) -> None:
		await self._send_prompt(text, RETRY_ACTIONS)

	async def send_error(self, request_id: Any, detail: str) -> None:
		await self._send({"type": "error", "request_id": request_id, "detail": detail})

	async def fetch_image(self, reference: Dict[str, Any]) -> bytes:
		"""Return image bytes from an inline base64 payload or a download URL."""
		inline = (reference.get("image_b64") or "").strip()
		if inline:
			return decode_image_payload(inline)

		url = (reference.get("image_url") or "").strip()
		if not url:
			raise ValueError("Photo payload requires image_b64 or image_url.")
		if self.http_client is None:
			raise ValueError("Image downloads are not available on this connection.")
		try:
			response = await self.http_client.get(url, timeout=IMAGE_DOWNLOAD_TIMEOUT)
		except httpx.HTTPError as exc:
			raise ValueError(f"Failed to download image: {exc}") from exc
		if response.status_code >= 400:
			raise ValueError(f"Failed to download image: {response.status_code} {response.reason_phrase}")
		return ensure_image_bytes(response.content)

	async def _send_prompt(self, text: str, actions: List[Dict[str, str]]) -> None:
		# Buttons ride on the last chunk so they stay below the full text.
		chunks = split_message(text)
		for chunk in chunks[:-1]:
			await self._send({"type": "notice", "text": chunk})
		await self._send({"type": "prompt", "text": chunks[-1], "actions": actions})

	async def _send(self, payload: Dict[str, Any]) -> None:
		await self.websocket.send_text(json.dumps(payload))
