"""WebSocket endpoint for chat-driven receipt intake."""

from __future__ import annotations

import json
import logging
from typing import Any, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, WebSocket
from pydantic import BaseModel, ValidationError
from starlette.websockets import WebSocketDisconnect

from services.realtime.chat_session import ChatSessionHandler
from services.realtime.transport import WebSocketTransport

LOGGER = logging.getLogger(__name__)

router = APIRouter()


class InboundFrame(BaseModel):
	type: Literal["photo", "text", "command", "action"]
	request_id: Optional[Any] = None
	text: Optional[str] = None
	command: Optional[str] = None
	action: Optional[str] = None
	image_b64: Optional[str] = None
	image_url: Optional[str] = None
	media_group_id: Optional[str] = None


def _require_chat_handler(websocket: WebSocket) -> ChatSessionHandler:
	handler = getattr(websocket.app.state, "chat_handler", None)
	if handler is None:
		raise HTTPException(status_code=500, detail="Chat handler unavailable")
	return handler


def _first_error(exc: ValidationError) -> str:
	error = exc.errors()[0]
	location = ".".join(str(part) for part in error.get("loc", ()))
	return f"Invalid frame: {location} {error.get('msg', '')}".strip()


@router.websocket("/ws/chat/{user_id}")
async def chat_socket(websocket: WebSocket, user_id: str, handler: ChatSessionHandler = Depends(_require_chat_handler)):
	"""Receive photos, texts, commands and button actions for one user."""
	await websocket.accept()
	transport = WebSocketTransport(websocket, getattr(websocket.app.state, "http_client", None))
	handler.attach(user_id, transport)
	try:
		while True:
			try:
				raw = await websocket.receive_text()
			except WebSocketDisconnect:
				break
			try:
				payload = json.loads(raw)
			except json.JSONDecodeError:
				await transport.send_error(None, "Payload must be JSON")
				continue
			if not isinstance(payload, dict):
				await transport.send_error(None, "Payload must be a JSON object")
				continue
			try:
				frame = InboundFrame.model_validate(payload)
			except ValidationError as exc:
				await transport.send_error(payload.get("request_id"), _first_error(exc))
				continue
			try:
				await handler.handle(transport, user_id, frame.model_dump(exclude_none=True))
			except ValueError as exc:
				await transport.send_error(frame.request_id, str(exc))
	finally:
		handler.detach(user_id, transport)
		# In-flight submissions still settle the session; replies to a closed socket are logged.
		await handler.settle(transport)
		LOGGER.debug("Chat socket closed for user %s", user_id)
