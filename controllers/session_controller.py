"""Session inspection helpers for the REST surface."""

from __future__ import annotations

from typing import Any, Dict

from fastapi import HTTPException, Request

from services.realtime.chat_session import ChatSessionHandler
from services.realtime.session_store import SessionStore


async def get_session(request: Request, user_id: str) -> Dict[str, Any]:
	"""Return a summary of the user's current intake session."""
	store: SessionStore = request.app.state.session_store
	snapshot = store.snapshot(user_id)
	if snapshot is None:
		raise HTTPException(status_code=404, detail=f"No session for user {user_id}")
	return snapshot


async def cancel_session(request: Request, user_id: str) -> Dict[str, Any]:
	"""Reset the user's session and drop any pending media group."""
	store: SessionStore = request.app.state.session_store
	if store.get(user_id) is None:
		raise HTTPException(status_code=404, detail=f"No session for user {user_id}")
	handler: ChatSessionHandler = request.app.state.chat_handler
	handler.aggregator.cancel_for_user(user_id)
	async with handler.locks.for_user(user_id):
		state = handler.machine.cancel(user_id)
	return {"user_id": user_id, "session_id": state.session_id, "status": state.status.value}
