"""Simple in-memory store for receipt intake sessions."""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional

from models.session_models import MessageRole, SessionMessage, SessionState

LOGGER = logging.getLogger(__name__)

SECONDS_PER_HOUR = 60 * 60


class SessionStore:
	"""Hold one mutable session per user id.

	The store performs no I/O and never raises: every operation is total over
	the map keyed by user id. Callers are responsible for serializing access
	per user (see `UserLocks`).
	"""

	def __init__(self) -> None:
		self._sessions: Dict[str, SessionState] = {}

	def __len__(self) -> int:
		return len(self._sessions)

	def get(self, user_id: str) -> Optional[SessionState]:
		"""Return the user's session without creating one."""
		return self._sessions.get(user_id)

	def get_or_create(self, user_id: str) -> SessionState:
		"""Return the existing session or a fresh idle one."""
		state = self._sessions.get(user_id)
		if state is None:
			LOGGER.debug("Creating new session for user %s", user_id)
			state = SessionState(user_id=user_id)
			self._sessions[user_id] = state
		return state

	def reset(self, user_id: str, preserve_images: bool = False) -> SessionState:
		"""Replace the user's session with a fresh idle one.

		Args:
			user_id: Owner of the session.
			preserve_images: Carry a copy of the current image list into the
				new session. Messages, transactions, attempts and the last
				error are always cleared.
		"""
		previous = self._sessions.get(user_id)
		images: List[bytes] = list(previous.images) if preserve_images and previous else []
		state = SessionState(user_id=user_id, images=images)
		self._sessions[user_id] = state
		LOGGER.debug("Reset session for user %s (preserve_images=%s)", user_id, preserve_images)
		return state

	def append_message(
		self,
		user_id: str,
		role: MessageRole,
		content: str,
		*,
		has_image: bool = False,
		image_index: Optional[int] = None,
	) -> SessionState:
		"""Append an entry to the session conversation log."""
		state = self.get_or_create(user_id)
		state.messages.append(
			SessionMessage(role=role, content=content, has_image=has_image, image_index=image_index)
		)
		self.touch(state)
		return state

	def append_images(self, user_id: str, images: List[bytes]) -> int:
		"""Append images in order and return the index of the last one."""
		state = self.get_or_create(user_id)
		state.images.extend(images)
		self.touch(state)
		LOGGER.debug("Saved %d image(s) for user %s (total %d)", len(images), user_id, len(state.images))
		return len(state.images) - 1

	def touch(self, state: SessionState) -> None:
		state.last_updated = time.time()

	def evict_stale(self, max_age_hours: float = 24) -> List[str]:
		"""Remove sessions idle for longer than `max_age_hours` and return their user ids."""
		cutoff = time.time() - max_age_hours * SECONDS_PER_HOUR
		stale = [user_id for user_id, state in self._sessions.items() if state.last_updated < cutoff]
		for user_id in stale:
			del self._sessions[user_id]
		if stale:
			LOGGER.info(
				"Evicted %d stale session(s) older than %sh; %d remaining",
				len(stale),
				max_age_hours,
				len(self._sessions),
			)
		return stale

	def snapshot(self, user_id: str) -> Optional[Dict[str, Any]]:
		"""Return a JSON-safe summary of the user's session, or None."""
		state = self._sessions.get(user_id)
		if state is None:
			return None
		return {
			"user_id": state.user_id,
			"session_id": state.session_id,
			"status": state.status.value,
			"image_count": len(state.images),
			"message_count": len(state.messages),
			"transaction_count": len(state.transactions),
			"processing_attempts": state.processing_attempts,
			"last_error": state.last_error,
			"last_updated": state.last_updated,
			"messages": [
				{
					"role": msg.role.value,
					"content": msg.content,
					"has_image": msg.has_image,
					"image_index": msg.image_index,
				}
				for msg in state.messages
			],
		}
