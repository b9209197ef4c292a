"""Status transitions for intake sessions and the side effects tied to them."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Sequence

from models.session_models import MessageRole, SessionState, SessionStatus
from models.transaction import Transaction
from services.realtime.errors import IllegalTransitionError
from services.realtime.session_store import SessionStore

LOGGER = logging.getLogger(__name__)

MAX_PROCESSING_ATTEMPTS = 3

# Resets to IDLE bypass this table: they replace the session instead of
# changing its status.
ALLOWED_TRANSITIONS: Dict[SessionStatus, FrozenSet[SessionStatus]] = {
	SessionStatus.IDLE: frozenset({SessionStatus.AWAITING_INPUT}),
	SessionStatus.AWAITING_INPUT: frozenset({SessionStatus.AWAITING_INPUT, SessionStatus.PROCESSING}),
	SessionStatus.PROCESSING: frozenset({SessionStatus.AWAITING_CONFIRMATION, SessionStatus.AWAITING_INPUT}),
	SessionStatus.AWAITING_CONFIRMATION: frozenset(
		{SessionStatus.AWAITING_CONFIRMATION, SessionStatus.AWAITING_INPUT}
	),
}


class FinalizeDecision(str, Enum):
	ACCEPTED = "accepted"
	NO_MATERIAL = "no_material"
	NOT_ACCEPTING = "not_accepting"


class FailureOutcome(str, Enum):
	RETRY_OFFERED = "retry_offered"
	EXHAUSTED = "exhausted"
	STALE = "stale"


@dataclass
class MaterialUpdate:
	"""Result of offering new images or text to a session."""

	session: SessionState
	accepted: bool
	first_material: bool = False


class SessionStateMachine:
	"""Apply legal status transitions to sessions held by a `SessionStore`.

	Transitions are plain data mutations and never perform I/O. Operations
	that complete work started before a suspension point take the
	`session_id` captured at that time and do nothing when the session has
	since been reset or has left PROCESSING.
	"""

	def __init__(
		self,
		store: SessionStore,
		*,
		max_attempts: int = MAX_PROCESSING_ATTEMPTS,
		allow_empty_finalize: bool = False,
	) -> None:
		if max_attempts < 1:
			raise ValueError("max_attempts must be at least 1.")
		self.store = store
		self.max_attempts = max_attempts
		self.allow_empty_finalize = allow_empty_finalize

	def _transition(self, state: SessionState, target: SessionStatus) -> None:
		allowed = ALLOWED_TRANSITIONS.get(state.status, frozenset())
		if target not in allowed:
			raise IllegalTransitionError(
				f"Illegal transition {state.status.value} -> {target.value} for user {state.user_id}"
			)
		previous = state.status
		state.status = target
		self.store.touch(state)
		LOGGER.debug("Session %s for user %s: %s -> %s", state.session_id, state.user_id, previous.value, target.value)

	def _begin_material(self, user_id: str) -> tuple[SessionState, bool]:
		"""Start a fresh session when the user was idle.

		Shared by the single-photo, batch and text paths so that the first
		material after IDLE never lands on leftovers of a previous session.
		"""
		state = self.store.get_or_create(user_id)
		if state.status != SessionStatus.IDLE:
			return state, False
		return self.store.reset(user_id), True

	def status_of(self, user_id: str) -> SessionStatus:
		state = self.store.get(user_id)
		return state.status if state is not None else SessionStatus.IDLE

	def accept_images(self, user_id: str, images: Sequence[bytes]) -> MaterialUpdate:
		"""Add images and exactly one placeholder entry pointing at the last of them."""
		state = self.store.get_or_create(user_id)
		if state.status == SessionStatus.PROCESSING or not images:
			return MaterialUpdate(session=state, accepted=False)

		state, first = self._begin_material(user_id)
		last_index = self.store.append_images(user_id, list(images))
		self._transition(state, SessionStatus.AWAITING_INPUT)
		self.store.append_message(user_id, MessageRole.USER, "", has_image=True, image_index=last_index)
		return MaterialUpdate(session=state, accepted=True, first_material=first)

	def accept_text(self, user_id: str, text: str) -> MaterialUpdate:
		"""Record user text while the session is idle or gathering material."""
		state = self.store.get_or_create(user_id)
		content = text.strip()
		if not content or state.status not in (SessionStatus.IDLE, SessionStatus.AWAITING_INPUT):
			return MaterialUpdate(session=state, accepted=False)

		state, first = self._begin_material(user_id)
		self._transition(state, SessionStatus.AWAITING_INPUT)
		self.store.append_message(user_id, MessageRole.USER, content)
		return MaterialUpdate(session=state, accepted=True, first_material=first)

	def request_finalize(self, user_id: str) -> FinalizeDecision:
		"""Check whether the session may be submitted and log the finalize trigger."""
		state = self.store.get_or_create(user_id)
		if state.status not in (SessionStatus.IDLE, SessionStatus.AWAITING_INPUT):
			return FinalizeDecision.NOT_ACCEPTING
		if not state.has_material() and not self.allow_empty_finalize:
			LOGGER.debug("Rejected finalize without material for user %s", user_id)
			return FinalizeDecision.NO_MATERIAL

		if state.status == SessionStatus.IDLE:
			state, _ = self._begin_material(user_id)
			self._transition(state, SessionStatus.AWAITING_INPUT)
		self.store.append_message(user_id, MessageRole.USER, "")
		return FinalizeDecision.ACCEPTED

	def can_retry(self, user_id: str) -> bool:
		state = self.store.get(user_id)
		if state is None or state.status != SessionStatus.AWAITING_INPUT:
			return False
		return state.has_material() or self.allow_empty_finalize

	def begin_processing(self, user_id: str) -> Optional[SessionState]:
		"""Move a gathering session to PROCESSING; None when it is not gathering."""
		state = self.store.get(user_id)
		if state is None or state.status != SessionStatus.AWAITING_INPUT:
			return None
		self._transition(state, SessionStatus.PROCESSING)
		return state

	def _processing_session(self, user_id: str, session_id: str) -> Optional[SessionState]:
		state = self.store.get(user_id)
		if state is None or state.session_id != session_id or state.status != SessionStatus.PROCESSING:
			LOGGER.info("Discarding result for user %s: session %s is no longer processing", user_id, session_id)
			return None
		return state

	def complete_processing(
		self,
		user_id: str,
		session_id: str,
		transactions: List[Transaction],
		summary: str,
	) -> Optional[SessionState]:
		"""Store the extracted transactions and await the user's confirmation."""
		state = self._processing_session(user_id, session_id)
		if state is None:
			return None
		state.transactions = list(transactions)
		state.last_error = None
		self.store.append_message(user_id, MessageRole.ASSISTANT, summary)
		self._transition(state, SessionStatus.AWAITING_CONFIRMATION)
		return state

	def fail_processing(self, user_id: str, session_id: str, message: str) -> FailureOutcome:
		"""Count a failed attempt; reset the session once attempts are exhausted."""
		state = self._processing_session(user_id, session_id)
		if state is None:
			return FailureOutcome.STALE
		state.processing_attempts += 1
		if state.processing_attempts >= self.max_attempts:
			LOGGER.info("User %s exhausted %d processing attempts", user_id, self.max_attempts)
			self.store.reset(user_id)
			return FailureOutcome.EXHAUSTED
		state.last_error = message
		self._transition(state, SessionStatus.AWAITING_INPUT)
		return FailureOutcome.RETRY_OFFERED

	def enter_refinement(self, user_id: str) -> bool:
		"""Reopen a proposal for more input; the proposal itself is kept."""
		state = self.store.get(user_id)
		if state is None or state.status != SessionStatus.AWAITING_CONFIRMATION:
			return False
		self._transition(state, SessionStatus.AWAITING_INPUT)
		return True

	def keep_confirmation(self, user_id: str, session_id: str) -> bool:
		"""Leave the proposal in place after a declined or failed ledger submission."""
		state = self.store.get(user_id)
		if state is None or state.session_id != session_id:
			return False
		if state.status != SessionStatus.AWAITING_CONFIRMATION:
			return False
		self._transition(state, SessionStatus.AWAITING_CONFIRMATION)
		return True

	def complete_confirmation(self, user_id: str, session_id: str) -> bool:
		"""Drop the images and fully reset after the ledger accepted the proposal."""
		state = self.store.get(user_id)
		if state is None or state.session_id != session_id:
			return False
		state.images.clear()
		self.store.reset(user_id)
		return True

	def cancel(self, user_id: str) -> SessionState:
		"""Unconditionally reset the user's session."""
		LOGGER.debug("Cancelling session for user %s", user_id)
		return self.store.reset(user_id)
