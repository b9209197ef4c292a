"""Dispatch chat events to the intake state machine and orchestrator."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from models.session_models import SessionStatus
from services.realtime import formatter
from services.realtime.batch_aggregator import MEDIA_GROUP_TIMEOUT_MS, MediaGroupAggregator
from services.realtime.orchestrator import (
	ConfirmOutcome,
	SubmissionOrchestrator,
	SubmissionOutcome,
	SubmissionResult,
)
from services.realtime.state_machine import FinalizeDecision, MaterialUpdate, SessionStateMachine
from services.realtime.transport import ChatTransport
from services.realtime.user_locks import UserLocks

LOGGER = logging.getLogger(__name__)

FINALIZE_KEYWORD = "next"


class ChatAction(str, Enum):
	"""Buttons a user can press on a prompt."""

	CONFIRM = "confirm"
	REFINE = "refine"
	CANCEL = "cancel"
	RETRY = "retry"
	FINALIZE = "finalize"


class ChatCommand(str, Enum):
	START = "start"
	CANCEL = "cancel"


ActionHandler = Callable[[ChatTransport, str], Awaitable[None]]


class ChatSessionHandler:
	"""Route inbound chat events for every user of the intake service.

	Transports are registered per user so that notices produced later, such
	as media group acknowledgements, reach the user's current connection.

	Extraction and ledger submission run as background tasks tracked per
	connection, so a connection keeps reading frames (cancel included) while
	a request is in flight.
	"""

	def __init__(
		self,
		machine: SessionStateMachine,
		orchestrator: SubmissionOrchestrator,
		locks: UserLocks,
		*,
		debounce_ms: int = MEDIA_GROUP_TIMEOUT_MS,
	) -> None:
		self.machine = machine
		self.orchestrator = orchestrator
		self.locks = locks
		self.aggregator = MediaGroupAggregator(machine, locks, self._acknowledge_batch, debounce_ms)
		self._transports: Dict[str, ChatTransport] = {}
		self._background: Dict[ChatTransport, Set[asyncio.Task]] = {}
		self._actions: Dict[ChatAction, ActionHandler] = {
			ChatAction.CONFIRM: self._confirm,
			ChatAction.REFINE: self._refine,
			ChatAction.CANCEL: self._cancel,
			ChatAction.RETRY: self._retry,
			ChatAction.FINALIZE: self._finalize,
		}
		missing = set(ChatAction) - set(self._actions)
		if missing:
			raise RuntimeError(f"No handler registered for actions: {sorted(a.value for a in missing)}")

	def attach(self, user_id: str, transport: ChatTransport) -> None:
		self._transports[user_id] = transport

	def detach(self, user_id: str, transport: ChatTransport) -> None:
		if self._transports.get(user_id) is transport:
			del self._transports[user_id]

	async def handle(self, transport: ChatTransport, user_id: str, payload: Dict[str, Any]) -> None:
		"""Process a single inbound frame."""
		message_type = payload.get("type")
		if message_type == "photo":
			await self.handle_photo(transport, user_id, payload, payload.get("media_group_id"))
		elif message_type == "text":
			await self.handle_text(transport, user_id, str(payload.get("text") or ""))
		elif message_type == "command":
			await self.handle_command(transport, user_id, str(payload.get("command") or ""))
		elif message_type == "action":
			await self.handle_action(transport, user_id, str(payload.get("action") or ""))
		else:
			raise ValueError("Unsupported message type.")

	async def handle_photo(
		self,
		transport: ChatTransport,
		user_id: str,
		reference: Dict[str, Any],
		media_group_id: Optional[str] = None,
	) -> None:
		try:
			image = await transport.fetch_image(reference)
		except ValueError as exc:
			LOGGER.warning("Could not read photo from user %s: %s", user_id, exc)
			if media_group_id:
				self.aggregator.discard(str(media_group_id))
			await transport.send_notice("Could not process the photo. Please try again.")
			return

		if media_group_id:
			self.aggregator.on_image_event(user_id, str(media_group_id), image)
			return

		self.aggregator.cancel_for_user(user_id)
		async with self.locks.for_user(user_id):
			update = self.machine.accept_images(user_id, [image])
		if not update.accepted:
			await transport.send_notice("Still processing your previous request, please wait.")
			return
		await transport.send_notice(formatter.photo_received_text(update.first_material))

	async def handle_text(self, transport: ChatTransport, user_id: str, text: str) -> None:
		self.aggregator.cancel_for_user(user_id)
		if text.strip().lower() == FINALIZE_KEYWORD:
			await self._finalize(transport, user_id)
			return

		async with self.locks.for_user(user_id):
			update = self.machine.accept_text(user_id, text)
		if update.accepted:
			await transport.send_notice(formatter.text_received_text(update.first_material))
		elif update.session.status == SessionStatus.AWAITING_CONFIRMATION:
			await transport.send_notice("Please use the buttons above to confirm, refine, or cancel the transaction.")
		elif update.session.status == SessionStatus.PROCESSING:
			await transport.send_notice("Still processing your previous request, please wait.")
		else:
			await transport.send_notice("Please send a receipt photo or describe the transaction.")

	async def handle_command(self, transport: ChatTransport, user_id: str, command: str) -> None:
		try:
			parsed = ChatCommand(command.strip().lower().lstrip("/"))
		except ValueError as exc:
			raise ValueError(f"Unsupported command: {command!r}") from exc
		if parsed is ChatCommand.START:
			self.aggregator.cancel_for_user(user_id)
			async with self.locks.for_user(user_id):
				self.machine.cancel(user_id)
			await transport.send_notice("Hello! Send me a photo of a receipt, and I'll help you process it.")
		else:
			await self._cancel(transport, user_id, "Current processing cancelled. Send me a new receipt when you're ready.")

	async def handle_action(self, transport: ChatTransport, user_id: str, action: str) -> None:
		try:
			parsed = ChatAction(action)
		except ValueError:
			LOGGER.warning("Received unknown action %r from user %s", action, user_id)
			return
		self.aggregator.cancel_for_user(user_id)
		await self._actions[parsed](transport, user_id)

	async def _finalize(self, transport: ChatTransport, user_id: str) -> None:
		async with self.locks.for_user(user_id):
			decision = self.machine.request_finalize(user_id)
			status = self.machine.status_of(user_id)
		if decision is FinalizeDecision.NO_MATERIAL:
			await transport.send_notice("There is nothing to process yet. Send a receipt photo or describe the transaction first.")
			return
		if decision is FinalizeDecision.NOT_ACCEPTING:
			if status == SessionStatus.AWAITING_CONFIRMATION:
				await transport.send_notice("Please use the buttons above to confirm, refine, or cancel the transaction.")
			else:
				await transport.send_notice("Still processing your previous request, please wait.")
			return
		await transport.send_notice("Processing your request, please wait...")
		self._spawn(transport, user_id, self._submit(transport, user_id))

	async def _retry(self, transport: ChatTransport, user_id: str) -> None:
		async with self.locks.for_user(user_id):
			ready = self.machine.can_retry(user_id)
		if not ready:
			await transport.send_notice("There is nothing to retry. Send a receipt photo or describe the transaction.")
			return
		await transport.send_notice("Retrying your request, please wait...")
		self._spawn(transport, user_id, self._submit(transport, user_id))

	async def _submit(self, transport: ChatTransport, user_id: str) -> None:
		result = await self.orchestrator.submit(user_id)
		await self._render_submission(transport, result)

	async def _render_submission(self, transport: ChatTransport, result: SubmissionResult) -> None:
		if result.outcome is SubmissionOutcome.AWAITING_CONFIRMATION:
			await transport.send_confirmation_prompt(formatter.confirmation_text(result.transactions))
		elif result.outcome is SubmissionOutcome.RETRY_OFFERED:
			await transport.send_retry_prompt(formatter.processing_failed_text(result.error))
		elif result.outcome is SubmissionOutcome.EXHAUSTED:
			await transport.send_notice(
				"Failed to process the receipt after several attempts. "
				"Please try sending a clearer image or start over with the /start command."
			)
		elif result.outcome is SubmissionOutcome.NOT_READY:
			await transport.send_notice("There is nothing to process right now.")
		# STALE: the session was cancelled meanwhile and the user was already told.

	async def _confirm(self, transport: ChatTransport, user_id: str) -> None:
		self._spawn(transport, user_id, self._send_to_ledger(transport, user_id))

	async def _send_to_ledger(self, transport: ChatTransport, user_id: str) -> None:
		result = await self.orchestrator.confirm(user_id)
		if result.outcome is ConfirmOutcome.ACCEPTED:
			await transport.send_notice(formatter.success_text(result.transactions))
		elif result.outcome is ConfirmOutcome.DECLINED:
			await transport.send_notice(
				"The finance service declined the transactions. "
				"Please check the service and try confirming again or cancel."
			)
		elif result.outcome is ConfirmOutcome.FAILED and result.failure is not None:
			await transport.send_notice(result.failure.user_message)
		elif result.outcome is ConfirmOutcome.IN_PROGRESS:
			await transport.send_notice("Your transactions are already being sent, please wait.")
		else:
			await transport.send_notice("No transactions found for confirmation.")

	async def _refine(self, transport: ChatTransport, user_id: str) -> None:
		async with self.locks.for_user(user_id):
			reopened = self.machine.enter_refinement(user_id)
		if not reopened:
			await transport.send_notice("There is no transaction to refine right now.")
			return
		await transport.send_notice(
			"Okay, the transaction details are ready for refinement. "
			'Please provide additional details or corrections, then type "next".'
		)

	async def _cancel(
		self,
		transport: ChatTransport,
		user_id: str,
		notice: str = "Transaction cancelled. Send me a new receipt when you're ready.",
	) -> None:
		self.aggregator.cancel_for_user(user_id)
		async with self.locks.for_user(user_id):
			self.machine.cancel(user_id)
		await transport.send_notice(notice)

	async def _acknowledge_batch(self, user_id: str, count: int, update: MaterialUpdate) -> None:
		transport = self._transports.get(user_id)
		if transport is None:
			LOGGER.info("No connection to acknowledge media group for user %s", user_id)
			return
		if not update.accepted:
			await transport.send_notice("Still processing your previous request, photos were not added.")
			return
		await transport.send_notice(formatter.photo_received_text(update.first_material, count, batched=True))

	def _spawn(self, transport: ChatTransport, user_id: str, work: Awaitable[None]) -> None:
		task = asyncio.create_task(self._run_background(user_id, work), name=f"chat-{user_id}")
		tasks = self._background.setdefault(transport, set())
		tasks.add(task)
		task.add_done_callback(lambda done: self._forget_task(transport, done))

	def _forget_task(self, transport: ChatTransport, task: asyncio.Task) -> None:
		tasks = self._background.get(transport)
		if tasks is None:
			return
		tasks.discard(task)
		if not tasks:
			del self._background[transport]

	async def _run_background(self, user_id: str, work: Awaitable[None]) -> None:
		try:
			await work
		except Exception:
			# Session state is settled by the orchestrator; only the reply was lost.
			LOGGER.exception("Background chat task failed for user %s", user_id)

	async def settle(self, transport: ChatTransport) -> None:
		"""Wait until every background task started for this connection is done."""
		while self._background.get(transport):
			await asyncio.gather(*list(self._background[transport]), return_exceptions=True)

	async def close(self) -> None:
		tasks = [task for pending in self._background.values() for task in pending]
		for task in tasks:
			task.cancel()
		if tasks:
			await asyncio.gather(*tasks, return_exceptions=True)
		self._background.clear()
		await self.aggregator.close()
