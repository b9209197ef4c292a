"""Collapse media-group photos into a single append to the session."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Set

from services.realtime.state_machine import MaterialUpdate, SessionStateMachine
from services.realtime.user_locks import UserLocks

LOGGER = logging.getLogger(__name__)

MEDIA_GROUP_TIMEOUT_MS = 500

FlushCallback = Callable[[str, int, MaterialUpdate], Awaitable[None]]


@dataclass
class PendingBatch:
	"""Images of one media group that have not settled yet."""

	correlation_id: str
	user_id: str
	images: List[bytes] = field(default_factory=list)
	task: Optional[asyncio.Task] = None


class MediaGroupAggregator:
	"""Debounce photos sharing a correlation id and flush them together.

	Every image restarts the settle timer of its batch. When no image arrives
	within the debounce window the batch is handed to the state machine in
	arrival order and `on_flush` is awaited once with the user id, the number
	of images and the resulting `MaterialUpdate`.
	"""

	def __init__(
		self,
		machine: SessionStateMachine,
		locks: UserLocks,
		on_flush: FlushCallback,
		debounce_ms: int = MEDIA_GROUP_TIMEOUT_MS,
	) -> None:
		self.machine = machine
		self.locks = locks
		self.on_flush = on_flush
		self.debounce = debounce_ms / 1000
		self._pending: Dict[str, PendingBatch] = {}
		self._flushing: Set[asyncio.Task] = set()

	def pending_for(self, user_id: str) -> Optional[PendingBatch]:
		for batch in self._pending.values():
			if batch.user_id == user_id:
				return batch
		return None

	def on_image_event(self, user_id: str, correlation_id: str, image: bytes) -> PendingBatch:
		"""Add an image to its batch and restart the batch's settle timer."""
		batch = self._pending.get(correlation_id)
		if batch is None:
			batch = PendingBatch(correlation_id=correlation_id, user_id=user_id)
			self._pending[correlation_id] = batch
			LOGGER.debug("Started media group %s for user %s", correlation_id, user_id)
		elif batch.task is not None:
			batch.task.cancel()
		batch.images.append(image)
		batch.task = asyncio.create_task(self._settle(correlation_id), name=f"media-group-{correlation_id}")
		return batch

	def cancel_for_user(self, user_id: str) -> bool:
		"""Discard the user's pending batch without flushing it."""
		batch = self.pending_for(user_id)
		if batch is None:
			return False
		LOGGER.info("Cancelling pending media group %s for user %s", batch.correlation_id, user_id)
		self.discard(batch.correlation_id)
		return True

	def discard(self, correlation_id: str) -> None:
		batch = self._pending.pop(correlation_id, None)
		if batch is not None and batch.task is not None:
			batch.task.cancel()

	async def _settle(self, correlation_id: str) -> None:
		await asyncio.sleep(self.debounce)
		batch = self._pending.pop(correlation_id, None)
		if batch is None:
			return
		task = asyncio.current_task()
		if task is not None:
			self._flushing.add(task)
		try:
			await self._flush(batch)
		finally:
			if task is not None:
				self._flushing.discard(task)

	async def _flush(self, batch: PendingBatch) -> None:
		LOGGER.info(
			"Finalizing media group %s for user %s with %d photos",
			batch.correlation_id,
			batch.user_id,
			len(batch.images),
		)
		async with self.locks.for_user(batch.user_id):
			update = self.machine.accept_images(batch.user_id, batch.images)
		try:
			await self.on_flush(batch.user_id, len(batch.images), update)
		except Exception:
			# The session is already updated; only the acknowledgement was lost.
			LOGGER.exception("Failed to acknowledge media group %s", batch.correlation_id)

	async def close(self) -> None:
		"""Cancel every pending and in-flight flush."""
		tasks = [batch.task for batch in self._pending.values() if batch.task is not None]
		tasks.extend(self._flushing)
		self._pending.clear()
		for task in tasks:
			task.cancel()
		if tasks:
			await asyncio.gather(*tasks, return_exceptions=True)
