"""Per-user mutual exclusion for session mutations."""

from __future__ import annotations

import asyncio
from typing import Dict


class UserLocks:
	"""Hand out one asyncio.Lock per user id.

	Locks are held only while a session is being mutated, never across calls
	to the extraction or ledger services.
	"""

	def __init__(self) -> None:
		self._locks: Dict[str, asyncio.Lock] = {}

	def for_user(self, user_id: str) -> asyncio.Lock:
		lock = self._locks.get(user_id)
		if lock is None:
			lock = asyncio.Lock()
			self._locks[user_id] = lock
		return lock

	def forget(self, user_id: str) -> None:
		"""Drop an idle user's lock so evicted users do not accumulate locks."""
		lock = self._locks.get(user_id)
		if lock is not None and not lock.locked():
			del self._locks[user_id]
