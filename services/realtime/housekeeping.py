"""Periodic eviction of abandoned intake sessions."""

from __future__ import annotations

import asyncio
import logging
from typing import List

from services.realtime.session_store import SessionStore
from services.realtime.user_locks import UserLocks

LOGGER = logging.getLogger(__name__)

SESSION_CLEANUP_INTERVAL_MINUTES = 15
SESSION_MAX_AGE_HOURS = 24


def evict_once(store: SessionStore, locks: UserLocks, max_age_hours: float = SESSION_MAX_AGE_HOURS) -> List[str]:
	"""Evict stale sessions and release the locks of their users."""
	evicted = store.evict_stale(max_age_hours)
	for user_id in evicted:
		locks.forget(user_id)
	return evicted


async def run_eviction_loop(
	store: SessionStore,
	locks: UserLocks,
	interval_minutes: float = SESSION_CLEANUP_INTERVAL_MINUTES,
	max_age_hours: float = SESSION_MAX_AGE_HOURS,
) -> None:
	"""Run `evict_once` every `interval_minutes` until cancelled."""
	LOGGER.info(
		"Session cleanup scheduled every %s minute(s), max age %sh",
		interval_minutes,
		max_age_hours,
	)
	while True:
		await asyncio.sleep(interval_minutes * 60)
		try:
			evict_once(store, locks, max_age_hours)
		except Exception:
			LOGGER.exception("Session cleanup failed")
