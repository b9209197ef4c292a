import asyncio
import time

from services.realtime.housekeeping import evict_once, run_eviction_loop
from services.realtime.session_store import SessionStore
from services.realtime.user_locks import UserLocks


def test_evict_once_drops_sessions_and_locks():
    store = SessionStore()
    locks = UserLocks()
    store.get_or_create("old").last_updated = time.time() - 48 * 3600
    old_lock = locks.for_user("old")
    store.get_or_create("fresh")

    assert evict_once(store, locks, max_age_hours=24) == ["old"]
    assert store.get("old") is None
    assert locks.for_user("old") is not old_lock


async def test_eviction_loop_runs_until_cancelled():
    store = SessionStore()
    locks = UserLocks()
    store.get_or_create("old").last_updated = time.time() - 48 * 3600

    task = asyncio.create_task(run_eviction_loop(store, locks, interval_minutes=0.001, max_age_hours=24))
    await asyncio.sleep(0.2)
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)

    assert store.get("old") is None
    assert task.cancelled()
