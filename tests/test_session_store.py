import time

from models.session_models import MessageRole, SessionStatus
from services.realtime.session_store import SessionStore


def test_get_or_create_returns_same_idle_session(store: SessionStore):
    first = store.get_or_create("a")
    second = store.get_or_create("a")

    assert first is second
    assert first.status == SessionStatus.IDLE
    assert store.get("missing") is None
    assert len(store) == 1


def test_reset_clears_everything_and_changes_identity(store: SessionStore):
    state = store.get_or_create("a")
    store.append_images("a", [b"img"])
    store.append_message("a", MessageRole.USER, "coffee $5")
    state.processing_attempts = 2
    state.last_error = "boom"
    state.status = SessionStatus.AWAITING_INPUT

    fresh = store.reset("a")

    assert fresh.session_id != state.session_id
    assert fresh.images == []
    assert fresh.messages == []
    assert fresh.transactions == []
    assert fresh.processing_attempts == 0
    assert fresh.last_error is None
    assert fresh.status == SessionStatus.IDLE


def test_reset_can_preserve_a_copy_of_images(store: SessionStore):
    state = store.get_or_create("a")
    store.append_images("a", [b"one", b"two"])

    fresh = store.reset("a", preserve_images=True)

    assert fresh.images == [b"one", b"two"]
    assert fresh.images is not state.images
    assert fresh.messages == []


def test_sessions_are_isolated_per_user(store: SessionStore):
    store.append_images("a", [b"img"])
    store.append_message("a", MessageRole.USER, "hello")
    b = store.get_or_create("b")

    store.reset("a")

    assert b.images == []
    assert b.messages == []
    assert store.get("b") is b


def test_append_images_returns_last_index(store: SessionStore):
    assert store.append_images("a", [b"1", b"2", b"3"]) == 2
    assert store.append_images("a", [b"4"]) == 3


def test_evict_stale_removes_only_old_sessions(store: SessionStore):
    old = store.get_or_create("old")
    store.get_or_create("new")
    old.last_updated = time.time() - 25 * 3600

    evicted = store.evict_stale(24)

    assert evicted == ["old"]
    assert store.get("old") is None
    assert store.get("new") is not None


def test_snapshot_is_json_safe(store: SessionStore):
    store.append_images("a", [b"img"])
    store.append_message("a", MessageRole.USER, "", has_image=True, image_index=0)

    snapshot = store.snapshot("a")

    assert snapshot["image_count"] == 1
    assert snapshot["status"] == "idle"
    assert snapshot["messages"] == [{"role": "user", "content": "", "has_image": True, "image_index": 0}]
    assert store.snapshot("nobody") is None
