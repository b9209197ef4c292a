"""Builders for a fully wired intake core backed by fakes."""

from __future__ import annotations

import io
from dataclasses import dataclass

from PIL import Image

from services.realtime.chat_session import ChatSessionHandler
from services.realtime.orchestrator import SubmissionOrchestrator
from services.realtime.session_store import SessionStore
from services.realtime.state_machine import SessionStateMachine
from services.realtime.user_locks import UserLocks
from tests.helpers.fakes import FakeExtractor, FakeLedger, RecordingTransport

USER = "user-1"
TEST_DEBOUNCE_MS = 50


def make_png(color: str = "white") -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (4, 4), color).save(buffer, format="PNG")
    return buffer.getvalue()


@dataclass
class Intake:
    store: SessionStore
    locks: UserLocks
    machine: SessionStateMachine
    extractor: FakeExtractor
    ledger: FakeLedger
    orchestrator: SubmissionOrchestrator
    handler: ChatSessionHandler
    transport: RecordingTransport


def build_intake(
    extractor: FakeExtractor | None = None,
    ledger: FakeLedger | None = None,
    *,
    allow_empty_finalize: bool = False,
    max_attempts: int = 3,
    min_tags: int = 0,
    debounce_ms: int = TEST_DEBOUNCE_MS,
) -> Intake:
    store = SessionStore()
    locks = UserLocks()
    machine = SessionStateMachine(store, max_attempts=max_attempts, allow_empty_finalize=allow_empty_finalize)
    extractor = extractor or FakeExtractor()
    ledger = ledger or FakeLedger()
    orchestrator = SubmissionOrchestrator(store, machine, locks, extractor, ledger, min_tags=min_tags)
    handler = ChatSessionHandler(machine, orchestrator, locks, debounce_ms=debounce_ms)
    transport = RecordingTransport(images={"receipt-a": make_png("white"), "receipt-b": make_png("black")})
    handler.attach(USER, transport)
    return Intake(store, locks, machine, extractor, ledger, orchestrator, handler, transport)


