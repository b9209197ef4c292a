"""Shared fixtures wiring the intake core with in-memory collaborators."""

from __future__ import annotations

import pytest

from services.realtime.session_store import SessionStore
from services.realtime.state_machine import SessionStateMachine
from tests.helpers.intake import build_intake, make_png


@pytest.fixture
def png_bytes() -> bytes:
    return make_png()


@pytest.fixture
def store() -> SessionStore:
    return SessionStore()


@pytest.fixture
def machine(store: SessionStore) -> SessionStateMachine:
    return SessionStateMachine(store)


@pytest.fixture
async def intake():
    built = build_intake()
    yield built
    await built.handler.close()
