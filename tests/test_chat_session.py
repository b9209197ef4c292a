import asyncio

import pytest

from models.session_models import SessionStatus
from services.realtime.errors import ExtractionServiceError
from tests.helpers.fakes import FakeExtractor, FakeLedger
from tests.helpers.intake import USER, build_intake


def photo(ref="receipt-a", group=None):
    frame = {"type": "photo", "image_url": ref}
    if group is not None:
        frame["media_group_id"] = group
    return frame


def text(value):
    return {"type": "text", "text": value}


def action(value):
    return {"type": "action", "action": value}


async def send(intake, frame):
    await intake.handler.handle(intake.transport, USER, frame)
    await intake.handler.settle(intake.transport)


async def test_single_photo_is_acknowledged(intake):
    await send(intake, photo())

    state = intake.store.get(USER)
    assert state.status == SessionStatus.AWAITING_INPUT
    assert len(state.images) == 1
    assert state.messages[0].has_image and state.messages[0].image_index == 0
    assert intake.transport.texts == [
        'I received your receipt photo. Add a comment or type "next" to continue without a comment.'
    ]


async def test_text_while_idle_starts_session(intake):
    await send(intake, text("coffee $5"))

    state = intake.store.get(USER)
    assert state.status == SessionStatus.AWAITING_INPUT
    assert [(m.content, m.has_image) for m in state.messages] == [("coffee $5", False)]


async def test_next_submits_and_prompts_for_confirmation(intake):
    await send(intake, photo())
    await send(intake, text(" NEXT "))

    assert len(intake.extractor.calls) == 1
    prompts = intake.transport.of_type("confirmation")
    assert len(prompts) == 1
    assert "Milk and bread" in prompts[0]["text"]
    assert intake.store.get(USER).status == SessionStatus.AWAITING_CONFIRMATION


async def test_media_group_then_next_extracts_all_images_once(intake):
    for ref in ("receipt-a", "receipt-b", "receipt-a"):
        await send(intake, photo(ref, group="album-1"))
    await asyncio.sleep(0.2)
    await send(intake, text("next"))

    batch_acks = [t for t in intake.transport.texts if t.startswith("I received 3")]
    assert len(batch_acks) == 1
    assert len(intake.extractor.calls) == 1
    assert len(intake.extractor.calls[0]["images"]) == 3


async def test_text_cancels_a_pending_media_group(intake):
    await send(intake, photo(group="album-1"))
    await send(intake, text("lunch"))
    await asyncio.sleep(0.2)

    assert intake.store.get(USER).images == []
    assert intake.handler.aggregator.pending_for(USER) is None


async def test_finalize_without_material_is_rejected(intake):
    await send(intake, text("next"))

    assert intake.extractor.calls == []
    assert intake.transport.texts[-1].startswith("There is nothing to process yet")


async def test_finalize_without_material_when_allowed():
    intake = build_intake(allow_empty_finalize=True)

    await send(intake, action("finalize"))

    assert len(intake.extractor.calls) == 1
    assert intake.extractor.calls[0]["images"] == []
    await intake.handler.close()


async def test_failure_offers_retry_then_succeeds():
    intake = build_intake(FakeExtractor([ExtractionServiceError("model timeout")]))

    await send(intake, photo())
    await send(intake, text("next"))
    retry = intake.transport.of_type("retry")
    assert retry == [{"type": "retry", "text": "An error occurred while processing the receipt: model timeout"}]

    await send(intake, action("retry"))
    assert len(intake.transport.of_type("confirmation")) == 1
    assert intake.store.get(USER).processing_attempts == 1
    await intake.handler.close()


async def test_exhausted_attempts_send_terminal_notice():
    failures = [ExtractionServiceError("nope") for _ in range(3)]
    intake = build_intake(FakeExtractor(failures))

    await send(intake, photo())
    await send(intake, text("next"))
    await send(intake, action("retry"))
    await send(intake, action("retry"))

    assert len(intake.transport.of_type("retry")) == 2
    assert intake.transport.texts[-1].startswith("Failed to process the receipt after several attempts")
    assert intake.store.get(USER).status == SessionStatus.IDLE
    await intake.handler.close()


async def test_refine_waits_for_explicit_finalize(intake):
    await send(intake, photo())
    await send(intake, text("next"))
    await send(intake, action("refine"))
    await send(intake, text("it was 13.50"))

    # Refinement text alone does not resubmit.
    assert len(intake.extractor.calls) == 1
    assert intake.store.get(USER).status == SessionStatus.AWAITING_INPUT

    await send(intake, text("next"))
    assert len(intake.extractor.calls) == 2
    history = [m.content for m in intake.extractor.calls[1]["history"]]
    assert "it was 13.50" in history
    assert any(c.startswith("I analyzed the receipt") for c in history)


async def test_confirm_sends_to_ledger(intake):
    await send(intake, photo())
    await send(intake, text("next"))
    await send(intake, action("confirm"))

    assert len(intake.ledger.submitted) == 1
    assert intake.transport.texts[-1].startswith("Transaction successfully sent!")
    assert intake.store.get(USER).status == SessionStatus.IDLE


async def test_declined_confirm_keeps_buttons_usable():
    intake = build_intake(ledger=FakeLedger(submit_results=[False, True]))

    await send(intake, photo())
    await send(intake, text("next"))
    await send(intake, action("confirm"))
    assert intake.store.get(USER).status == SessionStatus.AWAITING_CONFIRMATION

    await send(intake, action("confirm"))
    assert intake.store.get(USER).status == SessionStatus.IDLE
    assert len(intake.ledger.submitted) == 2
    await intake.handler.close()


async def test_text_during_confirmation_points_to_buttons(intake):
    await send(intake, photo())
    await send(intake, text("next"))
    await send(intake, text("hello?"))

    assert intake.transport.texts[-1].startswith("Please use the buttons above")


async def test_cancel_action_resets(intake):
    await send(intake, photo())
    await send(intake, action("cancel"))

    assert intake.store.get(USER).status == SessionStatus.IDLE
    assert intake.store.get(USER).images == []
    assert intake.transport.texts[-1].startswith("Transaction cancelled.")


async def test_start_command_greets_and_resets(intake):
    await send(intake, text("lunch"))
    await send(intake, {"type": "command", "command": "/start"})

    assert intake.store.get(USER).messages == []
    assert intake.transport.texts[-1].startswith("Hello!")


async def test_unreadable_photo_is_reported(intake):
    await send(intake, photo("missing"))

    assert intake.store.get(USER) is None
    assert intake.transport.texts == ["Could not process the photo. Please try again."]


async def test_unknown_action_is_ignored(intake):
    await send(intake, action("next_refine_old"))

    assert intake.transport.frames == []


async def test_unsupported_frames_raise_value_error(intake):
    with pytest.raises(ValueError):
        await send(intake, {"type": "sticker"})
    with pytest.raises(ValueError):
        await send(intake, {"type": "command", "command": "help"})


async def test_batch_ack_after_disconnect_is_dropped():
    intake = build_intake()
    await send(intake, photo(group="album-1"))
    intake.handler.detach(USER, intake.transport)
    await asyncio.sleep(0.2)

    assert intake.transport.frames == []
    assert len(intake.store.get(USER).images) == 1
    await intake.handler.close()


async def test_cancel_reaches_an_in_flight_extraction():
    gate = asyncio.Event()
    intake = build_intake(FakeExtractor(gate=gate))

    await send(intake, photo())
    await intake.handler.handle(intake.transport, USER, text("next"))
    await intake.extractor.started.wait()

    await intake.handler.handle(intake.transport, USER, photo())
    assert intake.transport.texts[-1] == "Still processing your previous request, please wait."

    await intake.handler.handle(intake.transport, USER, action("cancel"))
    assert intake.transport.texts[-1].startswith("Transaction cancelled.")
    assert intake.store.get(USER).status == SessionStatus.IDLE

    gate.set()
    await intake.handler.settle(intake.transport)

    assert intake.transport.of_type("confirmation") == []
    assert intake.store.get(USER).status == SessionStatus.IDLE
    await intake.handler.close()


async def test_close_cancels_background_work():
    gate = asyncio.Event()
    intake = build_intake(FakeExtractor(gate=gate))

    await send(intake, photo())
    await intake.handler.handle(intake.transport, USER, text("next"))
    await intake.extractor.started.wait()
    await intake.handler.close()

    await intake.handler.settle(intake.transport)
    assert intake.transport.of_type("confirmation") == []
