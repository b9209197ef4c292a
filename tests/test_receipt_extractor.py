from datetime import datetime
from decimal import Decimal

import pytest

from models.session_models import MessageRole, SessionMessage
from models.transaction import BudgetLimit, Category, Tag
from services.openai.extraction_prompts import build_system_prompt, load_prompt_template
from services.openai.receipt_extractor import OpenAIReceiptExtractor
from services.openai.transaction_schema import FUNCTION_NAME, SINGLE_FUNCTION_NAME
from services.realtime.errors import ExtractionServiceError
from tests.helpers.intake import make_png
from tests.helpers.openai_stub import AsyncOpenAIStub

CATEGORIES = [Category(id="1", name="Groceries"), Category(id="2", name="Household")]
TAGS = [Tag(id="7", name="weekly", description="Weekly shop")]
BUDGETS = [BudgetLimit(id="b1", name="Food", amount="300", spent="-100")]


def _item(**overrides):
    item = {
        "amount": 12.5,
        "budgetId": "b1",
        "categoryId": "1",
        "description": "Milk",
        "destination": "Corner Shop",
        "tags": ["weekly"],
    }
    item.update(overrides)
    return item


def _history():
    return [
        SessionMessage(role=MessageRole.USER, content="", has_image=True, image_index=0),
        SessionMessage(role=MessageRole.USER, content="paid by card"),
        SessionMessage(role=MessageRole.USER, content=""),
    ]


async def _extract(stub, history=None, images=None, min_tags=0):
    extractor = OpenAIReceiptExtractor(stub, min_tags=min_tags, model="test-model")
    return await extractor.extract(
        images if images is not None else [make_png()],
        history if history is not None else _history(),
        CATEGORIES,
        TAGS,
        BUDGETS,
    )


async def test_single_transaction_is_mapped():
    stub = AsyncOpenAIStub(
        {"date": "2024-05-01 12:30", "groupTitle": None, "requiresSplit": False, "transactions": [_item()]}
    )

    transaction = await _extract(stub)

    assert transaction.amount == Decimal("12.5")
    assert transaction.category == CATEGORIES[0]
    assert transaction.date == datetime(2024, 5, 1, 12, 30)
    assert transaction.budget_name == "Food"
    assert transaction.budget_remaining == Decimal("200")
    assert transaction.destination == "Corner Shop"
    assert transaction.tags == ["weekly"]
    assert transaction.group_title is None


async def test_request_forces_the_function_and_sends_images():
    stub = AsyncOpenAIStub(
        {"date": "2024-05-01 12:30", "groupTitle": None, "requiresSplit": False, "transactions": [_item()]}
    )

    await _extract(stub)

    call = stub.calls[0]
    assert call["model"] == "test-model"
    assert call["tool_choice"] == {"type": "function", "name": FUNCTION_NAME}
    system, first_user = call["input"][0], call["input"][1]
    assert system["role"] == "system"
    assert "1: Groceries, 2: Household" in system["content"][0]["text"]
    assert first_user["content"][0] == {"type": "input_text", "text": "paid by card"}
    assert first_user["content"][1]["image_url"].startswith("data:image/png;base64,")


async def test_split_result_shares_group_title():
    stub = AsyncOpenAIStub(
        {
            "date": "2024-05-01 12:30",
            "groupTitle": None,
            "requiresSplit": True,
            "transactions": [_item(), _item(categoryId="2", description="Soap", amount=3)],
        }
    )

    transactions = await _extract(stub)

    assert [t.category.name for t in transactions] == ["Groceries", "Household"]
    assert {t.group_title for t in transactions} == {"Split: Milk"}


async def test_unknown_category_falls_back_to_first():
    stub = AsyncOpenAIStub(
        {"date": "2024-05-01 12:30", "groupTitle": None, "requiresSplit": False, "transactions": [_item(categoryId="99")]}
    )

    transaction = await _extract(stub)

    assert transaction.category == CATEGORIES[0]


async def test_too_few_tags_are_dropped():
    stub = AsyncOpenAIStub(
        {"date": "2024-05-01 12:30", "groupTitle": None, "requiresSplit": False, "transactions": [_item()]}
    )

    transaction = await _extract(stub, min_tags=2)

    assert transaction.tags == []


async def test_empty_list_falls_back_to_single_schema():
    stub = AsyncOpenAIStub(
        {"date": "2024-05-01 12:30", "groupTitle": None, "requiresSplit": False, "transactions": []},
        {**_item(description="Taxi"), "date": "2024-05-02 08:00"},
    )

    transaction = await _extract(stub)

    assert stub.calls[1]["tool_choice"]["name"] == SINGLE_FUNCTION_NAME
    assert transaction.description == "Taxi"
    assert transaction.date == datetime(2024, 5, 2, 8, 0)


async def test_refinement_history_is_replayed_after_first_message():
    history = _history() + [
        SessionMessage(role=MessageRole.ASSISTANT, content="I analyzed the receipt:\nAmount: 12.5"),
        SessionMessage(role=MessageRole.USER, content="it was 13.50"),
    ]
    stub = AsyncOpenAIStub(
        {"date": "2024-05-01 12:30", "groupTitle": None, "requiresSplit": False, "transactions": [_item(amount=13.5)]}
    )

    await _extract(stub, history=history)

    roles = [(m["role"], m["content"][0]["text"]) for m in stub.calls[0]["input"][2:]]
    assert roles == [
        ("assistant", "I analyzed the receipt:\nAmount: 12.5"),
        ("user", "it was 13.50"),
    ]


async def test_text_only_submission_uses_default_instruction():
    stub = AsyncOpenAIStub(
        {"date": "2024-05-01 12:30", "groupTitle": None, "requiresSplit": False, "transactions": [_item()]}
    )

    await _extract(stub, history=[], images=[])

    first_user = stub.calls[0]["input"][1]
    assert first_user["content"] == [
        {"type": "input_text", "text": "Analyze these receipts and create the transaction(s)."}
    ]


async def test_model_errors_are_wrapped():
    stub = AsyncOpenAIStub(RuntimeError("rate limited"))

    with pytest.raises(ExtractionServiceError, match="Failed to process receipt or comments: rate limited"):
        await _extract(stub)


async def test_model_errors_are_logged_on_the_module_logger(caplog):
    stub = AsyncOpenAIStub(RuntimeError("rate limited"))

    with caplog.at_level("ERROR"), pytest.raises(ExtractionServiceError):
        await _extract(stub)

    api_errors = [r for r in caplog.records if "Responses API call" in r.getMessage()]
    assert [r.name for r in api_errors] == ["services.openai.receipt_extractor"]


def test_prompt_placeholders_are_filled():
    prompt = build_system_prompt(
        "{{categories}}|{{tags}}|{{budgetInfo}}|{{minTags}}", CATEGORIES, TAGS, BUDGETS, 2
    )

    categories, tags, budgets, min_tags = prompt.split("|")
    assert categories == "1: Groceries, 2: Household"
    assert tags == "Available tags:\n- weekly: Weekly shop"
    assert budgets == "- Budget ID: b1, Name: Food: 300 (Remaining: 200.00)"
    assert min_tags == "2"


def test_prompt_template_loading(tmp_path):
    template = tmp_path / "prompt.template"
    template.write_text("Categories: {{categories}}", encoding="utf-8")

    assert load_prompt_template(str(template)) == "Categories: {{categories}}"
    assert "{{categories}}" in load_prompt_template(None)
    with pytest.raises(RuntimeError):
        load_prompt_template(str(tmp_path / "missing.template"))
