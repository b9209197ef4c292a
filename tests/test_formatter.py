from decimal import Decimal

from models.transaction import Category
from services.realtime import formatter
from tests.helpers.fakes import make_transaction


def test_single_transaction_confirmation_lists_fields():
    transaction = make_transaction(
        destination="Corner Shop",
        budget_name="Food",
        budget_remaining=Decimal("87.5"),
        tags=["weekly"],
    )

    text = formatter.confirmation_text([transaction])

    assert "Amount: 12.50" in text
    assert "Date: 2024-05-01 12:30" in text
    assert "Category: Groceries" in text
    assert "Destination: Corner Shop" in text
    assert "Budget: Food (Remaining: 87.50)" in text
    assert "Tags: weekly" in text


def test_split_confirmation_shows_total_and_group_title():
    transactions = [
        make_transaction(amount="10", group_title="Split: Milk"),
        make_transaction(amount="2.5", category=Category(id="2", name="Household"), group_title="Split: Milk"),
    ]

    text = formatter.confirmation_text(transactions)

    assert text.startswith("Receipt processed into 2 separate transactions:")
    assert "Total amount: 12.5" in text
    assert "Group title: Split: Milk" in text


def test_missing_values_render_placeholders():
    text = formatter.format_transaction(make_transaction(category=None, date=None))

    assert "Category: N/A" in text
    assert "Date: N/A" in text
    assert "Tags: No tags" in text


def test_success_text_for_split_lists_categories():
    transactions = [make_transaction(amount="1"), make_transaction(amount="2")]

    assert formatter.success_text(transactions) == (
        "2 transactions successfully sent!\n- Groceries: 1\n- Groceries: 2\nTotal amount: 3"
    )


def test_short_message_is_not_split():
    assert formatter.split_message("hello") == ["hello"]


def test_split_message_respects_limit_and_keeps_blocks():
    blocks = [f"block {n}\n" + "x" * 30 for n in range(10)]
    text = "\n\n".join(blocks)

    chunks = formatter.split_message(text, limit=100)

    assert all(len(chunk) <= 100 for chunk in chunks)
    assert "\n\n".join(chunks) == text


def test_split_message_cuts_oversized_lines():
    text = "intro\n\n" + "y" * 250

    chunks = formatter.split_message(text, limit=100)

    assert chunks[0] == "intro"
    assert all(len(chunk) <= 100 for chunk in chunks)
    assert "".join(chunks[1:]) == "y" * 250
