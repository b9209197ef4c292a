"""Prompt builders for receipt transaction extraction."""

import logging
from pathlib import Path
from typing import Optional, Sequence

from models.transaction import BudgetLimit, Category, Tag

LOGGER = logging.getLogger(__name__)

CATEGORIES_PLACEHOLDER = "{{categories}}"
TAGS_PLACEHOLDER = "{{tags}}"
BUDGET_INFO_PLACEHOLDER = "{{budgetInfo}}"
MIN_TAGS_PLACEHOLDER = "{{minTags}}"

DEFAULT_USER_TEXT = "Analyze these receipts and create the transaction(s)."

DEFAULT_PROMPT_TEMPLATE = """You are a careful bookkeeping assistant. You turn photos of receipts and the \
user's comments into withdrawal transactions for a personal finance ledger.

Available categories (id: name):
{{categories}}

{{tags}}

Current budgets:
{{budgetInfo}}

Rules:
- Use only category ids from the list above.
- Pick the budget whose purpose best matches each purchase and return its id.
- Attach at least {{minTags}} tags to every transaction, preferring the available tags.
- Split the receipt into several transactions only when its items belong to different \
categories, budgets or tags; otherwise return a single transaction.
- Use the date and time printed on the receipt in YYYY-MM-DD HH:mm format. If the time \
is missing, use the current time.
- Follow any corrections from the user's comments over what the receipt shows.
"""


def describe_categories(categories: Sequence[Category]) -> str:
    return ", ".join(f"{category.id}: {category.name}" for category in categories)


def describe_tags(tags: Sequence[Tag]) -> str:
    if not tags:
        return "No predefined tags available."
    lines = [f"- {tag.name}: {tag.description or 'No description'}" for tag in tags]
    return "Available tags:\n" + "\n".join(lines)


def describe_budgets(budget_limits: Sequence[BudgetLimit]) -> str:
    if not budget_limits:
        return "Budget limits are not set."
    lines = []
    for limit in budget_limits:
        remaining = limit.remaining
        remaining_text = f"{remaining:.2f}" if remaining is not None else "unknown"
        lines.append(f"- Budget ID: {limit.id}, Name: {limit.name}: {limit.amount} (Remaining: {remaining_text})")
    return "\n".join(lines)


def build_system_prompt(
    template: str,
    categories: Sequence[Category],
    tags: Sequence[Tag],
    budget_limits: Sequence[BudgetLimit],
    min_tags: int,
) -> str:
    """Fill every placeholder of the prompt template."""
    replacements = {
        BUDGET_INFO_PLACEHOLDER: describe_budgets(budget_limits),
        CATEGORIES_PLACEHOLDER: describe_categories(categories),
        MIN_TAGS_PLACEHOLDER: str(min_tags),
        TAGS_PLACEHOLDER: describe_tags(tags),
    }
    prompt = template
    for placeholder, value in replacements.items():
        prompt = prompt.replace(placeholder, value)
    return prompt


def load_prompt_template(path: Optional[str]) -> str:
    """Read the prompt template at `path`, or return the built-in template.

    Raises:
        RuntimeError: If a path is given but the file cannot be read or is empty.
    """
    if not path:
        return DEFAULT_PROMPT_TEMPLATE
    try:
        template = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise RuntimeError(f"Failed to read prompt template from {path}") from exc
    if not template.strip():
        raise RuntimeError(f"Prompt template {path} is empty")
    LOGGER.info("Loaded prompt template from %s", path)
    return template
