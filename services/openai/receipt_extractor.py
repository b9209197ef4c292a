"""Receipt transaction extraction using an OpenAI-compatible Responses API."""

import logging
import time
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Sequence, Union

from openai import AsyncOpenAI

from models.session_models import SessionMessage
from models.transaction import BudgetLimit, Category, Tag, Transaction
from services.openai.extraction_prompts import DEFAULT_PROMPT_TEMPLATE, build_system_prompt
from services.openai.media_inputs import build_inputs
from services.openai.response_parser import extract_usage, parse_function_call
from services.openai.transaction_schema import (
    FUNCTION_NAME,
    SINGLE_FUNCTION_NAME,
    build_function_definition,
    build_single_function_definition,
)
from services.realtime.errors import ExtractionServiceError

LOGGER = logging.getLogger(__name__)

DEFAULT_MODEL = "google/gemini-2.5-flash-preview"
TEMPERATURE = 0.2
DATE_FORMAT = "%Y-%m-%d %H:%M"
UNKNOWN_CATEGORY = Category(id="unknown", name="Unknown")
SPLIT_TITLE_PREFIX = "Split: "


class OpenAIReceiptExtractor:
    """Turn receipt images and user comments into proposed transactions."""

    def __init__(
        self,
        client: AsyncOpenAI,
        *,
        prompt_template: str = DEFAULT_PROMPT_TEMPLATE,
        min_tags: int = 0,
        model: str = DEFAULT_MODEL,
    ) -> None:
        if client is None:
            raise ValueError("OpenAI client must be provided.")
        if not prompt_template:
            raise ValueError("Prompt template must not be empty.")
        self.client = client
        self.prompt_template = prompt_template
        self.min_tags = max(0, min_tags)
        self.model = model

    async def extract(
        self,
        images: Sequence[bytes],
        history: Sequence[SessionMessage],
        categories: Sequence[Category],
        tags: Sequence[Tag],
        budget_limits: Sequence[BudgetLimit],
    ) -> Union[Transaction, List[Transaction]]:
        """Extract one transaction, or a split list of them, from the submission.

        Raises:
            ExtractionServiceError: If the model call fails or returns unusable output.
        """
        start_time = time.time()
        try:
            system_prompt = build_system_prompt(self.prompt_template, categories, tags, budget_limits, self.min_tags)
            inputs = build_inputs(system_prompt, history, images)
            result = await self._extract_from_inputs(inputs, categories, budget_limits)
        except Exception as exc:
            LOGGER.error("Error processing receipt and comments: %s", exc)
            raise ExtractionServiceError(f"Failed to process receipt or comments: {exc}") from exc
        LOGGER.info("Receipt extraction latency: %.3fs", time.time() - start_time)
        return result

    async def _extract_from_inputs(
        self,
        inputs: List[Dict[str, Any]],
        categories: Sequence[Category],
        budget_limits: Sequence[BudgetLimit],
    ) -> Union[Transaction, List[Transaction]]:
        response = await self._create_response(inputs, build_function_definition(self.min_tags))
        data = parse_function_call(response, tool_name=FUNCTION_NAME)
        date = self._parse_date(data.get("date"))
        items = data.get("transactions") or []

        if data.get("requiresSplit") and items:
            group_title = data.get("groupTitle") or (
                f"{SPLIT_TITLE_PREFIX}{items[0].get('description') or 'Grouped Transaction'}"
            )
            return [
                self._build_transaction(item, date, categories, budget_limits, group_title)
                for item in items
            ]
        if items:
            return self._build_transaction(items[0], date, categories, budget_limits)

        LOGGER.warning("Multiple transactions schema returned no transactions, retrying with single schema.")
        response = await self._create_response(inputs, build_single_function_definition(self.min_tags))
        item = parse_function_call(response, tool_name=SINGLE_FUNCTION_NAME)
        return self._build_transaction(item, self._parse_date(item.get("date")), categories, budget_limits)

    async def _create_response(self, inputs: List[Dict[str, Any]], tool: Dict[str, Any]) -> Any:
        """Send the extraction request with a forced function call."""
        try:
            response = await self.client.responses.create(
                model=self.model,
                input=inputs,
                tools=[tool],
                tool_choice={"type": "function", "name": tool["name"]},
                temperature=TEMPERATURE,
            )
        except Exception as exc:
            LOGGER.error("Error during Responses API call: %s", exc)
            raise
        LOGGER.debug("Extraction usage: %s", extract_usage(response))
        return response

    def _build_transaction(
        self,
        item: Dict[str, Any],
        date: Optional[datetime],
        categories: Sequence[Category],
        budget_limits: Sequence[BudgetLimit],
        group_title: Optional[str] = None,
    ) -> Transaction:
        budget_id = item.get("budgetId") or None
        budget_name: Optional[str] = None
        budget_remaining: Optional[Decimal] = None
        if budget_id:
            budget = next((limit for limit in budget_limits if limit.id == str(budget_id)), None)
            if budget is None:
                LOGGER.warning("Budget ID %s provided but not found in budget limits.", budget_id)
            else:
                budget_name = budget.name
                budget_remaining = budget.remaining
                if budget_remaining is None:
                    LOGGER.warning(
                        "Could not calculate budget remaining for budget %s (limit %s, spent %s)",
                        budget.name,
                        budget.amount,
                        budget.spent,
                    )

        return Transaction(
            amount=self._parse_amount(item.get("amount")),
            description=str(item.get("description") or ""),
            category=self._find_category(item.get("categoryId"), categories),
            date=date,
            destination=item.get("destination") or None,
            budget_id=str(budget_id) if budget_id else None,
            budget_name=budget_name,
            budget_remaining=budget_remaining,
            tags=self._accepted_tags(item.get("tags")),
            group_title=group_title,
        )

    def _accepted_tags(self, tags: Any) -> List[str]:
        """Return the tags, or none at all when fewer than the minimum were given."""
        names = [str(tag) for tag in tags] if isinstance(tags, list) else []
        if len(names) < self.min_tags:
            LOGGER.warning(
                "Invalid tag set: received %d tags, but require at least %d.", len(names), self.min_tags
            )
            return []
        return names

    @staticmethod
    def _find_category(category_id: Any, categories: Sequence[Category]) -> Category:
        for category in categories:
            if category.id == str(category_id):
                return category
        return categories[0] if categories else UNKNOWN_CATEGORY

    @staticmethod
    def _parse_amount(value: Any) -> Decimal:
        try:
            return Decimal(str(value))
        except (InvalidOperation, ValueError):
            LOGGER.warning("Model returned a non-numeric amount: %r", value)
            return Decimal("0")

    @staticmethod
    def _parse_date(value: Any) -> Optional[datetime]:
        if not value:
            return None
        try:
            return datetime.strptime(str(value).strip(), DATE_FORMAT)
        except ValueError:
            LOGGER.warning("Model returned a date in an unexpected format: %r", value)
            return None
