"""Schema definitions for the transaction extraction tools."""

from typing import Any, Dict

FUNCTION_NAME = "record_transactions"
SINGLE_FUNCTION_NAME = "record_transaction"

DATE_TIME_PATTERN = r"^\d{4}-\d{2}-\d{2} \d{2}:\d{2}$"
DATE_TIME_FORMAT_DESC = "YYYY-MM-DD HH:mm format"


def _transaction_properties(min_tags: int) -> Dict[str, Any]:
    return {
        "amount": {"type": "number", "description": "Transaction amount"},
        "budgetId": {
            "type": "string",
            "description": "Budget ID to which this transaction belongs (required)",
        },
        "categoryId": {"type": "string", "description": "Category ID for this transaction"},
        "description": {"type": "string", "description": "Brief description of the transaction"},
        "destination": {
            "type": ["string", "null"],
            "description": "Name of the payee/store (if known)",
        },
        "tags": {
            "type": "array",
            "items": {"type": "string"},
            "description": f"Array of tags for the transaction. At least {min_tags} tags are required.",
        },
    }


def _date_property(description: str) -> Dict[str, Any]:
    return {"type": "string", "pattern": DATE_TIME_PATTERN, "description": description}


def build_function_definition(min_tags: int) -> Dict[str, Any]:
    """Return the tool that records one or more transactions sharing a date."""
    transaction_properties = _transaction_properties(min_tags)
    return {
        "type": "function",
        "name": FUNCTION_NAME,
        "description": "Record the transactions found in the receipts and comments.",
        "parameters": {
            "type": "object",
            "properties": {
                "date": _date_property(
                    f"Common date and time for all transactions in {DATE_TIME_FORMAT_DESC}. "
                    "If the time is not specified in the receipt, use the current time."
                ),
                "groupTitle": {
                    "type": ["string", "null"],
                    "description": "Common title for a group of transactions if they are split by category",
                },
                "requiresSplit": {
                    "type": "boolean",
                    "description": (
                        "Whether the receipt needs to be split into multiple transactions for different "
                        "categories, budgets, or with different evaluation tags"
                    ),
                },
                "transactions": {
                    "type": "array",
                    "description": (
                        "Array of transactions. If splitting is required, include all necessary transactions "
                        f"with the correct categories, budgets, and tags. Each transaction should have at "
                        f"least {min_tags} tags."
                    ),
                    "items": {
                        "type": "object",
                        "properties": transaction_properties,
                        "required": list(transaction_properties),
                        "additionalProperties": False,
                    },
                },
            },
            "required": ["date", "groupTitle", "requiresSplit", "transactions"],
            "additionalProperties": False,
        },
        "strict": True,
    }


def build_single_function_definition(min_tags: int) -> Dict[str, Any]:
    """Return the fallback tool that records exactly one dated transaction."""
    properties = _transaction_properties(min_tags)
    properties["date"] = _date_property(
        f"Transaction date and time in {DATE_TIME_FORMAT_DESC}. "
        "If the time is not specified in the receipt, use the current time."
    )
    return {
        "type": "function",
        "name": SINGLE_FUNCTION_NAME,
        "description": "Record the single transaction found in the receipts and comments.",
        "parameters": {
            "type": "object",
            "properties": properties,
            "required": list(properties),
            "additionalProperties": False,
        },
        "strict": True,
    }
