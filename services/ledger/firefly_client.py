"""Async client for the Firefly III personal finance API."""

import calendar
import logging
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Sequence

import httpx

from models.transaction import BudgetLimit, Category, Tag, Transaction
from services.realtime.errors import LedgerServiceError

LOGGER = logging.getLogger(__name__)

API_PREFIX = "/api/v1/"
DEFAULT_TIMEOUT = 30.0
DEFAULT_ACCOUNT_ROLE = "defaultAsset"
BOT_PREFIX = "[BOT] "


def current_month_bounds(today: Optional[date] = None) -> tuple[date, date]:
    """Return the first and last day of the month containing `today`."""
    today = today or date.today()
    last_day = calendar.monthrange(today.year, today.month)[1]
    return today.replace(day=1), today.replace(day=last_day)


def _parse_date(value: Any) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def _sum_spent(spent: Any) -> str:
    total = Decimal("0")
    for entry in spent or []:
        try:
            total += Decimal(str((entry or {}).get("sum") or "0"))
        except InvalidOperation:
            continue
    return str(total)


class FireflyLedgerClient:
    """Read categories, tags and budgets from Firefly III and post withdrawals.

    The default source account is resolved once by `ensure_default_account`
    and reused for every submission.
    """

    def __init__(
        self,
        base_url: str,
        access_token: str,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        if not base_url:
            raise ValueError("Firefly base URL is required.")
        if not access_token:
            raise ValueError("Firefly access token is required.")
        self.base_url = base_url.rstrip("/")
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=timeout)
        self.headers = {
            "Accept": "application/json",
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
        }
        self.default_account_id: Optional[str] = None

    def _url(self, endpoint: str) -> str:
        return f"{self.base_url}{API_PREFIX}{endpoint}"

    async def _request(self, method: str, endpoint: str, **kwargs: Any) -> Dict[str, Any]:
        LOGGER.debug("%s request to %s", method, self._url(endpoint))
        try:
            response = await self.http_client.request(method, self._url(endpoint), headers=self.headers, **kwargs)
        except httpx.HTTPError as exc:
            LOGGER.error("Error in %s request to %s: %s", method, endpoint, exc)
            raise LedgerServiceError(f"Failed {method} request to {endpoint}: {type(exc).__name__}: {exc}") from exc

        if response.status_code >= 400:
            message = f"Firefly API error {method} {endpoint}: {response.status_code} - {response.reason_phrase}"
            details = response.text
            LOGGER.error("%s (%s)", message, details)
            raise LedgerServiceError(f"{message}: {details}" if details else message, status_code=response.status_code)
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise LedgerServiceError(f"Firefly API returned invalid JSON for {method} {endpoint}") from exc

    async def _get(self, endpoint: str, params: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        return await self._request("GET", endpoint, params=params or {})

    async def _post(self, endpoint: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", endpoint, json=payload)

    async def check_connection(self) -> Dict[str, Any]:
        """Return the server's `about` information; raises when unreachable."""
        data = await self._get("about")
        return data.get("data") or {}

    async def list_categories(self) -> List[Category]:
        data = await self._get("categories")
        categories = [
            Category(id=str(item["id"]), name=item["attributes"]["name"]) for item in data.get("data") or []
        ]
        LOGGER.debug("Retrieved %d categories", len(categories))
        return categories

    async def list_tags(self) -> List[Tag]:
        data = await self._get("tags")
        tags = [
            Tag(
                id=str(item["id"]),
                name=item["attributes"]["tag"],
                description=item["attributes"].get("description"),
            )
            for item in data.get("data") or []
        ]
        LOGGER.debug("Retrieved %d tags", len(tags))
        return tags

    async def list_budget_limits(self, today: Optional[date] = None) -> List[BudgetLimit]:
        """Fetch budgets with their spending for the current calendar month."""
        start, end = current_month_bounds(today)
        data = await self._get("budgets", {"start": start.isoformat(), "end": end.isoformat()})
        limits = []
        for item in data.get("data") or []:
            attributes = item.get("attributes") or {}
            limits.append(
                BudgetLimit(
                    id=str(item["id"]),
                    name=attributes.get("name", ""),
                    amount=str(attributes.get("auto_budget_amount") or "0"),
                    spent=_sum_spent(attributes.get("spent")),
                    currency_code=attributes.get("currency_code") or "",
                    start_date=_parse_date(attributes.get("start_date")) or start,
                    end_date=_parse_date(attributes.get("end_date")) or end,
                )
            )
        LOGGER.debug("Retrieved %d budget limits from %s to %s", len(limits), start, end)
        return limits

    async def ensure_default_account(self) -> None:
        """Resolve the asset account whose role is `defaultAsset`.

        Raises:
            LedgerServiceError: If the request fails or no such account exists.
        """
        if self.default_account_id is not None:
            return
        data = await self._get("accounts", {"type": "asset"})
        for account in data.get("data") or []:
            attributes = account.get("attributes") or {}
            if attributes.get("account_role") == DEFAULT_ACCOUNT_ROLE:
                self.default_account_id = str(account["id"])
                LOGGER.info("Default source account set: %s (ID: %s)", attributes.get("name"), self.default_account_id)
                return
        LOGGER.warning('No default source account (account_role="%s") found in Firefly III.', DEFAULT_ACCOUNT_ROLE)
        raise LedgerServiceError(
            "Default source account not found. Please configure a default asset account in Firefly III."
        )

    def build_payload(self, transactions: Sequence[Transaction], source_id: str) -> Dict[str, Any]:
        """Return the request body that stores `transactions` as one group."""
        splits = []
        for transaction in transactions:
            split: Dict[str, Any] = {
                "type": "withdrawal",
                "amount": str(transaction.amount),
                "description": f"{BOT_PREFIX}{transaction.description}",
                "category_name": transaction.category.name if transaction.category else None,
                "source_id": source_id,
                "date": transaction.date.isoformat() if transaction.date else None,
            }
            if transaction.budget_id:
                split["budget_id"] = transaction.budget_id
            if transaction.destination:
                split["destination_name"] = transaction.destination
            if transaction.tags:
                split["tags"] = list(transaction.tags)
            splits.append(split)

        payload: Dict[str, Any] = {"transactions": splits}
        if len(transactions) > 1:
            first = transactions[0]
            payload["group_title"] = first.group_title or (
                f"{BOT_PREFIX}Split: {first.description or 'Grouped Transaction'}"
            )
        return payload

    async def submit(self, transactions: Sequence[Transaction]) -> bool:
        """Post the transactions; a split when there is more than one.

        Returns False when there is nothing to send or no default account has
        been resolved. HTTP and transport failures raise `LedgerServiceError`.
        """
        if not transactions:
            LOGGER.error("No transactions to send")
            return False
        if self.default_account_id is None:
            LOGGER.error("Default source account ID is not set")
            return False

        payload = self.build_payload(transactions, self.default_account_id)
        if len(transactions) == 1:
            LOGGER.info("Sending single transaction")
        else:
            LOGGER.info("Sending split transaction with %d items", len(transactions))
        await self._post("transactions", payload)
        LOGGER.info("Successfully sent %d transaction(s)", len(transactions))
        return True

    async def aclose(self) -> None:
        if self._owns_client:
            await self.http_client.aclose()
