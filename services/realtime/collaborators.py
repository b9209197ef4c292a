"""Contracts of the extraction and ledger services used by the orchestrator."""

from __future__ import annotations

from typing import Any, Dict, List, Protocol, Sequence, Union

from models.session_models import SessionMessage
from models.transaction import BudgetLimit, Category, Tag, Transaction


class ReceiptExtractor(Protocol):
	async def extract(
		self,
		images: Sequence[bytes],
		history: Sequence[SessionMessage],
		categories: Sequence[Category],
		tags: Sequence[Tag],
		budget_limits: Sequence[BudgetLimit],
	) -> Union[Transaction, List[Transaction]]:
		"""Turn receipt images and conversation text into one or more transactions.

		Must accept an empty image list for text-only submissions and raise
		with a human-readable message on failure.
		"""
		...


class Ledger(Protocol):
	async def list_categories(self) -> List[Category]: ...

	async def list_tags(self) -> List[Tag]: ...

	async def list_budget_limits(self) -> List[BudgetLimit]: ...

	async def ensure_default_account(self) -> None:
		"""Resolve the default source account; raise when none is configured."""
		...

	async def submit(self, transactions: Sequence[Transaction]) -> bool:
		"""Store the transactions as one group; False means the ledger declined."""
		...

	async def check_connection(self) -> Dict[str, Any]:
		"""Return server information; raise when the ledger is unreachable."""
		...
