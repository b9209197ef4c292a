"""Submission and confirmation of intake sessions against external services."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Iterable, List, Optional, Set, Tuple

from models.session_models import SessionMessage, SessionStatus
from models.transaction import BudgetLimit, Category, Tag, Transaction
from services.realtime import formatter
from services.realtime.collaborators import Ledger, ReceiptExtractor
from services.realtime.errors import FailureKind, LedgerFailure, SubmissionError, classify_ledger_error
from services.realtime.session_store import SessionStore
from services.realtime.state_machine import SessionStateMachine
from services.realtime.user_locks import UserLocks

LOGGER = logging.getLogger(__name__)

SPLIT_TITLE_PREFIX = "Split: "


class SubmissionOutcome(str, Enum):
	AWAITING_CONFIRMATION = "awaiting_confirmation"
	RETRY_OFFERED = "retry_offered"
	EXHAUSTED = "exhausted"
	STALE = "stale"
	NOT_READY = "not_ready"


class ConfirmOutcome(str, Enum):
	ACCEPTED = "accepted"
	DECLINED = "declined"
	FAILED = "failed"
	NOTHING_TO_CONFIRM = "nothing_to_confirm"
	IN_PROGRESS = "in_progress"


@dataclass
class SubmissionResult:
	outcome: SubmissionOutcome
	transactions: List[Transaction] = field(default_factory=list)
	error: Optional[str] = None
	failure_kind: Optional[FailureKind] = None


@dataclass
class ConfirmResult:
	outcome: ConfirmOutcome
	transactions: List[Transaction] = field(default_factory=list)
	failure: Optional[LedgerFailure] = None


def validate_transactions(transactions: Iterable[Transaction]) -> None:
	"""Raise a validation `SubmissionError` for the first malformed transaction."""
	for index, transaction in enumerate(transactions, start=1):
		problems = []
		try:
			amount = Decimal(str(transaction.amount))
		except (InvalidOperation, TypeError, ValueError):
			amount = None
		if amount is None or not amount.is_finite() or amount <= 0:
			problems.append("amount must be positive")
		if not (transaction.description or "").strip():
			problems.append("description is empty")
		if transaction.category is None:
			problems.append("category is missing")
		if transaction.date is None:
			problems.append("date is missing")
		if problems:
			raise SubmissionError(
				FailureKind.VALIDATION,
				f"Transaction {index} is invalid: {', '.join(problems)}",
			)


def enforce_min_tags(transactions: Iterable[Transaction], min_tags: int) -> None:
	"""Drop tag lists shorter than the required minimum; the transaction itself stays."""
	if min_tags <= 0:
		return
	for transaction in transactions:
		if transaction.tags and len(transaction.tags) < min_tags:
			LOGGER.warning(
				"Dropping %d tag(s) from %r: at least %d are required",
				len(transaction.tags),
				transaction.description,
				min_tags,
			)
			transaction.tags = []


def apply_group_title(transactions: List[Transaction]) -> List[Transaction]:
	"""Give every member of a split the same title; a single transaction has none."""
	if len(transactions) == 1:
		transactions[0].group_title = None
		return transactions
	title = next((t.group_title for t in transactions if t.group_title), None)
	if not title:
		title = f"{SPLIT_TITLE_PREFIX}{transactions[0].description or 'Grouped Transaction'}"
	for transaction in transactions:
		transaction.group_title = title
	return transactions


class SubmissionOrchestrator:
	"""The only component that talks to the extraction and ledger services.

	Session locks are held while reading or mutating the session and released
	across every external call; results are applied only if the session that
	started the work is still the current one.
	"""

	def __init__(
		self,
		store: SessionStore,
		machine: SessionStateMachine,
		locks: UserLocks,
		extractor: ReceiptExtractor,
		ledger: Ledger,
		*,
		min_tags: int = 0,
	) -> None:
		self.store = store
		self.machine = machine
		self.locks = locks
		self.extractor = extractor
		self.ledger = ledger
		self.min_tags = max(0, min_tags)
		self._confirming: Set[str] = set()

	async def submit(self, user_id: str) -> SubmissionResult:
		"""Run extraction for a session the caller has finalized."""
		async with self.locks.for_user(user_id):
			state = self.machine.begin_processing(user_id)
			if state is None:
				return SubmissionResult(outcome=SubmissionOutcome.NOT_READY)
			session_id = state.session_id
			images = list(state.images)
			history = list(state.messages)

		LOGGER.info("Processing submission for user %s with %d image(s)", user_id, len(images))
		try:
			transactions = await self._extract(user_id, images, history)
		except SubmissionError as exc:
			LOGGER.error("Submission failed for user %s (%s): %s", user_id, exc.kind.value, exc.message)
			async with self.locks.for_user(user_id):
				outcome = self.machine.fail_processing(user_id, session_id, exc.message)
			return SubmissionResult(
				outcome=SubmissionOutcome(outcome.value),
				error=exc.message,
				failure_kind=exc.kind,
			)

		async with self.locks.for_user(user_id):
			applied = self.machine.complete_processing(
				user_id, session_id, transactions, formatter.extraction_summary(transactions)
			)
		if applied is None:
			return SubmissionResult(outcome=SubmissionOutcome.STALE)
		LOGGER.info("Generated %d transaction(s) for user %s", len(transactions), user_id)
		return SubmissionResult(outcome=SubmissionOutcome.AWAITING_CONFIRMATION, transactions=transactions)

	async def _extract(
		self,
		user_id: str,
		images: List[bytes],
		history: List[SessionMessage],
	) -> List[Transaction]:
		categories, tags, budget_limits = await self._fetch_side_data(user_id)
		try:
			result = await self.extractor.extract(images, history, categories, tags, budget_limits)
		except Exception as exc:
			LOGGER.error("Extraction failed for user %s: %s", user_id, exc)
			raise SubmissionError(FailureKind.EXTRACTION, str(exc)) from exc

		transactions = list(result) if isinstance(result, (list, tuple)) else [result]
		if not transactions:
			raise SubmissionError(FailureKind.VALIDATION, "No transactions were extracted from the submission.")
		validate_transactions(transactions)
		enforce_min_tags(transactions, self.min_tags)
		return apply_group_title(transactions)

	async def _fetch_side_data(
		self, user_id: str
	) -> Tuple[List[Category], List[Tag], List[BudgetLimit]]:
		LOGGER.debug("Fetching ledger side data for user %s", user_id)
		try:
			categories, tags, budget_limits, _ = await asyncio.gather(
				self.ledger.list_categories(),
				self.ledger.list_tags(),
				self.ledger.list_budget_limits(),
				self.ledger.ensure_default_account(),
			)
		except Exception as exc:
			LOGGER.error("Failed to fetch ledger side data for user %s: %s", user_id, exc)
			raise SubmissionError(
				FailureKind.SIDE_DATA_UNAVAILABLE,
				f"Failed to fetch required data from financial service: {exc}",
			) from exc
		LOGGER.debug(
			"Retrieved %d categories, %d tags, %d budget limits",
			len(categories),
			len(tags),
			len(budget_limits),
		)
		return list(categories), list(tags), list(budget_limits)

	async def confirm(self, user_id: str) -> ConfirmResult:
		"""Send the proposed transactions to the ledger as one group."""
		async with self.locks.for_user(user_id):
			if user_id in self._confirming:
				return ConfirmResult(outcome=ConfirmOutcome.IN_PROGRESS)
			state = self.store.get(user_id)
			if state is None or not state.transactions or state.status != SessionStatus.AWAITING_CONFIRMATION:
				return ConfirmResult(outcome=ConfirmOutcome.NOTHING_TO_CONFIRM)
			session_id = state.session_id
			transactions = list(state.transactions)
			self._confirming.add(user_id)

		try:
			accepted = await self.ledger.submit(transactions)
		except Exception as exc:
			failure = classify_ledger_error(exc)
			LOGGER.error("Ledger submission failed for user %s (%s): %s", user_id, failure.kind.value, exc)
			async with self.locks.for_user(user_id):
				self.machine.keep_confirmation(user_id, session_id)
			return ConfirmResult(outcome=ConfirmOutcome.FAILED, transactions=transactions, failure=failure)
		finally:
			self._confirming.discard(user_id)

		async with self.locks.for_user(user_id):
			if accepted:
				self.machine.complete_confirmation(user_id, session_id)
			else:
				self.machine.keep_confirmation(user_id, session_id)
		if not accepted:
			LOGGER.warning("Ledger declined %d transaction(s) for user %s", len(transactions), user_id)
			return ConfirmResult(outcome=ConfirmOutcome.DECLINED, transactions=transactions)
		LOGGER.info("Sent %d transaction(s) for user %s", len(transactions), user_id)
		return ConfirmResult(outcome=ConfirmOutcome.ACCEPTED, transactions=transactions)
