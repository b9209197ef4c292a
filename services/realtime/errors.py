"""Failure taxonomy for submission and confirmation."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class FailureKind(str, Enum):
	"""Reasons a submission can fail; all of them count as one attempt."""

	VALIDATION = "validation"
	SIDE_DATA_UNAVAILABLE = "side_data_unavailable"
	EXTRACTION = "extraction"


class SubmissionError(Exception):
	"""A retryable submission failure carrying the collaborator's message verbatim."""

	def __init__(self, kind: FailureKind, message: str) -> None:
		super().__init__(message)
		self.kind = kind
		self.message = message


class ExtractionServiceError(RuntimeError):
	"""Raised by the extraction collaborator when it cannot produce transactions."""


class LedgerServiceError(RuntimeError):
	"""Raised by the ledger collaborator on HTTP or transport failures."""

	def __init__(self, message: str, status_code: Optional[int] = None) -> None:
		super().__init__(message)
		self.status_code = status_code


class IllegalTransitionError(RuntimeError):
	"""A status change the state machine does not allow. Always a bug."""


class LedgerFailureKind(str, Enum):
	CONNECTIVITY = "connectivity"
	AUTHENTICATION = "authentication"
	ACCOUNT_MISCONFIGURED = "account_misconfigured"
	GENERIC = "generic"


@dataclass(frozen=True)
class LedgerFailure:
	kind: LedgerFailureKind
	user_message: str


_LEDGER_MESSAGES = {
	LedgerFailureKind.CONNECTIVITY: (
		"Could not reach the finance service. Check the connection and try confirming again or cancel."
	),
	LedgerFailureKind.AUTHENTICATION: (
		"The finance service rejected the credentials. Check the access token, then confirm again or cancel."
	),
	LedgerFailureKind.ACCOUNT_MISCONFIGURED: (
		"No default asset account is configured in the finance service. "
		"Configure one, then confirm again or cancel."
	),
	LedgerFailureKind.GENERIC: (
		"An error occurred while sending the transactions. Please try confirming again or cancel."
	),
}

_CONNECTIVITY_MARKERS = (
	"econnrefused",
	"connection refused",
	"connecterror",
	"connect error",
	"timed out",
	"timeout",
	"network",
	"name or service not known",
	"temporary failure in name resolution",
)
_AUTH_STATUSES = (401, 403)
_AUTH_PATTERN = re.compile(r"\b(401|403|unauthorized|unauthenticated|forbidden|invalid access token|invalid token|token expired)\b")
_ACCOUNT_MARKERS = ("default source account", "defaultasset", "asset account")


def classify_ledger_error(exc: BaseException) -> LedgerFailure:
	"""Map a ledger exception onto a user-facing category.

	An HTTP status decides authentication on its own; the auth words in the
	message only count for failures without one. Anything unrecognized is
	reported as a generic failure.
	"""
	text = f"{type(exc).__name__}: {exc}".lower()
	status = getattr(exc, "status_code", None)

	if status is not None:
		is_auth = status in _AUTH_STATUSES
	else:
		is_auth = _AUTH_PATTERN.search(text) is not None

	if is_auth:
		kind = LedgerFailureKind.AUTHENTICATION
	elif any(marker in text for marker in _ACCOUNT_MARKERS):
		kind = LedgerFailureKind.ACCOUNT_MISCONFIGURED
	elif any(marker in text for marker in _CONNECTIVITY_MARKERS):
		kind = LedgerFailureKind.CONNECTIVITY
	else:
		kind = LedgerFailureKind.GENERIC
	return LedgerFailure(kind=kind, user_message=_LEDGER_MESSAGES[kind])
