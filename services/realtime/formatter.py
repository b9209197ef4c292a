"""User-facing texts for the intake conversation."""

from __future__ import annotations

from decimal import Decimal
from typing import List, Optional, Sequence

from models.transaction import Transaction

MAX_MESSAGE_LENGTH = 4096
NO_TAGS_PLACEHOLDER = "No tags"
NOT_AVAILABLE = "N/A"
DATE_FORMAT = "%Y-%m-%d %H:%M"


def _format_date(transaction: Transaction) -> str:
	return transaction.date.strftime(DATE_FORMAT) if transaction.date else NOT_AVAILABLE


def format_transaction(transaction: Transaction) -> str:
	"""Return a multi-line description of a single transaction."""
	category = transaction.category.name if transaction.category else NOT_AVAILABLE
	lines = [
		f"Amount: {transaction.amount}",
		f"Date: {_format_date(transaction)}",
		f"Category: {category}",
		f"Description: {transaction.description}",
		f"Destination: {transaction.destination or NOT_AVAILABLE}",
	]
	if transaction.budget_name:
		budget = f"Budget: {transaction.budget_name}"
		if transaction.budget_remaining is not None:
			budget += f" (Remaining: {transaction.budget_remaining:.2f})"
		lines.append(budget)
	lines.append(f"Tags: {', '.join(transaction.tags) if transaction.tags else NO_TAGS_PLACEHOLDER}")
	return "\n".join(lines)


def total_amount(transactions: Sequence[Transaction]) -> Decimal:
	return sum((Decimal(t.amount) for t in transactions), Decimal("0"))


def extraction_summary(transactions: Sequence[Transaction]) -> str:
	"""Assistant log entry recorded after a successful extraction."""
	if len(transactions) == 1:
		return f"I analyzed the receipt:\n{format_transaction(transactions[0])}"
	blocks = "\n\n".join(
		f"Transaction {index}:\n{format_transaction(t)}" for index, t in enumerate(transactions, start=1)
	)
	return f"I analyzed the receipt and found {len(transactions)} different categories:\n\n{blocks}"


def confirmation_text(transactions: Sequence[Transaction]) -> str:
	if len(transactions) == 1:
		return (
			"Receipt processing result:\n"
			f"{format_transaction(transactions[0])}\n\n"
			"Is everything correct? Confirm to save, Refine to add details, or Cancel."
		)
	blocks = "\n\n".join(
		f"{index} ------\n{format_transaction(t)}" for index, t in enumerate(transactions, start=1)
	)
	first = transactions[0]
	return (
		f"Receipt processed into {len(transactions)} separate transactions:\n"
		f"{blocks}\n\n"
		f"Total amount: {total_amount(transactions)}\n"
		f"Group title: {first.group_title or NOT_AVAILABLE}\n"
		f"Date: {_format_date(first)}\n\n"
		"Is everything correct? Confirm to save all, Refine to add details, or Cancel."
	)


def success_text(transactions: Sequence[Transaction]) -> str:
	if len(transactions) == 1:
		t = transactions[0]
		category = t.category.name if t.category else NOT_AVAILABLE
		return f"Transaction successfully sent!\nAmount: {t.amount}\nCategory: {category}"
	categories = "\n".join(
		f"- {t.category.name if t.category else NOT_AVAILABLE}: {t.amount}" for t in transactions
	)
	return (
		f"{len(transactions)} transactions successfully sent!\n"
		f"{categories}\n"
		f"Total amount: {total_amount(transactions)}"
	)


def photo_received_text(first_material: bool, count: int = 1, batched: bool = False) -> str:
	if batched:
		if first_material:
			return f'I received {count} receipt photos. Add a comment or type "next" to process them.'
		return f'I received {count} more photos. Continue adding comments/photos, or type "next" to process.'
	if first_material:
		return 'I received your receipt photo. Add a comment or type "next" to continue without a comment.'
	return 'I received another photo. Add a comment or send more photos. Type "next" to process.'


def text_received_text(first_material: bool) -> str:
	if first_material:
		return (
			"I've received your transaction description. "
			'Type "next" to process it, or add more details with another message.'
		)
	return 'Comment added. Type "next" to process, or send more details/photos.'


def processing_failed_text(error: Optional[str]) -> str:
	return f"An error occurred while processing the receipt: {error or 'Unknown error occurred'}"


def split_message(text: str, limit: int = MAX_MESSAGE_LENGTH) -> List[str]:
	"""Split text into chunks no longer than `limit`.

	Blocks separated by blank lines are kept together where possible; an
	oversized block is split on line breaks, and an oversized line is cut.
	"""
	if len(text) <= limit:
		return [text]

	chunks: List[str] = []
	current = ""

	def push(piece: str, separator: str) -> None:
		nonlocal current
		if not current:
			current = piece
		elif len(current) + len(separator) + len(piece) <= limit:
			current += separator + piece
		else:
			chunks.append(current)
			current = piece

	for block in text.split("\n\n"):
		if len(block) <= limit:
			push(block, "\n\n")
			continue
		if current:
			chunks.append(current)
			current = ""
		for line in block.split("\n"):
			while len(line) > limit:
				if current:
					chunks.append(current)
					current = ""
				chunks.append(line[:limit])
				line = line[limit:]
			push(line, "\n")
	if current:
		chunks.append(current)
	return chunks
