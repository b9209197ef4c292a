from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import List, Optional


@dataclass(frozen=True)
class Category:
    id: str
    name: str


@dataclass(frozen=True)
class Tag:
    id: str
    name: str
    description: Optional[str] = None


@dataclass(frozen=True)
class BudgetLimit:
    """Budget limit for the current period as reported by the ledger.

    Attributes:
        id: Budget identifier the extraction model may reference.
        name: Display name of the budget.
        amount: Limit amount as a decimal string.
        spent: Amount spent in the period as a decimal string. The ledger
            reports spending as a negative number.
        currency_code: ISO currency code, empty when unknown.
        start_date: First day of the period.
        end_date: Last day of the period.
    """

    id: str
    name: str
    amount: str
    spent: str = "0"
    currency_code: str = ""
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @property
    def remaining(self) -> Optional[Decimal]:
        """Return the unspent amount, or None when either figure is malformed."""
        try:
            return Decimal(self.amount) + Decimal(self.spent or "0")
        except (InvalidOperation, TypeError):
            return None


@dataclass
class Transaction:
    """A structured transaction proposed by extraction and sent to the ledger.

    Attributes:
        amount: Positive amount of the withdrawal.
        description: Short description of the purchase.
        category: Category chosen from the ledger's category list.
        date: Date and time of the purchase.
        destination: Optional payee or store name.
        budget_id: Optional budget the transaction counts against.
        budget_name: Display name resolved from the budget limits.
        budget_remaining: Remaining budget at extraction time.
        tags: Tag names attached to the transaction.
        group_title: Shared title when several transactions form one split.
    """

    amount: Decimal
    description: str
    category: Optional[Category]
    date: Optional[datetime]
    destination: Optional[str] = None
    budget_id: Optional[str] = None
    budget_name: Optional[str] = None
    budget_remaining: Optional[Decimal] = None
    tags: List[str] = field(default_factory=list)
    group_title: Optional[str] = None
