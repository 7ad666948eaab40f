"""
Core Ledger Models

Accounts, categories and ledger transactions.

A Transaction is the source of truth for balance and budget effects.
Accounts and budgets only hold state derived from the transaction stream.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# ENUMS
# =============================================================================

class TransactionType(str, Enum):
    """Direction of a ledger entry."""
    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER = "transfer"


class AccountType(str, Enum):
    """Supported account kinds."""
    CHECKING = "CHECKING"
    SAVINGS = "SAVINGS"
    CREDIT_CARD = "CREDIT_CARD"
    LOAN = "LOAN"
    INVESTMENT = "INVESTMENT"
    CASH = "CASH"
    OTHER = "OTHER"


class CategoryType(str, Enum):
    """Whether a category groups income or expenses."""
    INCOME = "income"
    EXPENSE = "expense"


def balance_delta(transaction_type: TransactionType, amount: Decimal) -> Decimal:
    """
    Signed effect of a transaction on its account balance.

    Income adds, expense subtracts. Transfers are a no-op on a single
    account (the counter-account is not modelled).
    """
    if transaction_type == TransactionType.INCOME:
        return amount
    if transaction_type == TransactionType.EXPENSE:
        return -amount
    return Decimal("0")


# =============================================================================
# ACCOUNTS AND CATEGORIES
# =============================================================================

class Account(BaseModel):
    """A money container owned by one user."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=200)
    type: AccountType = AccountType.CHECKING
    balance: Decimal = Field(default=Decimal("0"))
    currency: str = Field(default="PLN", max_length=3)
    is_active: bool = True
    description: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class Category(BaseModel):
    """A user-defined transaction category."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=100)
    type: CategoryType = CategoryType.EXPENSE


# =============================================================================
# TRANSACTIONS
# =============================================================================

class Transaction(BaseModel):
    """
    A single ledger entry.

    Created by the user directly or materialized by the scheduler, in which
    case `scheduled_transaction_id` links back to the generating schedule.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: str = Field(..., min_length=1)
    account_id: UUID
    category_id: Optional[UUID] = None
    amount: Decimal = Field(
        ...,
        description="Amount in account currency. Negated copies are used "
                    "internally to reverse budget effects."
    )
    type: TransactionType
    date: datetime = Field(default_factory=datetime.utcnow)
    description: Optional[str] = Field(default=None, max_length=500)
    payee: Optional[str] = Field(default=None, max_length=200)
    tags: list[str] = Field(default_factory=list)
    is_recurring: bool = False
    scheduled_transaction_id: Optional[UUID] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def balance_delta(self) -> Decimal:
        return balance_delta(self.type, self.amount)


class TransactionDraft(BaseModel):
    """User-supplied fields for a new transaction."""
    model_config = ConfigDict(str_strip_whitespace=True)

    account_id: UUID
    category_id: Optional[UUID] = None
    amount: Decimal = Field(..., gt=0)
    type: TransactionType
    date: Optional[datetime] = None
    description: Optional[str] = Field(default=None, max_length=500)
    payee: Optional[str] = Field(default=None, max_length=200)
    tags: list[str] = Field(default_factory=list)
    is_recurring: bool = False
    scheduled_transaction_id: Optional[UUID] = None


# Fields whose change can move spend between budgets
BUDGET_RELEVANT_FIELDS = frozenset({"type", "amount", "category_id", "date"})


class TransactionUpdate(BaseModel):
    """
    Partial update of a transaction.

    Only fields explicitly set are applied (`model_dump(exclude_unset=True)`).
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    account_id: Optional[UUID] = None
    category_id: Optional[UUID] = None
    amount: Optional[Decimal] = Field(default=None, gt=0)
    type: Optional[TransactionType] = None
    date: Optional[datetime] = None
    description: Optional[str] = Field(default=None, max_length=500)
    payee: Optional[str] = Field(default=None, max_length=200)
    tags: Optional[list[str]] = None
    is_recurring: Optional[bool] = None

    def touches_budgets(self) -> bool:
        """True when a field that can move spend between budgets is set."""
        return bool(self.model_fields_set & BUDGET_RELEVANT_FIELDS)
