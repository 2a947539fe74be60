"""Domain model entities for homeledger.

These are pure data classes representing business concepts, independent of
database schema. Stored records are owned by the persistence layer; the
engine only reads them and proposes changes, so every entity is frozen.
"""

from dataclasses import dataclass, field
from datetime import datetime, date
from decimal import Decimal
from enum import Enum
from typing import Optional


class AccountType(str, Enum):
    """Kinds of accounts a household can hold."""

    CHECKING = "CHECKING"
    SAVINGS = "SAVINGS"
    CREDIT = "CREDIT"
    INVESTMENT = "INVESTMENT"
    LOAN = "LOAN"
    MORTGAGE = "MORTGAGE"
    ASSET = "ASSET"
    OTHER = "OTHER"


class RuleOperator(str, Enum):
    """How a rule's predicates are combined."""

    AND = "AND"
    OR = "OR"


class RecurringFrequency(str, Enum):
    """Supported recurrence buckets."""

    WEEKLY = "WEEKLY"
    BIWEEKLY = "BIWEEKLY"
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    SEMIANNUAL = "SEMIANNUAL"
    ANNUAL = "ANNUAL"


class RecurringStatus(str, Enum):
    """Lifecycle status of a recurring pattern."""

    DETECTED = "DETECTED"
    CONFIRMED = "CONFIRMED"
    DISMISSED = "DISMISSED"
    ENDED = "ENDED"


@dataclass(frozen=True)
class Account:
    """Bank account domain entity."""

    id: int
    name: str
    account_type: AccountType
    created_at: datetime
    owner_id: Optional[int] = None
    current_balance: Decimal = Decimal("0")
    is_manual: bool = True
    external_id: Optional[str] = None


@dataclass(frozen=True)
class Category:
    """Category domain entity with hierarchical structure."""

    id: int
    name: str
    parent_id: Optional[int]
    created_at: datetime


@dataclass(frozen=True)
class Transaction:
    """Persisted transaction domain entity."""

    id: int
    account_id: int
    date: date
    amount: Decimal
    description: str
    merchant: Optional[str] = None
    category_id: Optional[int] = None
    notes: Optional[str] = None
    external_id: Optional[str] = None
    is_manual: bool = True
    is_adjustment: bool = False
    is_pending: bool = False
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class Candidate:
    """A not-yet-persisted transaction awaiting classification."""

    account_id: Optional[int]
    date: date
    amount: Decimal
    description: str
    merchant: Optional[str] = None
    category_hint: Optional[str] = None
    category_id: Optional[int] = None
    notes: Optional[str] = None
    external_id: Optional[str] = None
    is_pending: bool = False
    # Id of a stored transaction the row claims to be (re-imported exports)
    transaction_id: Optional[int] = None


@dataclass(frozen=True)
class RuleConditions:
    """Closed set of optional rule predicates.

    ``None`` (or an empty tuple for the membership predicates) means the
    predicate is not specified.
    """

    merchant_contains: Optional[str] = None
    merchant_equals: Optional[str] = None
    description_contains: Optional[str] = None
    description_equals: Optional[str] = None
    amount_min: Optional[Decimal] = None
    amount_max: Optional[Decimal] = None
    amount_equals: Optional[Decimal] = None
    account_ids: tuple[int, ...] = ()
    account_types: tuple[AccountType, ...] = ()
    owner_ids: tuple[int, ...] = ()
    operator: RuleOperator = RuleOperator.AND


@dataclass(frozen=True)
class CategorizationRule:
    """User-defined categorization rule."""

    id: int
    name: str
    category_id: int
    conditions: RuleConditions
    priority: int
    created_at: datetime
    is_enabled: bool = True
    household_id: Optional[int] = None


@dataclass(frozen=True)
class RecurringPattern:
    """A recurring payment pattern inferred from transaction history."""

    merchant_key: str
    frequency: RecurringFrequency
    expected_amount: Decimal
    amount_variance: Decimal
    next_expected_date: date
    last_occurrence: date
    occurrence_count: int
    confidence: float
    id: Optional[int] = None
    day_of_month: Optional[int] = None
    day_of_week: Optional[int] = None
    account_id: Optional[int] = None
    category_id: Optional[int] = None
    status: RecurringStatus = RecurringStatus.DETECTED
    is_paused: bool = False
    is_manual: bool = False
    transaction_ids: tuple[int, ...] = field(default=(), compare=False)


@dataclass(frozen=True)
class ExternalTransaction:
    """A transaction record supplied by a bank-sync feed."""

    transaction_id: str
    date: date
    amount: Decimal
    name: str
    merchant_name: Optional[str] = None
    pending: bool = False
    category_hint: Optional[str] = None


@dataclass(frozen=True)
class ExternalAccount:
    """An account record supplied by a bank-sync feed."""

    external_id: str
    name: str
    account_type: AccountType
    current_balance: Decimal
    official_name: Optional[str] = None
    transactions: tuple[ExternalTransaction, ...] = ()
