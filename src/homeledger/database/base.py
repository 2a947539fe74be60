"""Abstract database interface."""

from abc import ABC, abstractmethod
from typing import Any, ContextManager, Optional
from datetime import date
from decimal import Decimal

# Import entities directly to avoid circular import through domain/__init__.py
from homeledger.domain.entities import (
    Account,
    AccountType,
    CategorizationRule,
    Category,
    RecurringPattern,
    RecurringStatus,
    Transaction,
)
from homeledger.domain.errors import InvalidRuleConfiguration


class Database(ABC):
    """Abstract database interface for homeledger.

    The engine reads through this interface and commits only through its
    mutation methods. Each mutation commits on its own unless it runs
    inside ``transaction()``.
    """

    @abstractmethod
    def connect(self) -> None:
        """Connect to the database."""
        pass

    @abstractmethod
    def disconnect(self) -> None:
        """Disconnect from the database."""
        pass

    @abstractmethod
    def initialize_schema(self) -> None:
        """Initialize database schema (create tables)."""
        pass

    @abstractmethod
    def transaction(self) -> ContextManager[None]:
        """Group mutations into one all-or-nothing unit.

        Mutations inside the block are committed together when it exits
        normally and rolled back when it raises. Blocks may nest; only the
        outermost one commits.
        """
        pass

    # Account operations
    @abstractmethod
    def create_account(
        self,
        name: str,
        account_type: AccountType,
        owner_id: Optional[int] = None,
        current_balance: Decimal = Decimal("0"),
        is_manual: bool = True,
        external_id: Optional[str] = None,
    ) -> int:
        """Create a new account. Returns account ID."""
        pass

    @abstractmethod
    def get_account(self, account_id: int) -> Optional[Account]:
        """Get account by ID."""
        pass

    @abstractmethod
    def get_account_by_external_id(self, external_id: str) -> Optional[Account]:
        """Get the account linked to a bank-feed account id."""
        pass

    @abstractmethod
    def list_accounts(self, manual_only: bool = False) -> list[Account]:
        """List accounts, optionally only manually-maintained ones."""
        pass

    @abstractmethod
    def link_account(self, account_id: int, external_id: str) -> None:
        """Link a local account to a bank-feed account (it stops being manual)."""
        pass

    # Category operations
    @abstractmethod
    def create_category(self, name: str, parent_id: Optional[int] = None) -> int:
        """Create a category. Returns category ID."""
        pass

    @abstractmethod
    def get_category(self, category_id: int) -> Optional[Category]:
        """Get category by ID."""
        pass

    @abstractmethod
    def get_category_by_path(self, path: str) -> Optional[Category]:
        """Get category by path (e.g., 'Food & Dining > Groceries')."""
        pass

    @abstractmethod
    def list_categories(self, parent_id: Optional[int] = None) -> list[Category]:
        """List categories, optionally filtered by parent."""
        pass

    @abstractmethod
    def list_all_categories(self) -> list[Category]:
        """List every category regardless of depth."""
        pass

    @abstractmethod
    def get_category_tree(self) -> list[dict[str, Any]]:
        """Get full category tree with hierarchy.

        Returns a list of dictionaries with category data and nested 'children' lists.
        This structure is used for hierarchical display and is kept as dict for convenience.
        """
        pass

    # Transaction operations
    @abstractmethod
    def create_transaction(
        self,
        account_id: int,
        date: date,
        amount: Decimal,
        description: str,
        merchant: Optional[str] = None,
        category_id: Optional[int] = None,
        notes: Optional[str] = None,
        external_id: Optional[str] = None,
        is_manual: bool = True,
        is_adjustment: bool = False,
        is_pending: bool = False,
    ) -> int:
        """Create a transaction. Returns transaction ID."""
        pass

    @abstractmethod
    def get_transaction(self, transaction_id: int) -> Optional[Transaction]:
        """Get transaction by ID."""
        pass

    @abstractmethod
    def update_transaction(
        self,
        transaction_id: int,
        description: Optional[str] = None,
        merchant: Optional[str] = None,
        category_id: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> None:
        """Update the mutable descriptive fields of a transaction (None leaves a field as is)."""
        pass

    @abstractmethod
    def update_transaction_category(self, transaction_id: int, category_id: Optional[int]) -> None:
        """Update transaction category."""
        pass

    @abstractmethod
    def list_transactions(
        self,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        category_id: Optional[int] = None,
        account_id: Optional[int] = None,
        uncategorized: bool = False,
    ) -> list[Transaction]:
        """List transactions with optional filters.

        Args:
            start_date: Optional start date filter
            end_date: Optional end date filter
            category_id: Optional category ID filter
            account_id: Optional account ID filter
            uncategorized: If True, only return transactions without a category
        """
        pass

    # Categorization rule operations
    @abstractmethod
    def create_rule(
        self,
        name: str,
        category_id: int,
        conditions: dict[str, Any],
        priority: int = 100,
        is_enabled: bool = True,
        household_id: Optional[int] = None,
    ) -> int:
        """Create a categorization rule. Returns rule ID."""
        pass

    @abstractmethod
    def get_rule(self, rule_id: int) -> Optional[CategorizationRule]:
        """Get rule by ID.

        Raises:
            InvalidRuleConfiguration: If the stored conditions cannot be parsed
        """
        pass

    @abstractmethod
    def list_rules(
        self, enabled_only: bool = False, household_id: Optional[int] = None
    ) -> list[CategorizationRule]:
        """List rules, optionally only enabled ones or one household's.

        Rules whose stored conditions cannot be parsed are left out; see
        ``list_unreadable_rules``.
        """
        pass

    @abstractmethod
    def list_unreadable_rules(self) -> list[InvalidRuleConfiguration]:
        """Report every stored rule whose conditions cannot be parsed."""
        pass

    @abstractmethod
    def update_rule(self, rule_id: int, **updates: Any) -> None:
        """Update rule fields (name, category_id, conditions, priority)."""
        pass

    @abstractmethod
    def update_rule_enabled(self, rule_id: int, is_enabled: bool) -> None:
        """Enable or disable a rule."""
        pass

    @abstractmethod
    def delete_rule(self, rule_id: int) -> None:
        """Delete a rule."""
        pass

    # Recurring pattern operations
    @abstractmethod
    def create_recurring_pattern(self, pattern: RecurringPattern) -> int:
        """Persist a new recurring pattern. Returns pattern ID."""
        pass

    @abstractmethod
    def get_recurring_pattern(self, pattern_id: int) -> Optional[RecurringPattern]:
        """Get recurring pattern by ID."""
        pass

    @abstractmethod
    def list_recurring_patterns(
        self, status: Optional[RecurringStatus] = None
    ) -> list[RecurringPattern]:
        """List recurring patterns, optionally filtered by status."""
        pass

    @abstractmethod
    def update_recurring_pattern(self, pattern: RecurringPattern) -> None:
        """Overwrite a stored pattern with the given state (matched by id)."""
        pass
