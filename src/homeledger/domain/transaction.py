"""Transaction domain service."""

from typing import Optional
from datetime import date
from decimal import Decimal
from homeledger.database.base import Database
from homeledger.domain.entities import Transaction as TransactionEntity
from homeledger.domain.errors import (
    NotFoundError,
    ValidationError,
    account_not_found,
    category_not_found,
    category_path_not_found,
    transaction_not_found,
)


class TransactionService:
    """Service for manually entered transactions and category edits."""

    def __init__(self, db: Database):
        """Initialize transaction service.

        Args:
            db: Database instance
        """
        self.db = db

    def create_transaction(
        self,
        account_id: int,
        date: date,
        amount: Decimal,
        description: str,
        merchant: Optional[str] = None,
        category_id: Optional[int] = None,
        notes: Optional[str] = None,
        is_adjustment: bool = False,
    ) -> int:
        """Create a manual transaction.

        Args:
            account_id: Account ID
            date: Transaction date
            amount: Signed amount (negative = expense)
            description: Description
            merchant: Optional merchant name
            category_id: Optional category ID
            notes: Optional notes
            is_adjustment: Balance adjustment rather than a real payment

        Returns:
            Transaction ID

        Raises:
            NotFoundError: If account or category doesn't exist
            ValidationError: If the description is empty or the amount is zero
        """
        # Verify account exists
        account = self.db.get_account(account_id)
        if account is None:
            raise NotFoundError(account_not_found(account_id))

        if not description or not description.strip():
            raise ValidationError("Description cannot be empty")
        if amount == 0:
            raise ValidationError("Amount cannot be zero")

        # Verify category if provided
        if category_id is not None:
            category = self.db.get_category(category_id)
            if category is None:
                raise NotFoundError(category_not_found(category_id))

        return self.db.create_transaction(
            account_id=account_id,
            date=date,
            amount=amount,
            description=description.strip(),
            merchant=merchant,
            category_id=category_id,
            notes=notes,
            is_manual=True,
            is_adjustment=is_adjustment,
        )

    def get_transaction(self, transaction_id: int) -> Optional[TransactionEntity]:
        """Get transaction by ID.

        Args:
            transaction_id: Transaction ID

        Returns:
            Transaction entity or None if not found
        """
        return self.db.get_transaction(transaction_id)

    def update_category(self, transaction_id: int, category_path: Optional[str]) -> None:
        """Update transaction category.

        Args:
            transaction_id: Transaction ID
            category_path: Category path (e.g., "Food & Dining > Groceries") or None

        Raises:
            NotFoundError: If transaction or category doesn't exist
        """
        # Verify transaction exists
        txn = self.db.get_transaction(transaction_id)
        if txn is None:
            raise NotFoundError(transaction_not_found(transaction_id))

        category_id = None
        if category_path is not None:
            category = self.db.get_category_by_path(category_path)
            if category is None:
                raise NotFoundError(category_path_not_found(category_path))
            category_id = category.id

        self.db.update_transaction_category(transaction_id, category_id)

    def list_transactions(
        self,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        category_path: Optional[str] = None,
        account_id: Optional[int] = None,
    ) -> list[TransactionEntity]:
        """List transactions with filters.

        Args:
            start_date: Optional start date filter
            end_date: Optional end date filter
            category_path: Optional category path filter (empty string for uncategorized)
            account_id: Optional account ID filter

        Returns:
            List of transaction entities
        """
        category_id = None
        uncategorized = False
        if category_path is not None:
            if category_path == "":
                # Empty string means uncategorized
                uncategorized = True
            else:
                category = self.db.get_category_by_path(category_path)
                if category is None:
                    # Category doesn't exist, return empty list
                    return []
                category_id = category.id

        return self.db.list_transactions(
            start_date=start_date,
            end_date=end_date,
            category_id=category_id,
            account_id=account_id,
            uncategorized=uncategorized,
        )
