"""Account domain service."""

from decimal import Decimal
from typing import Optional
from homeledger.database.base import Database
from homeledger.domain.entities import Account as AccountEntity, AccountType
from homeledger.domain.errors import ConflictError, ValidationError, duplicate_account_name


class AccountService:
    """Service for managing accounts."""

    def __init__(self, db: Database):
        """Initialize account service.

        Args:
            db: Database instance
        """
        self.db = db

    def create_account(
        self,
        name: str,
        account_type: AccountType | str = AccountType.CHECKING,
        owner_id: Optional[int] = None,
        current_balance: Decimal = Decimal("0"),
    ) -> int:
        """Create a new manually-maintained account.

        Args:
            name: Account name
            account_type: Account type (e.g. "CHECKING", "CREDIT")
            owner_id: Optional owning household member
            current_balance: Opening balance

        Returns:
            Account ID

        Raises:
            ValidationError: If the name is empty or the type is unknown
            ConflictError: If account name already exists
        """
        name = name.strip()
        if not name:
            raise ValidationError("Account name cannot be empty")
        try:
            account_type = AccountType(getattr(account_type, "value", account_type).upper())
        except ValueError:
            raise ValidationError(f"Unknown account type '{account_type}'")

        # Check if account with same name exists
        accounts = self.db.list_accounts()
        for acc in accounts:
            if acc.name == name:
                raise ConflictError(duplicate_account_name(name))

        return self.db.create_account(
            name=name,
            account_type=account_type,
            owner_id=owner_id,
            current_balance=current_balance,
            is_manual=True,
        )

    def get_account(self, account_id: int) -> Optional[AccountEntity]:
        """Get account by ID.

        Args:
            account_id: Account ID

        Returns:
            Account entity or None if not found
        """
        return self.db.get_account(account_id)

    def list_accounts(self, manual_only: bool = False) -> list[AccountEntity]:
        """List accounts.

        Returns:
            List of account entities
        """
        return self.db.list_accounts(manual_only=manual_only)

    def resolve(self, identifier: str) -> Optional[AccountEntity]:
        """Find an account by numeric ID or exact name."""
        if identifier.isdigit():
            account = self.db.get_account(int(identifier))
            if account is not None:
                return account
        for account in self.db.list_accounts():
            if account.name == identifier:
                return account
        return None
