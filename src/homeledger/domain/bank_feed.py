"""Bank-sync feed interface."""

from abc import ABC, abstractmethod

from homeledger.domain.entities import Candidate, ExternalAccount, ExternalTransaction


class BankFeed(ABC):
    """Source of accounts and transactions from a bank-sync provider.

    Implementations normalize amounts to the ledger's sign convention
    (negative = money out) before handing records over.
    """

    @abstractmethod
    def fetch_accounts(self) -> list[ExternalAccount]:
        """Fetch every account with its recent transactions."""
        pass


def external_to_candidate(txn: ExternalTransaction) -> Candidate:
    """Convert a feed transaction into an import candidate (account set later)."""
    return Candidate(
        account_id=None,
        date=txn.date,
        amount=txn.amount,
        description=txn.name,
        merchant=txn.merchant_name,
        category_hint=txn.category_hint,
        external_id=txn.transaction_id,
        is_pending=txn.pending,
    )
