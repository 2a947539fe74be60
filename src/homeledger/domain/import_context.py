"""Loads the account context an import preview runs against."""

from datetime import date, timedelta
from typing import Iterable, Mapping, Optional, Union
import logging

from homeledger.config import MatchingSettings
from homeledger.database.base import Database
from homeledger.domain.category import CategoryResolver
from homeledger.domain.entities import Account
from homeledger.domain.errors import NotFoundError, account_not_found
from homeledger.domain.import_preview import AccountContext
from homeledger.utils.date_parser import parse_import_date

logger = logging.getLogger(__name__)

NO_ACCOUNT = "No account specified and no default account selected"


def row_dates(raw_rows: Iterable[tuple[int, Mapping[str, Optional[str]]]]) -> list[date]:
    """Dates of the rows that have a parseable date (others are ignored here)."""
    dates = []
    for _, row in raw_rows:
        value = row.get("date")
        if not value:
            continue
        try:
            dates.append(parse_import_date(value))
        except ValueError:
            continue
    return dates


class ImportContextLoader:
    """Builds an AccountContext from the store.

    The matching pool is bounded to the account's transactions between the
    earliest incoming date minus the match window and the latest plus it.
    """

    def __init__(
        self,
        db: Database,
        category_resolver: Optional[CategoryResolver] = None,
        settings: Optional[MatchingSettings] = None,
    ):
        self.db = db
        self.category_resolver = category_resolver
        self.settings = settings or MatchingSettings()

    def load(
        self, account_id: int, dates: Iterable[date], protect_manual: bool = False
    ) -> AccountContext:
        """Load the context for a local account.

        Raises:
            NotFoundError: If the account doesn't exist
        """
        account = self.db.get_account(account_id)
        if account is None:
            raise NotFoundError(account_not_found(account_id))
        return self.load_for(account, dates, protect_manual)

    def load_for(
        self, account: Optional[Account], dates: Iterable[date], protect_manual: bool = False
    ) -> AccountContext:
        """Load the context for an account entity (None gives an empty pool)."""
        dates = list(dates)
        pool = ()
        if account is not None and dates:
            window = timedelta(days=self.settings.date_window_days)
            start, end = min(dates) - window, max(dates) + window
            pool = tuple(
                self.db.list_transactions(start_date=start, end_date=end, account_id=account.id)
            )
            logger.debug(f"Matching pool for account {account.id}: {len(pool)} transactions {start}..{end}")

        kwargs = {}
        if self.category_resolver is not None:
            kwargs["resolve_category"] = self.category_resolver.resolve

        return AccountContext(
            account=account,
            pool=pool,
            rules=tuple(self.db.list_rules(enabled_only=True)),
            protect_manual=protect_manual,
            **kwargs,
        )

    def route_rows(
        self,
        raw_rows: Iterable[tuple[int, Mapping[str, Optional[str]]]],
        default: Optional[Account],
    ) -> dict[int, Union[Account, str]]:
        """Decide which account each raw row belongs to.

        A row naming an account (case-insensitively) goes there. A row naming
        no account, or one that doesn't exist, goes to the default account.
        Without a default such rows map to the reason they are skipped.

        Returns:
            Row number to Account, or to a skip reason
        """
        by_name: Optional[dict[str, Account]] = None
        routes: dict[int, Union[Account, str]] = {}

        for row_number, row in raw_rows:
            name = (row.get("account") or "").strip()
            if not name:
                routes[row_number] = default if default is not None else NO_ACCOUNT
                continue

            if by_name is None:
                by_name = {account.name.lower(): account for account in self.db.list_accounts()}
            account = by_name.get(name.lower())
            if account is None:
                logger.debug(f"Row {row_number}: no account named '{name}'")
                account = default
            routes[row_number] = account if account is not None else f"Account not found: '{name}'"

        return routes
