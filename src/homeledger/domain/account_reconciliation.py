"""Multi-account reconciliation of bank-feed accounts against local ones.

The reconciler proposes, for each external account, a local manual account
it most likely corresponds to, and previews that account's transactions.
It never commits; ``AccountReconciliationService.commit`` does that once
the caller has confirmed the mappings.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence
import logging

from homeledger.config import MatchingSettings, ReconciliationSettings
from homeledger.database.base import Database
from homeledger.domain.bank_feed import BankFeed, external_to_candidate
from homeledger.domain.category import CategoryResolver
from homeledger.domain.entities import (
    Account,
    CategorizationRule,
    ExternalAccount,
    Transaction,
)
from homeledger.domain.errors import NotFoundError, ValidationError, account_not_found
from homeledger.domain.import_context import ImportContextLoader
from homeledger.domain.import_executor import ImportExecutor, ImportResult
from homeledger.domain.import_preview import AccountContext, ImportPreview, ImportPreviewBuilder
from homeledger.domain.matching import TransactionMatcher, text_similarity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccountSuggestion:
    """A proposed local counterpart for an external account."""

    account_id: int
    account_name: str
    score: float
    reasons: tuple[str, ...] = ()


@dataclass(frozen=True)
class AccountReconciliation:
    """Per-external-account outcome: suggested mapping and transaction preview."""

    external_account: ExternalAccount
    suggestion: Optional[AccountSuggestion]
    preview: ImportPreview

    def as_dict(self) -> dict[str, Any]:
        suggestion = None
        if self.suggestion is not None:
            suggestion = {
                "account_id": self.suggestion.account_id,
                "account_name": self.suggestion.account_name,
                "score": self.suggestion.score,
                "reasons": list(self.suggestion.reasons),
            }
        return {
            "external_id": self.external_account.external_id,
            "name": self.external_account.name,
            "suggested_match": suggestion,
            "preview": self.preview.as_dict(),
        }


def balance_proximity(a: Decimal, b: Decimal, percent: float, floor: float) -> float:
    """1.0 for equal balances, falling linearly to 0 at the tolerance.

    The tolerance is ``percent`` of the larger balance, never below ``floor``.
    """
    larger = max(abs(a), abs(b))
    tolerance = max(float(larger) * percent / 100, floor)
    diff = float(abs(a - b))
    if tolerance <= 0:
        return 1.0 if diff == 0 else 0.0
    return max(0.0, 1.0 - diff / tolerance)


class AccountReconciler:
    """Suggests account mappings and previews each external account."""

    def __init__(
        self,
        builder: Optional[ImportPreviewBuilder] = None,
        settings: Optional[ReconciliationSettings] = None,
        resolve_category: Optional[Callable[[str], Optional[int]]] = None,
    ):
        self.builder = builder or ImportPreviewBuilder()
        self.settings = settings or ReconciliationSettings()
        self.resolve_category = resolve_category

    def score(self, external: ExternalAccount, local: Account) -> tuple[float, tuple[str, ...]]:
        """Weighted similarity of an external and a local account, with reasons."""
        settings = self.settings
        name_score = max(
            text_similarity(external.name, local.name),
            text_similarity(external.official_name, local.name),
        )
        type_score = 1.0 if external.account_type == local.account_type else 0.0
        balance_score = balance_proximity(
            external.current_balance,
            local.current_balance,
            settings.balance_tolerance_percent,
            settings.balance_tolerance_floor,
        )

        reasons = []
        if name_score >= 0.5:
            reasons.append("similar name")
        if type_score:
            reasons.append("same account type")
        if balance_score > 0:
            reasons.append("balance within tolerance")

        total = (
            settings.name_weight * name_score
            + settings.type_weight * type_score
            + settings.balance_weight * balance_score
        )
        return round(min(1.0, total), 2), tuple(reasons)

    def suggest(
        self, external_accounts: Sequence[ExternalAccount], local_accounts: Iterable[Account]
    ) -> list[Optional[AccountSuggestion]]:
        """One suggestion (or None) per external account, in input order.

        A local account already linked to an external id is suggested for it
        outright. The rest are assigned one-to-one against manual accounts,
        greedily by descending score; ties go to the earlier external account,
        then the lower local id.
        """
        local_accounts = list(local_accounts)
        suggestions: list[Optional[AccountSuggestion]] = [None] * len(external_accounts)
        taken: set[int] = set()

        linked = {acc.external_id: acc for acc in local_accounts if acc.external_id}
        for index, external in enumerate(external_accounts):
            account = linked.get(external.external_id)
            if account is not None:
                suggestions[index] = AccountSuggestion(account.id, account.name, 1.0, ("already linked",))
                taken.add(account.id)

        pairs = []
        for index, external in enumerate(external_accounts):
            if suggestions[index] is not None:
                continue
            for local in local_accounts:
                if not local.is_manual or local.id in taken:
                    continue
                score, reasons = self.score(external, local)
                if score >= self.settings.min_score:
                    pairs.append((-score, index, local.id, local, reasons))

        for neg_score, index, local_id, local, reasons in sorted(pairs, key=lambda p: p[:3]):
            if suggestions[index] is not None or local_id in taken:
                continue
            suggestions[index] = AccountSuggestion(local_id, local.name, -neg_score, reasons)
            taken.add(local_id)

        return suggestions

    def reconcile(
        self,
        external_accounts: Sequence[ExternalAccount],
        local_accounts: Iterable[Account],
        histories: Mapping[int, Sequence[Transaction]],
        rules: Sequence[CategorizationRule] = (),
    ) -> list[AccountReconciliation]:
        """Suggest mappings and preview every external account.

        Args:
            external_accounts: Accounts from the bank feed
            local_accounts: Stored accounts
            histories: Stored transactions per local account id
            rules: Categorization rules for suggested categories

        Returns:
            One AccountReconciliation per external account, in input order
        """
        local_accounts = list(local_accounts)
        by_id = {acc.id: acc for acc in local_accounts}
        suggestions = self.suggest(external_accounts, local_accounts)

        contexts = []
        for external, suggestion in zip(external_accounts, suggestions):
            account = by_id.get(suggestion.account_id) if suggestion is not None else None
            pool = tuple(histories.get(account.id, ())) if account is not None else ()
            kwargs = {}
            if self.resolve_category is not None:
                kwargs["resolve_category"] = self.resolve_category
            contexts.append(
                AccountContext(
                    account=account,
                    pool=pool,
                    rules=tuple(rules),
                    protect_manual=True,
                    **kwargs,
                )
            )

        def preview_one(item: tuple[ExternalAccount, AccountContext]) -> ImportPreview:
            external, context = item
            candidates = [external_to_candidate(txn) for txn in external.transactions]
            return self.builder.preview_candidates(candidates, context)

        # Pools are disjoint per account, so previews run independently
        with ThreadPoolExecutor(max_workers=self.settings.max_workers) as pool:
            previews = list(pool.map(preview_one, zip(external_accounts, contexts)))

        return [
            AccountReconciliation(external, suggestion, preview)
            for external, suggestion, preview in zip(external_accounts, suggestions, previews)
        ]


class AccountReconciliationService:
    """Loads reconciliation inputs from the store and a bank feed, and commits."""

    def __init__(
        self,
        db: Database,
        feed: BankFeed,
        reconciler: Optional[AccountReconciler] = None,
        executor: Optional[ImportExecutor] = None,
        category_resolver: Optional[CategoryResolver] = None,
        settings: Optional[ReconciliationSettings] = None,
        matching_settings: Optional[MatchingSettings] = None,
    ):
        """Initialize reconciliation service.

        Args:
            db: Database instance
            feed: Bank-sync feed
            reconciler: Account reconciler (a default one is created if omitted)
            executor: Import executor used by commit
            category_resolver: Resolves feed category hints
            settings: Reconciliation tunables
            matching_settings: Matcher tunables; the date window also bounds
                the history loaded around the feed's date range
        """
        self.db = db
        self.feed = feed
        self.matching_settings = matching_settings or MatchingSettings()
        resolve = category_resolver.resolve if category_resolver is not None else None
        self.reconciler = reconciler or AccountReconciler(
            builder=ImportPreviewBuilder(TransactionMatcher(self.matching_settings)),
            settings=settings,
            resolve_category=resolve,
        )
        self.executor = executor or ImportExecutor(
            db,
            ImportPreviewBuilder(TransactionMatcher(self.matching_settings)),
            ImportContextLoader(db, category_resolver, self.matching_settings),
        )

    def fetch(self) -> list[ExternalAccount]:
        return self.feed.fetch_accounts()

    def preview(
        self, external_accounts: Optional[Sequence[ExternalAccount]] = None
    ) -> list[AccountReconciliation]:
        """Preview reconciliation of the feed's accounts (fetched if not given)."""
        if external_accounts is None:
            external_accounts = self.fetch()
        local_accounts = self.db.list_accounts()

        dates = [txn.date for ext in external_accounts for txn in ext.transactions]
        histories: dict[int, list[Transaction]] = {}
        if dates:
            window = timedelta(days=self.matching_settings.date_window_days)
            start, end = min(dates) - window, max(dates) + window
            for account in local_accounts:
                histories[account.id] = self.db.list_transactions(
                    start_date=start, end_date=end, account_id=account.id
                )

        rules = self.db.list_rules(enabled_only=True)
        return self.reconciler.reconcile(external_accounts, local_accounts, histories, rules)

    def commit(
        self,
        external_accounts: Sequence[ExternalAccount],
        mappings: Mapping[str, Optional[int]],
        skip_transaction_ids: Iterable[str] = (),
    ) -> dict[str, ImportResult]:
        """Apply confirmed mappings and import each account's transactions.

        Args:
            external_accounts: Accounts as previewed
            mappings: External account id to local account id; missing or
                None creates a new linked account
            skip_transaction_ids: Feed transaction ids to leave out

        Returns:
            ImportResult per external account id

        Raises:
            ValidationError: If two external accounts map to one local account
            NotFoundError: If a mapped local account doesn't exist
        """
        targets = [mappings.get(ext.external_id) for ext in external_accounts]
        mapped = [t for t in targets if t is not None]
        if len(mapped) != len(set(mapped)):
            raise ValidationError("Each local account can be mapped to one external account only")

        skip_ids = set(skip_transaction_ids)
        results: dict[str, ImportResult] = {}

        for external, local_id in zip(external_accounts, targets):
            if local_id is None:
                local_id = self._create_linked_account(external)
            else:
                account = self.db.get_account(local_id)
                if account is None:
                    raise NotFoundError(account_not_found(local_id))
                if account.external_id != external.external_id:
                    self.db.link_account(local_id, external.external_id)

            candidates = [external_to_candidate(txn) for txn in external.transactions]
            skip_rows = [
                row_number
                for row_number, txn in enumerate(external.transactions, start=1)
                if txn.transaction_id in skip_ids
            ]
            results[external.external_id] = self.executor.execute_candidates(
                candidates, local_id, skip_row_numbers=skip_rows, protect_manual=True
            )

        return results

    def _create_linked_account(self, external: ExternalAccount) -> int:
        existing = self.db.get_account_by_external_id(external.external_id)
        if existing is not None:
            return existing.id

        names = {acc.name for acc in self.db.list_accounts()}
        name = external.name
        if name in names:
            name = f"{external.name} ({external.external_id})"

        account_id = self.db.create_account(
            name=name,
            account_type=external.account_type,
            current_balance=external.current_balance,
            is_manual=False,
            external_id=external.external_id,
        )
        logger.info(f"Created account {account_id} '{name}' for external account {external.external_id}")
        return account_id
