"""Import execution: commit a freshly derived preview to the store."""

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional
import logging

from homeledger.database.base import Database
from homeledger.domain.entities import Account, Candidate
from homeledger.domain.errors import NotFoundError, account_not_found
from homeledger.domain.import_context import ImportContextLoader, row_dates
from homeledger.domain.import_preview import (
    ImportAction,
    ImportPreview,
    ImportPreviewBuilder,
    ImportRow,
)

logger = logging.getLogger(__name__)

SKIPPED_BY_USER = "Skipped by user"


@dataclass(frozen=True)
class SkippedRow:
    row_number: int
    reason: str


@dataclass
class ImportResult:
    """Counts of what an execution did."""

    created: int = 0
    updated: int = 0
    skipped: int = 0
    unchanged: int = 0
    rules_applied: int = 0
    created_ids: list[int] = field(default_factory=list)
    skipped_details: list[SkippedRow] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "unchanged": self.unchanged,
            "rules_applied": self.rules_applied,
            "skipped_details": [
                {"row_number": s.row_number, "reason": s.reason} for s in self.skipped_details
            ],
        }


class ImportExecutor:
    """Commits imports.

    Every call rebuilds the preview from the current store, so running the
    same import twice (for instance after a failure half way through) never
    creates a transaction twice: rows created by the first run are matched
    as unchanged by the second.
    """

    def __init__(
        self,
        db: Database,
        builder: Optional[ImportPreviewBuilder] = None,
        loader: Optional[ImportContextLoader] = None,
    ):
        """Initialize import executor.

        Args:
            db: Database instance
            builder: Preview builder (a default one is created if omitted)
            loader: Context loader (a default one is created if omitted)
        """
        self.db = db
        self.builder = builder or ImportPreviewBuilder()
        self.loader = loader or ImportContextLoader(db)

    def preview(
        self,
        raw_rows: Iterable[tuple[int, Mapping[str, Optional[str]]]],
        account_id: Optional[int] = None,
        protect_manual: bool = False,
    ) -> ImportPreview:
        """Build the preview an execute call would act on.

        Rows are grouped by the account they belong to (their account column,
        else ``account_id``) and each group is matched against that account's
        transactions. Rows with no account become skips.

        Raises:
            NotFoundError: If the default account doesn't exist
        """
        rows = list(raw_rows)
        default = None
        if account_id is not None:
            default = self.db.get_account(account_id)
            if default is None:
                raise NotFoundError(account_not_found(account_id))

        routes = self.loader.route_rows(rows, default)
        groups: dict[int, list[tuple[int, Mapping[str, Optional[str]]]]] = {}
        accounts: dict[int, Account] = {}
        classified: list[ImportRow] = []

        for row_number, raw in rows:
            target = routes[row_number]
            if isinstance(target, str):
                classified.append(self.builder.unroutable(row_number, raw, target))
                continue
            accounts[target.id] = target
            groups.setdefault(target.id, []).append((row_number, raw))

        for group_account_id, group in groups.items():
            context = self.loader.load_for(accounts[group_account_id], row_dates(group), protect_manual)
            classified.extend(self.builder.preview(group, context).rows)

        return ImportPreview(rows=tuple(sorted(classified, key=lambda row: row.row_number)))

    def execute(
        self,
        raw_rows: Iterable[tuple[int, Mapping[str, Optional[str]]]],
        account_id: Optional[int] = None,
        skip_row_numbers: Iterable[int] = (),
        protect_manual: bool = False,
    ) -> ImportResult:
        """Import raw rows.

        Args:
            raw_rows: (row number, normalized field mapping) pairs
            account_id: Default account for rows without an account column value
            skip_row_numbers: Rows the user chose not to import
            protect_manual: Leave matched manual transactions untouched

        Returns:
            ImportResult

        Raises:
            NotFoundError: If the default account doesn't exist
        """
        preview = self.preview(raw_rows, account_id, protect_manual)
        return self.apply(preview, skip_row_numbers, is_manual=True)

    def execute_candidates(
        self,
        candidates: Iterable[Candidate],
        account_id: int,
        skip_row_numbers: Iterable[int] = (),
        protect_manual: bool = True,
    ) -> ImportResult:
        """Import structured bank-feed records into an account.

        Raises:
            NotFoundError: If the account doesn't exist
        """
        candidates = list(candidates)
        context = self.loader.load(account_id, [c.date for c in candidates], protect_manual)
        preview = self.builder.preview_candidates(candidates, context)
        return self.apply(preview, skip_row_numbers, is_manual=False)

    def apply(
        self,
        preview: ImportPreview,
        skip_row_numbers: Iterable[int] = (),
        is_manual: bool = True,
    ) -> ImportResult:
        """Commit the rows of a preview.

        All writes happen in one store transaction: if any of them fails,
        none of them is kept.
        """
        skip = set(skip_row_numbers)
        result = ImportResult()

        with self.db.transaction():
            for row in preview.rows:
                # Only rows that would write can be skipped by the user
                if row.row_number in skip and row.action in (ImportAction.CREATE, ImportAction.UPDATE):
                    result.skipped += 1
                    result.skipped_details.append(SkippedRow(row.row_number, SKIPPED_BY_USER))
                    continue

                if row.action == ImportAction.CREATE:
                    self._create(row, is_manual, result)
                elif row.action == ImportAction.UPDATE:
                    self._update(row)
                    result.updated += 1
                elif row.action == ImportAction.UNCHANGED:
                    result.unchanged += 1
                else:
                    result.skipped += 1
                    result.skipped_details.append(SkippedRow(row.row_number, row.skip_reason or ""))

        logger.info(
            f"Import: {result.created} created, {result.updated} updated, "
            f"{result.unchanged} unchanged, {result.skipped} skipped"
        )
        return result

    def _create(self, row: ImportRow, is_manual: bool, result: ImportResult) -> None:
        candidate = row.candidate
        category_id = candidate.category_id
        if category_id is None and row.suggested_category_id is not None:
            category_id = row.suggested_category_id
            result.rules_applied += 1

        transaction_id = self.db.create_transaction(
            account_id=candidate.account_id,
            date=candidate.date,
            amount=candidate.amount,
            description=candidate.description,
            merchant=candidate.merchant,
            category_id=category_id,
            notes=candidate.notes,
            external_id=candidate.external_id,
            is_manual=is_manual,
            is_pending=candidate.is_pending,
        )
        result.created += 1
        result.created_ids.append(transaction_id)

    def _update(self, row: ImportRow) -> None:
        candidate = row.candidate
        updates: dict[str, Any] = {}
        for change in row.changes:
            if change.field == "category":
                updates["category_id"] = candidate.category_id
            else:
                updates[change.field] = getattr(candidate, change.field)
        self.db.update_transaction(row.matched.id, **updates)
