"""Import preview: classify incoming rows as create, update, skip or unchanged.

Building a preview never writes. The same rows against the same context
always produce the same preview, which is what lets the executor re-derive
it safely on every call.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Iterable, Mapping, Optional
import logging

from homeledger.domain.entities import Account, Candidate, CategorizationRule, Transaction
from homeledger.domain.errors import ParseError, ThresholdUnmet
from homeledger.domain.matching import FieldChange, TransactionMatcher
from homeledger.domain.rules import RuleEvaluator
from homeledger.utils.amount_parser import parse_amount, resolve_amount_sign
from homeledger.utils.date_parser import parse_import_date

logger = logging.getLogger(__name__)

PENDING_WARNING = "Pending transaction; may change or be removed"
MANUAL_PROTECTED = "manual transaction protected"


class ImportAction(str, Enum):
    """What the executor would do with a row."""

    CREATE = "create"
    UPDATE = "update"
    SKIP = "skip"
    UNCHANGED = "unchanged"


def _no_category(hint: str) -> Optional[int]:
    return None


@dataclass(frozen=True)
class AccountContext:
    """Everything a preview needs to know about the target account.

    Attributes:
        account: Target account, or None when previewing a bank-feed account
            that has no local counterpart yet
        pool: Stored transactions eligible for matching
        rules: Categorization rules (disabled ones are ignored by the evaluator)
        resolve_category: Maps a category hint to an id, None when unknown
        protect_manual: Matches on manual transactions become skips
    """

    account: Optional[Account]
    pool: tuple[Transaction, ...] = ()
    rules: tuple[CategorizationRule, ...] = ()
    resolve_category: Callable[[str], Optional[int]] = field(default=_no_category, compare=False)
    protect_manual: bool = False

    @property
    def account_id(self) -> Optional[int]:
        return self.account.id if self.account is not None else None


@dataclass(frozen=True)
class ImportRow:
    """One classified row of an import."""

    row_number: int
    action: ImportAction
    candidate: Optional[Candidate] = None
    matched: Optional[Transaction] = None
    confidence: Optional[float] = None
    changes: tuple[FieldChange, ...] = ()
    warnings: tuple[str, ...] = ()
    skip_reason: Optional[str] = None
    suggested_category_id: Optional[int] = None
    threshold_unmet: Optional[ThresholdUnmet] = None

    def as_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "row_number": self.row_number,
            "action": self.action.value,
            "parsed": _candidate_dict(self.candidate) if self.candidate is not None else None,
            "warnings": list(self.warnings),
        }
        if self.matched is not None:
            data["matched_transaction"] = _transaction_dict(self.matched)
            data["match_confidence"] = self.confidence
        if self.changes:
            data["changes"] = [
                {"field": c.field, "before": c.before, "after": c.after} for c in self.changes
            ]
        if self.skip_reason is not None:
            data["skip_reason"] = self.skip_reason
        if self.suggested_category_id is not None:
            data["suggested_category_id"] = self.suggested_category_id
        return data


@dataclass(frozen=True)
class ImportPreview:
    """Classified rows plus per-action counts."""

    rows: tuple[ImportRow, ...]

    @property
    def total_rows(self) -> int:
        return len(self.rows)

    @property
    def summary(self) -> dict[str, int]:
        counts = {action.value: 0 for action in ImportAction}
        for row in self.rows:
            counts[row.action.value] += 1
        return counts

    def rows_with(self, action: ImportAction) -> list[ImportRow]:
        return [row for row in self.rows if row.action == action]

    def as_dict(self) -> dict[str, Any]:
        return {
            "total_rows": self.total_rows,
            "summary": self.summary,
            "rows": [row.as_dict() for row in self.rows],
        }


def _candidate_dict(candidate: Candidate) -> dict[str, Any]:
    return {
        "date": candidate.date.isoformat(),
        "amount": str(candidate.amount),
        "description": candidate.description,
        "merchant": candidate.merchant,
        "category": candidate.category_hint,
        "category_id": candidate.category_id,
        "notes": candidate.notes,
        "account_id": candidate.account_id,
        "external_id": candidate.external_id,
        "transaction_id": candidate.transaction_id,
        "pending": candidate.is_pending,
    }


def _transaction_dict(txn: Transaction) -> dict[str, Any]:
    return {
        "id": txn.id,
        "date": txn.date.isoformat(),
        "amount": str(txn.amount),
        "description": txn.description,
        "merchant": txn.merchant,
        "category_id": txn.category_id,
        "notes": txn.notes,
        "is_manual": txn.is_manual,
    }


def _field(row: Mapping[str, Optional[str]], name: str) -> Optional[str]:
    value = row.get(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


def parse_candidate(
    row_number: int,
    row: Mapping[str, Optional[str]],
    account_id: Optional[int],
    resolve_category: Callable[[str], Optional[int]] = _no_category,
) -> tuple[Candidate, list[str]]:
    """Parse one raw row into a Candidate.

    Args:
        row_number: 1-based row number used in messages
        row: Normalized field name to raw string value
        account_id: Account the row belongs to
        resolve_category: Category hint resolver

    Returns:
        Tuple of (candidate, warnings)

    Raises:
        ParseError: If a required field is missing or malformed
    """
    raw_date = _field(row, "date")
    if raw_date is None:
        raise ParseError("Missing date", row_number)
    try:
        txn_date = parse_import_date(raw_date)
    except ValueError:
        raise ParseError(f"Invalid date: '{raw_date}'", row_number)

    raw_amount = _field(row, "amount")
    if raw_amount is None:
        raise ParseError("Missing amount", row_number)
    try:
        amount = parse_amount(raw_amount)
    except ValueError:
        raise ParseError(f"Invalid amount: '{raw_amount}'", row_number)
    if amount == 0:
        raise ParseError("Amount cannot be zero", row_number)
    amount = resolve_amount_sign(amount, _field(row, "type"))

    description = _field(row, "description")
    if description is None:
        raise ParseError("Missing description", row_number)

    warnings: list[str] = []
    transaction_id = None
    raw_id = _field(row, "id")
    if raw_id is not None:
        if raw_id.isdigit():
            transaction_id = int(raw_id)
        else:
            warnings.append(f"Ignoring id '{raw_id}'; not a transaction id")

    hint = _field(row, "category")
    category_id = None
    if hint is not None:
        category_id = resolve_category(hint)
        if category_id is None:
            warnings.append(f"Category not found: '{hint}'; will be left uncategorized")

    candidate = Candidate(
        account_id=account_id,
        date=txn_date,
        amount=amount,
        description=description,
        merchant=_field(row, "merchant"),
        category_hint=hint,
        category_id=category_id,
        notes=_field(row, "notes"),
        external_id=_field(row, "external_id"),
        transaction_id=transaction_id,
    )
    return candidate, warnings


class ImportPreviewBuilder:
    """Classifies incoming rows against an account context."""

    def __init__(
        self,
        matcher: Optional[TransactionMatcher] = None,
        evaluator: Optional[RuleEvaluator] = None,
    ):
        self.matcher = matcher or TransactionMatcher()
        self.evaluator = evaluator or RuleEvaluator()

    def preview(
        self,
        raw_rows: Iterable[tuple[int, Mapping[str, Optional[str]]]],
        context: AccountContext,
    ) -> ImportPreview:
        """Classify raw rows (row number, field mapping) without writing.

        A row that fails to parse becomes a skip carrying the parse error;
        it never affects other rows.
        """
        rows: list[ImportRow] = []
        claimed: dict[int, int] = {}

        for row_number, raw in raw_rows:
            try:
                candidate, warnings = parse_candidate(
                    row_number, raw, context.account_id, context.resolve_category
                )
            except ParseError as e:
                logger.debug(f"Row {row_number}: {e}")
                rows.append(
                    ImportRow(
                        row_number=row_number,
                        action=ImportAction.SKIP,
                        warnings=(str(e),),
                        skip_reason=str(e),
                    )
                )
                continue
            rows.append(self._classify(row_number, candidate, warnings, context, claimed))

        return ImportPreview(rows=tuple(rows))

    def preview_candidates(
        self, candidates: Iterable[Candidate], context: AccountContext
    ) -> ImportPreview:
        """Classify already-structured records (e.g. from a bank feed).

        Rows are numbered from 1 in input order.
        """
        rows: list[ImportRow] = []
        claimed: dict[int, int] = {}

        for row_number, candidate in enumerate(candidates, start=1):
            candidate = replace(candidate, account_id=context.account_id)
            warnings: list[str] = []
            if candidate.category_id is None and candidate.category_hint:
                category_id = context.resolve_category(candidate.category_hint)
                if category_id is None:
                    warnings.append(
                        f"Category not found: '{candidate.category_hint}'; will be left uncategorized"
                    )
                else:
                    candidate = replace(candidate, category_id=category_id)
            rows.append(self._classify(row_number, candidate, warnings, context, claimed))

        return ImportPreview(rows=tuple(rows))

    def unroutable(
        self, row_number: int, raw: Mapping[str, Optional[str]], reason: str
    ) -> ImportRow:
        """Skip a row that has no account to go to.

        Parse errors take precedence over the account problem.
        """
        try:
            candidate, warnings = parse_candidate(row_number, raw, None)
        except ParseError as e:
            return ImportRow(
                row_number=row_number, action=ImportAction.SKIP, warnings=(str(e),), skip_reason=str(e)
            )
        return ImportRow(
            row_number=row_number,
            action=ImportAction.SKIP,
            candidate=candidate,
            warnings=tuple(warnings),
            skip_reason=reason,
        )

    def _classify(
        self,
        row_number: int,
        candidate: Candidate,
        warnings: list[str],
        context: AccountContext,
        claimed: dict[int, int],
    ) -> ImportRow:
        if candidate.is_pending:
            warnings = warnings + [PENDING_WARNING]

        result = self.matcher.match(candidate, context.pool, exclude_ids=set(claimed))

        if not result.is_match:
            # Nothing left unclaimed; see whether an earlier row took the match
            if claimed:
                taken = self.matcher.match(candidate, context.pool)
                if taken.is_match and taken.matched.id in claimed:
                    return ImportRow(
                        row_number=row_number,
                        action=ImportAction.SKIP,
                        candidate=candidate,
                        matched=taken.matched,
                        confidence=taken.confidence,
                        warnings=tuple(warnings),
                        skip_reason=(
                            f"Duplicate match: transaction {taken.matched.id} "
                            f"already matched by row {claimed[taken.matched.id]}"
                        ),
                    )

            suggested = None
            if candidate.category_id is None:
                suggested = self.evaluator.evaluate(candidate, context.rules, context.account)
            return ImportRow(
                row_number=row_number,
                action=ImportAction.CREATE,
                candidate=candidate,
                warnings=tuple(warnings),
                suggested_category_id=suggested,
                threshold_unmet=result.threshold_unmet,
            )

        matched = result.matched
        claimed[matched.id] = row_number

        if context.protect_manual and matched.is_manual:
            return ImportRow(
                row_number=row_number,
                action=ImportAction.SKIP,
                candidate=candidate,
                matched=matched,
                confidence=result.confidence,
                warnings=tuple(warnings),
                skip_reason=MANUAL_PROTECTED,
            )

        return ImportRow(
            row_number=row_number,
            action=ImportAction.UPDATE if result.changes else ImportAction.UNCHANGED,
            candidate=candidate,
            matched=matched,
            confidence=result.confidence,
            changes=result.changes,
            warnings=tuple(warnings),
        )
