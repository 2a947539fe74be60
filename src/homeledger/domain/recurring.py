"""Recurring payment detection and pattern lifecycle."""

from collections import Counter, defaultdict
from dataclasses import dataclass, replace
from datetime import date, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional
import logging
import re
import statistics

from homeledger.config import RecurringSettings
from homeledger.database.base import Database
from homeledger.domain.entities import (
    RecurringFrequency,
    RecurringPattern,
    RecurringStatus,
    Transaction,
)
from homeledger.domain.errors import (
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
    account_not_found,
    category_not_found,
    recurring_not_found,
    transaction_not_found,
)
from homeledger.utils.date_parser import add_months

logger = logging.getLogger(__name__)

FREQUENCY_DAYS = {
    RecurringFrequency.WEEKLY: 7,
    RecurringFrequency.BIWEEKLY: 14,
    RecurringFrequency.MONTHLY: 30,
    RecurringFrequency.QUARTERLY: 91,
    RecurringFrequency.SEMIANNUAL: 182,
    RecurringFrequency.ANNUAL: 365,
}

FREQUENCY_MONTHS = {
    RecurringFrequency.MONTHLY: 1,
    RecurringFrequency.QUARTERLY: 3,
    RecurringFrequency.SEMIANNUAL: 6,
    RecurringFrequency.ANNUAL: 12,
}

_STORE_NUMBER = re.compile(r"\s*#\d+")
_LONG_NUMBER = re.compile(r"\s*\d{4,}")
_NON_ALNUM = re.compile(r"[^a-z0-9\s]")
_COMPANY_SUFFIX = re.compile(r"\s+(inc|llc|corp|ltd|co|company)$")

_WHOLE = Decimal("1")
_CENTS = Decimal("0.01")


def normalize_merchant(name: Optional[str]) -> str:
    """Grouping key for a merchant or description.

    Lower-cases, drops store numbers ("#123") and long digit runs (order
    ids), strips punctuation and a trailing company suffix.
    """
    if not name:
        return ""
    value = name.lower()
    value = _STORE_NUMBER.sub("", value)
    value = _LONG_NUMBER.sub("", value)
    value = _NON_ALNUM.sub("", value)
    value = " ".join(value.split())
    return _COMPANY_SUFFIX.sub("", value).strip()


def whole_amount(amount: Decimal) -> int:
    """Amount rounded half-up to the nearest whole currency unit."""
    return int(amount.quantize(_WHOLE, rounding=ROUND_HALF_UP))


def merchant_key_for(txn: Transaction) -> str:
    return normalize_merchant(txn.merchant or txn.description)


def classify_frequency(gap_days: float, tolerance: float) -> Optional[RecurringFrequency]:
    """Nearest frequency bucket whose tolerance band contains the gap."""
    best: Optional[RecurringFrequency] = None
    best_distance = None
    for frequency, nominal in FREQUENCY_DAYS.items():
        distance = abs(gap_days - nominal) / nominal
        if distance <= tolerance and (best_distance is None or distance < best_distance):
            best, best_distance = frequency, distance
    return best


def _most_common(values: Iterable[int]) -> int:
    counts = Counter(values)
    top = max(counts.values())
    return min(value for value, count in counts.items() if count == top)


def step(current: date, pattern: RecurringPattern) -> date:
    """The occurrence after ``current``, kept on the pattern's anchor."""
    months = FREQUENCY_MONTHS.get(pattern.frequency)
    if months is not None:
        return add_months(current, months, pattern.day_of_month or current.day)
    return current + timedelta(days=FREQUENCY_DAYS[pattern.frequency])


def next_occurrence(
    last: date,
    frequency: RecurringFrequency,
    day_of_month: Optional[int] = None,
    day_of_week: Optional[int] = None,
) -> date:
    """Last occurrence plus one nominal interval, snapped to the anchor.

    Monthly and longer frequencies land on ``day_of_month`` (clamped to the
    month's end); weekly ones move to the nearest ``day_of_week``
    (0 = Monday).
    """
    months = FREQUENCY_MONTHS.get(frequency)
    if months is not None:
        return add_months(last, months, day_of_month or last.day)

    candidate = last + timedelta(days=FREQUENCY_DAYS[frequency])
    if day_of_week is None:
        return candidate
    shift = (day_of_week - candidate.weekday()) % 7
    if shift > 3:
        shift -= 7
    return candidate + timedelta(days=shift)


def previous_occurrence(
    upcoming: date, frequency: RecurringFrequency, day_of_month: Optional[int] = None
) -> date:
    """One nominal interval before ``upcoming``."""
    months = FREQUENCY_MONTHS.get(frequency)
    if months is not None:
        return add_months(upcoming, -months, day_of_month or upcoming.day)
    return upcoming - timedelta(days=FREQUENCY_DAYS[frequency])


def roll_forward(pattern: RecurringPattern, as_of: date) -> date:
    """The pattern's next expected date, advanced until it is not before ``as_of``."""
    due = pattern.next_expected_date
    while due < as_of:
        due = step(due, pattern)
    return due


def _confidence(occurrences: int, gaps: list[int]) -> float:
    mean_gap = statistics.fmean(gaps)
    cv = statistics.pstdev(gaps) / mean_gap if mean_gap else 1.0
    value = (1 - 0.5 ** (occurrences - 1)) * (1 - min(cv, 1.0))
    return round(min(1.0, max(0.0, value)), 2)


class RecurringDetector:
    """Infers recurring patterns from transaction history. Never writes."""

    def __init__(self, settings: Optional[RecurringSettings] = None):
        self.settings = settings or RecurringSettings()

    def group(self, history: Iterable[Transaction]) -> dict[tuple[str, int], list[Transaction]]:
        """Group transactions by (merchant key, whole amount).

        Adjustments and pending transactions are left out, as are keys
        shorter than three characters.
        """
        groups: dict[tuple[str, int], list[Transaction]] = defaultdict(list)
        for txn in history:
            if txn.is_adjustment or txn.is_pending:
                continue
            key = merchant_key_for(txn)
            if len(key) < 3:
                continue
            groups[(key, whole_amount(txn.amount))].append(txn)
        return groups

    def detect(
        self, history: Iterable[Transaction], as_of: Optional[date] = None
    ) -> list[RecurringPattern]:
        """Detect recurring patterns.

        Args:
            history: Stored transactions
            as_of: When given, next expected dates in the past are advanced
                by whole intervals until they are on or after this date

        Returns:
            DETECTED patterns ordered by merchant key then amount
        """
        patterns = []
        for (key, _), txns in sorted(self.group(history).items()):
            pattern = self._pattern_for(key, txns, as_of)
            if pattern is not None:
                patterns.append(pattern)
        logger.debug(f"Detected {len(patterns)} recurring patterns")
        return patterns

    def _pattern_for(
        self, key: str, txns: list[Transaction], as_of: Optional[date]
    ) -> Optional[RecurringPattern]:
        if len(txns) < self.settings.min_occurrences:
            return None

        txns = sorted(txns, key=lambda t: (t.date, t.id))
        gaps = [(b.date - a.date).days for a, b in zip(txns, txns[1:])]
        frequency = classify_frequency(statistics.median(gaps), self.settings.frequency_tolerance)
        if frequency is None:
            logger.debug(f"No frequency for '{key}' (median gap {statistics.median(gaps)} days)")
            return None

        day_of_month = day_of_week = None
        if frequency in FREQUENCY_MONTHS:
            day_of_month = _most_common(t.date.day for t in txns)
        else:
            day_of_week = _most_common(t.date.weekday() for t in txns)

        amounts = [t.amount for t in txns]
        expected = sum(amounts, Decimal("0")) / len(amounts)
        variance = Decimal("0")
        if expected != 0:
            deviation = max(abs(a - expected) for a in amounts)
            variance = (deviation / abs(expected) * 100).quantize(_CENTS, rounding=ROUND_HALF_UP)

        last = txns[-1]
        pattern = RecurringPattern(
            merchant_key=key,
            frequency=frequency,
            expected_amount=expected.quantize(_CENTS, rounding=ROUND_HALF_UP),
            amount_variance=variance,
            next_expected_date=next_occurrence(last.date, frequency, day_of_month, day_of_week),
            last_occurrence=last.date,
            occurrence_count=len(txns),
            confidence=_confidence(len(txns), gaps),
            day_of_month=day_of_month,
            day_of_week=day_of_week,
            account_id=last.account_id,
            category_id=last.category_id,
            transaction_ids=tuple(t.id for t in txns),
        )
        if as_of is not None:
            pattern = replace(pattern, next_expected_date=roll_forward(pattern, as_of))
        return pattern


# Lifecycle transitions


def _is_active(pattern: RecurringPattern) -> bool:
    return pattern.status in (RecurringStatus.DETECTED, RecurringStatus.CONFIRMED) and not pattern.is_paused


def confirm(pattern: RecurringPattern) -> RecurringPattern:
    if pattern.status != RecurringStatus.DETECTED:
        raise InvalidTransitionError(f"Cannot confirm a {pattern.status.value.lower()} pattern")
    return replace(pattern, status=RecurringStatus.CONFIRMED)


def dismiss(pattern: RecurringPattern) -> RecurringPattern:
    if pattern.status != RecurringStatus.DETECTED:
        raise InvalidTransitionError(f"Cannot dismiss a {pattern.status.value.lower()} pattern")
    return replace(pattern, status=RecurringStatus.DISMISSED)


def pause(pattern: RecurringPattern) -> RecurringPattern:
    if pattern.status != RecurringStatus.CONFIRMED:
        raise InvalidTransitionError("Only confirmed patterns can be paused")
    if pattern.is_paused:
        raise InvalidTransitionError("Pattern is already paused")
    return replace(pattern, is_paused=True)


def resume(pattern: RecurringPattern) -> RecurringPattern:
    if pattern.status != RecurringStatus.CONFIRMED or not pattern.is_paused:
        raise InvalidTransitionError("Only paused patterns can be resumed")
    return replace(pattern, is_paused=False)


def end(pattern: RecurringPattern) -> RecurringPattern:
    if pattern.status != RecurringStatus.CONFIRMED:
        raise InvalidTransitionError("Only confirmed patterns can be ended")
    return replace(pattern, status=RecurringStatus.ENDED, is_paused=False)


def pattern_identity(pattern: RecurringPattern) -> tuple[str, RecurringFrequency, int]:
    return (pattern.merchant_key, pattern.frequency, whole_amount(pattern.expected_amount))


def merge_detected(
    existing: Iterable[RecurringPattern], detected: Iterable[RecurringPattern]
) -> tuple[list[RecurringPattern], list[RecurringPattern]]:
    """Reconcile freshly detected patterns with stored ones.

    New patterns are created as DETECTED. Stored DETECTED patterns are
    refreshed wholesale; confirmed, active ones only get their schedule and
    statistics refreshed. Dismissed, ended, paused and manually created
    patterns are left alone and never recreated.

    Returns:
        Tuple of (patterns to create, patterns to update)
    """
    stored = {pattern_identity(p): p for p in existing}
    to_create: list[RecurringPattern] = []
    to_update: list[RecurringPattern] = []

    for fresh in detected:
        current = stored.get(pattern_identity(fresh))
        if current is None:
            to_create.append(replace(fresh, status=RecurringStatus.DETECTED))
            continue
        if not _is_active(current) or current.is_manual:
            continue

        if current.status == RecurringStatus.DETECTED:
            refreshed = replace(fresh, id=current.id, is_manual=current.is_manual)
        else:
            refreshed = replace(
                current,
                next_expected_date=fresh.next_expected_date,
                last_occurrence=fresh.last_occurrence,
                occurrence_count=fresh.occurrence_count,
                confidence=fresh.confidence,
                transaction_ids=fresh.transaction_ids,
            )
        if refreshed != current or refreshed.transaction_ids != current.transaction_ids:
            to_update.append(refreshed)

    return to_create, to_update


@dataclass(frozen=True)
class DetectionSummary:
    detected: int
    updated: int
    patterns: tuple[RecurringPattern, ...]


class RecurringService:
    """Service for detecting and managing recurring patterns."""

    def __init__(
        self,
        db: Database,
        detector: Optional[RecurringDetector] = None,
        settings: Optional[RecurringSettings] = None,
    ):
        """Initialize recurring service.

        Args:
            db: Database instance
            detector: Pattern detector (a default one is created if omitted)
            settings: Recurring tunables
        """
        self.db = db
        self.settings = settings or RecurringSettings()
        self.detector = detector or RecurringDetector(self.settings)

    def detect(self, as_of: Optional[date] = None) -> DetectionSummary:
        """Run detection over the stored history and persist the outcome.

        Returns:
            DetectionSummary with counts of created and refreshed patterns
        """
        detected = self.detector.detect(self.db.list_transactions(), as_of=as_of)
        to_create, to_update = merge_detected(self.db.list_recurring_patterns(), detected)

        for pattern in to_create:
            self.db.create_recurring_pattern(pattern)
        for pattern in to_update:
            self.db.update_recurring_pattern(pattern)

        logger.info(f"Recurring detection: {len(to_create)} new, {len(to_update)} refreshed")
        return DetectionSummary(
            detected=len(to_create), updated=len(to_update), patterns=tuple(detected)
        )

    def get_pattern(self, pattern_id: int) -> RecurringPattern:
        """Get pattern by ID.

        Raises:
            NotFoundError: If the pattern doesn't exist
        """
        pattern = self.db.get_recurring_pattern(pattern_id)
        if pattern is None:
            raise NotFoundError(recurring_not_found(pattern_id))
        return pattern

    def list_patterns(self, status: Optional[RecurringStatus] = None) -> list[RecurringPattern]:
        return self.db.list_recurring_patterns(status=status)

    def create_manual(
        self,
        merchant: str,
        frequency: RecurringFrequency,
        expected_amount: Decimal,
        next_expected_date: date,
        amount_variance: Decimal = Decimal("0"),
        account_id: Optional[int] = None,
        category_id: Optional[int] = None,
        day_of_month: Optional[int] = None,
        day_of_week: Optional[int] = None,
    ) -> RecurringPattern:
        """Record a recurring payment by hand.

        Manual patterns start CONFIRMED and detection never rewrites them.
        The anchor defaults to the next expected date's day of month
        (monthly and longer) or weekday (weekly and biweekly).

        Args:
            merchant: Merchant name; stored as its normalized key
            frequency: Payment frequency
            expected_amount: Signed amount, negative for outflows
            next_expected_date: When the next payment is due
            amount_variance: Allowed deviation in percent when linking
            account_id: Optional account the payment comes from
            category_id: Optional category
            day_of_month: Anchor day for monthly and longer frequencies
            day_of_week: Anchor weekday (0 = Monday) for weekly frequencies

        Returns:
            The stored pattern

        Raises:
            ValidationError: If a field is blank, zero or out of range
            NotFoundError: If the account or category doesn't exist
        """
        merchant_key = normalize_merchant(merchant)
        if not merchant_key:
            raise ValidationError("Merchant is required")
        if expected_amount == 0:
            raise ValidationError("Expected amount cannot be zero")
        if amount_variance < 0:
            raise ValidationError("Amount variance cannot be negative")

        if frequency in FREQUENCY_MONTHS:
            if day_of_week is not None:
                raise ValidationError("Day of week only applies to weekly and biweekly patterns")
            if day_of_month is not None and not 1 <= day_of_month <= 31:
                raise ValidationError("Day of month must be between 1 and 31")
            day_of_month = day_of_month or next_expected_date.day
        else:
            if day_of_month is not None:
                raise ValidationError("Day of month only applies to monthly and longer patterns")
            if day_of_week is not None and not 0 <= day_of_week <= 6:
                raise ValidationError("Day of week must be between 0 (Monday) and 6 (Sunday)")
            if day_of_week is None:
                day_of_week = next_expected_date.weekday()

        if account_id is not None and self.db.get_account(account_id) is None:
            raise NotFoundError(account_not_found(account_id))
        if category_id is not None and self.db.get_category(category_id) is None:
            raise NotFoundError(category_not_found(category_id))

        pattern = RecurringPattern(
            merchant_key=merchant_key,
            frequency=frequency,
            expected_amount=expected_amount.quantize(_CENTS, rounding=ROUND_HALF_UP),
            amount_variance=amount_variance,
            next_expected_date=next_expected_date,
            last_occurrence=previous_occurrence(next_expected_date, frequency, day_of_month),
            occurrence_count=0,
            confidence=1.0,
            day_of_month=day_of_month,
            day_of_week=day_of_week,
            account_id=account_id,
            category_id=category_id,
            status=RecurringStatus.CONFIRMED,
            is_manual=True,
        )
        pattern = replace(pattern, id=self.db.create_recurring_pattern(pattern))
        logger.info(f"Created manual recurring pattern {pattern.id} ({merchant_key})")
        return pattern

    def from_transaction(
        self,
        transaction_id: int,
        frequency: RecurringFrequency,
        expected_amount: Optional[Decimal] = None,
    ) -> RecurringPattern:
        """Mark a transaction as recurring.

        A stored pattern with the same merchant key and frequency takes the
        transaction and becomes CONFIRMED; otherwise a manual CONFIRMED
        pattern is created from it. The anchor follows the transaction date.

        Args:
            transaction_id: Transaction to mark
            frequency: Payment frequency
            expected_amount: Defaults to the transaction amount

        Raises:
            NotFoundError: If the transaction doesn't exist
            ValidationError: If the transaction has no merchant or description
                to key on, or the amount is zero
        """
        txn = self.db.get_transaction(transaction_id)
        if txn is None:
            raise NotFoundError(transaction_not_found(transaction_id))

        key = merchant_key_for(txn)
        if not key:
            raise ValidationError(f"Transaction {transaction_id} has no merchant to key on")
        amount = txn.amount if expected_amount is None else expected_amount
        if amount == 0:
            raise ValidationError("Expected amount cannot be zero")
        amount = amount.quantize(_CENTS, rounding=ROUND_HALF_UP)

        day_of_month = day_of_week = None
        if frequency in FREQUENCY_MONTHS:
            day_of_month = txn.date.day
        else:
            day_of_week = txn.date.weekday()

        existing = next(
            (
                p
                for p in self.db.list_recurring_patterns()
                if p.merchant_key == key and p.frequency == frequency
            ),
            None,
        )

        if existing is None:
            pattern = RecurringPattern(
                merchant_key=key,
                frequency=frequency,
                expected_amount=amount,
                amount_variance=Decimal("0"),
                next_expected_date=next_occurrence(txn.date, frequency, day_of_month, day_of_week),
                last_occurrence=txn.date,
                occurrence_count=1,
                confidence=1.0,
                day_of_month=day_of_month,
                day_of_week=day_of_week,
                account_id=txn.account_id,
                category_id=txn.category_id,
                status=RecurringStatus.CONFIRMED,
                is_manual=True,
                transaction_ids=(txn.id,),
            )
            pattern = replace(pattern, id=self.db.create_recurring_pattern(pattern))
            logger.info(f"Marked transaction {txn.id} as recurring: new pattern {pattern.id}")
            return pattern

        ids = existing.transaction_ids
        count = existing.occurrence_count
        if txn.id not in ids:
            ids = ids + (txn.id,)
            count += 1
        last = max(existing.last_occurrence, txn.date)
        pattern = replace(
            existing,
            expected_amount=amount,
            day_of_month=day_of_month,
            day_of_week=day_of_week,
            last_occurrence=last,
            next_expected_date=next_occurrence(last, frequency, day_of_month, day_of_week),
            occurrence_count=count,
            status=RecurringStatus.CONFIRMED,
            transaction_ids=ids,
        )
        self.db.update_recurring_pattern(pattern)
        logger.info(f"Marked transaction {txn.id} as recurring: pattern {pattern.id} confirmed")
        return pattern

    def _transition(self, pattern_id: int, operation) -> RecurringPattern:
        updated = operation(self.get_pattern(pattern_id))
        self.db.update_recurring_pattern(updated)
        logger.info(
            f"Recurring pattern {pattern_id} ({updated.merchant_key}) is now "
            f"{updated.status.value}{' (paused)' if updated.is_paused else ''}"
        )
        return updated

    def confirm(self, pattern_id: int) -> RecurringPattern:
        return self._transition(pattern_id, confirm)

    def dismiss(self, pattern_id: int) -> RecurringPattern:
        return self._transition(pattern_id, dismiss)

    def pause(self, pattern_id: int) -> RecurringPattern:
        return self._transition(pattern_id, pause)

    def resume(self, pattern_id: int) -> RecurringPattern:
        return self._transition(pattern_id, resume)

    def end(self, pattern_id: int) -> RecurringPattern:
        return self._transition(pattern_id, end)

    def upcoming(
        self, as_of: Optional[date] = None, days: Optional[int] = None, limit: Optional[int] = None
    ) -> list[RecurringPattern]:
        """Active patterns due within ``days`` of ``as_of``, soonest first.

        Stale next-expected dates are rolled forward before filtering; the
        returned patterns carry the rolled date.
        """
        as_of = as_of or date.today()
        horizon = as_of + timedelta(days=days if days is not None else self.settings.upcoming_days)

        due = []
        for pattern in self.db.list_recurring_patterns():
            if not _is_active(pattern):
                continue
            next_date = roll_forward(pattern, as_of)
            if next_date <= horizon:
                due.append(replace(pattern, next_expected_date=next_date))

        due.sort(key=lambda p: (p.next_expected_date, p.merchant_key, p.id or 0))
        return due[:limit] if limit is not None else due

    def link_transaction(self, transaction_id: int) -> Optional[RecurringPattern]:
        """Attach a transaction to the active pattern it belongs to.

        A pattern matches when its merchant key equals the transaction's and
        the amount lies within the pattern's variance plus a small slack.

        Returns:
            The refreshed pattern, or None if no pattern matched

        Raises:
            NotFoundError: If the transaction doesn't exist
        """
        txn = self.db.get_transaction(transaction_id)
        if txn is None:
            raise NotFoundError(transaction_not_found(transaction_id))

        key = merchant_key_for(txn)
        if not key:
            return None

        for pattern in self.db.list_recurring_patterns():
            if pattern.merchant_key != key or not _is_active(pattern):
                continue
            if txn.id in pattern.transaction_ids:
                return pattern
            if pattern.expected_amount == 0:
                continue

            percent_diff = abs(txn.amount - pattern.expected_amount) / abs(pattern.expected_amount) * 100
            if percent_diff > pattern.amount_variance + Decimal(str(self.settings.link_variance_slack)):
                continue

            last = max(pattern.last_occurrence, txn.date)
            updated = replace(
                pattern,
                last_occurrence=last,
                occurrence_count=pattern.occurrence_count + 1,
                next_expected_date=next_occurrence(
                    last, pattern.frequency, pattern.day_of_month, pattern.day_of_week
                ),
                transaction_ids=pattern.transaction_ids + (txn.id,),
            )
            self.db.update_recurring_pattern(updated)
            logger.info(f"Linked transaction {txn.id} to recurring pattern {pattern.id}")
            return updated

        return None
