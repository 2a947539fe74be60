"""Tests for recurring payment detection and lifecycle."""

from dataclasses import replace
from datetime import date
from decimal import Decimal

import pytest

from homeledger.domain.entities import RecurringFrequency, RecurringStatus, Transaction
from homeledger.domain.errors import InvalidTransitionError, NotFoundError, ValidationError
from homeledger.domain.recurring import (
    RecurringDetector,
    RecurringService,
    classify_frequency,
    merge_detected,
    next_occurrence,
    normalize_merchant,
)


def history(*items):
    return [
        Transaction(id=i, account_id=1, date=d, amount=Decimal(amount), description=desc, **extra)
        for i, (d, amount, desc, extra) in enumerate(items, start=1)
    ]


def netflix_history(months=4):
    return history(*[(date(2024, m, 1), "-15.99", "NETFLIX", {}) for m in range(1, months + 1)])


def test_normalize_merchant():
    """Store numbers, punctuation and company suffixes are dropped."""
    assert normalize_merchant("AMAZON MKTP #1234 Inc.") == "amazon mktp"
    assert normalize_merchant("Spotify P0123456789") == "spotify p"
    assert normalize_merchant(None) == ""


@pytest.mark.parametrize(
    "gap, expected",
    [
        (7, RecurringFrequency.WEEKLY),
        (15, RecurringFrequency.BIWEEKLY),
        (31, RecurringFrequency.MONTHLY),
        (92, RecurringFrequency.QUARTERLY),
        (183, RecurringFrequency.SEMIANNUAL),
        (365, RecurringFrequency.ANNUAL),
        (45, None),
    ],
)
def test_classify_frequency(gap, expected):
    """Gaps map to the nearest bucket within tolerance."""
    assert classify_frequency(gap, 0.15) == expected


def test_next_occurrence_clamps_to_month_end():
    """A day-31 anchor lands on the last day of shorter months."""
    assert next_occurrence(date(2024, 1, 31), RecurringFrequency.MONTHLY, 31) == date(2024, 2, 29)


def test_next_occurrence_weekly_snaps_to_weekday():
    """Weekly patterns move to the nearest anchored weekday."""
    # 2024-03-05 is a Tuesday; the anchor is Monday
    assert next_occurrence(date(2024, 3, 5), RecurringFrequency.WEEKLY, day_of_week=0) == date(2024, 3, 11)


def test_detect_monthly_netflix():
    """Four monthly charges on the 1st yield one MONTHLY pattern."""
    patterns = RecurringDetector().detect(netflix_history())

    assert len(patterns) == 1
    pattern = patterns[0]
    assert pattern.merchant_key == "netflix"
    assert pattern.frequency == RecurringFrequency.MONTHLY
    assert pattern.occurrence_count == 4
    assert pattern.day_of_month == 1
    assert pattern.expected_amount == Decimal("-15.99")
    assert pattern.amount_variance == Decimal("0")
    assert pattern.next_expected_date == date(2024, 5, 1)
    assert pattern.last_occurrence == date(2024, 4, 1)
    assert pattern.status == RecurringStatus.DETECTED
    assert pattern.transaction_ids == (1, 2, 3, 4)
    assert 0 < pattern.confidence <= 1


def test_detect_two_occurrences_is_not_a_pattern():
    """Two charges never make a pattern."""
    assert RecurringDetector().detect(netflix_history(months=2)) == []


def test_detect_ignores_adjustments_and_pending():
    """Adjustments and pending transactions do not count."""
    txns = history(
        *[(date(2024, m, 1), "-15.99", "NETFLIX", {"is_adjustment": True}) for m in range(1, 5)],
        *[(date(2024, m, 2), "-9.99", "SPOTIFY", {"is_pending": True}) for m in range(1, 5)],
    )
    assert RecurringDetector().detect(txns) == []


def test_detect_separates_amounts():
    """Different whole amounts for one merchant are different patterns."""
    txns = history(
        *[(date(2024, m, 1), "-15.99", "NETFLIX", {}) for m in range(1, 5)],
        *[(date(2024, m, 10), "-22.99", "NETFLIX", {}) for m in range(1, 5)],
    )

    patterns = RecurringDetector().detect(txns)

    assert [p.expected_amount for p in patterns] == [Decimal("-22.99"), Decimal("-15.99")]


def test_detect_irregular_gaps_is_not_a_pattern():
    """Charges without a recognizable interval are ignored."""
    txns = history(
        (date(2024, 1, 1), "-20.00", "CORNER STORE", {}),
        (date(2024, 2, 15), "-20.00", "CORNER STORE", {}),
        (date(2024, 4, 1), "-20.00", "CORNER STORE", {}),
    )
    assert RecurringDetector().detect(txns) == []


def test_detect_as_of_rolls_next_date_forward():
    """A stale next date is advanced to on or after the reference date."""
    patterns = RecurringDetector().detect(netflix_history(), as_of=date(2024, 6, 10))
    assert patterns[0].next_expected_date == date(2024, 7, 1)


def test_merge_detected_skips_dismissed():
    """Dismissed patterns are neither refreshed nor recreated."""
    detected = RecurringDetector().detect(netflix_history())

    existing = [replace(detected[0], id=1, status=RecurringStatus.DISMISSED)]

    to_create, to_update = merge_detected(existing, detected)

    assert to_create == []
    assert to_update == []


def test_merge_detected_refreshes_confirmed_pattern():
    """An active confirmed pattern takes the new schedule and stays confirmed."""
    earlier = RecurringDetector().detect(netflix_history(months=3))[0]
    fresh = RecurringDetector().detect(netflix_history(months=4))
    existing = [replace(earlier, id=1, status=RecurringStatus.CONFIRMED, category_id=7)]

    to_create, to_update = merge_detected(existing, fresh)

    assert to_create == []
    assert len(to_update) == 1
    refreshed = to_update[0]
    assert refreshed.id == 1
    assert refreshed.status == RecurringStatus.CONFIRMED
    assert refreshed.category_id == 7
    assert refreshed.next_expected_date == date(2024, 5, 1) == fresh[0].next_expected_date
    assert refreshed.occurrence_count == 4
    assert refreshed.confidence == fresh[0].confidence
    assert refreshed.transaction_ids == (1, 2, 3, 4)


@pytest.mark.parametrize(
    "changes",
    [
        {"status": RecurringStatus.CONFIRMED, "is_paused": True},
        {"status": RecurringStatus.ENDED},
        {"status": RecurringStatus.CONFIRMED, "is_manual": True},
    ],
    ids=["paused", "ended", "manual"],
)
def test_merge_detected_leaves_inactive_and_manual_patterns(changes):
    """Paused, ended and manual patterns are neither refreshed nor recreated."""
    earlier = RecurringDetector().detect(netflix_history(months=3))[0]
    existing = [replace(earlier, id=1, **changes)]

    to_create, to_update = merge_detected(existing, RecurringDetector().detect(netflix_history()))

    assert to_create == []
    assert to_update == []


@pytest.fixture
def netflix_service(temp_db, add_transaction):
    for month in range(1, 5):
        add_transaction(date(2024, month, 1), "-15.99", "NETFLIX", merchant="Netflix")
    return RecurringService(temp_db)


def test_service_detect_persists_once(netflix_service):
    """Detection stores new patterns and does not duplicate them on re-run."""
    first = netflix_service.detect(as_of=date(2024, 4, 15))
    second = netflix_service.detect(as_of=date(2024, 4, 15))

    assert first.detected == 1
    assert second.detected == 0
    patterns = netflix_service.list_patterns()
    assert len(patterns) == 1
    assert patterns[0].frequency == RecurringFrequency.MONTHLY
    assert len(patterns[0].transaction_ids) == 4


def test_service_lifecycle(netflix_service):
    """Patterns move through confirm, pause, resume and end."""
    netflix_service.detect(as_of=date(2024, 4, 15))
    pattern_id = netflix_service.list_patterns()[0].id

    assert netflix_service.confirm(pattern_id).status == RecurringStatus.CONFIRMED
    assert netflix_service.pause(pattern_id).is_paused is True
    with pytest.raises(InvalidTransitionError):
        netflix_service.pause(pattern_id)
    assert netflix_service.resume(pattern_id).is_paused is False
    assert netflix_service.end(pattern_id).status == RecurringStatus.ENDED
    with pytest.raises(InvalidTransitionError):
        netflix_service.confirm(pattern_id)


def test_service_dismiss_survives_redetection(netflix_service):
    """A dismissed pattern is not brought back by detection."""
    netflix_service.detect(as_of=date(2024, 4, 15))
    pattern_id = netflix_service.list_patterns()[0].id
    netflix_service.dismiss(pattern_id)

    summary = netflix_service.detect(as_of=date(2024, 4, 15))

    assert summary.detected == 0
    assert netflix_service.list_patterns(RecurringStatus.DISMISSED)[0].id == pattern_id
    assert netflix_service.list_patterns(RecurringStatus.DETECTED) == []


def test_service_unknown_pattern(netflix_service):
    """Operations on a missing pattern raise NotFoundError."""
    with pytest.raises(NotFoundError):
        netflix_service.confirm(999)


def test_service_upcoming(netflix_service):
    """Upcoming lists active patterns inside the window, rolled forward."""
    netflix_service.detect(as_of=date(2024, 4, 15))
    pattern_id = netflix_service.list_patterns()[0].id

    assert [p.id for p in netflix_service.upcoming(as_of=date(2024, 4, 20), days=30)] == [pattern_id]
    assert netflix_service.upcoming(as_of=date(2024, 4, 20), days=5) == []

    rolled = netflix_service.upcoming(as_of=date(2024, 6, 10), days=30)
    assert rolled[0].next_expected_date == date(2024, 7, 1)

    netflix_service.confirm(pattern_id)
    netflix_service.pause(pattern_id)
    assert netflix_service.upcoming(as_of=date(2024, 4, 20), days=30) == []


def test_service_link_transaction(netflix_service, add_transaction):
    """A new charge within the variance extends its pattern."""
    netflix_service.detect(as_of=date(2024, 4, 15))
    may = add_transaction(date(2024, 5, 1), "-15.99", "NETFLIX", merchant="Netflix")
    odd = add_transaction(date(2024, 5, 3), "-45.00", "NETFLIX", merchant="Netflix")

    linked = netflix_service.link_transaction(may)

    assert linked.occurrence_count == 5
    assert linked.last_occurrence == date(2024, 5, 1)
    assert linked.next_expected_date == date(2024, 6, 1)
    assert may in linked.transaction_ids
    assert netflix_service.link_transaction(odd) is None
    with pytest.raises(NotFoundError):
        netflix_service.link_transaction(999)


def test_service_create_manual(netflix_service, sample_account, sample_categories):
    """Manual patterns are stored confirmed and anchored on the due date."""
    pattern = netflix_service.create_manual(
        "Iron Gym LLC",
        RecurringFrequency.MONTHLY,
        Decimal("-40"),
        date(2024, 5, 3),
        account_id=sample_account.id,
        category_id=sample_categories["Bills"],
    )

    stored = netflix_service.get_pattern(pattern.id)
    assert stored == pattern
    assert stored.merchant_key == "iron gym"
    assert stored.status == RecurringStatus.CONFIRMED
    assert stored.is_manual is True
    assert stored.expected_amount == Decimal("-40.00")
    assert stored.day_of_month == 3
    assert stored.last_occurrence == date(2024, 4, 3)
    assert stored.occurrence_count == 0

    weekly = netflix_service.create_manual(
        "Dog walker", RecurringFrequency.WEEKLY, Decimal("-25"), date(2024, 5, 3)
    )
    # 2024-05-03 is a Friday
    assert weekly.day_of_week == 4
    assert weekly.day_of_month is None


@pytest.mark.parametrize(
    "kwargs, error",
    [
        ({"merchant": "  #123 "}, ValidationError),
        ({"expected_amount": Decimal("0")}, ValidationError),
        ({"amount_variance": Decimal("-1")}, ValidationError),
        ({"day_of_month": 32}, ValidationError),
        ({"day_of_week": 2}, ValidationError),
        ({"account_id": 99}, NotFoundError),
        ({"category_id": 99}, NotFoundError),
    ],
)
def test_service_create_manual_validates(netflix_service, kwargs, error):
    args = {
        "merchant": "Iron Gym",
        "frequency": RecurringFrequency.MONTHLY,
        "expected_amount": Decimal("-40"),
        "next_expected_date": date(2024, 5, 3),
    }
    args.update(kwargs)

    with pytest.raises(error):
        netflix_service.create_manual(**args)
    assert netflix_service.list_patterns() == []


def test_service_detect_leaves_manual_pattern_alone(netflix_service):
    """Detection neither rewrites nor duplicates a manual pattern."""
    manual = netflix_service.create_manual(
        "Netflix", RecurringFrequency.MONTHLY, Decimal("-15.99"), date(2024, 5, 1)
    )

    summary = netflix_service.detect(as_of=date(2024, 4, 15))

    assert summary.detected == 0
    assert summary.updated == 0
    assert netflix_service.list_patterns() == [manual]
    assert netflix_service.get_pattern(manual.id).transaction_ids == ()


def test_service_from_transaction_creates_pattern(netflix_service, add_transaction):
    """Marking a one-off charge creates a confirmed manual pattern."""
    gym = add_transaction(date(2024, 3, 5), "-40.00", "IRON GYM #22")

    pattern = netflix_service.from_transaction(gym, RecurringFrequency.MONTHLY)

    assert pattern.merchant_key == "iron gym"
    assert pattern.status == RecurringStatus.CONFIRMED
    assert pattern.is_manual is True
    assert pattern.occurrence_count == 1
    assert pattern.day_of_month == 5
    assert pattern.last_occurrence == date(2024, 3, 5)
    assert pattern.next_expected_date == date(2024, 4, 5)
    assert pattern.transaction_ids == (gym,)

    again = netflix_service.from_transaction(gym, RecurringFrequency.MONTHLY)
    assert again.id == pattern.id
    assert again.occurrence_count == 1
    assert len(netflix_service.list_patterns()) == 1


def test_service_from_transaction_confirms_detected_pattern(netflix_service):
    """Marking a transaction of a detected pattern confirms that pattern."""
    netflix_service.detect(as_of=date(2024, 4, 15))
    detected = netflix_service.list_patterns()[0]

    pattern = netflix_service.from_transaction(4, RecurringFrequency.MONTHLY)

    assert pattern.id == detected.id
    assert pattern.status == RecurringStatus.CONFIRMED
    assert pattern.occurrence_count == 4
    assert pattern.next_expected_date == date(2024, 5, 1)
    assert netflix_service.get_pattern(detected.id).status == RecurringStatus.CONFIRMED


def test_service_from_transaction_missing(netflix_service):
    with pytest.raises(NotFoundError):
        netflix_service.from_transaction(999, RecurringFrequency.MONTHLY)
