"""Tests for committing imports."""

from datetime import date
from decimal import Decimal

import pytest

from homeledger.domain.errors import NotFoundError
from homeledger.domain.import_executor import SKIPPED_BY_USER, ImportExecutor
from homeledger.domain.import_preview import MANUAL_PROTECTED, ImportAction


def rows(*items):
    return [(number, dict(row)) for number, row in enumerate(items, start=2)]


COFFEE = {"date": "2024-03-01", "amount": "-42.50", "description": "Coffee Shop"}
GROCERIES = {"date": "2024-03-02", "amount": "-88.10", "description": "Fresh Market", "merchant": "Fresh Market"}


def test_execute_creates_new_rows(temp_db, sample_account):
    """New rows are stored as manual transactions."""
    executor = ImportExecutor(temp_db)

    result = executor.execute(rows(COFFEE, GROCERIES), sample_account.id)

    assert result.created == 2
    assert len(result.created_ids) == 2
    stored = temp_db.get_transaction(result.created_ids[1])
    assert stored.amount == Decimal("-88.10")
    assert stored.merchant == "Fresh Market"
    assert stored.is_manual is True


def test_execute_twice_creates_nothing_new(temp_db, sample_account):
    """Re-running the same import matches the rows it created."""
    executor = ImportExecutor(temp_db)
    executor.execute(rows(COFFEE, GROCERIES), sample_account.id)

    second = executor.execute(rows(COFFEE, GROCERIES), sample_account.id)

    assert second.created == 0
    assert second.unchanged == 2
    assert len(temp_db.list_transactions(account_id=sample_account.id)) == 2


def test_preview_after_import_is_unchanged(temp_db, sample_account):
    """Importing a row then previewing it again yields unchanged."""
    executor = ImportExecutor(temp_db)
    first = executor.preview(rows(COFFEE), sample_account.id)
    assert first.rows[0].action == ImportAction.CREATE
    assert first.rows[0].confidence is None

    executor.execute(rows(COFFEE), sample_account.id)
    second = executor.preview(rows(COFFEE), sample_account.id)

    assert second.rows[0].action == ImportAction.UNCHANGED


def test_retry_after_partial_import_completes(temp_db, sample_account):
    """A retry after only some rows were written creates just the missing ones."""
    executor = ImportExecutor(temp_db)
    executor.execute(rows(COFFEE), sample_account.id)

    result = executor.execute(rows(COFFEE, GROCERIES), sample_account.id)

    assert result.created == 1
    assert result.unchanged == 1
    assert len(temp_db.list_transactions(account_id=sample_account.id)) == 2


def test_skip_list_applies_to_writes(temp_db, sample_account):
    """Rows the user skips are reported and not written."""
    executor = ImportExecutor(temp_db)

    result = executor.execute(rows(COFFEE, GROCERIES), sample_account.id, skip_row_numbers=[3])

    assert result.created == 1
    assert result.skipped == 1
    assert result.skipped_details[0].row_number == 3
    assert result.skipped_details[0].reason == SKIPPED_BY_USER


def test_skip_list_retry_stays_consistent(temp_db, sample_account):
    """Retrying with the same skip list never double-creates."""
    executor = ImportExecutor(temp_db)
    executor.execute(rows(COFFEE, GROCERIES), sample_account.id, skip_row_numbers=[3])

    result = executor.execute(rows(COFFEE, GROCERIES), sample_account.id, skip_row_numbers=[3])

    assert result.created == 0
    assert result.unchanged == 1
    assert result.skipped == 1
    assert len(temp_db.list_transactions(account_id=sample_account.id)) == 1


def test_execute_updates_changed_fields(temp_db, sample_account, add_transaction):
    """A matched row with new notes updates the stored transaction."""
    txn_id = add_transaction("2024-03-01", "-42.50", "Coffee Shop")
    executor = ImportExecutor(temp_db)

    result = executor.execute(rows(dict(COFFEE, notes="client meeting")), sample_account.id)

    assert result.updated == 1
    assert temp_db.get_transaction(txn_id).notes == "client meeting"


def test_execute_protect_manual(temp_db, sample_account, add_transaction):
    """Protected manual transactions are left untouched."""
    txn_id = add_transaction("2024-03-01", "-42.50", "Coffee Shop", is_manual=True)
    executor = ImportExecutor(temp_db)

    result = executor.execute(
        rows(dict(COFFEE, notes="client meeting")), sample_account.id, protect_manual=True
    )

    assert result.updated == 0
    assert result.skipped_details[0].reason == MANUAL_PROTECTED
    assert temp_db.get_transaction(txn_id).notes is None


def test_execute_applies_rule_suggestion(temp_db, sample_account, sample_categories, rule_service):
    """Uncategorized creates take the suggested rule category."""
    rule_service.create_rule("Coffee", "Food & Dining > Coffee", {"description_contains": "coffee"})
    executor = ImportExecutor(temp_db)

    result = executor.execute(rows(COFFEE, GROCERIES), sample_account.id)

    assert result.rules_applied == 1
    categories = {
        txn.description: txn.category_id for txn in temp_db.list_transactions(account_id=sample_account.id)
    }
    assert categories["Coffee Shop"] == sample_categories["Food & Dining > Coffee"]
    assert categories["Fresh Market"] is None


def test_execute_parse_errors_reported(temp_db, sample_account):
    """Unparseable rows are skipped with their error."""
    executor = ImportExecutor(temp_db)

    result = executor.execute(rows(dict(COFFEE, amount="n/a"), GROCERIES), sample_account.id)

    assert result.created == 1
    assert result.skipped_details[0].row_number == 2
    assert result.skipped_details[0].reason == "Invalid amount: 'n/a'"


def test_execute_unknown_account(temp_db):
    """Importing into a missing account fails before anything is written."""
    with pytest.raises(NotFoundError):
        ImportExecutor(temp_db).execute(rows(COFFEE), 999)


def test_matching_pool_is_bounded_to_window(temp_db, sample_account, add_transaction):
    """Stored transactions far from the import dates are not candidates."""
    add_transaction(date(2024, 1, 1), "-42.50", "Coffee Shop")

    preview = ImportExecutor(temp_db).preview(rows(COFFEE), sample_account.id)

    assert preview.rows[0].action == ImportAction.CREATE


def test_execute_is_all_or_nothing(temp_db, sample_account, monkeypatch):
    """A failure part way through leaves no rows behind."""
    executor = ImportExecutor(temp_db)
    real_create = temp_db.create_transaction
    calls = []

    def failing_create(**kwargs):
        calls.append(kwargs["description"])
        if len(calls) == 2:
            raise RuntimeError("disk full")
        return real_create(**kwargs)

    monkeypatch.setattr(temp_db, "create_transaction", failing_create)

    with pytest.raises(RuntimeError):
        executor.execute(rows(COFFEE, GROCERIES), sample_account.id)

    monkeypatch.undo()
    assert temp_db.list_transactions(account_id=sample_account.id) == []

    result = executor.execute(rows(COFFEE, GROCERIES), sample_account.id)
    assert result.created == 2


def test_execute_update_rolls_back_with_failed_create(temp_db, sample_account, add_transaction, monkeypatch):
    """Updates made earlier in a failed import are undone too."""
    txn_id = add_transaction("2024-03-01", "-42.50", "Coffee Shop")

    def failing_create(**kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(temp_db, "create_transaction", failing_create)

    with pytest.raises(RuntimeError):
        ImportExecutor(temp_db).execute(rows(dict(COFFEE, notes="client meeting"), GROCERIES), sample_account.id)

    monkeypatch.undo()
    assert temp_db.get_transaction(txn_id).notes is None


def test_execute_without_default_account_skips_unrouted_rows(temp_db, sample_account):
    """Rows with no account column value and no default account are skipped."""
    result = ImportExecutor(temp_db).execute(rows(COFFEE, dict(GROCERIES, account="everyday checking")))

    assert result.created == 1
    assert result.skipped_details[0].reason == "No account specified and no default account selected"
    assert [t.description for t in temp_db.list_transactions(account_id=sample_account.id)] == ["Fresh Market"]
