"""Shared pytest fixtures for homeledger tests."""

import tempfile
import os
from datetime import date
from decimal import Decimal
from pathlib import Path
import pytest

from homeledger.database.factories import create_sqlite_database
from homeledger.domain.account import AccountService
from homeledger.domain.category import CategoryService
from homeledger.domain.rules import RuleService
from homeledger.domain.transaction import TransactionService


@pytest.fixture
def temp_db():
    """Create a temporary database for testing."""
    # Create a temporary file for the database
    fd, db_path = tempfile.mkstemp(suffix=".db")
    os.close(fd)

    db = create_sqlite_database(database_path=db_path)
    # Store the path for tests that need it
    db.database_path = db_path
    db.connect()
    db.initialize_schema()

    yield db

    # Cleanup
    db.disconnect()
    if os.path.exists(db_path):
        os.unlink(db_path)


@pytest.fixture
def account_service(temp_db):
    """Create an AccountService with a temporary database."""
    return AccountService(temp_db)


@pytest.fixture
def category_service(temp_db):
    """Create a CategoryService with a temporary database."""
    return CategoryService(temp_db)


@pytest.fixture
def transaction_service(temp_db):
    """Create a TransactionService with a temporary database."""
    return TransactionService(temp_db)


@pytest.fixture
def rule_service(temp_db):
    """Create a RuleService with a temporary database."""
    return RuleService(temp_db)


@pytest.fixture
def sample_account(account_service):
    """Create a sample checking account for testing."""
    account_id = account_service.create_account(
        name="Everyday Checking", account_type="CHECKING", current_balance=Decimal("1500.00")
    )
    return account_service.get_account(account_id)


@pytest.fixture
def sample_categories(category_service):
    """Create a small category tree and return ids keyed by path."""
    category_ids = {}
    for name, parent in [
        ("Food & Dining", None),
        ("Bills", None),
        ("Income", None),
        ("Groceries", "Food & Dining"),
        ("Coffee", "Food & Dining"),
        ("Streaming", "Bills"),
    ]:
        category_id = category_service.create_category(name=name, parent_path=parent)
        category_ids[f"{parent} > {name}" if parent else name] = category_id
    return category_ids


@pytest.fixture
def add_transaction(temp_db, sample_account):
    """Return a helper that stores a transaction on the sample account."""

    def _add(txn_date, amount, description, **kwargs):
        kwargs.setdefault("account_id", sample_account.id)
        return temp_db.create_transaction(
            date=txn_date if isinstance(txn_date, date) else date.fromisoformat(txn_date),
            amount=Decimal(amount),
            description=description,
            **kwargs,
        )

    return _add


@pytest.fixture
def write_csv(tmp_path):
    """Return a helper that writes CSV text to a temporary file."""

    def _write(content: str, name: str = "import.csv") -> Path:
        path = tmp_path / name
        path.write_text(content, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def cli_runner():
    """Create a Click CLI test runner."""
    from click.testing import CliRunner

    return CliRunner()
