"""End-to-end tests for the command line interface."""

import json
from datetime import date, timedelta

import pytest

from homeledger.cli.main import cli
from homeledger.database.models import CategorizationRule as ORMCategorizationRule


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch):
    """Keep the user's environment out of CLI runs."""
    monkeypatch.delenv("HOMELEDGER_CONFIG", raising=False)
    monkeypatch.delenv("HOMELEDGER_DB_PATH", raising=False)


@pytest.fixture
def run(cli_runner, temp_db):
    """Invoke the CLI against the temporary database."""

    def _run(*args, **kwargs):
        return cli_runner.invoke(cli, ["--db-path", temp_db.database_path, *args], **kwargs)

    return _run


def test_help_does_not_need_database(cli_runner):
    result = cli_runner.invoke(cli, ["--help"])
    assert result.exit_code == 0
    assert "transaction reconciliation" in result.output


def test_account_create_and_list(run):
    """Test creating and listing accounts through the CLI."""
    result = run("account", "create", "Visa", "--type", "credit", "--balance", "-420.17")
    assert result.exit_code == 0
    assert "Created account 'Visa' (ID: 1)" in result.output

    result = run("account", "list")
    assert result.exit_code == 0
    assert "Visa" in result.output
    assert "CREDIT" in result.output
    assert "-420.17" in result.output


def test_account_create_duplicate_fails(run, sample_account):
    result = run("account", "create", "Everyday Checking")
    assert result.exit_code == 1
    assert "Error: Account with name 'Everyday Checking' already exists" in result.output


def test_category_create_and_list(run):
    assert run("category", "create", "Bills").exit_code == 0
    result = run("category", "create", "Streaming", "--parent", "Bills")
    assert result.exit_code == 0
    assert "Created category 'Streaming' under 'Bills'" in result.output

    result = run("category", "list")
    assert "Bills (ID: 1)" in result.output
    assert "  Streaming (ID: 2)" in result.output


def test_category_create_missing_parent(run):
    result = run("category", "create", "Streaming", "--parent", "Nope")
    assert result.exit_code == 1
    assert "Error:" in result.output


def test_transaction_add_categorize_and_list(run, sample_account, sample_categories):
    """A manual transaction can be added, categorized and listed."""
    result = run(
        "transaction", "add",
        "--account", "Everyday Checking",
        "--date", "2024-03-01",
        "--amount", "-15.99",
        "--description", "NETFLIX.COM",
    )
    assert result.exit_code == 0
    assert "Created transaction 1" in result.output

    result = run("transaction", "list", "--uncategorized")
    assert "NETFLIX.COM" in result.output
    assert "Count: 1" in result.output

    result = run("transaction", "categorize", "1", "Bills > Streaming")
    assert result.exit_code == 0
    assert "categorized as 'Bills > Streaming'" in result.output

    result = run("transaction", "list", "--category", "Bills > Streaming")
    assert "Bills > Streaming" in result.output
    assert "Expenses: $15.99" in result.output

    assert "No transactions found." in run("transaction", "list", "--uncategorized").output


def test_transaction_add_errors(run, sample_account):
    result = run("transaction", "add", "--account", "Nope", "--amount", "-1", "--description", "x")
    assert result.exit_code == 1
    assert "Error: Account 'Nope' not found" in result.output

    result = run(
        "transaction", "add", "--account", "Everyday Checking", "--amount", "lots", "--description", "x"
    )
    assert result.exit_code == 1
    assert "Error: Invalid amount format" in result.output


def test_transaction_categorize_missing(run):
    result = run("transaction", "categorize", "999", "Bills")
    assert result.exit_code == 1
    assert "Error: Transaction 999 not found" in result.output


def test_import_preview_and_execute(run, sample_account, write_csv):
    """Preview writes nothing; executing twice creates rows once."""
    path = write_csv(
        "Date,Description,Amount\n"
        "2024-03-01,NETFLIX.COM,-15.99\n"
        "2024-03-02,SAFEWAY #1234,-62.10\n"
        "not-a-date,BROKEN,-1.00\n"
    )

    result = run("import", "preview", str(path), "--account", "Everyday Checking")
    assert result.exit_code == 0
    assert "3 rows: 2 create, 0 update, 0 unchanged, 1 skip" in result.output

    result = run("import", "preview", str(path), "--account", str(sample_account.id), "--json")
    assert result.exit_code == 0
    data = json.loads(result.output)
    assert data["total_rows"] == 3
    assert [row["row_number"] for row in data["rows"]] == [2, 3, 4]
    assert data["rows"][0]["parsed"]["amount"] == "-15.99"
    assert data["rows"][2]["action"] == "skip"

    result = run("import", "execute", str(path), "--account", "Everyday Checking")
    assert result.exit_code == 0
    assert "Created: 2 transactions" in result.output
    assert "Skipped: 1" in result.output
    assert "Row 4:" in result.output

    result = run("import", "execute", str(path), "--account", "Everyday Checking")
    assert "Created: 0 transactions" in result.output
    assert "Unchanged: 2" in result.output


def test_import_execute_skip_rows(run, sample_account, write_csv):
    path = write_csv("Date,Description,Amount\n2024-03-01,NETFLIX.COM,-15.99\n2024-03-02,SAFEWAY,-62.10\n")

    result = run("import", "execute", str(path), "--account", "Everyday Checking", "--skip", "3")
    assert result.exit_code == 0
    assert "Created: 1 transactions" in result.output
    assert "Skipped: 1" in result.output


def test_import_missing_columns(run, sample_account, write_csv):
    path = write_csv("Date,Amount\n2024-03-01,-15.99\n")

    result = run("import", "preview", str(path), "--account", "Everyday Checking")
    assert result.exit_code == 1
    assert "Error: CSV file missing required columns: description" in result.output


def test_import_account_column_without_default(run, sample_account, write_csv):
    path = write_csv(
        "Date,Description,Amount,Account\n"
        "2024-03-01,NETFLIX.COM,-15.99,Everyday Checking\n"
        "2024-03-02,SAFEWAY,-62.10,Brokerage\n"
    )

    result = run("import", "execute", str(path))
    assert result.exit_code == 0
    assert "Created: 1 transactions" in result.output
    assert "Row 3: Account not found: 'Brokerage'" in result.output


def test_rule_add_list_and_apply(run, add_transaction, sample_categories):
    """Rules are created from JSON and applied to stored transactions."""
    add_transaction("2024-03-01", "-15.99", "NETFLIX.COM")
    add_transaction("2024-03-02", "-62.10", "SAFEWAY #1234")

    result = run(
        "rule", "add", "Netflix",
        "--category", "Bills > Streaming",
        "--conditions", '{"description_contains": "netflix"}',
        "--priority", "10",
    )
    assert result.exit_code == 0
    assert "Created rule 'Netflix' (ID: 1)" in result.output

    result = run("rule", "list")
    assert "Netflix -> Bills > Streaming" in result.output
    assert '"description_contains": "netflix"' in result.output

    result = run("rule", "apply")
    assert result.exit_code == 0
    assert "Categorized 1 transaction(s)" in result.output

    assert "Categorized 0 transaction(s)" in run("rule", "apply").output


def test_rule_add_invalid_input(run, sample_categories):
    result = run("rule", "add", "Broken", "--category", "Bills", "--conditions", "{not json")
    assert result.exit_code == 1
    assert "Error: Conditions are not valid JSON" in result.output

    result = run("rule", "add", "Empty", "--category", "Bills", "--conditions", "{}")
    assert result.exit_code == 1
    assert "Error: A rule needs at least one condition" in result.output


def test_rule_disable_and_delete(run, sample_categories):
    run("rule", "add", "Coffee", "--category", "Food & Dining > Coffee", "--conditions", '{"merchant_contains": "cafe"}')

    assert "Disabled rule 1" in run("rule", "disable", "1").output
    assert "disabled" in run("rule", "list").output
    assert "Deleted rule 1" in run("rule", "delete", "1", "--yes").output

    result = run("rule", "enable", "1")
    assert result.exit_code == 1
    assert "Error: Rule 1 not found" in result.output


def test_rule_test_edit_and_run(run, add_transaction, sample_categories):
    """Conditions can be tried out, rules edited and run one at a time."""
    add_transaction("2024-03-01", "-15.99", "NETFLIX.COM")
    add_transaction("2024-03-02", "-15.99", "NETFLIX.COM", category_id=sample_categories["Bills"])

    result = run("rule", "test", "--conditions", '{"description_contains": "netflix"}', "--limit", "1")
    assert result.exit_code == 0
    assert "2 transaction(s) match" in result.output
    assert result.output.count("NETFLIX.COM") == 1

    run("rule", "add", "Netflix", "--category", "Bills", "--conditions", '{"merchant_contains": "netflix"}')
    result = run("rule", "edit", "1", "--category", "Bills > Streaming",
                 "--conditions", '{"description_contains": "netflix"}', "--priority", "3")
    assert result.exit_code == 0
    assert "Updated rule 1" in result.output
    assert "p3" in run("rule", "list").output

    assert "Rule 1 applied to 1 transaction(s)" in run("rule", "run", "1").output
    assert "Rule 1 applied to 1 transaction(s)" in run("rule", "run", "1", "--force").output
    assert "Rule 1 applied to 0 transaction(s)" in run("rule", "run", "1", "--force").output

    result = run("rule", "run", "9")
    assert result.exit_code == 1
    assert "Error: Rule 9 not found" in result.output


def test_rule_list_shows_unreadable_rule(run, sample_categories, temp_db):
    session = temp_db._get_session()
    session.add(
        ORMCategorizationRule(
            name="Raw", category_id=sample_categories["Bills"], conditions={"merchantStartsWith": "x"}
        )
    )
    session.commit()

    result = run("rule", "list")
    assert result.exit_code == 0
    assert "unreadable: Rule 1: Unknown rule condition 'merchantStartsWith'" in result.output


def test_recurring_detect_confirm_and_upcoming(run, add_transaction):
    """Monthly payments are detected, confirmed and shown as upcoming."""
    today = date.today()
    for days_ago in (90, 60, 30):
        add_transaction(today - timedelta(days=days_ago), "-15.99", "NETFLIX")

    result = run("recurring", "detect")
    assert result.exit_code == 0
    assert "Detected 1 new pattern(s), refreshed 0" in result.output

    result = run("recurring", "list", "--status", "detected")
    assert "netflix" in result.output
    assert "MONTHLY" in result.output

    result = run("recurring", "confirm", "1")
    assert result.exit_code == 0
    assert "CONFIRMED" in result.output

    result = run("recurring", "confirm", "1")
    assert result.exit_code == 1
    assert "Error: Cannot confirm a confirmed pattern" in result.output

    result = run("recurring", "upcoming", "--days", "45")
    assert "netflix" in result.output
    assert "-15.99" in result.output

    assert "(paused)" in run("recurring", "pause", "1").output
    assert "No upcoming recurring payments." in run("recurring", "upcoming", "--days", "45").output


def test_recurring_add_and_mark(run, add_transaction, sample_categories):
    """Manual patterns can be added by hand or marked from a transaction."""
    result = run(
        "recurring", "add", "Iron Gym", "--frequency", "monthly", "--amount=-40",
        "--next-date", "2024-05-03", "--account", "Everyday Checking", "--category", "Bills",
    )
    assert result.exit_code == 0
    assert "Created recurring pattern 1" in result.output
    assert "iron gym" in result.output
    assert "CONFIRMED" in result.output

    result = run(
        "recurring", "add", "Iron Gym", "--frequency", "weekly", "--amount=-40",
        "--next-date", "2024-05-03", "--day", "9",
    )
    assert result.exit_code == 1
    assert "Error: Day of week must be between 0 (Monday) and 6 (Sunday)" in result.output

    txn_id = add_transaction(date(2024, 3, 5), "-12.00", "CITY PARKING")
    result = run("recurring", "mark", str(txn_id), "--frequency", "monthly")
    assert result.exit_code == 0
    assert "city parking" in result.output
    assert "next 2024-04-05" in result.output

    result = run("recurring", "mark", "999", "--frequency", "monthly")
    assert result.exit_code == 1
    assert "Error: Transaction 999 not found" in result.output


def test_recurring_missing_pattern(run):
    result = run("recurring", "dismiss", "42")
    assert result.exit_code == 1
    assert "Error: Recurring pattern 42 not found" in result.output


def test_invalid_config_file(cli_runner, temp_db, tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("matching:\n  date_weight: 0.9\n", encoding="utf-8")

    result = cli_runner.invoke(
        cli, ["--db-path", temp_db.database_path, "--config", str(path), "account", "list"]
    )
    assert result.exit_code == 1
    assert "Error: Invalid configuration" in result.output
