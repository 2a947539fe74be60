"""Transaction management commands."""

import click
from homeledger.cli.account_resolution import resolve_account_or_exit
from homeledger.cli.error_handling import handle_domain_error
from homeledger.domain.account import AccountService
from homeledger.domain.category import CategoryService
from homeledger.domain.errors import DomainError
from homeledger.domain.transaction import TransactionService
from homeledger.utils.amount_parser import parse_amount
from homeledger.utils.date_parser import parse_date


@click.group()
def transaction_group():
    """Manage transactions."""
    pass


@transaction_group.command("add")
@click.option("--account", required=True, help="Account name or ID")
@click.option("--date", "date_str", default="today", help="Transaction date (YYYY-MM-DD or 'today', 'yesterday')")
@click.option("--amount", required=True, help="Signed amount (e.g., -42.50 for an expense)")
@click.option("--description", required=True, help="Transaction description")
@click.option("--merchant", help="Merchant name")
@click.option("--category", help="Category path (e.g., 'Food & Dining > Groceries')")
@click.option("--notes", help="Notes")
@click.option("--adjustment", is_flag=True, help="Mark as a balance adjustment")
@click.pass_context
def add_transaction(
    ctx,
    account: str,
    date_str: str,
    amount: str,
    description: str,
    merchant: str | None,
    category: str | None,
    notes: str | None,
    adjustment: bool,
) -> None:
    """Record a manual transaction.

    Examples:
        homeledger transaction add --account Checking --amount -15.99 --description "NETFLIX"
        homeledger transaction add --account 1 --date 2024-03-01 --amount 2500 --description Payroll
    """
    db = ctx.obj["db"]
    transaction_service = TransactionService(db)
    category_service = CategoryService(db)
    account_id = resolve_account_or_exit(ctx, AccountService(db), account)

    try:
        txn_date = parse_date(date_str)
    except ValueError as e:
        click.echo(f"Error: Invalid date format: {e}", err=True)
        ctx.exit(1)

    try:
        txn_amount = parse_amount(amount)
    except ValueError as e:
        click.echo(f"Error: Invalid amount format: {e}", err=True)
        ctx.exit(1)

    category_id = None
    if category:
        category_obj = category_service.get_category_by_path(category)
        if category_obj is None:
            click.echo(f"Error: Category '{category}' not found", err=True)
            ctx.exit(1)
        category_id = category_obj.id

    try:
        transaction_id = transaction_service.create_transaction(
            account_id=account_id,
            date=txn_date,
            amount=txn_amount,
            description=description,
            merchant=merchant,
            category_id=category_id,
            notes=notes,
            is_adjustment=adjustment,
        )
        click.echo(f"Created transaction {transaction_id}")
    except DomainError as e:
        handle_domain_error(ctx, e)


@transaction_group.command("categorize")
@click.argument("transaction_id", type=int)
@click.argument("category_path")
@click.pass_context
def categorize_transaction(ctx, transaction_id: int, category_path: str) -> None:
    """Set a transaction's category. Pass "" to clear it.

    Examples:
        homeledger transaction categorize 12 "Bills > Streaming"
    """
    service = TransactionService(ctx.obj["db"])

    try:
        service.update_category(transaction_id, category_path or None)
    except DomainError as e:
        handle_domain_error(ctx, e)
        return

    if category_path:
        click.echo(f"Transaction {transaction_id} categorized as '{category_path}'")
    else:
        click.echo(f"Cleared category of transaction {transaction_id}")


@transaction_group.command("list")
@click.option("--start-date", help="Start date (YYYY-MM-DD or relative like 'yesterday')")
@click.option("--end-date", help="End date (YYYY-MM-DD or relative like 'today')")
@click.option("--category", help="Category path (e.g., 'Food & Dining > Groceries')")
@click.option("--account", help="Account name or ID")
@click.option("--uncategorized", is_flag=True, help="Show only uncategorized transactions")
@click.pass_context
def list_transactions(
    ctx,
    start_date: str | None,
    end_date: str | None,
    category: str | None,
    account: str | None,
    uncategorized: bool,
):
    """View transactions with optional filters."""
    db = ctx.obj["db"]
    service = TransactionService(db)
    category_service = CategoryService(db)
    account_service = AccountService(db)

    start = None
    if start_date:
        try:
            start = parse_date(start_date)
        except ValueError as e:
            click.echo(f"Error: Invalid start date: {e}", err=True)
            ctx.exit(1)

    end = None
    if end_date:
        try:
            end = parse_date(end_date)
        except ValueError as e:
            click.echo(f"Error: Invalid end date: {e}", err=True)
            ctx.exit(1)

    account_id = resolve_account_or_exit(ctx, account_service, account) if account else None

    if uncategorized:
        category = ""  # Empty category path means uncategorized

    transactions = service.list_transactions(
        start_date=start, end_date=end, category_path=category, account_id=account_id
    )

    if not transactions:
        click.echo("No transactions found.")
        return

    accounts = {acc.id: acc.name for acc in account_service.list_accounts()}

    click.echo(f"\nFound {len(transactions)} transaction(s):")
    click.echo("-" * 100)
    click.echo(
        f"{'ID':<6} {'Date':<12} {'Amount':<12} {'Account':<20} {'Category':<30} {'Description':<30}"
    )
    click.echo("-" * 100)

    for txn in transactions:
        account_name = accounts.get(txn.account_id, "Unknown")
        category_name = ""
        if txn.category_id:
            category_name = category_service.format_category_path(txn.category_id)

        amount_str = f"${txn.amount:,.2f}"
        description = (txn.description or "")[:30]
        if txn.is_pending:
            description = f"{description[:21]} (pending)"

        click.echo(
            f"{txn.id:<6} {str(txn.date):<12} {amount_str:<12} {account_name:<20} "
            f"{category_name:<30} {description:<30}"
        )

    total_expenses = sum(txn.amount for txn in transactions if txn.amount < 0)
    total_income = sum(txn.amount for txn in transactions if txn.amount > 0)
    click.echo("-" * 100)
    click.echo(
        f"{'TOTAL':<6} {'':<12} Expenses: ${abs(total_expenses):,.2f} | "
        f"Income: ${total_income:,.2f} | Count: {len(transactions)}"
    )


def register_commands(cli: click.Group) -> None:
    """Register transaction commands with main CLI."""
    cli.add_command(transaction_group, name="transaction")
