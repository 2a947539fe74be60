"""Account management commands."""

import click
from homeledger.cli.error_handling import handle_domain_error
from homeledger.domain.account import AccountService
from homeledger.domain.entities import AccountType
from homeledger.domain.errors import DomainError
from homeledger.utils.amount_parser import parse_amount


@click.group()
def account_group():
    """Manage accounts."""
    pass


@account_group.command("create")
@click.argument("name", metavar="ACCOUNT_NAME")
@click.option(
    "--type",
    "account_type",
    type=click.Choice([t.value for t in AccountType], case_sensitive=False),
    default=AccountType.CHECKING.value,
    help="Account type (default: CHECKING)",
)
@click.option("--balance", default="0", help="Current balance (e.g., 1234.56)")
@click.option("--owner", "owner_id", type=int, help="Owning household member ID")
@click.pass_context
def create_account(ctx, name: str, account_type: str, balance: str, owner_id: int | None):
    """Create a new manually-maintained account.

    Examples:
        homeledger account create "Everyday Checking"
        homeledger account create "Visa" --type CREDIT --balance -420.17
    """
    db = ctx.obj["db"]
    service = AccountService(db)

    try:
        current_balance = parse_amount(balance)
    except ValueError as e:
        click.echo(f"Error: Invalid balance: {e}", err=True)
        ctx.exit(1)

    try:
        account_id = service.create_account(
            name=name, account_type=account_type, owner_id=owner_id, current_balance=current_balance
        )
        click.echo(f"Created account '{name}' (ID: {account_id})")
    except DomainError as e:
        handle_domain_error(ctx, e)


@account_group.command("list")
@click.pass_context
def list_accounts(ctx):
    """List all accounts."""
    db = ctx.obj["db"]
    service = AccountService(db)

    accounts = service.list_accounts()
    if not accounts:
        click.echo("No accounts found.")
        return

    click.echo("\nAccounts:")
    click.echo("-" * 72)
    for acc in accounts:
        source = "manual" if acc.is_manual else f"linked {acc.external_id}"
        click.echo(
            f"ID: {acc.id:3d} | {acc.name:20s} | {acc.account_type.value:10s} | "
            f"{acc.current_balance:>12} | {source}"
        )


def register_commands(cli):
    """Register account commands with main CLI."""
    cli.add_command(account_group, name="account")
