"""CLI helpers for account resolution."""

from __future__ import annotations

import click
from homeledger.domain.account import AccountService


def resolve_account_or_exit(ctx: click.Context, account_service: AccountService, account: str) -> int:
    """Resolve account name or ID, or exit with a CLI error.

    This keeps error messaging and exit behavior consistent across commands.
    """
    resolved = account_service.resolve(account)
    if resolved is None:
        click.echo(f"Error: Account '{account}' not found", err=True)
        ctx.exit(1)
    return resolved.id
