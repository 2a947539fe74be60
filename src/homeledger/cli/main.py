"""Main CLI entry point."""

from pathlib import Path

import click
from homeledger.config import ConfigurationError, load_config
from homeledger.database.factories import create_sqlite_database
from homeledger.logging_setup import setup_logging
from homeledger.utils.cache import TTLCache

# Import and register all commands at module level
from homeledger.cli.commands import (
    account,
    category,
    import_cmd,
    recurring,
    rules,
    transaction,
)


@click.group()
@click.option(
    "--db-path",
    type=click.Path(),
    help="Path to database file (overrides HOMELEDGER_DB_PATH environment variable)",
    envvar="HOMELEDGER_DB_PATH",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False),
    help="Path to YAML configuration file (overrides HOMELEDGER_CONFIG environment variable)",
    envvar="HOMELEDGER_CONFIG",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx, db_path: str | None, config_path: str | None, verbose: bool):
    """Homeledger - transaction reconciliation and categorization.

    Import bank CSV files with duplicate detection, categorize
    transactions with rules, and track recurring payments.
    """
    ctx.ensure_object(dict)

    try:
        config = load_config(Path(config_path) if config_path else None)
    except ConfigurationError as e:
        click.echo(f"Error: {e}", err=True)
        ctx.exit(1)

    log_file = Path(config.logging.file) if config.logging.file else None
    setup_logging(
        level="DEBUG" if verbose else config.logging.level,
        log_file=log_file,
        log_format=config.logging.format,
    )

    ctx.obj["config"] = config
    # One lookup cache per process, shared by every service of this invocation
    ctx.obj["cache"] = TTLCache(
        ttl_seconds=config.cache.category_ttl_seconds, max_entries=config.cache.max_entries
    )

    # Initialize database connection only when actually running a command
    # (not when showing help)
    if ctx.invoked_subcommand is not None:
        db = create_sqlite_database(database_path=db_path)
        db.connect()
        db.initialize_schema()
        ctx.obj["db"] = db
        ctx.call_on_close(db.disconnect)


# Register all commands
account.register_commands(cli)
category.register_commands(cli)
import_cmd.register_commands(cli)
rules.register_commands(cli)
recurring.register_commands(cli)
transaction.register_commands(cli)


def main():
    """Main entry point for CLI."""
    cli()


if __name__ == "__main__":
    main()
