"""CSV import commands."""

import json

import click
from homeledger.cli.account_resolution import resolve_account_or_exit
from homeledger.cli.error_handling import handle_domain_error
from homeledger.domain.account import AccountService
from homeledger.domain.category import CategoryResolver
from homeledger.domain.csv_import import CSVImportService
from homeledger.domain.errors import DomainError
from homeledger.domain.import_context import ImportContextLoader
from homeledger.domain.import_executor import ImportExecutor
from homeledger.domain.import_preview import ImportPreview, ImportPreviewBuilder
from homeledger.domain.matching import TransactionMatcher
from homeledger.domain.rules import RuleEvaluator


def build_import_service(ctx: click.Context) -> CSVImportService:
    """Wire the import pipeline from the invocation's config and cache."""
    db = ctx.obj["db"]
    config = ctx.obj["config"]
    resolver = CategoryResolver(db, ctx.obj["cache"])
    builder = ImportPreviewBuilder(TransactionMatcher(config.matching), RuleEvaluator())
    loader = ImportContextLoader(db, resolver, config.matching)
    return CSVImportService(db, ImportExecutor(db, builder, loader))


def print_preview(preview: ImportPreview) -> None:
    """Print a preview as a table."""
    summary = preview.summary
    click.echo(
        f"\n{preview.total_rows} rows: {summary['create']} create, {summary['update']} update, "
        f"{summary['unchanged']} unchanged, {summary['skip']} skip"
    )
    click.echo("-" * 80)
    for row in preview.rows:
        if row.candidate is not None:
            c = row.candidate
            line = f"{row.row_number:4d} {row.action.value:9s} {c.date} {c.amount:>10} {c.description}"
        else:
            line = f"{row.row_number:4d} {row.action.value:9s}"
        if row.matched is not None:
            line += f"  -> #{row.matched.id} ({row.confidence:.2f})"
        click.echo(line)
        for change in row.changes:
            click.echo(f"       {change.field}: {change.before!r} -> {change.after!r}")
        if row.skip_reason and row.skip_reason not in row.warnings:
            click.echo(f"       skipped: {row.skip_reason}")
        for warning in row.warnings:
            click.echo(f"       warning: {warning}")


def _default_account(ctx: click.Context, account):
    if account is None:
        return None
    return resolve_account_or_exit(ctx, AccountService(ctx.obj["db"]), account)


@click.group()
def import_group():
    """Import transactions from CSV files."""
    pass


@import_group.command("preview")
@click.argument("csv_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--account", help="Default account (name or ID) for rows without an Account column value")
@click.option("--protect-manual", is_flag=True, help="Never update manually entered transactions")
@click.option("--json", "as_json", is_flag=True, help="Print the preview as JSON")
@click.pass_context
def preview_import(ctx, csv_file: str, account, protect_manual: bool, as_json: bool):
    """Show what importing a CSV file would do, without writing anything.

    Examples:
        homeledger import preview march.csv --account "Everyday Checking"
        homeledger import preview march.csv --account 1 --json
        homeledger import preview export-with-account-column.csv
    """
    account_id = _default_account(ctx, account)
    service = build_import_service(ctx)

    try:
        preview = service.preview_csv(csv_file, account_id, protect_manual=protect_manual)
    except DomainError as e:
        handle_domain_error(ctx, e)
        return

    if as_json:
        click.echo(json.dumps(preview.as_dict(), indent=2))
    else:
        print_preview(preview)


@import_group.command("execute")
@click.argument("csv_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--account", help="Default account (name or ID) for rows without an Account column value")
@click.option("--skip", "skip_rows", type=int, multiple=True, help="Row number to leave out (repeatable)")
@click.option("--protect-manual", is_flag=True, help="Never update manually entered transactions")
@click.pass_context
def execute_import(ctx, csv_file: str, account, skip_rows: tuple[int, ...], protect_manual: bool):
    """Import a CSV file.

    Matching is redone against the current data on every run, so running
    the same import again creates nothing new.

    Examples:
        homeledger import execute march.csv --account "Everyday Checking"
        homeledger import execute march.csv --account 1 --skip 4 --skip 9
    """
    account_id = _default_account(ctx, account)
    service = build_import_service(ctx)

    try:
        result = service.execute_csv(
            csv_file, account_id, skip_row_numbers=skip_rows, protect_manual=protect_manual
        )
    except DomainError as e:
        handle_domain_error(ctx, e)
        return

    click.echo("\nImport complete:")
    click.echo(f"  Created: {result.created} transactions")
    click.echo(f"  Updated: {result.updated}")
    click.echo(f"  Unchanged: {result.unchanged}")
    click.echo(f"  Skipped: {result.skipped}")
    if result.rules_applied:
        click.echo(f"  Categorized by rules: {result.rules_applied}")
    for detail in result.skipped_details:
        click.echo(f"    Row {detail.row_number}: {detail.reason}")


def register_commands(cli):
    """Register import commands with main CLI."""
    cli.add_command(import_group, name="import")
