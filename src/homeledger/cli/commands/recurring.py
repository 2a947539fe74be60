"""Recurring payment commands."""

import click
from homeledger.cli.account_resolution import resolve_account_or_exit
from homeledger.cli.error_handling import handle_domain_error
from homeledger.domain.account import AccountService
from homeledger.domain.category import CategoryService
from homeledger.domain.entities import RecurringFrequency, RecurringPattern, RecurringStatus
from homeledger.domain.errors import DomainError
from homeledger.domain.recurring import RecurringService
from homeledger.utils.amount_parser import parse_amount
from homeledger.utils.date_parser import parse_date


def build_recurring_service(ctx: click.Context) -> RecurringService:
    return RecurringService(ctx.obj["db"], settings=ctx.obj["config"].recurring)


def format_pattern(pattern: RecurringPattern) -> str:
    """One-line rendering of a pattern."""
    status = pattern.status.value + (" (paused)" if pattern.is_paused else "")
    return (
        f"ID: {pattern.id:3d} | {pattern.merchant_key:20s} | {pattern.frequency.value:10s} | "
        f"{pattern.expected_amount:>10} | next {pattern.next_expected_date} | "
        f"{pattern.occurrence_count}x | {pattern.confidence:.2f} | {status}"
    )


@click.group()
def recurring_group():
    """Detect and manage recurring payments."""
    pass


@recurring_group.command("detect")
@click.option("--as-of", help="Reference date for next-expected dates (default: today)")
@click.pass_context
def detect_patterns(ctx, as_of: str | None):
    """Scan transaction history for recurring payments."""
    as_of_date = None
    if as_of:
        try:
            as_of_date = parse_date(as_of)
        except ValueError as e:
            click.echo(f"Error: Invalid date: {e}", err=True)
            ctx.exit(1)

    summary = build_recurring_service(ctx).detect(as_of=as_of_date)
    click.echo(f"Detected {summary.detected} new pattern(s), refreshed {summary.updated}")


@recurring_group.command("list")
@click.option(
    "--status",
    type=click.Choice([s.value for s in RecurringStatus], case_sensitive=False),
    help="Only show patterns with this status",
)
@click.pass_context
def list_patterns(ctx, status: str | None):
    """List recurring patterns."""
    service = build_recurring_service(ctx)
    patterns = service.list_patterns(RecurringStatus(status.upper()) if status else None)

    if not patterns:
        click.echo("No recurring patterns found. Use 'recurring detect' to scan history.")
        return

    click.echo("\nRecurring patterns:")
    click.echo("-" * 110)
    for pattern in patterns:
        click.echo(format_pattern(pattern))


FREQUENCY_CHOICE = click.Choice([f.value for f in RecurringFrequency], case_sensitive=False)


@recurring_group.command("add")
@click.argument("merchant")
@click.option("--frequency", type=FREQUENCY_CHOICE, required=True, help="How often the payment recurs")
@click.option("--amount", required=True, help="Expected amount, negative for payments out")
@click.option("--next-date", required=True, help="When the next payment is due")
@click.option("--variance", default="0", show_default=True, help="Allowed amount deviation in percent")
@click.option("--account", help="Account name or ID the payment comes from")
@click.option("--category", help="Category path (e.g., 'Bills > Streaming')")
@click.option("--day", type=int, help="Anchor day of month (monthly and longer) or weekday 0-6 (weekly)")
@click.pass_context
def add_pattern(ctx, merchant: str, frequency: str, amount: str, next_date: str, variance: str,
                account: str | None, category: str | None, day: int | None):
    """Record a recurring payment by hand.

    Examples:
        homeledger recurring add "Gym" --frequency monthly --amount -40 --next-date 2024-05-03
    """
    try:
        next_expected = parse_date(next_date)
    except ValueError as e:
        click.echo(f"Error: Invalid date: {e}", err=True)
        ctx.exit(1)

    try:
        expected_amount = parse_amount(amount)
        amount_variance = parse_amount(variance)
    except ValueError as e:
        click.echo(f"Error: Invalid amount format: {e}", err=True)
        ctx.exit(1)

    db = ctx.obj["db"]
    account_id = None
    if account:
        account_id = resolve_account_or_exit(ctx, AccountService(db), account)

    category_id = None
    if category:
        category_obj = CategoryService(db).get_category_by_path(category)
        if category_obj is None:
            click.echo(f"Error: Category '{category}' not found", err=True)
            ctx.exit(1)
        category_id = category_obj.id

    freq = RecurringFrequency(frequency.upper())
    monthly = freq not in (RecurringFrequency.WEEKLY, RecurringFrequency.BIWEEKLY)
    try:
        pattern = build_recurring_service(ctx).create_manual(
            merchant,
            freq,
            expected_amount,
            next_expected,
            amount_variance=amount_variance,
            account_id=account_id,
            category_id=category_id,
            day_of_month=day if monthly else None,
            day_of_week=None if monthly else day,
        )
    except DomainError as e:
        handle_domain_error(ctx, e)
        return

    click.echo(f"Created recurring pattern {pattern.id}")
    click.echo(format_pattern(pattern))


@recurring_group.command("mark")
@click.argument("transaction_id", type=int)
@click.option("--frequency", type=FREQUENCY_CHOICE, required=True, help="How often the payment recurs")
@click.option("--amount", help="Expected amount (default: the transaction's amount)")
@click.pass_context
def mark_transaction(ctx, transaction_id: int, frequency: str, amount: str | None):
    """Mark a transaction as a recurring payment."""
    expected_amount = None
    if amount:
        try:
            expected_amount = parse_amount(amount)
        except ValueError as e:
            click.echo(f"Error: Invalid amount format: {e}", err=True)
            ctx.exit(1)

    try:
        pattern = build_recurring_service(ctx).from_transaction(
            transaction_id, RecurringFrequency(frequency.upper()), expected_amount
        )
    except DomainError as e:
        handle_domain_error(ctx, e)
        return

    click.echo(format_pattern(pattern))


@recurring_group.command("upcoming")
@click.option("--days", type=int, help="Look-ahead window in days (default from config)")
@click.option("--limit", type=int, help="Maximum number of payments to show")
@click.pass_context
def upcoming_payments(ctx, days: int | None, limit: int | None):
    """Show active recurring payments due soon."""
    patterns = build_recurring_service(ctx).upcoming(days=days, limit=limit)

    if not patterns:
        click.echo("No upcoming recurring payments.")
        return

    click.echo("\nUpcoming payments:")
    click.echo("-" * 60)
    for pattern in patterns:
        click.echo(f"{pattern.next_expected_date}  {pattern.merchant_key:25s} {pattern.expected_amount:>10}")


@recurring_group.command("link")
@click.argument("transaction_id", type=int)
@click.pass_context
def link_transaction(ctx, transaction_id: int):
    """Attach a transaction to the recurring pattern it belongs to."""
    try:
        pattern = build_recurring_service(ctx).link_transaction(transaction_id)
    except DomainError as e:
        handle_domain_error(ctx, e)
        return

    if pattern is None:
        click.echo(f"Transaction {transaction_id} does not belong to any active pattern")
    else:
        click.echo(f"Linked transaction {transaction_id} to pattern {pattern.id} ({pattern.merchant_key})")


def _lifecycle_command(name: str, help_text: str):
    @recurring_group.command(name, help=help_text)
    @click.argument("pattern_id", type=int)
    @click.pass_context
    def command(ctx, pattern_id: int):
        service = build_recurring_service(ctx)
        try:
            pattern = getattr(service, name)(pattern_id)
        except DomainError as e:
            handle_domain_error(ctx, e)
            return
        click.echo(format_pattern(pattern))

    return command


confirm_pattern = _lifecycle_command("confirm", "Confirm a detected pattern.")
dismiss_pattern = _lifecycle_command("dismiss", "Dismiss a detected pattern.")
pause_pattern = _lifecycle_command("pause", "Pause a confirmed pattern.")
resume_pattern = _lifecycle_command("resume", "Resume a paused pattern.")
end_pattern = _lifecycle_command("end", "Mark a pattern as ended.")


def register_commands(cli):
    """Register recurring commands with main CLI."""
    cli.add_command(recurring_group, name="recurring")
