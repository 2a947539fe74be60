"""Categorization rule commands."""

import json

import click
from homeledger.cli.error_handling import handle_domain_error
from homeledger.domain.category import CategoryService
from homeledger.domain.conditions import conditions_to_dict
from homeledger.domain.errors import DomainError
from homeledger.domain.rules import RuleService


@click.group()
def rule_group():
    """Manage categorization rules."""
    pass


@rule_group.command("add")
@click.argument("name")
@click.option("--category", required=True, help="Target category path (e.g., 'Bills > Streaming')")
@click.option(
    "--conditions",
    required=True,
    help='Condition JSON (e.g., \'{"merchant_contains": "netflix", "amount_max": "-5"}\')',
)
@click.option("--priority", type=int, default=100, show_default=True, help="Lower runs first")
@click.option("--disabled", is_flag=True, help="Create the rule disabled")
@click.pass_context
def add_rule(ctx, name: str, category: str, conditions: str, priority: int, disabled: bool):
    """Create a categorization rule.

    Examples:
        homeledger rule add Netflix --category "Bills > Streaming" \\
            --conditions '{"merchant_contains": "netflix"}'
    """
    service = RuleService(ctx.obj["db"])
    parsed = _load_conditions(ctx, conditions)

    try:
        rule_id = service.create_rule(
            name=name, category_path=category, conditions=parsed, priority=priority, enabled=not disabled
        )
    except DomainError as e:
        handle_domain_error(ctx, e)
        return

    click.echo(f"Created rule '{name}' (ID: {rule_id})")


@rule_group.command("list")
@click.pass_context
def list_rules(ctx):
    """List rules in evaluation order."""
    db = ctx.obj["db"]
    service = RuleService(db)
    category_service = CategoryService(db)

    rules = service.list_rules()
    problems = service.find_invalid()
    if not rules and not problems:
        click.echo("No rules found. Use 'rule add' to create one.")
        return

    invalid = {error.rule_id: str(error) for error in problems}

    click.echo("\nRules:")
    click.echo("-" * 80)
    for rule in rules:
        state = "enabled" if rule.is_enabled else "disabled"
        target = category_service.format_category_path(rule.category_id)
        click.echo(f"ID: {rule.id:3d} | p{rule.priority:<4d} | {state:8s} | {rule.name} -> {target}")
        click.echo(f"       {json.dumps(conditions_to_dict(rule.conditions))}")
        if rule.id in invalid:
            click.echo(f"       invalid: {invalid.pop(rule.id)}")

    # Whatever is left could not be read at all
    for rule_id, message in invalid.items():
        click.echo(f"ID: {rule_id:3d} | unreadable: {message}")
        click.echo("       Fix it with 'rule edit --conditions' or remove it with 'rule delete'")


@rule_group.command("edit")
@click.argument("rule_id", type=int)
@click.option("--name", help="New display name")
@click.option("--category", help="New target category path")
@click.option("--conditions", help="Replacement condition JSON")
@click.option("--priority", type=int, help="New priority (lower runs first)")
@click.pass_context
def edit_rule(ctx, rule_id: int, name, category, conditions, priority):
    """Change a rule's name, category, conditions or priority."""
    parsed = None
    if conditions is not None:
        parsed = _load_conditions(ctx, conditions)

    try:
        RuleService(ctx.obj["db"]).update_rule(
            rule_id, name=name, category_path=category, conditions=parsed, priority=priority
        )
    except DomainError as e:
        handle_domain_error(ctx, e)
        return

    click.echo(f"Updated rule {rule_id}")


@rule_group.command("test")
@click.option("--conditions", required=True, help="Condition JSON to try")
@click.option("--limit", type=int, default=5, show_default=True, help="Sample matches to show")
@click.pass_context
def test_rule(ctx, conditions: str, limit: int):
    """Show which stored transactions a condition set would match.

    Nothing is changed.

    Examples:
        homeledger rule test --conditions '{"merchant_contains": "netflix"}'
    """
    parsed = _load_conditions(ctx, conditions)

    try:
        result = RuleService(ctx.obj["db"]).test_conditions(parsed, limit=limit)
    except DomainError as e:
        handle_domain_error(ctx, e)
        return

    click.echo(f"{result.match_count} transaction(s) match")
    for txn in result.sample:
        click.echo(f"  {txn.id:5d}  {txn.date}  {txn.amount:>10}  {txn.description}")


@rule_group.command("enable")
@click.argument("rule_id", type=int)
@click.pass_context
def enable_rule(ctx, rule_id: int):
    """Enable a rule."""
    try:
        RuleService(ctx.obj["db"]).set_enabled(rule_id, True)
        click.echo(f"Enabled rule {rule_id}")
    except DomainError as e:
        handle_domain_error(ctx, e)


@rule_group.command("disable")
@click.argument("rule_id", type=int)
@click.pass_context
def disable_rule(ctx, rule_id: int):
    """Disable a rule."""
    try:
        RuleService(ctx.obj["db"]).set_enabled(rule_id, False)
        click.echo(f"Disabled rule {rule_id}")
    except DomainError as e:
        handle_domain_error(ctx, e)


@rule_group.command("delete")
@click.argument("rule_id", type=int)
@click.option("--yes", is_flag=True, help="Skip the confirmation prompt")
@click.pass_context
def delete_rule(ctx, rule_id: int, yes: bool):
    """Delete a rule."""
    if not yes and not click.confirm(f"Are you sure you want to delete rule {rule_id}?"):
        click.echo("Deletion cancelled.")
        return

    try:
        RuleService(ctx.obj["db"]).delete_rule(rule_id)
        click.echo(f"Deleted rule {rule_id}")
    except DomainError as e:
        handle_domain_error(ctx, e)


@rule_group.command("apply")
@click.pass_context
def apply_rules(ctx):
    """Categorize stored uncategorized transactions using the enabled rules."""
    count = RuleService(ctx.obj["db"]).apply_to_uncategorized()
    click.echo(f"Categorized {count} transaction(s)")


@rule_group.command("run")
@click.argument("rule_id", type=int)
@click.option("--force", is_flag=True, help="Also recategorize transactions that already have a category")
@click.pass_context
def run_rule(ctx, rule_id: int, force: bool):
    """Apply a single rule to stored transactions."""
    try:
        count = RuleService(ctx.obj["db"]).apply_rule(rule_id, force=force)
    except DomainError as e:
        handle_domain_error(ctx, e)
        return

    click.echo(f"Rule {rule_id} applied to {count} transaction(s)")


def _load_conditions(ctx, conditions: str):
    try:
        return json.loads(conditions)
    except json.JSONDecodeError as e:
        click.echo(f"Error: Conditions are not valid JSON: {e}", err=True)
        ctx.exit(1)


def register_commands(cli):
    """Register rule commands with main CLI."""
    cli.add_command(rule_group, name="rule")
