"""Mapper functions to convert between domain models and SQLAlchemy models.

This layer isolates the conversion logic, so schema changes stay out of the
engine.
"""

from decimal import Decimal

from homeledger.domain import entities as domain
from homeledger.domain.conditions import conditions_from_dict
from homeledger.domain.errors import InvalidRuleConfiguration
from homeledger.database.models import (
    Account as ORMAccount,
    Category as ORMCategory,
    Transaction as ORMTransaction,
    CategorizationRule as ORMCategorizationRule,
    RecurringPattern as ORMRecurringPattern,
)


def account_to_domain(orm_account: ORMAccount) -> domain.Account:
    """Convert SQLAlchemy Account model to domain Account entity."""
    return domain.Account(
        id=orm_account.id,
        name=orm_account.name,
        account_type=domain.AccountType(orm_account.account_type),
        created_at=orm_account.created_at,
        owner_id=orm_account.owner_id,
        current_balance=Decimal(orm_account.current_balance or 0),
        is_manual=orm_account.is_manual,
        external_id=orm_account.external_id,
    )


def category_to_domain(orm_category: ORMCategory) -> domain.Category:
    """Convert SQLAlchemy Category model to domain Category entity."""
    return domain.Category(
        id=orm_category.id,
        name=orm_category.name,
        parent_id=orm_category.parent_id,
        created_at=orm_category.created_at,
    )


def transaction_to_domain(orm_transaction: ORMTransaction) -> domain.Transaction:
    """Convert SQLAlchemy Transaction model to domain Transaction entity."""
    return domain.Transaction(
        id=orm_transaction.id,
        account_id=orm_transaction.account_id,
        date=orm_transaction.date,
        amount=Decimal(orm_transaction.amount),
        description=orm_transaction.description,
        merchant=orm_transaction.merchant,
        category_id=orm_transaction.category_id,
        notes=orm_transaction.notes,
        external_id=orm_transaction.external_id,
        is_manual=orm_transaction.is_manual,
        is_adjustment=orm_transaction.is_adjustment,
        is_pending=orm_transaction.is_pending,
        created_at=orm_transaction.created_at,
    )


def rule_to_domain(orm_rule: ORMCategorizationRule) -> domain.CategorizationRule:
    """Convert SQLAlchemy CategorizationRule model to domain entity.

    Raises:
        InvalidRuleConfiguration: If the stored conditions cannot be parsed
    """
    try:
        conditions = conditions_from_dict(orm_rule.conditions or {})
    except InvalidRuleConfiguration as e:
        raise InvalidRuleConfiguration(f"Rule {orm_rule.id}: {e}", orm_rule.id) from e

    return domain.CategorizationRule(
        id=orm_rule.id,
        name=orm_rule.name,
        category_id=orm_rule.category_id,
        conditions=conditions,
        priority=orm_rule.priority,
        created_at=orm_rule.created_at,
        is_enabled=orm_rule.is_enabled,
        household_id=orm_rule.household_id,
    )


def recurring_pattern_to_domain(orm_pattern: ORMRecurringPattern) -> domain.RecurringPattern:
    """Convert SQLAlchemy RecurringPattern model to domain entity."""
    return domain.RecurringPattern(
        id=orm_pattern.id,
        merchant_key=orm_pattern.merchant_key,
        frequency=domain.RecurringFrequency(orm_pattern.frequency),
        expected_amount=Decimal(orm_pattern.expected_amount),
        amount_variance=Decimal(orm_pattern.amount_variance or 0),
        day_of_month=orm_pattern.day_of_month,
        day_of_week=orm_pattern.day_of_week,
        next_expected_date=orm_pattern.next_expected_date,
        last_occurrence=orm_pattern.last_occurrence,
        occurrence_count=orm_pattern.occurrence_count,
        confidence=orm_pattern.confidence,
        account_id=orm_pattern.account_id,
        category_id=orm_pattern.category_id,
        status=domain.RecurringStatus(orm_pattern.status),
        is_paused=orm_pattern.is_paused,
        is_manual=orm_pattern.is_manual,
        transaction_ids=tuple(orm_pattern.transaction_ids or ()),
    )


def apply_recurring_pattern(pattern: domain.RecurringPattern, orm_pattern: ORMRecurringPattern) -> None:
    """Copy a domain RecurringPattern's fields onto an ORM row (id excluded)."""
    orm_pattern.merchant_key = pattern.merchant_key
    orm_pattern.frequency = pattern.frequency.value
    orm_pattern.expected_amount = pattern.expected_amount
    orm_pattern.amount_variance = pattern.amount_variance
    orm_pattern.day_of_month = pattern.day_of_month
    orm_pattern.day_of_week = pattern.day_of_week
    orm_pattern.next_expected_date = pattern.next_expected_date
    orm_pattern.last_occurrence = pattern.last_occurrence
    orm_pattern.occurrence_count = pattern.occurrence_count
    orm_pattern.confidence = pattern.confidence
    orm_pattern.account_id = pattern.account_id
    orm_pattern.category_id = pattern.category_id
    orm_pattern.status = pattern.status.value
    orm_pattern.is_paused = pattern.is_paused
    orm_pattern.is_manual = pattern.is_manual
    orm_pattern.transaction_ids = list(pattern.transaction_ids)
