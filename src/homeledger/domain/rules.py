"""Categorization rule evaluation and management."""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable, Optional, Protocol, Sequence
import logging

from homeledger.database.base import Database
from homeledger.domain.conditions import (
    conditions_from_dict,
    conditions_to_dict,
    predicate_count,
    validate_conditions,
)
from homeledger.domain.entities import (
    Account,
    CategorizationRule,
    RuleConditions,
    RuleOperator,
    Transaction,
)
from homeledger.domain.errors import (
    InvalidRuleConfiguration,
    NotFoundError,
    ValidationError,
    category_path_not_found,
    rule_not_found,
)

logger = logging.getLogger(__name__)


class RuleSubject(Protocol):
    """Anything a rule can be evaluated against (candidates and stored transactions)."""

    account_id: Optional[int]
    amount: Decimal
    description: str
    merchant: Optional[str]


class RuleEvaluator:
    """First-match evaluation of categorization rules."""

    @staticmethod
    def order_rules(rules: Iterable[CategorizationRule]) -> list[CategorizationRule]:
        """Enabled rules in precedence order.

        Lower priority number wins; equal priorities fall back to creation
        time, then id, so the ordering is total.
        """
        enabled = [rule for rule in rules if rule.is_enabled]
        return sorted(enabled, key=lambda r: (r.priority, r.created_at, r.id))

    @staticmethod
    def matches(
        subject: RuleSubject, conditions: RuleConditions, account: Optional[Account] = None
    ) -> bool:
        """Check whether a subject satisfies a condition set."""
        checks: list[bool] = []
        merchant = (subject.merchant or "").lower()
        description = (subject.description or "").lower()

        if conditions.merchant_contains is not None:
            checks.append(conditions.merchant_contains.lower() in merchant)
        if conditions.merchant_equals is not None:
            checks.append(merchant == conditions.merchant_equals.lower())
        if conditions.description_contains is not None:
            checks.append(conditions.description_contains.lower() in description)
        if conditions.description_equals is not None:
            checks.append(description == conditions.description_equals.lower())

        amount = subject.amount
        if conditions.amount_min is not None:
            checks.append(amount >= conditions.amount_min)
        if conditions.amount_max is not None:
            checks.append(amount <= conditions.amount_max)
        if conditions.amount_equals is not None:
            checks.append(amount == conditions.amount_equals)

        if conditions.account_ids:
            checks.append(subject.account_id in conditions.account_ids)
        if conditions.account_types:
            checks.append(account is not None and account.account_type in conditions.account_types)
        if conditions.owner_ids:
            checks.append(
                account is not None
                and account.owner_id is not None
                and account.owner_id in conditions.owner_ids
            )

        # An empty rule must not capture everything
        if not checks:
            return False
        if conditions.operator == RuleOperator.OR:
            return any(checks)
        return all(checks)

    def evaluate(
        self,
        subject: RuleSubject,
        rules: Iterable[CategorizationRule],
        account: Optional[Account] = None,
    ) -> Optional[int]:
        """Return the category of the first matching rule, or None."""
        for rule in self.order_rules(rules):
            try:
                validate_conditions(rule.conditions, rule.id)
            except InvalidRuleConfiguration as e:
                logger.warning(f"Skipping rule {rule.id} ({rule.name}): {e}")
                continue
            if self.matches(subject, rule.conditions, account):
                logger.debug(f"Rule {rule.id} ({rule.name}) matched '{subject.description}'")
                return rule.category_id
        return None

    @staticmethod
    def find_invalid(rules: Iterable[CategorizationRule]) -> list[InvalidRuleConfiguration]:
        """Report every rule whose conditions are contradictory."""
        problems: list[InvalidRuleConfiguration] = []
        for rule in rules:
            try:
                validate_conditions(rule.conditions, rule.id)
            except InvalidRuleConfiguration as e:
                problems.append(e)
        return problems


@dataclass(frozen=True)
class RuleTestResult:
    """Dry-run outcome of a condition set against stored transactions."""

    match_count: int
    sample: tuple[Transaction, ...] = ()


class RuleService:
    """Service for managing and applying categorization rules."""

    def __init__(self, db: Database, evaluator: Optional[RuleEvaluator] = None):
        """Initialize rule service.

        Args:
            db: Database instance
            evaluator: Rule evaluator (a default one is created if omitted)
        """
        self.db = db
        self.evaluator = evaluator or RuleEvaluator()

    def create_rule(
        self,
        name: str,
        category_path: str,
        conditions: dict[str, Any],
        priority: int = 100,
        enabled: bool = True,
        household_id: Optional[int] = None,
    ) -> int:
        """Create a categorization rule.

        Args:
            name: Display name
            category_path: Target category path (e.g., "Bills > Streaming")
            conditions: Condition JSON object
            priority: Lower numbers take precedence
            enabled: Whether the rule participates in evaluation
            household_id: Optional household scope

        Returns:
            Rule ID

        Raises:
            NotFoundError: If the category doesn't exist
            InvalidRuleConfiguration: If the conditions are invalid or empty
        """
        category = self.db.get_category_by_path(category_path)
        if category is None:
            raise NotFoundError(category_path_not_found(category_path))

        parsed = self._parse_conditions(conditions)

        return self.db.create_rule(
            name=name,
            category_id=category.id,
            conditions=conditions_to_dict(parsed),
            priority=priority,
            is_enabled=enabled,
            household_id=household_id,
        )

    def get_rule(self, rule_id: int) -> Optional[CategorizationRule]:
        return self.db.get_rule(rule_id)

    def list_rules(
        self, enabled_only: bool = False, household_id: Optional[int] = None
    ) -> list[CategorizationRule]:
        """List rules in precedence order (disabled rules last when included)."""
        rules = self.db.list_rules(enabled_only=enabled_only, household_id=household_id)
        return sorted(rules, key=lambda r: (not r.is_enabled, r.priority, r.created_at, r.id))

    def find_invalid(self) -> list[InvalidRuleConfiguration]:
        """Report stored rules that are unreadable or contradictory, by rule id."""
        problems = self.db.list_unreadable_rules()
        problems += RuleEvaluator.find_invalid(self.db.list_rules())
        return sorted(problems, key=lambda e: e.rule_id or 0)

    def update_rule(
        self,
        rule_id: int,
        name: Optional[str] = None,
        category_path: Optional[str] = None,
        conditions: Optional[dict[str, Any]] = None,
        priority: Optional[int] = None,
    ) -> None:
        """Change a rule's name, target category, conditions or priority.

        Only the arguments given are changed. Replacing the conditions is
        also how an unreadable stored rule is repaired.

        Raises:
            NotFoundError: If the rule or category doesn't exist
            InvalidRuleConfiguration: If the new conditions are invalid or empty
            ValidationError: If nothing would change
        """
        self._require_rule(rule_id)
        if name is None and category_path is None and conditions is None and priority is None:
            raise ValidationError("Nothing to update")

        updates: dict[str, Any] = {"name": name, "priority": priority}
        if category_path is not None:
            category = self.db.get_category_by_path(category_path)
            if category is None:
                raise NotFoundError(category_path_not_found(category_path))
            updates["category_id"] = category.id
        if conditions is not None:
            updates["conditions"] = conditions_to_dict(self._parse_conditions(conditions))

        self.db.update_rule(rule_id, **updates)
        logger.info(f"Updated rule {rule_id}")

    def set_enabled(self, rule_id: int, enabled: bool) -> None:
        """Enable or disable a rule.

        Raises:
            NotFoundError: If the rule doesn't exist
        """
        self._require_rule(rule_id)
        self.db.update_rule_enabled(rule_id, enabled)

    def delete_rule(self, rule_id: int) -> None:
        self._require_rule(rule_id)
        self.db.delete_rule(rule_id)

    def test_conditions(self, conditions: dict[str, Any], limit: int = 5) -> RuleTestResult:
        """Dry-run a condition set against every stored transaction.

        Nothing is written.

        Args:
            conditions: Condition JSON object, as for ``create_rule``
            limit: Most recent matches to return as a sample (1 to 100)

        Returns:
            RuleTestResult with the total match count and newest matches first

        Raises:
            InvalidRuleConfiguration: If the conditions are invalid or empty
            ValidationError: If the limit is out of range
        """
        if not 1 <= limit <= 100:
            raise ValidationError("Sample limit must be between 1 and 100")
        parsed = self._parse_conditions(conditions)

        accounts = self._accounts()
        matched = [
            txn
            for txn in self.db.list_transactions()
            if self.evaluator.matches(txn, parsed, accounts.get(txn.account_id))
        ]
        return RuleTestResult(match_count=len(matched), sample=tuple(matched[:limit]))

    def apply_rule(self, rule_id: int, force: bool = False) -> int:
        """Apply one rule to stored transactions.

        Args:
            rule_id: Rule to apply
            force: Also recategorize transactions that already have a category

        Returns:
            Number of transactions whose category changed

        Raises:
            NotFoundError: If the rule doesn't exist
            ValidationError: If the rule is disabled
            InvalidRuleConfiguration: If the rule is unreadable or contradictory
        """
        rule = self.db.get_rule(rule_id)
        if rule is None:
            raise NotFoundError(rule_not_found(rule_id))
        if not rule.is_enabled:
            raise ValidationError("Cannot apply disabled rule")
        validate_conditions(rule.conditions, rule.id)

        accounts = self._accounts()
        transactions = self.db.list_transactions(uncategorized=not force)

        changed = 0
        with self.db.transaction():
            for txn in transactions:
                if txn.category_id == rule.category_id:
                    continue
                if self.evaluator.matches(txn, rule.conditions, accounts.get(txn.account_id)):
                    self.db.update_transaction_category(txn.id, rule.category_id)
                    changed += 1

        logger.info(f"Rule {rule_id} ({rule.name}) categorized {changed} transaction(s)")
        return changed

    def apply_to_uncategorized(self, household_id: Optional[int] = None) -> int:
        """Categorize every uncategorized stored transaction a rule matches.

        Returns:
            Number of transactions categorized
        """
        rules = self.db.list_rules(enabled_only=True, household_id=household_id)
        if not rules:
            return 0

        accounts = self._accounts()
        transactions = self.db.list_transactions(uncategorized=True)

        categorized = 0
        with self.db.transaction():
            for txn in transactions:
                category_id = self.evaluator.evaluate(txn, rules, accounts.get(txn.account_id))
                if category_id is not None:
                    self.db.update_transaction_category(txn.id, category_id)
                    categorized += 1

        logger.info(f"Rules categorized {categorized} of {len(transactions)} uncategorized transactions")
        return categorized

    def evaluate(
        self, subject: RuleSubject, rules: Sequence[CategorizationRule], account: Optional[Account] = None
    ) -> Optional[int]:
        return self.evaluator.evaluate(subject, rules, account)

    def _accounts(self) -> dict[int, Account]:
        return {account.id: account for account in self.db.list_accounts()}

    def _require_rule(self, rule_id: int) -> Optional[CategorizationRule]:
        """Return the rule, or None when it exists but cannot be read.

        Raises:
            NotFoundError: If no such rule is stored
        """
        try:
            rule = self.db.get_rule(rule_id)
        except InvalidRuleConfiguration as e:
            # Unreadable rules can still be disabled, edited and deleted
            logger.debug(f"Rule {rule_id} is unreadable: {e}")
            return None
        if rule is None:
            raise NotFoundError(rule_not_found(rule_id))
        return rule

    @staticmethod
    def _parse_conditions(conditions: dict[str, Any]) -> RuleConditions:
        parsed = conditions_from_dict(conditions)
        if predicate_count(parsed) == 0:
            raise InvalidRuleConfiguration("A rule needs at least one condition")
        validate_conditions(parsed)
        return parsed

