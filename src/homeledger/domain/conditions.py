"""Rule condition parsing and validation.

Conditions are stored as JSON objects and parsed into the closed
``RuleConditions`` struct. Nothing here touches the store, so the
persistence mappers can use it too.
"""

from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from homeledger.domain.entities import AccountType, RuleConditions, RuleOperator
from homeledger.domain.errors import InvalidRuleConfiguration

# Accepted JSON keys, including the camelCase spellings used by API clients
_KEY_ALIASES = {
    "merchant_contains": "merchant_contains",
    "merchantContains": "merchant_contains",
    "merchant_equals": "merchant_equals",
    "merchantEquals": "merchant_equals",
    "merchantExactly": "merchant_equals",
    "description_contains": "description_contains",
    "descriptionContains": "description_contains",
    "description_equals": "description_equals",
    "descriptionEquals": "description_equals",
    "descriptionExactly": "description_equals",
    "amount_min": "amount_min",
    "amountMin": "amount_min",
    "amount_max": "amount_max",
    "amountMax": "amount_max",
    "amount_equals": "amount_equals",
    "amountEquals": "amount_equals",
    "amountExactly": "amount_equals",
    "account_ids": "account_ids",
    "accountIds": "account_ids",
    "accountId": "account_ids",
    "account_types": "account_types",
    "accountTypes": "account_types",
    "owner_ids": "owner_ids",
    "ownerIds": "owner_ids",
    "operator": "operator",
}

_TEXT_FIELDS = ("merchant_contains", "merchant_equals", "description_contains", "description_equals")
_AMOUNT_FIELDS = ("amount_min", "amount_max", "amount_equals")


def conditions_from_dict(data: dict[str, Any]) -> RuleConditions:
    """Build RuleConditions from a JSON object.

    Raises:
        InvalidRuleConfiguration: On unknown keys or values of the wrong shape
    """
    if not isinstance(data, dict):
        raise InvalidRuleConfiguration("Rule conditions must be a JSON object")

    values: dict[str, Any] = {}
    for key, raw in data.items():
        field_name = _KEY_ALIASES.get(key)
        if field_name is None:
            raise InvalidRuleConfiguration(f"Unknown rule condition '{key}'")
        if raw is None:
            continue

        if field_name in _TEXT_FIELDS:
            if not isinstance(raw, str):
                raise InvalidRuleConfiguration(f"Condition '{key}' must be a string")
            values[field_name] = raw
        elif field_name in _AMOUNT_FIELDS:
            values[field_name] = _to_decimal(key, raw)
        elif field_name == "account_ids" or field_name == "owner_ids":
            items = raw if isinstance(raw, (list, tuple)) else [raw]
            try:
                ids = tuple(int(item) for item in items)
            except (TypeError, ValueError):
                raise InvalidRuleConfiguration(f"Condition '{key}' must contain integer ids")
            values[field_name] = values.get(field_name, ()) + ids
        elif field_name == "account_types":
            items = raw if isinstance(raw, (list, tuple)) else [raw]
            try:
                values[field_name] = tuple(AccountType(_enum_text(item)) for item in items)
            except ValueError:
                raise InvalidRuleConfiguration(f"Condition '{key}' contains an unknown account type")
        elif field_name == "operator":
            try:
                values[field_name] = RuleOperator(_enum_text(raw))
            except ValueError:
                raise InvalidRuleConfiguration(f"Unknown rule operator '{raw}'")

    return RuleConditions(**values)


def conditions_to_dict(conditions: RuleConditions) -> dict[str, Any]:
    """Render RuleConditions as a JSON-serializable object (unset fields omitted)."""
    data: dict[str, Any] = {}
    for name in _TEXT_FIELDS:
        value = getattr(conditions, name)
        if value is not None:
            data[name] = value
    for name in _AMOUNT_FIELDS:
        value = getattr(conditions, name)
        if value is not None:
            data[name] = str(value)
    if conditions.account_ids:
        data["account_ids"] = list(conditions.account_ids)
    if conditions.account_types:
        data["account_types"] = [t.value for t in conditions.account_types]
    if conditions.owner_ids:
        data["owner_ids"] = list(conditions.owner_ids)
    data["operator"] = conditions.operator.value
    return data


def _enum_text(value: Any) -> str:
    return str(getattr(value, "value", value)).upper()


def _to_decimal(key: str, raw: Any) -> Decimal:
    if isinstance(raw, bool):
        raise InvalidRuleConfiguration(f"Condition '{key}' must be a number")
    try:
        value = Decimal(str(raw))
    except InvalidOperation:
        raise InvalidRuleConfiguration(f"Condition '{key}' must be a number")
    if not value.is_finite():
        raise InvalidRuleConfiguration(f"Condition '{key}' must be a finite number")
    return value


def predicate_count(conditions: RuleConditions) -> int:
    """Number of predicates a condition set actually specifies."""
    count = sum(1 for name in _TEXT_FIELDS + _AMOUNT_FIELDS if getattr(conditions, name) is not None)
    count += sum(1 for group in (conditions.account_ids, conditions.account_types, conditions.owner_ids) if group)
    return count


def validate_conditions(conditions: RuleConditions, rule_id: Optional[int] = None) -> None:
    """Reject condition sets that are contradictory or can never be satisfied.

    Raises:
        InvalidRuleConfiguration: Describing the first problem found
    """
    for name in _TEXT_FIELDS:
        value = getattr(conditions, name)
        if value is not None and not value.strip():
            raise InvalidRuleConfiguration(f"Condition '{name}' is empty", rule_id)

    low, high, exact = conditions.amount_min, conditions.amount_max, conditions.amount_equals
    if low is not None and high is not None and low > high:
        raise InvalidRuleConfiguration(
            f"amount_min {low} is greater than amount_max {high}", rule_id
        )
    if conditions.operator == RuleOperator.AND and exact is not None:
        if (low is not None and exact < low) or (high is not None and exact > high):
            raise InvalidRuleConfiguration(
                f"amount_equals {exact} lies outside the amount range", rule_id
            )
    if (
        conditions.operator == RuleOperator.AND
        and conditions.merchant_equals is not None
        and conditions.merchant_contains is not None
        and conditions.merchant_contains.lower() not in conditions.merchant_equals.lower()
    ):
        raise InvalidRuleConfiguration(
            "merchant_equals can never contain merchant_contains", rule_id
        )
    if (
        conditions.operator == RuleOperator.AND
        and conditions.description_equals is not None
        and conditions.description_contains is not None
        and conditions.description_contains.lower() not in conditions.description_equals.lower()
    ):
        raise InvalidRuleConfiguration(
            "description_equals can never contain description_contains", rule_id
        )
