"""Shared domain error messages and error types."""

from dataclasses import dataclass
from typing import Optional


class DomainError(ValueError):
    """Base class for domain-level errors.

    Subclasses provide semantic categories while preserving ValueError
    compatibility for existing error handling.
    """


class ValidationError(DomainError):
    """Invalid input or failed validation in domain logic."""


class NotFoundError(DomainError):
    """Requested domain entity does not exist."""


class ConflictError(DomainError):
    """Domain conflict, such as uniqueness violations."""


class ParseError(ValidationError):
    """A single import row could not be parsed.

    Row-level and recoverable: the row is skipped, the batch continues.
    """

    def __init__(self, message: str, row_number: Optional[int] = None):
        super().__init__(message)
        self.row_number = row_number


class InvalidRuleConfiguration(ValidationError):
    """A categorization rule has conflicting or impossible predicates."""

    def __init__(self, message: str, rule_id: Optional[int] = None):
        super().__init__(message)
        self.rule_id = rule_id


class InvalidTransitionError(ConflictError):
    """A recurring pattern lifecycle operation is not allowed from its state."""


@dataclass(frozen=True)
class ThresholdUnmet:
    """Informational note: the best candidate scored below the threshold.

    Not an error. Attached to a match result so callers can explain why a
    row was classified as new.
    """

    best_score: float
    threshold: float


def account_not_found(account_id: int) -> str:
    """Return message for missing account."""
    return f"Account {account_id} not found"


def category_not_found(category_id: int) -> str:
    """Return message for missing category by ID."""
    return f"Category {category_id} not found"


def category_path_not_found(path: str) -> str:
    """Return message for missing category by path."""
    return f"Category '{path}' not found"


def transaction_not_found(transaction_id: int) -> str:
    """Return message for missing transaction."""
    return f"Transaction {transaction_id} not found"


def rule_not_found(rule_id: int) -> str:
    """Return message for missing categorization rule."""
    return f"Rule {rule_id} not found"


def recurring_not_found(pattern_id: int) -> str:
    """Return message for missing recurring pattern."""
    return f"Recurring pattern {pattern_id} not found"


def duplicate_account_name(name: str) -> str:
    """Return message for an account name that is already taken."""
    return f"Account with name '{name}' already exists"
