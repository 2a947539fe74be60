"""Domain layer for homeledger application."""

import importlib

_SERVICES = {
    "AccountService": "homeledger.domain.account",
    "CategoryService": "homeledger.domain.category",
    "TransactionService": "homeledger.domain.transaction",
    "CSVImportService": "homeledger.domain.csv_import",
    "RuleService": "homeledger.domain.rules",
    "RecurringService": "homeledger.domain.recurring",
    "AccountReconciliationService": "homeledger.domain.account_reconciliation",
}

__all__ = list(_SERVICES)


# Services import the database layer, which imports entities from this
# package, so they are loaded on first access
def __getattr__(name):
    if name in _SERVICES:
        return getattr(importlib.import_module(_SERVICES[name]), name)
    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")
