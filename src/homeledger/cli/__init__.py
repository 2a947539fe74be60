"""Command-line interface for homeledger."""
