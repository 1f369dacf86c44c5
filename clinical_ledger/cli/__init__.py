"""Command-line interface for the clinical ledger."""
