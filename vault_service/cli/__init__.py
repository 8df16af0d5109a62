"""Command-line interface for the vault storage engine."""
