"""Command-line interface for relay."""
