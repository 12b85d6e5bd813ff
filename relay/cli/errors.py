"""
Unified error output for the relay CLI.

Every failure is printed to stderr as a message followed by its concrete
next steps, then the process exits with status 1.
"""

import sys
from typing import Optional

from relay.errors import CommandNotFoundError, RelayError


def error(
    message: str,
    suggestions: Optional[list[str]] = None,
    tip: Optional[str] = None,
    available: Optional[list[str]] = None,
    available_label: Optional[str] = None,
) -> None:
    """
    Print formatted error message and exit.

    Args:
        message: The main error message
        suggestions: Next steps to offer the user
        tip: Additional help tip
        available: List of valid options to show
        available_label: Label for the available list (e.g., "Available commands")
    """
    print(f"Error: {message}", file=sys.stderr)

    if suggestions:
        print("\nSuggestions:", file=sys.stderr)
        for suggestion in suggestions:
            print(f"  - {suggestion}", file=sys.stderr)

    if available and available_label:
        print(f"\n{available_label}: {format_items_list(available)}", file=sys.stderr)

    if tip:
        print(f"\nTip: {tip}", file=sys.stderr)

    sys.exit(1)


def report_relay_error(exc: RelayError, verbose: bool = False) -> None:
    """Print a RelayError with its suggestions and exit."""
    available = None
    if isinstance(exc, CommandNotFoundError):
        available = exc.available
    tip = None if verbose else "Re-run with --verbose for debug logs."
    error(
        exc.message,
        suggestions=exc.suggestions,
        tip=tip,
        available=available,
        available_label="Available commands" if available else None,
    )


def format_items_list(items: list[str], max_items: int = 10) -> str:
    """Comma-separated list, truncated after ``max_items``."""
    if len(items) <= max_items:
        return ", ".join(items)

    shown = items[:max_items]
    remaining = len(items) - max_items
    return f"{', '.join(shown)}, ... and {remaining} more"
