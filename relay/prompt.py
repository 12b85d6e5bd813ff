"""Console prompts used for interactive remediation and agent confirmation.

Prompts read from stdin with ``input()``. ``KeyboardInterrupt`` and
``EOFError`` propagate to the caller, which decides what cancellation means.
"""

from __future__ import annotations

import sys
from typing import Any, Sequence, Tuple

Choice = Tuple[str, Any]


class ConsolePrompt:
    """Numbered-menu prompts on stdin/stdout."""

    def __init__(self, stream=None):
        self._stream = stream or sys.stdout

    def is_interactive(self) -> bool:
        """Whether stdin is attached to a terminal."""
        try:
            return sys.stdin.isatty()
        except (AttributeError, ValueError):
            return False

    def confirm(self, message: str, default: bool = False) -> bool:
        hint = "[Y/n]" if default else "[y/N]"
        response = input(f"{message} {hint}: ").strip().lower()
        if not response:
            return default
        return response in ("y", "yes")

    def select(self, message: str, choices: Sequence[Choice], default_index: int = 0) -> Any:
        """Show a numbered menu and return the value of the chosen entry.

        An empty answer picks ``default_index``. Invalid answers re-prompt.
        """
        print(f"\n{message}", file=self._stream)
        for index, (label, _) in enumerate(choices, start=1):
            marker = "*" if index - 1 == default_index else " "
            print(f" {marker} {index}. {label}", file=self._stream)

        while True:
            response = input(f"Select [1-{len(choices)}] (default {default_index + 1}): ").strip()
            if not response:
                return choices[default_index][1]
            if response.isdigit() and 1 <= int(response) <= len(choices):
                return choices[int(response) - 1][1]
            print(f"Please enter a number between 1 and {len(choices)}.", file=self._stream)
