"""Command executor - the single entry point the CLI calls to run a command."""

from __future__ import annotations

import sys
from typing import Any

from .command_resolver import CommandResolver
from .commands import CommandExecutionOptions
from .coordinator import ExecutionCoordinator, ExecutionResult, ExecutionStrategy
from .logger import logger
from .session import SessionContextManager, SessionStore


class CommandExecutor:
    """Validates, resolves, coordinates and persists one command run."""

    def __init__(
        self,
        command_resolver: CommandResolver,
        coordinator: ExecutionCoordinator,
        session_store: SessionStore,
    ):
        self._command_resolver = command_resolver
        self._coordinator = coordinator
        self._session_store = session_store

    def execute(self, name: str, options: CommandExecutionOptions) -> ExecutionResult:
        """Run ``name`` with ``options``.

        File arguments are checked before any provider or agent resolution,
        so a bad path fails fast without touching configuration.

        Raises:
            RelayError: Any validation, resolution or pipeline failure
        """
        self._coordinator.validate_file_arguments(name, options.args)

        session = self._session_store.get_or_create(options.session_id)
        session_manager = SessionContextManager(session)

        resolved = self._command_resolver.resolve_command(name, options)
        execution = self._coordinator.execute_command(name, resolved, options, session_manager)

        result = execution.result
        if execution.strategy is ExecutionStrategy.PIPELINE:
            outputs = {
                stage: data for stage, data in result.outputs.items()
                if "guided_prompt" not in data
            }
            session_manager.record_stage_outputs(outputs)
        session_manager.record_command(
            name,
            result.success,
            agent=execution.agent,
            provider=resolved.provider_name,
            resolution_path=resolved.resolution_path.value if resolved.resolution_path else None,
            guided=result.guided,
        )

        try:
            self._session_store.save(session_manager.get_session())
        except OSError as e:
            logger.warning(f"Could not save session {session_manager.session_id}: {e}")

        return execution


def build_options_from_cli(args: Any) -> CommandExecutionOptions:
    """Translate parsed ``relay run`` arguments into execution options."""
    flags = {
        key: getattr(args, key, None)
        for key in ("provider", "model", "mode", "agent")
        if getattr(args, key, None) is not None
    }
    interactive = getattr(args, "interactive", None)
    if interactive is None:
        interactive = sys.stdin.isatty()
    return CommandExecutionOptions(
        args=list(getattr(args, "args", None) or []),
        flags=flags,
        interactive=interactive,
        isolation=bool(getattr(args, "isolated", False)),
        session_id=getattr(args, "session_id", None),
    )
