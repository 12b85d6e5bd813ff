"""Execution coordinator - picks the agent role and hands off to the pipeline.

Agent selection runs in one of two branches:

* **dynamic**: when the command opts in, a resolver is available and the
  feature flags allow it (globally, or for ``implement`` only). The resolver
  scores agents for a :class:`TaskContext`. A selection below
  ``Config.LOW_CONFIDENCE_THRESHOLD`` is confirmed interactively unless
  interactive mode is off. Resolver errors fall back to the command's
  ``fallback_agent`` and never abort the command.
* **static**: the command's declared agent, or the ``--agent`` flag verbatim.

Session context handed to the pipeline is narrowed to the keys that stage
``inputs``/``conditional`` expressions reference. With no references at all
the full context is passed.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, replace
from copy import deepcopy
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from .agents import (
    AgentLoader,
    AgentSelection,
    DynamicAgentResolver,
    TaskContext,
)
from .analytics import AgentSelectionAnalytics
from .command_resolver import ResolvedCommand
from .commands import CommandDefinition, CommandExecutionOptions
from .config import Config, FeatureFlags
from .errors import ValidationError
from .logger import logger
from .pipeline import CommandResult, ExecutionContext, PipelineExecutor
from .prompt import ConsolePrompt
from .session import (
    PlanSummary,
    Session,
    SessionContextManager,
    TaskRecord,
    extract_context_references,
)

SOURCE_EXTENSIONS = (".ts", ".js", ".py", ".md", ".tf", ".yaml", ".yml", ".json")
PATH_LIKE_EXTENSIONS = (".md", ".yaml", ".yml", ".json")
SHOW_ALL_AGENTS = "__show_all__"


class ExecutionStrategy(str, Enum):
    PIPELINE = "pipeline"
    ISOLATED = "isolated"


@dataclass
class ExecutionResult:
    result: CommandResult
    session: Session
    start_time: float
    agent: str
    strategy: ExecutionStrategy = ExecutionStrategy.PIPELINE


class ExecutionCoordinator:
    """Top-level orchestration of one command invocation."""

    def __init__(
        self,
        pipeline_executor: PipelineExecutor,
        feature_flags: FeatureFlags,
        *,
        agent_resolver: Optional[DynamicAgentResolver] = None,
        agent_loader: Optional[AgentLoader] = None,
        analytics: Optional[AgentSelectionAnalytics] = None,
        prompt: Optional[ConsolePrompt] = None,
    ):
        self._pipeline_executor = pipeline_executor
        self._feature_flags = feature_flags
        self._agent_resolver = agent_resolver
        self._agent_loader = agent_loader
        self._analytics = analytics
        self._prompt = prompt or ConsolePrompt()

    # ------------------------------------------------------------------ #
    # Entry point                                                        #
    # ------------------------------------------------------------------ #
    def execute_command(
        self,
        name: str,
        resolved: ResolvedCommand,
        options: CommandExecutionOptions,
        session_manager: SessionContextManager,
    ) -> ExecutionResult:
        """Select the agent, build the execution context and run the pipeline.

        Args:
            name: Command name as invoked
            resolved: Command bound to its provider
            options: Invocation options
            session_manager: Context access for the active session

        Returns:
            ExecutionResult with the pipeline result, session and start time
        """
        start_time = time.time()
        command = resolved.command

        agent = self.select_agent(name, command, options, session_manager)
        session_manager.update_context("feature_flags", self._feature_flags.to_dict())
        logger.info(
            f"Executing '{name}' as agent '{agent}' via {resolved.provider_name}"
            f" ({resolved.resolution_path.value if resolved.resolution_path else 'unknown'})"
        )

        context = ExecutionContext(
            command_name=name,
            agent=agent,
            provider=resolved.provider,
            provider_name=resolved.provider_name,
            model=resolved.model,
            mode=resolved.mode,
            resolution_path=resolved.resolution_path,
            args=tuple(options.args),
            flags=deepcopy(options.flags),
            session_context=self.filter_session_context(command, session_manager),
            allowed_tools=command.allowed_tools,
            initial_stage_outputs=session_manager.get_stage_outputs(),
            session_id=session_manager.session_id,
        )

        strategy = ExecutionStrategy.ISOLATED if options.isolation else ExecutionStrategy.PIPELINE
        result = self._run(strategy, command, context)
        return ExecutionResult(
            result=result,
            session=session_manager.get_session(),
            start_time=start_time,
            agent=agent,
            strategy=strategy,
        )

    def _run(self, strategy: ExecutionStrategy, command: CommandDefinition, context: ExecutionContext) -> CommandResult:
        if strategy is ExecutionStrategy.PIPELINE:
            return self._pipeline_executor.execute(command, context)
        if strategy is ExecutionStrategy.ISOLATED:
            isolated = replace(context, session_context={}, initial_stage_outputs={})
            return self._pipeline_executor.execute(command, isolated)
        raise ValueError(f"Unknown execution strategy: {strategy}")

    # ------------------------------------------------------------------ #
    # Preconditions                                                      #
    # ------------------------------------------------------------------ #
    def validate_file_arguments(self, name: str, args: List[str]) -> None:
        """Check that file-path commands got an existing file.

        Only applies when the first argument looks like a path.

        Raises:
            ValidationError: If the file does not exist
        """
        label = Config.FILE_ARGUMENT_COMMANDS.get(name)
        if label is None or not args:
            return
        first = args[0]
        if not (first.endswith(PATH_LIKE_EXTENSIONS) or "/" in first):
            return
        if not Path(first).is_file():
            raise ValidationError(
                f"{label} not found: {first}",
                details={"command": name, "path": first},
                suggestions=[
                    f"Check the path, e.g. 'ls {Path(first).parent}'",
                    f"Run 'relay run {name} <existing-file>'",
                ],
            )

    # ------------------------------------------------------------------ #
    # Agent selection                                                    #
    # ------------------------------------------------------------------ #
    def use_dynamic_selection(self, name: str, command: CommandDefinition) -> bool:
        flags = self._feature_flags
        return (
            command.dynamic_agent_selection
            and self._agent_resolver is not None
            and (
                flags.dynamic_agent_selection
                or (flags.dynamic_agent_selection_implement_only and name == "implement")
            )
        )

    def select_agent(
        self,
        name: str,
        command: CommandDefinition,
        options: CommandExecutionOptions,
        session_manager: SessionContextManager,
    ) -> str:
        """Return the effective agent role for this invocation."""
        previous_agent = options.agent_override
        if previous_agent is not None:
            if self._feature_flags.agent_selection_analytics and self._analytics is not None:
                self._analytics.record_agent_selection(
                    session_manager.session_id,
                    name,
                    self.build_task_context(name, options, session_manager),
                    AgentSelection(previous_agent, 1.0, ("manual_override",)),
                    self._feature_flags,
                    manual_override=True,
                    previous_agent=previous_agent,
                )
            return previous_agent

        if self.use_dynamic_selection(name, command):
            return self._select_dynamic(name, command, options, session_manager)
        return command.agent

    def _select_dynamic(
        self,
        name: str,
        command: CommandDefinition,
        options: CommandExecutionOptions,
        session_manager: SessionContextManager,
    ) -> str:
        task_context = self.build_task_context(name, options, session_manager)
        try:
            selection = self._agent_resolver.resolve_agent(task_context)
        except Exception as e:
            fallback = command.fallback_agent or command.agent
            logger.warning(f"Dynamic agent selection failed, using fallback agent '{fallback}': {e}")
            selection = AgentSelection(fallback, 0.0, ("fallback_due_to_error", str(e)))
            self._record_selection(name, task_context, selection, session_manager)
            self._store_selection(session_manager, selection, fallback)
            return fallback

        agent = selection.selected_agent
        logger.info(f"Dynamic agent selection: {agent} (confidence {selection.confidence:.2f})")
        if selection.confidence < Config.LOW_CONFIDENCE_THRESHOLD and options.interactive:
            agent = self.confirm_agent(selection)

        self._record_selection(name, task_context, selection, session_manager)
        self._store_selection(session_manager, selection, agent)
        return agent

    def confirm_agent(self, selection: AgentSelection) -> str:
        """Ask the user to confirm or replace a low-confidence selection.

        Cancelling keeps the suggested agent.
        """
        suggested = selection.selected_agent
        choices = [(f"{suggested} (suggested, {selection.confidence:.0%} confidence)", suggested)]
        for alternative in selection.alternatives[:Config.MAX_CONFIRMATION_ALTERNATIVES]:
            choices.append((f"{alternative.agent} ({alternative.score:.0%})", alternative.agent))
        choices.append(("── Show all available agents ──", SHOW_ALL_AGENTS))

        try:
            picked = self._prompt.select(
                f"Low confidence agent selection for this task. Use '{suggested}'?", choices
            )
            if picked == SHOW_ALL_AGENTS:
                picked = self._select_from_all_agents(suggested)
        except (KeyboardInterrupt, EOFError):
            logger.info("Agent confirmation cancelled, keeping suggested agent")
            return suggested
        return picked

    def _select_from_all_agents(self, suggested: str) -> str:
        names = self._agent_loader.list_agent_names() if self._agent_loader else []
        if not names:
            return suggested
        if suggested not in names:
            names.insert(0, suggested)
        return self._prompt.select(
            "Select an agent", [(n, n) for n in names], default_index=names.index(suggested)
        )

    def _record_selection(
        self,
        name: str,
        task_context: TaskContext,
        selection: AgentSelection,
        session_manager: SessionContextManager,
    ) -> None:
        if self._feature_flags.agent_selection_analytics and self._analytics is not None:
            self._analytics.record_agent_selection(
                session_manager.session_id,
                name,
                task_context,
                selection,
                self._feature_flags,
                manual_override=False,
            )

    def _store_selection(
        self, session_manager: SessionContextManager, selection: AgentSelection, agent: str
    ) -> None:
        record = selection.to_dict()
        record["effective_agent"] = agent
        session_manager.update_context("dynamic_agent_selection", record)

    # ------------------------------------------------------------------ #
    # Context                                                            #
    # ------------------------------------------------------------------ #
    def build_task_context(
        self,
        name: str,
        options: CommandExecutionOptions,
        session_manager: SessionContextManager,
    ) -> TaskContext:
        args = list(options.args)

        description = None
        if name == "implement" and args:
            description = args[0]
        else:
            source = session_manager.get_task_source()
            if isinstance(source, (PlanSummary, TaskRecord)):
                description = source.description
        if not description:
            description = f"{name} {' '.join(args)}".strip()

        affected_files = session_manager.get_target_files()
        if not affected_files:
            affected_files = [arg for arg in args if arg.endswith(SOURCE_EXTENSIONS)]

        return TaskContext(
            description=description,
            affected_files=tuple(affected_files),
            dependencies=tuple(session_manager.get_dependencies()),
            complexity="medium",
            metadata={
                "args": args,
                "command_name": name,
                "flags": dict(options.flags),
                "session_id": session_manager.session_id,
            },
        )

    @staticmethod
    def get_context_references(command: CommandDefinition) -> Set[str]:
        references: Set[str] = set()
        for stage in command.pipeline:
            references |= extract_context_references(stage.inputs)
            references |= extract_context_references(stage.conditional)
        return references

    def filter_session_context(
        self, command: CommandDefinition, session_manager: SessionContextManager
    ) -> Dict[str, Any]:
        """Narrow the session context to the keys the pipeline references."""
        references = self.get_context_references(command)
        if not references:
            return session_manager.get_all_context()
        filtered = session_manager.get_filtered_context(references)
        logger.debug(f"Filtered session context to keys: {sorted(filtered)}")
        return filtered
