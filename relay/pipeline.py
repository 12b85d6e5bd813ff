"""Pipeline engine - runs the stages of a command in a DAG.

This module provides:
- Variable resolution for ``$ARG_*``, ``$CONTEXT_*``, ``$ENV_*`` and
  ``$STAGE_*`` placeholders
- Building the stage dependency graph from declaration order, explicit
  ``depends_on`` lists and ``$STAGE_`` references
- Executing stages generation by generation, running ``parallel`` stages
  of one generation concurrently

Consecutive stages flagged ``parallel`` form one group; every other stage
waits for the group before it. A stage whose ``conditional`` does not
resolve to ``true`` is skipped. A guided completion stops the pipeline:
its prompt has to be run by the host before later stages make sense.
"""

from __future__ import annotations

import json
import os
import re
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

import networkx as nx

from .commands import CommandDefinition, PipelineStage
from .errors import PipelineError
from .fallback import ResolutionPath
from .logger import logger
from .providers import BaseProvider

VARIABLE_PATTERN = re.compile(r"\$([A-Z]+)_([a-zA-Z0-9_-]+(?:\.[a-zA-Z0-9_-]+)*)")
STAGE_REFERENCE_PATTERN = re.compile(r"\$STAGE_([a-zA-Z0-9_-]+)")
NOT_SPECIFIED = "Not specified"


@dataclass(frozen=True)
class ExecutionContext:
    """Everything the pipeline needs, as a snapshot owned by the pipeline."""
    command_name: str
    agent: str
    provider: BaseProvider
    provider_name: str
    model: Optional[str] = None
    mode: Optional[str] = None
    resolution_path: Optional[ResolutionPath] = None
    args: tuple = ()
    flags: Dict[str, Any] = field(default_factory=dict)
    session_context: Dict[str, Any] = field(default_factory=dict)
    allowed_tools: tuple = ()
    initial_stage_outputs: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    session_id: Optional[str] = None


@dataclass
class StageOutput:
    stage: str
    outputs: Dict[str, Any] = field(default_factory=dict)
    skipped: bool = False
    guided: bool = False
    error: Optional[str] = None
    duration: float = 0.0


@dataclass
class CommandResult:
    """Outcome of a pipeline run."""
    command_name: str
    success: bool
    outputs: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    stages: List[StageOutput] = field(default_factory=list)
    guided_prompt: Optional[str] = None
    duration: float = 0.0

    @property
    def guided(self) -> bool:
        return self.guided_prompt is not None


class VariableResolver:
    """Resolves ``$SCOPE_path`` placeholders in strings, lists and dicts."""

    def __init__(
        self,
        args: Dict[str, Any],
        context: Dict[str, Any],
        stages: Dict[str, Dict[str, Any]],
    ):
        self._args = args
        self._context = context
        self._stages = stages

    def resolve(self, value: Any) -> Any:
        if isinstance(value, str):
            return VARIABLE_PATTERN.sub(self._replace, value)
        if isinstance(value, list):
            return [self.resolve(item) for item in value]
        if isinstance(value, dict):
            return {key: self.resolve(item) for key, item in value.items()}
        return value

    def _replace(self, match: re.Match) -> str:
        scope, path = match.group(1), match.group(2)
        if scope == "ARG":
            return _to_text(self._walk(self._args, path, default=NOT_SPECIFIED))
        if scope == "CONTEXT":
            return _to_text(self._walk(self._context, path, default=NOT_SPECIFIED))
        if scope == "ENV":
            return os.environ.get(path, "")
        if scope == "STAGE":
            stage_name, _, rest = path.partition(".")
            outputs = self._stages.get(stage_name)
            if outputs is None:
                # Skipped or never-run stages resolve to null
                return _to_text(None)
            if not rest:
                return _to_text(outputs)
            value = self._walk(outputs, rest, default=None)
            if value is None:
                raise PipelineError(
                    f"Stage output not found: {path}",
                    details={"available": sorted(outputs)},
                    suggestions=["Re-run the command; the stage response may have been incomplete."],
                )
            return _to_text(value)
        return match.group(0)

    @staticmethod
    def _walk(data: Any, path: str, default: Any) -> Any:
        for part in path.split("."):
            if not isinstance(data, dict) or part not in data:
                return default
            data = data[part]
        return data


def _to_text(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, str):
        return value
    return json.dumps(value, default=str)


def _parse_outputs(stage: PipelineStage, content: str) -> Dict[str, Any]:
    """Map a completion onto the stage's declared outputs."""
    try:
        parsed = json.loads(content)
    except (TypeError, ValueError):
        parsed = None
    if isinstance(parsed, dict):
        return parsed
    name = stage.outputs[0] if stage.outputs else "result"
    return {name: content}


class PipelineExecutor:
    """Executes command pipelines against a resolved provider."""

    def __init__(self, max_workers: int = 4):
        self.max_workers = max_workers

    def build_graph(self, stages: List[PipelineStage]) -> nx.DiGraph:
        """Build the stage DAG.

        Raises:
            PipelineError: On duplicate stages, unknown dependencies or cycles
        """
        graph = nx.DiGraph()
        names = [stage.stage for stage in stages]
        if len(set(names)) != len(names):
            raise PipelineError(
                "Pipeline contains duplicate stage names",
                suggestions=["Give every stage a unique 'stage' name"],
            )
        graph.add_nodes_from(names)

        previous_group: List[str] = []
        current_group: List[str] = []
        current_parallel = False
        for stage in stages:
            if not (stage.parallel and current_parallel):
                previous_group, current_group = current_group or previous_group, []
            current_parallel = stage.parallel
            current_group.append(stage.stage)
            for dep in previous_group:
                graph.add_edge(dep, stage.stage)

        for stage in stages:
            for dep in stage.depends_on:
                if dep not in graph:
                    raise PipelineError(
                        f"Stage '{stage.stage}' depends on unknown stage '{dep}'",
                        suggestions=[f"Declare a stage named '{dep}' or fix depends_on"],
                    )
                graph.add_edge(dep, stage.stage)
            for ref in self._extract_stage_references(stage):
                # References to stages of earlier commands are resolved from the session
                if ref in graph and ref != stage.stage:
                    graph.add_edge(ref, stage.stage)

        if not nx.is_directed_acyclic_graph(graph):
            raise PipelineError(
                "Pipeline contains dependency cycles",
                suggestions=["Remove the circular $STAGE_ references or depends_on entries"],
            )
        logger.debug(f"Stage graph built with {len(graph.nodes)} nodes and {len(graph.edges)} edges")
        return graph

    @staticmethod
    def _extract_stage_references(stage: PipelineStage) -> Set[str]:
        text = json.dumps([stage.prompt, stage.inputs, stage.conditional], default=str)
        return set(STAGE_REFERENCE_PATTERN.findall(text))

    def execute(self, command: CommandDefinition, context: ExecutionContext) -> CommandResult:
        """Run every stage of ``command`` and collect their outputs."""
        started = time.monotonic()
        logger.info(f"Starting pipeline for command: {command.name}")

        stages = {stage.stage: stage for stage in command.pipeline}
        graph = self.build_graph(list(command.pipeline))
        order = {stage.stage: index for index, stage in enumerate(command.pipeline)}

        stage_outputs: Dict[str, Dict[str, Any]] = dict(context.initial_stage_outputs)
        args = {str(i): arg for i, arg in enumerate(context.args, start=1)}
        args.update({k.replace("-", "_"): v for k, v in context.flags.items() if v is not None})

        result = CommandResult(command_name=command.name, success=True)

        for generation in nx.topological_generations(graph):
            batch = sorted(generation, key=order.get)
            resolver = VariableResolver(args, context.session_context, stage_outputs)
            runnable = []
            for name in batch:
                stage = stages[name]
                if stage.conditional and not self._evaluate_conditional(resolver.resolve(stage.conditional)):
                    logger.info(f"Skipping stage: {name} (conditional: {stage.conditional})")
                    result.stages.append(StageOutput(stage=name, skipped=True))
                    continue
                runnable.append(stage)

            if len(runnable) > 1 and all(stage.parallel for stage in runnable):
                with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                    outcomes = list(pool.map(lambda s: self._execute_stage(s, context, resolver), runnable))
            else:
                outcomes = [self._execute_stage(stage, context, resolver) for stage in runnable]

            for stage, outcome in zip(runnable, outcomes):
                result.stages.append(outcome)
                if outcome.error is not None:
                    if stage.required:
                        raise PipelineError(
                            f"Stage '{stage.stage}' failed: {outcome.error}",
                            details={"stage": stage.stage, "completed": list(result.outputs)},
                            suggestions=["Re-run with --verbose to see the provider error"],
                        )
                    logger.warning(f"Optional stage '{stage.stage}' failed: {outcome.error}")
                    continue
                stage_outputs[stage.stage] = outcome.outputs
                result.outputs[stage.stage] = outcome.outputs
                if outcome.guided and result.guided_prompt is None:
                    result.guided_prompt = outcome.outputs.get("guided_prompt")

            if result.guided:
                logger.info("Pipeline stopped: guided completion must be run by the host")
                break

        result.duration = time.monotonic() - started
        logger.info(f"Pipeline completed with {len(result.outputs)} stage outputs")
        return result

    @staticmethod
    def _evaluate_conditional(value: Any) -> bool:
        if isinstance(value, str):
            return value.strip().lower() == "true"
        return bool(value)

    def _execute_stage(
        self,
        stage: PipelineStage,
        context: ExecutionContext,
        resolver: VariableResolver,
    ) -> StageOutput:
        logger.info(f"Executing stage: {stage.stage}")
        started = time.monotonic()
        try:
            prompt = resolver.resolve(stage.prompt)
            inputs = resolver.resolve(stage.inputs)
            messages = [
                {"role": "system", "content": self._system_prompt(context)},
                {"role": "user", "content": self._user_prompt(prompt, inputs)},
            ]
            completion = context.provider.complete(messages, model=context.model, mode=context.mode)
        except Exception as e:
            return StageOutput(stage=stage.stage, error=str(e), duration=time.monotonic() - started)

        if completion.is_guided:
            outputs = {"guided_prompt": completion.content, "guided": completion.guided}
        else:
            outputs = _parse_outputs(stage, completion.content)
        return StageOutput(
            stage=stage.stage,
            outputs=outputs,
            guided=completion.is_guided,
            duration=time.monotonic() - started,
        )

    @staticmethod
    def _system_prompt(context: ExecutionContext) -> str:
        lines = [f"You are acting as the '{context.agent}' agent for the '{context.command_name}' command."]
        if context.allowed_tools:
            lines.append(f"Allowed tools: {', '.join(context.allowed_tools)}")
        return "\n".join(lines)

    @staticmethod
    def _user_prompt(prompt: str, inputs: Dict[str, Any]) -> str:
        if not inputs:
            return prompt
        rendered = "\n".join(f"- {key}: {_to_text(value)}" for key, value in inputs.items())
        return f"{prompt}\n\nInputs:\n{rendered}"
