"""Command definitions and the YAML loader that finds them.

A command is a named multi-stage workflow::

    name: implement
    description: Implement an approved plan
    agent: software-engineer-typescript
    fallback_agent: software-engineer-typescript
    dynamic_agent_selection: true
    model: claude-sonnet-4.5
    allowed_tools: [read_file, write_file]
    pipeline:
      - stage: context
        prompt: "Summarise the plan in $ARG_1"
        inputs:
          plan: $CONTEXT_plan_summary
        outputs: [summary]
      - stage: code
        prompt: "Implement: $STAGE_context.summary"
        conditional: $CONTEXT_ready

The pipeline may also be nested under ``prompts.pipeline``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from difflib import get_close_matches
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml

from .config import Config
from .errors import CommandNotFoundError, PipelineError
from .logger import logger


@dataclass(frozen=True)
class PipelineStage:
    """One stage of a command pipeline."""
    stage: str
    prompt: str = ""
    inputs: Dict[str, Any] = field(default_factory=dict)
    conditional: Optional[str] = None
    outputs: Tuple[str, ...] = ()
    required: bool = True
    parallel: bool = False
    depends_on: Tuple[str, ...] = ()


@dataclass(frozen=True)
class CommandDefinition:
    """Static description of a command, read-only for the rest of relay."""
    name: str
    description: str = ""
    agent: str = ""
    model: Optional[str] = None
    mode: Optional[str] = None
    provider: Optional[str] = None
    allowed_tools: Tuple[str, ...] = ()
    pipeline: Tuple[PipelineStage, ...] = ()
    dynamic_agent_selection: bool = False
    fallback_agent: Optional[str] = None


class CommandLoader:
    """Finds and parses command YAML files."""

    def __init__(self, project_dir: Optional[Path] = None, commands_dirs: Optional[List[Path]] = None):
        """Initialize CommandLoader.

        Args:
            project_dir: Project directory holding ``.relay/commands``
            commands_dirs: Explicit search path, overriding the default one
        """
        self._project_dir = project_dir
        self._commands_dirs = [Path(d) for d in commands_dirs] if commands_dirs else None

    @property
    def commands_dirs(self) -> List[Path]:
        if self._commands_dirs is not None:
            return self._commands_dirs
        return Config.get_commands_dirs(self._project_dir)

    def find_command(self, name: str) -> Optional[Path]:
        for directory in self.commands_dirs:
            for ext in ('.yaml', '.yml'):
                path = directory / f"{name}{ext}"
                if path.exists():
                    return path
        return None

    def list_commands(self) -> List[str]:
        """List every command name visible on the search path."""
        names = set()
        for directory in self.commands_dirs:
            if not directory.exists():
                continue
            for path in list(directory.glob('*.yaml')) + list(directory.glob('*.yml')):
                names.add(path.stem)
        return sorted(names)

    def load(self, name: str) -> CommandDefinition:
        """Load a command definition by name.

        Raises:
            CommandNotFoundError: If no file defines the command
            PipelineError: If the file is not a valid command definition
        """
        path = self.find_command(name)
        if path is None:
            available = self.list_commands()
            raise CommandNotFoundError(
                name,
                available=available,
                similar=get_close_matches(name, available, n=3, cutoff=0.6),
            )
        return load_command(path, name)


def load_command(path: Union[str, Path], name: Optional[str] = None) -> CommandDefinition:
    """Load and validate a command YAML file."""
    path = Path(path)
    logger.debug(f"Loading command from: {path}")
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise PipelineError(
            f"Invalid YAML in command file {path}: {e}",
            suggestions=[f"Fix the YAML syntax in {path}"],
        )
    if not isinstance(data, dict):
        raise PipelineError(
            f"Command file {path} must contain a mapping",
            suggestions=[f"See the 'implement' command shipped in {Config.PACKAGE_DIR / 'commands'}"],
        )
    return _parse_command_data(data, name or path.stem)


def _parse_command_data(data: Dict[str, Any], name: str) -> CommandDefinition:
    """Parse command data dictionary into CommandDefinition."""
    pipeline_data = data.get('pipeline')
    if pipeline_data is None:
        pipeline_data = (data.get('prompts') or {}).get('pipeline', [])

    stages = []
    for index, stage_data in enumerate(pipeline_data or []):
        if not isinstance(stage_data, dict) or not stage_data.get('stage'):
            raise PipelineError(
                f"Stage {index} of command '{name}' must be a mapping with a 'stage' key",
                suggestions=["Give every pipeline entry a unique 'stage' name"],
            )
        stages.append(PipelineStage(
            stage=str(stage_data['stage']),
            prompt=str(stage_data.get('prompt', '')),
            inputs=dict(stage_data.get('inputs') or {}),
            conditional=stage_data.get('conditional'),
            outputs=tuple(stage_data.get('outputs') or ()),
            required=bool(stage_data.get('required', True)),
            parallel=bool(stage_data.get('parallel', False)),
            depends_on=tuple(stage_data.get('depends_on') or ()),
        ))

    allowed_tools = data.get('allowed_tools', data.get('allowed-tools')) or ()
    return CommandDefinition(
        name=str(data.get('name', name)),
        description=str(data.get('description', '')),
        agent=str(data.get('agent') or Config.get_default_agent()),
        model=data.get('model'),
        mode=data.get('mode'),
        provider=data.get('provider'),
        allowed_tools=tuple(allowed_tools),
        pipeline=tuple(stages),
        dynamic_agent_selection=bool(data.get('dynamic_agent_selection', False)),
        fallback_agent=data.get('fallback_agent'),
    )


@dataclass
class CommandExecutionOptions:
    """Per-invocation options for running a command."""
    args: List[str] = field(default_factory=list)
    flags: Dict[str, Any] = field(default_factory=dict)
    interactive: bool = True
    isolation: bool = False
    session_id: Optional[str] = None

    @property
    def agent_override(self) -> Optional[str]:
        """The ``--agent`` value, when the caller passed one."""
        agent = self.flags.get("agent")
        return str(agent) if agent else None
