"""Session state shared by the commands of one working session.

A session accumulates context across commands (``plan_summary``,
``target_files``, stage outputs of earlier commands, ...). Context values
that describe the task at hand are decoded once, here, into
:class:`PlanSummary` or :class:`TaskRecord`; everything else stays raw.
"""

from __future__ import annotations

import json
import re
import uuid
from copy import deepcopy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set, Union

from .config import Config
from .logger import logger

# $CONTEXT_key or $CONTEXT_key.nested.path
CONTEXT_REFERENCE_PATTERN = re.compile(r"\$CONTEXT_([a-zA-Z0-9_-]+(?:\.[a-zA-Z0-9_-]+)*)")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class PlanSummary:
    """A plan produced by an earlier planning command."""
    description: str
    dependencies: tuple = ()
    target_files: tuple = ()


@dataclass(frozen=True)
class TaskRecord:
    """A free-form task description stored in the session."""
    description: str


TaskSource = Union[PlanSummary, TaskRecord, None]


def _string_list(value: Any) -> tuple:
    if isinstance(value, (list, tuple)):
        return tuple(str(v) for v in value)
    return ()


def decode_plan_summary(value: Any) -> Optional[PlanSummary]:
    """Decode a ``plan_summary`` context value (None if it has no description)."""
    if isinstance(value, dict) and isinstance(value.get("description"), str):
        return PlanSummary(
            description=value["description"],
            dependencies=_string_list(value.get("dependencies")),
            target_files=_string_list(value.get("target_files")),
        )
    return None


def decode_task_record(value: Any) -> Optional[TaskRecord]:
    """Decode a ``task`` context value; plain strings are accepted too."""
    if isinstance(value, str) and value:
        return TaskRecord(description=value)
    if isinstance(value, dict) and isinstance(value.get("description"), str):
        return TaskRecord(description=value["description"])
    return None


@dataclass
class Session:
    """One working session."""
    session_id: str
    context: Dict[str, Any] = field(default_factory=dict)
    created_at: str = field(default_factory=_now)
    updated_at: str = field(default_factory=_now)
    commands: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "context": self.context,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "commands": self.commands,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Session":
        return cls(
            session_id=data["session_id"],
            context=dict(data.get("context") or {}),
            created_at=data.get("created_at", _now()),
            updated_at=data.get("updated_at", _now()),
            commands=list(data.get("commands") or []),
        )


def extract_context_references(value: Any) -> Set[str]:
    """Collect every ``$CONTEXT_*`` path referenced in strings, lists and dicts."""
    references: Set[str] = set()
    if isinstance(value, str):
        references.update(CONTEXT_REFERENCE_PATTERN.findall(value))
    elif isinstance(value, (list, tuple)):
        for item in value:
            references |= extract_context_references(item)
    elif isinstance(value, dict):
        for item in value.values():
            references |= extract_context_references(item)
    return references


class SessionContextManager:
    """Read/append access to a session's context."""

    def __init__(self, session: Session):
        self._session = session

    def get_session(self) -> Session:
        return self._session

    @property
    def session_id(self) -> str:
        return self._session.session_id

    def get_context(self, key: str, default: Any = None) -> Any:
        """Get a context value; dotted keys walk nested dicts."""
        value: Any = self._session.context
        for part in key.split("."):
            if not isinstance(value, dict) or part not in value:
                return default
            value = value[part]
        return value

    def get_all_context(self) -> Dict[str, Any]:
        return deepcopy(self._session.context)

    def get_context_keys(self) -> List[str]:
        return list(self._session.context.keys())

    def get_filtered_context(self, keys: Iterable[str]) -> Dict[str, Any]:
        """Get a copy of the context restricted to the root of each key.

        ``plan_summary.description`` selects the whole ``plan_summary`` entry.
        Keys missing from the session are ignored.
        """
        roots = {key.split(".", 1)[0] for key in keys}
        return {
            key: deepcopy(value)
            for key, value in self._session.context.items()
            if key in roots
        }

    def update_context(self, key: str, value: Any) -> None:
        self._session.context[key] = value
        self._session.updated_at = _now()

    def get_stage_outputs(self) -> Dict[str, Dict[str, Any]]:
        """Stage outputs recorded by earlier commands in this session."""
        outputs = self._session.context.get(Config.STAGE_OUTPUTS_KEY)
        return deepcopy(outputs) if isinstance(outputs, dict) else {}

    def record_stage_outputs(self, outputs: Dict[str, Dict[str, Any]]) -> None:
        merged = self.get_stage_outputs()
        merged.update(deepcopy(outputs))
        self.update_context(Config.STAGE_OUTPUTS_KEY, merged)

    def record_command(self, command_name: str, success: bool, **metadata: Any) -> None:
        self._session.commands.append({
            "command": command_name,
            "success": success,
            "timestamp": _now(),
            **metadata,
        })
        self._session.updated_at = _now()

    # ------------------------------------------------------------------ #
    # Typed views                                                        #
    # ------------------------------------------------------------------ #
    def get_task_source(self) -> TaskSource:
        """Decode the session's description of the current task.

        ``plan_summary`` wins over ``task``; returns None when neither decodes.
        """
        plan = decode_plan_summary(self.get_context("plan_summary"))
        if plan is not None:
            return plan
        return decode_task_record(self.get_context("task"))

    def get_target_files(self) -> List[str]:
        for key in ("target_files", "implementation_scope.target_files"):
            files = _string_list(self.get_context(key))
            if files:
                return list(files)
        return []

    def get_dependencies(self) -> List[str]:
        dependencies = _string_list(self.get_context("dependencies"))
        if dependencies:
            return list(dependencies)
        plan = decode_plan_summary(self.get_context("plan_summary"))
        return list(plan.dependencies) if plan else []


class SessionStore:
    """Persists sessions as one JSON file per session."""

    def __init__(self, sessions_dir: Optional[Path] = None):
        self._sessions_dir = Path(sessions_dir) if sessions_dir else Config.get_sessions_dir()

    def _path(self, session_id: str) -> Path:
        return self._sessions_dir / f"{session_id}.json"

    def create(self, session_id: Optional[str] = None) -> Session:
        return Session(session_id=session_id or uuid.uuid4().hex)

    def load(self, session_id: str) -> Optional[Session]:
        path = self._path(session_id)
        if not path.exists():
            return None
        with open(path, "r", encoding="utf-8") as f:
            return Session.from_dict(json.load(f))

    def get_or_create(self, session_id: Optional[str] = None) -> Session:
        if session_id:
            session = self.load(session_id)
            if session is not None:
                return session
        return self.create(session_id)

    def save(self, session: Session) -> None:
        self._sessions_dir.mkdir(parents=True, exist_ok=True)
        with open(self._path(session.session_id), "w", encoding="utf-8") as f:
            json.dump(session.to_dict(), f, indent=2, default=str)
        logger.debug(f"Saved session {session.session_id}")

    def list_sessions(self) -> List[str]:
        if not self._sessions_dir.exists():
            return []
        return sorted(p.stem for p in self._sessions_dir.glob("*.json"))
