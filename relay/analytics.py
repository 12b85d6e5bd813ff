"""Agent selection analytics.

Recording is fire-and-forget: :meth:`AgentSelectionAnalytics.record_agent_selection`
returns ``None`` and logs (never raises) when an event cannot be stored, so
analytics can never mask or replace an execution error.
"""

from __future__ import annotations

import json
import time
from collections import Counter
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any, Dict, List, Optional

from .agents import AgentSelection, TaskContext
from .config import FeatureFlags
from .logger import logger

FALLBACK_CONFIDENCE = 0.75


@dataclass
class AgentSelectionEvent:
    session_id: str
    command_name: str
    selected_agent: str
    confidence: float
    reasons: List[str]
    fallback_used: bool
    manual_override: bool
    task_description: str
    feature_flags: Dict[str, bool]
    previous_agent: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


class AgentSelectionAnalytics:
    """Collects agent selection events in memory and, optionally, on disk."""

    def __init__(self, events_file: Optional[Path] = None):
        """Initialize the collector.

        Args:
            events_file: JSON-lines file events are appended to. Events are
                kept in memory only when None.
        """
        self._events_file = Path(events_file) if events_file else None
        self._events: List[AgentSelectionEvent] = []

    def record_agent_selection(
        self,
        session_id: str,
        command_name: str,
        task_context: TaskContext,
        selection: AgentSelection,
        feature_flags: FeatureFlags,
        manual_override: bool,
        previous_agent: Optional[str] = None,
    ) -> None:
        """Record one selection event. Failures are logged and swallowed."""
        try:
            event = AgentSelectionEvent(
                session_id=session_id,
                command_name=command_name,
                selected_agent=selection.selected_agent,
                confidence=selection.confidence,
                reasons=list(selection.reasons),
                fallback_used=selection.confidence < FALLBACK_CONFIDENCE,
                manual_override=manual_override,
                task_description=task_context.description,
                feature_flags=feature_flags.to_dict(),
                previous_agent=previous_agent,
                metadata={
                    "affected_files": len(task_context.affected_files),
                    "dependencies": len(task_context.dependencies),
                    "complexity": task_context.complexity,
                    "alternatives": [a.agent for a in selection.alternatives],
                },
            )
            self._events.append(event)
            if self._events_file is not None:
                self._append(event)
            logger.debug(
                f"Recorded agent selection: {event.selected_agent} "
                f"(confidence={event.confidence:.2f}, override={manual_override})"
            )
        except Exception as e:
            logger.warning(f"Failed to record agent selection analytics: {e}")

    def _append(self, event: AgentSelectionEvent) -> None:
        self._events_file.parent.mkdir(parents=True, exist_ok=True)
        with open(self._events_file, "a", encoding="utf-8") as f:
            f.write(json.dumps(asdict(event), default=str) + "\n")

    def get_events(self) -> List[AgentSelectionEvent]:
        return list(self._events)

    def get_metrics(self, hours_back: float = 24) -> Dict[str, Any]:
        """Summarise events recorded in the last ``hours_back`` hours."""
        cutoff = time.time() - hours_back * 3600
        events = [e for e in self._events if e.timestamp >= cutoff]
        total = len(events)

        reasons: Counter = Counter()
        for event in events:
            reasons.update(event.reasons)

        return {
            "total_selections": total,
            "average_confidence": sum(e.confidence for e in events) / total if total else 0.0,
            "fallback_rate": sum(e.fallback_used for e in events) / total if total else 0.0,
            "manual_override_rate": sum(e.manual_override for e in events) / total if total else 0.0,
            "agent_distribution": dict(Counter(e.selected_agent for e in events)),
            "command_distribution": dict(Counter(e.command_name for e in events)),
            "reason_distribution": dict(reasons),
            "time_range": {"start": cutoff, "end": time.time()},
        }
