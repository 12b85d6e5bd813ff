"""Agent roles and dynamic agent selection.

An agent role is declared in YAML under ``agents/``::

    name: platform-engineer
    description: Infrastructure, CI/CD and deployment
    keywords: [terraform, kubernetes, docker]
    file_patterns: [.tf, dockerfile, .sh]
    file_weight: 1.0

:class:`KeywordAgentResolver` scores every role against a
:class:`TaskContext`: keyword hits in the description contribute at most
0.6, and file-name matches contribute at most 0.4.
"""

from __future__ import annotations

from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

import yaml

from .config import Config
from .logger import logger

HIGH_CONFIDENCE_THRESHOLD = 0.75
MIN_CONFIDENCE_THRESHOLD = 0.3
CLEAR_WINNER_GAP = 0.2
FALLBACK_CONFIDENCE_CAP = 0.4
PURE_FALLBACK_CONFIDENCE = 0.1


@dataclass(frozen=True)
class AgentAlternative:
    agent: str
    score: float
    reasons: tuple = ()


@dataclass(frozen=True)
class AgentSelection:
    """Outcome of one selection event; confidence belongs to the event."""
    selected_agent: str
    confidence: float
    reasons: tuple = ()
    alternatives: tuple = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "selected_agent": self.selected_agent,
            "confidence": self.confidence,
            "reasons": list(self.reasons),
            "alternatives": [
                {"agent": a.agent, "score": a.score, "reasons": list(a.reasons)}
                for a in self.alternatives
            ],
        }


@dataclass(frozen=True)
class TaskContext:
    """Read-only projection of a command invocation used for agent selection."""
    description: str
    affected_files: tuple = ()
    dependencies: tuple = ()
    complexity: str = "medium"
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["affected_files"] = list(self.affected_files)
        data["dependencies"] = list(self.dependencies)
        return data


@dataclass(frozen=True)
class AgentProfile:
    """An agent role and the signals that point to it."""
    name: str
    description: str = ""
    keywords: tuple = ()
    file_patterns: tuple = ()
    file_weight: float = 0.5


DEFAULT_AGENTS = (
    AgentProfile(
        "lead",
        "Architecture, planning and technical direction",
        ("architecture", "architect", "roadmap", "strategy", "trade-off", "technical debt",
         "system design", "domain model", "ddd", "milestone"),
        ("architecture", "/adr/", "rfc"),
        0.9,
    ),
    AgentProfile(
        "platform-engineer",
        "Infrastructure, CI/CD, containers and deployment",
        ("terraform", "kubernetes", "docker", "aws", "gcp", "azure", "infrastructure", "deployment",
         "ci/cd", "container", "k8s", "helm", "monitoring", "prometheus", "grafana"),
        (".tf", ".yaml", ".yml", "dockerfile", ".sh", ".bash"),
        1.0,
    ),
    AgentProfile(
        "qa",
        "Test strategy, test suites and regression coverage",
        ("testing", "unit test", "integration test", "e2e", "coverage", "regression", "playwright",
         "vitest", "jest", "flaky", "test plan", "assertion"),
        (".test.", ".spec.", "__tests__", "e2e", "playwright"),
        0.9,
    ),
    AgentProfile(
        "secops-engineer",
        "Security, authentication and compliance",
        ("security", "auth", "authentication", "authorization", "oauth", "jwt", "encryption", "ssl",
         "tls", "vulnerability", "threat", "compliance", "owasp", "gdpr", "audit"),
        ("security", "auth", "jwt", "oauth", "encryption", "ssl", "tls"),
        0.8,
    ),
    AgentProfile(
        "software-engineer-typescript",
        "General TypeScript engineering, tooling and build configuration",
        ("typescript", "type", "interface", "generic", "utility", "decorator", "module", "compiler",
         "config", "build", "bundle", "lint", "eslint", "prettier"),
        (".ts", ".js", "config", "build", "package.json", "tsconfig.json"),
        0.5,
    ),
    AgentProfile(
        "software-engineer-typescript-backend",
        "APIs, servers, databases and backend services",
        ("api", "backend", "server", "database", "sql", "postgresql", "redis", "rest", "graphql",
         "express", "middleware", "routes", "controllers", "orm", "migration"),
        ("api", "server", "backend", "database", "sql"),
        0.7,
    ),
    AgentProfile(
        "software-engineer-typescript-frontend",
        "Framework-agnostic frontend work, HTML, CSS and accessibility",
        ("frontend", "ui", "html", "css", "javascript", "dom", "responsive", "accessibility", "aria",
         "wcag", "svelte", "vue", "angular"),
        (".html", ".css", "frontend", "ui"),
        0.6,
    ),
    AgentProfile(
        "software-engineer-typescript-frontend-react",
        "React components, hooks and client state",
        ("react", "next.js", "component", "hook", "state", "props", "jsx", "tsx", "redux", "zustand",
         "router", "form"),
        (".tsx", ".jsx", "react", "component", "hook"),
        0.9,
    ),
    AgentProfile(
        "ui-ux-designer",
        "Interaction design, mockups and design systems",
        ("design", "mockup", "wireframe", "prototype", "user experience", "usability", "figma",
         "design system", "typography"),
        (".fig", ".sketch", ".xd", "design", "mockup", "wireframe"),
        0.8,
    ),
)


class DynamicAgentResolver(Protocol):
    """Anything that can pick an agent role for a task."""

    def resolve_agent(self, task_context: TaskContext) -> AgentSelection:
        ...


class AgentLoader:
    """Loads agent role definitions from the agents search path."""

    def __init__(self, project_dir: Optional[Path] = None, agents_dirs: Optional[List[Path]] = None):
        self._project_dir = project_dir
        self._agents_dirs = [Path(d) for d in agents_dirs] if agents_dirs else None

    @property
    def agents_dirs(self) -> List[Path]:
        if self._agents_dirs is not None:
            return self._agents_dirs
        return Config.get_agents_dirs(self._project_dir)

    def list_agents(self) -> List[AgentProfile]:
        """Load every agent profile; earlier directories shadow later ones.

        Falls back to ``DEFAULT_AGENTS`` when no directory yields a profile.
        """
        profiles: Dict[str, AgentProfile] = {}
        for directory in self.agents_dirs:
            if not directory.exists():
                continue
            for path in sorted(list(directory.glob('*.yaml')) + list(directory.glob('*.yml'))):
                profile = self._load_profile(path)
                if profile is not None and profile.name not in profiles:
                    profiles[profile.name] = profile
        if not profiles:
            logger.debug("No agent definitions found, using built-in agent roles")
            return sorted(DEFAULT_AGENTS, key=lambda p: p.name)
        return sorted(profiles.values(), key=lambda p: p.name)

    def list_agent_names(self) -> List[str]:
        return [profile.name for profile in self.list_agents()]

    def _load_profile(self, path: Path) -> Optional[AgentProfile]:
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Skipping unreadable agent file {path}: {e}")
            return None
        if not isinstance(data, dict):
            logger.warning(f"Skipping agent file {path}: expected a mapping")
            return None
        return AgentProfile(
            name=str(data.get('name', path.stem)),
            description=str(data.get('description', '')),
            keywords=tuple(str(k).lower() for k in data.get('keywords') or ()),
            file_patterns=tuple(str(p).lower() for p in data.get('file_patterns') or ()),
            file_weight=float(data.get('file_weight', 0.5)),
        )


def determine_fallback_agent(affected_files: List[str]) -> str:
    """Pick a safe default role from file names alone."""
    files = [f.lower() for f in affected_files]
    if any(
        "infrastructure" in f or "terraform" in f or f.endswith(".tf") or "docker" in f
        for f in files
    ):
        return "platform-engineer"
    if any(
        "frontend" in f or "component" in f or f.endswith((".tsx", ".jsx"))
        for f in files
    ):
        return "software-engineer-typescript-frontend-react"
    if any(
        "backend" in f or "api" in f or "server" in f or "database" in f
        or (f.endswith(".ts") and not f.endswith(".tsx"))
        for f in files
    ):
        return "software-engineer-typescript-backend"
    return Config.get_default_agent()


class KeywordAgentResolver:
    """Default dynamic resolver based on keyword and file-pattern signals."""

    def __init__(self, agent_loader: AgentLoader):
        self._agent_loader = agent_loader

    def score_agents(self, task_context: TaskContext) -> List[AgentAlternative]:
        """Score every known agent, best first; agents with no signal are omitted."""
        text = task_context.description.lower()
        files = [f.lower() for f in task_context.affected_files]

        scores = []
        for profile in self._agent_loader.list_agents():
            reasons = []
            hits = [k for k in profile.keywords if k in text]
            score = min(len(hits) / 5, 1.0) * 0.6
            if hits:
                reasons.append(f"Found {len(hits)} domain keywords: {', '.join(hits[:5])}")

            file_score = 0.0
            for path in files:
                if any(pattern in path for pattern in profile.file_patterns):
                    file_score = min(file_score + profile.file_weight, 1.0)
                    reasons.append(f"File {path} matches {profile.name} patterns")
            score += file_score * 0.4

            if score > 0:
                scores.append(AgentAlternative(profile.name, round(min(score, 1.0), 4), tuple(reasons)))

        scores.sort(key=lambda s: (-s.score, s.agent))
        return scores

    def resolve_agent(self, task_context: TaskContext) -> AgentSelection:
        scores = self.score_agents(task_context)
        if not scores:
            logger.warning("No agent scores available, using fallback")
            return self._fallback_selection(task_context)

        top = scores[0]
        alternatives = tuple(scores[1:1 + Config.MAX_CONFIRMATION_ALTERNATIVES])

        if top.score >= HIGH_CONFIDENCE_THRESHOLD:
            return AgentSelection(top.agent, top.score, top.reasons, alternatives)

        if top.score >= MIN_CONFIDENCE_THRESHOLD:
            second = scores[1].score if len(scores) > 1 else 0.0
            if top.score - second >= CLEAR_WINNER_GAP:
                return AgentSelection(top.agent, top.score, top.reasons, alternatives)
            logger.debug(f"Close agent scoring contest: {top.score} vs {second}")

        logger.debug(f"Low confidence in agent selection ({top.score}), using fallback")
        return AgentSelection(
            selected_agent=top.agent,
            confidence=min(top.score, FALLBACK_CONFIDENCE_CAP),
            reasons=top.reasons + ("Low confidence - using as fallback selection",),
            alternatives=alternatives,
        )

    def _fallback_selection(self, task_context: TaskContext) -> AgentSelection:
        agent = determine_fallback_agent(list(task_context.affected_files))
        return AgentSelection(
            selected_agent=agent,
            confidence=PURE_FALLBACK_CONFIDENCE,
            reasons=(
                "Automatic agent selection found no signals",
                f"Using fallback agent: {agent}",
                "Pass --agent for an explicit choice",
            ),
        )
