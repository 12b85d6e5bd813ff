"""
Shared pytest fixtures and configuration for relay tests.
"""

import pytest
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional
import sys

# Add the project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from relay.providers import BaseProvider, CompletionResult  # noqa: E402

API_KEY_VARS = [
    "ANTHROPIC_API_KEY",
    "OPENAI_API_KEY",
    "GOOGLE_API_KEY",
    "XAI_API_KEY",
    "MOONSHOT_API_KEY",
]

RELAY_VARS = [
    "RELAY_MCP_ENABLED",
    "RELAY_LOG_FILE",
    "RELAY_SESSIONS_DIR",
    "RELAY_ANALYTICS_FILE",
    "RELAY_DEFAULT_MODEL",
    "RELAY_DEFAULT_AGENT",
    "RELAY_FEATURE_DYNAMIC_AGENT_SELECTION",
    "RELAY_FEATURE_DYNAMIC_AGENT_SELECTION_IMPLEMENT_ONLY",
    "RELAY_FEATURE_AGENT_SELECTION_ANALYTICS",
]


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture(autouse=True)
def setup_test_env(monkeypatch, tmp_path):
    """Isolate every test from the developer's keys, config and cwd."""
    for var in API_KEY_VARS + RELAY_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("RELAY_DISABLE_DOTENV", "1")
    monkeypatch.setenv("RELAY_CONFIG_DIR", str(tmp_path / "user-config"))
    workdir = tmp_path / "workdir"
    workdir.mkdir()
    monkeypatch.chdir(workdir)


@pytest.fixture
def host_env(monkeypatch):
    """Simulate running inside the zero-config host."""
    monkeypatch.setenv("RELAY_MCP_ENABLED", "true")


class FakeProvider(BaseProvider):
    """Provider returning canned responses and recording every call."""

    def __init__(self, name: str = "fake", responses: Optional[List[str]] = None,
                 models: Optional[List[str]] = None, error: Optional[Exception] = None):
        super().__init__({})
        self.name = name
        self.responses = list(responses or [])
        self.models = models
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    def is_configured(self) -> bool:
        return True

    def validate_model(self, model: str) -> bool:
        if self.models is None:
            return True
        return model in self.models

    def complete(self, messages, *, model=None, mode=None, max_tokens=None, temperature=None):
        self.calls.append({"messages": messages, "model": model, "mode": mode})
        if self.error is not None:
            raise self.error
        content = self.responses.pop(0) if self.responses else "ok"
        return CompletionResult(content=content, provider=self.name, model=model)


class FakeSampling:
    """Native sampling capability answering with a fixed text."""

    def __init__(self, content: str = "sampled", error: Optional[Exception] = None):
        self.content = content
        self.error = error
        self.requests: List[Dict[str, Any]] = []

    def request_sampling(self, request: Dict[str, Any]) -> Dict[str, Any]:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return {"content": self.content, "stop_reason": "endTurn"}


class ScriptedPrompt:
    """Console prompt stand-in that answers from a script."""

    def __init__(self, answers: Optional[List[Any]] = None, interactive: bool = True,
                 raises: Optional[BaseException] = None):
        self.answers = list(answers or [])
        self.interactive = interactive
        self.raises = raises
        self.questions: List[Dict[str, Any]] = []

    def is_interactive(self) -> bool:
        return self.interactive

    def confirm(self, message: str, default: bool = False) -> bool:
        self.questions.append({"message": message})
        return self.answers.pop(0) if self.answers else default

    def select(self, message, choices, default_index=0):
        self.questions.append({"message": message, "choices": list(choices)})
        if self.raises is not None:
            raise self.raises
        if self.answers:
            return self.answers.pop(0)
        return choices[default_index][1]


@pytest.fixture
def fake_provider():
    return FakeProvider()


@pytest.fixture
def fake_sampling():
    return FakeSampling()


@pytest.fixture
def project_dir(tmp_path):
    """Project directory with a .relay/ layout."""
    root = tmp_path / "project"
    (root / ".relay" / "commands").mkdir(parents=True)
    (root / ".relay" / "agents").mkdir(parents=True)
    return root


@pytest.fixture
def write_project_config(project_dir):
    """Write .relay/config.yaml in the project directory."""
    def _write(text: str) -> Path:
        path = project_dir / ".relay" / "config.yaml"
        path.write_text(text)
        return path
    return _write


@pytest.fixture
def plan_file(tmp_path):
    path = tmp_path / "plan.md"
    path.write_text("# Plan\n\n1. Add an API endpoint for orders\n")
    return path
