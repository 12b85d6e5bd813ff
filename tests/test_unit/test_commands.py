"""
Unit tests for command loading and command/provider resolution.
"""

import pytest
from unittest.mock import Mock

from conftest import FakeProvider, FakeSampling
from relay.command_resolver import CommandResolver
from relay.commands import CommandExecutionOptions, CommandLoader, load_command
from relay.config import ConfigLoader
from relay.errors import (
    CommandNotFoundError,
    ExecutionError,
    ModelNotSupportedError,
    PipelineError,
    ProviderConfigurationError,
)
from relay.fallback import ProviderFallbackService, ResolutionPath
from relay.provider_resolver import ProviderResolver
from relay.providers import ProviderRegistry


class TestCommandLoader:

    @pytest.mark.unit
    def test_packaged_commands(self):
        loader = CommandLoader()
        assert {"implement", "plan", "review-plan", "test"} <= set(loader.list_commands())
        implement = loader.load("implement")
        assert implement.dynamic_agent_selection is True
        assert implement.fallback_agent == "software-engineer-typescript"
        assert [s.stage for s in implement.pipeline] == ["context", "code"]

    @pytest.mark.unit
    def test_nested_pipeline_and_hyphenated_tools(self, project_dir):
        path = project_dir / ".relay" / "commands" / "audit.yaml"
        path.write_text(
            "name: audit\n"
            "agent: secops-engineer\n"
            "allowed-tools: [read_file]\n"
            "prompts:\n"
            "  pipeline:\n"
            "    - stage: scan\n"
            "      prompt: Scan $ARG_1\n"
            "      parallel: true\n"
            "      required: false\n"
        )
        command = CommandLoader(project_dir=project_dir).load("audit")
        assert command.allowed_tools == ("read_file",)
        assert command.pipeline[0].parallel is True
        assert command.pipeline[0].required is False

    @pytest.mark.unit
    def test_unknown_command_suggests_similar(self):
        with pytest.raises(CommandNotFoundError) as exc_info:
            CommandLoader().load("implemnt")
        assert "implement" in exc_info.value.suggestions
        assert "implement" in exc_info.value.available

    @pytest.mark.unit
    def test_invalid_command_files(self, tmp_path):
        (tmp_path / "bad.yaml").write_text("name: [unclosed\n")
        (tmp_path / "list.yaml").write_text("- stage: a\n")
        (tmp_path / "nostage.yaml").write_text("pipeline:\n  - prompt: hi\n")
        for name in ("bad", "list", "nostage"):
            with pytest.raises(PipelineError):
                load_command(tmp_path / f"{name}.yaml")

    @pytest.mark.unit
    def test_agent_override_option(self):
        assert CommandExecutionOptions(flags={"agent": "qa"}).agent_override == "qa"
        assert CommandExecutionOptions(flags={"agent": None}).agent_override is None


def make_resolver(project_dir, sampling=None, registry=None):
    provider_resolver = ProviderResolver(ConfigLoader(project_dir=project_dir))
    registry = registry or ProviderRegistry.with_default_providers()
    return CommandResolver(
        CommandLoader(project_dir=project_dir),
        provider_resolver,
        ProviderFallbackService(registry, provider_resolver),
        sampling,
    )


class TestCommandResolver:

    @pytest.mark.unit
    def test_direct_resolution_outside_host(self, project_dir, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant")
        resolved = make_resolver(project_dir).resolve_command(
            "implement", CommandExecutionOptions(interactive=False)
        )
        assert resolved.provider_name == "anthropic"
        assert resolved.model == "claude-sonnet-4.5"
        assert resolved.resolution_path is ResolutionPath.API_FALLBACK
        assert resolved.fallback_reason is None

    @pytest.mark.unit
    def test_missing_configuration_outside_host_propagates(self, project_dir):
        with pytest.raises(ProviderConfigurationError):
            make_resolver(project_dir).resolve_command(
                "implement", CommandExecutionOptions(interactive=False)
            )

    @pytest.mark.unit
    def test_host_without_anything_is_guided(self, project_dir, host_env):
        resolved = make_resolver(project_dir).resolve_command(
            "implement", CommandExecutionOptions(interactive=False)
        )
        assert resolved.provider_name == "cursor-guided"
        assert resolved.resolution_path is ResolutionPath.GUIDED

    @pytest.mark.unit
    def test_host_with_sampling(self, project_dir, host_env):
        resolved = make_resolver(project_dir, sampling=FakeSampling()).resolve_command(
            "plan", CommandExecutionOptions(interactive=False)
        )
        assert resolved.resolution_path is ResolutionPath.MCP

    @pytest.mark.unit
    def test_host_recovers_from_missing_provider(self, project_dir, host_env, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant")
        resolved = make_resolver(project_dir).resolve_command(
            "plan", CommandExecutionOptions(flags={"provider": "xai"}, interactive=False)
        )
        assert resolved.provider_name == "anthropic"
        assert resolved.model == "claude-sonnet-4.5"
        assert resolved.fallback_reason == "mcp_sampling_unavailable_using_api_keys"

    @pytest.mark.unit
    def test_model_not_supported(self, project_dir, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk")
        with pytest.raises(ModelNotSupportedError) as exc_info:
            make_resolver(project_dir).resolve_command(
                "plan",
                CommandExecutionOptions(flags={"provider": "openai", "model": "claude-sonnet-4.5"}),
            )
        assert "--model gpt-5" in exc_info.value.suggestions

    @pytest.mark.unit
    def test_host_fallback_failure_is_wrapped(self, project_dir, host_env):
        registry = ProviderRegistry.with_default_providers()
        registry.create_guided_provider = Mock(side_effect=RuntimeError("no guided"))
        with pytest.raises(ExecutionError, match="zero-config host"):
            make_resolver(project_dir, registry=registry).resolve_command(
                "plan", CommandExecutionOptions(flags={"provider": "xai"}, interactive=False)
            )

    @pytest.mark.unit
    def test_custom_provider_registration(self, project_dir, write_project_config):
        write_project_config("providers:\n  fake:\n    api_key: x\n")
        (project_dir / ".relay" / "commands" / "echo.yaml").write_text(
            "name: echo\nprovider: fake\nmodel: echo-1\npipeline:\n  - stage: s\n"
        )
        registry = ProviderRegistry()
        registry.register_provider("fake", lambda config, sampling: FakeProvider("fake"))
        resolved = make_resolver(project_dir, registry=registry).resolve_command(
            "echo", CommandExecutionOptions(interactive=False)
        )
        assert resolved.provider_name == "fake"
        assert resolved.provider.name == "fake"
