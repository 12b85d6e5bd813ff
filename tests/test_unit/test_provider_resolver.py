"""
Unit tests for provider resolution and mismatch remediation.
"""

import pytest

from conftest import ScriptedPrompt
from relay.config import ConfigLoader
from relay.errors import ExecutionError, ProviderConfigurationError
from relay.provider_resolver import (
    ProviderMismatchHandler,
    ProviderResolver,
    get_provider_for_model,
    suggest_model_modes,
    validate_model_mode,
)


@pytest.fixture
def loader(project_dir):
    return ConfigLoader(project_dir=project_dir)


class TestModelInference:

    @pytest.mark.unit
    @pytest.mark.parametrize("model,provider", [
        ("claude-sonnet-4.5", "anthropic"),
        ("gpt-5", "openai"),
        ("gemini-2.5-pro", "google"),
        ("grok-code", "xai"),
        ("kimi-k2", "moonshot"),
        ("cursor-sonnet-4.5", "cursor"),
        ("llama-3", "cursor"),
        (None, "cursor"),
    ])
    def test_get_provider_for_model(self, model, provider):
        assert get_provider_for_model(model) == provider

    @pytest.mark.unit
    def test_suggest_model_modes(self):
        assert suggest_model_modes("anthropic") == [
            "claude-opus-4.5 (normal)",
            "claude-opus-4.5 (extended thinking)",
            "claude-sonnet-4.5 (normal)",
        ]


class TestValidateModelMode:

    @pytest.mark.unit
    def test_valid_pair(self):
        validate_model_mode("gpt-5", "high reasoning")

    @pytest.mark.unit
    def test_skipped_without_mode(self):
        validate_model_mode("not-a-model", None)
        validate_model_mode(None, "anything")

    @pytest.mark.unit
    def test_invalid_mode_lists_supported_modes(self):
        with pytest.raises(ExecutionError) as exc_info:
            validate_model_mode("claude-haiku-4.5", "extended thinking")
        assert "Available modes for 'claude-haiku-4.5': normal" in exc_info.value.message
        assert exc_info.value.suggestions == ['--model claude-haiku-4.5 --mode "normal"']

    @pytest.mark.unit
    def test_unknown_model_with_mode(self):
        with pytest.raises(ExecutionError, match="is not supported"):
            validate_model_mode("made-up", "normal")


class TestProviderResolver:

    @pytest.mark.unit
    def test_infers_configured_provider_from_model(self, loader, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant")
        request = ProviderResolver(loader).resolve_provider("claude-sonnet-4.5", {})
        assert request.provider_name == "anthropic"
        assert request.model == "claude-sonnet-4.5"
        assert request.provider_config["api_key_env"] == "ANTHROPIC_API_KEY"

    @pytest.mark.unit
    def test_flags_override_command(self, loader, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk")
        request = ProviderResolver(loader).resolve_provider(
            "claude-sonnet-4.5", {"provider": "openai", "model": "gpt-5", "mode": "low reasoning"}
        )
        assert (request.provider_name, request.model, request.mode) == ("openai", "gpt-5", "low reasoning")

    @pytest.mark.unit
    def test_command_provider_beats_inference(self, loader, monkeypatch):
        monkeypatch.setenv("GOOGLE_API_KEY", "g")
        request = ProviderResolver(loader).resolve_provider(
            "claude-sonnet-4.5", {}, command_provider="google"
        )
        assert request.provider_name == "google"

    @pytest.mark.unit
    def test_config_defaults_apply(self, project_dir, write_project_config, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk")
        write_project_config("defaults:\n  model: gpt-5-mini\n")
        request = ProviderResolver(ConfigLoader(project_dir=project_dir)).resolve_provider(None, {})
        assert (request.provider_name, request.model) == ("openai", "gpt-5-mini")

    @pytest.mark.unit
    def test_host_defaults_to_cursor_without_model_flag(self, loader, host_env, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant")
        request = ProviderResolver(loader).resolve_provider("claude-sonnet-4.5", {})
        assert request.provider_name == "cursor"
        assert request.provider_config == {}

    @pytest.mark.unit
    def test_host_respects_explicit_model_flag(self, loader, host_env, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant")
        request = ProviderResolver(loader).resolve_provider(None, {"model": "claude-opus-4.5"})
        assert request.provider_name == "anthropic"

    @pytest.mark.unit
    def test_invalid_mode_fails_before_provider_lookup(self, loader):
        with pytest.raises(ExecutionError, match="Invalid model\\+mode"):
            ProviderResolver(loader).resolve_provider("claude-haiku-4.5", {"mode": "extended thinking"})

    @pytest.mark.unit
    def test_missing_provider_lists_configured_alternatives(self, loader, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk")
        with pytest.raises(ProviderConfigurationError) as exc_info:
            ProviderResolver(loader).resolve_provider("claude-sonnet-4.5", {}, interactive=False)

        error = exc_info.value
        assert error.provider == "anthropic"
        assert error.configured_providers == ["openai"]
        assert error.suggested_models["openai"][0] == "gpt-5 (minimal reasoning)"
        assert "Configured providers: openai" in error.message
        assert "--model gpt-5" in error.suggestions

    @pytest.mark.unit
    def test_missing_provider_with_nothing_configured(self, loader):
        with pytest.raises(ProviderConfigurationError) as exc_info:
            ProviderResolver(loader).resolve_provider("gpt-5", {}, interactive=False)
        assert "No providers are configured" in exc_info.value.message
        assert exc_info.value.configured_providers == []

    @pytest.mark.unit
    def test_interactive_remap_is_one_shot(self, loader, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk")
        prompt = ScriptedPrompt(answers=[("openai", "gpt-5-mini")])
        resolver = ProviderResolver(loader, ProviderMismatchHandler(prompt))

        request = resolver.resolve_provider("claude-sonnet-4.5", {}, interactive=True)

        assert (request.provider_name, request.model) == ("openai", "gpt-5-mini")
        assert request.mode is None
        assert ("Cancel", None) in prompt.questions[0]["choices"]
        assert loader.get_provider_config("anthropic") is None

    @pytest.mark.unit
    def test_declined_remap_raises(self, loader, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk")
        prompt = ScriptedPrompt(answers=[None])
        resolver = ProviderResolver(loader, ProviderMismatchHandler(prompt))
        with pytest.raises(ProviderConfigurationError):
            resolver.resolve_provider("claude-sonnet-4.5", {}, interactive=True)

    @pytest.mark.unit
    def test_cancelled_remap_raises(self, loader, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk")
        prompt = ScriptedPrompt(raises=KeyboardInterrupt())
        resolver = ProviderResolver(loader, ProviderMismatchHandler(prompt))
        with pytest.raises(ProviderConfigurationError):
            resolver.resolve_provider("claude-sonnet-4.5", {}, interactive=True)

    @pytest.mark.unit
    def test_no_prompt_without_terminal(self, loader, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk")
        prompt = ScriptedPrompt(interactive=False)
        resolver = ProviderResolver(loader, ProviderMismatchHandler(prompt))
        with pytest.raises(ProviderConfigurationError):
            resolver.resolve_provider("claude-sonnet-4.5", {}, interactive=True)
        assert prompt.questions == []

    @pytest.mark.unit
    def test_fallback_provider_priority(self, loader, monkeypatch):
        monkeypatch.setenv("GOOGLE_API_KEY", "g")
        monkeypatch.setenv("OPENAI_API_KEY", "o")
        name, config = ProviderResolver(loader).get_fallback_provider()
        assert name == "openai"
        assert config["base_url"] == "https://api.openai.com/v1/"

    @pytest.mark.unit
    def test_no_fallback_provider(self, loader):
        assert ProviderResolver(loader).get_fallback_provider() is None
