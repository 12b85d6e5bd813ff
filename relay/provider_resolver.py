"""Determine which provider a command should run against.

The requested provider comes from, in order: the ``--provider`` flag, the
zero-config host default, the command's own ``provider`` key, and finally
keyword inference from the model name. Its configuration is then looked up
in the layered config. A missing configuration is remediated interactively
when possible, and otherwise reported with concrete model suggestions from
the providers that *are* configured.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .config import (
    Config,
    ConfigLoader,
    FALLBACK_PRIORITY,
    ProviderName,
    find_providers_for_model,
    get_model_mode_pairs,
    get_model_modes,
    get_provider_models,
    resolve_api_key,
)
from .errors import ExecutionError, ProviderConfigurationError
from .logger import logger
from .prompt import ConsolePrompt

# Keyword -> provider inference, checked in this order
_PROVIDER_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    ProviderName.ANTHROPIC.value: ("claude", "anthropic"),
    ProviderName.CURSOR.value: ("cursor",),
    ProviderName.GOOGLE.value: ("gemini", "google"),
    ProviderName.MOONSHOT.value: ("kimi", "moonshot"),
    ProviderName.OPENAI.value: ("gpt", "openai"),
    ProviderName.XAI.value: ("grok", "xai"),
}


@dataclass
class ProviderRequest:
    """The provider, model and mode a command asked for, with its config."""
    provider_name: str
    model: Optional[str] = None
    mode: Optional[str] = None
    provider_config: Dict[str, Any] = field(default_factory=dict)


@dataclass
class MismatchResolution:
    """Outcome of an interactive provider remap."""
    provider_name: str
    model: str
    provider_config: Dict[str, Any]


def get_provider_for_model(model: Optional[str]) -> str:
    """Infer a provider from keywords in a model name (cursor if none match)."""
    if model:
        lowered = model.lower()
        for provider, keywords in _PROVIDER_KEYWORDS.items():
            if any(keyword in lowered for keyword in keywords):
                return provider
    return ProviderName.CURSOR.value


def suggest_model_modes(provider: str, limit: int = Config.MAX_SUGGESTIONS_PER_PROVIDER) -> List[str]:
    """Get up to ``limit`` ``"model (mode)"`` suggestions for a provider."""
    return [f"{model} ({mode})" for model, mode in get_model_mode_pairs(provider)[:limit]]


def validate_model_mode(model: Optional[str], mode: Optional[str]) -> None:
    """Check a model+mode pair against the catalogue.

    Only runs when both are given.

    Raises:
        ExecutionError: If no provider supports the combination
    """
    if not model or not mode:
        return

    logger.debug(f"Validating model+mode combination: {model} + {mode}")
    providers = find_providers_for_model(model)
    if any(mode in get_model_modes(provider, model) for provider in providers):
        return

    combinations = [
        f"{provider}: {', '.join(get_model_modes(provider, model))}" for provider in providers
    ]
    if combinations:
        modes = [m for provider in providers for m in get_model_modes(provider, model)]
        message = (
            f"Invalid model+mode combination: '{model}' with mode '{mode}' is not supported.\n\n"
            f"Available modes for '{model}': {', '.join(modes)}"
        )
        suggestions = [f"--model {model} --mode \"{m}\"" for m in modes]
    else:
        message = (
            f"Model '{model}' is not supported. Use --model without --mode, "
            f"or choose a supported model+mode combination."
        )
        suggestions = ["Run 'relay providers' to list supported models and modes."]

    raise ExecutionError(
        message,
        details={"requested_model": model, "requested_mode": mode, "combinations": combinations},
        suggestions=suggestions,
    )


class ProviderMismatchHandler:
    """Offers a one-shot remap to a configured provider for this invocation only."""

    def __init__(self, prompt: Optional[ConsolePrompt] = None):
        self._prompt = prompt or ConsolePrompt()

    def can_prompt(self) -> bool:
        return self._prompt.is_interactive()

    def handle_mismatch(
        self,
        requested_provider: str,
        requested_model: Optional[str],
        configured_providers: List[str],
        config_loader: ConfigLoader,
    ) -> Optional[MismatchResolution]:
        """Ask the user to pick a configured provider/model pair.

        Returns:
            The chosen pair, or None if the user declined or cancelled
        """
        if not configured_providers:
            return None

        choices = []
        for provider in configured_providers:
            for model in get_provider_models(provider)[:Config.MAX_SUGGESTIONS_PER_PROVIDER]:
                choices.append((f"{provider}: {model}", (provider, model)))
        choices.append(("Cancel", None))

        model_label = f"'{requested_model}' " if requested_model else ""
        try:
            picked = self._prompt.select(
                f"Model {model_label}needs provider '{requested_provider}', which is not configured.\n"
                f"Use a configured provider for this run instead?",
                choices,
            )
        except (KeyboardInterrupt, EOFError):
            logger.info("Provider remap cancelled")
            return None

        if picked is None:
            return None
        provider, model = picked
        return MismatchResolution(
            provider_name=provider,
            model=model,
            provider_config=config_loader.get_provider_config(provider) or {},
        )


class ProviderResolver:
    """Resolves the requested provider name, model, mode and configuration."""

    def __init__(
        self,
        config_loader: ConfigLoader,
        mismatch_handler: Optional[ProviderMismatchHandler] = None,
    ):
        self._config_loader = config_loader
        self._mismatch_handler = mismatch_handler

    def resolve_provider(
        self,
        command_model: Optional[str],
        flags: Dict[str, Any],
        *,
        command_provider: Optional[str] = None,
        command_mode: Optional[str] = None,
        interactive: bool = True,
    ) -> ProviderRequest:
        """Resolve the provider request for a command.

        Args:
            command_model: Model declared by the command
            flags: CLI flags (``provider``, ``model``, ``mode``)
            command_provider: Provider declared by the command
            command_mode: Mode declared by the command
            interactive: Allow the interactive remap on missing configuration

        Returns:
            ProviderRequest with the resolved configuration

        Raises:
            ExecutionError: If the model+mode combination is invalid
            ProviderConfigurationError: If the provider has no configuration
        """
        defaults = self._config_loader.resolve_with_overrides(
            provider=flags.get("provider"),
            model=flags.get("model"),
            mode=flags.get("mode"),
        )
        requested_model = flags.get("model") or command_model or defaults["model"]
        requested_mode = flags.get("mode") or command_mode or defaults["mode"]

        validate_model_mode(requested_model, requested_mode)

        provider_name = self.determine_provider_name(
            flags, requested_model, command_provider or defaults["provider"]
        )

        if provider_name == ProviderName.CURSOR.value:
            return ProviderRequest(provider_name, requested_model, requested_mode, {})

        provider_config = self._config_loader.get_provider_config(provider_name)
        if provider_config is None:
            resolution = self._handle_missing_provider(provider_name, requested_model, interactive)
            logger.info(
                f"Resolved provider mismatch: {provider_name} -> {resolution.provider_name}"
            )
            return ProviderRequest(
                resolution.provider_name, resolution.model, None, resolution.provider_config
            )

        return ProviderRequest(provider_name, requested_model, requested_mode, provider_config)

    def determine_provider_name(
        self,
        flags: Dict[str, Any],
        requested_model: Optional[str],
        command_provider: Optional[str] = None,
    ) -> str:
        if flags.get("provider"):
            return str(flags["provider"])

        if Config.is_zero_config_host() and not flags.get("model"):
            logger.info("Auto-selected cursor provider (zero-config host)")
            return ProviderName.CURSOR.value

        if command_provider:
            return str(command_provider)

        return get_provider_for_model(requested_model)

    def _handle_missing_provider(
        self,
        provider_name: str,
        requested_model: Optional[str],
        interactive: bool,
    ) -> MismatchResolution:
        configured = self.get_configured_providers()
        logger.warning(
            f"Provider '{provider_name}' not configured. "
            f"Configured providers: {', '.join(configured) or 'none'}"
        )

        if interactive and self._mismatch_handler and self._mismatch_handler.can_prompt():
            resolution = self._mismatch_handler.handle_mismatch(
                provider_name, requested_model, configured, self._config_loader
            )
            if resolution is not None:
                return resolution
            logger.info("User declined provider remap")

        raise self.build_missing_provider_error(provider_name, configured, requested_model)

    def build_missing_provider_error(
        self,
        provider_name: str,
        configured: List[str],
        requested_model: Optional[str] = None,
    ) -> ProviderConfigurationError:
        """Build the error listing configured providers and model suggestions."""
        message = f"Provider '{provider_name}' is not configured."
        if requested_model:
            message += f" The model '{requested_model}' requires the '{provider_name}' provider."

        suggested = {provider: suggest_model_modes(provider) for provider in configured}
        if configured:
            message += f"\n\nConfigured providers: {', '.join(configured)}"
            message += "\n\nTry using one of these models instead:\n" + "\n".join(
                f"  - {provider}: {', '.join(models)}" for provider, models in suggested.items()
            )
            suggestions = [
                f"--model {model}"
                for provider in configured
                for model in get_provider_models(provider)[:1]
            ]
        else:
            message += "\n\nNo providers are configured."
            suggestions = [
                f"Add providers.{provider_name}.api_key_env to .relay/config.yaml",
                "Or export a key, e.g. ANTHROPIC_API_KEY=...",
            ]

        return ProviderConfigurationError(
            message,
            provider=provider_name,
            configured_providers=configured,
            suggested_models=suggested,
            suggestions=suggestions,
        )

    def get_configured_providers(self) -> List[str]:
        return self._config_loader.get_configured_providers()

    def get_fallback_provider(self) -> Optional[Tuple[str, Dict[str, Any]]]:
        """Find the first configured provider in fixed priority order.

        Returns:
            ``(provider_name, provider_config)`` or None if no provider has a key
        """
        for provider in FALLBACK_PRIORITY:
            provider_config = self._config_loader.get_provider_config(provider.value)
            if provider_config is not None and resolve_api_key(provider.value, provider_config):
                logger.debug(f"Fallback provider found: {provider.value}")
                return provider.value, provider_config
        return None
