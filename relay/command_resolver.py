"""Load a command and resolve a ready-to-use provider for it."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .commands import CommandDefinition, CommandExecutionOptions, CommandLoader
from .config import Config, ProviderName
from .errors import ExecutionError, ModelNotSupportedError, ProviderConfigurationError
from .fallback import (
    ProviderFallbackService,
    ProviderResolution,
    ProviderResolutionContext,
    ResolutionPath,
)
from .logger import logger
from .provider_resolver import ProviderResolver
from .providers import BaseProvider, SamplingService


@dataclass
class ResolvedCommand:
    """A command bound to the provider it will run against."""
    command: CommandDefinition
    provider: BaseProvider
    provider_name: str
    model: Optional[str] = None
    mode: Optional[str] = None
    resolution_path: Optional[ResolutionPath] = None
    fallback_reason: Optional[str] = None


class CommandResolver:
    """Resolves command definitions and their providers."""

    def __init__(
        self,
        command_loader: CommandLoader,
        provider_resolver: ProviderResolver,
        fallback_service: ProviderFallbackService,
        sampling: Optional[SamplingService] = None,
    ):
        self._command_loader = command_loader
        self._provider_resolver = provider_resolver
        self._fallback_service = fallback_service
        self._sampling = sampling

    def resolve_command(self, name: str, options: CommandExecutionOptions) -> ResolvedCommand:
        """Load ``name`` and resolve its provider.

        Raises:
            CommandNotFoundError: If the command does not exist
            ExecutionError: On invalid model+mode or missing configuration
            ModelNotSupportedError: If the resolved provider lacks the model
        """
        command = self._command_loader.load(name)
        in_host = Config.is_zero_config_host()

        attempting_fallback = False
        try:
            request = self._provider_resolver.resolve_provider(
                command.model,
                options.flags,
                command_provider=command.provider,
                command_mode=command.mode,
                interactive=options.interactive,
            )
            context = ProviderResolutionContext(
                provider_name=request.provider_name,
                model=request.model,
                mode=request.mode,
                provider_config=request.provider_config,
                in_mcp_context=in_host,
            )
        except ProviderConfigurationError as e:
            if not in_host:
                raise
            logger.debug(f"Provider resolution failed, attempting fallback: {e.message}")
            attempting_fallback = True
            context = ProviderResolutionContext(
                provider_name=ProviderName.CURSOR.value,
                model=command.model,
                in_mcp_context=True,
            )

        resolution = self._resolve_with_fallback(context, attempting_fallback)
        if resolution.fallback_reason:
            logger.info(
                f"Provider fallback: {resolution.fallback_reason} "
                f"(provider={resolution.provider_name}, path={resolution.resolution_path.value})"
            )

        self.validate_model_availability(context.model, resolution)

        return ResolvedCommand(
            command=command,
            provider=resolution.provider,
            provider_name=resolution.provider_name,
            model=context.model,
            mode=context.mode,
            resolution_path=resolution.resolution_path,
            fallback_reason=resolution.fallback_reason,
        )

    def _resolve_with_fallback(
        self, context: ProviderResolutionContext, attempting_fallback: bool
    ) -> ProviderResolution:
        try:
            return self._fallback_service.resolve_with_fallback(context, self._sampling)
        except Exception as e:
            logger.error(f"Provider resolution failed completely: {e}")
            if attempting_fallback:
                raise ExecutionError(
                    "Provider resolution failed inside the zero-config host.",
                    details={"error": str(e)},
                    suggestions=[
                        "Run without an API key to use guided mode.",
                        "Or configure a key, e.g. export ANTHROPIC_API_KEY=...",
                    ],
                ) from e
            raise

    def validate_model_availability(self, model: Optional[str], resolution: ProviderResolution) -> None:
        """Check the resolved provider serves ``model`` (skipped in guided mode)."""
        if not model or resolution.resolution_path is ResolutionPath.GUIDED:
            return
        if not resolution.provider.validate_model(model):
            raise ModelNotSupportedError(
                model,
                resolution.provider_name,
                resolution.provider.get_alternative_models(model),
            )
