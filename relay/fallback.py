"""Three-tier provider resolution.

Tiers are tried strictly in order, and the first success wins:

1. ``MCP``: the zero-config provider with the host's native sampling.
2. ``API_FALLBACK`` with a reason: inside the host, the first configured
   API-key provider in priority order.
3. ``GUIDED``: inside the host with no key anywhere, the zero-config
   provider without sampling, which emits prompts instead of calling an API.

Outside the host (or when the requested provider already has a key) the
requested provider is constructed directly. That case also reports
``API_FALLBACK`` but carries no ``fallback_reason``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from .config import GUIDED_PROVIDER_NAME, ProviderName, resolve_api_key
from .logger import logger
from .provider_resolver import ProviderResolver
from .providers import BaseProvider, ProviderRegistry, SamplingService

REASON_USING_API_KEYS = "mcp_sampling_unavailable_using_api_keys"
REASON_USING_GUIDED_MODE = "mcp_sampling_unavailable_using_guided_mode"


class ResolutionPath(str, Enum):
    MCP = "mcp"
    GUIDED = "guided"
    API_FALLBACK = "api_fallback"


_PATH_DESCRIPTIONS: Dict[ResolutionPath, str] = {
    ResolutionPath.MCP: "Native sampling through the zero-config host",
    ResolutionPath.GUIDED: "Guided mode: prompts are returned for the host to run, no API keys used",
    ResolutionPath.API_FALLBACK: "API-key provider",
}


def get_resolution_path_description(path: ResolutionPath) -> str:
    return _PATH_DESCRIPTIONS[path]


@dataclass(frozen=True)
class ProviderResolutionContext:
    """Inputs to fallback resolution, fixed once built."""
    provider_name: str
    model: Optional[str] = None
    mode: Optional[str] = None
    provider_config: Dict[str, Any] = field(default_factory=dict)
    in_mcp_context: bool = False


@dataclass
class ProviderResolution:
    """Which provider was obtained, and through which tier."""
    provider: BaseProvider
    provider_name: str
    resolution_path: ResolutionPath
    fallback_reason: Optional[str] = None

    @property
    def is_direct(self) -> bool:
        """True for plain direct resolution (API_FALLBACK without a reason)."""
        return self.resolution_path is ResolutionPath.API_FALLBACK and self.fallback_reason is None

    def to_log_record(self) -> Dict[str, Any]:
        return {
            "provider": self.provider_name,
            "resolution_path": self.resolution_path.value,
            "fallback_reason": self.fallback_reason,
        }


class ProviderFallbackService:
    """Implements the tiered resolution described in the module docstring."""

    def __init__(self, registry: ProviderRegistry, provider_resolver: ProviderResolver):
        self._registry = registry
        self._provider_resolver = provider_resolver

    def resolve_with_fallback(
        self,
        context: ProviderResolutionContext,
        sampling: Optional[SamplingService] = None,
    ) -> ProviderResolution:
        """Resolve a ready-to-use provider.

        Args:
            context: Requested provider, model, mode and configuration
            sampling: Native sampling capability offered by the host, if any

        Returns:
            ProviderResolution recording the tier that succeeded

        Raises:
            ProviderError: Only on direct resolution, when the requested
                provider cannot be constructed
        """
        is_cursor = context.provider_name == ProviderName.CURSOR.value

        if is_cursor and sampling is not None:
            resolution = self._try_native_sampling(context, sampling)
            if resolution is not None:
                return resolution

        in_host = context.in_mcp_context
        has_api_key = bool(resolve_api_key(context.provider_name, context.provider_config))
        if in_host and (is_cursor or not has_api_key):
            logger.info("Zero-config mode active: native sampling unavailable")
            return self._resolve_in_host()

        provider = self._registry.create_provider(context.provider_name, context.provider_config)
        resolution = ProviderResolution(
            provider=provider,
            provider_name=context.provider_name,
            resolution_path=ResolutionPath.API_FALLBACK,
        )
        logger.info(f"Direct provider resolution: {resolution.to_log_record()}")
        return resolution

    def _try_native_sampling(
        self,
        context: ProviderResolutionContext,
        sampling: SamplingService,
    ) -> Optional[ProviderResolution]:
        try:
            provider = self._registry.create_provider(
                ProviderName.CURSOR.value, context.provider_config, sampling
            )
        except Exception as e:
            logger.debug(f"Native sampling tier unavailable: {e}")
            return None

        if not provider.is_configured():
            return None

        logger.info("Using native sampling through the zero-config host")
        return ProviderResolution(
            provider=provider,
            provider_name=ProviderName.CURSOR.value,
            resolution_path=ResolutionPath.MCP,
        )

    def _resolve_in_host(self) -> ProviderResolution:
        fallback = self._provider_resolver.get_fallback_provider()
        if fallback is not None:
            provider_name, provider_config = fallback
            provider = self._registry.create_provider(provider_name, provider_config)
            logger.info(f"Using API-key fallback provider '{provider_name}'")
            return ProviderResolution(
                provider=provider,
                provider_name=provider_name,
                resolution_path=ResolutionPath.API_FALLBACK,
                fallback_reason=REASON_USING_API_KEYS,
            )

        logger.info("No API keys configured, using guided mode")
        return ProviderResolution(
            provider=self._registry.create_guided_provider(),
            provider_name=GUIDED_PROVIDER_NAME,
            resolution_path=ResolutionPath.GUIDED,
            fallback_reason=REASON_USING_GUIDED_MODE,
        )
