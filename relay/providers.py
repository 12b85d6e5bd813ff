"""Provider registry for multi-provider LLM support.

This module defines the providers a command can run against and the
registry that constructs them by name:

- API-backed providers talk to OpenAI-compatible endpoints via the
  ``openai`` SDK, with the key resolved from config or environment.
- The cursor provider needs no key. It completes through a native sampling
  capability handed in by the zero-config host and, without one, returns a
  guided completion: a structured prompt for the host to run itself.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol

from openai import OpenAI

from .config import (
    ProviderName,
    get_default_model,
    get_provider_models,
    resolve_api_key,
)
from .errors import ProviderError
from .logger import logger

DEFAULT_MAX_TOKENS = 4096
GUIDED_FINISH_REASON = "guided_completion"

_RULE = "=" * 72


class SamplingService(Protocol):
    """Native completion capability supplied by the zero-config host."""

    def request_sampling(self, request: Dict[str, Any]) -> Dict[str, Any]:
        """Run a completion request.

        The request carries ``messages``, ``system_prompt``, ``max_tokens``,
        ``temperature`` and ``model_preferences``. The response must contain
        ``content`` and may contain ``stop_reason``.
        """
        ...


@dataclass
class CompletionResult:
    """Result of a single completion call."""
    content: str
    finish_reason: str = "stop"
    provider: str = ""
    model: Optional[str] = None
    usage: Dict[str, int] = field(default_factory=dict)
    guided: Optional[Dict[str, Any]] = None

    @property
    def is_guided(self) -> bool:
        return self.finish_reason == GUIDED_FINISH_REASON


def _system_prompt(messages: List[Dict[str, Any]]) -> Optional[str]:
    system = [str(m.get("content", "")) for m in messages if m.get("role") == "system"]
    return "\n\n".join(system) if system else None


class BaseProvider(ABC):
    """Common interface for completion providers."""

    name: str = ""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config: Dict[str, Any] = dict(config or {})

    @abstractmethod
    def is_configured(self) -> bool:
        """Whether the provider can produce completions as constructed."""

    @abstractmethod
    def complete(
        self,
        messages: List[Dict[str, Any]],
        *,
        model: Optional[str] = None,
        mode: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> CompletionResult:
        """Produce a completion for ``messages`` (``{role, content}`` dicts)."""

    def get_default_model(self) -> Optional[str]:
        return self.config.get("default_model") or get_default_model(self.name)

    def validate_model(self, model: str) -> bool:
        """Check whether this provider can serve ``model``."""
        return model in get_provider_models(self.name)

    def get_alternative_models(self, current_model: Optional[str] = None) -> List[str]:
        """Get other models served by this same provider."""
        return [m for m in get_provider_models(self.name) if m != current_model]


class OpenAICompatibleProvider(BaseProvider):
    """Provider backed by an OpenAI-compatible chat completions endpoint."""

    def __init__(self, name: str, config: Optional[Dict[str, Any]] = None):
        super().__init__(config)
        self.name = name
        self._api_key = resolve_api_key(name, self.config)
        self._client: Optional[OpenAI] = None

    def is_configured(self) -> bool:
        return bool(self._api_key)

    def get_client(self) -> OpenAI:
        """Get (and cache) the OpenAI client for this provider."""
        if self._client is None:
            self._client = OpenAI(
                api_key=self._api_key,
                base_url=self.config.get("base_url") or None,
            )
        return self._client

    def complete(
        self,
        messages: List[Dict[str, Any]],
        *,
        model: Optional[str] = None,
        mode: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> CompletionResult:
        resolved_model = model or self.get_default_model()
        req: Dict[str, Any] = {
            "model": resolved_model,
            "messages": messages,
        }
        if max_tokens is not None:
            req["max_tokens"] = max_tokens
        if temperature is not None:
            req["temperature"] = temperature
        if self.name == ProviderName.OPENAI.value and mode and mode.endswith(" reasoning"):
            req["reasoning_effort"] = mode.split()[0]

        logger.info(f"Calling model '{resolved_model}' via provider '{self.name}'")
        try:
            response = self.get_client().chat.completions.create(**req)
        except Exception as e:
            logger.error(f"LLM API call failed: {e}")
            raise

        choice = response.choices[0]
        usage = getattr(response, "usage", None)
        return CompletionResult(
            content=getattr(choice.message, "content", "") or "",
            finish_reason=getattr(choice, "finish_reason", None) or "stop",
            provider=self.name,
            model=resolved_model,
            usage={
                "prompt_tokens": getattr(usage, "prompt_tokens", 0) or 0,
                "completion_tokens": getattr(usage, "completion_tokens", 0) or 0,
                "total_tokens": getattr(usage, "total_tokens", 0) or 0,
            },
        )


class CursorProvider(BaseProvider):
    """Zero-config provider that uses the host's own model access."""

    name = ProviderName.CURSOR.value

    def __init__(self, config: Optional[Dict[str, Any]] = None, sampling: Optional[SamplingService] = None):
        super().__init__(config)
        self._sampling = sampling

    def is_configured(self) -> bool:
        return self._sampling is not None

    def validate_model(self, model: str) -> bool:
        if model in get_provider_models(self.name):
            return True
        # The host maps any provider-style model id itself
        return bool(model) and (model.startswith("cursor-") or "-" in model)

    def complete(
        self,
        messages: List[Dict[str, Any]],
        *,
        model: Optional[str] = None,
        mode: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> CompletionResult:
        if self._sampling is None:
            logger.info("Native sampling not available, using guided completion mode")
            return self._guided_completion(messages, model, max_tokens, temperature)

        try:
            response = self._sampling.request_sampling({
                "messages": [
                    {"role": m["role"], "content": {"type": "text", "text": str(m.get("content", ""))}}
                    for m in messages if m.get("role") != "system"
                ],
                "system_prompt": _system_prompt(messages),
                "max_tokens": max_tokens or DEFAULT_MAX_TOKENS,
                "temperature": temperature,
                "model_preferences": {
                    "hints": [{"name": model or self.get_default_model()}],
                    "intelligence_priority": 0.8,
                },
            })
        except Exception as e:
            message = str(e)
            if "Method not found" in message or "-32601" in message:
                logger.info("Host does not support sampling, using guided completion mode")
            else:
                logger.warning(f"Sampling failed, falling back to guided completion mode: {message}")
            return self._guided_completion(messages, model, max_tokens, temperature)

        logger.info("Native sampling successful")
        return CompletionResult(
            content=str(response.get("content", "")),
            finish_reason=response.get("stop_reason") or "stop",
            provider=self.name,
            model=model,
        )

    def _guided_completion(
        self,
        messages: List[Dict[str, Any]],
        model: Optional[str],
        max_tokens: Optional[int],
        temperature: Optional[float],
    ) -> CompletionResult:
        """Package the request as a prompt for the host to run itself."""
        system_prompt = _system_prompt(messages) or ""
        user_prompt = "\n\n".join(
            str(m.get("content", "")) for m in messages if m.get("role") == "user"
        )
        content = format_guided_prompt(system_prompt, user_prompt, model, max_tokens, temperature)
        return CompletionResult(
            content=content,
            finish_reason=GUIDED_FINISH_REASON,
            provider=self.name,
            model=model,
            usage={"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0},
            guided={
                "mode": "guided",
                "system_prompt": system_prompt,
                "user_prompt": user_prompt,
                "context": {
                    "model": model or "default",
                    "max_tokens": max_tokens or DEFAULT_MAX_TOKENS,
                    "temperature": temperature,
                    "original_messages": len(messages),
                    "provider": self.name,
                },
            },
        )


def format_guided_prompt(
    system_prompt: str,
    user_prompt: str,
    model: Optional[str] = None,
    max_tokens: Optional[int] = None,
    temperature: Optional[float] = None,
) -> str:
    """Render the guided-mode prompt shown to the host."""
    sections = [
        _RULE,
        "GUIDED COMPLETION MODE",
        _RULE,
        "",
        "No completion API is available for this request. Process the prompts",
        "below with the host's assistant and produce the output a direct API",
        "call would have returned.",
        "",
        _RULE,
        "SYSTEM INSTRUCTIONS",
        _RULE,
        "",
        system_prompt,
        "",
        _RULE,
        "USER REQUEST",
        _RULE,
        "",
        user_prompt,
        "",
        _RULE,
        f"Model: {model or 'default'} | Max tokens: {max_tokens or DEFAULT_MAX_TOKENS}"
        f" | Temperature: {temperature if temperature is not None else 'default'}",
        _RULE,
    ]
    return "\n".join(sections)


ProviderFactory = Callable[[Dict[str, Any], Optional[SamplingService]], BaseProvider]


class ProviderRegistry:
    """Registry that constructs providers by name."""

    def __init__(self):
        self._factories: Dict[str, ProviderFactory] = {}

    @classmethod
    def with_default_providers(cls) -> "ProviderRegistry":
        """Create a registry with every catalogue provider registered."""
        registry = cls()
        for provider in ProviderName:
            if provider is ProviderName.CURSOR:
                registry.register_provider(
                    provider.value, lambda config, sampling: CursorProvider(config, sampling)
                )
            else:
                registry.register_provider(
                    provider.value,
                    lambda config, sampling, _name=provider.value: OpenAICompatibleProvider(_name, config),
                )
        return registry

    def register_provider(self, name: str, factory: ProviderFactory) -> None:
        """Register a provider factory.

        Args:
            name: Provider name
            factory: Callable taking ``(config, sampling)`` and returning a provider
        """
        self._factories[name] = factory

    def get_available_providers(self) -> List[str]:
        return sorted(self._factories)

    def is_registered(self, name: str) -> bool:
        return name in self._factories

    def create_provider(
        self,
        name: str,
        config: Optional[Dict[str, Any]] = None,
        sampling: Optional[SamplingService] = None,
    ) -> BaseProvider:
        """Construct a configured provider.

        Args:
            name: Provider name
            config: Provider configuration
            sampling: Native sampling capability (only used by cursor)

        Returns:
            Provider instance that reports ``is_configured()``

        Raises:
            ProviderError: If the provider is unknown or not configured
        """
        factory = self._factories.get(name)
        if factory is None:
            raise ProviderError(
                f"Unknown provider: {name}",
                details={"provider": name, "available": self.get_available_providers()},
                suggestions=[f"--provider {p}" for p in self.get_available_providers()],
            )

        provider = factory(dict(config or {}), sampling)
        if not provider.is_configured():
            if name == ProviderName.CURSOR.value:
                raise ProviderError(
                    "The cursor provider requires the zero-config host (native sampling).",
                    details={"provider": name},
                    suggestions=[
                        "Set RELAY_MCP_ENABLED=true when running inside the host.",
                        "Or configure an API key, e.g. export ANTHROPIC_API_KEY=...",
                    ],
                )
            raise ProviderError(
                f"Provider {name} is not properly configured",
                details={"provider": name},
                suggestions=[
                    f"Add providers.{name}.api_key_env to .relay/config.yaml",
                    "Run 'relay providers' to see which providers are configured.",
                ],
            )
        return provider

    def create_guided_provider(self) -> CursorProvider:
        """Construct the cursor provider without sampling (guided mode)."""
        return CursorProvider({}, None)
