"""Exception taxonomy for relay.

Every error raised to the user carries ``suggestions``: concrete next steps
(a model to try, a provider to configure, a command to run). The CLI prints
them through :func:`relay.cli.errors.error`.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class RelayError(Exception):
    """Base class for all relay errors."""

    def __init__(
        self,
        message: str,
        *,
        details: Optional[Dict[str, Any]] = None,
        suggestions: Optional[List[str]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details or {}
        self.suggestions: List[str] = suggestions or []

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": type(self).__name__,
            "message": self.message,
            "details": self.details,
            "suggestions": self.suggestions,
        }


class ValidationError(RelayError):
    """Raised when a command precondition fails (e.g. a missing plan file)."""
    pass


class ExecutionError(RelayError):
    """Raised for provider/model misconfiguration and resolution failures."""
    pass


class ProviderConfigurationError(ExecutionError):
    """Raised when the requested provider has no usable configuration.

    Attributes:
        provider: The provider that was requested
        configured_providers: Providers that do have a usable API key
        suggested_models: ``"model (mode)"`` suggestions keyed by provider
    """

    def __init__(
        self,
        message: str,
        *,
        provider: str,
        configured_providers: Optional[List[str]] = None,
        suggested_models: Optional[Dict[str, List[str]]] = None,
        suggestions: Optional[List[str]] = None,
    ):
        self.provider = provider
        self.configured_providers = configured_providers or []
        self.suggested_models = suggested_models or {}
        super().__init__(
            message,
            details={
                "provider": provider,
                "configured_providers": self.configured_providers,
                "suggested_models": self.suggested_models,
            },
            suggestions=suggestions,
        )


class ProviderError(RelayError):
    """Raised when a provider cannot be constructed or is not configured."""
    pass


class ModelNotSupportedError(RelayError):
    """Raised when the resolved provider does not support the requested model."""

    def __init__(self, model: str, provider: str, alternatives: List[str]):
        self.model = model
        self.provider = provider
        self.alternatives = alternatives
        message = f"Model '{model}' is not supported by provider '{provider}'."
        suggestions = [f"--model {alt}" for alt in alternatives[:5]]
        if not suggestions:
            suggestions = [f"Run 'relay providers' to list models for '{provider}'."]
        super().__init__(
            message,
            details={"model": model, "provider": provider, "alternatives": alternatives},
            suggestions=suggestions,
        )


class CommandNotFoundError(RelayError):
    """Raised when no command definition exists for a name."""

    def __init__(self, name: str, available: Optional[List[str]] = None, similar: Optional[List[str]] = None):
        self.name = name
        self.available = available or []
        suggestions = list(similar or [])
        suggestions.append("Run 'relay commands' for the full list.")
        super().__init__(
            f"Command '{name}' not found.",
            details={"command": name, "available": self.available},
            suggestions=suggestions,
        )


class PipelineError(RelayError):
    """Raised when a command pipeline is invalid or a stage fails."""
    pass
