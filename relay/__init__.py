"""relay - provider-agnostic orchestration of multi-stage LLM commands."""

from .errors import (
    CommandNotFoundError,
    ExecutionError,
    ModelNotSupportedError,
    PipelineError,
    ProviderConfigurationError,
    ProviderError,
    RelayError,
    ValidationError,
)

__version__ = "0.1.0"

__all__ = [
    "CommandNotFoundError",
    "ExecutionError",
    "ModelNotSupportedError",
    "PipelineError",
    "ProviderConfigurationError",
    "ProviderError",
    "RelayError",
    "ValidationError",
]
