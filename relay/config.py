"""Centralised configuration for **relay**.

Provides layered configuration with precedence (highest to lowest):
1. Runtime arguments (CLI flags)
2. Command YAML (model, mode, provider declared by a command)
3. Project config (./.relay/config.yaml)
4. User config (~/.config/relay/config.yaml)
5. Provider catalogue defaults (hard-coded)

Resource directories are searched in order (highest priority first):
1. Project resources (./.relay/commands/, ./.relay/agents/)
2. User resources (~/.config/relay/commands/, ~/.config/relay/agents/)
3. Package resources (relay/commands/, relay/agents/)

Directory structure:
    ~/.config/relay/
        config.yaml          # User-level defaults
        analytics.jsonl      # Agent selection events
        sessions/            # Persisted sessions
        commands/            # User's custom commands
        agents/              # User's custom agent roles

    ./.relay/                # Project-specific (in project root)
        config.yaml          # Project-level defaults
        commands/            # Project commands (override user/package)
        agents/              # Project agent roles

Usage
-----
>>> from relay.config import Config, ConfigLoader
>>> Config.is_zero_config_host()
False
>>> loader = ConfigLoader()
>>> loader.get_feature_flags().dynamic_agent_selection
False
"""

from __future__ import annotations

import os
import yaml
from copy import deepcopy
from dataclasses import dataclass, asdict
from enum import Enum
from pathlib import Path
from typing import Final, Optional, Dict, Any, List

from .logger import logger

__all__: Final[list[str]] = [
    "Config",
    "ConfigLoader",
    "FeatureFlags",
    "ProviderName",
    "GUIDED_PROVIDER_NAME",
    "FALLBACK_PRIORITY",
    "get_provider_models",
    "get_model_modes",
    "get_default_model",
    "find_providers_for_model",
    "resolve_api_key",
]


class ProviderName(str, Enum):
    ANTHROPIC = "anthropic"
    CURSOR = "cursor"
    GOOGLE = "google"
    MOONSHOT = "moonshot"
    OPENAI = "openai"
    XAI = "xai"


# Provider name reported when the zero-config provider runs without sampling
GUIDED_PROVIDER_NAME: Final[str] = "cursor-guided"

# Order in which configured providers are tried as API-key fallbacks
FALLBACK_PRIORITY: Final[tuple[ProviderName, ...]] = (
    ProviderName.ANTHROPIC,
    ProviderName.OPENAI,
    ProviderName.GOOGLE,
    ProviderName.XAI,
    ProviderName.MOONSHOT,
)

_EXTENDED = ["normal", "extended thinking"]
_GPT5_EFFORT = ["minimal reasoning", "low reasoning", "medium reasoning", "high reasoning"]
_O_SERIES_EFFORT = ["low reasoning", "medium reasoning", "high reasoning"]

# Hard-coded catalogue for known providers. Model order matters: the first
# entries are the ones suggested to users.
_PROVIDER_DEFAULTS: dict[ProviderName, dict[str, Any]] = {
    ProviderName.ANTHROPIC: {
        "base_url": "https://api.anthropic.com/v1/",
        "key_env": "ANTHROPIC_API_KEY",
        "default_model": "claude-opus-4.5",
        "models": {
            "claude-opus-4.5": _EXTENDED,
            "claude-sonnet-4.5": _EXTENDED,
            "claude-haiku-4.5": ["normal"],
            "claude-opus-4": _EXTENDED,
            "claude-sonnet-4": _EXTENDED,
            "claude-haiku-3.5": ["normal"],
        },
    },
    ProviderName.CURSOR: {
        "base_url": "",
        "key_env": "",
        "default_model": "cursor-sonnet-4.5",
        "models": {
            "cursor-sonnet-4.5": ["normal"],
            "cursor-gpt-4": ["high reasoning"],
            "cursor-claude-3.5": ["normal"],
        },
    },
    ProviderName.GOOGLE: {
        "base_url": "https://generativelanguage.googleapis.com/v1beta/openai/",
        "key_env": "GOOGLE_API_KEY",
        "default_model": "gemini-2.5-pro",
        "models": {
            "gemini-3-pro": ["default", "deep-think"],
            "gemini-2.5-pro": ["default"],
            "gemini-2.5-flash": ["default"],
            "gemini-2.5-flash-lite": ["default"],
            "gemma-3n": ["default"],
            "gemma-3": ["default"],
            "gemma-2": ["default"],
        },
    },
    ProviderName.MOONSHOT: {
        "base_url": "https://api.moonshot.ai/v1",
        "key_env": "MOONSHOT_API_KEY",
        "default_model": "kimi-k2",
        "models": {
            "kimi-k2": ["default"],
        },
    },
    ProviderName.OPENAI: {
        "base_url": "https://api.openai.com/v1/",
        "key_env": "OPENAI_API_KEY",
        "default_model": "gpt-5",
        "models": {
            "gpt-5": _GPT5_EFFORT,
            "gpt-5.1": ["none reasoning", "low reasoning", "medium reasoning", "high reasoning"],
            "gpt-5-mini": _GPT5_EFFORT,
            "gpt-5-nano": _GPT5_EFFORT,
            "o3": _O_SERIES_EFFORT,
            "o3-pro": ["high reasoning"],
            "o4-mini": _O_SERIES_EFFORT,
        },
    },
    ProviderName.XAI: {
        "base_url": "https://api.x.ai/v1",
        "key_env": "XAI_API_KEY",
        "default_model": "grok-code",
        "models": {
            "grok-code": ["default"],
            "grok-4-1-fast-reasoning": ["reasoning"],
            "grok-4-1-fast-non-reasoning": ["non-reasoning"],
            "grok-4-fast-reasoning": ["reasoning"],
            "grok-4-fast-non-reasoning": ["non-reasoning"],
        },
    },
}


def _catalogue_entry(provider: str) -> Optional[dict[str, Any]]:
    try:
        return _PROVIDER_DEFAULTS[ProviderName(provider)]
    except ValueError:
        return None


def get_provider_models(provider: str) -> list[str]:
    """Get the catalogue model names for a provider (empty if unknown)."""
    entry = _catalogue_entry(provider)
    return list(entry["models"]) if entry else []


def get_model_modes(provider: str, model: str) -> list[str]:
    """Get the modes a provider supports for a model."""
    entry = _catalogue_entry(provider)
    if not entry:
        return []
    return list(entry["models"].get(model, []))


def get_default_model(provider: str) -> Optional[str]:
    """Get the catalogue default model for a provider."""
    entry = _catalogue_entry(provider)
    return entry["default_model"] if entry else None


def get_model_mode_pairs(provider: str) -> list[tuple[str, str]]:
    """Flatten a provider's catalogue into (model, mode) pairs in catalogue order."""
    entry = _catalogue_entry(provider)
    if not entry:
        return []
    return [(model, mode) for model, modes in entry["models"].items() for mode in modes]


def find_providers_for_model(model: str) -> list[str]:
    """Get every provider whose catalogue lists ``model``."""
    return [
        provider.value
        for provider, entry in _PROVIDER_DEFAULTS.items()
        if model in entry["models"]
    ]


def resolve_api_key(provider: str, provider_config: Optional[Dict[str, Any]]) -> Optional[str]:
    """Resolve an API key for a provider.

    Sources are tried in order: a literal ``api_key``, the variable named by
    ``api_key_env``, then the provider's default key environment variable.

    Args:
        provider: Provider name
        provider_config: Provider section of the merged config, or None

    Returns:
        The API key, or None if no source yields a non-empty value
    """
    provider_config = provider_config or {}

    api_key = provider_config.get("api_key")
    if api_key:
        return str(api_key)

    api_key_env = provider_config.get("api_key_env")
    if api_key_env:
        value = os.getenv(api_key_env)
        if value:
            return value

    entry = _catalogue_entry(provider)
    if entry and entry["key_env"]:
        value = os.getenv(entry["key_env"])
        if value:
            return value
    return None


def _env_flag(name: str) -> Optional[bool]:
    value = os.getenv(name)
    if value is None:
        return None
    return value.strip().lower() in ("true", "1", "yes")


@dataclass(frozen=True)
class FeatureFlags:
    """Feature toggles, fixed for the lifetime of one invocation."""
    dynamic_agent_selection: bool = False
    dynamic_agent_selection_implement_only: bool = True
    agent_selection_analytics: bool = False

    def to_dict(self) -> Dict[str, bool]:
        return asdict(self)


class Config:
    """Namespace that exposes project-wide constants as *class attributes*."""

    # ------------------------------------------------------------------ #
    # Paths                                                              #
    # ------------------------------------------------------------------ #
    PACKAGE_DIR: Final[Path] = Path(__file__).resolve().parent
    PROJECT_ROOT: Final[Path] = PACKAGE_DIR.parent

    # ------------------------------------------------------------------ #
    # Orchestration constants                                            #
    # ------------------------------------------------------------------ #
    LOW_CONFIDENCE_THRESHOLD: Final[float] = 0.5
    MAX_CONFIRMATION_ALTERNATIVES: Final[int] = 3
    MAX_SUGGESTIONS_PER_PROVIDER: Final[int] = 3

    # Session key holding stage outputs of earlier commands in the session
    STAGE_OUTPUTS_KEY: Final[str] = "_stage_outputs"

    # Commands whose first positional argument must be an existing file
    FILE_ARGUMENT_COMMANDS: Final[dict[str, str]] = {
        "implement": "Implementation plan file",
        "review-plan": "Plan file to review",
    }

    _DEFAULT_COMMAND_MODEL: Final[str] = "claude-sonnet-4.5"
    _DEFAULT_AGENT: Final[str] = "software-engineer-typescript"

    # ------------------------------------------------------------------ #
    # Methods that read environment - only when explicitly called       #
    # ------------------------------------------------------------------ #
    @classmethod
    def is_zero_config_host(cls) -> bool:
        """Whether the process runs inside the zero-config (MCP) host."""
        return os.getenv("RELAY_MCP_ENABLED", "").strip().lower() == "true"

    @classmethod
    def is_dotenv_disabled(cls) -> bool:
        return bool(os.getenv("RELAY_DISABLE_DOTENV"))

    @classmethod
    def get_default_command_model(cls) -> str:
        """Get the model used by commands that declare none."""
        return os.getenv("RELAY_DEFAULT_MODEL", cls._DEFAULT_COMMAND_MODEL)

    @classmethod
    def get_default_agent(cls) -> str:
        return os.getenv("RELAY_DEFAULT_AGENT", cls._DEFAULT_AGENT)

    @classmethod
    def get_user_config_dir(cls) -> Path:
        """Get user config directory from environment or use default."""
        return Path(os.getenv("RELAY_CONFIG_DIR", Path.home() / ".config" / "relay"))

    @classmethod
    def get_sessions_dir(cls) -> Path:
        return Path(os.getenv("RELAY_SESSIONS_DIR", cls.get_user_config_dir() / "sessions"))

    @classmethod
    def get_analytics_file(cls) -> Path:
        return Path(os.getenv("RELAY_ANALYTICS_FILE", cls.get_user_config_dir() / "analytics.jsonl"))

    @classmethod
    def _get_resource_dirs(cls, resource_type: str, project_dir: Optional[Path] = None) -> list[Path]:
        """Get all directories for a resource type in search order (highest priority first)."""
        dirs = []
        project_resources = (project_dir or Path.cwd()) / ".relay" / resource_type
        if project_resources.exists():
            dirs.append(project_resources)
        user_resources = cls.get_user_config_dir() / resource_type
        if user_resources.exists():
            dirs.append(user_resources)
        dirs.append(cls.PACKAGE_DIR / resource_type)
        return dirs

    @classmethod
    def get_commands_dirs(cls, project_dir: Optional[Path] = None) -> list[Path]:
        """Get all command directories in search order.

        Search order:
        1. Project commands (.relay/commands/)
        2. User commands (~/.config/relay/commands/)
        3. Package commands (relay/commands/)
        """
        return cls._get_resource_dirs("commands", project_dir)

    @classmethod
    def get_agents_dirs(cls, project_dir: Optional[Path] = None) -> list[Path]:
        """Get all agent directories in search order (highest priority first)."""
        return cls._get_resource_dirs("agents", project_dir)

    @classmethod
    def find_resource(
        cls,
        name: str,
        resource_type: str,
        project_dir: Optional[Path] = None
    ) -> Optional[Path]:
        """Find a resource file by name, searching all directories.

        Args:
            name: Resource name (without .yaml extension)
            resource_type: One of 'commands', 'agents'
            project_dir: Optional project directory to search

        Returns:
            Path to the resource file, or None if not found
        """
        for directory in cls._get_resource_dirs(resource_type, project_dir):
            for ext in ['.yaml', '.yml']:
                path = directory / f"{name}{ext}"
                if path.exists():
                    return path
        return None

    # ------------------------------------------------------------------ #
    # Dunder methods                                                     #
    # ------------------------------------------------------------------ #
    __slots__ = ()

    def __new__(cls, *_, **__) -> "Config":
        """Prevent instantiation – use as a static namespace instead."""
        raise TypeError(
            "`Config` cannot be instantiated; use class attributes directly."
        )

    def __setattr__(self, *_: object) -> None:  # noqa: D401
        """Disallow runtime mutation of configuration values."""
        raise AttributeError("Config is read-only – do not mutate class attributes.")


class ConfigLoader:
    """Loads and merges configuration from multiple sources.

    Configuration sources (highest to lowest priority):
    1. Runtime overrides (passed to methods)
    2. Project config (./.relay/config.yaml)
    3. User config (~/.config/relay/config.yaml)
    4. Provider catalogue defaults
    """

    _PROJECT_CONFIG_NAME = Path(".relay") / "config.yaml"

    def __init__(self, project_dir: Optional[Path] = None, user_config_path: Optional[Path] = None):
        """Initialize ConfigLoader.

        Args:
            project_dir: Project directory to search for .relay/config.yaml.
                        If None, uses current working directory.
            user_config_path: Explicit user config file. Defaults to
                        config.yaml in the user config directory.
        """
        self._project_dir = Path(project_dir) if project_dir else Path.cwd()
        self._user_config_path = (
            Path(user_config_path) if user_config_path
            else Config.get_user_config_dir() / "config.yaml"
        )
        self._user_config: Dict[str, Any] = {}
        self._project_config: Dict[str, Any] = {}
        self._merged_config: Dict[str, Any] = {}
        self._load_configs()

    def _load_configs(self) -> None:
        """Load configuration from all sources and merge them."""
        self._user_config = self._load_yaml(self._user_config_path)
        self._project_config = self._load_yaml(self.project_config_path)

        # Merge: user config is base, project config overrides
        self._merged_config = self._deep_merge(
            self._user_config,
            self._project_config
        )

    def _load_yaml(self, path: Path) -> Dict[str, Any]:
        """Load YAML file, returning empty dict if not found."""
        if not path.exists():
            return {}
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f)
                return data if isinstance(data, dict) else {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Ignoring unreadable config file {path}: {e}")
            return {}

    def _deep_merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two dictionaries, with override taking precedence."""
        result = deepcopy(base)
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = deepcopy(value)
        return result

    def get(self, key: str, default: Any = None) -> Any:
        """Get a top-level configuration value.

        Args:
            key: Configuration key (e.g., 'providers', 'features', 'defaults')
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        return self._merged_config.get(key, default)

    def get_providers(self) -> Dict[str, Dict[str, Any]]:
        """Get the raw ``providers`` section."""
        providers = self.get('providers', {})
        return providers if isinstance(providers, dict) else {}

    def get_provider_config(self, provider: str) -> Optional[Dict[str, Any]]:
        """Get the configuration for one provider, with catalogue defaults filled in.

        A provider that has no section in any config file still counts as
        configured when its default key variable is set in the environment.

        Args:
            provider: Provider name

        Returns:
            Provider configuration dict, or None if the provider is not configured
        """
        section = self.get_providers().get(provider)
        entry = _catalogue_entry(provider)

        if section is None:
            if entry and entry["key_env"] and os.getenv(entry["key_env"]):
                section = {}
            else:
                return None

        result = deepcopy(section) if isinstance(section, dict) else {}
        if entry:
            if not result.get('base_url') and entry["base_url"]:
                result['base_url'] = entry["base_url"]
            if not result.get('api_key_env') and entry["key_env"]:
                result['api_key_env'] = entry["key_env"]
            if not result.get('default_model'):
                result['default_model'] = entry["default_model"]
        return result

    def get_configured_providers(self) -> List[str]:
        """Get providers with a usable API key, in fallback priority order first."""
        candidates = list(self.get_providers().keys())
        candidates += [p.value for p in _PROVIDER_DEFAULTS if p.value not in candidates]
        ordered = [p.value for p in FALLBACK_PRIORITY if p.value in candidates]
        ordered += [p for p in candidates if p not in ordered]

        configured = []
        for provider in ordered:
            if provider == ProviderName.CURSOR.value:
                continue
            provider_config = self.get_provider_config(provider)
            if provider_config is not None and resolve_api_key(provider, provider_config):
                configured.append(provider)
        return configured

    def get_feature_flags(self) -> FeatureFlags:
        """Get feature flags from config, overridden by RELAY_FEATURE_* variables."""
        features = self.get('features', {}) or {}
        defaults = FeatureFlags()
        values = {}
        for name, default in defaults.to_dict().items():
            env_value = _env_flag(f"RELAY_FEATURE_{name.upper()}")
            if env_value is not None:
                values[name] = env_value
            else:
                values[name] = bool(features.get(name, default))
        return FeatureFlags(**values)

    def get_defaults(self) -> Dict[str, Any]:
        """Get the ``defaults`` section (provider, model, mode, interactive)."""
        defaults = self.get('defaults', {})
        return defaults if isinstance(defaults, dict) else {}

    def resolve_with_overrides(
        self,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        mode: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Resolve the ``defaults`` section with runtime overrides.

        Args:
            provider: Runtime provider override
            model: Runtime model override
            mode: Runtime mode override

        Returns:
            Dict with ``provider``, ``model`` and ``mode`` keys (values may be None)
        """
        result = {
            'provider': None,
            'model': None,
            'mode': None,
        }
        result.update({k: v for k, v in self.get_defaults().items() if k in result})

        if provider is not None:
            result['provider'] = provider
        if model is not None:
            result['model'] = model
        if mode is not None:
            result['mode'] = mode
        return result

    @property
    def user_config_path(self) -> Path:
        """Get the user config file path."""
        return self._user_config_path

    @property
    def project_config_path(self) -> Path:
        """Get the project config file path."""
        return self._project_dir / self._PROJECT_CONFIG_NAME

    @property
    def has_user_config(self) -> bool:
        return self._user_config_path.exists()

    @property
    def has_project_config(self) -> bool:
        return self.project_config_path.exists()
