"""Application wiring.

:class:`ApplicationContext` builds every collaborator once, explicitly, in
dependency order. Tests construct their own instances with fakes instead of
patching module globals.
"""

from __future__ import annotations

import atexit
from pathlib import Path
from typing import Callable, List, Optional

from .agents import AgentLoader, KeywordAgentResolver
from .analytics import AgentSelectionAnalytics
from .command_resolver import CommandResolver
from .commands import CommandLoader
from .config import Config, ConfigLoader
from .coordinator import ExecutionCoordinator
from .executor import CommandExecutor
from .fallback import ProviderFallbackService
from .logger import logger
from .pipeline import PipelineExecutor
from .prompt import ConsolePrompt
from .provider_resolver import ProviderMismatchHandler, ProviderResolver
from .providers import ProviderRegistry, SamplingService
from .session import SessionStore


class ApplicationContext:
    """Owns the long-lived objects of one relay process."""

    def __init__(
        self,
        project_dir: Optional[Path] = None,
        *,
        sampling: Optional[SamplingService] = None,
        prompt: Optional[ConsolePrompt] = None,
        registry: Optional[ProviderRegistry] = None,
        sessions_dir: Optional[Path] = None,
    ):
        self.project_dir = Path(project_dir) if project_dir else Path.cwd()
        self.prompt = prompt or ConsolePrompt()

        self.config_loader = ConfigLoader(project_dir=self.project_dir)
        self.feature_flags = self.config_loader.get_feature_flags()
        self.registry = registry or ProviderRegistry.with_default_providers()

        self.provider_resolver = ProviderResolver(
            self.config_loader, ProviderMismatchHandler(self.prompt)
        )
        self.fallback_service = ProviderFallbackService(self.registry, self.provider_resolver)
        self.command_loader = CommandLoader(project_dir=self.project_dir)
        self.command_resolver = CommandResolver(
            self.command_loader, self.provider_resolver, self.fallback_service, sampling
        )

        self.agent_loader = AgentLoader(project_dir=self.project_dir)
        self.agent_resolver = KeywordAgentResolver(self.agent_loader)
        self.analytics = AgentSelectionAnalytics(
            Config.get_analytics_file() if self.feature_flags.agent_selection_analytics else None
        )
        self.coordinator = ExecutionCoordinator(
            PipelineExecutor(),
            self.feature_flags,
            agent_resolver=self.agent_resolver,
            agent_loader=self.agent_loader,
            analytics=self.analytics,
            prompt=self.prompt,
        )

        self.session_store = SessionStore(sessions_dir)
        self.executor = CommandExecutor(self.command_resolver, self.coordinator, self.session_store)

        self._shutdown_hooks: List[Callable[[], None]] = []
        self._closed = False
        logger.debug(f"Application context ready for {self.project_dir}")

    def register_shutdown_hook(self, hook: Callable[[], None]) -> None:
        """Run ``hook`` on :meth:`close` (hooks run in reverse order)."""
        self._shutdown_hooks.append(hook)

    def install_exit_handler(self) -> None:
        atexit.register(self.close)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for hook in reversed(self._shutdown_hooks):
            try:
                hook()
            except Exception as e:
                logger.warning(f"Shutdown hook failed: {e}")
