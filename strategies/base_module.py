"""
Trading Module Interface
Defines the contract every pluggable dashboard module implements.

Lifecycle:
- initialize(context): wire the shared event bus and gateway, load state
- register_api_endpoints(router host): expose the module's HTTP surface
- cleanup(): stop background work, unsubscribe, persist
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, List, Optional, Tuple

from exchange_clients.base import BaseExchangeGateway
from helpers.event_bus import EventBus
from helpers.unified_logger import get_strategy_logger


@dataclass
class ModuleContext:
    """Shared services handed to every module at initialization."""

    event_bus: EventBus
    gateway: BaseExchangeGateway
    data_dir: Path
    debug_errors: bool = False
    extras: dict = field(default_factory=dict)


class TradingModule(ABC):
    """
    Base class for all trading modules.

    Subclasses implement ``_initialize_module`` / ``_cleanup_module`` and
    subscribe to bus events through ``add_listener`` so ``cleanup`` can drop
    them again.
    """

    def __init__(self, logger=None):
        self.logger = logger or get_strategy_logger(self.get_module_id().replace("-", "_"))
        self.context: Optional[ModuleContext] = None
        self.is_initialized = False
        self._event_listeners: List[Tuple[str, Callable]] = []

    @abstractmethod
    def get_module_id(self) -> str:
        """Registry key (e.g. ``adaptive-smart-grid``)."""

    def get_module_name(self) -> str:
        return self.get_module_id()

    async def initialize(self, context: ModuleContext) -> bool:
        """Initialize module-specific components (idempotent)."""
        if self.is_initialized:
            return True
        self.context = context
        await self._initialize_module()
        self.is_initialized = True
        self.logger.info(f"Module '{self.get_module_name()}' initialized")
        return True

    async def cleanup(self) -> None:
        """Release module resources; safe to call more than once."""
        if not self.is_initialized:
            return
        try:
            await self._cleanup_module()
        finally:
            self.unregister_events()
            self.is_initialized = False
            self.logger.info(f"Module '{self.get_module_name()}' cleanup completed")
            if hasattr(self.logger, "flush"):
                self.logger.flush()

    @abstractmethod
    async def _initialize_module(self) -> None:
        """Module-specific initialization logic."""

    @abstractmethod
    async def _cleanup_module(self) -> None:
        """Module-specific teardown logic."""

    def register_api_endpoints(self, app: Any) -> None:
        """Mount HTTP routes on ``app``. Modules without an API keep the default."""
        return None

    # ========================================================================
    # Event listeners
    # ========================================================================

    @property
    def event_bus(self) -> Optional[EventBus]:
        return self.context.event_bus if self.context else None

    def add_listener(self, event_type: str, handler: Callable) -> None:
        """Subscribe ``handler`` on the shared bus and remember it for cleanup."""
        if self.event_bus is None:
            raise RuntimeError("Module has no event bus; call initialize() first")
        self.event_bus.on(event_type, handler)
        self._event_listeners.append((event_type, handler))

    def unregister_events(self) -> None:
        """Drop every listener added through ``add_listener``."""
        bus = self.event_bus
        if bus is not None:
            for event_type, handler in self._event_listeners:
                bus.off(event_type, handler)
        self._event_listeners.clear()
