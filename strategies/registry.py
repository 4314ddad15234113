"""
Module Registry
Creates trading modules by name and tracks the running instances.
"""

from typing import Dict, List, Optional, Type

from helpers.unified_logger import get_core_logger

from .base_module import ModuleContext, TradingModule


class ModuleRegistry:
    """Typed registry of module classes and their live instances."""

    # Registry of available module types
    _module_types: Dict[str, Type[TradingModule]] = {}

    def __init__(self, logger=None):
        self.logger = logger or get_core_logger("module_registry")
        self._modules: Dict[str, TradingModule] = {}

    # ------------------------------------------------------------------ #
    # Module types
    # ------------------------------------------------------------------ #
    @classmethod
    def register_module_type(cls, name: str, module_class: Type[TradingModule]) -> None:
        """Register a module class under ``name``."""
        if not issubclass(module_class, TradingModule):
            raise ValueError(f"Module class {module_class.__name__} must inherit from TradingModule")
        cls._module_types[name.lower()] = module_class

    @classmethod
    def get_supported_modules(cls) -> List[str]:
        return list(cls._module_types.keys())

    @classmethod
    def create_module(cls, name: str, **kwargs) -> TradingModule:
        """Instantiate a registered module type."""
        name = name.lower()
        if name not in cls._module_types:
            available = ", ".join(cls._module_types.keys()) or "none"
            raise ValueError(f"Unsupported module: {name}. Available: {available}")
        return cls._module_types[name](**kwargs)

    # ------------------------------------------------------------------ #
    # Instances
    # ------------------------------------------------------------------ #
    def add(self, module: TradingModule) -> TradingModule:
        module_id = module.get_module_id()
        if module_id in self._modules:
            raise ValueError(f"Module '{module_id}' is already registered")
        self._modules[module_id] = module
        return module

    def get(self, module_id: str) -> Optional[TradingModule]:
        return self._modules.get(module_id)

    def all(self) -> List[TradingModule]:
        return list(self._modules.values())

    async def initialize_all(self, context: ModuleContext) -> None:
        for module in self._modules.values():
            await module.initialize(context)

    async def cleanup_all(self) -> None:
        """Clean up modules in reverse registration order; one failure never blocks the rest."""
        for module in reversed(list(self._modules.values())):
            try:
                await module.cleanup()
            except Exception as exc:
                self.logger.error(f"Cleanup of module '{module.get_module_id()}' failed: {exc}")

    def register_api_endpoints(self, app) -> None:
        for module in self._modules.values():
            module.register_api_endpoints(app)
