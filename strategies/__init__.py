"""
Trading Modules
Provides the module abstraction and implementations hosted by the service.

Architecture:
- TradingModule: Minimal abstract interface that all modules implement
- ModuleRegistry: Typed registry of module classes and live instances
- Concrete Modules: AdaptiveSmartGrid
  - Each module composes what it needs (risk controller, operators, persistence)
  - Modules share one event bus and one exchange gateway via ModuleContext
"""

from .base_module import ModuleContext, TradingModule
from .registry import ModuleRegistry

# Module implementations
from .implementations.adaptive_grid import AdaptiveSmartGrid, AdaptiveGridConfig

ModuleRegistry.register_module_type('adaptive-smart-grid', AdaptiveSmartGrid)

__all__ = [
    # Core classes
    'ModuleContext',
    'TradingModule',
    'ModuleRegistry',

    # Adaptive grid
    'AdaptiveSmartGrid',
    'AdaptiveGridConfig',
]
