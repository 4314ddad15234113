"""
Module Implementations

Concrete trading modules organized by type:
- adaptive_grid: Signal-driven adaptive grid trading
"""

from .adaptive_grid import AdaptiveSmartGrid, AdaptiveGridConfig

__all__ = [
    # Adaptive grid
    'AdaptiveSmartGrid',
    'AdaptiveGridConfig',
]
