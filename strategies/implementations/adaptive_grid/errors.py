"""
Exceptions raised by the adaptive grid module.

Validation errors go straight back to the caller and are never retried.
``GridCreationError`` wraps downstream failures (chart data, gateway) hit
while building a grid; ``GridCloseError`` reports market closes that left
exposure open.
"""


class AdaptiveGridError(Exception):
    """Base class for adaptive grid failures."""


class GridValidationError(AdaptiveGridError):
    """Bad input or a violated limit."""


class SignalRejectedError(GridValidationError):
    """Signal failed eligibility (confidence, grid limit, pair already active)."""


class GridNotFoundError(GridValidationError):
    """No active or historical grid with the requested id."""


class ModuleNotInitializedError(GridValidationError):
    """Operation requires ``initialize()`` to have completed."""


class GridCreationError(AdaptiveGridError):
    """Grid could not be built; nothing was added to the active catalog."""


class GridCloseError(AdaptiveGridError):
    """Positions could not be flattened; the grid stays active with its exits."""
