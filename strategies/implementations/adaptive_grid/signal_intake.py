"""
Signal validation and eligibility for new grids.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Any, Mapping, Optional

from .errors import GridValidationError, SignalRejectedError
from .models import GridCreationResult, TradingSignal

if TYPE_CHECKING:
    from .strategy import AdaptiveSmartGrid


def validate_signal(signal: TradingSignal) -> None:
    """Reject structurally invalid signals."""
    if not signal.pair:
        raise GridValidationError("Signal pair is required")
    if signal.entry_point <= 0:
        raise GridValidationError(f"Signal entry_point must be positive, got {signal.entry_point}")
    if not Decimal("0") <= signal.confidence <= Decimal("1"):
        raise GridValidationError(f"Signal confidence must be within [0, 1], got {signal.confidence}")
    if signal.stop_loss is not None and signal.stop_loss <= 0:
        raise GridValidationError("Signal stop_loss must be positive when provided")


class SignalIntake:
    """Gatekeeper between inbound signals and grid creation."""

    def __init__(self, engine: "AdaptiveSmartGrid") -> None:
        self.engine = engine

    def rejection_reason(self, signal: TradingSignal) -> Optional[str]:
        """Return why ``signal`` cannot start a grid, or None when it can."""
        config = self.engine.config
        if signal.confidence < config.minimum_signal_confidence:
            return (
                f"confidence {signal.confidence} below minimum "
                f"{config.minimum_signal_confidence}"
            )

        active = self.engine.active_grids
        if len(active) >= config.max_concurrent_grids:
            return f"maximum of {config.max_concurrent_grids} concurrent grids reached"

        if any(grid.pair == signal.pair for grid in active.values()):
            return f"an active grid already trades {signal.pair}"
        return None

    def is_eligible(self, signal: TradingSignal) -> bool:
        return self.rejection_reason(signal) is None

    def ensure_eligible(self, signal: TradingSignal) -> None:
        validate_signal(signal)
        reason = self.rejection_reason(signal)
        if reason is not None:
            raise SignalRejectedError(f"Signal for {signal.pair} rejected: {reason}")

    async def accept(
        self,
        signal: TradingSignal,
        options: Optional[Mapping[str, Any]] = None,
    ) -> GridCreationResult:
        """Validate ``signal`` and build a grid from it."""
        self.ensure_eligible(signal)
        return await self.engine.create_grid_from_signal(signal, options)
