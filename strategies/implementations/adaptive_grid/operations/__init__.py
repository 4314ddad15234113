"""
Helper operations for the adaptive grid.
"""

from .open_position import GridOrderSubmitter, GridPositionOpener
from .close_position import GridPositionCloser

__all__ = [
    "GridOrderSubmitter",
    "GridPositionOpener",
    "GridPositionCloser",
]
