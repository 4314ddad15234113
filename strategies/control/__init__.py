"""
Control API hosting the trading modules' HTTP routes.
"""

from .server import create_app

__all__ = ['create_app']
