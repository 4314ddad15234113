"""
Trading Configuration Management Module

Provides service settings and YAML config file handling for trading modules.

Main Components:
- settings: environment / .env backed service settings
- config_yaml: YAML file loading, saving, and validation utilities
"""

from .settings import ServiceSettings
from .config_yaml import (
    save_config_to_yaml,
    load_config_from_yaml,
    load_grid_config_from_yaml,
    validate_config_file,
    merge_configs,
    create_example_config
)

__all__ = [
    'ServiceSettings',
    'save_config_to_yaml',
    'load_config_from_yaml',
    'load_grid_config_from_yaml',
    'validate_config_file',
    'merge_configs',
    'create_example_config'
]
