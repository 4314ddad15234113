"""
YAML Configuration File Support

Handles loading and saving adaptive grid configurations to/from YAML files.

Features:
- Load config from YAML into a validated AdaptiveGridConfig
- Save config to YAML
- Decimal serialization
- Config merging (file + CLI overrides)
"""

from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import ValidationError

from strategies.implementations.adaptive_grid.config import AdaptiveGridConfig

CONFIG_VERSION = "1.0"
MODULE_NAME = "adaptive-smart-grid"


# ============================================================================
# YAML Custom Representers (for Decimal serialization)
# ============================================================================

def decimal_representer(dumper, data):
    """Custom representer for Decimal type."""
    return dumper.represent_scalar('tag:yaml.org,2002:float', str(data))


yaml.add_representer(Decimal, decimal_representer)


# ============================================================================
# YAML Config Operations
# ============================================================================

def save_config_to_yaml(config: AdaptiveGridConfig, file_path: Path) -> None:
    """
    Save configuration to YAML file.

    Args:
        config: Module configuration
        file_path: Path to save to
    """
    full_config = {
        "module": MODULE_NAME,
        "created_at": datetime.now().isoformat(),
        "version": CONFIG_VERSION,
        "config": config.model_dump(),
    }

    file_path = Path(file_path)
    file_path.parent.mkdir(parents=True, exist_ok=True)
    with open(file_path, 'w') as f:
        yaml.dump(
            full_config,
            f,
            default_flow_style=False,
            sort_keys=False,
            allow_unicode=True,
            indent=2
        )


def load_config_from_yaml(file_path: Path) -> Dict[str, Any]:
    """
    Load a raw configuration document from YAML.

    Returns:
        Dictionary with 'module', 'config' and 'metadata' keys

    Raises:
        FileNotFoundError: If file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If config structure is invalid
    """
    file_path = Path(file_path)
    if not file_path.exists():
        raise FileNotFoundError(f"Config file not found: {file_path}")

    with open(file_path, 'r') as f:
        full_config = yaml.safe_load(f)

    if not isinstance(full_config, dict):
        raise ValueError("Invalid config file: must be a YAML dictionary")

    if "config" not in full_config:
        raise ValueError("Invalid config file: missing 'config' field")

    module = full_config.get("module", MODULE_NAME)
    if module != MODULE_NAME:
        raise ValueError(f"Invalid config file: unsupported module '{module}'")

    return {
        "module": module,
        "config": full_config["config"] or {},
        "metadata": {
            "created_at": full_config.get("created_at"),
            "version": full_config.get("version", CONFIG_VERSION)
        }
    }


def merge_configs(base_config: Dict, overrides: Dict) -> Dict:
    """
    Merge two configurations (for CLI override support).

    Args:
        base_config: Base configuration (from file)
        overrides: Override values (from CLI args)

    Returns:
        Merged configuration
    """
    merged = base_config.copy()

    for key, value in overrides.items():
        if value is not None:  # Only override if value is provided
            merged[key] = value

    return merged


def load_grid_config_from_yaml(
    file_path: Path,
    overrides: Optional[Dict[str, Any]] = None,
) -> AdaptiveGridConfig:
    """
    Load and validate an adaptive grid configuration.

    Raises:
        ValueError: If the file is malformed or a value fails validation
    """
    loaded = load_config_from_yaml(file_path)
    values = merge_configs(loaded["config"], overrides or {})
    try:
        return AdaptiveGridConfig(**values)
    except ValidationError as exc:
        raise ValueError(f"Invalid adaptive grid config in {file_path}:\n{exc}") from exc


def validate_config_file(file_path: Path) -> tuple[bool, Optional[str]]:
    """
    Validate a config file.

    Returns:
        (is_valid, error_message)
    """
    try:
        load_grid_config_from_yaml(file_path)
    except (OSError, ValueError, yaml.YAMLError) as e:
        return False, str(e)
    return True, None


def create_example_config(file_path: Path = Path("configs/example_adaptive_grid.yml")) -> Path:
    """Write the default configuration as a starting template."""
    save_config_to_yaml(AdaptiveGridConfig(), file_path)
    return file_path
