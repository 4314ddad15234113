#!/usr/bin/env python3
"""
Smart Grid Service - Config-driven launcher.

Usage:
    python runbot.py --gateway my_exchange.gateway:MyGateway [--config configs/adaptive_grid.yml] [--env-file .env]

Generate a starting config via:
    python runbot.py --write-example-config configs/adaptive_grid.yml
"""

import argparse
import importlib
import os
import sys
from pathlib import Path

import dotenv
import uvicorn

from exchange_clients.base import BaseExchangeGateway
from helpers.event_bus import EventBus
from helpers.unified_logger import get_service_logger
from strategies import AdaptiveGridConfig, AdaptiveSmartGrid, ModuleContext, ModuleRegistry
from strategies.control.server import create_app
from trading_config import ServiceSettings, create_example_config, load_grid_config_from_yaml


def parse_arguments():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Run the adaptive smart grid service and its control API."
    )

    parser.add_argument(
        "--config",
        "-c",
        type=str,
        default=None,
        help="Path to the adaptive grid YAML configuration (defaults apply when omitted).",
    )

    parser.add_argument(
        "--env-file",
        type=str,
        default=".env",
        help="Path to the environment file (default: .env).",
    )

    parser.add_argument(
        "--gateway",
        "-g",
        type=str,
        default=None,
        help="Exchange gateway class as 'package.module:ClassName'.",
    )

    parser.add_argument(
        "--log-level",
        "-l",
        type=str,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (overrides SMART_GRID_LOG_LEVEL).",
    )

    parser.add_argument(
        "--write-example-config",
        type=str,
        default=None,
        metavar="PATH",
        help="Write a config with default values to PATH and exit.",
    )

    return parser.parse_args()


def load_gateway(target: str) -> BaseExchangeGateway:
    """Instantiate the gateway named by ``module:Class``."""
    module_name, _, class_name = target.partition(":")
    if not module_name or not class_name:
        raise ValueError(f"Gateway must be given as 'module:Class', got '{target}'")

    gateway_class = getattr(importlib.import_module(module_name), class_name)
    if not isinstance(gateway_class, type) or not issubclass(gateway_class, BaseExchangeGateway):
        raise ValueError(f"{target} is not a BaseExchangeGateway implementation")
    return gateway_class()


def main():
    """Main entry point."""
    args = parse_arguments()

    if args.write_example_config:
        path = create_example_config(Path(args.write_example_config))
        print(f"✓ Example config written to: {path}")
        return

    env_path = Path(args.env_file)
    if env_path.exists():
        dotenv.load_dotenv(env_path)

    settings = ServiceSettings()
    if args.log_level:
        settings = settings.model_copy(update={"log_level": args.log_level})
    # UnifiedLogger reads LOG_LEVEL when the first logger is created
    os.environ["LOG_LEVEL"] = settings.log_level
    logger = get_service_logger("launcher")

    config_path = Path(args.config) if args.config else settings.config_file
    if config_path is not None:
        try:
            config = load_grid_config_from_yaml(config_path)
        except (OSError, ValueError) as exc:
            print(f"Error: Invalid config file: {exc}")
            sys.exit(1)
        logger.info(f"Loaded configuration from {config_path}")
    else:
        config = AdaptiveGridConfig()
        logger.info("No config file given, using defaults")

    gateway_target = args.gateway or os.getenv("SMART_GRID_GATEWAY")
    if not gateway_target:
        print("Error: an exchange gateway is required (--gateway or SMART_GRID_GATEWAY)")
        sys.exit(1)
    try:
        gateway = load_gateway(gateway_target)
    except (ImportError, AttributeError, TypeError, ValueError) as exc:
        print(f"Error: Could not load gateway '{gateway_target}': {exc}")
        sys.exit(1)

    registry = ModuleRegistry()
    registry.add(AdaptiveSmartGrid(config))
    context = ModuleContext(
        event_bus=EventBus(),
        gateway=gateway,
        data_dir=settings.data_dir,
        debug_errors=settings.debug_errors,
    )
    app = create_app(registry, context)

    print("\n" + "=" * 70)
    print("  Starting Smart Grid Service")
    print("=" * 70)
    print(f"  Exchange: {gateway.get_exchange_name()}")
    print(f"  Data dir: {settings.data_dir}")
    print(f"  API:      http://{settings.api_host}:{settings.api_port}/api/adaptive-grid")
    print("=" * 70 + "\n")

    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_level="warning",
        access_log=False,
    )


if __name__ == "__main__":
    main()
