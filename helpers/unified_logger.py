"""
Unified logging for the smart grid service.

Every component (gateway adapters, trading modules, the control API, core
plumbing) logs through the same loguru sinks so records line up regardless
of where they come from:

- coloured console output with the source location (module:function:line)
- a shared history file and a per-session file under the log directory
- a component identifier bound to every record (e.g. ``STRATEGY:ADAPTIVE_SMART_GRID``)

The log directory defaults to ``<project>/logs`` and can be moved with the
``SMART_GRID_LOG_DIR`` environment variable.
"""

import os
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from loguru import logger as _logger

CONSOLE_SOURCE_WIDTH = 50


def resolve_log_dir() -> Path:
    """Return (and create) the directory that receives log files."""
    configured = os.getenv("SMART_GRID_LOG_DIR")
    logs_dir = Path(configured) if configured else Path(__file__).parent.parent / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    return logs_dir


def _shorten_module(module: str, max_width: int) -> str:
    if len(module) <= max_width:
        return module

    parts = module.split(".")
    for idx in range(len(parts) - 2, -1, -1):
        candidate = ".".join(parts[idx:])
        if len(candidate) + 3 <= max_width:
            return f"...{candidate}"
    tail = parts[-1]
    return f"...{tail[-(max_width - 3):]}" if len(tail) + 3 > max_width else f"...{tail}"


def _attach_source(record) -> bool:
    """Right-align ``module:function:line`` so messages start in one column."""
    module_name = record.get("module") or record.get("name", "")
    function_name = record.get("function", "")
    suffix = f":{function_name}:{record.get('line', 0)}" if function_name else f":{record.get('line', 0)}"

    available = CONSOLE_SOURCE_WIDTH - len(suffix)
    module_display = "..." if available <= 3 else _shorten_module(module_name, available)
    record["extra"]["short_name"] = f"{module_display}{suffix}".rjust(CONSOLE_SOURCE_WIDTH)
    return True


def _ensure_component(record) -> bool:
    if "component_id" not in record["extra"]:
        record["extra"]["component_id"] = "UNKNOWN"
    return True


FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss} | "
    "{level:<8} | "
    "{extra[component_id]:<40} | "
    "{message}"
)


class UnifiedLogger:
    """
    Component-scoped wrapper around the shared loguru logger.

    Sinks are installed once per process; each instance only binds its
    component identifier. ``.log(message, level)`` is kept alongside the
    level methods so call sites can pass the level as data.
    """

    def __init__(
        self,
        component_type: str,
        component_name: str,
        context: Optional[Dict[str, Any]] = None,
        log_to_console: bool = True,
        log_level: str = "INFO",
    ):
        self.component_type = component_type.upper()
        self.component_name = component_name.upper()
        self.context = context or {}
        self.log_level = log_level.upper()

        self.component_id = f"{self.component_type}:{self.component_name}"
        if self.context:
            context_str = ":".join(f"{k}={v}" for k, v in self.context.items())
            self.component_id = f"{self.component_id}:{context_str}"

        self._setup_sinks(log_to_console)
        self._logger = _logger.bind(component_id=self.component_id)

    def _setup_sinks(self, log_to_console: bool) -> None:
        if not hasattr(_logger, "_smart_grid_console_setup"):
            _logger.remove()
            if log_to_console:
                console_format = (
                    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
                    "<level>{level: <8}</level> | "
                    "<cyan>{extra[short_name]}</cyan> | "
                    "<level>{message}</level>"
                )
                _logger.add(
                    sys.stdout,
                    format=console_format,
                    level=self.log_level,
                    colorize=True,
                    filter=lambda record: record["extra"].get("component_id") and _attach_source(record),
                    backtrace=True,
                    diagnose=False,
                )
            _logger._smart_grid_console_setup = True

        if not hasattr(_logger, "_smart_grid_files_setup"):
            logs_dir = resolve_log_dir()
            session_ts = datetime.now().strftime("%Y%m%d_%H%M%S")
            for target in (logs_dir / "unified_history.log", logs_dir / f"session_{session_ts}.log"):
                _logger.add(
                    str(target),
                    format=FILE_FORMAT,
                    level="DEBUG",
                    filter=_ensure_component,
                    backtrace=False,
                    diagnose=False,
                    enqueue=True,
                    catch=True,
                )
            _logger._smart_grid_files_setup = True

    def debug(self, message: str, **kwargs):
        self._logger.opt(depth=1).debug(message, **kwargs)

    def info(self, message: str, **kwargs):
        self._logger.opt(depth=1).info(message, **kwargs)

    def warning(self, message: str, **kwargs):
        self._logger.opt(depth=1).warning(message, **kwargs)

    def error(self, message: str, **kwargs):
        self._logger.opt(depth=1).error(message, **kwargs)

    def critical(self, message: str, **kwargs):
        self._logger.opt(depth=1).critical(message, **kwargs)

    def exception(self, message: str, **kwargs):
        """Log at ERROR level with the active exception's traceback attached."""
        self._logger.opt(depth=1, exception=True).error(message, **kwargs)

    def log(self, message: str, level: str = "INFO", **kwargs):
        """Log ``message`` at a level given by name (DEBUG … CRITICAL)."""
        level = level.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            level = "INFO"
        self._logger.opt(depth=1).log(level, message, **kwargs)

    def with_context(self, **context) -> "UnifiedLogger":
        """Return a logger for the same component with extra context bound."""
        return UnifiedLogger(
            component_type=self.component_type.lower(),
            component_name=self.component_name.lower(),
            context={**self.context, **context},
            log_level=self.log_level,
        )

    def flush(self):
        """Push a marker through the enqueued sinks and flush std streams."""
        try:
            self._logger.opt(depth=1).debug("LOG_FLUSH_MARKER")
            time.sleep(0.05)
            sys.stdout.flush()
            sys.stderr.flush()
        except Exception:
            pass


def get_logger(
    component_type: str,
    component_name: str,
    context: Optional[Dict[str, Any]] = None,
    log_to_console: bool = True,
    log_level: Optional[str] = None,
) -> UnifiedLogger:
    """
    Create a component logger.

    Args:
        component_type: Type of component (module, strategy, service, core)
        component_name: Name of the specific component
        context: Extra identifiers to bind (pair, grid id, ...)
        log_to_console: Whether the console sink should be installed
        log_level: Minimum console level (defaults to ``LOG_LEVEL`` or INFO)
    """
    if log_level is None:
        log_level = os.getenv("LOG_LEVEL", "INFO")

    return UnifiedLogger(
        component_type=component_type,
        component_name=component_name,
        context=context,
        log_to_console=log_to_console,
        log_level=log_level,
    )


def get_strategy_logger(strategy_name: str, **context) -> UnifiedLogger:
    """Logger for trading modules and strategies."""
    return get_logger("strategy", strategy_name, context)


def get_service_logger(service_name: str, **context) -> UnifiedLogger:
    """Logger for long-running services (control API, launcher)."""
    return get_logger("service", service_name, context)


def get_core_logger(module_name: str, **context) -> UnifiedLogger:
    """Logger for core plumbing (event bus, registry, persistence)."""
    return get_logger("core", module_name, context)
