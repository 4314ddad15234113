"""Pytest configuration for the smart grid service tests."""

import os
import sys
import tempfile
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Keep log files and the grid event journal out of the source tree.
os.environ.setdefault("SMART_GRID_LOG_DIR", tempfile.mkdtemp(prefix="smart_grid_logs_"))

pytest_plugins = ["pytest_asyncio"]
