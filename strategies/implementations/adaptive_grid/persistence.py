"""
Disk snapshots of active grids and grid history.

Two JSON documents live in the data directory:

- ``asg_grids.json``: object keyed by grid id (active grids)
- ``asg_history.json``: array of completed grids

Each file is rewritten whole through a uniquely named temp file and
``os.replace`` so a crash mid-write never leaves a truncated document behind.
Saves are serialized: snapshots land on disk in the order they were taken.
"""

from __future__ import annotations

import asyncio
import json
import os
import tempfile
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .models import Grid

GRIDS_FILENAME = "asg_grids.json"
HISTORY_FILENAME = "asg_history.json"


class GridPersistenceStore:
    """Save/load grid state. Failures are logged, never raised."""

    def __init__(self, data_dir: Path, logger) -> None:
        self.data_dir = Path(data_dir)
        self.logger = logger
        self._save_lock = asyncio.Lock()

    @property
    def grids_path(self) -> Path:
        return self.data_dir / GRIDS_FILENAME

    @property
    def history_path(self) -> Path:
        return self.data_dir / HISTORY_FILENAME

    def ensure_data_dir(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------ #
    # Save
    # ------------------------------------------------------------------ #
    async def save(self, active_grids: Dict[str, Grid], history: List[Grid]) -> bool:
        """Snapshot state to disk. Returns False when a write failed."""
        async with self._save_lock:
            grids_doc = {grid_id: grid.to_dict() for grid_id, grid in active_grids.items()}
            history_doc = [grid.to_dict() for grid in history]
            try:
                await asyncio.to_thread(self._write_documents, grids_doc, history_doc)
            except (OSError, TypeError, ValueError) as exc:
                self.logger.error(f"Failed to persist grid state to {self.data_dir}: {exc}")
                return False
        return True

    def _write_documents(self, grids_doc: dict, history_doc: list) -> None:
        self.ensure_data_dir()
        self._atomic_write(self.grids_path, grids_doc)
        self._atomic_write(self.history_path, history_doc)

    @staticmethod
    def _atomic_write(path: Path, document) -> None:
        with tempfile.NamedTemporaryFile(
            "w",
            encoding="utf-8",
            dir=path.parent,
            prefix=f"{path.name}.",
            suffix=".tmp",
            delete=False,
        ) as handle:
            tmp = Path(handle.name)
            try:
                json.dump(document, handle, indent=2)
                handle.flush()
                os.fsync(handle.fileno())
            except BaseException:
                handle.close()
                tmp.unlink(missing_ok=True)
                raise
        try:
            os.replace(tmp, path)
        except OSError:
            tmp.unlink(missing_ok=True)
            raise

    # ------------------------------------------------------------------ #
    # Load
    # ------------------------------------------------------------------ #
    async def load(self) -> Tuple[Dict[str, Grid], List[Grid]]:
        """Return ``(active_grids, history)``; missing or corrupt files load as empty."""
        return await asyncio.to_thread(self._read_documents)

    def _read_documents(self) -> Tuple[Dict[str, Grid], List[Grid]]:
        grids_doc = self._read_json(self.grids_path, {})
        history_doc = self._read_json(self.history_path, [])

        active: Dict[str, Grid] = {}
        if isinstance(grids_doc, dict):
            for grid_id, payload in grids_doc.items():
                grid = self._decode(payload)
                if grid is not None:
                    active[grid_id] = grid

        history: List[Grid] = []
        if isinstance(history_doc, list):
            for payload in history_doc:
                grid = self._decode(payload)
                if grid is not None and grid.id not in active:
                    history.append(grid)

        return active, history

    def _read_json(self, path: Path, default):
        if not path.exists():
            return default
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            self.logger.error(f"Failed to load {path}: {exc}")
            return default

    def _decode(self, payload) -> Optional[Grid]:
        try:
            return Grid.from_dict(payload)
        except (KeyError, TypeError, ValueError, ArithmeticError) as exc:
            grid_id = payload.get("id") if isinstance(payload, dict) else None
            self.logger.warning(f"Skipping unreadable grid record {grid_id}: {exc}")
            return None
