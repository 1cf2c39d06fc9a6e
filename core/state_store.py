"""
State Persistence for Sentinel
"""

import json
import logging
import asyncio
import os
import tempfile
from pathlib import Path
from threading import Lock
from typing import Any, Dict

logger = logging.getLogger('sentinel.core.state_store')


class StateStore:
    """
    JSON document store keyed by name, one file per key under ``state_dir``.

    Writes go through a temporary file and ``os.replace`` so a crash never
    leaves a half-written document. The sync methods are guarded by a
    per-key lock; the async wrappers run them in a worker thread.
    """

    def __init__(self, state_dir: Path):
        self.state_dir = Path(state_dir)
        self._locks: Dict[str, Lock] = {}
        self._global_lock = Lock()

    def load(self, key: str, default: Any = None) -> Any:
        path = self._path(key)
        with self._get_lock(key):
            if not path.exists():
                return default
            try:
                with open(path, 'r', encoding='utf-8') as f:
                    return json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                logger.error(f"Failed to load state document {path}: {e}")
                return default

    def save(self, key: str, data: Any) -> None:
        path = self._path(key)
        with self._get_lock(key):
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{key}.", suffix=".tmp", dir=str(path.parent))
            try:
                with os.fdopen(fd, 'w', encoding='utf-8') as f:
                    json.dump(data, f, indent=2, default=str)
                os.replace(tmp_name, path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        logger.debug(f"Saved state document {key}")

    async def load_async(self, key: str, default: Any = None) -> Any:
        return await asyncio.to_thread(self.load, key, default)

    async def save_async(self, key: str, data: Any) -> None:
        await asyncio.to_thread(self.save, key, data)

    def _path(self, key: str) -> Path:
        return self.state_dir / f"{key}.json"

    def _get_lock(self, key: str) -> Lock:
        with self._global_lock:
            if key not in self._locks:
                self._locks[key] = Lock()
            return self._locks[key]

