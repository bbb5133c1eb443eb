"""Key-value cache over a JSON file.

Reads are always served from memory. Writes update memory first and then
flush the whole file, in the default executor when an event loop is
running. A failed load or flush is logged and the in-memory value is kept,
so gameplay never blocks on persistence.
"""
import asyncio
import json
import logging
import os
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union


logger = logging.getLogger(__name__)


class JsonStore:
    """In-memory dict backed by one JSON file (or nothing when path is None)."""

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self.path = Path(path) if path is not None else None
        self._data: Dict[str, Any] = {}
        self.flush_failures = 0
        self._seq = 0
        self._written_seq = 0
        self._write_lock = threading.Lock()
        self._load()

    def _load(self) -> None:
        if self.path is None or not self.path.exists():
            return
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("Could not load %s, starting empty: %s", self.path, e)
            return
        if isinstance(data, dict):
            self._data = data
        else:
            logger.warning("Ignoring %s: expected a JSON object", self.path)

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Store a value in memory and schedule a flush of the whole file.

        Args:
            key: Usually a participant identity
            value: Any JSON-serializable value
        """
        self._data[key] = value
        self._schedule_flush()

    def update(self, key: str, fn: Callable[[Any], Any], default: Any = None) -> Any:
        """Replace the value with ``fn(old)``.

        Args:
            key: Entry to update
            fn: Maps the old value to the new one
            default: Old value passed to ``fn`` when the key is missing

        Returns:
            The new value
        """
        value = fn(self._data.get(key, default))
        self.set(key, value)
        return value

    def keys(self) -> List[str]:
        return list(self._data)

    def items(self):
        return list(self._data.items())

    def _schedule_flush(self) -> None:
        if self.path is None:
            return
        self._seq += 1
        seq = self._seq
        snapshot = json.dumps(self._data, indent=2, ensure_ascii=False)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._write(seq, snapshot)
            return
        loop.run_in_executor(None, self._write, seq, snapshot)

    def _write(self, seq: int, snapshot: str) -> None:
        """Write ``snapshot`` unless a newer one is already on disk.

        Args:
            seq: Sequence number taken when the snapshot was made.
            snapshot: Serialized contents of the whole store.
        """
        with self._write_lock:
            if seq <= self._written_seq:
                return
            try:
                os.makedirs(self.path.parent, exist_ok=True)
                tmp = self.path.with_suffix(self.path.suffix + ".tmp")
                with open(tmp, 'w', encoding='utf-8') as f:
                    f.write(snapshot)
                os.replace(tmp, self.path)
                self._written_seq = seq
            except OSError as e:
                self.flush_failures += 1
                logger.warning("Could not save %s, keeping in-memory value: %s", self.path, e)


def open_store(data_dir: Optional[Union[str, Path]], name: str) -> JsonStore:
    """Open the store file for ``name``.

    Args:
        data_dir: Directory for store files, or None to keep data in memory
        name: Store name; the file is ``<data_dir>/<name>.json``

    Returns:
        A JsonStore, memory-only when ``data_dir`` is None
    """
    if data_dir is None:
        return JsonStore()
    return JsonStore(Path(data_dir) / f"{name}.json")
