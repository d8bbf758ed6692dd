"""
Migration Checkpoints
=====================

Per-stream cursors that let a multi-hour migration resume after an
interruption without reprocessing completed items.

Keys are namespaced by the (source project, destination project) pair:

    mig_checkpoint_<src>_<dst>                    marker (creation time, ms)
    mig_checkpoint_<src>_<dst>_cursor_<stream>    last processed item ID

Stream keys look like ``doc_<collectionId>`` or ``file_<bucketId>``.
The store itself is injected, so the executor does not care whether the
cursors live in memory, a JSON file, or anything else.
"""

import json
import logging
import os
import tempfile
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

KEY_PREFIX = "mig_checkpoint"


class KeyValueStore(ABC):
    """Minimal durable string map."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]: ...

    @abstractmethod
    def set(self, key: str, value: str) -> None: ...

    @abstractmethod
    def delete(self, key: str) -> None: ...

    @abstractmethod
    def keys(self) -> List[str]: ...

    def delete_prefix(self, prefix: str) -> int:
        """Delete every key starting with prefix. Returns the number removed."""
        doomed = [k for k in self.keys() if k.startswith(prefix)]
        for key in doomed:
            self.delete(key)
        return len(doomed)


class MemoryKeyValueStore(KeyValueStore):
    """In-process store (tests, dry runs)."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self.data: Dict[str, str] = dict(initial or {})

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value):
        self.data[key] = value

    def delete(self, key):
        self.data.pop(key, None)

    def keys(self):
        return list(self.data.keys())


class JsonFileKeyValueStore(KeyValueStore):
    """
    Store persisted to a JSON file.

    Every write rewrites the file through a temporary file and an atomic
    rename, so a crash never leaves a half-written checkpoint behind.
    """

    def __init__(self, filepath: Path):
        self.filepath = Path(filepath).expanduser()
        self.data: Dict[str, str] = self._load()

    def _load(self) -> Dict[str, str]:
        if not self.filepath.exists():
            return {}
        try:
            with open(self.filepath, 'r') as f:
                data = json.load(f)
        except json.JSONDecodeError:
            logger.warning(f"Checkpoint file is corrupt, starting empty: {self.filepath}")
            return {}
        return {str(k): str(v) for k, v in data.items()} if isinstance(data, dict) else {}

    def _save(self) -> None:
        self.filepath.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(self.filepath.parent), prefix='.checkpoint_')
        try:
            with os.fdopen(fd, 'w') as f:
                json.dump(self.data, f, indent=2)
            os.replace(tmp_path, self.filepath)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value):
        self.data[key] = value
        self._save()

    def delete(self, key):
        if key in self.data:
            del self.data[key]
            self._save()

    def keys(self):
        return list(self.data.keys())

    def delete_prefix(self, prefix):
        doomed = [k for k in self.data if k.startswith(prefix)]
        for key in doomed:
            del self.data[key]
        if doomed:
            self._save()
        return len(doomed)


def document_stream_key(collection_id: str) -> str:
    return f"doc_{collection_id}"


def file_stream_key(bucket_id: str) -> str:
    return f"file_{bucket_id}"


class CheckpointStore:
    """Cursors of one (source, destination) migration pair."""

    def __init__(self, store: KeyValueStore, source_project_id: str, dest_project_id: str):
        self.store = store
        self.key = f"{KEY_PREFIX}_{source_project_id}_{dest_project_id}"
        self.cursor_prefix = f"{self.key}_cursor_"

    def has_checkpoint(self) -> bool:
        return bool(self.store.get(self.key))

    def save_cursor(self, stream_key: str, cursor: str) -> None:
        """Record the last processed item of a stream and mark the checkpoint as existing."""
        self.store.set(f"{self.cursor_prefix}{stream_key}", cursor)
        if not self.store.get(self.key):
            self.store.set(self.key, str(int(time.time() * 1000)))

    def get_cursor(self, stream_key: str) -> Optional[str]:
        return self.store.get(f"{self.cursor_prefix}{stream_key}") or None

    def cursors(self) -> Dict[str, str]:
        """All saved cursors, by stream key."""
        result = {}
        for key in self.store.keys():
            if key.startswith(self.cursor_prefix):
                result[key[len(self.cursor_prefix):]] = self.store.get(key) or ""
        return result

    def created_at(self) -> Optional[float]:
        """Marker timestamp in seconds, if a checkpoint exists."""
        raw = self.store.get(self.key)
        try:
            return int(raw) / 1000 if raw else None
        except ValueError:
            return None

    def clear(self) -> None:
        """Remove the marker and every cursor of this pair."""
        self.store.delete(self.key)
        removed = self.store.delete_prefix(self.cursor_prefix)
        logger.debug(f"Cleared checkpoint {self.key} ({removed} cursors)")
