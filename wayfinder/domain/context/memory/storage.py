from abc import ABC, abstractmethod
from typing import Dict, Any, Iterable
from pathlib import Path
import asyncio
import copy
import json
import os
import tempfile

import structlog

from wayfinder.domain.errors import PersistenceError

logger = structlog.get_logger(__name__)


class KeyValueStorage(ABC):
    """Durable key-value persistence collaborator"""

    @abstractmethod
    async def get(self, keys: Iterable[str]) -> Dict[str, Any]:
        """Return the stored values for the keys that exist"""
        pass

    @abstractmethod
    async def set(self, items: Dict[str, Any]) -> None:
        """Write every item, replacing existing values"""
        pass


class InMemoryStorage(KeyValueStorage):
    """Process-local storage for tests and ephemeral runs"""

    def __init__(self, initial: Dict[str, Any] = None):
        self.data: Dict[str, Any] = copy.deepcopy(initial or {})

    async def get(self, keys: Iterable[str]) -> Dict[str, Any]:
        return {key: copy.deepcopy(self.data[key]) for key in keys if key in self.data}

    async def set(self, items: Dict[str, Any]) -> None:
        for key, value in items.items():
            self.data[key] = copy.deepcopy(value)


class JsonFileStorage(KeyValueStorage):
    """All keys in one JSON document, replaced atomically on every write"""

    def __init__(self, path: str):
        self.path = Path(path)
        # Serializes file access only; callers above this layer are not locked
        self._lock = asyncio.Lock()

    async def get(self, keys: Iterable[str]) -> Dict[str, Any]:
        async with self._lock:
            document = await asyncio.to_thread(self._read)
        return {key: document[key] for key in keys if key in document}

    async def set(self, items: Dict[str, Any]) -> None:
        async with self._lock:
            document = await asyncio.to_thread(self._read)
            document.update(items)
            await asyncio.to_thread(self._write, document)

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                document = json.load(f)
        except (OSError, ValueError) as e:
            raise PersistenceError(f"Failed to read {self.path}: {e}") from e
        if not isinstance(document, dict):
            raise PersistenceError(f"{self.path} does not hold a JSON object")
        return document

    def _write(self, document: Dict[str, Any]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=str(self.path.parent), prefix=f".{self.path.name}.")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(document, f)
                os.replace(tmp_path, self.path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(f"Failed to write {self.path}: {e}") from e

        logger.debug("Storage snapshot written", path=str(self.path), keys=sorted(document.keys()))
