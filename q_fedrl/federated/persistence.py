"""Checkpoint persistence port and its implementations.

The session talks to storage only through :class:`PersistencePort`:
``save``/``load`` keep the latest checkpoint, ``export`` writes a
standalone copy and ``import_model`` reads one back asynchronously.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .serialization import deserialize_model, serialize_model

logger = logging.getLogger(__name__)


LoadCallback = Callable[[Dict[str, Any], Dict[str, Any]], Any]
ErrorCallback = Callable[[str], Any]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class PersistencePort(ABC):
    """Abstract checkpoint storage.

    Attributes:
        app_name: Prefix for checkpoint keys and export names.
    """

    def __init__(self, app_name: str = "q-fedrl"):
        self.app_name = app_name

    @property
    def key(self) -> str:
        """Storage key of the latest checkpoint."""
        return f"{self.app_name}-latest"

    @abstractmethod
    def save(self, model: Mapping[str, Sequence[float]], metadata: Optional[Dict[str, Any]] = None) -> bool:
        """Store ``model`` as the latest checkpoint."""

    @abstractmethod
    def load(self) -> Optional[Dict[str, Any]]:
        """Return ``{"model", "metadata"}`` for the latest checkpoint, or None."""

    @abstractmethod
    def export(self, model: Mapping[str, Sequence[float]], metadata: Optional[Dict[str, Any]] = None) -> bool:
        """Write a standalone copy of ``model``."""

    @abstractmethod
    async def import_model(
        self,
        on_load: LoadCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> bool:
        """Read an exported checkpoint and hand it to ``on_load``."""

    def has_checkpoint(self) -> bool:
        return self.load() is not None

    def _save_metadata(self, metadata: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        return {**(metadata or {}), "appName": self.app_name, "savedAt": _now()}

    def _export_metadata(self, metadata: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        return {**(metadata or {}), "appName": self.app_name, "exportedAt": _now()}

    def export_filename(self) -> str:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
        return f"{self.app_name}-{stamp}.json"

    @staticmethod
    def _deliver(
        text: Optional[str],
        on_load: LoadCallback,
        on_error: Optional[ErrorCallback],
    ) -> bool:
        checkpoint = deserialize_model(text) if text is not None else None
        if checkpoint is None:
            message = "Invalid model file"
            logger.error(message)
            if on_error is not None:
                on_error(message)
            return False
        on_load(checkpoint["model"], checkpoint["metadata"])
        return True


class InMemoryPersistence(PersistencePort):
    """Dictionary-backed store, used in tests and for throwaway sessions.

    ``exports`` records every exported (filename, json) pair; the most
    recent export (or a document staged with ``stage_import``) is what
    ``import_model`` reads.
    """

    def __init__(self, app_name: str = "q-fedrl"):
        super().__init__(app_name)
        self.store: Dict[str, str] = {}
        self.exports: List[Tuple[str, str]] = []
        self._staged: Optional[str] = None

    def save(self, model, metadata=None) -> bool:
        text = serialize_model(model, self._save_metadata(metadata))
        if text is None:
            return False
        self.store[self.key] = text
        return True

    def load(self) -> Optional[Dict[str, Any]]:
        text = self.store.get(self.key)
        if text is None:
            return None
        checkpoint = deserialize_model(text)
        if checkpoint is None:
            return None
        return {"model": checkpoint["model"], "metadata": checkpoint["metadata"]}

    def export(self, model, metadata=None) -> bool:
        text = serialize_model(model, self._export_metadata(metadata))
        if text is None:
            return False
        self.exports.append((self.export_filename(), text))
        return True

    def stage_import(self, text: str) -> None:
        """Queue a document for the next ``import_model`` call."""
        self._staged = text

    async def import_model(self, on_load, on_error=None) -> bool:
        if self._staged is not None:
            text, self._staged = self._staged, None
        elif self.exports:
            text = self.exports[-1][1]
        else:
            text = None
        await asyncio.sleep(0)
        return self._deliver(text, on_load, on_error)

    def clear(self) -> None:
        self.store.pop(self.key, None)


class JsonFilePersistence(PersistencePort):
    """Checkpoints stored as JSON files in a directory.

    The latest checkpoint lives at ``<directory>/<app_name>-latest.json``;
    exports get a timestamped filename next to it.
    """

    def __init__(self, directory: Union[str, Path] = "./checkpoints", app_name: str = "q-fedrl"):
        super().__init__(app_name)
        self.directory = Path(directory)
        self.import_path: Optional[Path] = None
        self.last_export_path: Optional[Path] = None

    @property
    def latest_path(self) -> Path:
        return self.directory / f"{self.key}.json"

    def _write(self, path: Path, text: Optional[str]) -> bool:
        if text is None:
            return False
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(text, encoding="utf-8")
        except OSError as exc:
            logger.error("Failed to write checkpoint %s: %s", path, exc)
            return False
        return True

    def save(self, model, metadata=None) -> bool:
        return self._write(self.latest_path, serialize_model(model, self._save_metadata(metadata)))

    def load(self) -> Optional[Dict[str, Any]]:
        if not self.latest_path.exists():
            return None
        try:
            text = self.latest_path.read_text(encoding="utf-8")
        except OSError as exc:
            logger.error("Failed to read checkpoint %s: %s", self.latest_path, exc)
            return None
        checkpoint = deserialize_model(text)
        if checkpoint is None:
            return None
        return {"model": checkpoint["model"], "metadata": checkpoint["metadata"]}

    def export(self, model, metadata=None) -> bool:
        path = self.directory / self.export_filename()
        ok = self._write(path, serialize_model(model, self._export_metadata(metadata)))
        if ok:
            self.last_export_path = path
            logger.info("Exported model to %s", path)
        return ok

    async def import_model(self, on_load, on_error=None, path: Optional[Union[str, Path]] = None) -> bool:
        source = Path(path) if path is not None else (self.import_path or self.last_export_path)
        if source is None:
            message = "No file selected for import"
            logger.error(message)
            if on_error is not None:
                on_error(message)
            return False
        try:
            text = await asyncio.to_thread(source.read_text, encoding="utf-8")
        except OSError as exc:
            message = f"Could not read {source}: {exc}"
            logger.error(message)
            if on_error is not None:
                on_error(message)
            return False
        return self._deliver(text, on_load, on_error)
