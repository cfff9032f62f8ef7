"""Whole-document persistence backends for the frame metadata and slideshow state."""

from __future__ import annotations

import json
import os
import tempfile
from abc import ABC, abstractmethod
from threading import RLock
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from .. import config, models

logger = config.logger

IMAGES_DOCUMENT = 'images'
COLLECTIONS_DOCUMENT = 'collections'
SLIDESHOW_DOCUMENT = 'slideshow-state'
DISPLAY_DOCUMENT = 'display-state'


class StorageError(RuntimeError):
    """Raised when a document could not be written."""
    pass


class DocumentBackend(ABC):
    """Stores named documents as opaque JSON text."""

    @abstractmethod
    def read(self, name: str) -> Optional[str]:
        """Return the raw payload, or None when the document does not exist."""
        raise NotImplementedError

    @abstractmethod
    def write(self, name: str, payload: str) -> None:
        """Replace the whole document; raise on failure."""
        raise NotImplementedError

    def describe(self) -> str:
        return self.__class__.__name__


class SqlDocumentBackend(DocumentBackend):
    """Documents kept as rows of the SQLite ``documents`` table."""

    def read(self, name: str) -> Optional[str]:
        return models.get_document(name)

    def write(self, name: str, payload: str) -> None:
        models.save_document(name, payload)

    def describe(self) -> str:
        return f"sqlite:{config.DATABASE_PATH}"


class FileDocumentBackend(DocumentBackend):
    """Documents kept as ``<name>.json`` files inside a data directory."""

    def __init__(self, directory: str):
        self.directory = directory

    def path_for(self, name: str) -> str:
        return os.path.join(self.directory, f"{name}.json")

    def read(self, name: str) -> Optional[str]:
        path = self.path_for(name)
        if not os.path.exists(path):
            return None
        with open(path, 'r', encoding='utf-8') as handle:
            return handle.read()

    def write(self, name: str, payload: str) -> None:
        os.makedirs(self.directory, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(prefix=f".{name}.", suffix='.tmp', dir=self.directory)
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as handle:
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(temp_path, self.path_for(name))
        except BaseException:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise

    def describe(self) -> str:
        return f"json:{self.directory}"


class MemoryDocumentBackend(DocumentBackend):
    """Process-local documents, used by tests and throwaway runs."""

    def __init__(self, documents: Optional[Dict[str, str]] = None):
        self.documents: Dict[str, str] = dict(documents or {})
        self._lock = RLock()

    def read(self, name: str) -> Optional[str]:
        with self._lock:
            return self.documents.get(name)

    def write(self, name: str, payload: str) -> None:
        with self._lock:
            self.documents[name] = payload


def create_backend(kind: Optional[str] = None) -> DocumentBackend:
    """Build the backend named by ``STORAGE_BACKEND``."""
    selected = (kind or config.STORAGE_BACKEND or 'sqlite').strip().lower()
    if selected == 'json':
        return FileDocumentBackend(config.DATA_DIR)
    if selected == 'memory':
        return MemoryDocumentBackend()
    if selected != 'sqlite':
        logger.warning('[Store] Unknown storage backend %s; using sqlite', selected)
    return SqlDocumentBackend()


def load_document(backend: DocumentBackend, name: str, default: Any) -> Any:
    """Decode a document, falling back to ``default`` when it is missing or unreadable."""
    try:
        payload = backend.read(name)
    except (OSError, SQLAlchemyError) as exc:
        logger.warning('[Store] Failed to read %s document: %s', name, exc)
        return default
    if payload is None:
        return default
    try:
        return json.loads(payload)
    except (TypeError, ValueError) as exc:
        logger.warning('[Store] Corrupt %s document ignored: %s', name, exc)
        return default


def save_document(backend: DocumentBackend, name: str, data: Any) -> None:
    """Serialize and persist a whole document, surfacing failures as StorageError."""
    payload = json.dumps(data, indent=2)
    try:
        backend.write(name, payload)
    except (OSError, SQLAlchemyError) as exc:
        logger.error('[Store] Failed to write %s document: %s', name, exc)
        raise StorageError(f'failed to write {name}: {exc}') from exc
