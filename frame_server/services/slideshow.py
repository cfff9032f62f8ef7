"""Persisted slideshow playback state shared by every poller."""

from __future__ import annotations

from dataclasses import dataclass
from threading import RLock
from typing import Any, Dict, Optional

from .. import config
from .documents import SLIDESHOW_DOCUMENT, DocumentBackend, load_document, save_document

logger = config.logger


@dataclass
class SlideshowState:
    current_image_id: Optional[str] = None
    duration: int = config.DEFAULT_DURATION_MS
    active_collection_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'currentImageId': self.current_image_id,
            'duration': self.duration,
            'activeCollectionId': self.active_collection_id
        }

    @classmethod
    def defaults(cls) -> SlideshowState:
        return cls(duration=config.DEFAULT_DURATION_MS)

    @classmethod
    def from_dict(cls, data: Any) -> SlideshowState:
        state = cls.defaults()
        if not isinstance(data, dict):
            return state
        current = data.get('currentImageId')
        state.current_image_id = str(current) if current else None
        collection = data.get('activeCollectionId')
        state.active_collection_id = str(collection) if collection else None
        duration = data.get('duration')
        if isinstance(duration, int) and not isinstance(duration, bool) and duration >= config.MIN_DURATION_MS:
            state.duration = duration
        elif duration is not None:
            logger.warning('[Slideshow] Ignoring invalid persisted duration %r', duration)
        return state


def validate_duration(value: Any) -> int:
    """Return ``value`` as a duration in milliseconds or raise ValueError."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError('duration must be an integer number of milliseconds')
    if value < config.MIN_DURATION_MS:
        raise ValueError(f'duration must be at least {config.MIN_DURATION_MS} ms')
    return value


class SlideshowStateManager:
    """Read-modify-write access to the singleton slideshow record.

    Every setter reloads the whole record, changes one field and rewrites the
    document under a lock, so concurrent setters inside this process never
    clobber each other's fields.
    """

    def __init__(self, backend: DocumentBackend):
        self.backend = backend
        self._lock = RLock()

    def get_state(self) -> SlideshowState:
        with self._lock:
            raw = load_document(self.backend, SLIDESHOW_DOCUMENT, None)
            return SlideshowState.from_dict(raw)

    def _save(self, state: SlideshowState) -> SlideshowState:
        save_document(self.backend, SLIDESHOW_DOCUMENT, state.to_dict())
        return state

    def set_current_image(self, image_id: Optional[str]) -> SlideshowState:
        with self._lock:
            state = self.get_state()
            state.current_image_id = image_id or None
            return self._save(state)

    def set_duration(self, duration: Any) -> SlideshowState:
        validated = validate_duration(duration)
        with self._lock:
            state = self.get_state()
            state.duration = validated
            saved = self._save(state)
        logger.info('[Slideshow] Duration set to %s ms', validated)
        return saved

    def set_active_collection(self, collection_id: Optional[str]) -> SlideshowState:
        with self._lock:
            state = self.get_state()
            state.active_collection_id = collection_id or None
            saved = self._save(state)
        logger.info('[Slideshow] Active collection set to %s', collection_id or 'all images')
        return saved
