"""Image and collection metadata store.

Both documents are plain JSON arrays rewritten wholesale on every mutation.
Collection membership lives on the image records only, so deleting a
collection has to walk the images and strip the id from each of them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from threading import RLock
from typing import Any, Dict, List, Optional

from .. import config
from .documents import (
    COLLECTIONS_DOCUMENT,
    IMAGES_DOCUMENT,
    DocumentBackend,
    load_document,
    save_document,
)

logger = config.logger


@dataclass
class ImageRecord:
    id: str
    filename: str
    original_name: str
    path: str
    uploaded_at: str
    active: bool = True
    collection_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'filename': self.filename,
            'originalName': self.original_name,
            'path': self.path,
            'uploadedAt': self.uploaded_at,
            'active': self.active,
            'collectionIds': list(self.collection_ids)
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> ImageRecord:
        filename = str(data.get('filename') or data['id'])
        collection_ids: List[str] = []
        for value in data.get('collectionIds') or []:
            cid = str(value)
            if cid not in collection_ids:
                collection_ids.append(cid)
        return cls(
            id=str(data['id']),
            filename=filename,
            original_name=str(data.get('originalName') or filename),
            path=str(data.get('path') or f'/uploads/{filename}'),
            uploaded_at=str(data.get('uploadedAt') or ''),
            active=bool(data.get('active', True)),
            collection_ids=collection_ids
        )


@dataclass
class CollectionRecord:
    id: str
    name: str
    created_at: str
    description: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            'id': self.id,
            'name': self.name,
            'createdAt': self.created_at
        }
        if self.description is not None:
            payload['description'] = self.description
        return payload

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> CollectionRecord:
        description = data.get('description')
        return cls(
            id=str(data['id']),
            name=str(data.get('name') or ''),
            created_at=str(data.get('createdAt') or ''),
            description=str(description) if description is not None else None
        )


def normalize_collection_name(name: Any) -> str:
    if not isinstance(name, str) or not name.strip():
        raise ValueError('collection name must be a non-empty string')
    return name.strip()


def _decode_records(raw: Any, factory, document: str) -> list:
    if not isinstance(raw, list):
        if raw is not None:
            logger.warning('[Store] %s document is not a list; treating as empty', document)
        return []
    records = []
    for entry in raw:
        if not isinstance(entry, dict) or not entry.get('id'):
            logger.warning('[Store] Skipping malformed %s entry: %r', document, entry)
            continue
        records.append(factory(entry))
    return records


class MetadataStore:
    """CRUD over the image and collection documents with membership cascades."""

    def __init__(self, backend: DocumentBackend):
        self.backend = backend
        self._lock = RLock()

    # Images -------------------------------------------------------------

    def _load_images(self) -> List[ImageRecord]:
        raw = load_document(self.backend, IMAGES_DOCUMENT, [])
        return _decode_records(raw, ImageRecord.from_dict, IMAGES_DOCUMENT)

    def _save_images(self, images: List[ImageRecord]) -> None:
        save_document(self.backend, IMAGES_DOCUMENT, [image.to_dict() for image in images])

    def list_images(self) -> List[ImageRecord]:
        with self._lock:
            return self._load_images()

    def get_image(self, image_id: str) -> Optional[ImageRecord]:
        for image in self.list_images():
            if image.id == image_id:
                return image
        return None

    def list_active_images(self, collection_id: Optional[str] = None) -> List[ImageRecord]:
        """Return rotation-eligible images in stored order, optionally scoped to a collection."""
        images = [image for image in self.list_images() if image.active]
        if collection_id:
            images = [image for image in images if collection_id in image.collection_ids]
        return images

    def add_image(self, record: ImageRecord) -> ImageRecord:
        with self._lock:
            images = self._load_images()
            if any(image.id == record.id for image in images):
                raise ValueError(f'image {record.id} already exists')
            images.append(record)
            self._save_images(images)
        logger.info('[Store] Added image %s (%s)', record.id, record.original_name)
        return record

    def remove_image(self, image_id: str) -> bool:
        with self._lock:
            images = self._load_images()
            remaining = [image for image in images if image.id != image_id]
            if len(remaining) == len(images):
                return False
            self._save_images(remaining)
        logger.info('[Store] Removed image %s', image_id)
        return True

    def set_image_active(self, image_id: str, active: bool) -> bool:
        with self._lock:
            images = self._load_images()
            for image in images:
                if image.id == image_id:
                    image.active = bool(active)
                    self._save_images(images)
                    return True
        return False

    def toggle_image_active(self, image_id: str) -> Optional[bool]:
        """Flip the active flag and return the new value, or None for an unknown image."""
        with self._lock:
            images = self._load_images()
            for image in images:
                if image.id == image_id:
                    image.active = not image.active
                    self._save_images(images)
                    return image.active
        return None

    # Collections --------------------------------------------------------

    def _load_collections(self) -> List[CollectionRecord]:
        raw = load_document(self.backend, COLLECTIONS_DOCUMENT, [])
        return _decode_records(raw, CollectionRecord.from_dict, COLLECTIONS_DOCUMENT)

    def _save_collections(self, collections: List[CollectionRecord]) -> None:
        save_document(self.backend, COLLECTIONS_DOCUMENT, [entry.to_dict() for entry in collections])

    def list_collections(self) -> List[CollectionRecord]:
        with self._lock:
            return self._load_collections()

    def get_collection(self, collection_id: str) -> Optional[CollectionRecord]:
        for collection in self.list_collections():
            if collection.id == collection_id:
                return collection
        return None

    def add_collection(self, record: CollectionRecord) -> CollectionRecord:
        record.name = normalize_collection_name(record.name)
        with self._lock:
            collections = self._load_collections()
            if any(entry.id == record.id for entry in collections):
                raise ValueError(f'collection {record.id} already exists')
            collections.append(record)
            self._save_collections(collections)
        logger.info('[Store] Created collection %s (%s)', record.id, record.name)
        return record

    def update_collection(
        self,
        collection_id: str,
        *,
        name: Optional[str] = None,
        description: Optional[str] = None
    ) -> bool:
        normalized = normalize_collection_name(name) if name is not None else None
        with self._lock:
            collections = self._load_collections()
            for entry in collections:
                if entry.id != collection_id:
                    continue
                if normalized is not None:
                    entry.name = normalized
                if description is not None:
                    entry.description = description
                self._save_collections(collections)
                return True
        return False

    def remove_collection(self, collection_id: str) -> bool:
        """Delete a collection and strip it from every image; images themselves survive."""
        with self._lock:
            collections = self._load_collections()
            remaining = [entry for entry in collections if entry.id != collection_id]
            if len(remaining) == len(collections):
                return False
            images = self._load_images()
            touched = False
            for image in images:
                if collection_id in image.collection_ids:
                    image.collection_ids = [cid for cid in image.collection_ids if cid != collection_id]
                    touched = True
            if touched:
                self._save_images(images)
            self._save_collections(remaining)
        logger.info('[Store] Removed collection %s', collection_id)
        return True

    def add_image_to_collection(self, image_id: str, collection_id: str) -> bool:
        """Attach an image to a collection; adding twice is a no-op."""
        with self._lock:
            if not any(entry.id == collection_id for entry in self._load_collections()):
                return False
            images = self._load_images()
            for image in images:
                if image.id != image_id:
                    continue
                if collection_id not in image.collection_ids:
                    image.collection_ids.append(collection_id)
                    self._save_images(images)
                return True
        return False

    def remove_image_from_collection(self, image_id: str, collection_id: str) -> bool:
        """Detach an image from a collection and report whether anything changed."""
        with self._lock:
            images = self._load_images()
            for image in images:
                if image.id != image_id:
                    continue
                if collection_id not in image.collection_ids:
                    return False
                image.collection_ids = [cid for cid in image.collection_ids if cid != collection_id]
                self._save_images(images)
                return True
        return False
