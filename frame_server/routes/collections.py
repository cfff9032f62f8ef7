"""Collection CRUD and membership routes."""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Body
from fastapi.responses import JSONResponse

from .. import config, models, utils
from ..services import state
from ..services.store import CollectionRecord

router = APIRouter()
logger = config.logger


def _not_found(message: str) -> JSONResponse:
    return JSONResponse({'error': message}, status_code=404)


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse({'status': 'error', 'message': message}, status_code=400)


def _optional_description(data: Dict[str, Any]):
    description = data.get('description')
    if description is not None and not isinstance(description, str):
        raise ValueError('description must be a string')
    return description


@router.get('/api/collections')
def list_collections() -> JSONResponse:
    collections = state.get_metadata_store().list_collections()
    return JSONResponse([entry.to_dict() for entry in collections])


@router.post('/api/collections')
def create_collection(data: Dict[str, Any] = Body(...)) -> JSONResponse:
    """Create a named collection; blank names are rejected."""
    try:
        description = _optional_description(data)
        record = CollectionRecord(
            id=utils.generate_id(),
            name=data.get('name'),
            created_at=utils.to_iso_datetime(utils.utc_now()),
            description=description
        )
        state.get_metadata_store().add_collection(record)
    except ValueError as exc:
        return _bad_request(str(exc))
    models.add_log_entry('Collection created', f'{record.name} ({record.id})')
    return JSONResponse(record.to_dict())


@router.patch('/api/collections/{collection_id}')
def update_collection(collection_id: str, data: Dict[str, Any] = Body(...)) -> JSONResponse:
    """Rename or redescribe a collection."""
    store = state.get_metadata_store()
    try:
        description = _optional_description(data)
        found = store.update_collection(collection_id, name=data.get('name'), description=description)
    except ValueError as exc:
        return _bad_request(str(exc))
    if not found:
        return _not_found('Collection not found')
    record = store.get_collection(collection_id)
    return JSONResponse(record.to_dict() if record else {'success': True})


@router.delete('/api/collections/{collection_id}')
def delete_collection(collection_id: str) -> JSONResponse:
    """Delete a collection, detaching it from its images and from the slideshow filter."""
    if not state.get_metadata_store().remove_collection(collection_id):
        return _not_found('Collection not found')
    slideshow = state.get_slideshow()
    if slideshow.get_state().active_collection_id == collection_id:
        slideshow.set_active_collection(None)
        logger.info('[API] Active collection %s deleted; slideshow shows all images again', collection_id)
    models.add_log_entry('Collection deleted', collection_id)
    return JSONResponse({'success': True})


@router.post('/api/collections/{collection_id}/images/{image_id}')
def add_image_to_collection(collection_id: str, image_id: str) -> JSONResponse:
    store = state.get_metadata_store()
    if store.get_collection(collection_id) is None:
        return _not_found('Collection not found')
    if not store.add_image_to_collection(image_id, collection_id):
        return _not_found('Image not found')
    return JSONResponse({'success': True})


@router.delete('/api/collections/{collection_id}/images/{image_id}')
def remove_image_from_collection(collection_id: str, image_id: str) -> JSONResponse:
    store = state.get_metadata_store()
    if store.get_collection(collection_id) is None:
        return _not_found('Collection not found')
    if store.get_image(image_id) is None:
        return _not_found('Image not found')
    changed = store.remove_image_from_collection(image_id, collection_id)
    return JSONResponse({'success': True, 'changed': changed})
