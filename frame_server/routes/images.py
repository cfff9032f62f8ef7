"""Image library routes: listing, upload, activation and deletion."""

from __future__ import annotations

import os
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, File, Query, UploadFile
from fastapi.responses import JSONResponse

from .. import config, models, utils
from ..services import state
from ..services.store import ImageRecord

router = APIRouter()
logger = config.logger


def _not_found(message: str = 'Image not found') -> JSONResponse:
    return JSONResponse({'error': message}, status_code=404)


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse({'status': 'error', 'message': message}, status_code=400)


@router.get('/api/images')
def list_images() -> JSONResponse:
    """Return every image record, inactive ones included."""
    images = state.get_metadata_store().list_images()
    return JSONResponse([image.to_dict() for image in images])


@router.get('/api/images/active')
def list_active_images(collection_id: Optional[str] = Query(None, alias='collectionId')) -> JSONResponse:
    """Return the rotation-eligible images, optionally scoped to one collection."""
    store = state.get_metadata_store()
    if collection_id and store.get_collection(collection_id) is None:
        logger.debug('[API] Active images requested for unknown collection %s', collection_id)
        return JSONResponse([])
    images = store.list_active_images(collection_id or None)
    return JSONResponse([image.to_dict() for image in images])


@router.post('/api/images/upload')
async def upload_image(image: UploadFile = File(...)) -> JSONResponse:
    """Store an uploaded image file and register it as an active image."""
    original_name = image.filename or ''
    if not utils.is_allowed_image(original_name, image.content_type):
        return _bad_request('Only image files are allowed!')

    payload = await image.read(config.MAX_UPLOAD_BYTES + 1)
    if not payload:
        return _bad_request('No file uploaded')
    if len(payload) > config.MAX_UPLOAD_BYTES:
        return _bad_request(f'File exceeds the {config.MAX_UPLOAD_BYTES} byte limit')
    try:
        detected_format = utils.verify_image_bytes(payload)
    except ValueError as exc:
        return _bad_request(str(exc))

    filename = utils.generate_upload_filename(original_name)
    target = utils.upload_path(filename)
    os.makedirs(target.parent, exist_ok=True)
    with open(target, 'wb') as handle:
        handle.write(payload)

    record = ImageRecord(
        id=filename,
        filename=filename,
        original_name=original_name,
        path=utils.public_upload_url(filename),
        uploaded_at=utils.to_iso_datetime(utils.utc_now()),
        active=True,
        collection_ids=[]
    )
    try:
        state.get_metadata_store().add_image(record)
    except Exception:
        target.unlink(missing_ok=True)
        raise

    logger.info('[API] Uploaded %s as %s (%s, %d bytes)', original_name, filename, detected_format, len(payload))
    models.add_log_entry('Image uploaded', f'{original_name} stored as {filename}')
    return JSONResponse(record.to_dict())


@router.patch('/api/images/{image_id}/toggle')
def toggle_image(image_id: str) -> JSONResponse:
    """Flip whether an image takes part in the rotation."""
    active = state.get_metadata_store().toggle_image_active(image_id)
    if active is None:
        return _not_found()
    logger.info('[API] Image %s is now %s', image_id, 'active' if active else 'hidden')
    return JSONResponse({'success': True, 'active': active})


@router.patch('/api/images/{image_id}')
def update_image(image_id: str, data: Dict[str, Any] = Body(...)) -> JSONResponse:
    """Explicitly set the active flag of an image."""
    active = data.get('active')
    if not isinstance(active, bool):
        return _bad_request('active must be a boolean')
    store = state.get_metadata_store()
    if not store.set_image_active(image_id, active):
        return _not_found()
    record = store.get_image(image_id)
    return JSONResponse({'success': True, 'image': record.to_dict() if record else None})


@router.delete('/api/images/{image_id}')
def delete_image(image_id: str) -> JSONResponse:
    """Remove the uploaded file and then its record."""
    store = state.get_metadata_store()
    record = store.get_image(image_id)
    if record is None:
        return _not_found()

    try:
        file_path = utils.upload_path(record.filename)
    except ValueError:
        logger.warning('[API] Image %s has an unusable filename %r', image_id, record.filename)
        file_path = None
    if file_path is not None and file_path.exists():
        file_path.unlink()

    if not store.remove_image(image_id):
        return _not_found()
    logger.info('[API] Deleted image %s', image_id)
    models.add_log_entry('Image deleted', f'{record.original_name} ({image_id})')
    return JSONResponse({'success': True})
