"""Slideshow, display power, status and settings routes for the frame server."""

from __future__ import annotations

from datetime import timedelta
from time import time
from typing import Any, Dict, Optional

import psutil
from fastapi import APIRouter, Body, Query, Request
from fastapi.responses import JSONResponse, Response

from .. import config, models, utils
from ..services import display_power, state

router = APIRouter()
logger = config.logger


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse({'status': 'error', 'message': message}, status_code=400)


def _not_found(message: str) -> JSONResponse:
    return JSONResponse({'error': message}, status_code=404)


@router.get('/api/slideshow/state')
def get_slideshow_state() -> JSONResponse:
    """Return the shared playback state every poller converges on."""
    return JSONResponse(state.get_slideshow().get_state().to_dict())


@router.post('/api/slideshow/current')
def set_current_image(data: Dict[str, Any] = Body(...)) -> JSONResponse:
    """Assert which image should be on screen now; ``null`` clears it."""
    image_id = data.get('imageId')
    if image_id is not None and not isinstance(image_id, str):
        return _bad_request('imageId must be a string or null')
    if image_id and state.get_metadata_store().get_image(image_id) is None:
        return _not_found('Image not found')
    updated = state.get_slideshow().set_current_image(image_id or None)
    return JSONResponse({'success': True, 'currentImageId': updated.current_image_id})


@router.post('/api/slideshow/duration')
def set_duration(data: Dict[str, Any] = Body(...)) -> JSONResponse:
    """Change how long each image stays on screen, in milliseconds."""
    try:
        updated = state.get_slideshow().set_duration(data.get('duration'))
    except ValueError as exc:
        return _bad_request(str(exc))
    return JSONResponse({'success': True, 'duration': updated.duration})


@router.post('/api/slideshow/collection')
def set_active_collection(data: Dict[str, Any] = Body(...)) -> JSONResponse:
    """Restrict the rotation to one collection, or to all images with ``null``."""
    collection_id = data.get('collectionId')
    if collection_id is not None and not isinstance(collection_id, str):
        return _bad_request('collectionId must be a string or null')
    if collection_id and state.get_metadata_store().get_collection(collection_id) is None:
        return _not_found('Collection not found')
    updated = state.get_slideshow().set_active_collection(collection_id or None)
    return JSONResponse({'success': True, 'activeCollectionId': updated.active_collection_id})


@router.get('/api/display/status')
def display_status(probe: bool = Query(False)) -> JSONResponse:
    """Report the stored power flag, and optionally what the panel itself says."""
    controller = state.get_display_power()
    payload: Dict[str, Any] = {'isOn': controller.is_on()}
    if probe:
        payload['probed'] = controller.probe()
    return JSONResponse(payload)


@router.post('/api/display/toggle')
def toggle_display(data: Optional[Dict[str, Any]] = Body(None)) -> JSONResponse:
    """Switch the physical display; without ``power`` the current flag is flipped."""
    power = (data or {}).get('power')
    if power is not None and not isinstance(power, bool):
        return _bad_request('power must be a boolean')

    result = state.get_display_power().toggle(power)
    attempts = [attempt.to_dict() for attempt in result.attempts]
    if not result.success:
        models.add_log_entry('Display power failed', f'{result.error}; attempts: {attempts}')
        return JSONResponse(
            {
                'success': False,
                'isOn': result.is_on,
                'error': result.error,
                'attempts': attempts
            },
            status_code=500
        )

    models.add_log_entry('Display power', f"turned {'on' if result.is_on else 'off'} via {result.method}")
    return JSONResponse({
        'success': True,
        'isOn': result.is_on,
        'method': result.method,
        'attempts': attempts
    })


@router.get('/api/status')
def status_view(request: Request) -> JSONResponse:
    """Retrieve the current status of the server and the slideshow."""
    uptime_seconds = int(time() - state.start_time)
    store = state.get_metadata_store()
    images = store.list_images()
    return JSONResponse({
        'server': {
            'uptime': str(timedelta(seconds=uptime_seconds)),
            'cpu_load': psutil.cpu_percent(interval=None),
            'current_time': utils.to_iso_datetime(utils.utc_now()),
            'base_url': state.request_base_url(request),
            'storage': state.get_backend().describe()
        },
        'library': {
            'images': len(images),
            'active_images': sum(1 for image in images if image.active),
            'collections': len(store.list_collections())
        },
        'slideshow': state.get_slideshow().get_state().to_dict(),
        'display': {'isOn': state.get_display_power().is_on()}
    })


@router.get('/settings')
def get_settings() -> JSONResponse:
    """Retrieve the runtime-editable settings of the frame server."""
    return JSONResponse({
        'display_power_methods': config.display_power_method_names(),
        'available_display_power_methods': display_power.available_method_names(),
        'display_output': config.DISPLAY_OUTPUT,
        'default_duration_ms': config.DEFAULT_DURATION_MS,
        'max_upload_bytes': config.MAX_UPLOAD_BYTES
    })


@router.post('/settings/display-methods')
def update_display_methods(data: Dict[str, Any] = Body(...)) -> JSONResponse:
    """Reorder or replace the display power fallback chain."""
    methods = data.get('methods')
    output = data.get('output')
    if methods is not None:
        if not isinstance(methods, list) or not methods or not all(isinstance(name, str) for name in methods):
            return _bad_request('methods must be a non-empty list of names')
        known = set(display_power.available_method_names())
        unknown = [name for name in methods if name.strip().lower() not in known]
        if unknown:
            return _bad_request(f"unknown display power methods: {', '.join(unknown)}")
        joined = ','.join(name.strip().lower() for name in methods)
        config.update_config('display_power_methods', joined)
        models.save_config_entry('display_power_methods', config.DISPLAY_POWER_METHODS)
    if output is not None:
        if not isinstance(output, str) or not output.strip():
            return _bad_request('output must be a non-empty string')
        config.update_config('display_output', output.strip())
        models.save_config_entry('display_output', config.DISPLAY_OUTPUT)
    return JSONResponse({
        'status': 'success',
        'display_power_methods': config.display_power_method_names(),
        'display_output': config.DISPLAY_OUTPUT
    }, status_code=200)


@router.get('/server/log')
def log_view(
    request: Request,
    limit: int = Query(30, ge=1, le=200),
    after: Optional[int] = Query(None),
    response_format: str = Query('text', alias='format')
) -> Response:
    """Return recent activity log entries with optional cursor-based pagination."""
    logs = models.logs_after(after, limit) if after is not None else models.recent_logs(limit=limit)

    wants_json = 'application/json' in (request.headers.get('accept') or '').lower() or response_format.lower() == 'json'
    if wants_json:
        payload = [
            {
                'id': log.id,
                'timestamp': utils.to_iso_datetime(log.timestamp),
                'context': log.context,
                'info': log.info
            }
            for log in logs
        ]
        return JSONResponse(payload)

    formatted_logs = '\n'.join([f"{log.timestamp} -- [{log.context}] -- {log.info}" for log in logs])
    response = Response(content=formatted_logs, media_type='text/plain')
    if logs:
        response.headers['X-Log-Last-Id'] = str(logs[-1].id)
    return response
