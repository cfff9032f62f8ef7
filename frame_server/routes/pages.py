"""Browser viewer page for the frame server."""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import FileResponse, JSONResponse, Response

from .. import config, utils

router = APIRouter()
logger = config.logger

VIEWER_PAGE = 'index.html'


@router.get('/')
def viewer() -> Response:
    """Serve the full-screen slideshow viewer; browsers must not cache it across upgrades."""
    page_path = utils.asset_path(VIEWER_PAGE)
    if not page_path.exists():
        logger.error('[Pages] Viewer page missing at %s', page_path)
        return JSONResponse({'error': 'Viewer page not installed'}, status_code=404)
    return FileResponse(page_path, media_type='text/html', headers={'Cache-Control': 'no-cache'})
