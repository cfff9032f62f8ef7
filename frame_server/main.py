#! /usr/bin/env python
"""FastAPI entrypoint and CLI tooling for the photo frame server."""

from __future__ import annotations

import argparse
import os
import sys
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from . import config, models, utils
from .routes import api_router, collection_router, image_router, page_router
from .services import state
from .services.documents import StorageError

###################################################################################################

logger = config.logger
logger.info('[Main] Starting frameServer')

DUMPED_PATH_PREFIXES = ('/api',)
DUMP_BODY_LIMIT = 2048
# Uploads and served images are never decoded into the log.
OPAQUE_CONTENT_TYPES = (
    'application/octet-stream',
    'multipart/form-data',
    'image/'
)

BASE_PATH = os.path.abspath(os.path.join(os.path.dirname(os.path.abspath(__file__)), os.pardir))
STATIC_MOUNT_PATHS: Optional[Tuple[str, str]] = None


def should_dump(path: str) -> bool:
    return path.startswith(DUMPED_PATH_PREFIXES)


def is_opaque(content_type: Optional[str]) -> bool:
    return (content_type or '').lower().startswith(OPAQUE_CONTENT_TYPES)


def clip_body(body: bytes, limit: int = DUMP_BODY_LIMIT) -> str:
    """Render a request or response body for the log, cut to ``limit`` characters."""
    if not body:
        return '<empty>'
    text = body.decode('utf-8', errors='replace')
    return text if len(text) <= limit else f"{text[:limit]}...<truncated>"


@asynccontextmanager
async def lifespan(app: FastAPI):  # noqa: ARG001
    slideshow = state.get_slideshow().get_state()
    logger.info(
        '[Main] Serving %d images from %s (current=%s, duration=%sms)',
        len(state.get_metadata_store().list_images()),
        state.get_backend().describe(),
        slideshow.current_image_id,
        slideshow.duration
    )
    yield
    logger.info('[Main] Shutting down frameServer')


app = FastAPI(lifespan=lifespan)


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
    logger.error('[Main] Storage failure while handling %s %s: %s', request.method, request.url.path, exc)
    return JSONResponse({'error': 'Storage failure', 'detail': str(exc)}, status_code=500)


async def _dump_request(request: Request) -> None:
    content_type = request.headers.get('content-type')
    body = '<binary>' if is_opaque(content_type) else clip_body(await request.body())
    logger.info(
        '[RequestDump] %s %s query=%s content_type=%s body=%s',
        request.method,
        request.url.path,
        dict(request.query_params),
        content_type,
        body
    )


async def _dump_response(path: str, response: Response) -> Response:
    content_type = response.headers.get('content-type')
    if is_opaque(content_type):
        return response
    # body_iterator is single-use
    body = b''.join([chunk async for chunk in response.body_iterator])
    logger.info('[ResponseDump] %s status=%s body=%s', path, response.status_code, clip_body(body))
    return Response(
        content=body,
        status_code=response.status_code,
        headers=dict(response.headers),
        media_type=response.media_type,
        background=response.background
    )


@app.middleware('http')
async def dump_api_traffic(
    request: Request,
    call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    if not should_dump(request.url.path):
        return await call_next(request)
    await _dump_request(request)
    response = await call_next(request)
    return await _dump_response(request.url.path, response)


app.include_router(image_router)
app.include_router(collection_router)
app.include_router(api_router)
app.include_router(page_router)


def _parse_cli_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description='Photo frame server')
    parser.add_argument('workdir', nargs='?', help='Runtime working directory', default=None)
    parser.add_argument(
        '--storage',
        choices=('sqlite', 'json'),
        default=None,
        help='Override STORAGE_BACKEND for this run'
    )
    return parser.parse_args(argv)


def _resolve_workdir(candidate: Optional[str]) -> str:
    if not candidate:
        return BASE_PATH
    if not os.path.isdir(candidate):
        print(f"Path {candidate} is not a directory. Using default path {BASE_PATH}.")
        return BASE_PATH
    return candidate


def _ensure_static_mounts() -> None:
    """Mount the viewer assets and the uploads directory, remounting when their paths moved."""
    global STATIC_MOUNT_PATHS
    desired = (config.WEB_STATIC_DIR, config.UPLOADS_DIR)
    if STATIC_MOUNT_PATHS == desired:
        return
    mounts = {'web-static': ('/web', config.WEB_STATIC_DIR), 'uploads': ('/uploads', config.UPLOADS_DIR)}
    app.router.routes = [route for route in app.router.routes if getattr(route, 'name', None) not in mounts]
    for name, (prefix, directory) in mounts.items():
        app.mount(prefix, StaticFiles(directory=directory), name=name)
    STATIC_MOUNT_PATHS = desired


def _runtime_directories() -> List[str]:
    return [
        config.VAR_ROOT,
        os.path.dirname(config.DATABASE_PATH),
        config.LOGS_DIR,
        config.SSL_DIR,
        config.DATA_DIR,
        config.UPLOADS_DIR,
        config.WEB_STATIC_DIR
    ]


def _prepare_runtime(current_dir: str, storage: Optional[str] = None) -> str:
    config.load_config(current_dir)
    os.makedirs(os.path.dirname(config.DATABASE_PATH), exist_ok=True)
    models.init_db()
    # Persisted settings may move the upload/static roots, so directories come after them.
    config.apply_persisted_config(models.load_config_entries())
    if storage:
        config.STORAGE_BACKEND = storage
    for path in _runtime_directories():
        os.makedirs(path, exist_ok=True)
    state.configure()

    server_ip = utils.get_ip_address()
    state.set_server_base_url(f"{config.SERVER_SCHEME}://{server_ip}:{config.SERVER_PORT}")
    logger.info(
        '[Main] Frame server on %s:%s (%s), storage=%s, uploads=%s',
        server_ip,
        config.SERVER_PORT,
        config.SERVER_SCHEME,
        config.STORAGE_BACKEND,
        config.UPLOADS_DIR
    )
    _ensure_static_mounts()
    return server_ip


def _ssl_options(server_ip: str) -> Dict[str, Any]:
    """Return uvicorn TLS arguments, creating a self-signed pair on first use."""
    cert_file = os.path.join(config.SSL_DIR, 'cert.pem')
    key_file = os.path.join(config.SSL_DIR, 'key.pem')
    if not (os.path.exists(cert_file) and os.path.exists(key_file)):
        logger.debug('[Main] No TLS key pair in %s, generating a self-signed one', config.SSL_DIR)
        os.system(
            f'openssl req -x509 -newkey rsa:4096 -keyout {key_file} -out {cert_file} '
            f'-days 365 -nodes -subj "/O=frameServer/OU=photo-frame/CN={server_ip}"'
        )
    return {'ssl_keyfile': key_file, 'ssl_certfile': cert_file}


def _start_http_server(server_ip: str) -> None:
    options = _ssl_options(server_ip) if config.ENABLE_SSL else {}
    logger.debug('[Main] Starting uvicorn (%s)', 'TLS' if options else 'plain HTTP')
    uvicorn.run(app, host='0.0.0.0', port=config.SERVER_PORT, log_level='info', **options)


_prepare_runtime(BASE_PATH)


def run() -> None:
    args = _parse_cli_args(sys.argv[1:])
    server_ip = _prepare_runtime(_resolve_workdir(args.workdir), storage=args.storage)
    _start_http_server(server_ip)


if __name__ == '__main__':
    run()
