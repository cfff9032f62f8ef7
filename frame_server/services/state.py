"""Process-wide service wiring for the frame server.

Routes never build services themselves; they ask this module, and tests
rebind everything at once with :func:`configure`.
"""

from __future__ import annotations

from threading import RLock
from time import time
from typing import Optional

from fastapi import Request

from .. import config, utils
from .display_power import DisplayPowerController
from .documents import DocumentBackend, create_backend
from .slideshow import SlideshowStateManager
from .store import MetadataStore

logger = config.logger

STATE_LOCK = RLock()
start_time = time()

_server_base_url = ''
_backend: Optional[DocumentBackend] = None
_metadata_store: Optional[MetadataStore] = None
_slideshow: Optional[SlideshowStateManager] = None
_display_power: Optional[DisplayPowerController] = None


def configure(
    backend: Optional[DocumentBackend] = None,
    display_power: Optional[DisplayPowerController] = None
) -> DocumentBackend:
    """(Re)build every service on top of ``backend`` (the configured one by default)."""
    global _backend, _metadata_store, _slideshow, _display_power
    with STATE_LOCK:
        _backend = backend or create_backend()
        _metadata_store = MetadataStore(_backend)
        _slideshow = SlideshowStateManager(_backend)
        _display_power = display_power or DisplayPowerController(_backend)
        logger.info('[State] Using document backend %s', _backend.describe())
        return _backend


def _ensure_configured() -> None:
    if _backend is None:
        configure()


def get_backend() -> DocumentBackend:
    _ensure_configured()
    return _backend


def get_metadata_store() -> MetadataStore:
    _ensure_configured()
    return _metadata_store


def get_slideshow() -> SlideshowStateManager:
    _ensure_configured()
    return _slideshow


def get_display_power() -> DisplayPowerController:
    _ensure_configured()
    return _display_power


def set_server_base_url(base_url: str) -> None:
    global _server_base_url
    _server_base_url = base_url.rstrip('/') if base_url else ''


def get_server_base_url() -> str:
    return _server_base_url or f"{config.SERVER_SCHEME}://{utils.get_ip_address()}:{config.SERVER_PORT}"


def request_base_url(request: Optional[Request]) -> str:
    if not request:
        return get_server_base_url()
    base = str(request.base_url)
    if base:
        return base[:-1] if base.endswith('/') else base
    return get_server_base_url()
