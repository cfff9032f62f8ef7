"""Async HTTP client for the frame server API."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from .. import config

logger = logging.getLogger(__name__)


class FrameApiClient:
    """Thin wrapper over ``httpx.AsyncClient`` for the endpoints the display client polls.

    Reads raise ``httpx.HTTPError`` so callers can tell "server down" from
    "no images". Reporting calls are best effort and swallow those errors.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.base_url = (base_url or config.SERVER_URL).rstrip('/')
        self._client = client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout if timeout is not None else config.REQUEST_TIMEOUT
        )

    async def __aenter__(self) -> FrameApiClient:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        response = await self._client.get(path, params=params)
        response.raise_for_status()
        return response.json()

    async def ping(self) -> bool:
        try:
            response = await self._client.get('/api/images/active')
        except httpx.HTTPError as exc:
            logger.debug('Server not reachable: %s', exc)
            return False
        return response.is_success

    async def get_state(self) -> Dict[str, Any]:
        payload = await self._get_json('/api/slideshow/state')
        return payload if isinstance(payload, dict) else {}

    async def get_active_images(self, collection_id: Optional[str] = None) -> List[Dict[str, Any]]:
        params = {'collectionId': collection_id} if collection_id else None
        payload = await self._get_json('/api/images/active', params=params)
        if not isinstance(payload, list):
            raise ValueError(f'unexpected active image payload: {payload!r}')
        return [entry for entry in payload if isinstance(entry, dict)]

    async def get_display_on(self) -> bool:
        payload = await self._get_json('/api/display/status')
        return bool(payload.get('isOn', True)) if isinstance(payload, dict) else True

    async def report_current(self, image_id: Optional[str]) -> bool:
        try:
            response = await self._client.post('/api/slideshow/current', json={'imageId': image_id})
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.debug('Could not report current image %s: %s', image_id, exc)
            return False
        return True

    async def set_display_power(self, power: bool) -> Optional[str]:
        """Ask the server to switch the panel; returns the mechanism that worked."""
        try:
            response = await self._client.post('/api/display/toggle', json={'power': power})
        except httpx.HTTPError as exc:
            logger.warning('Error calling server display toggle: %s', exc)
            return None
        if not response.is_success:
            logger.warning('Server display toggle failed: %s %s', response.status_code, response.text)
            return None
        method = response.json().get('method')
        logger.info('Server display toggle successful: %s', method or 'unknown method')
        return method
