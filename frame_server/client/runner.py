#! /usr/bin/env python
"""Native display client: polls the frame server and renders full-screen."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sys
from asyncio import CancelledError, create_task, gather, sleep
from typing import Dict, List, Optional, Set

import httpx

from .. import config
from .api import FrameApiClient
from .session import DisplaySession
from .sync import RotationTracker, SyncOutcome

logger = logging.getLogger(__name__)


class DisplayClient:
    """Runs the state poll, the image poll and the rotation timer against one session."""

    def __init__(
        self,
        api: FrameApiClient,
        session: DisplaySession,
        tracker: Optional[RotationTracker] = None,
        uploads_dir: Optional[str] = None,
        poll_interval: Optional[int] = None,
        image_poll_interval: Optional[int] = None,
        settle_seconds: Optional[float] = None,
        ready_retry_seconds: Optional[float] = None
    ):
        self.api = api
        self.session = session
        self.tracker = tracker or RotationTracker()
        self.uploads_dir = uploads_dir or config.client_uploads_dir()
        self.poll_interval = (poll_interval or config.POLL_INTERVAL) / 1000
        self.image_poll_interval = (image_poll_interval or config.IMAGE_POLL_INTERVAL) / 1000
        self.settle_seconds = config.POWER_SETTLE_SECONDS if settle_seconds is None else settle_seconds
        self.ready_retry_seconds = config.READY_RETRY_SECONDS if ready_retry_seconds is None else ready_retry_seconds
        self.display_on = True
        self._rotation_task: Optional[asyncio.Task] = None
        self._tasks: Dict[str, asyncio.Task] = {}

    # Reactions ----------------------------------------------------------

    def image_path(self, image: Dict) -> str:
        return os.path.join(self.uploads_dir, os.path.basename(str(image.get('filename') or image['id'])))

    async def render_current(self) -> None:
        if not self.display_on:
            return
        image = self.tracker.current_image()
        if image is None:
            await self.session.clear()
            return
        await self.session.show(self.image_path(image))

    async def apply(self, outcome: SyncOutcome) -> None:
        if outcome.render:
            await self.render_current()
        if outcome.push_current:
            await self.report_current(outcome.push_current)
        if outcome.restart_timer:
            self.restart_rotation()
        if outcome.refresh_images:
            await self.refresh_images()

    async def report_current(self, image_id: str) -> None:
        """Best-effort report, re-asserting our image if a server selection raced the request."""
        overwrites: Optional[str] = None
        while image_id:
            token = self.tracker.begin_push(image_id, overwrites)
            if token is None:
                return
            delivered = False
            try:
                delivered = await self.api.report_current(image_id)
            finally:
                correction = self.tracker.finish_push(token, delivered)
            overwrites, image_id = image_id, correction

    async def navigate(self, delta: int) -> None:
        """Manual next/previous on the physical display."""
        if not self.display_on:
            return
        await self.apply(self.tracker.navigate(delta))

    async def refresh_images(self) -> None:
        images = await self.api.get_active_images(self.tracker.collection_id)
        await self.apply(self.tracker.apply_image_list(images))

    async def sync_state(self) -> None:
        is_on = await self.api.get_display_on()
        if is_on != self.display_on:
            await self.handle_power_change(is_on)
            return
        if not self.display_on:
            return
        server_state = await self.api.get_state()
        await self.apply(self.tracker.apply_server_state(server_state))

    async def handle_power_change(self, is_on: bool) -> None:
        logger.info('Display state changed from %s to %s', 'on' if self.display_on else 'off', 'on' if is_on else 'off')
        if not is_on:
            self.display_on = False
            await self.session.power_off()
            await self.api.set_display_power(False)
            return
        await self.api.set_display_power(True)
        await sleep(self.settle_seconds)
        # Stays "off" until the re-check succeeds, so a failed poll retries the whole power-on.
        server_state = await self.api.get_state()
        self.tracker.apply_server_state(server_state)
        await self.refresh_images()
        self.session.power_on()
        self.display_on = True
        await self.render_current()
        self.restart_rotation()

    # Loops --------------------------------------------------------------

    def restart_rotation(self) -> None:
        """Cancel the running rotation timer, if any, and start a fresh one."""
        if self._rotation_task is not None and not self._rotation_task.done():
            self._rotation_task.cancel()
        self._rotation_task = create_task(self._rotation_loop())

    @property
    def rotation_task(self) -> Optional[asyncio.Task]:
        return self._rotation_task

    async def _rotation_loop(self) -> None:
        try:
            while True:
                await sleep(self.tracker.duration / 1000)
                if not self.display_on:
                    continue
                try:
                    # Shielded so a restart cannot interrupt a renderer swap halfway.
                    await asyncio.shield(self.apply(self.tracker.advance()))
                except CancelledError:
                    raise
                except Exception as exc:  # noqa: BLE001
                    logger.error('Rotation tick failed: %s', exc)
        except CancelledError:
            pass

    async def _poll_loop(self, name: str, step, interval: float) -> None:
        logger.info('Starting %s loop every %.1fs', name, interval)
        try:
            while True:
                await sleep(interval)
                try:
                    await step()
                except httpx.HTTPError as exc:
                    logger.warning('%s poll failed: %s', name, exc)
                except Exception as exc:  # noqa: BLE001
                    logger.error('%s poll raised: %s', name, exc)
        except CancelledError:
            logger.info('%s loop cancelled', name)

    async def wait_for_server(self) -> None:
        """Block until the server answers; never gives up."""
        logger.info('Waiting for server %s to be ready...', self.api.base_url)
        while not await self.api.ping():
            logger.info('Server not ready yet, retrying in %.0f seconds...', self.ready_retry_seconds)
            await sleep(self.ready_retry_seconds)
        logger.info('Server is ready')

    async def start(self) -> None:
        if self._tasks:
            return
        for step in (self.sync_state, self.refresh_images):
            try:
                await step()
            except Exception as exc:  # noqa: BLE001
                logger.warning('Initial %s failed: %s', step.__name__, exc)
        self.restart_rotation()
        self._tasks['state'] = create_task(self._poll_loop('state', self.sync_state, self.poll_interval))
        self._tasks['images'] = create_task(self._poll_loop('images', self.refresh_images, self.image_poll_interval))

    async def stop(self) -> None:
        tasks: List[asyncio.Task] = list(self._tasks.values())
        if self._rotation_task is not None:
            tasks.append(self._rotation_task)
        for task in tasks:
            task.cancel()
        await gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        self._rotation_task = None
        await self.session.clear()

    async def run(self) -> None:
        await self.wait_for_server()
        await self.start()
        await gather(*self._tasks.values())


def _parse_cli_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description='Native photo frame display client')
    parser.add_argument('--server-url', default=None, help='Frame server base URL (default: SERVER_URL)')
    parser.add_argument('--uploads-dir', default=None, help='Directory holding the uploaded images')
    parser.add_argument('--poll-interval', type=int, default=None, help='State poll period in ms')
    return parser.parse_args(argv)


async def _serve(args: argparse.Namespace, session: DisplaySession) -> None:
    loop = asyncio.get_running_loop()
    stop_requested = asyncio.Event()

    def _on_signal(signame: str) -> None:
        logger.info('Received %s, cleaning up...', signame)
        session.kill_now()
        stop_requested.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _on_signal, sig.name)

    async with FrameApiClient(args.server_url) as api, session:
        client = DisplayClient(api, session, uploads_dir=args.uploads_dir, poll_interval=args.poll_interval)
        nav_tasks: Set[asyncio.Task] = set()

        def _on_navigate(delta: int) -> None:
            task = create_task(client.navigate(delta))
            nav_tasks.add(task)
            task.add_done_callback(nav_tasks.discard)

        # kill -USR1 / -USR2 step forward / back, e.g. from a button daemon
        loop.add_signal_handler(signal.SIGUSR1, _on_navigate, 1)
        loop.add_signal_handler(signal.SIGUSR2, _on_navigate, -1)
        main_task = create_task(client.run())
        stop_task = create_task(stop_requested.wait())
        await asyncio.wait({main_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
        stop_task.cancel()
        main_task.cancel()
        await gather(main_task, stop_task, return_exceptions=True)
        await client.stop()


def run() -> None:
    args = _parse_cli_args(sys.argv[1:])
    session = DisplaySession()
    logger.info('=== Native display client ===')
    logger.info('Server URL: %s', args.server_url or config.SERVER_URL)
    if not session.renderer_available():
        logger.error('%s is not installed or not on PATH', session.command[0] if session.command else 'renderer')
        sys.exit(1)
    try:
        asyncio.run(_serve(args, session))
    finally:
        session.kill_now()


if __name__ == '__main__':
    run()
