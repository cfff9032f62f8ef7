"""Full-screen rendering on the physical display.

A :class:`DisplaySession` owns at most one renderer process. Every
transition kills the previous renderer's whole process group before a new
one is started, and the session refuses to render while the panel is off.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shlex
import shutil
import signal
from typing import List, Optional, Sequence

from .. import config

logger = logging.getLogger(__name__)

TERMINATE_GRACE_SECONDS = 2.0


class RendererProcess:
    """A spawned renderer running in its own process group."""

    def __init__(self, process: asyncio.subprocess.Process, image_path: str):
        self.process = process
        self.image_path = image_path

    @classmethod
    async def spawn(cls, command: Sequence[str], image_path: str) -> RendererProcess:
        process = await asyncio.create_subprocess_exec(
            *command,
            image_path,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
            start_new_session=True
        )
        return cls(process, image_path)

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def alive(self) -> bool:
        return self.process.returncode is None

    def _signal_group(self, sig: int) -> bool:
        try:
            os.killpg(self.pid, sig)
            return True
        except ProcessLookupError:
            return False
        except PermissionError as exc:
            logger.error('Not allowed to signal renderer group %s: %s', self.pid, exc)
            return False

    async def terminate(self, grace_period: float = TERMINATE_GRACE_SECONDS) -> None:
        """SIGTERM the group, escalate to SIGKILL if it lingers, then reap."""
        self._signal_group(signal.SIGTERM)
        try:
            await asyncio.wait_for(self.process.wait(), timeout=grace_period)
        except asyncio.TimeoutError:
            logger.warning('Renderer %s ignored SIGTERM; killing its group', self.pid)
            self._signal_group(signal.SIGKILL)
            await self.process.wait()

    def kill_now(self) -> None:
        self._signal_group(signal.SIGKILL)


class DisplaySession:
    """Idle or showing exactly one image, gated by the panel power flag."""

    def __init__(self, command: Optional[Sequence[str]] = None, grace_period: float = TERMINATE_GRACE_SECONDS):
        self.command: List[str] = list(command) if command is not None else shlex.split(config.RENDERER_COMMAND)
        self.grace_period = grace_period
        self.powered = True
        self._renderer: Optional[RendererProcess] = None
        self._lock = asyncio.Lock()

    async def __aenter__(self) -> DisplaySession:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.clear()

    @property
    def showing(self) -> Optional[str]:
        """Path currently on screen, or None while idle."""
        if self._renderer is None or not self._renderer.alive:
            return None
        return self._renderer.image_path

    @property
    def renderer(self) -> Optional[RendererProcess]:
        return self._renderer

    def renderer_available(self) -> bool:
        return bool(self.command) and shutil.which(self.command[0]) is not None

    async def _stop_locked(self) -> None:
        renderer, self._renderer = self._renderer, None
        if renderer is None:
            return
        await renderer.terminate(self.grace_period)
        logger.debug('Stopped renderer %s for %s', renderer.pid, renderer.image_path)

    async def show(self, image_path: str) -> bool:
        """Replace whatever is on screen with ``image_path``."""
        if not self.powered:
            logger.debug('Display is off; not rendering %s', image_path)
            return False
        if not os.path.isfile(image_path):
            logger.warning('Image file not found: %s', image_path)
            return False
        async with self._lock:
            await self._stop_locked()
            if not self.powered:
                logger.info('Display powered off while waiting; not showing %s', image_path)
                return False
            try:
                self._renderer = await RendererProcess.spawn(self.command, image_path)
            except OSError as exc:
                logger.error('Failed to start renderer %s: %s', self.command[0], exc)
                return False
        logger.info('Displaying image: %s', image_path)
        return True

    async def clear(self) -> None:
        """Return to a blank screen."""
        async with self._lock:
            if self._renderer is not None:
                await self._stop_locked()
                logger.info('Display cleared')

    async def power_off(self) -> None:
        self.powered = False
        await self.clear()

    def power_on(self) -> None:
        self.powered = True

    def kill_now(self) -> None:
        """Synchronous teardown for signal handlers."""
        renderer, self._renderer = self._renderer, None
        if renderer is not None and renderer.alive:
            renderer.kill_now()
            logger.info('Killed renderer group %s', renderer.pid)
