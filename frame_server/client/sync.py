"""Client-side slideshow reconciliation.

:class:`RotationTracker` keeps a poller's local rotation consistent with two
moving inputs: the list of eligible images and the server's slideshow state.
It does no I/O. Every operation returns a :class:`SyncOutcome` telling the
caller what to do next (re-render, report the current image, restart the
rotation timer, or re-fetch the image list).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from .. import config

logger = logging.getLogger(__name__)


@dataclass
class SyncOutcome:
    render: bool = False
    push_current: Optional[str] = None
    restart_timer: bool = False
    refresh_images: bool = False

    @property
    def idle(self) -> bool:
        return not (self.render or self.push_current or self.restart_timer or self.refresh_images)


def _valid_duration(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    if value < config.MIN_DURATION_MS:
        return None
    return value


class RotationTracker:
    """Local rotation index, current image and cached slideshow settings."""

    def __init__(self, duration: Optional[int] = None):
        self.images: List[Dict[str, Any]] = []
        self.index = -1
        self.current_id: Optional[str] = None
        self.duration = duration or config.DEFAULT_DURATION_MS
        self.collection_id: Optional[str] = None
        self.server_current_id: Optional[str] = None
        self._ids: List[str] = []
        self._announced_single: Optional[str] = None
        self._unresolved_server_id: Optional[str] = None
        self._push_seq = 0
        # token -> (pushed id, server values it is about to replace, adoption count at send time)
        self._pushes: Dict[int, Tuple[str, Set[str], int]] = {}
        self._adoptions = 0

    @property
    def image_ids(self) -> List[str]:
        return list(self._ids)

    @property
    def can_navigate(self) -> bool:
        return len(self._ids) >= 2

    def current_image(self) -> Optional[Dict[str, Any]]:
        if self.index < 0 or self.index >= len(self.images):
            return None
        return self.images[self.index]

    def _select(self, index: int) -> None:
        self.index = index
        self.current_id = self._ids[index]

    def _single_image_push(self) -> Optional[str]:
        """Report a lone image once per distinct singleton, never on every tick."""
        if len(self._ids) != 1:
            self._announced_single = None
            return None
        only = self._ids[0]
        if self._announced_single == only:
            return None
        self._announced_single = only
        return only

    def apply_image_list(self, images: Sequence[Dict[str, Any]]) -> SyncOutcome:
        new_ids = [str(image['id']) for image in images if image.get('id')]
        if new_ids == self._ids:
            return SyncOutcome()

        previous_ids = self._ids
        previous_current = self.current_id
        previous_index = self.index
        self.images = [image for image in images if image.get('id')]
        self._ids = new_ids

        if not new_ids:
            had_image = previous_current is not None
            self.index = -1
            self.current_id = None
            self._announced_single = None
            logger.info('No eligible images left; clearing the display')
            return SyncOutcome(render=had_image)

        if not previous_ids or previous_index < 0 or previous_current is None:
            # First load: start where the server says, otherwise at the top.
            if self.server_current_id in new_ids:
                self._select(new_ids.index(self.server_current_id))
                push = None
            else:
                self._select(0)
                push = self.current_id
            single = self._single_image_push()
            return SyncOutcome(render=True, push_current=push or single, restart_timer=True)

        if previous_current in new_ids:
            # Keep showing the same image; only its position moved.
            self.index = new_ids.index(previous_current)
            return SyncOutcome(push_current=self._single_image_push())

        fallback = min(previous_index, len(new_ids) - 1)
        self._select(fallback)
        single = self._single_image_push()
        logger.info('Current image %s disappeared; falling back to %s', previous_current, self.current_id)
        return SyncOutcome(render=True, push_current=single or self.current_id, restart_timer=True)

    def apply_server_state(self, server_state: Dict[str, Any]) -> SyncOutcome:
        outcome = SyncOutcome()

        duration = _valid_duration(server_state.get('duration'))
        if duration is not None and duration != self.duration:
            logger.info('Duration changed from %sms to %sms', self.duration, duration)
            self.duration = duration
            outcome.restart_timer = True

        collection_id = server_state.get('activeCollectionId') or None
        if collection_id != self.collection_id:
            logger.info('Active collection changed from %s to %s', self.collection_id, collection_id)
            self.collection_id = collection_id
            outcome.refresh_images = True

        server_current = server_state.get('currentImageId') or None
        if server_current != self.current_id and server_current in self._superseded_ids():
            # Our own report has not landed yet; the server still shows what we left.
            return outcome
        self.server_current_id = server_current
        if server_current == self.current_id:
            self._unresolved_server_id = None
            return outcome

        if server_current is not None and server_current in self._ids:
            self._unresolved_server_id = None
            self._select(self._ids.index(server_current))
            self._adoptions += 1
            outcome.render = True
            outcome.restart_timer = True
            return outcome

        if outcome.refresh_images or self.current_id is None:
            return outcome

        if server_current is None or server_current == self._unresolved_server_id:
            # The server points nowhere useful; assert what is on screen here.
            self._unresolved_server_id = None
            outcome.push_current = self.current_id
            return outcome

        # Possibly an image this client has not fetched yet.
        self._unresolved_server_id = server_current
        outcome.refresh_images = True
        return outcome

    def advance(self) -> SyncOutcome:
        """One rotation tick: move forward by one image, wrapping around."""
        count = len(self._ids)
        if count == 0:
            return SyncOutcome()
        if count == 1:
            render = self.current_id != self._ids[0]
            self._select(0)
            return SyncOutcome(render=render, push_current=self._single_image_push())
        self._select((self.index + 1) % count)
        return SyncOutcome(render=True, push_current=self.current_id)

    def navigate(self, delta: int) -> SyncOutcome:
        """Manual next/previous; ignored with fewer than two eligible images."""
        if not self.can_navigate:
            return SyncOutcome()
        self._select((self.index + delta) % len(self._ids))
        return SyncOutcome(render=True, push_current=self.current_id, restart_timer=True)

    # Reporting ----------------------------------------------------------

    def _superseded_ids(self) -> Set[str]:
        stale: Set[str] = set()
        for _, replaced, _ in self._pushes.values():
            stale |= replaced
        return stale

    def begin_push(self, image_id: str, overwrites: Optional[str] = None) -> Optional[int]:
        """Register an outgoing report of ``image_id``; None means it is already stale.

        Until :meth:`finish_push` is called, server states still naming the
        previous server value (or ``overwrites``) are treated as not yet updated.
        """
        if image_id != self.current_id:
            logger.debug('Dropping report of %s; now showing %s', image_id, self.current_id)
            return None
        self._push_seq += 1
        candidates = {self.server_current_id, overwrites} | {pushed for pushed, _, _ in self._pushes.values()}
        replaced = {value for value in candidates if value and value != image_id}
        self._pushes[self._push_seq] = (image_id, replaced, self._adoptions)
        return self._push_seq

    def finish_push(self, token: int, delivered: bool = True) -> Optional[str]:
        """Settle a report and return the id to re-report when the server moved on meanwhile."""
        image_id, _, adoptions = self._pushes.pop(token)
        if not delivered:
            return None
        self.server_current_id = image_id
        if adoptions != self._adoptions and self.current_id and self.current_id != image_id:
            logger.info('Report of %s raced a server selection; restoring %s', image_id, self.current_id)
            return self.current_id
        return None
