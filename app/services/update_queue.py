"""Debounced, deduplicating queue of pending list updates."""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable

from ..models import MediaList

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PendingUpdate:
    """A queued entry snapshot and the time its media was first queued."""

    entry: MediaList
    enqueued_at: float

    def to_payload(self, now: float) -> dict[str, object]:
        media = self.entry.media
        return {
            "mediaId": self.entry.media_id,
            "title": media.preferred_title() if media else None,
            "status": self.entry.status,
            "progress": self.entry.progress,
            "progressVolumes": self.entry.progress_volumes,
            "waitingSeconds": max(0, int(now - self.enqueued_at)),
        }


class UpdateQueue:
    """Holds at most one pending update per media and releases them slowly.

    An update is released once it has waited ``delay()`` whole seconds since
    its media was first queued, and only while no other update is in flight.
    The delay is read on every attempt so it can change at runtime.
    """

    def __init__(
        self,
        delay: Callable[[], int],
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._delay = delay
        self._clock = clock
        self._pending: OrderedDict[int, PendingUpdate] = OrderedDict()
        self._in_flight: int | None = None

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, media_id: object) -> bool:
        return media_id in self._pending

    @property
    def in_flight(self) -> int | None:
        """The media id currently being sent, if any."""

        return self._in_flight

    def enqueue(self, entry: MediaList) -> None:
        """Queue ``entry``, replacing any snapshot already queued for its media.

        Replacing keeps the original enqueue time and queue position.
        """

        pending = self._pending.get(entry.media_id)
        if pending is not None:
            pending.entry = entry
            logger.debug("Refreshed queued update for media %s", entry.media_id)
            return
        self._pending[entry.media_id] = PendingUpdate(entry=entry, enqueued_at=self._clock())
        logger.info("Queued update for media %s", entry.media_id)

    def dequeue(self) -> MediaList | None:
        """Release the oldest update if its delay has elapsed.

        The released media is marked in flight until :meth:`complete` runs.
        """

        if self._in_flight is not None or not self._pending:
            return None
        media_id, pending = next(iter(self._pending.items()))
        elapsed = int(self._clock() - pending.enqueued_at)
        if elapsed < self._delay():
            return None
        del self._pending[media_id]
        self._in_flight = media_id
        return pending.entry

    def complete(self) -> None:
        """Release the single-flight lock after a send finished or failed."""

        self._in_flight = None

    def remove(self, media_id: int) -> MediaList | None:
        """Cancel the queued update for ``media_id`` regardless of its age."""

        pending = self._pending.pop(media_id, None)
        if pending is None:
            return None
        logger.info("Cancelled queued update for media %s", media_id)
        return pending.entry

    def snapshot(self) -> list[dict[str, object]]:
        now = self._clock()
        return [pending.to_payload(now) for pending in self._pending.values()]
