"""High level orchestration of detection, matching and list updates."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from dataclasses import dataclass
from typing import Any, Awaitable, Union

from ..config import Settings
from ..models import (
    Media,
    MediaList,
    MediaListCollection,
    MediaType,
    RecognizedMedia,
    User,
)
from ..recognition import MediaRecognizer
from ..windows import WindowTitleSource, list_open_window_titles
from .anilist import AniListClient
from .reconciler import ProgressReconciler, ReconcileResult
from .update_queue import UpdateQueue

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DetectMedia:
    """Timer tick: read window titles and recognise media."""


@dataclass(frozen=True, slots=True)
class MediaDetected:
    recognized: RecognizedMedia | None


@dataclass(frozen=True, slots=True)
class SearchResults:
    recognized: RecognizedMedia
    candidates: tuple[Media, ...]


@dataclass(frozen=True, slots=True)
class MediaFound:
    result: ReconcileResult


@dataclass(frozen=True, slots=True)
class MediaNotFound:
    """The recognised title matched nothing in the user's lists."""


@dataclass(frozen=True, slots=True)
class UserFound:
    user: User


@dataclass(frozen=True, slots=True)
class RefreshLists:
    """Fetch fresh copies of the anime and manga lists."""


@dataclass(frozen=True, slots=True)
class ListsRetrieved:
    anime: MediaListCollection | None
    manga: MediaListCollection | None


@dataclass(frozen=True, slots=True)
class ProcessQueue:
    """Timer tick: send the next due update, if any."""


@dataclass(frozen=True, slots=True)
class UpdateFinished:
    entry: MediaList
    saved: MediaList | None


@dataclass(frozen=True, slots=True)
class CancelUpdate:
    media_id: int


Event = Union[
    DetectMedia,
    MediaDetected,
    SearchResults,
    MediaFound,
    MediaNotFound,
    UserFound,
    RefreshLists,
    ListsRetrieved,
    ProcessQueue,
    UpdateFinished,
    CancelUpdate,
]


class TrackerService:
    """Coordinates window recognition with the user's AniList lists.

    All state lives on the event loop: timer ticks and the completions of
    remote calls are funnelled through :meth:`dispatch`, so the lists and the
    update queue are never touched concurrently.
    """

    def __init__(
        self,
        settings: Settings,
        anilist_client: AniListClient,
        recognizer: MediaRecognizer,
        *,
        window_source: WindowTitleSource = list_open_window_titles,
        reconciler: ProgressReconciler | None = None,
        queue: UpdateQueue | None = None,
    ):
        self._settings = settings
        self._anilist = anilist_client
        self._recognizer = recognizer
        self._window_source = window_source
        self._reconciler = reconciler or ProgressReconciler()
        self.queue = queue or UpdateQueue(lambda: self._settings.update_delay_seconds)
        self.user: User | None = None
        self.lists: dict[MediaType, MediaListCollection] = {}
        self.recognized: RecognizedMedia | None = None
        self.current: ReconcileResult | None = None
        self._detect_task: asyncio.Task[None] | None = None
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def has_token(self) -> bool:
        return bool(self._settings.anilist_token)

    async def start(self) -> None:
        """Resolve the viewer and launch the detection loop."""

        if self.has_token:
            user = await self._anilist.fetch_viewer()
            if user is None:
                logger.warning("AniList viewer unavailable; list sync disabled until refresh")
            else:
                await self.dispatch(UserFound(user))
        else:
            logger.info("No AniList token configured; running recognition only")
        if self._detect_task is None:
            self._detect_task = asyncio.create_task(self._detect_loop())

    async def stop(self) -> None:
        """Stop the detection loop and abandon outstanding remote calls."""

        tasks = list(self._tasks)
        if self._detect_task is not None:
            tasks.append(self._detect_task)
            self._detect_task = None
        for task in tasks:
            task.cancel()
        for task in tasks:
            with suppress(asyncio.CancelledError):
                await task
        self._tasks.clear()

    async def drain(self) -> None:
        """Wait until every spawned remote call and its follow-ups finished."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _detect_loop(self) -> None:
        while True:
            try:
                await self.dispatch(DetectMedia())
                await self.dispatch(ProcessQueue())
            except Exception as exc:  # pragma: no cover - background safety net
                logger.exception("Detection tick failed: %s", exc)
            await asyncio.sleep(self._settings.detect_interval_seconds)

    def _spawn(self, coro: Awaitable[Event | None]) -> None:
        async def _runner() -> None:
            try:
                event = await coro
                if event is not None:
                    await self.dispatch(event)
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # pragma: no cover - background safety net
                logger.exception("Background AniList task failed: %s", exc)

        task = asyncio.create_task(_runner())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def dispatch(self, event: Event) -> None:
        """Apply one event to the tracker state."""

        if isinstance(event, DetectMedia):
            titles = await asyncio.to_thread(self._window_source)
            await self.dispatch(MediaDetected(self._recognizer.recognize(titles)))
        elif isinstance(event, MediaDetected):
            await self._on_media_detected(event.recognized)
        elif isinstance(event, SearchResults):
            await self._on_search_results(event.recognized, event.candidates)
        elif isinstance(event, MediaFound):
            self._on_media_found(event.result)
        elif isinstance(event, MediaNotFound):
            self.current = None
        elif isinstance(event, UserFound):
            self.user = event.user
            logger.info("Signed in to AniList as %s", event.user.name)
            await self.dispatch(RefreshLists())
        elif isinstance(event, RefreshLists):
            self._on_refresh_lists()
        elif isinstance(event, ListsRetrieved):
            self._on_lists_retrieved(event.anime, event.manga)
        elif isinstance(event, ProcessQueue):
            self._on_process_queue()
        elif isinstance(event, UpdateFinished):
            self._on_update_finished(event.entry, event.saved)
        elif isinstance(event, CancelUpdate):
            self.queue.remove(event.media_id)
        else:  # pragma: no cover - exhaustive over Event
            raise TypeError(f"Unknown tracker event {event!r}")

    async def _on_media_detected(self, recognized: RecognizedMedia | None) -> None:
        if recognized is None:
            if self.recognized is not None:
                logger.info("No media detected")
            self.recognized = None
            await self.dispatch(MediaNotFound())
            return
        if recognized == self.recognized:
            return

        logger.info("Detected %s: %s", recognized.title, recognized.describe())
        self.recognized = recognized
        index = self.lists.get(recognized.media_type)
        if index is None:
            logger.debug("%s list not loaded yet", recognized.media_type)
            return

        result = self._reconciler.reconcile(recognized, index)
        if result is not None:
            await self.dispatch(MediaFound(result))
        elif self.has_token:
            self._spawn(self._search(recognized))
        else:
            await self.dispatch(MediaNotFound())

    async def _search(self, recognized: RecognizedMedia) -> Event:
        candidates = await self._anilist.search(recognized.title, recognized.media_type)
        return SearchResults(recognized, tuple(candidates))

    async def _on_search_results(
        self, recognized: RecognizedMedia, candidates: tuple[Media, ...]
    ) -> None:
        if recognized != self.recognized:
            logger.debug("Dropping stale search results for %r", recognized.title)
            return
        index = self.lists.get(recognized.media_type)
        result = None
        if index is not None:
            result = self._reconciler.reconcile(recognized, index, candidates)
        if result is None:
            logger.info("No list entry found for %r", recognized.title)
            await self.dispatch(MediaNotFound())
            return
        await self.dispatch(MediaFound(result))

    def _on_media_found(self, result: ReconcileResult) -> None:
        previous = self.current
        if (
            previous is not None
            and previous.media_id != result.media_id
            and previous.media_id in self.queue
        ):
            self.queue.remove(previous.media_id)
        self.current = result
        if result.needs_update:
            self.queue.enqueue(result.entry)
        else:
            logger.debug("Media %s already up to date", result.media_id)

    def _on_refresh_lists(self) -> None:
        if self.user is None or not self.has_token:
            logger.debug("Skipping list refresh without a signed-in user")
            return
        self._spawn(self._fetch_lists(self.user.id))

    async def _fetch_lists(self, user_id: int) -> Event:
        anime, manga = await self._anilist.fetch_all_lists(user_id)
        return ListsRetrieved(anime, manga)

    def _on_lists_retrieved(
        self,
        anime: MediaListCollection | None,
        manga: MediaListCollection | None,
    ) -> None:
        for media_type, collection in (("ANIME", anime), ("MANGA", manga)):
            if collection is None:
                logger.warning("Keeping previous %s list after failed refresh", media_type)
                continue
            self.lists[media_type] = collection
            logger.info("Loaded %s %s list entries", len(collection), media_type)
        # Matches against the old lists are stale; recompute on the next tick.
        self.recognized = None
        self.current = None

    def _on_process_queue(self) -> None:
        if not self.has_token:
            return
        entry = self.queue.dequeue()
        if entry is not None:
            self._spawn(self._push(entry))

    async def _push(self, entry: MediaList) -> Event:
        saved: MediaList | None = None
        try:
            saved = await self._anilist.push_update(entry)
        except Exception as exc:
            logger.exception("Unexpected error updating media %s: %s", entry.media_id, exc)
        return UpdateFinished(entry, saved)

    def _on_update_finished(self, entry: MediaList, saved: MediaList | None) -> None:
        self.queue.complete()
        if saved is None:
            logger.warning("Update for media %s not applied this cycle", entry.media_id)
            if self.current is not None and self.current.media_id == entry.media_id:
                # Re-detect on the next tick so the update is queued again.
                self.recognized = None
            return

        logger.info(
            "Updated media %s: status %s, progress %s",
            saved.media_id,
            saved.status,
            saved.progress,
        )
        media_type = entry.media.media_type if entry.media else None
        index = self.lists.get(media_type) if media_type else None
        live = index.find_entry_by_id(saved.media_id) if index else None
        if live is not None:
            live.status = saved.status
            live.progress = saved.progress
            live.progress_volumes = saved.progress_volumes
            live.started_at = saved.started_at
            live.completed_at = saved.completed_at

    def cancel_update(self, media_id: int) -> bool:
        """Cancel a queued update; returns whether one was queued."""

        if media_id not in self.queue:
            return False
        self.queue.remove(media_id)
        return True

    def set_update_delay(self, seconds: int) -> None:
        """Change the debounce delay used by the update queue."""

        self._settings.update_delay_seconds = seconds
        logger.info("Update delay set to %ss", seconds)

    def status_payload(self) -> dict[str, Any]:
        """Expose the tracker's runtime state for the HTTP API."""

        current: dict[str, Any] | None = None
        if self.current is not None:
            entry = self.current.entry
            media = entry.media
            current = {
                "mediaId": entry.media_id,
                "title": media.preferred_title() if media else None,
                "status": entry.status,
                "progress": entry.progress_string(),
                "progressVolumes": (
                    entry.progress_volumes_string()
                    if media is not None and media.media_type == "MANGA"
                    else None
                ),
                "coverUrl": media.cover_url if media else None,
                "description": media.clean_description() if media else None,
                "needsUpdate": self.current.needs_update,
                "retargetedFrom": self.current.retargeted_from,
            }
        recognized: dict[str, Any] | None = None
        if self.recognized is not None:
            recognized = {
                **self.recognized.model_dump(mode="json"),
                "summary": self.recognized.describe(),
            }
        return {
            "user": self.user.to_payload() if self.user else None,
            "recognized": recognized,
            "current": current,
            "queue": self.queue.snapshot(),
            "inFlight": self.queue.in_flight,
            "updateDelaySeconds": self._settings.update_delay_seconds,
            "lists": {
                media_type: len(collection)
                for media_type, collection in self.lists.items()
            },
        }
