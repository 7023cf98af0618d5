"""Map recognised media onto list entries and apply progress."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Callable, Sequence

from ..models import Media, MediaList, MediaListCollection, RecognizedMedia

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ReconcileResult:
    """Outcome of matching a recognised title against the user's lists."""

    entry: MediaList
    recognized: RecognizedMedia
    needs_update: bool
    progress: float | None
    retargeted_from: int | None = None

    @property
    def media_id(self) -> int:
        return self.entry.media_id


class ProgressReconciler:
    """Finds the list entry for recognised media and updates its progress.

    Absolute episode numbers (episode 351 of a long-running franchise) are
    translated into the matching season's own numbering by walking the
    single-prequel chain, or moved onto the single sequel when the number
    overflows the matched season.
    """

    def __init__(self, today: Callable[[], date] = date.today):
        self._today = today

    def match_entry(
        self,
        recognized: RecognizedMedia,
        index: MediaListCollection,
        candidates: Sequence[Media] | None = None,
    ) -> MediaList | None:
        if candidates is None:
            return index.search_for_title(recognized.title)
        media_id = index.best_id_for_search(
            candidates, recognized.title, recognized.oneshot
        )
        if media_id is None:
            return None
        return index.find_entry_by_id(media_id)

    def reconcile(
        self,
        recognized: RecognizedMedia,
        index: MediaListCollection,
        candidates: Sequence[Media] | None = None,
    ) -> ReconcileResult | None:
        """Match ``recognized`` and apply its progress to a copy of the entry.

        ``candidates`` are remote search results; without them the user's
        lists are searched directly. ``index`` is left untouched; the returned
        entry is the copy to hand to the update queue.
        """

        entry = self.match_entry(recognized, index, candidates)
        if entry is None:
            logger.debug("No list entry matches %r", recognized.title)
            return None

        progress = recognized.progress
        retargeted_from: int | None = None
        if recognized.media_type == "ANIME" and progress is not None:
            target, progress = self.resolve_offset(index, entry, progress)
            if target is not entry:
                retargeted_from = entry.media_id
                entry = target

        # The live entry only changes once the remote list confirms the update.
        updated = entry.model_copy(deep=True)
        needs_update = updated.update_progress(
            progress, recognized.progress_volumes, today=self._today()
        )
        return ReconcileResult(
            entry=updated,
            recognized=recognized,
            needs_update=needs_update,
            progress=progress,
            retargeted_from=retargeted_from,
        )

    def resolve_offset(
        self, index: MediaListCollection, entry: MediaList, progress: float
    ) -> tuple[MediaList, float]:
        """Return the entry and within-season number ``progress`` refers to.

        Falls back to ``(entry, progress)`` whenever the relation chain is
        missing or ambiguous.
        """

        media = entry.media
        new_progress = int(progress)
        if media is None or media.episodes is None or new_progress <= media.episodes:
            return entry, progress

        offset = self.compute_progress_offset(index, entry, new_progress)
        if offset is None:
            return entry, progress
        if 0 < offset <= media.episodes:
            logger.info(
                "Episode %s of media %s maps to episode %s of this season",
                new_progress,
                entry.media_id,
                offset,
            )
            return entry, offset

        sequel = self.compute_progress_offset_for_sequel(index, entry.media_id, new_progress)
        if sequel is None:
            return entry, progress
        sequel_offset, sequel_id = sequel
        sequel_entry = index.find_entry_by_id(sequel_id)
        if sequel_entry is None or sequel_entry.media is None:
            return entry, progress
        sequel_episodes = sequel_entry.media.episodes
        if sequel_offset <= 0 or (sequel_episodes is not None and sequel_offset > sequel_episodes):
            return entry, progress
        logger.info(
            "Episode %s of media %s belongs to sequel %s as episode %s",
            new_progress,
            entry.media_id,
            sequel_id,
            sequel_offset,
        )
        return sequel_entry, sequel_offset

    def compute_total_episodes(
        self,
        index: MediaListCollection,
        media: Media,
        new_progress: int,
        _visited: frozenset[int] = frozenset(),
    ) -> int | None:
        """Count episodes from the start of the prequel chain through ``media``.

        The walk stops as soon as the accumulated count reaches
        ``new_progress``. It only follows a chain with exactly one TV prequel
        per step and stops on cycles.
        """

        length = media.episodes
        if length is None:
            return None
        if new_progress <= length:
            return length

        prequels = media.find_anime_prequels()
        if len(prequels) != 1:
            return length

        visited = _visited | {media.id}
        prequel_id = prequels[0].id
        if prequel_id in visited:
            logger.warning("Prequel cycle detected at media %s", prequel_id)
            return length

        prequel_entry = index.find_entry_by_id(prequel_id)
        if prequel_entry is None or prequel_entry.media is None:
            return None
        prequel_media = prequel_entry.media
        if prequel_media.episodes is None:
            return None

        if prequel_media.episodes + length < new_progress:
            earlier = self.compute_total_episodes(
                index, prequel_media, new_progress, visited
            )
            if earlier is None:
                return length
            return length + earlier
        return prequel_media.episodes + length

    def compute_progress_offset(
        self, index: MediaListCollection, entry: MediaList, new_progress: int
    ) -> int | None:
        media = entry.media
        if media is None:
            return None
        length = media.episodes or 0
        if new_progress <= length:
            return None
        total = self.compute_total_episodes(index, media, new_progress)
        if total is None:
            return None
        return new_progress - total + length

    def compute_progress_offset_by_id(
        self, index: MediaListCollection, media_id: int, new_progress: int
    ) -> int | None:
        entry = index.find_entry_by_id(media_id)
        if entry is None:
            return None
        return self.compute_progress_offset(index, entry, new_progress)

    def compute_progress_offset_for_sequel(
        self, index: MediaListCollection, media_id: int, new_progress: int
    ) -> tuple[int, int] | None:
        """Return ``(offset, sequel_id)`` for the single TV sequel of ``media_id``."""

        entry = index.find_entry_by_id(media_id)
        if entry is None or entry.media is None:
            return None
        sequel = entry.media.find_anime_sequel()
        if sequel is None:
            return None
        offset = self.compute_progress_offset_by_id(index, sequel.id, new_progress)
        if offset is None:
            return None
        return offset, sequel.id
