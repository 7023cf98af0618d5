"""Tests for matching recognised media to list entries and episode offsets."""

from __future__ import annotations

from datetime import date
from typing import Any

import pytest

from app.models import Media, MediaListCollection, RecognizedMedia
from app.services.reconciler import ProgressReconciler


def edge(relation: str, media_id: int, media_format: str = "TV") -> dict[str, Any]:
    return {"relationType": relation, "node": {"id": media_id, "type": "ANIME", "format": media_format}}


def season(
    media_id: int,
    title: str,
    episodes: int | None,
    *edges: dict[str, Any],
    progress: int = 0,
) -> dict[str, Any]:
    return {
        "id": media_id + 100,
        "mediaId": media_id,
        "status": "CURRENT",
        "progress": progress,
        "media": {
            "id": media_id,
            "type": "ANIME",
            "format": "TV",
            "episodes": episodes,
            "title": {"romaji": title},
            "relations": {"edges": list(edges)},
        },
    }


def build_index(*entries: dict[str, Any]) -> MediaListCollection:
    return MediaListCollection.model_validate(
        {"lists": [{"name": "Watching", "status": "CURRENT", "entries": list(entries)}]}
    )


@pytest.fixture
def reconciler() -> ProgressReconciler:
    return ProgressReconciler(today=lambda: date(2024, 5, 20))


def test_total_episodes_walks_single_prequel(reconciler: ProgressReconciler) -> None:
    """Episode 300 of a 24-episode season after a 276-episode prequel is its finale."""

    index = build_index(
        season(1, "Franchise", 276, edge("SEQUEL", 2)),
        season(2, "Franchise Final Season", 24, edge("PREQUEL", 1)),
    )
    entry = index.find_entry_by_id(2)
    assert entry is not None and entry.media is not None

    assert reconciler.compute_total_episodes(index, entry.media, 300) == 300
    assert reconciler.compute_progress_offset(index, entry, 300) == 24


def test_total_episodes_accumulates_long_chains(reconciler: ProgressReconciler) -> None:
    index = build_index(
        season(1, "Part 1", 12),
        season(2, "Part 2", 12, edge("PREQUEL", 1)),
        season(3, "Part 3", 12, edge("PREQUEL", 2)),
    )
    entry = index.find_entry_by_id(3)
    assert entry is not None and entry.media is not None

    assert reconciler.compute_total_episodes(index, entry.media, 30) == 36
    assert reconciler.compute_progress_offset(index, entry, 30) == 6


def test_ambiguous_prequels_stop_the_walk(reconciler: ProgressReconciler) -> None:
    media = Media.model_validate(
        {
            "id": 3,
            "type": "ANIME",
            "format": "TV",
            "episodes": 12,
            "relations": {"edges": [edge("PREQUEL", 1), edge("PREQUEL", 2)]},
        }
    )

    assert reconciler.compute_total_episodes(build_index(), media, 40) == 12


def test_non_tv_prequels_are_ignored(reconciler: ProgressReconciler) -> None:
    index = build_index(season(2, "Show", 12, edge("PREQUEL", 1, "MOVIE")))
    entry = index.find_entry_by_id(2)
    assert entry is not None and entry.media is not None

    assert reconciler.compute_total_episodes(index, entry.media, 20) == 12


def test_unknown_episode_counts_give_no_total(reconciler: ProgressReconciler) -> None:
    index = build_index(
        season(1, "Part 1", None),
        season(2, "Part 2", 12, edge("PREQUEL", 1)),
    )
    entry = index.find_entry_by_id(2)
    assert entry is not None and entry.media is not None

    assert reconciler.compute_total_episodes(index, entry.media, 20) is None
    assert reconciler.compute_progress_offset(index, entry, 20) is None


def test_prequel_cycles_terminate(reconciler: ProgressReconciler) -> None:
    index = build_index(
        season(1, "Loop A", 10, edge("PREQUEL", 2)),
        season(2, "Loop B", 10, edge("PREQUEL", 1)),
    )
    entry = index.find_entry_by_id(1)
    assert entry is not None and entry.media is not None

    total = reconciler.compute_total_episodes(index, entry.media, 500)

    assert total is not None
    assert total < 500


def test_reconcile_applies_offset_to_matched_season(reconciler: ProgressReconciler) -> None:
    index = build_index(
        season(1, "One Piece Film", 276, edge("SEQUEL", 2), progress=276),
        season(2, "One Piece", 24, edge("PREQUEL", 1), progress=10),
    )

    result = reconciler.reconcile(
        RecognizedMedia(title="One Piece", media_type="ANIME", progress=290), index
    )

    assert result is not None
    assert result.media_id == 2
    assert result.progress == 14
    assert result.needs_update is True
    assert result.entry.progress == 14
    assert result.retargeted_from is None


def test_reconcile_moves_overflow_to_sequel(reconciler: ProgressReconciler) -> None:
    """Episode 30 of a 24-episode first season belongs to the sequel."""

    index = build_index(
        season(1, "Mob Psycho", 24, edge("SEQUEL", 2), progress=24),
        season(2, "Mob Psycho II", 24, edge("PREQUEL", 1), progress=3),
    )

    assert reconciler.compute_progress_offset_for_sequel(index, 1, 30) == (6, 2)

    result = reconciler.reconcile(
        RecognizedMedia(title="Mob Psycho", media_type="ANIME", progress=30), index
    )

    assert result is not None
    assert result.media_id == 2
    assert result.retargeted_from == 1
    assert result.progress == 6
    assert result.entry.progress == 6


def test_reconcile_without_relations_keeps_number(reconciler: ProgressReconciler) -> None:
    index = build_index(season(1, "Gintama", 12, progress=5))

    result = reconciler.reconcile(
        RecognizedMedia(title="Gintama", media_type="ANIME", progress=40), index
    )

    assert result is not None
    assert result.media_id == 1
    assert result.progress == 40
    assert result.entry.progress == 40


def test_reconcile_leaves_index_untouched(reconciler: ProgressReconciler) -> None:
    """Progress lands on a copy; the list entry waits for the remote save."""

    index = build_index(season(1, "Bocchi the Rock", 12, progress=0))
    index.lists[0].entries[0].status = "PLANNING"

    result = reconciler.reconcile(
        RecognizedMedia(title="Bocchi the Rock", media_type="ANIME", progress=1), index
    )

    assert result is not None
    live = index.find_entry_by_id(1)
    assert live is not None
    assert live.progress == 0
    assert live.status == "PLANNING"
    assert live.started_at is None
    assert result.entry is not live
    assert result.needs_update is True
    assert result.entry.progress == 1
    assert result.entry.status == "CURRENT"
    assert result.entry.started_at is not None
    assert result.entry.started_at.day == 20


def test_reconcile_reports_no_change_for_old_progress(reconciler: ProgressReconciler) -> None:
    index = build_index(season(1, "Bocchi the Rock", 12, progress=8))

    result = reconciler.reconcile(
        RecognizedMedia(title="Bocchi the Rock", media_type="ANIME", progress=3), index
    )

    assert result is not None
    assert result.needs_update is False
    assert result.entry.progress == 8


def test_reconcile_uses_search_candidates(reconciler: ProgressReconciler) -> None:
    index = build_index(season(7, "Shingeki no Kyojin", 25, progress=2))
    candidates = [
        Media.model_validate(
            {
                "id": 7,
                "type": "ANIME",
                "format": "TV",
                "title": {"english": "Attack on Titan"},
                "mediaListEntry": {"id": 107},
            }
        )
    ]

    assert reconciler.reconcile(
        RecognizedMedia(title="Attack on Titan", media_type="ANIME", progress=3), index
    ) is None

    result = reconciler.reconcile(
        RecognizedMedia(title="Attack on Titan", media_type="ANIME", progress=3),
        index,
        candidates,
    )

    assert result is not None
    assert result.media_id == 7
    assert result.entry.progress == 3
