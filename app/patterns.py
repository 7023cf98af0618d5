"""Default recognition patterns and recognition file loading."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Literal

logger = logging.getLogger(__name__)

PatternCategory = Literal["anime", "manga"]

PATTERN_CATEGORIES: tuple[PatternCategory, ...] = ("anime", "manga")

DEFAULT_ANIME_PATTERNS: tuple[str, ...] = (
    r"^(?P<title>.+) Episode (?P<episode>\d+),.+?- Watch on Crunchyroll",
)

DEFAULT_MANGA_PATTERNS: tuple[str, ...] = (
    r"^(?P<title>.+) - (Vol[.] (?P<volume>\d+) )?(Ch[.] (?P<chapter>(\d+[.])?\d+) )?"
    r"(?P<oneshot>Oneshot)?.*?- MangaDex",
)


@dataclass(frozen=True)
class RecognitionPatterns:
    """The two named pattern lists handed to the recognizer."""

    anime: tuple[str, ...] = DEFAULT_ANIME_PATTERNS
    manga: tuple[str, ...] = DEFAULT_MANGA_PATTERNS

    def for_category(self, category: PatternCategory) -> tuple[str, ...]:
        return self.anime if category == "anime" else self.manga

    def extended(self, other: "RecognitionPatterns") -> "RecognitionPatterns":
        """Return a copy with ``other``'s patterns appended, skipping duplicates."""

        return RecognitionPatterns(
            anime=_merge(self.anime, other.anime),
            manga=_merge(self.manga, other.manga),
        )


def _merge(first: Iterable[str], second: Iterable[str]) -> tuple[str, ...]:
    merged: list[str] = []
    for pattern in (*first, *second):
        if pattern not in merged:
            merged.append(pattern)
    return tuple(merged)


def read_recognition_file(path: Path) -> RecognitionPatterns | None:
    """Load ``{"anime": [...], "manga": [...]}`` from ``path``.

    Missing or malformed files are logged and yield ``None`` so start-up can
    continue with whatever patterns are already configured.
    """

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        logger.warning("Could not open recognition file %s", path)
        return None
    except (OSError, ValueError) as exc:
        logger.warning("Error reading recognition file %s: %s", path, exc)
        return None

    if not isinstance(raw, dict):
        logger.warning("Recognition file %s must contain a JSON object", path)
        return None

    lists: dict[str, tuple[str, ...]] = {}
    for category in PATTERN_CATEGORIES:
        values = raw.get(category) or []
        if not isinstance(values, list):
            logger.warning(
                "Ignoring %s patterns in %s: expected a list", category, path
            )
            values = []
        lists[category] = tuple(value for value in values if isinstance(value, str))
    return RecognitionPatterns(anime=lists["anime"], manga=lists["manga"])


def load_recognition_patterns(
    base: RecognitionPatterns,
    *,
    recognition_file: Path | None = None,
    custom_file: Path | None = None,
) -> RecognitionPatterns:
    """Combine configured patterns with the optional recognition files.

    A recognition file replaces ``base`` entirely; a custom file is appended.
    """

    patterns = base
    if recognition_file is not None:
        loaded = read_recognition_file(recognition_file)
        if loaded is not None:
            patterns = loaded
    if custom_file is not None:
        custom = read_recognition_file(custom_file)
        if custom is not None:
            patterns = patterns.extended(custom)
    return patterns
