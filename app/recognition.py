"""Window-title recognition: compiled pattern sets and the recognizer."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, Mapping

from .models import MediaType, RecognizedMedia
from .patterns import PATTERN_CATEGORIES, PatternCategory, RecognitionPatterns
from .utils import parse_number

logger = logging.getLogger(__name__)

NAMED_GROUP_RE = re.compile(r"\(\?P<[A-Za-z_][A-Za-z0-9_]*>")
BACKREFERENCE_RE = re.compile(r"\\[1-9]|\(\?P=")

CATEGORY_MEDIA_TYPES: Mapping[PatternCategory, MediaType] = {
    "anime": "ANIME",
    "manga": "MANGA",
}


@dataclass
class PatternSet:
    """The patterns of one category compiled for fast screening.

    ``screen`` joins every pattern into one alternation so a title that
    matches nothing is rejected in a single pass; ``regex_map`` keeps each
    pattern's own compiled form for the capture pass.
    """

    patterns: tuple[str, ...]
    regex_map: dict[str, re.Pattern[str]] = field(default_factory=dict)
    screen: re.Pattern[str] | None = None

    @classmethod
    def compile(cls, category: str, patterns: Iterable[str]) -> "PatternSet":
        kept: list[str] = []
        regex_map: dict[str, re.Pattern[str]] = {}
        for pattern in patterns:
            if pattern in regex_map:
                continue
            try:
                regex = re.compile(pattern)
            except re.error as exc:
                logger.warning("Skipping invalid %s pattern %r: %s", category, pattern, exc)
                continue
            if "title" not in regex.groupindex:
                logger.warning("Skipping %s pattern without a title group: %r", category, pattern)
                continue
            regex_map[pattern] = regex
            kept.append(pattern)
        return cls(
            patterns=tuple(kept),
            regex_map=regex_map,
            screen=_build_screen(category, kept),
        )

    def is_match(self, text: str) -> bool:
        if not self.patterns:
            return False
        if self.screen is not None:
            return self.screen.search(text) is not None
        return self.match_pattern(text) is not None

    def match_pattern(self, text: str) -> str | None:
        """Return the first pattern, in configured order, that matches ``text``."""

        for pattern in self.patterns:
            if self.regex_map[pattern].search(text):
                return pattern
        return None

    def captures(self, text: str) -> re.Match[str] | None:
        if not self.is_match(text):
            return None
        pattern = self.match_pattern(text)
        if pattern is None:
            return None
        return self.regex_map[pattern].search(text)


def _build_screen(category: str, patterns: list[str]) -> re.Pattern[str] | None:
    if not patterns or any(BACKREFERENCE_RE.search(p) for p in patterns):
        return None
    # Group names may repeat across patterns, so the screen uses plain groups.
    anonymous = [NAMED_GROUP_RE.sub("(?:", pattern) for pattern in patterns]
    try:
        return re.compile("|".join(f"(?:{pattern})" for pattern in anonymous))
    except re.error as exc:
        logger.debug("No combined screen for %s patterns: %s", category, exc)
        return None


class PatternCatalog:
    """Compiled pattern sets keyed by category."""

    def __init__(self, sets: Mapping[PatternCategory, PatternSet]):
        self._sets = dict(sets)

    @classmethod
    def from_patterns(cls, patterns: RecognitionPatterns) -> "PatternCatalog":
        return cls(
            {
                category: PatternSet.compile(category, patterns.for_category(category))
                for category in PATTERN_CATEGORIES
            }
        )

    def captures(self, category: PatternCategory, text: str) -> re.Match[str] | None:
        pattern_set = self._sets.get(category)
        if pattern_set is None:
            return None
        return pattern_set.captures(text)


class MediaRecognizer:
    """Turns raw window titles into a :class:`RecognizedMedia`."""

    def __init__(self, catalog: PatternCatalog):
        self._catalog = catalog

    def recognize(self, window_titles: Iterable[str]) -> RecognizedMedia | None:
        """Return the media of the first title any pattern recognises.

        Titles are tried in enumeration order and, for each title, anime
        patterns before manga patterns.
        """

        for window_title in window_titles:
            if not window_title:
                continue
            for category in PATTERN_CATEGORIES:
                recognized = self.recognize_title(window_title, category)
                if recognized is not None:
                    return recognized
        return None

    def recognize_title(
        self, window_title: str, category: PatternCategory
    ) -> RecognizedMedia | None:
        match = self._catalog.captures(category, window_title)
        if match is None:
            return None
        groups = match.groupdict()
        title = (groups.get("title") or "").strip()
        if not title:
            logger.debug("Pattern matched %r without a title", window_title)
            return None

        if category == "anime":
            progress = parse_number(groups.get("episode"), field="episode")
            volumes = None
        else:
            progress = parse_number(groups.get("chapter"), field="chapter")
            volumes = parse_number(groups.get("volume"), field="volume")

        return RecognizedMedia(
            title=title,
            media_type=CATEGORY_MEDIA_TYPES[category],
            progress=progress,
            progress_volumes=volumes,
            oneshot=bool(groups.get("oneshot")),
        )
