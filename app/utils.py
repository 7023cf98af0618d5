"""Utility helpers for the Fubuki tracker."""

from __future__ import annotations

import logging
import math
import re
from typing import Iterable

from rapidfuzz.distance import Levenshtein

logger = logging.getLogger(__name__)

SIMILARITY_THRESHOLD = 0.85

HTML_TAG_RE = re.compile(r"<.+?>")
LINE_BREAK_RE = re.compile(r"<br\s*/?>", re.IGNORECASE)


def title_similarity(left: str, right: str) -> float:
    """Return the normalised Levenshtein similarity of two titles in ``[0, 1]``."""

    if not left and not right:
        return 1.0
    return float(Levenshtein.normalized_similarity(left, right))


def best_similarity(titles: Iterable[str], query: str) -> float:
    """Return the highest similarity between ``query`` and any of ``titles``."""

    best = 0.0
    for title in titles:
        similarity = title_similarity(title, query)
        if similarity > best:
            best = similarity
            if best >= 1.0:
                break
    return best


def clean_description(value: str) -> str:
    """Turn AniList's HTML description into plain text."""

    value = LINE_BREAK_RE.sub("\n", value)
    return HTML_TAG_RE.sub("", value)


def parse_number(value: str | None, *, field: str) -> float | None:
    """Parse a captured progress value, logging instead of raising."""

    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    try:
        number = float(value)
    except ValueError:
        logger.warning("Could not parse %s value %r as a number", field, value)
        return None
    if not math.isfinite(number):
        logger.warning("Ignoring non-finite %s value %r", field, value)
        return None
    return number
