"""Tests for window-title recognition."""

from __future__ import annotations

import pytest

from app.patterns import RecognitionPatterns
from app.recognition import MediaRecognizer, PatternCatalog, PatternSet


@pytest.fixture
def recognizer() -> MediaRecognizer:
    return MediaRecognizer(PatternCatalog.from_patterns(RecognitionPatterns()))


def test_recognizes_mangadex_chapter(recognizer: MediaRecognizer) -> None:
    result = recognizer.recognize(
        ["Tobaku Datenroku Kaiji: 24-Oku Dasshutsu Hen - Ch. 351 Intimacy - MangaDex - Mozilla Firefox"]
    )

    assert result is not None
    assert result.title == "Tobaku Datenroku Kaiji: 24-Oku Dasshutsu Hen"
    assert result.media_type == "MANGA"
    assert result.progress == 351
    assert result.progress_volumes is None
    assert result.oneshot is False


def test_recognizes_mangadex_volume_and_decimal_chapter(recognizer: MediaRecognizer) -> None:
    result = recognizer.recognize(
        ["Boku no Kokoro no Yabai Yatsu - Vol. 3 Ch. 39.1 - MangaDex - Google Chrome"]
    )

    assert result is not None
    assert result.title == "Boku no Kokoro no Yabai Yatsu"
    assert result.progress == pytest.approx(39.1)
    assert result.progress_volumes == 3


def test_recognizes_mangadex_oneshot(recognizer: MediaRecognizer) -> None:
    result = recognizer.recognize(["Look Back - Oneshot - MangaDex"])

    assert result is not None
    assert result.title == "Look Back"
    assert result.oneshot is True
    assert result.progress is None


def test_recognizes_crunchyroll_episode(recognizer: MediaRecognizer) -> None:
    result = recognizer.recognize(
        ["Frieren: Beyond Journey's End Episode 5, Phantoms of the Dead - Watch on Crunchyroll - Firefox"]
    )

    assert result is not None
    assert result.title == "Frieren: Beyond Journey's End"
    assert result.media_type == "ANIME"
    assert result.progress == 5


def test_unmatched_titles_yield_nothing(recognizer: MediaRecognizer) -> None:
    assert recognizer.recognize(["Terminal", "", "Inbox - Mail"]) is None
    assert recognizer.recognize([]) is None


def test_first_recognized_window_wins(recognizer: MediaRecognizer) -> None:
    result = recognizer.recognize(
        [
            "Editor",
            "Look Back - Oneshot - MangaDex",
            "Show Episode 2, Title - Watch on Crunchyroll",
        ]
    )

    assert result is not None
    assert result.title == "Look Back"


def test_anime_patterns_are_tried_before_manga() -> None:
    patterns = RecognitionPatterns(
        anime=(r"^(?P<title>.+) #(?P<episode>\d+)$",),
        manga=(r"^(?P<title>.+) #(?P<chapter>\d+)$",),
    )
    recognizer = MediaRecognizer(PatternCatalog.from_patterns(patterns))

    result = recognizer.recognize(["Ambiguous #4"])

    assert result is not None
    assert result.media_type == "ANIME"
    assert result.progress == 4


def test_empty_title_group_is_not_recognized() -> None:
    patterns = RecognitionPatterns(anime=(r"^(?P<title>.*)Episode (?P<episode>\d+)",), manga=())
    recognizer = MediaRecognizer(PatternCatalog.from_patterns(patterns))

    assert recognizer.recognize(["Episode 3"]) is None
    assert recognizer.recognize(["   Episode 3"]) is None


def test_unparseable_progress_keeps_title() -> None:
    patterns = RecognitionPatterns(anime=(r"^(?P<title>.+?) Ep (?P<episode>\S+)$",), manga=())
    recognizer = MediaRecognizer(PatternCatalog.from_patterns(patterns))

    result = recognizer.recognize(["Mushishi Ep twelve"])

    assert result is not None
    assert result.title == "Mushishi"
    assert result.progress is None


def test_invalid_and_titleless_patterns_are_skipped() -> None:
    pattern_set = PatternSet.compile(
        "anime",
        [r"(?P<title>broken", r"Episode (?P<episode>\d+)", r"^(?P<title>.+) ep(?P<episode>\d+)$"],
    )

    assert pattern_set.patterns == (r"^(?P<title>.+) ep(?P<episode>\d+)$",)
    assert pattern_set.is_match("Show ep3")
    assert not pattern_set.is_match("Episode 3")


def test_first_configured_pattern_supplies_captures() -> None:
    pattern_set = PatternSet.compile(
        "manga",
        [r"^(?P<title>.+) c(?P<chapter>\d+)", r"^(?P<title>.+) c(?P<chapter>\d)"],
    )

    assert pattern_set.screen is not None
    assert pattern_set.match_pattern("Blame c12") == pattern_set.patterns[0]
    match = pattern_set.captures("Blame c12")
    assert match is not None and match.group("chapter") == "12"


def test_backreferences_fall_back_to_pattern_scan() -> None:
    pattern_set = PatternSet.compile("anime", [r"^(?P<title>(\w)\2+) (?P<episode>\d+)$"])

    assert pattern_set.screen is None
    assert pattern_set.is_match("aaa 3")
    assert not pattern_set.is_match("abc 3")
