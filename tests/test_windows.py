"""Tests for window title enumeration helpers."""

from __future__ import annotations

import subprocess

from app import windows
from app.windows import parse_wmctrl_output


def test_parse_wmctrl_output_keeps_titles_with_spaces() -> None:
    output = (
        "0x01e00003  0 host Look Back - Oneshot - MangaDex - Mozilla Firefox\n"
        "0x02a00007 -1 host \n"
        "0x03400004  1 host   Terminal  \n"
        "garbage\n"
    )

    assert parse_wmctrl_output(output) == [
        "Look Back - Oneshot - MangaDex - Mozilla Firefox",
        "Terminal",
    ]


def test_missing_wmctrl_yields_no_titles(monkeypatch) -> None:
    def _missing(*args, **kwargs):
        raise FileNotFoundError("wmctrl")

    monkeypatch.setattr(windows.sys, "platform", "linux")
    monkeypatch.setattr(windows.subprocess, "run", _missing)

    assert windows.list_open_window_titles() == []


def test_wmctrl_output_is_parsed(monkeypatch) -> None:
    def _run(*args, **kwargs):
        return subprocess.CompletedProcess(args, 0, stdout="0x1 0 host Show Episode 1, A - Watch on Crunchyroll\n")

    monkeypatch.setattr(windows.sys, "platform", "linux")
    monkeypatch.setattr(windows.subprocess, "run", _run)

    assert windows.list_open_window_titles() == ["Show Episode 1, A - Watch on Crunchyroll"]
