"""Enumeration of open window titles."""

from __future__ import annotations

import logging
import subprocess
import sys
from typing import Callable

logger = logging.getLogger(__name__)

WindowTitleSource = Callable[[], list[str]]


def list_open_window_titles() -> list[str]:
    """Return the titles of visible windows in the window manager's order."""

    if sys.platform == "win32":
        return _windows_titles()
    return _wmctrl_titles()


def _windows_titles() -> list[str]:
    import pygetwindow as gw

    try:
        titles = gw.getAllTitles()
    except Exception as exc:  # pragma: no cover - depends on the desktop session
        logger.warning("Could not enumerate windows: %s", exc)
        return []
    return [title for title in titles if title]


def _wmctrl_titles() -> list[str]:
    try:
        completed = subprocess.run(
            ["wmctrl", "-l"],
            capture_output=True,
            text=True,
            check=True,
            timeout=5,
        )
    except FileNotFoundError:
        logger.warning("wmctrl is not installed; no window titles available")
        return []
    except (subprocess.CalledProcessError, subprocess.TimeoutExpired) as exc:
        logger.warning("Could not enumerate windows: %s", exc)
        return []
    return parse_wmctrl_output(completed.stdout)


def parse_wmctrl_output(output: str) -> list[str]:
    """Extract titles from ``wmctrl -l`` lines (id, desktop, host, title)."""

    titles: list[str] = []
    for line in output.splitlines():
        parts = line.split(None, 3)
        if len(parts) < 4:
            continue
        title = parts[3].strip()
        if title:
            titles.append(title)
    return titles
