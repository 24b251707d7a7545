"""Program-name matching and window-title cleanup."""

from __future__ import annotations

import re
from typing import Iterable, Optional

_BROWSER_SUFFIXES: dict[str, tuple[str, ...]] = {
    "msedge": (" - Microsoft Edge",),
    "chrome": (" - Google Chrome",),
    "google chrome": (" - Google Chrome",),
    "firefox": (" - Mozilla Firefox", " — Mozilla Firefox"),
    "brave": (" - Brave",),
    "opera": (" - Opera",),
}

_EXECUTABLE_SUFFIX = re.compile(r"\.(exe|app)$", re.IGNORECASE)


def normalize_process_name(value: Optional[str]) -> Optional[str]:
    """Lowercase a process name and drop a trailing ``.exe``/``.app``."""
    if value is None:
        return None
    lowered = _EXECUTABLE_SUFFIX.sub("", value.strip()).lower()
    return lowered or None


def program_matches(program_name: Optional[str], matcher: Optional[str]) -> bool:
    """Case-insensitive containment in either direction.

    ``"Microsoft Word"`` matches ``"word"`` and ``"Code"`` matches
    ``"Visual Studio Code"``. Empty values never match.
    """
    if not program_name or not matcher:
        return False
    program = program_name.strip().lower()
    pattern = matcher.strip().lower()
    if not program or not pattern:
        return False
    return pattern in program or program in pattern


def matches_any(program_name: Optional[str], matchers: Iterable[str]) -> bool:
    return any(program_matches(program_name, matcher) for matcher in matchers)


def normalize_window_title(process_name: Optional[str], window_title: Optional[str]) -> str:
    """Remove common browser suffixes and tab counters so tab churn stays quiet."""
    if not window_title:
        return ""
    normalized = window_title.strip()
    process_key = normalize_process_name(process_name)
    suffixes = _BROWSER_SUFFIXES.get(process_key or "")
    if suffixes:
        for suffix in suffixes:
            if normalized.endswith(suffix):
                normalized = normalized[: -len(suffix)].rstrip(" -")
                break

    normalized = _strip_tab_count(normalized)
    return re.sub(r"\s{2,}", " ", normalized).strip()


_EXTRA_TAB_COUNT_PATTERN = re.compile(r"\s+and\s+\d+\s+more\s+pages?", re.IGNORECASE)


def _strip_tab_count(value: str) -> str:
    cleaned = _EXTRA_TAB_COUNT_PATTERN.sub("", value)
    return cleaned.strip(" -|")
