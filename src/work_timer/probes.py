"""Platform probes for the foreground window and system idle time.

A probe is a zero-argument callable. Foreground probes return a
:class:`ForegroundProgram` or ``None``; idle probes return idle seconds or
``None``. Probes never raise for ordinary OS failures: they log at debug
level and return ``None`` so the observer retries on its next tick.
"""

from __future__ import annotations

import ctypes
import logging
import re
import shutil
import subprocess
import sys
from typing import Callable, Optional

import psutil

from .models import ForegroundProgram
from .normalization import normalize_window_title

logger = logging.getLogger(__name__)

ForegroundProbe = Callable[[], Optional[ForegroundProgram]]
IdleProbe = Callable[[], Optional[float]]

_SUBPROCESS_TIMEOUT = 2.0


def _process_name(pid: int) -> Optional[str]:
    try:
        return psutil.Process(pid).name() if pid else None
    except (psutil.Error, ProcessLookupError):
        return None


def _program(name: Optional[str], title: Optional[str], bundle_id: Optional[str] = None):
    if not name:
        name = title
    if not name:
        return None
    return ForegroundProgram(
        name=name,
        title=normalize_window_title(name, title),
        bundle_id=bundle_id,
    )


def _run(args: list[str]) -> Optional[str]:
    try:
        result = subprocess.run(
            args,
            capture_output=True,
            text=True,
            check=True,
            timeout=_SUBPROCESS_TIMEOUT,
        )
    except (subprocess.CalledProcessError, subprocess.TimeoutExpired, OSError) as exc:
        logger.debug("%s failed: %s", args[0], exc)
        return None
    return result.stdout.strip()


class WindowsActiveWindowProbe:
    """Retrieves the foreground window title and process name."""

    def __init__(self) -> None:
        self._user32 = ctypes.windll.user32  # type: ignore[attr-defined]

    def __call__(self) -> Optional[ForegroundProgram]:
        from ctypes import wintypes

        hwnd = self._user32.GetForegroundWindow()
        if not hwnd:
            return None

        length = self._user32.GetWindowTextLengthW(hwnd)
        buffer = ctypes.create_unicode_buffer(length + 1)
        self._user32.GetWindowTextW(hwnd, buffer, length + 1)

        pid = wintypes.DWORD()
        self._user32.GetWindowThreadProcessId(hwnd, ctypes.byref(pid))
        return _program(_process_name(pid.value), buffer.value.strip())


class WindowsIdleProbe:
    """Reads seconds since the last input event from Win32."""

    def __init__(self) -> None:
        from ctypes import wintypes

        class LASTINPUTINFO(ctypes.Structure):
            _fields_ = [("cbSize", wintypes.UINT), ("dwTime", wintypes.DWORD)]

        self._info_type = LASTINPUTINFO
        self._user32 = ctypes.windll.user32  # type: ignore[attr-defined]
        self._kernel32 = ctypes.windll.kernel32  # type: ignore[attr-defined]
        self._kernel32.GetTickCount.restype = ctypes.c_uint32

    def __call__(self) -> Optional[float]:
        last_input = self._info_type()
        last_input.cbSize = ctypes.sizeof(last_input)
        if not self._user32.GetLastInputInfo(ctypes.byref(last_input)):
            logger.debug("GetLastInputInfo failed.")
            return None
        # Both values are 32-bit tick counts; mask handles the 49.7 day wrap.
        elapsed_ms = (self._kernel32.GetTickCount() - last_input.dwTime) & 0xFFFFFFFF
        return elapsed_ms / 1000.0


class LinuxActiveWindowProbe:
    """X11 foreground window via ``xdotool``."""

    def __call__(self) -> Optional[ForegroundProgram]:
        pid_text = _run(["xdotool", "getactivewindow", "getwindowpid"])
        if not pid_text or not pid_text.isdigit():
            return None
        title = _run(["xdotool", "getactivewindow", "getwindowname"]) or ""
        return _program(_process_name(int(pid_text)), title)


class LinuxIdleProbe:
    """X11 idle time via ``xprintidle`` (milliseconds)."""

    def __call__(self) -> Optional[float]:
        output = _run(["xprintidle"])
        if not output or not output.isdigit():
            return None
        return int(output) / 1000.0


_MAC_FRONT_APP_SCRIPT = (
    'tell application "System Events"\n'
    "  set frontApp to first application process whose frontmost is true\n"
    "  set appName to name of frontApp\n"
    "  set bundleId to bundle identifier of frontApp\n"
    '  set winTitle to ""\n'
    "  try\n"
    "    set winTitle to name of front window of frontApp\n"
    "  end try\n"
    "end tell\n"
    'return appName & "\\n" & bundleId & "\\n" & winTitle'
)

_HID_IDLE_PATTERN = re.compile(r'"HIDIdleTime"\s*=\s*(\d+)')


class MacActiveWindowProbe:
    def __call__(self) -> Optional[ForegroundProgram]:
        output = _run(["osascript", "-e", _MAC_FRONT_APP_SCRIPT])
        if not output:
            return None
        name, _, rest = output.partition("\n")
        bundle_id, _, title = rest.partition("\n")
        return _program(name.strip(), title.strip(), bundle_id.strip() or None)


class MacIdleProbe:
    """Idle time from the ``IOHIDSystem`` registry entry (nanoseconds)."""

    def __call__(self) -> Optional[float]:
        output = _run(["ioreg", "-c", "IOHIDSystem", "-d", "4"])
        if not output:
            return None
        match = _HID_IDLE_PATTERN.search(output)
        if match is None:
            return None
        return int(match.group(1)) / 1_000_000_000


def _unavailable_foreground() -> Optional[ForegroundProgram]:
    return None


def _unavailable_idle() -> Optional[float]:
    return None


def default_probes() -> tuple[ForegroundProbe, IdleProbe]:
    """Return the foreground and idle probes for the running platform."""
    if sys.platform.startswith("win"):
        return WindowsActiveWindowProbe(), WindowsIdleProbe()
    if sys.platform == "darwin":
        return MacActiveWindowProbe(), MacIdleProbe()
    if sys.platform.startswith("linux"):
        foreground: ForegroundProbe = LinuxActiveWindowProbe()
        idle: IdleProbe = LinuxIdleProbe()
        if shutil.which("xdotool") is None:
            logger.warning("xdotool not found; foreground tracking disabled.")
            foreground = _unavailable_foreground
        if shutil.which("xprintidle") is None:
            logger.warning("xprintidle not found; idle detection disabled.")
            idle = _unavailable_idle
        return foreground, idle
    logger.warning("No probes available for platform %s.", sys.platform)
    return _unavailable_foreground, _unavailable_idle
