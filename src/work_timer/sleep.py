"""OS suspend/resume notifications from systemd-logind."""

from __future__ import annotations

import asyncio
import logging
import sys
import threading
from typing import Optional

from .events import Signal

logger = logging.getLogger(__name__)


class SleepWatcher:
    """Listens for logind ``PrepareForSleep`` on the system bus.

    Emits ``suspended`` before the machine sleeps and ``resumed`` after it
    wakes. Listening happens on a private asyncio loop in a daemon thread.
    """

    def __init__(self) -> None:
        self.suspended = Signal("system-suspended")
        self.resumed = Signal("system-resumed")
        self._thread: Optional[threading.Thread] = None
        self._ready = threading.Event()
        self._available = False
        self._last_error: Optional[str] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._done: Optional[asyncio.Future] = None

    def start(self) -> bool:
        if self._thread is not None:
            return self._available
        self._ready.clear()
        self._thread = threading.Thread(target=self._run, name="sleep-watcher", daemon=True)
        self._thread.start()
        self._ready.wait(timeout=2.0)
        if not self._available:
            logger.info("Suspend/resume notifications unavailable: %s", self._last_error)
        return self._available

    def stop(self) -> None:
        thread, self._thread = self._thread, None
        loop, done = self._loop, self._done
        if loop is not None and done is not None:
            loop.call_soon_threadsafe(_finish, done)
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=2.0)
        self._available = False

    def is_available(self) -> bool:
        return self._available

    def last_error(self) -> Optional[str]:
        return self._last_error

    def notify(self, sleeping: bool) -> None:
        if sleeping:
            logger.info("System is preparing to sleep.")
            self.suspended.emit()
        else:
            logger.info("System woke up.")
            self.resumed.emit()

    def _run(self) -> None:
        try:
            asyncio.run(self._listen())
        except Exception as exc:
            self._last_error = str(exc)
            self._available = False
        finally:
            self._loop = None
            self._done = None
            self._ready.set()

    async def _listen(self) -> None:
        try:
            from dbus_next.aio import MessageBus
            from dbus_next.constants import BusType
        except ImportError as exc:
            self._last_error = f"dbus import failed: {exc}"
            return

        bus = await MessageBus(bus_type=BusType.SYSTEM).connect()
        try:
            introspection = await bus.introspect(
                "org.freedesktop.login1", "/org/freedesktop/login1"
            )
            obj = bus.get_proxy_object(
                "org.freedesktop.login1", "/org/freedesktop/login1", introspection
            )
            manager = obj.get_interface("org.freedesktop.login1.Manager")
            manager.on_prepare_for_sleep(self.notify)  # type: ignore[attr-defined]

            self._loop = asyncio.get_running_loop()
            self._done = self._loop.create_future()
            self._available = True
            self._ready.set()
            await self._done
        finally:
            bus.disconnect()


def _finish(done: asyncio.Future) -> None:
    if not done.done():
        done.set_result(None)


def default_sleep_watcher() -> Optional[SleepWatcher]:
    """logind exists only on Linux; elsewhere suspend shows up as idle time."""
    if sys.platform.startswith("linux"):
        return SleepWatcher()
    return None
