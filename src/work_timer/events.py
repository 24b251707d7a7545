"""Callback channels and the single-consumer event queue."""

from __future__ import annotations

import logging
import queue
import threading
from concurrent.futures import Future
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class Signal:
    """A named list of callbacks invoked in registration order.

    A failing listener is logged and skipped; it never breaks delivery to
    the remaining listeners or unwinds the emitter.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._listeners: list[Callable[..., Any]] = []
        self._lock = threading.Lock()

    def connect(self, callback: Callable[..., Any]) -> Callable[[], bool]:
        """Register ``callback`` and return a function that unregisters it."""
        with self._lock:
            self._listeners.append(callback)
        return lambda: self.disconnect(callback)

    def disconnect(self, callback: Callable[..., Any]) -> bool:
        with self._lock:
            try:
                self._listeners.remove(callback)
            except ValueError:
                return False
        return True

    def clear(self) -> None:
        with self._lock:
            self._listeners.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._listeners)

    def emit(self, *args: Any) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(*args)
            except Exception:
                logger.exception("Listener for %s failed.", self.name)


_STOP = object()


class EventQueue:
    """Serializes work onto a single consumer.

    Every posted call runs to completion before the next one starts, in
    posting order. Without a consumer thread, :meth:`drain` processes the
    backlog on the calling thread.
    """

    def __init__(self, name: str = "event-queue") -> None:
        self._name = name
        self._queue: "queue.Queue[Any]" = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    def post(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        future: Future = Future()
        self._queue.put((future, fn, args, kwargs))
        return future

    def call(self, fn: Callable[..., Any], *args: Any, timeout: Optional[float] = 10.0) -> Any:
        """Post ``fn`` and wait for its result.

        From the consumer thread itself the call runs inline so a handler
        can issue follow-up commands without deadlocking.
        """
        if self.is_consumer_thread():
            return fn(*args)
        if not self.is_running():
            future = self.post(fn, *args)
            self.drain()
            return future.result(timeout=0)
        return self.post(fn, *args).result(timeout=timeout)

    def drain(self) -> int:
        """Process every pending item on the calling thread."""
        processed = 0
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return processed
            if item is _STOP:
                continue
            self._process(item)
            processed += 1

    def start(self) -> None:
        with self._lock:
            if self._thread and self._thread.is_alive():
                return
            self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
            self._thread.start()
        logger.debug("%s consumer started.", self._name)

    def stop(self, timeout: float = 10.0) -> None:
        """Process what was already posted, then stop the consumer."""
        with self._lock:
            thread = self._thread
            self._thread = None
        if thread is None:
            return
        self._queue.put(_STOP)
        if thread is not threading.current_thread():
            thread.join(timeout=timeout)
        logger.debug("%s consumer stopped.", self._name)

    def is_running(self) -> bool:
        with self._lock:
            return bool(self._thread and self._thread.is_alive())

    def is_consumer_thread(self) -> bool:
        with self._lock:
            return self._thread is threading.current_thread()

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                return
            self._process(item)

    @staticmethod
    def _process(item: Any) -> None:
        future, fn, args, kwargs = item
        if not future.set_running_or_notify_cancel():
            return
        try:
            result = fn(*args, **kwargs)
        except Exception as exc:
            logger.exception("Queued call %r failed.", getattr(fn, "__qualname__", fn))
            future.set_exception(exc)
        else:
            future.set_result(result)
