"""One-shot deferred reminders keyed by request handle."""

from __future__ import annotations

import threading
from contextvars import copy_context
from datetime import timedelta
from typing import Any, Callable, Dict

import structlog


class ReminderScheduler:
    """Keep one daemon timer per request handle.

    Callbacks run in a copy of the scheduling context so log events keep the
    originating trace id. Whatever the callback sends must be decided from
    live state at fire time.
    """

    def __init__(
        self,
        *,
        delay: timedelta = timedelta(hours=2),
        timer_factory: Callable[..., threading.Timer] = threading.Timer,
    ) -> None:
        if delay.total_seconds() <= 0:
            raise ValueError("Reminder delay must be greater than zero seconds.")

        self._delay = delay
        self._timer_factory = timer_factory
        self._lock = threading.Lock()
        self._timers: Dict[str, threading.Timer] = {}

    @property
    def delay(self) -> timedelta:
        return self._delay

    def schedule(self, handle: str, callback: Callable[..., Any], *args: Any) -> None:
        context = copy_context()
        timer = self._timer_factory(
            self._delay.total_seconds(),
            self._fire,
            args=(handle, context, callback, args),
        )
        timer.daemon = True
        with self._lock:
            previous = self._timers.pop(handle, None)
            if previous is not None:
                previous.cancel()
            self._timers[handle] = timer
        timer.start()

    def cancel(self, handle: str) -> bool:
        with self._lock:
            timer = self._timers.pop(handle, None)
        if timer is None:
            return False
        timer.cancel()
        return True

    def pending(self) -> list[str]:
        with self._lock:
            return list(self._timers)

    def shutdown(self) -> None:
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()

    def _fire(self, handle: str, context, callback: Callable[..., Any], args: tuple) -> None:
        with self._lock:
            if self._timers.get(handle) is threading.current_thread():
                del self._timers[handle]
        try:
            context.run(callback, *args)
        except Exception:
            structlog.get_logger().exception("reminder_failed", handle=handle)
