"""Deferred callbacks for workflow waits.

The sequencer never sleeps on the control thread; it asks a scheduler to
call it back later. :class:`TimerScheduler` uses daemon ``threading.Timer``
instances. A UI would supply its own scheduler bound to its event loop.
"""

from __future__ import annotations

import threading
from typing import Callable, Protocol


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> None: ...


class TimerScheduler:
    def __init__(self) -> None:
        self._timers: list[threading.Timer] = []
        self._lock = threading.Lock()

    def call_later(self, delay: float, callback: Callable[[], None]) -> None:
        timer = threading.Timer(max(delay, 0.0), callback)
        timer.daemon = True
        with self._lock:
            self._timers = [t for t in self._timers if t.is_alive()]
            self._timers.append(timer)
        timer.start()

    def cancel_all(self) -> None:
        with self._lock:
            for timer in self._timers:
                timer.cancel()
            self._timers.clear()
