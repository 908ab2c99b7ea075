from __future__ import annotations

import heapq
from typing import Callable, Protocol

from PySide6.QtCore import QObject, QTimer


class TimerHandle(Protocol):
    def cancel(self) -> None: ...

    def is_active(self) -> bool: ...


class TimerScheduler(Protocol):
    """Single-shot cooperative timers on the owning event loop."""

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> TimerHandle: ...


class QtTimerHandle:
    def __init__(self, timer: QTimer, callback: Callable[[], None]) -> None:
        self._timer: QTimer | None = timer
        self._callback = callback
        timer.timeout.connect(self._on_timeout)

    def cancel(self) -> None:
        timer = self._timer
        self._timer = None
        if timer is None:
            return
        timer.stop()
        timer.deleteLater()

    def is_active(self) -> bool:
        return self._timer is not None

    def _on_timeout(self) -> None:
        if self._timer is None:
            return
        self.cancel()
        self._callback()


class QtTimerScheduler:
    """Timer scheduler backed by single-shot ``QTimer`` objects."""

    def __init__(self, parent: QObject | None = None) -> None:
        self._parent = parent

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> QtTimerHandle:
        timer = QTimer(self._parent)
        timer.setSingleShot(True)
        handle = QtTimerHandle(timer, callback)
        timer.start(max(0, int(delay_ms)))
        return handle


class _ManualTimer:
    def __init__(self, due_ms: int, callback: Callable[[], None]) -> None:
        self.due_ms = due_ms
        self.callback = callback
        self.active = True

    def cancel(self) -> None:
        self.active = False

    def is_active(self) -> bool:
        return self.active


class ManualScheduler:
    """
    Virtual-clock scheduler.

    Time only moves through ``advance()``; due timers fire in deadline order
    (ties in arming order), and timers armed by a callback fire within the same
    ``advance()`` call if they fall due before its target time.
    """

    def __init__(self) -> None:
        self._now_ms = 0
        self._order = 0
        self._queue: list[tuple[int, int, _ManualTimer]] = []

    @property
    def now_ms(self) -> int:
        return self._now_ms

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> _ManualTimer:
        timer = _ManualTimer(self._now_ms + max(0, int(delay_ms)), callback)
        self._order += 1
        heapq.heappush(self._queue, (timer.due_ms, self._order, timer))
        return timer

    def advance(self, delta_ms: int) -> None:
        target = self._now_ms + max(0, int(delta_ms))
        while self._queue:
            due_ms, _, timer = self._queue[0]
            if due_ms > target:
                break
            heapq.heappop(self._queue)
            if not timer.active:
                continue
            self._now_ms = due_ms
            timer.active = False
            timer.callback()
        self._now_ms = target

    def pending_count(self) -> int:
        return sum(1 for _, _, timer in self._queue if timer.active)
