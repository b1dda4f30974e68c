from __future__ import annotations

import time
from collections.abc import Callable
from typing import Generic, TypeVar

T = TypeVar("T")


class ThrottledProgress(Generic[T]):
    """
    Forwards progress snapshots to a sink at most once per ``interval``
    seconds. Forced emits (phase transitions, final states) always go
    through and reset the interval.
    """

    def __init__(
        self,
        sink: Callable[[T], None] | None,
        interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._sink = sink
        self.interval = interval
        self._clock = clock
        self._last_emit: float | None = None

    @property
    def enabled(self) -> bool:
        return self._sink is not None

    def emit(self, snapshot: Callable[[], T], force: bool = False) -> bool:
        """
        Build and deliver a snapshot unless throttled. ``snapshot`` is only
        called when the emit actually happens. Returns True if delivered.
        """
        if self._sink is None:
            return False
        now = self._clock()
        if not force and self._last_emit is not None and now - self._last_emit < self.interval:
            return False
        self._last_emit = now
        self._sink(snapshot())
        return True
