"""
Per-minute call budgets for paid external services.
"""

import time
from collections import deque
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from grantmatch.core.exceptions import QuotaExhaustedException


class CallBudget:
    """
    Sliding one-minute window of allowed calls.

    `acquire()` either records a call or raises QuotaExhaustedException
    with the moment the oldest call leaves the window.
    """

    WINDOW_SECONDS = 60.0

    def __init__(
        self,
        service_name: str,
        calls_per_minute: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.service_name = service_name
        self.calls_per_minute = calls_per_minute
        self._clock = clock
        self._calls: deque[float] = deque()

    def _trim(self, now: float) -> None:
        while self._calls and now - self._calls[0] >= self.WINDOW_SECONDS:
            self._calls.popleft()

    @property
    def remaining(self) -> int:
        self._trim(self._clock())
        return max(self.calls_per_minute - len(self._calls), 0)

    def acquire(self) -> None:
        now = self._clock()
        self._trim(now)
        if len(self._calls) >= self.calls_per_minute:
            wait = self.WINDOW_SECONDS - (now - self._calls[0])
            retry_after = datetime.now(timezone.utc) + timedelta(seconds=wait)
            raise QuotaExhaustedException(self.service_name, retry_after)
        self._calls.append(now)
