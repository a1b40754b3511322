from __future__ import annotations

import logging
import time
from collections.abc import Callable

from .llm.errors import CancellationToken

logger = logging.getLogger(__name__)


class ToolCallRateLimiter:
    """
    Enforces a minimum interval between consecutive tool executions of one agent.

    The interval is measured from when the previous tool call finished (successfully or not).
    """

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._last_call_at: float | None = None

    def remaining_delay_s(self, min_interval_ms: int) -> float:
        if self._last_call_at is None or min_interval_ms <= 0:
            return 0.0
        elapsed = self._clock() - self._last_call_at
        return max(0.0, min_interval_ms / 1000.0 - elapsed)

    async def wait(self, min_interval_ms: int, cancel: CancellationToken) -> bool:
        """Sleep out the remaining interval. Returns False if `cancel` fired first."""
        if cancel.cancelled:
            return False
        delay = self.remaining_delay_s(min_interval_ms)
        if delay <= 0:
            return True
        logger.debug("Delaying tool call by %.3fs to respect min time between tool calls (%dms)", delay, min_interval_ms)
        return await cancel.sleep(delay)

    def mark(self) -> None:
        self._last_call_at = self._clock()
