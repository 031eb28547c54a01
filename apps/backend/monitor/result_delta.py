"""
Transient "new result" highlighting for a polled job.
"""
import asyncio
import logging
import time
from typing import Callable, Dict, FrozenSet, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_VISIBILITY_SECONDS = 5.0


def new_result_indices(previous: int, current: int) -> range:
    """Indices that appeared between two result counts: [previous, current)."""
    if current <= previous:
        return range(0)
    return range(max(previous, 0), current)


class ResultDeltaTracker:
    """
    Remembers the last seen result count and marks newly appeared indices.

    Each mark carries its own expiry, measured from the moment it was made,
    so later updates neither extend nor cut short an earlier mark.
    """

    def __init__(
        self,
        visibility_seconds: float = DEFAULT_VISIBILITY_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        on_expire: Optional[Callable[[FrozenSet[int]], None]] = None,
    ):
        self.visibility_seconds = visibility_seconds
        self.count = 0
        self._clock = clock
        self._on_expire = on_expire
        self._marks: Dict[int, float] = {}
        self._handles: List[asyncio.TimerHandle] = []

    def observe(self, count: int) -> List[int]:
        """
        Record a new result count.

        Returns:
            Indices marked as new by this call (empty for repeated input)
        """
        if count <= 0:
            if self.count:
                logger.debug(f"[delta] Result count reset from {self.count} to 0")
            self.count = 0
            self._marks.clear()
            return []

        if count < self.count:
            logger.debug(f"[delta] Result count shrank from {self.count} to {count}")
            self.count = count
            self._marks = {i: exp for i, exp in self._marks.items() if i < count}
            return []

        fresh = new_result_indices(self.count, count)
        if not fresh:
            return []

        expires_at = self._clock() + self.visibility_seconds
        for index in fresh:
            self._marks[index] = expires_at
        self.count = count
        self._schedule_expiry(expires_at)

        logger.debug(f"[delta] {len(fresh)} new result(s): {fresh.start}..{fresh.stop - 1}")
        return list(fresh)

    @property
    def new_indices(self) -> FrozenSet[int]:
        now = self._clock()
        self._marks = {i: exp for i, exp in self._marks.items() if exp > now}
        return frozenset(self._marks)

    def is_new(self, index: int) -> bool:
        return index in self.new_indices

    def reset(self):
        for handle in self._handles:
            handle.cancel()
        self._handles.clear()
        self._marks.clear()
        self.count = 0

    def _schedule_expiry(self, expires_at: float):
        if self._on_expire is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop to notify on; expiry is still applied lazily on read
            return
        handle = loop.call_later(self.visibility_seconds, self._fire_expiry, expires_at)
        self._handles.append(handle)

    def _fire_expiry(self, expires_at: float):
        loop = asyncio.get_running_loop()
        self._handles = [h for h in self._handles if not h.cancelled() and h.when() > loop.time()]
        # The loop may fire a hair early; drop this batch explicitly
        self._marks = {i: exp for i, exp in self._marks.items() if exp > expires_at}
        self._on_expire(self.new_indices)
