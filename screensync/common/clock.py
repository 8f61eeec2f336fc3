"""
Clock abstraction.

Everything that waits (retry backoff, upload polling, concurrent-publish
waits) goes through a Clock so tests can drive time deterministically.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime, timezone


class Clock(ABC):
    """Source of wall-clock time and suspension."""

    @abstractmethod
    def now(self) -> datetime:
        """Current time (timezone-aware, UTC)."""
        pass

    @abstractmethod
    async def sleep(self, seconds: float) -> None:
        """Suspend the current task."""
        pass

    def monotonic(self) -> float:
        """Seconds on a monotonic scale, for elapsed-time budgets."""
        return self.now().timestamp()


class SystemClock(Clock):
    """Real time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    async def sleep(self, seconds: float) -> None:
        if seconds > 0:
            await asyncio.sleep(seconds)

    def monotonic(self) -> float:
        return asyncio.get_running_loop().time()
