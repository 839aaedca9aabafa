from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from core.config import INTERVIEW_DURATION_SEC

logger = logging.getLogger("interview_timer")


def format_countdown(seconds: int) -> str:
    remaining = max(0, int(seconds))
    minutes, secs = divmod(remaining, 60)
    return f"{minutes:02d}:{secs:02d}"


class InterviewTimer:
    """Fixed-budget countdown; on expiry it ends the session whatever the turn state."""

    def __init__(
        self,
        on_expire: Callable[[], Awaitable[None]],
        duration_sec: int = INTERVIEW_DURATION_SEC,
        on_tick: Callable[[str], None] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.on_expire = on_expire
        self.duration_sec = max(0, int(duration_sec))
        self.on_tick = on_tick
        self._sleep = sleep
        self._remaining = self.duration_sec
        self._stopped = False
        self.expired = False

    @property
    def remaining(self) -> int:
        return self._remaining

    def stop(self) -> None:
        self._stopped = True

    def _publish(self) -> None:
        if self.on_tick is not None:
            self.on_tick(format_countdown(self._remaining))

    async def run(self) -> None:
        self._publish()
        while self._remaining > 0:
            await self._sleep(1)
            if self._stopped:
                return
            self._remaining = max(0, self._remaining - 1)
            self._publish()

        if self._stopped:
            return
        self.expired = True
        logger.info("Interview budget of %ss exhausted", self.duration_sec)
        await self.on_expire()
