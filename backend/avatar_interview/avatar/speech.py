from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

import httpx

from avatar_interview.avatar.client import AvatarSession
from avatar_interview.errors import AvatarUnavailableError
from avatar_interview.system_metrics import increment_metric, observe_speech_wait_ms
from avatar_interview.turn.estimator import estimate_speech_ms
from avatar_interview.turn.gate import TurnGate
from core.config import (
    AVATAR_READY_MAX_ATTEMPTS,
    AVATAR_READY_POLL_INTERVAL_SEC,
    SPEECH_TRAILING_BUFFER_MS,
    SPEECH_WORDS_PER_MINUTE,
)
from core.logger import log_event

logger = logging.getLogger("avatar_speech")

SleepFn = Callable[[float], Awaitable[None]]

DEGRADED_AVATAR_STATUS = "The interviewer video is unavailable. Continuing with audio only."


class AvatarSpeechController:
    """
    Paces the AI's turn.

    The avatar service has no reliable "finished speaking" event, so the end of
    the turn is the estimated speaking time plus a trailing buffer. The gate is
    opened for the user only after that wait, whether or not the avatar spoke.
    """

    def __init__(
        self,
        gate: TurnGate,
        avatar: AvatarSession | None,
        view=None,
        session_id: str = "",
        poll_interval_sec: float = AVATAR_READY_POLL_INTERVAL_SEC,
        max_ready_attempts: int = AVATAR_READY_MAX_ATTEMPTS,
        trailing_buffer_ms: int = SPEECH_TRAILING_BUFFER_MS,
        words_per_minute: int = SPEECH_WORDS_PER_MINUTE,
        sleep: SleepFn = asyncio.sleep,
    ):
        self.gate = gate
        self.avatar = avatar
        self.view = view
        self.session_id = session_id
        self.poll_interval_sec = float(poll_interval_sec)
        self.max_ready_attempts = max(1, int(max_ready_attempts))
        self.trailing_buffer_ms = max(0, int(trailing_buffer_ms))
        self.words_per_minute = words_per_minute
        self._sleep = sleep
        self._degraded_reported = False

    def speech_duration_ms(self, text: str) -> int:
        return estimate_speech_ms(text, self.words_per_minute) + self.trailing_buffer_ms

    async def wait_until_ready(self) -> bool:
        avatar = self.avatar
        if avatar is None or avatar.unavailable:
            return False

        for _ in range(self.max_ready_attempts):
            if avatar.is_ready():
                return True
            if avatar.unavailable:
                return False
            await self._sleep(self.poll_interval_sec)
        return avatar.is_ready()

    async def speak(self, text: str) -> None:
        self.gate.close_for_user()
        duration_ms = self.speech_duration_ms(text)

        if not await self.wait_until_ready():
            self._report_degraded()
            await self._wait_for_turn_end(duration_ms)
            return

        try:
            await self.avatar.speak(text, task_type="repeat")
            increment_metric("avatar_tasks_sent")
        except (httpx.HTTPError, ValueError, AvatarUnavailableError) as exc:
            increment_metric("avatar_tasks_failed")
            logger.error("Avatar speak task failed: %s", exc)

        await self._wait_for_turn_end(duration_ms)

    async def _wait_for_turn_end(self, duration_ms: int) -> None:
        await self._sleep(duration_ms / 1000)
        observe_speech_wait_ms(duration_ms)
        self.gate.open_for_user()
        log_event("avatar_speech", "turn_handed_to_user", self.session_id, waited_ms=duration_ms)

    def _report_degraded(self) -> None:
        increment_metric("avatar_degraded")
        logger.warning("Avatar not ready; pacing the turn from the estimate only")
        if self._degraded_reported:
            return
        self._degraded_reported = True
        log_event("avatar_speech", "degraded", self.session_id)
        if self.view is not None:
            self.view.set_status(DEGRADED_AVATAR_STATUS)
