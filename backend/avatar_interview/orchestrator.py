from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

import httpx
import websockets

from avatar_interview.audio.capture import AudioCaptureLoop, AudioSource, SoundDeviceSource
from avatar_interview.avatar.client import AvatarProxyClient, AvatarSession
from avatar_interview.avatar.speech import AvatarSpeechController
from avatar_interview.control.channel import ControlChannel
from avatar_interview.errors import AvatarUnavailableError, ControlChannelError, SessionStartError, TranscriptionUnavailableError
from avatar_interview.schemas import StartInterviewRequest
from avatar_interview.session.api import start_session
from avatar_interview.system_metrics import increment_metric
from avatar_interview.timer import InterviewTimer, format_countdown
from avatar_interview.transcription.channel import TranscriptionChannel
from avatar_interview.turn.gate import TurnGate
from avatar_interview.view import InterviewView, LoggingView
from core.config import HTTP_TIMEOUT_SEC, INTERVIEW_API_BASE_URL, INTERVIEW_DURATION_SEC, INTERVIEW_WS_BASE_URL
from core.logger import log_event
from core.state import SessionPhase, TurnState

logging.basicConfig(
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    level=logging.INFO,
)

logger = logging.getLogger("orchestrator")

START_FAILED_STATUS = "Could not start the interview. Please check your details and try again."
VOICE_UNAVAILABLE_STATUS = "Voice capture is unavailable. Please refresh the page to answer by voice."
CONTROL_UNAVAILABLE_STATUS = "Could not reach the interview server. Please refresh the page."
TIMEOUT_ANNOUNCEMENT = "Time is up. The interview has ended."
END_ANNOUNCEMENT = "The interview has ended. Thank you for your time."


class EngineDependencyProvider:
    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        connect_fn: Callable[..., Awaitable[Any]] = websockets.connect,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        api_base_url: str = INTERVIEW_API_BASE_URL,
        ws_base_url: str = INTERVIEW_WS_BASE_URL,
        avatar_enabled: bool = True,
    ):
        self.http_client = http_client
        self.connect_fn = connect_fn
        self.sleep = sleep
        self.api_base_url = api_base_url
        self.ws_base_url = ws_base_url
        self.avatar_enabled = avatar_enabled

    def create_http_client(self) -> httpx.AsyncClient:
        if self.http_client is not None:
            return self.http_client
        return httpx.AsyncClient(timeout=HTTP_TIMEOUT_SEC)

    def owns_http_client(self) -> bool:
        return self.http_client is None

    def create_audio_source(self) -> AudioSource:
        return SoundDeviceSource()

    def create_avatar_session(self, http_client: httpx.AsyncClient, session_id: str) -> AvatarSession | None:
        if not self.avatar_enabled:
            return None
        return AvatarSession(AvatarProxyClient(http_client), interview_id=session_id)

    def create_speech_controller(self, gate: TurnGate, avatar: AvatarSession | None, view, session_id: str) -> AvatarSpeechController:
        return AvatarSpeechController(gate, avatar, view=view, session_id=session_id, sleep=self.sleep)

    def create_transcription_channel(self, gate: TurnGate, http_client: httpx.AsyncClient, view, session_id: str) -> TranscriptionChannel:
        return TranscriptionChannel(gate, http_client, view=view, session_id=session_id, connect_fn=self.connect_fn)

    def create_control_channel(self, gate: TurnGate, speech: AvatarSpeechController, view, session_id: str, on_end) -> ControlChannel:
        return ControlChannel(
            gate,
            speech,
            session_id,
            on_end,
            view=view,
            ws_base_url=self.ws_base_url,
            connect_fn=self.connect_fn,
        )

    def create_timer(self, on_expire, duration_sec: int, on_tick) -> InterviewTimer:
        return InterviewTimer(on_expire, duration_sec=duration_sec, on_tick=on_tick, sleep=self.sleep)


class SessionOrchestrator:
    """
    Owns one interview: the turn gate, every channel, the timer and teardown.

    At most one interview runs per orchestrator. Channel-establishment failures
    downgrade the session where it can still make progress (no avatar, no voice
    capture) and end it where it cannot (no control transport).
    """

    def __init__(
        self,
        view: InterviewView | None = None,
        provider: EngineDependencyProvider | None = None,
        duration_sec: int = INTERVIEW_DURATION_SEC,
    ):
        self.view = view or LoggingView()
        self.provider = provider or EngineDependencyProvider()
        self.duration_sec = duration_sec
        self.phase = SessionPhase.IDLE
        self.session_id: str | None = None
        self.end_reason: str | None = None
        self.gate: TurnGate | None = None
        self.avatar: AvatarSession | None = None
        self.speech: AvatarSpeechController | None = None
        self.transcription: TranscriptionChannel | None = None
        self.capture: AudioCaptureLoop | None = None
        self.control: ControlChannel | None = None
        self.timer: InterviewTimer | None = None
        self.tasks: list[asyncio.Task] = []
        self._http_client: httpx.AsyncClient | None = None
        self._avatar_task: asyncio.Task | None = None
        self._ended = asyncio.Event()

    def create_task(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self.tasks.append(task)
        return task

    def _on_turn_change(self, state: TurnState) -> None:
        self.view.set_listening(state is TurnState.USER_LISTENING)

    async def start(self, details: StartInterviewRequest) -> str:
        if self.phase is not SessionPhase.IDLE:
            raise RuntimeError(f"interview already {self.phase.value}")

        self.phase = SessionPhase.STARTING
        self._http_client = self.provider.create_http_client()
        try:
            session_id = await start_session(self._http_client, details, base_url=self.provider.api_base_url)
        except SessionStartError:
            if self.phase is SessionPhase.ENDED:
                raise
            self.view.set_status(START_FAILED_STATUS)
            self.phase = SessionPhase.ENDED
            self.end_reason = "start_failed"
            await self._close_http_client()
            self._ended.set()
            raise

        self.session_id = session_id
        if self._stopped_while_starting():
            return session_id

        increment_metric("sessions_started")
        log_event("orchestrator", "session_started", session_id)

        self.gate = TurnGate(on_change=self._on_turn_change)
        self.avatar = self.provider.create_avatar_session(self._http_client, session_id)
        self.speech = self.provider.create_speech_controller(self.gate, self.avatar, self.view, session_id)
        if self.avatar is not None:
            self._avatar_task = self.create_task(self._establish_avatar())

        await self._open_transcription()
        if self._stopped_while_starting():
            return session_id

        self.control = self.provider.create_control_channel(self.gate, self.speech, self.view, session_id, self.teardown)
        try:
            await self.control.connect()
        except ControlChannelError:
            if self._stopped_while_starting():
                raise
            self.view.set_status(CONTROL_UNAVAILABLE_STATUS)
            await self.teardown("control_unavailable")
            raise

        if self._stopped_while_starting():
            # teardown already ran against the half-open channel
            await self.control.close()
            return session_id

        self.create_task(self.control.run())

        self.timer = self.provider.create_timer(self._on_timer_expired, self.duration_sec, self.view.set_countdown)
        self.create_task(self.timer.run())

        self.phase = SessionPhase.ACTIVE
        return session_id

    def _stopped_while_starting(self) -> bool:
        if self.phase is not SessionPhase.ENDED:
            return False
        logger.info("Interview stopped while starting | reason=%s", self.end_reason)
        return True

    async def _establish_avatar(self) -> None:
        try:
            await self.avatar.establish()
        except AvatarUnavailableError as exc:
            logger.warning("Avatar unavailable; continuing without it: %s", exc)

    async def _open_transcription(self) -> None:
        self.transcription = self.provider.create_transcription_channel(self.gate, self._http_client, self.view, self.session_id)
        try:
            source = self.provider.create_audio_source()
        except RuntimeError as exc:
            logger.error("Microphone unavailable: %s", exc)
            self.view.set_status(VOICE_UNAVAILABLE_STATUS)
            return

        try:
            await self.transcription.connect()
        except TranscriptionUnavailableError as exc:
            logger.error("Transcription unavailable: %s", exc)
            source.close()
            if self.phase is not SessionPhase.ENDED:
                self.view.set_status(VOICE_UNAVAILABLE_STATUS)
            return

        if self.phase is SessionPhase.ENDED:
            source.close()
            await self.transcription.close()
            return

        self.capture = AudioCaptureLoop(self.gate, source, self.transcription.send_audio_chunk, session_id=self.session_id)
        self.transcription.attach_capture(self.capture)
        self.create_task(self.transcription.run())
        self.tasks.append(self.capture.start())
        self.create_task(self._forward_answers())

    async def _forward_answers(self) -> None:
        while True:
            utterance = await self.transcription.utterances.get()
            if self.phase is SessionPhase.ENDED:
                return
            if self.control is None:
                logger.warning("Utterance dropped; control channel not connected yet")
                continue
            self.view.render_answer(utterance.text)
            await self.control.submit_answer(utterance)

    async def _on_timer_expired(self) -> None:
        increment_metric("sessions_timed_out")
        await self.teardown("timeout")

    async def teardown(self, reason: str) -> None:
        """Idempotent; safe from any phase, including mid-question or mid-answer."""
        if self.phase is SessionPhase.ENDED:
            return

        self.phase = SessionPhase.ENDED
        self.end_reason = reason
        log_event("orchestrator", "teardown", self.session_id or "", reason=reason)

        if self.gate is not None:
            self.gate.seal()
        if self.timer is not None:
            self.timer.stop()

        if self._avatar_task is not None and self._avatar_task is not asyncio.current_task():
            self._avatar_task.cancel()

        closers = []
        if self.transcription is not None:
            closers.append(("transcription", self.transcription.close))
        if self.avatar is not None:
            closers.append(("avatar", self.avatar.stop))
        if self.control is not None:
            closers.append(("control", self.control.close))

        for name, close in closers:
            try:
                await close()
            except Exception as exc:
                logger.warning("Teardown step %s failed: %s", name, exc)

        current = asyncio.current_task()
        pending = [task for task in self.tasks if task is not current and not task.done()]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

        if reason == "timeout":
            self.view.set_countdown(format_countdown(0))
            self.view.announce_end(TIMEOUT_ANNOUNCEMENT)
        else:
            self.view.announce_end(END_ANNOUNCEMENT)

        await self._close_http_client()
        increment_metric("sessions_ended")
        self._ended.set()

    async def _close_http_client(self) -> None:
        client, self._http_client = self._http_client, None
        if client is not None and self.provider.owns_http_client():
            await client.aclose()

    async def wait_closed(self) -> None:
        await self._ended.wait()

    async def run(self, details: StartInterviewRequest) -> str | None:
        await self.start(details)
        await self.wait_closed()
        return self.end_reason
