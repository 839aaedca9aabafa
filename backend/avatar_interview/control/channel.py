from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

import websockets
from websockets.exceptions import ConnectionClosed

from avatar_interview.avatar.speech import AvatarSpeechController
from avatar_interview.control.commands import EndInterview, NewQuestion, PendingCommand, parse_command, user_answer_frame
from avatar_interview.errors import ControlChannelError
from avatar_interview.system_metrics import increment_metric
from avatar_interview.transcription.events import Utterance
from avatar_interview.turn.gate import TurnGate
from core.config import INTERVIEW_WS_BASE_URL
from core.logger import log_event

logger = logging.getLogger("control_channel")

ConnectFn = Callable[..., Awaitable[Any]]
EndFn = Callable[[str], Awaitable[None]]

CONNECTION_LOST_STATUS = "Connection to the interview server was lost. The interview cannot continue."


class ControlChannel:
    """
    Authoritative command stream for one interview session.

    Questions are spoken one at a time in arrival order by a single worker;
    the next one starts only after the previous avatar turn has handed the
    gate to the user. EndInterview is acted on as soon as it is read, even
    while a question is still being spoken.
    """

    def __init__(
        self,
        gate: TurnGate,
        speech: AvatarSpeechController,
        session_id: str,
        on_end: EndFn,
        view=None,
        ws_base_url: str = INTERVIEW_WS_BASE_URL,
        connect_fn: ConnectFn = websockets.connect,
    ):
        self.gate = gate
        self.speech = speech
        self.session_id = session_id
        self.on_end = on_end
        self.view = view
        self.ws_base_url = str(ws_base_url or "").rstrip("/")
        self._connect_fn = connect_fn
        self._ws = None
        self._open = False
        self._closed = False
        self._questions: asyncio.Queue[NewQuestion] = asyncio.Queue()
        self._question_worker: asyncio.Task | None = None

    @property
    def endpoint(self) -> str:
        return f"{self.ws_base_url}/ws/interview/{self.session_id}"

    def is_open(self) -> bool:
        return self._open and self._ws is not None

    async def connect(self) -> None:
        try:
            self._ws = await self._connect_fn(self.endpoint, max_size=2**20, open_timeout=20)
        except Exception as exc:
            logger.error("Control transport connect failed: %s", exc)
            raise ControlChannelError("control transport unavailable") from exc

        self._open = True
        log_event("control", "connected", self.session_id)

    async def run(self) -> None:
        if self._ws is None:
            return
        if self._question_worker is None:
            self._question_worker = asyncio.create_task(self._ask_questions())
        try:
            async for message in self._ws:
                command = parse_command(message)
                if isinstance(command, NewQuestion):
                    self._questions.put_nowait(command)
                elif command is not None:
                    await self.handle_command(command)
        except ConnectionClosed as exc:
            logger.warning("Control transport closed: %s", exc)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("Control transport error: %s", exc)
        finally:
            self._open = False
            if not self._closed:
                log_event("control", "transport_lost", self.session_id, level=logging.WARNING)
                if self.view is not None:
                    self.view.set_status(CONNECTION_LOST_STATUS)

    async def _ask_questions(self) -> None:
        while True:
            question = await self._questions.get()
            try:
                await self.handle_command(question)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error("Question handling failed: %s", exc)

    async def handle_command(self, command: PendingCommand) -> None:
        if self._closed:
            increment_metric("commands_discarded")
            logger.debug("Command after teardown discarded: %s", type(command).__name__)
            return

        if isinstance(command, NewQuestion):
            increment_metric("questions_received")
            log_event("control", "new_question", self.session_id, question=command.text)
            if self.view is not None:
                self.view.render_question(command.text)
            self.gate.close_for_user()
            await self.speech.speak(command.text)
            return

        if isinstance(command, EndInterview):
            log_event("control", "end_interview", self.session_id)
            await self.on_end("end_interview")

    async def submit_answer(self, utterance: Utterance) -> bool:
        if not self.is_open():
            increment_metric("answers_failed")
            logger.error("Answer not submitted; control transport is not open")
            if self.view is not None:
                self.view.set_status(CONNECTION_LOST_STATUS)
            return False

        try:
            await self._ws.send(user_answer_frame(utterance.text))
        except ConnectionClosed as exc:
            self._open = False
            increment_metric("answers_failed")
            logger.error("Answer not submitted; control transport closed: %s", exc)
            if self.view is not None:
                self.view.set_status(CONNECTION_LOST_STATUS)
            return False

        increment_metric("answers_submitted")
        log_event("control", "answer_submitted", self.session_id, answer=utterance.text)
        return True

    async def close(self) -> None:
        self._closed = True
        self._open = False

        worker, self._question_worker = self._question_worker, None
        if worker is not None and worker is not asyncio.current_task():
            worker.cancel()
            await asyncio.gather(worker, return_exceptions=True)

        ws, self._ws = self._ws, None
        if ws is None:
            return
        try:
            await ws.close()
        except Exception as exc:
            logger.warning("Control transport close failed: %s", exc)
