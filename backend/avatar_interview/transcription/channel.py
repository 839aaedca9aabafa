from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable

import httpx
import websockets
from websockets.exceptions import ConnectionClosed

from avatar_interview.errors import TranscriptionUnavailableError
from avatar_interview.system_metrics import increment_metric
from avatar_interview.transcription.events import (
    FinalTranscript,
    PartialTranscript,
    SpeechStarted,
    TranscriptionEvent,
    Utterance,
    classify_event,
)
from avatar_interview.turn.gate import TurnGate
from core.config import (
    AUDIO_SAMPLE_RATE,
    TRANSCRIPTION_API_KEY,
    TRANSCRIPTION_ENDPOINTING_SEC,
    TRANSCRIPTION_INIT_URL,
    TRANSCRIPTION_LANGUAGES,
    TRANSCRIPTION_MAX_DURATION_WITHOUT_ENDPOINTING_SEC,
    TRANSCRIPTION_MODEL,
)
from core.logger import log_event

logger = logging.getLogger("transcription")

ConnectFn = Callable[..., Awaitable[Any]]

TRANSPORT_LOST_STATUS = "Transcription connection lost. Please refresh the page to continue."


def build_session_config(
    model: str = TRANSCRIPTION_MODEL,
    endpointing_sec: float = TRANSCRIPTION_ENDPOINTING_SEC,
    languages: list[str] | None = None,
    max_duration_without_endpointing_sec: int = TRANSCRIPTION_MAX_DURATION_WITHOUT_ENDPOINTING_SEC,
) -> dict:
    return {
        "encoding": "wav/pcm",
        "bit_depth": 16,
        "sample_rate": AUDIO_SAMPLE_RATE,
        "channels": 1,
        "model": model,
        "endpointing": endpointing_sec,
        "maximum_duration_without_endpointing": max_duration_without_endpointing_sec,
        "language_config": {
            "languages": list(languages or TRANSCRIPTION_LANGUAGES),
            "code_switching": False,
        },
    }


class TranscriptionChannel:
    """
    Streaming speech-recognition session.

    Final transcripts become Utterances only while the gate is open for the
    user; the gate is closed in the same step so trailing audio cannot produce
    a second answer.
    """

    def __init__(
        self,
        gate: TurnGate,
        http_client: httpx.AsyncClient,
        view=None,
        session_id: str = "",
        init_url: str = TRANSCRIPTION_INIT_URL,
        api_key: str = TRANSCRIPTION_API_KEY,
        session_config: dict | None = None,
        connect_fn: ConnectFn = websockets.connect,
    ):
        self.gate = gate
        self.http_client = http_client
        self.view = view
        self.session_id = session_id
        self.init_url = init_url
        self.api_key = api_key
        self.session_config = dict(session_config or build_session_config())
        self._connect_fn = connect_fn
        self.utterances: asyncio.Queue[Utterance] = asyncio.Queue()
        self.capture = None
        self._ws = None
        self._open = False
        self._closing = False

    def attach_capture(self, capture) -> None:
        self.capture = capture

    def is_open(self) -> bool:
        return self._open and self._ws is not None

    async def init_session(self) -> str:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["x-gladia-key"] = self.api_key
        try:
            response = await self.http_client.post(self.init_url, json=self.session_config, headers=headers)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("[STT] init call failed: %s", exc)
            raise TranscriptionUnavailableError("transcription init failed") from exc

        url = str((data or {}).get("url") or "").strip()
        if not url:
            raise TranscriptionUnavailableError("transcription init returned no transport url")
        return url

    async def connect(self) -> None:
        url = await self.init_session()
        try:
            self._ws = await self._connect_fn(url, max_size=2**20, open_timeout=20)
        except Exception as exc:
            logger.error("[STT] transport connect failed: %s", exc)
            raise TranscriptionUnavailableError("transcription transport unavailable") from exc

        self._open = True
        log_event("transcription", "connected", self.session_id)

    async def run(self) -> None:
        if self._ws is None:
            return
        try:
            async for message in self._ws:
                self.handle_event(classify_event(message))
        except ConnectionClosed as exc:
            logger.warning("[STT] transport closed: %s", exc)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("[STT] transport error: %s", exc)
        finally:
            self._open = False
            if not self._closing:
                log_event("transcription", "transport_lost", self.session_id, level=logging.WARNING)
                self._release_capture()
                if self.view is not None:
                    self.view.set_status(TRANSPORT_LOST_STATUS)

    def handle_event(self, event: TranscriptionEvent | None) -> Utterance | None:
        if event is None or self._closing:
            return None

        if isinstance(event, SpeechStarted):
            if self.gate.is_user_turn() and self.view is not None:
                self.view.set_listening(True)
            return None

        if isinstance(event, PartialTranscript):
            return None

        if isinstance(event, FinalTranscript):
            if not self.gate.is_user_turn():
                increment_metric("transcripts_discarded")
                logger.debug("[STT] final transcript outside user turn discarded")
                return None

            text = event.text.strip()
            if not text:
                return None

            utterance = Utterance(text=text)
            self.utterances.put_nowait(utterance)
            self.gate.close_for_user()
            increment_metric("utterances_emitted")
            log_event("transcription", "utterance", self.session_id, text=text)
            return utterance

        return None

    async def send_audio_chunk(self, chunk: str) -> None:
        if not self.is_open():
            return
        try:
            await self._ws.send(json.dumps({"type": "audio_chunk", "data": {"chunk": chunk}}))
        except ConnectionClosed as exc:
            logger.warning("[STT] audio chunk dropped, transport closed: %s", exc)
            self._open = False

    async def close(self) -> None:
        """Best-effort teardown; every step runs even if an earlier one fails."""
        self._closing = True
        ws = self._ws

        if ws is not None and self._open:
            try:
                await ws.send(json.dumps({"type": "stop_recording"}))
            except Exception as exc:
                logger.warning("[STT] stop_recording not delivered: %s", exc)

        self._open = False
        if ws is not None:
            try:
                await ws.close()
            except Exception as exc:
                logger.warning("[STT] transport close failed: %s", exc)

        self._release_capture()
        log_event("transcription", "closed", self.session_id)

    def _release_capture(self) -> None:
        if self.capture is None:
            return
        try:
            self.capture.stop_tracks()
        except Exception as exc:
            logger.warning("[STT] stopping media tracks failed: %s", exc)

        try:
            self.capture.disconnect()
        except Exception as exc:
            logger.warning("[STT] disconnecting capture loop failed: %s", exc)
