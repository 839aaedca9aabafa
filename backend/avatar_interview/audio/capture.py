from __future__ import annotations

import asyncio
import base64
import logging
from typing import AsyncIterator, Awaitable, Callable, Protocol, Sequence

import numpy as np

from avatar_interview.system_metrics import increment_metric
from avatar_interview.turn.gate import TurnGate
from core.config import AUDIO_CHUNK_SAMPLES, AUDIO_SAMPLE_RATE

logger = logging.getLogger("audio_capture")

SendChunkFn = Callable[[str], Awaitable[None]]
TurnReader = Callable[[], bool]


class AudioSource(Protocol):
    def frames(self, is_user_turn: TurnReader) -> AsyncIterator[tuple[np.ndarray, bool]]:
        """Yield each captured buffer with the turn state at the moment it was captured."""
        ...

    def close(self) -> None:
        ...


def to_pcm16(frame: np.ndarray | Sequence[float]) -> np.ndarray:
    samples = np.asarray(frame)
    if samples.dtype == np.int16:
        return samples.astype("<i2", copy=False)

    clipped = np.clip(samples.astype(np.float32, copy=False), -1.0, 1.0)
    scaled = np.where(clipped < 0, clipped * 0x8000, clipped * 0x7FFF)
    return scaled.astype("<i2")


def encode_pcm16_chunk(frame: np.ndarray | Sequence[float]) -> str:
    """Encode one captured buffer as base64-wrapped 16-bit little-endian PCM."""
    return base64.b64encode(to_pcm16(frame).tobytes()).decode("ascii")


def silence_chunk(sample_count: int) -> str:
    return base64.b64encode(np.zeros(max(0, int(sample_count)), dtype="<i2").tobytes()).decode("ascii")


def decode_pcm16_chunk(chunk: str) -> np.ndarray:
    return np.frombuffer(base64.b64decode(chunk), dtype="<i2")


class SoundDeviceSource:
    """Microphone capture through PortAudio, one frame per fixed-size block."""

    def __init__(
        self,
        sample_rate: int = AUDIO_SAMPLE_RATE,
        chunk_samples: int = AUDIO_CHUNK_SAMPLES,
        device: int | str | None = None,
    ):
        try:
            import sounddevice  # type: ignore
        except Exception as exc:
            raise RuntimeError("sounddevice package not installed; install the 'audio' extra to capture the microphone") from exc

        self._sd = sounddevice
        self.sample_rate = int(sample_rate)
        self.chunk_samples = int(chunk_samples)
        self.device = device
        self._stream = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._queue: asyncio.Queue | None = None
        self._is_user_turn: TurnReader | None = None
        self._closed = False

    def _on_block(self, indata, frames, time_info, status) -> None:
        # PortAudio thread
        if status:
            logger.debug("[MIC] stream status: %s", status)
        if self._loop is None or self._queue is None or self._closed:
            return
        frame = np.array(indata[:, 0], dtype=np.float32, copy=True)
        self._loop.call_soon_threadsafe(self._enqueue, frame)

    def _enqueue(self, frame: np.ndarray) -> None:
        if self._queue is None or self._closed:
            return
        user_turn = bool(self._is_user_turn()) if self._is_user_turn is not None else False
        self._queue.put_nowait((frame, user_turn))

    async def frames(self, is_user_turn: TurnReader) -> AsyncIterator[tuple[np.ndarray, bool]]:
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._is_user_turn = is_user_turn
        self._stream = self._sd.InputStream(
            samplerate=self.sample_rate,
            blocksize=self.chunk_samples,
            channels=1,
            dtype="float32",
            device=self.device,
            callback=self._on_block,
        )
        self._stream.start()
        logger.info("[MIC] capture started | rate=%s block=%s", self.sample_rate, self.chunk_samples)
        try:
            while not self._closed:
                item = await self._queue.get()
                if item is None:
                    break
                yield item
        finally:
            self.close()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        stream, self._stream = self._stream, None
        if stream is not None:
            try:
                stream.stop()
            finally:
                stream.close()
            logger.info("[MIC] capture stopped")
        if self._loop is not None and self._queue is not None and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._queue.put_nowait, None)


class ArraySource:
    """Replays prepared frames at the capture cadence."""

    def __init__(
        self,
        frames: Sequence[np.ndarray],
        interval_sec: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._frames = list(frames)
        if interval_sec is None:
            first = len(self._frames[0]) if self._frames else AUDIO_CHUNK_SAMPLES
            interval_sec = first / AUDIO_SAMPLE_RATE
        self.interval_sec = float(interval_sec)
        self._sleep = sleep
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def frames(self, is_user_turn: TurnReader) -> AsyncIterator[tuple[np.ndarray, bool]]:
        for frame in self._frames:
            await self._sleep(self.interval_sec)
            if self._closed:
                return
            yield frame, is_user_turn()

    def close(self) -> None:
        self._closed = True


class AudioCaptureLoop:
    """
    Forwards one chunk per captured buffer to the transcription transport.

    Capture never pauses. While it is not the user's turn, each buffer is
    replaced by zero-filled PCM of the same length so the transport keeps
    receiving audio at a steady cadence without ever hearing the avatar.
    """

    def __init__(self, gate: TurnGate, source: AudioSource, send_chunk: SendChunkFn, session_id: str = ""):
        self.gate = gate
        self.source = source
        self.send_chunk = send_chunk
        self.session_id = session_id
        self.chunks_sent = 0
        self._task: asyncio.Task | None = None
        self._tracks_stopped = False
        self._disconnected = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())
        return self._task

    def build_payload(self, frame: np.ndarray, captured_in_user_turn: bool) -> str:
        """Real audio only for buffers recorded while the gate was open."""
        if captured_in_user_turn:
            increment_metric("audio_chunks_sent")
            return encode_pcm16_chunk(frame)
        increment_metric("silence_chunks_sent")
        return silence_chunk(len(frame))

    async def run(self) -> None:
        try:
            async for frame, captured_in_user_turn in self.source.frames(self.gate.is_user_turn):
                if self._disconnected:
                    break
                payload = self.build_payload(frame, captured_in_user_turn)
                await self.send_chunk(payload)
                self.chunks_sent += 1
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("[MIC] capture loop failed: %s", exc)
        finally:
            logger.info("[MIC] capture loop finished | chunks=%s", self.chunks_sent)

    def stop_tracks(self) -> None:
        if self._tracks_stopped:
            return
        self._tracks_stopped = True
        self.source.close()

    def disconnect(self) -> None:
        self._disconnected = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
