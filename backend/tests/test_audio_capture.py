import asyncio
import sys
import types

import numpy as np
import pytest

from avatar_interview.audio.capture import (
    ArraySource,
    AudioCaptureLoop,
    SoundDeviceSource,
    decode_pcm16_chunk,
    encode_pcm16_chunk,
    silence_chunk,
)
from avatar_interview.system_metrics import get_metrics_snapshot
from avatar_interview.turn.gate import TurnGate
from fakes import wait_until


def _frames(count: int, size: int = 512) -> list[np.ndarray]:
    rng = np.random.default_rng(7)
    return [rng.uniform(-0.9, 0.9, size).astype(np.float32) for _ in range(count)]


def test_float_samples_are_scaled_to_int16():
    chunk = encode_pcm16_chunk(np.array([0.0, 1.0, -1.0, 2.0, -3.0], dtype=np.float32))
    assert decode_pcm16_chunk(chunk).tolist() == [0, 32767, -32768, 32767, -32768]


def test_int16_samples_pass_through():
    samples = np.array([1, -2, 300], dtype=np.int16)
    assert decode_pcm16_chunk(encode_pcm16_chunk(samples)).tolist() == [1, -2, 300]


def test_silence_chunk_matches_real_chunk_length():
    frame = _frames(1, 4096)[0]
    assert len(silence_chunk(4096)) == len(encode_pcm16_chunk(frame))
    assert not decode_pcm16_chunk(silence_chunk(4096)).any()


@pytest.mark.asyncio
async def test_closed_gate_sends_only_silence(recording_sleep):
    gate = TurnGate()
    frames = _frames(6)
    sent = []

    async def _send(chunk: str):
        sent.append(chunk)

    loop = AudioCaptureLoop(gate, ArraySource(frames, sleep=recording_sleep), _send)
    await loop.run()

    assert len(sent) == 6
    real_length = len(decode_pcm16_chunk(encode_pcm16_chunk(frames[0])))
    for chunk in sent:
        decoded = decode_pcm16_chunk(chunk)
        assert len(decoded) == real_length
        assert not decoded.any()
    assert get_metrics_snapshot()["silence_chunks_sent"] == 6


@pytest.mark.asyncio
async def test_open_gate_forwards_real_audio_in_order(recording_sleep):
    gate = TurnGate()
    gate.open_for_user()
    frames = _frames(4)
    sent = []

    async def _send(chunk: str):
        sent.append(chunk)

    await AudioCaptureLoop(gate, ArraySource(frames, sleep=recording_sleep), _send).run()

    assert sent == [encode_pcm16_chunk(frame) for frame in frames]
    assert recording_sleep.calls == [512 / 16000] * 4


@pytest.mark.asyncio
async def test_payload_follows_gate_between_ticks(recording_sleep):
    gate = TurnGate()
    frames = _frames(4)
    sent = []

    async def _send(chunk: str):
        sent.append(chunk)
        if len(sent) == 2:
            gate.open_for_user()

    await AudioCaptureLoop(gate, ArraySource(frames, sleep=recording_sleep), _send).run()

    assert not decode_pcm16_chunk(sent[0]).any()
    assert not decode_pcm16_chunk(sent[1]).any()
    assert sent[2:] == [encode_pcm16_chunk(frames[2]), encode_pcm16_chunk(frames[3])]


@pytest.mark.asyncio
async def test_disconnect_stops_forwarding(recording_sleep):
    gate = TurnGate()
    source = ArraySource(_frames(10), sleep=recording_sleep)
    sent = []
    loop = None

    async def _send(chunk: str):
        sent.append(chunk)
        loop.stop_tracks()
        loop.disconnect()

    loop = AudioCaptureLoop(gate, source, _send)
    await loop.run()

    assert len(sent) == 1
    assert loop.chunks_sent == 1
    assert source.closed is True


class _FakeInputStream:
    def __init__(self, **kwargs):
        self.callback = kwargs["callback"]
        self.blocksize = kwargs["blocksize"]
        self.active = False

    def start(self):
        self.active = True

    def stop(self):
        self.active = False

    def close(self):
        pass


@pytest.mark.asyncio
async def test_microphone_buffers_keep_the_turn_they_were_recorded_in(monkeypatch):
    monkeypatch.setitem(sys.modules, "sounddevice", types.SimpleNamespace(InputStream=_FakeInputStream))
    gate = TurnGate()
    source = SoundDeviceSource(chunk_samples=256)
    sent = []
    transport_ready = asyncio.Event()

    async def _lagging_send(chunk: str):
        sent.append(chunk)
        await transport_ready.wait()

    loop = AudioCaptureLoop(gate, source, _lagging_send)
    task = loop.start()
    assert await wait_until(lambda: source._stream is not None)

    block = np.full((256, 1), 0.5, dtype=np.float32)
    for _ in range(3):
        source._stream.callback(block, 256, None, None)
    assert await wait_until(lambda: len(sent) == 1)

    gate.open_for_user()
    transport_ready.set()
    assert await wait_until(lambda: len(sent) == 3)
    assert all(not decode_pcm16_chunk(chunk).any() for chunk in sent)

    source._stream.callback(block, 256, None, None)
    assert await wait_until(lambda: len(sent) == 4)
    assert sent[3] == encode_pcm16_chunk(block[:, 0])

    loop.stop_tracks()
    loop.disconnect()
    await asyncio.gather(task, return_exceptions=True)
    assert get_metrics_snapshot()["silence_chunks_sent"] == 3
    assert get_metrics_snapshot()["audio_chunks_sent"] == 1
