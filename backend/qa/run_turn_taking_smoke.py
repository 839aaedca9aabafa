"""
Local end-to-end smoke for turn-taking.

Serves a fake control endpoint and a fake transcription endpoint over real
websockets, mocks the HTTP collaborators, and runs one interview:
question -> avatar turn -> user answer -> end_interview.
Writes qa/reports/turn_taking_smoke_report.json.
"""
import argparse
import asyncio
import json
import sys
import time
from pathlib import Path

import httpx
import numpy as np
from websockets.asyncio.server import serve

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from avatar_interview.audio.capture import ArraySource, decode_pcm16_chunk  # noqa: E402
from avatar_interview.orchestrator import EngineDependencyProvider, SessionOrchestrator  # noqa: E402
from avatar_interview.schemas import StartInterviewRequest  # noqa: E402
from avatar_interview.system_metrics import get_metrics_snapshot  # noqa: E402
from avatar_interview.transcription.channel import TranscriptionChannel  # noqa: E402
from avatar_interview.view import LoggingView  # noqa: E402

REPORT_DIR = ROOT / "qa" / "reports"
REPORT_PATH = REPORT_DIR / "turn_taking_smoke_report.json"
QUESTION = "Walk me through the last system you designed end to end."
ANSWER = "I designed an event pipeline on Kafka with idempotent consumers."


class SmokeState:
    def __init__(self):
        self.silent_chunks = 0
        self.voiced_chunks = 0
        self.question_sent_at = 0.0
        self.answer_received_at = 0.0
        self.answer = None
        self.stop_recording = False
        self.answer_event = asyncio.Event()
        self.voice_seen = asyncio.Event()


def build_http_client(port: int) -> httpx.AsyncClient:
    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.endswith("/api/interview/start"):
            return httpx.Response(200, json={"sessionId": "smoke-1"})
        if path.endswith("/v2/live"):
            return httpx.Response(201, json={"id": "live-smoke", "url": f"ws://127.0.0.1:{port}/live/smoke"})
        if path.endswith("streaming.create_token"):
            return httpx.Response(200, json={"data": {"token": "tok"}})
        if path.endswith("streaming.new"):
            return httpx.Response(200, json={"data": {"url": "wss://rtc", "access_token": "rtc", "session_id": "av"}})
        return httpx.Response(200, json={"data": {}})

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class SmokeProvider(EngineDependencyProvider):
    def __init__(self, port: int, frames: int):
        super().__init__(
            http_client=build_http_client(port),
            api_base_url=f"http://127.0.0.1:{port}",
            ws_base_url=f"ws://127.0.0.1:{port}",
        )
        self.frames = frames

    def create_audio_source(self):
        tone = (0.2 * np.sin(np.linspace(0, 2 * np.pi * 20, 1024))).astype(np.float32)
        return ArraySource([tone] * self.frames, interval_sec=0.02)

    def create_transcription_channel(self, gate, http_client, view, session_id):
        return TranscriptionChannel(
            gate,
            http_client,
            view=view,
            session_id=session_id,
            init_url="https://stt.local/v2/live",
            connect_fn=self.connect_fn,
        )

    def create_speech_controller(self, gate, avatar, view, session_id):
        controller = super().create_speech_controller(gate, avatar, view, session_id)
        controller.trailing_buffer_ms = 300
        controller.words_per_minute = 1200
        return controller


def build_handler(state: SmokeState):
    async def handler(connection):
        path = connection.request.path
        if path.startswith("/ws/interview/"):
            await connection.send(json.dumps({"type": "new_question", "payload": {"text": QUESTION}}))
            state.question_sent_at = time.monotonic()
            async for raw in connection:
                frame = json.loads(raw)
                if frame.get("type") == "user_answer":
                    state.answer = frame["payload"]["answer"]
                    state.answer_received_at = time.monotonic()
                    state.answer_event.set()
                    await connection.send(json.dumps({"type": "end_interview"}))
            return

        if path.startswith("/live/"):
            async for raw in connection:
                frame = json.loads(raw)
                if frame.get("type") == "stop_recording":
                    state.stop_recording = True
                    continue
                samples = decode_pcm16_chunk(frame["data"]["chunk"])
                if samples.any():
                    state.voiced_chunks += 1
                    if not state.voice_seen.is_set():
                        state.voice_seen.set()
                        await connection.send(json.dumps({"type": "speech_start"}))
                        await connection.send(json.dumps(
                            {"type": "transcript", "data": {"is_final": True, "utterance": {"text": ANSWER}}}
                        ))
                else:
                    state.silent_chunks += 1

    return handler


async def run(port: int, frames: int, duration_sec: int) -> dict:
    state = SmokeState()
    started = time.monotonic()
    async with serve(build_handler(state), "127.0.0.1", port):
        orchestrator = SessionOrchestrator(view=LoggingView(), provider=SmokeProvider(port, frames), duration_sec=duration_sec)
        details = StartInterviewRequest(full_name="Smoke Tester", email="smoke@example.com", booking_code="SMOKE")
        reason = await asyncio.wait_for(orchestrator.run(details), timeout=duration_sec + 10)

    checks = {
        "answer_matches": state.answer == ANSWER,
        "silence_before_user_turn": state.silent_chunks > 0,
        "voice_after_gate_opened": state.voiced_chunks > 0,
        "stop_recording_sent": state.stop_recording,
        "ended_by_backend": reason == "end_interview",
    }
    return {
        "passed": all(checks.values()),
        "checks": checks,
        "end_reason": reason,
        "silent_chunks": state.silent_chunks,
        "voiced_chunks": state.voiced_chunks,
        "question_to_answer_sec": round(max(0.0, state.answer_received_at - state.question_sent_at), 3),
        "duration_sec": round(time.monotonic() - started, 2),
        "metrics": get_metrics_snapshot(),
    }


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the turn-taking smoke against local fake services")
    parser.add_argument("--port", type=int, default=9031)
    parser.add_argument("--frames", type=int, default=400)
    parser.add_argument("--duration-sec", type=int, default=30)
    args = parser.parse_args()

    report = asyncio.run(run(args.port, args.frames, args.duration_sec))
    REPORT_DIR.mkdir(parents=True, exist_ok=True)
    REPORT_PATH.write_text(json.dumps(report, indent=2), encoding="utf-8")
    print(json.dumps({"passed": report["passed"], "checks": report["checks"]}, indent=2))
    sys.exit(0 if report["passed"] else 1)


if __name__ == "__main__":
    main()
