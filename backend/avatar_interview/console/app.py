from __future__ import annotations

import asyncio
import json
import logging

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from starlette.websockets import WebSocketState

from avatar_interview.errors import InterviewEngineError
from avatar_interview.orchestrator import EngineDependencyProvider, SessionOrchestrator
from avatar_interview.schemas import StartAccepted, StartInterviewRequest
from avatar_interview.system_metrics import get_metrics_snapshot
from core.config import CONSOLE_ALLOW_ORIGINS, INTERVIEW_DURATION_SEC
from core.state import SessionPhase

logger = logging.getLogger("console")


class BroadcastView:
    """InterviewView that relays every update to connected websocket subscribers."""

    def __init__(self):
        self.connections: set[WebSocket] = set()
        self.send_locks: dict[WebSocket, asyncio.Lock] = {}
        self.last_status: str | None = None
        self.last_countdown: str | None = None
        self.pending_broadcasts: set[asyncio.Task] = set()

    async def register(self, websocket: WebSocket) -> None:
        self.connections.add(websocket)
        self.send_locks[websocket] = asyncio.Lock()

    def unregister(self, websocket: WebSocket) -> None:
        self.connections.discard(websocket)
        self.send_locks.pop(websocket, None)

    async def _send(self, websocket: WebSocket, payload: str) -> None:
        lock = self.send_locks.get(websocket)
        if lock is None or websocket.client_state != WebSocketState.CONNECTED:
            return
        async with lock:
            try:
                await websocket.send_text(payload)
            except Exception as exc:
                logger.warning("Console subscriber dropped: %s", exc)
                self.unregister(websocket)

    async def broadcast(self, event: dict) -> None:
        payload = json.dumps(event, ensure_ascii=False)
        targets = list(self.connections)
        await asyncio.gather(*[self._send(ws, payload) for ws in targets])

    def _emit(self, event: dict) -> None:
        if not self.connections:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        task = loop.create_task(self.broadcast(event))
        self.pending_broadcasts.add(task)
        task.add_done_callback(self.pending_broadcasts.discard)

    def render_question(self, text: str) -> None:
        self._emit({"type": "question", "text": text})

    def render_answer(self, text: str) -> None:
        self._emit({"type": "answer", "text": text})

    def set_listening(self, listening: bool) -> None:
        self._emit({"type": "listening", "value": bool(listening)})

    def set_status(self, text: str) -> None:
        self.last_status = text
        self._emit({"type": "status", "text": text})

    def set_countdown(self, text: str) -> None:
        self.last_countdown = text
        self._emit({"type": "countdown", "text": text})

    def announce_end(self, text: str) -> None:
        self._emit({"type": "ended", "text": text})


def create_app(
    provider: EngineDependencyProvider | None = None,
    duration_sec: int = INTERVIEW_DURATION_SEC,
) -> FastAPI:
    app = FastAPI(title="Avatar Interview Console")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CONSOLE_ALLOW_ORIGINS,
        allow_methods=["*"],
        allow_headers=["*"],
        allow_credentials=False,
    )

    view = BroadcastView()
    app.state.view = view
    app.state.orchestrator = None
    app.state.start_task = None

    def _phase() -> SessionPhase:
        orchestrator = app.state.orchestrator
        return orchestrator.phase if orchestrator is not None else SessionPhase.IDLE

    async def _run_start(orchestrator: SessionOrchestrator, details: StartInterviewRequest) -> None:
        try:
            await orchestrator.start(details)
        except InterviewEngineError as exc:
            logger.warning("Interview did not start: %s", exc)

    @app.get("/health")
    async def health():
        return {"status": "ok", "phase": _phase().value}

    @app.get("/metrics")
    async def metrics():
        return get_metrics_snapshot(extra={"phase": _phase().value})

    @app.post("/interview/start", status_code=202, response_model=StartAccepted)
    async def start_interview(details: StartInterviewRequest):
        if _phase() in {SessionPhase.STARTING, SessionPhase.ACTIVE}:
            raise HTTPException(status_code=409, detail="An interview is already in progress.")

        orchestrator = SessionOrchestrator(view=view, provider=provider, duration_sec=duration_sec)
        app.state.orchestrator = orchestrator
        app.state.start_task = asyncio.create_task(_run_start(orchestrator, details))
        return StartAccepted(status="starting", phase=orchestrator.phase.value)

    @app.post("/interview/stop")
    async def stop_interview():
        orchestrator = app.state.orchestrator
        if orchestrator is None or orchestrator.phase is SessionPhase.IDLE:
            raise HTTPException(status_code=404, detail="No interview to stop.")
        await orchestrator.teardown("manual_stop")
        return {"status": "ended", "reason": orchestrator.end_reason}

    @app.websocket("/ws/events")
    async def events(websocket: WebSocket):
        await websocket.accept()
        await view.register(websocket)
        snapshot = {"type": "snapshot", "phase": _phase().value, "status": view.last_status, "countdown": view.last_countdown}
        await websocket.send_text(json.dumps(snapshot))
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            view.unregister(websocket)

    return app


app = create_app()
