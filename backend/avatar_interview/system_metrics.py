import threading
import time
from typing import Any


_lock = threading.Lock()
_COUNTERS = (
    "sessions_started",
    "sessions_ended",
    "sessions_timed_out",
    "questions_received",
    "commands_discarded",
    "answers_submitted",
    "answers_failed",
    "audio_chunks_sent",
    "silence_chunks_sent",
    "utterances_emitted",
    "transcripts_discarded",
    "avatar_tasks_sent",
    "avatar_tasks_failed",
    "avatar_degraded",
)
_metrics: dict[str, float] = {name: 0.0 for name in _COUNTERS}
_metrics.update({
    "speech_wait_total_ms": 0.0,
    "speech_wait_samples": 0.0,
})


def increment_metric(name: str, amount: float = 1.0) -> None:
    key = str(name or "").strip()
    if not key:
        return
    with _lock:
        _metrics[key] = float(_metrics.get(key, 0.0)) + float(amount)


def set_metric(name: str, value: float) -> None:
    key = str(name or "").strip()
    if not key:
        return
    with _lock:
        _metrics[key] = max(0.0, float(value))


def observe_speech_wait_ms(value_ms: float) -> None:
    wait_ms = max(0.0, float(value_ms or 0.0))
    with _lock:
        _metrics["speech_wait_total_ms"] = float(_metrics.get("speech_wait_total_ms", 0.0)) + wait_ms
        _metrics["speech_wait_samples"] = float(_metrics.get("speech_wait_samples", 0.0)) + 1.0


def reset_metrics() -> None:
    with _lock:
        for key in list(_metrics.keys()):
            _metrics[key] = 0.0


def get_metrics_snapshot(extra: dict[str, Any] | None = None) -> dict[str, Any]:
    with _lock:
        data = dict(_metrics)

    wait_samples = max(1.0, float(data.get("speech_wait_samples") or 0.0))

    payload: dict[str, Any] = {"generated_at": time.time()}
    for name in _COUNTERS:
        payload[name] = int(data.get(name) or 0.0)
    payload["speech_wait_samples"] = int(data.get("speech_wait_samples") or 0.0)
    payload["avg_speech_wait_ms"] = round(float(data.get("speech_wait_total_ms") or 0.0) / wait_samples, 2)

    if extra:
        payload.update(extra)
    return payload
