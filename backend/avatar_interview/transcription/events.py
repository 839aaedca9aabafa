from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field

logger = logging.getLogger("transcription_events")


@dataclass(frozen=True)
class SpeechStarted:
    pass


@dataclass(frozen=True)
class PartialTranscript:
    text: str


@dataclass(frozen=True)
class FinalTranscript:
    text: str


TranscriptionEvent = SpeechStarted | PartialTranscript | FinalTranscript


@dataclass(frozen=True)
class Utterance:
    text: str
    created_at: float = field(default_factory=time.monotonic)


def classify_event(message: str | bytes | dict) -> TranscriptionEvent | None:
    """Map one inbound transport message to an event; unknown shapes map to None."""
    if isinstance(message, (str, bytes)):
        try:
            message = json.loads(message)
        except ValueError:
            logger.debug("Non-JSON transcription frame ignored")
            return None

    if not isinstance(message, dict):
        return None

    event_type = str(message.get("type") or "")
    if event_type == "speech_start":
        return SpeechStarted()

    if event_type != "transcript":
        return None

    data = message.get("data") if isinstance(message.get("data"), dict) else {}
    utterance = data.get("utterance") if isinstance(data.get("utterance"), dict) else {}
    text = str(utterance.get("text") or "")

    if bool(data.get("is_final", False)):
        return FinalTranscript(text=text)
    return PartialTranscript(text=text)
