from __future__ import annotations

import json
import logging
from dataclasses import dataclass

logger = logging.getLogger("control_commands")


@dataclass(frozen=True)
class NewQuestion:
    text: str


@dataclass(frozen=True)
class EndInterview:
    pass


PendingCommand = NewQuestion | EndInterview


def parse_command(raw: str | bytes | dict) -> PendingCommand | None:
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError:
            logger.warning("Malformed control frame ignored")
            return None

    if not isinstance(raw, dict):
        return None

    frame_type = str(raw.get("type") or "")
    if frame_type == "end_interview":
        return EndInterview()

    if frame_type == "new_question":
        payload = raw.get("payload") if isinstance(raw.get("payload"), dict) else {}
        text = str(payload.get("text") or "").strip()
        if not text:
            logger.warning("new_question frame without text ignored")
            return None
        return NewQuestion(text=text)

    logger.debug("Unknown control frame type ignored: %s", frame_type)
    return None


def user_answer_frame(answer: str) -> str:
    return json.dumps({"type": "user_answer", "payload": {"answer": answer}}, ensure_ascii=False)
