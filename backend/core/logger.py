import itertools
import json
import logging
import time
from enum import Enum
from typing import Any

logger = logging.getLogger("avatar_interview.events")

# Anything the candidate or the avatar says stays out of the log.
SPOKEN_TEXT_KEYS = frozenset({"text", "answer", "question", "utterance", "transcript"})

_sequence = itertools.count(1)


def redact_spoken(value: Any) -> dict:
	text = str(value or "")
	return {"redacted": True, "chars": len(text), "words": len(text.split())}


def _loggable(key: str, value: Any) -> Any:
	if key.lower() in SPOKEN_TEXT_KEYS:
		return redact_spoken(value)
	if isinstance(value, Enum):
		return value.value
	if value is None or isinstance(value, (str, int, float, bool)):
		return value
	if isinstance(value, dict):
		return {str(k): _loggable(str(k), v) for k, v in value.items()}
	if isinstance(value, (list, tuple, set, frozenset)):
		return [_loggable(key, item) for item in value]
	return str(value)


def build_event(component: str, event: str, session_id: str, **fields) -> dict:
	record = {
		"seq": next(_sequence),
		"ts": round(time.time(), 3),
		"component": component or "engine",
		"event": event or "unknown",
		"session_id": session_id or "",
	}
	for key, value in fields.items():
		record[str(key)] = _loggable(str(key), value)
	return record


def log_event(component: str, event: str, session_id: str, level: int = logging.INFO, **fields) -> None:
	"""One JSON line per engine event; `seq` orders events across tasks within the process."""
	if not logger.isEnabledFor(level):
		return
	record = build_event(component, event, session_id, **fields)
	logger.log(level, json.dumps(record, ensure_ascii=False, default=str))
