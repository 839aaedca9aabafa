import json
import logging

from core.logger import build_event, log_event, redact_spoken
from core.state import TurnState


def test_spoken_text_is_reduced_to_its_size():
    assert redact_spoken("I led the migration to Kafka") == {"redacted": True, "chars": 28, "words": 6}
    assert redact_spoken(None) == {"redacted": True, "chars": 0, "words": 0}


def test_build_event_redacts_nested_spoken_fields_and_flattens_enums():
    record = build_event(
        "control",
        "answer_submitted",
        "s-1",
        answer="Patience.",
        turn=TurnState.USER_LISTENING,
        context={"question": "Strengths?", "attempt": 2},
    )

    assert record["component"] == "control"
    assert record["session_id"] == "s-1"
    assert record["answer"] == {"redacted": True, "chars": 9, "words": 1}
    assert record["turn"] == TurnState.USER_LISTENING.value
    assert record["context"] == {"question": {"redacted": True, "chars": 10, "words": 1}, "attempt": 2}


def test_events_carry_increasing_sequence_numbers():
    first = build_event("gate", "opened", "s-1")
    second = build_event("gate", "closed", "s-1")
    assert second["seq"] > first["seq"]


def test_log_event_writes_one_json_line_at_the_requested_level(caplog):
    caplog.set_level(logging.INFO, logger="avatar_interview.events")

    log_event("transcription", "transport_lost", "s-9", level=logging.WARNING)

    assert len(caplog.records) == 1
    record = caplog.records[0]
    assert record.levelno == logging.WARNING
    payload = json.loads(record.getMessage())
    assert payload["event"] == "transport_lost"
    assert payload["session_id"] == "s-9"


def test_log_event_skips_serialization_below_threshold(caplog):
    caplog.set_level(logging.WARNING, logger="avatar_interview.events")
    log_event("control", "connected", "s-1")
    assert caplog.records == []
