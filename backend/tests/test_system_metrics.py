from avatar_interview.system_metrics import (
    get_metrics_snapshot,
    increment_metric,
    observe_speech_wait_ms,
    reset_metrics,
    set_metric,
)


def test_counters_and_average_wait():
    increment_metric("answers_submitted")
    increment_metric("answers_submitted")
    set_metric("avatar_degraded", 3)
    observe_speech_wait_ms(5500)
    observe_speech_wait_ms(1500)

    snapshot = get_metrics_snapshot(extra={"phase": "active"})

    assert snapshot["answers_submitted"] == 2
    assert snapshot["avatar_degraded"] == 3
    assert snapshot["speech_wait_samples"] == 2
    assert snapshot["avg_speech_wait_ms"] == 3500.0
    assert snapshot["phase"] == "active"


def test_blank_names_are_ignored_and_reset_clears():
    increment_metric("")
    increment_metric("questions_received", 4)
    reset_metrics()
    snapshot = get_metrics_snapshot()
    assert snapshot["questions_received"] == 0
    assert "" not in snapshot
