from avatar_interview.turn.estimator import count_words, estimate_speech_ms
from avatar_interview.turn.gate import TurnGate

__all__ = ["TurnGate", "count_words", "estimate_speech_ms"]
