from avatar_interview.transcription.channel import TranscriptionChannel, build_session_config
from avatar_interview.transcription.events import FinalTranscript, PartialTranscript, SpeechStarted, Utterance, classify_event

__all__ = [
    "FinalTranscript",
    "PartialTranscript",
    "SpeechStarted",
    "TranscriptionChannel",
    "Utterance",
    "build_session_config",
    "classify_event",
]
