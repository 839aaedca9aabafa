class InterviewEngineError(Exception):
    """Base class for orchestration failures."""


class SessionStartError(InterviewEngineError):
    """The start handshake failed; no real-time channel was opened."""


class AvatarUnavailableError(InterviewEngineError):
    """The avatar session could not be established."""


class TranscriptionUnavailableError(InterviewEngineError):
    """The transcription session could not be initialised or connected."""


class ControlChannelError(InterviewEngineError):
    """The control transport could not be opened."""
