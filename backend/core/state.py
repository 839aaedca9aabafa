# backend/core/state.py

from enum import Enum


class TurnState(str, Enum):
    AI_SPEAKING = "ai_speaking"
    USER_LISTENING = "user_listening"


class AvatarReadiness(str, Enum):
    NOT_REQUESTED = "not_requested"
    AWAITING_READY = "awaiting_ready"
    READY = "ready"


class SessionPhase(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    ACTIVE = "active"
    ENDED = "ended"
