import os
from pathlib import Path
from dotenv import load_dotenv

_BACKEND_ROOT = Path(__file__).resolve().parents[1]
_BACKEND_ENV_PATH = _BACKEND_ROOT / ".env"
load_dotenv(dotenv_path=_BACKEND_ENV_PATH, override=False)


def _csv(value: str) -> list[str]:
    return [item.strip() for item in str(value or "").split(",") if item.strip()]


QA_MODE = os.getenv("QA_MODE", "false").lower() == "true"

# Backend (question generation + session bookkeeping)
INTERVIEW_API_BASE_URL = str(os.getenv("INTERVIEW_API_BASE_URL") or "http://127.0.0.1:8000").strip().rstrip("/")
INTERVIEW_WS_BASE_URL = str(os.getenv("INTERVIEW_WS_BASE_URL") or "ws://127.0.0.1:8000").strip().rstrip("/")
HTTP_TIMEOUT_SEC = max(1.0, float(os.getenv("HTTP_TIMEOUT_SEC", "10")))

# Avatar proxy
AVATAR_PROXY_URL = str(os.getenv("AVATAR_PROXY_URL") or "http://127.0.0.1:3000/api/avatar").strip().rstrip("/")
AVATAR_ID = str(os.getenv("AVATAR_ID") or "default").strip()
AVATAR_QUALITY = str(os.getenv("AVATAR_QUALITY") or "medium").strip()
AVATAR_READY_POLL_INTERVAL_SEC = max(0.05, float(os.getenv("AVATAR_READY_POLL_INTERVAL_SEC", "0.5")))
AVATAR_READY_MAX_ATTEMPTS = max(1, int(os.getenv("AVATAR_READY_MAX_ATTEMPTS", "40")))
SPEECH_WORDS_PER_MINUTE = max(60, int(os.getenv("SPEECH_WORDS_PER_MINUTE", "150")))
SPEECH_TRAILING_BUFFER_MS = max(0, int(os.getenv("SPEECH_TRAILING_BUFFER_MS", "1500")))

# Streaming transcription
TRANSCRIPTION_INIT_URL = str(os.getenv("TRANSCRIPTION_INIT_URL") or "https://api.gladia.io/v2/live").strip()
TRANSCRIPTION_API_KEY = str(os.getenv("TRANSCRIPTION_API_KEY") or "").strip()
TRANSCRIPTION_MODEL = str(os.getenv("TRANSCRIPTION_MODEL") or "solaria-1").strip()
TRANSCRIPTION_ENDPOINTING_SEC = max(0.1, float(os.getenv("TRANSCRIPTION_ENDPOINTING_SEC", "1.0")))
TRANSCRIPTION_MAX_DURATION_WITHOUT_ENDPOINTING_SEC = max(
    5, int(os.getenv("TRANSCRIPTION_MAX_DURATION_WITHOUT_ENDPOINTING_SEC", "30"))
)
TRANSCRIPTION_LANGUAGES = _csv(os.getenv("TRANSCRIPTION_LANGUAGES", "en")) or ["en"]

# Microphone capture
AUDIO_SAMPLE_RATE = 16000
AUDIO_CHUNK_SAMPLES = max(256, int(os.getenv("AUDIO_CHUNK_SAMPLES", "4096")))

# Session budget
INTERVIEW_DURATION_SEC = max(1, int(os.getenv("INTERVIEW_DURATION_SEC", "600")))

# Console relay
CONSOLE_ALLOW_ORIGINS = _csv(os.getenv("CONSOLE_ALLOW_ORIGINS", "")) or [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]
