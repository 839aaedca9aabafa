from core.config import SPEECH_WORDS_PER_MINUTE


def count_words(text: str) -> int:
    return len(str(text or "").split())


def estimate_speech_ms(text: str, words_per_minute: int = SPEECH_WORDS_PER_MINUTE) -> int:
    """Estimated time, in milliseconds, for an avatar to read ``text`` aloud."""
    words = count_words(text)
    if words == 0:
        return 0
    wpm = max(1, int(words_per_minute or SPEECH_WORDS_PER_MINUTE))
    return round(words / wpm * 60_000)
