from __future__ import annotations

import logging
from typing import Protocol

logger = logging.getLogger("interview_view")


class InterviewView(Protocol):
    def render_question(self, text: str) -> None:
        ...

    def render_answer(self, text: str) -> None:
        ...

    def set_listening(self, listening: bool) -> None:
        ...

    def set_status(self, text: str) -> None:
        ...

    def set_countdown(self, text: str) -> None:
        ...

    def announce_end(self, text: str) -> None:
        ...


class LoggingView:
    """Headless view: every UI update becomes a log line."""

    def render_question(self, text: str) -> None:
        logger.info("AI: %s", text)

    def render_answer(self, text: str) -> None:
        logger.info("You: %s", text)

    def set_listening(self, listening: bool) -> None:
        logger.info("[listening=%s]", listening)

    def set_status(self, text: str) -> None:
        logger.info("[status] %s", text)

    def set_countdown(self, text: str) -> None:
        logger.debug("[countdown] %s", text)

    def announce_end(self, text: str) -> None:
        logger.info("[end] %s", text)
