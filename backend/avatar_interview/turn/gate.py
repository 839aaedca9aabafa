import logging
from typing import Callable

from core.state import TurnState

logger = logging.getLogger("turn_gate")


class TurnGate:
    """
    Single owner of whose turn it is.

    Only two mutators exist. Every component that needs to flip the turn goes
    through them; nothing outside this class assigns the state directly.
    Once sealed (session teardown) both mutators become no-ops.
    """

    def __init__(self, on_change: Callable[[TurnState], None] | None = None):
        self._state = TurnState.AI_SPEAKING
        self._sealed = False
        self._on_change = on_change

    @property
    def state(self) -> TurnState:
        return self._state

    @property
    def sealed(self) -> bool:
        return self._sealed

    def is_user_turn(self) -> bool:
        return self._state is TurnState.USER_LISTENING

    def open_for_user(self) -> None:
        self._transition(TurnState.USER_LISTENING, reason="open_for_user")

    def close_for_user(self) -> None:
        self._transition(TurnState.AI_SPEAKING, reason="close_for_user")

    def seal(self) -> None:
        """Force AI_SPEAKING and ignore every later write."""
        if self._sealed:
            return
        self._transition(TurnState.AI_SPEAKING, reason="seal")
        self._sealed = True
        logger.info("[GATE] sealed")

    def _transition(self, target: TurnState, reason: str) -> None:
        if self._sealed:
            logger.debug(f"[GATE] write ignored after seal | reason={reason}")
            return
        if self._state is target:
            return

        logger.info(f"[GATE] {self._state.value} → {target.value} | reason={reason}")
        self._state = target
        if self._on_change is not None:
            try:
                self._on_change(target)
            except Exception as exc:
                logger.warning("[GATE] on_change listener failed: %s", exc)
