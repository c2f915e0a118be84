"""Generation job state machine.

IDLE -> ACQUIRING_CREDENTIAL -> CALLING -> PARSING -> MATERIALIZING -> DONE,
with FAILED reachable from every non-terminal state.  Transitions outside
VALID_TRANSITIONS raise ``InvalidTransitionError``; every accepted
transition is recorded and passed to the observer.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from pwaforge.models.generation import (
    VALID_TRANSITIONS,
    GenerationState,
    StateTransition,
)

logger = logging.getLogger(__name__)

TransitionObserver = Callable[[StateTransition], None]


class InvalidTransitionError(RuntimeError):
    """Raised when a requested state transition is not valid."""


class GenerationStateMachine:
    """Tracks one job's state.

    Parameters
    ----------
    observer:
        Called with each accepted transition.  Exceptions it raises are
        logged and do not affect the job.
    """

    def __init__(self, observer: TransitionObserver | None = None) -> None:
        self._state = GenerationState.IDLE
        self._history: list[StateTransition] = []
        self._observer = observer

    @property
    def state(self) -> GenerationState:
        return self._state

    @property
    def history(self) -> list[StateTransition]:
        return list(self._history)

    @property
    def is_terminal(self) -> bool:
        return not VALID_TRANSITIONS[self._state]

    def transition(self, target_state: GenerationState, detail: str = "") -> StateTransition:
        """Move to *target_state*.

        Raises
        ------
        InvalidTransitionError
            If the move is not in VALID_TRANSITIONS.
        """
        allowed = VALID_TRANSITIONS[self._state]
        if target_state not in allowed:
            raise InvalidTransitionError(
                f"Cannot transition from {self._state.value} to {target_state.value}. "
                f"Allowed: {sorted(s.value for s in allowed)}"
            )
        record = StateTransition(from_state=self._state, to_state=target_state, detail=detail)
        self._state = target_state
        self._history.append(record)
        logger.debug("Job %s -> %s %s", record.from_state.value, record.to_state.value, detail)

        if self._observer is not None:
            try:
                self._observer(record)
            except Exception:
                logger.exception("Transition observer raised; continuing")
        return record

    def fail(self, detail: str = "") -> StateTransition | None:
        """Move to FAILED unless already terminal."""
        if self.is_terminal:
            return None
        return self.transition(GenerationState.FAILED, detail)
