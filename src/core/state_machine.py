from __future__ import annotations

import logging
from enum import Enum
from typing import Callable

from PySide6.QtCore import QObject, Signal

logger = logging.getLogger("MewCompanion")


class RoundState(Enum):
    """Lifecycle of the current chat round."""

    IDLE = "idle"
    WAITING_FIRST_FRAGMENT = "waiting_first_fragment"
    STREAMING = "streaming"
    DONE = "done"
    ERROR = "error"

    @property
    def is_active(self) -> bool:
        return self in (RoundState.WAITING_FIRST_FRAGMENT, RoundState.STREAMING)


class RoundStateMachine(QObject):
    """
    Finite-state machine for chat rounds.

    Manages legal transitions and enter/exit callbacks. A new round may supersede
    any state, and submission failures can land in ERROR from anywhere; STREAMING
    and DONE are only reachable through the stream itself.
    """

    state_changed = Signal(object, object)

    VALID_TRANSITIONS: dict[RoundState, list[RoundState]] = {
        RoundState.IDLE: [RoundState.WAITING_FIRST_FRAGMENT, RoundState.ERROR],
        RoundState.WAITING_FIRST_FRAGMENT: [
            RoundState.STREAMING,
            RoundState.ERROR,
            RoundState.IDLE,
        ],
        RoundState.STREAMING: [
            RoundState.DONE,
            RoundState.ERROR,
            RoundState.IDLE,
            RoundState.WAITING_FIRST_FRAGMENT,
        ],
        RoundState.DONE: [RoundState.IDLE, RoundState.WAITING_FIRST_FRAGMENT, RoundState.ERROR],
        RoundState.ERROR: [RoundState.IDLE, RoundState.WAITING_FIRST_FRAGMENT],
    }

    def __init__(self, parent=None):
        super().__init__(parent)
        self._current_state = RoundState.IDLE
        self._callbacks: dict[RoundState, dict[str, Callable | None]] = {}

    @property
    def current_state(self) -> RoundState:
        return self._current_state

    def register_state_handler(
        self,
        state: RoundState,
        *,
        on_enter: Callable | None = None,
        on_exit: Callable | None = None,
    ) -> None:
        self._callbacks[state] = {"enter": on_enter, "exit": on_exit}

    def can_transition(self, new_state: RoundState) -> bool:
        if new_state == self._current_state:
            return True
        return new_state in self.VALID_TRANSITIONS.get(self._current_state, [])

    def transition_to(self, new_state: RoundState) -> bool:
        if new_state == self._current_state:
            return True
        if not self.can_transition(new_state):
            logger.warning(
                "[FSM] Illegal round transition: %s -> %s",
                self._current_state.name,
                new_state.name,
            )
            return False

        old_state = self._current_state
        old_callbacks = self._callbacks.get(old_state, {})
        exit_fn = old_callbacks.get("exit")
        if callable(exit_fn):
            exit_fn()

        self._current_state = new_state
        new_callbacks = self._callbacks.get(new_state, {})
        enter_fn = new_callbacks.get("enter")
        if callable(enter_fn):
            enter_fn()

        self.state_changed.emit(old_state, new_state)
        logger.debug("[FSM] Round transition: %s -> %s", old_state.name, new_state.name)
        return True
