"""PipelineStateMachine class with trigger, history, and valid_events."""

from __future__ import annotations

from llmbox.domain.errors import InvalidTransitionError
from llmbox.domain.types import PipelineState
from llmbox.pipeline.transitions import TERMINAL_STATES, TRANSITIONS


class PipelineStateMachine:
    """Finite state machine tracking one webhook invocation.

    Every invocation ends in ``ACKNOWLEDGED``, whichever branch it took.

    Usage::

        sm = PipelineStateMachine()
        sm.trigger("parse")         # -> PARSED
        sm.trigger("check_quota")   # -> QUOTA_CHECKED
        sm.trigger("block")         # -> BLOCKED
    """

    def __init__(self, initial_state: PipelineState = PipelineState.RECEIVED) -> None:
        self._state: PipelineState = initial_state
        self._history: list[tuple[PipelineState, str, PipelineState]] = []

    @property
    def state(self) -> PipelineState:
        """Return the current pipeline state."""
        return self._state

    @property
    def is_terminal(self) -> bool:
        """Return True once the invocation has been acknowledged."""
        return self._state in TERMINAL_STATES

    @property
    def history(self) -> list[tuple[PipelineState, str, PipelineState]]:
        """Return a copy of the ``(from_state, event, to_state)`` history."""
        return list(self._history)

    def trigger(self, event: str) -> PipelineState:
        """Apply an event to the current state and transition.

        Raises:
            InvalidTransitionError: If the transition is not allowed from
                the current state, or if the machine is in a terminal state.
        """
        if self.is_terminal:
            raise InvalidTransitionError(self._state, event)

        key = (self._state, event)
        if key not in TRANSITIONS:
            raise InvalidTransitionError(self._state, event)

        old_state = self._state
        new_state = TRANSITIONS[key]
        self._history.append((old_state, event, new_state))
        self._state = new_state
        return new_state

    def get_valid_events(self) -> list[str]:
        """Return a sorted list of events valid from the current state."""
        if self.is_terminal:
            return []
        return sorted(event for state, event in TRANSITIONS if state == self._state)
