"""
Presentation state machine for one chat submission.

Renderers subscribe to transitions instead of inspecting the stream:

    IDLE -> WAITING
    WAITING -> PRODUCING | DONE | ERRORED
    PRODUCING -> DONE | ERRORED

While WAITING a "thinking" indicator is shown. If no chunk arrives within the
escalation delay the escalation cue fires once; it is cosmetic and never
cancels the request. DONE and ERRORED are terminal.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from enum import Enum

from .exceptions import InvalidTransitionError

logger = logging.getLogger(__name__)

DEFAULT_ESCALATION_DELAY = 10.0


class PresentationState(Enum):
    """Visible states of a chat response."""
    IDLE = "idle"
    WAITING = "waiting"
    PRODUCING = "producing"
    DONE = "done"
    ERRORED = "errored"


TERMINAL_STATES = frozenset({PresentationState.DONE, PresentationState.ERRORED})

_ALLOWED_TRANSITIONS: dict[PresentationState, frozenset[PresentationState]] = {
    PresentationState.IDLE: frozenset({PresentationState.WAITING}),
    PresentationState.WAITING: frozenset({
        PresentationState.PRODUCING,
        PresentationState.DONE,
        PresentationState.ERRORED,
    }),
    PresentationState.PRODUCING: frozenset({
        PresentationState.DONE,
        PresentationState.ERRORED,
    }),
    PresentationState.DONE: frozenset(),
    PresentationState.ERRORED: frozenset(),
}

TransitionListener = Callable[[PresentationState, PresentationState], None]
EscalationListener = Callable[[], None]


class PresentationStateMachine:
    """Tracks what a renderer should show for the current submission."""

    def __init__(self, escalation_delay: float = DEFAULT_ESCALATION_DELAY):
        if escalation_delay <= 0:
            raise ValueError("escalation_delay must be positive")
        self.escalation_delay = escalation_delay
        self.state = PresentationState.IDLE
        self.escalated = False
        self.state_changes = 0
        self._listeners: list[TransitionListener] = []
        self._escalation_listeners: list[EscalationListener] = []
        self._escalation_handle: asyncio.TimerHandle | None = None

    def add_listener(self, listener: TransitionListener) -> None:
        """Call ``listener(previous, current)`` on every transition."""
        self._listeners.append(listener)

    def add_escalation_listener(self, listener: EscalationListener) -> None:
        self._escalation_listeners.append(listener)

    @property
    def indicator_active(self) -> bool:
        """Whether the thinking indicator should be visible."""
        return self.state == PresentationState.WAITING

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def begin(self) -> None:
        """Request sent: start waiting and arm the escalation timer."""
        self._transition(PresentationState.WAITING)
        loop = asyncio.get_running_loop()
        self._escalation_handle = loop.call_later(
            self.escalation_delay, self._escalate
        )

    def chunk_received(self) -> None:
        """A payload arrived. Only the first one changes state."""
        if self.state == PresentationState.PRODUCING:
            return
        self._transition(PresentationState.PRODUCING)

    def finish(self) -> None:
        self._transition(PresentationState.DONE)

    def fail(self) -> None:
        self._transition(PresentationState.ERRORED)

    def _transition(self, target: PresentationState) -> None:
        if target not in _ALLOWED_TRANSITIONS[self.state]:
            raise InvalidTransitionError(self.state, target)

        previous = self.state
        self.state = target
        self.state_changes += 1

        if target != PresentationState.WAITING:
            self.cancel_escalation()

        logger.debug("Presentation %s -> %s", previous.value, target.value)
        for listener in self._listeners:
            listener(previous, target)

    def _escalate(self) -> None:
        self._escalation_handle = None
        if self.state != PresentationState.WAITING or self.escalated:
            return

        self.escalated = True
        logger.debug("No chunk after %.1fs, escalating", self.escalation_delay)
        for listener in self._escalation_listeners:
            listener()

    def cancel_escalation(self) -> None:
        """Disarm the escalation timer, if armed."""
        if self._escalation_handle is not None:
            self._escalation_handle.cancel()
            self._escalation_handle = None

    def get_statistics(self) -> dict[str, str | int | bool]:
        return {
            "state": self.state.value,
            "state_changes": self.state_changes,
            "escalated": self.escalated,
        }
