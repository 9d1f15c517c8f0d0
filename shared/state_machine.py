import math
from enum import Enum
from typing import Optional, Callable, List, Type
from dataclasses import dataclass

from .errors import (
    StateConflict, InvalidTransition, CannotStartYet, InvalidParticipantState
)


class TournamentState(str, Enum):
    UPCOMING = "upcoming"
    REGISTRATION_OPEN = "registration_open"
    REGISTRATION_CLOSED = "registration_closed"
    LIVE = "live"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


TERMINAL_STATES = (TournamentState.COMPLETED, TournamentState.CANCELLED)


class ParticipantState(str, Enum):
    REGISTERED = "registered"
    CONFIRMED = "confirmed"
    DISQUALIFIED = "disqualified"
    WITHDRAWN = "withdrawn"


ACTIVE_PARTICIPANT_STATES = (ParticipantState.REGISTERED, ParticipantState.CONFIRMED)


@dataclass
class Transition:
    from_state: TournamentState
    to_state: TournamentState
    action: str
    guard: Optional[Callable] = None
    guard_error: Type[StateConflict] = InvalidTransition


def registration_deadline_guard(context: dict) -> bool:
    if context.get("force"):
        return True
    now = context.get("now")
    deadline = context.get("registration_deadline")
    return now is not None and deadline is not None and now >= deadline


def start_time_guard(context: dict) -> bool:
    now = context.get("now")
    start_time = context.get("start_time")
    return now is not None and start_time is not None and now >= start_time


def auto_start_threshold(max_participants: int, threshold: float) -> int:
    """Confirmed participants needed before an early start is allowed."""
    # round() strips float noise such as 50 * 0.8 == 40.00000000000001
    return math.ceil(round(max_participants * threshold, 9))


def confirmed_threshold_guard(context: dict) -> bool:
    required = auto_start_threshold(
        context.get("max_participants", 0),
        context.get("auto_start_threshold", 1.0)
    )
    return context.get("confirmed", 0) >= required


class TournamentStateMachine:
    TRANSITIONS = [
        Transition(TournamentState.UPCOMING, TournamentState.REGISTRATION_OPEN, "open"),
        Transition(TournamentState.UPCOMING, TournamentState.REGISTRATION_CLOSED, "close",
                   registration_deadline_guard),
        Transition(TournamentState.REGISTRATION_OPEN, TournamentState.REGISTRATION_CLOSED, "close",
                   registration_deadline_guard),
        Transition(TournamentState.REGISTRATION_CLOSED, TournamentState.LIVE, "start",
                   start_time_guard, CannotStartYet),
        Transition(TournamentState.REGISTRATION_CLOSED, TournamentState.LIVE, "start_early",
                   confirmed_threshold_guard, CannotStartYet),
        Transition(TournamentState.LIVE, TournamentState.COMPLETED, "end"),
        Transition(TournamentState.UPCOMING, TournamentState.CANCELLED, "cancel"),
        Transition(TournamentState.REGISTRATION_OPEN, TournamentState.CANCELLED, "cancel"),
        Transition(TournamentState.REGISTRATION_CLOSED, TournamentState.CANCELLED, "cancel"),
        Transition(TournamentState.LIVE, TournamentState.CANCELLED, "cancel"),
        Transition(TournamentState.CANCELLED, TournamentState.CANCELLED, "cancel"),
    ]

    ALLOWED_ACTIONS = {
        TournamentState.UPCOMING: ["edit", "open", "close", "cancel", "delete"],
        TournamentState.REGISTRATION_OPEN: [
            "edit", "register", "unregister", "check_in", "close", "cancel", "delete"
        ],
        TournamentState.REGISTRATION_CLOSED: [
            "edit", "unregister", "check_in", "start", "start_early", "cancel", "delete"
        ],
        TournamentState.LIVE: ["record_match", "end", "cancel"],
        TournamentState.COMPLETED: ["view"],
        TournamentState.CANCELLED: ["view", "cancel"],
    }

    def __init__(self, initial_state: TournamentState = TournamentState.UPCOMING):
        self._state = initial_state

    @property
    def state(self) -> TournamentState:
        return self._state

    @property
    def allowed_actions(self) -> List[str]:
        return self.ALLOWED_ACTIONS.get(self._state, [])

    @property
    def is_terminal(self) -> bool:
        return self._state in TERMINAL_STATES

    def transition(self, action: str, guard_context: dict = None) -> TournamentState:
        for t in self.TRANSITIONS:
            if t.from_state == self._state and t.action == action:
                if t.guard and not t.guard(guard_context or {}):
                    raise t.guard_error(
                        f"Guard condition failed for action '{action}' in state '{self._state.value}'"
                    )

                self._state = t.to_state
                return self._state

        raise InvalidTransition(
            self._state.value,
            "unknown",
            f"No valid transition for action '{action}' from state '{self._state.value}'"
        )

    @classmethod
    def from_state_string(cls, state_str: str) -> "TournamentStateMachine":
        try:
            state = TournamentState(state_str)
        except ValueError:
            state = TournamentState.UPCOMING
        return cls(initial_state=state)


PARTICIPANT_TRANSITIONS = {
    (ParticipantState.REGISTERED, "confirm"): ParticipantState.CONFIRMED,
    (ParticipantState.REGISTERED, "disqualify"): ParticipantState.DISQUALIFIED,
    (ParticipantState.CONFIRMED, "disqualify"): ParticipantState.DISQUALIFIED,
    (ParticipantState.REGISTERED, "withdraw"): ParticipantState.WITHDRAWN,
    (ParticipantState.CONFIRMED, "withdraw"): ParticipantState.WITHDRAWN,
}


def participant_transition(current: str, action: str) -> ParticipantState:
    """Next participant state for ``action``; transitions never move backwards."""
    try:
        state = ParticipantState(current)
    except ValueError:
        raise InvalidParticipantState(f"Unknown participant status '{current}'")

    target = PARTICIPANT_TRANSITIONS.get((state, action))
    if target is None:
        raise InvalidParticipantState(
            f"Cannot {action} a participant whose status is '{state.value}'"
        )
    return target
