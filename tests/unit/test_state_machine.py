"""
Unit tests for TournamentStateMachine and participant transitions.
Tests all state transitions, guards, and helper methods.
"""
from datetime import datetime, timedelta

import pytest
from shared.errors import CannotStartYet, InvalidParticipantState, InvalidTransition
from shared.state_machine import (
    TournamentStateMachine,
    TournamentState,
    ParticipantState,
    auto_start_threshold,
    confirmed_threshold_guard,
    participant_transition,
    registration_deadline_guard,
    start_time_guard
)

NOW = datetime(2026, 3, 1, 12, 0, 0)


class TestTournamentStateEnum:
    """Tests for TournamentState enum."""

    def test_all_states_exist(self):
        """All expected states should exist."""
        assert TournamentState.UPCOMING.value == "upcoming"
        assert TournamentState.REGISTRATION_OPEN.value == "registration_open"
        assert TournamentState.REGISTRATION_CLOSED.value == "registration_closed"
        assert TournamentState.LIVE.value == "live"
        assert TournamentState.COMPLETED.value == "completed"
        assert TournamentState.CANCELLED.value == "cancelled"

    def test_state_is_string_enum(self):
        """States compare equal to their stored string."""
        assert TournamentState.LIVE == "live"


class TestInvalidTransition:
    """Tests for InvalidTransition exception."""

    def test_error_attributes(self):
        error = InvalidTransition("upcoming", "live")
        assert error.from_state == "upcoming"
        assert error.to_state == "live"
        assert error.http_status == 409

    def test_default_reason(self):
        error = InvalidTransition("upcoming", "live")
        assert "upcoming" in str(error)
        assert "live" in str(error)

    def test_custom_reason(self):
        error = InvalidTransition("upcoming", "live", "Custom error message")
        assert str(error) == "Custom error message"


class TestGuards:
    """Tests for the transition guard functions."""

    def test_deadline_guard_before_deadline(self):
        assert registration_deadline_guard({
            'now': NOW, 'registration_deadline': NOW + timedelta(minutes=1)
        }) is False

    def test_deadline_guard_at_deadline(self):
        assert registration_deadline_guard({'now': NOW, 'registration_deadline': NOW}) is True

    def test_deadline_guard_forced(self):
        """Administrative close ignores the deadline."""
        assert registration_deadline_guard({
            'now': NOW, 'registration_deadline': NOW + timedelta(days=1), 'force': True
        }) is True

    def test_start_time_guard(self):
        assert start_time_guard({'now': NOW, 'start_time': NOW + timedelta(seconds=1)}) is False
        assert start_time_guard({'now': NOW, 'start_time': NOW}) is True

    def test_start_time_guard_missing_context(self):
        assert start_time_guard({}) is False

    @pytest.mark.parametrize("max_participants,threshold,expected", [
        (50, 0.8, 40),
        (32, 0.8, 26),
        (16, 0.8, 13),
        (64, 0.8, 52),
        (10, 1.0, 10),
        (3, 0.5, 2),
    ])
    def test_auto_start_threshold(self, max_participants, threshold, expected):
        """Required confirmations are ceil(max * threshold)."""
        assert auto_start_threshold(max_participants, threshold) == expected

    def test_confirmed_threshold_guard(self):
        context = {'max_participants': 50, 'auto_start_threshold': 0.8}
        assert confirmed_threshold_guard({**context, 'confirmed': 39}) is False
        assert confirmed_threshold_guard({**context, 'confirmed': 40}) is True


class TestStateMachineInit:
    """Tests for TournamentStateMachine initialization."""

    def test_default_initial_state(self):
        sm = TournamentStateMachine()
        assert sm.state == TournamentState.UPCOMING

    def test_from_state_string(self):
        sm = TournamentStateMachine.from_state_string("registration_closed")
        assert sm.state == TournamentState.REGISTRATION_CLOSED

    def test_from_unknown_state_string(self):
        """Unknown stored states fall back to upcoming."""
        sm = TournamentStateMachine.from_state_string("archived")
        assert sm.state == TournamentState.UPCOMING


class TestTransitions:
    """Tests for the tournament lifecycle transitions."""

    def test_open_registration(self):
        sm = TournamentStateMachine()
        assert sm.transition("open") == TournamentState.REGISTRATION_OPEN

    def test_close_before_deadline_fails(self):
        sm = TournamentStateMachine(TournamentState.REGISTRATION_OPEN)
        with pytest.raises(InvalidTransition):
            sm.transition("close", {'now': NOW, 'registration_deadline': NOW + timedelta(minutes=5)})
        assert sm.state == TournamentState.REGISTRATION_OPEN

    def test_close_after_deadline(self):
        sm = TournamentStateMachine(TournamentState.REGISTRATION_OPEN)
        sm.transition("close", {'now': NOW, 'registration_deadline': NOW - timedelta(minutes=5)})
        assert sm.state == TournamentState.REGISTRATION_CLOSED

    def test_close_directly_from_upcoming(self):
        """A tournament that never opened still closes once its deadline passes."""
        sm = TournamentStateMachine()
        sm.transition("close", {'now': NOW, 'registration_deadline': NOW})
        assert sm.state == TournamentState.REGISTRATION_CLOSED

    def test_start_requires_start_time(self):
        sm = TournamentStateMachine(TournamentState.REGISTRATION_CLOSED)
        with pytest.raises(CannotStartYet):
            sm.transition("start", {'now': NOW, 'start_time': NOW + timedelta(minutes=1)})

    def test_start_at_start_time(self):
        sm = TournamentStateMachine(TournamentState.REGISTRATION_CLOSED)
        assert sm.transition("start", {'now': NOW, 'start_time': NOW}) == TournamentState.LIVE

    def test_start_early_requires_threshold(self):
        sm = TournamentStateMachine(TournamentState.REGISTRATION_CLOSED)
        with pytest.raises(CannotStartYet):
            sm.transition("start_early", {'confirmed': 7, 'max_participants': 10, 'auto_start_threshold': 0.8})
        sm.transition("start_early", {'confirmed': 8, 'max_participants': 10, 'auto_start_threshold': 0.8})
        assert sm.state == TournamentState.LIVE

    def test_cannot_start_from_registration_open(self):
        sm = TournamentStateMachine(TournamentState.REGISTRATION_OPEN)
        with pytest.raises(InvalidTransition):
            sm.transition("start", {'now': NOW, 'start_time': NOW})

    def test_end_live_tournament(self):
        sm = TournamentStateMachine(TournamentState.LIVE)
        assert sm.transition("end") == TournamentState.COMPLETED

    @pytest.mark.parametrize("state", [
        TournamentState.UPCOMING,
        TournamentState.REGISTRATION_OPEN,
        TournamentState.REGISTRATION_CLOSED,
        TournamentState.LIVE,
        TournamentState.CANCELLED,
    ])
    def test_cancel_from_every_non_completed_state(self, state):
        sm = TournamentStateMachine(state)
        assert sm.transition("cancel") == TournamentState.CANCELLED

    def test_cannot_cancel_completed(self):
        sm = TournamentStateMachine(TournamentState.COMPLETED)
        with pytest.raises(InvalidTransition):
            sm.transition("cancel")

    @pytest.mark.parametrize("action", ["open", "close", "start", "end"])
    def test_no_transition_out_of_completed(self, action):
        sm = TournamentStateMachine(TournamentState.COMPLETED)
        with pytest.raises(InvalidTransition):
            sm.transition(action, {'force': True})


class TestAllowedActions:
    """Tests for allowed_actions and terminal state helpers."""

    def test_register_only_while_open(self):
        assert "register" in TournamentStateMachine(TournamentState.REGISTRATION_OPEN).allowed_actions
        assert "register" not in TournamentStateMachine(TournamentState.UPCOMING).allowed_actions
        assert "register" not in TournamentStateMachine(TournamentState.REGISTRATION_CLOSED).allowed_actions

    def test_terminal_states(self):
        assert TournamentStateMachine(TournamentState.COMPLETED).is_terminal
        assert TournamentStateMachine(TournamentState.CANCELLED).is_terminal
        assert not TournamentStateMachine(TournamentState.LIVE).is_terminal

    def test_completed_is_view_only(self):
        assert TournamentStateMachine(TournamentState.COMPLETED).allowed_actions == ["view"]


class TestParticipantTransitions:
    """Tests for participant status transitions."""

    def test_confirm_registered(self):
        assert participant_transition("registered", "confirm") == ParticipantState.CONFIRMED

    def test_withdraw_confirmed(self):
        assert participant_transition("confirmed", "withdraw") == ParticipantState.WITHDRAWN

    def test_disqualify_confirmed(self):
        assert participant_transition("confirmed", "disqualify") == ParticipantState.DISQUALIFIED

    @pytest.mark.parametrize("current,action", [
        ("confirmed", "confirm"),
        ("withdrawn", "confirm"),
        ("disqualified", "confirm"),
        ("withdrawn", "disqualify"),
        ("disqualified", "withdraw"),
    ])
    def test_no_backwards_transitions(self, current, action):
        with pytest.raises(InvalidParticipantState):
            participant_transition(current, action)

    def test_unknown_status(self):
        with pytest.raises(InvalidParticipantState):
            participant_transition("pending", "confirm")
