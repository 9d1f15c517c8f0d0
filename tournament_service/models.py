import math
from datetime import datetime
from typing import List, Optional

from flask_sqlalchemy import SQLAlchemy

from shared.clock import utcnow, isoformat
from shared.errors import (
    TournamentFull, RegistrationClosed, AlreadyRegistered, ParticipantNotFound,
    InvalidTransition, CannotStartYet, NotLive, AlreadyCompleted, ValidationError
)
from shared.state_machine import (
    TournamentStateMachine, TournamentState, ParticipantState,
    ACTIVE_PARTICIPANT_STATES, auto_start_threshold, participant_transition
)

db = SQLAlchemy()

GAME_TYPES = ('BR_MATCH', 'CLASH_SQUAD', 'LONE_WOLF', 'CS_2_VS_2')
TOURNAMENT_TYPES = ('automated', 'manual', 'custom')
GAME_MODES = ('single_elimination', 'double_elimination', 'round_robin', 'swiss_system', 'battle_royale')
MATCH_STATUSES = ('scheduled', 'live', 'completed', 'cancelled')


class Tournament(db.Model):
    __tablename__ = 'tournaments'

    id = db.Column(db.Integer, primary_key=True)
    tournament_id = db.Column(db.String(50), unique=True, nullable=False, index=True)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.String(1000), nullable=False, default='')
    game_type = db.Column(db.String(20), nullable=False, index=True)
    tournament_type = db.Column(db.String(20), nullable=False, default='manual')
    status = db.Column(db.String(30), nullable=False, default=TournamentState.UPCOMING.value, index=True)

    # Timing
    start_time = db.Column(db.DateTime, nullable=False, index=True)
    end_time = db.Column(db.DateTime, nullable=False)
    registration_deadline = db.Column(db.DateTime, nullable=False, index=True)
    check_in_deadline = db.Column(db.DateTime, nullable=True)

    # Capacity
    max_participants = db.Column(db.Integer, nullable=False)
    min_participants = db.Column(db.Integer, nullable=False)
    current_participants = db.Column(db.Integer, nullable=False, default=0)
    registration_count = db.Column(db.Integer, nullable=False, default=0)
    auto_start_threshold = db.Column(db.Float, nullable=False, default=0.8)

    # Economic terms
    entry_fee = db.Column(db.Float, nullable=False, default=0)
    prize_first = db.Column(db.Float, nullable=False, default=0)
    prize_second = db.Column(db.Float, nullable=False, default=0)
    prize_third = db.Column(db.Float, nullable=False, default=0)
    prize_total = db.Column(db.Float, nullable=False, default=0)

    # Match counts
    total_matches = db.Column(db.Integer, nullable=False, default=0)
    completed_matches = db.Column(db.Integer, nullable=False, default=0)

    rules = db.Column(db.JSON, nullable=False, default=dict)
    tags = db.Column(db.JSON, nullable=False, default=list)
    is_public = db.Column(db.Boolean, nullable=False, default=True)
    is_featured = db.Column(db.Boolean, nullable=False, default=False)
    created_by = db.Column(db.String(50), nullable=True)
    cancellation_reason = db.Column(db.String(500), nullable=True)

    # (game_type, start_time) for automated tournaments
    dedup_key = db.Column(db.String(100), unique=True, nullable=True)

    version = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    participants = db.relationship(
        'Participant', back_populates='tournament',
        order_by='Participant.id', cascade='all, delete-orphan'
    )
    matches = db.relationship(
        'MatchStub', back_populates='tournament',
        order_by='MatchStub.match_number', cascade='all, delete-orphan'
    )

    __mapper_args__ = {'version_id_col': version}

    # ==================== Derived fields ====================

    def recompute_derived(self):
        """Re-derive every field callers may not set. Invoked by each mutator."""
        self.current_participants = self.confirmed_count()
        self.prize_total = (self.prize_first or 0) + (self.prize_second or 0) + (self.prize_third or 0)
        self.total_matches = len(self.matches)
        self.completed_matches = sum(1 for m in self.matches if m.status == 'completed')
        self.updated_at = utcnow()

    def confirmed_count(self) -> int:
        return sum(1 for p in self.participants if p.status == ParticipantState.CONFIRMED.value)

    def active_count(self) -> int:
        active = {s.value for s in ACTIVE_PARTICIPANT_STATES}
        return sum(1 for p in self.participants if p.status in active)

    @property
    def start_threshold(self) -> int:
        return auto_start_threshold(self.max_participants, self.auto_start_threshold)

    def can_start(self) -> bool:
        return (
            self.status == TournamentState.REGISTRATION_CLOSED.value
            and self.confirmed_count() >= self.start_threshold
        )

    def state_machine(self) -> TournamentStateMachine:
        return TournamentStateMachine.from_state_string(self.status)

    # ==================== Lifecycle ====================

    def _transition(self, action: str, **context) -> str:
        sm = self.state_machine()
        old_state = sm.state.value
        self.status = sm.transition(action, context).value
        return old_state

    def open_registration(self) -> str:
        old_state = self._transition('open')
        self.recompute_derived()
        return old_state

    def close_registration(self, now: datetime, force: bool = False) -> str:
        old_state = self._transition(
            'close', now=now, registration_deadline=self.registration_deadline, force=force
        )
        self.recompute_derived()
        return old_state

    def begin_scheduled(self, now: datetime) -> str:
        """Time-driven start: registration_closed -> live once start_time is reached."""
        old_state = self._transition('start', now=now, start_time=self.start_time)
        self.start_time = now
        self.recompute_derived()
        return old_state

    def start_tournament(self, now: datetime) -> str:
        """Early start once enough participants have confirmed."""
        if not self.can_start():
            raise CannotStartYet(
                f"Tournament cannot start yet: {self.confirmed_count()} of "
                f"{self.start_threshold} required confirmed participants, status '{self.status}'"
            )
        old_state = self._transition(
            'start_early',
            confirmed=self.confirmed_count(),
            max_participants=self.max_participants,
            auto_start_threshold=self.auto_start_threshold
        )
        self.start_time = now
        self.recompute_derived()
        return old_state

    def end_tournament(self, now: datetime) -> str:
        if self.status != TournamentState.LIVE.value:
            raise NotLive("Tournament is not live")
        old_state = self._transition('end')
        self.end_time = now
        self.recompute_derived()
        return old_state

    def cancel_tournament(self, reason: str) -> str:
        if self.status == TournamentState.COMPLETED.value:
            raise AlreadyCompleted("Cannot cancel completed tournament")
        old_state = self._transition('cancel')
        self.cancellation_reason = reason
        self.recompute_derived()
        return old_state

    # ==================== Participants ====================

    def find_participant(self, user_id: str) -> Optional['Participant']:
        for p in self.participants:
            if p.user_id == str(user_id):
                return p
        return None

    def _require_participant(self, user_id: str) -> 'Participant':
        participant = self.find_participant(user_id)
        if participant is None:
            raise ParticipantNotFound(f"Participant {user_id} not found")
        return participant

    def _require_not_terminal(self, action: str):
        if self.state_machine().is_terminal:
            raise InvalidTransition(self.status, self.status, f"Cannot {action} in {self.status} state")

    def add_participant(self, user_id: str, username: str, now: datetime) -> 'Participant':
        # active_count() >= current_participants, so a confirmed-full tournament is always caught
        if self.active_count() >= self.max_participants:
            raise TournamentFull("Tournament is full")
        if self.status != TournamentState.REGISTRATION_OPEN.value:
            raise RegistrationClosed("Tournament registration is closed")
        if self.find_participant(user_id) is not None:
            raise AlreadyRegistered("User is already registered")

        participant = Participant(
            user_id=str(user_id),
            username=username,
            status=ParticipantState.REGISTERED.value,
            registration_time=now
        )
        self.participants.append(participant)
        self.registration_count = (self.registration_count or 0) + 1
        self.recompute_derived()
        return participant

    def remove_participant(self, user_id: str) -> 'Participant':
        participant = self._require_participant(user_id)
        self.participants.remove(participant)
        self.registration_count = max(0, (self.registration_count or 0) - 1)
        self.recompute_derived()
        return participant

    def confirm_participant(self, user_id: str, now: datetime) -> 'Participant':
        self._require_not_terminal('check in')
        participant = self._require_participant(user_id)
        participant.status = participant_transition(participant.status, 'confirm').value
        participant.check_in_time = now
        participant.is_checked_in = True
        self.recompute_derived()
        return participant

    def withdraw_participant(self, user_id: str) -> 'Participant':
        self._require_not_terminal('withdraw')
        participant = self._require_participant(user_id)
        participant.status = participant_transition(participant.status, 'withdraw').value
        self.recompute_derived()
        return participant

    def disqualify_participant(self, user_id: str) -> 'Participant':
        self._require_not_terminal('disqualify')
        participant = self._require_participant(user_id)
        participant.status = participant_transition(participant.status, 'disqualify').value
        self.recompute_derived()
        return participant

    def mark_entry_fee_paid(self, user_id: str) -> 'Participant':
        participant = self._require_participant(user_id)
        participant.entry_fee_paid = True
        self.recompute_derived()
        return participant

    # ==================== Matches ====================

    def add_match(self, round_num: int, participants: List[dict], now: datetime) -> 'MatchStub':
        self._require_not_terminal('add a match')
        if isinstance(round_num, bool) or not isinstance(round_num, int) or round_num < 1:
            raise ValidationError(details=['round must be a positive integer'])
        participants = participants or []
        if not isinstance(participants, list) or any(not isinstance(e, dict) for e in participants):
            raise ValidationError(details=['participants must be a list of objects'])

        entries = []
        for entry in participants:
            user_id = str(entry.get('user_id', ''))
            participant = self.find_participant(user_id)
            if participant is None:
                raise ParticipantNotFound(f"Participant {user_id} not found")
            entries.append({
                'user_id': user_id,
                'username': participant.username,
                'score': 0,
                'rank': None,
                'is_winner': False
            })

        match = MatchStub(
            match_number=len(self.matches) + 1,
            round_num=round_num,
            status='scheduled',
            participants=entries,
            start_time=now
        )
        self.matches.append(match)
        self.recompute_derived()
        return match

    def find_match(self, match_number: int) -> Optional['MatchStub']:
        for m in self.matches:
            if m.match_number == match_number:
                return m
        return None

    def record_match_result(self, match_number: int, status: str, scores: dict = None,
                            winner_id: str = None, now: datetime = None) -> 'MatchStub':
        self._require_not_terminal('record a match result')
        if status not in MATCH_STATUSES:
            raise ValidationError(details=[f"status must be one of {', '.join(MATCH_STATUSES)}"])

        match = self.find_match(match_number)
        if match is None:
            raise ValidationError(details=[f"match {match_number} does not exist"])

        scores = scores or {}
        if not isinstance(scores, dict) or any(
            isinstance(v, bool) or not isinstance(v, (int, float)) or not math.isfinite(v)
            for v in scores.values()
        ):
            raise ValidationError(details=['scores must map user ids to numbers'])
        entries = []
        for entry in match.participants or []:
            entry = dict(entry)
            if entry['user_id'] in scores:
                entry['score'] = scores[entry['user_id']]
            entry['is_winner'] = winner_id is not None and entry['user_id'] == str(winner_id)
            entries.append(entry)
        if winner_id is not None and not any(e['is_winner'] for e in entries):
            raise ValidationError(details=[f"winner {winner_id} is not part of match {match_number}"])

        match.participants = entries
        match.status = status
        match.winner_id = str(winner_id) if winner_id is not None else None
        if status == 'completed':
            match.end_time = now
        self.recompute_derived()
        return match

    # ==================== Serialization ====================

    def to_dict(self, detail: bool = True) -> dict:
        data = {
            'id': self.tournament_id,
            'tournament_id': self.tournament_id,
            'name': self.name,
            'description': self.description,
            'game_type': self.game_type,
            'type': self.tournament_type,
            'status': self.status,
            'start_time': isoformat(self.start_time),
            'end_time': isoformat(self.end_time),
            'registration_deadline': isoformat(self.registration_deadline),
            'check_in_deadline': isoformat(self.check_in_deadline),
            'max_participants': self.max_participants,
            'min_participants': self.min_participants,
            'current_participants': self.current_participants,
            'registration_count': self.registration_count,
            'auto_start_threshold': self.auto_start_threshold,
            'entry_fee': self.entry_fee,
            'prize_pool': {
                'first': self.prize_first,
                'second': self.prize_second,
                'third': self.prize_third,
                'total': self.prize_total,
            },
            'total_matches': self.total_matches,
            'completed_matches': self.completed_matches,
            'rules': self.rules or {},
            'tags': self.tags or [],
            'is_public': self.is_public,
            'is_featured': self.is_featured,
            'created_by': self.created_by,
            'cancellation_reason': self.cancellation_reason,
            'allowed_actions': self.state_machine().allowed_actions,
            'created_at': isoformat(self.created_at),
            'updated_at': isoformat(self.updated_at),
        }
        if detail:
            data['participants'] = [p.to_dict() for p in self.participants]
            data['matches'] = [m.to_dict() for m in self.matches]
        return data


class Participant(db.Model):
    __tablename__ = 'participants'

    id = db.Column(db.Integer, primary_key=True)
    tournament_pk = db.Column(db.Integer, db.ForeignKey('tournaments.id'), nullable=False)
    user_id = db.Column(db.String(50), nullable=False, index=True)
    username = db.Column(db.String(100), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=ParticipantState.REGISTERED.value)
    registration_time = db.Column(db.DateTime, default=utcnow)
    check_in_time = db.Column(db.DateTime, nullable=True)
    is_checked_in = db.Column(db.Boolean, nullable=False, default=False)
    entry_fee_paid = db.Column(db.Boolean, nullable=False, default=False)

    tournament = db.relationship('Tournament', back_populates='participants')

    __table_args__ = (
        db.UniqueConstraint('tournament_pk', 'user_id', name='unique_participant_per_tournament'),
    )

    def to_dict(self):
        return {
            'user_id': self.user_id,
            'username': self.username,
            'status': self.status,
            'registration_time': isoformat(self.registration_time),
            'check_in_time': isoformat(self.check_in_time),
            'is_checked_in': bool(self.is_checked_in),
            'entry_fee_paid': bool(self.entry_fee_paid),
        }


class MatchStub(db.Model):
    __tablename__ = 'match_stubs'

    id = db.Column(db.Integer, primary_key=True)
    tournament_pk = db.Column(db.Integer, db.ForeignKey('tournaments.id'), nullable=False)
    match_number = db.Column(db.Integer, nullable=False)
    round_num = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(20), nullable=False, default='scheduled')
    participants = db.Column(db.JSON, nullable=False, default=list)
    winner_id = db.Column(db.String(50), nullable=True)
    start_time = db.Column(db.DateTime, nullable=True)
    end_time = db.Column(db.DateTime, nullable=True)

    tournament = db.relationship('Tournament', back_populates='matches')

    __table_args__ = (
        db.UniqueConstraint('tournament_pk', 'match_number', name='unique_match_per_tournament'),
    )

    def to_dict(self):
        return {
            'match_number': self.match_number,
            'round': self.round_num,
            'status': self.status,
            'participants': self.participants or [],
            'winner': self.winner_id,
            'start_time': isoformat(self.start_time),
            'end_time': isoformat(self.end_time),
        }
