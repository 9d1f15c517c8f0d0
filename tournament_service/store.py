import logging
import uuid
from typing import Callable, List, Optional, Tuple

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from shared.clock import utcnow, parse_datetime
from shared.errors import (
    TournamentError, TournamentNotFound, ValidationError, ConcurrentModification,
    DuplicateTournament, AlreadyRegistered, StateConflict, StorageError
)
from shared.events import (
    Event, EventType, state_changed_event, participant_event, match_event
)
from shared.pubsub import EventPublisher
from shared.state_machine import TournamentState
from .models import db, Tournament
from .validation import validate_creation, validate_update

logger = logging.getLogger(__name__)

SORT_FIELDS = {
    'start_time': Tournament.start_time,
    'created_at': Tournament.created_at,
    'name': Tournament.name,
    'current_participants': Tournament.current_participants,
}

STATUS_TARGETS = (
    TournamentState.REGISTRATION_OPEN.value,
    TournamentState.REGISTRATION_CLOSED.value,
    TournamentState.LIVE.value,
)

LIFECYCLE_EVENTS = {
    TournamentState.LIVE.value: EventType.TOURNAMENT_STARTED,
    TournamentState.COMPLETED.value: EventType.TOURNAMENT_COMPLETED,
    TournamentState.CANCELLED.value: EventType.TOURNAMENT_CANCELLED,
}


def dedup_key_for(game_type: str, start_time) -> str:
    return f"{game_type}:{start_time.isoformat()}"


class TournamentStore:
    """
    Owns tournament persistence and lifecycle:
    - Create/update/delete tournament records
    - Drive the tournament and participant state machines
    - Serialize mutations per tournament (row lock + version counter)
    - Emit change events after every committed mutation
    """

    def __init__(self, publisher: EventPublisher = None, clock: Callable = utcnow):
        self.publisher = publisher or EventPublisher(None)
        self.clock = clock

    # ==================== Queries ====================

    def get_tournament(self, tournament_id: str) -> Tournament:
        tournament = Tournament.query.filter_by(tournament_id=tournament_id).first()
        if tournament is None:
            raise TournamentNotFound(f"Tournament {tournament_id} not found")
        return tournament

    def _get_for_update(self, tournament_id: str) -> Tournament:
        tournament = (
            Tournament.query
            .filter_by(tournament_id=tournament_id)
            .with_for_update()
            .first()
        )
        if tournament is None:
            raise TournamentNotFound(f"Tournament {tournament_id} not found")
        return tournament

    def list_tournaments(
        self,
        statuses: List[str] = None,
        game_type: str = None,
        tournament_type: str = None,
        start_time: str = None,
        page: int = 1,
        limit: int = 20,
        sort_by: str = 'start_time',
        sort_order: str = 'asc',
        public_only: bool = False
    ) -> Tuple[List[Tournament], int]:
        """List tournaments with optional filtering; returns (page items, total)."""
        errors = []
        if page < 1:
            errors.append("page must be a positive integer")
        if sort_by not in SORT_FIELDS:
            errors.append(f"sort_by must be one of {', '.join(SORT_FIELDS)}")
        if sort_order not in ('asc', 'desc'):
            errors.append("sort_order must be asc or desc")
        valid_statuses = {s.value for s in TournamentState}
        for status in statuses or []:
            if status not in valid_statuses:
                errors.append(f"Invalid status: {status}")
        start = None
        if start_time:
            try:
                start = parse_datetime(start_time)
            except ValueError:
                errors.append("start_time must be a valid ISO-8601 date")
        if errors:
            raise ValidationError(details=errors)

        query = Tournament.query
        if statuses:
            query = query.filter(Tournament.status.in_(statuses))
        if game_type:
            query = query.filter_by(game_type=game_type)
        if tournament_type:
            query = query.filter_by(tournament_type=tournament_type)
        if start is not None:
            query = query.filter(Tournament.start_time == start)
        if public_only:
            query = query.filter_by(is_public=True)

        total = query.count()
        column = SORT_FIELDS[sort_by]
        query = query.order_by(column.desc() if sort_order == 'desc' else column.asc(), Tournament.id.asc())
        items = query.offset((page - 1) * limit).limit(limit).all()
        return items, total

    def list_upcoming(self, limit: int = 10) -> List[Tournament]:
        return (
            Tournament.query
            .filter(
                Tournament.status.in_([TournamentState.UPCOMING.value, TournamentState.REGISTRATION_OPEN.value]),
                Tournament.start_time > self.clock()
            )
            .order_by(Tournament.start_time.asc())
            .limit(limit)
            .all()
        )

    def list_live(self) -> List[Tournament]:
        return Tournament.query.filter_by(status=TournamentState.LIVE.value).all()

    def find_automated(self, game_type: str, start_time) -> Optional[Tournament]:
        return Tournament.query.filter_by(dedup_key=dedup_key_for(game_type, start_time)).first()

    # ==================== Persistence ====================

    def _publish(self, events: List[Event]):
        for event in events:
            self.publisher.publish_tournament_event(event)

    def _mutate(self, tournament_id: str, action: Callable[[Tournament], List[Event]]) -> Tournament:
        """Load with a row lock, apply ``action``, commit, then publish its events."""
        tournament = self._get_for_update(tournament_id)
        try:
            events = action(tournament)
            db.session.commit()
        except TournamentError:
            db.session.rollback()
            raise
        except StaleDataError:
            db.session.rollback()
            logger.warning(f"Concurrent modification of tournament {tournament_id}")
            raise ConcurrentModification(
                f"Tournament {tournament_id} was modified concurrently, reload and retry"
            )
        except IntegrityError as e:
            db.session.rollback()
            if 'unique_participant_per_tournament' in str(e.orig) or 'participants.user_id' in str(e.orig):
                raise AlreadyRegistered("User is already registered")
            raise ConcurrentModification(f"Tournament {tournament_id} was modified concurrently")

        self._publish(events)
        return tournament

    @staticmethod
    def _state_events(tournament: Tournament, old_state: str, reason: str = None) -> List[Event]:
        events = [state_changed_event(tournament.tournament_id, old_state, tournament.status, reason)]
        lifecycle = LIFECYCLE_EVENTS.get(tournament.status)
        if lifecycle and old_state != tournament.status:
            events.append(Event(
                type=lifecycle,
                tournament_id=tournament.tournament_id,
                data={'game_type': tournament.game_type, 'reason': reason}
            ))
        return events

    @staticmethod
    def _duplicate(tournament: Tournament) -> DuplicateTournament:
        return DuplicateTournament(
            f"Automated {tournament.game_type} tournament starting at "
            f"{tournament.start_time.isoformat()} already exists"
        )

    # ==================== Tournament CRUD ====================

    def create_tournament(self, data: dict, created_by: str = None) -> Tournament:
        """Create a new tournament in the upcoming state."""
        now = self.clock()
        fields = validate_creation(data, now)

        tournament = Tournament(
            tournament_id=f"t_{uuid.uuid4().hex[:12]}",
            status=TournamentState.UPCOMING.value,
            created_by=str(created_by) if created_by is not None else None,
            **fields
        )
        if tournament.tournament_type == 'automated':
            tournament.dedup_key = dedup_key_for(tournament.game_type, tournament.start_time)
            if self.find_automated(tournament.game_type, tournament.start_time):
                raise self._duplicate(tournament)
        tournament.recompute_derived()

        db.session.add(tournament)
        try:
            db.session.commit()
        except IntegrityError as e:
            db.session.rollback()
            if tournament.dedup_key and 'dedup_key' in str(e.orig):
                raise self._duplicate(tournament)
            logger.error(f"Could not store tournament {tournament.name}: {e.orig}")
            raise StorageError("Tournament could not be stored")

        logger.info(f"Tournament created: {tournament.name} ({tournament.tournament_id}, {tournament.tournament_type})")
        self._publish([Event(
            type=EventType.TOURNAMENT_CREATED,
            tournament_id=tournament.tournament_id,
            data={
                'game_type': tournament.game_type,
                'type': tournament.tournament_type,
                'start_time': tournament.start_time.isoformat()
            }
        )])
        return tournament

    def update_tournament(self, tournament_id: str, data: dict) -> Tournament:
        def action(tournament: Tournament) -> List[Event]:
            if tournament.status in (TournamentState.LIVE.value, TournamentState.COMPLETED.value,
                                     TournamentState.CANCELLED.value):
                raise StateConflict(f"Cannot update tournament in {tournament.status} state")
            for key, value in validate_update(tournament, data).items():
                setattr(tournament, key, value)
            tournament.recompute_derived()
            return [Event(type=EventType.TOURNAMENT_UPDATED, tournament_id=tournament.tournament_id,
                          data={'fields': sorted(data)})]

        return self._mutate(tournament_id, action)

    def delete_tournament(self, tournament_id: str) -> None:
        """Delete a tournament that has no participants and never went live."""
        tournament = self._get_for_update(tournament_id)
        if tournament.participants:
            db.session.rollback()
            raise StateConflict("Cannot delete tournament with participants")
        if tournament.status in (TournamentState.LIVE.value, TournamentState.COMPLETED.value):
            db.session.rollback()
            raise StateConflict("Cannot delete tournament that has started or completed")

        db.session.delete(tournament)
        db.session.commit()
        logger.info(f"Tournament deleted: {tournament_id}")
        self._publish([Event(type=EventType.TOURNAMENT_DELETED, tournament_id=tournament_id)])

    # ==================== Lifecycle ====================

    def open_registration(self, tournament_id: str) -> Tournament:
        def action(tournament):
            return self._state_events(tournament, tournament.open_registration())
        return self._mutate(tournament_id, action)

    def close_registration(self, tournament_id: str, force: bool = False) -> Tournament:
        def action(tournament):
            return self._state_events(tournament, tournament.close_registration(self.clock(), force=force))
        return self._mutate(tournament_id, action)

    def advance_status(self, tournament_id: str, target: str) -> Tournament:
        """Status-update request used by the scheduler; only time-driven moves."""
        if target == TournamentState.REGISTRATION_OPEN.value:
            return self.open_registration(tournament_id)
        if target == TournamentState.REGISTRATION_CLOSED.value:
            return self.close_registration(tournament_id)
        if target == TournamentState.LIVE.value:
            def action(tournament):
                return self._state_events(tournament, tournament.begin_scheduled(self.clock()))
            return self._mutate(tournament_id, action)
        raise ValidationError(details=[f"status must be one of {', '.join(STATUS_TARGETS)}"])

    def start_tournament(self, tournament_id: str) -> Tournament:
        def action(tournament):
            return self._state_events(tournament, tournament.start_tournament(self.clock()))
        return self._mutate(tournament_id, action)

    def end_tournament(self, tournament_id: str) -> Tournament:
        def action(tournament):
            return self._state_events(tournament, tournament.end_tournament(self.clock()))
        return self._mutate(tournament_id, action)

    def cancel_tournament(self, tournament_id: str, reason: str) -> Tournament:
        if not isinstance(reason, str) or not reason.strip():
            raise ValidationError(details=["reason is required"])
        if len(reason) > 500:
            raise ValidationError(details=["reason must be 500 characters or less"])

        def action(tournament):
            return self._state_events(tournament, tournament.cancel_tournament(reason), reason)
        return self._mutate(tournament_id, action)

    # ==================== Participants ====================

    def _participant_action(self, tournament_id: str, event_type: EventType,
                            apply: Callable[[Tournament], object]) -> Tournament:
        def action(tournament):
            participant = apply(tournament)
            return [participant_event(
                event_type, tournament.tournament_id, participant.user_id,
                participant.status, tournament.current_participants
            )]
        return self._mutate(tournament_id, action)

    def add_participant(self, tournament_id: str, user_id: str, username: str) -> Tournament:
        if not user_id or not username:
            raise ValidationError(details=["user_id and username are required"])
        return self._participant_action(
            tournament_id, EventType.PARTICIPANT_REGISTERED,
            lambda t: t.add_participant(user_id, username, self.clock())
        )

    def remove_participant(self, tournament_id: str, user_id: str) -> Tournament:
        return self._participant_action(
            tournament_id, EventType.PARTICIPANT_REMOVED,
            lambda t: t.remove_participant(user_id)
        )

    def confirm_participant(self, tournament_id: str, user_id: str) -> Tournament:
        return self._participant_action(
            tournament_id, EventType.PARTICIPANT_CONFIRMED,
            lambda t: t.confirm_participant(user_id, self.clock())
        )

    def withdraw_participant(self, tournament_id: str, user_id: str) -> Tournament:
        return self._participant_action(
            tournament_id, EventType.PARTICIPANT_WITHDRAWN,
            lambda t: t.withdraw_participant(user_id)
        )

    def disqualify_participant(self, tournament_id: str, user_id: str) -> Tournament:
        return self._participant_action(
            tournament_id, EventType.PARTICIPANT_DISQUALIFIED,
            lambda t: t.disqualify_participant(user_id)
        )

    def mark_entry_fee_paid(self, tournament_id: str, user_id: str) -> Tournament:
        return self._participant_action(
            tournament_id, EventType.PARTICIPANT_PAID,
            lambda t: t.mark_entry_fee_paid(user_id)
        )

    # ==================== Matches ====================

    def add_match(self, tournament_id: str, round_num: int, participants: List[dict]) -> Tournament:
        def action(tournament):
            match = tournament.add_match(round_num, participants, self.clock())
            return [match_event(EventType.MATCH_CREATED, tournament.tournament_id,
                                match.match_number, match.round_num, match.status)]
        return self._mutate(tournament_id, action)

    def record_match_result(self, tournament_id: str, match_number: int, status: str,
                            scores: dict = None, winner_id: str = None) -> Tournament:
        def action(tournament):
            match = tournament.record_match_result(match_number, status, scores, winner_id, self.clock())
            return [match_event(EventType.MATCH_RESULT, tournament.tournament_id,
                                match.match_number, match.round_num, match.status)]
        return self._mutate(tournament_id, action)

    # ==================== Health ====================

    def health(self) -> dict:
        try:
            db.session.execute(text('SELECT 1'))
            database = 'connected'
        except SQLAlchemyError:
            db.session.rollback()
            database = 'disconnected'

        redis_status = self.publisher.ping()
        healthy = database == 'connected' and redis_status in ('connected', 'disabled')
        return {
            'status': 'healthy' if healthy else 'unhealthy',
            'database': database,
            'redis': redis_status
        }
