from enum import Enum
from dataclasses import dataclass
import json

from .clock import utcnow


class EventType(str, Enum):
    # Tournament lifecycle
    TOURNAMENT_CREATED = "tournament.created"
    TOURNAMENT_UPDATED = "tournament.updated"
    TOURNAMENT_DELETED = "tournament.deleted"
    TOURNAMENT_STARTED = "tournament.started"
    TOURNAMENT_COMPLETED = "tournament.completed"
    TOURNAMENT_CANCELLED = "tournament.cancelled"

    # State changes
    STATE_CHANGED = "state.changed"

    # Participant events
    PARTICIPANT_REGISTERED = "participant.registered"
    PARTICIPANT_REMOVED = "participant.removed"
    PARTICIPANT_CONFIRMED = "participant.confirmed"
    PARTICIPANT_WITHDRAWN = "participant.withdrawn"
    PARTICIPANT_DISQUALIFIED = "participant.disqualified"
    PARTICIPANT_PAID = "participant.paid"

    # Match events
    MATCH_CREATED = "match.created"
    MATCH_RESULT = "match.result"


@dataclass
class Event:
    type: EventType
    tournament_id: str
    timestamp: str = None
    data: dict = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = utcnow().isoformat() + "Z"
        if self.data is None:
            self.data = {}

    def to_dict(self) -> dict:
        return {
            "type": self.type.value if isinstance(self.type, EventType) else self.type,
            "tournament_id": self.tournament_id,
            "timestamp": self.timestamp,
            "data": self.data
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


def state_changed_event(tournament_id: str, from_state: str, to_state: str, reason: str = None) -> Event:
    data = {
        "from_state": from_state,
        "to_state": to_state
    }
    if reason:
        data["reason"] = reason
    return Event(type=EventType.STATE_CHANGED, tournament_id=tournament_id, data=data)


def participant_event(event_type: EventType, tournament_id: str, user_id: str,
                      status: str, current_participants: int) -> Event:
    return Event(
        type=event_type,
        tournament_id=tournament_id,
        data={
            "user_id": user_id,
            "status": status,
            "current_participants": current_participants
        }
    )


def match_event(event_type: EventType, tournament_id: str, match_number: int,
                round_num: int, status: str) -> Event:
    return Event(
        type=event_type,
        tournament_id=tournament_id,
        data={
            "match_number": match_number,
            "round": round_num,
            "status": status
        }
    )
