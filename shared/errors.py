from typing import List, Optional


class TournamentError(Exception):
    code = "TOURNAMENT_ERROR"
    http_status = 500

    def __init__(self, message: str = None):
        self.message = message or self.code.replace("_", " ").capitalize()
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message}


class ValidationError(TournamentError):
    code = "VALIDATION_ERROR"
    http_status = 400

    def __init__(self, message: str = "Validation failed", details: Optional[List[str]] = None):
        self.details = details or []
        super().__init__(message)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["details"] = list(self.details)
        return data


class TournamentNotFound(TournamentError):
    code = "TOURNAMENT_NOT_FOUND"
    http_status = 404


class UnknownGameType(TournamentError):
    code = "UNKNOWN_GAME_TYPE"
    http_status = 400

    def __init__(self, game_type: str):
        self.game_type = game_type
        super().__init__(f"No template found for game type: {game_type}")


# Operation invalid for the current state of a tournament or participant.
class StateConflict(TournamentError):
    code = "STATE_CONFLICT"
    http_status = 409


class InvalidTransition(StateConflict):
    code = "INVALID_TRANSITION"

    def __init__(self, from_state: str, to_state: str, reason: str = None):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(reason or f"Cannot transition from {from_state} to {to_state}")


class CannotStartYet(StateConflict):
    code = "CANNOT_START_YET"


class RegistrationClosed(StateConflict):
    code = "REGISTRATION_CLOSED"


class TournamentFull(StateConflict):
    code = "TOURNAMENT_FULL"


class AlreadyRegistered(StateConflict):
    code = "ALREADY_REGISTERED"


class ParticipantNotFound(StateConflict):
    code = "PARTICIPANT_NOT_FOUND"


class InvalidParticipantState(StateConflict):
    code = "INVALID_PARTICIPANT_STATE"


class NotLive(StateConflict):
    code = "NOT_LIVE"


class AlreadyCompleted(StateConflict):
    code = "ALREADY_COMPLETED"


class ConcurrentModification(StateConflict):
    code = "CONCURRENT_MODIFICATION"


class DuplicateTournament(StateConflict):
    code = "DUPLICATE_TOURNAMENT"


class AuthenticationFailed(TournamentError):
    code = "AUTHENTICATION_FAILED"
    http_status = 401


class Unauthorized(TournamentError):
    code = "UNAUTHORIZED"
    http_status = 401


class Forbidden(TournamentError):
    code = "FORBIDDEN"
    http_status = 403


class DependencyUnavailable(TournamentError):
    code = "DEPENDENCY_UNAVAILABLE"
    http_status = 503


class ApiError(TournamentError):
    """A structured error answer from the tournament service."""

    def __init__(self, status_code: int, code: str = None, message: str = None):
        self.status_code = status_code
        self.code = code or "API_ERROR"
        super().__init__(message or f"Request failed with status {status_code}")


class StorageError(TournamentError):
    code = "STORAGE_ERROR"
    http_status = 500
