class LeagueError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 500

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        return {'error': self.message}


class ValidationError(LeagueError):
    status_code = 400


class Forbidden(LeagueError):
    status_code = 403


class NotFound(LeagueError):
    status_code = 404


class InvalidState(LeagueError):
    status_code = 409


class Conflict(LeagueError):
    status_code = 409
