from typing import Optional


class GameError(Exception):
    """Base class for business and infrastructure failures raised by the engine.

    Each subclass carries the HTTP status it maps to and a short machine code;
    the API layer renders them as ``{"error": code, "detail": message}``.
    """

    status_code = 500
    code = "error"
    default_message = "unexpected error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidInput(GameError):
    status_code = 400
    code = "invalid_input"
    default_message = "invalid input"


class NotFound(GameError):
    status_code = 404
    code = "not_found"
    default_message = "session not found"


class NoSessionError(NotFound):
    code = "no_session"
    default_message = "no session for this team"


class Conflict(GameError):
    status_code = 409
    code = "conflict"
    default_message = "conflict"


class AlreadyRunning(Conflict):
    code = "already_running"
    default_message = "session already running"


class StorageUnavailable(GameError):
    # message stays generic: nothing from the driver crosses the boundary
    status_code = 503
    code = "storage_unavailable"
    default_message = "storage temporarily unavailable"
