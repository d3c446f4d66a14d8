from typing import Optional


class StudioError(Exception):
    status_code = 500

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


class NotFound(StudioError):
    status_code = 404


class InvalidRequest(StudioError):
    status_code = 400


class MissingInput(StudioError):
    """A precondition of the requested generation kind is not met. Never mutates state."""
    status_code = 422


class Conflict(StudioError):
    """A generation attempt is already in flight for the shot. Never mutates state."""
    status_code = 409


class ProviderFailure(StudioError):
    """The external provider failed or returned an unusable result."""
    status_code = 502
