"""
Exceptions raised by the InterviewAce backend.
"""
from typing import Optional


class InterviewAceError(Exception):
    """Base exception for the backend."""
    pass


class ConfigError(InterviewAceError):
    """A required setting (e.g. the OpenAI API key) is missing."""
    pass


class ValidationError(InterviewAceError):
    """The incoming request payload is unusable."""
    pass


class MissingField(ValidationError):
    """A required field of a generation request is absent or empty."""

    def __init__(self, message: str, field: str):
        super().__init__(message)
        self.field = field


class LockContention(InterviewAceError):
    """Another live server instance owns the lock file."""

    def __init__(self, message: str, owner_pid: Optional[int] = None):
        super().__init__(message)
        self.owner_pid = owner_pid


class PortBindError(InterviewAceError):
    """No port could be found or bound for the HTTP listener."""
    pass


class CollaboratorError(InterviewAceError):
    """
    The external text-generation call failed.

    `status_code` is the HTTP status the API answers with (429 when the
    provider is rate limiting, 500 otherwise). `detail` keeps the raw
    provider message, which is only exposed outside production.
    """

    def __init__(self, message: str, status_code: int = 500, detail: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail or message

    @property
    def is_rate_limited(self) -> bool:
        return self.status_code == 429
