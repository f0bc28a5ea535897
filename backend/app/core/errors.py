from __future__ import annotations

import enum


class ErrorKind(str, enum.Enum):
    not_found = "not_found"
    invalid_state = "invalid_state"
    already_submitted = "already_submitted"
    limit_exceeded = "limit_exceeded"
    validation = "validation"
    forbidden = "forbidden"
    persistence = "persistence"


HTTP_STATUS: dict[ErrorKind, int] = {
    ErrorKind.not_found: 404,
    ErrorKind.invalid_state: 400,
    ErrorKind.already_submitted: 400,
    ErrorKind.limit_exceeded: 400,
    ErrorKind.validation: 400,
    ErrorKind.forbidden: 403,
    ErrorKind.persistence: 500,
}


class DomainError(Exception):
    """Base for errors raised by services and translated once at the HTTP boundary."""

    kind: ErrorKind = ErrorKind.invalid_state
    default_message = "request failed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    @property
    def status_code(self) -> int:
        return HTTP_STATUS[self.kind]


class NotFoundError(DomainError):
    kind = ErrorKind.not_found
    default_message = "not found"


class InvalidStateError(DomainError):
    kind = ErrorKind.invalid_state
    default_message = "operation not allowed in current state"


class AlreadySubmittedError(InvalidStateError):
    kind = ErrorKind.already_submitted
    default_message = "attempt already submitted"


class LimitExceededError(DomainError):
    kind = ErrorKind.limit_exceeded
    default_message = "maximum attempts reached"


class ValidationError(DomainError):
    kind = ErrorKind.validation
    default_message = "invalid input"


class ForbiddenError(DomainError):
    kind = ErrorKind.forbidden
    default_message = "forbidden"


class PersistenceError(DomainError):
    kind = ErrorKind.persistence
    default_message = "storage failure"
