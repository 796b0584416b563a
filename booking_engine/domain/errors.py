"""Exception taxonomy shared by repository, services and controllers."""

from __future__ import annotations


class SchedulingError(Exception):
    """Base class for engine failures."""


class NotFoundError(SchedulingError):
    """Raised when a referenced event or host does not exist."""


class PolicyViolation(SchedulingError):
    """Raised by callers that prefer an exception over a ValidationResult."""

    def __init__(self, errors: list[str]) -> None:
        super().__init__("; ".join(errors) or "Booking constraints violated")
        self.errors = list(errors)


class NoCandidateError(SchedulingError):
    """Raised when no host can take a booking. Surface as fully booked."""


class UpstreamUnavailableError(SchedulingError):
    """Raised when storage cannot answer. Callers must retry with backoff."""


class StateConflictError(UpstreamUnavailableError):
    """Raised when round-robin state kept changing under concurrent writers."""
