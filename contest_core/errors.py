"""Exception hierarchy for the contest core.

Every error carries a machine-readable ``kind`` plus an optional message and an
HTTP-ish ``status_code`` so the parent API layer can map it without parsing text.
"""
from __future__ import annotations


class ContestError(Exception):
    """Base class for all contest core failures."""

    status_code: int = 500

    def __init__(
        self,
        kind: str,
        message: str | None = None,
        status_code: int | None = None,
    ) -> None:
        self.kind = kind
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(f"{kind}: {message}" if message else kind)


class ValidationError(ContestError, ValueError):
    """Configuration write rejected before it reaches the store or the engine."""

    status_code = 400


class AuthorizationError(ContestError):
    """Caller is not allowed to perform the operation."""

    status_code = 403


class NotFoundError(ContestError):
    status_code = 404


class ConsistencyError(ContestError):
    """Stored data violates an invariant that writes should have prevented.

    Never auto-corrected: requires manual reconciliation.
    """

    status_code = 500


class TransientError(ContestError):
    """An external collaborator (grading service) is temporarily unavailable."""

    status_code = 503


__all__ = [
    "ContestError",
    "ValidationError",
    "AuthorizationError",
    "NotFoundError",
    "ConsistencyError",
    "TransientError",
]
