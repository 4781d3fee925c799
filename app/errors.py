"""Error taxonomy shared by the services and the HTTP layer."""

from __future__ import annotations


class EpisodelyError(Exception):
    """Base class for errors surfaced to API callers verbatim."""

    status_code = 500

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(EpisodelyError):
    """Malformed or out-of-range input."""

    status_code = 400


class AuthError(EpisodelyError):
    """No session, or no active profile where one is required."""

    status_code = 401


class NotFoundError(EpisodelyError):
    """Show, episode or profile missing or not linked to the active profile."""

    status_code = 404


class ConflictError(EpisodelyError):
    status_code = 409


class ExternalServiceError(EpisodelyError):
    """The catalog service could not satisfy a lookup."""

    status_code = 502
