"""
core/errors.py -- Error kinds shared by the auth facade and the catalog.

Every failure a caller can act on is one of these types. Each carries a
stable machine-readable code and a short human-readable message. Messages
never contain password digests, session tokens, or raw collaborator payloads.
The API layer maps each kind to an HTTP status; the CLI prints the message.

Layer rule: no imports from api/, auth/, catalog/, or cache/.
"""

from __future__ import annotations


class AppError(Exception):
    """Base class for all domain errors."""

    code = "error"
    default_message = "Request failed."

    def __init__(self, message: str | None = None, detail: str | None = None) -> None:
        self.message = message or self.default_message
        self.detail = detail
        super().__init__(self.message)


class ValidationError(AppError):
    """A field is malformed or missing. Locally correctable; shown verbatim."""

    code = "validation_error"
    default_message = "Invalid input."


class DuplicateEmailError(AppError):
    code = "duplicate_email"
    default_message = "This email is already registered."


class NotFoundError(AppError):
    code = "not_found"
    default_message = "Not found."


class InvalidCredentialsError(AppError):
    """Login failed. reason is "unknown_email" or "wrong_password".

    reason is always recorded for logs. Whether the message reveals it is a
    configuration decision made by the caller (see DISTINCT_LOGIN_ERRORS).
    """

    code = "invalid_credentials"
    default_message = "Invalid email or password."

    def __init__(self, reason: str, message: str | None = None) -> None:
        self.reason = reason
        super().__init__(message)


class ThrottledError(AppError):
    code = "throttled"

    def __init__(self, wait_minutes: int) -> None:
        self.wait_minutes = wait_minutes
        unit = "minute" if wait_minutes == 1 else "minutes"
        super().__init__(f"Too many failed attempts. Try again in {wait_minutes} {unit}.")


class PermissionDeniedError(AppError):
    code = "permission_denied"
    default_message = "You do not have permission to do that."


class StorageError(AppError):
    """A binary object store operation failed."""

    code = "storage_error"
    default_message = "File storage is unavailable."


class UnexpectedError(AppError):
    """A collaborator failed in a way the caller cannot correct.

    The underlying exception is chained as __cause__ for diagnostics and is
    never included in the message.
    """

    code = "unexpected"
    default_message = "An unexpected error occurred."
