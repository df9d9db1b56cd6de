"""
Error taxonomy shared by the backend adapters, stores and outer surfaces.
"""

from __future__ import annotations

import enum


class BackendErrorKind(str, enum.Enum):
    """Recognised classes of backend failure."""

    DUPLICATE = "duplicate"
    PERMISSION = "permission"
    MISSING_SCHEMA = "missing_schema"
    NOT_FOUND = "not_found"
    UNKNOWN = "unknown"


_DUPLICATE_CODES = {"23505"}
_PERMISSION_CODES = {"42501"}
_MISSING_SCHEMA_CODES = {"42P01", "42883", "PGRST202", "PGRST205"}
_NOT_FOUND_CODES = {"PGRST116"}


class BackendError(Exception):
    """Raised by backend adapters for any failed call."""

    def __init__(self, message: str, code: str | None = None, status: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.status = status

    @property
    def kind(self) -> BackendErrorKind:
        code = (self.code or "").upper()
        text = self.message.lower()

        if code in _DUPLICATE_CODES or self.status == 409:
            return BackendErrorKind.DUPLICATE
        if "duplicate" in text or "already exists" in text:
            return BackendErrorKind.DUPLICATE
        if code in _PERMISSION_CODES or self.status in (401, 403):
            return BackendErrorKind.PERMISSION
        if "insufficient permissions" in text or "permission denied" in text:
            return BackendErrorKind.PERMISSION
        if code in _MISSING_SCHEMA_CODES:
            return BackendErrorKind.MISSING_SCHEMA
        if "does not exist" in text or "could not find" in text:
            return BackendErrorKind.MISSING_SCHEMA
        if code in _NOT_FOUND_CODES:
            return BackendErrorKind.NOT_FOUND
        if self.status == 404:
            # PostgREST answers 404 for unknown tables/functions without a code
            return BackendErrorKind.MISSING_SCHEMA
        return BackendErrorKind.UNKNOWN

    def __repr__(self) -> str:
        return f"BackendError({self.message!r}, code={self.code!r}, status={self.status!r})"


class PortalError(Exception):
    """Base class for errors surfaced to portal users."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class AuthorizationError(PortalError):
    """Caller lacks the role or ownership a mutation requires."""


class ValidationError(PortalError):
    """Required input is missing or malformed."""


class RemoteError(PortalError):
    """A backend call failed; ``cause`` keeps the adapter error when there is one."""

    def __init__(self, message: str, cause: BackendError | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class DuplicateRecordError(RemoteError):
    pass


class PermissionDeniedError(RemoteError):
    pass


class SchemaUnavailableError(RemoteError):
    pass


class RecordNotFoundError(RemoteError):
    pass


class MutationError(RemoteError):
    pass
