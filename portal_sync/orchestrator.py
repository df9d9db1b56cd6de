"""
Authorized, validated writes that converge local state afterwards.

Every mutation runs the same sequence: authorize, validate/normalise,
perform the remote write, reload (or patch locally and reconcile in the
background), then notify exactly once. Failures are translated into
specific portal errors, notified and re-raised.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable

from portal_common.logging import get_logger
from portal_sync import metrics
from portal_sync.authz import Authorizer, Permission
from portal_sync.backend import Record
from portal_sync.errors import (
    BackendError,
    BackendErrorKind,
    DuplicateRecordError,
    MutationError,
    PermissionDeniedError,
    PortalError,
    RecordNotFoundError,
    RemoteError,
    SchemaUnavailableError,
    ValidationError,
)
from portal_sync.notify import NotificationLevel, Notifier

logger = get_logger(__name__)

PERMISSION_DENIED_MESSAGE = "Permission denied. Please ensure you have admin privileges."


@dataclass(frozen=True)
class LocalPatch:
    """Optimistic change to one collection: upsert a record or remove an id."""

    collection: str
    upsert: Record | None = None
    remove_id: str | None = None


@dataclass
class Mutation:
    action: str
    permission: Permission
    perform: Callable[[Any], Awaitable[Any]]
    success_message: str
    failure_message: str
    prepare: Callable[[], Any] | None = None
    owner_id: str | None = None
    duplicate_message: str | None = None
    local_patch: Callable[[Any, Any], Iterable[LocalPatch]] | None = None


def check_envelope(result: Any) -> Any:
    """Turn a ``{"success": false, "error": ...}`` procedure reply into a BackendError."""
    if isinstance(result, Mapping) and result.get("success") is False:
        raise BackendError(str(result.get("error") or "Operation failed"), code=result.get("code"))
    return result


class MutationOrchestrator:
    def __init__(
        self,
        resource: str,
        authorizer: Authorizer,
        notifier: Notifier,
        reload: Callable[[], Awaitable[None]],
        optimistic: bool = False,
        apply_patch: Callable[[LocalPatch], None] | None = None,
        spawn: Callable[[Awaitable[None]], asyncio.Task] | None = None,
    ) -> None:
        self.resource = resource
        self.authorizer = authorizer
        self.notifier = notifier
        self.reload = reload
        self.optimistic = optimistic
        self._apply_patch = apply_patch
        self._spawn = spawn or asyncio.ensure_future

    async def execute(self, mutation: Mutation) -> Any:
        replied = False
        try:
            self.authorizer.require(mutation.permission, mutation.owner_id)
            payload = mutation.prepare() if mutation.prepare is not None else None
            reply = await mutation.perform(payload)
            replied = True
            result = check_envelope(reply)
        except PortalError as exc:
            self._fail(mutation, exc, outcome=type(exc).__name__)
            raise
        except BackendError as exc:
            error = self.translate(exc, mutation)
            self._fail(mutation, error, outcome=exc.kind.value)
            if replied:
                # A refusal envelope can still carry committed writes.
                await self.reload()
            raise error from exc
        except Exception as exc:
            error = MutationError(mutation.failure_message)
            logger.exception("mutation_crashed", resource=self.resource, action=mutation.action)
            self._fail(mutation, error, outcome="error")
            raise error from exc

        await self._converge(mutation, payload, result)
        metrics.mutations.labels(resource=self.resource, action=mutation.action, outcome="success").inc()
        logger.info("mutation_succeeded", resource=self.resource, action=mutation.action)
        self.notifier.notify(NotificationLevel.SUCCESS, mutation.success_message)
        return result

    async def _converge(self, mutation: Mutation, payload: Any, result: Any) -> None:
        if self.optimistic and mutation.local_patch is not None and self._apply_patch is not None:
            for patch in mutation.local_patch(payload, result):
                self._apply_patch(patch)
            self._spawn(self.reload())
            return
        await self.reload()

    def translate(self, error: BackendError, mutation: Mutation) -> RemoteError:
        kind = error.kind
        if kind is BackendErrorKind.DUPLICATE:
            return DuplicateRecordError(
                mutation.duplicate_message or f"{mutation.failure_message}: record already exists",
                error,
            )
        if kind is BackendErrorKind.PERMISSION:
            return PermissionDeniedError(PERMISSION_DENIED_MESSAGE, error)
        if kind is BackendErrorKind.MISSING_SCHEMA:
            return SchemaUnavailableError(
                f"{mutation.failure_message}: the {self.resource} service is not set up yet", error
            )
        if kind is BackendErrorKind.NOT_FOUND:
            return RecordNotFoundError(f"{mutation.failure_message}: record not found", error)
        return MutationError(f"{mutation.failure_message}: {error.message}", error)

    def _fail(self, mutation: Mutation, error: PortalError, outcome: str) -> None:
        metrics.mutations.labels(resource=self.resource, action=mutation.action, outcome=outcome).inc()
        logger.warning(
            "mutation_failed",
            resource=self.resource,
            action=mutation.action,
            outcome=outcome,
            error=error.message,
        )
        self.notifier.notify(NotificationLevel.ERROR, error.message)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def clean_text(value: Any) -> str | None:
    """Strip a string; empty becomes ``None``."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def require_fields(data: Mapping[str, Any], *names: str) -> None:
    missing = [name for name in names if clean_text(data.get(name)) is None]
    if missing:
        raise ValidationError(f"Missing required field(s): {', '.join(missing)}")


def normalize_email(value: Any) -> str:
    email = (clean_text(value) or "").lower()
    if "@" not in email or email.startswith("@") or email.endswith("@"):
        raise ValidationError("A valid email address is required")
    return email


def require_identifier(value: Any, label: str = "id") -> str:
    identifier = clean_text(value)
    if identifier is None:
        raise ValidationError(f"A {label} is required")
    return identifier


def require_positive(value: Any, label: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{label} must be a number") from None
    if number <= 0:
        raise ValidationError(f"{label} must be greater than zero")
    return number


def optional_int(value: Any, label: str) -> int | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{label} must be a whole number") from None


def optional_float(value: Any, label: str) -> float | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{label} must be a number") from None
