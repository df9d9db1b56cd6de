"""Single authorization capability checked before every mutation."""

from __future__ import annotations

import enum
from typing import Iterable

from portal_common.config import DEFAULT_ADMIN_ROLES
from portal_common.logging import get_logger
from portal_sync.backend import Backend, CurrentUser
from portal_sync.errors import AuthorizationError

logger = get_logger(__name__)


class Permission(str, enum.Enum):
    AUTHENTICATED = "authenticated"
    ADMIN = "admin"
    OWNER_OR_ADMIN = "owner_or_admin"


class Authorizer:
    """Answers "may the current caller do this?" for one store."""

    def __init__(
        self,
        user: CurrentUser | None,
        admin_roles: Iterable[str] = DEFAULT_ADMIN_ROLES,
    ) -> None:
        self._user = user
        self.admin_roles = frozenset(admin_roles)

    @classmethod
    async def from_backend(
        cls, backend: Backend, admin_roles: Iterable[str] = DEFAULT_ADMIN_ROLES
    ) -> "Authorizer":
        return cls(await backend.current_user(), admin_roles)

    @property
    def user(self) -> CurrentUser | None:
        return self._user

    @property
    def is_authenticated(self) -> bool:
        return self._user is not None

    @property
    def is_admin(self) -> bool:
        return self._user is not None and any(role in self.admin_roles for role in self._user.roles)

    def owns(self, owner_id: str | None) -> bool:
        return self._user is not None and owner_id is not None and owner_id == self._user.id

    def allows(self, permission: Permission, owner_id: str | None = None) -> bool:
        if permission is Permission.AUTHENTICATED:
            return self.is_authenticated
        if permission is Permission.ADMIN:
            return self.is_admin
        return self.is_admin or self.owns(owner_id)

    def require(self, permission: Permission, owner_id: str | None = None) -> CurrentUser:
        if not self.allows(permission, owner_id):
            if self._user is None:
                raise AuthorizationError("Unauthorized: please sign in to continue")
            if permission is Permission.OWNER_OR_ADMIN:
                raise AuthorizationError("Unauthorized: only the owner or an admin can do this")
            raise AuthorizationError("Unauthorized: admin privileges required")
        return self._user

    def revoke(self) -> None:
        """Drop the caller's identity (sign-out); stores stop auto-refreshing."""
        if self._user is not None:
            logger.info("authorization_revoked", user_id=self._user.id)
        self._user = None
