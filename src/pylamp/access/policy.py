"""Role resolution and admin gating.

Gating here decides what the dashboard renders. It is not a security
boundary: the data store must enforce its own rules.
"""

from __future__ import annotations

import logging

from pylamp.access.profiles import ProfileStore
from pylamp.exceptions import AccessDeniedError, LampConfigError
from pylamp.models.identity import Role

_logger = logging.getLogger(__name__)


class AccessPolicy:
    """Resolves a uid to a role once and caches it for the session."""

    def __init__(self, profiles: ProfileStore, *, default_role: Role = Role.USER) -> None:
        if default_role is Role.ADMIN:
            raise LampConfigError("The default role cannot be admin")
        self._profiles = profiles
        self._default_role = default_role
        self._cache: dict[str, Role] = {}

    @property
    def default_role(self) -> Role:
        return self._default_role

    async def role_for(self, uid: str) -> Role:
        cached = self._cache.get(uid)
        if cached is not None:
            return cached
        try:
            profile = await self._profiles.get(uid)
        except Exception as exc:
            # Failures are not cached so the next sign-in tries again.
            _logger.warning("Role lookup for %s failed, falling back to user: %s", uid, exc)
            return Role.USER
        role = self._default_role if profile is None else profile.role
        self._cache[uid] = role
        return role

    def forget(self, uid: str) -> None:
        self._cache.pop(uid, None)

    @staticmethod
    def can_view_admin(role: Role | None) -> bool:
        return role is Role.ADMIN

    @classmethod
    def require_admin(cls, role: Role | None) -> None:
        if not cls.can_view_admin(role):
            raise AccessDeniedError("Admin role required")
