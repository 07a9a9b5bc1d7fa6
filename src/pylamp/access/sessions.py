"""Signed-in sessions and their change notifications."""

from __future__ import annotations

import contextlib
import logging
import secrets
from collections.abc import Callable
from datetime import datetime

from pydantic import Field

from pylamp._redact import mask_email
from pylamp.access.identity import IdentityProvider
from pylamp.access.policy import AccessPolicy
from pylamp.access.profiles import ProfileStore
from pylamp.exceptions import LampAuthenticationError, ProfileStoreError
from pylamp.models._base import LampBaseModel, utcnow
from pylamp.models.identity import Identity, Role

_logger = logging.getLogger(__name__)


class UserSession(LampBaseModel):
    session_id: str
    identity: Identity
    role: Role
    signed_in_at: datetime = Field(default_factory=utcnow)

    @property
    def is_admin(self) -> bool:
        return AccessPolicy.can_view_admin(self.role)


SessionListener = Callable[[UserSession, bool], None]


class SessionManager:
    """Turns ID tokens into sessions and tells listeners about sign-in/out."""

    def __init__(
        self,
        identity_provider: IdentityProvider | None,
        profiles: ProfileStore,
        policy: AccessPolicy,
    ) -> None:
        self._provider = identity_provider
        self._profiles = profiles
        self._policy = policy
        self._sessions: dict[str, UserSession] = {}
        self._listeners: list[SessionListener] = []

    @property
    def sign_in_available(self) -> bool:
        return self._provider is not None

    def add_listener(self, listener: SessionListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _remove() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(listener)

        return _remove

    def _notify(self, session: UserSession, signed_in: bool) -> None:
        for listener in list(self._listeners):
            try:
                listener(session, signed_in)
            except Exception:
                _logger.exception("Session listener failed")

    async def sign_in(self, id_token: str) -> UserSession:
        """Verify *id_token*, record the profile and resolve the role.

        Raises :class:`LampAuthenticationError` when the token is rejected;
        no session is created in that case.
        """
        if self._provider is None:
            raise LampAuthenticationError("Sign-in is not configured")
        identity = await self._provider.verify(id_token)

        try:
            await self._profiles.ensure(identity, self._policy.default_role)
        except ProfileStoreError as exc:
            _logger.warning("Could not record profile for %s: %s", identity.uid, exc)

        # Each sign-in resolves the role afresh.
        self._policy.forget(identity.uid)
        role = await self._policy.role_for(identity.uid)
        session = UserSession(session_id=secrets.token_urlsafe(32), identity=identity, role=role)
        self._sessions[session.session_id] = session
        _logger.info("Signed in %s as %s", mask_email(identity.email), role)
        self._notify(session, True)
        return session

    def get(self, session_id: str | None) -> UserSession | None:
        if not session_id:
            return None
        return self._sessions.get(session_id)

    def sign_out(self, session_id: str | None) -> bool:
        session = self._sessions.pop(session_id, None) if session_id else None
        if session is None:
            return False
        uid = session.identity.uid
        if not any(s.identity.uid == uid for s in self._sessions.values()):
            self._policy.forget(uid)
        _logger.info("Signed out %s", mask_email(session.identity.email))
        self._notify(session, False)
        return True

    def sign_out_user(self, uid: str) -> int:
        """End every session of *uid*, e.g. after the profile was deleted."""
        session_ids = [sid for sid, s in self._sessions.items() if s.identity.uid == uid]
        for sid in session_ids:
            self.sign_out(sid)
        self._policy.forget(uid)
        return len(session_ids)
