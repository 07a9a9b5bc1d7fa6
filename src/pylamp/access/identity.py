"""Identity provider contract and the Firebase Authentication implementation."""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import Any, Protocol

from firebase_admin import auth

from pylamp.exceptions import LampAuthenticationError
from pylamp.models.identity import Identity

_logger = logging.getLogger(__name__)


class IdentityProvider(Protocol):
    async def verify(self, id_token: str) -> Identity:
        """Validate an ID token from the sign-in popup and return who it belongs to."""
        ...


def identity_from_claims(claims: dict[str, Any]) -> Identity:
    uid = claims.get("uid") or claims.get("sub")
    if not uid:
        raise LampAuthenticationError("ID token carries no uid")
    return Identity(
        uid=str(uid),
        email=claims.get("email"),
        display_name=claims.get("name"),
        photo_url=claims.get("picture"),
    )


class FirebaseIdentityProvider:
    """Verifies Google sign-in ID tokens with the Firebase Admin SDK.

    ``verify_id_token`` may fetch Google's public certificates, so it runs
    in the default executor.
    """

    def __init__(self, app: Any = None, *, check_revoked: bool = False) -> None:
        self._app = app
        self._check_revoked = check_revoked

    async def verify(self, id_token: str) -> Identity:
        token = (id_token or "").strip()
        if not token:
            raise LampAuthenticationError("Missing ID token")

        loop = asyncio.get_running_loop()
        call = functools.partial(
            auth.verify_id_token,
            token,
            app=self._app,
            check_revoked=self._check_revoked,
        )
        try:
            claims = await loop.run_in_executor(None, call)
        except (auth.InvalidIdTokenError, auth.UserDisabledError, auth.CertificateFetchError, ValueError) as exc:
            _logger.info("ID token rejected: %s", exc)
            raise LampAuthenticationError(f"Sign-in rejected: {exc}") from exc
        return identity_from_claims(claims)
