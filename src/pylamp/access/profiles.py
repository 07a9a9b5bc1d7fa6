"""Profile records keyed by uid (the ``users`` collection)."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any, Protocol

from google.api_core import exceptions as google_exceptions
from pydantic import ValidationError

from pylamp._constants import USERS_COLLECTION
from pylamp.exceptions import ProfileNotFoundError, ProfileStoreError
from pylamp.models._base import utcnow
from pylamp.models.identity import Identity, Role, UserProfile

_logger = logging.getLogger(__name__)


class ProfileStore(Protocol):
    async def get(self, uid: str) -> UserProfile | None: ...

    async def ensure(self, identity: Identity, default_role: Role = Role.USER) -> UserProfile:
        """Create the profile on first sign-in, otherwise bump ``updated_at``."""
        ...

    async def set_role(self, uid: str, role: Role) -> UserProfile: ...

    async def list_profiles(self) -> list[UserProfile]: ...

    async def delete(self, uid: str) -> None: ...


class InMemoryProfileStore:
    def __init__(
        self,
        profiles: list[UserProfile] | None = None,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._clock = clock
        self._profiles: dict[str, UserProfile] = {p.uid: p for p in profiles or []}

    async def get(self, uid: str) -> UserProfile | None:
        return self._profiles.get(uid)

    async def ensure(self, identity: Identity, default_role: Role = Role.USER) -> UserProfile:
        now = self._clock()
        existing = self._profiles.get(identity.uid)
        if existing is None:
            profile = UserProfile.from_identity(identity, default_role).model_copy(
                update={"created_at": now, "updated_at": now}
            )
        else:
            profile = existing.model_copy(update={"updated_at": now})
        self._profiles[identity.uid] = profile
        return profile

    async def set_role(self, uid: str, role: Role) -> UserProfile:
        existing = self._profiles.get(uid)
        if existing is None:
            raise ProfileNotFoundError(uid)
        profile = existing.model_copy(update={"role": role, "updated_at": self._clock()})
        self._profiles[uid] = profile
        return profile

    async def list_profiles(self) -> list[UserProfile]:
        return sorted(self._profiles.values(), key=lambda p: (p.email or "", p.uid))

    async def delete(self, uid: str) -> None:
        if self._profiles.pop(uid, None) is None:
            raise ProfileNotFoundError(uid)


def profile_from_document(doc_id: str, data: dict[str, Any]) -> UserProfile | None:
    try:
        return UserProfile.model_validate({**data, "uid": doc_id})
    except ValidationError:
        _logger.debug("Skipping malformed profile document %s", doc_id)
        return None


class FirestoreProfileStore:
    """Profiles in a Firestore collection, one document per uid.

    Field names follow the documents written by the first dashboard release
    (``name``, ``photoURL``, ``createdAt``...).
    """

    def __init__(
        self,
        db: Any,
        *,
        collection: str = USERS_COLLECTION,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._db = db
        self._collection_name = collection
        self._clock = clock

    def _doc(self, uid: str) -> Any:
        return self._db.collection(self._collection_name).document(uid)

    async def get(self, uid: str) -> UserProfile | None:
        try:
            snapshot = await self._doc(uid).get()
        except google_exceptions.GoogleAPIError as exc:
            raise ProfileStoreError(f"Could not read profile {uid}: {exc}") from exc
        if not snapshot.exists:
            return None
        return profile_from_document(snapshot.id, snapshot.to_dict() or {})

    async def ensure(self, identity: Identity, default_role: Role = Role.USER) -> UserProfile:
        now = self._clock()
        ref = self._doc(identity.uid)
        try:
            snapshot = await ref.get()
            if snapshot.exists:
                await ref.set({"updatedAt": now}, merge=True)
                existing = profile_from_document(snapshot.id, snapshot.to_dict() or {})
                if existing is not None:
                    return existing.model_copy(update={"updated_at": now})
            profile = UserProfile.from_identity(identity, default_role).model_copy(
                update={"created_at": now, "updated_at": now}
            )
            await ref.set(profile.model_dump(by_alias=True, mode="python"), merge=True)
        except google_exceptions.GoogleAPIError as exc:
            raise ProfileStoreError(f"Could not save profile {identity.uid}: {exc}") from exc
        return profile

    async def set_role(self, uid: str, role: Role) -> UserProfile:
        ref = self._doc(uid)
        try:
            await ref.update({"role": role.value, "updatedAt": self._clock()})
            snapshot = await ref.get()
        except google_exceptions.NotFound as exc:
            raise ProfileNotFoundError(uid) from exc
        except google_exceptions.GoogleAPIError as exc:
            raise ProfileStoreError(f"Could not update role for {uid}: {exc}") from exc
        profile = profile_from_document(snapshot.id, snapshot.to_dict() or {})
        if profile is None:
            raise ProfileStoreError(f"Profile {uid} is malformed")
        return profile

    async def list_profiles(self) -> list[UserProfile]:
        try:
            snapshots = await self._db.collection(self._collection_name).get()
        except google_exceptions.GoogleAPIError as exc:
            raise ProfileStoreError(f"Could not list profiles: {exc}") from exc
        profiles = [profile_from_document(s.id, s.to_dict() or {}) for s in snapshots]
        return [p for p in profiles if p is not None]

    async def delete(self, uid: str) -> None:
        ref = self._doc(uid)
        try:
            snapshot = await ref.get()
            if not snapshot.exists:
                raise ProfileNotFoundError(uid)
            await ref.delete()
        except google_exceptions.GoogleAPIError as exc:
            raise ProfileStoreError(f"Could not delete profile {uid}: {exc}") from exc
