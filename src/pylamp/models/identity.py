"""Signed-in identities, roles and profile records."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import Field, field_validator

from pylamp.models._base import LampBaseModel, utcnow


class Role(StrEnum):
    ADMIN = "admin"
    USER = "user"
    GUEST = "guest"

    @classmethod
    def coerce(cls, value: object, default: Role) -> Role:
        """Map a stored role value to a member.

        Legacy role names written by older dashboards (``dosen``,
        ``mahasiswa``) and anything unrecognised fall back to *default*.
        """
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        return default


class Identity(LampBaseModel):
    """What the identity provider reports after sign-in."""

    uid: str
    email: str | None = None
    display_name: str | None = None
    photo_url: str | None = Field(default=None, alias="photoURL")


class UserProfile(LampBaseModel):
    """Profile record keyed by uid; ``role`` is the authoritative field."""

    uid: str
    email: str | None = None
    name: str | None = None
    photo_url: str | None = Field(default=None, alias="photoURL")
    role: Role = Role.USER
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("role", mode="before")
    @classmethod
    def _coerce_role(cls, value: object) -> Role:
        return Role.coerce(value, Role.USER)

    @classmethod
    def from_identity(cls, identity: Identity, role: Role = Role.USER) -> UserProfile:
        return cls(
            uid=identity.uid,
            email=identity.email,
            name=identity.display_name,
            photo_url=identity.photo_url,
            role=role,
        )
