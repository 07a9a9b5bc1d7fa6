"""Base model and enum for pylamp data.

Every pylamp model inherits from :class:`LampBaseModel` which provides:

* ``alias_generator=to_camel`` so the camelCase keys used by the
  dashboard JSON and the Firestore documents map to snake_case fields.
* Frozen instances; updates go through ``model_copy(update=...)``.

Wire enums inherit from :class:`LampEnum` which resolves any value
without a mapped member to ``UNKNOWN`` instead of raising ``ValueError``.
"""

from __future__ import annotations

import enum
from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(UTC)


class LampEnum(enum.StrEnum):
    """Base for string enums decoded from untrusted payloads.

    Every subclass **must** define ``UNKNOWN``.
    """

    @classmethod
    def _missing_(cls, value: object) -> LampEnum:
        if isinstance(value, str):
            folded = value.strip().lower()
            for member in cls:
                if member.value.lower() == folded:
                    return member
        # pylint: disable=no-member
        unknown: LampEnum = cls.UNKNOWN  # type: ignore[attr-defined]
        return unknown


class LampBaseModel(BaseModel):
    """Base for pylamp models."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )
