"""
User Profile Models.

A ``Profile`` is the application-level user record derived from one read
of the ``profiles`` base table joined with the two role-specific
extension tables (``business_profiles`` and ``influencer_profiles``).

Role-specific data is modelled as a tagged union on ``Profile.details``
(discriminator ``kind``) rather than through inheritance.  The UI-facing
flat shape, with role fields laid over base fields, is produced on demand
by :meth:`Profile.flatten`.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, model_validator

from authsync.models.enums import UserRole

# Columns of ``profiles`` that ``update_profile`` routes to the base table.
# Every other key belongs to the role-specific table.
BASE_UPDATE_FIELDS: frozenset[str] = frozenset({"email", "user_role"})


class BusinessDetails(BaseModel):
    """Columns of ``business_profiles`` carried on a business profile."""

    kind: Literal["business"] = "business"
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    company_name: Optional[str] = None
    company_description: Optional[str] = None
    industry: Optional[str] = None
    website_url: Optional[str] = None
    address: Optional[str] = None
    avatar_url: Optional[str] = None
    is_verified: bool = False

    model_config = {"extra": "ignore", "frozen": True}


class InfluencerDetails(BaseModel):
    """Columns of ``influencer_profiles`` carried on an influencer profile."""

    kind: Literal["influencer"] = "influencer"
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    bio: Optional[str] = None
    avatar_url: Optional[str] = None
    location: Optional[str] = None
    website: Optional[str] = None
    instagram_handle: Optional[str] = None
    youtube_handle: Optional[str] = None
    tiktok_handle: Optional[str] = None
    twitter_handle: Optional[str] = None
    follower_count: Optional[int] = None
    engagement_rate: Optional[float] = None
    categories: Optional[list[str]] = None
    languages: Optional[list[str]] = None
    rate_per_post: Optional[float] = None

    model_config = {"extra": "ignore", "frozen": True}


RoleDetails = Annotated[
    Union[BusinessDetails, InfluencerDetails],
    Field(discriminator="kind"),
]

_DETAILS_MODELS: dict[UserRole, type[BaseModel]] = {
    UserRole.BUSINESS: BusinessDetails,
    UserRole.INFLUENCER: InfluencerDetails,
}


def role_fields(role: UserRole) -> frozenset[str]:
    """Return the role-specific column names writable for *role*.

    Admins have no extension table, so the set is empty.
    """
    model = _DETAILS_MODELS.get(role)
    if model is None:
        return frozenset()
    return frozenset(name for name in model.model_fields if name != "kind")


def _first_or_none(value: Any) -> Optional[dict[str, Any]]:
    """Normalise a PostgREST embedded relation to a single row.

    One-to-one embeds come back as an object, one-to-many as a list.
    """
    if isinstance(value, list):
        return value[0] if value else None
    if isinstance(value, dict):
        return value
    return None


class JoinedProfileRecord(BaseModel):
    """Raw result of the single joined profile read.

    Attributes
    ----------
    base:
        The ``profiles`` row.
    business:
        The ``business_profiles`` row, if one exists.
    influencer:
        The ``influencer_profiles`` row, if one exists.
    """

    base: dict[str, Any]
    business: Optional[dict[str, Any]] = None
    influencer: Optional[dict[str, Any]] = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "JoinedProfileRecord":
        """Split a PostgREST row with embedded relations into its parts."""
        base = dict(row)
        business = _first_or_none(base.pop("business_profiles", None))
        influencer = _first_or_none(base.pop("influencer_profiles", None))
        return cls(base=base, business=business, influencer=influencer)


class Profile(BaseModel):
    """The derived, role-aware user profile.

    Invariant: when ``details`` is present its ``kind`` equals ``role``.
    A profile whose role-specific row does not exist yet carries
    ``details=None`` and equals the base record alone.
    """

    id: str
    role: UserRole = Field(alias="user_role")
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    details: Optional[RoleDetails] = None

    model_config = {"populate_by_name": True, "frozen": True, "extra": "ignore"}

    @model_validator(mode="after")
    def _details_match_role(self) -> "Profile":
        if self.details is not None and self.details.kind != self.role:
            raise ValueError(
                f"Role-specific record of kind '{self.details.kind}' "
                f"cannot be attached to a '{self.role}' profile."
            )
        return self

    @property
    def subject_id(self) -> str:
        return self.id

    @classmethod
    def from_joined(cls, record: JoinedProfileRecord) -> "Profile":
        """Assemble a profile from a joined read.

        Only the role-specific row matching the base row's ``user_role``
        is attached; the other one is ignored even when present.
        """
        role = UserRole(record.base["user_role"])
        role_row: Optional[dict[str, Any]] = None
        if role == UserRole.BUSINESS:
            role_row = record.business
        elif role == UserRole.INFLUENCER:
            role_row = record.influencer

        payload: dict[str, Any] = dict(record.base)
        if role_row is not None:
            payload["details"] = {**role_row, "kind": str(role)}
        return cls.model_validate(payload)

    def flatten(self) -> dict[str, Any]:
        """Return the flat view: role-specific fields over base fields."""
        flat: dict[str, Any] = self.model_dump(by_alias=True, exclude={"details"})
        if self.details is not None:
            flat.update(self.details.model_dump(exclude={"kind"}))
        return flat

    def merge(self, partial: dict[str, Any]) -> "Profile":
        """Return a copy with *partial* applied.

        Keys in :data:`BASE_UPDATE_FIELDS` update the base fields; every
        other key updates the role-specific details.  Role-side keys on a
        profile whose details are absent create them.
        """
        base_part = {k: v for k, v in partial.items() if k in BASE_UPDATE_FIELDS}
        role_part = {k: v for k, v in partial.items() if k not in BASE_UPDATE_FIELDS}

        payload: dict[str, Any] = self.model_dump(by_alias=True, exclude={"details"})
        payload.update(base_part)
        if self.details is not None or role_part:
            current = self.details.model_dump() if self.details is not None else {}
            payload["details"] = {**current, **role_part, "kind": str(self.role)}
        return Profile.model_validate(payload)
