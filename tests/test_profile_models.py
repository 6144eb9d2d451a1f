"""
Unit tests for the profile, session and sign-up models.

Covers assembly of a ``Profile`` from a joined read, the role/details
invariant, the flattened view and partial merges.
"""

import pytest
from pydantic import ValidationError

from authsync.models import (
    BusinessDetails,
    InfluencerDetails,
    JoinedProfileRecord,
    Profile,
    SignUpData,
    UserRole,
    role_fields,
)
from authsync.models.session import Session


def _base(role: str = "business", subject_id: str = "u-1") -> dict:
    return {
        "id": subject_id,
        "user_role": role,
        "email": "owner@example.com",
        "first_name": None,
        "last_name": None,
        "created_at": "2024-03-01T10:00:00+00:00",
        "updated_at": "2024-03-01T10:00:00+00:00",
    }


def test_business_profile_flattens_role_fields_over_base():
    record = JoinedProfileRecord(
        base=_base("business"),
        business={"id": "u-1", "first_name": "Bea", "company_name": "Acme"},
        influencer={"id": "u-1", "bio": "should be ignored"},
    )

    profile = Profile.from_joined(record)
    flat = profile.flatten()

    assert profile.role == UserRole.BUSINESS
    assert isinstance(profile.details, BusinessDetails)
    assert flat["company_name"] == "Acme"
    assert flat["first_name"] == "Bea"
    assert flat["user_role"] == "business"
    assert "bio" not in flat
    assert "kind" not in flat


def test_influencer_profile_uses_influencer_row():
    record = JoinedProfileRecord(
        base=_base("influencer"),
        influencer={"id": "u-1", "bio": "Travel", "follower_count": 1200},
    )

    profile = Profile.from_joined(record)

    assert isinstance(profile.details, InfluencerDetails)
    assert profile.flatten()["follower_count"] == 1200


def test_missing_role_row_yields_base_only_profile():
    profile = Profile.from_joined(JoinedProfileRecord(base=_base("influencer")))

    assert profile.details is None
    assert profile.flatten()["email"] == "owner@example.com"
    assert "bio" not in profile.flatten()


def test_admin_profile_never_carries_details():
    record = JoinedProfileRecord(
        base=_base("admin"),
        business={"id": "u-1", "company_name": "Acme"},
        influencer={"id": "u-1", "bio": "x"},
    )

    profile = Profile.from_joined(record)

    assert profile.role == UserRole.ADMIN
    assert profile.details is None
    assert role_fields(UserRole.ADMIN) == frozenset()


def test_details_kind_must_match_role():
    with pytest.raises(ValidationError):
        Profile(id="u-1", user_role="business", details=InfluencerDetails(bio="x"))


def test_from_row_splits_embedded_relations():
    row = {
        **_base("business"),
        "business_profiles": [{"id": "u-1", "company_name": "Acme"}],
        "influencer_profiles": [],
    }

    record = JoinedProfileRecord.from_row(row)

    assert record.business == {"id": "u-1", "company_name": "Acme"}
    assert record.influencer is None
    assert "business_profiles" not in record.base


def test_merge_routes_base_and_role_keys():
    profile = Profile.from_joined(
        JoinedProfileRecord(base=_base("influencer"), influencer={"bio": "Old"})
    )

    merged = profile.merge({"email": "new@example.com", "bio": "New"})

    assert merged.email == "new@example.com"
    assert merged.details is not None and merged.details.bio == "New"
    assert profile.details.bio == "Old"


def test_merge_creates_details_when_absent():
    profile = Profile.from_joined(JoinedProfileRecord(base=_base("business")))

    merged = profile.merge({"company_name": "Acme"})

    assert isinstance(merged.details, BusinessDetails)
    assert merged.details.company_name == "Acme"


def test_role_fields_exclude_discriminator():
    fields = role_fields(UserRole.BUSINESS)

    assert "company_name" in fields
    assert "kind" not in fields


def test_sign_up_data_falls_back_to_influencer():
    data = SignUpData(first_name="  Ana ", last_name=None, user_type="superuser")

    assert data.user_type == UserRole.INFLUENCER
    assert data.first_name == "Ana"
    assert data.provider_metadata() == {
        "first_name": "Ana",
        "last_name": "",
        "user_role": "influencer",
    }


def test_session_expiry_uses_skew():
    assert Session(subject_id="u-1", expires_at=0).is_expired
    assert not Session(subject_id="u-1").is_expired
    assert "secret" not in repr(Session(subject_id="u-1", access_token="secret"))
