"""Test module for cross-record verification resolution."""

from datetime import datetime, timedelta

import pytest

from verification.db_models import (
    BusinessVerification,
    DriverVerification,
    OTPRecord,
    UserProfile,
)
from verification.resolver import (
    VerificationResolver,
    apply_write_backs,
    get_verification_status,
    resolve_verification,
)

PHONE = "+94771234567"


def _user(**fields):
    defaults = {"country_code": "LK", "first_name": "Nimal", "last_name": "Perera"}
    defaults.update(fields)
    return UserProfile.create(**defaults)


def _verified_otp(destination=PHONE, contact_type="phone"):
    now = datetime.now()
    return OTPRecord.create(
        destination=destination,
        contact_type=contact_type,
        otp_code="123456",
        issuance_id=f"otp_{destination}",
        expires_at=now + timedelta(minutes=5),
        verified=True,
        verified_at=now,
    )


def _reload(user):
    return UserProfile.get_by_id(user.id)


def test_business_record_wins():
    user = _user(phone=PHONE, phone_verified=True)
    BusinessVerification.create(
        user_id=user.id, business_phone="077 123 4567", phone_verified=True, country_code="LK"
    )

    result = resolve_verification(user.id, "phone", "0771234567")

    assert result.verified is True
    assert result.source == "business_verification"
    assert result.verified_contact == PHONE
    assert result.checked_sources == (("business_verification", True),)


def test_driver_context_checks_driver_first():
    user = _user()
    BusinessVerification.create(
        user_id=user.id, business_phone=PHONE, phone_verified=True, country_code="LK"
    )
    DriverVerification.create(
        user_id=user.id, phone_number=PHONE, phone_verified=True, country_code="LK"
    )

    result = resolve_verification(user.id, "phone", PHONE, context="driver")

    assert result.source == "driver_verification"


def test_unverified_registration_is_skipped():
    user = _user(phone=PHONE, phone_verified=True)
    BusinessVerification.create(
        user_id=user.id, business_phone=PHONE, phone_verified=False, country_code="LK"
    )

    result = resolve_verification(user.id, "phone", PHONE, context="business")

    assert result.source == "personal_phone"


def test_profile_email():
    user = _user(email="Jane@Example.com", email_verified=True)

    result = resolve_verification(user.id, "email", "jane@example.COM")

    assert result.verified is True
    assert result.source == "personal_email"
    assert result.verified_contact == "jane@example.com"


def test_otp_history_populates_empty_profile_field():
    user = _user(phone=None)
    _verified_otp()

    result = resolve_verification(user.id, "phone", "0771234567")

    assert result.source == "otp_history"
    profile = _reload(user)
    assert profile.phone == PHONE
    assert profile.phone_verified is True


def test_otp_history_flags_matching_profile_field():
    user = _user(phone="0771234567", phone_verified=False)
    _verified_otp()

    result = resolve_verification(user.id, "phone", PHONE)

    assert result.source == "otp_history"
    profile = _reload(user)
    assert profile.phone == "0771234567"
    assert profile.phone_verified is True


def test_otp_history_ignored_for_different_profile_value():
    user = _user(phone="+94770000000", phone_verified=True)
    _verified_otp()

    result = resolve_verification(user.id, "phone", PHONE)

    assert result.verified is False
    assert result.requires_manual_verification is True
    assert _reload(user).phone == "+94770000000"


def test_resolution_is_stable_after_write_back():
    user = _user(phone=None)
    _verified_otp()

    first = resolve_verification(user.id, "phone", PHONE)
    second = resolve_verification(user.id, "phone", PHONE)

    assert first.verified is second.verified is True
    assert second.source == "personal_phone"
    assert UserProfile.select().where(UserProfile.phone == PHONE).count() == 1


def test_nothing_verified_requires_manual_verification():
    user = _user(phone=PHONE)

    result = resolve_verification(user.id, "phone", PHONE)

    assert result.verified is False
    assert result.source is None
    assert [name for name, _ in result.checked_sources] == [
        "business_verification",
        "driver_verification",
        "personal_phone",
        "otp_history",
    ]


def test_unknown_user():
    _verified_otp()

    result = resolve_verification(999, "phone", PHONE)

    assert result.verified is False


def test_empty_contact():
    user = _user()

    result = resolve_verification(user.id, "phone", "  ")

    assert result.verified is False
    assert result.checked_sources == ()


def test_plan_does_not_write():
    user = _user(phone=None)
    _verified_otp()

    plan = VerificationResolver().plan(user.id, "phone", PHONE)

    assert plan.result.source == "otp_history"
    assert len(plan.write_backs) == 1
    assert _reload(user).phone is None


def test_write_back_never_overwrites_concurrent_value():
    user = _user(phone=None)
    _verified_otp()
    plan = VerificationResolver().plan(user.id, "phone", PHONE)

    UserProfile.update(phone="+94770000000").where(UserProfile.id == user.id).execute()

    assert apply_write_backs(plan.write_backs) == 0
    profile = _reload(user)
    assert profile.phone == "+94770000000"
    assert profile.phone_verified is False


def test_get_verification_status():
    user = _user(phone="0771234567", email="jane@example.com", email_verified=True)
    DriverVerification.create(
        user_id=user.id, phone_number=PHONE, phone_verified=True, country_code="LK",
        status="approved",
    )

    status = get_verification_status(user.id)

    assert status["user"]["name"] == "Nimal Perera"
    assert status["verification"]["phone"]["is_verified"] is True
    assert status["verification"]["phone"]["source"] == "driver_verification"
    assert status["verification"]["phone"]["normalized"] == PHONE
    assert status["verification"]["email"]["source"] == "personal_email"
    assert status["verification"]["driver"]["status"] == "approved"
    assert "business" not in status["verification"]


def test_get_verification_status_unknown_user():
    assert get_verification_status(12345) is None


@pytest.mark.parametrize("context", ["personal", "business", "driver"])
def test_otp_history_is_last_resort(context):
    user = _user(phone=PHONE, phone_verified=True)
    _verified_otp()

    result = resolve_verification(user.id, "phone", PHONE, context=context)

    assert result.source == "personal_phone"
