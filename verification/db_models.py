# SPDX-License-Identifier: GPL-3.0-only
"""Peewee database models."""

import datetime

from peewee import (
    BooleanField,
    CharField,
    DateTimeField,
    DecimalField,
    IntegerField,
    Model,
    TextField,
)

from verification.db import connect
from verification.utils import create_tables, get_bool_config

database = connect()


class BaseModel(Model):
    """Base model bound to the service database."""

    class Meta:
        database = database


class OTPRecord(BaseModel):
    """Ledger of issued one-time passcodes. Rows are never deleted."""

    destination = CharField(max_length=255)
    contact_type = CharField(max_length=16, default="phone")
    otp_code = CharField(max_length=16)
    issuance_id = CharField(max_length=64, unique=True)
    country_code = CharField(max_length=8, null=True)
    expires_at = DateTimeField()
    attempts = IntegerField(default=0)
    max_attempts = IntegerField(default=3)
    verified = BooleanField(default=False)
    verified_at = DateTimeField(null=True)
    provider_used = CharField(max_length=32, null=True)
    external_id = CharField(max_length=255, null=True)
    created_at = DateTimeField(default=datetime.datetime.now)

    class Meta:
        table_name = "otp_records"
        indexes = (
            (("destination", "created_at"), False),
            (("destination", "verified"), False),
        )

    def is_expired(self, now=None):
        """Return True if the code can no longer be verified."""
        return self.expires_at <= (now or datetime.datetime.now())


class CountryProviderConfig(BaseModel):
    """Per-country provider selection, credentials and running totals."""

    country_code = CharField(max_length=8)
    provider = CharField(max_length=32)
    credentials = TextField(null=True)
    is_active = BooleanField(default=False)
    approval_status = CharField(max_length=16, default="pending")
    fallback_provider = CharField(max_length=32, null=True)
    fallback_credentials = TextField(null=True)
    total_sent = IntegerField(default=0)
    total_cost = DecimalField(max_digits=12, decimal_places=4, default=0)
    created_at = DateTimeField(default=datetime.datetime.now)
    updated_at = DateTimeField(default=datetime.datetime.now)

    class Meta:
        table_name = "country_provider_configs"
        indexes = ((("country_code", "provider"), True),)


class UsageEvent(BaseModel):
    """Append-only delivery usage and cost log."""

    country_code = CharField(max_length=8, null=True)
    provider = CharField(max_length=32)
    cost = DecimalField(max_digits=10, decimal_places=4, default=0)
    success = BooleanField(default=True)
    month = IntegerField()
    year = IntegerField()
    created_at = DateTimeField(default=datetime.datetime.now)

    class Meta:
        table_name = "usage_events"
        indexes = ((("country_code", "year", "month"), False),)


class UserProfile(BaseModel):
    """Primary user profile, owned by the accounts workflow."""

    phone = CharField(max_length=32, null=True)
    email = CharField(max_length=255, null=True)
    country_code = CharField(max_length=8, null=True)
    phone_verified = BooleanField(default=False)
    email_verified = BooleanField(default=False)
    first_name = CharField(max_length=128, null=True)
    last_name = CharField(max_length=128, null=True)
    updated_at = DateTimeField(default=datetime.datetime.now)

    class Meta:
        table_name = "users"


class BusinessVerification(BaseModel):
    """Business registration record, owned by business onboarding."""

    user_id = IntegerField(index=True)
    business_phone = CharField(max_length=32, null=True)
    business_email = CharField(max_length=255, null=True)
    phone_verified = BooleanField(default=False)
    email_verified = BooleanField(default=False)
    status = CharField(max_length=32, default="pending")
    country_code = CharField(max_length=8, null=True)
    created_at = DateTimeField(default=datetime.datetime.now)
    updated_at = DateTimeField(default=datetime.datetime.now)

    class Meta:
        table_name = "business_verifications"


class DriverVerification(BaseModel):
    """Driver registration record, owned by driver onboarding."""

    user_id = IntegerField(index=True)
    phone_number = CharField(max_length=32, null=True)
    email = CharField(max_length=255, null=True)
    phone_verified = BooleanField(default=False)
    email_verified = BooleanField(default=False)
    status = CharField(max_length=32, default="pending")
    country_code = CharField(max_length=8, null=True)
    created_at = DateTimeField(default=datetime.datetime.now)
    updated_at = DateTimeField(default=datetime.datetime.now)

    class Meta:
        table_name = "driver_verifications"


ALL_MODELS = [
    OTPRecord,
    CountryProviderConfig,
    UsageEvent,
    UserProfile,
    BusinessVerification,
    DriverVerification,
]

if get_bool_config("CREATE_TABLES_ON_START"):
    create_tables(ALL_MODELS)
