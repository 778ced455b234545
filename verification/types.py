# SPDX-License-Identifier: GPL-3.0-only
"""Common type definitions for the application."""

from enum import Enum


class ContactType(Enum):
    """Contact types for OTP delivery."""

    PHONE = "phone"
    EMAIL = "email"


class ProviderKind(Enum):
    """Delivery transports a country configuration may select."""

    TWILIO = "twilio"
    AWS_SNS = "aws_sns"
    VONAGE = "vonage"
    HUTCH_MOBILE = "hutch_mobile"
    LOCAL = "local"
    EMAIL_RELAY = "email_relay"


class ApprovalStatus(Enum):
    """Approval states of a country provider configuration."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class OTPState(Enum):
    """Lifecycle states of an OTP record."""

    ISSUED = "issued"
    VERIFIED = "verified"
    EXPIRED = "expired"
    ATTEMPTS_EXHAUSTED = "attempts_exhausted"


class VerificationContext(Enum):
    """Workflow a verification question is asked from."""

    PERSONAL = "personal"
    BUSINESS = "business"
    DRIVER = "driver"


class VerificationSourceName(Enum):
    """Provenance of a verification claim."""

    BUSINESS = "business_verification"
    DRIVER = "driver_verification"
    PERSONAL_PHONE = "personal_phone"
    PERSONAL_EMAIL = "personal_email"
    OTP_HISTORY = "otp_history"
