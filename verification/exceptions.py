# SPDX-License-Identifier: GPL-3.0-only
"""Error taxonomy for OTP issuance, verification and provider selection."""

from typing import Optional


class VerificationError(Exception):
    """Base class for errors surfaced to callers of this package."""

    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationNotFound(VerificationError):
    """No active provider configuration exists for a country."""

    def __init__(self, country_code: str, message: Optional[str] = None):
        super().__init__(
            message
            or (
                f"No active SMS provider configuration found for country: "
                f"{country_code}. Please contact your country admin to set up "
                "SMS services."
            )
        )
        self.country_code = country_code


class NotApproved(VerificationError):
    """A configuration exists but has not been approved for sending."""

    def __init__(self, country_code: str, approval_status: str):
        super().__init__(
            f"SMS provider configuration for country {country_code} is "
            f"'{approval_status}'. A super admin must approve it before "
            "OTPs can be sent."
        )
        self.country_code = country_code
        self.approval_status = approval_status


class UnsupportedProvider(ConfigurationNotFound):
    """A configuration names a provider that has no adapter."""

    def __init__(self, provider: str, country_code: str = ""):
        super().__init__(
            country_code,
            f"Unsupported provider '{provider}'. Ask your country admin to "
            "select a supported provider.",
        )
        self.provider = provider


class InvalidCredentials(ConfigurationNotFound):
    """A provider's credential bundle is missing required fields."""

    def __init__(self, provider: str, missing: list, country_code: str = ""):
        super().__init__(
            country_code,
            f"{provider} configuration is missing: {', '.join(missing)}. "
            "Ask your country admin to complete the provider credentials.",
        )
        self.provider = provider
        self.missing = missing


class RateLimited(VerificationError):
    """Too many OTPs were requested for a destination."""

    retryable = True

    def __init__(self, retry_after: int = 0):
        super().__init__("Too many OTP requests. Please try again later.")
        self.retry_after = retry_after


class DeliveryFailed(VerificationError):
    """The transport failed to accept the message."""

    retryable = True

    def __init__(self, provider: str, reason: str = ""):
        super().__init__("Failed to send OTP. Please try again.")
        self.provider = provider
        self.reason = reason

    def __str__(self):
        if self.reason:
            return f"{self.provider} delivery failed: {self.reason}"
        return f"{self.provider} delivery failed"


class InvalidOrExpired(VerificationError):
    """The code is wrong, expired, already used or was never issued."""

    def __init__(self):
        super().__init__("Invalid or expired OTP.")


class AttemptsExhausted(VerificationError):
    """The record reached its attempt limit; a new code must be issued."""

    def __init__(self):
        super().__init__("Maximum OTP attempts exceeded. Request a new code.")
