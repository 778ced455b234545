# SPDX-License-Identifier: GPL-3.0-only
"""OTP Service Module - issues and verifies one-time passcodes.

Records move ``ISSUED -> VERIFIED | EXPIRED | ATTEMPTS_EXHAUSTED``. The
ledger row is written before delivery so failed sends stay auditable,
and every counter change is a single conditional UPDATE.
"""

import datetime
from typing import NamedTuple, Optional

from base_logger import get_logger
from verification import accounting, rate_limit
from verification.crypto import codes_match, generate_issuance_id, generate_otp
from verification.db_models import OTPRecord
from verification.exceptions import (
    AttemptsExhausted,
    ConfigurationNotFound,
    DeliveryFailed,
    InvalidOrExpired,
    VerificationError,
)
from verification.phone import (
    DEFAULT_COUNTRY_CODE,
    contact_type_for,
    detect_country,
    normalize_contact,
    resolve_country_code,
)
from verification.providers.base import DeliveryResult, ProviderAdapter
from verification.providers.factory import ProviderFactory, parse_provider_kind
from verification.registry import (
    CountryProviderRegistry,
    ResolvedProvider,
    find_configuration,
)
from verification.types import ContactType, OTPState, ProviderKind
from verification.utils import (
    decrypt_credentials,
    get_configs,
    get_int_config,
    mask_destination,
)

logger = get_logger(__name__)

OTP_EXPIRY_MINUTES = get_int_config("OTP_EXPIRY_MINUTES", 5)
MAX_OTP_VERIFY_ATTEMPTS = get_int_config("OTP_MAX_VERIFY_ATTEMPTS", 3)
OTP_CODE_LENGTH = get_int_config("OTP_CODE_LENGTH", 6)
OTP_MESSAGE_TEMPLATE = get_configs(
    "OTP_MESSAGE_TEMPLATE",
    default_value="Your verification code is: {code}. Valid for {minutes} minutes.",
)


class IssueResult(NamedTuple):
    """Returned to the caller after a successful issuance."""

    issuance_id: str
    expires_in: int
    provider: str


class VerifyResult(NamedTuple):
    """Everything a caller needs to persist its own verified flag."""

    verified: bool
    destination: str
    contact_type: ContactType
    issuance_id: str
    provider: Optional[str]
    verified_at: datetime.datetime


def state_of(record: OTPRecord, now: datetime.datetime = None) -> OTPState:
    """Derive the lifecycle state of a ledger record."""
    if record.verified:
        return OTPState.VERIFIED
    if record.attempts >= record.max_attempts:
        return OTPState.ATTEMPTS_EXHAUSTED
    if record.is_expired(now):
        return OTPState.EXPIRED
    return OTPState.ISSUED


class OTPService:
    """Compose registry, ledger, rate limiter and accounting."""

    def __init__(
        self,
        registry: Optional[CountryProviderRegistry] = None,
        factory: Optional[ProviderFactory] = None,
    ):
        self.factory = factory or ProviderFactory()
        self.registry = registry or CountryProviderRegistry(self.factory)

    @staticmethod
    def _prepare(destination: str, country_hint: Optional[str]):
        contact_type = contact_type_for(destination)
        normalized = normalize_contact(contact_type, destination, country_hint)
        if not normalized:
            raise ValueError("A destination phone number or email address is required.")

        country = resolve_country_code(country_hint)
        if not country and contact_type == ContactType.PHONE:
            country = detect_country(normalized)
        return contact_type, normalized, country or DEFAULT_COUNTRY_CODE

    def issue(self, destination: str, country_hint: Optional[str] = None) -> IssueResult:
        """Issue and deliver a new code for destination.

        Raises:
            RateLimited: Too many codes were issued recently.
            ConfigurationNotFound: No usable provider for the country.
            NotApproved: The country's configuration awaits approval.
            DeliveryFailed: Every configured transport failed.
        """
        contact_type, normalized, country = self._prepare(destination, country_hint)
        logger.debug("Issuing %s OTP for country %s", contact_type.value, country)

        rate_limit.check(normalized)

        if contact_type == ContactType.EMAIL:
            return self._issue_with(
                normalized,
                contact_type,
                country,
                ProviderKind.EMAIL_RELAY,
                self.factory.build_email(),
            )

        with self.registry.acquire(country) as resolved:
            return self._issue_with(
                normalized,
                contact_type,
                country,
                resolved.kind,
                resolved.adapter,
                resolved,
            )

    def _issue_with(
        self,
        destination: str,
        contact_type: ContactType,
        country: str,
        kind: ProviderKind,
        adapter: ProviderAdapter,
        resolved: Optional[ResolvedProvider] = None,
    ) -> IssueResult:
        code = generate_otp(OTP_CODE_LENGTH)
        now = datetime.datetime.now()

        record = OTPRecord.create(
            destination=destination,
            contact_type=contact_type.value,
            otp_code=code,
            issuance_id=generate_issuance_id(),
            country_code=country,
            expires_at=now + datetime.timedelta(minutes=OTP_EXPIRY_MINUTES),
            attempts=0,
            max_attempts=MAX_OTP_VERIFY_ATTEMPTS,
            provider_used=kind.value,
            created_at=now,
        )
        logger.info(
            "OTP record %s created for %s", record.issuance_id, mask_destination(destination)
        )

        message = OTP_MESSAGE_TEMPLATE.format(code=code, minutes=OTP_EXPIRY_MINUTES)

        try:
            result = self._attempt(adapter, kind, destination, message, country)
        except DeliveryFailed:
            if resolved is None or resolved.fallback_kind is None:
                raise
            result = self._attempt_fallback(resolved, destination, message)

        OTPRecord.update(
            provider_used=result.provider, external_id=result.external_id
        ).where(OTPRecord.id == record.id).execute()

        accounting.record(country, result.provider, result.cost, True)

        logger.info("OTP %s sent via %s", record.issuance_id, result.provider)
        return IssueResult(
            issuance_id=record.issuance_id,
            expires_in=OTP_EXPIRY_MINUTES * 60,
            provider=result.provider,
        )

    def _attempt_fallback(
        self, resolved: ResolvedProvider, destination: str, message: str
    ) -> DeliveryResult:
        fallback_kind = resolved.fallback_kind
        logger.warning(
            "Primary provider %s failed, trying fallback %s",
            resolved.kind.value,
            fallback_kind.value,
        )
        try:
            fallback = self.registry.build_fallback(resolved)
        except (VerificationError, ValueError, KeyError) as e:
            logger.error("Fallback provider %s unusable: %s", fallback_kind.value, e)
            accounting.record(resolved.country_code, fallback_kind.value, 0, False)
            raise DeliveryFailed(fallback_kind.value, str(e)) from e

        try:
            return self._attempt(
                fallback, fallback_kind, destination, message, resolved.country_code
            )
        finally:
            fallback.credentials.clear()

    @staticmethod
    def _send(
        adapter: ProviderAdapter, kind: ProviderKind, destination: str, message: str
    ) -> DeliveryResult:
        try:
            return adapter.deliver(destination, message)
        except DeliveryFailed:
            raise
        except Exception as e:
            logger.exception("Unexpected error from provider %s", kind.value)
            raise DeliveryFailed(kind.value, str(e)) from e

    @classmethod
    def _attempt(
        cls,
        adapter: ProviderAdapter,
        kind: ProviderKind,
        destination: str,
        message: str,
        country: str,
    ) -> DeliveryResult:
        try:
            return cls._send(adapter, kind, destination, message)
        except DeliveryFailed:
            accounting.record(country, kind.value, 0, False)
            raise

    def verify(
        self,
        destination: str,
        code: str,
        issuance_id: Optional[str] = None,
        country_hint: Optional[str] = None,
    ) -> VerifyResult:
        """Check a code against the newest outstanding record.

        Wrong, expired, already-used and unknown codes all raise the same
        ``InvalidOrExpired``.

        Raises:
            InvalidOrExpired: No matching live record, or the code is wrong.
            AttemptsExhausted: The record has no attempts left.
        """
        contact_type, normalized, _ = self._prepare(destination, country_hint)
        now = datetime.datetime.now()

        query = OTPRecord.select().where(
            (OTPRecord.destination == normalized)
            & (OTPRecord.verified == False)  # noqa: E712
            & (OTPRecord.expires_at > now)
            & OTPRecord.external_id.is_null(False)
        )
        if issuance_id:
            query = query.where(OTPRecord.issuance_id == issuance_id)

        record = query.order_by(OTPRecord.created_at.desc(), OTPRecord.id.desc()).first()

        if record is None:
            logger.info("No live OTP for %s", mask_destination(normalized))
            raise InvalidOrExpired()

        if record.attempts >= record.max_attempts:
            logger.info("OTP %s has no attempts left", record.issuance_id)
            raise AttemptsExhausted()

        if not codes_match(record.otp_code, str(code or "").strip()):
            OTPRecord.update(attempts=OTPRecord.attempts + 1).where(
                (OTPRecord.id == record.id)
                & (OTPRecord.attempts < OTPRecord.max_attempts)
            ).execute()
            logger.info("Incorrect code for OTP %s", record.issuance_id)
            raise InvalidOrExpired()

        rows = (
            OTPRecord.update(verified=True, verified_at=now)
            .where(
                (OTPRecord.id == record.id)
                & (OTPRecord.verified == False)  # noqa: E712
                & (OTPRecord.attempts < OTPRecord.max_attempts)
                & (OTPRecord.expires_at > now)
            )
            .execute()
        )

        if not rows:
            current = OTPRecord.get_by_id(record.id)
            if state_of(current, now) == OTPState.ATTEMPTS_EXHAUSTED:
                raise AttemptsExhausted()
            raise InvalidOrExpired()

        logger.info("OTP %s verified", record.issuance_id)
        return VerifyResult(
            verified=True,
            destination=normalized,
            contact_type=contact_type,
            issuance_id=record.issuance_id,
            provider=record.provider_used,
            verified_at=now,
        )

    def test_provider(
        self, country_code: str, provider: str, test_destination: str
    ) -> dict:
        """Send a diagnostic message through a country's stored credentials.

        Unapproved configurations can be tested; the outcome is reported
        rather than raised so admins see the provider's own error.
        """
        timestamp = datetime.datetime.now()
        country = resolve_country_code(country_code) or DEFAULT_COUNTRY_CODE

        try:
            kind = parse_provider_kind(provider, country)
            config = find_configuration(country, kind.value)
            if config is None:
                raise ConfigurationNotFound(country)

            adapter = self.factory.build(
                kind, decrypt_credentials(config.credentials), country
            )
            _, destination, _ = self._prepare(test_destination, country)
            result = self._send(
                adapter,
                kind,
                destination,
                f"Test message from verification service - {timestamp.isoformat()}",
            )
        except (VerificationError, ValueError, KeyError) as e:
            logger.warning("Provider test for %s/%s failed: %s", country, provider, e)
            return {
                "success": False,
                "provider": provider,
                "error": str(e),
                "timestamp": timestamp,
            }

        logger.info("Provider test for %s/%s succeeded", country, kind.value)
        return {
            "success": True,
            "provider": kind.value,
            "external_id": result.external_id,
            "cost": result.cost,
            "timestamp": timestamp,
        }


def issue_otp(destination: str, country_hint: Optional[str] = None) -> IssueResult:
    """Issue an OTP using the default service wiring."""
    return OTPService().issue(destination, country_hint)


def verify_otp(
    destination: str,
    code: str,
    issuance_id: Optional[str] = None,
    country_hint: Optional[str] = None,
) -> VerifyResult:
    """Verify an OTP using the default service wiring."""
    return OTPService().verify(destination, code, issuance_id, country_hint)
