"""Test module for OTP service."""

from datetime import datetime, timedelta

import pytest

from verification.types import ApprovalStatus, ProviderKind


def _wrong(code):
    return "000000" if code != "000000" else "111111"


@pytest.fixture()
def service(factory):
    from verification.otp_service import OTPService

    return OTPService(factory=factory)


def test_issue_otp_success(service, providers, configure):
    """Test successful OTP issuance for a configured country."""
    from verification.db_models import OTPRecord

    configure("LK", "twilio")
    result = service.issue("077 123-4567", "LK")

    assert result.provider == "twilio"
    assert result.expires_in == 300
    assert result.issuance_id.startswith("otp_")

    record = OTPRecord.get(OTPRecord.issuance_id == result.issuance_id)
    assert record.destination == "+94771234567"
    assert record.attempts == 0
    assert record.max_attempts == 3
    assert record.external_id == "twilio_1"
    assert providers[ProviderKind.TWILIO].outbox[0][0] == "+94771234567"


def test_issue_updates_usage_totals(service, configure):
    """Test successful delivery is accounted against the configuration."""
    from verification.db_models import CountryProviderConfig, UsageEvent

    configure("LK", "twilio")
    service.issue("+94771234567")

    config = CountryProviderConfig.get(CountryProviderConfig.country_code == "LK")
    assert config.total_sent == 1
    assert float(config.total_cost) == pytest.approx(0.0075)
    assert UsageEvent.select().where(UsageEvent.success == True).count() == 1  # noqa: E712


def test_verify_otp_success(service, providers, configure, read_code):
    """Test correct code verifies and cannot be reused."""
    from verification.exceptions import InvalidOrExpired

    configure("LK", "twilio")
    issued = service.issue("0771234567", "LK")
    code = read_code(providers[ProviderKind.TWILIO])

    result = service.verify("+94 77 123 4567", code)

    assert result.verified is True
    assert result.destination == "+94771234567"
    assert result.issuance_id == issued.issuance_id

    with pytest.raises(InvalidOrExpired):
        service.verify("+94771234567", code)


def test_verify_wrong_code_increments_attempts_once(
    service, providers, configure, read_code
):
    """Test a wrong code increments the attempt counter by exactly one."""
    from verification.db_models import OTPRecord
    from verification.exceptions import InvalidOrExpired

    configure("LK", "twilio")
    issued = service.issue("+94771234567")
    code = read_code(providers[ProviderKind.TWILIO])

    with pytest.raises(InvalidOrExpired):
        service.verify("+94771234567", _wrong(code))

    record = OTPRecord.get(OTPRecord.issuance_id == issued.issuance_id)
    assert record.attempts == 1
    assert record.verified is False


def test_verify_attempts_exhausted(service, providers, configure, read_code):
    """Test the correct code is refused once attempts run out."""
    from verification.exceptions import AttemptsExhausted, InvalidOrExpired

    configure("LK", "twilio")
    service.issue("+94771234567")
    code = read_code(providers[ProviderKind.TWILIO])

    for _ in range(3):
        with pytest.raises(InvalidOrExpired):
            service.verify("+94771234567", _wrong(code))

    with pytest.raises(AttemptsExhausted):
        service.verify("+94771234567", code)


def test_verify_expired(service, providers, configure, read_code):
    """Test an expired code is reported as invalid or expired."""
    from verification.db_models import OTPRecord
    from verification.exceptions import InvalidOrExpired

    configure("LK", "twilio")
    issued = service.issue("+94771234567")
    code = read_code(providers[ProviderKind.TWILIO])

    OTPRecord.update(expires_at=datetime.now() - timedelta(seconds=1)).where(
        OTPRecord.issuance_id == issued.issuance_id
    ).execute()

    with pytest.raises(InvalidOrExpired):
        service.verify("+94771234567", code)


def test_verify_unknown_destination(service):
    """Test verifying without an issued code."""
    from verification.exceptions import InvalidOrExpired

    with pytest.raises(InvalidOrExpired):
        service.verify("+94771234567", "123456")


def test_verify_by_issuance_id(service, providers, configure, read_code):
    """Test a specific outstanding issuance can be targeted."""
    configure("LK", "twilio")
    first = service.issue("+94771234567")
    first_code = read_code(providers[ProviderKind.TWILIO], 0)
    service.issue("+94771234567")

    result = service.verify("+94771234567", first_code, issuance_id=first.issuance_id)

    assert result.issuance_id == first.issuance_id


def test_issue_rate_limited(service, configure):
    """Test the fourth request in the window is refused."""
    from verification.db_models import OTPRecord
    from verification.exceptions import RateLimited

    configure("LK", "twilio")
    for _ in range(3):
        service.issue("+94771234567")

    with pytest.raises(RateLimited) as excinfo:
        service.issue("0771234567", "LK")

    assert excinfo.value.retryable is True
    assert excinfo.value.retry_after > 0
    assert OTPRecord.select().count() == 3


def test_issue_without_configuration(service):
    """Test issuance fails when the country has no configuration."""
    from verification.db_models import OTPRecord
    from verification.exceptions import ConfigurationNotFound

    with pytest.raises(ConfigurationNotFound) as excinfo:
        service.issue("+94771234567", "LK")

    assert "LK" in str(excinfo.value)
    assert OTPRecord.select().count() == 0


def test_issue_not_approved(service, configure):
    """Test pending configurations are never used."""
    from verification.exceptions import NotApproved

    configure("LK", "twilio", approval=ApprovalStatus.PENDING)

    with pytest.raises(NotApproved):
        service.issue("+94771234567")


def test_issue_delivery_failure_keeps_record(configure, provider_class):
    """Test a transport failure surfaces and leaves the ledger row."""
    from verification.db_models import OTPRecord, UsageEvent
    from verification.exceptions import DeliveryFailed
    from verification.otp_service import OTPService
    from verification.providers.factory import ProviderFactory

    failing = provider_class(ProviderKind.TWILIO, fail=True)
    service = OTPService(factory=ProviderFactory(overrides={ProviderKind.TWILIO: failing}))
    configure("LK", "twilio")

    with pytest.raises(DeliveryFailed):
        service.issue("+94771234567")

    assert OTPRecord.select().count() == 1
    failure = UsageEvent.get()
    assert failure.success is False
    assert failure.provider == "twilio"


def test_issue_uses_fallback_provider(configure, provider_class):
    """Test the fallback transport is tried after the primary fails."""
    from verification.otp_service import OTPService
    from verification.providers.factory import ProviderFactory

    vonage = provider_class(ProviderKind.VONAGE)
    factory = ProviderFactory(
        overrides={
            ProviderKind.TWILIO: provider_class(ProviderKind.TWILIO, fail=True),
            ProviderKind.VONAGE: vonage,
        }
    )
    configure(
        "LK",
        "twilio",
        fallback_provider="vonage",
        fallback_credentials={"api_key": "k", "api_secret": "s"},
    )

    result = OTPService(factory=factory).issue("+94771234567")

    assert result.provider == "vonage"
    assert len(vonage.outbox) == 1


def test_issue_ignores_unusable_fallback_when_primary_works(configure, provider_class):
    """Test a fallback without usable credentials never blocks the primary."""
    from verification.db_models import CountryProviderConfig
    from verification.otp_service import OTPService
    from verification.providers.factory import ProviderFactory

    twilio = provider_class(ProviderKind.TWILIO)
    configure("LK", "twilio", fallback_provider="twilio")
    CountryProviderConfig.update(fallback_provider="vonage").execute()

    service = OTPService(factory=ProviderFactory(overrides={ProviderKind.TWILIO: twilio}))
    result = service.issue("+94771234567")

    assert result.provider == "twilio"
    assert len(twilio.outbox) == 1


def test_issue_unusable_fallback_reports_delivery_failure(configure, provider_class):
    """Test a fallback that cannot be built surfaces as a delivery failure."""
    from verification.db_models import CountryProviderConfig, UsageEvent
    from verification.exceptions import DeliveryFailed
    from verification.otp_service import OTPService
    from verification.providers.factory import ProviderFactory

    failing = provider_class(ProviderKind.TWILIO, fail=True)
    configure("LK", "twilio", fallback_provider="twilio")
    CountryProviderConfig.update(fallback_provider="vonage").execute()

    service = OTPService(factory=ProviderFactory(overrides={ProviderKind.TWILIO: failing}))
    with pytest.raises(DeliveryFailed) as excinfo:
        service.issue("+94771234567")

    assert excinfo.value.provider == "vonage"
    events = UsageEvent.select().order_by(UsageEvent.id)
    assert [(event.provider, event.success) for event in events] == [
        ("twilio", False),
        ("vonage", False),
    ]


def test_failed_resend_does_not_hide_delivered_code(
    service, providers, configure, provider_class, read_code
):
    """Test an undelivered newer code does not shadow the delivered one."""
    from verification.exceptions import DeliveryFailed
    from verification.otp_service import OTPService
    from verification.providers.factory import ProviderFactory

    configure("LK", "twilio")
    issued = service.issue("+94771234567")
    code = read_code(providers[ProviderKind.TWILIO])

    failing = provider_class(ProviderKind.TWILIO, fail=True)
    outage = OTPService(factory=ProviderFactory(overrides={ProviderKind.TWILIO: failing}))
    with pytest.raises(DeliveryFailed):
        outage.issue("+94771234567")

    result = service.verify("+94771234567", code)

    assert result.verified is True
    assert result.issuance_id == issued.issuance_id


def test_issue_email_otp(service, providers, read_code):
    """Test email destinations go through the email relay."""
    from verification.db_models import OTPRecord

    result = service.issue("  Jane@Example.com ")

    assert result.provider == "email_relay"
    record = OTPRecord.get(OTPRecord.issuance_id == result.issuance_id)
    assert record.destination == "jane@example.com"
    assert record.contact_type == "email"

    code = read_code(providers[ProviderKind.EMAIL_RELAY])
    assert service.verify("JANE@example.com", code).verified is True


def test_provider_diagnostic_send(configure):
    """Test admins can send through a stored configuration."""
    from verification.otp_service import OTPService

    configure("LK", "local", credentials={"log_only": True}, approval=ApprovalStatus.PENDING)

    outcome = OTPService().test_provider("LK", "local", "0771234567")

    assert outcome["success"] is True
    assert outcome["external_id"].startswith("local_log_")


def test_provider_diagnostic_unknown_provider():
    """Test an unsupported provider is reported, not raised."""
    from verification.otp_service import OTPService

    outcome = OTPService().test_provider("LK", "carrier_pigeon", "0771234567")

    assert outcome["success"] is False


def test_provider_diagnostic_undecryptable_credentials(tmp_path, configure):
    """Test credentials sealed under another key are reported, not raised."""
    import base64
    import os

    from verification.otp_service import OTPService
    from verification.utils import set_configs

    configure("LK", "local", credentials={"log_only": True})

    other_key = tmp_path / "other.key"
    other_key.write_text(base64.b64encode(os.urandom(32)).decode("utf-8"))
    set_configs("DATA_ENCRYPTION_KEY_PRIMARY_FILE", str(other_key))

    outcome = OTPService().test_provider("LK", "local", "0771234567")

    assert outcome["success"] is False
    assert outcome["provider"] == "local"
    assert "carrier_pigeon" in outcome["error"]


def test_state_of():
    """Test the derived lifecycle state of ledger records."""
    from verification.db_models import OTPRecord
    from verification.otp_service import state_of
    from verification.types import OTPState

    now = datetime.now()
    record = OTPRecord(
        expires_at=now + timedelta(minutes=5), attempts=0, max_attempts=3, verified=False
    )
    assert state_of(record, now) == OTPState.ISSUED

    record.attempts = 3
    assert state_of(record, now) == OTPState.ATTEMPTS_EXHAUSTED

    record.attempts = 0
    assert state_of(record, now + timedelta(minutes=6)) == OTPState.EXPIRED

    record.verified = True
    assert state_of(record, now) == OTPState.VERIFIED
