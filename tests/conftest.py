"""Shared fixtures: an isolated SQLite database, a throwaway encryption key
and scriptable provider adapters."""

import base64
import os
import re

import pytest
from peewee import SqliteDatabase

from verification.utils import create_tables, set_configs

set_configs("MODE", "testing")

from verification.db_models import ALL_MODELS  # noqa: E402
from verification.exceptions import DeliveryFailed  # noqa: E402
from verification.providers.base import ProviderAdapter  # noqa: E402
from verification.providers.factory import ProviderFactory  # noqa: E402
from verification.registry import set_approval, store_configuration  # noqa: E402
from verification.types import ApprovalStatus, ProviderKind  # noqa: E402

CODE_PATTERN = re.compile(r"\b(\d{6})\b")


@pytest.fixture(autouse=True)
def encryption_key(tmp_path):
    """Write a random 32-byte key and point the primary key config at it."""
    key_file = tmp_path / "primary.key"
    key_file.write_text(base64.b64encode(os.urandom(32)).decode("utf-8"))
    set_configs("DATA_ENCRYPTION_KEY_PRIMARY_FILE", str(key_file))
    return key_file


@pytest.fixture(autouse=True)
def database(tmp_path):
    """Setup and teardown test database."""
    db_path = tmp_path / "test.db"
    test_db = SqliteDatabase(db_path)
    test_db.bind(ALL_MODELS)
    test_db.connect()
    create_tables(ALL_MODELS)

    yield test_db

    test_db.drop_tables(ALL_MODELS)
    test_db.close()


def make_provider(kind: ProviderKind, fail: bool = False, cost: float = 0.01):
    """Create an adapter class that records messages instead of sending."""

    class RecordingProvider(ProviderAdapter):
        outbox = []

        def deliver(self, destination, message):
            if fail:
                raise DeliveryFailed(self.kind.value, "simulated outage")
            self.outbox.append((destination, message))
            return self._result(f"{self.kind.value}_{len(self.outbox)}", cost)

    RecordingProvider.kind = kind
    return RecordingProvider


def sent_code(provider_class, index: int = -1) -> str:
    """Extract the OTP from a recorded message."""
    _, message = provider_class.outbox[index]
    return CODE_PATTERN.search(message).group(1)


@pytest.fixture()
def providers():
    """Recording adapters for the kinds used across tests."""
    return {
        ProviderKind.TWILIO: make_provider(ProviderKind.TWILIO, cost=0.0075),
        ProviderKind.VONAGE: make_provider(ProviderKind.VONAGE, cost=0.005),
        ProviderKind.EMAIL_RELAY: make_provider(ProviderKind.EMAIL_RELAY, cost=0.0),
    }


@pytest.fixture()
def factory(providers):
    """Factory whose adapters never touch the network."""
    return ProviderFactory(overrides=providers)


def configure_country(
    country_code="LK",
    provider="twilio",
    approval=ApprovalStatus.APPROVED,
    **kwargs,
):
    """Store (and by default approve) a configuration for a country."""
    credentials = kwargs.pop(
        "credentials",
        {"account_sid": "AC123", "auth_token": "secret", "from_number": "+15550001111"},
    )
    config = store_configuration(country_code, provider, credentials, **kwargs)
    if approval != ApprovalStatus.PENDING:
        set_approval(country_code, provider, approval)
    return config


@pytest.fixture()
def configure():
    return configure_country


@pytest.fixture()
def read_code():
    return sent_code


@pytest.fixture()
def provider_class():
    return make_provider
