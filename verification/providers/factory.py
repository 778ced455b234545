# SPDX-License-Identifier: GPL-3.0-only
"""Closed factory mapping provider kinds to adapter classes."""

from typing import Dict, Optional, Type, Union

from base_logger import get_logger
from verification.exceptions import UnsupportedProvider
from verification.providers.aws_sns import AWSSNSProvider
from verification.providers.base import ProviderAdapter
from verification.providers.email_relay import (
    EmailRelayProvider,
    email_credentials_from_configs,
)
from verification.providers.hutch_mobile import HutchMobileProvider
from verification.providers.local import LocalProvider
from verification.providers.twilio import TwilioProvider
from verification.providers.vonage import VonageProvider
from verification.types import ProviderKind

logger = get_logger(__name__)

PROVIDER_CLASSES: Dict[ProviderKind, Type[ProviderAdapter]] = {
    ProviderKind.TWILIO: TwilioProvider,
    ProviderKind.AWS_SNS: AWSSNSProvider,
    ProviderKind.VONAGE: VonageProvider,
    ProviderKind.HUTCH_MOBILE: HutchMobileProvider,
    ProviderKind.LOCAL: LocalProvider,
    ProviderKind.EMAIL_RELAY: EmailRelayProvider,
}


def parse_provider_kind(value: Union[str, ProviderKind], country_code: str = "") -> ProviderKind:
    """Convert a stored provider identifier to a ProviderKind.

    Raises:
        UnsupportedProvider: If the identifier is not an enumerated kind.
    """
    if isinstance(value, ProviderKind):
        return value
    try:
        return ProviderKind((value or "").strip().lower())
    except ValueError as e:
        logger.error("Unsupported provider '%s' for country %s", value, country_code)
        raise UnsupportedProvider(str(value), country_code) from e


class ProviderFactory:
    """Build adapters for enumerated provider kinds.

    Tests and alternative deployments pass ``overrides`` to substitute
    classes for specific kinds; the set of kinds stays closed.
    """

    def __init__(
        self,
        overrides: Optional[Dict[ProviderKind, Type[ProviderAdapter]]] = None,
        timeout: Optional[float] = None,
    ):
        self.classes = dict(PROVIDER_CLASSES)
        for kind, adapter_class in (overrides or {}).items():
            self.classes[parse_provider_kind(kind)] = adapter_class
        self.timeout = timeout

    def build(
        self, kind: Union[str, ProviderKind], credentials: dict, country_code: str = ""
    ) -> ProviderAdapter:
        """Instantiate the adapter for kind with the given credentials."""
        kind = parse_provider_kind(kind, country_code)
        adapter_class = self.classes.get(kind)
        if adapter_class is None:
            raise UnsupportedProvider(kind.value, country_code)
        return adapter_class(
            credentials, timeout=self.timeout, country_code=country_code
        )

    def build_email(self) -> ProviderAdapter:
        """Instantiate the email relay from environment configuration."""
        return self.build(ProviderKind.EMAIL_RELAY, email_credentials_from_configs())
