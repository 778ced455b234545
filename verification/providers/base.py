# SPDX-License-Identifier: GPL-3.0-only
"""Delivery contract shared by every transport adapter."""

from abc import ABC, abstractmethod
from typing import NamedTuple, Optional, Tuple

from base_logger import get_logger
from verification.exceptions import DeliveryFailed, InvalidCredentials
from verification.types import ProviderKind
from verification.utils import get_int_config, mask_destination

logger = get_logger(__name__)

PROVIDER_TIMEOUT_SECONDS = get_int_config("PROVIDER_TIMEOUT_SECONDS", 10)


class DeliveryResult(NamedTuple):
    """Outcome of a successful hand-off to a transport."""

    external_id: str
    cost: float
    provider: str


class ProviderAdapter(ABC):
    """Base class for delivery transports.

    Adapters only move a message to a destination. They never read or
    write the OTP ledger, and they raise ``DeliveryFailed`` instead of
    leaking transport exceptions.
    """

    kind: ProviderKind
    required_credentials: Tuple[str, ...] = ()
    estimated_cost = 0.0

    def __init__(
        self,
        credentials: dict,
        timeout: Optional[float] = None,
        country_code: str = "",
    ):
        credentials = credentials or {}
        missing = [
            field for field in self.required_credentials if not credentials.get(field)
        ]
        if missing:
            logger.error(
                "%s credentials incomplete for %s, missing: %s",
                self.kind.value,
                country_code,
                missing,
            )
            raise InvalidCredentials(self.kind.value, missing, country_code)

        self.credentials = credentials
        self.timeout = timeout or PROVIDER_TIMEOUT_SECONDS

    @abstractmethod
    def deliver(self, destination: str, message: str) -> DeliveryResult:
        """Send message to destination."""

    def _result(self, external_id, cost: Optional[float] = None) -> DeliveryResult:
        return DeliveryResult(
            external_id=str(external_id),
            cost=self.estimated_cost if cost is None else float(cost),
            provider=self.kind.value,
        )

    def _failure(self, destination: str, reason) -> DeliveryFailed:
        logger.error(
            "%s delivery to %s failed: %s",
            self.kind.value,
            mask_destination(destination),
            reason,
        )
        return DeliveryFailed(self.kind.value, str(reason))
