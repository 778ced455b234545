# SPDX-License-Identifier: GPL-3.0-only
"""Twilio SMS transport."""

import requests
from twilio.base.exceptions import TwilioRestException
from twilio.http.http_client import TwilioHttpClient
from twilio.rest import Client

from base_logger import get_logger
from verification.providers.base import DeliveryResult, ProviderAdapter
from verification.types import ProviderKind

logger = get_logger(__name__)

ACCEPTED_STATUSES = ("accepted", "queued", "sending", "sent")


class TwilioProvider(ProviderAdapter):
    """Send SMS through the Twilio Messages API.

    Credentials: ``account_sid``, ``auth_token`` and either ``from_number``
    or ``messaging_service_sid``.
    """

    kind = ProviderKind.TWILIO
    required_credentials = ("account_sid", "auth_token")
    estimated_cost = 0.0075

    def _client(self) -> Client:
        return Client(
            self.credentials["account_sid"],
            self.credentials["auth_token"],
            http_client=TwilioHttpClient(timeout=self.timeout),
        )

    def deliver(self, destination: str, message: str) -> DeliveryResult:
        sender = {}
        if self.credentials.get("messaging_service_sid"):
            sender["messaging_service_sid"] = self.credentials["messaging_service_sid"]
        elif self.credentials.get("from_number"):
            sender["from_"] = self.credentials["from_number"]
        else:
            raise self._failure(destination, "no sender number configured")

        try:
            result = self._client().messages.create(
                body=message, to=destination, **sender
            )
        except (TwilioRestException, requests.RequestException) as e:
            raise self._failure(destination, e) from e

        if result.status not in ACCEPTED_STATUSES:
            raise self._failure(destination, f"unexpected status {result.status}")

        logger.info("SMS accepted by Twilio: %s", result.sid)
        price = abs(float(result.price)) if result.price else None
        return self._result(result.sid, price)
