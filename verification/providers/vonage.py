# SPDX-License-Identifier: GPL-3.0-only
"""Vonage (Nexmo) SMS transport."""

import requests

from base_logger import get_logger
from verification.providers.base import DeliveryResult, ProviderAdapter
from verification.types import ProviderKind

logger = get_logger(__name__)

VONAGE_SMS_URL = "https://rest.nexmo.com/sms/json"


class VonageProvider(ProviderAdapter):
    """Send SMS through the Vonage SMS API."""

    kind = ProviderKind.VONAGE
    required_credentials = ("api_key", "api_secret")
    estimated_cost = 0.005

    def deliver(self, destination: str, message: str) -> DeliveryResult:
        payload = {
            "api_key": self.credentials["api_key"],
            "api_secret": self.credentials["api_secret"],
            "to": destination.lstrip("+"),
            "from": self.credentials.get("brand_name") or "RequestApp",
            "text": message,
        }

        try:
            response = requests.post(
                self.credentials.get("api_url") or VONAGE_SMS_URL,
                json=payload,
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            raise self._failure(destination, e) from e

        messages = data.get("messages") or [{}]
        first = messages[0]
        if first.get("status") != "0":
            raise self._failure(
                destination, first.get("error-text") or "rejected by Vonage"
            )

        logger.info("SMS accepted by Vonage: %s", first.get("message-id"))
        price = first.get("message-price")
        return self._result(first.get("message-id"), float(price) if price else None)
