# SPDX-License-Identifier: GPL-3.0-only
"""Local gateway transport.

Either posts to an in-country HTTP SMS gateway or, with ``log_only``,
only logs the message, which is useful for staging environments.
"""

import time

import requests

from base_logger import get_logger
from verification.providers.base import DeliveryResult, ProviderAdapter
from verification.types import ProviderKind
from verification.utils import mask_destination

logger = get_logger(__name__)


class LocalProvider(ProviderAdapter):
    """Send SMS through a generic HTTP gateway."""

    kind = ProviderKind.LOCAL
    estimated_cost = 0.003

    def deliver(self, destination: str, message: str) -> DeliveryResult:
        if self.credentials.get("log_only"):
            logger.info(
                "Local provider (log only) message for %s: %d chars",
                mask_destination(destination),
                len(message),
            )
            return self._result(f"local_log_{int(time.time() * 1000)}")

        endpoint = self.credentials.get("endpoint")
        if not endpoint:
            raise self._failure(destination, "local provider endpoint not configured")

        try:
            response = requests.request(
                (self.credentials.get("method") or "POST").upper(),
                endpoint,
                json={
                    "to": destination,
                    "message": message,
                    "from": self.credentials.get("sender_id") or "RequestApp",
                },
                headers={
                    "Authorization": f"Bearer {self.credentials.get('api_key', '')}",
                    "Content-Type": "application/json",
                },
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise self._failure(destination, e) from e

        try:
            message_id = response.json().get("messageId")
        except ValueError:
            message_id = None

        return self._result(message_id or int(time.time() * 1000))
