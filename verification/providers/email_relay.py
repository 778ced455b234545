# SPDX-License-Identifier: GPL-3.0-only
"""Email transport via an HTTP email relay service."""

import requests

from base_logger import get_logger
from verification.providers.base import DeliveryResult, ProviderAdapter
from verification.types import ProviderKind
from verification.utils import get_configs

logger = get_logger(__name__)


class EmailRelayProvider(ProviderAdapter):
    """Deliver codes by email through the relay's JSON API."""

    kind = ProviderKind.EMAIL_RELAY
    required_credentials = ("service_url", "api_key", "sender_address")
    estimated_cost = 0.0

    def deliver(self, destination: str, message: str) -> DeliveryResult:
        payload = {
            "from_email": self.credentials["sender_address"],
            "to_email": destination,
            "subject": self.credentials.get("subject") or "Verification Code",
            "body": message,
            "substitutions": {
                "project_name": self.credentials.get("project_name") or "",
            },
        }
        headers = {
            "Authorization": f"Bearer {self.credentials['api_key']}",
            "Content-Type": "application/json",
        }

        try:
            response = requests.post(
                self.credentials["service_url"],
                json=payload,
                headers=headers,
                timeout=self.timeout,
            )
            response.raise_for_status()
            response_data = response.json()
        except (requests.RequestException, ValueError) as e:
            raise self._failure(destination, e) from e

        if not response_data.get("success"):
            raise self._failure(
                destination, response_data.get("message") or "relay rejected message"
            )

        logger.info("OTP email accepted: %s", response_data.get("message", ""))
        return self._result(response_data.get("id") or response_data.get("message_id") or "")


def email_credentials_from_configs() -> dict:
    """Build the relay credential bundle from environment configuration."""
    return {
        "service_url": get_configs("EMAIL_SERVICE_URL"),
        "api_key": get_configs("EMAIL_SERVICE_API_KEY"),
        "sender_address": get_configs("EMAIL_VERIFICATION_SENDER_ADDRESS"),
        "subject": get_configs("EMAIL_SUBJECT", default_value="Verification Code"),
        "project_name": get_configs("EMAIL_PROJECT_NAME"),
    }
