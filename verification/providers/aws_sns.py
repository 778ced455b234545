# SPDX-License-Identifier: GPL-3.0-only
"""AWS SNS SMS transport."""

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from base_logger import get_logger
from verification.providers.base import DeliveryResult, ProviderAdapter
from verification.types import ProviderKind

logger = get_logger(__name__)


class AWSSNSProvider(ProviderAdapter):
    """Publish transactional SMS through Amazon SNS.

    Credentials: ``region``; ``access_key_id``/``secret_access_key`` are
    optional and the default credential chain applies without them.
    """

    kind = ProviderKind.AWS_SNS
    required_credentials = ("region",)
    estimated_cost = 0.0075

    def _client(self):
        client_kwargs = {
            "region_name": self.credentials["region"],
            "config": Config(
                connect_timeout=self.timeout,
                read_timeout=self.timeout,
                retries={"total_max_attempts": 1},
            ),
        }
        if self.credentials.get("access_key_id"):
            client_kwargs["aws_access_key_id"] = self.credentials["access_key_id"]
            client_kwargs["aws_secret_access_key"] = self.credentials.get(
                "secret_access_key"
            )
        return boto3.client("sns", **client_kwargs)

    def deliver(self, destination: str, message: str) -> DeliveryResult:
        attributes = {
            "AWS.SNS.SMS.SMSType": {
                "DataType": "String",
                "StringValue": "Transactional",
            }
        }
        if self.credentials.get("sender_id"):
            attributes["AWS.SNS.SMS.SenderID"] = {
                "DataType": "String",
                "StringValue": self.credentials["sender_id"],
            }

        try:
            response = self._client().publish(
                PhoneNumber=destination,
                Message=message,
                MessageAttributes=attributes,
            )
        except (BotoCoreError, ClientError) as e:
            raise self._failure(destination, e) from e

        message_id = response.get("MessageId")
        if not message_id:
            raise self._failure(destination, "no MessageId returned")

        logger.info("SMS published via SNS: %s", message_id)
        return self._result(message_id)
