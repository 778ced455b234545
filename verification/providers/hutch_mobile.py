# SPDX-License-Identifier: GPL-3.0-only
"""Hutch Mobile (Sri Lanka) SMS transport.

Two gateways are supported. ``oauth`` mode logs in to the bulk SMS API
and posts with a bearer token, refreshing it once on HTTP 401. ``webb``
mode is the legacy GET gateway; it tries each configured number format
in turn and only treats a response as sent when the body carries a
positive indicator.
"""

import re
import time

import requests

from base_logger import get_logger
from verification.providers.base import DeliveryResult, ProviderAdapter
from verification.types import ProviderKind
from verification.utils import mask_destination

logger = get_logger(__name__)

DEFAULT_OAUTH_BASE = "https://bsms.hutch.lk"
DEFAULT_WEBB_URL = "https://webbsms.hutch.lk/"
DEFAULT_SUCCESS_INDICATORS = (
    "success",
    "submitted",
    "ok",
    "message sent",
    "successful",
)
DEFAULT_FORMAT_PREFERENCE = ("94", "0", "local")
STATUS_CODE_PATTERN = re.compile(
    r"(status|result|code)\s*[-:=]?\s*(0|200|ok|success)", re.IGNORECASE
)
API_HEADERS = {
    "Content-Type": "application/json",
    "Accept": "*/*",
    "X-API-VERSION": "v1",
}


def local_digits(number: str) -> str:
    """Reduce a Sri Lankan number to its 9-digit national form."""
    digits = re.sub(r"\D", "", number or "")
    if digits.startswith("94"):
        digits = digits[2:]
    if digits.startswith("0"):
        digits = digits[1:]
    return digits[-9:]


def number_variants(number: str) -> dict:
    """Return the number in each format the Webb gateway may expect."""
    local9 = local_digits(number)
    return {"94": f"94{local9}", "0": f"0{local9}", "local": local9}


class HutchMobileProvider(ProviderAdapter):
    """Send SMS through Hutch Mobile."""

    kind = ProviderKind.HUTCH_MOBILE
    required_credentials = ("username", "password")
    estimated_cost = 0.50

    def __init__(self, credentials: dict, timeout=None, country_code=""):
        super().__init__(credentials, timeout, country_code)
        self.mode = (self.credentials.get("mode") or "oauth").lower()
        self.sender_id = (
            self.credentials.get("sender_id")
            or self.credentials.get("mask")
            or "ALPHABET"
        )
        self.oauth_base = (self.credentials.get("oauth_base") or DEFAULT_OAUTH_BASE).rstrip(
            "/"
        )
        self._access_token = None
        self._refresh_token = None

    def deliver(self, destination: str, message: str) -> DeliveryResult:
        try:
            if self.mode == "oauth":
                return self._deliver_oauth(destination, message)
            return self._deliver_webb(destination, message)
        except (requests.RequestException, ValueError) as e:
            raise self._failure(destination, e) from e

    def _login(self):
        response = requests.post(
            f"{self.oauth_base}/api/login",
            json={
                "username": self.credentials["username"],
                "password": self.credentials["password"],
            },
            headers=API_HEADERS,
            timeout=self.timeout,
        )
        response.raise_for_status()
        data = response.json()
        self._access_token = data.get("accessToken")
        self._refresh_token = data.get("refreshToken")
        if not self._access_token:
            raise requests.RequestException("Hutch login returned no accessToken")

    def _refresh(self):
        if not self._refresh_token:
            self._login()
            return

        response = requests.get(
            f"{self.oauth_base}/api/token/accessToken",
            headers={**API_HEADERS, "Authorization": f"Bearer {self._refresh_token}"},
            timeout=self.timeout,
        )
        response.raise_for_status()
        self._access_token = response.json().get("accessToken")
        if not self._access_token:
            raise requests.RequestException("Hutch refresh returned no accessToken")

    def _post_sms(self, body: dict) -> requests.Response:
        return requests.post(
            f"{self.oauth_base}/api/sendsms",
            json=body,
            headers={**API_HEADERS, "Authorization": f"Bearer {self._access_token}"},
            timeout=self.timeout,
        )

    def _deliver_oauth(self, destination: str, message: str) -> DeliveryResult:
        if not self._access_token:
            self._login()

        body = {
            "campaignName": self.credentials.get("campaign_name") or "Request OTP",
            "mask": self.sender_id,
            "numbers": number_variants(destination)["94"],
            "content": message,
        }

        response = self._post_sms(body)
        if response.status_code == 401:
            logger.info("Hutch access token rejected, refreshing once")
            self._refresh()
            response = self._post_sms(body)
        response.raise_for_status()

        try:
            server_ref = response.json().get("serverRef")
        except ValueError:
            server_ref = None
        if not server_ref:
            raise self._failure(
                destination, f"no serverRef in response: {response.text[:200]}"
            )

        logger.info("SMS accepted by Hutch: %s", server_ref)
        return self._result(server_ref)

    def _deliver_webb(self, destination: str, message: str) -> DeliveryResult:
        param_names = {
            "username": "username",
            "password": "password",
            "to": "to",
            "message": "text",
            "sender_id": "from",
            "message_type": "",
            **(self.credentials.get("param_names") or {}),
        }
        indicators = [
            indicator.lower()
            for indicator in (
                self.credentials.get("success_indicators") or DEFAULT_SUCCESS_INDICATORS
            )
        ]
        variants = number_variants(destination)
        last_snippet = ""

        for fmt in self.credentials.get("to_format_preference") or DEFAULT_FORMAT_PREFERENCE:
            to_param = variants.get(fmt)
            if not to_param:
                continue

            params = {
                param_names["username"]: self.credentials["username"],
                param_names["password"]: self.credentials["password"],
                param_names["to"]: to_param,
                param_names["message"]: message,
                param_names["sender_id"]: self.sender_id,
                **(self.credentials.get("extra_params") or {}),
            }
            if param_names["message_type"]:
                params[param_names["message_type"]] = (
                    self.credentials.get("message_type") or "text"
                )

            logger.debug(
                "Hutch webb attempt format=%s to=%s", fmt, mask_destination(to_param)
            )
            response = requests.get(
                self.credentials.get("api_url") or DEFAULT_WEBB_URL,
                params=params,
                headers={"User-Agent": "Verification-SMS/1.0"},
                timeout=self.timeout,
            )

            body = response.text or ""
            snippet = re.sub(r"\s+", " ", body[:200]).strip()
            lowered = body.lower()
            if response.status_code == 200 and (
                any(indicator in lowered for indicator in indicators)
                or STATUS_CODE_PATTERN.search(body)
            ):
                return self._result(f"hutch_{int(time.time() * 1000)}_{to_param}")

            last_snippet = snippet
            logger.warning("Hutch did not confirm delivery with format=%s", fmt)

        raise self._failure(
            destination, f"gateway did not confirm success. Last response: {last_snippet}"
        )
