# SPDX-License-Identifier: GPL-3.0-only
"""Issuance rate limiting.

The limit is a counted read against the OTP ledger itself, so every
service instance sees the same rows and no in-process state is kept.
"""

import datetime
import math

from peewee import fn

from base_logger import get_logger
from verification.db_models import OTPRecord
from verification.exceptions import RateLimited
from verification.utils import get_int_config, mask_destination

logger = get_logger(__name__)

MAX_OTP_REQUESTS = get_int_config("OTP_RATE_LIMIT_MAX_REQUESTS", 3)
RATE_LIMIT_WINDOW_MINUTES = get_int_config("OTP_RATE_LIMIT_WINDOW_MINUTES", 60)


def window_start(now: datetime.datetime = None) -> datetime.datetime:
    """Return the start of the trailing rate-limit window."""
    return (now or datetime.datetime.now()) - datetime.timedelta(
        minutes=RATE_LIMIT_WINDOW_MINUTES
    )


def count_recent(destination: str, now: datetime.datetime = None) -> int:
    """Count records created for destination within the window."""
    return (
        OTPRecord.select()
        .where(
            (OTPRecord.destination == destination)
            & (OTPRecord.created_at > window_start(now))
        )
        .count()
    )


def check(destination: str, now: datetime.datetime = None) -> None:
    """Allow the issuance or raise RateLimited.

    Args:
        destination: Normalized phone number or email address.
        now: Reference time, defaults to the current time.

    Raises:
        RateLimited: ``MAX_OTP_REQUESTS`` or more records already exist
            for destination within the window.
    """
    now = now or datetime.datetime.now()
    start = window_start(now)

    count, oldest = (
        OTPRecord.select(fn.COUNT(OTPRecord.id), fn.MIN(OTPRecord.created_at))
        .where(
            (OTPRecord.destination == destination) & (OTPRecord.created_at > start)
        )
        .scalar(as_tuple=True)
    )

    if count < MAX_OTP_REQUESTS:
        logger.debug("Rate limit ok: %d/%d", count, MAX_OTP_REQUESTS)
        return

    retry_after = 0
    if oldest:
        if isinstance(oldest, str):
            oldest = datetime.datetime.fromisoformat(oldest)
        retry_after = max(0, math.ceil((oldest - start).total_seconds()))

    logger.info(
        "Rate limit active for %s: %d requests in %d minutes",
        mask_destination(destination),
        count,
        RATE_LIMIT_WINDOW_MINUTES,
    )
    raise RateLimited(retry_after)
