# SPDX-License-Identifier: GPL-3.0-only
"""Best-effort delivery usage and cost accounting."""

import datetime
from decimal import Decimal

from peewee import Case, fn

from base_logger import get_logger
from verification.db_models import CountryProviderConfig, UsageEvent

logger = get_logger(__name__)


def record(country_code: str, provider: str, cost: float, success: bool) -> None:
    """Append a usage event and bump the configuration's running totals.

    Failures are logged and swallowed; accounting never fails the
    operation that triggered it.
    """
    now = datetime.datetime.now()
    amount = Decimal(str(cost or 0))

    try:
        with UsageEvent._meta.database.atomic():
            UsageEvent.create(
                country_code=country_code,
                provider=provider,
                cost=amount,
                success=success,
                month=now.month,
                year=now.year,
                created_at=now,
            )

            if success:
                CountryProviderConfig.update(
                    total_sent=CountryProviderConfig.total_sent + 1,
                    total_cost=CountryProviderConfig.total_cost + amount,
                    updated_at=now,
                ).where(
                    (CountryProviderConfig.country_code == country_code)
                    & (CountryProviderConfig.provider == provider)
                ).execute()

        logger.debug(
            "Usage recorded: country=%s provider=%s cost=%s success=%s",
            country_code,
            provider,
            amount,
            success,
        )
    except Exception as e:
        logger.error("Error updating cost tracking: %s", e)


def monthly_summary(country_code: str, year: int, month: int) -> list:
    """Aggregate a country's usage events per provider for one month.

    Returns:
        list: Dicts with ``provider``, ``sent``, ``failed`` and ``total_cost``,
        ordered by provider.
    """
    query = (
        UsageEvent.select(
            UsageEvent.provider,
            fn.SUM(Case(None, [(UsageEvent.success == True, 1)], 0)).alias("sent"),
            fn.SUM(Case(None, [(UsageEvent.success == False, 1)], 0)).alias("failed"),
            fn.SUM(UsageEvent.cost).alias("total_cost"),
        )
        .where(
            (UsageEvent.country_code == country_code)
            & (UsageEvent.year == year)
            & (UsageEvent.month == month)
        )
        .group_by(UsageEvent.provider)
        .order_by(UsageEvent.provider)
        .dicts()
    )

    return [
        {
            "provider": row["provider"],
            "sent": int(row["sent"] or 0),
            "failed": int(row["failed"] or 0),
            "total_cost": float(row["total_cost"] or 0),
        }
        for row in query
    ]
