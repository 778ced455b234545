"""Test module for usage and cost accounting."""

from datetime import datetime

import pytest

from verification import accounting
from verification.db_models import CountryProviderConfig, UsageEvent


def test_record_success_updates_totals(configure):
    configure("LK", "twilio")

    accounting.record("LK", "twilio", 0.0075, True)
    accounting.record("LK", "twilio", 0.0075, True)

    config = CountryProviderConfig.get()
    assert config.total_sent == 2
    assert float(config.total_cost) == pytest.approx(0.015)
    assert UsageEvent.select().count() == 2


def test_record_failure_leaves_totals(configure):
    configure("LK", "twilio")

    accounting.record("LK", "twilio", 0, False)

    config = CountryProviderConfig.get()
    assert config.total_sent == 0
    assert UsageEvent.get().success is False


def test_record_swallows_storage_errors(database):
    database.drop_tables([UsageEvent])

    accounting.record("LK", "twilio", 0.0075, True)


def test_monthly_summary():
    now = datetime.now()
    accounting.record("LK", "twilio", 0.0075, True)
    accounting.record("LK", "twilio", 0, False)
    accounting.record("LK", "hutch_mobile", 0.5, True)
    accounting.record("IN", "twilio", 0.0075, True)

    summary = accounting.monthly_summary("LK", now.year, now.month)

    assert summary == [
        {"provider": "hutch_mobile", "sent": 1, "failed": 0, "total_cost": 0.5},
        {"provider": "twilio", "sent": 1, "failed": 1, "total_cost": 0.0075},
    ]


def test_monthly_summary_empty_month():
    assert accounting.monthly_summary("LK", 1999, 1) == []
