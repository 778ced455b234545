# SPDX-License-Identifier: GPL-3.0-only
"""Verification admin CLI"""

import argparse
import datetime
import json
import sys

from base_logger import get_logger
from verification.accounting import monthly_summary
from verification.exceptions import VerificationError
from verification.otp_service import OTPService
from verification.registry import set_approval, store_configuration
from verification.types import ApprovalStatus

logger = get_logger("verification.cli")


def _load_credentials(value):
    """Accept credentials as inline JSON or as @path/to/file.json."""
    if value.startswith("@"):
        with open(value[1:], "r", encoding="utf-8") as f:
            return json.load(f)
    return json.loads(value)


def configure(args):
    """Store a provider configuration for a country, pending approval."""
    try:
        credentials = _load_credentials(args.credentials)
        fallback_credentials = (
            _load_credentials(args.fallback_credentials)
            if args.fallback_credentials
            else None
        )
    except (OSError, ValueError) as e:
        logger.error("Could not read credentials: %s", e)
        sys.exit(1)

    try:
        config = store_configuration(
            args.country,
            args.provider,
            credentials,
            is_active=not args.inactive,
            fallback_provider=args.fallback_provider,
            fallback_credentials=fallback_credentials,
        )
    except VerificationError as e:
        logger.error(e.message)
        sys.exit(1)

    logger.info(
        "Configuration %s stored for %s; approve it before use.",
        config.id,
        config.country_code,
    )


def approve(args):
    """Approve or reject a stored configuration."""
    status = ApprovalStatus.REJECTED if args.reject else ApprovalStatus.APPROVED
    try:
        updated = set_approval(args.country, args.provider, status)
    except VerificationError as e:
        logger.error(e.message)
        sys.exit(1)

    if not updated:
        sys.exit(1)


def test_send(args):
    """Send a diagnostic message through a stored configuration."""
    outcome = OTPService().test_provider(args.country, args.provider, args.destination)
    if outcome["success"]:
        logger.info(
            "Test message sent via %s (id=%s, cost=%s)",
            outcome["provider"],
            outcome["external_id"],
            outcome["cost"],
        )
        return

    logger.error("Test message failed: %s", outcome["error"])
    sys.exit(1)


def usage(args):
    """Print a country's monthly usage per provider."""
    today = datetime.date.today()
    year = args.year or today.year
    month = args.month or today.month

    rows = monthly_summary(args.country, year, month)
    if not rows:
        logger.info("No usage recorded for %s in %04d-%02d.", args.country, year, month)
        return

    print(f"\nUsage for {args.country.upper()} in {year:04d}-{month:02d}")
    print("-" * 60)
    print(f"{'Provider':<16}{'Sent':>10}{'Failed':>10}{'Cost':>14}")
    for row in rows:
        print(
            f"{row['provider']:<16}{row['sent']:>10}{row['failed']:>10}"
            f"{row['total_cost']:>14.4f}"
        )
    print("-" * 60)


def main():
    """Entry function"""

    parser = argparse.ArgumentParser(description="Verification admin CLI")
    subparsers = parser.add_subparsers(dest="command", description="Expected commands")

    configure_parser = subparsers.add_parser(
        "configure", help="Stores a country provider configuration."
    )
    configure_parser.add_argument("-c", "--country", required=True, help="ISO country code.")
    configure_parser.add_argument("-p", "--provider", required=True, help="Provider kind.")
    configure_parser.add_argument(
        "--credentials",
        required=True,
        help="Credentials as JSON, or @file.json.",
    )
    configure_parser.add_argument("--fallback-provider", help="Fallback provider kind.")
    configure_parser.add_argument(
        "--fallback-credentials", help="Fallback credentials as JSON, or @file.json."
    )
    configure_parser.add_argument(
        "--inactive", action="store_true", help="Store without activating."
    )
    configure_parser.set_defaults(func=configure)

    approve_parser = subparsers.add_parser(
        "approve", help="Approves (or rejects) a configuration."
    )
    approve_parser.add_argument("-c", "--country", required=True, help="ISO country code.")
    approve_parser.add_argument("-p", "--provider", required=True, help="Provider kind.")
    approve_parser.add_argument(
        "--reject", action="store_true", help="Reject instead of approving."
    )
    approve_parser.set_defaults(func=approve)

    test_parser = subparsers.add_parser(
        "test-provider", help="Sends a test message through a configuration."
    )
    test_parser.add_argument("-c", "--country", required=True, help="ISO country code.")
    test_parser.add_argument("-p", "--provider", required=True, help="Provider kind.")
    test_parser.add_argument(
        "-d", "--destination", required=True, help="Phone number to send to."
    )
    test_parser.set_defaults(func=test_send)

    usage_parser = subparsers.add_parser(
        "usage", help="Shows monthly usage for a country."
    )
    usage_parser.add_argument("-c", "--country", required=True, help="ISO country code.")
    usage_parser.add_argument("-y", "--year", type=int, help="Year (defaults to now).")
    usage_parser.add_argument("-m", "--month", type=int, help="Month (defaults to now).")
    usage_parser.set_defaults(func=usage)

    args = parser.parse_args()
    if not args.command:
        parser.print_help()
        sys.exit(1)

    args.func(args)


if __name__ == "__main__":
    main()
