# SPDX-License-Identifier: GPL-3.0-only
"""Phone number and email canonicalization.

Every value written to or compared across tables goes through these
functions, so they must stay pure and deterministic.
"""

import re
from typing import Optional

import phonenumbers

from base_logger import get_logger
from verification.types import ContactType
from verification.utils import get_configs

logger = get_logger(__name__)

DEFAULT_COUNTRY_CODE = get_configs("DEFAULT_COUNTRY_CODE", default_value="LK").upper()

# National significant number length and trunk prefix per country.
LOCAL_NUMBER_RULES = {
    "LK": (9, "0"),
    "IN": (10, "0"),
    "US": (10, None),
    "GB": (10, "0"),
    "AE": (9, "0"),
}

COUNTRY_ALIASES = {"UK": "GB"}

_SEPARATORS = re.compile(r"[\s\-]")
_NON_DIGITS = re.compile(r"\D")


def resolve_country_code(hint: Optional[str]) -> Optional[str]:
    """Map a country hint to an ISO 3166 alpha-2 code.

    Accepts alpha-2 codes in any case (``lk``), calling codes with or
    without a plus (``+94``, ``94``) and the legacy ``UK`` alias.

    >>> resolve_country_code("+94")
    'LK'
    >>> resolve_country_code("uk")
    'GB'
    """
    if not hint:
        return None

    hint = str(hint).strip()
    digits = _NON_DIGITS.sub("", hint)
    if digits and (hint.startswith("+") or hint.isdigit()):
        region = phonenumbers.region_code_for_country_code(int(digits))
        return None if region == phonenumbers.UNKNOWN_REGION else region

    code = hint.upper()
    return COUNTRY_ALIASES.get(code, code)


def normalize(raw: Optional[str], country_hint: Optional[str] = None) -> Optional[str]:
    """Canonicalize a raw phone string.

    Args:
        raw: Phone number as typed into a form.
        country_hint: Country the number is local to; defaults to
            ``DEFAULT_COUNTRY_CODE``.

    Returns:
        The canonical ``+<digits>`` form, or None for empty input.

    >>> normalize("077 123-4567", "LK")
    '+94771234567'
    >>> normalize("+94 77 123 4567")
    '+94771234567'
    """
    if raw is None:
        return None

    value = str(raw).strip()
    if not value:
        return None

    if value.startswith("+"):
        return _SEPARATORS.sub("", value)

    digits = _NON_DIGITS.sub("", value)
    if not digits:
        return None

    if digits.startswith("00"):
        return "+" + digits[2:]

    country = resolve_country_code(country_hint) or DEFAULT_COUNTRY_CODE
    rule = LOCAL_NUMBER_RULES.get(country)
    if rule:
        national_length, trunk_prefix = rule
        calling_code = str(phonenumbers.country_code_for_region(country))

        if (
            digits.startswith(calling_code)
            and len(digits) == len(calling_code) + national_length
        ):
            return "+" + digits
        if (
            trunk_prefix
            and digits.startswith(trunk_prefix)
            and len(digits) == len(trunk_prefix) + national_length
        ):
            return f"+{calling_code}{digits[len(trunk_prefix):]}"
        if len(digits) == national_length:
            return f"+{calling_code}{digits}"

    return "+" + digits


def normalize_email(raw: Optional[str]) -> Optional[str]:
    """Canonicalize an email address (trimmed, lower-case)."""
    if raw is None:
        return None
    value = str(raw).strip().lower()
    return value or None


def contact_type_for(destination: str) -> ContactType:
    """Classify a destination as an email address or a phone number."""
    return ContactType.EMAIL if "@" in (destination or "") else ContactType.PHONE


def normalize_contact(
    contact_type: ContactType, raw: Optional[str], country_hint: Optional[str] = None
) -> Optional[str]:
    """Canonicalize a contact value of the given type."""
    if contact_type == ContactType.EMAIL:
        return normalize_email(raw)
    return normalize(raw, country_hint)


def detect_country(phone_number: str) -> Optional[str]:
    """Return the region code for a canonical phone number, if known.

    Args:
        phone_number: The phone number in E.164 format.

    Returns:
        Region code such as ``LK`` or None when it cannot be determined.
    """
    try:
        parsed_number = phonenumbers.parse(phone_number)
    except phonenumbers.NumberParseException as error:
        logger.debug("Unable to parse phone number for region lookup: %s", error)
        return None

    region_code = phonenumbers.region_code_for_number(parsed_number)
    if not region_code or region_code == phonenumbers.UNKNOWN_REGION:
        return None
    return region_code
