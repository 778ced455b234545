# SPDX-License-Identifier: GPL-3.0-only
"""Country provider registry.

Resolves which transport may send OTPs for a country. Only approved,
active configurations are ever handed out, and credential bundles are
decrypted per call rather than cached in the process.
"""

import datetime
from contextlib import contextmanager
from typing import Iterator, NamedTuple, Optional

from base_logger import get_logger
from verification.db_models import CountryProviderConfig
from verification.exceptions import ConfigurationNotFound, InvalidCredentials, NotApproved
from verification.phone import DEFAULT_COUNTRY_CODE, resolve_country_code
from verification.providers.base import ProviderAdapter
from verification.providers.factory import ProviderFactory, parse_provider_kind
from verification.types import ApprovalStatus, ProviderKind
from verification.utils import decrypt_credentials, encrypt_credentials

logger = get_logger(__name__)


class ResolvedProvider(NamedTuple):
    """Adapter ready to send for a country, plus non-secret metadata."""

    country_code: str
    kind: ProviderKind
    adapter: ProviderAdapter
    fallback_kind: Optional[ProviderKind]
    fallback_ciphertext: Optional[str]
    metadata: dict


def _country(country_code: Optional[str]) -> str:
    return resolve_country_code(country_code) or DEFAULT_COUNTRY_CODE


def find_configuration(
    country_code: str, provider: Optional[str] = None
) -> Optional[CountryProviderConfig]:
    """Return the most relevant configuration row for a country.

    Active rows win over inactive ones, newer rows over older ones.
    """
    query = CountryProviderConfig.select().where(
        CountryProviderConfig.country_code == _country(country_code)
    )
    if provider:
        query = query.where(
            CountryProviderConfig.provider == parse_provider_kind(provider).value
        )

    return query.order_by(
        CountryProviderConfig.is_active.desc(),
        CountryProviderConfig.updated_at.desc(),
    ).first()


class CountryProviderRegistry:
    """Resolve the approved, active adapter for a country."""

    def __init__(self, factory: Optional[ProviderFactory] = None):
        self.factory = factory or ProviderFactory()

    def resolve(self, country_code: str) -> ResolvedProvider:
        """Build the adapter configured for country_code.

        Raises:
            ConfigurationNotFound: No row exists, or none is active.
            NotApproved: The selected row is pending or rejected.
        """
        country = _country(country_code)
        config = find_configuration(country)

        if config is None:
            logger.warning("No provider configuration for country %s", country)
            raise ConfigurationNotFound(country)

        if config.approval_status != ApprovalStatus.APPROVED.value:
            logger.warning(
                "Provider configuration for %s is %s", country, config.approval_status
            )
            raise NotApproved(country, config.approval_status)

        if not config.is_active:
            logger.warning("Provider configuration for %s is inactive", country)
            raise ConfigurationNotFound(country)

        kind = parse_provider_kind(config.provider, country)
        adapter = self.factory.build(kind, decrypt_credentials(config.credentials), country)

        fallback_kind = None
        if config.fallback_provider:
            fallback_kind = parse_provider_kind(config.fallback_provider, country)

        logger.debug("Resolved provider %s for country %s", kind.value, country)
        return ResolvedProvider(
            country_code=country,
            kind=kind,
            adapter=adapter,
            fallback_kind=fallback_kind,
            fallback_ciphertext=config.fallback_credentials or config.credentials,
            metadata={
                "config_id": config.id,
                "approval_status": config.approval_status,
                "total_sent": config.total_sent,
                "total_cost": float(config.total_cost or 0),
            },
        )

    def build_fallback(self, resolved: ResolvedProvider) -> Optional[ProviderAdapter]:
        """Decrypt and build the fallback adapter, or None if none is set.

        Called only after the primary fails, so a broken fallback never
        blocks a working primary.
        """
        if resolved.fallback_kind is None:
            return None
        return self.factory.build(
            resolved.fallback_kind,
            decrypt_credentials(resolved.fallback_ciphertext),
            resolved.country_code,
        )

    @contextmanager
    def acquire(self, country_code: str) -> Iterator[ResolvedProvider]:
        """Scope a resolved provider to a with-block.

        The adapter's decrypted credentials are wiped on exit.
        """
        resolved = self.resolve(country_code)
        try:
            yield resolved
        finally:
            resolved.adapter.credentials.clear()


def store_configuration(
    country_code: str,
    provider: str,
    credentials: dict,
    is_active: bool = True,
    exclusive: bool = True,
    fallback_provider: Optional[str] = None,
    fallback_credentials: Optional[dict] = None,
) -> CountryProviderConfig:
    """Create or replace a country configuration, pending approval.

    With ``exclusive`` the other providers of the country are
    deactivated so at most one stays active.
    A fallback of a different kind needs its own ``fallback_credentials``.
    """
    country = _country(country_code)
    kind = parse_provider_kind(provider, country)
    fallback_kind = (
        parse_provider_kind(fallback_provider, country) if fallback_provider else None
    )
    if fallback_kind and fallback_kind != kind and not fallback_credentials:
        logger.error(
            "Fallback %s for %s has no credentials of its own", fallback_kind.value, country
        )
        raise InvalidCredentials(fallback_kind.value, ["fallback_credentials"], country)
    now = datetime.datetime.now()

    fields = {
        "credentials": encrypt_credentials(credentials),
        "is_active": is_active,
        "approval_status": ApprovalStatus.PENDING.value,
        "fallback_provider": fallback_kind.value if fallback_kind else None,
        "fallback_credentials": (
            encrypt_credentials(fallback_credentials) if fallback_credentials else None
        ),
        "updated_at": now,
    }

    with CountryProviderConfig._meta.database.atomic():
        config = CountryProviderConfig.get_or_none(
            (CountryProviderConfig.country_code == country)
            & (CountryProviderConfig.provider == kind.value)
        )
        if config:
            CountryProviderConfig.update(**fields).where(
                CountryProviderConfig.id == config.id
            ).execute()
        else:
            config = CountryProviderConfig.create(
                country_code=country, provider=kind.value, **fields
            )

        if exclusive and is_active:
            CountryProviderConfig.update(is_active=False, updated_at=now).where(
                (CountryProviderConfig.country_code == country)
                & (CountryProviderConfig.id != config.id)
            ).execute()

    logger.info("Stored %s configuration for %s (pending approval)", kind.value, country)
    return CountryProviderConfig.get_by_id(config.id)


def set_approval(
    country_code: str, provider: str, status: ApprovalStatus = ApprovalStatus.APPROVED
) -> bool:
    """Record an approval decision for a configuration."""
    country = _country(country_code)
    kind = parse_provider_kind(provider, country)
    rows = (
        CountryProviderConfig.update(
            approval_status=status.value, updated_at=datetime.datetime.now()
        )
        .where(
            (CountryProviderConfig.country_code == country)
            & (CountryProviderConfig.provider == kind.value)
        )
        .execute()
    )
    if rows:
        logger.info("%s configuration for %s marked %s", kind.value, country, status.value)
    else:
        logger.warning("No %s configuration for %s to update", kind.value, country)
    return bool(rows)
