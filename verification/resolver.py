# SPDX-License-Identifier: GPL-3.0-only
"""Cross-record verification resolution.

Answers "is this contact verified for this user" by asking an ordered
list of verification sources and stopping at the first verified claim.
Planning is side-effect free: it returns the answer together with any
profile write-backs, which ``resolve`` then applies in one transaction.
"""

import datetime
from abc import ABC, abstractmethod
from typing import Iterable, List, NamedTuple, Optional, Union

from base_logger import get_logger
from verification.db_models import (
    BusinessVerification,
    DriverVerification,
    OTPRecord,
    UserProfile,
)
from verification.phone import normalize_contact
from verification.types import ContactType, VerificationContext, VerificationSourceName
from verification.utils import mask_destination

logger = get_logger(__name__)

PROFILE_FIELDS = {
    ContactType.PHONE: ("phone", "phone_verified"),
    ContactType.EMAIL: ("email", "email_verified"),
}


class Claim(NamedTuple):
    """A source's assertion that a contact value is verified."""

    source: VerificationSourceName
    contact_value: str


class Lookup(NamedTuple):
    """Inputs shared by every source during one resolution."""

    user_id: int
    contact_type: ContactType
    contact: str
    profile: Optional[UserProfile]


class WriteBack(NamedTuple):
    """Pending update of the profile's contact field and verified flag.

    ``new_value`` populates an empty field. When it is None only the flag
    is set, and only while the field still holds ``expected_value``.
    """

    user_id: int
    field: str
    flag_field: str
    new_value: Optional[str]
    expected_value: Optional[str]


class ResolutionResult(NamedTuple):
    """Answer returned to collaborators."""

    verified: bool
    source: Optional[str]
    requires_manual_verification: bool
    verified_contact: Optional[str]
    checked_sources: tuple


class ResolutionPlan(NamedTuple):
    result: ResolutionResult
    write_backs: List[WriteBack]


class VerificationSource(ABC):
    """One place a verified contact may have been recorded."""

    name: VerificationSourceName

    @abstractmethod
    def lookup(self, query: Lookup) -> Optional[Claim]:
        """Return a claim if this source holds a verified match."""


class _RegistrationSource(VerificationSource):
    """Registration tables carrying their own phone/email verified flags."""

    model = None
    columns = {}

    def lookup(self, query: Lookup) -> Optional[Claim]:
        value_field, flag_field = self.columns[query.contact_type]
        rows = self.model.select().where(
            (self.model.user_id == query.user_id)
            & (getattr(self.model, flag_field) == True)  # noqa: E712
        )
        for row in rows:
            stored = normalize_contact(
                query.contact_type, getattr(row, value_field), row.country_code
            )
            if stored and stored == query.contact:
                return Claim(self.name, stored)
        return None


class BusinessRegistrationSource(_RegistrationSource):
    name = VerificationSourceName.BUSINESS
    model = BusinessVerification
    columns = {
        ContactType.PHONE: ("business_phone", "phone_verified"),
        ContactType.EMAIL: ("business_email", "email_verified"),
    }


class DriverRegistrationSource(_RegistrationSource):
    name = VerificationSourceName.DRIVER
    model = DriverVerification
    columns = {
        ContactType.PHONE: ("phone_number", "phone_verified"),
        ContactType.EMAIL: ("email", "email_verified"),
    }


def _profile_value(query: Lookup) -> Optional[str]:
    field, _ = PROFILE_FIELDS[query.contact_type]
    return normalize_contact(
        query.contact_type,
        getattr(query.profile, field),
        query.profile.country_code,
    )


class ProfileSource(VerificationSource):
    """The user's primary profile record.

    Reports ``personal_email`` instead of ``name`` for email contacts.
    """

    name = VerificationSourceName.PERSONAL_PHONE

    def lookup(self, query: Lookup) -> Optional[Claim]:
        if query.profile is None:
            return None
        _, flag_field = PROFILE_FIELDS[query.contact_type]
        if _profile_value(query) == query.contact and getattr(query.profile, flag_field):
            return Claim(self.source_name(query.contact_type), query.contact)
        return None

    @staticmethod
    def source_name(contact_type: ContactType) -> VerificationSourceName:
        if contact_type == ContactType.EMAIL:
            return VerificationSourceName.PERSONAL_EMAIL
        return VerificationSourceName.PERSONAL_PHONE


class OTPHistorySource(VerificationSource):
    """Verified OTP ledger rows, whichever workflow issued them.

    Only consulted when the profile has no value for the contact type or
    already holds this same value.
    """

    name = VerificationSourceName.OTP_HISTORY

    def lookup(self, query: Lookup) -> Optional[Claim]:
        if query.profile is None:
            return None

        stored = _profile_value(query)
        if stored and stored != query.contact:
            return None

        record = (
            OTPRecord.select()
            .where(
                (OTPRecord.destination == query.contact)
                & (OTPRecord.verified == True)  # noqa: E712
            )
            .order_by(OTPRecord.verified_at.desc())
            .first()
        )
        return Claim(self.name, query.contact) if record else None


SOURCE_ORDER = {
    VerificationContext.BUSINESS: (
        BusinessRegistrationSource,
        DriverRegistrationSource,
        ProfileSource,
        OTPHistorySource,
    ),
    VerificationContext.DRIVER: (
        DriverRegistrationSource,
        BusinessRegistrationSource,
        ProfileSource,
        OTPHistorySource,
    ),
    VerificationContext.PERSONAL: (
        BusinessRegistrationSource,
        DriverRegistrationSource,
        ProfileSource,
        OTPHistorySource,
    ),
}


def plan_write_back(
    profile: Optional[UserProfile], contact_type: ContactType, contact: str
) -> Optional[WriteBack]:
    """Decide how a verified contact should propagate to the profile.

    Empty fields are populated and flagged; a matching unverified field is
    flagged; a populated field holding a different value is left alone.
    """
    if profile is None:
        return None

    field, flag_field = PROFILE_FIELDS[contact_type]
    stored_raw = getattr(profile, field)
    stored = normalize_contact(contact_type, stored_raw, profile.country_code)

    if not stored:
        return WriteBack(profile.id, field, flag_field, contact, stored_raw)
    if stored == contact and not getattr(profile, flag_field):
        return WriteBack(profile.id, field, flag_field, None, stored_raw)
    return None


def apply_write_backs(write_backs: Iterable[WriteBack]) -> int:
    """Apply pending write-backs atomically, returning rows changed.

    Each UPDATE re-checks the state it was planned against, so a
    concurrent writer that populated the field first wins.
    """
    changed = 0
    with UserProfile._meta.database.atomic():
        for write_back in write_backs:
            field = getattr(UserProfile, write_back.field)
            flag = getattr(UserProfile, write_back.flag_field)
            updates = {write_back.flag_field: True, "updated_at": datetime.datetime.now()}

            if write_back.new_value is not None:
                updates[write_back.field] = write_back.new_value
                condition = field.is_null() | (field == "")
            else:
                condition = (field == write_back.expected_value) & (
                    flag == False  # noqa: E712
                )

            rows = (
                UserProfile.update(**updates)
                .where((UserProfile.id == write_back.user_id) & condition)
                .execute()
            )
            if rows:
                logger.info(
                    "Propagated verified %s to user %s", write_back.field, write_back.user_id
                )
            changed += rows
    return changed


def _as_enum(enum_class, value):
    return value if isinstance(value, enum_class) else enum_class(str(value).lower())


class VerificationResolver:
    """Priority-ordered verification lookup across records."""

    def __init__(self, source_order: Optional[dict] = None):
        self.source_order = source_order or SOURCE_ORDER

    def sources_for(self, context: VerificationContext) -> List[VerificationSource]:
        return [source_class() for source_class in self.source_order[context]]

    def plan(
        self,
        user_id: int,
        contact_type: Union[str, ContactType],
        contact_value: Optional[str],
        context: Union[str, VerificationContext] = VerificationContext.PERSONAL,
        country_hint: Optional[str] = None,
    ) -> ResolutionPlan:
        """Work out the answer and pending write-backs without writing."""
        contact_type = _as_enum(ContactType, contact_type)
        context = _as_enum(VerificationContext, context)
        profile = UserProfile.get_or_none(UserProfile.id == user_id)

        contact = normalize_contact(
            contact_type,
            contact_value,
            country_hint or (profile.country_code if profile else None),
        )
        if not contact:
            return ResolutionPlan(
                ResolutionResult(False, None, True, None, ()), []
            )

        query = Lookup(user_id, contact_type, contact, profile)
        checked = []

        for source in self.sources_for(context):
            claim = source.lookup(query)
            source_name = (
                ProfileSource.source_name(contact_type)
                if isinstance(source, ProfileSource)
                else source.name
            )
            checked.append((source_name.value, claim is not None))
            if claim is None:
                continue

            write_backs = []
            if claim.source == VerificationSourceName.OTP_HISTORY:
                write_back = plan_write_back(profile, contact_type, contact)
                if write_back:
                    write_backs.append(write_back)

            logger.info(
                "Contact %s verified for user %s via %s",
                mask_destination(contact),
                user_id,
                claim.source.value,
            )
            return ResolutionPlan(
                ResolutionResult(
                    True, claim.source.value, False, claim.contact_value, tuple(checked)
                ),
                write_backs,
            )

        logger.info(
            "Contact %s not verified for user %s; manual verification required",
            mask_destination(contact),
            user_id,
        )
        return ResolutionPlan(
            ResolutionResult(False, None, True, None, tuple(checked)), []
        )

    def resolve(
        self,
        user_id: int,
        contact_type: Union[str, ContactType],
        contact_value: Optional[str],
        context: Union[str, VerificationContext] = VerificationContext.PERSONAL,
        country_hint: Optional[str] = None,
    ) -> ResolutionResult:
        """Plan, apply any write-back, and return the answer."""
        plan = self.plan(user_id, contact_type, contact_value, context, country_hint)
        if plan.write_backs:
            apply_write_backs(plan.write_backs)
        return plan.result


def resolve_verification(
    user_id: int,
    contact_type: Union[str, ContactType],
    contact_value: Optional[str],
    context: Union[str, VerificationContext] = VerificationContext.PERSONAL,
    country_hint: Optional[str] = None,
) -> ResolutionResult:
    """Resolve with the default source ordering."""
    return VerificationResolver().resolve(
        user_id, contact_type, contact_value, context, country_hint
    )


def _registration_snapshot(model, user_id, phone_field, email_field) -> Optional[dict]:
    row = (
        model.select()
        .where(model.user_id == user_id)
        .order_by(model.updated_at.desc(), model.created_at.desc())
        .first()
    )
    if row is None:
        return None
    return {
        "phone": getattr(row, phone_field),
        "email": getattr(row, email_field),
        "phone_verified": row.phone_verified,
        "email_verified": row.email_verified,
        "status": row.status,
    }


def get_verification_status(
    user_id: int, check_phone: Optional[str] = None, check_email: Optional[str] = None
) -> Optional[dict]:
    """Summarize a user's verification state across all records.

    Returns None when the user does not exist.
    """
    profile = UserProfile.get_or_none(UserProfile.id == user_id)
    if profile is None:
        logger.warning("Verification status requested for unknown user %s", user_id)
        return None

    resolver = VerificationResolver()
    status = {
        "user_id": user_id,
        "user": {
            "phone": profile.phone,
            "email": profile.email,
            "phone_verified": profile.phone_verified,
            "email_verified": profile.email_verified,
            "name": f"{profile.first_name or ''} {profile.last_name or ''}".strip(),
        },
        "verification": {},
    }

    for contact_type, value in (
        (ContactType.PHONE, check_phone or profile.phone),
        (ContactType.EMAIL, check_email or profile.email),
    ):
        if not value:
            continue
        result = resolver.resolve(user_id, contact_type, value)
        status["verification"][contact_type.value] = {
            "value": value,
            "normalized": normalize_contact(contact_type, value, profile.country_code),
            "is_verified": result.verified,
            "source": result.source,
            "requires_manual_verification": result.requires_manual_verification,
        }

    business = _registration_snapshot(
        BusinessVerification, user_id, "business_phone", "business_email"
    )
    if business:
        status["verification"]["business"] = business

    driver = _registration_snapshot(DriverVerification, user_id, "phone_number", "email")
    if driver:
        status["verification"]["driver"] = driver

    return status
