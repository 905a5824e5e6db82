from __future__ import annotations

import logging
import re
from dataclasses import dataclass, replace
from typing import Iterable, List, Optional

import phonenumbers

from .models import (
    ADDRESS_FIELDS,
    AddressData,
    CardEnvelope,
    CardType,
    EmailData,
    IdentityData,
    PhoneData,
)

logger = logging.getLogger(__name__)

ISO2 = {
    "us": "US",
    "usa": "US",
    "u.s.": "US",
    "u.s.a.": "US",
    "united states": "US",
    "united states of america": "US",
    "america": "US",
    "canada": "CA",
    "mexico": "MX",
    "united kingdom": "GB",
    "uk": "GB",
    "u.k.": "GB",
    "great britain": "GB",
    "england": "GB",
    "scotland": "GB",
    "wales": "GB",
    "ireland": "IE",
    "germany": "DE",
    "deutschland": "DE",
    "france": "FR",
    "italy": "IT",
    "spain": "ES",
    "netherlands": "NL",
    "holland": "NL",
    "switzerland": "CH",
    "australia": "AU",
    "new zealand": "NZ",
    "india": "IN",
    "china": "CN",
    "japan": "JP",
    "south korea": "KR",
    "brazil": "BR",
    "south africa": "ZA",
    "sweden": "SE",
    "singapore": "SG",
    "hong kong": "HK",
    "united arab emirates": "AE",
    "uae": "AE",
}

LABEL_SYNONYMS = {
    "internet": "work",
    "pref": "primary",
    "cell": "mobile",
    "iphone": "mobile",
    "voice": "phone",
    "fax": "fax",
    "msg": "messaging",
}

US_POSTAL_RE = re.compile(r"^(\d{5})(?:[\s-]?(\d{4}))?$")


@dataclass(frozen=True)
class NormalizationSettings:
    default_phone_country: str = "US"

    @classmethod
    def from_args(cls, default_phone_country: Optional[str] = None) -> "NormalizationSettings":
        return cls(default_phone_country=(default_phone_country or "US").upper())


def _trim(value: Optional[str]) -> Optional[str]:
    return value.strip() if value is not None else None


def _trim_list(values: Optional[Iterable[str]]) -> Optional[List[str]]:
    if values is None:
        return None
    if isinstance(values, str):
        values = [values]
    return [value.strip() for value in values if value and value.strip()]


def canonicalize_labels(labels: Iterable[str]) -> List[str]:
    if isinstance(labels, str):
        labels = [labels]
    out: List[str] = []
    for label in labels:
        key = (label or "").strip().lower()
        if not key:
            continue
        canonical = LABEL_SYNONYMS.get(key, key)
        if canonical not in out:
            out.append(canonical)
    return out


def normalize_country(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    v = value.strip()
    return ISO2.get(v.lower(), v)


def normalize_postal_code(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    v = value.strip()
    match = US_POSTAL_RE.match(v)
    if not match:
        return v
    return f"{match.group(1)}-{match.group(2)}" if match.group(2) else match.group(1)


def _digits(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return re.sub(r"\D", "", value)


def format_phone_e164(value: str, default_country: str = "US") -> str:
    """Format ``value`` as E.164 when phonenumbers considers it a complete possible number, else ''."""
    s = (value or "").strip()
    if not s:
        return ""
    try:
        region = None if s.startswith("+") else default_country
        parsed = phonenumbers.parse(s, region)
    except phonenumbers.NumberParseException:
        logger.debug("phonenumbers.parse failed for %s", s)
        return ""
    # local-only numbers (no area code) have no E.164 form
    reason = phonenumbers.is_possible_number_with_reason(parsed)
    if reason != phonenumbers.ValidationResult.IS_POSSIBLE:
        return ""
    return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164)


def normalize_identity(data: IdentityData) -> IdentityData:
    return IdentityData(
        given_name=_trim(data.given_name),
        family_name=_trim(data.family_name),
        middle_names=_trim_list(data.middle_names),
        honorific_prefix=_trim(data.honorific_prefix),
        honorific_suffix=_trim(data.honorific_suffix),
        display_name=_trim(data.display_name),
        nicknames=_trim_list(data.nicknames),
        date_of_birth=data.date_of_birth,
        profile_photo=data.profile_photo,
        organization=data.organization,
        job_title=_trim(data.job_title),
    )


def normalize_email(data: EmailData) -> EmailData:
    return EmailData(
        full_address=(data.full_address or "").strip().lower(),
        username=(data.username or "").strip().lower(),
        domain=(data.domain or "").strip().lower(),
        labels=canonicalize_labels(data.labels),
        is_primary=bool(data.is_primary),
    )


def normalize_phone(data: PhoneData, settings: NormalizationSettings) -> PhoneData:
    full_number = (data.full_number or "").strip()
    e164 = data.e164 or format_phone_e164(full_number, settings.default_phone_country) or None
    return PhoneData(
        full_number=full_number,
        country_code=_digits(data.country_code),
        area_code=_digits(data.area_code),
        exchange=_digits(data.exchange),
        line_number=_digits(data.line_number),
        e164=e164,
        labels=canonicalize_labels(data.labels),
        is_primary=bool(data.is_primary),
    )


def normalize_address(data: AddressData) -> AddressData:
    values = {attr: _trim(getattr(data, attr)) for attr, _ in ADDRESS_FIELDS}
    values["postal_code"] = normalize_postal_code(values["postal_code"])
    values["country"] = normalize_country(values["country"])
    return AddressData(
        labels=canonicalize_labels(data.labels),
        is_primary=bool(data.is_primary),
        **values,
    )


def normalize_envelope(
    envelope: CardEnvelope, settings: Optional[NormalizationSettings] = None
) -> CardEnvelope:
    settings = settings or NormalizationSettings()
    data = envelope.data
    if envelope.card_type is CardType.PERSONAL_IDENTITY and isinstance(data, IdentityData):
        normalized = normalize_identity(data)
    elif envelope.card_type is CardType.EMAIL and isinstance(data, EmailData):
        normalized = normalize_email(data)
    elif envelope.card_type is CardType.PHONE and isinstance(data, PhoneData):
        normalized = normalize_phone(data, settings)
    elif envelope.card_type is CardType.ADDRESS and isinstance(data, AddressData):
        normalized = normalize_address(data)
    else:
        logger.info(
            "Envelope %s has data shaped %s for card_type %s; left unnormalized",
            envelope.card_id,
            type(data).__name__,
            envelope.card_type,
        )
        return envelope
    return replace(envelope, data=normalized)


def normalize_envelopes(
    envelopes: Iterable[CardEnvelope], settings: Optional[NormalizationSettings] = None
) -> List[CardEnvelope]:
    return [normalize_envelope(envelope, settings) for envelope in envelopes]
