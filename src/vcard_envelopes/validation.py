from __future__ import annotations

import logging
import numbers
import re
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from email_validator import EmailNotValidError, validate_email

from .models import (
    DATA_TYPES,
    PRECEDENCE_VALUES,
    AddressData,
    CardEnvelope,
    CardType,
    EmailData,
    IdentityData,
    PhoneData,
    ValidationResult,
)

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
DIGITS_RE = re.compile(r"^\d+$")


@dataclass(frozen=True)
class ValidationSettings:
    email_syntax_check: bool = False
    email_dns_mx_check: bool = False


def _validate_email_data(
    data: EmailData, errors: List[str], settings: ValidationSettings
) -> None:
    if not data.full_address:
        errors.append("Email card missing fullAddress")
    elif not EMAIL_RE.match(data.full_address):
        errors.append("Invalid email format")
    elif settings.email_syntax_check or settings.email_dns_mx_check:
        try:
            validate_email(
                data.full_address, check_deliverability=settings.email_dns_mx_check
            )
        except EmailNotValidError as exc:
            errors.append(f"Email rejected by validator: {exc}")
    if not data.username:
        errors.append("Email card missing username")
    if not data.domain:
        errors.append("Email card missing domain")


def _validate_phone_data(data: PhoneData, errors: List[str]) -> None:
    if not (data.full_number or "").strip():
        errors.append("Phone card missing fullNumber")
    for label, value in (
        ("countryCode", data.country_code),
        ("areaCode", data.area_code),
        ("exchange", data.exchange),
        ("lineNumber", data.line_number),
    ):
        if value and not DIGITS_RE.match(value):
            errors.append(f"Invalid {label} format")


def _validate_address_data(data: AddressData, errors: List[str]) -> None:
    components = (data.street_address, data.locality, data.region, data.postal_code, data.country)
    if not any(value and value.strip() for value in components):
        errors.append("Address card missing all address components")


def _validate_identity_data(data: IdentityData, errors: List[str]) -> None:
    names = (data.given_name, data.family_name, data.display_name)
    if not any(value and value.strip() for value in names):
        errors.append("Personal identity card missing all name fields")


def validate_envelope(
    envelope: CardEnvelope, settings: Optional[ValidationSettings] = None
) -> ValidationResult:
    settings = settings or ValidationSettings()
    errors: List[str] = []

    if not envelope.card_id:
        errors.append("Missing card_id")
    if not envelope.person_id:
        errors.append("Missing person_id")
    if not isinstance(envelope.card_type, CardType):
        errors.append("Missing card_type")
    if envelope.data is None:
        errors.append("Missing data")
    if not envelope.version:
        errors.append("Missing version")

    provenance = envelope.provenance
    if provenance is None:
        errors.append("Missing provenance")
    else:
        if not provenance.source:
            errors.append("Missing provenance.source")
        confidence = provenance.confidence
        if isinstance(confidence, bool) or not isinstance(confidence, numbers.Real):
            errors.append("Invalid provenance.confidence")
        elif not 0.0 <= float(confidence) <= 1.0:
            errors.append("provenance.confidence out of range")
        if not provenance.precedence:
            errors.append("Missing provenance.precedence")
        elif provenance.precedence not in PRECEDENCE_VALUES:
            errors.append(f"Invalid provenance.precedence: {provenance.precedence}")

    data = envelope.data
    expected = DATA_TYPES.get(envelope.card_type)
    if data is not None and expected is not None and not isinstance(data, expected):
        errors.append(
            f"Data shape {type(data).__name__} does not match card_type {envelope.card_type.value}"
        )
    elif isinstance(data, EmailData):
        _validate_email_data(data, errors, settings)
    elif isinstance(data, PhoneData):
        _validate_phone_data(data, errors)
    elif isinstance(data, AddressData):
        _validate_address_data(data, errors)
    elif isinstance(data, IdentityData):
        _validate_identity_data(data, errors)

    return ValidationResult.from_errors(errors)


def validate_envelope_set(
    envelopes: Iterable[CardEnvelope], settings: Optional[ValidationSettings] = None
) -> ValidationResult:
    """Validate each envelope, then check the set for duplicate ids and competing primaries."""
    errors: List[str] = []
    seen_ids: Dict[str, int] = defaultdict(int)
    primaries: Dict[Tuple[str, CardType], List[str]] = defaultdict(list)

    for envelope in envelopes:
        result = validate_envelope(envelope, settings)
        errors.extend(f"{envelope.card_id or '<no card_id>'}: {error}" for error in result.errors)
        seen_ids[envelope.card_id] += 1
        if getattr(envelope.data, "is_primary", False):
            primaries[(envelope.person_id, envelope.card_type)].append(envelope.card_id)

    for card_id, count in seen_ids.items():
        if card_id and count > 1:
            errors.append(f"Duplicate card_id {card_id} ({count} envelopes)")
    for (person_id, card_type), card_ids in primaries.items():
        if len(card_ids) > 1:
            errors.append(
                f"Multiple primary {card_type.value} envelopes for {person_id}: "
                + ", ".join(card_ids)
            )
            logger.info(
                "Person %s has %d primary %s envelopes", person_id, len(card_ids), card_type.value
            )

    return ValidationResult.from_errors(errors)


def _present(value) -> bool:
    if value is None:
        return False
    if isinstance(value, (str, list)):
        return bool(value)
    return True


def completeness_score(envelope: CardEnvelope) -> int:
    data = envelope.data
    if isinstance(data, IdentityData):
        fields = [
            data.given_name,
            data.family_name,
            data.display_name,
            data.date_of_birth,
            data.profile_photo,
            data.organization,
            data.job_title,
        ]
        return round(sum(_present(value) for value in fields) / len(fields) * 100)
    if isinstance(data, EmailData):
        required = [data.username, data.domain, data.full_address]
        present_required = sum(_present(value) for value in required)
        return round(present_required / len(required) * 80 + (20 if _present(data.labels) else 0))
    if isinstance(data, PhoneData):
        optional = [data.country_code, data.area_code, data.exchange, data.line_number, data.labels]
        present_optional = sum(_present(value) for value in optional)
        required = 70 if _present(data.full_number) else 0
        return round(required + present_optional / len(optional) * 30)
    if isinstance(data, AddressData):
        fields = [data.street_address, data.locality, data.region, data.postal_code, data.country]
        return round(sum(_present(value) for value in fields) / len(fields) * 100)
    return 0
