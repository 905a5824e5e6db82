from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

ENVELOPE_VERSION = "1.0.0"

_ESCAPE_SEQUENCE = re.compile(r"\\(.)", re.DOTALL)


def unescape_text(value: str) -> str:
    """Undo vCard text escaping (``\\n``, ``\\,``, ``\\;``, ``\\\\``) in one pass."""
    if not value or "\\" not in value:
        return value or ""

    def _replace(match: "re.Match[str]") -> str:
        char = match.group(1)
        if char in ("n", "N"):
            return "\n"
        return char

    return _ESCAPE_SEQUENCE.sub(_replace, value)


def split_unescaped(value: str, separator: str) -> List[str]:
    """Split raw vCard text on ``separator`` characters not preceded by a backslash escape."""
    parts: List[str] = []
    current: List[str] = []
    idx = 0
    while idx < len(value):
        char = value[idx]
        if char == "\\" and idx + 1 < len(value):
            current.append(value[idx : idx + 2])
            idx += 2
            continue
        if char == separator:
            parts.append("".join(current))
            current = []
        else:
            current.append(char)
        idx += 1
    parts.append("".join(current))
    return parts


class CardType(str, Enum):
    PERSONAL_IDENTITY = "personal_identity"
    EMAIL = "email"
    PHONE = "phone"
    ADDRESS = "address"


class Precedence(str, Enum):
    USER_INPUT = "user_input"
    IMPORTED = "imported"
    INFERRED = "inferred"
    DERIVED = "derived"


PRECEDENCE_VALUES = tuple(item.value for item in Precedence)


@dataclass(frozen=True)
class PropertyRecord:
    name: str
    value: str
    params: Dict[str, str] = field(default_factory=dict)
    group: Optional[str] = None
    raw_value: str = ""

    @property
    def encoding(self) -> str:
        return self.params.get("ENCODING", "").upper()

    def param_tokens(self, name: str) -> List[str]:
        raw = self.params.get(name.upper(), "")
        return [token.strip() for token in raw.split(",") if token.strip()]

    def components(self, separator: str = ";") -> List[str]:
        """Split a structured value, honouring escaped separators when the value was text-escaped."""
        if self.encoding in ("QUOTED-PRINTABLE", "BASE64", "B"):
            return self.value.split(separator)
        return [unescape_text(part) for part in split_unescaped(self.raw_value, separator)]

    def list_component(self, index: int, separator: str = ";", inner: str = ",") -> List[str]:
        """Values of one structured component that is itself a list (``N`` additional names)."""
        if self.encoding in ("QUOTED-PRINTABLE", "BASE64", "B"):
            parts = self.value.split(separator)
            return parts[index].split(inner) if index < len(parts) else []
        raw_parts = split_unescaped(self.raw_value, separator)
        if index >= len(raw_parts):
            return []
        return [unescape_text(part) for part in split_unescaped(raw_parts[index], inner)]


@dataclass(frozen=True)
class StructuredName:
    family_name: Optional[str] = None
    given_name: Optional[str] = None
    additional_names: Optional[str] = None
    honorific_prefixes: Optional[str] = None
    honorific_suffixes: Optional[str] = None


def _component(parts: List[str], index: int) -> Optional[str]:
    return parts[index] if len(parts) > index else None


@dataclass(frozen=True)
class ParsedDocument:
    properties: Tuple[PropertyRecord, ...] = ()
    version: str = "3.0"
    raw_text: str = ""
    diagnostics: Tuple[str, ...] = ()

    def get_properties(self, name: str) -> List[PropertyRecord]:
        wanted = name.upper()
        return [prop for prop in self.properties if prop.name == wanted]

    def get_property(self, name: str) -> Optional[PropertyRecord]:
        wanted = name.upper()
        return next((prop for prop in self.properties if prop.name == wanted), None)

    def get_group(self, group: str) -> List[PropertyRecord]:
        return [prop for prop in self.properties if prop.group == group]

    def structured_name(self) -> Optional[StructuredName]:
        prop = self.get_property("N")
        if prop is None:
            return None
        parts = prop.components(";")
        return StructuredName(
            family_name=_component(parts, 0),
            given_name=_component(parts, 1),
            additional_names=_component(parts, 2),
            honorific_prefixes=_component(parts, 3),
            honorific_suffixes=_component(parts, 4),
        )


def _opt_str(payload: Dict[str, Any], key: str) -> Optional[str]:
    value = payload.get(key)
    if value is None:
        return None
    return str(value)


def _opt_int(payload: Dict[str, Any], key: str) -> Optional[int]:
    value = payload.get(key)
    if value is None or value == "":
        return None
    return int(value)


def _str_list(value: Any) -> Optional[List[str]]:
    if value is None:
        return None
    if isinstance(value, str):
        return [value]
    return [str(item) for item in value]


def _labels(payload: Dict[str, Any]) -> List[str]:
    return _str_list(payload.get("labels")) or []


def _compact(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in payload.items() if value is not None}


@dataclass(frozen=True)
class DateOfBirth:
    year: Optional[int] = None
    month: Optional[int] = None
    day: Optional[int] = None

    @staticmethod
    def from_mapping(payload: Dict[str, Any]) -> "DateOfBirth":
        return DateOfBirth(
            year=_opt_int(payload, "year"),
            month=_opt_int(payload, "month"),
            day=_opt_int(payload, "day"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return _compact({"year": self.year, "month": self.month, "day": self.day})


@dataclass(frozen=True)
class ProfilePhoto:
    url: Optional[str] = None
    data: Optional[str] = None
    mime_type: str = "image/jpeg"

    @staticmethod
    def from_mapping(payload: Dict[str, Any]) -> "ProfilePhoto":
        return ProfilePhoto(
            url=_opt_str(payload, "url"),
            data=_opt_str(payload, "data"),
            mime_type=str(payload.get("mimeType") or "image/jpeg"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return _compact({"url": self.url, "data": self.data, "mimeType": self.mime_type})


@dataclass(frozen=True)
class Organization:
    name: Optional[str] = None
    department: Optional[str] = None
    division: Optional[str] = None

    @staticmethod
    def from_mapping(payload: Dict[str, Any]) -> "Organization":
        return Organization(
            name=_opt_str(payload, "name"),
            department=_opt_str(payload, "department"),
            division=_opt_str(payload, "division"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return _compact(
            {"name": self.name, "department": self.department, "division": self.division}
        )


@dataclass(frozen=True)
class IdentityData:
    given_name: Optional[str] = None
    family_name: Optional[str] = None
    middle_names: Optional[List[str]] = None
    honorific_prefix: Optional[str] = None
    honorific_suffix: Optional[str] = None
    display_name: Optional[str] = None
    nicknames: Optional[List[str]] = None
    date_of_birth: Optional[DateOfBirth] = None
    profile_photo: Optional[ProfilePhoto] = None
    organization: Optional[Organization] = None
    job_title: Optional[str] = None

    @staticmethod
    def from_mapping(payload: Dict[str, Any]) -> "IdentityData":
        dob = payload.get("dateOfBirth")
        photo = payload.get("profilePhoto")
        org = payload.get("organization")
        return IdentityData(
            given_name=_opt_str(payload, "givenName"),
            family_name=_opt_str(payload, "familyName"),
            middle_names=_str_list(payload.get("middleNames")),
            honorific_prefix=_opt_str(payload, "honorificPrefix"),
            honorific_suffix=_opt_str(payload, "honorificSuffix"),
            display_name=_opt_str(payload, "displayName"),
            nicknames=_str_list(payload.get("nicknames")),
            date_of_birth=DateOfBirth.from_mapping(dob) if isinstance(dob, dict) else None,
            profile_photo=ProfilePhoto.from_mapping(photo) if isinstance(photo, dict) else None,
            organization=Organization.from_mapping(org) if isinstance(org, dict) else None,
            job_title=_opt_str(payload, "jobTitle"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return _compact(
            {
                "givenName": self.given_name,
                "familyName": self.family_name,
                "middleNames": list(self.middle_names) if self.middle_names is not None else None,
                "honorificPrefix": self.honorific_prefix,
                "honorificSuffix": self.honorific_suffix,
                "displayName": self.display_name,
                "nicknames": list(self.nicknames) if self.nicknames is not None else None,
                "dateOfBirth": self.date_of_birth.to_dict() if self.date_of_birth else None,
                "profilePhoto": self.profile_photo.to_dict() if self.profile_photo else None,
                "organization": self.organization.to_dict() if self.organization else None,
                "jobTitle": self.job_title,
            }
        )


@dataclass(frozen=True)
class EmailData:
    full_address: str = ""
    username: str = ""
    domain: str = ""
    labels: List[str] = field(default_factory=lambda: ["other"])
    is_primary: bool = False

    @staticmethod
    def from_mapping(payload: Dict[str, Any]) -> "EmailData":
        return EmailData(
            full_address=str(payload.get("fullAddress", "") or ""),
            username=str(payload.get("username", "") or ""),
            domain=str(payload.get("domain", "") or ""),
            labels=_labels(payload),
            is_primary=bool(payload.get("isPrimary", False)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "username": self.username,
            "domain": self.domain,
            "fullAddress": self.full_address,
            "labels": list(self.labels),
            "isPrimary": self.is_primary,
        }


@dataclass(frozen=True)
class PhoneData:
    full_number: str = ""
    country_code: Optional[str] = None
    area_code: Optional[str] = None
    exchange: Optional[str] = None
    line_number: Optional[str] = None
    e164: Optional[str] = None
    labels: List[str] = field(default_factory=lambda: ["other"])
    is_primary: bool = False

    @staticmethod
    def from_mapping(payload: Dict[str, Any]) -> "PhoneData":
        return PhoneData(
            full_number=str(payload.get("fullNumber", "") or ""),
            country_code=_opt_str(payload, "countryCode"),
            area_code=_opt_str(payload, "areaCode"),
            exchange=_opt_str(payload, "exchange"),
            line_number=_opt_str(payload, "lineNumber"),
            e164=_opt_str(payload, "e164"),
            labels=_labels(payload),
            is_primary=bool(payload.get("isPrimary", False)),
        )

    def to_dict(self) -> Dict[str, Any]:
        payload = _compact(
            {
                "fullNumber": self.full_number,
                "countryCode": self.country_code,
                "areaCode": self.area_code,
                "exchange": self.exchange,
                "lineNumber": self.line_number,
                "e164": self.e164,
            }
        )
        payload["labels"] = list(self.labels)
        payload["isPrimary"] = self.is_primary
        return payload


ADDRESS_FIELDS = (
    ("po_box", "poBox"),
    ("extended_address", "extendedAddress"),
    ("street_address", "streetAddress"),
    ("locality", "locality"),
    ("region", "region"),
    ("postal_code", "postalCode"),
    ("country", "country"),
)


@dataclass(frozen=True)
class AddressData:
    po_box: Optional[str] = None
    extended_address: Optional[str] = None
    street_address: Optional[str] = None
    locality: Optional[str] = None
    region: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None
    labels: List[str] = field(default_factory=lambda: ["other"])
    is_primary: bool = False

    @staticmethod
    def from_mapping(payload: Dict[str, Any]) -> "AddressData":
        values = {attr: _opt_str(payload, key) for attr, key in ADDRESS_FIELDS}
        return AddressData(
            labels=_labels(payload),
            is_primary=bool(payload.get("isPrimary", False)),
            **values,
        )

    def components(self) -> List[str]:
        return [getattr(self, attr) or "" for attr, _ in ADDRESS_FIELDS]

    def to_dict(self) -> Dict[str, Any]:
        payload = _compact({key: getattr(self, attr) for attr, key in ADDRESS_FIELDS})
        payload["labels"] = list(self.labels)
        payload["isPrimary"] = self.is_primary
        return payload


CardData = Union[IdentityData, EmailData, PhoneData, AddressData]

DATA_TYPES = {
    CardType.PERSONAL_IDENTITY: IdentityData,
    CardType.EMAIL: EmailData,
    CardType.PHONE: PhoneData,
    CardType.ADDRESS: AddressData,
}


@dataclass(frozen=True)
class Provenance:
    source: str = "vcf_import"
    confidence: float = 0.9
    precedence: str = Precedence.IMPORTED.value
    imported_at: Optional[str] = None
    source_id: Optional[str] = None

    @staticmethod
    def from_mapping(payload: Dict[str, Any]) -> "Provenance":
        return Provenance(
            source=str(payload.get("source", "") or ""),
            confidence=payload.get("confidence"),  # type: ignore[arg-type]
            precedence=str(payload.get("precedence", "") or ""),
            imported_at=_opt_str(payload, "importedAt") or _opt_str(payload, "imported_at"),
            source_id=_opt_str(payload, "sourceId") or _opt_str(payload, "source_id"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return _compact(
            {
                "source": self.source,
                "confidence": self.confidence,
                "precedence": self.precedence,
                "importedAt": self.imported_at,
                "sourceId": self.source_id,
            }
        )


@dataclass(frozen=True)
class CardEnvelope:
    card_id: str
    person_id: str
    card_type: CardType
    data: CardData
    provenance: Provenance = field(default_factory=Provenance)
    version: str = ENVELOPE_VERSION
    owner_user_id: Optional[str] = None
    verification: Optional[Dict[str, Any]] = None
    consent: Optional[Dict[str, Any]] = None
    field_policies: Optional[List[Dict[str, Any]]] = None

    @classmethod
    def from_mapping(cls, payload: Dict[str, Any]) -> "CardEnvelope":
        if not isinstance(payload, dict):
            raise ValueError(f"Envelope payload must be a mapping, got {type(payload)!r}")
        raw_type = str(payload.get("card_type", "") or "")
        try:
            card_type = CardType(raw_type)
        except ValueError:
            raise ValueError(f"Unsupported card_type: {raw_type!r}") from None
        data_payload = payload.get("data") or {}
        provenance_payload = payload.get("provenance") or {}
        return cls(
            card_id=str(payload.get("card_id", "") or ""),
            person_id=str(payload.get("person_id", "") or ""),
            card_type=card_type,
            data=DATA_TYPES[card_type].from_mapping(data_payload),
            provenance=Provenance.from_mapping(provenance_payload),
            version=str(payload.get("version", "") or ""),
            owner_user_id=_opt_str(payload, "owner_user_id"),
            verification=payload.get("verification"),
            consent=payload.get("consent"),
            field_policies=payload.get("fieldPolicies"),
        )

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "card_id": self.card_id,
            "person_id": self.person_id,
            "card_type": self.card_type.value,
            "data": self.data.to_dict(),
            "provenance": self.provenance.to_dict(),
            "version": self.version,
        }
        if self.owner_user_id is not None:
            payload["owner_user_id"] = self.owner_user_id
        if self.verification is not None:
            payload["verification"] = self.verification
        if self.consent is not None:
            payload["consent"] = self.consent
        if self.field_policies is not None:
            payload["fieldPolicies"] = self.field_policies
        return payload

    def replace(self, **changes: Any) -> "CardEnvelope":
        return replace(self, **changes)


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    errors: List[str] = field(default_factory=list)

    @classmethod
    def from_errors(cls, errors: List[str]) -> "ValidationResult":
        return cls(valid=not errors, errors=list(errors))

    def to_dict(self) -> Dict[str, Any]:
        return {"valid": self.valid, "errors": list(self.errors)}
