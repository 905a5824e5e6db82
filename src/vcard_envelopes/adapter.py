from __future__ import annotations

import base64
import binascii
import logging
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence

from .common import deterministic_uuid
from .models import (
    ADDRESS_FIELDS,
    AddressData,
    CardEnvelope,
    CardType,
    DateOfBirth,
    EmailData,
    IdentityData,
    Organization,
    ParsedDocument,
    PhoneData,
    Precedence,
    ProfilePhoto,
    PropertyRecord,
    Provenance,
)
from .normalization import NormalizationSettings, normalize_envelope
from .parser import parse_many

logger = logging.getLogger(__name__)

DEFAULT_SOURCE = "vcf_import"
DEFAULT_CONFIDENCE = 0.9
DEFAULT_LABEL = "other"

# vCard 2.1 writes types as bare parameters (TEL;WORK;VOICE:...)
BARE_TYPE_FLAGS = {
    "home",
    "work",
    "cell",
    "voice",
    "fax",
    "pager",
    "msg",
    "internet",
    "x400",
    "dom",
    "intl",
    "postal",
    "parcel",
    "video",
    "bbs",
    "modem",
    "car",
    "isdn",
    "pcs",
    "iphone",
    "main",
    "other",
}
FALSE_FLAGS = {"", "0", "false", "no"}

BDAY_PATTERN = re.compile(r"^(\d{4})(?:-?(\d{2}))?(?:-?(\d{2}))?")
APPLE_LABEL_PATTERN = re.compile(r"^_\$!<(.*)>!\$_$")


@dataclass(frozen=True)
class AdapterOptions:
    owner_id: Optional[str] = None
    person_id: Optional[str] = None
    source: str = DEFAULT_SOURCE
    confidence: Optional[float] = None
    imported_at: Optional[str] = None


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def _split_list(values: Sequence[str]) -> Optional[List[str]]:
    items = [item.strip() for item in values if item.strip()]
    return items or None


def derive_person_id(document: ParsedDocument, explicit: Optional[str] = None) -> str:
    if explicit:
        return explicit
    uid = document.get_property("UID")
    if uid is not None and uid.value.strip():
        return uid.value.strip()
    fn = document.get_property("FN")
    name_key = fn.value.strip() if fn is not None else ""
    if not name_key:
        n = document.get_property("N")
        name_key = ";".join(part.strip() for part in n.components(";")) if n is not None else ""
    if name_key.strip(";"):
        return f"person-{deterministic_uuid(name_key)}"
    fallback = f"person-{uuid.uuid4()}"
    logger.debug("No UID or name information, using random person id %s", fallback)
    return fallback


def _is_truthy_flag(value: Optional[str]) -> bool:
    return value is not None and value.strip().lower() not in FALSE_FLAGS


def _type_tokens(prop: PropertyRecord) -> List[str]:
    tokens = [token.lower() for token in prop.param_tokens("TYPE")]
    for name, value in prop.params.items():
        if value == "true" and name.lower() in BARE_TYPE_FLAGS:
            tokens.append(name.lower())
    return tokens


def _declares_preference(prop: PropertyRecord) -> bool:
    if "PREF" in prop.params:
        return _is_truthy_flag(prop.params["PREF"])
    return "pref" in _type_tokens(prop)


def _apple_label(document: ParsedDocument, prop: PropertyRecord) -> Optional[str]:
    if not prop.group:
        return None
    for sibling in document.get_group(prop.group):
        if sibling.name == "X-ABLABEL" and sibling.value.strip():
            raw = sibling.value.strip()
            match = APPLE_LABEL_PATTERN.match(raw)
            return (match.group(1) if match else raw).strip().lower() or None
    return None


def extract_labels(document: ParsedDocument, prop: PropertyRecord) -> List[str]:
    labels = _type_tokens(prop)
    custom = _apple_label(document, prop)
    if custom and custom not in labels:
        labels.append(custom)
    return labels or [DEFAULT_LABEL]


def _primary_flags(props: Sequence[PropertyRecord]) -> List[bool]:
    declared = ["PREF" in prop.params or "pref" in _type_tokens(prop) for prop in props]
    if any(declared):
        return [_declares_preference(prop) for prop in props]
    return [idx == 0 for idx in range(len(props))]


def parse_birth_date(value: str) -> Optional[DateOfBirth]:
    match = BDAY_PATTERN.match((value or "").strip())
    if not match:
        return None
    return DateOfBirth(
        year=int(match.group(1)),
        month=int(match.group(2)) if match.group(2) else None,
        day=int(match.group(3)) if match.group(3) else None,
    )


def _mime_type(prop: PropertyRecord) -> str:
    raw = (prop.param_tokens("TYPE") or ["image/jpeg"])[0]
    if "/" in raw:
        return raw.lower()
    return f"image/{raw.lower()}"


def parse_photo(prop: PropertyRecord) -> Optional[ProfilePhoto]:
    value_type = prop.params.get("VALUE", "").lower()
    value = prop.value.strip()
    if not value:
        return None
    if prop.encoding in ("BASE64", "B"):
        payload = re.sub(r"\s+", "", value)
        try:
            base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError):
            logger.info("Dropping PHOTO with undecodable base64 payload")
            return None
        return ProfilePhoto(data=payload, mime_type=_mime_type(prop))
    if value_type == "uri" or re.match(r"^(https?|data|file):", value, re.IGNORECASE):
        return ProfilePhoto(url=value, mime_type=_mime_type(prop))
    return None


def parse_organization(prop: PropertyRecord) -> Optional[Organization]:
    parts = [_clean(part) for part in prop.components(";")[:3]]
    parts += [None] * (3 - len(parts))
    if not any(parts):
        return None
    return Organization(name=parts[0], department=parts[1], division=parts[2])


def decompose_phone(full_number: str) -> dict:
    digits = re.sub(r"\D", "", full_number or "")
    if len(digits) == 11 and digits.startswith("1"):
        digits = digits[1:]
    elif len(digits) != 10:
        return {}
    return {
        "country_code": "1",
        "area_code": digits[:3],
        "exchange": digits[3:6],
        "line_number": digits[6:],
    }


class EnvelopeAdapter:
    def __init__(self, document: ParsedDocument, options: Optional[AdapterOptions] = None):
        self.document = document
        self.options = options or AdapterOptions()
        self.person_id = derive_person_id(document, self.options.person_id)
        self.imported_at = self.options.imported_at or datetime.now(timezone.utc).isoformat()
        uid = document.get_property("UID")
        self.source_id = uid.value.strip() if uid is not None and uid.value.strip() else None

    def _provenance(self) -> Provenance:
        confidence = self.options.confidence
        return Provenance(
            source=self.options.source or DEFAULT_SOURCE,
            confidence=DEFAULT_CONFIDENCE if confidence is None else confidence,
            precedence=Precedence.IMPORTED.value,
            imported_at=self.imported_at,
            source_id=self.source_id,
        )

    def _envelope(self, card_id: str, card_type: CardType, data) -> CardEnvelope:
        return CardEnvelope(
            card_id=card_id,
            person_id=self.person_id,
            card_type=card_type,
            data=data,
            provenance=self._provenance(),
            owner_user_id=self.options.owner_id,
        )

    def identity(self) -> Optional[CardEnvelope]:
        n = self.document.structured_name()
        n_prop = self.document.get_property("N")
        fn = self.document.get_property("FN")
        if n is None and fn is None:
            return None

        nickname = self.document.get_property("NICKNAME")
        bday = self.document.get_property("BDAY")
        photo = self.document.get_property("PHOTO")
        org = self.document.get_property("ORG")
        title = self.document.get_property("TITLE")

        data = IdentityData(
            given_name=_clean(n.given_name) if n else None,
            family_name=_clean(n.family_name) if n else None,
            middle_names=_split_list(n_prop.list_component(2)) if n_prop else None,
            honorific_prefix=_clean(n.honorific_prefixes) if n else None,
            honorific_suffix=_clean(n.honorific_suffixes) if n else None,
            display_name=_clean(fn.value) if fn else None,
            nicknames=_split_list(nickname.components(",")) if nickname else None,
            date_of_birth=parse_birth_date(bday.value) if bday else None,
            profile_photo=parse_photo(photo) if photo else None,
            organization=parse_organization(org) if org else None,
            job_title=_clean(title.value) if title else None,
        )
        return self._envelope(f"{self.person_id}-identity", CardType.PERSONAL_IDENTITY, data)

    def _facet(
        self,
        property_name: str,
        card_type: CardType,
        facet: str,
        build: Callable[[PropertyRecord, List[str], bool], Optional[object]],
    ) -> List[CardEnvelope]:
        props = self.document.get_properties(property_name)
        primaries = _primary_flags(props)
        envelopes: List[CardEnvelope] = []
        for idx, prop in enumerate(props):
            data = build(prop, extract_labels(self.document, prop), primaries[idx])
            if data is None:
                logger.debug("Skipping %s occurrence %d for %s", facet, idx, self.person_id)
                continue
            envelopes.append(self._envelope(f"{self.person_id}-{facet}-{idx}", card_type, data))
        return envelopes

    @staticmethod
    def _email(prop: PropertyRecord, labels: List[str], is_primary: bool) -> Optional[EmailData]:
        value = prop.value.strip()
        if "@" not in value:
            return None
        username, domain = value.split("@", 1)
        if not username or not domain:
            return None
        return EmailData(
            full_address=value,
            username=username,
            domain=domain,
            labels=labels,
            is_primary=is_primary,
        )

    @staticmethod
    def _phone(prop: PropertyRecord, labels: List[str], is_primary: bool) -> Optional[PhoneData]:
        value = prop.value.strip()
        if not value:
            return None
        return PhoneData(
            full_number=value,
            labels=labels,
            is_primary=is_primary,
            **decompose_phone(value),
        )

    @staticmethod
    def _address(
        prop: PropertyRecord, labels: List[str], is_primary: bool
    ) -> Optional[AddressData]:
        parts = prop.components(";")
        values = {
            attr: _clean(parts[idx]) if idx < len(parts) else None
            for idx, (attr, _) in enumerate(ADDRESS_FIELDS)
        }
        return AddressData(labels=labels, is_primary=is_primary, **values)

    def envelopes(self) -> List[CardEnvelope]:
        results: List[CardEnvelope] = []
        identity = self.identity()
        if identity is not None:
            results.append(identity)
        results.extend(self._facet("EMAIL", CardType.EMAIL, "email", self._email))
        results.extend(self._facet("TEL", CardType.PHONE, "phone", self._phone))
        results.extend(self._facet("ADR", CardType.ADDRESS, "address", self._address))
        return results


def to_envelopes(
    document: ParsedDocument, options: Optional[AdapterOptions] = None
) -> List[CardEnvelope]:
    return EnvelopeAdapter(document, options).envelopes()


def import_vcards(
    text: str,
    options: Optional[AdapterOptions] = None,
    strict: bool = False,
    normalize: bool = True,
    settings: Optional[NormalizationSettings] = None,
    diagnostics: Optional[List[str]] = None,
) -> List[CardEnvelope]:
    envelopes: List[CardEnvelope] = []
    for document in parse_many(text, strict=strict, diagnostics=diagnostics):
        if diagnostics is not None:
            diagnostics.extend(document.diagnostics)
        adapted = to_envelopes(document, options)
        if normalize:
            adapted = [normalize_envelope(envelope, settings) for envelope in adapted]
        envelopes.extend(adapted)
    logger.info("Imported %d envelope(s)", len(envelopes))
    return envelopes
