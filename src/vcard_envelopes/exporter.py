from __future__ import annotations

import logging
import re
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence, Union

from .models import (
    AddressData,
    CardEnvelope,
    CardType,
    EmailData,
    IdentityData,
    PhoneData,
)
from .parser import fold_line

logger = logging.getLogger(__name__)

CRLF = "\r\n"
FOLD_WIDTH = 75
DEFAULT_VERSION = "3.0"
VCARD_MEDIA_TYPE = "text/vcard;charset=utf-8"

LABEL_TO_TYPE = {
    "mobile": "CELL",
    "phone": "VOICE",
    "messaging": "MSG",
    "primary": "PREF",
}


@dataclass(frozen=True)
class ExportOptions:
    version: str = DEFAULT_VERSION
    include_photo: bool = True
    fold_lines: bool = True
    revision: Optional[datetime] = None


def escape_text(value: str) -> str:
    # a raw CR would end the content line, so every line break is written as \n
    return (
        (value or "")
        .replace("\r\n", "\n")
        .replace("\r", "\n")
        .replace("\\", "\\\\")
        .replace(";", "\\;")
        .replace(",", "\\,")
        .replace("\n", "\\n")
    )


def _structured(components: Sequence[Optional[str]], separator: str = ";") -> str:
    return separator.join(escape_text(component or "") for component in components)


def _type_param(labels: Sequence[str]) -> Optional[str]:
    cleaned = [label.strip().lower() for label in labels if label and label.strip()]
    if not cleaned or cleaned == ["other"]:
        return None
    types: List[str] = []
    for label in cleaned:
        token = LABEL_TO_TYPE.get(label, label.upper())
        if token not in types:
            types.append(token)
    return "TYPE=" + ",".join(types)


def _content_line(name: str, params: Sequence[str], value: str) -> str:
    head = ";".join([name, *[param for param in params if param]])
    return f"{head}:{value}"


def _identity_lines(data: IdentityData, options: ExportOptions) -> List[str]:
    lines: List[str] = []
    display_name = data.display_name or " ".join(
        part for part in (data.given_name, data.family_name) if part
    )
    if display_name:
        lines.append(_content_line("FN", [], escape_text(display_name)))

    if data.family_name or data.given_name:
        n_value = ";".join(
            [
                escape_text(data.family_name or ""),
                escape_text(data.given_name or ""),
                _structured(data.middle_names or [], ","),
                escape_text(data.honorific_prefix or ""),
                escape_text(data.honorific_suffix or ""),
            ]
        )
        lines.append(_content_line("N", [], n_value))

    if data.nicknames:
        lines.append(_content_line("NICKNAME", [], _structured(data.nicknames, ",")))

    dob = data.date_of_birth
    if dob is not None and dob.year is not None:
        bday = f"{dob.year:04d}"
        if dob.month:
            bday += f"-{dob.month:02d}"
            if dob.day:
                bday += f"-{dob.day:02d}"
        lines.append(_content_line("BDAY", [], bday))

    photo = data.profile_photo
    if photo is not None and options.include_photo:
        if photo.url:
            lines.append(_content_line("PHOTO", ["VALUE=URI"], escape_text(photo.url)))
        elif photo.data:
            subtype = (photo.mime_type or "image/jpeg").split("/")[-1].upper()
            lines.append(_content_line("PHOTO", ["ENCODING=b", f"TYPE={subtype}"], photo.data))

    org = data.organization
    if org is not None and any((org.name, org.department, org.division)):
        parts = [org.name or "", org.department or "", org.division or ""]
        while len(parts) > 1 and not parts[-1]:
            parts.pop()
        lines.append(_content_line("ORG", [], _structured(parts)))

    if data.job_title:
        lines.append(_content_line("TITLE", [], escape_text(data.job_title)))
    return lines


def _pref_param(is_primary: bool) -> Optional[str]:
    return "PREF=1" if is_primary else None


def _email_line(data: EmailData) -> Optional[str]:
    if not data.full_address:
        return None
    params = [_type_param(data.labels), _pref_param(data.is_primary)]
    return _content_line("EMAIL", params, escape_text(data.full_address))


def _phone_line(data: PhoneData) -> Optional[str]:
    if not data.full_number:
        return None
    params = [_type_param(data.labels), _pref_param(data.is_primary)]
    return _content_line("TEL", params, escape_text(data.full_number))


def _address_line(data: AddressData) -> str:
    params = [_type_param(data.labels), _pref_param(data.is_primary)]
    return _content_line("ADR", params, _structured(data.components()))


def _revision(options: ExportOptions) -> str:
    stamp = options.revision or datetime.now(timezone.utc)
    if stamp.tzinfo is not None:
        stamp = stamp.astimezone(timezone.utc)
    return stamp.strftime("%Y-%m-%dT%H:%M:%SZ")


def group_by_person(envelopes: Iterable[CardEnvelope]) -> List[List[CardEnvelope]]:
    groups: "OrderedDict[str, List[CardEnvelope]]" = OrderedDict()
    for envelope in envelopes:
        groups.setdefault(envelope.person_id, []).append(envelope)
    return list(groups.values())


def to_vcard_text(
    envelopes: Sequence[CardEnvelope], options: Optional[ExportOptions] = None
) -> str:
    """Serialize one person's envelopes into a single vCard block.

    Only the first ``person_id`` present is exported; use ``export_vcards`` for
    mixed input.
    """
    options = options or ExportOptions()
    if not envelopes:
        return ""
    person_id = envelopes[0].person_id
    person_envelopes = [envelope for envelope in envelopes if envelope.person_id == person_id]
    if len(person_envelopes) != len(envelopes):
        logger.debug(
            "Ignoring %d envelope(s) not belonging to %s",
            len(envelopes) - len(person_envelopes),
            person_id,
        )

    lines = ["BEGIN:VCARD", f"VERSION:{options.version or DEFAULT_VERSION}"]

    identity = next(
        (
            envelope
            for envelope in person_envelopes
            if envelope.card_type is CardType.PERSONAL_IDENTITY
            and isinstance(envelope.data, IdentityData)
        ),
        None,
    )
    if identity is not None:
        lines.extend(_identity_lines(identity.data, options))  # type: ignore[arg-type]

    for card_type, data_type, render in (
        (CardType.EMAIL, EmailData, _email_line),
        (CardType.PHONE, PhoneData, _phone_line),
        (CardType.ADDRESS, AddressData, _address_line),
    ):
        for envelope in person_envelopes:
            if envelope.card_type is card_type and isinstance(envelope.data, data_type):
                line = render(envelope.data)  # type: ignore[operator]
                if line:
                    lines.append(line)

    lines.append(f"REV:{_revision(options)}")
    lines.append("END:VCARD")

    if options.fold_lines:
        physical: List[str] = []
        for line in lines:
            physical.extend(fold_line(line, FOLD_WIDTH))
        lines = physical
    return "".join(line + CRLF for line in lines)


def export_vcards(
    envelopes: Union[Sequence[CardEnvelope], Sequence[Sequence[CardEnvelope]]],
    options: Optional[ExportOptions] = None,
) -> str:
    """Export many people: accepts a flat envelope list or pre-grouped lists."""
    if not envelopes:
        return ""
    if isinstance(envelopes[0], CardEnvelope):
        groups = group_by_person(envelopes)  # type: ignore[arg-type]
    else:
        groups = [list(group) for group in envelopes]  # type: ignore[arg-type]
    blocks = [to_vcard_text(group, options) for group in groups if group]
    logger.info("Exported %d vCard block(s)", len(blocks))
    return "".join(blocks)


def export_filename(envelopes: Sequence[CardEnvelope]) -> str:
    """Suggest a ``.vcf`` file name from the identity display name, if any."""
    for envelope in envelopes:
        data = envelope.data
        if isinstance(data, IdentityData):
            name = data.display_name or " ".join(
                part for part in (data.given_name, data.family_name) if part
            )
            slug = re.sub(r"[^A-Za-z0-9]+", "_", name).strip("_").lower()
            if slug:
                return f"{slug}.vcf"
    return "contact.vcf"
