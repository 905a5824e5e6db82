from __future__ import annotations

import codecs
import logging
import quopri
import re
from typing import Dict, List, Optional

from .models import ParsedDocument, PropertyRecord, ValidationResult, unescape_text

logger = logging.getLogger(__name__)

BEGIN_MARKER = "BEGIN:VCARD"
END_MARKER = "END:VCARD"
DEFAULT_VERSION = "3.0"

_LINE_SPLIT = re.compile(r"\r\n|\r|\n")
_GROUP_PREFIX = re.compile(r"^([^.:;]+)\.(.*)$", re.DOTALL)
_SOFT_LINE_BREAK = re.compile(r"=\r?\n")


class VCardStructureError(ValueError):
    """Raised for malformed interchange text when strict parsing is requested."""


def split_blocks(
    text: str, strict: bool = False, diagnostics: Optional[List[str]] = None
) -> List[str]:
    """Cut ``text`` into BEGIN/END blocks.

    Structural problems raise in strict mode; otherwise they are logged and,
    when a ``diagnostics`` list is given, appended to it.
    """
    blocks: List[str] = []
    current: List[str] = []
    in_block = False
    for line in _LINE_SPLIT.split(text or ""):
        trimmed = line.strip()
        if trimmed.upper() == BEGIN_MARKER:
            if in_block:
                _structural_problem(
                    f"BEGIN:VCARD found inside an open block (block {len(blocks)} restarted)",
                    strict,
                    diagnostics,
                )
            in_block = True
            current = [line]
        elif trimmed.upper() == END_MARKER:
            if not in_block:
                continue
            current.append(line)
            blocks.append("\r\n".join(current))
            current = []
            in_block = False
        elif in_block:
            current.append(line)
    if in_block:
        _structural_problem("Unterminated vCard block dropped", strict, diagnostics)
    return blocks


def _structural_problem(message: str, strict: bool, diagnostics: Optional[List[str]]) -> None:
    if strict:
        raise VCardStructureError(message)
    logger.warning(message)
    if diagnostics is not None:
        diagnostics.append(message)


def _is_quoted_printable_soft_break(line: str) -> bool:
    if not line.endswith("="):
        return False
    head = line.split(":", 1)[0].upper()
    return "QUOTED-PRINTABLE" in head


def unfold_lines(text: str) -> List[str]:
    """Join continuation lines onto the logical line they belong to."""
    unfolded: List[str] = []
    current: Optional[str] = None
    for line in _LINE_SPLIT.split(text or ""):
        if current is not None and line[:1] in (" ", "\t"):
            current += line[1:]
        elif current is not None and line and _is_quoted_printable_soft_break(current):
            current += "\n" + line
        else:
            if current:
                unfolded.append(current)
            current = line
    if current:
        unfolded.append(current)
    return unfolded


def fold_line(line: str, width: int = 75) -> List[str]:
    if len(line) <= width:
        return [line]
    folded = [line[:width]]
    remaining = line[width:]
    chunk = width - 1
    while remaining:
        folded.append(" " + remaining[:chunk])
        remaining = remaining[chunk:]
    return folded


def _strip_quotes(value: str) -> str:
    if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
        return value[1:-1]
    return value


def _add_param(params: Dict[str, str], name: str, value: str) -> None:
    existing = params.get(name)
    if existing is None or existing == value:
        params[name] = value
    else:
        params[name] = f"{existing},{value}"


def parse_params(tokens: List[str]) -> Dict[str, str]:
    params: Dict[str, str] = {}
    for token in tokens:
        token = token.strip()
        if not token:
            continue
        if "=" not in token:
            _add_param(params, token.upper(), "true")
            continue
        key, raw_value = token.split("=", 1)
        name = key.strip().upper()
        raw_value = raw_value.strip()
        if raw_value.startswith('"'):
            _add_param(params, name, _strip_quotes(raw_value))
            continue
        kept: List[str] = []
        for piece in raw_value.split(","):
            if "=" in piece:
                # e.g. TYPE=WORK,PREF=1 carries a second parameter inside the value
                inner_key, inner_value = piece.split("=", 1)
                _add_param(params, inner_key.strip().upper(), _strip_quotes(inner_value.strip()))
            elif piece.strip():
                kept.append(piece.strip())
        if kept or name not in params:
            _add_param(params, name, ",".join(kept))
    return params


def _resolve_charset(charset: str) -> str:
    try:
        return codecs.lookup(charset).name
    except LookupError:
        logger.info("Unknown CHARSET %s, decoding as utf-8", charset)
        return "utf-8"


def decode_quoted_printable(value: str, charset: str = "utf-8") -> str:
    raw = _SOFT_LINE_BREAK.sub("", value).encode("utf-8")
    decoded = quopri.decodestring(raw)
    return decoded.decode(_resolve_charset(charset or "utf-8"), errors="replace")


def decode_value(value: str, params: Dict[str, str]) -> str:
    encoding = params.get("ENCODING", "").upper()
    if encoding == "QUOTED-PRINTABLE":
        return decode_quoted_printable(value, params.get("CHARSET", "utf-8"))
    if encoding in ("BASE64", "B"):
        return value
    return unescape_text(value)


def _find_unquoted(text: str, char: str) -> int:
    """Index of the first ``char`` outside double quotes and not backslash-escaped, or -1."""
    quoted = False
    idx = 0
    while idx < len(text):
        current = text[idx]
        if current == "\\":
            idx += 2
            continue
        if current == '"':
            quoted = not quoted
        elif current == char and not quoted:
            return idx
        idx += 1
    return -1


def _split_unquoted(text: str, separator: str) -> List[str]:
    parts: List[str] = []
    while True:
        cut = _find_unquoted(text, separator)
        if cut == -1:
            parts.append(text)
            return parts
        parts.append(text[:cut])
        text = text[cut + 1 :]


def parse_property(line: str) -> Optional[PropertyRecord]:
    """Parse one unfolded content line; returns None for BEGIN/END markers.

    Raises ``VCardStructureError`` when the line has no name/value separator.
    """
    upper = line.upper()
    if upper.startswith("BEGIN:") or upper.startswith("END:"):
        return None

    group: Optional[str] = None
    remainder = line
    match = _GROUP_PREFIX.match(line)
    if match:
        group, remainder = match.group(1), match.group(2)

    colon = _find_unquoted(remainder, ":")
    if colon == -1:
        raise VCardStructureError(f"Invalid property line (no colon): {line[:80]}")

    head = remainder[:colon]
    raw_value = remainder[colon + 1 :]
    tokens = _split_unquoted(head, ";")
    name = tokens[0].strip().upper()
    if not name:
        raise VCardStructureError(f"Invalid property line (empty name): {line[:80]}")
    params = parse_params(tokens[1:])
    return PropertyRecord(
        name=name,
        value=decode_value(raw_value, params),
        params=params,
        group=group,
        raw_value=raw_value,
    )


def parse(text: str, strict: bool = False) -> ParsedDocument:
    properties: List[PropertyRecord] = []
    diagnostics: List[str] = []
    version = DEFAULT_VERSION
    for line in unfold_lines(text):
        if not line.strip():
            continue
        try:
            prop = parse_property(line)
        except VCardStructureError as exc:
            if strict:
                raise
            diagnostics.append(str(exc))
            logger.info("Skipping malformed line: %s", exc)
            continue
        if prop is None:
            continue
        properties.append(prop)
        if prop.name == "VERSION" and prop.value.strip():
            version = prop.value.strip()
    return ParsedDocument(
        properties=tuple(properties),
        version=version,
        raw_text=text,
        diagnostics=tuple(diagnostics),
    )


def parse_many(
    text: str, strict: bool = False, diagnostics: Optional[List[str]] = None
) -> List[ParsedDocument]:
    """Parse every block; block-level problems go to ``diagnostics`` when one is passed."""
    documents: List[ParsedDocument] = []
    for idx, block in enumerate(split_blocks(text, strict=strict, diagnostics=diagnostics)):
        document = parse(block, strict=strict)
        if document.diagnostics:
            logger.info(
                "vCard block %d parsed with %d diagnostic(s)", idx, len(document.diagnostics)
            )
        documents.append(document)
    return documents


def validate_document(document: ParsedDocument) -> ValidationResult:
    errors: List[str] = []
    if document.get_property("VERSION") is None:
        errors.append("Missing required VERSION property")
    if document.get_property("FN") is None and document.get_property("N") is None:
        errors.append("Missing required FN or N property")
    return ValidationResult.from_errors(errors)

