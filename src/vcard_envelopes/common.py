from __future__ import annotations

import json
import logging
import os
import uuid
from typing import Any, Dict, List, Optional

from .config_loader import PipelineConfig, load_pipeline_config
from .models import CardEnvelope

logger = logging.getLogger(__name__)

PERSON_NAMESPACE = uuid.UUID("6f1c2a52-8d0e-5b7c-9a41-0c7d3e5f2b18")


def deterministic_uuid(namespace_str: str) -> str:
    return str(uuid.uuid5(PERSON_NAMESPACE, namespace_str))


def load_config(args: Any) -> PipelineConfig:
    return load_pipeline_config(args)


def warn_missing(path: Optional[str], label: str) -> bool:
    if not path or not os.path.exists(path):
        logger.warning("%s path missing: %s", label, path)
        return True
    return False


def ensure_card_envelope(obj: Any) -> CardEnvelope:
    if isinstance(obj, CardEnvelope):
        return obj
    if isinstance(obj, dict):
        return CardEnvelope.from_mapping(obj)
    raise TypeError(f"Unsupported envelope payload type: {type(obj)!r}")


def read_envelopes_json(path: str) -> List[CardEnvelope]:
    """Load envelopes from a JSON array file; unsupported entries are skipped with a warning."""
    with open(path, "r", encoding="utf-8") as handle:
        payload = json.load(handle)
    if isinstance(payload, dict):
        payload = payload.get("envelopes", [])
    envelopes: List[CardEnvelope] = []
    for idx, entry in enumerate(payload):
        try:
            envelopes.append(ensure_card_envelope(entry))
        except (TypeError, ValueError) as exc:
            logger.warning("Skipping envelope %d in %s: %s", idx, path, exc)
    return envelopes


def write_envelopes_json(path: str, envelopes: List[CardEnvelope]) -> None:
    rows: List[Dict[str, Any]] = [envelope.to_dict() for envelope in envelopes]
    with open(path, "w", encoding="utf-8") as handle:
        json.dump(rows, handle, ensure_ascii=False, indent=2)
