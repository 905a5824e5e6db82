import argparse
import csv
import logging
from typing import Any, Dict, Iterable, List, Optional

import pandas as pd

from .common import load_config, read_envelopes_json, warn_missing
from .config_loader import PipelineConfig
from .logging_utils import configure_logging
from .models import CardEnvelope, CardType
from .validation import ValidationSettings, completeness_score, validate_envelope

logger = logging.getLogger(__name__)

REPORT_COLUMNS = [
    "card_id",
    "person_id",
    "card_type",
    "valid",
    "error_count",
    "errors",
    "completeness",
    "is_primary",
    "labels",
]


def pct(n, d):
    return round((n / d * 100.0), 2) if d else 0.0


def build_quality_frame(
    envelopes: Iterable[CardEnvelope], settings: Optional[ValidationSettings] = None
) -> pd.DataFrame:
    records: List[Dict[str, Any]] = []
    for envelope in envelopes:
        result = validate_envelope(envelope, settings)
        records.append(
            {
                "card_id": envelope.card_id,
                "person_id": envelope.person_id,
                "card_type": envelope.card_type.value,
                "valid": result.valid,
                "error_count": len(result.errors),
                "errors": "|".join(result.errors),
                "completeness": completeness_score(envelope),
                "is_primary": bool(getattr(envelope.data, "is_primary", False)),
                "labels": "|".join(getattr(envelope.data, "labels", []) or []),
            }
        )
    return pd.DataFrame(records, columns=REPORT_COLUMNS)


def summarize(frame: pd.DataFrame) -> Dict[str, Any]:
    """Per-card-type counts, valid percentages and mean completeness."""
    total = len(frame)
    summary: Dict[str, Any] = {
        "envelopes_total": total,
        "persons_total": int(frame["person_id"].nunique()) if total else 0,
        "valid_pct": pct(int(frame["valid"].sum()), total) if total else 0.0,
    }
    for card_type in CardType:
        subset = frame[frame["card_type"] == card_type.value] if total else frame
        count = len(subset)
        summary[f"{card_type.value}_count"] = count
        summary[f"{card_type.value}_valid_pct"] = pct(int(subset["valid"].sum()), count)
        summary[f"{card_type.value}_mean_completeness"] = (
            round(float(subset["completeness"].mean()), 2) if count else 0.0
        )
    return summary


def build(args: argparse.Namespace, config: Optional[PipelineConfig] = None) -> pd.DataFrame:
    config = config or load_config(args)
    path = config.inputs.get("envelopes_json")
    if warn_missing(path, "Envelopes JSON"):
        return pd.DataFrame(columns=REPORT_COLUMNS)
    envelopes = read_envelopes_json(path)  # type: ignore[arg-type]
    settings = ValidationSettings(
        email_syntax_check=config.validation.email_syntax_check,
        email_dns_mx_check=config.validation.email_dns_mx_check,
    )
    logger.info("Scoring %d envelope(s) from %s", len(envelopes), path)
    return build_quality_frame(envelopes, settings)


def main():
    parser = argparse.ArgumentParser(description="Validate & score card envelopes.")
    parser.add_argument("--config", type=str, default=None)
    parser.add_argument("--envelopes-json", type=str, default=None)
    parser.add_argument("--out-dir", type=str, default=None)
    parser.add_argument("--email-syntax-check", action="store_true", default=None)
    parser.add_argument("--email-dns-mx", action="store_true", default=None)
    parser.add_argument("--log-level", type=str, default=None, help="Override logging level")

    args = parser.parse_args()
    config = load_config(args)
    configure_logging(config, level_override=args.log_level)

    frame = build(args, config=config)
    out_path = config.outputs.dir / "envelope_quality.csv"
    frame.to_csv(str(out_path), index=False, encoding="utf-8", quoting=csv.QUOTE_ALL)

    print(summarize(frame))
    print(f"Saved: {out_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
