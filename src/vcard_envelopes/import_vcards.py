from __future__ import annotations

import argparse
import logging
from typing import List, Optional

from .adapter import AdapterOptions, import_vcards
from .common import load_config, warn_missing, write_envelopes_json
from .config_loader import PipelineConfig
from .logging_utils import configure_logging
from .models import CardEnvelope
from .normalization import NormalizationSettings
from .validation import ValidationSettings, validate_envelope_set

logger = logging.getLogger(__name__)


def _adapter_options(config: PipelineConfig) -> AdapterOptions:
    return AdapterOptions(
        owner_id=config.adapter.owner_id,
        person_id=config.adapter.person_id,
        source=config.adapter.source,
        confidence=config.adapter.confidence,
    )


def build(
    args: argparse.Namespace, config: Optional[PipelineConfig] = None
) -> List[CardEnvelope]:
    config = config or load_config(args)
    path = config.inputs.get("vcf")
    if warn_missing(path, "VCF"):
        return []
    with open(path, "r", encoding="utf-8", errors="replace") as handle:  # type: ignore[arg-type]
        content = handle.read()

    diagnostics: List[str] = []
    envelopes = import_vcards(
        content,
        _adapter_options(config),
        strict=config.parsing.strict,
        normalize=config.normalization.enabled,
        settings=NormalizationSettings.from_args(config.normalization.default_phone_country),
        diagnostics=diagnostics,
    )
    if diagnostics:
        logger.warning("%d parse diagnostic(s) in %s", len(diagnostics), path)
        for message in diagnostics[:20]:
            logger.info("  %s", message)

    report = validate_envelope_set(
        envelopes,
        ValidationSettings(
            email_syntax_check=config.validation.email_syntax_check,
            email_dns_mx_check=config.validation.email_dns_mx_check,
        ),
    )
    if not report.valid:
        logger.warning("%d validation issue(s) in %s", len(report.errors), path)
        for error in report.errors[:20]:
            logger.info("  %s", error)
    return envelopes


def main() -> int:
    parser = argparse.ArgumentParser(description="Convert a VCF file into card envelopes.")
    parser.add_argument("--config", type=str, default=None, help="Path to YAML config.")
    parser.add_argument("--vcf", type=str, default=None)
    parser.add_argument("--out-dir", type=str, default=None)
    parser.add_argument("--person-id", type=str, default=None)
    parser.add_argument("--owner-id", type=str, default=None)
    parser.add_argument("--source", type=str, default=None)
    parser.add_argument("--confidence", type=float, default=None)
    parser.add_argument("--default-phone-country", type=str, default=None)
    parser.add_argument("--strict", action="store_true", default=None)
    parser.add_argument(
        "--normalize",
        dest="normalize",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Normalize envelopes after adapting them (default: on).",
    )
    parser.add_argument("--email-syntax-check", action="store_true", default=None)
    parser.add_argument("--email-dns-mx", action="store_true", default=None)
    parser.add_argument("--log-level", type=str, default=None, help="Override logging level")
    args = parser.parse_args()

    config = load_config(args)
    configure_logging(config, level_override=args.log_level)
    envelopes = build(args, config=config)

    out_path = config.outputs.dir / "envelopes.json"
    write_envelopes_json(str(out_path), envelopes)
    logger.info("Saved: %s", out_path)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
