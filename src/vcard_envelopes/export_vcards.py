from __future__ import annotations

import argparse
import logging
from typing import Optional

from .common import load_config, read_envelopes_json, warn_missing
from .config_loader import PipelineConfig
from .exporter import ExportOptions, export_vcards
from .logging_utils import configure_logging

logger = logging.getLogger(__name__)


def build(args: argparse.Namespace, config: Optional[PipelineConfig] = None) -> str:
    config = config or load_config(args)
    path = config.inputs.get("envelopes_json")
    if warn_missing(path, "Envelopes JSON"):
        return ""
    envelopes = read_envelopes_json(path)  # type: ignore[arg-type]
    options = ExportOptions(
        version=config.export.version,
        include_photo=config.export.include_photo,
        fold_lines=config.export.fold_lines,
    )
    return export_vcards(envelopes, options)


def main() -> int:
    parser = argparse.ArgumentParser(description="Export card envelopes as a VCF file.")
    parser.add_argument("--config", type=str, default=None, help="Path to YAML config.")
    parser.add_argument("--envelopes-json", type=str, default=None)
    parser.add_argument("--out-dir", type=str, default=None)
    parser.add_argument("--vcard-version", type=str, default=None)
    parser.add_argument(
        "--photo",
        dest="include_photo",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Embed profile photos (default: on).",
    )
    parser.add_argument(
        "--fold",
        dest="fold_lines",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Fold lines longer than 75 characters (default: on).",
    )
    parser.add_argument("--log-level", type=str, default=None, help="Override logging level")
    args = parser.parse_args()

    config = load_config(args)
    configure_logging(config, level_override=args.log_level)
    content = build(args, config=config)

    out_path = config.outputs.dir / "contacts.vcf"
    # newline="" keeps the CRLF terminators intact on every platform
    with open(out_path, "w", encoding="utf-8", newline="") as handle:
        handle.write(content)
    logger.info("Saved: %s", out_path)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
