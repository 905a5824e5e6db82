from __future__ import annotations

import argparse
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml  # type: ignore[import-untyped]


@dataclass
class OutputsConfig:
    dir: Path


@dataclass
class ParsingConfig:
    strict: bool = False


@dataclass
class AdapterConfig:
    source: str = "vcf_import"
    confidence: float = 0.9
    owner_id: Optional[str] = None
    person_id: Optional[str] = None


@dataclass
class NormalizationConfig:
    enabled: bool = True
    default_phone_country: str = "US"


@dataclass
class ExportConfig:
    version: str = "3.0"
    include_photo: bool = True
    fold_lines: bool = True


@dataclass
class ValidationConfig:
    email_syntax_check: bool = False
    email_dns_mx_check: bool = False


@dataclass
class LoggingConfig:
    level: str = "WARNING"


@dataclass
class PipelineConfig:
    inputs: Dict[str, Optional[str]]
    outputs: OutputsConfig
    parsing: ParsingConfig
    adapter: AdapterConfig
    normalization: NormalizationConfig
    export: ExportConfig
    validation: ValidationConfig
    logging: LoggingConfig


def _load_yaml(path: Optional[str]) -> Dict[str, Any]:
    if not path:
        return {}
    with open(path, "r", encoding="utf-8") as handle:
        return yaml.safe_load(handle) or {}


def _flag(args: argparse.Namespace, name: str, fallback: Any) -> Any:
    value = getattr(args, name, None)
    return fallback if value is None else value


def load_pipeline_config(args: argparse.Namespace) -> PipelineConfig:
    config_data = _load_yaml(getattr(args, "config", None))
    inputs = config_data.get("inputs", {}) or {}
    outputs_cfg = config_data.get("outputs", {}) or {}
    parsing_cfg = config_data.get("parsing", {}) or {}
    adapter_cfg = config_data.get("adapter", {}) or {}
    normalization_cfg = config_data.get("normalization", {}) or {}
    export_cfg = config_data.get("export", {}) or {}
    validation_cfg = config_data.get("validation", {}) or {}
    logging_cfg = config_data.get("logging", {}) or {}

    outputs_dir = Path(getattr(args, "out_dir", None) or outputs_cfg.get("dir") or os.getcwd())

    parsing = ParsingConfig(
        strict=bool(getattr(args, "strict", None) or parsing_cfg.get("strict", False)),
    )

    adapter = AdapterConfig(
        source=getattr(args, "source", None) or adapter_cfg.get("source", "vcf_import"),
        confidence=float(_flag(args, "confidence", adapter_cfg.get("confidence", 0.9))),
        owner_id=getattr(args, "owner_id", None) or adapter_cfg.get("owner_id"),
        person_id=getattr(args, "person_id", None),
    )

    normalization = NormalizationConfig(
        enabled=bool(_flag(args, "normalize", normalization_cfg.get("enabled", True))),
        default_phone_country=getattr(args, "default_phone_country", None)
        or normalization_cfg.get("default_phone_country", "US"),
    )

    export = ExportConfig(
        version=str(getattr(args, "vcard_version", None) or export_cfg.get("version", "3.0")),
        include_photo=bool(_flag(args, "include_photo", export_cfg.get("include_photo", True))),
        fold_lines=bool(_flag(args, "fold_lines", export_cfg.get("fold_lines", True))),
    )

    validation = ValidationConfig(
        email_syntax_check=bool(
            getattr(args, "email_syntax_check", None)
            or validation_cfg.get("email_syntax_check", False)
        ),
        email_dns_mx_check=bool(
            getattr(args, "email_dns_mx", None) or validation_cfg.get("email_dns_mx_check", False)
        ),
    )

    arg_level = getattr(args, "log_level", None)
    effective_level = (arg_level or logging_cfg.get("level") or "WARNING").upper()
    logging_config = LoggingConfig(level=effective_level)

    resolved_inputs = {
        "vcf": getattr(args, "vcf", None) or inputs.get("vcf"),
        "envelopes_json": getattr(args, "envelopes_json", None) or inputs.get("envelopes_json"),
    }

    return PipelineConfig(
        inputs=resolved_inputs,
        outputs=OutputsConfig(dir=outputs_dir),
        parsing=parsing,
        adapter=adapter,
        normalization=normalization,
        export=export,
        validation=validation,
        logging=logging_config,
    )
