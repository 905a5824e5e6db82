from __future__ import annotations

import logging
import os
from typing import Optional, Union

from .config_loader import PipelineConfig

LOG_LEVEL_ENV = "VCARD_ENVELOPES_LOG_LEVEL"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _resolve_level(level: Union[str, int, None]) -> int:
    """Map ``"debug"``, ``"DEBUG"``, ``"10"`` or ``10`` to a numeric level; unknown names give INFO."""
    if isinstance(level, int):
        return level
    name = (level or "INFO").strip().upper()
    if name.isdigit():
        return int(name)
    value = logging.getLevelName(name)
    return value if isinstance(value, int) else logging.INFO


def configure_logging(config: PipelineConfig, level_override: Optional[str] = None) -> None:
    """
    Set the root logger level for a CLI run. First match wins:

    1. ``VCARD_ENVELOPES_LOG_LEVEL`` environment variable
    2. ``level_override`` (the ``--log-level`` flag)
    3. ``logging.level`` from the YAML config
    4. ``WARNING``

    An already configured root logger only has its level changed.
    """
    chosen = os.getenv(LOG_LEVEL_ENV) or level_override or config.logging.level or "WARNING"
    level = _resolve_level(chosen)

    root = logging.getLogger()
    if root.handlers:
        root.setLevel(level)
        return
    logging.basicConfig(level=level, format=LOG_FORMAT)
