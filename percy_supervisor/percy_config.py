from __future__ import annotations

import json
import logging
import tempfile
from pathlib import Path
from typing import Any, Mapping

from .config import DEFAULT_CONFIG_FILENAME, DEFAULT_CONFIG_VERSION

LOGGER = logging.getLogger("Percy.Config")


def default_config_path(filename: str = DEFAULT_CONFIG_FILENAME) -> Path:
    return Path(tempfile.gettempdir()) / filename


def write_percy_config(
    percy_options: Mapping[str, Any] | None,
    *,
    path: Path | None = None,
) -> Path | None:
    """Serialize user Percy options to the runtime config file.

    Returns ``None`` when no options were supplied, so the binary runs with its
    own defaults, or when the file could not be written. Any existing file at
    the target path is overwritten.
    """

    if not percy_options:
        return None

    config_path = path or default_config_path()
    document = dict(percy_options)
    if not document.get("version"):
        document["version"] = DEFAULT_CONFIG_VERSION

    try:
        payload = json.dumps(document)
        config_path.write_text(payload, encoding="utf-8")
    except (OSError, TypeError, ValueError) as exc:
        LOGGER.error("Error creating percy config at %s: %s", config_path, exc)
        return None

    LOGGER.debug("Percy config created at %s", config_path)
    return config_path
