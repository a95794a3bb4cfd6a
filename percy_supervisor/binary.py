"""
Binary provider abstraction for locating the Percy CLI executable.

Downloading and installing the Percy binary is handled outside this package;
the supervisor only needs a filesystem path it can execute. Providers resolve
that path on demand, and the supervisor caches the first successful result.

Additional providers (for example one that downloads a release archive) can be
plugged in by implementing the `BinaryProvider` protocol.
"""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path
from typing import Mapping, Protocol, runtime_checkable

from .config import BINARY_PATH_ENV

LOGGER = logging.getLogger("Percy.Binary")

DEFAULT_BINARY_NAME = "percy"


class BinaryNotFoundError(RuntimeError):
    """Raised when no executable Percy binary can be located."""


@runtime_checkable
class BinaryProvider(Protocol):
    """Protocol for resolving the path of the Percy executable."""

    def get_binary_path(self) -> Path: ...


class LocalBinaryProvider:
    """Resolve an explicit path, `PERCY_BINARY_PATH`, or `percy` on PATH."""

    def __init__(
        self,
        binary_path: Path | str | None = None,
        *,
        binary_name: str = DEFAULT_BINARY_NAME,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        env = os.environ if environ is None else environ
        candidate = binary_path or env.get(BINARY_PATH_ENV)
        self._explicit = Path(candidate).expanduser() if candidate else None
        self._binary_name = binary_name
        self._search_path = env.get("PATH")

    def get_binary_path(self) -> Path:
        if self._explicit is not None:
            if not self._explicit.is_file():
                raise BinaryNotFoundError(
                    f"Percy binary does not exist: {self._explicit}"
                )
            if not os.access(self._explicit, os.X_OK):
                raise BinaryNotFoundError(
                    f"Percy binary is not executable: {self._explicit}"
                )
            return self._explicit.resolve()

        found = shutil.which(self._binary_name, path=self._search_path)
        if found is None:
            raise BinaryNotFoundError(
                f"Unable to locate '{self._binary_name}' on PATH; "
                f"set {BINARY_PATH_ENV} to the Percy executable."
            )
        LOGGER.debug("Resolved Percy binary at %s", found)
        return Path(found).resolve()
