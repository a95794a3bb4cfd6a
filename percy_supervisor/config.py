from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_SERVER_ADDRESS = "http://127.0.0.1:5338"
DEFAULT_API_BASE_URL = "https://api.browserstack.com"
DEFAULT_LOG_DIR = Path("logs")
DEFAULT_LOG_FILE = DEFAULT_LOG_DIR / "percy.log"
DEFAULT_CONFIG_FILENAME = "percy.json"
DEFAULT_CONFIG_VERSION = "2"
DEFAULT_POLL_INTERVAL = 1.0
DEFAULT_REQUEST_TIMEOUT = 10.0

SERVER_ADDRESS_ENV = "PERCY_SERVER_ADDRESS"
BINARY_PATH_ENV = "PERCY_BINARY_PATH"
USERNAME_ENV = "BROWSERSTACK_USERNAME"
ACCESS_KEY_ENV = "BROWSERSTACK_ACCESS_KEY"
TOKEN_ENV = "PERCY_TOKEN"


@dataclass(frozen=True)
class PercySettings:
    """Runtime settings for one supervised Percy session."""

    server_address: str = DEFAULT_SERVER_ADDRESS
    api_base_url: str = DEFAULT_API_BASE_URL
    log_path: Path = DEFAULT_LOG_FILE
    config_filename: str = DEFAULT_CONFIG_FILENAME
    poll_interval: float = DEFAULT_POLL_INTERVAL
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT

    @classmethod
    def from_env(
        cls, environ: Mapping[str, str] | None = None, **overrides: Any
    ) -> "PercySettings":
        env = os.environ if environ is None else environ
        address = env.get(SERVER_ADDRESS_ENV) or DEFAULT_SERVER_ADDRESS
        values: dict[str, Any] = {"server_address": address.rstrip("/")}
        values.update(overrides)
        return cls(**values)


@dataclass(frozen=True)
class BrowserStackCredentials:
    """Basic-auth credentials for the BrowserStack REST API."""

    username: str
    access_key: str

    @classmethod
    def resolve(
        cls,
        user: str | None = None,
        key: str | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> "BrowserStackCredentials":
        """Prefer explicit values, falling back to the BROWSERSTACK_* variables."""

        env = os.environ if environ is None else environ
        return cls(
            username=user or env.get(USERNAME_ENV, ""),
            access_key=key or env.get(ACCESS_KEY_ENV, ""),
        )

    def as_auth(self) -> tuple[str, str]:
        return (self.username, self.access_key)


class PercyOptions(BaseModel):
    """User-facing Percy options, accepting the camelCase keys of wdio configs."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    percy: bool | None = None
    percy_capture_mode: str | None = Field(default=None, alias="percyCaptureMode")
    percy_options: dict[str, Any] | None = Field(default=None, alias="percyOptions")
    app: Any = None
    project_name: str | None = Field(default=None, alias="projectName")

    @property
    def is_app(self) -> bool:
        return bool(self.app)

    @property
    def product_type(self) -> str:
        return "app" if self.is_app else "automate"
