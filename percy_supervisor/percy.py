from __future__ import annotations

import asyncio
import logging
import subprocess
from dataclasses import replace
from pathlib import Path
from typing import Any, Mapping

import httpx

from .binary import BinaryNotFoundError, BinaryProvider
from .config import (
    TOKEN_ENV,
    BrowserStackCredentials,
    PercyOptions,
    PercySettings,
)
from .health import HealthCheckError, fetch_build_id, wait_for_healthy
from .launcher import ProcessSupervisor, PopenFactory, start_args
from .percy_config import default_config_path, write_percy_config
from .project_token import TokenFetcher
from .types import SessionState

LOGGER = logging.getLogger("Percy")


class Percy:
    """Lifecycle facade over the Percy CLI for one test-run invocation."""

    def __init__(
        self,
        options: PercyOptions | Mapping[str, Any],
        *,
        credentials: BrowserStackCredentials | None = None,
        project_name: str | None = None,
        settings: PercySettings | None = None,
        binary_provider: BinaryProvider | None = None,
        popen: PopenFactory = subprocess.Popen,
        transport: httpx.AsyncBaseTransport | None = None,
        config_path: Path | None = None,
    ) -> None:
        if not isinstance(options, PercyOptions):
            options = PercyOptions.model_validate(dict(options))
        self._options = options
        self._settings = settings or PercySettings.from_env()
        self._credentials = credentials or BrowserStackCredentials.resolve()
        self._project_name = project_name or options.project_name
        self._is_app = options.is_app
        self._transport = transport
        self._config_path = config_path or default_config_path(
            self._settings.config_filename
        )

        self._state = SessionState(
            capture_mode=options.percy_capture_mode,
            percy_enabled=bool(options.percy),
        )
        self._supervisor = ProcessSupervisor(
            binary_provider=binary_provider,
            log_path=self._settings.log_path,
            popen=popen,
        )
        self._token_fetcher = TokenFetcher(
            self._state,
            api_base_url=self._settings.api_base_url,
            timeout=self._settings.request_timeout,
            transport=transport,
        )

    @property
    def state(self) -> SessionState:
        """Snapshot of the session with the live running flag."""

        return replace(self._state, is_process_running=self._supervisor.is_running)

    @property
    def build_id(self) -> int | None:
        return self._state.build_id

    @property
    def capture_mode(self) -> str | None:
        return self._state.capture_mode

    @property
    def auto_enabled(self) -> bool:
        return self._state.auto_enabled

    @property
    def percy_enabled(self) -> bool:
        return self._state.percy_enabled

    @property
    def supervisor(self) -> ProcessSupervisor:
        return self._supervisor

    def is_running(self) -> bool:
        return self._supervisor.is_running

    async def healthcheck(self) -> bool:
        try:
            build_id = await fetch_build_id(
                self._settings.server_address,
                timeout=self._settings.request_timeout,
                transport=self._transport,
            )
        except HealthCheckError as exc:
            LOGGER.debug("Percy healthcheck failed: %s", exc)
            return False

        self._state.build_id = build_id
        return True

    async def start(self) -> bool:
        if self._supervisor.is_running:
            LOGGER.error("Percy is already running; stop it before starting again.")
            return False

        try:
            binary = self._supervisor.resolve_binary()
        except BinaryNotFoundError as exc:
            LOGGER.error("Percy binary unavailable: %s", exc)
            return False

        token = await self._token_fetcher.fetch(
            self._options, self._credentials, self._project_name
        )
        if not token:
            return False

        config_path = write_percy_config(
            self._options.percy_options, path=self._config_path
        )
        args = start_args(self._is_app, config_path)

        try:
            self._supervisor.spawn(binary, args, {TOKEN_ENV: token})
        except (OSError, RuntimeError) as exc:
            LOGGER.error("Failed to launch Percy binary %s: %s", binary, exc)
            return False

        healthy = await wait_for_healthy(
            self.healthcheck,
            self._supervisor.exited,
            self._settings.poll_interval,
        )
        if healthy:
            LOGGER.info("Percy is ready (build id %s).", self._state.build_id)
        else:
            LOGGER.error(
                "Percy exited before becoming healthy; see %s",
                self._supervisor.log_path,
            )
        return healthy

    async def stop(self) -> int | None:
        try:
            binary = self._supervisor.resolve_binary()
        except BinaryNotFoundError as exc:
            LOGGER.error("Cannot stop Percy, binary unavailable: %s", exc)
            return None

        try:
            return await asyncio.to_thread(self._supervisor.stop, binary)
        except OSError as exc:
            LOGGER.error("Failed to run Percy exec:stop: %s", exc)
            return None
