from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Awaitable, Callable

import httpx
from pydantic import ValidationError

from .config import DEFAULT_POLL_INTERVAL, DEFAULT_REQUEST_TIMEOUT
from .types import HealthResponse

LOGGER = logging.getLogger("Percy.Health")

HEALTHCHECK_PATH = "percy/healthcheck"

HealthCheck = Callable[[], Awaitable[bool]]


class HealthCheckError(RuntimeError):
    """Raised when a single request to the Percy health endpoint fails."""


async def fetch_build_id(
    address: str,
    *,
    timeout: float = DEFAULT_REQUEST_TIMEOUT,
    transport: httpx.AsyncBaseTransport | None = None,
) -> int:
    """Query the local Percy server once and return the reported build id."""

    url = f"{address.rstrip('/')}/{HEALTHCHECK_PATH}"
    client_kwargs: dict[str, Any] = {"timeout": timeout}
    if transport is not None:
        client_kwargs["transport"] = transport

    try:
        async with httpx.AsyncClient(**client_kwargs) as client:
            response = await client.get(url)
    except httpx.HTTPError as exc:
        raise HealthCheckError(f"Request failed: {exc}") from exc

    if not response.is_success:
        raise HealthCheckError(f"Percy responded with {response.status_code}")

    try:
        payload = HealthResponse.model_validate(response.json())
    except (ValueError, ValidationError) as exc:
        raise HealthCheckError(f"Malformed healthcheck response: {exc}") from exc

    if payload.success is False or payload.build_id is None:
        raise HealthCheckError("Percy healthcheck did not report a build id.")
    return payload.build_id


async def wait_for_healthy(
    check: HealthCheck,
    exited: threading.Event,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
) -> bool:
    """Poll `check` until it succeeds or `exited` is set.

    There is no deadline: the loop ends only on a healthy check or when the
    supervised process exits, whichever happens first.
    """

    attempt = 0
    while True:
        attempt += 1
        if await check():
            LOGGER.debug("Percy healthcheck successful after %s attempt(s).", attempt)
            return True

        if await asyncio.to_thread(exited.wait, max(poll_interval, 0.0)):
            LOGGER.warning(
                "Percy process exited before becoming healthy (%s attempt(s)).",
                attempt,
            )
            return False
