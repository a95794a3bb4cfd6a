from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from .config import (
    DEFAULT_API_BASE_URL,
    DEFAULT_REQUEST_TIMEOUT,
    BrowserStackCredentials,
    PercyOptions,
)
from .types import SessionState, TokenResponse

LOGGER = logging.getLogger("Percy.Token")

TOKEN_ENDPOINT = "api/app_percy/get_project_token"


class TokenFetchError(RuntimeError):
    """Raised when the project token cannot be obtained from BrowserStack."""


def build_token_query(
    options: PercyOptions, project_name: str | None
) -> list[tuple[str, str]]:
    """Return the ordered query parameters for the token request."""

    params: list[tuple[str, str]] = []
    if project_name:
        params.append(("name", project_name))
    params.append(("type", options.product_type))
    if options.percy_capture_mode:
        params.append(("percy_capture_mode", options.percy_capture_mode))
    params.append(("percy", "true" if options.percy else "false"))
    return params


def mask_token(token: str) -> str:
    if len(token) <= 8:
        return "*" * len(token)
    return f"{token[:4]}...{token[-4:]}"


class TokenFetcher:
    """Fetch a Percy project token and record the vendor session settings."""

    def __init__(
        self,
        state: SessionState,
        *,
        api_base_url: str = DEFAULT_API_BASE_URL,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._state = state
        self._api_base_url = api_base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    async def fetch(
        self,
        options: PercyOptions,
        credentials: BrowserStackCredentials,
        project_name: str | None,
    ) -> str | None:
        try:
            payload = await self._request(options, credentials, project_name)
        except TokenFetchError as exc:
            LOGGER.error("Percy unable to fetch project token: %s", exc)
            return None

        LOGGER.debug("Percy fetch token success: %s", mask_token(payload.token or ""))
        if not options.percy and payload.success:
            self._state.auto_enabled = True
        self._state.capture_mode = payload.percy_capture_mode
        self._state.percy_enabled = payload.success
        return payload.token

    async def _request(
        self,
        options: PercyOptions,
        credentials: BrowserStackCredentials,
        project_name: str | None,
    ) -> TokenResponse:
        url = f"{self._api_base_url}/{TOKEN_ENDPOINT}"
        params = build_token_query(options, project_name)
        client_kwargs: dict[str, Any] = {"timeout": self._timeout}
        if self._transport is not None:
            client_kwargs["transport"] = self._transport

        try:
            async with httpx.AsyncClient(**client_kwargs) as client:
                response = await client.get(
                    url, params=params, auth=credentials.as_auth()
                )
        except httpx.HTTPError as exc:
            raise TokenFetchError(f"Request failed: {exc}") from exc

        if response.status_code >= 400:
            raise TokenFetchError(
                f"Token endpoint responded with {response.status_code}"
            )

        try:
            payload = TokenResponse.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise TokenFetchError(f"Malformed token response: {exc}") from exc

        if not payload.token:
            raise TokenFetchError("Token response did not include a token.")
        return payload
