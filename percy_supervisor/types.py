from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from pydantic import BaseModel, ConfigDict


@dataclass
class SessionState:
    """Mutable state of one Percy session, owned by the facade."""

    is_process_running: bool = False
    build_id: Optional[int] = None
    capture_mode: Optional[str] = None
    auto_enabled: bool = False
    percy_enabled: bool = False


class TokenResponse(BaseModel):
    """Payload returned by the app_percy project token endpoint."""

    model_config = ConfigDict(extra="ignore")

    token: str | None = None
    success: bool = False
    percy_capture_mode: str | None = None


class BuildInfo(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int | None = None


class HealthResponse(BaseModel):
    """Payload returned by the local `/percy/healthcheck` endpoint."""

    model_config = ConfigDict(extra="ignore")

    success: bool | None = None
    build: BuildInfo | None = None

    @property
    def build_id(self) -> int | None:
        return self.build.id if self.build else None
