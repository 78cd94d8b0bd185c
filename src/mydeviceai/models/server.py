"""Inference server supervision models."""

from datetime import datetime
from typing import Literal

from mydeviceai.models.base import CamelModel


class LogEntry(CamelModel):
    timestamp: datetime
    level: Literal["stdout", "stderr", "system"]
    message: str


class ServerStatus(CamelModel):
    running: bool
    port: int | None = None
    model_path: str | None = None
    model_name: str | None = None
    # Seconds since spawn
    uptime: float | None = None


class EnsureServerResult(CamelModel):
    ok: bool
    endpoint: str | None = None
    error: str | None = None
