"""API models package."""

from mydeviceai.models.api.models import (
    CancelDownloadRequest,
    CancelDownloadResponse,
    SetActiveModelRequest,
)

__all__ = [
    "CancelDownloadRequest",
    "CancelDownloadResponse",
    "SetActiveModelRequest",
]
