"""API request/response models for model management."""

from mydeviceai.models.base import CamelModel


class SetActiveModelRequest(CamelModel):
    """Request to switch the active model."""

    id: str


class CancelDownloadRequest(CamelModel):
    """Request to cancel an in-flight model download."""

    id: str


class CancelDownloadResponse(CamelModel):
    cancelled: bool
