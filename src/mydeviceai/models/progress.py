"""Progress events emitted by install and download pipelines.

The events form a closed, tagged union keyed by ``type``. A stream of events
for one operation terminates in either ``install-complete`` or ``error``
(model downloads terminate in ``download-complete`` or ``error``).
"""

from collections.abc import Awaitable, Callable
from typing import Annotated, Literal

from pydantic import Field, TypeAdapter

from mydeviceai.models.base import CamelModel


class ProgressEventBase(CamelModel):
    # Model id for model downloads; absent for runtime installs
    id: str | None = None


class StatusEvent(ProgressEventBase):
    type: Literal["status"] = "status"
    message: str


class DownloadStartEvent(ProgressEventBase):
    type: Literal["download-start"] = "download-start"
    url: str
    total_bytes: int | None = None


class DownloadProgressEvent(ProgressEventBase):
    type: Literal["download-progress"] = "download-progress"
    received_bytes: int
    # None when the server sent no Content-Length; consumers show an unknown total
    total_bytes: int | None = None


class DownloadCompleteEvent(ProgressEventBase):
    type: Literal["download-complete"] = "download-complete"
    file_path: str


class InstallCompleteEvent(ProgressEventBase):
    type: Literal["install-complete"] = "install-complete"
    version: str
    binary_path: str


class ErrorEvent(ProgressEventBase):
    type: Literal["error"] = "error"
    message: str


ProgressEvent = Annotated[
    StatusEvent
    | DownloadStartEvent
    | DownloadProgressEvent
    | DownloadCompleteEvent
    | InstallCompleteEvent
    | ErrorEvent,
    Field(discriminator="type"),
]

ProgressCallback = Callable[[ProgressEvent], Awaitable[None]]

progress_event_adapter: TypeAdapter[ProgressEvent] = TypeAdapter(ProgressEvent)
