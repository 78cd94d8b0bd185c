"""Model registry data models.

``ModelsState`` is the root structure of models.json. ``installed`` flags are
derived from the filesystem on every load and never trusted from disk.
"""

from datetime import datetime, timezone
from typing import Literal

from pydantic import Field

from mydeviceai.models.base import CamelModel

STATE_VERSION = 1


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ModelRuntimeParams(CamelModel):
    """Runtime tuning record. Always stored clamped (see services.models.params)."""

    temperature: float = 0.7
    top_p: float = 0.95
    top_k: int = 40
    max_tokens: int = 1024
    context_window: int = 8192
    gpu_layers: int = 0


class ModelParamsUpdate(CamelModel):
    """Partial parameter update; every field optional and clamped on write."""

    temperature: float | None = None
    top_p: float | None = None
    top_k: float | None = None
    max_tokens: float | None = None
    context_window: float | None = None
    gpu_layers: float | None = None


class ManagedModel(CamelModel):
    """One known model, builtin or downloaded."""

    id: str
    display_name: str
    source: Literal["builtin", "huggingface"]

    # Hugging Face origin
    repo_id: str | None = None
    file_name: str | None = None

    # Local weight file; its existence is the only truth for `installed`
    file_path: str
    size_bytes: int | None = None

    quantization: str | None = None
    context_window: int | None = None
    description: str | None = None

    recommended: ModelParamsUpdate | None = None
    current_params: ModelRuntimeParams = Field(default_factory=ModelRuntimeParams)

    installed: bool = False
    downloaded_bytes: int | None = None
    checksum: str | None = None

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class ModelsState(CamelModel):
    """Root structure of models.json."""

    version: int = STATE_VERSION
    models: list[ManagedModel] = []
    active_model_id: str | None = None
    last_used_model_id: str | None = None


class ModelList(CamelModel):
    models: list[ManagedModel]
    active_model_id: str | None = None


class RemoteModelFile(CamelModel):
    name: str
    size: int | None = None


class RemoteModelSummary(CamelModel):
    """A repo returned by the remote catalog search."""

    id: str
    downloads: int = 0
    likes: int | None = None
    tags: list[str] | None = None
    # Search does not return file detail; see list_files
    files: list[RemoteModelFile] = []
    description: str | None = None


class DownloadModelRequest(CamelModel):
    repo_id: str
    file_name: str
    display_name: str | None = None
    quantization: str | None = None
    context_window: int | None = None


# Operation results. Registry failures never raise across the public boundary.


class SetActiveResult(CamelModel):
    ok: bool
    active_model_id: str | None = None
    error: str | None = None


class UpdateParamsResult(CamelModel):
    ok: bool
    model: ManagedModel | None = None
    error: str | None = None


class DeleteModelResult(CamelModel):
    ok: bool
    active_model_id: str | None = None
    error: str | None = None


class DownloadModelResult(CamelModel):
    ok: bool
    model: ManagedModel | None = None
    error: str | None = None


class RemoteSearchResult(CamelModel):
    ok: bool
    results: list[RemoteModelSummary] = []
    error: str | None = None


class RemoteFilesResult(CamelModel):
    ok: bool
    files: list[RemoteModelFile] = []
    error: str | None = None
