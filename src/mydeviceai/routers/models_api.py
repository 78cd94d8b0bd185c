"""Model registry and remote catalog API endpoints."""

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse

from mydeviceai.dependencies import get_runtime
from mydeviceai.logger import get_logger
from mydeviceai.models.api.models import CancelDownloadRequest, CancelDownloadResponse, SetActiveModelRequest
from mydeviceai.models.progress import ProgressCallback
from mydeviceai.models.registry import (
    DeleteModelResult,
    DownloadModelRequest,
    DownloadModelResult,
    ModelList,
    ModelParamsUpdate,
    RemoteFilesResult,
    RemoteSearchResult,
    SetActiveResult,
    UpdateParamsResult,
)
from mydeviceai.services.context import RuntimeContext
from mydeviceai.utils.progress import stream_progress

logger = get_logger(__name__)

router = APIRouter(prefix="/api/models", tags=["models"])


@router.get("", response_model=ModelList)
async def list_models(runtime: RuntimeContext = Depends(get_runtime)) -> ModelList:
    return runtime.registry.list_models()


@router.post("/reload", response_model=ModelList)
async def reload_models(runtime: RuntimeContext = Depends(get_runtime)) -> ModelList:
    """Re-read models.json, re-checking every weight file on disk."""
    return runtime.registry.reload()


@router.put("/active", response_model=SetActiveResult)
async def set_active_model(
    request: SetActiveModelRequest, runtime: RuntimeContext = Depends(get_runtime)
) -> SetActiveResult:
    """Switch the active model. The running server picks it up on the next ensure call."""
    return runtime.registry.set_active(request.id)


# Remote catalog (declared before the catch-all model id routes)


@router.get("/remote/search", response_model=RemoteSearchResult)
async def search_remote_models(
    q: str = Query("", description="Search term; empty lists popular GGUF repos"),
    runtime: RuntimeContext = Depends(get_runtime),
) -> RemoteSearchResult:
    return await runtime.downloader.search(q)


@router.get("/remote/files", response_model=RemoteFilesResult)
async def list_remote_files(
    repo_id: str = Query(..., description="Hugging Face repo id, e.g. Qwen/Qwen3-4B-GGUF"),
    runtime: RuntimeContext = Depends(get_runtime),
) -> RemoteFilesResult:
    return await runtime.downloader.list_files(repo_id)


@router.post("/remote/download")
async def download_remote_model(
    request: DownloadModelRequest, runtime: RuntimeContext = Depends(get_runtime)
) -> StreamingResponse:
    """
    Download a GGUF file and register it, streaming progress as server-sent events.

    Every event carries the model id; the last frame is
    ``{"type": "result", ...DownloadModelResult}``.
    """
    logger.info("Model download requested", repo_id=request.repo_id, file_name=request.file_name)

    async def run(callback: ProgressCallback) -> DownloadModelResult:
        return await runtime.downloader.download_and_register(request, callback)

    return StreamingResponse(stream_progress(run), media_type="text/event-stream")


@router.post("/remote/cancel", response_model=CancelDownloadResponse)
async def cancel_remote_download(
    request: CancelDownloadRequest, runtime: RuntimeContext = Depends(get_runtime)
) -> CancelDownloadResponse:
    return CancelDownloadResponse(cancelled=runtime.downloader.cancel(request.id))


# Per-model routes; ids contain "/" (e.g. "Qwen/Qwen3-4B-Q4_K_M")


@router.patch("/{model_id:path}/params", response_model=UpdateParamsResult)
async def update_model_params(
    model_id: str, update: ModelParamsUpdate, runtime: RuntimeContext = Depends(get_runtime)
) -> UpdateParamsResult:
    """Merge and clamp runtime parameters. Out-of-range values are clamped, not rejected."""
    return runtime.registry.update_params(model_id, update)


@router.delete("/{model_id:path}", response_model=DeleteModelResult)
async def delete_model(model_id: str, runtime: RuntimeContext = Depends(get_runtime)) -> DeleteModelResult:
    return runtime.registry.delete_model(model_id)
