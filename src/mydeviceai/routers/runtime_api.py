"""llama.cpp runtime API endpoints."""

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from mydeviceai.dependencies import get_runtime
from mydeviceai.logger import get_logger
from mydeviceai.models.runtime import InstallStatus
from mydeviceai.services.context import RuntimeContext
from mydeviceai.utils.progress import stream_progress

logger = get_logger(__name__)

router = APIRouter(prefix="/api/runtime", tags=["runtime"])


@router.get("/status", response_model=InstallStatus)
async def get_install_status(runtime: RuntimeContext = Depends(get_runtime)) -> InstallStatus:
    """Whether llama-server is installed, and which release."""
    return runtime.installer.get_install_status()


@router.get("/install")
async def install_runtime(runtime: RuntimeContext = Depends(get_runtime)) -> StreamingResponse:
    """
    Install the pinned llama.cpp release, streaming progress as server-sent events.

    Returns immediately with an install-complete event when already installed.
    The last frame is ``{"type": "result", ...InstallStatus}``.
    """
    logger.info("Runtime install requested")
    return StreamingResponse(stream_progress(runtime.installer.install_latest), media_type="text/event-stream")
