"""llama-server supervision API endpoints."""

from fastapi import APIRouter, Depends, Query

from mydeviceai.dependencies import get_runtime
from mydeviceai.models.server import EnsureServerResult, LogEntry, ServerStatus
from mydeviceai.services.context import RuntimeContext

router = APIRouter(prefix="/api/server", tags=["server"])


@router.post("/ensure", response_model=EnsureServerResult)
async def ensure_server(runtime: RuntimeContext = Depends(get_runtime)) -> EnsureServerResult:
    """Start llama-server for the active model if needed and return its endpoint.

    May install the runtime first, which can take minutes on a fresh machine.
    """
    return await runtime.supervisor.ensure_running()


@router.post("/stop", response_model=ServerStatus)
async def stop_server(runtime: RuntimeContext = Depends(get_runtime)) -> ServerStatus:
    await runtime.supervisor.stop()
    return runtime.supervisor.get_status()


@router.get("/status", response_model=ServerStatus)
async def get_server_status(runtime: RuntimeContext = Depends(get_runtime)) -> ServerStatus:
    return runtime.supervisor.get_status()


@router.get("/logs", response_model=list[LogEntry])
async def get_server_logs(
    limit: int | None = Query(None, ge=1, description="Return only the newest N entries"),
    runtime: RuntimeContext = Depends(get_runtime),
) -> list[LogEntry]:
    return runtime.supervisor.get_logs(limit)
