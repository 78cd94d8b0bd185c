"""FastAPI dependencies resolving the per-app service graph."""

from fastapi import Request, WebSocket

from mydeviceai.services.context import RuntimeContext


def get_runtime(request: Request) -> RuntimeContext:
    return request.app.state.runtime


def get_runtime_ws(websocket: WebSocket) -> RuntimeContext:
    return websocket.app.state.runtime
