import asyncio
from typing import Any

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from mydeviceai.dependencies import get_runtime_ws
from mydeviceai.logger import get_logger
from mydeviceai.services.context import RuntimeContext

logger = get_logger(__name__)

router = APIRouter(prefix="/api/ws", tags=["WebSockets"])


class WebSocketPeerChannel:
    """Reply channel for one peer whose P2P traffic is relayed over a WebSocket."""

    def __init__(self, websocket: WebSocket, peer_id: str) -> None:
        self.websocket = websocket
        self.peer_id = peer_id

    async def send_json(self, data: dict[str, Any]) -> None:
        await self.websocket.send_json(data)


@router.websocket("/peers/{peer_id}")
async def peer_websocket(
    websocket: WebSocket,
    peer_id: str,
    runtime: RuntimeContext = Depends(get_runtime_ws),
) -> None:
    """
    Relay endpoint for one remote peer.

    The P2P transport forwards every message the peer sends as a text or
    binary frame and delivers every JSON frame sent back. Prompts are served
    concurrently; each one streams start/token/end (or error) messages.
    """
    await websocket.accept()
    logger.info(f"Peer connected: {peer_id}")

    bridge = runtime.bridge
    channel = WebSocketPeerChannel(websocket, peer_id)
    await bridge.send(channel, bridge.hello())

    tasks: set[asyncio.Task] = set()
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes")
            if raw is None:
                continue
            task = asyncio.create_task(bridge.handle_message(channel, raw))
            tasks.add(task)
            task.add_done_callback(tasks.discard)
    except WebSocketDisconnect:
        pass
    finally:
        logger.info(f"Peer disconnected: {peer_id}", pending_prompts=len(tasks))
        for task in tasks:
            task.cancel()
