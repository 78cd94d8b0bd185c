"""P2P request bridge.

Receives prompt requests from remote peers, makes sure the local llama-server
is running and relays its streamed chat completion back to the peer token by
token. The P2P transport itself lives outside this process; it hands each
peer's messages to ``InferenceBridge.handle_message`` and supplies a
``PeerChannel`` for replies.
"""

import json
import uuid
from collections.abc import Callable
from typing import Any, Protocol

import httpx
from pydantic import BaseModel

from mydeviceai import __version__
from mydeviceai.exceptions import OperationalError, ValidationError
from mydeviceai.logger import get_logger
from mydeviceai.models.bridge import (
    EndMessage,
    ErrorMessage,
    HelloMessage,
    ReasoningTokenMessage,
    StartMessage,
    TokenMessage,
)
from mydeviceai.models.registry import ModelRuntimeParams
from mydeviceai.services.bridge.stream import parse_completion_line
from mydeviceai.services.models.registry import ModelRegistry
from mydeviceai.services.server.supervisor import ServerSupervisor

logger = get_logger(__name__)

DEFAULT_MAX_TOKENS = 512
BRIDGE_IMPL = "mydeviceai-desktop"
COMPLETIONS_PATH = "/v1/chat/completions"


class PeerChannel(Protocol):
    """Reply side of one connected peer."""

    peer_id: str

    async def send_json(self, data: dict[str, Any]) -> None: ...


def _prompt_max_tokens(value: Any) -> int:  # noqa: ANN401
    if isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0:
        return int(value)
    return DEFAULT_MAX_TOKENS


class InferenceBridge:
    """Serves prompts from peers with the locally supervised llama-server."""

    def __init__(
        self,
        supervisor: ServerSupervisor,
        registry: ModelRegistry,
        client_factory: Callable[[], httpx.AsyncClient],
        client_id: str | None = None,
    ) -> None:
        self.supervisor = supervisor
        self.registry = registry
        self._client_factory = client_factory
        self.client_id = client_id or uuid.uuid4().hex

    def hello(self) -> HelloMessage:
        return HelloMessage(client_id=self.client_id, impl=BRIDGE_IMPL, version=__version__)

    async def send(self, peer: PeerChannel, message: BaseModel) -> None:
        """Send one message; a failed send is logged and never raised."""
        try:
            await peer.send_json(message.model_dump(by_alias=True, exclude_none=True))
        except Exception as e:
            logger.error(f"Failed to send message to peer: {e}", peer_id=peer.peer_id, t=getattr(message, "t", None))

    async def handle_message(self, peer: PeerChannel, raw: str | bytes | dict[str, Any]) -> None:
        """Dispatch one inbound message. Unknown or malformed messages are logged and ignored."""
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        if isinstance(raw, str):
            try:
                data = json.loads(raw)
            except ValueError:
                logger.warning("Ignoring non-JSON peer message", peer_id=peer.peer_id, raw=raw[:256])
                return
        else:
            data = raw

        if not isinstance(data, dict):
            logger.warning("Ignoring peer message that is not an object", peer_id=peer.peer_id)
            return

        kind = data.get("t")
        if kind == "hello":
            logger.info(
                "Peer hello",
                peer_id=peer.peer_id,
                client_id=data.get("clientId"),
                impl=data.get("impl"),
                version=data.get("version"),
            )
        elif kind == "prompt":
            await self.handle_prompt(peer, data)
        else:
            logger.warning("Ignoring unknown peer message type", peer_id=peer.peer_id, t=kind)

    async def handle_prompt(self, peer: PeerChannel, data: dict[str, Any]) -> None:
        """
        Stream a completion for one prompt request back to the peer.

        The peer receives ``start``, then any number of ``token`` and
        ``reasoning_token`` messages, then exactly one ``end`` or ``error``.
        A request without an id cannot be answered and is dropped.
        """
        request_id = data.get("id") if isinstance(data.get("id"), str) else ""
        prompt = data.get("prompt") if isinstance(data.get("prompt"), str) else ""
        max_tokens = _prompt_max_tokens(data.get("max_tokens"))

        if not request_id:
            logger.error("Dropping prompt without id", peer_id=peer.peer_id)
            return
        if not prompt:
            logger.error("Prompt message without prompt text", peer_id=peer.peer_id, id=request_id)
            await self.send(peer, ErrorMessage(id=request_id, message=str(ValidationError("bridge.invalid_prompt"))))
            return

        await self.send(peer, StartMessage(id=request_id))
        try:
            await self._stream_completion(peer, request_id, prompt, max_tokens)
        except Exception as e:
            logger.error(f"Completion stream failed: {e}", peer_id=peer.peer_id, id=request_id)
            await self.send(peer, ErrorMessage(id=request_id, message=str(e)))

    def _sampling_params(self) -> ModelRuntimeParams:
        active = self.registry.get_active_model()
        return active.current_params if active else ModelRuntimeParams()

    async def _stream_completion(self, peer: PeerChannel, request_id: str, prompt: str, max_tokens: int) -> None:
        ensured = await self.supervisor.ensure_running()
        if not ensured.ok or not ensured.endpoint:
            raise OperationalError("bridge.server_unavailable", error=ensured.error or "no endpoint")

        params = self._sampling_params()
        url = f"{ensured.endpoint}{COMPLETIONS_PATH}"
        body = {
            "model": "local-model",
            "messages": [{"role": "user", "content": prompt}],
            "stream": True,
            "max_tokens": max_tokens,
            "temperature": params.temperature,
            "top_p": params.top_p,
            "top_k": params.top_k,
        }
        logger.info("Streaming completion", peer_id=peer.peer_id, id=request_id, url=url, max_tokens=max_tokens)

        async with self._client_factory() as client:
            async with client.stream("POST", url, json=body) as response:
                if not response.is_success:
                    text = (await response.aread()).decode("utf-8", errors="replace")
                    raise OperationalError("bridge.stream_failed", http_status=response.status_code, body=text[:512])

                async for line in response.aiter_lines():
                    chunk = parse_completion_line(line)
                    if chunk is None:
                        continue
                    if chunk.reasoning:
                        await self.send(peer, ReasoningTokenMessage(id=request_id, tok=chunk.reasoning))
                    if chunk.content:
                        await self.send(peer, TokenMessage(id=request_id, tok=chunk.content))
                    if chunk.done:
                        break

        await self.send(peer, EndMessage(id=request_id))
