"""Line parser for streamed chat-completion responses.

llama-server streams either server-sent events (``data: {...}`` lines, ``:``
comments and a ``data: [DONE]`` sentinel) or newline-delimited JSON. Both
carry OpenAI-style ``choices[0].delta`` objects.
"""

import json
from dataclasses import dataclass
from typing import Any

from mydeviceai.logger import get_logger

logger = get_logger(__name__)

SSE_DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"


@dataclass(frozen=True)
class CompletionChunk:
    content: str | None = None
    reasoning: str | None = None
    done: bool = False


def _first_choice(data: dict[str, Any]) -> dict[str, Any]:
    choices = data.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        return choices[0]
    return {}


def _text(value: Any) -> str | None:  # noqa: ANN401
    if value is None or value == "":
        return None
    return str(value)


def chunk_from_json(data: dict[str, Any]) -> CompletionChunk:
    """Extract content, reasoning and the end flag from one completion object."""
    choice = _first_choice(data)
    delta = choice.get("delta") if isinstance(choice.get("delta"), dict) else {}
    message = choice.get("message") if isinstance(choice.get("message"), dict) else {}

    content = _text(delta.get("content"))
    if content is None:
        content = _text(message.get("content"))

    return CompletionChunk(
        content=content,
        reasoning=_text(delta.get("reasoning_content")),
        done=data.get("done") is True or bool(choice.get("finish_reason")),
    )


def parse_completion_line(line: str) -> CompletionChunk | None:
    """
    Parse one line of a completion stream.

    Returns:
        The chunk carried by the line, or None for blank lines, comments and
        payloads that are not JSON objects
    """
    line = line.strip()
    if not line or line.startswith(":"):
        return None

    if line.startswith(SSE_DATA_PREFIX):
        payload = line[len(SSE_DATA_PREFIX) :].strip()
        if payload == DONE_SENTINEL:
            return CompletionChunk(done=True)
    else:
        payload = line

    try:
        data = json.loads(payload)
    except ValueError:
        logger.debug("Skipping non-JSON stream line", line=payload[:256])
        return None
    if not isinstance(data, dict):
        return None
    return chunk_from_json(data)
