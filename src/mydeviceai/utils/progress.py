"""Progress delivery helpers."""

import asyncio
import json
import typing
from collections.abc import Awaitable, Callable

from pydantic import BaseModel

from mydeviceai.logger import get_logger
from mydeviceai.models.progress import ProgressCallback, ProgressEvent

logger = get_logger(__name__)


async def emit(callback: ProgressCallback | None, event: ProgressEvent) -> None:
    """Deliver an event to an optional callback. Consumer failures never abort the producer."""
    if callback is None:
        return
    try:
        await callback(event)
    except Exception as e:
        logger.warning(f"Progress callback failed: {e}", event_type=event.type)


async def stream_progress(
    run: Callable[[ProgressCallback], Awaitable[BaseModel]],
) -> typing.AsyncGenerator[str, None]:
    """
    Run an operation and stream its progress events as server-sent events.

    Args:
        run: Operation receiving a progress callback and returning its result model

    Yields:
        ``data: <json>`` frames, one per event, then one ``result`` frame
    """
    queue: asyncio.Queue[str | None] = asyncio.Queue()

    async def callback(event: ProgressEvent) -> None:
        await queue.put(f"data: {json.dumps(event.model_dump(mode='json', by_alias=True, exclude_none=True))}\n\n")

    async def runner() -> None:
        try:
            result = await run(callback)
            payload = {"type": "result", **result.model_dump(mode="json", by_alias=True, exclude_none=True)}
            await queue.put(f"data: {json.dumps(payload)}\n\n")
        except Exception as e:
            logger.error(f"Streamed operation failed: {e}")
            await queue.put(f"data: {json.dumps({'type': 'error', 'message': str(e)})}\n\n")
        finally:
            await queue.put(None)

    task = asyncio.create_task(runner())

    try:
        while True:
            data = await queue.get()
            if data is None:
                break
            yield data
    finally:
        if not task.done():
            # Client went away; the operation keeps running to completion
            logger.info("Progress stream closed before operation finished")
