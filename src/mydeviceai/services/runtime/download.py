"""Streaming HTTP download with bounded manual redirect following."""

import asyncio
from pathlib import Path

import httpx

from mydeviceai.exceptions import (
    DownloadCancelledError,
    DownloadFailedError,
    NetworkError,
    TooManyRedirectsError,
)
from mydeviceai.logger import get_logger
from mydeviceai.models.progress import (
    DownloadCompleteEvent,
    DownloadProgressEvent,
    DownloadStartEvent,
    ProgressCallback,
)
from mydeviceai.models.runtime import DownloadResult
from mydeviceai.utils.progress import emit

logger = get_logger(__name__)

CHUNK_SIZE = 64 * 1024


def _content_length(response: httpx.Response) -> int | None:
    raw = response.headers.get("Content-Length")
    if raw is None:
        return None
    try:
        total = int(raw)
    except ValueError:
        return None
    return total if total >= 0 else None


async def download_file(
    client: httpx.AsyncClient,
    url: str,
    dest_path: Path,
    progress_callback: ProgressCallback | None = None,
    max_redirects: int = 5,
    cancel_event: asyncio.Event | None = None,
    progress_id: str | None = None,
) -> DownloadResult:
    """
    Download ``url`` to ``dest_path``, streaming bytes to disk as they arrive.

    Redirects (3xx with a Location header) are followed by re-issuing the
    request, at most ``max_redirects`` times. Any failure removes the partial
    file at ``dest_path``.

    Args:
        client: HTTP client; must not follow redirects itself
        url: Source URL
        dest_path: Destination file path
        progress_callback: Receives download-start/progress/complete events
        max_redirects: Redirect bound
        cancel_event: When set, the download stops at the next chunk boundary
        progress_id: Optional id attached to every emitted event

    Returns:
        Download result with the received byte count

    Raises:
        DownloadFailedError: On a non-2xx final status
        TooManyRedirectsError: When the redirect bound is exceeded
        DownloadCancelledError: When ``cancel_event`` is set mid-transfer
        NetworkError: On transport failure
    """
    dest_path.parent.mkdir(parents=True, exist_ok=True)
    current_url = url

    try:
        for redirect_count in range(max_redirects + 1):
            async with client.stream("GET", current_url) as response:
                if response.is_redirect:
                    location = response.headers["Location"]
                    next_url = str(response.url.join(location))
                    logger.info(
                        "Following redirect",
                        from_url=current_url,
                        to_url=next_url,
                        redirect_count=redirect_count + 1,
                    )
                    current_url = next_url
                    continue

                if not response.is_success:
                    logger.error("HTTP download error", url=current_url, status_code=response.status_code)
                    raise DownloadFailedError(url=current_url, http_status=response.status_code)

                total = _content_length(response)
                await emit(progress_callback, DownloadStartEvent(id=progress_id, url=url, total_bytes=total))

                received = 0
                with open(dest_path, "wb") as out_file:
                    async for chunk in response.aiter_bytes(chunk_size=CHUNK_SIZE):
                        if cancel_event is not None and cancel_event.is_set():
                            raise DownloadCancelledError(id=progress_id or url)
                        out_file.write(chunk)
                        received += len(chunk)
                        await emit(
                            progress_callback,
                            DownloadProgressEvent(id=progress_id, received_bytes=received, total_bytes=total),
                        )

                logger.info("Download finished", url=url, path=str(dest_path), bytes=received)
                await emit(progress_callback, DownloadCompleteEvent(id=progress_id, file_path=str(dest_path)))
                return DownloadResult(file_path=str(dest_path), received_bytes=received, total_bytes=total)

        raise TooManyRedirectsError(url=url, max_redirects=max_redirects)

    except httpx.HTTPError as e:
        dest_path.unlink(missing_ok=True)
        logger.error("Network error during download", url=current_url, error=str(e))
        raise NetworkError(url=current_url, error=e) from e
    except BaseException:
        dest_path.unlink(missing_ok=True)
        raise
