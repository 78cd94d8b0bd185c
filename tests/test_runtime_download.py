# ruff: noqa
import asyncio

import httpx
import pytest

from mydeviceai.exceptions import DownloadCancelledError, DownloadFailedError, NetworkError, TooManyRedirectsError
from mydeviceai.services.runtime.download import CHUNK_SIZE, download_file


def client_for(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler), follow_redirects=False)


class EventSink:
    def __init__(self):
        self.events = []

    async def __call__(self, event):
        self.events.append(event)

    @property
    def types(self):
        return [e.type for e in self.events]


@pytest.mark.asyncio
async def test_follows_redirects_and_reports_progress(tmp_path):
    payload = b"a" * (CHUNK_SIZE * 2 + 10)

    def handler(request):
        if request.url.host == "github.com":
            return httpx.Response(302, headers={"Location": "https://objects.example.com/blob/asset.zip"})
        if request.url.path == "/blob/asset.zip":
            return httpx.Response(301, headers={"Location": "/final/asset.zip"})
        return httpx.Response(200, content=payload)

    sink = EventSink()
    dest = tmp_path / "out" / "asset.zip"
    async with client_for(handler) as client:
        result = await download_file(client, "https://github.com/asset.zip", dest, progress_callback=sink)

    assert dest.read_bytes() == payload
    assert result.received_bytes == len(payload)
    assert result.total_bytes == len(payload)
    assert sink.types[0] == "download-start"
    assert sink.events[0].url == "https://github.com/asset.zip"
    assert sink.types[-1] == "download-complete"
    progress = [e for e in sink.events if e.type == "download-progress"]
    assert progress[-1].received_bytes == len(payload)
    assert all(e.total_bytes == len(payload) for e in progress)


@pytest.mark.asyncio
async def test_unknown_content_length_reports_no_total(tmp_path):
    async def body():
        yield b"x" * 100
        yield b"y" * 100

    sink = EventSink()
    dest = tmp_path / "file.bin"
    async with client_for(lambda r: httpx.Response(200, content=body())) as client:
        result = await download_file(client, "https://example.com/file.bin", dest, progress_callback=sink)

    assert result.total_bytes is None
    assert dest.stat().st_size == 200
    assert sink.events[0].total_bytes is None
    assert all(e.total_bytes is None for e in sink.events if e.type == "download-progress")


@pytest.mark.asyncio
async def test_redirect_loop_is_bounded(tmp_path):
    calls = []

    def handler(request):
        calls.append(str(request.url))
        return httpx.Response(302, headers={"Location": "https://example.com/again"})

    dest = tmp_path / "loop.bin"
    async with client_for(handler) as client:
        with pytest.raises(TooManyRedirectsError):
            await download_file(client, "https://example.com/start", dest, max_redirects=2)

    assert len(calls) == 3
    assert not dest.exists()


@pytest.mark.asyncio
async def test_http_error_status_fails_without_leaving_file(tmp_path):
    dest = tmp_path / "missing.bin"
    async with client_for(lambda r: httpx.Response(404)) as client:
        with pytest.raises(DownloadFailedError) as exc:
            await download_file(client, "https://example.com/missing.bin", dest)

    assert exc.value.params["http_status"] == 404
    assert exc.value.status_code == 500
    assert str(exc.value) == "Download failed: HTTP 404 for https://example.com/missing.bin"
    assert not dest.exists()


@pytest.mark.asyncio
async def test_transport_failure_mid_stream_removes_partial_file(tmp_path):
    async def body():
        yield b"partial" * 1000
        raise httpx.ReadError("connection reset")

    dest = tmp_path / "broken.bin"
    async with client_for(lambda r: httpx.Response(200, content=body())) as client:
        with pytest.raises(NetworkError) as exc:
            await download_file(client, "https://example.com/broken.bin", dest)

    assert exc.value.retriable
    assert not dest.exists()


@pytest.mark.asyncio
async def test_cancellation_stops_at_chunk_boundary(tmp_path):
    cancel = asyncio.Event()
    sink_events = []

    async def sink(event):
        sink_events.append(event)
        if event.type == "download-progress":
            cancel.set()

    dest = tmp_path / "cancel.bin"
    payload = b"z" * (CHUNK_SIZE * 3)
    async with client_for(lambda r: httpx.Response(200, content=payload)) as client:
        with pytest.raises(DownloadCancelledError):
            await download_file(
                client, "https://example.com/c.bin", dest, progress_callback=sink, cancel_event=cancel, progress_id="m1"
            )

    assert not dest.exists()
    assert [e.received_bytes for e in sink_events if e.type == "download-progress"] == [CHUNK_SIZE]
    assert all(e.id == "m1" for e in sink_events)


@pytest.mark.asyncio
async def test_failing_progress_consumer_does_not_abort_download(tmp_path):
    async def broken(event):
        raise RuntimeError("ui went away")

    dest = tmp_path / "ok.bin"
    async with client_for(lambda r: httpx.Response(200, content=b"data")) as client:
        result = await download_file(client, "https://example.com/ok.bin", dest, progress_callback=broken)

    assert result.received_bytes == 4
    assert dest.read_bytes() == b"data"
