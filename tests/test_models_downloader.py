# ruff: noqa
import asyncio
from pathlib import Path

import httpx
import pytest

from mydeviceai.exceptions import OperationalError
from mydeviceai.models.registry import DownloadModelRequest
from mydeviceai.services.models.builtin import BUILTIN_FILE_NAME, BUILTIN_MODEL_ID
from mydeviceai.services.models.downloader import ModelDownloader
from mydeviceai.services.models.huggingface import HuggingFaceCatalog
from mydeviceai.services.models.registry import ModelRegistry
from mydeviceai.services.runtime.download import CHUNK_SIZE


def make_downloader(tmp_path, client_factory):
    models_dir = tmp_path / "models"
    registry = ModelRegistry(tmp_path / "models.json", models_dir)
    catalog = HuggingFaceCatalog(client_factory)
    return ModelDownloader(registry, catalog, models_dir, client_factory)


def weights_handler(payload=b"GGUF" * 64):
    def handler(request):
        if "/resolve/main/" in request.url.path and request.url.host == "huggingface.co":
            return httpx.Response(302, headers={"Location": "https://cdn-lfs.hf.co/blob"})
        return httpx.Response(200, content=payload)

    return handler


class EventSink:
    def __init__(self):
        self.events = []

    async def __call__(self, event):
        self.events.append(event)


@pytest.mark.asyncio
async def test_download_and_activate(tmp_path, make_client_factory):
    downloader = make_downloader(tmp_path, make_client_factory(weights_handler()))
    assert downloader.registry.list_models().active_model_id is None
    sink = EventSink()

    result = await downloader.download_and_register(DownloadModelRequest(repo_id="X", file_name="m.gguf"), sink)

    assert result.ok is True
    listing = downloader.registry.list_models()
    model = next(m for m in listing.models if m.id == "X/m.gguf")
    assert model.installed is True
    assert listing.active_model_id == "X/m.gguf"
    assert (tmp_path / "models" / "X" / "m.gguf").stat().st_size == 256
    assert not (tmp_path / "models" / "X" / "m.gguf.download").exists()
    assert all(e.id == "X/m.gguf" for e in sink.events)
    assert downloader.active_downloads() == []


@pytest.mark.asyncio
async def test_failed_download_leaves_no_installed_file(tmp_path, make_client_factory):
    downloader = make_downloader(tmp_path, make_client_factory(lambda r: httpx.Response(404)))
    sink = EventSink()

    result = await downloader.download_and_register(DownloadModelRequest(repo_id="X", file_name="m.gguf"), sink)

    assert result.ok is False
    assert "HTTP 404" in result.error
    assert sink.events[-1].type == "error"
    assert [p for p in (tmp_path / "models").rglob("*") if p.is_file()] == []
    assert downloader.registry.get_model("X/m.gguf") is None


@pytest.mark.asyncio
async def test_invalid_request_is_reported(tmp_path, make_client_factory):
    downloader = make_downloader(tmp_path, make_client_factory(weights_handler()))

    result = await downloader.download_and_register(DownloadModelRequest(repo_id=" ", file_name="m.gguf"))

    assert result.ok is False
    assert "required" in result.error


@pytest.mark.asyncio
async def test_duplicate_download_of_same_id_is_rejected(tmp_path, make_client_factory):
    release = asyncio.Event()

    async def slow_body():
        yield b"a" * 10
        await release.wait()
        yield b"b" * 10

    downloader = make_downloader(tmp_path, make_client_factory(lambda r: httpx.Response(200, content=slow_body())))
    request = DownloadModelRequest(repo_id="X", file_name="m.gguf")

    first = asyncio.create_task(downloader.download_and_register(request))
    for _ in range(100):
        if downloader.active_downloads():
            break
        await asyncio.sleep(0)

    second = await downloader.download_and_register(request)
    release.set()
    first_result = await first

    assert second.ok is False
    assert "already in progress" in second.error
    assert first_result.ok is True


@pytest.mark.asyncio
async def test_same_file_name_from_two_repos_keeps_separate_files(tmp_path, make_client_factory):
    both_streaming = asyncio.Event()
    streaming = []

    def body(marker):
        async def chunks():
            streaming.append(marker)
            if len(streaming) == 2:
                both_streaming.set()
            yield marker * 1000
            await asyncio.wait_for(both_streaming.wait(), timeout=5)
            yield marker * 1000

        return chunks()

    def handler(request):
        marker = b"A" if request.url.path.startswith("/RepoA/") else b"B"
        return httpx.Response(200, content=body(marker))

    downloader = make_downloader(tmp_path, make_client_factory(handler))

    a, b = await asyncio.gather(
        downloader.download_and_register(DownloadModelRequest(repo_id="RepoA", file_name="m.gguf")),
        downloader.download_and_register(DownloadModelRequest(repo_id="RepoB", file_name="m.gguf")),
    )

    assert a.ok is True
    assert b.ok is True
    assert a.model.file_path != b.model.file_path
    assert Path(a.model.file_path).read_bytes() == b"A" * 2000
    assert Path(b.model.file_path).read_bytes() == b"B" * 2000

    assert downloader.registry.delete_model("RepoA/m.gguf").ok is True
    assert Path(b.model.file_path).read_bytes() == b"B" * 2000
    assert downloader.registry.get_model("RepoB/m.gguf").installed is True


@pytest.mark.asyncio
async def test_path_escaping_names_are_rejected(tmp_path, make_client_factory):
    downloader = make_downloader(tmp_path, make_client_factory(weights_handler()))

    result = await downloader.download_and_register(DownloadModelRequest(repo_id="..", file_name="m.gguf"))

    assert result.ok is False
    assert "repoId is required" in result.error
    assert not (tmp_path / "m.gguf").exists()


@pytest.mark.asyncio
async def test_cancel_download(tmp_path, make_client_factory):
    payload = b"c" * (CHUNK_SIZE * 3)
    downloader = make_downloader(tmp_path, make_client_factory(lambda r: httpx.Response(200, content=payload)))

    async def cancel_on_progress(event):
        if event.type == "download-progress":
            assert downloader.cancel(event.id) is True

    result = await downloader.download_and_register(
        DownloadModelRequest(repo_id="X", file_name="m.gguf"), cancel_on_progress
    )

    assert result.ok is False
    assert "cancelled" in result.error
    assert not (tmp_path / "models" / "X" / "m.gguf").exists()
    assert not (tmp_path / "models" / "X" / "m.gguf.download").exists()
    assert downloader.cancel("X/m.gguf") is False


@pytest.mark.asyncio
async def test_ensure_default_model_updates_builtin_entry(tmp_path, make_client_factory):
    downloader = make_downloader(tmp_path, make_client_factory(weights_handler()))

    await downloader.ensure_default_model()

    model = downloader.registry.get_model(BUILTIN_MODEL_ID)
    assert model.installed is True
    assert model.source == "builtin"
    assert model.file_path == str(tmp_path / "models" / BUILTIN_FILE_NAME)
    assert downloader.registry.list_models().active_model_id == BUILTIN_MODEL_ID
    assert len(downloader.registry.list_models().models) == 1


@pytest.mark.asyncio
async def test_ensure_default_model_skips_existing_file(tmp_path, make_client_factory):
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(500)

    downloader = make_downloader(tmp_path, make_client_factory(handler))
    (tmp_path / "models").mkdir()
    (tmp_path / "models" / BUILTIN_FILE_NAME).write_bytes(b"gguf")

    await downloader.ensure_default_model()

    assert calls == []


@pytest.mark.asyncio
async def test_ensure_default_model_raises_on_failure(tmp_path, make_client_factory):
    downloader = make_downloader(tmp_path, make_client_factory(lambda r: httpx.Response(500)))

    with pytest.raises(OperationalError) as exc:
        await downloader.ensure_default_model()
    assert exc.value.message_key == "models.default_download_failed"


@pytest.mark.asyncio
async def test_search_failure_is_structured(tmp_path, make_client_factory):
    downloader = make_downloader(tmp_path, make_client_factory(lambda r: httpx.Response(502)))

    result = await downloader.search("qwen")

    assert result.ok is False
    assert result.error
