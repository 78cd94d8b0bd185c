"""Model download service: fetch GGUF weights and register them."""

import asyncio
from collections.abc import Callable
from pathlib import Path

import httpx

from mydeviceai.exceptions import OperationalError, ResourceConflictError, ValidationError
from mydeviceai.logger import get_logger
from mydeviceai.models.progress import ErrorEvent, ProgressCallback, StatusEvent
from mydeviceai.models.registry import (
    DownloadModelRequest,
    DownloadModelResult,
    RemoteFilesResult,
    RemoteSearchResult,
)
from mydeviceai.services.models.builtin import (
    BUILTIN_DISPLAY_NAME,
    BUILTIN_FILE_NAME,
    BUILTIN_MODEL_ID,
    BUILTIN_REPO_ID,
    builtin_model_path,
)
from mydeviceai.services.models.huggingface import HuggingFaceCatalog
from mydeviceai.services.models.registry import ModelRegistry
from mydeviceai.services.runtime.download import download_file
from mydeviceai.utils.progress import emit

logger = get_logger(__name__)

PARTIAL_SUFFIX = ".download"


def _path_component(value: str, field: str) -> str:
    """Flatten a repo id or repo-relative file name into one safe directory entry."""
    name = value.strip().replace("/", "__").replace("\\", "__")
    if name in ("", ".", ".."):
        raise ValidationError("models.invalid_request", field=field)
    return name


class ModelDownloader:
    """
    Downloads models from the catalog into the models directory.

    Files are written under a temporary suffix and renamed into place only
    after the transfer completes, so a partial file is never seen as installed.
    At most one download per model id runs at a time; downloads of distinct
    ids run concurrently.
    """

    def __init__(
        self,
        registry: ModelRegistry,
        catalog: HuggingFaceCatalog,
        models_dir: Path,
        client_factory: Callable[[], httpx.AsyncClient],
        max_redirects: int = 5,
    ) -> None:
        self.registry = registry
        self.catalog = catalog
        self.models_dir = models_dir
        self._client_factory = client_factory
        self.max_redirects = max_redirects
        # model id -> cancellation flag of the in-flight download
        self._in_flight: dict[str, asyncio.Event] = {}
        # Destination files of in-flight downloads
        self._in_flight_paths: set[Path] = set()

    def dest_path_for(self, model_id: str, repo_id: str, file_name: str) -> Path:
        """
        Weight file location for a model.

        The builtin model keeps its well-known flat path; every other model is
        stored under a directory per repo so equal file names never share a file.
        """
        if model_id == BUILTIN_MODEL_ID:
            return builtin_model_path(self.models_dir)
        return self.models_dir / _path_component(repo_id, "repoId") / _path_component(file_name, "fileName")

    def active_downloads(self) -> list[str]:
        return list(self._in_flight)

    def cancel(self, model_id: str) -> bool:
        """Request cancellation of an in-flight download. Returns False if none is running."""
        event = self._in_flight.get(model_id)
        if event is None:
            return False
        logger.info("Cancelling model download", id=model_id)
        event.set()
        return True

    async def search(self, query: str) -> RemoteSearchResult:
        try:
            return RemoteSearchResult(ok=True, results=await self.catalog.search(query))
        except Exception as e:
            logger.error(f"Remote search failed: {e}", query=query)
            return RemoteSearchResult(ok=False, error=str(e))

    async def list_files(self, repo_id: str) -> RemoteFilesResult:
        try:
            return RemoteFilesResult(ok=True, files=await self.catalog.list_files(repo_id))
        except Exception as e:
            logger.error(f"Listing remote files failed: {e}", repo_id=repo_id)
            return RemoteFilesResult(ok=False, error=str(e))

    async def download_and_register(
        self,
        request: DownloadModelRequest,
        progress_callback: ProgressCallback | None = None,
        model_id: str | None = None,
    ) -> DownloadModelResult:
        """
        Download a model file and upsert its registry entry.

        Args:
            request: Repo, file and optional display metadata
            progress_callback: Receives download events tagged with the model id
            model_id: Registry id to upsert; defaults to ``{repoId}/{fileName}``

        Returns:
            ok with the registered model, or ok=False with the error
        """
        repo_id = request.repo_id.strip()
        file_name = request.file_name.strip()
        model_id = model_id or f"{repo_id}/{file_name}"

        try:
            if not repo_id or not file_name:
                raise ValidationError("models.invalid_request", field="repoId and fileName")
            if model_id in self._in_flight:
                raise ResourceConflictError("download.in_progress", id=model_id)
            dest_path = self.dest_path_for(model_id, repo_id, file_name)
            if dest_path in self._in_flight_paths:
                raise ResourceConflictError("download.in_progress", id=model_id)
        except Exception as e:
            await emit(progress_callback, ErrorEvent(id=model_id, message=str(e)))
            return DownloadModelResult(ok=False, error=str(e))

        cancel_event = asyncio.Event()
        self._in_flight[model_id] = cancel_event
        self._in_flight_paths.add(dest_path)

        tmp_path = dest_path.with_name(dest_path.name + PARTIAL_SUFFIX)
        url = self.catalog.download_url(repo_id, file_name)

        try:
            logger.info("Starting model download", id=model_id, url=url, dest_path=str(dest_path))
            async with self._client_factory() as client:
                await download_file(
                    client,
                    url,
                    tmp_path,
                    progress_callback=progress_callback,
                    max_redirects=self.max_redirects,
                    cancel_event=cancel_event,
                    progress_id=model_id,
                )

            tmp_path.replace(dest_path)
            model = self.registry.register_download(
                model_id,
                repo_id=repo_id,
                file_name=file_name,
                file_path=dest_path,
                display_name=request.display_name,
                quantization=request.quantization,
                context_window=request.context_window,
            )
            logger.info("Model downloaded and registered", id=model.id, file_path=model.file_path)
            return DownloadModelResult(ok=True, model=model)

        except Exception as e:
            tmp_path.unlink(missing_ok=True)
            logger.error(f"Model download failed: {e}", id=model_id)
            await emit(progress_callback, ErrorEvent(id=model_id, message=str(e)))
            return DownloadModelResult(ok=False, error=str(e))
        finally:
            self._in_flight.pop(model_id, None)
            self._in_flight_paths.discard(dest_path)

    async def ensure_default_model(self, progress_callback: ProgressCallback | None = None) -> None:
        """
        Download the builtin model if its file is missing.

        Raises:
            OperationalError: If the download fails
        """
        if builtin_model_path(self.models_dir).is_file():
            return

        # Make sure the builtin entry exists so the download updates it in place
        self.registry.get_state()
        await emit(progress_callback, StatusEvent(id=BUILTIN_MODEL_ID, message="Downloading default model..."))
        result = await self.download_and_register(
            DownloadModelRequest(
                repo_id=BUILTIN_REPO_ID,
                file_name=BUILTIN_FILE_NAME,
                display_name=BUILTIN_DISPLAY_NAME,
                quantization="Q4_K_M",
            ),
            progress_callback,
            model_id=BUILTIN_MODEL_ID,
        )
        if not result.ok:
            raise OperationalError("models.default_download_failed", error=result.error)
