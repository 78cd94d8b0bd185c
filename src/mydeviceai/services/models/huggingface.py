"""Read-only Hugging Face catalog client for GGUF models."""

from collections.abc import Callable
from typing import Any
from urllib.parse import quote

import httpx

from mydeviceai.exceptions import NetworkError, ValidationError
from mydeviceai.logger import get_logger
from mydeviceai.models.registry import RemoteModelFile, RemoteModelSummary

logger = get_logger(__name__)

MODEL_FILE_EXTENSION = ".gguf"


def _summary_from_api(item: dict[str, Any]) -> RemoteModelSummary:
    card = item.get("cardData") if isinstance(item.get("cardData"), dict) else {}
    description = item.get("description")
    if not isinstance(description, str):
        summary = card.get("summary")
        description = summary if isinstance(summary, str) else None
    tags = item.get("tags")
    likes = item.get("likes")
    downloads = item.get("downloads")
    return RemoteModelSummary(
        id=str(item.get("id") or item.get("modelId") or "").strip(),
        downloads=downloads if isinstance(downloads, int) else 0,
        likes=likes if isinstance(likes, int) else None,
        tags=[str(t) for t in tags] if isinstance(tags, list) else None,
        description=description,
    )


def _file_size(entry: dict[str, Any]) -> int | None:
    size = entry.get("size")
    if isinstance(size, int):
        return size
    lfs = entry.get("lfs")
    if isinstance(lfs, dict) and isinstance(lfs.get("size"), int):
        return lfs["size"]
    return None


class HuggingFaceCatalog:
    """Searches GGUF repos and lists their model files."""

    def __init__(
        self,
        client_factory: Callable[[], httpx.AsyncClient],
        endpoint: str = "https://huggingface.co",
        search_limit: int = 20,
    ) -> None:
        self._client_factory = client_factory
        self.endpoint = endpoint.rstrip("/")
        self.search_limit = search_limit

    async def _get_json(self, url: str, params: dict[str, Any] | None = None) -> Any:  # noqa: ANN401
        try:
            async with self._client_factory() as client:
                response = await client.get(url, params=params, headers={"Accept": "application/json"})
                response.raise_for_status()
                return response.json()
        except httpx.HTTPError as e:
            logger.error("Catalog request failed", url=url, error=str(e))
            raise NetworkError(url=url, error=e) from e
        except ValueError as e:
            logger.error("Catalog response is not JSON", url=url)
            raise NetworkError(url=url, error=f"invalid JSON ({e})") from e

    async def search(self, query: str) -> list[RemoteModelSummary]:
        """
        Search GGUF repos, most downloaded first.

        Args:
            query: Free-text search; empty searches for "gguf"

        Returns:
            Repo summaries without file detail
        """
        term = query.strip() if query and query.strip() else "gguf"
        url = f"{self.endpoint}/api/models"
        params = {
            "search": term,
            "filter": "gguf",
            "sort": "downloads",
            "direction": "-1",
            "limit": str(self.search_limit),
        }
        raw = await self._get_json(url, params=params)
        items = raw if isinstance(raw, list) else []
        results = [_summary_from_api(item) for item in items if isinstance(item, dict)]
        results = [r for r in results if r.id][: self.search_limit]
        logger.info("Catalog search", query=term, result_count=len(results))
        return results

    async def list_files(self, repo_id: str) -> list[RemoteModelFile]:
        """List the GGUF files in a repo's main branch."""
        repo_id = repo_id.strip()
        if not repo_id:
            raise ValidationError("models.invalid_request", field="repoId")

        url = f"{self.endpoint}/api/models/{quote(repo_id, safe='/')}/tree/main"
        raw = await self._get_json(url)
        entries = raw if isinstance(raw, list) else []
        files = [
            RemoteModelFile(name=str(entry["path"]), size=_file_size(entry))
            for entry in entries
            if isinstance(entry, dict)
            and isinstance(entry.get("path"), str)
            and entry["path"].lower().endswith(MODEL_FILE_EXTENSION)
        ]
        logger.info("Listed repo files", repo_id=repo_id, file_count=len(files))
        return files

    def download_url(self, repo_id: str, file_name: str) -> str:
        return f"{self.endpoint}/{quote(repo_id, safe='/')}/resolve/main/{quote(file_name, safe='/')}?download=true"
