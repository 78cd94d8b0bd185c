"""Release metadata lookup against the GitHub releases API."""

from collections.abc import Callable

import httpx
from pydantic import ValidationError as PydanticValidationError

from mydeviceai.exceptions import NetworkError, NoMatchingAssetError
from mydeviceai.logger import get_logger
from mydeviceai.models.runtime import PlatformTarget, Release, ReleaseAsset
from mydeviceai.services.runtime.platform import asset_matcher

logger = get_logger(__name__)


class ReleaseFetcher:
    """Fetches release metadata for a pinned tag and filters its assets by platform."""

    def __init__(
        self,
        client_factory: Callable[[], httpx.AsyncClient],
        owner: str,
        repo: str,
        api_base: str = "https://api.github.com",
    ) -> None:
        self._client_factory = client_factory
        self.owner = owner
        self.repo = repo
        self.api_base = api_base.rstrip("/")

    def release_url(self, tag: str) -> str:
        base = f"{self.api_base}/repos/{self.owner}/{self.repo}/releases"
        if tag == "latest":
            return f"{base}/latest"
        return f"{base}/tags/{tag}"

    async def fetch_release(self, tag: str) -> Release:
        """
        Fetch release metadata for a tag.

        Args:
            tag: Release tag, or "latest"

        Returns:
            Parsed release

        Raises:
            NetworkError: On transport failure, non-2xx status or unparsable body
        """
        url = self.release_url(tag)
        logger.info("Fetching release metadata", url=url)
        try:
            async with self._client_factory() as client:
                response = await client.get(url, headers={"Accept": "application/vnd.github+json"})
                response.raise_for_status()
                return Release.model_validate(response.json())
        except httpx.HTTPError as e:
            raise NetworkError(url=url, error=e, message_key="runtime.release.fetch_failed") from e
        except (ValueError, PydanticValidationError) as e:
            raise NetworkError(url=url, error=f"invalid release payload ({e})") from e

    async def find_assets(self, tag: str, target: PlatformTarget) -> tuple[Release, list[ReleaseAsset]]:
        """
        Fetch a release and keep only the assets built for ``target``.

        Returns:
            The release and the matching assets in their original order

        Raises:
            NoMatchingAssetError: If no asset matches the platform pattern
        """
        release = await self.fetch_release(tag)
        matches = asset_matcher(target)
        assets = [a for a in release.assets if matches(a.name)]
        if not assets:
            raise NoMatchingAssetError(platform=target.label, tag=release.tag_name)
        logger.info(
            "Matched release assets",
            tag=release.tag_name,
            platform=target.label,
            assets=[a.name for a in assets],
        )
        return release, assets
