"""llama.cpp runtime installation models."""

from typing import Literal

from pydantic import BaseModel, ConfigDict

from mydeviceai.models.base import CamelModel


class InstallStatus(CamelModel):
    """Derived install state; persisted only as InstallMetadata when installed."""

    installed: bool
    version: str | None = None
    binary_path: str | None = None
    error: str | None = None


class InstallMetadata(CamelModel):
    """Root structure of install.json."""

    version: str
    binary_path: str


class PlatformTarget(BaseModel):
    """A supported host platform/architecture pair."""

    model_config = ConfigDict(frozen=True)

    os: Literal["windows", "linux", "macos"]
    arch: Literal["x64", "arm64"]

    @property
    def label(self) -> str:
        return f"{self.os}/{self.arch}"


class ReleaseAsset(BaseModel):
    """A single downloadable file attached to a hosted release."""

    name: str
    browser_download_url: str
    size: int | None = None


class Release(BaseModel):
    """Release metadata as returned by the releases API."""

    tag_name: str
    name: str | None = None
    assets: list[ReleaseAsset] = []


class DownloadResult(CamelModel):
    file_path: str
    received_bytes: int
    total_bytes: int | None = None
