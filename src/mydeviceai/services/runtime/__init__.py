"""llama.cpp runtime provisioning services."""

from .download import download_file
from .installer import RuntimeInstaller
from .platform import asset_matcher, detect_platform
from .releases import ReleaseFetcher

__all__ = [
    "ReleaseFetcher",
    "RuntimeInstaller",
    "asset_matcher",
    "detect_platform",
    "download_file",
]
