"""Model registry and catalog services."""

from .downloader import ModelDownloader
from .huggingface import HuggingFaceCatalog
from .params import PARAM_RANGES, normalize_params
from .registry import ModelRegistry

__all__ = [
    "PARAM_RANGES",
    "HuggingFaceCatalog",
    "ModelDownloader",
    "ModelRegistry",
    "normalize_params",
]
