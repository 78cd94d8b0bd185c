"""Configuration data models for MyDeviceAI."""

import os
import sys
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator


def default_app_dir() -> Path:
    """Platform-specific application data directory."""
    if sys.platform == "win32":
        # Windows: %APPDATA%\MyDeviceAI
        return Path(os.getenv("APPDATA", str(Path.home()))) / "MyDeviceAI"
    if sys.platform == "darwin":
        # macOS: ~/Library/Application Support/MyDeviceAI
        return Path.home() / "Library" / "Application Support" / "MyDeviceAI"
    # Linux/Unix: ~/.config/mydeviceai
    return Path.home() / ".config" / "mydeviceai"


class ServerConfig(BaseModel):
    """Control API configuration."""

    # Must match the port the desktop shell connects to
    port: int = 8765
    host: str = "127.0.0.1"


class PathsConfig(BaseModel):
    """Paths configuration."""

    data_dir: Path = Field(default_factory=default_app_dir)
    llama_dir: Path | None = None
    bin_dir: Path | None = None
    models_dir: Path | None = None
    logs_dir: Path | None = None

    @field_validator("data_dir", mode="before")
    @classmethod
    def expand_data_dir(cls, v: str | Path) -> Path:
        """Expand user path for data_dir."""
        if isinstance(v, str):
            return Path(v).expanduser()
        return v

    @field_validator("llama_dir", "bin_dir", "models_dir", "logs_dir", mode="before")
    @classmethod
    def expand_optional_path(cls, v: str | Path | None) -> Path | None:
        """Expand user path for optional paths."""
        if v is None:
            return None
        if isinstance(v, str):
            return Path(v).expanduser()
        return v

    def model_post_init(self, __context: object) -> None:
        """Set default subdirectories if not specified."""
        if self.llama_dir is None:
            self.llama_dir = self.data_dir / "llama"
        if self.bin_dir is None:
            self.bin_dir = self.llama_dir / "bin"
        if self.models_dir is None:
            self.models_dir = self.llama_dir / "models"
        if self.logs_dir is None:
            self.logs_dir = self.data_dir / "logs"

    @property
    def install_metadata_file(self) -> Path:
        assert self.llama_dir is not None
        return self.llama_dir / "install.json"

    @property
    def models_state_file(self) -> Path:
        assert self.llama_dir is not None
        return self.llama_dir / "models.json"


class RuntimeConfig(BaseModel):
    """llama.cpp runtime provisioning and supervision."""

    release_owner: str = "ggml-org"
    release_repo: str = "llama.cpp"
    # Pinned, hand-verified tag. "latest" follows the upstream latest release.
    release_tag: str = "b6989"
    github_api_base: str = "https://api.github.com"
    user_agent: str = "mydeviceai-desktop"
    binary_name: str = "llama-server"

    server_host: str = "127.0.0.1"
    parallel: int = 4
    max_redirects: int = 5
    port_probe_attempts: int = 10
    port_range_start: int = 20000
    port_range_end: int = 60000


class HuggingFaceConfig(BaseModel):
    """Hugging Face model catalog configuration."""

    endpoint: str = "https://huggingface.co"
    search_limit: int = 20


class AdvancedConfig(BaseModel):
    """Advanced configuration."""

    log_level: Literal["INFO", "DEBUG", "TRACE"] = "INFO"
    log_buffer_size: int = 1000
    # None keeps requests open indefinitely, matching large model downloads
    http_timeout: float | None = None


class AppConfig(BaseModel):
    """Application configuration."""

    server: ServerConfig = Field(default_factory=ServerConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)
    huggingface: HuggingFaceConfig = Field(default_factory=HuggingFaceConfig)
    advanced: AdvancedConfig = Field(default_factory=AdvancedConfig)
