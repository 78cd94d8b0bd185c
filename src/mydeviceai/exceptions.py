"""Centralized exception hierarchy for MyDeviceAI.

Every error carries a dotted message key plus formatting parameters. The key is
stable for the desktop shell to match on; ``str(error)`` renders the English
message used in logs and in ``{ok: false, error}`` results.
"""

MESSAGES: dict[str, str] = {
    "runtime.platform.unsupported_os": "Unsupported platform: {os}",
    "runtime.platform.unsupported_arch": "Unsupported architecture: {arch} on {os}",
    "runtime.release.fetch_failed": "Failed to fetch release metadata from {url}: {error}",
    "runtime.release.no_matching_asset": (
        "No suitable llama.cpp asset found for {platform} in release {tag}"
    ),
    "runtime.extract.failed": "Failed to extract {archive}: {error}",
    "runtime.binary.not_found": "Could not find {binary} under {root}",
    "runtime.install.failed": "Failed to install llama.cpp: {error}",
    "network.request_failed": "Request to {url} failed: {error}",
    "download.failed": "Download failed: HTTP {http_status} for {url}",
    "download.too_many_redirects": "Too many redirects ({max_redirects}) while downloading {url}",
    "download.cancelled": "Download cancelled: {id}",
    "download.in_progress": "A download is already in progress for {id}",
    "models.not_found": "Model not found: {id}",
    "models.not_installed": "Model not installed: {id}",
    "models.invalid_request": "{field} is required",
    "models.default_download_failed": "Default model download failed: {error}",
    "server.port_exhausted": "No free port found on {host} after {attempts} attempts",
    "server.spawn_failed": "Failed to start llama-server: {error}",
    "server.not_installed": "llama-server is not installed: {error}",
    "server.start_cancelled": "llama-server start cancelled by a stop request",
    "bridge.invalid_prompt": "Invalid prompt: missing prompt text",
    "bridge.server_unavailable": "Failed to start or discover llama-server endpoint: {error}",
    "bridge.stream_failed": "Llama stream failed (HTTP {http_status}): {body}",
}


class AppBaseError(Exception):
    """Base exception for all application-specific errors."""

    def __init__(
        self,
        message_key: str,
        status_code: int = 500,
        retriable: bool = False,
        **params: object,
    ) -> None:
        """
        Initialize the error.

        Args:
            message_key: Dot-path into MESSAGES (e.g., 'models.not_found')
            status_code: Recommended HTTP status code
            retriable: Whether the operation can be retried
            **params: Parameters for string formatting of the message
        """
        super().__init__(message_key)
        self.message_key = message_key
        self.status_code = status_code
        self.retriable = retriable
        self.params = params

    def __str__(self) -> str:
        """Returns the English version of the error message."""
        template = MESSAGES.get(self.message_key)
        if template is None:
            params_str = ", ".join(f"{k}={v}" for k, v in self.params.items())
            return f"[{self.message_key}] {params_str}"
        try:
            return template.format(**self.params)
        except (KeyError, IndexError):
            return template


class ResourceNotFoundError(AppBaseError):
    """Raised when a requested resource (model, release, etc.) is not found."""

    def __init__(self, message_key: str, **params: object) -> None:
        super().__init__(message_key, status_code=404, **params)


class ResourceConflictError(AppBaseError):
    """Raised when an operation conflicts with the current state (e.g., duplicate download)."""

    def __init__(self, message_key: str, **params: object) -> None:
        super().__init__(message_key, status_code=409, **params)


class ValidationError(AppBaseError):
    """Raised when input validation fails."""

    def __init__(self, message_key: str, **params: object) -> None:
        super().__init__(message_key, status_code=400, **params)


class OperationalError(AppBaseError):
    """Raised when an operational failure occurs (network, subprocess, filesystem)."""

    def __init__(self, message_key: str, retriable: bool = False, **params: object) -> None:
        super().__init__(message_key, status_code=500, retriable=retriable, **params)


# Runtime installation


class UnsupportedPlatformError(OperationalError):
    def __init__(self, os: str) -> None:
        super().__init__("runtime.platform.unsupported_os", os=os)


class UnsupportedArchError(OperationalError):
    def __init__(self, arch: str, os: str) -> None:
        super().__init__("runtime.platform.unsupported_arch", arch=arch, os=os)


class NoMatchingAssetError(ResourceNotFoundError):
    def __init__(self, platform: str, tag: str) -> None:
        super().__init__("runtime.release.no_matching_asset", platform=platform, tag=tag)


class NetworkError(OperationalError):
    """Transient transport or parse failure; callers may retry."""

    def __init__(self, url: str, error: object, message_key: str = "network.request_failed") -> None:
        super().__init__(message_key, retriable=True, url=url, error=error)


class DownloadFailedError(OperationalError):
    def __init__(self, url: str, http_status: int) -> None:
        super().__init__("download.failed", url=url, http_status=http_status)


class TooManyRedirectsError(OperationalError):
    def __init__(self, url: str, max_redirects: int) -> None:
        super().__init__("download.too_many_redirects", url=url, max_redirects=max_redirects)


class DownloadCancelledError(OperationalError):
    def __init__(self, id: str) -> None:
        super().__init__("download.cancelled", id=id)


class ExtractionFailedError(OperationalError):
    def __init__(self, archive: str, error: object) -> None:
        super().__init__("runtime.extract.failed", archive=archive, error=error)


class BinaryNotFoundError(OperationalError):
    def __init__(self, binary: str, root: str) -> None:
        super().__init__("runtime.binary.not_found", binary=binary, root=root)


# Model registry


class ModelNotFoundError(ResourceNotFoundError):
    def __init__(self, id: str) -> None:
        super().__init__("models.not_found", id=id)


class ModelNotInstalledError(ValidationError):
    def __init__(self, id: str) -> None:
        super().__init__("models.not_installed", id=id)


# Server supervision


class PortExhaustedError(OperationalError):
    def __init__(self, host: str, attempts: int) -> None:
        super().__init__("server.port_exhausted", retriable=True, host=host, attempts=attempts)


class SubprocessSpawnError(OperationalError):
    def __init__(self, error: object) -> None:
        super().__init__("server.spawn_failed", error=error)
