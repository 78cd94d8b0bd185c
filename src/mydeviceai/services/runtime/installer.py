"""llama.cpp runtime installation service.

Pipeline: fetch pinned release -> pick first matching asset -> download ->
extract -> locate binary -> persist install.json -> provision default model.
"""

import asyncio
import os
import shutil
import stat
import zipfile
from collections.abc import Awaitable, Callable
from pathlib import Path

import httpx

from mydeviceai.exceptions import AppBaseError, BinaryNotFoundError, ExtractionFailedError, OperationalError
from mydeviceai.logger import get_logger
from mydeviceai.models.config import RuntimeConfig
from mydeviceai.models.progress import ErrorEvent, InstallCompleteEvent, ProgressCallback, StatusEvent
from mydeviceai.models.runtime import DownloadResult, InstallMetadata, InstallStatus, PlatformTarget
from mydeviceai.services.runtime.download import download_file
from mydeviceai.services.runtime.platform import binary_filename, detect_platform
from mydeviceai.services.runtime.releases import ReleaseFetcher
from mydeviceai.utils.fs import make_executable, read_json, write_json_atomic
from mydeviceai.utils.progress import emit
from mydeviceai.utils.subprocess_executor import SubprocessExecutor

logger = get_logger(__name__)

# Layout of the upstream build inside release archives
EXPECTED_BINARY_SUBDIR = Path("build") / "bin"

DefaultModelProvisioner = Callable[[ProgressCallback | None], Awaitable[None]]


class RuntimeInstaller:
    """Installs the llama.cpp server binary and tracks the installation in install.json."""

    def __init__(
        self,
        bin_dir: Path,
        metadata_file: Path,
        runtime_config: RuntimeConfig,
        client_factory: Callable[[], httpx.AsyncClient],
        platform_detector: Callable[[], PlatformTarget] = detect_platform,
        default_model_provisioner: DefaultModelProvisioner | None = None,
    ) -> None:
        """
        Args:
            bin_dir: Directory receiving downloaded archives and extracted trees
            metadata_file: Path of install.json
            runtime_config: Release pin and binary naming
            client_factory: Builds HTTP clients (redirects are followed manually)
            platform_detector: Resolves the host platform
            default_model_provisioner: Chained after a successful install to
                fetch the default model when it is missing
        """
        self.bin_dir = bin_dir
        self.metadata_file = metadata_file
        self.runtime_config = runtime_config
        self._client_factory = client_factory
        self._platform_detector = platform_detector
        self.default_model_provisioner = default_model_provisioner
        self.releases = ReleaseFetcher(
            client_factory,
            owner=runtime_config.release_owner,
            repo=runtime_config.release_repo,
            api_base=runtime_config.github_api_base,
        )

    # Status

    def get_install_status(self) -> InstallStatus:
        """
        Read install.json and verify the recorded binary still exists.

        A missing or corrupt metadata file, or a stale binary path, reads as
        not installed rather than as an error.
        """
        data = read_json(self.metadata_file)
        if not isinstance(data, dict):
            return InstallStatus(installed=False)
        try:
            metadata = InstallMetadata.model_validate(data)
        except ValueError:
            logger.warning("Ignoring malformed install metadata", path=str(self.metadata_file))
            return InstallStatus(installed=False)

        if not Path(metadata.binary_path).is_file():
            logger.info("Recorded llama-server binary is missing", binary_path=metadata.binary_path)
            return InstallStatus(installed=False)

        return InstallStatus(installed=True, version=metadata.version, binary_path=metadata.binary_path)

    def persist_install_metadata(self, metadata: InstallMetadata) -> None:
        write_json_atomic(self.metadata_file, metadata.model_dump(mode="json", by_alias=True))

    # Pipeline stages

    async def download_asset(
        self, url: str, dest_path: Path, progress_callback: ProgressCallback | None = None
    ) -> DownloadResult:
        async with self._client_factory() as client:
            return await download_file(
                client,
                url,
                dest_path,
                progress_callback=progress_callback,
                max_redirects=self.runtime_config.max_redirects,
            )

    async def extract_archive(self, archive_path: Path, target_dir: Path) -> None:
        """
        Extract a zip archive into ``target_dir``.

        On macOS the native ``ditto`` tool is tried first because it keeps
        permissions and extended attributes (code signatures) that a portable
        unzip drops. Everywhere else, and whenever ``ditto`` fails, the archive
        is extracted with zipfile.

        Raises:
            ExtractionFailedError: If the portable extraction fails as well
        """
        target_dir.mkdir(parents=True, exist_ok=True)

        if self._platform_detector().os == "macos" and shutil.which("ditto"):
            try:
                await SubprocessExecutor.run("ditto", "-x", "-k", str(archive_path), str(target_dir), check=True)
                return
            except Exception as e:
                logger.warning(f"ditto extraction failed, falling back to zipfile: {e}")

        try:
            await asyncio.to_thread(self._extract_with_zipfile, archive_path, target_dir)
        except (OSError, zipfile.BadZipFile) as e:
            raise ExtractionFailedError(archive=archive_path.name, error=e) from e

    def _extract_with_zipfile(self, archive_path: Path, target_dir: Path) -> None:
        with zipfile.ZipFile(archive_path, "r") as zip_ref:
            for info in zip_ref.infolist():
                extracted = Path(zip_ref.extract(info, target_dir))
                # Restore unix mode bits recorded by the archiver
                mode = (info.external_attr >> 16) & 0o777
                if mode and not info.is_dir() and os.name != "nt":
                    extracted.chmod(mode | stat.S_IRUSR)

    def locate_binary(self, extracted_root: Path) -> Path:
        """
        Find the server executable in an extracted tree and mark it executable.

        The conventional ``build/bin`` location is checked first (at the root
        and one directory down), then the whole tree is walked.

        Raises:
            BinaryNotFoundError: If no file with the expected name exists
        """
        target = self._platform_detector()
        expected = binary_filename(self.runtime_config.binary_name, target).lower()
        accepted = {expected, self.runtime_config.binary_name.lower()}

        candidates_dirs = [extracted_root / EXPECTED_BINARY_SUBDIR]
        candidates_dirs += [child / EXPECTED_BINARY_SUBDIR for child in sorted(extracted_root.iterdir()) if child.is_dir()]

        found: Path | None = None
        for directory in candidates_dirs:
            if directory.is_dir():
                found = next((p for p in sorted(directory.iterdir()) if p.is_file() and p.name.lower() in accepted), None)
                if found:
                    break

        if found is None:
            logger.info("Expected build layout absent; searching extracted tree", root=str(extracted_root))
            for dirpath, _dirnames, filenames in os.walk(extracted_root):
                for filename in sorted(filenames):
                    if filename.lower() in accepted:
                        found = Path(dirpath) / filename
                        break
                if found:
                    break

        if found is None:
            raise BinaryNotFoundError(binary=expected, root=str(extracted_root))

        try:
            make_executable(found)
        except OSError as e:
            logger.warning(f"Could not mark binary executable: {e}", path=str(found))

        return found

    # Full flow

    async def install_latest(self, progress_callback: ProgressCallback | None = None) -> InstallStatus:
        """
        Install the pinned llama.cpp release for this host.

        Idempotent: when install.json points at an existing binary the call
        returns immediately without touching the network.

        Args:
            progress_callback: Receives the progress event stream, which ends
                in install-complete or error

        Returns:
            Resulting install status; failures are reported in ``error``
        """
        current = self.get_install_status()
        if current.installed:
            assert current.version is not None and current.binary_path is not None
            logger.info("llama-server already installed", version=current.version)
            await emit(
                progress_callback,
                InstallCompleteEvent(version=current.version, binary_path=current.binary_path),
            )
            return current

        try:
            target = self._platform_detector()
            tag = self.runtime_config.release_tag

            await emit(
                progress_callback,
                StatusEvent(message=f"Detecting llama.cpp release {tag} for {target.label}..."),
            )
            release, assets = await self.releases.find_assets(tag, target)
            # First match in upstream order
            asset = assets[0]

            self.bin_dir.mkdir(parents=True, exist_ok=True)
            archive_path = self.bin_dir / asset.name
            await emit(progress_callback, StatusEvent(message=f"Downloading {asset.name}..."))
            await self.download_asset(asset.browser_download_url, archive_path, progress_callback)

            if archive_path.suffix.lower() == ".zip":
                extract_dir = self.bin_dir / release.tag_name
                if extract_dir.exists():
                    shutil.rmtree(extract_dir)
                await emit(progress_callback, StatusEvent(message=f"Extracting {asset.name}..."))
                await self.extract_archive(archive_path, extract_dir)
                archive_path.unlink(missing_ok=True)
                binary_path = self.locate_binary(extract_dir)
            else:
                binary_path = archive_path
                make_executable(binary_path)

            self.persist_install_metadata(InstallMetadata(version=release.tag_name, binary_path=str(binary_path)))
            logger.info("llama-server installed", version=release.tag_name, binary_path=str(binary_path))

            if self.default_model_provisioner is not None:
                await emit(progress_callback, StatusEvent(message="Checking default model..."))
                await self.default_model_provisioner(progress_callback)

            await emit(
                progress_callback,
                InstallCompleteEvent(version=release.tag_name, binary_path=str(binary_path)),
            )
            return InstallStatus(installed=True, version=release.tag_name, binary_path=str(binary_path))

        except AppBaseError as e:
            message = str(OperationalError("runtime.install.failed", error=e))
        except Exception as e:
            logger.exception("Unexpected install failure")
            message = str(OperationalError("runtime.install.failed", error=e))

        logger.error(message)
        await emit(progress_callback, ErrorEvent(message=message))
        # The binary may be in place even if a later stage failed
        status = self.get_install_status()
        status.error = message
        return status
