"""Owned service graph for one running host process."""

from collections.abc import Callable
from dataclasses import dataclass

import httpx

from mydeviceai.logger import get_logger
from mydeviceai.models.config import AppConfig
from mydeviceai.services.bridge.bridge import InferenceBridge
from mydeviceai.services.models.downloader import ModelDownloader
from mydeviceai.services.models.huggingface import HuggingFaceCatalog
from mydeviceai.services.models.registry import ModelRegistry
from mydeviceai.services.runtime.installer import RuntimeInstaller
from mydeviceai.services.server.log_buffer import LogBuffer
from mydeviceai.services.server.supervisor import ServerSupervisor

logger = get_logger(__name__)


def build_client_factory(config: AppConfig) -> Callable[[], httpx.AsyncClient]:
    """HTTP clients with the fixed user agent. Redirects are followed manually by the downloader."""
    headers = {"User-Agent": config.runtime.user_agent}
    timeout = httpx.Timeout(config.advanced.http_timeout)

    def factory() -> httpx.AsyncClient:
        return httpx.AsyncClient(headers=headers, timeout=timeout, follow_redirects=False)

    return factory


@dataclass
class RuntimeContext:
    """
    Every stateful service of the host, created once and shared by reference.

    The registry cache and the supervised process handle live on these
    instances, never in module globals.
    """

    config: AppConfig
    installer: RuntimeInstaller
    registry: ModelRegistry
    catalog: HuggingFaceCatalog
    downloader: ModelDownloader
    supervisor: ServerSupervisor
    bridge: InferenceBridge

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        client_factory: Callable[[], httpx.AsyncClient] | None = None,
    ) -> "RuntimeContext":
        """
        Build the service graph for ``config``.

        Args:
            config: Application configuration (paths, release pin, endpoints)
            client_factory: HTTP client factory; tests pass one backed by a mock transport
        """
        paths = config.paths
        assert paths.bin_dir is not None and paths.models_dir is not None
        client_factory = client_factory or build_client_factory(config)

        registry = ModelRegistry(paths.models_state_file, paths.models_dir)
        catalog = HuggingFaceCatalog(
            client_factory,
            endpoint=config.huggingface.endpoint,
            search_limit=config.huggingface.search_limit,
        )
        downloader = ModelDownloader(
            registry,
            catalog,
            paths.models_dir,
            client_factory,
            max_redirects=config.runtime.max_redirects,
        )
        installer = RuntimeInstaller(
            paths.bin_dir,
            paths.install_metadata_file,
            config.runtime,
            client_factory,
            default_model_provisioner=downloader.ensure_default_model,
        )
        supervisor = ServerSupervisor(
            installer,
            registry,
            config.runtime,
            log_buffer=LogBuffer(config.advanced.log_buffer_size),
        )
        bridge = InferenceBridge(supervisor, registry, client_factory)

        logger.info("Runtime context created", data_dir=str(paths.data_dir), release_tag=config.runtime.release_tag)
        return cls(
            config=config,
            installer=installer,
            registry=registry,
            catalog=catalog,
            downloader=downloader,
            supervisor=supervisor,
            bridge=bridge,
        )

    async def aclose(self) -> None:
        for model_id in self.downloader.active_downloads():
            self.downloader.cancel(model_id)
        await self.supervisor.aclose()
        logger.info("Runtime context closed")
