"""llama-server process supervision.

One supervised subprocess at a time. Lifecycle transitions (start, model
switch, stop, port-conflict restart) are serialized by a single lock; status
and log queries read in-memory state without taking it.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable, Collection
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

from mydeviceai.exceptions import ModelNotInstalledError, OperationalError, SubprocessSpawnError
from mydeviceai.logger import get_logger
from mydeviceai.models.config import RuntimeConfig
from mydeviceai.models.server import EnsureServerResult, LogEntry, ServerStatus
from mydeviceai.services.models.builtin import BUILTIN_CONTEXT_WINDOW, BUILTIN_MODEL_ID, builtin_model_path
from mydeviceai.services.models.registry import ModelRegistry
from mydeviceai.services.runtime.installer import RuntimeInstaller
from mydeviceai.services.server.log_buffer import LogBuffer
from mydeviceai.services.server.ports import find_available_port

logger = get_logger(__name__)

# stderr fragments llama-server (and the OS) print when the listen socket is taken
PORT_CONFLICT_MARKERS = (
    "address already in use",
    "eaddrinuse",
    "couldn't bind",
    "failed to bind",
    "only one usage of each socket address",
)

STOP_GRACE_SECONDS = 5.0

OVERLONG_LINE_MARKER = "[output line too long; dropped]"

SpawnFunc = Callable[..., Awaitable[asyncio.subprocess.Process]]
PortFinder = Callable[..., Awaitable[int]]


def is_port_conflict(line: str) -> bool:
    lowered = line.lower()
    return any(marker in lowered for marker in PORT_CONFLICT_MARKERS)


@dataclass
class ManagedServerProcess:
    """A spawned llama-server and the parameters it was launched with."""

    process: Any
    port: int
    model_path: str
    model_name: str | None
    context_window: int
    binary_path: str
    started_at: float = field(default_factory=time.monotonic)
    tasks: list[asyncio.Task] = field(default_factory=list)
    stop_requested: bool = False
    conflict_detected: bool = False


@dataclass(frozen=True)
class LaunchTarget:
    model_path: str
    model_name: str | None
    context_window: int


class ServerSupervisor:
    """
    Keeps a llama-server running for the registry's active model.

    ``ensure_running`` is the only entry point that starts processes. It is
    idempotent for an unchanged active model and restarts the server when the
    active model changed since the last start.
    """

    def __init__(
        self,
        installer: RuntimeInstaller,
        registry: ModelRegistry,
        runtime_config: RuntimeConfig,
        log_buffer: LogBuffer | None = None,
        spawn: SpawnFunc | None = None,
        port_finder: PortFinder = find_available_port,
    ) -> None:
        """
        Args:
            installer: Provides the binary path, installing on demand
            registry: Source of the active model
            runtime_config: Bind host, parallelism and port probing settings
            log_buffer: Receives process output; a default-capacity buffer if omitted
            spawn: Process factory with the signature of asyncio.create_subprocess_exec
            port_finder: Async port picker with the signature of find_available_port
        """
        self.installer = installer
        self.registry = registry
        self.runtime_config = runtime_config
        self.log_buffer = log_buffer or LogBuffer()
        self._spawn = spawn or asyncio.create_subprocess_exec
        self._port_finder = port_finder
        self._current: ManagedServerProcess | None = None
        self._lock = asyncio.Lock()
        self._restart_task: asyncio.Task | None = None
        # Start work of the ensure call holding the lock; stop() cancels it
        self._ensure_work: asyncio.Task | None = None
        self._interrupted_work: asyncio.Task | None = None

    @property
    def host(self) -> str:
        return self.runtime_config.server_host

    def endpoint_for(self, port: int) -> str:
        return f"http://{self.host}:{port}"

    # Queries

    def get_status(self) -> ServerStatus:
        """Snapshot of the supervised process. Never starts anything."""
        managed = self._current
        if managed is None:
            return ServerStatus(running=False)

        active = self.registry.get_active_model()
        return ServerStatus(
            running=True,
            port=managed.port,
            model_path=managed.model_path,
            model_name=active.display_name if active else managed.model_name,
            uptime=round(time.monotonic() - managed.started_at, 3),
        )

    def get_logs(self, limit: int | None = None) -> list[LogEntry]:
        return self.log_buffer.entries(limit)

    # Lifecycle

    async def ensure_running(self) -> EnsureServerResult:
        """
        Make sure a server for the active model is running.

        Returns:
            ok with the server's base URL, or ok=False with the error
        """
        async with self._lock:
            work = asyncio.create_task(self._ensure_running_locked())
            self._ensure_work = work
            try:
                endpoint = await work
            except asyncio.CancelledError:
                if self._interrupted_work is not work:
                    raise
                error = OperationalError("server.start_cancelled")
                logger.info(str(error))
                self.log_buffer.append("system", str(error))
                return EnsureServerResult(ok=False, error=str(error))
            except Exception as e:
                logger.error(f"Failed to ensure llama-server: {e}")
                self.log_buffer.append("system", f"Failed to start llama-server: {e}")
                return EnsureServerResult(ok=False, error=str(e))
            finally:
                self._ensure_work = None
                self._interrupted_work = None
        return EnsureServerResult(ok=True, endpoint=endpoint)

    async def stop(self) -> None:
        """
        Terminate the server if one is running. Safe to call at any time.

        A start in progress (including an on-demand runtime install) is
        cancelled instead of being waited for.
        """
        work = self._ensure_work
        if work is not None and not work.done():
            logger.info("Stop requested while llama-server is starting; cancelling the start")
            self._interrupted_work = work
            work.cancel()
        async with self._lock:
            await self._stop_locked()

    async def aclose(self) -> None:
        if self._restart_task is not None and not self._restart_task.done():
            self._restart_task.cancel()
        await self.stop()

    def _resolve_target(self) -> LaunchTarget:
        active = self.registry.get_active_model()
        if active is not None and active.installed:
            return LaunchTarget(
                model_path=active.file_path,
                model_name=active.display_name,
                context_window=active.current_params.context_window,
            )
        path = builtin_model_path(self.registry.models_dir)
        logger.info("No installed active model; falling back to the default model", model_path=str(path))
        return LaunchTarget(model_path=str(path), model_name=None, context_window=BUILTIN_CONTEXT_WINDOW)

    async def _ensure_running_locked(self) -> str:
        target = self._resolve_target()

        current = self._current
        if current is not None:
            if current.model_path == target.model_path:
                return self.endpoint_for(current.port)
            logger.info(
                "Active model changed; restarting llama-server",
                old_model_path=current.model_path,
                new_model_path=target.model_path,
            )
            await self._stop_locked()
            self.log_buffer.clear()

        status = self.installer.get_install_status()
        if not status.installed:
            self.log_buffer.append("system", "llama-server not installed; installing")
            status = await self.installer.install_latest()
        if not status.installed or status.binary_path is None:
            raise OperationalError("server.not_installed", error=status.error or "installation did not complete")

        if not Path(target.model_path).is_file():
            raise ModelNotInstalledError(id=target.model_name or BUILTIN_MODEL_ID)

        managed = await self._start_locked(status.binary_path, target)
        return self.endpoint_for(managed.port)

    async def _start_locked(self, binary_path: str, target: LaunchTarget, exclude: Collection[int] = ()) -> ManagedServerProcess:
        config = self.runtime_config
        port = await self._port_finder(
            self.host,
            attempts=config.port_probe_attempts,
            exclude=exclude,
            port_range=(config.port_range_start, config.port_range_end),
        )
        args = [
            binary_path,
            "--host",
            self.host,
            "--port",
            str(port),
            "-m",
            target.model_path,
            "-c",
            str(target.context_window),
            "--parallel",
            str(config.parallel),
        ]

        logger.info("Starting llama-server", port=port, model_path=target.model_path, context_window=target.context_window)
        self.log_buffer.append("system", f"Starting llama-server on {self.host}:{port} with {Path(target.model_path).name}")
        try:
            process = await self._spawn(*args, stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE)
        except OSError as e:
            raise SubprocessSpawnError(error=e) from e

        managed = ManagedServerProcess(
            process=process,
            port=port,
            model_path=target.model_path,
            model_name=target.model_name,
            context_window=target.context_window,
            binary_path=binary_path,
        )
        self._current = managed
        managed.tasks = [
            asyncio.create_task(self._pump(managed, process.stdout, "stdout")),
            asyncio.create_task(self._pump(managed, process.stderr, "stderr")),
            asyncio.create_task(self._watch_exit(managed)),
        ]
        return managed

    async def _stop_locked(self) -> None:
        managed = self._current
        # Cleared first: callers never see a half-stopped process
        self._current = None
        if managed is None:
            return

        managed.stop_requested = True
        for task in managed.tasks:
            task.cancel()

        process = managed.process
        logger.info("Stopping llama-server", port=managed.port)
        self.log_buffer.append("system", f"Stopping llama-server on port {managed.port}")
        if process.returncode is not None:
            return
        try:
            process.terminate()
        except ProcessLookupError:
            return
        except OSError as e:
            logger.warning(f"Failed to signal llama-server: {e}")
            return

        try:
            await asyncio.wait_for(process.wait(), timeout=STOP_GRACE_SECONDS)
        except asyncio.TimeoutError:
            logger.warning("llama-server did not exit after terminate; killing", port=managed.port)
            try:
                process.kill()
            except ProcessLookupError:
                pass

    # Background tasks

    async def _pump(
        self,
        managed: ManagedServerProcess,
        stream: asyncio.StreamReader | None,
        level: Literal["stdout", "stderr"],
    ) -> None:
        if stream is None:
            return
        while True:
            try:
                line = await stream.readline()
            except ValueError:
                # Over the reader limit; the reader already discarded that line
                logger.warning("Dropped overlong llama-server output line", stream=level)
                self.log_buffer.append(level, OVERLONG_LINE_MARKER)
                continue
            if not line:
                break
            text = line.decode("utf-8", errors="replace").rstrip()
            if not text:
                continue
            logger.debug("llama-server output", stream=level, line=text)
            self.log_buffer.append(level, text)
            if level == "stderr" and is_port_conflict(text):
                self._on_port_conflict(managed)

    async def _watch_exit(self, managed: ManagedServerProcess) -> None:
        code = await managed.process.wait()
        self.log_buffer.append("system", f"llama-server exited with code {code}")
        if self._current is managed:
            logger.info("llama-server exited", port=managed.port, returncode=code)
            self._current = None

    def _on_port_conflict(self, managed: ManagedServerProcess) -> None:
        if managed.conflict_detected or managed.stop_requested:
            return
        if self._current is not None and self._current is not managed:
            return
        managed.conflict_detected = True
        logger.warning("llama-server port already in use; restarting on a new port", port=managed.port)
        self.log_buffer.append("system", f"Port {managed.port} already in use; restarting on a new port")
        self._restart_task = asyncio.create_task(self._restart_after_conflict(managed))

    async def _restart_after_conflict(self, managed: ManagedServerProcess) -> None:
        async with self._lock:
            # An explicit stop or a newer start wins over the restart
            if managed.stop_requested or (self._current is not None and self._current is not managed):
                return
            await self._stop_locked()
            target = LaunchTarget(
                model_path=managed.model_path,
                model_name=managed.model_name,
                context_window=managed.context_window,
            )
            try:
                restarted = await self._start_locked(managed.binary_path, target, exclude=(managed.port,))
            except Exception as e:
                logger.error(f"Restart after port conflict failed: {e}")
                self.log_buffer.append("system", f"Restart after port conflict failed: {e}")
                return
            logger.info("llama-server restarted", old_port=managed.port, new_port=restarted.port)
