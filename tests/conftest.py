# ruff: noqa
import asyncio
import os
import tempfile

# Keep every test away from the real app-data directory; set before mydeviceai is imported
_TEST_HOME = tempfile.mkdtemp(prefix="mydeviceai-tests-")
os.environ["MYDEVICEAI_CONFIG_PATH"] = os.path.join(_TEST_HOME, "config.yaml")
os.environ["MYDEVICEAI_DATA_DIR"] = os.path.join(_TEST_HOME, "data")

import httpx
import pytest

from mydeviceai.exceptions import PortExhaustedError
from mydeviceai.models.config import AppConfig, PathsConfig, RuntimeConfig


class FakeProcess:
    """Stand-in for asyncio.subprocess.Process driven by the test."""

    def __init__(self, args):
        self.args = list(args)
        self.pid = 4242
        self.returncode = None
        self.stdout = asyncio.StreamReader()
        self.stderr = asyncio.StreamReader()
        self.terminate_calls = 0
        self.kill_calls = 0
        self._exited = asyncio.Event()

    def feed_stdout(self, text):
        self.stdout.feed_data(text.encode() + b"\n")

    def feed_stderr(self, text):
        self.stderr.feed_data(text.encode() + b"\n")

    def exit(self, code=0):
        if self.returncode is None:
            self.returncode = code
            self.stdout.feed_eof()
            self.stderr.feed_eof()
            self._exited.set()

    def terminate(self):
        self.terminate_calls += 1
        self.exit(-15)

    def kill(self):
        self.kill_calls += 1
        self.exit(-9)

    async def wait(self):
        await self._exited.wait()
        return self.returncode


class FakeSpawner:
    """Records every spawn and hands out FakeProcess instances."""

    def __init__(self, error=None):
        self.processes = []
        self.error = error

    async def __call__(self, *args, **kwargs):
        if self.error is not None:
            raise self.error
        process = FakeProcess(args)
        self.processes.append(process)
        return process


class FakePortFinder:
    """Hands out ports from a fixed list, honoring exclusions."""

    def __init__(self, ports):
        self.ports = list(ports)
        self.excludes = []

    async def __call__(self, host, attempts=10, exclude=(), port_range=(20000, 60000)):
        self.excludes.append(tuple(exclude))
        for port in self.ports:
            if port not in exclude:
                self.ports.remove(port)
                return port
        raise PortExhaustedError(host=host, attempts=attempts)


@pytest.fixture
def fake_spawner():
    return FakeSpawner()


@pytest.fixture
def app_config(tmp_path):
    return AppConfig(paths=PathsConfig(data_dir=tmp_path / "data"))


@pytest.fixture
def runtime_config():
    return RuntimeConfig()


@pytest.fixture
def make_client_factory():
    """Build an httpx client factory backed by a MockTransport handler."""

    def factory(handler):
        transport = httpx.MockTransport(handler)
        return lambda: httpx.AsyncClient(transport=transport, follow_redirects=False)

    return factory


async def wait_until(predicate, attempts=200):
    """Yield to the loop until ``predicate()`` holds."""
    for _ in range(attempts):
        if predicate():
            return True
        await asyncio.sleep(0.001)
    return predicate()
