# ruff: noqa
import socket

import pytest

from mydeviceai.exceptions import PortExhaustedError
from mydeviceai.services.server import ports


def test_is_port_free_detects_bound_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        sock.listen(1)
        taken = sock.getsockname()[1]

        assert ports.is_port_free("127.0.0.1", taken) is False


@pytest.mark.asyncio
async def test_find_available_port_within_range():
    port = await ports.find_available_port("127.0.0.1", port_range=(20000, 60000))

    assert 20000 <= port <= 60000


@pytest.mark.asyncio
async def test_excluded_port_is_never_returned(monkeypatch):
    candidates = iter([30001, 30001, 30002])
    monkeypatch.setattr(ports.random, "randint", lambda low, high: next(candidates))
    monkeypatch.setattr(ports, "is_port_free", lambda host, port: True)

    port = await ports.find_available_port("127.0.0.1", exclude=(30001,))

    assert port == 30002


@pytest.mark.asyncio
async def test_probing_is_bounded(monkeypatch):
    probes = []

    def always_taken(host, port):
        probes.append(port)
        return False

    monkeypatch.setattr(ports, "is_port_free", always_taken)

    with pytest.raises(PortExhaustedError) as exc:
        await ports.find_available_port("127.0.0.1", attempts=10)

    assert len(probes) == 10
    assert "after 10 attempts" in str(exc.value)
