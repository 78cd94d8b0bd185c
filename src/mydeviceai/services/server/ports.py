"""Local TCP port selection."""

import random
import socket
from collections.abc import Collection

from mydeviceai.exceptions import PortExhaustedError
from mydeviceai.logger import get_logger

logger = get_logger(__name__)


def is_port_free(host: str, port: int) -> bool:
    """Bind and release a test listener on ``host:port``."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind((host, port))
        except OSError:
            return False
    return True


async def find_available_port(
    host: str,
    attempts: int = 10,
    exclude: Collection[int] = (),
    port_range: tuple[int, int] = (20000, 60000),
) -> int:
    """
    Probe random candidate ports until one can be bound.

    Args:
        host: Interface the server will bind
        attempts: Maximum number of candidates probed
        exclude: Ports never returned (e.g. the one that just conflicted)
        port_range: Inclusive candidate range

    Raises:
        PortExhaustedError: If every probed candidate was taken
    """
    low, high = port_range
    for _ in range(attempts):
        candidate = random.randint(low, high)
        if candidate in exclude:
            continue
        if is_port_free(host, candidate):
            return candidate
        logger.debug("Port candidate in use", host=host, port=candidate)
    raise PortExhaustedError(host=host, attempts=attempts)
