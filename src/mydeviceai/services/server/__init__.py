"""llama-server supervision services."""

from .log_buffer import LogBuffer
from .ports import find_available_port
from .supervisor import ServerSupervisor

__all__ = ["LogBuffer", "ServerSupervisor", "find_available_port"]
