"""P2P request bridge services."""

from .bridge import InferenceBridge, PeerChannel
from .stream import CompletionChunk, parse_completion_line

__all__ = ["CompletionChunk", "InferenceBridge", "PeerChannel", "parse_completion_line"]
