"""MyDeviceAI desktop host: local llama.cpp runtime manager and peer inference bridge."""

__version__ = "0.3.0"
