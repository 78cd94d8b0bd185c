"""Data models for MyDeviceAI."""

from mydeviceai.models.config import AppConfig
from mydeviceai.models.progress import ProgressCallback, ProgressEvent
from mydeviceai.models.registry import ManagedModel, ModelRuntimeParams, ModelsState
from mydeviceai.models.runtime import InstallStatus
from mydeviceai.models.server import EnsureServerResult, LogEntry, ServerStatus

__all__ = [
    "AppConfig",
    "EnsureServerResult",
    "InstallStatus",
    "LogEntry",
    "ManagedModel",
    "ModelRuntimeParams",
    "ModelsState",
    "ProgressCallback",
    "ProgressEvent",
    "ServerStatus",
]
