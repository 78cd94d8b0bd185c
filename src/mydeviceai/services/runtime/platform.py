"""Host platform detection and release-asset naming.

Upstream release artifacts are named like ``llama-b6989-bin-ubuntu-vulkan-x64.zip``.
The names are not machine-readable metadata, so assets are selected by a
lowercase substring match against a pinned, hand-verified token per platform.
"""

import platform
from collections.abc import Callable

from mydeviceai.exceptions import UnsupportedArchError, UnsupportedPlatformError
from mydeviceai.models.runtime import PlatformTarget

ASSET_SUFFIX = ".zip"

# Supported pairs and the token their asset names must contain
ASSET_TOKENS: dict[PlatformTarget, str] = {
    PlatformTarget(os="windows", arch="x64"): "-win-vulkan-x64",
    PlatformTarget(os="linux", arch="x64"): "-ubuntu-vulkan-x64",
    PlatformTarget(os="macos", arch="arm64"): "-macos-arm64",
}

_OS_NAMES = {"windows": "windows", "linux": "linux", "darwin": "macos"}
_ARCH_NAMES = {"x86_64": "x64", "amd64": "x64", "x64": "x64", "aarch64": "arm64", "arm64": "arm64"}


def detect_platform(system: str | None = None, machine: str | None = None) -> PlatformTarget:
    """
    Resolve the host to one of the supported platform/arch pairs.

    Args:
        system: OS name as reported by ``platform.system()`` (detected if None)
        machine: CPU name as reported by ``platform.machine()`` (detected if None)

    Returns:
        The supported target

    Raises:
        UnsupportedPlatformError: If the OS is not supported
        UnsupportedArchError: If the OS is supported but not on this architecture
    """
    system = (system or platform.system()).lower()
    machine = (machine or platform.machine()).lower()

    os_name = _OS_NAMES.get(system)
    if os_name is None:
        raise UnsupportedPlatformError(os=system)

    arch = _ARCH_NAMES.get(machine)
    if arch is None:
        raise UnsupportedArchError(arch=machine, os=os_name)

    target = PlatformTarget(os=os_name, arch=arch)  # type: ignore[arg-type]
    if target not in ASSET_TOKENS:
        raise UnsupportedArchError(arch=arch, os=os_name)
    return target


def asset_matcher(target: PlatformTarget) -> Callable[[str], bool]:
    """Build a predicate matching release-asset filenames for ``target``."""
    token = ASSET_TOKENS[target]

    def matches(name: str) -> bool:
        lower = name.lower()
        return lower.endswith(ASSET_SUFFIX) and token in lower

    return matches


def binary_filename(binary_name: str, target: PlatformTarget) -> str:
    """Executable file name for the target, e.g. ``llama-server.exe`` on Windows."""
    return f"{binary_name}.exe" if target.os == "windows" else binary_name
