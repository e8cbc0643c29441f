import platform
import typing as t
from dataclasses import dataclass
from enum import Enum

from gdvm.results import Unsupported
from gdvm.version import Release
from gdvm.version import RuntimeEnvironment


def is_os_64bit():
    """Determines whether the current OS is 64bit, regardless of installed
    Python architecture.
    """
    return platform.machine().endswith("64")


class HostOS(Enum):
    WINDOWS = "windows"
    LINUX = "linux"
    MACOS = "macos"
    FREEBSD = "freebsd"
    UNKNOWN = "unknown"


class Architecture(Enum):
    X86 = "x86"
    X64 = "x64"
    ARM32 = "arm32"
    ARM64 = "arm64"


_SYSTEMS = {
    "Windows": HostOS.WINDOWS,
    "Linux": HostOS.LINUX,
    "Darwin": HostOS.MACOS,
    "FreeBSD": HostOS.FREEBSD,
}

_MACHINES = {
    "x86_64": Architecture.X64,
    "amd64": Architecture.X64,
    "x64": Architecture.X64,
    "i386": Architecture.X86,
    "i686": Architecture.X86,
    "x86": Architecture.X86,
    "aarch64": Architecture.ARM64,
    "arm64": Architecture.ARM64,
    "armv7l": Architecture.ARM32,
    "armv6l": Architecture.ARM32,
    "arm": Architecture.ARM32,
}


@dataclass(frozen=True)
class SystemInfo:
    os: HostOS
    arch: Architecture

    @classmethod
    def current(cls):
        host = _SYSTEMS.get(platform.system(), HostOS.UNKNOWN)
        machine = platform.machine().lower()
        arch = _MACHINES.get(machine)
        if arch is None:
            arch = Architecture.X64 if is_os_64bit() else Architecture.X86
        return cls(host, arch)


VersionKey = t.Tuple[int, int, int]
PlatformKey = t.Tuple[HostOS, Architecture, RuntimeEnvironment]

_ANY = ((1, 0, 0), (5, 0, 0))
_V1 = ((1, 0, 0), (2, 0, 0))
_V3 = ((3, 0, 0), (4, 0, 0))
_V4 = ((4, 0, 0), (5, 0, 0))

STANDARD = RuntimeEnvironment.STANDARD
MONO = RuntimeEnvironment.MONO

PLATFORM_TABLE: t.Dict[PlatformKey, t.List[t.Tuple[VersionKey, VersionKey, str]]] = {
    # macOS
    (HostOS.MACOS, Architecture.X86, STANDARD): [
        (*_V1, "osx.32"),
        ((2, 0, 4), (3, 0, 0), "osx32"),
    ],
    (HostOS.MACOS, Architecture.X64, STANDARD): [
        ((2, 0, 4), (3, 0, 0), "osx.fat"),
        ((3, 0, 0), (3, 3, 0), "osx.64"),
        ((3, 3, 0), (4, 0, 0), "osx.universal"),
        (*_V4, "macos.universal"),
    ],
    (HostOS.MACOS, Architecture.ARM64, STANDARD): [
        ((3, 3, 0), (4, 0, 0), "osx.universal"),
        (*_V4, "macos.universal"),
    ],
    (HostOS.MACOS, Architecture.X64, MONO): [
        ((3, 0, 0), (3, 1, 0), "mono_osx64"),
        ((3, 1, 0), (3, 3, 0), "mono_osx.64"),
        ((3, 3, 0), (4, 0, 0), "mono_osx.universal"),
        (*_V4, "mono_macos.universal"),
    ],
    (HostOS.MACOS, Architecture.ARM64, MONO): [
        ((3, 3, 0), (4, 0, 0), "mono_osx.universal"),
        (*_V4, "mono_macos.universal"),
    ],
    # Linux
    (HostOS.LINUX, Architecture.X64, STANDARD): [
        (*_V3, "x11.64"),
        (*_V4, "linux.x86_64"),
    ],
    (HostOS.LINUX, Architecture.X86, STANDARD): [
        (*_V3, "x11.32"),
        (*_V4, "linux.x86_32"),
    ],
    (HostOS.LINUX, Architecture.ARM32, STANDARD): [
        (*_V3, "linux.arm32"),
        (*_V4, "linux.arm32"),
    ],
    (HostOS.LINUX, Architecture.ARM64, STANDARD): [
        (*_V3, "linux.arm64"),
        (*_V4, "linux.arm64"),
    ],
    (HostOS.LINUX, Architecture.X64, MONO): [
        (*_V3, "mono_x11_64"),
        (*_V4, "mono_linux_x86_64"),
    ],
    (HostOS.LINUX, Architecture.X86, MONO): [
        (*_V3, "mono_x11_32"),
        (*_V4, "mono_linux_x86_32"),
    ],
    (HostOS.LINUX, Architecture.ARM32, MONO): [
        (*_V4, "mono_linux_arm32"),
    ],
    (HostOS.LINUX, Architecture.ARM64, MONO): [
        (*_V4, "mono_linux_arm64"),
    ],
    # Windows
    (HostOS.WINDOWS, Architecture.X64, STANDARD): [(*_ANY, "win64.exe")],
    (HostOS.WINDOWS, Architecture.X86, STANDARD): [(*_ANY, "win32.exe")],
    (HostOS.WINDOWS, Architecture.ARM64, STANDARD): [
        ((4, 3, 0), (5, 0, 0), "windows_arm64.exe"),
    ],
    (HostOS.WINDOWS, Architecture.X64, MONO): [((3, 0, 0), (5, 0, 0), "mono_win64")],
    (HostOS.WINDOWS, Architecture.X86, MONO): [((3, 0, 0), (5, 0, 0), "mono_win32")],
    (HostOS.WINDOWS, Architecture.ARM64, MONO): [
        ((4, 3, 0), (5, 0, 0), "mono_windows_arm64"),
    ],
}
"""Artifact suffixes by host and runtime, over half-open version ranges.

Any combination without an entry is unsupported.
"""


class UnsupportedPlatformError(ValueError):
    def __init__(self, error: Unsupported):
        self.error = error
        super().__init__(str(error))


def get_platform_string(release: Release, host_os: HostOS, arch: Architecture) -> str:
    """Look up the artifact suffix for `release` on a host.

    :raises UnsupportedPlatformError: if no artifact is published for the combination.
    """
    for low, high, suffix in PLATFORM_TABLE.get((host_os, arch, release.Runtime), []):
        if low <= release.version_tuple < high:
            return suffix
    raise UnsupportedPlatformError(Unsupported(release, host_os, arch))


def file_name(release: Release, platform_string: str):
    separator = "_" if release.Major == 1 else "-"
    return f"Godot_v{release.version}{separator}{release.Type}_{platform_string}"


def archive_name(release: Release, platform_string: str):
    return file_name(release, platform_string) + ".zip"


def executable_name(release: Release, host_os: HostOS, platform_string: str):
    """The name of the executable (or app bundle) inside an extracted archive."""
    name = file_name(release, platform_string)
    mono = release.Runtime is RuntimeEnvironment.MONO
    if host_os is HostOS.MACOS:
        return "Godot_mono.app" if mono else "Godot.app"
    if host_os is HostOS.LINUX and mono:
        return name.replace("linux_", "linux.").replace("x11_", "x11.")
    if host_os is HostOS.WINDOWS and mono:
        return name + ".exe"
    return name
