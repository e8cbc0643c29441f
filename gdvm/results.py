"""Expected runtime outcomes, returned as values instead of raised.

Each taxonomy is a closed set of frozen dataclasses joined by a
`typing.Union`. Consumers check every variant with `isinstance` and raise
`AssertionError` for anything unhandled.
"""
import typing as t
from dataclasses import dataclass
from dataclasses import field

if t.TYPE_CHECKING:
    from gdvm.platforms import Architecture
    from gdvm.platforms import HostOS
    from gdvm.version import Release

T = t.TypeVar("T")
E = t.TypeVar("E")


@dataclass(frozen=True)
class Success(t.Generic[T]):
    value: T


@dataclass(frozen=True)
class Failure(t.Generic[E]):
    error: E


Result = t.Union[Success[T], Failure[E]]


# Network
@dataclass(frozen=True)
class RequestFailure:
    url: str
    status: int
    body: t.Optional[str] = None

    def __str__(self):
        return f"{self.url} returned {self.status}"


@dataclass(frozen=True)
class ConnectionFailure:
    message: str
    details: t.Optional[str] = None

    def __str__(self):
        return self.message


@dataclass(frozen=True)
class AllSourcesFailed:
    resource: str
    errors: t.Tuple["NetworkError", ...] = field(default_factory=tuple)

    def __str__(self):
        reasons = "; ".join(str(e) for e in self.errors)
        return f"{self.resource} unavailable from all sources ({reasons})"

    @property
    def not_found(self):
        """`True` if every source reported the resource as missing."""
        return bool(self.errors) and all(
            isinstance(e, RequestFailure) and e.status == 404 for e in self.errors
        )


NetworkError = t.Union[RequestFailure, ConnectionFailure, AllSourcesFailed]


# Installation
@dataclass(frozen=True)
class Verified:
    pass


@dataclass(frozen=True)
class Skipped:
    pass


@dataclass(frozen=True)
class VerificationFailed:
    """The checksum could not be obtained, so the archive was not verified."""

    reason: str
    error: t.Optional[NetworkError] = None


ChecksumVerification = t.Union[Verified, Skipped, VerificationFailed]


@dataclass(frozen=True)
class NewInstallation:
    name_with_runtime: str
    checksum: ChecksumVerification = Skipped()
    activation_error: t.Optional["SymlinkError"] = None


@dataclass(frozen=True)
class AlreadyInstalled:
    name_with_runtime: str


InstallationOutcome = t.Union[NewInstallation, AlreadyInstalled]


@dataclass(frozen=True)
class InstallNotFound:
    query: str

    def __str__(self):
        return f"{self.query} could not be found"


@dataclass(frozen=True)
class InstallFailed:
    reason: str

    def __str__(self):
        return self.reason


InstallationError = t.Union[InstallNotFound, InstallFailed]


# Version resolution
@dataclass(frozen=True)
class VersionNotFound:
    version: str


@dataclass(frozen=True)
class ResolutionFailed:
    reason: str


@dataclass(frozen=True)
class InvalidVersion:
    version: str


VersionResolutionError = t.Union[VersionNotFound, ResolutionFailed, InvalidVersion]


# Symlinks
@dataclass(frozen=True)
class SymlinkInfo:
    symlink_path: str
    mac_app_symlink_path: t.Optional[str] = None


@dataclass(frozen=True)
class NoVersionSet:
    pass


@dataclass(frozen=True)
class InvalidSymlink:
    path: str
    target: str

    def __str__(self):
        return f"{self.path} -> {self.target}"


SymlinkError = t.Union[NoVersionSet, InvalidSymlink]


# Platform
@dataclass(frozen=True)
class Unsupported:
    release: "Release"
    os: "HostOS"
    arch: "Architecture"

    def __str__(self):
        return f"{self.release.name_with_runtime} is not available for {self.os.value} {self.arch.value}"


PlatformError = Unsupported
