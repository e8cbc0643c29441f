import re
import typing as t
from dataclasses import dataclass
from enum import Enum
from enum import IntEnum


class RuntimeEnvironment(Enum):
    STANDARD = "standard"
    MONO = "mono"

    @classmethod
    def parse(cls, value: str) -> t.Optional["RuntimeEnvironment"]:
        try:
            return cls(value.lower())
        except ValueError:
            return None

    def __str__(self) -> str:
        return self.value


class Channel(IntEnum):
    """Release channels, ordered from least to most stable."""

    DEV = 0
    ALPHA = 1
    BETA = 2
    RC = 3
    STABLE = 4

    @property
    def prefix(self) -> str:
        return self.name.lower()

    @classmethod
    def parse(cls, value: str) -> t.Optional["Channel"]:
        return _CHANNELS.get(value.lower())


_CHANNELS = {channel.prefix: channel for channel in Channel}

PREFIXES = tuple(c.prefix for c in Channel if c is not Channel.STABLE)
"""Channels that carry an iteration number ("rc1", "beta2", ...)."""

_TYPE_PATTERN = re.compile(r"^([a-z]+)(\d+)?$")
_NUMBER = re.compile(r"^[0-9]+$")


@dataclass(frozen=True, order=True)
class ReleaseType:
    """The channel of a release plus its iteration, e.g. `stable` or `rc2`.

    Ordering follows channel precedence (stable > rc > beta > alpha > dev),
    then the iteration number within a channel.
    """

    channel: Channel
    number: t.Optional[int] = None

    def __post_init__(self):
        if self.channel is Channel.STABLE:
            if self.number is not None:
                raise ValueError("Stable releases do not have an iteration number.")
        elif self.number is None or self.number < 1:
            raise ValueError(f"'{self.channel.prefix}' requires a positive number.")

    @classmethod
    def stable(cls):
        return cls(Channel.STABLE)

    @classmethod
    def rc(cls, number: int):
        return cls(Channel.RC, number)

    @classmethod
    def beta(cls, number: int):
        return cls(Channel.BETA, number)

    @classmethod
    def alpha(cls, number: int):
        return cls(Channel.ALPHA, number)

    @classmethod
    def dev(cls, number: int):
        return cls(Channel.DEV, number)

    @classmethod
    def parse(cls, value: str) -> t.Optional["ReleaseType"]:
        match = _TYPE_PATTERN.match(value.lower())
        if not match:
            return None
        channel = Channel.parse(match[1])
        if channel is None:
            return None
        number = int(match[2]) if match[2] is not None else None
        try:
            return cls(channel, number)
        except ValueError:
            return None

    def __str__(self):
        if self.number is None:
            return self.channel.prefix
        return f"{self.channel.prefix}{self.number}"


@dataclass(frozen=True)
class Release:
    """A single engine build, e.g. `4.2.1-rc1-mono`.

    Releases are ordered by `(Major, Minor, Patch)` (a missing patch counts as 0),
    then by :class:`ReleaseType`. The runtime is ignored for ordering, but two
    releases are only equal if their runtimes match.
    """

    Major: int
    Minor: int
    Patch: t.Optional[int] = None
    Type: ReleaseType = ReleaseType.stable()
    Runtime: RuntimeEnvironment = RuntimeEnvironment.STANDARD

    @t.overload
    @classmethod
    def parse(cls, text: str) -> t.Optional["Release"]:
        ...

    @t.overload
    @classmethod
    def parse(cls, text: None) -> None:
        ...

    @classmethod
    def parse(cls, text: t.Optional[str]) -> t.Optional["Release"]:
        """Parse a release name, returning `None` if it is not well formed."""
        if not text:
            return None

        segments = text.strip().split("-")
        if not 2 <= len(segments) <= 3:
            return None

        version = parse_version(segments[0])
        if not version or version[0] < 1:
            return None

        release_type = ReleaseType.parse(segments[1])
        if release_type is None:
            return None

        runtime = RuntimeEnvironment.STANDARD
        if len(segments) == 3:
            runtime = RuntimeEnvironment.parse(segments[2])
            if runtime is None:
                return None

        major, minor, patch = version
        return cls(major, minor, patch, release_type, runtime)

    @property
    def version(self) -> str:
        out = f"{self.Major}.{self.Minor}"
        if self.Patch is not None:
            out += f".{self.Patch}"
        return out

    @property
    def name(self) -> str:
        return f"{self.version}-{self.Type}"

    @property
    def name_with_runtime(self) -> str:
        if self.Runtime is RuntimeEnvironment.MONO:
            return f"{self.name}-{self.Runtime}"
        return self.name

    @property
    def version_tuple(self) -> t.Tuple[int, int, int]:
        return (self.Major, self.Minor, self.Patch or 0)

    def with_runtime(self, runtime: RuntimeEnvironment) -> "Release":
        return Release(self.Major, self.Minor, self.Patch, self.Type, runtime)

    def compare_to(self, other: t.Optional["Release"]) -> int:
        if other is None:
            return 1
        left = (self.version_tuple, self.Type)
        right = (other.version_tuple, other.Type)
        if left == right:
            return 0
        return 1 if left > right else -1

    # `<=` and `>=` also require equality, so releases of equal rank that
    # differ in runtime or patch spelling are unordered in both directions.
    def __lt__(self, other: "Release"):
        if not isinstance(other, Release):
            return NotImplemented
        return self.compare_to(other) < 0

    def __le__(self, other: "Release"):
        if not isinstance(other, Release):
            return NotImplemented
        return self.compare_to(other) < 0 or self == other

    def __gt__(self, other: "Release"):
        if not isinstance(other, Release):
            return NotImplemented
        return self.compare_to(other) > 0

    def __ge__(self, other: "Release"):
        if not isinstance(other, Release):
            return NotImplemented
        return self.compare_to(other) > 0 or self == other

    def __str__(self):
        return self.name_with_runtime


def parse_version(text: str) -> t.Optional[t.Tuple[int, int, t.Optional[int]]]:
    """Parse a 1-3 component dotted version into `(major, minor, patch)`."""
    parts = text.split(".")
    if not 1 <= len(parts) <= 3 or not all(_NUMBER.match(p) for p in parts):
        return None
    numbers = [int(p) for p in parts]
    if len(numbers) == 1:
        numbers.append(0)
    patch = numbers[2] if len(numbers) == 3 else None
    return numbers[0], numbers[1], patch
