"""Resolve free-form user queries such as ``4.2 rc mono`` or ``4.3-stable``
against a list of known release names.

Tokens are classified as one of:

- a dotted version fragment (``4``, ``4.2``, ``4.2.1``)
- the ``latest`` keyword
- a release type, either exact (``rc2``, ``stable``) or a bare channel (``beta``)
- a runtime (``mono``, ``standard``)

All unrecognized tokens are collected before an error is raised.
"""
import logging
import re
import typing as t
from dataclasses import dataclass

import click

from gdvm.errors import InvalidArgumentsError
from gdvm.version import Channel
from gdvm.version import Release
from gdvm.version import ReleaseType
from gdvm.version import RuntimeEnvironment

logger = logging.getLogger(__name__)

_VERSION_TOKEN = re.compile(r"^[0-9]+(\.[0-9]+){0,2}$")

LATEST = "latest"


@dataclass(frozen=True)
class Query:
    version: t.Optional[t.Tuple[int, ...]] = None
    latest: bool = False
    channel: t.Optional[Channel] = None
    """Set for a bare channel token, such as ``rc``."""
    release_type: t.Optional[ReleaseType] = None
    """Set for an exact type token, such as ``rc1`` or ``stable``."""
    runtime: t.Optional[RuntimeEnvironment] = None

    @property
    def is_empty(self):
        return self == Query()

    def matches(self, release: Release):
        """Check `release` against every filter except the runtime."""
        if self.version and release.version_tuple[: len(self.version)] != self.version:
            return False
        if self.release_type and release.Type != self.release_type:
            return False
        if self.channel is not None and release.Type.channel is not self.channel:
            return False
        if (
            self.latest
            and not (self.release_type or self.channel is not None)
            and release.Type.channel is not Channel.STABLE
        ):
            return False
        return True


def split_tokens(tokens: t.Iterable[str]) -> t.List[str]:
    """Split hyphenated tokens so that ``4.2-stable`` behaves like ``4.2 stable``."""
    return [part for token in tokens for part in token.strip().split("-") if part]


def parse_query(tokens: t.Iterable[str]) -> Query:
    """Classify every token of a query.

    :raises InvalidArgumentsError: listing every token that could not be classified,
    or that repeats a kind already given.
    """
    version = release_type = channel = runtime = None
    latest = False
    invalid: t.List[str] = []

    for token in split_tokens(tokens):
        lowered = token.lower()
        if _VERSION_TOKEN.match(lowered):
            if version is not None:
                invalid.append(token)
                continue
            version = tuple(int(part) for part in lowered.split("."))
        elif lowered == LATEST:
            if latest:
                invalid.append(token)
                continue
            latest = True
        elif RuntimeEnvironment.parse(lowered):
            if runtime is not None:
                invalid.append(token)
                continue
            runtime = RuntimeEnvironment.parse(lowered)
        elif ReleaseType.parse(lowered) or Channel.parse(lowered):
            if release_type is not None or channel is not None:
                invalid.append(token)
                continue
            release_type = ReleaseType.parse(lowered)
            if release_type is None:
                channel = Channel.parse(lowered)
        else:
            invalid.append(token)

    if invalid:
        raise InvalidArgumentsError(invalid)

    return Query(version, latest, channel, release_type, runtime)


def has_runtime_suffix(name: str):
    return name.strip().lower().endswith(tuple("-" + str(r) for r in RuntimeEnvironment))


def _candidates(query: Query, names: t.Iterable[str]) -> t.Iterator[Release]:
    for name in names:
        release = Release.parse(name)
        if release is None:
            logger.debug(f"Ignoring invalid release name '{name}'.")
            continue
        if not query.matches(release):
            continue

        if has_runtime_suffix(name):
            if query.runtime in (None, release.Runtime):
                yield release
        else:
            yield release.with_runtime(query.runtime or RuntimeEnvironment.STANDARD)


def _selection_key(query: Query):
    def key(release: Release):
        prefer_standard = release.Runtime is RuntimeEnvironment.STANDARD
        if query.latest:
            return (release.version_tuple, release.Type, prefer_standard)
        return (
            release.Type.channel,
            release.Type.number or 0,
            release.version_tuple,
            prefer_standard,
        )

    return key


def resolve_query(tokens: t.Sequence[str], known_names: t.Iterable[str]):
    """Resolve `tokens` to the single best matching release in `known_names`.

    Without a type token, the candidate on the most stable channel wins, then the
    highest iteration within that channel, then the highest version. ``latest``
    instead picks the newest stable release (or the newest of the given type).

    Names without a runtime suffix are available in either runtime. A runtime
    token selects one; without it, a standard build is preferred.

    :returns: The matching :class:`Release`, or `None` if nothing matches.
    :raises InvalidArgumentsError: if any token is malformed.
    """
    query = parse_query(tokens)
    if query.is_empty:
        raise click.UsageError("No version specified.")

    candidates = list(_candidates(query, known_names))
    if not candidates:
        return None
    return max(candidates, key=_selection_key(query))


def filter_releases(tokens: t.Sequence[str], known_names: t.Iterable[str]):
    """Filter `known_names` by a (possibly empty) query, newest first.

    Unlike :func:`resolve_query`, every match is returned as its original name.
    """
    query = parse_query(tokens)
    matches: t.List[t.Tuple[Release, str]] = []
    for name in known_names:
        release = Release.parse(name)
        if release is None or not query.matches(release):
            continue
        if query.runtime and has_runtime_suffix(name):
            if release.Runtime is not query.runtime:
                continue
        matches.append((release, name))
    matches.sort(key=lambda match: match[0], reverse=True)
    return [name for _, name in matches]
