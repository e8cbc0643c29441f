"""Project-local version pins.

A project pins its engine version with a ``.gdvm-version`` file holding a
release name. Without one, the version is detected from the
``config/features`` entry of ``project.godot``, and a ``[dotnet]`` section
marks the project as needing the mono runtime.
"""
import logging
import os
import re
import typing as t
from dataclasses import dataclass

from gdvm import fs
from gdvm.version import RuntimeEnvironment

logger = logging.getLogger(__name__)

VERSION_FILE = ".gdvm-version"
PROJECT_FILE = "project.godot"

_FEATURES_KEY = "config/features="
_FEATURE_VERSION = re.compile(r"^\d+\.\d+(\.\d+)?$")


@dataclass(frozen=True)
class ProjectInfo:
    version: str
    runtime: RuntimeEnvironment = RuntimeEnvironment.STANDARD
    source: str = VERSION_FILE

    @property
    def query(self) -> t.List[str]:
        """The version as query tokens for :func:`gdvm.query.resolve_query`."""
        tokens = [self.version]
        if (
            self.runtime is RuntimeEnvironment.MONO
            and str(RuntimeEnvironment.MONO) not in self.version.lower()
        ):
            tokens.append(str(self.runtime))
        return tokens

    def __str__(self):
        if self.runtime is RuntimeEnvironment.MONO:
            return f"{self.version} (mono)"
        return self.version


def read_version_file(path: str) -> t.Optional[ProjectInfo]:
    if not fs.isfile(path):
        return None
    with open(path, encoding="utf-8") as file:
        content = file.read().strip()
    if not content:
        logger.debug(f"Ignoring empty '{path}'.")
        return None
    runtime = RuntimeEnvironment.STANDARD
    if str(RuntimeEnvironment.MONO) in content.lower():
        runtime = RuntimeEnvironment.MONO
    return ProjectInfo(content, runtime, VERSION_FILE)


def features_version(line: str) -> t.Optional[str]:
    """Find the engine version in a ``config/features=PackedStringArray(...)`` line."""
    start, end = line.find("("), line.rfind(")")
    if start == -1 or end <= start:
        return None
    for feature in line[start + 1 : end].split(","):
        feature = feature.strip().strip('"')
        if _FEATURE_VERSION.match(feature):
            return feature
    return None


def read_project_file(path: str) -> t.Optional[ProjectInfo]:
    if not fs.isfile(path):
        return None
    version = None
    runtime = RuntimeEnvironment.STANDARD
    with open(path, encoding="utf-8", errors="replace") as file:
        for line in file:
            line = line.strip()
            if line.startswith(_FEATURES_KEY + "PackedStringArray("):
                version = features_version(line)
            elif line == "[dotnet]":
                runtime = RuntimeEnvironment.MONO
    if version is None:
        logger.debug(f"No engine version found in '{path}'.")
        return None
    return ProjectInfo(version, runtime, PROJECT_FILE)


def find_project_info(directory: str) -> t.Optional[ProjectInfo]:
    """Read the version pinned in `directory`, preferring ``.gdvm-version``."""
    return read_version_file(os.path.join(directory, VERSION_FILE)) or read_project_file(
        os.path.join(directory, PROJECT_FILE)
    )


def write_version_file(name: str, directory: str):
    """Pin `directory` to the release `name`.

    :returns: `True` if the file was created, `False` if it was updated.
    """
    path = os.path.join(directory, VERSION_FILE)
    created = not os.path.exists(path)
    with open(path, "w", encoding="utf-8") as file:
        file.write(name + "\n")
    return created
