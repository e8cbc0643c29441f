import hashlib
import logging
import os
import shutil
import stat
import typing as t
from zipfile import ZipFile
from zipfile import ZipInfo

from gdvm import fs

logger = logging.getLogger(__name__)


class UnsafeArchiveError(Exception):
    """An archive entry would be written outside of the extraction directory."""

    def __init__(self, entry: str, dest: str):
        self.entry = entry
        self.dest = dest
        super().__init__(f"Entry '{entry}' would be extracted outside of '{dest}'.")


def is_flattened(names: t.Iterable[str]):
    """Check whether an archive's contents sit at its root.

    Archives with a single wrapping folder (such as some Mono builds) are not flat,
    unless the root entry is a macOS `.app` bundle.
    """
    for name in names:
        if "/" not in name or name.split("/", 1)[0].endswith(".app"):
            return True
    return False


def _strip_root(name: str):
    return name.split("/", 1)[1] if "/" in name else ""


def _is_symlink(info: ZipInfo):
    return stat.S_ISLNK(info.external_attr >> 16)


def _safe_path(dest: str, name: str):
    root = os.path.realpath(dest)
    path = os.path.realpath(os.path.join(root, name))
    if path != root and not path.startswith(root + os.sep):
        raise UnsafeArchiveError(name, dest)
    return path


def unpack(zip: ZipFile, dest: str):
    """Extract `zip` into `dest`, stripping a single wrapping folder if present.

    Every entry is validated before anything is written.

    :raises UnsafeArchiveError: if any entry would escape `dest`.
    """
    entries = zip.infolist()
    flat = is_flattened(info.filename for info in entries)

    targets: t.List[t.Tuple[ZipInfo, str]] = []
    for info in entries:
        name = info.filename if flat else _strip_root(info.filename)
        if not name or name == "/":
            continue
        targets.append((info, _safe_path(dest, name)))

    os.makedirs(dest, exist_ok=True)
    for info, path in targets:
        if info.is_dir():
            os.makedirs(path, exist_ok=True)
            continue

        os.makedirs(os.path.dirname(path), exist_ok=True)
        if _is_symlink(info):
            link = zip.read(info).decode()
            # Link targets are resolved relative to the link itself.
            _safe_path(dest, os.path.join(os.path.dirname(path), link))
            if os.path.lexists(path):
                os.remove(path)
            os.symlink(link, path)
            continue

        with zip.open(info) as source, open(path, "wb") as target:
            shutil.copyfileobj(source, target)
        mode = (info.external_attr >> 16) & 0o777
        if mode:
            os.chmod(path, mode)


def make_executable(path: str):
    if fs.isfile(path):
        mode = os.stat(path).st_mode
        os.chmod(path, mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)


def get_sha512(path: fs.File, blocksize=65536):
    hash = hashlib.sha512()
    with open(path, "rb") as file:
        for block in iter(lambda: file.read(blocksize), b""):
            hash.update(block)
    return hash.hexdigest()


def parse_checksums(content: str) -> t.Dict[str, str]:
    """Parse a `SHA512-SUMS.txt` file into a mapping of file name to hash."""
    sums: t.Dict[str, str] = {}
    for line in content.splitlines():
        line = line.strip()
        if not line:
            continue
        parts = line.split(None, 1)
        if len(parts) != 2:
            logger.debug(f"Ignoring malformed checksum line: '{line}'")
            continue
        hash, filename = parts
        sums[filename.strip().lstrip("*")] = hash.lower()
    return sums


def find_checksum(content: str, filename: str) -> t.Optional[str]:
    return parse_checksums(content).get(filename)
