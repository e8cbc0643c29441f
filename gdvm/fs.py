import os
import shutil
import sys
import tempfile
import typing as t
from contextlib import contextmanager

if sys.version_info < (3, 10):
    import typing_extensions as te
else:
    te = t


class File(str):
    """A path that existed as a regular file when created."""

    def __new__(cls, *args, **kwargs):
        self = str.__new__(cls, *args, **kwargs)
        if not os.path.isfile(self):
            raise FileNotFoundError
        return self


class Directory(str):
    def __new__(cls, *args, **kwargs):
        self = str.__new__(cls, *args, **kwargs)
        if not os.path.isdir(self):
            raise FileNotFoundError
        return self


def isdir(path: str) -> te.TypeGuard[Directory]:
    return os.path.isdir(path)


def isfile(path: str) -> te.TypeGuard[File]:
    return os.path.isfile(path)


def folder_size(path: str):
    """Total size of the regular files under `path`, not following links."""
    return sum(
        os.path.getsize(os.path.join(dirpath, name))
        for dirpath, _, filenames in os.walk(path)
        for name in filenames
        if not os.path.islink(os.path.join(dirpath, name))
    )


@contextmanager
def temporary_file(dir: t.Optional[str] = None):
    """Create an empty temporary file, removed on exit if it still exists."""
    fd, path = tempfile.mkstemp(suffix="_gdvm", dir=dir)
    os.close(fd)
    try:
        yield File(path)
    finally:
        if isfile(path):
            os.remove(path)


def remove_tree(path: str):
    """Remove a directory tree, or a single file or link."""
    if os.path.islink(path) or os.path.isfile(path):
        os.remove(path)
    elif os.path.isdir(path):
        shutil.rmtree(path)


class SymlinkFileSystem(t.Protocol):
    """The filesystem operations needed to maintain activation links."""

    def symlink(self, target: str, link: str, target_is_directory: bool = False) -> None:
        ...

    def replace(self, src: str, dest: str) -> None:
        ...

    def readlink(self, link: str) -> str:
        ...

    def lexists(self, path: str) -> bool:
        ...

    def exists(self, path: str) -> bool:
        ...

    def remove(self, path: str) -> None:
        ...

    def makedirs(self, path: str) -> None:
        ...


class OSFileSystem:
    def symlink(self, target, link, target_is_directory=False):
        os.symlink(target, link, target_is_directory=target_is_directory)

    def replace(self, src, dest):
        os.replace(src, dest)

    def readlink(self, link):
        target = os.readlink(link)
        if not os.path.isabs(target):
            target = os.path.join(os.path.dirname(link), target)
        return os.path.normpath(target)

    def lexists(self, path):
        return os.path.lexists(path)

    def exists(self, path):
        return os.path.exists(path)

    def remove(self, path):
        os.remove(path)

    def makedirs(self, path):
        os.makedirs(path, exist_ok=True)
