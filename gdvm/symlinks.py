import logging
import os
import typing as t

from gdvm.errors import silent_exec
from gdvm.fs import OSFileSystem
from gdvm.fs import SymlinkFileSystem
from gdvm.platforms import HostOS
from gdvm.results import Failure
from gdvm.results import InvalidSymlink
from gdvm.results import NoVersionSet
from gdvm.results import Result
from gdvm.results import Success
from gdvm.results import SymlinkError
from gdvm.results import SymlinkInfo

logger = logging.getLogger(__name__)

MACOS_BINARY = os.path.join("Contents", "MacOS", "Godot")

# ERROR_PRIVILEGE_NOT_HELD
_WINERROR_PRIVILEGE = 1314


class Activator:
    """Maintains the links that point at the active release.

    Links are always replaced by creating a new link and renaming it over the
    old one, so a reader never observes a missing or half-written link. If a
    new link cannot be created the previous links stay active. On macOS a second link points at the `.app` bundle.
    """

    def __init__(
        self,
        symlink_path: str,
        mac_app_symlink_path: str,
        host_os: HostOS,
        fs: t.Optional[SymlinkFileSystem] = None,
    ) -> None:
        self.symlink_path = symlink_path
        self.mac_app_symlink_path = mac_app_symlink_path
        self.host_os = host_os
        self.fs = fs or OSFileSystem()

    def _links(self):
        if self.host_os is HostOS.MACOS:
            return (self.symlink_path, self.mac_app_symlink_path)
        return (self.symlink_path,)

    def _stage_link(self, target: str, link: str, target_is_directory=False):
        """Create the replacement for `link` beside it, returning its path."""
        self.fs.makedirs(os.path.dirname(link))
        temp = link + ".new"
        if self.fs.lexists(temp):
            self.fs.remove(temp)
        self.fs.symlink(target, temp, target_is_directory)
        return temp

    def _discard_staged(self):
        for link in self._links():
            temp = link + ".new"
            if self.fs.lexists(temp):
                silent_exec(self.fs.remove, temp)

    def _is_valid(self, link: str):
        return self.fs.lexists(link) and self.fs.exists(link)

    def set_current(
        self, release_dir: str, exec_name: str
    ) -> Result[SymlinkInfo, SymlinkError]:
        """Point the active links at `exec_name` inside `release_dir`."""
        target = os.path.join(release_dir, exec_name)
        if self.host_os not in (HostOS.LINUX, HostOS.MACOS, HostOS.WINDOWS):
            logger.warning(f"Linking is not supported on {self.host_os.value}.")
            return Failure(InvalidSymlink(self.symlink_path, target))

        app_target = None
        staged: t.List[t.Tuple[str, str]] = []
        try:
            if self.host_os is HostOS.MACOS:
                app_target = target
                temp = self._stage_link(app_target, self.mac_app_symlink_path, True)
                staged.append((temp, self.mac_app_symlink_path))
                target = os.path.join(app_target, MACOS_BINARY)
            staged.append((self._stage_link(target, self.symlink_path), self.symlink_path))
            # All new links exist before any active link is replaced
            for temp, link in staged:
                self.fs.replace(temp, link)
        except OSError as e:
            if getattr(e, "winerror", None) == _WINERROR_PRIVILEGE:
                logger.warning(
                    "Windows requires Developer Mode to be enabled to create symlinks."
                )
            else:
                logger.error(f"Could not create link to '{target}': {e}")
            # The previous links are left in place
            self._discard_staged()
            return Failure(InvalidSymlink(self.symlink_path, target))

        for link in self._links():
            if not self._is_valid(link):
                logger.error(f"Link was created but appears to be invalid: '{link}'.")
                broken = InvalidSymlink(link, self.fs.readlink(link))
                self.remove_links()
                return Failure(broken)

        logger.debug(f"'{self.symlink_path}' now points to '{target}'.")
        return Success(SymlinkInfo(target, app_target))

    def resolve_current(self) -> Result[SymlinkInfo, SymlinkError]:
        """Read the active links.

        The returned :class:`SymlinkInfo` holds the link targets. A link that
        points at a missing path is reported as :class:`InvalidSymlink`.
        """
        if not self.fs.lexists(self.symlink_path):
            return Failure(NoVersionSet())

        try:
            target = self.fs.readlink(self.symlink_path)
        except OSError:
            return Failure(InvalidSymlink(self.symlink_path, ""))
        if not self.fs.exists(self.symlink_path):
            return Failure(InvalidSymlink(self.symlink_path, target))

        app_target = None
        if self.host_os is HostOS.MACOS:
            if not self.fs.lexists(self.mac_app_symlink_path):
                logger.warning(f"'{self.mac_app_symlink_path}' is not set.")
            elif not self._is_valid(self.mac_app_symlink_path):
                logger.warning(
                    f"'{self.mac_app_symlink_path}' exists but appears to be invalid."
                )
            else:
                app_target = self.fs.readlink(self.mac_app_symlink_path)

        return Success(SymlinkInfo(target, app_target))

    def remove_links(self):
        for link in self._links():
            if self.fs.lexists(link):
                self.fs.remove(link)
                logger.debug(f"Removed link '{link}'.")

    def repair(self):
        """Remove any active links that no longer resolve.

        :returns: `True` if anything was removed.
        """
        repaired = False
        for link in self._links():
            if self.fs.lexists(link) and not self.fs.exists(link):
                self.fs.remove(link)
                logger.debug(f"Removed dangling link '{link}'.")
                repaired = True
        return repaired

    def points_into(self, release_dir: str):
        """Check whether the primary link currently targets something inside `release_dir`."""
        if not self.fs.lexists(self.symlink_path):
            return False
        try:
            target = os.path.normpath(self.fs.readlink(self.symlink_path))
        except OSError:
            return False
        release_dir = os.path.normpath(release_dir)
        return target == release_dir or target.startswith(release_dir + os.sep)
