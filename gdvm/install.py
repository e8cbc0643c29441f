import logging
import os
import typing as t
from enum import Enum
from zipfile import BadZipFile
from zipfile import ZipFile

from urllib3.exceptions import HTTPError

from gdvm import fs
from gdvm.config import Paths
from gdvm.config import RELEASES_CACHE_LIFESPAN
from gdvm.downloading import download_size
from gdvm.downloading import read_with_progress
from gdvm.errors import CancellationToken
from gdvm.errors import InvalidArgumentsError
from gdvm.errors import silent_exec
from gdvm.formatting import format_download
from gdvm.platforms import archive_name
from gdvm.platforms import executable_name
from gdvm.platforms import get_platform_string
from gdvm.platforms import HostOS
from gdvm.platforms import SystemInfo
from gdvm.query import resolve_query
from gdvm.results import AllSourcesFailed
from gdvm.results import AlreadyInstalled
from gdvm.results import ChecksumVerification
from gdvm.results import Failure
from gdvm.results import InstallationError
from gdvm.results import InstallationOutcome
from gdvm.results import InstallFailed
from gdvm.results import InstallNotFound
from gdvm.results import InvalidVersion
from gdvm.results import NetworkError
from gdvm.results import NewInstallation
from gdvm.results import Result
from gdvm.results import Skipped
from gdvm.results import Success
from gdvm.results import SymlinkError
from gdvm.results import SymlinkInfo
from gdvm.results import VerificationFailed
from gdvm.results import Verified
from gdvm.results import VersionNotFound
from gdvm.results import VersionResolutionError
from gdvm.sources import cache_is_valid
from gdvm.sources import read_cache
from gdvm.sources import read_lines
from gdvm.sources import ReleaseSources
from gdvm.sources import write_cache
from gdvm.sources import write_lines
from gdvm.symlinks import Activator
from gdvm.utils import find_checksum
from gdvm.utils import get_sha512
from gdvm.utils import make_executable
from gdvm.utils import UnsafeArchiveError
from gdvm.utils import unpack
from gdvm.version import Release
from gdvm.version import RuntimeEnvironment

logger = logging.getLogger(__name__)


class InstallStage(Enum):
    INITIALIZING = "initializing"
    DOWNLOADING = "downloading"
    VERIFYING_CHECKSUM = "verifying checksum"
    EXTRACTING = "extracting"
    SETTING_DEFAULT = "setting default"
    DONE = "done"


ProgressObserver = t.Callable[[InstallStage, str], None]

CHECKSUMS_SINCE = (3, 3, 0)
"""Releases older than this have no published checksums."""


def has_checksums(release: Release):
    return release.version_tuple >= CHECKSUMS_SINCE


def _sort_key(release: Release):
    return (release.version_tuple, release.Type, release.Runtime is RuntimeEnvironment.STANDARD)


class InstallationService:
    """Install, list, activate and remove releases under a single root directory."""

    def __init__(
        self,
        paths: Paths,
        sources: ReleaseSources,
        system: t.Optional[SystemInfo] = None,
        activator: t.Optional[Activator] = None,
    ) -> None:
        self.paths = paths
        self.sources = sources
        self.system = system or SystemInfo.current()
        self.activator = activator or Activator(
            paths.symlink, paths.mac_app_symlink, self.system.os
        )

    def _report(
        self, progress: t.Optional[ProgressObserver], stage: InstallStage, message: str
    ):
        if progress is None:
            return
        try:
            progress(stage, message)
        except Exception as e:
            logger.debug(f"Progress observer raised {e!r}, ignoring.")

    def platform_string(self, release: Release):
        return get_platform_string(release, self.system.os, self.system.arch)

    def executable_name(self, release: Release):
        return executable_name(release, self.system.os, self.platform_string(release))

    def release_dir(self, release: Release):
        return self.paths.release_dir(release.name_with_runtime)

    def is_installed(self, release: Release):
        return os.path.isdir(self.release_dir(release))

    def install(
        self,
        release: Release,
        progress: t.Optional[ProgressObserver] = None,
        set_as_default=False,
        cancel: t.Optional[CancellationToken] = None,
    ) -> Result[InstallationOutcome, InstallationError]:
        """Download, verify and extract `release`, optionally activating it.

        Stages are reported to `progress` in order, and are skipped entirely if
        the release is already installed.

        :raises UnsupportedPlatformError: if the release is not built for this host.
        :raises OperationCancelled: if `cancel` is triggered.
        """
        name = release.name_with_runtime
        if self.is_installed(release):
            logger.debug(f"{name} is already installed.")
            return Success(AlreadyInstalled(name))

        platform_string = self.platform_string(release)
        filename = archive_name(release, platform_string)
        release_dir = self.release_dir(release)

        self._report(progress, InstallStage.INITIALIZING, f"Installing {name}...")
        os.makedirs(self.paths.root, exist_ok=True)
        with fs.temporary_file(self.paths.root) as archive:
            self._report(
                progress, InstallStage.DOWNLOADING, f"Downloading {filename}..."
            )
            error = self._download(release, filename, archive, progress, cancel)
            if error:
                return Failure(error)

            self._report(
                progress, InstallStage.VERIFYING_CHECKSUM, "Verifying checksum..."
            )
            checksum = self._verify(release, filename, archive, cancel)
            if isinstance(checksum, InstallFailed):
                return Failure(checksum)

            self._report(progress, InstallStage.EXTRACTING, "Extracting files...")
            try:
                with ZipFile(archive) as zip:
                    unpack(zip, release_dir)
                if self.system.os is not HostOS.WINDOWS:
                    make_executable(
                        os.path.join(release_dir, self.executable_name(release))
                    )
            except (BadZipFile, UnsafeArchiveError, OSError) as e:
                logger.debug(f"Removing '{release_dir}' due to error.")
                silent_exec(fs.remove_tree, release_dir)
                return Failure(InstallFailed(f"Could not extract {filename}: {e}"))
            except BaseException:
                silent_exec(fs.remove_tree, release_dir)
                raise

        activation_error = None
        if set_as_default:
            self._report(
                progress, InstallStage.SETTING_DEFAULT, "Setting as default version..."
            )
            activated = self.set_current(release)
            if isinstance(activated, Failure):
                activation_error = activated.error

        logger.debug(f"Successfully installed {name}.")
        self._report(progress, InstallStage.DONE, f"Installed {name}.")
        return Success(NewInstallation(name, checksum, activation_error))

    def _download(
        self,
        release: Release,
        filename: str,
        dest: str,
        progress: t.Optional[ProgressObserver],
        cancel: t.Optional[CancellationToken],
    ) -> t.Optional[InstallationError]:
        result = self.sources.get_archive(release, filename, cancel)
        if isinstance(result, Failure):
            return self._network_failure(release, result.error)

        response = result.value
        size = download_size(response)

        def on_progress(done: int, total: int, elapsed: float):
            self._report(
                progress,
                InstallStage.DOWNLOADING,
                format_download(filename, done, total or done, elapsed),
            )

        try:
            with open(dest, "wb") as file:
                read_with_progress(
                    response, file, size, on_progress=on_progress, cancel=cancel
                )
        except HTTPError as e:
            return InstallFailed(f"Download of {filename} failed: {e}")
        finally:
            silent_exec(response.release_conn)
        return None

    def _network_failure(self, release: Release, error: NetworkError):
        if isinstance(error, AllSourcesFailed) and error.not_found:
            return InstallNotFound(release.name_with_runtime)
        return InstallFailed(str(error))

    def _verify(
        self,
        release: Release,
        filename: str,
        archive: str,
        cancel: t.Optional[CancellationToken],
    ) -> t.Union[ChecksumVerification, InstallFailed]:
        if not has_checksums(release):
            logger.debug(f"No checksums are published for {release.name}.")
            return Skipped()

        result = self.sources.get_checksum(release, cancel)
        if isinstance(result, Failure):
            logger.warning(
                f"Could not fetch checksums for {release.name}, skipping verification."
            )
            return VerificationFailed(str(result.error), result.error)

        expected = find_checksum(result.value, filename)
        if expected is None:
            logger.warning(f"No checksum found for {filename}, skipping verification.")
            return VerificationFailed(f"No checksum listed for {filename}.")

        actual = get_sha512(fs.File(archive))
        if actual != expected:
            logger.debug(f"Expected SHA-512 {expected}, got {actual}.")
            return InstallFailed(f"Checksum mismatch for {filename}.")
        return Verified()

    def _cached_names(self):
        path = self.paths.releases_cache
        if not cache_is_valid(path, RELEASES_CACHE_LIFESPAN):
            return None
        return read_cache(path, read_lines) or None

    def fetch_release_names(
        self, remote=False, cancel: t.Optional[CancellationToken] = None
    ) -> Result[t.List[str], NetworkError]:
        """List available release names, newest first.

        A recent cached listing is used unless `remote` is set.
        """
        if not remote:
            cached = self._cached_names()
            if cached:
                logger.debug("Using cached release list.")
                return Success(cached)

        result = self.sources.list_releases(cancel)
        if isinstance(result, Failure):
            return result

        releases = [
            (release, name)
            for release, name in ((Release.parse(n), n) for n in result.value)
            if release
        ]
        releases.sort(key=lambda r: _sort_key(r[0]), reverse=True)
        names = [name for _, name in releases]
        write_cache(self.paths.releases_cache, names, write_lines)
        return Success(names)

    def install_by_query(
        self,
        query: t.Sequence[str],
        progress: t.Optional[ProgressObserver] = None,
        set_as_default=False,
        cancel: t.Optional[CancellationToken] = None,
    ) -> Result[InstallationOutcome, InstallationError]:
        """Resolve `query` against the release list and install the match.

        A query that matches nothing in the cached list is retried against
        the remote list.

        :raises InvalidArgumentsError: if the query is malformed.
        """
        release = None
        cached = self._cached_names()
        if cached:
            release = resolve_query(query, cached)
        if release is None:
            names = self.fetch_release_names(remote=True, cancel=cancel)
            if isinstance(names, Failure):
                return Failure(InstallFailed(str(names.error)))
            release = resolve_query(query, names.value)
        if release is None:
            return Failure(InstallNotFound(" ".join(query)))

        logger.debug(f"Resolved '{' '.join(query)}' to {release.name_with_runtime}.")
        return self.install(release, progress, set_as_default, cancel)

    def list_installations(self) -> t.List[Release]:
        """Installed releases, newest first."""
        try:
            entries = os.listdir(self.paths.root)
        except FileNotFoundError:
            return []

        releases = []
        for entry in entries:
            if entry.startswith(".") or not fs.isdir(os.path.join(self.paths.root, entry)):
                continue
            release = Release.parse(entry)
            if release and release.name_with_runtime == entry:
                releases.append(release)
        return sorted(releases, key=_sort_key, reverse=True)

    def resolve_installed(
        self, query: t.Sequence[str]
    ) -> Result[Release, VersionResolutionError]:
        """Resolve `query` against installed releases only."""
        joined = " ".join(query)
        # Installed names carry an explicit runtime, so neither runtime is implied
        names = [f"{r.name}-{r.Runtime}" for r in self.list_installations()]
        try:
            release = resolve_query(query, names)
        except InvalidArgumentsError as e:
            logger.debug(str(e))
            return Failure(InvalidVersion(joined))
        if release is None:
            return Failure(VersionNotFound(joined))
        return Success(release)

    def ensure_installed(
        self,
        query: t.Sequence[str],
        progress: t.Optional[ProgressObserver] = None,
        cancel: t.Optional[CancellationToken] = None,
    ) -> Result[Release, t.Union[VersionResolutionError, InstallationError]]:
        """Resolve `query` against installed releases, installing a match if none is."""
        installed = self.resolve_installed(query)
        if isinstance(installed, Success) or not isinstance(
            installed.error, VersionNotFound
        ):
            return installed

        logger.info(f"No installed version matches '{' '.join(query)}', installing it.")
        result = self.install_by_query(query, progress, cancel=cancel)
        if isinstance(result, Failure):
            return result
        release = Release.parse(result.value.name_with_runtime)
        assert release
        return Success(release)

    def set_current(self, release: Release) -> Result[SymlinkInfo, SymlinkError]:
        return self.activator.set_current(
            self.release_dir(release), self.executable_name(release)
        )

    def remove(self, release: Release):
        """Delete an installed release, unlinking it first if it is active.

        :returns: `False` if the release was not installed.
        """
        release_dir = self.release_dir(release)
        if not fs.isdir(release_dir):
            return False
        if self.activator.points_into(release_dir):
            logger.debug(f"{release.name_with_runtime} is active, removing links.")
            self.activator.remove_links()
        fs.remove_tree(release_dir)
        return True
