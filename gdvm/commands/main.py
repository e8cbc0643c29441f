import logging
import os
import typing as t

import click
import urllib3
import yaml
from click import echo

import gdvm.clickExt as clickExt
import gdvm.fs as fs
from gdvm.config import Config
from gdvm.config import pass_userinfo
from gdvm.config import UserInfo
from gdvm.errors import CancellationToken
from gdvm.errors import InvalidArgumentsError
from gdvm.errors import OperationCancelled
from gdvm.errors import ReleaseNotFoundError
from gdvm.errors import SymlinkFailure
from gdvm.formatting import format_bytes
from gdvm.formatting import format_columns
from gdvm.gdvm import cli
from gdvm.install import InstallationService
from gdvm.logging import ProgressReporter
from gdvm.platforms import UnsupportedPlatformError
from gdvm.project import find_project_info
from gdvm.project import PROJECT_FILE
from gdvm.project import VERSION_FILE
from gdvm.project import write_version_file
from gdvm.query import filter_releases
from gdvm.results import AlreadyInstalled
from gdvm.results import Failure
from gdvm.results import InstallationError
from gdvm.results import InstallFailed
from gdvm.results import InstallNotFound
from gdvm.results import InvalidSymlink
from gdvm.results import InvalidVersion
from gdvm.results import NewInstallation
from gdvm.results import NoVersionSet
from gdvm.results import ResolutionFailed
from gdvm.results import VerificationFailed
from gdvm.results import VersionNotFound
from gdvm.results import VersionResolutionError
from gdvm.sources import GitHubSource
from gdvm.sources import MirrorSource
from gdvm.sources import ReleaseSources
from gdvm.sources import RetryPolicy
from gdvm.version import Release

logger = logging.getLogger(__name__)


def build_sources(config: Config):
    downloading = config.downloading
    policy = RetryPolicy(
        downloading.max_retries,
        downloading.initial_delay,
        urllib3.Timeout(
            connect=downloading.connect_timeout, read=downloading.read_timeout
        ),
    )
    pool_manager = urllib3.PoolManager()
    return ReleaseSources(
        GitHubSource(config.github.token, policy=policy, pool_manager=pool_manager),
        MirrorSource(policy=policy, pool_manager=pool_manager),
    )


def build_service(user_info: UserInfo):
    return InstallationService(user_info.paths, build_sources(user_info.config))


def raise_for_error(error: t.Union[InstallationError, VersionResolutionError]):
    if isinstance(error, InstallNotFound):
        raise ReleaseNotFoundError(f"No release found matching '{error.query}'.")
    if isinstance(error, InstallFailed):
        raise click.ClickException(f"Installation failed: {error.reason}")
    if isinstance(error, VersionNotFound):
        raise ReleaseNotFoundError(
            f"No installed version matches '{error.version}' (use 'gdvm list')."
        )
    if isinstance(error, InvalidVersion):
        raise click.UsageError(f"Invalid version: '{error.version}'.")
    if isinstance(error, ResolutionFailed):
        raise click.ClickException(error.reason)
    raise AssertionError(f"Unhandled error: {error!r}")


@cli.command(no_args_is_help=True)
@click.argument("query", nargs=-1, required=True)
@click.option(
    "-D",
    "--default",
    "set_default",
    is_flag=True,
    help="Set as the default version once installed.",
)
@pass_userinfo
def install(user_info: UserInfo, query: t.Tuple[str, ...], set_default: bool):
    """Install a version matching QUERY.

    QUERY is any combination of a version (4, 4.2, 4.2.1), a release type
    (stable, rc, beta2...), a runtime (mono, standard) and 'latest'.
    The first version installed is set as the default.
    """
    service = build_service(user_info)
    explicit_default = set_default
    if not service.list_installations():
        set_default = True

    cancel = CancellationToken()
    try:
        with ProgressReporter() as progress:
            result = service.install_by_query(query, progress, set_default, cancel)
    except KeyboardInterrupt:
        cancel.cancel()
        raise OperationCancelled() from None
    except UnsupportedPlatformError as e:
        raise click.ClickException(str(e))

    if isinstance(result, Failure):
        raise_for_error(result.error)

    outcome = result.value
    if isinstance(outcome, AlreadyInstalled):
        logger.info(f"{outcome.name_with_runtime} is already installed.")
        if explicit_default:
            set_current(service, Release.parse(outcome.name_with_runtime))
        return
    if isinstance(outcome, NewInstallation):
        if isinstance(outcome.checksum, VerificationFailed):
            logger.warning(f"Checksum was not verified: {outcome.checksum.reason}")
        if outcome.activation_error:
            logger.warning(
                f"Could not set {outcome.name_with_runtime} as the default version."
            )
        elif set_default:
            logger.info(f"{outcome.name_with_runtime} is now the default version.")
        echo(f"Installed {outcome.name_with_runtime}.")
        return
    raise AssertionError(f"Unhandled installation outcome: {outcome!r}")


def format_release(service: InstallationService, release: Release, active: bool):
    release_dir = service.release_dir(release)
    data: t.Dict[str, t.Any] = {
        "Path": release_dir,
        "Runtime": str(release.Runtime),
    }
    try:
        data["Executable"] = service.executable_name(release)
    except UnsupportedPlatformError:
        pass
    data["Size"] = format_bytes(fs.folder_size(release_dir))
    data["Active"] = active

    return yaml.dump(
        {release.name_with_runtime: data},
        sort_keys=False,
    )


@cli.command(name="list")
@click.option("-v", "--verbose", is_flag=True, help="Show details for each version.")
@pass_userinfo
def list_cmd(user_info: UserInfo, verbose: bool):
    """List installed versions.

    The default version is marked with '*'."""
    service = build_service(user_info)
    installed = service.list_installations()
    if not installed:
        raise click.ClickException("No versions installed (use 'gdvm install').")

    for release in installed:
        active = service.activator.points_into(service.release_dir(release))
        if verbose:
            echo(format_release(service, release, active))
        else:
            echo(f"{'*' if active else ' '} {release.name_with_runtime}")


@cli.command()
@click.argument("query", nargs=-1)
@click.option("--refresh", is_flag=True, help="Ignore the cached release list.")
@pass_userinfo
def search(user_info: UserInfo, query: t.Tuple[str, ...], refresh: bool):
    """Search available releases, optionally filtered by QUERY."""
    service = build_service(user_info)
    result = service.fetch_release_names(remote=refresh)
    if isinstance(result, Failure):
        raise click.ClickException(f"Could not list releases: {result.error}")

    matches = filter_releases(query, result.value)
    if not matches:
        logger.info("No matching releases found.")
        return
    clickExt.echo_via_pager(name + "\n" for name in matches)


def set_current(service: InstallationService, release: Release):
    try:
        result = service.set_current(release)
    except UnsupportedPlatformError as e:
        raise click.ClickException(str(e))
    if isinstance(result, Failure):
        raise SymlinkFailure(
            f"Could not set {release.name_with_runtime} as the default version."
        )
    logger.info(f"{release.name_with_runtime} is now the default version.")


@cli.command(name="set", no_args_is_help=True)
@click.argument("query", nargs=-1, required=True)
@pass_userinfo
def set_cmd(user_info: UserInfo, query: t.Tuple[str, ...]):
    """Set an installed version matching QUERY as the default."""
    service = build_service(user_info)
    result = service.resolve_installed(query)
    if isinstance(result, Failure):
        raise_for_error(result.error)

    set_current(service, result.value)


@cli.command()
@click.argument("query", nargs=-1)
@pass_userinfo
def local(user_info: UserInfo, query: t.Tuple[str, ...]):
    """Pin the current directory to a version matching QUERY.

    The version is written to '.gdvm-version' and installed if it is missing.
    Without QUERY, the version is read from an existing '.gdvm-version' or
    detected from 'project.godot'.
    """
    directory = os.getcwd()
    tokens: t.Sequence[str] = query
    if not tokens:
        info = find_project_info(directory)
        if info is None:
            raise click.UsageError(
                f"No QUERY given and no '{VERSION_FILE}' or '{PROJECT_FILE}' "
                "found in the current directory."
            )
        logger.info(f"Project uses {info} (from '{info.source}').")
        tokens = info.query

    service = build_service(user_info)
    cancel = CancellationToken()
    try:
        with ProgressReporter() as progress:
            result = service.ensure_installed(tokens, progress, cancel)
    except KeyboardInterrupt:
        cancel.cancel()
        raise OperationCancelled() from None
    except UnsupportedPlatformError as e:
        raise click.ClickException(str(e))

    if isinstance(result, Failure):
        raise_for_error(result.error)

    name = result.value.name_with_runtime
    created = write_version_file(name, directory)
    logger.info(f"{'Created' if created else 'Updated'} '{VERSION_FILE}'.")
    echo(f"Set local version to {name}.")


@cli.command()
@pass_userinfo
def which(user_info: UserInfo):
    """Show where the default version is linked."""
    service = build_service(user_info)
    activator = service.activator
    result = activator.resolve_current()
    if isinstance(result, Failure):
        error = result.error
        if isinstance(error, InvalidSymlink):
            if activator.repair():
                logger.warning(
                    f"Removed broken link '{error.path}' to '{error.target}'."
                )
        elif not isinstance(error, NoVersionSet):
            raise AssertionError(f"Unhandled link error: {error!r}")
        raise SymlinkFailure("No default version is set (use 'gdvm set').")

    info = result.value
    links = {activator.symlink_path: info.symlink_path}
    if info.mac_app_symlink_path:
        links[activator.mac_app_symlink_path] = info.mac_app_symlink_path
    echo(format_columns({link: f"-> {target}" for link, target in links.items()}))


@cli.command(no_args_is_help=True)
@click.argument("names", nargs=-1, required=True)
@clickExt.yes_option()
@pass_userinfo
def remove(user_info: UserInfo, names: t.Tuple[str, ...]):
    """Remove installed versions.

    NAMES are full version names as shown by 'gdvm list'."""
    service = build_service(user_info)
    releases: t.List[Release] = []
    invalid: t.List[str] = []
    for name in names:
        release = Release.parse(name)
        if release is None:
            invalid.append(name)
        else:
            releases.append(release)
    if invalid:
        raise InvalidArgumentsError(invalid)

    missing = [r.name_with_runtime for r in releases if not service.is_installed(r)]
    if missing:
        raise ReleaseNotFoundError("Not installed: " + ", ".join(missing))

    echo("\n".join(f"  {r.name_with_runtime}" for r in releases))
    if not clickExt.confirm_ext(
        "Are you sure you want to remove these versions?", default=False
    ):
        return

    for release in releases:
        service.remove(release)
        logger.info(f"Removed {release.name_with_runtime}.")


@cli.command()
@click.option("-n", "--lines", type=int, help="Only show the last N lines.")
@pass_userinfo
def logs(user_info: UserInfo, lines: t.Optional[int]):
    """Display the log file."""
    path = user_info.paths.log_file
    if not fs.isfile(path):
        raise click.ClickException(f"No log file found at '{path}'.")

    with open(path, encoding="utf-8", errors="replace") as file:
        content = file.readlines()
    if lines:
        content = content[-lines:]
    clickExt.echo_via_pager(content)
