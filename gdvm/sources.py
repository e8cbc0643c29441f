import json
import logging
import os
import time
import typing as t
from abc import ABC
from abc import abstractmethod
from dataclasses import dataclass

import urllib3
from urllib3.exceptions import HTTPError

from gdvm.downloading import INITIAL_DELAY
from gdvm.downloading import MAX_RETRIES
from gdvm.downloading import open_url
from gdvm.downloading import URLResponse
from gdvm.downloading import with_retry
from gdvm.errors import CancellationToken
from gdvm.errors import OperationCancelled
from gdvm.errors import silent_exec
from gdvm.results import AllSourcesFailed
from gdvm.results import ConnectionFailure
from gdvm.results import Failure
from gdvm.results import NetworkError
from gdvm.results import RequestFailure
from gdvm.results import Result
from gdvm.results import Success
from gdvm.version import Channel
from gdvm.version import Release
from gdvm.version import RuntimeEnvironment

logger = logging.getLogger(__name__)


GITHUB_DOWNLOADS = "https://github.com/godotengine/godot-builds/releases/download"
GITHUB_RELEASES_API = (
    "https://api.github.com/repos/godotengine/godot-builds/contents/releases"
)
# The live mirror is unreliable, so an archived snapshot is used instead.
MIRROR_DOWNLOADS = "https://web.archive.org/web/20211106101031if_/https://downloads.tuxfamily.org/godotengine"

CHECKSUM_FILE = "SHA512-SUMS.txt"

_MAX_BODY = 2048


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = MAX_RETRIES
    initial_delay: float = INITIAL_DELAY
    timeout: t.Optional[urllib3.Timeout] = None


class ReleaseSource(t.Protocol):
    name: str

    def get_checksum(
        self, release: Release, cancel: t.Optional[CancellationToken] = None
    ) -> Result[str, NetworkError]:
        ...

    def get_archive(
        self,
        release: Release,
        filename: str,
        cancel: t.Optional[CancellationToken] = None,
    ) -> Result[URLResponse, NetworkError]:
        ...

    def list_releases(
        self, cancel: t.Optional[CancellationToken] = None
    ) -> Result[t.List[str], NetworkError]:
        ...


def _close(response: URLResponse):
    silent_exec(response.release_conn)


class HTTPSource(ABC):
    """Base for sources that serve artifacts over HTTP.

    Subclasses decide where a release's files live and how releases are listed.
    """

    name = "http"

    def __init__(
        self,
        policy: t.Optional[RetryPolicy] = None,
        pool_manager: t.Optional[urllib3.PoolManager] = None,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self.pool_manager = pool_manager or urllib3.PoolManager()

    def headers(self) -> t.Dict[str, str]:
        return {}

    def request(
        self, url: str, cancel: t.Optional[CancellationToken] = None
    ) -> Result[URLResponse, NetworkError]:
        """Request `url` with retries, mapping failures onto :data:`NetworkError` values.

        The response body is left unread on success.
        """
        try:
            response = with_retry(
                lambda: open_url(
                    url,
                    headers=self.headers(),
                    pool_manager=self.pool_manager,
                    timeout=self.policy.timeout,
                ),
                max_retries=self.policy.max_retries,
                initial_delay=self.policy.initial_delay,
                cancel=cancel,
            )
        except HTTPError as e:
            logger.debug(f"Could not connect to {url}: {e!r}")
            return Failure(ConnectionFailure(f"Could not connect to {url}", str(e)))

        if response.status >= 400:
            body = None
            try:
                body = response.read(_MAX_BODY).decode(errors="replace")
            except HTTPError:
                pass
            finally:
                _close(response)
            logger.debug(f"{url} returned {response.status}")
            return Failure(RequestFailure(url, response.status, body))

        return Success(response)

    def fetch_text(
        self, url: str, cancel: t.Optional[CancellationToken] = None
    ) -> Result[str, NetworkError]:
        result = self.request(url, cancel)
        if isinstance(result, Failure):
            return result
        response = result.value
        try:
            return Success(response.read().decode("utf-8-sig"))
        except (HTTPError, UnicodeDecodeError) as e:
            return Failure(ConnectionFailure(f"Could not read {url}", str(e)))
        finally:
            _close(response)

    @abstractmethod
    def url_for(self, release: Release, filename: str) -> str:
        ...

    def get_checksum(self, release, cancel=None):
        return self.fetch_text(self.url_for(release, CHECKSUM_FILE), cancel)

    def get_archive(self, release, filename, cancel=None):
        return self.request(self.url_for(release, filename), cancel)

    @abstractmethod
    def list_releases(self, cancel=None) -> Result[t.List[str], NetworkError]:
        ...


class GitHubSource(HTTPSource):
    """Release artifacts published on GitHub, the primary source."""

    name = "GitHub"

    def __init__(self, token: t.Optional[str] = None, **kwargs) -> None:
        super().__init__(**kwargs)
        self.token = token

    def headers(self):
        if self.token:
            return {"Authorization": f"Bearer {self.token}"}
        return {}

    def url_for(self, release: Release, filename: str):
        return f"{GITHUB_DOWNLOADS}/{release.name}/{filename}"

    def list_releases(self, cancel=None):
        """List release names, newest first."""
        result = self.fetch_text(GITHUB_RELEASES_API, cancel)
        if isinstance(result, Failure):
            return result
        try:
            entries: t.List[t.Dict[str, t.Any]] = json.loads(result.value)
            names = [
                entry["name"][len("godot-") : -len(".json")]
                for entry in entries
                if entry.get("name", "").startswith("godot-")
                and entry["name"].endswith(".json")
            ]
        except (ValueError, TypeError, AttributeError) as e:
            return Failure(
                ConnectionFailure("Invalid release listing from GitHub", str(e))
            )
        names.reverse()
        return Success(names)


class MirrorSource(HTTPSource):
    """An archived snapshot of the TuxFamily mirror, used as a fallback."""

    name = "TuxFamily"

    def url_for(self, release: Release, filename: str):
        url = f"{MIRROR_DOWNLOADS}/{release.version}"
        if release.Type.channel is not Channel.STABLE:
            url += f"/{release.Type}"
        if release.Runtime is RuntimeEnvironment.MONO:
            url += "/mono"
        return f"{url}/{filename}"

    def list_releases(self, cancel=None):
        return Failure(
            ConnectionFailure(f"The {self.name} mirror does not support listing releases.")
        )


T = t.TypeVar("T")


class ReleaseSources:
    """Try each source in turn, falling back to the next on any failure.

    Retries happen inside each source; a request is never retried across sources.
    """

    def __init__(self, primary: ReleaseSource, secondary: ReleaseSource) -> None:
        self.sources = (primary, secondary)

    def _first_success(
        self,
        resource: str,
        call: t.Callable[[ReleaseSource], Result[T, NetworkError]],
    ) -> Result[T, NetworkError]:
        errors: t.List[NetworkError] = []
        for source in self.sources:
            try:
                result = call(source)
            except OperationCancelled:
                raise
            except Exception as e:
                logger.debug(f"Error requesting {resource} from {source.name}: {e!r}")
                result = Failure(ConnectionFailure(str(e) or repr(e), repr(e)))

            if isinstance(result, Success):
                return result
            logger.debug(f"{source.name} failed to provide {resource}: {result.error}")
            errors.append(result.error)

        return Failure(AllSourcesFailed(resource, tuple(errors)))

    def get_checksum(self, release: Release, cancel=None):
        return self._first_success(
            CHECKSUM_FILE, lambda source: source.get_checksum(release, cancel)
        )

    def get_archive(self, release: Release, filename: str, cancel=None):
        return self._first_success(
            filename, lambda source: source.get_archive(release, filename, cancel)
        )

    def list_releases(self, cancel=None):
        return self._first_success(
            "release list", lambda source: source.list_releases(cancel)
        )


def read_cache(path: str, reader: t.Callable[[t.IO[t.Any]], T]) -> t.Optional[T]:
    try:
        with open(path) as file:
            return reader(file)
    except Exception:
        return None


def write_cache(path: str, data: T, writer: t.Callable[[T, t.IO[t.Any]], t.Any]):
    try:
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w") as file:
            writer(data, file)
    except Exception as e:
        logger.warning(f"Could not write cache '{path}': {e}")
        # Don't leave partial caches
        silent_exec(os.remove, path)


def cache_is_valid(path: str, lifespan: float) -> bool:
    """Check if `path` was modified less than `lifespan` minutes ago."""
    try:
        return time.time() - os.stat(path).st_mtime < (lifespan * 60)
    except Exception:
        return False


def read_lines(file: t.IO[str]):
    return [line.strip() for line in file if line.strip()]


def write_lines(lines: t.Iterable[str], file: t.IO[str]):
    file.writelines(line + "\n" for line in lines)
