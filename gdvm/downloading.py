import importlib.metadata
import logging
import time
import typing as t
import urllib.parse

import urllib3
from urllib3.exceptions import HTTPError

from gdvm.errors import CancellationToken
from gdvm.errors import wait

logger = logging.getLogger(__name__)


_version = importlib.metadata.version("gdvm")

_accepted_encodings = ["gzip", "deflate"]
_global_headers = {
    "User-Agent": f"gdvm/{_version}",
    "Accept-Encoding": ", ".join(_accepted_encodings),
}

# Transient failures are retried by `with_retry`, so urllib3 only follows redirects.
_NO_RETRIES = urllib3.Retry(
    total=None, connect=0, read=0, status=0, other=0, redirect=5
)

DEFAULT_TIMEOUT = urllib3.Timeout(connect=3, read=10)

MAX_RETRIES = 3
INITIAL_DELAY = 2.0
TRANSIENT_STATUSES = (408, 429)


class URLResponse(t.Protocol):
    url: str
    status: int
    headers: t.MutableMapping[str, str]

    def read(self, amt=...) -> bytes:
        ...

    def release_conn(self) -> None:
        ...


def open_url(
    url: str,
    *,
    method="GET",
    headers: t.Optional[t.MutableMapping[str, str]] = None,
    fields: t.Optional[t.MutableMapping[str, str]] = None,
    pool_manager: t.Optional[urllib3.PoolManager] = None,
    timeout: t.Optional[urllib3.Timeout] = None,
) -> URLResponse:
    """Send a request to a URL and return a streaming response.

    The response is returned for any status code; callers decide what counts as a failure.
    """
    full_url = url
    if fields:
        full_url += "?" + urllib.parse.urlencode(fields)

    http = pool_manager or urllib3.PoolManager()
    response = t.cast(
        URLResponse,
        http.request(
            method,
            url,
            headers={**_global_headers, **(headers or {})},
            fields=fields,
            preload_content=False,
            retries=_NO_RETRIES,
            timeout=timeout or DEFAULT_TIMEOUT,
        ),
    )
    response.url = full_url
    return response


def is_transient(status: int):
    return status in TRANSIENT_STATUSES or status >= 500


R = t.TypeVar("R")


def with_retry(
    call: t.Callable[[], R],
    *,
    max_retries=MAX_RETRIES,
    initial_delay=INITIAL_DELAY,
    cancel: t.Optional[CancellationToken] = None,
) -> R:
    """Invoke `call`, retrying transient failures with exponential backoff.

    A result with a `status` of 408, 429 or 5xx, or a urllib3 :class:`HTTPError`,
    is retried up to `max_retries` times. The delay starts at `initial_delay`
    seconds and doubles after each retry.

    :returns: The first non-transient result, or the last result once retries are exhausted.
    :raises HTTPError: The last transport error, once retries are exhausted.
    :raises OperationCancelled: If `cancel` is triggered, including during a delay.
    """
    delay = initial_delay
    attempt = 0
    while True:
        if cancel:
            cancel.raise_if_cancelled()

        try:
            result = call()
        except HTTPError as e:
            if attempt >= max_retries:
                raise
            logger.debug(f"Request failed ({e}), retrying in {delay:g}s.")
        else:
            status = getattr(result, "status", None)
            if status is None or not is_transient(status) or attempt >= max_retries:
                return result
            logger.debug(f"Request returned {status}, retrying in {delay:g}s.")
            release = getattr(result, "release_conn", None)
            if release:
                release()

        wait(delay, cancel)
        delay *= 2
        attempt += 1


ProgressCallback = t.Callable[[int, int, float], None]
"""Called with `(bytes_done, bytes_total, elapsed_seconds)`."""


def read_with_progress(
    input: URLResponse,
    output: t.BinaryIO,
    size=0,
    blocksize=8192,
    on_progress: t.Optional[ProgressCallback] = None,
    interval=1024 * 1024,
    cancel: t.Optional[CancellationToken] = None,
):
    """Copy `input` to `output`, reporting progress at least every `interval` bytes.

    :returns: The number of bytes copied.
    """
    start = time.perf_counter()
    done = reported = 0
    while True:
        if cancel and cancel.is_cancelled:
            logger.debug("Download interrupted, aborting...")
            cancel.raise_if_cancelled()

        buf = input.read(blocksize)
        if not buf:
            break
        output.write(buf)
        done += len(buf)
        if on_progress and done - reported >= interval:
            reported = done
            on_progress(done, size, time.perf_counter() - start)

    if on_progress and done != reported:
        on_progress(done, size or done, time.perf_counter() - start)
    return done


def download_size(response: URLResponse, default=0):
    try:
        return int(response.headers.get("Content-Length", default))
    except ValueError:
        return default
