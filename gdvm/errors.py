import sys
import threading
import time
import typing as t

import click

if sys.version_info < (3, 10):
    import typing_extensions as te
else:
    te = t


class EmptyFileError(Exception):
    pass


class ExceptionCount(Exception):
    def __init__(self, count: int):
        self.count = count
        super().__init__()


class TTYError(click.ClickException):
    def __init__(self, message: str) -> None:
        super().__init__("Could not read from stdin: " + message)


class ConfigurationError(click.ClickException):
    exit_code = 4


class InvalidArgumentsError(click.UsageError):
    """One or more query tokens could not be classified."""

    def __init__(self, arguments: t.Iterable[str]) -> None:
        self.arguments = list(arguments)
        super().__init__("Invalid arguments: " + ", ".join(self.arguments))


class ReleaseNotFoundError(click.ClickException):
    exit_code = 2


class SymlinkFailure(click.ClickException):
    exit_code = 3


class OperationCancelled(click.ClickException):
    """Raised when a :class:`CancellationToken` is cancelled mid-operation.

    Never folded into the network or installation error values.
    """

    exit_code = 130

    def __init__(self, message: str = "Operation cancelled.") -> None:
        super().__init__(message)


class CancellationToken:
    """A one-way cancellation signal shared by a single pipeline run."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def is_cancelled(self):
        return self._event.is_set()

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise OperationCancelled()

    def wait(self, timeout: float):
        """Sleep for up to `timeout` seconds, aborting as soon as the token is cancelled.

        :raises OperationCancelled: if cancelled before or during the wait.
        """
        if self._event.wait(timeout):
            raise OperationCancelled()


def wait(delay: float, cancel: t.Optional[CancellationToken]):
    if cancel is None:
        time.sleep(delay)
    else:
        cancel.wait(delay)


P = te.ParamSpec("P")


def silent_exec(
    func: t.Callable[P, t.Any], *params: P.args, **kwargs: P.kwargs
) -> None:
    """Execute `func`, ignoring any exceptions.

    :returns: `None`
    """
    try:
        func(*params, **kwargs)
    except Exception:
        pass
