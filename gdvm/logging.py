import logging
import os
import sys
import traceback
import typing as t
from logging import LogRecord

import click
from tqdm import tqdm

logger = logging.getLogger(__name__)


T = t.TypeVar("T")

if t.TYPE_CHECKING:
    # Use type hints from `tqdm.__init__`...
    class ProgressBar(tqdm[T]):
        """Simple wrapper for `tqdm` to only enable for INFO or DEBUG logs"""

        pass

else:
    # ...but call a wrapper function at runtime
    def ProgressBar(*args, **kwargs):
        # disable if logging isn't at least INFO
        kwargs["disable"] = kwargs.get("disable") or (
            not logger.isEnabledFor(logging.INFO) or None
        )
        return tqdm(*args, **kwargs)


LOGLEVEL_STYLE = {
    logging.CRITICAL: {"fg": "red", "bold": True},
    logging.ERROR: {"fg": "red"},
    logging.WARNING: {"fg": "yellow"},
    logging.INFO: {},
    logging.DEBUG: {"fg": "blue", "italic": True},
}


class ClickFormatter(logging.Formatter):
    def formatMessage(self, record: LogRecord) -> str:
        style: t.Dict[str, t.Any] = LOGLEVEL_STYLE.get(record.levelno, {})
        # log all level names regardless in debug mode
        if not style and logger.isEnabledFor(logging.DEBUG):
            style = {"italic": True}

        msg = record.getMessage()
        if style:
            prefix = click.style(record.levelname.lower() + ": ", **style)
            msg = "\n".join(prefix + line for line in msg.splitlines())
        return msg

    def formatException(self, ei) -> str:
        e_type, e, ei_tb = ei
        tb = "".join(traceback.format_tb(ei_tb))
        msg = "".join(traceback.format_exception_only(e_type, e))
        if msg[-1:] == "\n":
            msg = msg[:-1]
        return tb + click.style(msg, fg="red")


class EchoHandler(logging.Handler):
    def emit(self, record: LogRecord) -> None:
        try:
            with tqdm.external_write_mode(sys.stderr):
                msg = self.format(record)
                click.echo(msg, err=True)
        except Exception:
            self.handleError(record)


FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def file_handler(path: str):
    """An append-only handler for the persistent log file."""
    os.makedirs(os.path.dirname(path), exist_ok=True)
    handler = logging.FileHandler(path, mode="a", encoding="utf-8", delay=True)
    handler.setFormatter(logging.Formatter(FILE_FORMAT))
    return handler


class ProgressReporter:
    """Render `(stage, message)` progress updates as a single status line."""

    def __init__(self) -> None:
        self.stage: t.Any = None
        self.bar: t.Optional[tqdm] = None

    def __call__(self, stage: t.Any, message: str):
        if stage != self.stage:
            self.close()
            self.stage = stage
            logger.debug(message)
            self.bar = ProgressBar(total=None, bar_format="{desc}", leave=False)
        if self.bar is not None:
            self.bar.set_description_str(message)

    def close(self):
        if self.bar is not None:
            self.bar.close()
            self.bar = None

    def __enter__(self):
        return self

    def __exit__(self, *exec_details):
        self.close()
