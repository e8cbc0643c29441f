import logging
import os
import shutil
import sys
import typing as t
from io import UnsupportedOperation

import click

from gdvm.errors import TTYError

logger = logging.getLogger(__name__)

T = t.TypeVar("T")

DEBUG_ENV = "GDVM_DEBUG"


class Env:
    skip_confirmation = False


def partition(predicate: t.Callable[[T], bool], iterable: t.Iterable[T]):
    """Partition a list based on the results of a :param:`predicate`."""
    trues: t.List[T] = []
    falses: t.List[T] = []
    for item in iterable:
        if predicate(item):
            trues.append(item)
        else:
            falses.append(item)
    return trues, falses


def confirm_ext(*params, default, **attrs):
    """Extension to :func:`click.confirm`.

    Throws a :class:`TTYError` if `stdin` is not a TTY,
    and returns `True` if :attr:`Env.skip_confirmation` is set.
    """

    ctx = click.get_current_context(silent=True)
    env = ctx and ctx.find_object(Env)

    if env and env.skip_confirmation:
        return True

    tty = True
    try:
        tty = sys.stdin.isatty()
    except UnsupportedOperation:
        tty = False

    if not tty:
        raise TTYError("not a tty.\nUse '--yes' to skip confirmation prompts.")

    return click.confirm(default=default, *params, **attrs)


def echo_via_pager(lines: t.Iterable[str], color: t.Optional[bool] = None):
    """`click.echo_via_pager`, but only if the output won't fit on one screen."""

    import itertools
    import math

    cols, rows = shutil.get_terminal_size()
    buffered: t.List[str] = []

    iterator = (line for text in lines for line in str(text).splitlines(keepends=True))
    nlines = 0
    for line in iterator:
        buffered.append(line)
        plain = click.unstyle(line).rstrip("\n")
        nlines += max(1, math.ceil(len(plain) / cols))
        if nlines > rows:
            return click.echo_via_pager(itertools.chain(buffered, iterator), color)

    for line in buffered:
        click.echo(line, nl=False, color=color)


def env_flag_option(
    var: str, *param_decls: str, help="", process_value: t.Any = None, **kwargs: t.Any
):
    def callback(ctx: click.Context, param: click.Parameter, value: bool):
        env = ctx.ensure_object(Env)
        if process_value:
            value = process_value(ctx, param, value)
        setattr(env, var, value)

    kwargs.setdefault("expose_value", False)
    kwargs.setdefault("is_eager", True)
    kwargs.setdefault("help", help)
    kwargs["callback"] = callback
    return click.option(*param_decls, **kwargs)


def yes_option(*param_decls: str, **kwargs: t.Any):
    if not param_decls:
        param_decls = ("-y", "--yes")

    kwargs.setdefault("is_flag", True)
    return env_flag_option(
        "skip_confirmation", *param_decls, help="Skip confirmation prompts.", **kwargs
    )


loglevel_flags = {
    "--debug": logging.DEBUG,
    "--quiet": logging.ERROR,
}


def debug_enabled(logflags: t.Sequence[str]):
    return "--debug" in logflags or os.getenv(DEBUG_ENV, "").lower() in (
        "true",
        "yes",
        "1",
    )


class CatchErrorsGroup(click.Group):
    """Root group that applies log level flags anywhere on the command line,
    and reports unhandled exceptions without a traceback unless debugging."""

    def main(self, args=None, *params, **extra):
        if args is None:
            args = sys.argv[1:]

        module_logger = logging.getLogger("gdvm")
        logflags, args = partition(lambda arg: arg in loglevel_flags, list(args))
        debug = debug_enabled(logflags)
        if logflags:
            module_logger.setLevel(loglevel_flags[logflags[-1]])
        elif debug:
            module_logger.setLevel(logging.DEBUG)
        else:
            module_logger.setLevel(logging.INFO)

        try:
            return super().main(args, *params, **extra)
        except Exception as e:
            if debug:
                logger.exception("An unhandled exception has occurred:")
            else:
                logger.error(
                    "An unhandled exception has occurred:\n  "
                    + click.style(repr(e), "red")
                )
                logger.error(
                    "Use the --debug flag to disable clean exception handling."
                )
            sys.exit(1)
