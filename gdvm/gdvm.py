#!/usr/bin/env python
import logging
import os
import typing as t
from importlib import import_module

import click

import gdvm.clickExt as clickExt
from gdvm.clickExt import Env
from gdvm.config import UserInfo
from gdvm.logging import ClickFormatter
from gdvm.logging import EchoHandler
from gdvm.logging import file_handler


# This should be the root module logger, even though __name__ is 'gdvm.gdvm'
logger = logging.getLogger("gdvm")


@click.group(
    cls=clickExt.CatchErrorsGroup,
    context_settings={"help_option_names": ["-h", "--help"]},
)
@click.pass_context
@click.version_option(package_name="gdvm")
def cli(ctx: click.Context):
    """Install and switch between Godot engine versions."""
    # Logging should not be setup in the global scope or it breaks pytest log capturing
    console = EchoHandler()
    console.setFormatter(ClickFormatter())
    logger.addHandler(console)
    # Required to avoid duplicate logging from subprocesses, among other things
    logger.propagate = False

    user_info = ctx.with_resource(UserInfo())
    handlers: t.List[logging.Handler] = [console]
    try:
        logfile = file_handler(user_info.paths.log_file)
    except OSError as e:
        logger.debug(f"File logging disabled: {e}")
    else:
        logger.addHandler(logfile)
        handlers.append(logfile)

    @ctx.call_on_close
    def remove_handlers():
        logger.propagate = True
        for handler in handlers:
            logger.removeHandler(handler)
            handler.close()

    ctx.obj = user_info
    # Inject another context as the parent
    env_ctx = click.Context(ctx.command, ctx.parent, obj=Env())
    ctx.parent = env_ctx


@cli.command(context_settings={"ignore_unknown_options": True})
@click.argument("command", nargs=-1)
@click.pass_context
def help(ctx: click.Context, command: t.List[str]):
    """Display help text for a command."""
    group = cli
    cmd_path = []
    for cmd_name in command:
        cmd_path.append(cmd_name)
        cmd = group.get_command(ctx, cmd_name)
        if not cmd:
            err_msg = "No help entry for '{}'.".format(" ".join(cmd_path))
            raise click.BadArgumentUsage(err_msg, ctx)

        if isinstance(cmd, click.Group):
            group = cmd
            continue
        else:
            # ctx currently thinks it's for the help command, this corrects the usage text
            ctx.info_name = " ".join(cmd_path)
            click.echo(cmd.get_help(ctx))
            ctx.exit(0)

    click.echo(group.get_help(ctx.parent or ctx))


cmd_folder = os.path.abspath(os.path.join(os.path.dirname(__file__), "commands"))
for filename in os.listdir(cmd_folder):
    if filename.endswith(".py") and not filename.startswith("__"):
        import_module(f"gdvm.commands.{filename[:-3]}")
