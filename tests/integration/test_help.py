import warnings

import click

from gdvm.gdvm import cli


def visible_options(command: click.Command):
    return [
        param
        for param in command.params
        if isinstance(param, click.Option) and not param.hidden
    ]


def test_command_help(command: click.Command):
    if command.hidden:
        return

    assert command.help, f"Command '{command.name}' is missing help text"
    assert (
        command.get_short_help_str()
    ), f"Command '{command.name}' is missing short help text"


def test_option_help(command: click.Command):
    for param in visible_options(command):
        assert (
            param.help
        ), f"Option '{param.name}' for command '{command.name}' is missing help text"


def test_help_command(runner, command: click.Command):
    if command.hidden:
        return

    result = runner.invoke(cli, ["help", *command.qualified_name.split()])
    assert result.exit_code == 0, result.output
    assert command.help
    assert command.help.splitlines()[0].strip() in result.output
    for param in visible_options(command):
        assert param.opts[-1] in result.output


def test_no_args_is_help(command: click.Command):
    required = any(param.required for param in command.params)
    if command.no_args_is_help:
        assert (
            required
        ), f"Command '{command.name}' can be called with no arguments, but has 'no_args_is_help' enabled."
    elif required:
        warnings.warn(f"Command '{command.name}' could enable 'no_args_is_help'.")
