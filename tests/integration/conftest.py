import os
import pathlib
from contextlib import contextmanager

import click
import pytest
from click.testing import CliRunner

from gdvm import downloading
from gdvm import sources
from gdvm.gdvm import cli as gdvm_cli
from gdvm.platforms import Architecture
from gdvm.platforms import HostOS
from gdvm.platforms import SystemInfo
from gdvm.sources import ReleaseSources


def pytest_collection_modifyitems(session, config, items):
    module = pathlib.Path(os.path.dirname(__file__))
    for item in items:
        if module == item.path.parent:
            item.add_marker(pytest.mark.integration_test)


def get_commands(cli, *, prefix=""):
    for cmd in cli.commands.values():
        if hasattr(cmd, "commands"):
            yield from get_commands(cmd, prefix=prefix + f"{cmd.name} ")
        else:
            cmd.qualified_name = prefix + cmd.name
            yield cmd


@pytest.fixture(
    scope="module",
    params=list(get_commands(gdvm_cli)),
    ids=lambda cmd: cmd.qualified_name,
)
def command(request):
    yield request.param


@pytest.fixture(scope="function")
def ctx(runner):
    @click.command
    def cli():
        pass

    ctx = click.Context(cli)
    with ctx:
        yield ctx


@pytest.fixture(scope="function")
def runner():
    """
    Only `gdvm local` touches the working directory, tests for it also use `project_dir`.
    """
    return CliRunner()


@pytest.fixture
def project_dir(tmp_path, monkeypatch):
    """Run commands from an empty project directory."""
    path = tmp_path / "project"
    path.mkdir()
    monkeypatch.chdir(path)
    return str(path)


@pytest.fixture
def runner_result(runner, assertion_msg):
    @contextmanager
    def runner_result(*args, **kwargs):
        result = runner.invoke(*args, **kwargs)
        error_msg = "=" * 10 + "\nCOMMAND OUTPUT\n\n" + result.output + "=" * 10
        with assertion_msg(error_msg):
            yield result

    return runner_result


@pytest.fixture(autouse=True)
def forbid_requests(monkeypatch):
    def mocked_open_url(url, *args, **kwargs):
        pytest.fail(f"Attempted to make a forbidden request to '{url}'.")

    for module in (downloading, sources):
        monkeypatch.setattr(module, "open_url", mocked_open_url)


@pytest.fixture
def linux_host(monkeypatch):
    """Resolve artifacts as if running on 64-bit Linux."""
    system = SystemInfo(HostOS.LINUX, Architecture.X64)
    monkeypatch.setattr(SystemInfo, "current", classmethod(lambda cls: system))
    return system


@pytest.fixture
def release_sources(monkeypatch, fake_source, linux_host):
    """Replace the network sources used by every command.

    Returns the primary :class:`FakeSource`, which can be populated by each test.
    """
    primary = fake_source("primary")
    monkeypatch.setattr(
        "gdvm.commands.main.build_sources",
        lambda config: ReleaseSources(primary, fake_source("secondary")),
    )
    return primary
