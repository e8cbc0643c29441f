import os

import pytest

from gdvm.fs import OSFileSystem
from gdvm.platforms import HostOS
from gdvm.results import Failure
from gdvm.results import InvalidSymlink
from gdvm.results import NoVersionSet
from gdvm.results import Success
from gdvm.results import SymlinkInfo
from gdvm.symlinks import Activator
from gdvm.symlinks import MACOS_BINARY

# Real links are only created on platforms where unprivileged symlinks work
pytestmark = [pytest.mark.linux, pytest.mark.darwin]


@pytest.fixture
def root(tmp_path):
    return str(tmp_path)


def make_release(root: str, name: str, exec_name: str):
    release_dir = os.path.join(root, name)
    path = os.path.join(release_dir, exec_name)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w") as file:
        file.write(name)
    return release_dir


def activator(root: str, host_os=HostOS.LINUX, fs=None):
    bin_dir = os.path.join(root, "bin")
    return Activator(
        os.path.join(bin_dir, "godot"), os.path.join(bin_dir, "Godot.app"), host_os, fs
    )


def test_set_current(root):
    release_dir = make_release(root, "4.2-stable", "godot_exec")
    links = activator(root)

    result = links.set_current(release_dir, "godot_exec")
    target = os.path.join(release_dir, "godot_exec")
    assert result == Success(SymlinkInfo(target))
    assert os.path.islink(links.symlink_path)
    with open(links.symlink_path) as file:
        assert file.read() == "4.2-stable"
    assert links.resolve_current() == Success(SymlinkInfo(target))


def test_set_current_replaces_existing(root):
    old = make_release(root, "4.1-stable", "godot_exec")
    new = make_release(root, "4.2-stable", "godot_exec")
    links = activator(root)

    links.set_current(old, "godot_exec")
    links.set_current(new, "godot_exec")

    assert os.path.realpath(links.symlink_path) == os.path.realpath(
        os.path.join(new, "godot_exec")
    )
    assert not os.path.lexists(links.symlink_path + ".new")
    assert links.points_into(new)
    assert not links.points_into(old)


def test_set_current_macos(root):
    release_dir = make_release(root, "4.2-stable", os.path.join("Godot.app", MACOS_BINARY))
    links = activator(root, HostOS.MACOS)

    result = links.set_current(release_dir, "Godot.app")
    app = os.path.join(release_dir, "Godot.app")
    assert result == Success(SymlinkInfo(os.path.join(app, MACOS_BINARY), app))
    assert os.path.islink(links.mac_app_symlink_path)
    assert links.resolve_current() == Success(
        SymlinkInfo(os.path.join(app, MACOS_BINARY), app)
    )

    links.remove_links()
    assert not os.path.lexists(links.symlink_path)
    assert not os.path.lexists(links.mac_app_symlink_path)


def test_set_current_missing_target(root, caplog):
    links = activator(root)
    release_dir = os.path.join(root, "4.2-stable")

    result = links.set_current(release_dir, "godot_exec")
    assert isinstance(result, Failure)
    assert isinstance(result.error, InvalidSymlink)
    # Invalid links are not left behind
    assert not os.path.lexists(links.symlink_path)
    assert "invalid" in caplog.text


def test_set_current_unsupported_os(root, caplog):
    release_dir = make_release(root, "4.2-stable", "godot_exec")
    links = activator(root, HostOS.FREEBSD)

    result = links.set_current(release_dir, "godot_exec")
    assert isinstance(result, Failure)
    assert not os.path.lexists(links.symlink_path)
    assert "not supported" in caplog.text


class PrivilegeError(OSError):
    winerror = 1314


class NoPrivilegeFileSystem(OSFileSystem):
    def symlink(self, target, link, target_is_directory=False):
        raise PrivilegeError("A required privilege is not held by the client")


def test_set_current_windows_privilege(root, caplog):
    release_dir = make_release(root, "4.2-stable", "godot.exe")
    links = activator(root, HostOS.WINDOWS, NoPrivilegeFileSystem())

    result = links.set_current(release_dir, "godot.exe")
    assert isinstance(result, Failure)
    assert isinstance(result.error, InvalidSymlink)
    assert "Developer Mode" in caplog.text


class FailingFileSystem(OSFileSystem):
    """Fails one kind of operation once `failing` is set."""

    def __init__(self, operation: str) -> None:
        self.operation = operation
        self.failing = False

    def _check(self, operation):
        if self.failing and operation == self.operation:
            raise OSError(28, "No space left on device")

    def symlink(self, target, link, target_is_directory=False):
        self._check("symlink")
        super().symlink(target, link, target_is_directory)

    def replace(self, src, dest):
        self._check("replace")
        super().replace(src, dest)


@pytest.mark.parametrize("operation", ["symlink", "replace"])
@pytest.mark.parametrize("host_os", [HostOS.LINUX, HostOS.MACOS])
def test_set_current_failure_keeps_previous(root, caplog, operation, host_os):
    fs = FailingFileSystem(operation)
    links = activator(root, host_os, fs)
    exec_name = "Godot.app" if host_os is HostOS.MACOS else "godot_exec"
    binary = os.path.join(exec_name, MACOS_BINARY) if host_os is HostOS.MACOS else exec_name
    old = make_release(root, "4.2-stable", binary)
    new = make_release(root, "4.3-stable", binary)

    previous = links.set_current(old, exec_name)
    assert isinstance(previous, Success)

    fs.failing = True
    result = links.set_current(new, exec_name)
    assert isinstance(result, Failure)
    assert isinstance(result.error, InvalidSymlink)
    assert "No space left" in caplog.text

    assert links.resolve_current() == previous
    assert links.points_into(old)
    for link in (links.symlink_path, links.mac_app_symlink_path):
        assert not os.path.lexists(link + ".new")


def test_resolve_current_unset(root):
    assert activator(root).resolve_current() == Failure(NoVersionSet())


def test_resolve_current_dangling(root):
    links = activator(root)
    os.makedirs(os.path.dirname(links.symlink_path))
    missing = os.path.join(root, "4.2-stable", "godot_exec")
    os.symlink(missing, links.symlink_path)

    assert links.resolve_current() == Failure(
        InvalidSymlink(links.symlink_path, missing)
    )
    assert links.repair()
    assert not os.path.lexists(links.symlink_path)
    assert not links.repair()


def test_points_into_unset(root):
    assert not activator(root).points_into(os.path.join(root, "4.2-stable"))
