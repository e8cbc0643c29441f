import io
import logging
import os
import sys
import typing as t
import zipfile
from contextlib import contextmanager

import pytest

from gdvm.config import Paths
from gdvm.results import Failure
from gdvm.results import RequestFailure
from gdvm.results import Success
from gdvm.version import Release

PLATFORM_MARKS = set("darwin linux win32".split())


def pytest_configure(config: pytest.Config):
    for plat in PLATFORM_MARKS:
        config.addinivalue_line(
            "markers", f"{plat}: mark this test as platform-specific"
        )
    config.addinivalue_line(
        "markers", "data_file_zip: pass arguments to the data_file_zip fixture"
    )
    config.addinivalue_line(
        "markers",
        "mock_filesystem: pass arguments to the mock_filesystem fixture",
    )
    config.addinivalue_line("markers", "integration_test: runs a full cli command")


def pytest_runtest_setup(item):
    # platform-specific test checks
    supported_platforms = PLATFORM_MARKS.intersection(
        mark.name for mark in item.iter_markers()
    )
    plat = sys.platform
    if supported_platforms and plat not in supported_platforms:
        pytest.skip("cannot run on platform {}".format(plat))


def pytest_make_parametrize_id(config, val, argname):
    if isinstance(val, Release):
        return str(val)


def make_zip(files: t.Dict[str, t.Union[str, bytes]]):
    """Build an in-memory zip archive, returning its bytes."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zip:
        for filename, filedata in files.items():
            zip.writestr(filename, filedata)
    return buffer.getvalue()


@pytest.fixture
def data_file_zip(request: pytest.FixtureRequest, tmp_path):
    marker = request.node.get_closest_marker("data_file_zip")
    data = marker.args[0] if marker else request.param
    filenames = []
    for i, file in enumerate(data if isinstance(data, list) else [data]):
        filenames.append(os.path.join(tmp_path, f"data_file_{i}.zip"))
        # indicator for missing file
        if data is None:
            continue

        with zipfile.ZipFile(filenames[i], "w") as zip:
            for filename, filedata in file.items():
                zip.writestr(filename, filedata)
    yield tuple(filenames)


@pytest.fixture
def test_name(request):
    yield request.node.name


@pytest.fixture(autouse=True)
def assertion_msg():
    @contextmanager
    def assertion_msg(msg: str):
        try:
            yield
        except AssertionError as e:
            e.args = (e.args[0] + "\n" + msg,)
            raise

    return assertion_msg


@pytest.fixture()
def mock_filesystem(request, tmp_path):
    marker = request.node.get_closest_marker("mock_filesystem")
    mockup = marker.args[0] if marker else request.param
    root = os.path.join(tmp_path, "mock_fs")
    os.mkdir(root)

    def create_fs(root, mockup):
        if isinstance(mockup, dict):
            for dir, contents in mockup.items():
                path = os.path.join(root, dir)
                os.mkdir(path)
                create_fs(path, contents)
        elif isinstance(mockup, (list, tuple)):
            for node in mockup:
                create_fs(root, node)
        else:
            assert isinstance(mockup, str)
            path = os.path.join(root, mockup)
            if mockup.endswith("/"):
                os.mkdir(path)
            else:
                with open(path, "x"):
                    pass

    if mockup:
        create_fs(root, mockup)
    yield root


@pytest.fixture
def paths(tmp_path):
    root = str(tmp_path / "gdvm")
    return Paths(root, root, root, root)


class FakeResponse:
    def __init__(
        self,
        data: bytes = b"",
        status=200,
        url="https://example.invalid",
        headers: t.Optional[t.Dict[str, str]] = None,
    ) -> None:
        self.url = url
        self.status = status
        self.headers = (
            headers if headers is not None else {"Content-Length": str(len(data))}
        )
        self._data = io.BytesIO(data)
        self.released = False

    def read(self, amt=None):
        return self._data.read(amt)

    def release_conn(self):
        self.released = True


class FakeSource:
    """An in-memory release source.

    Missing archives and checksums are reported as 404 responses.
    """

    def __init__(
        self,
        name="fake",
        archives: t.Optional[t.Dict[str, t.Any]] = None,
        checksums: t.Any = None,
        releases: t.Any = None,
    ) -> None:
        self.name = name
        self.archives = archives or {}
        self.checksums = checksums
        self.releases = releases
        self.calls: t.List[t.Tuple[str, ...]] = []

    def _not_found(self, resource: str):
        return Failure(RequestFailure(f"https://{self.name}.invalid/{resource}", 404))

    def get_checksum(self, release, cancel=None):
        self.calls.append(("get_checksum", release.name))
        if self.checksums is None:
            return self._not_found("SHA512-SUMS.txt")
        if isinstance(self.checksums, str):
            return Success(self.checksums)
        return Failure(self.checksums)

    def get_archive(self, release, filename, cancel=None):
        self.calls.append(("get_archive", filename))
        archive = self.archives.get(filename)
        if archive is None:
            return self._not_found(filename)
        if isinstance(archive, bytes):
            return Success(FakeResponse(archive))
        return Failure(archive)

    def list_releases(self, cancel=None):
        self.calls.append(("list_releases",))
        if self.releases is None:
            return self._not_found("releases")
        if isinstance(self.releases, list):
            return Success(list(self.releases))
        return Failure(self.releases)


@pytest.fixture
def fake_source():
    return FakeSource


@pytest.fixture
def fake_response():
    return FakeResponse


@pytest.fixture
def zip_bytes():
    return make_zip


@pytest.fixture(autouse=True)
def isolated_home(monkeypatch: pytest.MonkeyPatch, tmp_path):
    """Isolate all gdvm files to a temp folder"""
    home = os.path.join(tmp_path, "home")
    monkeypatch.setenv("GDVM_HOME", home)
    return os.path.join(home, "gdvm")


@pytest.fixture(autouse=True)
def restore_log_level():
    """Commands set the level of the package logger, undo it after each test."""
    logger = logging.getLogger("gdvm")
    level = logger.level
    yield
    logger.setLevel(level)
