import hashlib
import os
import stat
import zipfile

import pytest

from gdvm import fs
from gdvm.utils import find_checksum
from gdvm.utils import get_sha512
from gdvm.utils import is_flattened
from gdvm.utils import make_executable
from gdvm.utils import parse_checksums
from gdvm.utils import UnsafeArchiveError
from gdvm.utils import unpack


def zip_entry(name: str, mode: int):
    info = zipfile.ZipInfo(name)
    info.external_attr = mode << 16
    return info


@pytest.mark.parametrize(
    ("names", "expect"),
    [
        (["Godot_v4.2-stable_linux.x86_64"], True),
        (["Godot.app/", "Godot.app/Contents/Info.plist"], True),
        (["Godot_mono.app/Contents/MacOS/Godot"], True),
        (["Godot_v4.2-mono/", "Godot_v4.2-mono/Godot", "Godot_v4.2-mono/GodotSharp/"], False),
        (["root/", "root/file", "other.txt"], True),
        ([], False),
    ],
)
def test_is_flattened(names, expect):
    assert is_flattened(names) == expect


@pytest.mark.data_file_zip({"godot": "binary", "data/file.txt": "data"})
def test_unpack_flat(data_file_zip, tmp_path):
    dest = os.path.join(tmp_path, "dest")
    with zipfile.ZipFile(data_file_zip[0]) as zip:
        unpack(zip, dest)

    with open(os.path.join(dest, "godot")) as file:
        assert file.read() == "binary"
    assert fs.isfile(os.path.join(dest, "data", "file.txt"))


@pytest.mark.data_file_zip(
    {
        "Godot_v4.2-stable_mono_linux_x86_64/": "",
        "Godot_v4.2-stable_mono_linux_x86_64/Godot_v4.2-stable_mono_linux.x86_64": "binary",
        "Godot_v4.2-stable_mono_linux_x86_64/GodotSharp/Api/GodotSharp.dll": "dll",
    }
)
def test_unpack_strips_root_folder(data_file_zip, tmp_path):
    dest = os.path.join(tmp_path, "dest")
    with zipfile.ZipFile(data_file_zip[0]) as zip:
        unpack(zip, dest)

    assert sorted(os.listdir(dest)) == [
        "Godot_v4.2-stable_mono_linux.x86_64",
        "GodotSharp",
    ]
    assert fs.isfile(os.path.join(dest, "GodotSharp", "Api", "GodotSharp.dll"))


@pytest.mark.data_file_zip(
    {"Godot.app/Contents/MacOS/Godot": "binary", "Godot.app/Contents/Info.plist": ""}
)
def test_unpack_app_bundle(data_file_zip, tmp_path):
    dest = os.path.join(tmp_path, "dest")
    with zipfile.ZipFile(data_file_zip[0]) as zip:
        unpack(zip, dest)

    assert fs.isfile(os.path.join(dest, "Godot.app", "Contents", "MacOS", "Godot"))


@pytest.mark.parametrize(
    "data_file_zip",
    [
        pytest.param({"file.txt": "", "../evil.txt": "evil"}, id="parent"),
        pytest.param({"file.txt": "", "nested/../../evil.txt": "evil"}, id="nested"),
        pytest.param({"/tmp/evil.txt": "evil", "file.txt": ""}, id="absolute"),
    ],
    indirect=True,
)
def test_unpack_unsafe(data_file_zip, tmp_path):
    dest = os.path.join(tmp_path, "dest")
    with zipfile.ZipFile(data_file_zip[0]) as zip:
        with pytest.raises(UnsafeArchiveError):
            unpack(zip, dest)

    # Nothing is written before every entry is validated
    assert not os.path.exists(dest)
    assert not os.path.exists(os.path.join(tmp_path, "evil.txt"))


@pytest.mark.linux
@pytest.mark.darwin
def test_unpack_permissions(tmp_path):
    archive = os.path.join(tmp_path, "archive.zip")
    with zipfile.ZipFile(archive, "w") as zip:
        zip.writestr(zip_entry("godot", stat.S_IFREG | 0o755), "binary")
        zip.writestr(zip_entry("readme.txt", stat.S_IFREG | 0o644), "text")

    dest = os.path.join(tmp_path, "dest")
    with zipfile.ZipFile(archive) as zip:
        unpack(zip, dest)

    assert stat.S_IMODE(os.stat(os.path.join(dest, "godot")).st_mode) == 0o755
    assert stat.S_IMODE(os.stat(os.path.join(dest, "readme.txt")).st_mode) == 0o644


@pytest.mark.linux
@pytest.mark.darwin
def test_unpack_symlinks(tmp_path):
    archive = os.path.join(tmp_path, "archive.zip")
    with zipfile.ZipFile(archive, "w") as zip:
        zip.writestr("Godot.app/Contents/Frameworks/lib.1.dylib", "library")
        zip.writestr(
            zip_entry("Godot.app/Contents/Frameworks/lib.dylib", stat.S_IFLNK | 0o777),
            "lib.1.dylib",
        )

    dest = os.path.join(tmp_path, "dest")
    with zipfile.ZipFile(archive) as zip:
        unpack(zip, dest)

    link = os.path.join(dest, "Godot.app", "Contents", "Frameworks", "lib.dylib")
    assert os.path.islink(link)
    assert os.readlink(link) == "lib.1.dylib"
    with open(link) as file:
        assert file.read() == "library"


@pytest.mark.linux
@pytest.mark.darwin
def test_unpack_unsafe_symlink(tmp_path):
    archive = os.path.join(tmp_path, "archive.zip")
    with zipfile.ZipFile(archive, "w") as zip:
        zip.writestr("godot", "binary")
        zip.writestr(zip_entry("escape", stat.S_IFLNK | 0o777), "../../outside")

    with zipfile.ZipFile(archive) as zip:
        with pytest.raises(UnsafeArchiveError):
            unpack(zip, os.path.join(tmp_path, "dest"))


@pytest.mark.linux
@pytest.mark.darwin
def test_make_executable(tmp_path):
    path = os.path.join(tmp_path, "godot")
    with open(path, "w"):
        pass
    os.chmod(path, 0o644)

    make_executable(path)
    assert os.stat(path).st_mode & stat.S_IXUSR
    # Missing files are ignored
    make_executable(os.path.join(tmp_path, "missing"))


def test_get_sha512(tmp_path):
    path = os.path.join(tmp_path, "data")
    data = b"godot" * 100000
    with open(path, "wb") as file:
        file.write(data)
    assert get_sha512(fs.File(path)) == hashlib.sha512(data).hexdigest()


SUMS = """\
ABCDEF0123  Godot_v4.2-stable_linux.x86_64.zip
789abc *Godot_v4.2-stable_win64.exe.zip

malformed-line
def456  Godot_v4.2-stable_mono_linux_x86_64.zip
"""


def test_parse_checksums():
    assert parse_checksums(SUMS) == {
        "Godot_v4.2-stable_linux.x86_64.zip": "abcdef0123",
        "Godot_v4.2-stable_win64.exe.zip": "789abc",
        "Godot_v4.2-stable_mono_linux_x86_64.zip": "def456",
    }


def test_find_checksum():
    assert find_checksum(SUMS, "Godot_v4.2-stable_win64.exe.zip") == "789abc"
    assert find_checksum(SUMS, "Godot_v4.2-stable_win32.exe.zip") is None
