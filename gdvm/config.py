import configparser
import logging
import os
import re
import typing as t
from contextlib import AbstractContextManager
from dataclasses import dataclass
from dataclasses import fields
from dataclasses import is_dataclass

from click import make_pass_decorator
from platformdirs import PlatformDirs

from gdvm.errors import ConfigurationError
from gdvm.errors import EmptyFileError
from gdvm.errors import ExceptionCount

logger = logging.getLogger(__name__)

T = t.TypeVar("T")

APP_NAME = "gdvm"
HOME_ENV = "GDVM_HOME"

CONFIG_FILE_NAME = "gdvm.ini"
RELEASES_CACHE_NAME = ".releases"
LOG_FILE_NAME = "gdvm.log"
BIN_DIR_NAME = "bin"
SYMLINK_NAME = "godot"
MAC_APP_SYMLINK_NAME = "Godot.app"

RELEASES_CACHE_LIFESPAN = 24 * 60
"""Minutes before the cached release list is refreshed."""


@dataclass(frozen=True)
class Paths:
    """Locations of everything gdvm reads and writes.

    With `GDVM_HOME` set, everything lives in `$GDVM_HOME/gdvm`. Otherwise
    installs and links go in the user data directory, while the config,
    cache and log files use their platform-specific directories.
    """

    root: str
    config_dir: str
    cache_dir: str
    log_dir: str

    @classmethod
    def from_env(cls):
        home = os.environ.get(HOME_ENV)
        if home:
            root = os.path.join(os.path.expanduser(home), APP_NAME)
            return cls(root, root, root, root)

        dirs = PlatformDirs(APP_NAME, False)
        return cls(
            dirs.user_data_dir,
            dirs.user_config_dir,
            dirs.user_cache_dir,
            dirs.user_log_dir,
        )

    @property
    def config_file(self):
        return os.path.join(self.config_dir, CONFIG_FILE_NAME)

    @property
    def releases_cache(self):
        return os.path.join(self.cache_dir, RELEASES_CACHE_NAME)

    @property
    def log_file(self):
        return os.path.join(self.log_dir, LOG_FILE_NAME)

    @property
    def bin_dir(self):
        return os.path.join(self.root, BIN_DIR_NAME)

    @property
    def symlink(self):
        return os.path.join(self.bin_dir, SYMLINK_NAME)

    @property
    def mac_app_symlink(self):
        return os.path.join(self.bin_dir, MAC_APP_SYMLINK_NAME)

    def release_dir(self, name_with_runtime: str):
        return os.path.join(self.root, name_with_runtime)


@dataclass(frozen=True)
class Config:
    """The gdvm configuration file uses the INI format."""

    @dataclass(frozen=True)
    class GitHub:
        token: t.Optional[str] = None
        """A GitHub API token, used to raise the rate limit when listing releases."""

    @dataclass(frozen=True)
    class Downloading:
        max_retries: int = 3
        """Retries for each request to a source after the first attempt."""

        initial_delay: float = 2.0
        """Seconds to wait before the first retry. Doubled after each retry."""

        connect_timeout: float = 3.0

        read_timeout: float = 10.0

    github: GitHub = GitHub()
    downloading: Downloading = Downloading()


_TOKEN_PREFIXES = ("ghp_", "gho_", "ghu_", "ghs_", "ghr_")
_TOKEN_PATTERN = re.compile(r"^[A-Za-z0-9_]{40}$")


def validate_token(token: t.Optional[str]):
    if not token:
        return
    if not token.startswith(_TOKEN_PREFIXES):
        raise ConfigurationError(
            "Invalid GitHub token: expected one of the prefixes "
            + ", ".join(_TOKEN_PREFIXES)
            + "."
        )
    if not _TOKEN_PATTERN.match(token):
        raise ConfigurationError(
            "Invalid GitHub token: expected 40 letters, digits or underscores."
        )


def read_ini(path: str, type: t.Type[T]) -> T:
    parser = configparser.ConfigParser(interpolation=None)
    with open(path) as file:
        parser.read_file(file)
    data = {section: dict(parser.items(section)) for section in parser.sections()}
    if not data:
        raise EmptyFileError(path)
    return dataclass_fromdict(data, type)


_CONVERTERS: t.Dict[type, t.Callable[[str], t.Any]] = {
    int: int,
    float: float,
    bool: lambda v: configparser.ConfigParser.BOOLEAN_STATES[v.lower()],
}


def _convert(value: t.Any, field_type: t.Any):
    """Convert an INI string into a scalar field type, if required."""
    if not isinstance(value, str):
        return value
    if t.get_origin(field_type) is t.Union:  # Optional type
        args = [arg for arg in t.get_args(field_type) if arg is not type(None)]
        field_type = args[0] if len(args) == 1 else field_type
    converter = _CONVERTERS.get(field_type)
    if converter:
        try:
            return converter(value.strip())
        except (ValueError, KeyError):
            return value
    return value


def dataclass_fromdict(data: t.Dict[str, t.Any], field_type: t.Type[T]) -> T:
    type_fields = {f.name: f.type for f in fields(field_type) if f.init}
    data = dict(data)
    errors = 0
    for k, v in data.items():
        if k not in type_fields:
            logger.error(f"Unknown key: '{k}'.")
            errors += 1
            continue
        v = data[k] = _convert(v, type_fields[k])
        # Retrieve type checkable version of generic and special types
        # Only checks base type, so 'List[str]' is only checked as 'list'
        checkable_type = t.get_origin(type_fields[k]) or type_fields[k]
        if checkable_type is t.Union:  # Optional type
            checkable_type = t.get_args(type_fields[k])
        if checkable_type is float and isinstance(v, int) and not isinstance(v, bool):
            v = data[k] = float(v)
        if not isinstance(v, checkable_type):
            if isinstance(type_fields[k], type) and is_dataclass(
                type_fields[k]
            ):  # recursively deserialize objects
                try:
                    if not isinstance(v, dict):
                        logger.error(f"Expected section for key '{k}'.")
                        raise ExceptionCount(1)
                    data[k] = dataclass_fromdict(v, type_fields[k])
                except ExceptionCount as e:
                    errors += e.count
            else:
                logger.error(f"Invalid value for key '{k}': '{v}'.")
                errors += 1
    if errors:
        raise ExceptionCount(errors)

    try:
        return field_type(**data)
    except TypeError:
        import inspect

        required_args = [
            arg
            for arg in inspect.signature(field_type.__init__).parameters.values()
            if arg.default == inspect.Parameter.empty
        ]
        for arg in required_args:
            if arg.name != "self" and arg.name not in data:
                logger.error(f"Missing required key: '{arg.name}'")
                errors += 1
        if errors > 0:
            raise ExceptionCount(errors)
        raise  # In case the error comes from something else


class UserInfo(AbstractContextManager):  # pyright: ignore[reportMissingTypeArgument]
    """Lazily loaded paths and configuration for a single invocation."""

    def __init__(self, paths: t.Optional[Paths] = None) -> None:
        self._paths = paths
        self._config: t.Optional[Config] = None

    @property
    def paths(self):
        if not self._paths:
            self._paths = Paths.from_env()
        return self._paths

    @property
    def config(self):
        if not self._config:
            path = self.paths.config_file
            try:
                self._config = read_ini(path, Config)
                logger.debug(f"User config loaded from '{path}'.")
            except (FileNotFoundError, EmptyFileError):
                self._config = Config()
            except ExceptionCount as e:
                raise ConfigurationError(
                    f"{e.count} error(s) were encountered while loading config."
                )
            except configparser.Error as e:
                raise ConfigurationError(str(e))

            validate_token(self._config.github.token)

        return self._config

    def __enter__(self):
        return self

    def __exit__(self, *exec_details):
        return None


pass_userinfo = make_pass_decorator(UserInfo)
