import enum
import json
import logging
import pathlib
import typing

import attr

from .utils import GitSecretsException

log = logging.getLogger(__name__)

GITSECRETS_DIR = '.gitsecrets'
KEYS_DIR = 'keys'
DB_FILENAME = 'data.db'
SETTINGS_FILENAME = 'settings.json'
LOCAL_SETTINGS_FILENAME = 'local.settings.json'

GITIGNORE = """\
!keys
!keys/*.public
!data.db
!settings.json
keys/*.private
local.settings.json
"""


class MissingKeyPolicy(enum.Enum):
    """What to do when a recipient of a file has no public key."""

    EXCLUDE = 'exclude'
    ERROR = 'error'


@attr.s(frozen=True)
class Layout:
    """Paths used by gitsecrets inside a repository."""

    root: pathlib.Path = attr.ib(converter=pathlib.Path)

    @property
    def directory(self) -> pathlib.Path:
        return self.root / GITSECRETS_DIR

    @property
    def keys(self) -> pathlib.Path:
        return self.directory / KEYS_DIR

    @property
    def database(self) -> pathlib.Path:
        return self.directory / DB_FILENAME

    @property
    def settings(self) -> pathlib.Path:
        return self.directory / SETTINGS_FILENAME

    @property
    def local_settings(self) -> pathlib.Path:
        return self.directory / LOCAL_SETTINGS_FILENAME

    @property
    def gitignore(self) -> pathlib.Path:
        return self.directory / '.gitignore'

    def is_initialised(self) -> bool:
        return all(p.exists() for p in (
            self.directory, self.keys, self.database, self.settings))

    def initialise(self) -> None:
        log.info(f"Initialising {self.directory}")
        self.keys.mkdir(parents=True, exist_ok=True)
        if not self.gitignore.exists():
            self.gitignore.write_text(GITIGNORE)
        if not self.settings.exists():
            Settings().save(self.settings)
        if not self.local_settings.exists():
            LocalSettings().save(self.local_settings)


def _load(path: pathlib.Path) -> typing.Dict[str, typing.Any]:
    if not path.exists():
        log.debug(f"No settings in {path}, using defaults")
        return {}
    try:
        data = json.loads(path.read_text())
    except json.JSONDecodeError as error:
        raise GitSecretsException(f"Could not parse {path}: {error}")
    if not isinstance(data, dict):
        raise GitSecretsException(f"Expected a JSON object in {path}")
    return data


@attr.s(frozen=True, kw_only=True)
class Settings:
    """Project settings shared by every clone of the repository."""

    missing_keys: MissingKeyPolicy = attr.ib(
        default=MissingKeyPolicy.EXCLUDE,
        converter=MissingKeyPolicy)
    workers: int = attr.ib(default=4, converter=int)

    @workers.validator
    def _check_workers(self, attribute, value):
        if value < 1:
            raise GitSecretsException(f"Setting 'workers' must be at least 1, got {value}")

    @classmethod
    def load(cls, path: pathlib.Path) -> 'Settings':
        data = _load(path)
        names = {a.name for a in attr.fields(cls)}
        try:
            return cls(**{k: v for k, v in data.items() if k in names})
        except ValueError as error:
            raise GitSecretsException(f"Invalid setting in {path}: {error}")

    def as_dict(self) -> typing.Dict[str, typing.Any]:
        return {'missing_keys': self.missing_keys.value, 'workers': self.workers}

    def save(self, path: pathlib.Path) -> None:
        path.write_text(json.dumps(self.as_dict(), indent=4) + '\n')


@attr.s(frozen=True, kw_only=True)
class LocalSettings:
    """Settings for a single clone, kept out of git."""

    email: typing.Optional[str] = attr.ib(default=None)

    @classmethod
    def load(cls, path: pathlib.Path) -> 'LocalSettings':
        return cls(email=_load(path).get('email'))

    def as_dict(self) -> typing.Dict[str, typing.Any]:
        return {'email': self.email}

    def save(self, path: pathlib.Path) -> None:
        data = {'email': self.email} if self.email else {}
        path.write_text(json.dumps(data, indent=4) + '\n')


AnySettings = typing.Union[Settings, LocalSettings]


def evolve(settings: AnySettings, key: str, value: str) -> AnySettings:
    """Return a copy of the settings with one value replaced. An empty value restores the default."""
    fields = attr.fields_dict(type(settings))
    if key not in fields:
        raise KeyError(key)
    try:
        return attr.evolve(settings, **{key: value or fields[key].default})
    except (TypeError, ValueError) as error:
        raise GitSecretsException(f"Invalid value '{value}' for setting '{key}': {error}")
