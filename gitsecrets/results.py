"""
Every operation that changes the project reports a Result instead of raising.

A Result is a success (optionally with a payload), a warning (the operation
was skipped but nothing is wrong) or an error. Warnings and errors carry a
Kind and the identifier that caused them so the CLI can suggest a fix.
"""

import enum
import typing

import attr


class Status(enum.Enum):
    SUCCESS = 'success'
    WARNING = 'warning'
    ERROR = 'error'


class Kind(enum.Enum):
    NOT_FOUND = 'not-found'
    ALREADY_EXISTS = 'already-exists'
    NOT_STALE = 'not-stale'
    MISSING_KEY = 'missing-key'
    BAD_PASSPHRASE = 'bad-passphrase'
    BAD_SIGNATURE = 'bad-signature'
    NO_ACCESS = 'no-access'
    CRYPTO_FAILURE = 'crypto-failure'
    MISSING_ARGUMENT = 'missing-argument'


@attr.s(frozen=True, kw_only=True)
class Result:
    status: Status = attr.ib()
    message: str = attr.ib(default='')
    kind: typing.Optional[Kind] = attr.ib(default=None)
    entity: typing.Optional[str] = attr.ib(default=None)
    subject: typing.Optional[str] = attr.ib(default=None)
    payload: typing.Any = attr.ib(default=None, repr=False)

    def __str__(self):
        return self.message

    @property
    def success(self) -> bool:
        return self.status is Status.SUCCESS

    @property
    def warning(self) -> bool:
        return self.status is Status.WARNING

    @property
    def error(self) -> bool:
        return self.status is Status.ERROR


def success(message: str = '', payload: typing.Any = None) -> Result:
    return Result(status=Status.SUCCESS, message=message, payload=payload)


def warning(kind: Kind, subject: str, message: str, entity: str = None) -> Result:
    return Result(status=Status.WARNING, kind=kind, entity=entity, subject=subject, message=message)


def error(kind: Kind, subject: str, message: str, entity: str = None) -> Result:
    return Result(status=Status.ERROR, kind=kind, entity=entity, subject=subject, message=message)


def not_found(entity: str, field: str, value: str) -> Result:
    return error(
        Kind.NOT_FOUND,
        entity=entity,
        subject=value,
        message=f"{entity.capitalize()} with {field} '{value}' does not exist.")


def already_exists(entity: str, field: str, value: str) -> Result:
    return warning(
        Kind.ALREADY_EXISTS,
        entity=entity,
        subject=value,
        message=f"{entity.capitalize()} with {field} '{value}' already exists.")


@attr.s(frozen=True)
class Report:
    """Outcome of a batch operation, one Result per file path."""

    results: typing.Dict[str, Result] = attr.ib(factory=dict)

    def __iter__(self) -> typing.Iterator[typing.Tuple[str, Result]]:
        return iter(sorted(self.results.items()))

    def __len__(self):
        return len(self.results)

    def __getitem__(self, path: str) -> Result:
        return self.results[path]

    def select(self, status: Status) -> typing.List[str]:
        return [path for path, result in self if result.status is status]

    @property
    def succeeded(self) -> typing.List[str]:
        return self.select(Status.SUCCESS)

    @property
    def warned(self) -> typing.List[str]:
        return self.select(Status.WARNING)

    @property
    def failed(self) -> typing.List[str]:
        return self.select(Status.ERROR)
