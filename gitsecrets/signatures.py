import logging
import pathlib
import typing

import attr

from .access import AccessResolver
from .store import File, Store
from .utils import sha256

log = logging.getLogger(__name__)


@attr.s(frozen=True)
class Signatures:
    contents: str = attr.ib()
    access: str = attr.ib()

    @classmethod
    def of(cls, data: bytes, users: typing.Sequence[str]) -> 'Signatures':
        """Fingerprint plaintext bytes and a resolved set of user ids."""
        return cls(contents=sha256(data), access=sha256(','.join(sorted(users))))


@attr.s(frozen=True)
class Staleness:
    contents_changed: bool = attr.ib()
    access_changed: bool = attr.ib()

    @property
    def stale(self) -> bool:
        return self.contents_changed or self.access_changed

    def __str__(self):
        changes = [name for name, changed in (
            ('contents', self.contents_changed),
            ('access', self.access_changed)) if changed]
        return ', '.join(changes) if changes else 'up to date'


class SignatureTracker:
    """
    Compare the signatures stored for a file with live ones.

    The stored signatures describe the plaintext and the readers of a file
    at the time it was last encrypted. They are only written by `record`,
    so any change to the plaintext or to the access graph afterwards shows
    up as a difference from the live signatures.
    """

    def __init__(self, root: pathlib.Path, store: Store, resolver: AccessResolver):
        self.root = root
        self.store = store
        self.resolver = resolver

    def plaintext(self, file: File) -> bytes:
        path = self.root / file.path
        return path.read_bytes() if path.is_file() else b''

    def contents(self, file: File) -> str:
        return sha256(self.plaintext(file))

    def access(self, file: File) -> str:
        return sha256(','.join(self.resolver.resolve(file.id)))

    def live(self, file: File) -> Signatures:
        return Signatures(contents=self.contents(file), access=self.access(file))

    def status(self, file: File) -> Staleness:
        live = self.live(file)
        return Staleness(
            contents_changed=live.contents != file.contents_signature,
            access_changed=live.access != file.access_signature)

    def is_stale(self, file: File) -> bool:
        return self.status(file).stale

    def record(self, file: File, signatures: Signatures) -> File:
        log.debug(f"Recording signatures for {file.path}")
        updated = self.store.files.update(
            file.id,
            contents_signature=signatures.contents,
            access_signature=signatures.access)
        return updated if updated is not None else file
