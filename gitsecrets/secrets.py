import logging
import pathlib
import typing

import attr

from . import results
from .access import AccessResolver
from .gpg import GPG, GPGError, PassphraseError, PublicKey, SigningKey, VerificationError
from .keys import KeyRegistry
from .results import Kind, Result
from .settings import MissingKeyPolicy
from .signatures import SignatureTracker, Signatures
from .store import File, Store, User
from .utils import write_atomic

log = logging.getLogger(__name__)

SECRET_SUFFIX = '.secret'
DECRYPTED_INFIX = '.decrypted'


@attr.s(frozen=True)
class Secret:
    """The paths used for one tracked file."""

    root: pathlib.Path = attr.ib()
    path: str = attr.ib()

    def __str__(self):
        return self.path

    @property
    def plaintext(self) -> pathlib.Path:
        return self.root / self.path

    @property
    def encrypted(self) -> pathlib.Path:
        """'dir/name.ext' is encrypted to 'dir/name.ext.secret'."""
        return self.plaintext.with_name(self.plaintext.name + SECRET_SUFFIX)

    @property
    def decrypted(self) -> pathlib.Path:
        """'dir/name.ext' is decrypted to 'dir/name.decrypted.ext'."""
        path = self.plaintext
        return path.with_name(f'{path.stem}{DECRYPTED_INFIX}{path.suffix}')

    def relative(self, path: pathlib.Path) -> str:
        return path.relative_to(self.root).as_posix()


@attr.s(frozen=True)
class Recipients:
    users: typing.Tuple[str, ...] = attr.ib()
    keys: typing.Tuple[PublicKey, ...] = attr.ib()
    missing: typing.Tuple[str, ...] = attr.ib()


@attr.s(frozen=True)
class Reader:
    """A user whose private key has been unlocked."""

    user: User = attr.ib()
    key: SigningKey = attr.ib()


class SecretKeeper:
    """
    Encrypt and decrypt tracked files on behalf of a user.

    Every public method returns a Result rather than raising for expected
    failures such as an unknown file or a wrong passphrase.
    """

    def __init__(
            self,
            root: pathlib.Path,
            store: Store,
            resolver: AccessResolver,
            tracker: SignatureTracker,
            keys: KeyRegistry,
            gpg: GPG,
            missing_keys: MissingKeyPolicy = MissingKeyPolicy.EXCLUDE):
        self.root = root
        self.store = store
        self.resolver = resolver
        self.tracker = tracker
        self.keys = keys
        self.gpg = gpg
        self.missing_keys = missing_keys

    def secret(self, file: File) -> Secret:
        return Secret(root=self.root, path=file.path)

    def recipients(self, file: File) -> Recipients:
        users = self.resolver.resolve(file.id)
        keys, missing = [], []
        for user_id in users:
            key = self.keys.public_key(user_id)
            if key is None:
                missing.append(user_id)
            else:
                keys.append(key)
        return Recipients(users=users, keys=tuple(keys), missing=tuple(missing))

    def lookup(self, path: str, email: str) -> typing.Union[Result, typing.Tuple[File, User]]:
        file = self.store.files.find(path)
        if file is None:
            return results.not_found('file', 'path', path)
        user = self.store.users.find(email)
        if user is None:
            return results.not_found('user', 'email', email)
        return file, user

    def unlock(self, user: User, passphrase: str) -> typing.Union[Result, Reader]:
        armored = self.keys.private_key(user.id)
        if armored is None:
            return results.error(
                Kind.MISSING_KEY,
                subject=user.email,
                message=f"Private key for user with email '{user.email}' is missing.")
        try:
            key = self.gpg.unlock(armored, passphrase)
        except PassphraseError as error:
            log.debug(f"Unlocking key for {user.email} failed: {error.message}")
            return results.error(
                Kind.BAD_PASSPHRASE,
                subject=user.email,
                message=f"Passphrase for user with email '{user.email}' is incorrect.")
        return Reader(user=user, key=key)

    def encrypt(
            self,
            path: str,
            email: str,
            passphrase: str,
            modified_only: bool = False) -> Result:
        """Encrypt the plaintext of a tracked file for everyone with access to it."""
        found = self.lookup(path, email)
        if isinstance(found, Result):
            return found
        file, user = found

        if modified_only and not self.tracker.is_stale(file):
            return results.warning(
                Kind.NOT_STALE,
                subject=file.path,
                message=f"File with path '{file.path}' has not been modified.")

        secret = self.secret(file)
        if not secret.plaintext.is_file():
            return results.not_found('plaintext', 'path', file.path)

        return self.seal_file(file, user, passphrase, secret.plaintext.read_bytes())

    def seal(self, path: str, email: str, passphrase: str, data: bytes) -> Result:
        """Encrypt the given bytes as the contents of a tracked file."""
        found = self.lookup(path, email)
        if isinstance(found, Result):
            return found
        file, user = found
        return self.seal_file(file, user, passphrase, data)

    def seal_file(self, file: File, user: User, passphrase: str, data: bytes) -> Result:
        secret = self.secret(file)
        recipients = self.recipients(file)

        if recipients.missing:
            missing = ', '.join(recipients.missing)
            if self.missing_keys is MissingKeyPolicy.ERROR:
                return results.error(
                    Kind.MISSING_KEY,
                    subject=missing,
                    message=f"Cannot encrypt '{file.path}' because public keys are missing for users {missing}.")
            log.warning(f"Encrypting {file.path} without users {missing} as their public keys are missing")

        if not recipients.keys:
            return results.error(
                Kind.MISSING_KEY,
                subject=file.path,
                message=f"No user with access to '{file.path}' has a public key.")

        reader = self.unlock(user, passphrase)
        if isinstance(reader, Result):
            return reader

        try:
            ciphertext = self.gpg.encrypt(data, recipients.keys, reader.key)
        except PassphraseError:
            return results.error(
                Kind.BAD_PASSPHRASE,
                subject=user.email,
                message=f"Passphrase for user with email '{user.email}' is incorrect.")
        except GPGError as error:
            return results.error(
                Kind.CRYPTO_FAILURE,
                subject=file.path,
                message=f"Could not encrypt '{file.path}': {error.message}")

        write_atomic(secret.encrypted, ciphertext)
        self.tracker.record(file, Signatures.of(data, recipients.users))
        log.info(f"Encrypted {file.path} for {len(recipients.keys)} users")
        return results.success(
            f"Encrypted '{file.path}' to '{secret.relative(secret.encrypted)}'.",
            payload=secret.encrypted)

    def reveal(self, path: str, email: str, passphrase: str) -> Result:
        """Decrypt a tracked file into memory, returning the bytes as the payload."""
        found = self.lookup(path, email)
        if isinstance(found, Result):
            return found
        file, user = found
        secret = self.secret(file)

        if not secret.encrypted.is_file():
            return results.not_found('encrypted file', 'path', secret.relative(secret.encrypted))

        recipients = self.recipients(file)
        if user.id not in recipients.users:
            return results.error(
                Kind.NO_ACCESS,
                subject=user.email,
                message=f"User with email '{user.email}' does not have access to '{file.path}'.")

        reader = self.unlock(user, passphrase)
        if isinstance(reader, Result):
            return reader

        try:
            data = self.gpg.decrypt(secret.encrypted.read_bytes(), reader.key, recipients.keys)
        except VerificationError as error:
            return results.error(
                Kind.BAD_SIGNATURE,
                subject=file.path,
                message=f"Could not verify '{file.path}': {error.message}")
        except PassphraseError:
            return results.error(
                Kind.BAD_PASSPHRASE,
                subject=user.email,
                message=f"Passphrase for user with email '{user.email}' is incorrect.")
        except GPGError as error:
            return results.error(
                Kind.CRYPTO_FAILURE,
                subject=file.path,
                message=f"Could not decrypt '{file.path}': {error.message}")

        return results.success(f"Decrypted '{file.path}'.", payload=data)

    def decrypt(self, path: str, email: str, passphrase: str) -> Result:
        """Decrypt a tracked file next to its plaintext path."""
        result = self.reveal(path, email, passphrase)
        if not result.success:
            return result

        secret = Secret(root=self.root, path=path)
        write_atomic(secret.decrypted, result.payload)
        log.info(f"Decrypted {path} to {secret.decrypted}")
        return results.success(
            f"Decrypted '{secret.relative(secret.encrypted)}' to '{secret.relative(secret.decrypted)}'.",
            payload=secret.decrypted)
