import logging
import pathlib
import threading
import typing

from .gpg import GPG, PublicKey
from .utils import write_atomic

log = logging.getLogger(__name__)


class KeyRegistry:
    """
    Key pairs for every user, stored as armoured text in the keys directory.

    Public and private halves are cached separately so that listing the
    recipients of a file never loads anyone's private key. A key found to be
    missing is cached as None, so asking again does not go back to disk.
    """

    def __init__(self, directory: pathlib.Path, gpg: GPG):
        self.directory = directory
        self.gpg = gpg
        self.lock = threading.RLock()
        self.public_keys: typing.Dict[str, typing.Optional[PublicKey]] = {}
        self.private_keys: typing.Dict[str, typing.Optional[str]] = {}

    def public_path(self, user_id: str) -> pathlib.Path:
        return self.directory / f'{user_id}.public'

    def private_path(self, user_id: str) -> pathlib.Path:
        return self.directory / f'{user_id}.private'

    def create_key_pair(
            self,
            user_id: str,
            email: str,
            name: typing.Optional[str],
            passphrase: str) -> PublicKey:
        """Generate and store a key pair, replacing any existing one."""
        log.info(f"Creating key pair for {email}")
        pair = self.gpg.generate_key(email=email, name=name, passphrase=passphrase)
        public = PublicKey(fingerprint=self.gpg.fingerprint(pair.public), armored=pair.public)

        # The private half is replaced first so a failed write leaves the old pair usable.
        with self.lock:
            write_atomic(self.private_path(user_id), pair.private.encode('ascii'), mode=0o600)
            write_atomic(self.public_path(user_id), pair.public.encode('ascii'))
            self.public_keys[user_id] = public
            self.private_keys[user_id] = pair.private
        return public

    def public_key(self, user_id: str) -> typing.Optional[PublicKey]:
        with self.lock:
            if user_id in self.public_keys:
                return self.public_keys[user_id]

        # Fingerprinting runs gpg, so it happens outside the lock.
        path = self.public_path(user_id)
        key: typing.Optional[PublicKey] = None
        if path.exists():
            armored = path.read_text()
            key = PublicKey(fingerprint=self.gpg.fingerprint(armored), armored=armored)
        else:
            log.warning(f"Public key missing for user {user_id}")

        with self.lock:
            return self.public_keys.setdefault(user_id, key)

    def private_key(self, user_id: str) -> typing.Optional[str]:
        with self.lock:
            if user_id in self.private_keys:
                return self.private_keys[user_id]

            path = self.private_path(user_id)
            armored: typing.Optional[str] = None
            if path.exists():
                armored = path.read_text()
            else:
                log.warning(f"Private key missing for user {user_id}")
            self.private_keys[user_id] = armored
            return armored

    def remove_key_pair(self, user_id: str) -> None:
        with self.lock:
            for path in (self.public_path(user_id), self.private_path(user_id)):
                if path.exists():
                    log.info(f"Deleting {path}")
                    path.unlink()
            self.public_keys.pop(user_id, None)
            self.private_keys.pop(user_id, None)
