"""
Run encryption and decryption over every file a user can read.

Files are processed independently on a small thread pool. Each file gets
its own Result in the Report, and a failure for one file never stops the
others.
"""

import concurrent.futures
import logging
import typing

from . import results
from .access import AccessResolver
from .gpg import GPGError
from .keys import KeyRegistry
from .results import Kind, Report, Result
from .secrets import SecretKeeper
from .store import Store, User

log = logging.getLogger(__name__)

Operation = typing.Callable[[str], Result]


class BatchCoordinator:
    def __init__(
            self,
            store: Store,
            resolver: AccessResolver,
            keeper: SecretKeeper,
            keys: KeyRegistry,
            workers: int = 4):
        self.store = store
        self.resolver = resolver
        self.keeper = keeper
        self.keys = keys
        self.workers = workers

    def paths(self, user: User) -> typing.List[str]:
        paths = []
        for file_id in self.resolver.files(user.id):
            file = self.store.files.get(file_id)
            if file is not None:
                paths.append(file.path)
        return sorted(paths)

    def run(self, paths: typing.Sequence[str], operation: Operation) -> Report:
        report: typing.Dict[str, Result] = {}
        if not paths:
            return Report(report)

        with concurrent.futures.ThreadPoolExecutor(max_workers=self.workers) as executor:
            futures = {executor.submit(operation, path): path for path in paths}
            for future in concurrent.futures.as_completed(futures):
                path = futures[future]
                try:
                    report[path] = future.result()
                except Exception as error:
                    log.exception(f"Unexpected failure processing {path}")
                    report[path] = results.error(
                        Kind.CRYPTO_FAILURE,
                        subject=path,
                        message=f"Unexpected failure processing '{path}': {error}")
        return Report(report)

    def encrypt_all(self, email: str, passphrase: str, modified_only: bool = False) -> Result:
        user = self.store.users.find(email)
        if user is None:
            return results.not_found('user', 'email', email)

        paths = self.paths(user)
        log.info(f"Encrypting {len(paths)} files for {email}")
        report = self.run(paths, lambda path: self.keeper.encrypt(
            path, email, passphrase, modified_only=modified_only))
        return results.success(f"Processed {len(report)} files.", payload=report)

    def decrypt_all(self, email: str, passphrase: str) -> Result:
        user = self.store.users.find(email)
        if user is None:
            return results.not_found('user', 'email', email)

        paths = self.paths(user)
        log.info(f"Decrypting {len(paths)} files for {email}")
        report = self.run(paths, lambda path: self.keeper.decrypt(path, email, passphrase))
        return results.success(f"Processed {len(report)} files.", payload=report)

    def rotate(self, email: str, old_passphrase: str, new_passphrase: str) -> Result:
        """
        Replace a user's key pair and re-encrypt every file they can read.

        The files are first decrypted into memory with the old key, then the
        key pair is regenerated and the same contents are encrypted again.
        Files that cannot be decrypted are reported and left as they are.
        """
        user = self.store.users.find(email)
        if user is None:
            return results.not_found('user', 'email', email)

        reader = self.keeper.unlock(user, old_passphrase)
        if isinstance(reader, Result):
            return reader

        paths = self.paths(user)
        log.info(f"Rotating keys for {email} across {len(paths)} files")
        revealed = self.run(paths, lambda path: self.keeper.reveal(path, email, old_passphrase))

        try:
            self.keys.create_key_pair(user.id, user.email, user.name, new_passphrase)
        except GPGError as error:
            return results.error(
                Kind.CRYPTO_FAILURE,
                subject=email,
                message=f"Could not create new keys for user with email '{email}': {error.message}")

        contents = {path: revealed[path].payload for path in revealed.succeeded}
        sealed = self.run(sorted(contents), lambda path: self.keeper.seal(
            path, email, new_passphrase, contents[path]))

        report = {path: result for path, result in revealed if not result.success}
        report.update(sealed.results)
        return results.success(f"Rotated keys for '{email}'.", payload=Report(report))
