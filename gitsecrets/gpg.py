"""
OpenPGP operations, performed by the gpg command.

Keys are stored by gitsecrets as ASCII armoured text rather than in the
user's keyring. Each operation imports the keys it needs into a temporary
GNUPGHOME that is thrown away afterwards, so operations running at the same
time never share state.
"""

import contextlib
import logging
import pathlib
import subprocess
import tempfile
import typing

import attr

from .utils import GitSecretsException

log = logging.getLogger(__name__)

STATUS_PREFIX = '[GNUPG:] '
GPG_ERR_BAD_PASSPHRASE = 11


class GPGError(GitSecretsException):
    pass


class PassphraseError(GPGError):
    pass


class VerificationError(GPGError):
    pass


@attr.s(frozen=True)
class KeyPair:
    public: str = attr.ib(repr=False)
    private: str = attr.ib(repr=False)


@attr.s(frozen=True)
class PublicKey:
    fingerprint: str = attr.ib()
    armored: str = attr.ib(repr=False)


@attr.s(frozen=True)
class SigningKey:
    """A private key together with the passphrase known to unlock it."""

    fingerprint: str = attr.ib()
    armored: str = attr.ib(repr=False)
    passphrase: str = attr.ib(repr=False)


@attr.s(frozen=True)
class Output:
    returncode: int = attr.ib()
    stdout: bytes = attr.ib(repr=False)
    status: typing.Tuple[typing.Tuple[str, ...], ...] = attr.ib()
    stderr: typing.Tuple[str, ...] = attr.ib(repr=False)

    def keywords(self) -> typing.Set[str]:
        return {line[0] for line in self.status if line}

    def arguments(self, keyword: str) -> typing.List[typing.Tuple[str, ...]]:
        return [line[1:] for line in self.status if line and line[0] == keyword]

    def bad_passphrase(self) -> bool:
        if 'BAD_PASSPHRASE' in self.keywords():
            return True
        for line in self.arguments('FAILURE') + self.arguments('ERROR'):
            if line and line[-1].isdigit() and int(line[-1]) & 0xFFFF == GPG_ERR_BAD_PASSPHRASE:
                return True
        return False


@attr.s(frozen=True)
class GPG:
    verbose: bool = attr.ib(default=False)
    binary: str = attr.ib(default='gpg')
    algorithm: str = attr.ib(default='future-default')

    def command(
            self,
            home: pathlib.Path,
            arguments: typing.Sequence[str]) -> typing.Tuple[str, ...]:
        command: typing.Tuple[str, ...] = (
            self.binary, '--batch', '--yes', '--no-tty',
            '--homedir', home.as_posix(),
            '--pinentry-mode', 'loopback',
            '--trust-model', 'always',
            '--status-fd', '2')
        if self.verbose:
            command = (*command, '--verbose')
        return (*command, *arguments)

    def run(self,
            home: pathlib.Path,
            arguments: typing.Sequence[str],
            stdin: bytes = b'',
            check: bool = True) -> Output:
        try:
            result = subprocess.run(
                self.command(home, arguments),
                input=stdin,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE)
        except FileNotFoundError:
            raise GPGError(f"Could not find the {self.binary} command")

        status, stderr = [], []
        for line in result.stderr.decode('utf-8', 'replace').splitlines():
            if line.startswith(STATUS_PREFIX):
                status.append(tuple(line[len(STATUS_PREFIX):].split()))
            else:
                stderr.append(line)
                if self.verbose:
                    log.info(line)

        output = Output(
            returncode=result.returncode,
            stdout=result.stdout,
            status=tuple(status),
            stderr=tuple(stderr))

        if check and result.returncode != 0:
            for line in stderr:
                log.error(line)
            raise GPGError(f"gpg failed with exit code {result.returncode}")
        return output

    @contextlib.contextmanager
    def home(self, *armored: str) -> typing.Iterator[pathlib.Path]:
        """Create a temporary GNUPGHOME containing the given keys."""
        with tempfile.TemporaryDirectory(prefix='gitsecrets-') as directory:
            home = pathlib.Path(directory)
            try:
                if armored:
                    self.run(home, ['--import'], stdin='\n'.join(armored).encode('ascii'))
                yield home
            finally:
                self.shutdown(home)

    def shutdown(self, home: pathlib.Path) -> None:
        """Stop any gpg-agent started for a temporary home."""
        try:
            result = subprocess.run(
                ('gpgconf', '--homedir', home.as_posix(), '--kill', 'gpg-agent'),
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                encoding='utf-8')
        except FileNotFoundError:
            log.debug("Could not find the gpgconf command")
            return
        if result.returncode != 0:
            log.debug(f"Could not stop gpg-agent for {home}: {result.stderr.strip()}")

    @staticmethod
    def passphrase_file(home: pathlib.Path, passphrase: str) -> str:
        if '\n' in passphrase or '\r' in passphrase:
            raise GitSecretsException("Passphrases cannot contain line breaks")
        path = home / 'passphrase'
        path.write_text(passphrase)
        path.chmod(0o600)
        return path.as_posix()

    def fingerprints(self, home: pathlib.Path, secret: bool = False) -> typing.List[str]:
        """List the primary key fingerprints in a home."""
        listing = '--list-secret-keys' if secret else '--list-keys'
        output = self.run(home, ['--with-colons', listing])
        fingerprints: typing.List[str] = []
        expecting = False
        for line in output.stdout.decode('utf-8', 'replace').splitlines():
            fields = line.split(':')
            if fields[0] in ('pub', 'sec'):
                expecting = True
            elif fields[0] == 'fpr' and expecting:
                fingerprints.append(fields[9])
                expecting = False
        return fingerprints

    def fingerprint(self, armored: str) -> str:
        """Return the primary key fingerprint of an armoured key."""
        with self.home(armored) as home:
            fingerprints = self.fingerprints(home)
        if not fingerprints:
            raise GPGError("No OpenPGP key found in armoured text")
        return fingerprints[0]

    def generate_key(
            self,
            email: str,
            name: typing.Optional[str],
            passphrase: str) -> KeyPair:
        """Generate a signing key with an encryption subkey."""
        uid = f"{name} <{email}>" if name else f"<{email}>"
        log.debug(f"Generating key for {uid}")
        with self.home() as home:
            passphrase_file = self.passphrase_file(home, passphrase)
            self.run(home, [
                '--passphrase-file', passphrase_file,
                '--quick-generate-key', uid, self.algorithm, 'default', 'never',
            ])
            fingerprint = self.fingerprints(home, secret=True)[0]
            public = self.run(home, ['--armor', '--export', fingerprint]).stdout
            private = self.run(home, [
                '--passphrase-file', passphrase_file,
                '--armor', '--export-secret-keys', fingerprint,
            ]).stdout
        return KeyPair(public=public.decode('ascii'), private=private.decode('ascii'))

    def unlock(self, armored: str, passphrase: str) -> SigningKey:
        """Check that a passphrase unlocks a private key by signing nothing."""
        with self.home(armored) as home:
            fingerprints = self.fingerprints(home, secret=True)
            if not fingerprints:
                raise GPGError("No private key found in armoured text")
            output = self.run(home, [
                '--passphrase-file', self.passphrase_file(home, passphrase),
                '--local-user', fingerprints[0],
                '--detach-sign',
            ], check=False)
        if output.returncode != 0:
            reason = 'bad passphrase' if output.bad_passphrase() else 'gpg could not sign'
            raise PassphraseError(f"Could not unlock private key {fingerprints[0]} ({reason})")
        return SigningKey(fingerprint=fingerprints[0], armored=armored, passphrase=passphrase)

    def encrypt(
            self,
            data: bytes,
            recipients: typing.Sequence[PublicKey],
            signer: SigningKey) -> bytes:
        """Sign data and encrypt it for every recipient."""
        if not recipients:
            raise GPGError("Cannot encrypt without any recipients")
        log.debug(f"Encrypting {len(data)} bytes for {len(recipients)} recipients")
        with self.home(signer.armored, *(r.armored for r in recipients)) as home:
            arguments = [
                '--passphrase-file', self.passphrase_file(home, signer.passphrase),
                '--armor',
                '--local-user', signer.fingerprint,
            ]
            for recipient in recipients:
                arguments += ['--recipient', recipient.fingerprint]
            arguments += ['--sign', '--encrypt']
            output = self.run(home, arguments, stdin=data, check=False)
        if output.returncode != 0:
            if output.bad_passphrase():
                raise PassphraseError(f"Could not unlock private key {signer.fingerprint}")
            for line in output.stderr:
                log.error(line)
            raise GPGError(f"gpg could not encrypt (exit code {output.returncode})")
        return output.stdout

    def decrypt(
            self,
            data: bytes,
            key: SigningKey,
            verification: typing.Sequence[PublicKey]) -> bytes:
        """
        Decrypt data and check it was signed by one of the verification keys.

        Raises VerificationError when the signature is missing or was made by
        any other key. The plaintext is not returned in that case.
        """
        log.debug(f"Decrypting {len(data)} bytes with {key.fingerprint}")
        with self.home(key.armored, *(v.armored for v in verification)) as home:
            output = self.run(home, [
                '--passphrase-file', self.passphrase_file(home, key.passphrase),
                '--decrypt',
            ], stdin=data, check=False)

        if 'DECRYPTION_OKAY' not in output.keywords():
            if output.bad_passphrase():
                raise PassphraseError(f"Could not unlock private key {key.fingerprint}")
            for line in output.stderr:
                log.error(line)
            raise GPGError(f"gpg could not decrypt with key {key.fingerprint}")

        # The primary key fingerprint is the last argument of VALIDSIG.
        signers = {arguments[-1] for arguments in output.arguments('VALIDSIG') if arguments}
        trusted = {v.fingerprint for v in verification}
        if not signers & trusted:
            raise VerificationError(
                "Signature was not made by any user with access to the file")
        return output.stdout
