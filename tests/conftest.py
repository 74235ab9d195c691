import base64
import json
import pathlib
import typing
import uuid

import attr
import click.testing
import git
import pytest

import gitsecrets.cli
from gitsecrets.gpg import GPGError, KeyPair, PassphraseError, PublicKey, SigningKey, VerificationError
from gitsecrets.manager import GitSecrets
from gitsecrets.store import File
from gitsecrets.utils import sha256

PASSPHRASE = 'correct horse battery staple'

ALICE = 'alice@example.invalid'
BOB = 'bob@example.invalid'
CAROL = 'carol@example.invalid'


@attr.s
class FakeGPG:
    """
    An in-process stand in for gitsecrets.gpg.GPG.

    Keys are small JSON documents and messages record their recipients and
    signer in the clear, which is enough to check who could read what.
    """

    generated: int = attr.ib(default=0)

    def generate_key(self, email: str, name: typing.Optional[str], passphrase: str) -> KeyPair:
        self.generated += 1
        fingerprint = uuid.uuid4().hex.upper()
        public = {'fingerprint': fingerprint, 'email': email}
        private = {'fingerprint': fingerprint, 'passphrase': sha256(passphrase)}
        return KeyPair(
            public=f'FAKE-PUBLIC {json.dumps(public)}',
            private=f'FAKE-PRIVATE {json.dumps(private)}')

    @staticmethod
    def load(armored: str) -> typing.Tuple[str, dict]:
        kind, _, document = armored.partition(' ')
        try:
            return kind, json.loads(document)
        except ValueError:
            raise GPGError("No OpenPGP key found in armoured text")

    def fingerprint(self, armored: str) -> str:
        return self.load(armored)[1]['fingerprint']

    def unlock(self, armored: str, passphrase: str) -> SigningKey:
        kind, key = self.load(armored)
        if kind != 'FAKE-PRIVATE':
            raise GPGError("No private key found in armoured text")
        if key['passphrase'] != sha256(passphrase):
            raise PassphraseError(f"Could not unlock private key {key['fingerprint']}")
        return SigningKey(fingerprint=key['fingerprint'], armored=armored, passphrase=passphrase)

    def encrypt(self, data: bytes, recipients: typing.Sequence[PublicKey], signer: SigningKey) -> bytes:
        if not recipients:
            raise GPGError("Cannot encrypt without any recipients")
        return json.dumps({
            'recipients': [r.fingerprint for r in recipients],
            'signer': signer.fingerprint,
            'data': base64.b64encode(data).decode('ascii'),
        }).encode('utf-8')

    def decrypt(self, data: bytes, key: SigningKey, verification: typing.Sequence[PublicKey]) -> bytes:
        try:
            message = json.loads(data)
        except ValueError:
            raise GPGError("No OpenPGP message found")
        if key.fingerprint not in message['recipients']:
            raise GPGError(f"Message was not encrypted for {key.fingerprint}")
        if message['signer'] not in {v.fingerprint for v in verification}:
            raise VerificationError("Signature was not made by any user with access to the file")
        return base64.b64decode(message['data'])


@pytest.fixture()
def repository(tmp_path: pathlib.Path) -> pathlib.Path:
    root = tmp_path.resolve() / 'repository'
    root.mkdir()
    git.Repo.init(root)
    return root


@pytest.fixture()
def gpg() -> FakeGPG:
    return FakeGPG()


@pytest.fixture()
def gs(repository: pathlib.Path, gpg: FakeGPG) -> typing.Iterator[GitSecrets]:
    GitSecrets.init(repository)
    secrets = GitSecrets.open(repository, gpg=gpg)
    yield secrets
    secrets.close()


@pytest.fixture()
def users(gs: GitSecrets) -> typing.Dict[str, str]:
    """Add alice, bob and carol, returning their ids by email."""
    ids = {}
    for email in (ALICE, BOB, CAROL):
        result = gs.add_user(email, passphrase=PASSPHRASE, name=email.split('@')[0].title())
        assert result.success, result.message
        ids[email] = result.payload.id
    return ids


@pytest.fixture()
def track(gs: GitSecrets, repository: pathlib.Path):
    def track_func(path: str, contents: bytes = b'password=hunter2\n') -> File:
        plaintext = repository / path
        plaintext.parent.mkdir(parents=True, exist_ok=True)
        plaintext.write_bytes(contents)
        result = gs.add_file(path)
        assert result.success, result.message
        return result.payload

    return track_func


@pytest.fixture()
def invoke(repository: pathlib.Path, gpg: FakeGPG, monkeypatch):
    monkeypatch.setattr(gitsecrets.cli, 'GPG', lambda verbose=False: gpg)

    def invoke_func(arguments: typing.Sequence[str], passphrase: str = PASSPHRASE, exit_code: int = 0):
        assert all(isinstance(arg, str) for arg in arguments)
        runner = click.testing.CliRunner()
        result = runner.invoke(
            gitsecrets.cli.main,
            ['-p', repository.as_posix(), *arguments],
            env={'GITSECRETS_PASSPHRASE': passphrase})
        if result.exit_code != exit_code:
            message = f"Command gitsecrets {' '.join(arguments)} exited with {result.exit_code}"
            raise Exception(f"{message}\n{result.output}") from result.exception
        return result.output.splitlines()

    return invoke_func
