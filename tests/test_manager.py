import json

import pytest

from gitsecrets.gpg import GPGError
from gitsecrets.manager import GitSecrets
from gitsecrets.results import Kind, Status
from gitsecrets.settings import GITIGNORE, Layout, MissingKeyPolicy, Settings
from gitsecrets.utils import GitSecretsException

from conftest import ALICE, BOB, CAROL, PASSPHRASE


def test_init(repository):
    result = GitSecrets.init(repository)
    assert result.success

    layout = Layout(repository)
    assert layout.is_initialised()
    assert layout.gitignore.read_text() == GITIGNORE
    assert Settings.load(layout.settings) == Settings()


def test_init_twice(repository):
    GitSecrets.init(repository)
    result = GitSecrets.init(repository)
    assert result.status is Status.WARNING
    assert result.kind is Kind.ALREADY_EXISTS


def test_open_uninitialised(repository, gpg):
    with pytest.raises(GitSecretsException):
        GitSecrets.open(repository, gpg=gpg)


def test_open_reads_settings(repository, gpg):
    GitSecrets.init(repository)
    Settings(missing_keys='error', workers=2).save(Layout(repository).settings)

    gs = GitSecrets.open(repository, gpg=gpg)
    assert gs.keeper.missing_keys is MissingKeyPolicy.ERROR
    assert gs.batch.workers == 2
    gs.close()


def test_invalid_settings(repository, gpg):
    GitSecrets.init(repository)
    Layout(repository).settings.write_text(json.dumps({'missing_keys': 'ignore'}))
    with pytest.raises(GitSecretsException):
        GitSecrets.open(repository, gpg=gpg)


def test_add_user(gs, gpg):
    result = gs.add_user(ALICE, passphrase=PASSPHRASE, name='Alice')
    assert result.success
    assert gs.keys.public_path(result.payload.id).exists()
    assert [u.email for u in gs.users()] == [ALICE]


def test_add_user_twice(gs, users):
    result = gs.add_user(ALICE, passphrase=PASSPHRASE)
    assert result.kind is Kind.ALREADY_EXISTS
    assert result.status is Status.WARNING
    assert len(gs.users()) == 3


def test_add_user_without_keys(gs, gpg, monkeypatch):
    def fail(**kwargs):
        raise GPGError("no entropy")

    monkeypatch.setattr(gpg, 'generate_key', fail)
    result = gs.add_user(ALICE, passphrase=PASSPHRASE)
    assert result.kind is Kind.CRYPTO_FAILURE
    assert gs.users() == []


def test_update_user(gs, users):
    result = gs.update_user(ALICE, new_email='alice@example.org', name='Alice Liddell')
    assert result.success
    assert result.payload.id == users[ALICE]
    assert gs.store.users.find(ALICE) is None
    assert gs.store.users.find('alice@example.org').name == 'Alice Liddell'


def test_update_user_conflict(gs, users):
    assert gs.update_user(ALICE, new_email=BOB).kind is Kind.ALREADY_EXISTS
    assert gs.update_user('nobody@example.invalid', name='x').kind is Kind.NOT_FOUND


def test_remove_user(gs, users, track):
    file = track('a.env')
    gs.add_team('ops')
    gs.add_team_users('ops', ALICE)
    gs.add_collection('deploy')
    gs.add_access(files=file.path, collections='deploy', users=ALICE)

    assert gs.remove_user(ALICE).success
    assert gs.store.team_users.pairs() == []
    assert gs.store.file_users.pairs() == []
    assert gs.store.collection_users.pairs() == []
    assert not gs.keys.public_path(users[ALICE]).exists()
    assert gs.remove_user(ALICE).kind is Kind.NOT_FOUND


def test_remove_team(gs, users, track):
    file = track('a.env')
    gs.add_team('ops')
    gs.add_team_users('ops', [BOB, CAROL])
    gs.add_collection('deploy')
    gs.add_access(files=file.path, collections='deploy', teams='ops')

    assert gs.remove_team('ops').success
    assert gs.store.team_users.pairs() == []
    assert gs.store.file_teams.pairs() == []
    assert gs.store.collection_teams.pairs() == []
    assert gs.file_access(file.path).payload == []


def test_remove_collection(gs, users, track):
    file = track('a.env')
    gs.add_collection('deploy')
    gs.add_collection_files('deploy', file.path)
    gs.add_access(collections='deploy', users=ALICE)
    assert gs.user_access(ALICE).payload == [file]

    assert gs.remove_collection('deploy').success
    assert gs.user_access(ALICE).payload == []
    assert gs.store.collection_files.pairs() == []


def test_remove_file(gs, users, track):
    file = track('a.env')
    gs.add_collection('deploy')
    gs.add_collection_files('deploy', file.path)
    gs.add_team('ops')
    gs.add_access(files=file.path, users=ALICE, teams='ops')

    assert gs.remove_file(file.path).success
    assert gs.files() == []
    assert gs.store.collection_files.pairs() == []
    assert gs.store.file_users.pairs() == []
    assert gs.store.file_teams.pairs() == []


def test_team_and_collection_names_are_unique(gs):
    assert gs.add_team('ops').success
    assert gs.add_team('ops').kind is Kind.ALREADY_EXISTS
    assert gs.add_collection('deploy').success
    assert gs.add_collection('deploy').kind is Kind.ALREADY_EXISTS
    assert gs.update_team('ops', new_name='sre').success
    assert gs.update_collection('deploy', description='Deployment secrets').payload.description


def test_team_members(gs, users):
    gs.add_team('ops')
    gs.add_team_users(['ops'], [ALICE, BOB])
    gs.add_team_users('ops', BOB)
    assert [u.email for u in gs.team_members('ops').payload] == sorted([ALICE, BOB], key=lambda e: users[e])

    gs.remove_team_users('ops', ALICE)
    gs.remove_team_users('ops', ALICE)
    assert [u.email for u in gs.team_members('ops').payload] == [BOB]


def test_unknown_names_are_reported(gs, users, track):
    track('a.env')
    result = gs.add_access(files='a.env', users=[ALICE, 'nobody@example.invalid'])
    assert result.kind is Kind.NOT_FOUND
    assert result.entity == 'user'
    assert result.subject == 'nobody@example.invalid'
    assert gs.file_access('a.env').payload == []

    assert gs.add_team_users('missing', ALICE).entity == 'team'
    assert gs.add_collection_files('missing', 'a.env').entity == 'collection'
    assert gs.remove_access(files='missing.env', users=ALICE).entity == 'file'


def test_access_queries(gs, users, track):
    file = track('a.env')
    gs.add_access(files=file.path, users=[ALICE, BOB])
    assert {u.email for u in gs.file_access(file.path).payload} == {ALICE, BOB}
    assert gs.user_access(CAROL).payload == []
    assert gs.file_access('missing.env').kind is Kind.NOT_FOUND
    assert gs.user_access('nobody@example.invalid').kind is Kind.NOT_FOUND


def test_add_file_ignores_plaintext(gs, track, repository):
    track('config/a.env')
    gitignore = (repository / '.gitignore').read_text().splitlines()
    assert '/config/a.env' in gitignore
    assert '/config/a.decrypted.env' in gitignore
    assert gs.unignored() == []


def test_add_file_keeps_existing_ignores(gs, track, repository):
    (repository / '.gitignore').write_text('*.env')
    track('a.env')
    assert (repository / '.gitignore').read_text() == '*.env'
    assert gs.add_file('a.env').kind is Kind.ALREADY_EXISTS


def test_unignored(gs, track, repository):
    track('a.env')
    (repository / '.gitignore').write_text('')
    assert gs.unignored() == ['a.decrypted.env', 'a.env']


def test_status(gs, users, track):
    track('a.env')
    gs.add_access(files='a.env', users=ALICE)
    assert [(f.path, s.stale) for f, s in gs.status()] == [('a.env', True)]
    gs.encrypt('a.env', ALICE, PASSPHRASE)
    assert [(f.path, s.stale) for f, s in gs.status()] == [('a.env', False)]


def test_local_settings(gs):
    assert gs.local_settings().email is None
    gs.layout.local_settings.write_text(json.dumps({'email': ALICE}))
    assert gs.local_settings().email == ALICE


def test_update_file(gs, users, track, repository):
    file = track('a.env')
    gs.add_access(files='a.env', users=ALICE)
    gs.encrypt('a.env', ALICE, PASSPHRASE)
    (repository / 'config').mkdir()
    (repository / 'a.env').rename(repository / 'config' / 'b.env')

    result = gs.update_file('a.env', 'config/b.env')
    assert result.success, result.message
    assert result.payload.id == file.id
    assert gs.store.files.find('a.env') is None
    assert not (repository / 'a.env.secret').exists()
    assert (repository / 'config' / 'b.env.secret').exists()
    assert [f.path for f in gs.user_access(ALICE).payload] == ['config/b.env']
    assert not gs.tracker.is_stale(result.payload)
    assert gs.unignored() == []
    assert gs.decrypt('config/b.env', ALICE, PASSPHRASE).success


def test_update_file_conflicts(gs, track):
    track('a.env')
    track('b.env')
    assert gs.update_file('a.env', 'b.env').kind is Kind.ALREADY_EXISTS
    assert gs.update_file('missing.env', 'c.env').kind is Kind.NOT_FOUND
    assert [f.path for f in gs.files()] == ['a.env', 'b.env']


def test_access_needs_a_target_and_a_reader(gs, users, track):
    track('a.env')
    for result in (
            gs.add_access(users=ALICE),
            gs.remove_access(teams=[]),
            gs.add_access(files='a.env')):
        assert result.kind is Kind.MISSING_ARGUMENT
        assert result.error
    assert gs.file_access('a.env').payload == []


def test_settings(gs):
    assert gs.list_settings() == {'missing_keys': 'exclude', 'workers': 4}
    assert gs.get_setting('workers').payload == 4
    assert gs.get_setting('colour').kind is Kind.NOT_FOUND

    assert gs.set_setting('missing_keys', 'error').success
    assert gs.keeper.missing_keys is MissingKeyPolicy.ERROR
    assert Settings.load(gs.layout.settings).missing_keys is MissingKeyPolicy.ERROR

    assert gs.set_setting('workers', '2').success
    assert gs.batch.workers == 2
    assert gs.set_setting('workers', '').success
    assert gs.batch.workers == 4


def test_invalid_setting_values(gs):
    with pytest.raises(GitSecretsException):
        gs.set_setting('missing_keys', 'ignore')
    with pytest.raises(GitSecretsException):
        gs.set_setting('workers', 'many')
    with pytest.raises(GitSecretsException):
        gs.set_setting('workers', '0')
    assert gs.list_settings() == Settings().as_dict()


def test_local_settings_are_separate(gs):
    assert gs.set_setting('email', ALICE, local=True).success
    assert gs.get_setting('email', local=True).payload == ALICE
    assert gs.get_setting('email').kind is Kind.NOT_FOUND
    assert gs.set_setting('workers', '2', local=True).kind is Kind.NOT_FOUND
