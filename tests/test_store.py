import sqlite3

import pytest

from gitsecrets.store import File, Store, User


@pytest.fixture()
def store(tmp_path):
    store = Store(tmp_path / 'data.db')
    yield store
    store.close()


def test_create_and_find(store):
    user = store.users.create(email='alice@example.invalid', name='Alice')
    assert store.users.find('alice@example.invalid') == user
    assert store.users.get(user.id) == user
    assert store.users.find('bob@example.invalid') is None


def test_all_is_ordered_by_key(store):
    store.files.create(path='b.env')
    store.files.create(path='a.env')
    assert [f.path for f in store.files.all()] == ['a.env', 'b.env']


def test_new_files_have_empty_signatures(store):
    file = store.files.create(path='a.env')
    assert file == File(id=file.id, path='a.env', contents_signature='', access_signature='')


def test_unique_key(store):
    store.users.create(email='alice@example.invalid')
    with pytest.raises(sqlite3.IntegrityError):
        store.users.create(email='alice@example.invalid')


def test_update(store):
    user = store.users.create(email='alice@example.invalid')
    updated = store.users.update(user.id, name='Alice')
    assert updated == User(id=user.id, email='alice@example.invalid', name='Alice')


def test_update_rejects_id_and_unknown_fields(store):
    user = store.users.create(email='alice@example.invalid')
    with pytest.raises(ValueError):
        store.users.update(user.id, id='other')
    with pytest.raises(ValueError):
        store.users.update(user.id, colour='blue')
    assert store.users.get(user.id) == user


def test_remove(store):
    user = store.users.create(email='alice@example.invalid')
    store.users.remove(user.id)
    store.users.remove(user.id)
    assert store.users.get(user.id) is None


def test_relation_add_is_idempotent(store):
    store.team_users.add('team', 'user')
    store.team_users.add('team', 'user')
    assert store.team_users.pairs() == [('team', 'user')]


def test_relation_remove_missing_pair(store):
    store.team_users.remove('team', 'user')
    assert store.team_users.pairs() == []


def test_relation_lookups(store):
    store.collection_files.add('c1', 'f2')
    store.collection_files.add('c1', 'f1')
    store.collection_files.add('c2', 'f1')
    assert store.collection_files.rights('c1') == ['f1', 'f2']
    assert store.collection_files.lefts('f1') == ['c1', 'c2']


def test_relation_discard(store):
    store.collection_files.add('c1', 'f1')
    store.collection_files.add('c1', 'f2')
    store.collection_files.add('c2', 'f1')
    store.collection_files.discard(right='f1')
    assert store.collection_files.pairs() == [('c1', 'f2')]
    store.collection_files.discard(left='c1')
    assert store.collection_files.pairs() == []


def test_transaction_rolls_back(store):
    with pytest.raises(RuntimeError):
        with store.transaction():
            store.users.create(email='alice@example.invalid')
            store.team_users.add('team', 'user')
            raise RuntimeError()
    assert store.users.all() == []
    assert store.team_users.pairs() == []


def test_nested_transactions_join_the_outer_one(store):
    with pytest.raises(RuntimeError):
        with store.transaction():
            with store.transaction():
                store.users.create(email='alice@example.invalid')
            raise RuntimeError()
    assert store.users.all() == []


def test_data_is_durable(tmp_path):
    store = Store(tmp_path / 'data.db')
    user = store.users.create(email='alice@example.invalid')
    store.close()

    reopened = Store(tmp_path / 'data.db')
    assert reopened.users.find('alice@example.invalid') == user
    reopened.close()
