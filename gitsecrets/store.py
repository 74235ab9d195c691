"""
Durable storage for users, teams, collections, files and the relations
between them, kept in a SQLite database inside the repository.
"""

import contextlib
import logging
import pathlib
import sqlite3
import threading
import typing
import uuid

import attr

log = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    email TEXT NOT NULL UNIQUE,
    name TEXT
);
CREATE TABLE IF NOT EXISTS teams (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL UNIQUE,
    description TEXT
);
CREATE TABLE IF NOT EXISTS collections (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL UNIQUE,
    description TEXT
);
CREATE TABLE IF NOT EXISTS files (
    id TEXT PRIMARY KEY,
    path TEXT NOT NULL UNIQUE,
    contents_signature TEXT NOT NULL DEFAULT '',
    access_signature TEXT NOT NULL DEFAULT ''
);
CREATE TABLE IF NOT EXISTS team_users (
    team_id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    PRIMARY KEY (team_id, user_id)
);
CREATE TABLE IF NOT EXISTS collection_files (
    collection_id TEXT NOT NULL,
    file_id TEXT NOT NULL,
    PRIMARY KEY (collection_id, file_id)
);
CREATE TABLE IF NOT EXISTS file_users (
    file_id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    PRIMARY KEY (file_id, user_id)
);
CREATE TABLE IF NOT EXISTS file_teams (
    file_id TEXT NOT NULL,
    team_id TEXT NOT NULL,
    PRIMARY KEY (file_id, team_id)
);
CREATE TABLE IF NOT EXISTS collection_users (
    collection_id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    PRIMARY KEY (collection_id, user_id)
);
CREATE TABLE IF NOT EXISTS collection_teams (
    collection_id TEXT NOT NULL,
    team_id TEXT NOT NULL,
    PRIMARY KEY (collection_id, team_id)
);
CREATE INDEX IF NOT EXISTS team_users_user ON team_users (user_id);
CREATE INDEX IF NOT EXISTS collection_files_file ON collection_files (file_id);
CREATE INDEX IF NOT EXISTS file_users_user ON file_users (user_id);
CREATE INDEX IF NOT EXISTS file_teams_team ON file_teams (team_id);
CREATE INDEX IF NOT EXISTS collection_users_user ON collection_users (user_id);
CREATE INDEX IF NOT EXISTS collection_teams_team ON collection_teams (team_id);
"""


@attr.s(frozen=True, kw_only=True)
class User:
    id: str = attr.ib()
    email: str = attr.ib()
    name: typing.Optional[str] = attr.ib(default=None)


@attr.s(frozen=True, kw_only=True)
class Team:
    id: str = attr.ib()
    name: str = attr.ib()
    description: typing.Optional[str] = attr.ib(default=None)


@attr.s(frozen=True, kw_only=True)
class Collection:
    id: str = attr.ib()
    name: str = attr.ib()
    description: typing.Optional[str] = attr.ib(default=None)


@attr.s(frozen=True, kw_only=True)
class File:
    id: str = attr.ib()
    path: str = attr.ib()
    contents_signature: str = attr.ib(default='')
    access_signature: str = attr.ib(default='')


Record = typing.TypeVar('Record', User, Team, Collection, File)


class Database:
    """A single SQLite connection shared between threads behind a lock."""

    def __init__(self, path: typing.Union[str, pathlib.Path]):
        self.path = path
        self.connection = sqlite3.connect(str(path), check_same_thread=False)
        self.connection.row_factory = sqlite3.Row
        self.lock = threading.RLock()
        self.depth = 0
        with self.lock:
            self.connection.executescript(SCHEMA)

    def close(self) -> None:
        with self.lock:
            self.connection.close()

    @contextlib.contextmanager
    def transaction(self) -> typing.Iterator[sqlite3.Connection]:
        """
        Run statements atomically. Nested transactions join the outermost
        one, which commits or rolls back everything.
        """
        with self.lock:
            if self.depth:
                self.depth += 1
                try:
                    yield self.connection
                finally:
                    self.depth -= 1
                return

            self.depth = 1
            try:
                with self.connection:
                    yield self.connection
            finally:
                self.depth = 0

    def query(self, sql: str, parameters: typing.Mapping[str, typing.Any] = None) -> typing.List[sqlite3.Row]:
        with self.lock:
            return self.connection.execute(sql, parameters or {}).fetchall()

    def execute(self, sql: str, parameters: typing.Mapping[str, typing.Any] = None) -> int:
        with self.transaction() as connection:
            return connection.execute(sql, parameters or {}).rowcount


class Table(typing.Generic[Record]):
    """An entity table with an opaque id and one unique lookup column."""

    def __init__(
            self,
            db: Database,
            table: str,
            record: typing.Type[Record],
            key: str):
        self.db = db
        self.table = table
        self.record = record
        self.key = key
        self.columns = [a.name for a in attr.fields(record)]

    def __repr__(self):
        return f'<{self.__class__.__name__} {self.table}>'

    def load(self, row: typing.Optional[sqlite3.Row]) -> typing.Optional[Record]:
        return self.record(**dict(row)) if row is not None else None

    def all(self) -> typing.List[Record]:
        rows = self.db.query(f'SELECT * FROM {self.table} ORDER BY {self.key}')
        return [self.record(**dict(row)) for row in rows]

    def get(self, id: str) -> typing.Optional[Record]:
        rows = self.db.query(f'SELECT * FROM {self.table} WHERE id = :id LIMIT 1', {'id': id})
        return self.load(rows[0] if rows else None)

    def find(self, value: str) -> typing.Optional[Record]:
        rows = self.db.query(
            f'SELECT * FROM {self.table} WHERE {self.key} = :value LIMIT 1',
            {'value': value})
        return self.load(rows[0] if rows else None)

    def create(self, **fields: typing.Any) -> Record:
        record = self.record(id=str(uuid.uuid4()), **fields)
        values = attr.asdict(record)
        self.db.execute(
            f'INSERT INTO {self.table} ({", ".join(values)}) '
            f'VALUES ({", ".join(":" + c for c in values)})',
            values)
        log.debug(f"Created {record}")
        return record

    def update(self, id: str, /, **fields: typing.Any) -> typing.Optional[Record]:
        unknown = set(fields).difference(self.columns).union({'id'}.intersection(fields))
        if unknown:
            raise ValueError(f"Cannot update {', '.join(sorted(unknown))} in {self.table}")
        if fields:
            assignments = ', '.join(f'{c} = :{c}' for c in fields)
            self.db.execute(
                f'UPDATE {self.table} SET {assignments} WHERE id = :id',
                {**fields, 'id': id})
        return self.get(id)

    def remove(self, id: str) -> None:
        self.db.execute(f'DELETE FROM {self.table} WHERE id = :id', {'id': id})


class Relation:
    """
    An unordered many-to-many relation between two tables.

    Adding an existing pair and removing a missing pair are both no-ops.
    """

    def __init__(self, db: Database, table: str, left: str, right: str):
        self.db = db
        self.table = table
        self.left = left
        self.right = right

    def __repr__(self):
        return f'<{self.__class__.__name__} {self.table}>'

    def add(self, left: str, right: str) -> None:
        self.db.execute(
            f'INSERT OR IGNORE INTO {self.table} ({self.left}, {self.right}) '
            f'VALUES (:left, :right)',
            {'left': left, 'right': right})

    def remove(self, left: str, right: str) -> None:
        self.db.execute(
            f'DELETE FROM {self.table} WHERE {self.left} = :left AND {self.right} = :right',
            {'left': left, 'right': right})

    def rights(self, left: str) -> typing.List[str]:
        rows = self.db.query(
            f'SELECT {self.right} FROM {self.table} WHERE {self.left} = :left '
            f'ORDER BY {self.right}',
            {'left': left})
        return [row[0] for row in rows]

    def lefts(self, right: str) -> typing.List[str]:
        rows = self.db.query(
            f'SELECT {self.left} FROM {self.table} WHERE {self.right} = :right '
            f'ORDER BY {self.left}',
            {'right': right})
        return [row[0] for row in rows]

    def pairs(self) -> typing.List[typing.Tuple[str, str]]:
        rows = self.db.query(
            f'SELECT {self.left}, {self.right} FROM {self.table} '
            f'ORDER BY {self.left}, {self.right}')
        return [(row[0], row[1]) for row in rows]

    def discard(self, *, left: str = None, right: str = None) -> None:
        """Remove every pair involving the given left or right id."""
        if left is not None:
            self.db.execute(f'DELETE FROM {self.table} WHERE {self.left} = :id', {'id': left})
        if right is not None:
            self.db.execute(f'DELETE FROM {self.table} WHERE {self.right} = :id', {'id': right})


class Store:
    """Every table and relation in a gitsecrets database."""

    def __init__(self, path: typing.Union[str, pathlib.Path]):
        self.db = Database(path)

        self.users: Table[User] = Table(self.db, 'users', User, key='email')
        self.teams: Table[Team] = Table(self.db, 'teams', Team, key='name')
        self.collections: Table[Collection] = Table(self.db, 'collections', Collection, key='name')
        self.files: Table[File] = Table(self.db, 'files', File, key='path')

        self.team_users = Relation(self.db, 'team_users', 'team_id', 'user_id')
        self.collection_files = Relation(self.db, 'collection_files', 'collection_id', 'file_id')
        self.file_users = Relation(self.db, 'file_users', 'file_id', 'user_id')
        self.file_teams = Relation(self.db, 'file_teams', 'file_id', 'team_id')
        self.collection_users = Relation(self.db, 'collection_users', 'collection_id', 'user_id')
        self.collection_teams = Relation(self.db, 'collection_teams', 'collection_id', 'team_id')

    def transaction(self):
        return self.db.transaction()

    def close(self) -> None:
        self.db.close()
