"""
Resolve which users can read which files.

Access is additive. A user can read a file if any one of these is true:

    * the user was granted the file
    * the user is in a team that was granted the file
    * the user was granted a collection containing the file
    * the user is in a team that was granted a collection containing the file

There are no negative grants, so revoking one path to a file leaves any
other path in place.
"""

import logging
import typing

from .store import Store

log = logging.getLogger(__name__)

Ids = typing.Sequence[str]


class AccessResolver:
    def __init__(self, store: Store):
        self.store = store

    def resolve(self, file_id: str) -> typing.Tuple[str, ...]:
        """Return the sorted ids of every user that can read a file."""
        store = self.store
        with store.transaction():
            users: typing.Set[str] = set(store.file_users.rights(file_id))

            for team_id in store.file_teams.rights(file_id):
                users.update(store.team_users.rights(team_id))

            for collection_id in store.collection_files.lefts(file_id):
                users.update(store.collection_users.rights(collection_id))
                for team_id in store.collection_teams.rights(collection_id):
                    users.update(store.team_users.rights(team_id))

        log.debug(f"Resolved {len(users)} users for file {file_id}")
        return tuple(sorted(users))

    def files(self, user_id: str) -> typing.Tuple[str, ...]:
        """Return the sorted ids of every file a user can read."""
        store = self.store
        with store.transaction():
            teams = store.team_users.lefts(user_id)
            files: typing.Set[str] = set(store.file_users.lefts(user_id))
            collections: typing.Set[str] = set(store.collection_users.lefts(user_id))

            for team_id in teams:
                files.update(store.file_teams.lefts(team_id))
                collections.update(store.collection_teams.lefts(team_id))

            for collection_id in collections:
                files.update(store.collection_files.rights(collection_id))

        log.debug(f"Resolved {len(files)} files for user {user_id}")
        return tuple(sorted(files))

    def grant(
            self, *,
            files: Ids = (),
            collections: Ids = (),
            users: Ids = (),
            teams: Ids = ()) -> None:
        """Grant every user and team access to every file and collection."""
        with self.store.transaction():
            for file_id in files:
                for user_id in users:
                    self.store.file_users.add(file_id, user_id)
                for team_id in teams:
                    self.store.file_teams.add(file_id, team_id)
            for collection_id in collections:
                for user_id in users:
                    self.store.collection_users.add(collection_id, user_id)
                for team_id in teams:
                    self.store.collection_teams.add(collection_id, team_id)

    def revoke(
            self, *,
            files: Ids = (),
            collections: Ids = (),
            users: Ids = (),
            teams: Ids = ()) -> None:
        """Remove the grants that `grant` with the same arguments would add."""
        with self.store.transaction():
            for file_id in files:
                for user_id in users:
                    self.store.file_users.remove(file_id, user_id)
                for team_id in teams:
                    self.store.file_teams.remove(file_id, team_id)
            for collection_id in collections:
                for user_id in users:
                    self.store.collection_users.remove(collection_id, user_id)
                for team_id in teams:
                    self.store.collection_teams.remove(collection_id, team_id)
