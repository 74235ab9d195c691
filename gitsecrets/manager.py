import logging
import pathlib
import typing

from . import results
from .access import AccessResolver
from .batch import BatchCoordinator
from .gpg import GPG, GPGError
from .keys import KeyRegistry
from .results import Kind, Result
from .secrets import Secret, SecretKeeper
from .settings import Layout, LocalSettings, Settings, evolve
from .signatures import SignatureTracker, Staleness
from .store import Collection, File, Store, Team, User
from .utils import GitSecretsException, as_sequence, ignore, not_ignored

log = logging.getLogger(__name__)

Names = typing.Union[None, str, typing.Iterable[str]]


class GitSecrets:
    """
    Everything needed to manage the secrets in one repository.

    Users are identified by email, teams and collections by name and files
    by their path relative to the repository root. Methods that take several
    identifiers accept either one value or a list of values.
    """

    def __init__(
            self,
            root: pathlib.Path,
            store: Store,
            gpg: GPG = GPG(),
            settings: Settings = Settings()):
        self.root = root
        self.layout = Layout(root)
        self.store = store
        self.gpg = gpg
        self.settings = settings

        self.resolver = AccessResolver(store)
        self.tracker = SignatureTracker(root, store, self.resolver)
        self.keys = KeyRegistry(self.layout.keys, gpg)
        self.keeper = SecretKeeper(
            root=root,
            store=store,
            resolver=self.resolver,
            tracker=self.tracker,
            keys=self.keys,
            gpg=gpg,
            missing_keys=settings.missing_keys)
        self.batch = BatchCoordinator(
            store=store,
            resolver=self.resolver,
            keeper=self.keeper,
            keys=self.keys,
            workers=settings.workers)

    @classmethod
    def open(cls, root: pathlib.Path, gpg: GPG = GPG()) -> 'GitSecrets':
        layout = Layout(root)
        if not layout.is_initialised():
            raise GitSecretsException(
                f"No gitsecrets project in {root}, run 'gitsecrets init' to get started")
        return cls(
            root=root,
            store=Store(layout.database),
            gpg=gpg,
            settings=Settings.load(layout.settings))

    @staticmethod
    def init(root: pathlib.Path) -> Result:
        layout = Layout(root)
        if layout.is_initialised():
            return results.already_exists('project', 'path', str(layout.directory))
        layout.initialise()
        Store(layout.database).close()
        return results.success(f"Initialised gitsecrets in {layout.directory}.")

    def close(self) -> None:
        self.store.close()

    def local_settings(self) -> LocalSettings:
        return LocalSettings.load(self.layout.local_settings)

    # Settings

    def list_settings(self, local: bool = False) -> typing.Dict[str, typing.Any]:
        settings = self.local_settings() if local else self.settings
        return settings.as_dict()

    def get_setting(self, key: str, local: bool = False) -> Result:
        values = self.list_settings(local)
        if key not in values:
            return results.not_found('setting', 'key', key)
        return results.success(payload=values[key])

    def set_setting(self, key: str, value: str, local: bool = False) -> Result:
        """Change one setting. Shared settings also apply to this instance."""
        current = self.local_settings() if local else self.settings
        try:
            updated = evolve(current, key, value)
        except KeyError:
            return results.not_found('setting', 'key', key)

        if local:
            updated.save(self.layout.local_settings)
        else:
            updated.save(self.layout.settings)
            self.settings = updated
            self.keeper.missing_keys = updated.missing_keys
            self.batch.workers = updated.workers
        return results.success(f"Set '{key}' to '{value}'.", payload=updated)

    # Lookups

    def _ids(
            self,
            table: typing.Any,
            entity: str,
            field: str,
            values: Names) -> typing.Union[Result, typing.List[str]]:
        ids = []
        for value in as_sequence(values):
            record = table.find(value)
            if record is None:
                return results.not_found(entity, field, value)
            ids.append(record.id)
        return ids

    def user_ids(self, emails: Names):
        return self._ids(self.store.users, 'user', 'email', emails)

    def team_ids(self, names: Names):
        return self._ids(self.store.teams, 'team', 'name', names)

    def collection_ids(self, names: Names):
        return self._ids(self.store.collections, 'collection', 'name', names)

    def file_ids(self, paths: Names):
        return self._ids(self.store.files, 'file', 'path', paths)

    # Users

    def users(self) -> typing.List[User]:
        return self.store.users.all()

    def add_user(self, email: str, passphrase: str, name: str = None) -> Result:
        if self.store.users.find(email) is not None:
            return results.already_exists('user', 'email', email)

        try:
            with self.store.transaction():
                user = self.store.users.create(email=email, name=name)
                self.keys.create_key_pair(user.id, email, name, passphrase)
        except GPGError as error:
            return results.error(
                Kind.CRYPTO_FAILURE,
                subject=email,
                message=f"Could not create keys for user with email '{email}': {error.message}")
        return results.success(f"Added user with email '{email}'.", payload=user)

    def update_user(self, email: str, new_email: str = None, name: str = None) -> Result:
        user = self.store.users.find(email)
        if user is None:
            return results.not_found('user', 'email', email)
        if new_email and new_email != email and self.store.users.find(new_email) is not None:
            return results.already_exists('user', 'email', new_email)

        fields = {k: v for k, v in (('email', new_email), ('name', name)) if v}
        updated = self.store.users.update(user.id, **fields)
        return results.success(f"Updated user with email '{email}'.", payload=updated)

    def remove_user(self, email: str) -> Result:
        user = self.store.users.find(email)
        if user is None:
            return results.not_found('user', 'email', email)

        with self.store.transaction():
            self.store.team_users.discard(right=user.id)
            self.store.file_users.discard(right=user.id)
            self.store.collection_users.discard(right=user.id)
            self.store.users.remove(user.id)
        self.keys.remove_key_pair(user.id)
        return results.success(f"Removed user with email '{email}'.")

    def rotate_keys(self, email: str, old_passphrase: str, new_passphrase: str) -> Result:
        return self.batch.rotate(email, old_passphrase, new_passphrase)

    # Teams

    def teams(self) -> typing.List[Team]:
        return self.store.teams.all()

    def add_team(self, name: str, description: str = None) -> Result:
        if self.store.teams.find(name) is not None:
            return results.already_exists('team', 'name', name)
        team = self.store.teams.create(name=name, description=description)
        return results.success(f"Added team with name '{name}'.", payload=team)

    def update_team(self, name: str, new_name: str = None, description: str = None) -> Result:
        team = self.store.teams.find(name)
        if team is None:
            return results.not_found('team', 'name', name)
        if new_name and new_name != name and self.store.teams.find(new_name) is not None:
            return results.already_exists('team', 'name', new_name)

        fields = {k: v for k, v in (('name', new_name), ('description', description)) if v}
        updated = self.store.teams.update(team.id, **fields)
        return results.success(f"Updated team with name '{name}'.", payload=updated)

    def remove_team(self, name: str) -> Result:
        team = self.store.teams.find(name)
        if team is None:
            return results.not_found('team', 'name', name)

        with self.store.transaction():
            self.store.team_users.discard(left=team.id)
            self.store.file_teams.discard(right=team.id)
            self.store.collection_teams.discard(right=team.id)
            self.store.teams.remove(team.id)
        return results.success(f"Removed team with name '{name}'.")

    def team_members(self, name: str) -> Result:
        team = self.store.teams.find(name)
        if team is None:
            return results.not_found('team', 'name', name)
        users = [self.store.users.get(i) for i in self.store.team_users.rights(team.id)]
        return results.success(payload=[u for u in users if u is not None])

    def add_team_users(self, teams: Names, users: Names) -> Result:
        return self._modify_team_users(teams, users, add=True)

    def remove_team_users(self, teams: Names, users: Names) -> Result:
        return self._modify_team_users(teams, users, add=False)

    def _modify_team_users(self, teams: Names, users: Names, add: bool) -> Result:
        team_ids = self.team_ids(teams)
        if isinstance(team_ids, Result):
            return team_ids
        user_ids = self.user_ids(users)
        if isinstance(user_ids, Result):
            return user_ids

        with self.store.transaction():
            for team_id in team_ids:
                for user_id in user_ids:
                    if add:
                        self.store.team_users.add(team_id, user_id)
                    else:
                        self.store.team_users.remove(team_id, user_id)
        return results.success(f"{'Added' if add else 'Removed'} team members.")

    # Collections

    def collections(self) -> typing.List[Collection]:
        return self.store.collections.all()

    def add_collection(self, name: str, description: str = None) -> Result:
        if self.store.collections.find(name) is not None:
            return results.already_exists('collection', 'name', name)
        collection = self.store.collections.create(name=name, description=description)
        return results.success(f"Added collection with name '{name}'.", payload=collection)

    def update_collection(self, name: str, new_name: str = None, description: str = None) -> Result:
        collection = self.store.collections.find(name)
        if collection is None:
            return results.not_found('collection', 'name', name)
        if new_name and new_name != name and self.store.collections.find(new_name) is not None:
            return results.already_exists('collection', 'name', new_name)

        fields = {k: v for k, v in (('name', new_name), ('description', description)) if v}
        updated = self.store.collections.update(collection.id, **fields)
        return results.success(f"Updated collection with name '{name}'.", payload=updated)

    def remove_collection(self, name: str) -> Result:
        collection = self.store.collections.find(name)
        if collection is None:
            return results.not_found('collection', 'name', name)

        with self.store.transaction():
            self.store.collection_files.discard(left=collection.id)
            self.store.collection_users.discard(left=collection.id)
            self.store.collection_teams.discard(left=collection.id)
            self.store.collections.remove(collection.id)
        return results.success(f"Removed collection with name '{name}'.")

    def add_collection_files(self, collections: Names, files: Names) -> Result:
        return self._modify_collection_files(collections, files, add=True)

    def remove_collection_files(self, collections: Names, files: Names) -> Result:
        return self._modify_collection_files(collections, files, add=False)

    def _modify_collection_files(self, collections: Names, files: Names, add: bool) -> Result:
        collection_ids = self.collection_ids(collections)
        if isinstance(collection_ids, Result):
            return collection_ids
        file_ids = self.file_ids(files)
        if isinstance(file_ids, Result):
            return file_ids

        with self.store.transaction():
            for collection_id in collection_ids:
                for file_id in file_ids:
                    if add:
                        self.store.collection_files.add(collection_id, file_id)
                    else:
                        self.store.collection_files.remove(collection_id, file_id)
        return results.success(f"{'Added' if add else 'Removed'} collection files.")

    # Files

    def files(self) -> typing.List[File]:
        return self.store.files.all()

    def secret(self, file: File) -> Secret:
        return self.keeper.secret(file)

    def add_file(self, path: str) -> Result:
        if self.store.files.find(path) is not None:
            return results.already_exists('file', 'path', path)

        file = self.store.files.create(path=path)
        secret = self.secret(file)
        ignored = ignore(self.root, [path, secret.relative(secret.decrypted)])
        for entry in ignored:
            log.info(f"Added {entry} to .gitignore")
        return results.success(f"Added file with path '{path}'.", payload=file)

    def update_file(self, path: str, new_path: str) -> Result:
        """
        Change the path of a tracked file, keeping its grants and signatures.

        The plaintext is moved by the user. The encrypted file is moved here
        so that it stays next to the new path.
        """
        file = self.store.files.find(path)
        if file is None:
            return results.not_found('file', 'path', path)
        if self.store.files.find(new_path) is not None:
            return results.already_exists('file', 'path', new_path)

        old, new = self.secret(file), Secret(root=self.root, path=new_path)
        if new.encrypted.exists():
            return results.already_exists('encrypted file', 'path', new.relative(new.encrypted))

        updated = self.store.files.update(file.id, path=new_path)
        if old.encrypted.exists():
            new.encrypted.parent.mkdir(parents=True, exist_ok=True)
            old.encrypted.replace(new.encrypted)
            log.info(f"Moved {old.encrypted} to {new.encrypted}")
        for entry in ignore(self.root, [new_path, new.relative(new.decrypted)]):
            log.info(f"Added {entry} to .gitignore")
        return results.success(f"Moved file with path '{path}' to '{new_path}'.", payload=updated)

    def remove_file(self, path: str) -> Result:
        file = self.store.files.find(path)
        if file is None:
            return results.not_found('file', 'path', path)

        with self.store.transaction():
            self.store.collection_files.discard(right=file.id)
            self.store.file_users.discard(left=file.id)
            self.store.file_teams.discard(left=file.id)
            self.store.files.remove(file.id)
        return results.success(f"Removed file with path '{path}'.")

    def status(self) -> typing.List[typing.Tuple[File, Staleness]]:
        return [(file, self.tracker.status(file)) for file in self.files()]

    def unignored(self) -> typing.List[str]:
        """Return the plaintext and decrypted paths that git would commit."""
        paths = []
        for file in self.files():
            secret = self.secret(file)
            paths += [file.path, secret.relative(secret.decrypted)]
        return sorted(not_ignored(self.root, paths))

    # Access

    def add_access(
            self,
            files: Names = None,
            collections: Names = None,
            users: Names = None,
            teams: Names = None) -> Result:
        return self._modify_access(files, collections, users, teams, grant=True)

    def remove_access(
            self,
            files: Names = None,
            collections: Names = None,
            users: Names = None,
            teams: Names = None) -> Result:
        return self._modify_access(files, collections, users, teams, grant=False)

    def _modify_access(
            self,
            files: Names,
            collections: Names,
            users: Names,
            teams: Names,
            grant: bool) -> Result:
        if not as_sequence(files) and not as_sequence(collections):
            return results.error(
                Kind.MISSING_ARGUMENT,
                subject='files',
                message="Access needs at least one file or collection.")
        if not as_sequence(users) and not as_sequence(teams):
            return results.error(
                Kind.MISSING_ARGUMENT,
                subject='users',
                message="Access needs at least one user or team.")

        ids = {}
        for key, lookup, values in (
                ('files', self.file_ids, files),
                ('collections', self.collection_ids, collections),
                ('users', self.user_ids, users),
                ('teams', self.team_ids, teams)):
            found = lookup(values)
            if isinstance(found, Result):
                return found
            ids[key] = found

        if grant:
            self.resolver.grant(**ids)
            return results.success("Added access.")
        self.resolver.revoke(**ids)
        return results.success("Removed access.")

    def file_access(self, path: str) -> Result:
        """List the users that can read a file."""
        file = self.store.files.find(path)
        if file is None:
            return results.not_found('file', 'path', path)
        users = [self.store.users.get(i) for i in self.resolver.resolve(file.id)]
        return results.success(payload=[u for u in users if u is not None])

    def user_access(self, email: str) -> Result:
        """List the files a user can read."""
        user = self.store.users.find(email)
        if user is None:
            return results.not_found('user', 'email', email)
        files = [self.store.files.get(i) for i in self.resolver.files(user.id)]
        return results.success(payload=[f for f in files if f is not None])

    # Encryption

    def encrypt(self, path: str, email: str, passphrase: str, modified_only: bool = False) -> Result:
        return self.keeper.encrypt(path, email, passphrase, modified_only=modified_only)

    def decrypt(self, path: str, email: str, passphrase: str) -> Result:
        return self.keeper.decrypt(path, email, passphrase)

    def encrypt_all(self, email: str, passphrase: str, modified_only: bool = False) -> Result:
        return self.batch.encrypt_all(email, passphrase, modified_only=modified_only)

    def decrypt_all(self, email: str, passphrase: str) -> Result:
        return self.batch.decrypt_all(email, passphrase)
