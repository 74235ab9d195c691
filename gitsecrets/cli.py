import logging
import pathlib
import typing

import click

from . import __doc__, __version__
from .gpg import GPG
from .manager import GitSecrets
from .results import Kind, Report, Result, Status
from .utils import GitSecretsException, find_git_directory, relative_path

log = logging.getLogger(__name__)

COLOURS = {
    Status.SUCCESS: 'green',
    Status.WARNING: 'yellow',
    Status.ERROR: 'red',
}

HINTS = {
    'user': "Try 'gitsecrets user list' to see existing users.",
    'team': "Try 'gitsecrets team list' to see existing teams.",
    'collection': "Try 'gitsecrets collection list' to see existing collections.",
    'file': "Try 'gitsecrets file list' to see tracked files.",
    'setting': "Try 'gitsecrets settings list' to see available settings.",
    Kind.NOT_STALE: "Run without --modified to encrypt it anyway.",
    Kind.MISSING_KEY: "Users without keys must be removed and added again.",
    Kind.NO_ACCESS: "Try 'gitsecrets access add' to grant access.",
    Kind.MISSING_ARGUMENT: "Try 'gitsecrets access add --help' for the available options.",
}


def hint(result: Result) -> typing.Optional[str]:
    if result.kind is Kind.NOT_FOUND:
        return HINTS.get(result.entity)
    return HINTS.get(result.kind)


def echo(result: Result, message: str = None) -> None:
    """Print a result in the colour matching its status."""
    click.secho(message if result.success and message else result.message, fg=COLOURS[result.status])
    if not result.success and hint(result):
        click.echo(hint(result))


def echo_report(report: Report) -> None:
    for path, result in report:
        echo(result)
    click.echo(f"{len(report.succeeded)} succeeded, {len(report.warned)} skipped, "
               f"{len(report.failed)} failed")
    if report.failed:
        raise click.exceptions.Exit(1)


def finish(result: Result, message: str = None) -> None:
    echo(result, message)
    if result.error:
        raise click.exceptions.Exit(1)


def finish_all(results: typing.Iterable[Result]) -> None:
    failed = False
    for result in results:
        echo(result)
        failed = failed or result.error
    if failed:
        raise click.exceptions.Exit(1)


class PathType(click.Path):
    def convert(self, value, param, ctx):
        return pathlib.Path(super().convert(value, param, ctx))


email_option = click.option(
    '-e', '--email',
    envvar='GITSECRETS_EMAIL',
    default=None,
    help="Acting user. Defaults to the email in the local settings.")

passphrase_option = click.option(
    '--passphrase',
    envvar='GITSECRETS_PASSPHRASE',
    prompt=True,
    hide_input=True,
    help="Passphrase of the acting user's private key.")

files_argument = click.argument(
    'files',
    type=PathType(dir_okay=False),
    required=False,
    nargs=-1)


def acting_email(gs: GitSecrets, email: typing.Optional[str]) -> str:
    email = email or gs.local_settings().email
    if not email:
        raise GitSecretsException(
            "No acting user, pass --email or set 'email' in the local settings")
    return email


def repository_paths(gs: GitSecrets, paths: typing.Iterable[pathlib.Path]) -> typing.List[str]:
    return [relative_path(gs.root, path) for path in paths]


@click.group(help=__doc__)
@click.option(
    '-p', '--path',
    type=PathType(
        file_okay=False,
        dir_okay=True,
        exists=True),
    default=find_git_directory,
    required=True,
    help="Defaults to the current git repository.")
@click.option(
    '-d', '--debug', 'debug',
    default=False,
    is_flag=True,
    help="Enable debug logging.")
@click.option(
    '-v', '--verbose', 'gpg_verbose',
    default=False,
    is_flag=True,
    help="Display GPG's normal STDERR output.")
@click.pass_context
def main(
        ctx,
        debug: bool,
        path: pathlib.Path,
        gpg_verbose: bool):
    logging.basicConfig(level=(logging.DEBUG if debug else logging.WARNING))
    if ctx.invoked_subcommand in ('init', 'version'):
        ctx.obj = path
        return
    ctx.obj = GitSecrets.open(path, gpg=GPG(verbose=gpg_verbose))
    ctx.call_on_close(ctx.obj.close)


@main.command()
def version():
    """Show the application version."""
    click.echo(f"gitsecrets {__version__}")


@main.command()
@click.pass_obj
def init(path: pathlib.Path):
    """Create the .gitsecrets directory in a repository."""
    finish(GitSecrets.init(path))


@main.command()
@click.pass_obj
def check(gs: GitSecrets):
    """Check that git ignores every plaintext and decrypted file."""
    unignored = gs.unignored()
    for path in unignored:
        click.secho(f"Not ignored by git: {path}", fg='red')
    if unignored:
        raise GitSecretsException(f"{len(unignored)} secret file(s) are not excluded by .gitignore")
    click.secho("All secret files are ignored by git", fg='green')


@main.group()
def user():
    """Add, update and remove users."""


@user.command('list')
@click.pass_obj
def user_list(gs: GitSecrets):
    for u in gs.users():
        click.echo(f"{u.email}\t{u.name or ''}")


@user.command('add')
@click.option('-e', '--email', required=True, help="User's email address.")
@click.option('-n', '--name', default=None, help="User's name.")
@click.password_option('--passphrase', envvar='GITSECRETS_PASSPHRASE')
@click.pass_obj
def user_add(gs: GitSecrets, email: str, name: str, passphrase: str):
    """Add a user and create their keys."""
    finish(gs.add_user(email=email, name=name, passphrase=passphrase))


@user.command('update')
@click.option('-e', '--email', required=True, help="User's email address.")
@click.option('-u', '--updated-email', default=None, help="New email address.")
@click.option('-n', '--name', default=None, help="New name.")
@click.pass_obj
def user_update(gs: GitSecrets, email: str, updated_email: str, name: str):
    finish(gs.update_user(email, new_email=updated_email, name=name))


@user.command('remove')
@click.option('-e', '--email', required=True, help="User's email address.")
@click.pass_obj
def user_remove(gs: GitSecrets, email: str):
    """Remove a user, their access and their keys."""
    finish(gs.remove_user(email))


@user.command('keys')
@click.option('-e', '--email', required=True, help="User's email address.")
@click.option('--old-passphrase', prompt=True, hide_input=True)
@click.password_option('--new-passphrase')
@click.pass_obj
def user_keys(gs: GitSecrets, email: str, old_passphrase: str, new_passphrase: str):
    """Create new keys for a user and re-encrypt their files."""
    result = gs.rotate_keys(email, old_passphrase, new_passphrase)
    if result.success:
        echo_report(result.payload)
    finish(result)


@main.group()
def team():
    """Add, update and remove teams."""


@team.command('list')
@click.pass_obj
def team_list(gs: GitSecrets):
    for t in gs.teams():
        click.echo(f"{t.name}\t{t.description or ''}")


@team.command('add')
@click.option('-n', '--name', required=True)
@click.option('-d', '--description', default=None)
@click.pass_obj
def team_add(gs: GitSecrets, name: str, description: str):
    finish(gs.add_team(name, description=description))


@team.command('update')
@click.option('-n', '--name', required=True)
@click.option('-u', '--updated-name', default=None)
@click.option('-d', '--description', default=None)
@click.pass_obj
def team_update(gs: GitSecrets, name: str, updated_name: str, description: str):
    finish(gs.update_team(name, new_name=updated_name, description=description))


@team.command('remove')
@click.option('-n', '--name', required=True)
@click.pass_obj
def team_remove(gs: GitSecrets, name: str):
    finish(gs.remove_team(name))


@team.group('members')
def team_members():
    """Add and remove team members."""


@team_members.command('list')
@click.option('-n', '--name', required=True)
@click.pass_obj
def team_members_list(gs: GitSecrets, name: str):
    result = gs.team_members(name)
    if result.success:
        for u in result.payload:
            click.echo(u.email)
    else:
        finish(result)


@team_members.command('add')
@click.option('-t', '--team', 'teams', multiple=True, required=True)
@click.option('-u', '--user', 'users', multiple=True, required=True)
@click.pass_obj
def team_members_add(gs: GitSecrets, teams: typing.Sequence[str], users: typing.Sequence[str]):
    finish(gs.add_team_users(teams, users))


@team_members.command('remove')
@click.option('-t', '--team', 'teams', multiple=True, required=True)
@click.option('-u', '--user', 'users', multiple=True, required=True)
@click.pass_obj
def team_members_remove(gs: GitSecrets, teams: typing.Sequence[str], users: typing.Sequence[str]):
    finish(gs.remove_team_users(teams, users))


@main.group()
def collection():
    """Add, update and remove collections of files."""


@collection.command('list')
@click.pass_obj
def collection_list(gs: GitSecrets):
    for c in gs.collections():
        click.echo(f"{c.name}\t{c.description or ''}")


@collection.command('add')
@click.option('-n', '--name', required=True)
@click.option('-d', '--description', default=None)
@click.pass_obj
def collection_add(gs: GitSecrets, name: str, description: str):
    finish(gs.add_collection(name, description=description))


@collection.command('update')
@click.option('-n', '--name', required=True)
@click.option('-u', '--updated-name', default=None)
@click.option('-d', '--description', default=None)
@click.pass_obj
def collection_update(gs: GitSecrets, name: str, updated_name: str, description: str):
    finish(gs.update_collection(name, new_name=updated_name, description=description))


@collection.command('remove')
@click.option('-n', '--name', required=True)
@click.pass_obj
def collection_remove(gs: GitSecrets, name: str):
    finish(gs.remove_collection(name))


@collection.group('files')
def collection_files():
    """Add and remove files in collections."""


@collection_files.command('add')
@click.option('-c', '--collection', 'collections', multiple=True, required=True)
@click.option('-f', '--file', 'files', type=PathType(), multiple=True, required=True)
@click.pass_obj
def collection_files_add(gs: GitSecrets, collections: typing.Sequence[str], files: typing.Sequence[pathlib.Path]):
    finish(gs.add_collection_files(collections, repository_paths(gs, files)))


@collection_files.command('remove')
@click.option('-c', '--collection', 'collections', multiple=True, required=True)
@click.option('-f', '--file', 'files', type=PathType(), multiple=True, required=True)
@click.pass_obj
def collection_files_remove(gs: GitSecrets, collections: typing.Sequence[str], files: typing.Sequence[pathlib.Path]):
    finish(gs.remove_collection_files(collections, repository_paths(gs, files)))


@main.group('file')
def file_():
    """Track and untrack secret files."""


@file_.command('list')
@click.pass_obj
def file_list(gs: GitSecrets):
    for f in gs.files():
        click.echo(f.path)


@file_.command('add')
@click.argument('files', type=PathType(dir_okay=False), required=True, nargs=-1)
@click.pass_obj
def file_add(gs: GitSecrets, files: typing.Sequence[pathlib.Path]):
    """Track files and make sure git ignores their plaintext."""
    finish_all([gs.add_file(path) for path in repository_paths(gs, files)])


@file_.command('remove')
@click.argument('files', type=PathType(dir_okay=False), required=True, nargs=-1)
@click.pass_obj
def file_remove(gs: GitSecrets, files: typing.Sequence[pathlib.Path]):
    finish_all([gs.remove_file(path) for path in repository_paths(gs, files)])


@file_.command('update')
@click.option('-p', '--path', type=PathType(dir_okay=False), required=True, help="Current file path.")
@click.option('-u', '--updated-path', type=PathType(dir_okay=False), required=True, help="New file path.")
@click.pass_obj
def file_update(gs: GitSecrets, path: pathlib.Path, updated_path: pathlib.Path):
    """Move a tracked file, keeping its access and its encrypted file."""
    finish(gs.update_file(relative_path(gs.root, path), relative_path(gs.root, updated_path)))


@file_.command('status')
@click.pass_obj
def file_status(gs: GitSecrets):
    """Show which files changed since they were last encrypted."""
    for f, staleness in gs.status():
        click.secho(f"{f.path}: {staleness}", fg='yellow' if staleness.stale else 'green')


@main.group()
def access():
    """Grant and revoke access to files and collections."""


def access_options(command):
    command = click.option('-t', '--team', 'teams', multiple=True)(command)
    command = click.option('-u', '--user', 'users', multiple=True)(command)
    command = click.option('-c', '--collection', 'collections', multiple=True)(command)
    command = click.option('-f', '--file', 'files', type=PathType(), multiple=True)(command)
    return command


@access.command('add')
@access_options
@click.pass_obj
def access_add(gs: GitSecrets, files, collections, users, teams):
    finish(gs.add_access(
        files=repository_paths(gs, files),
        collections=collections,
        users=users,
        teams=teams))


@access.command('remove')
@access_options
@click.pass_obj
def access_remove(gs: GitSecrets, files, collections, users, teams):
    finish(gs.remove_access(
        files=repository_paths(gs, files),
        collections=collections,
        users=users,
        teams=teams))


@access.command('show')
@click.option('-f', '--file', 'file', type=PathType(), default=None)
@click.option('-u', '--user', 'email', default=None)
@click.pass_obj
def access_show(gs: GitSecrets, file: typing.Optional[pathlib.Path], email: typing.Optional[str]):
    """List who can read a file, or which files a user can read."""
    if bool(file) == bool(email):
        raise click.UsageError("Pass exactly one of --file or --user")
    if file:
        result = gs.file_access(relative_path(gs.root, file))
        lines = [u.email for u in result.payload] if result.success else []
    else:
        result = gs.user_access(email)
        lines = [f.path for f in result.payload] if result.success else []
    if not result.success:
        finish(result)
    for line in lines:
        click.echo(line)


@main.command()
@files_argument
@email_option
@click.option(
    '-m', '--modified',
    default=False,
    is_flag=True,
    help="Only encrypt files that changed since they were last encrypted.")
@passphrase_option
@click.pass_obj
def encrypt(
        gs: GitSecrets,
        files: typing.Sequence[pathlib.Path],
        email: typing.Optional[str],
        modified: bool,
        passphrase: str):
    """
    Encrypt plaintext files for everyone with access to them.

    If no paths are provided, encrypts every file the user can read.
    """
    email = acting_email(gs, email)
    if not files:
        result = gs.encrypt_all(email, passphrase, modified_only=modified)
        if result.success:
            echo_report(result.payload)
        return finish(result)

    echo_report(Report({
        path: gs.encrypt(path, email, passphrase, modified_only=modified)
        for path in repository_paths(gs, files)}))


@main.command()
@files_argument
@email_option
@passphrase_option
@click.pass_obj
def decrypt(
        gs: GitSecrets,
        files: typing.Sequence[pathlib.Path],
        email: typing.Optional[str],
        passphrase: str):
    """
    Decrypt encrypted files next to their plaintext path.

    If no paths are provided, decrypts every file the user can read.
    """
    email = acting_email(gs, email)
    if not files:
        result = gs.decrypt_all(email, passphrase)
        if result.success:
            echo_report(result.payload)
        return finish(result)

    echo_report(Report({
        path: gs.decrypt(path, email, passphrase)
        for path in repository_paths(gs, files)}))


@main.group('settings')
def settings_():
    """Show and change settings."""


local_option = click.option(
    '-l', '--local',
    default=False,
    is_flag=True,
    help="Use the settings of this clone instead of the shared ones.")


@settings_.command('list')
@local_option
@click.pass_obj
def settings_list(gs: GitSecrets, local: bool):
    for key, value in gs.list_settings(local=local).items():
        click.echo(f"{key}\t{'' if value is None else value}")


@settings_.command('get')
@click.option('-k', '--key', required=True)
@local_option
@click.pass_obj
def settings_get(gs: GitSecrets, key: str, local: bool):
    result = gs.get_setting(key, local=local)
    if not result.success:
        finish(result)
    click.echo('' if result.payload is None else result.payload)


@settings_.command('set')
@click.option('-k', '--key', required=True)
@click.option('-d', '--data', required=True, help="New value. An empty value restores the default.")
@local_option
@click.pass_obj
def settings_set(gs: GitSecrets, key: str, data: str, local: bool):
    """
    Change a setting.

    \b
    Shared settings, committed to git:
        missing_keys  'exclude' or 'error' for recipients without a public key
        workers       number of files processed at once
    Local settings (--local):
        email         default acting user
    """
    finish(gs.set_setting(key, data, local=local))
