import hashlib
import logging
import os
import pathlib
import subprocess
import typing

import click
import git

log = logging.getLogger(__name__)

T = typing.TypeVar('T')


class GitSecretsException(click.ClickException):
    pass


def find_git_directory() -> typing.Optional[pathlib.Path]:
    try:
        repo = git.Repo(search_parent_directories=True)
    except git.exc.InvalidGitRepositoryError:
        return None
    return pathlib.Path(repo.working_dir)


def relative_path(root: pathlib.Path, path: typing.Union[str, pathlib.Path]) -> str:
    """
    Convert a path given relative to the working directory into a path
    relative to the repository root, using forward slashes.
    """
    absolute = (pathlib.Path.cwd() / path).resolve()
    try:
        relative = absolute.relative_to(root.resolve())
    except ValueError:
        raise GitSecretsException(f"{path} is not inside the repository {root}")
    return relative.as_posix()


def as_sequence(value: typing.Union[None, T, typing.Iterable[T]]) -> typing.Tuple[T, ...]:
    """Normalise a missing value, a single value or an iterable into a tuple."""
    if value is None:
        return ()
    if isinstance(value, (str, bytes)):
        return (value,)  # type: ignore
    if isinstance(value, typing.Iterable):
        return tuple(value)
    return (value,)


def sha256(data: typing.Union[str, bytes]) -> str:
    if isinstance(data, str):
        data = data.encode('utf-8')
    return hashlib.sha256(data).hexdigest()


def write_atomic(path: pathlib.Path, data: bytes, mode: int = 0o666) -> None:
    """
    Write to a sibling temporary file and move it into place.

    The temporary file is created with `mode` (less the umask), so the data
    is never readable with wider permissions than the final file.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f'{path.name}.tmp')
    if tmp.exists():
        tmp.unlink()
    fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_EXCL, mode)
    with os.fdopen(fd, 'wb') as f:
        f.write(data)
    os.replace(tmp, path)


def not_ignored(root: pathlib.Path, paths: typing.Iterable[str]) -> typing.Set[str]:
    """Return the repository relative paths that git does not ignore."""
    paths = set(paths)
    if not paths:
        return set()
    result = subprocess.run(
        ('git', 'check-ignore', '--stdin'),
        cwd=root,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        encoding='utf-8',
        input='\n'.join(sorted(paths)))
    # Exit status 1 means that none of the paths are ignored.
    if result.returncode not in (0, 1):
        raise GitSecretsException(
            f"git check-ignore failed in {root}: {result.stderr.strip()}")
    return paths - set(result.stdout.splitlines())


def ignore(root: pathlib.Path, paths: typing.Iterable[str]) -> typing.List[str]:
    """Append any paths git does not already ignore to the root .gitignore."""
    missing = sorted(not_ignored(root, paths))
    if missing:
        gitignore = root / '.gitignore'
        existing = gitignore.read_text() if gitignore.exists() else ''
        if existing and not existing.endswith('\n'):
            existing += '\n'
        gitignore.write_text(existing + ''.join(f'/{path}\n' for path in missing))
        log.info(f"Added {len(missing)} entries to {gitignore}")
    return missing
