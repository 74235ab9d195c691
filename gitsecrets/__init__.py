"""
gitsecrets keeps OpenPGP encrypted secrets in a git repository.

Each secret file is encrypted for every user that can read it. Access is
granted to users or teams, either for single files or for collections of
files. Plaintext files stay out of git. Only 'name.ext.secret' files,
public keys and the access database in .gitsecrets/ are committed.

Set up a repository and add yourself:

\b
    $ gitsecrets init
    $ gitsecrets user add -e alice@example.invalid -n Alice

Track a file and grant access to it:

\b
    $ gitsecrets file add config/production.env
    $ gitsecrets access add -f config/production.env -u alice@example.invalid

Grant a team access to a collection of files:

\b
    $ gitsecrets team add -n ops
    $ gitsecrets team members add -t ops -u bob@example.invalid
    $ gitsecrets collection add -n deploy
    $ gitsecrets collection files add -c deploy -f config/production.env
    $ gitsecrets access add -c deploy -t ops

Encrypt everything you can read that changed since it was last encrypted,
and decrypt it again into 'name.decrypted.ext' files:

\b
    $ gitsecrets encrypt -e alice@example.invalid --modified
    $ gitsecrets decrypt -e bob@example.invalid
"""

__version__ = '1.0.0'
