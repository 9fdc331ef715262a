"""
git-private keeps secret files in a git repository, encrypted with age.

Each tracked file 'secret.txt' has an encrypted sibling 'secret.txt.private'
that is safe to commit, while the plaintext is excluded by .gitignore. The
list of tracked files and the list of authorized keys live in the '.gitprivate'
directory; the key list is itself encrypted to its read-write keys.

Set up a repository and authorize your key:

\b
    $ git-private init
    $ git-private keys generate --keyfile ~/.git-private.key
    $ export GIT_PRIVATE_KEYFILE=~/.git-private.key
    $ git-private keys add --id me age1...

Track and hide a file:

\b
    $ git-private add secret.txt
    $ git-private hide
    $ git add secret.txt.private .gitprivate .gitignore

Reveal the plaintext in a fresh clone:

\b
    $ git-private reveal
    $ git-private status
"""

__version__ = '1.0.0'
