"""Interactive commands: shell, rebase."""

from __future__ import annotations

import click

from ..interactive import shell_operation
from ..session import SyncSession
from ._helpers import (
    main,
    _mirrors,
    _open_provenance,
    _repo_option,
    _shell_option,
    _stage,
    _status,
)


def _load_record(ctx, path):
    store = _open_provenance(ctx)
    with _stage("failed to read .gitcopies"):
        record = store.get(path)
    return store, record


# ---------------------------------------------------------------------------
# shell
# ---------------------------------------------------------------------------

@main.command()
@_repo_option
@click.argument("path", type=click.Path(exists=True, file_okay=False))
@_shell_option
@click.pass_context
def shell(ctx, path, shell_prog):
    """Open a shell showing how PATH diverges from its upstream.

    The shell starts in a temporary repository whose only commit is the
    recorded upstream content; PATH's current content sits on top of it
    as uncommitted changes, so 'git diff' and 'git status' show your
    local edits.  When the shell exits with status 0 the temporary work
    tree is copied back onto PATH; exit non-zero to discard.
    """
    store, record = _load_record(ctx, path)
    session = SyncSession(_mirrors(ctx))
    with _stage("failed to run shell"):
        session.run(record.url, record.rev, record.upstream_path,
                    store.root / record.dest, shell_operation(shell_prog))
    _status(ctx, f"Updated {record.dest}")


# ---------------------------------------------------------------------------
# rebase
# ---------------------------------------------------------------------------

@main.command()
@_repo_option
@click.argument("path", type=click.Path(exists=True, file_okay=False))
@click.argument("new_rev", metavar="NEW_REV")
@_shell_option
@click.pass_context
def rebase(ctx, path, new_rev, shell_prog):
    """Rebase local edits in PATH onto revision NEW_REV of its upstream.

    Local edits are committed in a temporary repository and rebased onto
    the upstream content at NEW_REV, then a shell is opened there.  If
    the rebase stopped on conflicts, resolve them and run
    'git rebase --continue' before leaving the shell.  On a clean exit
    the result is copied back onto PATH and .gitcopies records NEW_REV.
    """
    store, record = _load_record(ctx, path)
    local = store.root / record.dest
    session = SyncSession(_mirrors(ctx))
    with _stage("failed to rebase"):
        result = session.rebase(record.url, record.rev, record.upstream_path,
                                local, new_rev, shell_operation(shell_prog))
    with _stage("failed to register to .gitcopies"):
        store.register(local, record.url, result.rev, record.upstream_path)
    _status(ctx, f"Rebased {record.dest} onto {result.rev}")
