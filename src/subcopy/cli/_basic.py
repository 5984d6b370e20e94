"""Basic commands: fetch, add, list."""

from __future__ import annotations

import json
import os

import click

from ..tree import ResolvedRevision, _is_root_path, _normalize_path, extract
from ._helpers import (
    main,
    _force_option,
    _mirrors,
    _open_provenance,
    _or_unknown,
    _repo_option,
    _stage,
    _status,
)


def _copy_arguments(f):
    """Positional URL REV FROM TO shared by fetch and add."""
    f = click.argument("dest", metavar="TO", type=click.Path(file_okay=False))(f)
    f = click.argument("upstream_path", metavar="FROM")(f)
    f = click.argument("rev")(f)
    f = click.argument("url")(f)
    return f


def _clean_upstream_path(path: str) -> str:
    return "." if _is_root_path(path) else _normalize_path(path)


def _fetch_into(ctx, url: str, rev: str, upstream_path: str, dest: str,
                force: bool) -> ResolvedRevision:
    with _stage("failed to fetch git repo"):
        mirror = _mirrors(ctx).fetch(url)
    try:
        if force:
            with _stage("failed to create destination directory"):
                os.makedirs(dest, exist_ok=True)
        else:
            with _stage("failed to create *unique* destination directory"):
                os.mkdir(dest)
        with _stage("failed to extract files"):
            resolved = extract(mirror, rev, upstream_path, dest)
    finally:
        mirror.close()
    _status(ctx, f"Extracted {url}:{upstream_path} at {resolved.id} into {dest}")
    return resolved


# ---------------------------------------------------------------------------
# fetch
# ---------------------------------------------------------------------------

@main.command()
@_copy_arguments
@_force_option
@click.pass_context
def fetch(ctx, url, rev, upstream_path, dest, force):
    """Copy FROM at revision REV of the repository at URL into directory TO.

    FROM may name a file or a directory; '.' copies the whole tree.
    Nothing is recorded in .gitcopies (see 'add').
    """
    _fetch_into(ctx, url, rev, upstream_path, dest, force)


# ---------------------------------------------------------------------------
# add
# ---------------------------------------------------------------------------

@main.command()
@_repo_option
@_copy_arguments
@_force_option
@click.pass_context
def add(ctx, url, rev, upstream_path, dest, force):
    """Like 'fetch', then record the copy in .gitcopies.

    The commit id REV resolves to is recorded rather than REV itself, so
    later 'shell' and 'rebase' sessions start from exactly this content.
    """
    store = _open_provenance(ctx)
    with _stage("failed to register to .gitcopies"):
        store.relative_key(dest)
        upstream_path = _clean_upstream_path(upstream_path)
    resolved = _fetch_into(ctx, url, rev, upstream_path, dest, force)
    with _stage("failed to register to .gitcopies"):
        key = store.register(dest, url, resolved.id, upstream_path)
    _status(ctx, f"Registered {key} in {store.path}")


# ---------------------------------------------------------------------------
# list
# ---------------------------------------------------------------------------

@main.command("list")
@_repo_option
@click.option("--json", "as_json", is_flag=True, help="Print records as a JSON object.")
@click.pass_context
def list_cmd(ctx, as_json):
    """List all subcopies recorded in .gitcopies.

    Fields that were never recorded show as <unknown> (null with --json).
    """
    store = _open_provenance(ctx)
    with _stage("failed to read .gitcopies"):
        records = store.list()

    if as_json:
        click.echo(json.dumps({
            dest: {"url": r.url, "rev": r.rev, "upstreamPath": r.upstream_path}
            for dest, r in sorted(records.items())
        }, indent=2))
        return

    for dest in sorted(records):
        r = records[dest]
        click.echo(
            f"{dest} = Cloned from {_or_unknown(r.url)}:{_or_unknown(r.upstream_path)}, "
            f"revision {_or_unknown(r.rev)}"
        )
