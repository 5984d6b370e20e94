"""Shared helpers, option decorators, and the main CLI group."""

from __future__ import annotations

import logging
from contextlib import contextmanager

import click

from ..config import default_cache_dir, default_shell
from ..exceptions import SubcopyError
from ..mirror import MirrorCache
from ..provenance import ProvenanceStore

UNKNOWN = "<unknown>"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _describe(exc: BaseException | None) -> str:
    """Join the messages of *exc* and its causes with ': '."""
    parts: list[str] = []
    while exc is not None:
        text = str(exc) or type(exc).__name__
        if not parts or text not in parts[-1]:
            parts.append(text)
        exc = exc.__cause__
    return ": ".join(parts)


@contextmanager
def _stage(message: str):
    """Turn library errors raised in the block into a ClickException.

    The resulting message is *message* followed by the error's cause chain.
    """
    try:
        yield
    except (SubcopyError, OSError, ValueError) as exc:
        raise click.ClickException(f"{message}: {_describe(exc)}") from exc


def _status(ctx, msg):
    """Emit a status message to stderr when verbose mode (-v) is on."""
    if ctx.obj.get("verbose"):
        click.echo(msg, err=True)


def _or_unknown(value: str | None) -> str:
    return UNKNOWN if value is None else value


def _store_repo(ctx, param, value):
    """Click callback: store --repo value in the context."""
    ctx.ensure_object(dict)
    if value is not None:
        ctx.obj["repo_path"] = value
    return value


def _repo_option(f):
    """Shared --repo/-r option for commands that read or write .gitcopies."""
    return click.option(
        "--repo", "-r", type=click.Path(file_okay=False), envvar="SUBCOPY_REPO",
        help="Work tree of the repository holding .gitcopies "
             "(default: the repository enclosing the current directory).",
        expose_value=False, callback=_store_repo, is_eager=True,
    )(f)


def _force_option(f):
    return click.option(
        "-f", "--force", is_flag=True, default=False,
        help="Overwrite an existing destination directory, creating parents as needed.",
    )(f)


def _shell_option(f):
    return click.option(
        "--shell", "shell_prog", default=default_shell, show_default="$SHELL or /bin/sh",
        help="Program to run inside the scratch repository.",
    )(f)


def _open_provenance(ctx) -> ProvenanceStore:
    """Return the provenance store for --repo, or the repository around the cwd."""
    with _stage("failed to open .gitcopies"):
        repo_path = ctx.obj.get("repo_path")
        if repo_path:
            return ProvenanceStore(repo_path)
        return ProvenanceStore.discover(".")


def _mirrors(ctx) -> MirrorCache:
    return MirrorCache(ctx.obj["cache_dir"])


# ---------------------------------------------------------------------------
# Main group
# ---------------------------------------------------------------------------

@click.group()
@click.option("--cache-dir", type=click.Path(file_okay=False), envvar="SUBCOPY_CACHE_DIR",
              default=None,
              help="Directory holding upstream mirrors (or set SUBCOPY_CACHE_DIR).")
@click.option("-v", "--verbose", is_flag=True, help="Verbose output on stderr.")
@click.pass_context
def main(ctx, cache_dir, verbose):
    """git-subcopy — vendor a subdirectory of another git repository.

    Copies a path from an upstream repository into your repository,
    remembers where it came from in .gitcopies, and later lets you
    inspect or rebase your local edits against upstream.

    \b
    Quick start:
      git subcopy add https://host/lib.git main src/util vendor/util
      git subcopy list
      git subcopy shell vendor/util
      git subcopy rebase vendor/util v2.0

    \b
    Upstream repositories are mirrored under the cache directory and
    refreshed on every use.
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["cache_dir"] = cache_dir or str(default_cache_dir())
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
