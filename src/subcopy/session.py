"""Scratch-repository sessions over a vendored directory.

A session builds a throwaway repository whose single commit is the
pristine upstream content, lays the local copy over its work tree and
hands the result to an operation (usually an interactive shell).  Only
when the operation succeeds is the work tree copied back onto the local
copy; on failure the local copy is left exactly as it was.  The scratch
directory is removed on every exit path except abnormal termination of
the process.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import tempfile
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Generic, Iterator, TypeVar

from dulwich.objects import Commit
from dulwich.repo import Repo as _DRepo

from .config import SIGNATURE_EMAIL, SIGNATURE_NAME
from .exceptions import SubprocessError
from .mirror import MirrorCache
from .tree import (
    ResolvedRevision,
    _clear_for_file,
    pristine_tree,
    resolve_revision,
    tree_from_directory,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

UPSTREAM_BRANCH = b"refs/heads/upstream"
_SKIP = (".git",)


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

@dataclass
class Scratch:
    """Handle on a session's scratch repository, passed to the operation.

    Attributes:
        root: Work tree of the scratch repository.
        repo: The scratch repository itself.
        mirror: The upstream mirror the scratch repository borrows objects from.
        url: Upstream URL.
        upstream_path: Path inside the upstream tree the session was seeded with.
        revision: Resolved revision of the pristine commit.
        pristine: Id of the pristine commit.
    """
    root: Path
    repo: _DRepo
    mirror: _DRepo
    url: str
    upstream_path: str
    revision: ResolvedRevision
    pristine: bytes


@dataclass
class RebaseResult(Generic[T]):
    """Outcome of :meth:`SyncSession.rebase`.

    Attributes:
        rev: Resolved id of the revision the local changes now sit on.
        value: Whatever the interactive operation returned.
    """
    rev: str
    value: T


# ---------------------------------------------------------------------------
# Scratch repository helpers
# ---------------------------------------------------------------------------

def _identity() -> bytes:
    return f"{SIGNATURE_NAME} <{SIGNATURE_EMAIL}>".encode()


def _create_commit(repo: _DRepo, tree_id: bytes, parents: list[bytes], message: str) -> bytes:
    c = Commit()
    c.tree = tree_id
    c.parents = parents
    c.author = c.committer = _identity()
    c.author_time = c.commit_time = int(time.time())
    c.author_timezone = c.commit_timezone = 0
    msg = message.encode()
    if not msg.endswith(b"\n"):
        msg += b"\n"
    c.message = msg
    c.encoding = b"UTF-8"
    repo.object_store.add_object(c)
    return c.id


def _init_scratch(root: Path, mirror: _DRepo) -> _DRepo:
    """Create a repository at *root* that can read every object of *mirror*."""
    repo = _DRepo.init(str(root))
    repo.object_store.add_alternate_path(mirror.object_store.path)
    config = repo.get_config()
    config.set((b"user",), b"name", SIGNATURE_NAME.encode())
    config.set((b"user",), b"email", SIGNATURE_EMAIL.encode())
    config.write_to_path()
    return repo


def _describe_upstream(url: str, upstream_path: str, revision: ResolvedRevision) -> str:
    return f"Upstream {url}:{upstream_path or '.'} at {revision.id}"


def _checkout(repo: _DRepo, tree_id: bytes) -> None:
    """Make the index and work tree of *repo* match *tree_id*."""
    repo.get_worktree().reset_index(tree_id)


def _rebase_in_progress(repo: _DRepo) -> bool:
    control = repo.controldir()
    return any(
        os.path.isdir(os.path.join(control, name))
        for name in ("rebase-merge", "rebase-apply")
    )


# ---------------------------------------------------------------------------
# Copy-in / copy-out
# ---------------------------------------------------------------------------

def _copy_entry(src: str, dst: str) -> None:
    logger.debug("%s -> %s", src, dst)
    _clear_for_file(dst)
    shutil.copy2(src, dst, follow_symlinks=False)


def _remove_missing(src: Path, dst: Path) -> None:
    """Delete everything below *dst* that has no counterpart below *src*.

    A top-level ``.git`` in *dst* is kept.  Entries present on both
    sides are left for :func:`_copy_tree` to overwrite.
    """
    src_root, dst_root = os.fspath(src), os.fspath(dst)
    for dirpath, dirnames, filenames in os.walk(dst_root):
        rel = os.path.relpath(dirpath, dst_root)
        if rel == os.curdir:
            counterpart_dir = src_root
            dirnames[:] = [d for d in dirnames if d not in _SKIP]
            filenames = [f for f in filenames if f not in _SKIP]
        else:
            counterpart_dir = os.path.join(src_root, rel)

        for name in filenames:
            if not os.path.lexists(os.path.join(counterpart_dir, name)):
                logger.debug("Removing %s", os.path.join(dirpath, name))
                os.unlink(os.path.join(dirpath, name))

        descend = []
        for name in dirnames:
            full = os.path.join(dirpath, name)
            counterpart = os.path.join(counterpart_dir, name)
            if not os.path.lexists(counterpart):
                logger.debug("Removing %s", full)
                if os.path.islink(full):
                    os.unlink(full)
                else:
                    shutil.rmtree(full)
            elif (not os.path.islink(full) and not os.path.islink(counterpart)
                  and os.path.isdir(counterpart)):
                descend.append(name)
        dirnames[:] = descend


def _copy_tree(src: Path, dst: Path) -> None:
    """Copy every file and directory below *src* onto *dst*, overwriting.

    A top-level ``.git`` is never copied.  Symlinks are copied as links,
    never followed; nothing already in *dst* is deleted unless it has to
    make way for an entry of a different type.
    """
    src_root, dst_root = os.fspath(src), os.fspath(dst)
    for dirpath, dirnames, filenames in os.walk(src_root):
        rel = os.path.relpath(dirpath, src_root)
        if rel == os.curdir:
            target_dir = dst_root
            dirnames[:] = [d for d in dirnames if d not in _SKIP]
            filenames = [f for f in filenames if f not in _SKIP]
        else:
            target_dir = os.path.join(dst_root, rel)
            if os.path.islink(target_dir) or (
                os.path.exists(target_dir) and not os.path.isdir(target_dir)
            ):
                os.unlink(target_dir)
        os.makedirs(target_dir, exist_ok=True)

        linked = [d for d in dirnames if os.path.islink(os.path.join(dirpath, d))]
        dirnames[:] = [d for d in dirnames if d not in linked]
        for name in filenames + linked:
            _copy_entry(os.path.join(dirpath, name), os.path.join(target_dir, name))


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------

class SyncSession:
    """Run operations on upstream content overlaid with local edits.

    Args:
        mirrors: Cache that provides the upstream repositories.
        git: ``git`` executable used to drive rebases.
        tmp_dir: Parent directory for scratch repositories (system
            default when ``None``).
    """

    def __init__(self, mirrors: MirrorCache, *, git: str = "git",
                 tmp_dir: str | os.PathLike[str] | None = None):
        self._mirrors = mirrors
        self._git = git
        self._tmp_dir = tmp_dir

    def __repr__(self) -> str:
        return f"SyncSession({self._mirrors!r})"

    @contextmanager
    def _open(self, url: str, rev: str, upstream_path: str,
              local_path: Path) -> Iterator[Scratch]:
        if not local_path.is_dir():
            raise NotADirectoryError(f"local copy {local_path} is not a directory")

        with tempfile.TemporaryDirectory(prefix="git-subcopy-", dir=self._tmp_dir) as tmp:
            root = Path(tmp)
            logger.info("Created scratch repository %s", root)
            mirror = self._mirrors.fetch(url)
            try:
                revision = resolve_revision(mirror, rev)
                repo = _init_scratch(root, mirror)
                try:
                    tree_id = pristine_tree(repo.object_store, revision.tree, upstream_path)
                    pristine = _create_commit(
                        repo, tree_id, [], _describe_upstream(url, upstream_path, revision),
                    )
                    repo.refs[b"HEAD"] = pristine
                    _checkout(repo, tree_id)

                    _remove_missing(local_path, root)
                    _copy_tree(local_path, root)
                    yield Scratch(
                        root=root, repo=repo, mirror=mirror, url=url,
                        upstream_path=upstream_path, revision=revision,
                        pristine=pristine,
                    )
                finally:
                    repo.close()
            finally:
                mirror.close()
            logger.info("Removing scratch repository %s", root)

    def run(self, url: str, rev: str, upstream_path: str,
            local_path: str | os.PathLike[str],
            operation: Callable[[Scratch], T]) -> T:
        """Run *operation* on a scratch view of *local_path* and return its value.

        The scratch repository's sole commit holds *upstream_path* of *url*
        at *rev*; its work tree holds exactly the current content of
        *local_path*, so local edits and deletions show as uncommitted
        changes.  If *operation* returns, the work tree is copied back
        onto *local_path*.  If anything raises, *local_path* is untouched.
        """
        local = Path(local_path)
        with self._open(url, rev, upstream_path, local) as scratch:
            value = operation(scratch)
            _copy_tree(scratch.root, local)
        return value

    def rebase(self, url: str, rev: str, upstream_path: str,
               local_path: str | os.PathLike[str], new_rev: str,
               operation: Callable[[Scratch], T]) -> RebaseResult[T]:
        """Rebase the local changes in *local_path* onto *new_rev* of *url*.

        The overlay is committed on top of the pristine commit and a
        ``git rebase`` onto the upstream content at *new_rev* is started.
        Conflicts stay in the work tree for *operation* (typically a
        shell) to resolve with git's own ``rebase --continue``.  The
        session fails, copying nothing back, if the rebase is still in
        progress when *operation* returns.
        """
        def rebase_then(scratch: Scratch) -> RebaseResult[T]:
            target = self._start_rebase(scratch, new_rev)
            value = operation(scratch)
            if _rebase_in_progress(scratch.repo):
                raise SubprocessError("rebase was not completed")
            return RebaseResult(rev=target.id, value=value)

        return self.run(url, rev, upstream_path, local_path, rebase_then)

    def _start_rebase(self, scratch: Scratch, new_rev: str) -> ResolvedRevision:
        repo = scratch.repo
        target = resolve_revision(scratch.mirror, new_rev)

        local_tree = tree_from_directory(repo.object_store, scratch.root)
        local = _create_commit(repo, local_tree, [scratch.pristine], "Local changes")
        repo.refs[b"HEAD"] = local
        _checkout(repo, local_tree)

        upstream_tree = pristine_tree(repo.object_store, target.tree, scratch.upstream_path)
        upstream = _create_commit(
            repo, upstream_tree, [scratch.pristine],
            _describe_upstream(scratch.url, scratch.upstream_path, target),
        )
        repo.refs[UPSTREAM_BRANCH] = upstream

        logger.info("Rebasing local changes onto %s", target.id)
        try:
            proc = subprocess.run([self._git, "rebase", "upstream"], cwd=scratch.root)
        except OSError as exc:
            raise SubprocessError(f"failed to start {self._git}: {exc}") from exc
        if proc.returncode != 0:
            if not _rebase_in_progress(repo):
                raise SubprocessError("git rebase failed", returncode=proc.returncode)
            logger.warning(
                "Rebase stopped on conflicts; resolve them and run 'git rebase --continue'"
            )
        return target
