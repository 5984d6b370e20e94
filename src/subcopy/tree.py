"""Revision resolution and subtree extraction for subcopy.

Resolves human revision expressions to immutable ids, locates a path in
the resolved tree and materializes it on disk.  Also builds the trees a
scratch repository is seeded from.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import stat
from typing import Iterator, NamedTuple

from dulwich.index import commit_tree
from dulwich.objects import S_ISGITLINK, Blob, Commit, Tag, Tree
from dulwich.objectspec import AmbiguousShortId, parse_object, parse_ref, scan_for_short_id
from dulwich.refs import check_ref_format

from .exceptions import NonUtf8NameError, PathNotFoundError, RevisionNotFoundError

logger = logging.getLogger(__name__)

GIT_FILEMODE_TREE = 0o040000
GIT_FILEMODE_BLOB = 0o100644
GIT_FILEMODE_BLOB_EXECUTABLE = 0o100755
GIT_FILEMODE_LINK = 0o120000

_HEX_ID = re.compile(rb"[0-9a-fA-F]{4,40}")
_ANCESTRY = re.compile(rb"[~^]")


class ResolvedRevision(NamedTuple):
    """A revision pinned to immutable object ids.

    *commit* is ``None`` when the revision named a tree directly.
    """

    commit: bytes | None
    tree: bytes

    @property
    def id(self) -> str:
        """Hex id to record: the commit when there is one, else the tree."""
        return (self.commit or self.tree).decode("ascii")


class TreeItem(NamedTuple):
    """An entry yielded by :func:`iter_tree`."""

    path: bytes  # relative to the walk root, "/"-separated
    mode: int
    sha: bytes


# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

def _is_root_path(path: str | os.PathLike[str]) -> bool:
    """Return True if path names the whole tree ("", "." or only slashes)."""
    p = os.fspath(path)
    if os.name == "nt":
        p = p.replace("\\", "/")
    return p.strip("/") in ("", ".")


def _normalize_path(path: str | os.PathLike[str]) -> str:
    """Normalize an upstream path: strip slashes, reject bad segments."""
    path = os.fspath(path)
    if os.name == "nt":
        path = path.replace("\\", "/")
    path = path.strip("/")
    if not path:
        raise ValueError("Path must not be empty")
    segments = path.split("/")
    for seg in segments:
        if not seg:
            raise ValueError(f"Empty segment in path: {path!r}")
        if seg in (".", ".."):
            raise ValueError(f"Invalid path segment: {seg!r}")
    return "/".join(segments)


def _decode_name(raw: bytes) -> str:
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise NonUtf8NameError(f"entry name {raw!r} is not valid UTF-8") from exc


# ---------------------------------------------------------------------------
# Revisions
# ---------------------------------------------------------------------------

def _split_peel(expr: bytes) -> tuple[bytes, bytes | None]:
    """Split a trailing ``^{type}`` (or ``^{}``) off *expr*."""
    if expr.endswith(b"}"):
        base, sep, kind = expr[:-1].rpartition(b"^{")
        if sep and base:
            return base, kind
    return expr, None


def _base_id(repo, name: bytes, rev: str) -> bytes:
    """Return the object id *name* refers to: a ref first, then an object id."""
    if name == b"HEAD" or check_ref_format(b"refs/heads/" + name):
        try:
            return repo.refs[parse_ref(repo.refs, name)]
        except KeyError:
            pass

    if _HEX_ID.fullmatch(name):
        name = name.lower()
        if len(name) == 40 and name in repo.object_store:
            return name
        try:
            return scan_for_short_id(repo.object_store, name, Commit).id
        except AmbiguousShortId as exc:
            raise RevisionNotFoundError(f"short object id {rev!r} is ambiguous") from exc
        except KeyError:
            pass
    raise RevisionNotFoundError(f"unknown revision {rev!r}")


def _peel(repo, obj, kind: bytes | None, rev: str):
    """Dereference tags, then commits too when a tree was asked for."""
    while isinstance(obj, Tag):
        obj = repo[obj.object[1]]
    if kind == b"tree" and isinstance(obj, Commit):
        obj = repo[obj.tree]
    if kind and kind != b"object" and obj.type_name != kind:
        raise RevisionNotFoundError(
            f"revision {rev!r} names a {obj.type_name.decode()}, not a {kind.decode()}"
        )
    return obj


def _parse(repo, rev: str):
    expr, kind = _split_peel(rev.encode())
    match = _ANCESTRY.search(expr)
    base, steps = (expr, b"") if match is None else (expr[:match.start()], expr[match.start():])
    if not base or b":" in steps:
        raise RevisionNotFoundError(f"unknown revision {rev!r}")

    obj_id = _base_id(repo, base, rev)
    try:
        obj = parse_object(repo, obj_id + steps) if steps else repo[obj_id]
    except (KeyError, ValueError) as exc:
        raise RevisionNotFoundError(f"cannot resolve {rev!r}: {exc}") from exc
    return _peel(repo, obj, kind, rev)


def resolve_revision(repo, rev: str) -> ResolvedRevision:
    """Resolve *rev* in *repo* to a commit and its tree.

    *rev* is a git revision expression: a branch, tag, ref name,
    ``HEAD``, a full or abbreviated commit id, optionally followed by
    ``~N``/``^N`` ancestry steps and a ``^{commit}``/``^{tree}`` peel.
    Annotated tags are peeled.  A tree yields a revision without a
    commit.
    """
    obj = _parse(repo, rev)
    if isinstance(obj, Commit):
        return ResolvedRevision(obj.id, obj.tree)
    if isinstance(obj, Tree):
        return ResolvedRevision(None, obj.id)
    raise RevisionNotFoundError(f"revision {rev!r} is neither a commit nor a tree")


# ---------------------------------------------------------------------------
# Tree lookup and traversal
# ---------------------------------------------------------------------------

def entry_at_path(object_store, tree_id: bytes, path: str | os.PathLike[str]) -> tuple[int, bytes]:
    """Return ``(mode, sha)`` of the entry at *path* below *tree_id*.

    The root path yields the tree itself.

    Raises:
        PathNotFoundError: No entry exists at *path*.
    """
    if _is_root_path(path):
        return GIT_FILEMODE_TREE, tree_id
    path = _normalize_path(path)
    mode, sha = GIT_FILEMODE_TREE, tree_id
    for seg in path.split("/"):
        if not stat.S_ISDIR(mode):
            raise PathNotFoundError(f"path {path!r} not found in tree {tree_id.decode()}")
        try:
            mode, sha = object_store[sha][seg.encode()]
        except KeyError:
            raise PathNotFoundError(
                f"path {path!r} not found in tree {tree_id.decode()}"
            ) from None
    return mode, sha


def iter_tree(object_store, tree_id: bytes) -> Iterator[TreeItem]:
    """Yield every entry below *tree_id* in pre-order.

    A directory entry is yielded before its contents.  The walk keeps an
    explicit stack of entry iterators, so a consumer can stop at any
    point by no longer iterating.
    """
    stack = [(b"", iter(object_store[tree_id].iteritems()))]
    while stack:
        base, entries = stack[-1]
        entry = next(entries, None)
        if entry is None:
            stack.pop()
            continue
        path = base + b"/" + entry.path if base else entry.path
        yield TreeItem(path, entry.mode, entry.sha)
        if stat.S_ISDIR(entry.mode):
            stack.append((path, iter(object_store[entry.sha].iteritems())))


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------

def _clear_for_file(target: str) -> None:
    """Remove whatever occupies *target* so a file or link can be created."""
    if os.path.islink(target):
        os.unlink(target)
    elif os.path.isdir(target):
        shutil.rmtree(target)
    elif os.path.exists(target):
        os.unlink(target)


def _write_entry(object_store, target: str, mode: int, sha: bytes) -> None:
    if stat.S_ISDIR(mode):
        if os.path.islink(target) or (os.path.lexists(target) and not os.path.isdir(target)):
            os.unlink(target)
        os.makedirs(target, exist_ok=True)
        return
    if S_ISGITLINK(mode):
        logger.debug("Skipping submodule %s", target)
        return

    data = object_store[sha].data
    os.makedirs(os.path.dirname(target), exist_ok=True)
    _clear_for_file(target)
    if stat.S_ISLNK(mode):
        os.symlink(os.fsdecode(data), target)
        return
    with open(target, "wb") as f:
        f.write(data)
    if mode & 0o111:
        os.chmod(target, 0o755)


def extract(repo, revision: str, upstream_path: str | os.PathLike[str],
            dest_dir: str | os.PathLike[str]) -> ResolvedRevision:
    """Materialize *upstream_path* at *revision* of *repo* under *dest_dir*.

    A file is written as ``dest_dir/<its name>``.  A directory has its
    contents written below *dest_dir* (the directory itself is not
    recreated).  Executable bits and symlinks are preserved; submodule
    links are skipped.

    Extraction stops at the first failing entry and raises; entries
    written before the failure stay on disk.

    Returns:
        The :class:`ResolvedRevision` that was extracted.

    Raises:
        RevisionNotFoundError: *revision* does not resolve.
        PathNotFoundError: *upstream_path* is absent (or a submodule).
        NonUtf8NameError: An entry name is not UTF-8.
        OSError: Writing to *dest_dir* failed.
    """
    resolved = resolve_revision(repo, revision)
    store = repo.object_store
    mode, sha = entry_at_path(store, resolved.tree, upstream_path)
    dest = os.fspath(dest_dir)

    if stat.S_ISDIR(mode):
        for item in iter_tree(store, sha):
            rel = _decode_name(item.path)
            _write_entry(store, os.path.join(dest, *rel.split("/")), item.mode, item.sha)
    elif S_ISGITLINK(mode):
        raise PathNotFoundError(f"path {os.fspath(upstream_path)!r} is a submodule")
    else:
        name = _normalize_path(upstream_path).rsplit("/", 1)[-1]
        _write_entry(store, os.path.join(dest, name), mode, sha)
    return resolved


# ---------------------------------------------------------------------------
# Tree building
# ---------------------------------------------------------------------------

def _without_gitlinks(object_store, tree_id: bytes) -> bytes:
    """Return *tree_id* rebuilt without submodule entries (unchanged if none)."""
    tree = object_store[tree_id]
    new = Tree()
    changed = False
    for entry in tree.iteritems():
        if S_ISGITLINK(entry.mode):
            changed = True
            continue
        sha = entry.sha
        if stat.S_ISDIR(entry.mode):
            sha = _without_gitlinks(object_store, entry.sha)
            changed = changed or sha != entry.sha
        new.add(entry.path, entry.mode, sha)
    if not changed:
        return tree_id
    object_store.add_object(new)
    return new.id


def pristine_tree(object_store, tree_id: bytes, upstream_path: str | os.PathLike[str]) -> bytes:
    """Return a root tree holding exactly what :func:`extract` would write.

    For a directory this is the subtree itself (minus submodules); for a
    single file it is a new tree with that file as its only entry.
    New objects are added to *object_store*.
    """
    mode, sha = entry_at_path(object_store, tree_id, upstream_path)
    if stat.S_ISDIR(mode):
        return _without_gitlinks(object_store, sha)
    if S_ISGITLINK(mode):
        raise PathNotFoundError(f"path {os.fspath(upstream_path)!r} is a submodule")
    tree = Tree()
    tree.add(_normalize_path(upstream_path).rsplit("/", 1)[-1].encode(), mode, sha)
    object_store.add_object(tree)
    return tree.id


def _mode_from_disk(st: os.stat_result) -> int:
    if stat.S_ISLNK(st.st_mode):
        return GIT_FILEMODE_LINK
    if st.st_mode & 0o111:
        return GIT_FILEMODE_BLOB_EXECUTABLE
    return GIT_FILEMODE_BLOB


def tree_from_directory(object_store, root: str | os.PathLike[str], *,
                        skip: tuple[str, ...] = (".git",)) -> bytes:
    """Store every file below *root* and return the resulting tree id.

    Top-level names in *skip* are ignored.  Symlinks (to files or
    directories) are stored as links, never followed.
    """
    root = os.fspath(root)
    blobs = []
    for dirpath, dirnames, filenames in os.walk(root):
        if dirpath == root:
            dirnames[:] = [d for d in dirnames if d not in skip]
            filenames = [f for f in filenames if f not in skip]
        linked = [d for d in dirnames if os.path.islink(os.path.join(dirpath, d))]
        dirnames[:] = [d for d in dirnames if d not in linked]
        for name in sorted(filenames + linked):
            full = os.path.join(dirpath, name)
            st = os.lstat(full)
            mode = _mode_from_disk(st)
            if stat.S_ISLNK(st.st_mode):
                blob = Blob.from_string(os.fsencode(os.readlink(full)))
            else:
                with open(full, "rb") as f:
                    blob = Blob.from_string(f.read())
            object_store.add_object(blob)
            rel = os.path.relpath(full, root).replace(os.sep, "/")
            blobs.append((os.fsencode(rel), blob.id, mode))
    return commit_tree(object_store, blobs)
