"""Shared fixtures for subcopy tests."""

import os
import time
from types import SimpleNamespace

import pytest
from click.testing import CliRunner
from dulwich.index import commit_tree
from dulwich.objects import Blob, Commit, Tag
from dulwich.repo import Repo as DulwichRepo

from subcopy.mirror import MirrorCache

IDENTITY = b"Upstream Dev <dev@example.com>"

FILES_V1 = {
    "README.md": b"# upstream\n",
    "bin/run.sh": (b"#!/bin/sh\necho run\n", 0o100755),
    "lib/util/__init__.py": b"from .strings import shout\n",
    "lib/util/strings.py": b"def shout(s):\n    return s.upper()\n",
    "lib/util/sub/deep.txt": b"deep\n",
}

FILES_V2 = {
    **FILES_V1,
    "lib/util/strings.py": b"def shout(s):\n    return s.upper() + '!'\n",
    "lib/util/new.py": b"NEW = True\n",
}


def _commit_files(repo, files, parents=(), message="commit"):
    """Store *files* ({path: data or (data, mode)}) as a commit; return its id."""
    blobs = []
    for path, value in files.items():
        data, mode = value if isinstance(value, tuple) else (value, 0o100644)
        blob = Blob.from_string(data)
        repo.object_store.add_object(blob)
        blobs.append((path.encode() if isinstance(path, str) else path, blob.id, mode))
    c = Commit()
    c.tree = commit_tree(repo.object_store, blobs)
    c.parents = list(parents)
    c.author = c.committer = IDENTITY
    c.author_time = c.commit_time = int(time.time())
    c.author_timezone = c.commit_timezone = 0
    c.message = message.encode() + b"\n"
    repo.object_store.add_object(c)
    return c.id


def _snapshot(root):
    """Return {relative path: bytes or ('link', target)} for everything under *root*."""
    result = {}
    for dirpath, dirnames, filenames in os.walk(root):
        for name in filenames:
            full = os.path.join(dirpath, name)
            rel = os.path.relpath(full, root).replace(os.sep, "/")
            if os.path.islink(full):
                result[rel] = ("link", os.readlink(full))
            else:
                with open(full, "rb") as f:
                    result[rel] = f.read()
        for name in dirnames:
            full = os.path.join(dirpath, name)
            rel = os.path.relpath(full, root).replace(os.sep, "/")
            result[rel + "/"] = ("link", os.readlink(full)) if os.path.islink(full) else "dir"
    return result


@pytest.fixture
def upstream(tmp_path):
    """Bare upstream repo.

    ``v1`` (annotated) and ``v1-light`` tag the first commit (FILES_V1);
    ``main`` and HEAD point at the second (FILES_V2).
    """
    path = tmp_path / "upstream.git"
    repo = DulwichRepo.init_bare(str(path), mkdir=True)
    first = _commit_files(repo, FILES_V1, message="first")
    second = _commit_files(repo, FILES_V2, [first], message="second")
    repo.refs[b"refs/heads/main"] = second
    repo.refs.set_symbolic_ref(b"HEAD", b"refs/heads/main")

    tag = Tag()
    tag.name = b"v1"
    tag.object = (Commit, first)
    tag.tagger = IDENTITY
    tag.tag_time = int(time.time())
    tag.tag_timezone = 0
    tag.message = b"version 1\n"
    repo.object_store.add_object(tag)
    repo.refs[b"refs/tags/v1"] = tag.id
    repo.refs[b"refs/tags/v1-light"] = first
    repo.close()

    return SimpleNamespace(
        url=str(path), path=path,
        first=first.decode(), second=second.decode(), tag=tag.id.decode(),
        files_v1=FILES_V1, files_v2=FILES_V2,
    )


@pytest.fixture
def upstream_repo(upstream):
    repo = DulwichRepo(upstream.url)
    yield repo
    repo.close()


@pytest.fixture
def mirrors(tmp_path):
    return MirrorCache(tmp_path / "cache")


@pytest.fixture
def work(tmp_path):
    """A non-bare repository to vendor into; returns its work tree path."""
    path = tmp_path / "work"
    DulwichRepo.init(str(path), mkdir=True).close()
    return path


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def make_commit():
    """Return ``make_commit(repo, files, parents=(), message=...)`` -> commit id."""
    return _commit_files


@pytest.fixture
def snapshot():
    """Return ``snapshot(root)`` -> {relative path: content} for a directory."""
    return _snapshot
