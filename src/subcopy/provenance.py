"""Provenance records: where each vendored directory came from.

Records live in ``.gitcopies`` at the root of the owning repository, in
git-config syntax with one section per destination::

    [subcopy "vendor/util"]
        url = https://example/repo.git
        rev = 3f1c...
        upstreamPath = lib/util

The destination is the subsection, so paths containing dots need no
escaping.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dulwich.config import ConfigFile
from dulwich.errors import NotGitRepository
from dulwich.repo import Repo as _DRepo

from .config import PROVENANCE_FILENAME
from .exceptions import MissingFieldError, OutsideRepositoryError

SECTION = b"subcopy"
FIELDS = ("url", "rev", "upstreamPath")
# Name used for upstreamPath by earlier releases.
_LEGACY_FIELDS = {"upstreamPath": "sourcePath"}


@dataclass(frozen=True)
class Record:
    """A complete provenance record."""
    dest: str
    url: str
    rev: str
    upstream_path: str


@dataclass(frozen=True)
class PartialRecord:
    """A provenance record as found on disk; any field may be missing."""
    dest: str
    url: str | None = None
    rev: str | None = None
    upstream_path: str | None = None

    @property
    def missing(self) -> list[str]:
        """Names of the fields that were never recorded."""
        values = (self.url, self.rev, self.upstream_path)
        return [name for name, value in zip(FIELDS, values) if value is None]


class ProvenanceStore:
    """Read and write ``.gitcopies`` for the repository whose work tree is *root*."""

    def __init__(self, root: str | os.PathLike[str]):
        self.root = Path(root).resolve()
        self.path = self.root / PROVENANCE_FILENAME

    def __repr__(self) -> str:
        return f"ProvenanceStore({str(self.root)!r})"

    @classmethod
    def discover(cls, start: str | os.PathLike[str] = ".") -> ProvenanceStore:
        """Return the store of the non-bare repository enclosing *start*."""
        try:
            repo = _DRepo.discover(os.fspath(start))
        except NotGitRepository as exc:
            raise OutsideRepositoryError(f"{start} is not inside a git repository") from exc
        try:
            if repo.bare:
                raise OutsideRepositoryError(f"repository at {repo.path} is bare and has no work tree")
            return cls(repo.path)
        finally:
            repo.close()

    # -- paths ---------------------------------------------------------------

    def relative_key(self, dest: str | os.PathLike[str]) -> str:
        """Return *dest* relative to the repository root, "/"-separated.

        Symlinks and ``..`` are resolved first.

        Raises:
            OutsideRepositoryError: *dest* resolves to the root itself or
                to somewhere outside it.
        """
        full = Path(dest).resolve()
        try:
            relative = full.relative_to(self.root)
        except ValueError:
            raise OutsideRepositoryError(
                f"{dest} is not inside the repository at {self.root}"
            ) from None
        if not relative.parts:
            raise OutsideRepositoryError(f"{dest} is the repository root, not a path inside it")
        return relative.as_posix()

    # -- config file ---------------------------------------------------------

    def _load(self) -> ConfigFile:
        try:
            return ConfigFile.from_path(str(self.path))
        except FileNotFoundError:
            config = ConfigFile()
            config.path = str(self.path)
            return config

    @staticmethod
    def _read(config: ConfigFile, section: tuple[bytes, bytes], field: str) -> str | None:
        for name in (field, _LEGACY_FIELDS.get(field)):
            if name is None:
                continue
            try:
                return config.get(section, name.encode()).decode()
            except KeyError:
                continue
        return None

    # -- operations ----------------------------------------------------------

    def register(self, dest: str | os.PathLike[str], url: str, rev: str,
                 upstream_path: str) -> str:
        """Record where *dest* came from, replacing any previous record.

        Returns the key (repository-relative path) the record was stored under.
        """
        key = self.relative_key(dest)
        section = (SECTION, key.encode())
        config = self._load()
        try:
            del config[section]
        except KeyError:
            pass
        config.set(section, b"url", url.encode())
        config.set(section, b"rev", rev.encode())
        config.set(section, b"upstreamPath", upstream_path.encode())
        config.write_to_path(str(self.path))
        return key

    def get(self, dest: str | os.PathLike[str]) -> Record:
        """Return the complete record for *dest*.

        Raises:
            OutsideRepositoryError: *dest* is not inside the repository.
            MissingFieldError: A field was never recorded for *dest*.
        """
        key = self.relative_key(dest)
        section = (SECTION, key.encode())
        config = self._load()
        values = {}
        for field in FIELDS:
            value = self._read(config, section, field)
            if value is None:
                raise MissingFieldError(key, field)
            values[field] = value
        return Record(dest=key, url=values["url"], rev=values["rev"],
                      upstream_path=values["upstreamPath"])

    def list(self) -> dict[str, PartialRecord]:
        """Return every record keyed by destination, tolerating missing fields.

        Only sections carrying at least one recognized field are reported.
        """
        config = self._load()
        result: dict[str, PartialRecord] = {}
        for section in config.sections():
            if len(section) != 2 or section[0].lower() != SECTION:
                continue
            values = {
                field: self._read(config, section, field) for field in FIELDS
            }
            if all(v is None for v in values.values()):
                continue
            dest = section[1].decode()
            result[dest] = PartialRecord(
                dest=dest, url=values["url"], rev=values["rev"],
                upstream_path=values["upstreamPath"],
            )
        return result
