"""Exceptions for subcopy."""

from __future__ import annotations


class SubcopyError(Exception):
    """Base class for every error raised by subcopy."""


class TransportError(SubcopyError):
    """Cloning or fetching an upstream repository failed."""


class CorruptMirrorError(SubcopyError):
    """A path in the mirror cache exists but is not a usable repository."""


class RevisionNotFoundError(SubcopyError):
    """A revision expression matched no ref and no object."""


class PathNotFoundError(SubcopyError):
    """The requested upstream path is absent from the resolved tree."""


class NonUtf8NameError(SubcopyError):
    """A tree entry name cannot be decoded as UTF-8."""


class OutsideRepositoryError(SubcopyError):
    """A destination path does not resolve inside the owning repository."""


class MissingFieldError(SubcopyError):
    """A provenance record lacks a field that the operation requires.

    The absent field name is available as :attr:`field`.
    """

    def __init__(self, dest: str, field: str):
        super().__init__(f"subcopy {dest!r} has no {field!r} recorded")
        self.dest = dest
        self.field = field


class SubprocessError(SubcopyError):
    """The interactive operation failed or exited with a non-zero status."""

    def __init__(self, message: str, returncode: int | None = None):
        super().__init__(message)
        self.returncode = returncode
