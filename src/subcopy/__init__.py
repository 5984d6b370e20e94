from .mirror import MirrorCache
from .tree import ResolvedRevision, extract, resolve_revision
from .provenance import ProvenanceStore, Record, PartialRecord
from .session import SyncSession, Scratch, RebaseResult
from .interactive import run_interactive, shell_operation
from .exceptions import (
    SubcopyError, TransportError, CorruptMirrorError, RevisionNotFoundError,
    PathNotFoundError, NonUtf8NameError, OutsideRepositoryError,
    MissingFieldError, SubprocessError,
)

__all__ = [
    "MirrorCache", "ResolvedRevision", "extract", "resolve_revision",
    "ProvenanceStore", "Record", "PartialRecord",
    "SyncSession", "Scratch", "RebaseResult",
    "run_interactive", "shell_operation",
    "SubcopyError", "TransportError", "CorruptMirrorError", "RevisionNotFoundError",
    "PathNotFoundError", "NonUtf8NameError", "OutsideRepositoryError",
    "MissingFieldError", "SubprocessError",
]
