"""Advisory mirror lock: serializes clone/fetch of one URL across processes."""

from __future__ import annotations

import os
from contextlib import contextmanager


def _lock_path(mirror_path: str) -> str:
    return mirror_path.rstrip("/\\") + ".lock"


try:
    import fcntl

    @contextmanager
    def mirror_lock(mirror_path: str):
        lock_path = _lock_path(mirror_path)
        os.makedirs(os.path.dirname(lock_path) or ".", exist_ok=True)
        fd = os.open(lock_path, os.O_CREAT | os.O_RDWR | getattr(os, "O_CLOEXEC", 0))
        try:
            fcntl.flock(fd, fcntl.LOCK_EX)
            yield
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
            os.close(fd)

except ImportError:
    import msvcrt

    @contextmanager
    def mirror_lock(mirror_path: str):
        lock_path = _lock_path(mirror_path)
        os.makedirs(os.path.dirname(lock_path) or ".", exist_ok=True)
        fd = os.open(lock_path, os.O_CREAT | os.O_RDWR)
        os.set_inheritable(fd, False)
        try:
            msvcrt.locking(fd, msvcrt.LK_LOCK, 1)
            yield
        finally:
            msvcrt.locking(fd, msvcrt.LK_UNLCK, 1)
            os.close(fd)
