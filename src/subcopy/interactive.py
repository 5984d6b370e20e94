"""Hand control to an interactive program inside a scratch work tree."""

from __future__ import annotations

import logging
import os
import subprocess
from typing import TYPE_CHECKING, Callable, Sequence

from .exceptions import SubprocessError

if TYPE_CHECKING:
    from .session import Scratch

logger = logging.getLogger(__name__)


def run_interactive(argv: Sequence[str], cwd: str | os.PathLike[str]) -> int:
    """Run *argv* in *cwd* on the current terminal and return its exit status.

    Blocks until the program exits.
    """
    logger.info("Running %s in %s", " ".join(argv), cwd)
    try:
        return subprocess.run(list(argv), cwd=os.fspath(cwd)).returncode
    except OSError as exc:
        raise SubprocessError(f"failed to start {argv[0]}: {exc}") from exc


def shell_operation(
    shell: str,
    *,
    runner: Callable[[Sequence[str], str | os.PathLike[str]], int] = run_interactive,
) -> Callable[[Scratch], None]:
    """Return a session operation that opens *shell* in the scratch work tree.

    A non-zero exit status fails the operation, so the session copies
    nothing back.
    """
    def operation(scratch: Scratch) -> None:
        status = runner([shell], scratch.root)
        if status != 0:
            raise SubprocessError(f"{shell} exited with status {status}", returncode=status)

    return operation
