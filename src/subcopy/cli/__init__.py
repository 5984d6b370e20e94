"""git-subcopy CLI — vendor and reconcile subdirectories of other repos."""

from ._helpers import main  # noqa: F401 — entry point

# Import command modules to register Click commands with the main group.
from . import _basic, _session  # noqa: F401
