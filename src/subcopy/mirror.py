"""Local mirror cache of upstream repositories.

Every distinct upstream URL string owns one bare repository under the
cache root.  An existing mirror is refreshed in place with an anonymous
fetch of all refs (no remote is written to its config); a missing one is
created with a full bare clone.  URLs are never normalized: two strings
that name the same remote get independent mirrors.
"""

from __future__ import annotations

import base64
import logging
import shutil
import subprocess
from pathlib import Path
from urllib.parse import quote, urlparse, urlunparse

from dulwich.client import get_transport_and_path as _get_transport_and_path
from dulwich.errors import GitProtocolError, NotGitRepository
from dulwich.repo import Repo as _DRepo

from ._lock import mirror_lock
from .exceptions import CorruptMirrorError, TransportError

logger = logging.getLogger(__name__)

_TRANSPORT_ERRORS = (GitProtocolError, NotGitRepository, OSError)


def mirror_dirname(url: str) -> str:
    """Return the cache directory name for *url*.

    URL-safe base64 of the exact URL string with the ``=`` padding removed.
    """
    return base64.urlsafe_b64encode(url.encode()).decode("ascii").rstrip("=")


# ---------------------------------------------------------------------------
# Transport helpers (operate on raw dulwich Repo)
# ---------------------------------------------------------------------------

def _mirror_fetch(drepo: _DRepo, url: str, *, progress=None):
    """Fetch all remote refs from *url*, mirroring (force + delete stale).

    The mirror's ``HEAD`` is pointed at whatever branch the remote's
    ``HEAD`` names, so ``"HEAD"`` resolves to the upstream default branch.
    """
    client, path = _get_transport_and_path(resolve_credentials(url))
    result = client.fetch(path, drepo, progress=progress)

    remote_refs = {
        ref: sha
        for ref, sha in result.refs.items()
        if sha is not None and ref != b"HEAD" and not ref.endswith(b"^{}")
    }

    for ref, sha in remote_refs.items():
        drepo.refs[ref] = sha

    for ref in list(drepo.refs.allkeys()):
        if ref != b"HEAD" and ref not in remote_refs:
            drepo.refs.remove_if_equals(ref, drepo.refs[ref])

    head = (getattr(result, "symrefs", None) or {}).get(b"HEAD")
    if head is not None and head in remote_refs:
        drepo.refs.set_symbolic_ref(b"HEAD", head)

    return result


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------

class MirrorCache:
    """Bare mirrors of upstream repositories, keyed by URL string.

    Args:
        cache_dir: Root directory holding one mirror per URL.  Created on
            first use.
        progress: Optional callback receiving transport progress bytes.
    """

    def __init__(self, cache_dir: str | Path, *, progress=None):
        self.cache_dir = Path(cache_dir)
        self._progress = progress

    def __repr__(self) -> str:
        return f"MirrorCache({str(self.cache_dir)!r})"

    def path_for(self, url: str) -> Path:
        """Return the mirror directory used for *url*."""
        return self.cache_dir / mirror_dirname(url)

    def fetch(self, url: str) -> _DRepo:
        """Return an up-to-date bare repository mirroring *url*.

        Raises:
            TransportError: The clone or fetch failed (network, auth,
                missing remote).
            CorruptMirrorError: The mirror path exists but is not a bare
                git repository.
        """
        path = self.path_for(url)
        with mirror_lock(str(path)):
            if path.exists():
                return self._update(path, url)
            return self._clone(path, url)

    def _update(self, path: Path, url: str) -> _DRepo:
        try:
            drepo = _DRepo(str(path))
        except NotGitRepository as exc:
            raise CorruptMirrorError(
                f"mirror of {url} at {path} is not a git repository"
            ) from exc
        if not drepo.bare:
            drepo.close()
            raise CorruptMirrorError(f"mirror of {url} at {path} is not a bare repository")

        logger.info("Fetching %s into %s", url, path)
        try:
            _mirror_fetch(drepo, url, progress=self._progress)
        except _TRANSPORT_ERRORS as exc:
            drepo.close()
            raise TransportError(f"failed to fetch from {url}: {exc}") from exc
        return drepo

    def _clone(self, path: Path, url: str) -> _DRepo:
        logger.info("Cloning %s into %s", url, path)
        path.parent.mkdir(parents=True, exist_ok=True)
        drepo = _DRepo.init_bare(str(path), mkdir=True)
        try:
            _mirror_fetch(drepo, url, progress=self._progress)
        except _TRANSPORT_ERRORS as exc:
            drepo.close()
            shutil.rmtree(path, ignore_errors=True)
            raise TransportError(f"failed to clone {url}: {exc}") from exc
        return drepo


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------

def _with_userinfo(parsed, userinfo: str) -> str:
    netloc = f"{userinfo}@{parsed.hostname}"
    if parsed.port:
        netloc += f":{parsed.port}"
    return urlunparse(parsed._replace(netloc=netloc))


def resolve_credentials(url: str) -> str:
    """Inject credentials into an HTTPS URL if available.

    Tries ``git credential fill`` first (works with any configured helper),
    then ``gh auth token`` for GitHub hosts.  Non-HTTPS URLs and URLs that
    already carry credentials are returned unchanged.  Only the transport
    sees the result; mirrors stay keyed by the URL as given.
    """
    if not url.startswith("https://"):
        return url

    parsed = urlparse(url)
    if parsed.username:
        return url

    try:
        proc = subprocess.run(
            ["git", "credential", "fill"],
            input=f"protocol={parsed.scheme}\nhost={parsed.hostname}\n\n",
            capture_output=True, text=True, timeout=5,
        )
        if proc.returncode == 0:
            creds = dict(
                line.partition("=")[::2]
                for line in proc.stdout.strip().splitlines()
                if "=" in line
            )
            username = creds.get("username")
            password = creds.get("password")
            if username and password:
                return _with_userinfo(
                    parsed, f"{quote(username, safe='')}:{quote(password, safe='')}"
                )
    except (FileNotFoundError, subprocess.TimeoutExpired):
        pass

    try:
        proc = subprocess.run(
            ["gh", "auth", "token", "--hostname", parsed.hostname],
            capture_output=True, text=True, timeout=5,
        )
        token = proc.stdout.strip()
        if proc.returncode == 0 and token:
            return _with_userinfo(parsed, f"x-access-token:{token}")
    except (FileNotFoundError, subprocess.TimeoutExpired):
        pass

    return url
