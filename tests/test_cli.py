"""Tests for the git-subcopy CLI."""

import json
import os
import shutil
import stat
import sys

import pytest

from subcopy.cli import main
from subcopy.mirror import mirror_dirname

posix_only = pytest.mark.skipif(os.name == "nt", reason="uses sh scripts as the shell")
needs_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def cache(tmp_path):
    return str(tmp_path / "cache")


@pytest.fixture
def invoke(runner, cache):
    """Invoke the CLI with an isolated cache directory."""
    def _invoke(*args, **kwargs):
        return runner.invoke(main, ["--cache-dir", cache, *args], **kwargs)
    return _invoke


@pytest.fixture
def added(invoke, upstream, work):
    """work/vendor/util registered from lib/util at v1."""
    (work / "vendor").mkdir()
    dest = work / "vendor" / "util"
    r = invoke("add", "--repo", str(work), upstream.url, "v1", "lib/util", str(dest))
    assert r.exit_code == 0, r.output
    return dest


@pytest.fixture
def make_shell(tmp_path):
    """Return ``make_shell(body)`` -> path of an executable sh script."""
    def _make(body, name="fake-shell"):
        path = tmp_path / name
        path.write_text("#!/bin/sh\n" + body + "\n")
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return str(path)
    return _make


# ---------------------------------------------------------------------------
# TestFetch
# ---------------------------------------------------------------------------

class TestFetch:
    def test_extracts_directory(self, invoke, upstream, tmp_path, cache):
        dest = tmp_path / "out"
        r = invoke("fetch", upstream.url, "main", "lib/util", str(dest))
        assert r.exit_code == 0, r.output
        assert (dest / "new.py").read_bytes() == b"NEW = True\n"
        assert (dest / "sub" / "deep.txt").read_bytes() == b"deep\n"
        assert os.path.isdir(os.path.join(cache, mirror_dirname(upstream.url)))

    def test_extracts_file(self, invoke, upstream, tmp_path):
        dest = tmp_path / "out"
        r = invoke("fetch", upstream.url, "v1", "README.md", str(dest))
        assert r.exit_code == 0, r.output
        assert os.listdir(dest) == ["README.md"]

    def test_does_not_register(self, invoke, upstream, work):
        r = invoke("fetch", upstream.url, "main", "lib/util", str(work / "vendor"))
        assert r.exit_code == 0, r.output
        assert not (work / ".gitcopies").exists()

    def test_existing_destination_error(self, invoke, upstream, tmp_path):
        dest = tmp_path / "out"
        dest.mkdir()
        r = invoke("fetch", upstream.url, "main", "lib/util", str(dest))
        assert r.exit_code != 0
        assert "failed to create *unique* destination directory" in r.output
        assert os.listdir(dest) == []

    def test_force_overwrites(self, invoke, upstream, tmp_path):
        dest = tmp_path / "out"
        dest.mkdir()
        (dest / "strings.py").write_text("old")
        (dest / "keep.txt").write_text("keep")
        r = invoke("fetch", "-f", upstream.url, "main", "lib/util", str(dest))
        assert r.exit_code == 0, r.output
        assert (dest / "strings.py").read_bytes().startswith(b"def shout")
        assert (dest / "keep.txt").read_text() == "keep"

    def test_missing_parent_without_force(self, invoke, upstream, tmp_path):
        r = invoke("fetch", upstream.url, "main", "lib/util", str(tmp_path / "a" / "b"))
        assert r.exit_code != 0
        assert "failed to create *unique* destination directory" in r.output

    def test_force_creates_parents(self, invoke, upstream, tmp_path):
        dest = tmp_path / "a" / "b" / "c"
        r = invoke("fetch", "--force", upstream.url, "main", "lib/util", str(dest))
        assert r.exit_code == 0, r.output
        assert (dest / "strings.py").exists()

    def test_missing_path_error(self, invoke, upstream, tmp_path):
        r = invoke("fetch", upstream.url, "main", "no/such", str(tmp_path / "out"))
        assert r.exit_code != 0
        assert "failed to extract files" in r.output
        assert "no/such" in r.output

    def test_unknown_revision_error(self, invoke, upstream, tmp_path):
        r = invoke("fetch", upstream.url, "nope", "lib", str(tmp_path / "out"))
        assert r.exit_code != 0
        assert "failed to extract files" in r.output
        assert "unknown revision" in r.output

    def test_unreachable_upstream_error(self, invoke, tmp_path):
        url = str(tmp_path / "missing.git")
        r = invoke("fetch", url, "main", "lib", str(tmp_path / "out"))
        assert r.exit_code != 0
        assert "failed to fetch git repo" in r.output
        assert not (tmp_path / "out").exists()

    def test_cache_dir_from_environment(self, runner, upstream, tmp_path):
        cache = tmp_path / "env-cache"
        r = runner.invoke(
            main, ["fetch", upstream.url, "main", "lib/util", str(tmp_path / "out")],
            env={"SUBCOPY_CACHE_DIR": str(cache)},
        )
        assert r.exit_code == 0, r.output
        assert (cache / mirror_dirname(upstream.url)).is_dir()

    def test_verbose_status(self, invoke, upstream, tmp_path):
        r = invoke("-v", "fetch", upstream.url, "v1", "lib/util", str(tmp_path / "out"))
        assert r.exit_code == 0, r.output
        assert upstream.first in r.output


# ---------------------------------------------------------------------------
# TestAdd
# ---------------------------------------------------------------------------

class TestAdd:
    def test_records_resolved_revision(self, invoke, upstream, work, added):
        assert (added / "strings.py").exists()
        text = (work / ".gitcopies").read_text()
        assert '[subcopy "vendor/util"]' in text
        assert f"rev = {upstream.first}" in text
        assert "upstreamPath = lib/util" in text
        assert f"url = {upstream.url}" in text

    def test_root_upstream_path(self, invoke, upstream, work):
        r = invoke("add", "--repo", str(work), upstream.url, "main", "/", str(work / "all"))
        assert r.exit_code == 0, r.output
        assert (work / "all" / "README.md").exists()
        assert "upstreamPath = ." in (work / ".gitcopies").read_text()

    def test_repo_from_environment(self, invoke, upstream, work):
        r = invoke("add", upstream.url, "main", "lib", str(work / "lib"),
                   env={"SUBCOPY_REPO": str(work)})
        assert r.exit_code == 0, r.output
        assert (work / ".gitcopies").exists()

    def test_discovers_repository_from_cwd(self, invoke, upstream, work, monkeypatch):
        monkeypatch.chdir(work)
        r = invoke("add", upstream.url, "main", "lib/util", "vendor")
        assert r.exit_code == 0, r.output
        assert '[subcopy "vendor"]' in (work / ".gitcopies").read_text()

    def test_outside_repository(self, invoke, upstream, work, tmp_path):
        dest = tmp_path / "outside"
        r = invoke("add", "--repo", str(work), upstream.url, "main", "lib", str(dest))
        assert r.exit_code != 0
        assert "failed to register to .gitcopies" in r.output
        assert not dest.exists()
        assert not (work / ".gitcopies").exists()

    def test_readd_with_force_overwrites_record(self, invoke, upstream, work, added):
        r = invoke("add", "-f", "--repo", str(work), upstream.url, "main", "lib/util", str(added))
        assert r.exit_code == 0, r.output
        text = (work / ".gitcopies").read_text()
        assert f"rev = {upstream.second}" in text
        assert upstream.first not in text


# ---------------------------------------------------------------------------
# TestList
# ---------------------------------------------------------------------------

class TestList:
    def test_lists_records(self, invoke, upstream, work, added):
        r = invoke("list", "--repo", str(work))
        assert r.exit_code == 0, r.output
        assert r.output.strip() == (
            f"vendor/util = Cloned from {upstream.url}:lib/util, revision {upstream.first}"
        )

    def test_sorted(self, invoke, work):
        (work / ".gitcopies").write_text(
            '[subcopy "b"]\n\turl = u\n\trev = r\n\tupstreamPath = p\n'
            '[subcopy "a"]\n\turl = u\n\trev = r\n\tupstreamPath = p\n'
        )
        r = invoke("list", "--repo", str(work))
        assert [line.split(" ")[0] for line in r.output.splitlines()] == ["a", "b"]

    def test_unknown_fields(self, invoke, work):
        (work / ".gitcopies").write_text('[subcopy "vendor"]\n\turl = u\n')
        r = invoke("list", "--repo", str(work))
        assert r.exit_code == 0, r.output
        assert r.output.strip() == "vendor = Cloned from u:<unknown>, revision <unknown>"

    def test_empty(self, invoke, work):
        r = invoke("list", "--repo", str(work))
        assert r.exit_code == 0
        assert r.output == ""

    def test_json(self, invoke, work):
        (work / ".gitcopies").write_text(
            '[subcopy "vendor"]\n\turl = u\n\tupstreamPath = lib\n'
        )
        r = invoke("list", "--repo", str(work), "--json")
        assert r.exit_code == 0, r.output
        assert json.loads(r.output) == {
            "vendor": {"url": "u", "rev": None, "upstreamPath": "lib"},
        }


# ---------------------------------------------------------------------------
# TestShell
# ---------------------------------------------------------------------------

@posix_only
class TestShell:
    def test_success_copies_back(self, invoke, work, added, make_shell):
        sh = make_shell("echo from-shell > shell.txt")
        r = invoke("shell", "--repo", str(work), "--shell", sh, str(added))
        assert r.exit_code == 0, r.output
        assert (added / "shell.txt").read_text() == "from-shell\n"

    def test_shell_sees_local_edits(self, invoke, work, added, make_shell):
        (added / "strings.py").write_text("local\n")
        sh = make_shell("cp strings.py seen.txt")
        r = invoke("shell", "--repo", str(work), "--shell", sh, str(added))
        assert r.exit_code == 0, r.output
        assert (added / "seen.txt").read_text() == "local\n"

    def test_shell_from_environment(self, invoke, work, added, make_shell):
        sh = make_shell("touch env-shell.txt")
        r = invoke("shell", "--repo", str(work), str(added), env={"SHELL": sh})
        assert r.exit_code == 0, r.output
        assert (added / "env-shell.txt").exists()

    def test_nonzero_exit_discards(self, invoke, work, added, make_shell, snapshot):
        before = snapshot(added)
        sh = make_shell("echo junk > strings.py\nexit 1")
        r = invoke("shell", "--repo", str(work), "--shell", sh, str(added))
        assert r.exit_code != 0
        assert "failed to run shell" in r.output
        assert snapshot(added) == before

    def test_unregistered_path(self, invoke, work, make_shell):
        (work / "plain").mkdir()
        r = invoke("shell", "--repo", str(work), "--shell", make_shell("true"),
                   str(work / "plain"))
        assert r.exit_code != 0
        assert "failed to read .gitcopies" in r.output
        assert "'url'" in r.output


# ---------------------------------------------------------------------------
# TestRebase
# ---------------------------------------------------------------------------

@posix_only
@needs_git
class TestRebase:
    def test_clean_rebase_updates_record(self, invoke, upstream, work, added, make_shell):
        (added / "__init__.py").write_text("# local\n")
        r = invoke("rebase", "--repo", str(work), "--shell", make_shell("true"),
                   str(added), "main")
        assert r.exit_code == 0, r.output
        assert (added / "__init__.py").read_text() == "# local\n"
        assert (added / "new.py").exists()

        r = invoke("list", "--repo", str(work))
        assert r.output.strip().endswith(f"revision {upstream.second}")

    def test_unfinished_rebase_keeps_record(self, invoke, upstream, work, added,
                                            make_shell, snapshot):
        (added / "strings.py").write_text("def shout(s):\n    return s.lower()\n")
        before = snapshot(added)
        r = invoke("rebase", "--repo", str(work), "--shell", make_shell("true"),
                   str(added), "main")
        assert r.exit_code != 0
        assert "failed to rebase" in r.output
        assert snapshot(added) == before

        r = invoke("list", "--repo", str(work))
        assert r.output.strip().endswith(f"revision {upstream.first}")

    def test_shell_failure(self, invoke, upstream, work, added, make_shell):
        r = invoke("rebase", "--repo", str(work), "--shell", make_shell("exit 2"),
                   str(added), "main")
        assert r.exit_code != 0
        assert "failed to rebase" in r.output
        assert "status 2" in r.output


# ---------------------------------------------------------------------------
# TestConsoleScript
# ---------------------------------------------------------------------------

class TestConsoleScript:
    def test_missing_cli_extra(self, monkeypatch, capsys):
        from subcopy import _cli_entry

        monkeypatch.setitem(sys.modules, "subcopy.cli", None)
        with pytest.raises(SystemExit) as exc:
            _cli_entry.main()
        assert exc.value.code == 1
        err = capsys.readouterr().err
        assert "requires the 'cli' extra" in err
        assert "pip install git-subcopy[cli]" in err

    def test_runs_cli_when_installed(self, monkeypatch, capsys):
        from subcopy import _cli_entry

        monkeypatch.setattr(sys, "argv", ["git-subcopy", "--help"])
        with pytest.raises(SystemExit) as exc:
            _cli_entry.main()
        assert exc.value.code == 0
        assert "vendor a subdirectory" in capsys.readouterr().out
