"""
Shared pytest fixtures for burrow tests.

This module provides the fakes the lifecycle tests are built on: an executor
that records commands instead of running them, an in-memory git client that
creates and removes directories, and an event bus that remembers what was
published.
"""

import io
import os
import shutil
import subprocess
from datetime import datetime, timedelta

import pytest
from click.testing import CliRunner

from burrow.config import Config, WindowConfig
from burrow.errors import CommandError, CorruptedRepositoryError
from burrow.events import EventBus
from burrow.executil import Executor
from burrow.registry import JsonSessionStore
from burrow.service import SessionService


# =============================================================================
# RECORDING EXECUTOR
# =============================================================================

class RecordingExecutor(Executor):
    """
    Executor that records every call instead of starting processes.

    Attributes:
        commands: list of (cmd, args, dir) tuples in call order
        failures: maps a substring of the command line to an exception to raise
        outputs: maps a substring of the command line to captured output
    """

    def __init__(self):
        self.commands = []
        self.failures = {}
        self.outputs = {}

    def _record(self, cmd, args, dir=None):
        self.commands.append((cmd, list(args), dir))
        line = " ".join([cmd, *args])
        for needle, exc in self.failures.items():
            if needle in line:
                raise exc
        for needle, out in self.outputs.items():
            if needle in line:
                return out
        return ""

    def run(self, cmd, *args, ctx=None):
        return self._record(cmd, args)

    def run_dir(self, dir, cmd, *args, ctx=None):
        return self._record(cmd, args, dir)

    def run_stream(self, stdout, stderr, cmd, *args, ctx=None):
        stdout.write(self._record(cmd, args))

    def run_dir_stream(self, dir, stdout, stderr, cmd, *args, ctx=None):
        stdout.write(self._record(cmd, args, dir))

    def run_sh(self, dir, command, ctx=None):
        self._record("sh", ["-c", command], dir)

    def run_interactive(self, cmd, *args):
        self._record(cmd, args)

    def lines(self):
        """Recorded commands as plain command lines."""
        return [" ".join([cmd, *args]) for cmd, args, _ in self.commands]


# =============================================================================
# FAKE GIT
# =============================================================================

class FakeGit:
    """
    In-memory stand-in for GitClient that touches only the filesystem.

    clone/worktree_add create the destination directory with a .git marker;
    worktree_remove deletes it. Paths in `invalid` fail is_valid_repo and
    paths in `pull_failures` fail pull.
    """

    def __init__(self, remote_url="git@github.com:acme/widgets.git"):
        self.calls = []
        self.invalid = set()
        self.pull_failures = set()
        self.worktree_add_failures = set()
        self.clone_failures = set()
        self.default_branch_value = "main"
        self.origin = remote_url

    def _make_repo(self, path):
        os.makedirs(os.path.join(path, ".git"), exist_ok=True)

    def clone(self, remote, dest, ctx=None):
        self.calls.append(("clone", remote, dest))
        if remote in self.clone_failures:
            raise CommandError(f"git clone {remote} {dest}", 128, "fatal: repository not found")
        self._make_repo(dest)

    def clone_bare(self, remote, dest, ctx=None):
        self.calls.append(("clone_bare", remote, dest))
        os.makedirs(dest, exist_ok=True)

    def fetch(self, bare_dir, ctx=None):
        self.calls.append(("fetch", bare_dir))

    def pull(self, path, ctx=None):
        self.calls.append(("pull", path))
        if path in self.pull_failures:
            raise CommandError("git pull", 1, "fatal: couldn't find remote ref")

    def worktree_add(self, bare_dir, path, branch, ctx=None):
        self.calls.append(("worktree_add", bare_dir, path, branch))
        if path in self.worktree_add_failures:
            raise CommandError(f"git worktree add {path}", 128, "fatal: already exists")
        self._make_repo(path)

    def worktree_remove(self, bare_dir, path, branch, ctx=None):
        self.calls.append(("worktree_remove", bare_dir, path, branch))
        shutil.rmtree(path, ignore_errors=True)

    def default_branch(self, path, ctx=None):
        return self.default_branch_value

    def is_valid_repo(self, path, ctx=None):
        self.calls.append(("is_valid_repo", path))
        if path in self.invalid or not os.path.isdir(os.path.join(path, ".git")):
            raise CorruptedRepositoryError(path, "not a git repository")

    def remote_url(self, path, ctx=None):
        return self.origin

    def called(self, name):
        return [c for c in self.calls if c[0] == name]


# =============================================================================
# EVENTS AND CLOCK
# =============================================================================

class RecordingBus(EventBus):
    """EventBus that also remembers every (topic, payload) it publishes."""

    def __init__(self):
        super().__init__()
        self.events = []

    def publish(self, topic, payload):
        self.events.append((topic, payload))
        super().publish(topic, payload)

    def topics(self):
        return [topic for topic, _ in self.events]


class TickingClock:
    """Returns a strictly increasing time on every call."""

    def __init__(self, start=datetime(2026, 1, 1, 9, 0, 0)):
        self.current = start

    def __call__(self):
        self.current += timedelta(seconds=1)
        return self.current


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def cli_runner():
    """Provide Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def executor():
    return RecordingExecutor()


@pytest.fixture
def fake_git():
    return FakeGit()


@pytest.fixture
def bus():
    return RecordingBus()


@pytest.fixture
def store(tmp_path):
    return JsonSessionStore(tmp_path / "sessions.json")


@pytest.fixture
def config(tmp_path):
    """Config rooted in tmp_path with a single focused agent window."""
    return Config(
        data_dir=str(tmp_path / "data"),
        repos_dir=str(tmp_path / "repos"),
        windows=[WindowConfig(name="agent", command="claude", focus=True)],
    )


@pytest.fixture
def output():
    """Captured stdout/stderr targets for the service."""
    return io.StringIO(), io.StringIO()


@pytest.fixture
def service(store, fake_git, config, bus, executor, output):
    """SessionService wired to fakes, with a ticking clock."""
    stdout, stderr = output
    return SessionService(
        store=store,
        git=fake_git,
        config=config,
        bus=bus,
        executor=executor,
        stdout=stdout,
        stderr=stderr,
        clock=TickingClock(),
    )


@pytest.fixture
def git_remote(tmp_path):
    """
    A real local git repository usable as a clone source.

    Returns the path of a bare repo with one commit on 'main'.
    """
    work = tmp_path / "upstream-work"
    work.mkdir()
    env = {**os.environ, "GIT_AUTHOR_NAME": "Test", "GIT_AUTHOR_EMAIL": "test@example.com",
           "GIT_COMMITTER_NAME": "Test", "GIT_COMMITTER_EMAIL": "test@example.com"}
    subprocess.run(["git", "init", "-b", "main"], cwd=work, check=True, capture_output=True)
    (work / "README.md").write_text("# upstream\n")
    subprocess.run(["git", "add", "."], cwd=work, check=True, capture_output=True)
    subprocess.run(["git", "commit", "-m", "initial"], cwd=work, check=True,
                   capture_output=True, env=env)

    bare = tmp_path / "remotes" / "acme" / "widgets.git"
    bare.parent.mkdir(parents=True)
    subprocess.run(["git", "clone", "--bare", str(work), str(bare)], check=True, capture_output=True)
    return bare
