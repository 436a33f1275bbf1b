"""
Tests for the burrow CLI.

Commands run against a SessionService wired to the fakes in conftest.py,
injected through the Click context object.
"""

import json

import pytest

from burrow import __version__
from burrow.cli import cli
from burrow.config import Rule
from burrow.error_logging import ErrorLogger
from burrow.logging import BurrowLogger
from burrow.service import CreateOptions
from burrow.session import SessionState

REMOTE = "git@github.com:acme/widgets.git"


@pytest.fixture(autouse=True)
def outside_tmux(monkeypatch):
    monkeypatch.delenv("TMUX", raising=False)


@pytest.fixture
def invoke(cli_runner, config, service):
    """Invoke the CLI with the fake-backed service."""

    def _invoke(*args, **kwargs):
        return cli_runner.invoke(cli, list(args), obj={'config': config, 'service': service},
                                 **kwargs)

    return _invoke


def make(service, name="task"):
    return service.create_session(CreateOptions(name=name, remote=REMOTE, skip_spawn=True))


def test_version(cli_runner):
    result = cli_runner.invoke(cli, ['--version'])

    assert result.exit_code == 0
    assert __version__ in result.output


def test_invalid_config_file(cli_runner, tmp_path):
    bad = tmp_path / "config.yaml"
    bad.write_text("rules: [unclosed\n")

    result = cli_runner.invoke(cli, ['--config', str(bad), 'ls'])

    assert result.exit_code == 1
    assert "❌" in result.output
    assert "invalid YAML" in result.output


def test_builds_real_service_from_config(cli_runner, config):
    """Without an injected service, the CLI wires one from the config's data_dir."""
    result = cli_runner.invoke(cli, ['ls'], obj={'config': config})

    assert result.exit_code == 0
    assert "No sessions." in result.output


class TestNew:
    """Tests for `burrow new`."""

    def test_no_spawn(self, invoke, store):
        result = invoke('new', 'fix login', '--remote', REMOTE, '--no-spawn')

        assert result.exit_code == 0, result.output
        sess = store.list()[0]
        assert sess.name == "fix login"
        assert f"✅ Session {sess.id} ready: {sess.path}" in result.output

    def test_interactive_attaches_tmux(self, invoke, executor):
        result = invoke('new', 'task', '--remote', REMOTE)

        assert result.exit_code == 0, result.output
        assert executor.lines()[-1] == "tmux attach-session -t task"

    def test_batch_replays_buffered_output(self, invoke, config, executor):
        config.rules = [Rule(commands=["make setup"], batch_spawn=["agent -p {{ prompt | shq }}"])]
        executor.outputs["make setup"] = "setup done\n"

        result = invoke('new', 'task', '--remote', REMOTE, '--batch', '--prompt', 'go')

        assert result.exit_code == 0, result.output
        assert "setup done" in result.output
        assert executor.lines()[-1] == "sh -c agent -p 'go'"

    def test_strategy_and_id(self, invoke, store):
        result = invoke('new', 'task', '--remote', REMOTE, '--no-spawn',
                        '--strategy', 'worktree', '--id', 'myid01')

        assert result.exit_code == 0, result.output
        assert store.get('myid01').clone_strategy.value == 'worktree'

    def test_failure_reported_and_recorded(self, invoke, fake_git, config):
        fake_git.clone_failures.add(REMOTE)

        result = invoke('new', 'task', '--remote', REMOTE, '--no-spawn')

        assert result.exit_code == 1
        assert "❌ clone repository:" in result.output
        recent = ErrorLogger(config.errors_file).get_recent_errors()
        assert recent[0]["error_type"] == "COMMAND_FAILED"
        assert recent[0]["subcommand"] == "new"
        assert "stack_trace" not in recent[0]


class TestList:
    """Tests for `burrow ls`."""

    def test_empty(self, invoke):
        result = invoke('ls')
        assert "No sessions." in result.output

    def test_table(self, invoke, service):
        sess = make(service, "fix login")

        result = invoke('ls')

        assert result.exit_code == 0
        assert "Sessions" in result.output
        assert sess.id in result.output
        assert "active" in result.output

    def test_json_and_state_filter(self, invoke, service):
        active = make(service, "one")
        recycled = make(service, "two")
        service.recycle_session(recycled.id)

        everything = json.loads(invoke('ls', '--json').output)
        only_recycled = json.loads(invoke('ls', '--json', '--state', 'recycled').output)

        assert {s['id'] for s in everything} == {active.id, recycled.id}
        assert [s['id'] for s in only_recycled] == [recycled.id]
        assert only_recycled[0]['state'] == 'recycled'


class TestLifecycleCommands:
    """recycle, rm, rename, prune and open."""

    def test_recycle(self, invoke, service, store):
        sess = make(service)

        result = invoke('recycle', sess.id)

        assert result.exit_code == 0
        assert f"Recycled {sess.id}" in result.output
        assert store.get(sess.id).state == SessionState.RECYCLED

    def test_recycle_unknown(self, invoke):
        result = invoke('recycle', 'nope')

        assert result.exit_code == 1
        assert "❌ get session: session 'nope' not found" in result.output

    def test_rm_with_yes(self, invoke, service, store):
        sess = make(service)

        result = invoke('rm', sess.id, '--yes')

        assert result.exit_code == 0
        assert f"Deleted {sess.id}" in result.output
        assert store.list() == []

    def test_rm_declined(self, invoke, service, store):
        sess = make(service)

        result = invoke('rm', sess.id, input="n\n")

        assert result.exit_code == 1
        assert store.get(sess.id)

    def test_rename(self, invoke, service, store):
        sess = make(service, "old")

        result = invoke('rename', sess.id, 'Brand New')

        assert result.exit_code == 0
        assert f"{sess.id} is now 'Brand New'" in result.output
        assert store.get(sess.id).slug == "brand-new"

    def test_prune(self, invoke, service):
        sessions = [make(service, name) for name in ("a", "b")]
        for sess in sessions:
            service.recycle_session(sess.id)

        result = invoke('prune', '--all')

        assert result.exit_code == 0
        assert "Pruned 2 sessions." in result.output

    def test_open(self, invoke, service, executor, mocker):
        sess = make(service)
        mocker.patch('burrow.tmux_utils.find_session', return_value=object())

        result = invoke('open', sess.id, '--window', 'agent')

        assert result.exit_code == 0, result.output
        assert executor.lines()[-2:] == [
            "tmux select-window -t task:agent",
            "tmux attach-session -t task",
        ]

    def test_unexpected_error_recorded_with_trace(self, invoke, service, config, mocker):
        mocker.patch.object(service, 'list_sessions', side_effect=RuntimeError("disk on fire"))

        result = invoke('ls')

        assert isinstance(result.exception, RuntimeError)
        recent = ErrorLogger(config.errors_file).get_recent_errors()
        assert recent[0]["error_type"] == "UNEXPECTED_ERROR"
        assert "disk on fire" in recent[0]["stack_trace"]


class TestLog:
    def test_empty(self, invoke):
        assert "No log entries." in invoke('log').output

    def test_shows_entries(self, invoke, config):
        logger = BurrowLogger(config.logs_dir)
        logger.log_event("session.created", "Session created: abc123", {"session_id": "abc123"})
        logger.log_event("session.recycled", "Session recycled: abc123", {"session_id": "abc123"})

        result = invoke('log', '--command', 'session.created')

        assert "[session.created] Session created: abc123" in result.output
        assert "recycled" not in result.output
