"""Tests for tmux_utils: session construction through the executor and libtmux lookups."""

from unittest.mock import Mock, patch

import pytest

from burrow.errors import CommandError, InvalidInputError
from burrow.tmux_utils import RenderedWindow, TmuxClient, find_session, inside_tmux


@pytest.fixture
def tmux(executor):
    return TmuxClient(executor)


@pytest.fixture(autouse=True)
def outside_tmux(monkeypatch):
    monkeypatch.delenv("TMUX", raising=False)


class TestFindSession:
    """libtmux-backed lookups."""

    def test_finds_by_name(self):
        wanted = Mock(session_name="task")
        server = Mock(sessions=[Mock(session_name="other"), wanted])

        with patch("burrow.tmux_utils.get_server", return_value=server):
            assert find_session("task") is wanted

    def test_missing(self):
        server = Mock(sessions=[Mock(session_name="other")])

        with patch("burrow.tmux_utils.get_server", return_value=server):
            assert find_session("task") is None

    def test_no_server(self):
        with patch("burrow.tmux_utils.get_server", return_value=None):
            assert find_session("task") is None


class TestInsideTmux:
    def test_outside(self):
        assert not inside_tmux()

    def test_inside(self, monkeypatch):
        monkeypatch.setenv("TMUX", "/tmp/tmux-1000/default,123,0")
        assert inside_tmux()


class TestCreateSession:
    """Tests for TmuxClient.create_session()."""

    def test_builds_windows_and_attaches(self, tmux, executor):
        windows = [
            RenderedWindow("agent", "claude"),
            RenderedWindow("shell", focus=True),
            RenderedWindow("logs", "tail -f log/dev.log", dir="/elsewhere"),
        ]

        tmux.create_session("task", "/work/task", windows, background=False)

        assert executor.lines() == [
            "tmux new-session -d -s task -n agent -c /work/task -- sh -c claude",
            "tmux new-window -t task -n shell -c /work/task",
            "tmux new-window -t task -n logs -c /elsewhere -- sh -c tail -f log/dev.log",
            "tmux select-window -t task:shell",
            "tmux attach-session -t task",
        ]

    def test_focus_defaults_to_first_window(self, tmux, executor):
        tmux.create_session("task", "/w", [RenderedWindow("a"), RenderedWindow("b")],
                            background=True)

        assert executor.lines()[-1] == "tmux select-window -t task:a"

    def test_switches_client_inside_tmux(self, tmux, executor, monkeypatch):
        monkeypatch.setenv("TMUX", "/tmp/tmux-1000/default,123,0")

        tmux.create_session("task", "/w", [RenderedWindow("a")], background=False)

        assert executor.lines()[-1] == "tmux switch-client -t task"

    def test_requires_a_window(self, tmux, executor):
        with pytest.raises(InvalidInputError):
            tmux.create_session("task", "/w", [], background=True)
        assert executor.commands == []

    def test_window_failure_kills_partial_session(self, tmux, executor):
        executor.failures["-n broken"] = CommandError("tmux new-window", 1, "bad")
        windows = [RenderedWindow("ok"), RenderedWindow("broken")]

        with pytest.raises(CommandError, match="tmux new-window 'broken'"):
            tmux.create_session("task", "/w", windows, background=True)

        assert executor.lines()[-1] == "tmux kill-session -t task"


class TestOpenAndAdd:
    def test_open_missing_creates(self, tmux, executor):
        with patch("burrow.tmux_utils.find_session", return_value=None):
            tmux.open_session("task", "/w", [RenderedWindow("a")], background=True)

        assert executor.lines()[0].startswith("tmux new-session -d -s task")

    def test_open_existing_ignores_missing_target_window(self, tmux, executor):
        executor.failures["select-window"] = CommandError("tmux select-window", 1, "can't find window")

        with patch("burrow.tmux_utils.find_session", return_value=Mock()):
            tmux.open_session("task", "/w", [RenderedWindow("a")], background=False,
                              target_window="gone")

        assert executor.lines()[-1] == "tmux attach-session -t task"

    def test_add_windows_without_focus(self, tmux, executor):
        tmux.add_windows("task", "/w", [RenderedWindow("extra", "htop")])

        assert executor.lines() == ["tmux new-window -t task -n extra -c /w -- sh -c htop"]

    def test_kill_session(self, tmux, executor):
        tmux.kill_session("task")
        assert executor.lines() == ["tmux kill-session -t task"]
