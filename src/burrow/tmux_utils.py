"""
tmux integration for burrow sessions.

Session lookups go through libtmux; session construction runs tmux commands
through an Executor so the exact command lines can be recorded in tests.
"""

import logging
import os
from dataclasses import dataclass
from typing import List, Optional

import libtmux

from burrow.errors import CommandError, InvalidInputError
from burrow.executil import CancelToken, Executor

logger = logging.getLogger(__name__)


@dataclass
class RenderedWindow:
    """A fully rendered window definition (no templates left)."""

    name: str
    command: str = ""  # empty = default shell
    dir: str = ""      # empty = session directory
    focus: bool = False


def get_server():
    """Get libtmux server instance."""
    try:
        return libtmux.Server()
    except Exception:
        return None


def find_session(session_name: str):
    """Find tmux session by name, or None if tmux is unavailable or it doesn't exist."""
    server = get_server()
    if not server:
        return None

    try:
        sessions = server.sessions
    except Exception:
        return None
    for session in sessions:
        if session.session_name == session_name:
            return session
    return None


def inside_tmux() -> bool:
    """True when this process runs inside a tmux client."""
    return os.environ.get('TMUX', '').strip() != ''


def _window_dir(window: RenderedWindow, work_dir: str) -> str:
    return window.dir or work_dir


def _window_args(window: RenderedWindow, work_dir: str) -> List[str]:
    args = ["-n", window.name]
    directory = _window_dir(window, work_dir)
    if directory:
        args += ["-c", directory]
    if window.command:
        args += ["--", "sh", "-c", window.command]
    return args


class TmuxClient:
    """Creates, opens and extends tmux sessions from rendered windows."""

    def __init__(self, executor: Executor):
        self.executor = executor

    def _tmux(self, *args: str, ctx: Optional[CancelToken] = None) -> str:
        logger.debug("tmux %s", " ".join(args))
        return self.executor.run("tmux", *args, ctx=ctx)

    def has_session(self, name: str) -> bool:
        return find_session(name) is not None

    def kill_session(self, name: str, ctx: Optional[CancelToken] = None) -> None:
        """Raises CommandError when the session does not exist."""
        self._tmux("kill-session", "-t", name, ctx=ctx)

    def create_session(self, name: str, work_dir: str, windows: List[RenderedWindow],
                       background: bool, ctx: Optional[CancelToken] = None) -> None:
        """
        Create a detached session with the given windows, select the focused
        one and attach unless background.

        A failure while adding windows kills the partially built session.
        """
        if not windows:
            raise InvalidInputError("tmux: at least one window is required")

        first = windows[0]
        self._tmux("new-session", "-d", "-s", name, *_window_args(first, work_dir), ctx=ctx)

        try:
            for window in windows[1:]:
                try:
                    self._tmux("new-window", "-t", name, *_window_args(window, work_dir), ctx=ctx)
                except CommandError as e:
                    raise e.add_context(f"tmux new-window {window.name!r}")
        except Exception:
            try:
                self.kill_session(name)
            except CommandError:
                logger.debug("could not kill partial tmux session %s", name)
            raise

        focus = next((w.name for w in windows if w.focus), first.name)
        self._tmux("select-window", "-t", f"{name}:{focus}", ctx=ctx)

        if not background:
            self.attach_or_switch(name, ctx=ctx)

    def open_session(self, name: str, work_dir: str, windows: List[RenderedWindow],
                     background: bool, target_window: str = "",
                     ctx: Optional[CancelToken] = None) -> None:
        """Attach to an existing session (selecting target_window), else create it."""
        if not self.has_session(name):
            self.create_session(name, work_dir, windows, background, ctx=ctx)
            return

        if background:
            return
        if target_window:
            try:
                self._tmux("select-window", "-t", f"{name}:{target_window}", ctx=ctx)
            except CommandError:
                # Window may be gone if the config changed since creation
                logger.debug("window %s not found in %s", target_window, name)
        self.attach_or_switch(name, ctx=ctx)

    def add_windows(self, name: str, work_dir: str, windows: List[RenderedWindow],
                    ctx: Optional[CancelToken] = None) -> None:
        """Add windows to an existing session, selecting the first focused one."""
        for window in windows:
            try:
                self._tmux("new-window", "-t", name, *_window_args(window, work_dir), ctx=ctx)
            except CommandError as e:
                raise e.add_context(f"tmux new-window {window.name!r}")

        focused = next((w for w in windows if w.focus), None)
        if focused is not None:
            self._tmux("select-window", "-t", f"{name}:{focused.name}", ctx=ctx)

    def attach_or_switch(self, name: str, ctx: Optional[CancelToken] = None) -> None:
        """switch-client inside tmux, attach-session outside."""
        if inside_tmux():
            self._tmux("switch-client", "-t", name, ctx=ctx)
        else:
            logger.debug("tmux attach-session -t %s", name)
            self.executor.run_interactive("tmux", "attach-session", "-t", name)
