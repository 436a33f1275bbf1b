"""
Launching the agent environment for a session.

A spawn strategy is resolved once per call and is either a list of shell
command templates (CommandSpawn) or a set of tmux window templates
(WindowSpawn). Templates are rendered against SpawnData before any process
starts, so a rendering error never leaves a half-launched session.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from burrow.config import Rule, WindowConfig
from burrow.errors import CommandError, TemplateError
from burrow.executil import CancelToken, Executor
from burrow.rules import matches_pattern
from burrow.templates import render
from burrow.tmux_utils import RenderedWindow, TmuxClient

logger = logging.getLogger(__name__)


@dataclass
class SpawnData:
    """Template context for spawn commands and windows."""

    path: str
    name: str
    prompt: str = ""
    slug: str = ""
    context_dir: str = ""
    owner: str = ""
    repo: str = ""
    vars: Dict[str, Any] = field(default_factory=dict)

    def to_template_data(self) -> Dict[str, Any]:
        return {
            'path': self.path,
            'name': self.name,
            'prompt': self.prompt,
            'slug': self.slug,
            'context_dir': self.context_dir,
            'owner': self.owner,
            'repo': self.repo,
            'vars': dict(self.vars),
        }


@dataclass
class CommandSpawn:
    commands: List[str]


@dataclass
class WindowSpawn:
    windows: List[WindowConfig]


SpawnStrategy = Union[CommandSpawn, WindowSpawn]


def resolve_spawn(rules: List[Rule], remote: str, batch: bool,
                  default_windows: Optional[List[WindowConfig]] = None) -> Optional[SpawnStrategy]:
    """
    Pick the spawn strategy for remote.

    The last matching rule that defines windows, or spawn commands for the
    requested mode (batch_spawn when batch), wins. Without any, the default
    windows apply. Returns None when nothing is configured.
    """
    result: Optional[SpawnStrategy] = None
    for rule in rules:
        if not matches_pattern(rule.pattern, remote):
            continue
        if rule.windows:
            result = WindowSpawn(list(rule.windows))
        elif batch and rule.batch_spawn:
            result = CommandSpawn(list(rule.batch_spawn))
        elif not batch and rule.spawn:
            result = CommandSpawn(list(rule.spawn))

    if result is None and default_windows:
        result = WindowSpawn(list(default_windows))
    return result


def render_windows(windows: List[WindowConfig], data: Dict[str, Any]) -> List[RenderedWindow]:
    """Render name, command and dir of every window; any failure aborts."""
    rendered = []
    for window in windows:
        try:
            name = render(window.name, data)
            command = render(window.command, data).strip() if window.command else ""
            directory = render(window.dir, data) if window.dir else ""
        except TemplateError as e:
            raise e.add_context(f"render window {window.name!r}")
        rendered.append(RenderedWindow(name=name, command=command, dir=directory, focus=window.focus))
    return rendered


class Spawner:
    """Runs spawn commands or builds the session's tmux windows."""

    def __init__(self, executor: Executor, tmux: TmuxClient, stdout, stderr):
        self.executor = executor
        self.tmux = tmux
        self.stdout = stdout
        self.stderr = stderr

    def spawn(self, commands: List[str], data: SpawnData, ctx: Optional[CancelToken] = None) -> None:
        """Run each rendered command with sh -c, in order. First failure aborts."""
        context = data.to_template_data()
        rendered = []
        for template in commands:
            try:
                rendered.append(render(template, context))
            except TemplateError as e:
                raise e.add_context(f"render spawn command {template!r}")

        for command in rendered:
            logger.debug("spawn command: %s", command)
            try:
                self.executor.run_stream(self.stdout, self.stderr, "sh", "-c", command, ctx=ctx)
            except CommandError as e:
                raise e.add_context("execute spawn command")

    def spawn_windows(self, windows: List[WindowConfig], data: SpawnData, background: bool,
                      ctx: Optional[CancelToken] = None) -> None:
        rendered = render_windows(windows, data.to_template_data())
        logger.debug("spawning tmux session %s with %d windows", data.name, len(rendered))
        self.tmux.create_session(data.name, data.path, rendered, background, ctx=ctx)

    def open_windows(self, windows: List[WindowConfig], data: SpawnData, background: bool,
                     target_window: str = "", ctx: Optional[CancelToken] = None) -> None:
        rendered = render_windows(windows, data.to_template_data())
        self.tmux.open_session(data.name, data.path, rendered, background, target_window, ctx=ctx)

    def add_windows_to_session(self, tmux_name: str, work_dir: str, windows: List[RenderedWindow],
                               background: bool, ctx: Optional[CancelToken] = None) -> None:
        """Add pre-rendered windows, then switch to the session unless background."""
        self.tmux.add_windows(tmux_name, work_dir, windows, ctx=ctx)
        if not background:
            self.tmux.attach_or_switch(tmux_name, ctx=ctx)
