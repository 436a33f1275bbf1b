"""Resets a full-clone workspace to a clean, reusable state."""

import logging
from typing import Any, List, Mapping, Optional

from burrow.errors import CommandError
from burrow.executil import CancelToken, Executor
from burrow.templates import render

logger = logging.getLogger(__name__)


class Recycler:
    """Runs rendered recycle commands (git fetch / checkout / reset / clean) in a workspace."""

    def __init__(self, executor: Executor, stdout, stderr):
        self.executor = executor
        self.stdout = stdout
        self.stderr = stderr

    def _render_all(self, commands: List[str], data: Mapping[str, Any]) -> List[str]:
        # Render everything up front so a bad template runs nothing
        return [render(cmd, data) for cmd in commands]

    def recycle(self, path: str, commands: List[str], data: Mapping[str, Any],
                out=None, ctx: Optional[CancelToken] = None) -> None:
        """
        Run commands sequentially in path, streaming output.

        Output goes to `out` when given, otherwise to the recycler's writers.
        The first failing command aborts the rest.
        """
        logger.debug("recycling %s", path)
        stdout = out if out is not None else self.stdout
        stderr = out if out is not None else self.stderr

        for command in self._render_all(commands, data):
            logger.debug("recycle command: %s", command)
            try:
                self.executor.run_dir_stream(path, stdout, stderr, "sh", "-c", command, ctx=ctx)
            except CommandError as e:
                raise e.add_context(f"recycle command {command!r}")

        logger.debug("recycle complete: %s", path)

    def recycle_silent(self, path: str, commands: List[str], data: Mapping[str, Any],
                       ctx: Optional[CancelToken] = None) -> None:
        """Like recycle(), but captures output and only reports it on failure."""
        logger.debug("recycling %s (silent)", path)

        for command in self._render_all(commands, data):
            try:
                self.executor.run_dir(path, "sh", "-c", command, ctx=ctx)
            except CommandError as e:
                raise e.add_context(f"recycle command {command!r}")
