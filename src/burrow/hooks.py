"""Rule side effects applied to a new or reused workspace: file copies and hook commands."""

import logging
import os
import shutil
from pathlib import Path
from typing import Optional

from burrow.config import Rule
from burrow.errors import CommandError, InvalidInputError, WorkspaceError
from burrow.executil import CancelToken, Executor, check_cancelled

logger = logging.getLogger(__name__)


class FileCopier:
    """Copies source-relative glob matches (e.g. '.env', 'config/*.local') into a workspace."""

    def __init__(self, stdout):
        self.stdout = stdout

    def copy_files(self, rule: Rule, source: str, dest: str,
                   ctx: Optional[CancelToken] = None) -> int:
        """
        Copy every match of rule.copy from source into dest, keeping relative paths.

        Patterns that match nothing are skipped. Returns the number of entries copied.

        Raises:
            InvalidInputError: for absolute or parent-escaping patterns
            WorkspaceError: if a copy fails
        """
        src_root = Path(source)
        dest_root = Path(dest)
        copied = 0

        for pattern in rule.copy:
            check_cancelled(ctx)
            if os.path.isabs(pattern) or '..' in Path(pattern).parts:
                raise InvalidInputError(f"copy pattern must be relative to the source: {pattern!r}")

            matches = sorted(src_root.glob(pattern))
            if not matches:
                logger.debug("copy pattern %s matched nothing in %s", pattern, source)
                continue

            for match in matches:
                rel = match.relative_to(src_root)
                target = dest_root / rel
                try:
                    target.parent.mkdir(parents=True, exist_ok=True)
                    if match.is_dir():
                        shutil.copytree(match, target, dirs_exist_ok=True)
                    else:
                        shutil.copy2(match, target)
                except OSError as e:
                    raise WorkspaceError(f"copy {rel}: {e}")
                self.stdout.write(f"copied {rel}\n")
                copied += 1

        return copied


class HookRunner:
    """Runs a rule's commands with `sh -c` inside the workspace, streaming output."""

    def __init__(self, executor: Executor, stdout, stderr):
        self.executor = executor
        self.stdout = stdout
        self.stderr = stderr

    def run_hooks(self, rule: Rule, path: str, ctx: Optional[CancelToken] = None) -> None:
        """Run commands in order; the first failure aborts the rest."""
        for command in rule.commands:
            logger.debug("running hook %s in %s", command, path)
            try:
                self.executor.run_dir_stream(
                    path, self.stdout, self.stderr, "sh", "-c", command, ctx=ctx,
                )
            except CommandError as e:
                raise e.add_context(f"hook {command!r}")
