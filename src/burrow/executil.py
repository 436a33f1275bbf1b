"""
Subprocess execution for burrow.

All git, hook, recycle and spawn commands go through Executor so that:
- output can be streamed into swappable writers (see burrow.output)
- a CancelToken can stop a long clone or hook and kill the child process
- failures surface as CommandError with the command line and captured output
"""

import logging
import os
import shlex
import signal
import subprocess
import threading
import time
from collections import deque
from typing import IO, Deque, List, Optional, Sequence

from burrow.errors import CommandError, OperationCancelled

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.1
PUMP_JOIN_TIMEOUT = 2.0
TAIL_LINES = 20


class CancelToken:
    """Cancellation signal with an optional deadline.

    Operations call raise_if_cancelled() between steps; the executor polls
    `cancelled` while a child process runs and kills it when set.
    """

    def __init__(self, timeout: Optional[float] = None):
        self._event = threading.Event()
        self.deadline = time.monotonic() + timeout if timeout is not None else None

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self.deadline is not None and time.monotonic() >= self.deadline

    def remaining(self) -> Optional[float]:
        """Seconds until the deadline, or None when there is none."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise OperationCancelled()


def check_cancelled(ctx: Optional[CancelToken]) -> None:
    """raise_if_cancelled() that tolerates a missing token."""
    if ctx is not None:
        ctx.raise_if_cancelled()


def _format_command(cmd: str, args: Sequence[str]) -> str:
    return " ".join(shlex.quote(part) for part in [cmd, *args])


def _pump(stream: IO[bytes], writer, tail: Deque[str]) -> None:
    """Copy a child's pipe into writer line by line until EOF.

    The last few lines are kept in tail so a failure can report them.
    """
    for chunk in iter(stream.readline, b''):
        text = chunk.decode('utf-8', errors='replace')
        tail.append(text)
        writer.write(text)
        flush = getattr(writer, 'flush', None)
        if flush is not None:
            flush()
    stream.close()


def _kill_group(proc: subprocess.Popen) -> None:
    """Kill proc and everything it started (children run in their own session)."""
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        # Leader and group already gone
        pass


def _wait(proc: subprocess.Popen, ctx: Optional[CancelToken], command: str) -> int:
    """Wait for proc, killing its process group if ctx fires first."""
    try:
        while True:
            try:
                return proc.wait(timeout=POLL_INTERVAL)
            except subprocess.TimeoutExpired:
                if ctx is not None and ctx.cancelled:
                    logger.debug("cancelling %s", command)
                    _kill_group(proc)
                    proc.wait()
                    raise OperationCancelled(f"cancelled: {command}")
    except KeyboardInterrupt:
        # Own session means the terminal's SIGINT never reaches the children
        _kill_group(proc)
        proc.wait()
        raise


class Executor:
    """Runs external commands. Subclass or replace in tests."""

    def run(self, cmd: str, *args: str, ctx: Optional[CancelToken] = None) -> str:
        """Run a command and return its combined output."""
        return self._run_captured(cmd, list(args), cwd=None, ctx=ctx)

    def run_dir(self, dir: str, cmd: str, *args: str, ctx: Optional[CancelToken] = None) -> str:
        """Run a command in dir and return its combined output."""
        return self._run_captured(cmd, list(args), cwd=dir, ctx=ctx)

    def run_stream(self, stdout, stderr, cmd: str, *args: str,
                   ctx: Optional[CancelToken] = None) -> None:
        """Run a command, streaming its output into the given writers."""
        self._run_streamed(cmd, list(args), cwd=None, stdout=stdout, stderr=stderr, ctx=ctx)

    def run_dir_stream(self, dir: str, stdout, stderr, cmd: str, *args: str,
                       ctx: Optional[CancelToken] = None) -> None:
        """Run a command in dir, streaming its output into the given writers."""
        self._run_streamed(cmd, list(args), cwd=dir, stdout=stdout, stderr=stderr, ctx=ctx)

    def run_interactive(self, cmd: str, *args: str) -> None:
        """Run a command attached to this process's terminal (e.g. tmux attach)."""
        command = _format_command(cmd, list(args))
        logger.debug("exec (interactive) %s", command)
        try:
            result = subprocess.run([cmd, *args])
        except OSError as e:
            raise CommandError(command, None, str(e))
        if result.returncode != 0:
            raise CommandError(command, result.returncode)

    def run_sh(self, dir: Optional[str], command: str, ctx: Optional[CancelToken] = None) -> None:
        """Run a shell snippet, discarding stdout; stderr becomes the error message."""
        check_cancelled(ctx)
        try:
            proc = subprocess.Popen(
                ['sh', '-c', command],
                cwd=dir or None,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as e:
            raise CommandError(command, None, str(e))

        stderr_chunks: List[bytes] = []
        reader = threading.Thread(
            target=lambda: stderr_chunks.append(proc.stderr.read()), daemon=True
        )
        reader.start()
        returncode = _wait(proc, ctx, command)
        reader.join()
        if returncode != 0:
            raise CommandError(command, returncode, b''.join(stderr_chunks).decode('utf-8', errors='replace'))

    def _run_captured(self, cmd: str, args: List[str], cwd: Optional[str],
                      ctx: Optional[CancelToken]) -> str:
        command = _format_command(cmd, args)
        check_cancelled(ctx)
        logger.debug("exec %s (cwd=%s)", command, cwd)
        try:
            proc = subprocess.Popen(
                [cmd, *args],
                cwd=cwd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                start_new_session=True,
            )
        except OSError as e:
            raise CommandError(command, None, str(e))

        while True:
            try:
                out, _ = proc.communicate(timeout=POLL_INTERVAL)
                break
            except subprocess.TimeoutExpired:
                if ctx is not None and ctx.cancelled:
                    _kill_group(proc)
                    proc.communicate()
                    raise OperationCancelled(f"cancelled: {command}")
            except KeyboardInterrupt:
                _kill_group(proc)
                proc.communicate()
                raise

        output = (out or b'').decode('utf-8', errors='replace')
        if proc.returncode != 0:
            raise CommandError(command, proc.returncode, output)
        return output

    def _run_streamed(self, cmd: str, args: List[str], cwd: Optional[str],
                      stdout, stderr, ctx: Optional[CancelToken]) -> None:
        command = _format_command(cmd, args)
        check_cancelled(ctx)
        logger.debug("exec (streamed) %s (cwd=%s)", command, cwd)
        try:
            proc = subprocess.Popen(
                [cmd, *args],
                cwd=cwd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as e:
            raise CommandError(command, None, str(e))

        tail: Deque[str] = deque(maxlen=TAIL_LINES)
        pumps = [
            threading.Thread(target=_pump, args=(proc.stdout, stdout, tail), daemon=True),
            threading.Thread(target=_pump, args=(proc.stderr, stderr, tail), daemon=True),
        ]
        for t in pumps:
            t.start()
        try:
            returncode = _wait(proc, ctx, command)
        finally:
            # A backgrounded grandchild can hold the pipe open indefinitely
            for t in pumps:
                t.join(timeout=PUMP_JOIN_TIMEOUT)

        if returncode != 0:
            raise CommandError(command, returncode, "".join(tail))
