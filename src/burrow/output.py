"""
Swappable output routing.

Hook, recycle and spawn output is written through SwitchWriter handles rather
than straight to sys.stdout/sys.stderr. A full-screen consumer (a TUI, a rich
live display) calls OutputSwitch.suspend() to send everything to a discard
sink while it owns the terminal, then restores the previous targets.
"""

import threading
from contextlib import contextmanager
from io import StringIO
from typing import Callable, Iterator, TextIO


class DiscardWriter:
    """Writer that drops everything."""

    def write(self, data: str) -> int:
        return len(data)

    def flush(self) -> None:
        pass


DISCARD = DiscardWriter()


class SwitchWriter:
    """Writer whose target can be replaced at runtime.

    The lock guards only the read of the current target and the swap; the
    write itself happens outside it, against whichever target was captured.
    """

    def __init__(self, target):
        self._lock = threading.Lock()
        self._target = target

    @property
    def target(self):
        with self._lock:
            return self._target

    def set(self, target):
        """Replace the target and return the previous one."""
        with self._lock:
            prev = self._target
            self._target = target
        return prev

    def write(self, data: str) -> int:
        with self._lock:
            target = self._target
        return target.write(data)

    def flush(self) -> None:
        with self._lock:
            target = self._target
        flush = getattr(target, 'flush', None)
        if flush is not None:
            flush()


class OutputSwitch:
    """Owns the stdout/stderr SwitchWriters shared by every subcomponent."""

    def __init__(self, stdout: TextIO, stderr: TextIO):
        self.stdout = SwitchWriter(stdout)
        self.stderr = SwitchWriter(stderr)

    def redirect(self, stdout, stderr) -> Callable[[], None]:
        """Point both writers at new targets; returns a restore callable."""
        prev_out = self.stdout.set(stdout)
        prev_err = self.stderr.set(stderr)

        def restore() -> None:
            self.stdout.set(prev_out)
            self.stderr.set(prev_err)

        return restore

    def suspend(self) -> Callable[[], None]:
        """Discard all output until the returned restore callable is invoked."""
        return self.redirect(DISCARD, DISCARD)

    @contextmanager
    def suspended(self) -> Iterator[None]:
        restore = self.suspend()
        try:
            yield
        finally:
            restore()


class DeferredWriter:
    """Buffers writes in memory until flush_to() is called. Thread-safe."""

    def __init__(self):
        self._lock = threading.Lock()
        self._buf = StringIO()

    def write(self, data: str) -> int:
        with self._lock:
            return self._buf.write(data)

    def flush(self) -> None:
        # Buffer is only drained by flush_to()
        pass

    def flush_to(self, target) -> None:
        """Write everything buffered so far to target and clear the buffer."""
        with self._lock:
            data = self._buf.getvalue()
            self._buf = StringIO()
        if data:
            target.write(data)
