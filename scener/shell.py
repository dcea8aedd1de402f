"""Shell Session Bridge: owns the live shell subprocess and its I/O channels."""

from __future__ import annotations

import logging
import os
import queue
import select
import signal
import subprocess
import threading
from typing import Dict, Iterator, List, Optional, Sequence

from .errors import ShellSpawnFailed, ShellUnavailable

logger = logging.getLogger(__name__)

READ_CHUNK = 4096
PUMP_POLL_SECONDS = 0.05
# Ctrl-U clears any half-typed line, Ctrl-D then closes the shell's input.
PTY_END_OF_INPUT = b"\x15\x04"


def default_shell_argv() -> List[str]:
    return [os.environ.get("SHELL") or "/bin/sh"]


def pty_supported() -> bool:
    return hasattr(os, "openpty")


class ShellHandle:
    """A running shell: append-only input, a lazily drained output stream."""

    def __init__(self, process: subprocess.Popen, *, master_fd: Optional[int] = None) -> None:
        self._process = process
        self._master_fd = master_fd
        self._chunks: "queue.Queue[Optional[bytes]]" = queue.Queue()
        self._stop = threading.Event()
        self._lock = threading.Lock()
        self._terminated = False
        self._consumed = False
        self._pump = threading.Thread(
            target=self._pump_output,
            name=f"scener-shell-pump-{process.pid}",
            daemon=True,
        )
        self._pump.start()

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def exit_code(self) -> Optional[int]:
        return self._process.poll()

    @property
    def running(self) -> bool:
        return not self._terminated and self._process.poll() is None

    def _read_fd(self) -> int:
        if self._master_fd is not None:
            return self._master_fd
        assert self._process.stdout is not None
        return self._process.stdout.fileno()

    def _pump_output(self) -> None:
        fd = self._read_fd()
        try:
            while True:
                try:
                    readable, _, _ = select.select([fd], [], [], PUMP_POLL_SECONDS)
                except (OSError, ValueError):
                    break
                if not readable:
                    if self._stop.is_set():
                        break
                    continue
                try:
                    chunk = os.read(fd, READ_CHUNK)
                except OSError:
                    # EIO on the pty master once every slave end is closed.
                    break
                if not chunk:
                    break
                self._chunks.put(chunk)
        finally:
            self._chunks.put(None)

    def send(self, data: bytes) -> None:
        with self._lock:
            if self._terminated or self._process.poll() is not None:
                raise ShellUnavailable(f"shell (pid {self.pid}) is no longer running")
            try:
                if self._master_fd is not None:
                    view = memoryview(data)
                    while view:
                        written = os.write(self._master_fd, view)
                        view = view[written:]
                else:
                    assert self._process.stdin is not None
                    self._process.stdin.write(data)
                    self._process.stdin.flush()
            except (OSError, ValueError) as exc:
                raise ShellUnavailable(f"could not write to shell (pid {self.pid}): {exc}") from exc

    def read_output(self) -> Iterator[bytes]:
        """Yield output chunks in arrival order until the shell goes away.

        Only one consumer may drain a handle; a fresh handle (a fresh shell)
        starts a fresh stream.
        """
        with self._lock:
            if self._consumed:
                raise RuntimeError("shell output is already being consumed")
            self._consumed = True
        return self._iter_chunks()

    def _iter_chunks(self) -> Iterator[bytes]:
        while True:
            chunk = self._chunks.get()
            if chunk is None:
                return
            yield chunk

    def poll(self) -> Optional[int]:
        return self._process.poll()

    def wait(self, timeout: Optional[float] = None) -> Optional[int]:
        try:
            return self._process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            return None

    def _signal_end_of_input(self) -> None:
        try:
            if self._master_fd is not None:
                os.write(self._master_fd, PTY_END_OF_INPUT)
            elif self._process.stdin is not None:
                self._process.stdin.close()
        except (OSError, ValueError):
            pass

    def _kill(self) -> None:
        try:
            os.killpg(self._process.pid, signal.SIGKILL)
        except (AttributeError, ProcessLookupError, PermissionError, OSError):
            self._process.kill()

    def terminate(self, timeout: float = 2.0) -> Optional[int]:
        """Close input, wait up to ``timeout``, then kill. Safe to call repeatedly."""
        with self._lock:
            if self._terminated:
                return self._process.poll()
            self._terminated = True
            if self._process.poll() is None:
                self._signal_end_of_input()
        if self.wait(timeout) is None:
            logger.warning("Shell pid %s ignored end of input; killing", self.pid)
            self._kill()
            self._process.wait()
        self._stop.set()
        self._pump.join(timeout=max(1.0, timeout))
        self._close_fds()
        code = self._process.returncode
        logger.debug("Shell pid %s terminated with exit code %s", self.pid, code)
        return code

    def _close_fds(self) -> None:
        if self._master_fd is not None:
            try:
                os.close(self._master_fd)
            except OSError:
                pass
            self._master_fd = None
        for stream in (self._process.stdin, self._process.stdout):
            if stream is not None:
                try:
                    stream.close()
                except (OSError, ValueError):
                    pass


class ShellBridge:
    """Factory for shell subprocesses. Each ``start()`` spawns a fresh shell."""

    def __init__(
        self,
        argv: Optional[Sequence[str]] = None,
        *,
        cwd: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
        use_pty: Optional[bool] = None,
    ) -> None:
        self.argv = list(argv or default_shell_argv())
        self.cwd = cwd
        self.env = dict(env) if env is not None else None
        self.use_pty = pty_supported() if use_pty is None else bool(use_pty)

    def start(self) -> ShellHandle:
        if self.use_pty:
            return self._start_pty()
        return self._start_pipes()

    def _start_pty(self) -> ShellHandle:
        import pty  # POSIX only

        master_fd, slave_fd = pty.openpty()
        try:
            process = subprocess.Popen(
                self.argv,
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                cwd=self.cwd,
                env=self.env,
                start_new_session=True,
                close_fds=True,
            )
        except (OSError, ValueError) as exc:
            os.close(master_fd)
            raise ShellSpawnFailed(f"could not start {' '.join(self.argv)}: {exc}") from exc
        finally:
            os.close(slave_fd)
        logger.info("Started shell %s (pid %s, pty)", self.argv[0], process.pid)
        return ShellHandle(process, master_fd=master_fd)

    def _start_pipes(self) -> ShellHandle:
        try:
            process = subprocess.Popen(
                self.argv,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                cwd=self.cwd,
                env=self.env,
                start_new_session=True,
                bufsize=0,
            )
        except (OSError, ValueError) as exc:
            raise ShellSpawnFailed(f"could not start {' '.join(self.argv)}: {exc}") from exc
        logger.info("Started shell %s (pid %s, pipes)", self.argv[0], process.pid)
        return ShellHandle(process)
