"""Operator input: line sources and the listener turning lines into control signals."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Iterable, Iterator, Optional, Protocol

from .control import ControlChannel, ControlSignal, SignalKind

logger = logging.getLogger(__name__)

DEFAULT_PROMPT = "==> "

_KEYS = {
    "": SignalKind.CONTINUE,
    "c": SignalKind.CONTINUE,
    "continue": SignalKind.CONTINUE,
    "p": SignalKind.PAUSE,
    "pause": SignalKind.PAUSE,
    "s": SignalKind.STEP,
    "step": SignalKind.STEP,
    "n": SignalKind.SKIP,
    "next": SignalKind.SKIP,
    "skip": SignalKind.SKIP,
    "q": SignalKind.ABORT,
    "abort": SignalKind.ABORT,
    "d": SignalKind.DETACH,
    "detach": SignalKind.DETACH,
}

HELP_TEXT = "keys: p pause, c/enter continue, s step, n skip, q abort, d detach, !cmd run cmd"


class LineSource(Protocol):
    def read_line(self) -> Optional[str]:
        """Next line without its newline, or None on end of input."""


class StaticLineSource:
    """Hands out lines from an iterable one at a time, pulling each only when asked."""

    def __init__(self, lines: Iterable[str]) -> None:
        self._lines: Iterator[str] = iter(lines)
        self._lock = threading.Lock()

    def read_line(self) -> Optional[str]:
        with self._lock:
            return next(self._lines, None)


class ReadlineLineSource:
    """Interactive line editing over stdin with a persistent history file."""

    def __init__(self, history_file: Optional[Path] = None, prompt: str = DEFAULT_PROMPT) -> None:
        import readline  # stdlib; absent on some platforms

        self._readline = readline
        self.prompt = prompt
        self.history_file = Path(history_file) if history_file is not None else None
        if self.history_file is not None and self.history_file.is_file():
            try:
                readline.read_history_file(str(self.history_file))
            except OSError as exc:
                logger.warning("Could not read history %s: %s", self.history_file, exc)

    def read_line(self) -> Optional[str]:
        try:
            return input(self.prompt)
        except (EOFError, KeyboardInterrupt):
            return None

    def close(self) -> None:
        if self.history_file is None:
            return
        try:
            self.history_file.parent.mkdir(parents=True, exist_ok=True)
            self._readline.write_history_file(str(self.history_file))
        except OSError as exc:
            logger.warning("Could not write history %s: %s", self.history_file, exc)


def parse_operator_line(line: str) -> Optional[ControlSignal]:
    stripped = line.strip()
    if stripped.startswith("!"):
        return ControlSignal(SignalKind.INJECT, text=stripped[1:].strip())
    kind = _KEYS.get(stripped.lower())
    if kind is None:
        return None
    return ControlSignal(kind)


class OperatorListener:
    """Background thread reading operator lines and posting control signals."""

    def __init__(self, source: LineSource, channel: ControlChannel) -> None:
        self.source = source
        self.channel = channel
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> "OperatorListener":
        self._thread = threading.Thread(target=self._run, name="scener-operator", daemon=True)
        self._thread.start()
        return self

    def _run(self) -> None:
        while not self._stop.is_set():
            line = self.source.read_line()
            if line is None:
                logger.debug("Operator input closed")
                return
            if self._stop.is_set():
                return
            signal = parse_operator_line(line)
            if signal is None:
                logger.warning("Unknown operator command %r (%s)", line, HELP_TEXT)
                continue
            self.channel.post(signal)

    def stop(self) -> None:
        self._stop.set()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)
