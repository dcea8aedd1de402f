"""Control signals posted by the operator (or the output reader) to a running playback."""

from __future__ import annotations

import enum
import queue
from dataclasses import dataclass
from typing import List, Optional


class SignalKind(str, enum.Enum):
    PAUSE = "pause"
    CONTINUE = "continue"
    STEP = "step"
    SKIP = "skip"
    ABORT = "abort"
    DETACH = "detach"
    INJECT = "inject"
    SHELL_EXITED = "shell_exited"


@dataclass(frozen=True)
class ControlSignal:
    kind: SignalKind
    text: Optional[str] = None


class ControlChannel:
    """Thread-safe FIFO of control signals consumed by the playback controller.

    Producers (the operator listener, tests, the output reader) only ever post;
    the controller is the single consumer.
    """

    def __init__(self) -> None:
        self._queue: "queue.Queue[ControlSignal]" = queue.Queue()

    def post(self, signal: ControlSignal) -> None:
        self._queue.put(signal)

    def pause(self) -> None:
        self.post(ControlSignal(SignalKind.PAUSE))

    def resume(self) -> None:
        self.post(ControlSignal(SignalKind.CONTINUE))

    def step(self) -> None:
        self.post(ControlSignal(SignalKind.STEP))

    def skip(self) -> None:
        self.post(ControlSignal(SignalKind.SKIP))

    def abort(self) -> None:
        self.post(ControlSignal(SignalKind.ABORT))

    def detach(self) -> None:
        self.post(ControlSignal(SignalKind.DETACH))

    def inject(self, text: str) -> None:
        self.post(ControlSignal(SignalKind.INJECT, text=text))

    def get(self, timeout: Optional[float] = None) -> Optional[ControlSignal]:
        """Next signal, or None once ``timeout`` elapses. ``None`` blocks forever."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def purge(self, kind: SignalKind) -> int:
        """Drop every pending signal of ``kind``; other signals keep their order."""
        kept: List[ControlSignal] = []
        dropped = 0
        while True:
            try:
                signal = self._queue.get_nowait()
            except queue.Empty:
                break
            if signal.kind == kind:
                dropped += 1
            else:
                kept.append(signal)
        for signal in kept:
            self._queue.put(signal)
        return dropped
