"""Author a Scene from live operator input, optionally running each command as it is entered."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, List, Optional

from pydantic import ValidationError

from .errors import InvalidSceneFormat
from .models import Scene, Step, TimingProfile
from .operator import LineSource
from .shell import ShellBridge, ShellHandle

logger = logging.getLogger(__name__)

RECORDER_HELP = "record: type commands; '# text' comment, ':pause [s]', ':mark label', ':undo', ':done'"


def parse_recorder_line(line: str) -> Optional[Step]:
    """Map one input line to a Step. Blank lines and directives return None."""
    stripped = line.strip()
    if not stripped:
        return None
    if stripped.startswith("#"):
        return Step.comment(stripped.lstrip("#").strip())
    if stripped.startswith(":pause"):
        arg = stripped[len(":pause"):].strip()
        if not arg:
            return Step.pause()
        return Step.pause(float(arg))
    if stripped.startswith(":mark"):
        return Step.marker(stripped[len(":mark"):].strip())
    if stripped.startswith(":"):
        return None
    return Step.command(line.rstrip("\r\n"))


class SceneRecorder:
    def __init__(
        self,
        source: LineSource,
        *,
        bridge: ShellBridge | None = None,
        display: Optional[Callable[[bytes], None]] = None,
        settle_seconds: float = 0.3,
        settle_timeout: float = 5.0,
        terminate_timeout: float = 2.0,
    ) -> None:
        self.source = source
        self.bridge = bridge
        self._display = display
        self.settle_seconds = settle_seconds
        self.settle_timeout = settle_timeout
        self.terminate_timeout = terminate_timeout
        self._last_output_at = time.monotonic()
        self._shell_exited = threading.Event()
        self._reader: Optional[threading.Thread] = None

    def record(
        self,
        name: str,
        *,
        timing: Optional[TimingProfile] = None,
        description: Optional[str] = None,
    ) -> Scene:
        steps: List[Step] = []
        handle = self._start_shell()
        try:
            while True:
                line = self.source.read_line()
                if line is None:
                    break
                stripped = line.strip()
                if stripped in (":done", ":q"):
                    break
                if stripped == ":undo":
                    if steps:
                        logger.info("Dropped step: %s", steps.pop().summary)
                    continue
                try:
                    step = parse_recorder_line(line)
                except (ValidationError, ValueError) as exc:
                    logger.warning("Ignoring %r: %s", line, exc)
                    continue
                if step is None:
                    if stripped:
                        logger.warning("Unknown directive %r (%s)", stripped, RECORDER_HELP)
                    continue
                steps.append(step)
                if step.kind == "command" and handle is not None:
                    self._run_live(handle, step.text or "")
                    if self._shell_exited.is_set():
                        logger.info("Shell exited; recording stops")
                        break
        finally:
            if handle is not None:
                handle.terminate(self.terminate_timeout)
            if self._reader is not None:
                self._reader.join(timeout=max(1.0, self.terminate_timeout))

        try:
            scene = Scene(
                name=name,
                description=description,
                timing=timing or TimingProfile(),
                steps=tuple(steps),
            )
        except ValidationError as exc:
            raise InvalidSceneFormat(f"{name}: {exc}") from exc
        logger.info("Recorded scene %s with %s steps", scene.name, len(scene.steps))
        return scene

    def _start_shell(self) -> Optional[ShellHandle]:
        if self.bridge is None:
            return None
        handle = self.bridge.start()
        self._reader = threading.Thread(
            target=self._pump,
            args=(handle,),
            name=f"scener-recorder-{handle.pid}",
            daemon=True,
        )
        self._reader.start()
        return handle

    def _pump(self, handle: ShellHandle) -> None:
        try:
            for chunk in handle.read_output():
                self._last_output_at = time.monotonic()
                if self._display is not None:
                    self._display(chunk)
        finally:
            self._shell_exited.set()

    def _run_live(self, handle: ShellHandle, text: str) -> None:
        handle.send((text + "\n").encode("utf-8"))
        start = time.monotonic()
        deadline = start + self.settle_timeout
        while not self._shell_exited.is_set():
            now = time.monotonic()
            if now - max(self._last_output_at, start) >= self.settle_seconds or now >= deadline:
                return
            time.sleep(0.02)
