from __future__ import annotations

import logging
import threading
import time
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

from .control import ControlChannel, ControlSignal, SignalKind
from .errors import (
    InvalidSceneFormat,
    InvalidTransition,
    ShellSpawnFailed,
    ShellUnavailable,
    SnapshotWriteFailed,
    UnexpectedShellExit,
)
from .models import Scene, Step
from .persistence import SnapshotStore
from .session import EntryKind, Session, SessionStatus, StepStatus
from .shell import ShellBridge, ShellHandle
from .store import SceneStore, load_scene_file
from .timing import build_schedule, pause_schedule, schedule_duration

logger = logging.getLogger(__name__)

EventEmitter = Callable[[str, Dict[str, Any]], None]
OutputSink = Callable[[bytes], None]

# Ctrl-U: kill the partially typed line.
DEFAULT_DISCARD_SEQUENCE = b"\x15"
SUBMIT = "\n"

_SKIP = "skip"


class _Stop(Exception):
    """Unwinds the step loop on abort or detach."""

    def __init__(self, status: SessionStatus, reason: str) -> None:
        super().__init__(reason)
        self.status = status
        self.reason = reason


class PlaybackController:
    """
    Drives one Session of a Scene against a live shell.

    The controller owns the shell handle for the duration of ``play`` and is the
    only writer of session progress. Progress is checkpointed after every step,
    on every pause and at the terminal status; never between two keystrokes.
    """

    def __init__(
        self,
        scene: Scene,
        *,
        bridge: ShellBridge,
        persistence: SnapshotStore | None = None,
        channel: ControlChannel | None = None,
        display: Optional[OutputSink] = None,
        event_emitter: Optional[EventEmitter] = None,
        settle_seconds: float = 0.3,
        settle_timeout: float = 5.0,
        terminate_timeout: float = 2.0,
        discard_sequence: bytes = DEFAULT_DISCARD_SEQUENCE,
        time_fn: Optional[Callable[[], float]] = None,
    ) -> None:
        self.scene = scene
        self.bridge = bridge
        self.persistence = persistence
        self.channel = channel or ControlChannel()
        self._display = display
        self._event_emitter = event_emitter
        self.settle_seconds = max(0.0, float(settle_seconds))
        self.settle_timeout = max(0.0, float(settle_timeout))
        self.terminate_timeout = max(0.0, float(terminate_timeout))
        self.discard_sequence = discard_sequence
        self._time_fn = time_fn or time.monotonic
        self._reset()

    def _reset(self) -> None:
        self._backlog: Deque[ControlSignal] = deque()
        self._pending_injects: List[str] = []
        self._single_step = False
        self._stopping = False
        self._shell_exited = threading.Event()
        self._last_output_at = self._time_fn()
        self._reader: Optional[threading.Thread] = None

    # ------------------------------------------------------------------
    # public entrypoint
    # ------------------------------------------------------------------

    def play(self, session: Session) -> Session:
        """Run ``session`` until it reaches a terminal status or is detached.

        Returns the same session object. In-session failures (shell exit,
        snapshot write) leave it ``failed`` with ``failure_reason`` set rather
        than raising; a shell that cannot be spawned raises ``ShellSpawnFailed``
        after the session has been marked failed.
        """
        self._check_session(session)
        if session.status == SessionStatus.PAUSED:
            session.transition(SessionStatus.RUNNING)
        self._reset()

        try:
            handle = self.bridge.start()
        except ShellSpawnFailed as exc:
            self._finish(session, SessionStatus.FAILED, str(exc), None)
            raise

        self._start_reader(session, handle)
        self._emit("session_started", session)
        logger.info(
            "Playing scene %s (session %s) from step %s cursor %s",
            self.scene.name,
            session.session_id,
            session.step_index,
            session.cursor,
        )

        outcome = SessionStatus.COMPLETED
        reason: Optional[str] = None
        try:
            self._run_steps(session, handle)
        except _Stop as stop:
            outcome, reason = stop.status, stop.reason
        except ShellUnavailable as exc:
            outcome, reason = SessionStatus.FAILED, str(exc)
        except UnexpectedShellExit as exc:
            session.exit_code = exc.exit_code
            outcome, reason = SessionStatus.FAILED, str(exc)
        except SnapshotWriteFailed as exc:
            logger.error("Session %s: %s", session.session_id, exc)
            outcome, reason = SessionStatus.FAILED, str(exc)
        except KeyboardInterrupt:
            outcome, reason = SessionStatus.ABORTED, "interrupted"
        except BaseException as exc:
            exit_code = self._teardown(session, handle)
            self._finish(session, SessionStatus.FAILED, f"{type(exc).__name__}: {exc}", exit_code)
            raise

        exit_code = self._teardown(session, handle)
        self._finish(session, outcome, reason, exit_code)
        return session

    # ------------------------------------------------------------------
    # lifecycle helpers
    # ------------------------------------------------------------------

    def _check_session(self, session: Session) -> None:
        if session.is_terminal:
            raise InvalidTransition(f"session {session.session_id} is already {session.status.value}")
        if session.scene_digest != self.scene.digest():
            raise InvalidSceneFormat(
                f"scene {self.scene.name} changed since session {session.session_id} started"
            )
        if session.step_index > len(self.scene.steps):
            raise InvalidSceneFormat(
                f"session {session.session_id} is past the end of scene {self.scene.name}"
            )

    def _start_reader(self, session: Session, handle: ShellHandle) -> None:
        self._reader = threading.Thread(
            target=self._read_output,
            args=(session, handle),
            name=f"scener-reader-{session.session_id}",
            daemon=True,
        )
        self._reader.start()

    def _read_output(self, session: Session, handle: ShellHandle) -> None:
        try:
            for chunk in handle.read_output():
                self._last_output_at = self._time_fn()
                session.transcript.record_output(chunk, session.step_index)
                if self._display is not None:
                    try:
                        self._display(chunk)
                    except OSError as exc:
                        logger.warning("Output display failed: %s", exc)
                        self._display = None
        finally:
            self._shell_exited.set()
            if not self._stopping:
                self.channel.post(ControlSignal(SignalKind.SHELL_EXITED))

    def _teardown(self, session: Session, handle: ShellHandle) -> Optional[int]:
        self._stopping = True
        exit_code = handle.terminate(self.terminate_timeout)
        if self._reader is not None:
            self._reader.join(timeout=max(1.0, self.terminate_timeout))
            if self._reader.is_alive():
                logger.warning("Output reader for session %s did not stop", session.session_id)
        if not session.transcript.frozen:
            session.transcript.flush_output(session.step_index)
        self.channel.purge(SignalKind.SHELL_EXITED)
        return exit_code

    def _finish(
        self,
        session: Session,
        outcome: SessionStatus,
        reason: Optional[str],
        exit_code: Optional[int],
    ) -> None:
        if session.exit_code is None:
            session.exit_code = exit_code
        if outcome == SessionStatus.PAUSED:
            session.transition(SessionStatus.PAUSED)
            try:
                self._checkpoint(session)
            except SnapshotWriteFailed as exc:
                logger.error("Session %s: %s", session.session_id, exc)
                self._finish(session, SessionStatus.FAILED, str(exc), exit_code)
                return
            logger.info(
                "Session %s detached at step %s cursor %s",
                session.session_id,
                session.step_index,
                session.cursor,
            )
            self._emit("session_detached", session)
            return

        session.transition(outcome, reason)
        try:
            self._checkpoint(session)
        except SnapshotWriteFailed as exc:
            # The terminal status stands; the failure is reported alongside it.
            logger.error("Session %s: final snapshot failed: %s", session.session_id, exc)
        if outcome == SessionStatus.FAILED:
            logger.error("Session %s failed: %s", session.session_id, reason)
        else:
            logger.info("Session %s %s", session.session_id, outcome.value)
        self._emit("session_finished", session)

    def _checkpoint(self, session: Session) -> None:
        if self.persistence is not None:
            self.persistence.save_session_snapshot(session)

    def _emit(self, event: str, session: Session, **payload: Any) -> None:
        if self._event_emitter is None:
            return
        body: Dict[str, Any] = {
            "session_id": session.session_id,
            "status": session.status.value,
            "step_index": session.step_index,
            "cursor": session.cursor,
        }
        body.update(payload)
        self._event_emitter(event, body)

    # ------------------------------------------------------------------
    # step loop
    # ------------------------------------------------------------------

    def _run_steps(self, session: Session, handle: ShellHandle) -> None:
        steps = self.scene.steps
        while session.step_index < len(steps):
            step = steps[session.step_index]
            skipped = self._at_boundary(session, handle) == _SKIP
            if not skipped:
                self._emit("step_started", session, kind=step.kind)
                skipped = self._run_step(session, handle, step) == _SKIP
            if skipped:
                self._skip_step(session, handle, step)
            self._complete_step(session, step, skipped)

    def _at_boundary(self, session: Session, handle: ShellHandle) -> Optional[str]:
        self._flush_injects(session, handle)
        if self._single_step:
            self._single_step = False
            if self._paused(session, handle) == _SKIP:
                return _SKIP
        while True:
            signal = self._next_signal(0.0)
            if signal is None:
                return None
            if self._handle_signal(session, handle, signal) == _SKIP:
                return _SKIP

    def _run_step(self, session: Session, handle: ShellHandle, step: Step) -> Optional[str]:
        index = session.step_index
        if step.kind == "command":
            return self._type_command(session, handle, step)
        if step.kind == "pause":
            return self._wait_pause(session, handle, step)
        if step.kind == "comment":
            session.transcript.record(EntryKind.COMMENT, step.text or "", index)
            self._emit("comment", session, text=step.text or "")
        else:
            session.transcript.record(EntryKind.MARKER, step.label or "", index)
            self._emit("marker", session, label=step.label or "")
        return None

    def _complete_step(self, session: Session, step: Step, skipped: bool) -> None:
        status = StepStatus.SKIPPED if skipped else StepStatus.COMPLETED
        session.transcript.mark_step(step, session.step_index, status)
        completed_index = session.step_index
        session.advance()
        self._checkpoint(session)
        self._emit("step_finished", session, index=completed_index, step_status=status.value)

    def _skip_step(self, session: Session, handle: ShellHandle, step: Step) -> None:
        if step.kind == "command" and session.cursor > 0 and self.discard_sequence:
            self._send(handle, self.discard_sequence)
        session.transcript.record(EntryKind.SKIPPED, step.summary, session.step_index)
        logger.info("Session %s skipped step %s", session.session_id, session.step_index)

    # ------------------------------------------------------------------
    # step kinds
    # ------------------------------------------------------------------

    def _type_command(self, session: Session, handle: ShellHandle, step: Step) -> Optional[str]:
        index = session.step_index
        text = step.text or ""
        profile = self.scene.profile_for(step)
        if session.cursor == 0 and not session.transcript.has_step_entry(index):
            session.transcript.record(EntryKind.STEP, text, index)
            if profile.pre_delay and self._sleep(session, handle, profile.pre_delay / session.speed) == _SKIP:
                return _SKIP

        schedule = build_schedule(
            text,
            profile,
            seed=session.seed,
            salt=index,
            offset=session.cursor,
            speed=session.speed,
        )
        logger.debug(
            "Session %s step %s: %s keystrokes over %.2fs",
            session.session_id,
            index,
            len(schedule),
            schedule_duration(schedule),
        )
        for keystroke in schedule:
            if self._sleep(session, handle, keystroke.delay or 0.0) == _SKIP:
                return _SKIP
            self._send(handle, keystroke.char.encode("utf-8"))
            session.cursor = keystroke.index + 1
            session.transcript.record(EntryKind.INPUT, keystroke.char, index)
            self._emit("keystroke", session, index=keystroke.index, char=keystroke.char, delay=keystroke.delay)

        if self._sleep(session, handle, 0.0) == _SKIP:
            return _SKIP
        self._send(handle, SUBMIT.encode("utf-8"))
        session.transcript.record(EntryKind.INPUT, SUBMIT, index)
        final = index == len(self.scene.steps) - 1
        self._settle(session, handle, minimum=profile.post_delay / session.speed, final=final)
        return None

    def _wait_pause(self, session: Session, handle: ShellHandle, step: Step) -> Optional[str]:
        wait = pause_schedule(step, speed=session.speed)[0]
        if wait.delay is None:
            while True:
                signal = self._next_signal(None)
                if signal is None:
                    continue
                if signal.kind == SignalKind.CONTINUE:
                    return None
                action = self._handle_signal(session, handle, signal)
                if action == _SKIP:
                    return _SKIP
                if signal.kind == SignalKind.PAUSE:
                    return None
                self._flush_injects(session, handle)
        return self._sleep(session, handle, wait.delay)

    def _type_adhoc(self, session: Session, handle: ShellHandle, text: str) -> None:
        self._send(handle, (text + SUBMIT).encode("utf-8"))
        session.transcript.record(EntryKind.ADHOC, text, session.step_index)
        self._emit("adhoc", session, text=text)

    def _flush_injects(self, session: Session, handle: ShellHandle) -> None:
        while self._pending_injects:
            self._type_adhoc(session, handle, self._pending_injects.pop(0))
            self._settle(session, handle)

    def _send(self, handle: ShellHandle, data: bytes) -> None:
        if self._shell_exited.is_set():
            raise UnexpectedShellExit(handle.wait(self.terminate_timeout))
        try:
            handle.send(data)
        except ShellUnavailable:
            raise UnexpectedShellExit(handle.wait(self.terminate_timeout)) from None

    # ------------------------------------------------------------------
    # waiting and signals
    # ------------------------------------------------------------------

    def _next_signal(self, timeout: Optional[float]) -> Optional[ControlSignal]:
        if self._backlog:
            return self._backlog.popleft()
        return self.channel.get(timeout)

    def _sleep(self, session: Session, handle: ShellHandle, seconds: float) -> Optional[str]:
        """Wait ``seconds`` while answering control signals.

        A pause restarts the wait once the operator continues. Returns ``_SKIP``
        if the current step should be abandoned.
        """
        seconds = max(0.0, seconds)
        deadline = self._time_fn() + seconds
        while True:
            remaining = max(0.0, deadline - self._time_fn())
            signal = self._next_signal(remaining)
            if signal is None:
                if self._time_fn() >= deadline:
                    return None
                continue
            action = self._handle_signal(session, handle, signal)
            if action == _SKIP:
                return _SKIP
            if signal.kind == SignalKind.PAUSE:
                deadline = self._time_fn() + seconds

    def _settle(
        self,
        session: Session,
        handle: ShellHandle,
        *,
        minimum: float = 0.0,
        final: bool = False,
    ) -> None:
        """Wait until shell output has been idle for ``settle_seconds``.

        Only abort is acted on here; other signals are kept for the next step
        boundary so a submitted command is never split from its record.
        """
        start = self._time_fn()
        deadline = start + minimum + self.settle_timeout
        while True:
            now = self._time_fn()
            if self._shell_exited.is_set():
                if final:
                    return
                raise UnexpectedShellExit(handle.wait(self.terminate_timeout))
            idle_for = now - max(self._last_output_at, start)
            if now - start >= minimum and idle_for >= self.settle_seconds:
                return
            if now >= deadline:
                logger.debug("Session %s: output still busy after settle timeout", session.session_id)
                return
            signal = self.channel.get(min(0.02, max(0.0, deadline - now)))
            if signal is None or signal.kind == SignalKind.SHELL_EXITED:
                continue
            if signal.kind == SignalKind.ABORT:
                raise _Stop(SessionStatus.ABORTED, "aborted by operator")
            self._backlog.append(signal)

    def _handle_signal(self, session: Session, handle: ShellHandle, signal: ControlSignal) -> Optional[str]:
        kind = signal.kind
        if kind == SignalKind.PAUSE:
            return self._paused(session, handle)
        if kind == SignalKind.SKIP:
            return _SKIP
        if kind == SignalKind.STEP:
            self._single_step = True
        elif kind == SignalKind.INJECT:
            if signal.text is not None:
                self._pending_injects.append(signal.text)
        elif kind == SignalKind.ABORT:
            raise _Stop(SessionStatus.ABORTED, "aborted by operator")
        elif kind == SignalKind.DETACH:
            raise _Stop(SessionStatus.PAUSED, "detached by operator")
        elif kind == SignalKind.SHELL_EXITED:
            raise UnexpectedShellExit(handle.wait(self.terminate_timeout))
        return None

    def _paused(self, session: Session, handle: ShellHandle) -> Optional[str]:
        """Hold at the current step and cursor until the operator moves on."""
        session.transition(SessionStatus.PAUSED)
        self._checkpoint(session)
        logger.info(
            "Session %s paused at step %s cursor %s",
            session.session_id,
            session.step_index,
            session.cursor,
        )
        self._emit("session_paused", session)
        while True:
            signal = self._next_signal(None)
            if signal is None:
                continue
            kind = signal.kind
            if kind == SignalKind.INJECT:
                if signal.text is not None:
                    self._type_adhoc(session, handle, signal.text)
                continue
            if kind == SignalKind.PAUSE:
                continue
            if kind == SignalKind.ABORT:
                raise _Stop(SessionStatus.ABORTED, "aborted by operator")
            if kind == SignalKind.DETACH:
                raise _Stop(SessionStatus.PAUSED, "detached by operator")
            if kind == SignalKind.SHELL_EXITED:
                raise UnexpectedShellExit(handle.wait(self.terminate_timeout))
            session.transition(SessionStatus.RUNNING)
            self._emit("session_resumed", session)
            if kind == SignalKind.STEP:
                self._single_step = True
            elif kind == SignalKind.SKIP:
                self._single_step = True
                return _SKIP
            return None


def resume_session(
    session_id: str,
    snapshots: SnapshotStore,
    scenes: SceneStore,
    *,
    speed: Optional[float] = None,
) -> Tuple[Session, Scene]:
    """Load a saved session and the scene it plays, ready for ``play``.

    Completed steps are never replayed: the returned session keeps its step
    index and keystroke cursor, and ``play`` regenerates the interrupted step's
    remaining schedule from the same seed.
    """
    session = snapshots.load_session_snapshot(session_id)
    if session.is_terminal:
        raise InvalidTransition(
            f"session {session_id} is {session.status.value} and cannot be resumed"
        )
    if session.scene_path:
        scene = load_scene_file(session.scene_path)
    else:
        scene = scenes.load_scene(session.scene_name)
    if scene.digest() != session.scene_digest:
        raise InvalidSceneFormat(
            f"scene {scene.name} changed since session {session_id} started; start a new session"
        )
    if speed is not None:
        if speed <= 0:
            raise ValueError("speed must be positive")
        session.speed = float(speed)
    if session.status == SessionStatus.PAUSED:
        session.transition(SessionStatus.RUNNING)
    logger.info(
        "Resuming session %s of scene %s at step %s cursor %s",
        session_id,
        scene.name,
        session.step_index,
        session.cursor,
    )
    return session, scene
