"""Runtime session state: status machine, transcript and step records."""

from __future__ import annotations

import codecs
import enum
import random
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .errors import InvalidTransition
from .models import Scene, Step


class SessionStatus(str, enum.Enum):
    """Lifecycle marker for a playback session."""

    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    ABORTED = "aborted"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({SessionStatus.COMPLETED, SessionStatus.ABORTED, SessionStatus.FAILED})

_TRANSITIONS = {
    SessionStatus.RUNNING: {
        SessionStatus.PAUSED,
        SessionStatus.COMPLETED,
        SessionStatus.ABORTED,
        SessionStatus.FAILED,
    },
    # Paused -> Failed covers a shell dying or a snapshot failing while paused.
    SessionStatus.PAUSED: {SessionStatus.RUNNING, SessionStatus.ABORTED, SessionStatus.FAILED},
    SessionStatus.COMPLETED: set(),
    SessionStatus.ABORTED: set(),
    SessionStatus.FAILED: set(),
}


class StepStatus(str, enum.Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"


class EntryKind(str, enum.Enum):
    INPUT = "input"
    OUTPUT = "output"
    STEP = "step"
    COMMENT = "comment"
    MARKER = "marker"
    SKIPPED = "skipped"
    ADHOC = "adhoc"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _decode_dt(value: Any) -> datetime:
    if not value:
        return _utcnow()
    try:
        dt = datetime.fromisoformat(str(value))
    except ValueError:
        return _utcnow()
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def generate_session_id(now: Optional[datetime] = None, rng: Optional[random.Random] = None) -> str:
    """Sortable session key: millisecond timestamp plus 8 random hex digits."""
    now = now or _utcnow()
    rng = rng or random.SystemRandom()
    stamp = now.strftime("%Y%m%d%H%M%S") + f"{now.microsecond // 1000:03d}"
    suffix = "".join(rng.choice("0123456789abcdef") for _ in range(8))
    return f"{stamp}-{suffix}"


@dataclass(frozen=True)
class TranscriptEntry:
    kind: EntryKind
    data: str
    step_index: Optional[int] = None
    timestamp: float = field(default_factory=time.time)

    def as_payload(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "data": self.data,
            "step_index": self.step_index,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "TranscriptEntry":
        return cls(
            kind=EntryKind(payload["kind"]),
            data=str(payload.get("data") or ""),
            step_index=payload.get("step_index"),
            timestamp=float(payload.get("timestamp") or 0.0),
        )


@dataclass(frozen=True)
class StepRecord:
    index: int
    kind: str
    text: str
    status: StepStatus

    def as_payload(self) -> Dict[str, Any]:
        return {"index": self.index, "kind": self.kind, "text": self.text, "status": self.status.value}

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "StepRecord":
        return cls(
            index=int(payload["index"]),
            kind=str(payload.get("kind") or "command"),
            text=str(payload.get("text") or ""),
            status=StepStatus(payload.get("status") or StepStatus.COMPLETED.value),
        )


class Transcript:
    """Append-only record of keystrokes sent, output captured and steps executed.

    The controller thread and the output reader thread both append, so every
    mutation happens under a lock. Once frozen (terminal session status) any
    further append raises.
    """

    def __init__(
        self,
        entries: Optional[List[TranscriptEntry]] = None,
        records: Optional[List[StepRecord]] = None,
    ) -> None:
        self._entries: List[TranscriptEntry] = list(entries or [])
        self._records: List[StepRecord] = list(records or [])
        self._lock = threading.Lock()
        self._frozen = False
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    @property
    def entries(self) -> List[TranscriptEntry]:
        with self._lock:
            return list(self._entries)

    @property
    def records(self) -> List[StepRecord]:
        with self._lock:
            return list(self._records)

    @property
    def frozen(self) -> bool:
        return self._frozen

    def _append(self, entry: TranscriptEntry) -> TranscriptEntry:
        with self._lock:
            if self._frozen:
                raise RuntimeError("transcript is frozen")
            self._entries.append(entry)
        return entry

    def record(self, kind: EntryKind, data: str, step_index: Optional[int] = None) -> TranscriptEntry:
        return self._append(TranscriptEntry(kind=kind, data=data, step_index=step_index))

    def record_output(self, chunk: bytes, step_index: Optional[int] = None) -> Optional[TranscriptEntry]:
        with self._lock:
            text = self._decoder.decode(chunk)
        if not text:
            return None
        return self._append(TranscriptEntry(kind=EntryKind.OUTPUT, data=text, step_index=step_index))

    def flush_output(self, step_index: Optional[int] = None) -> Optional[TranscriptEntry]:
        with self._lock:
            text = self._decoder.decode(b"", final=True)
        if not text:
            return None
        return self._append(TranscriptEntry(kind=EntryKind.OUTPUT, data=text, step_index=step_index))

    def mark_step(self, step: Step, index: int, status: StepStatus) -> StepRecord:
        record = StepRecord(index=index, kind=step.kind, text=step.summary, status=status)
        with self._lock:
            if self._frozen:
                raise RuntimeError("transcript is frozen")
            self._records.append(record)
        return record

    def freeze(self) -> None:
        with self._lock:
            self._frozen = True

    def has_step_entry(self, step_index: int) -> bool:
        with self._lock:
            return any(
                entry.kind == EntryKind.STEP and entry.step_index == step_index
                for entry in self._entries
            )

    def as_payload(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "entries": [entry.as_payload() for entry in self._entries],
                "records": [record.as_payload() for record in self._records],
            }

    @classmethod
    def from_payload(cls, payload: Optional[Dict[str, Any]]) -> "Transcript":
        payload = payload or {}
        entries = [TranscriptEntry.from_payload(item) for item in payload.get("entries") or []]
        records = [StepRecord.from_payload(item) for item in payload.get("records") or []]
        return cls(entries=entries, records=records)


@dataclass
class Session:
    """One playback of a scene with its own progress and transcript."""

    session_id: str
    scene_name: str
    scene_version: int
    scene_digest: str
    seed: int
    speed: float = 1.0
    step_index: int = 0
    cursor: int = 0
    status: SessionStatus = SessionStatus.RUNNING
    started_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    failure_reason: Optional[str] = None
    exit_code: Optional[int] = None
    scene_path: Optional[str] = None
    transcript: Transcript = field(default_factory=Transcript)

    @classmethod
    def for_scene(
        cls,
        scene: Scene,
        *,
        seed: Optional[int] = None,
        speed: float = 1.0,
        session_id: Optional[str] = None,
        scene_path: Optional[str] = None,
    ) -> "Session":
        if speed <= 0:
            raise ValueError("speed must be positive")
        if seed is None:
            seed = random.SystemRandom().randrange(2**32)
        return cls(
            session_id=session_id or generate_session_id(),
            scene_name=scene.name,
            scene_version=scene.version,
            scene_digest=scene.digest(),
            seed=int(seed),
            speed=float(speed),
            scene_path=scene_path,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def transition(self, target: SessionStatus, reason: Optional[str] = None) -> None:
        if target == self.status:
            return
        if target not in _TRANSITIONS[self.status]:
            raise InvalidTransition(f"cannot move session from {self.status.value} to {target.value}")
        self.status = target
        self.updated_at = _utcnow()
        if target == SessionStatus.FAILED:
            self.failure_reason = reason or self.failure_reason
        if target.is_terminal:
            self.transcript.freeze()

    def advance(self) -> None:
        self.step_index += 1
        self.cursor = 0
        self.updated_at = _utcnow()

    def as_payload(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "scene": {
                "name": self.scene_name,
                "version": self.scene_version,
                "digest": self.scene_digest,
                "path": self.scene_path,
            },
            "seed": self.seed,
            "speed": self.speed,
            "step_index": self.step_index,
            "cursor": self.cursor,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "failure_reason": self.failure_reason,
            "exit_code": self.exit_code,
            "transcript": self.transcript.as_payload(),
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Session":
        scene = payload.get("scene") or {}
        transcript = Transcript.from_payload(payload.get("transcript"))
        status = SessionStatus(payload.get("status") or SessionStatus.PAUSED.value)
        session = cls(
            session_id=str(payload["session_id"]),
            scene_name=str(scene["name"]),
            scene_version=int(scene.get("version") or 1),
            scene_digest=str(scene.get("digest") or ""),
            seed=int(payload["seed"]),
            speed=float(payload.get("speed") or 1.0),
            step_index=int(payload.get("step_index") or 0),
            cursor=int(payload.get("cursor") or 0),
            status=status,
            started_at=_decode_dt(payload.get("started_at")),
            updated_at=_decode_dt(payload.get("updated_at")),
            failure_reason=payload.get("failure_reason"),
            exit_code=payload.get("exit_code"),
            scene_path=scene.get("path"),
            transcript=transcript,
        )
        if status.is_terminal:
            transcript.freeze()
        return session
