"""Replay stored shell scenes into a live shell with simulated typing."""

from .control import ControlChannel, ControlSignal, SignalKind
from .controller import PlaybackController, resume_session
from .errors import (
    ClipboardUnavailable,
    InvalidSceneFormat,
    InvalidSnapshotFormat,
    InvalidTransition,
    ReferenceNotFound,
    SceneNotFound,
    ScenerError,
    SessionNotFound,
    ShellSpawnFailed,
    ShellUnavailable,
    SnapshotWriteFailed,
    UnexpectedShellExit,
)
from .models import Scene, Step, TimingProfile
from .persistence import SnapshotStore
from .session import Session, SessionStatus, Transcript
from .shell import ShellBridge, ShellHandle
from .store import SceneStore
from .timing import Keystroke, build_schedule

__all__ = [
    "ClipboardUnavailable",
    "ControlChannel",
    "ControlSignal",
    "InvalidSceneFormat",
    "InvalidSnapshotFormat",
    "InvalidTransition",
    "Keystroke",
    "PlaybackController",
    "ReferenceNotFound",
    "Scene",
    "SceneNotFound",
    "SceneStore",
    "ScenerError",
    "Session",
    "SessionNotFound",
    "SessionStatus",
    "ShellBridge",
    "ShellHandle",
    "ShellSpawnFailed",
    "ShellUnavailable",
    "SignalKind",
    "SnapshotStore",
    "SnapshotWriteFailed",
    "Step",
    "TimingProfile",
    "Transcript",
    "UnexpectedShellExit",
    "build_schedule",
    "resume_session",
]
