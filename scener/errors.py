"""Exception taxonomy shared by the playback engine and its collaborators."""

from __future__ import annotations

from typing import Optional


class ScenerError(RuntimeError):
    """Base class for every error raised by scener."""


class SceneNotFound(ScenerError):
    """Raised when a scene name or path does not resolve to a scene file."""

    def __init__(self, name: str) -> None:
        super().__init__(f"scene not found: {name}")
        self.name = name


class InvalidSceneFormat(ScenerError):
    """Raised when a scene file cannot be parsed or fails schema validation."""


class SessionNotFound(ScenerError):
    """Raised when a session snapshot does not exist."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"session not found: {session_id}")
        self.session_id = session_id


class InvalidSnapshotFormat(ScenerError):
    """Raised when a session snapshot cannot be decoded."""


class ShellSpawnFailed(ScenerError):
    """Raised when the shell subprocess cannot be started."""


class ShellUnavailable(ScenerError):
    """Raised when input is sent to a shell that has already exited."""


class UnexpectedShellExit(ScenerError):
    """Raised when the shell exits while a scene is still playing."""

    def __init__(self, exit_code: Optional[int]) -> None:
        super().__init__(f"shell exited unexpectedly (exit code {exit_code})")
        self.exit_code = exit_code


class SnapshotWriteFailed(ScenerError):
    """Raised when a session snapshot cannot be written to disk."""


class ClipboardUnavailable(ScenerError):
    """Raised when the system clipboard cannot be reached. Never fatal."""


class InvalidTransition(ScenerError):
    """Raised on a session status change the state machine does not allow."""


class ReferenceNotFound(ScenerError):
    """Raised when an `@N` or named session reference cannot be resolved."""

    def __init__(self, reference: str, reason: str = "session not found") -> None:
        super().__init__(f"{reason} (ref = {reference})")
        self.reference = reference
        self.reason = reason
