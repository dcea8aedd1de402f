"""Session Persistence: durable, atomically replaced session snapshots."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List

from .errors import InvalidSnapshotFormat, SessionNotFound, SnapshotWriteFailed
from .session import Session
from .utils import read_json, write_json_atomic

logger = logging.getLogger(__name__)

SNAPSHOT_SCHEMA_VERSION = 1


def encode_snapshot(session: Session) -> Dict[str, Any]:
    return {"schema_version": SNAPSHOT_SCHEMA_VERSION, "session": session.as_payload()}


def decode_snapshot(payload: Any, *, source: str = "<memory>") -> Session:
    if not isinstance(payload, dict):
        raise InvalidSnapshotFormat(f"{source}: snapshot must be a mapping")
    version = payload.get("schema_version")
    if version != SNAPSHOT_SCHEMA_VERSION:
        raise InvalidSnapshotFormat(
            f"{source}: unsupported schema_version {version!r} (expected {SNAPSHOT_SCHEMA_VERSION})"
        )
    body = payload.get("session")
    if not isinstance(body, dict):
        raise InvalidSnapshotFormat(f"{source}: missing 'session' section")
    try:
        return Session.from_payload(body)
    except (KeyError, TypeError, ValueError) as exc:
        raise InvalidSnapshotFormat(f"{source}: {exc}") from exc


class SnapshotStore:
    """One JSON snapshot per session under ``root``.

    Each save replaces the whole file through a temp file plus rename, so a
    crash mid-write leaves the last good snapshot in place.
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root).expanduser()

    def path_for(self, session_id: str) -> Path:
        return self.root / f"{session_id}.json"

    def save_session_snapshot(self, session: Session) -> Path:
        payload = encode_snapshot(session)
        path = self.path_for(session.session_id)
        try:
            write_json_atomic(path, payload)
        except (OSError, TypeError, ValueError) as exc:
            raise SnapshotWriteFailed(f"could not write session snapshot to {path}: {exc}") from exc
        logger.debug(
            "Snapshot %s: status=%s step=%s cursor=%s",
            session.session_id,
            session.status.value,
            session.step_index,
            session.cursor,
        )
        return path

    def load_session_snapshot(self, session_id: str) -> Session:
        path = self.path_for(session_id)
        if not path.is_file():
            raise SessionNotFound(session_id)
        try:
            payload = read_json(path)
        except (OSError, json.JSONDecodeError) as exc:
            raise InvalidSnapshotFormat(f"{path}: could not read snapshot: {exc}") from exc
        return decode_snapshot(payload, source=str(path))

    def list_session_ids(self) -> List[str]:
        """Session ids, newest first (ids start with their creation timestamp)."""
        if not self.root.exists():
            return []
        ids = [
            path.stem
            for path in self.root.glob("*.json")
            if path.is_file() and not path.name.startswith(".")
        ]
        return sorted(ids, reverse=True)

    def remove_session(self, session_id: str) -> None:
        path = self.path_for(session_id)
        if not path.is_file():
            raise SessionNotFound(session_id)
        path.unlink()
        logger.info("Removed session %s", session_id)
