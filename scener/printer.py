"""Render sessions for ``show`` and ``list``. Headers go to stderr, content to stdout."""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional, TextIO

from .session import EntryKind, Session, StepRecord, StepStatus


def needs_newline(text: str) -> bool:
    return bool(text) and not text.endswith("\n")


def format_datetime(dt: datetime) -> str:
    return dt.astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _normalize_output(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "")


def _outputs_by_step(session: Session) -> Dict[int, str]:
    chunks: Dict[int, List[str]] = {}
    for entry in session.transcript.entries:
        if entry.kind == EntryKind.OUTPUT and entry.step_index is not None:
            chunks.setdefault(entry.step_index, []).append(entry.data)
    return {index: _normalize_output("".join(parts)) for index, parts in chunks.items()}


def session_header(session: Session) -> str:
    return (
        f"session {session.session_id} "
        f"(scene {session.scene_name} v{session.scene_version}, {session.status.value}, "
        f"{format_datetime(session.started_at)})"
    )


def _record_line(record: StepRecord) -> Optional[str]:
    if record.kind == "command":
        return f"$ {record.text}"
    if record.kind == "comment":
        return f"# {record.text}"
    if record.kind == "marker":
        return f"-- {record.text} --"
    return None


def print_session(session: Session, stdout: TextIO, stderr: TextIO) -> None:
    stderr.write(session_header(session) + "\n")
    outputs = _outputs_by_step(session)
    blocks: List[str] = []
    for record in session.transcript.records:
        line = _record_line(record)
        if line is None:
            continue
        if record.status == StepStatus.SKIPPED:
            blocks.append(f"? {record.text} (skipped)\n")
            continue
        block = line + "\n"
        if record.kind == "command":
            output = outputs.get(record.index, "")
            block += output
            if needs_newline(output):
                block += "\n"
        blocks.append(block)
    stdout.write("\n".join(blocks))
    if session.failure_reason:
        stderr.write(f"failed: {session.failure_reason}\n")


def session_script(session: Session) -> str:
    lines: List[str] = []
    for record in session.transcript.records:
        if record.kind == "command":
            lines.append(record.text)
        elif record.kind == "comment":
            lines.append(f"# {record.text}")
    return "".join(line + "\n" for line in lines)


def print_session_script(session: Session, stdout: TextIO, stderr: TextIO) -> None:
    stderr.write(session_header(session) + "\n")
    stdout.write(session_script(session))


def print_session_brief(session: Session, key: int, limit: Optional[int], stdout: TextIO) -> None:
    stdout.write(f"{key}: {session.session_id} ({session.scene_name}, {session.status.value}, "
                 f"{format_datetime(session.started_at)})\n")
    records = [record for record in session.transcript.records if _record_line(record) is not None]
    shown = len(records) if limit is None else max(0, min(limit, len(records)))
    for record in records[:shown]:
        if record.status == StepStatus.SKIPPED:
            stdout.write(f"    ? {record.text}\n")
        else:
            stdout.write(f"    {_record_line(record)}\n")
    remaining = len(records) - shown
    if remaining > 0:
        stdout.write(f"    ... ({remaining} more steps)\n")
