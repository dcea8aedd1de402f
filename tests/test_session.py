from __future__ import annotations

import pytest

from scener.errors import InvalidTransition
from scener.models import Scene, Step
from scener.session import EntryKind, Session, SessionStatus, StepStatus, Transcript


def _scene() -> Scene:
    return Scene(name="demo", steps=(Step.command("ls"),))


def test_fresh_session_starts_running_at_zero() -> None:
    session = Session.for_scene(_scene(), seed=3)
    assert session.status == SessionStatus.RUNNING
    assert (session.step_index, session.cursor) == (0, 0)
    assert session.scene_digest == _scene().digest()
    with pytest.raises(ValueError):
        Session.for_scene(_scene(), speed=0)


def test_allowed_transitions() -> None:
    session = Session.for_scene(_scene(), seed=1)
    session.transition(SessionStatus.PAUSED)
    session.transition(SessionStatus.RUNNING)
    session.transition(SessionStatus.PAUSED)
    session.transition(SessionStatus.FAILED, "shell died")
    assert session.failure_reason == "shell died"
    assert session.transcript.frozen


@pytest.mark.parametrize("terminal", [SessionStatus.COMPLETED, SessionStatus.ABORTED, SessionStatus.FAILED])
def test_terminal_statuses_are_final(terminal: SessionStatus) -> None:
    session = Session.for_scene(_scene(), seed=1)
    session.transition(terminal)
    for target in SessionStatus:
        if target == terminal:
            continue
        with pytest.raises(InvalidTransition):
            session.transition(target)


def test_paused_cannot_complete_directly() -> None:
    session = Session.for_scene(_scene(), seed=1)
    session.transition(SessionStatus.PAUSED)
    with pytest.raises(InvalidTransition):
        session.transition(SessionStatus.COMPLETED)


def test_advance_resets_cursor() -> None:
    session = Session.for_scene(_scene(), seed=1)
    session.cursor = 2
    session.advance()
    assert (session.step_index, session.cursor) == (1, 0)


def test_output_decoding_survives_split_multibyte_chars() -> None:
    transcript = Transcript()
    data = "héllo ✓\n".encode("utf-8")
    for i in range(len(data)):
        transcript.record_output(data[i : i + 1], 0)
    transcript.flush_output(0)
    assert "".join(entry.data for entry in transcript.entries if entry.kind == EntryKind.OUTPUT) == "héllo ✓\n"


def test_frozen_transcript_rejects_appends() -> None:
    transcript = Transcript()
    transcript.record(EntryKind.INPUT, "a", 0)
    transcript.freeze()
    with pytest.raises(RuntimeError):
        transcript.record(EntryKind.INPUT, "b", 0)
    with pytest.raises(RuntimeError):
        transcript.mark_step(Step.command("ls"), 0, StepStatus.COMPLETED)
    assert [entry.data for entry in transcript.entries] == ["a"]


def test_has_step_entry_tracks_started_steps() -> None:
    transcript = Transcript()
    transcript.record(EntryKind.STEP, "ls", 1)
    assert transcript.has_step_entry(1)
    assert not transcript.has_step_entry(0)


def test_scene_path_survives_payload_round_trip() -> None:
    session = Session.for_scene(_scene(), seed=1, scene_path="/tmp/elsewhere/demo.json")
    payload = session.as_payload()
    assert payload["scene"]["path"] == "/tmp/elsewhere/demo.json"
    assert Session.from_payload(payload).scene_path == "/tmp/elsewhere/demo.json"
