from __future__ import annotations

import io
from datetime import datetime

import pytest

from scener.models import Scene, Step
from scener.printer import (
    needs_newline,
    print_session,
    print_session_brief,
    print_session_script,
    session_script,
)
from scener.session import EntryKind, Session, SessionStatus, StepStatus


@pytest.mark.parametrize("text,expected", [("", False), ("abc\ndef\n", False), ("abc\ndef", True)])
def test_needs_newline(text: str, expected: bool) -> None:
    assert needs_newline(text) is expected


def _session() -> Session:
    steps = (
        Step.command("echo hello"),
        Step.comment("greeting done"),
        Step.command("echo -n world"),
        Step.command("rm -rf /tmp/x"),
        Step.pause(1.0),
    )
    scene = Scene(name="demo", steps=steps)
    session = Session.for_scene(scene, seed=1, session_id="session-name")
    session.started_at = datetime(2020, 1, 2, 3, 4, 5).astimezone()
    t = session.transcript
    t.record_output(b"hello\r\n", 0)
    t.mark_step(steps[0], 0, StepStatus.COMPLETED)
    t.record(EntryKind.COMMENT, "greeting done", 1)
    t.mark_step(steps[1], 1, StepStatus.COMPLETED)
    t.record_output(b"world", 2)
    t.mark_step(steps[2], 2, StepStatus.COMPLETED)
    t.mark_step(steps[3], 3, StepStatus.SKIPPED)
    t.mark_step(steps[4], 4, StepStatus.COMPLETED)
    session.transition(SessionStatus.COMPLETED)
    return session


def test_print_session() -> None:
    stdout, stderr = io.StringIO(), io.StringIO()
    print_session(_session(), stdout, stderr)
    assert stderr.getvalue() == "session session-name (scene demo v1, completed, 2020-01-02 03:04:05)\n"
    assert stdout.getvalue() == (
        "$ echo hello\n"
        "hello\n"
        "\n"
        "# greeting done\n"
        "\n"
        "$ echo -n world\n"
        "world\n"
        "\n"
        "? rm -rf /tmp/x (skipped)\n"
    )


def test_print_session_script() -> None:
    stdout, stderr = io.StringIO(), io.StringIO()
    print_session_script(_session(), stdout, stderr)
    assert stdout.getvalue() == "echo hello\n# greeting done\necho -n world\nrm -rf /tmp/x\n"
    assert session_script(_session()) == stdout.getvalue()


def test_print_session_brief_truncates() -> None:
    stdout = io.StringIO()
    print_session_brief(_session(), 1, 2, stdout)
    assert stdout.getvalue() == (
        "1: session-name (demo, completed, 2020-01-02 03:04:05)\n"
        "    $ echo hello\n"
        "    # greeting done\n"
        "    ... (2 more steps)\n"
    )


def test_print_session_brief_full() -> None:
    stdout = io.StringIO()
    print_session_brief(_session(), 3, None, stdout)
    lines = stdout.getvalue().splitlines()
    assert lines[0].startswith("3: session-name")
    assert lines[-1] == "    ? rm -rf /tmp/x"
    assert len(lines) == 5
