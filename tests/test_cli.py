from __future__ import annotations

import io
import json
from pathlib import Path
from typing import Dict, Tuple

import pytest

from scener.cli import EXIT_ABORTED, EXIT_ERROR, EXIT_FAILED, EXIT_NOT_FOUND, EXIT_OK, main
from scener.models import Scene, Step
from scener.operator import StaticLineSource


@pytest.fixture()
def env(tmp_path: Path) -> Dict[str, str]:
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    (config_dir / "config.yaml").write_text(
        "settle_seconds: 0.1\n"
        "settle_timeout: 3\n"
        "timing:\n"
        "  base_delay: 0.005\n",
        encoding="utf-8",
    )
    return {
        "SCENER_DATA_DIR": str(tmp_path / "data"),
        "SCENER_CONFIG_DIR": str(config_dir),
        "SCENER_SHELL": "/bin/sh",
        "SCENER_CLIPBOARD": "off",
        "SCENER_READLINE": "off",
    }


def _run(env: Dict[str, str], *argv: str, line_source=None) -> Tuple[int, str, str]:
    stdout, stderr = io.StringIO(), io.StringIO()
    code = main(list(argv), env=env, line_source=line_source, stdout=stdout, stderr=stderr)
    return code, stdout.getvalue(), stderr.getvalue()


def _script(tmp_path: Path, name: str, text: str) -> str:
    path = tmp_path / name
    path.write_text(text, encoding="utf-8")
    return str(path)


def test_import_play_list_show(env: Dict[str, str], tmp_path: Path) -> None:
    script = _script(tmp_path, "demo.sh", "#!/bin/sh\n# say hi\necho hi\n")
    code, _, err = _run(env, "import", script, "--name", "demo")
    assert code == EXIT_OK
    assert "scene demo v1 imported (2 steps)" in err

    code, out, err = _run(env, "play", "demo", "--no-interactive", "--seed", "7")
    assert code == EXIT_OK
    assert "hi" in out
    assert "completed" in err

    code, out, _ = _run(env, "list")
    assert code == EXIT_OK
    assert out.startswith("1: ")
    assert "(demo, completed," in out
    assert "    # say hi\n    $ echo hi\n" in out

    code, out, _ = _run(env, "show", "--script")
    assert code == EXIT_OK
    assert out == "# say hi\necho hi\n"

    code, out, _ = _run(env, "show", "@1")
    assert code == EXIT_OK
    assert out.startswith("# say hi\n\n$ echo hi\n")


def test_reimport_bumps_scene_version(env: Dict[str, str], tmp_path: Path) -> None:
    script = _script(tmp_path, "a.sh", "ls\n")
    assert _run(env, "import", script, "--name", "a")[0] == EXIT_OK
    code, _, err = _run(env, "import", script, "--name", "a")
    assert code == EXIT_OK
    assert "scene a v2 imported" in err
    code, out, _ = _run(env, "list", "--scenes")
    assert out == "a\n"


def test_missing_scene_and_session(env: Dict[str, str]) -> None:
    code, _, err = _run(env, "play", "nope", "--no-interactive")
    assert code == EXIT_NOT_FOUND
    assert "scene not found: nope" in err
    assert _run(env, "show", "@5")[0] == EXIT_NOT_FOUND
    assert _run(env, "resume", "missing")[0] == EXIT_NOT_FOUND


def test_invalid_scene_file(env: Dict[str, str], tmp_path: Path) -> None:
    bad = tmp_path / "bad.json"
    bad.write_text(json.dumps({"schema_version": 9, "scene": {"name": "bad"}}), encoding="utf-8")
    code, _, err = _run(env, "play", str(bad), "--no-interactive")
    assert code == EXIT_NOT_FOUND
    assert "schema_version" in err


def test_failed_playback_exit_code(env: Dict[str, str], tmp_path: Path) -> None:
    script = _script(tmp_path, "fail.sh", "exit 4\necho never\n")
    _run(env, "import", script, "--name", "fail")
    code, _, err = _run(env, "play", "fail", "--no-interactive")
    assert code == EXIT_FAILED
    assert "exit code 4" in err


def test_operator_abort_exit_code(env: Dict[str, str], tmp_path: Path) -> None:
    script = _script(tmp_path, "slow.sh", "echo one\necho two\n")
    _run(env, "import", script, "--name", "slow")
    code, _, _ = _run(env, "play", "slow", line_source=StaticLineSource(["q"]))
    assert code == EXIT_ABORTED


def test_detach_then_resume(env: Dict[str, str], tmp_path: Path) -> None:
    script = _script(tmp_path, "two.sh", "echo first\necho second\n")
    _run(env, "import", script, "--name", "two")
    code, _, err = _run(env, "play", "two", line_source=StaticLineSource(["d"]))
    assert code == EXIT_OK
    assert "paused" in err
    assert "resume with: scener resume" in err

    code, out, err = _run(env, "resume", "@", "--no-interactive")
    assert code == EXIT_OK
    assert "completed" in err
    assert "second" in out


def test_record_from_stdin_lines(env: Dict[str, str]) -> None:
    source = StaticLineSource(["# recorded", "echo rec", ":done"])
    code, _, err = _run(env, "record", "rec", "--no-interactive", line_source=source)
    assert code == EXIT_OK
    assert "scene rec v1 recorded (2 steps)" in err
    assert _run(env, "list", "--scenes")[1] == "rec\n"


def test_remove_sessions(env: Dict[str, str], tmp_path: Path) -> None:
    script = _script(tmp_path, "r.sh", "true\n")
    _run(env, "import", script, "--name", "r")
    _run(env, "play", "r", "--no-interactive")
    _run(env, "play", "r", "--no-interactive")
    assert _run(env, "list")[1].count("(r, completed,") == 2

    assert _run(env, "rm")[0] == EXIT_ERROR
    assert _run(env, "rm", "@1")[0] == EXIT_OK
    assert _run(env, "list")[1].count("(r, completed,") == 1
    assert _run(env, "remove", "--all")[0] == EXIT_OK
    assert _run(env, "list")[1] == "(0 / 0 sessions)\n"


def test_resume_scene_played_from_file_path(env: Dict[str, str], tmp_path: Path) -> None:
    elsewhere = tmp_path / "elsewhere"
    elsewhere.mkdir()
    scene = Scene(name="demo", steps=(Step.command("echo first"), Step.command("echo second")))
    path = elsewhere / "demo.json"
    path.write_text(json.dumps(scene.as_document()), encoding="utf-8")

    code, _, err = _run(env, "play", str(path), line_source=StaticLineSource(["d"]))
    assert code == EXIT_OK
    assert "resume with: scener resume" in err
    assert _run(env, "list", "--scenes")[1] == ""

    code, out, err = _run(env, "resume", "@", "--no-interactive")
    assert code == EXIT_OK
    assert "completed" in err
    assert "second" in out


def test_clipboard_copy_only_on_request(env: Dict[str, str], tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    import pyperclip

    copied = []
    monkeypatch.setattr(pyperclip, "copy", copied.append)
    env = dict(env, SCENER_CLIPBOARD="on")
    script = _script(tmp_path, "c.sh", "echo copied\n")
    _run(env, "import", script, "--name", "c")

    code, _, err = _run(env, "play", "c", line_source=StaticLineSource([]))
    assert code == EXIT_OK
    assert copied == []
    assert "copied to clipboard" not in err

    code, _, err = _run(env, "play", "c", "--copy", line_source=StaticLineSource([]))
    assert code == EXIT_OK
    assert copied == ["echo copied\n"]
    assert "copied to clipboard" in err


def test_list_shows_five_steps_and_footer(env: Dict[str, str], tmp_path: Path) -> None:
    script = _script(tmp_path, "many.sh", "".join(f"echo {n}\n" for n in range(7)))
    _run(env, "import", script, "--name", "many")
    _run(env, "play", "many", "--no-interactive")
    _run(env, "play", "many", "--no-interactive")

    code, out, _ = _run(env, "list", "-n", "1")
    assert code == EXIT_OK
    lines = out.splitlines()
    assert lines[0].startswith("1: ")
    assert lines[1:6] == [f"    $ echo {n}" for n in range(5)]
    assert lines[6] == "    ... (2 more steps)"
    assert lines[7] == ""
    assert lines[8] == "(1 / 2 sessions)"

    code, out, _ = _run(env, "list", "--full")
    assert "    $ echo 6" in out
    assert out.endswith("(2 / 2 sessions)\n")
