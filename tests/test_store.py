from __future__ import annotations

import json
from pathlib import Path

import pytest

from scener.errors import InvalidSceneFormat, SceneNotFound
from scener.models import Scene, Step, TimingProfile
from scener.store import SceneStore, load_scene_file, read_script, read_script_files, scene_from_script


def _scene() -> Scene:
    return Scene(
        name="demo",
        version=2,
        description="a small demo",
        timing=TimingProfile(base_delay=0.02, post_delay=0.1),
        steps=(
            Step.comment("list files"),
            Step.command("ls -la", timing=TimingProfile(base_delay=0.01)),
            Step.pause(1.0),
            Step.marker("end"),
            Step.pause(),
        ),
    )


def test_save_then_load_returns_equal_scene(tmp_path: Path) -> None:
    store = SceneStore(tmp_path / "scenes")
    scene = _scene()
    path = store.save_scene(scene)
    assert path == tmp_path / "scenes" / "demo.json"
    loaded = store.load_scene("demo")
    assert loaded == scene
    assert loaded.digest() == scene.digest()
    assert not list((tmp_path / "scenes").glob(".*.tmp"))


def test_load_yaml_scene(tmp_path: Path) -> None:
    (tmp_path / "intro.yaml").write_text(
        "schema_version: 1\n"
        "scene:\n"
        "  name: intro\n"
        "  steps:\n"
        "    - kind: command\n"
        "      text: echo hi\n"
        "    - kind: pause\n"
        "      duration: 0.5\n",
        encoding="utf-8",
    )
    scene = SceneStore(tmp_path).load_scene("intro")
    assert scene.steps == (Step.command("echo hi"), Step.pause(0.5))


def test_load_by_explicit_path(tmp_path: Path) -> None:
    path = tmp_path / "elsewhere" / "x.json"
    path.parent.mkdir()
    path.write_text(json.dumps(_scene().as_document()), encoding="utf-8")
    assert SceneStore(tmp_path / "scenes").load_scene(str(path)).name == "demo"


def test_missing_scene(tmp_path: Path) -> None:
    with pytest.raises(SceneNotFound):
        SceneStore(tmp_path).load_scene("nope")
    with pytest.raises(SceneNotFound):
        SceneStore(tmp_path).remove_scene("nope")


@pytest.mark.parametrize(
    "content",
    [
        "not json at all {",
        json.dumps([1, 2]),
        json.dumps({"schema_version": 2, "scene": {"name": "bad"}}),
        json.dumps({"schema_version": 1}),
        json.dumps({"schema_version": 1, "scene": {"name": "bad", "timing": {"base_delay": -1}}}),
        json.dumps({"schema_version": 1, "scene": {"name": "bad", "steps": [{"kind": "command"}]}}),
    ],
)
def test_invalid_scene_files(tmp_path: Path, content: str) -> None:
    path = tmp_path / "bad.json"
    path.write_text(content, encoding="utf-8")
    with pytest.raises(InvalidSceneFormat):
        load_scene_file(path)


def test_list_and_remove_scenes(tmp_path: Path) -> None:
    store = SceneStore(tmp_path)
    assert store.list_scenes() == []
    store.save_scene(Scene(name="b"))
    store.save_scene(Scene(name="a"))
    assert store.list_scenes() == ["a", "b"]
    assert store.exists("a")
    store.remove_scene("a")
    assert store.list_scenes() == ["b"]


def test_read_script_filters_blank_and_shebang_lines() -> None:
    lines = ["   abc   ", "   ", "   #! shebang   ", "   def   "]
    assert read_script(lines) == ["   abc   ", "   def   "]


def test_read_script_files_concatenates(tmp_path: Path) -> None:
    (tmp_path / "file1").write_text("abc\ndef\n", encoding="utf-8")
    (tmp_path / "file2").write_text("ghi\njkl\n", encoding="utf-8")
    assert read_script_files([tmp_path / "file1", tmp_path / "file2"]) == ["abc", "def", "ghi", "jkl"]
    with pytest.raises(SceneNotFound):
        read_script_files([tmp_path / "missing"])


def test_scene_from_script_turns_hash_lines_into_comments() -> None:
    scene = scene_from_script("imported", ["#!/bin/sh", "# say hello", "echo hello", "", "ls"])
    assert scene.steps == (Step.comment("say hello"), Step.command("echo hello"), Step.command("ls"))
