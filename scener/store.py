"""Scene Store: scene files on disk, JSON or YAML, one scene per file."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Iterable, List, Optional

import yaml
from pydantic import ValidationError

from .errors import InvalidSceneFormat, SceneNotFound
from .models import SCENE_SCHEMA_VERSION, Scene, Step, TimingProfile
from .utils import write_json_atomic

logger = logging.getLogger(__name__)

SCENE_SUFFIXES = (".json", ".yaml", ".yml")


def _parse_document(raw: str, suffix: str) -> Any:
    if suffix in (".yaml", ".yml"):
        return yaml.safe_load(raw)
    return json.loads(raw)


def parse_scene_document(doc: Any, *, source: str = "<memory>") -> Scene:
    """Validate a decoded scene document and return the Scene it holds."""
    if not isinstance(doc, dict):
        raise InvalidSceneFormat(f"{source}: scene document must be a mapping")
    version = doc.get("schema_version")
    if version != SCENE_SCHEMA_VERSION:
        raise InvalidSceneFormat(
            f"{source}: unsupported schema_version {version!r} (expected {SCENE_SCHEMA_VERSION})"
        )
    body = doc.get("scene")
    if not isinstance(body, dict):
        raise InvalidSceneFormat(f"{source}: missing 'scene' section")
    try:
        return Scene.model_validate(body)
    except ValidationError as exc:
        raise InvalidSceneFormat(f"{source}: {exc}") from exc


def load_scene_file(path: str | Path) -> Scene:
    target = Path(path)
    if not target.is_file():
        raise SceneNotFound(str(path))
    try:
        raw = target.read_text(encoding="utf-8")
        doc = _parse_document(raw, target.suffix.lower())
    except (OSError, UnicodeDecodeError) as exc:
        raise InvalidSceneFormat(f"{target}: could not read scene file: {exc}") from exc
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise InvalidSceneFormat(f"{target}: could not parse scene file: {exc}") from exc
    return parse_scene_document(doc, source=str(target))


def read_script(lines: Iterable[str]) -> List[str]:
    """Keep the meaningful lines of a shell script.

    Blank lines and shebang-style ``#!`` lines are dropped; surrounding
    whitespace of the kept lines is preserved.
    """
    kept: List[str] = []
    for line in lines:
        line = line.rstrip("\r\n")
        stripped = line.strip()
        if not stripped or stripped.startswith("#!"):
            continue
        kept.append(line)
    return kept


def scene_from_script(
    name: str,
    lines: Iterable[str],
    *,
    timing: Optional[TimingProfile] = None,
    description: Optional[str] = None,
) -> Scene:
    steps: List[Step] = []
    for line in read_script(lines):
        stripped = line.strip()
        if stripped.startswith("#"):
            steps.append(Step.comment(stripped.lstrip("#").strip()))
        else:
            steps.append(Step.command(line))
    try:
        return Scene(
            name=name,
            description=description,
            timing=timing or TimingProfile(),
            steps=tuple(steps),
        )
    except ValidationError as exc:
        raise InvalidSceneFormat(f"{name}: {exc}") from exc


def read_script_files(paths: Iterable[str | Path]) -> List[str]:
    lines: List[str] = []
    for path in paths:
        try:
            text = Path(path).read_text(encoding="utf-8")
        except OSError as exc:
            raise SceneNotFound(str(path)) from exc
        lines.extend(read_script(text.splitlines()))
    return lines


class SceneStore:
    """Directory of scene files keyed by scene name.

    Writes go through a temp file and an atomic rename so readers never see a
    partially written scene.
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root).expanduser()

    def path_for(self, name: str) -> Path:
        return self.root / f"{name}.json"

    def _candidates(self, name: str) -> List[Path]:
        return [self.root / f"{name}{suffix}" for suffix in SCENE_SUFFIXES]

    def resolve(self, name: str) -> Path:
        """Find the file behind a scene name, or accept an explicit file path."""
        for candidate in self._candidates(name):
            if candidate.is_file():
                return candidate
        direct = Path(name).expanduser()
        if direct.suffix.lower() in SCENE_SUFFIXES and direct.is_file():
            return direct
        raise SceneNotFound(name)

    def external_path(self, name: str) -> Optional[Path]:
        """Absolute path of the file behind ``name`` when it lives outside the store."""
        path = self.resolve(name).resolve()
        if path.parent == self.root.resolve():
            return None
        return path

    def load_scene(self, name: str) -> Scene:
        path = self.resolve(name)
        scene = load_scene_file(path)
        logger.debug("Loaded scene %s v%s from %s", scene.name, scene.version, path)
        return scene

    def save_scene(self, scene: Scene) -> Path:
        path = self.path_for(scene.name)
        write_json_atomic(path, scene.as_document())
        logger.info("Saved scene %s v%s to %s", scene.name, scene.version, path)
        return path

    def exists(self, name: str) -> bool:
        return any(candidate.is_file() for candidate in self._candidates(name))

    def list_scenes(self) -> List[str]:
        if not self.root.exists():
            return []
        names = set()
        for path in self.root.iterdir():
            if path.is_file() and path.suffix.lower() in SCENE_SUFFIXES and not path.name.startswith("."):
                names.add(path.stem)
        return sorted(names)

    def remove_scene(self, name: str) -> None:
        removed = False
        for candidate in self._candidates(name):
            if candidate.is_file():
                candidate.unlink()
                removed = True
        if not removed:
            raise SceneNotFound(name)
