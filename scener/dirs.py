"""Standard locations for scenes, session snapshots, history and config."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

APP_NAME = "scener"


def _env_path(env: Mapping[str, str], name: str) -> Optional[Path]:
    raw = env.get(name)
    if not raw or not raw.strip():
        return None
    return Path(raw.strip()).expanduser()


@dataclass(frozen=True)
class ScenerDirs:
    data_dir: Path
    config_dir: Path

    @property
    def scenes_dir(self) -> Path:
        return self.data_dir / "scenes"

    @property
    def sessions_dir(self) -> Path:
        return self.data_dir / "sessions"

    @property
    def history_file(self) -> Path:
        return self.data_dir / "history"

    @property
    def config_file(self) -> Path:
        return self.config_dir / "config.yaml"


def resolve_dirs(env: Optional[Mapping[str, str]] = None, home: Optional[Path] = None) -> ScenerDirs:
    """
    Resolve the data and config directories.

    Precedence per directory:
    1) SCENER_DATA_DIR / SCENER_CONFIG_DIR (used as-is).
    2) XDG_DATA_HOME / XDG_CONFIG_HOME plus ``scener``.
    3) ~/.local/share/scener and ~/.config/scener.
    """
    env = os.environ if env is None else env
    home = home or Path.home()

    data_dir = _env_path(env, "SCENER_DATA_DIR")
    if data_dir is None:
        base = _env_path(env, "XDG_DATA_HOME") or home / ".local" / "share"
        data_dir = base / APP_NAME

    config_dir = _env_path(env, "SCENER_CONFIG_DIR")
    if config_dir is None:
        base = _env_path(env, "XDG_CONFIG_HOME") or home / ".config"
        config_dir = base / APP_NAME

    return ScenerDirs(data_dir=data_dir, config_dir=config_dir)
