from __future__ import annotations

from pathlib import Path

from scener.config import ScenerConfig, load_config
from scener.dirs import resolve_dirs
from scener.models import TimingProfile


def test_dirs_prefer_scener_env(tmp_path: Path) -> None:
    env = {
        "SCENER_DATA_DIR": str(tmp_path / "data"),
        "SCENER_CONFIG_DIR": str(tmp_path / "cfg"),
        "XDG_DATA_HOME": str(tmp_path / "xdg-data"),
    }
    dirs = resolve_dirs(env, home=tmp_path / "home")
    assert dirs.data_dir == tmp_path / "data"
    assert dirs.sessions_dir == tmp_path / "data" / "sessions"
    assert dirs.scenes_dir == tmp_path / "data" / "scenes"
    assert dirs.config_file == tmp_path / "cfg" / "config.yaml"


def test_dirs_fall_back_to_xdg_then_home(tmp_path: Path) -> None:
    dirs = resolve_dirs({"XDG_DATA_HOME": str(tmp_path / "xdg")}, home=tmp_path / "home")
    assert dirs.data_dir == tmp_path / "xdg" / "scener"
    assert dirs.config_dir == tmp_path / "home" / ".config" / "scener"
    dirs = resolve_dirs({"XDG_DATA_HOME": "  "}, home=tmp_path / "home")
    assert dirs.data_dir == tmp_path / "home" / ".local" / "share" / "scener"
    assert dirs.history_file == dirs.data_dir / "history"


def test_missing_config_uses_defaults(tmp_path: Path) -> None:
    config = load_config(tmp_path / "config.yaml", env={"SHELL": "/bin/zsh"})
    assert config.speed == 1.0
    assert config.clipboard is True
    assert config.timing == TimingProfile()


def test_config_file_values(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text(
        "shell: /bin/bash --norc\n"
        "speed: 2.5\n"
        "settle_seconds: 0.1\n"
        "clipboard: false\n"
        "log_level: debug\n"
        "timing:\n"
        "  base_delay: 0.02\n",
        encoding="utf-8",
    )
    config = load_config(path, env={})
    assert config.shell == ["/bin/bash", "--norc"]
    assert config.speed == 2.5
    assert config.settle_seconds == 0.1
    assert config.clipboard is False
    assert config.log_level == "DEBUG"
    assert config.timing.base_delay == 0.02


def test_invalid_values_keep_defaults(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text(
        "speed: -3\n"
        "settle_timeout: soon\n"
        "readline: maybe\n"
        "log_level: loud\n"
        "timing:\n"
        "  jitter_min: 3\n"
        "  jitter_max: 1\n",
        encoding="utf-8",
    )
    config = load_config(path, env={})
    defaults = ScenerConfig()
    assert config.speed == defaults.speed
    assert config.settle_timeout == defaults.settle_timeout
    assert config.readline is True
    assert config.log_level == "WARNING"
    assert config.timing == TimingProfile()


def test_non_mapping_config_is_ignored(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text("- just\n- a list\n", encoding="utf-8")
    assert load_config(path, env={}).speed == 1.0


def test_env_overrides_file(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text("speed: 2\nclipboard: true\n", encoding="utf-8")
    config = load_config(
        path,
        env={"SCENER_SPEED": "4", "SCENER_CLIPBOARD": "off", "SCENER_SHELL": "/bin/sh", "SCENER_LOG_LEVEL": "info"},
    )
    assert config.speed == 4.0
    assert config.clipboard is False
    assert config.shell == ["/bin/sh"]
    assert config.log_level == "INFO"
