from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import yaml
from pydantic import ValidationError

from .models import TimingProfile

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}
_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def _load_yaml(path: Union[str, Path]) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _as_bool(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return default
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    return default


def _as_positive_float(value: Any, default: float) -> float:
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return default
    return parsed if parsed > 0 else default


def _as_non_negative_float(value: Any, default: float) -> float:
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return default
    return parsed if parsed >= 0 else default


def _as_shell(value: Any, default: List[str]) -> List[str]:
    if isinstance(value, str) and value.strip():
        return value.split()
    if isinstance(value, (list, tuple)) and value and all(isinstance(v, str) and v for v in value):
        return list(value)
    return list(default)


def _as_log_level(value: Any, default: str) -> str:
    if value is None:
        return default
    level = str(value).strip().upper()
    return level if level in _LOG_LEVELS else default


def _default_shell() -> List[str]:
    return [os.environ.get("SHELL") or "/bin/sh"]


@dataclass(frozen=True)
class ScenerConfig:
    shell: List[str] = field(default_factory=_default_shell)
    speed: float = 1.0
    settle_seconds: float = 0.3
    settle_timeout: float = 5.0
    terminate_timeout: float = 2.0
    clipboard: bool = True
    readline: bool = True
    log_level: str = "WARNING"
    timing: TimingProfile = field(default_factory=TimingProfile)


def config_from_mapping(doc: Mapping[str, Any], base: Optional[ScenerConfig] = None) -> ScenerConfig:
    """Build a config from a decoded document; bad values keep the base value."""
    base = base or ScenerConfig()
    timing = base.timing
    raw_timing = doc.get("timing")
    if isinstance(raw_timing, Mapping):
        try:
            timing = TimingProfile.model_validate(dict(raw_timing))
        except ValidationError as exc:
            logger.warning("Ignoring invalid timing config: %s", exc)
    return replace(
        base,
        shell=_as_shell(doc.get("shell"), base.shell),
        speed=_as_positive_float(doc.get("speed", base.speed), base.speed),
        settle_seconds=_as_non_negative_float(doc.get("settle_seconds", base.settle_seconds), base.settle_seconds),
        settle_timeout=_as_non_negative_float(doc.get("settle_timeout", base.settle_timeout), base.settle_timeout),
        terminate_timeout=_as_non_negative_float(
            doc.get("terminate_timeout", base.terminate_timeout), base.terminate_timeout
        ),
        clipboard=_as_bool(doc.get("clipboard"), base.clipboard),
        readline=_as_bool(doc.get("readline"), base.readline),
        log_level=_as_log_level(doc.get("log_level"), base.log_level),
        timing=timing,
    )


def apply_env_overrides(config: ScenerConfig, env: Optional[Mapping[str, str]] = None) -> ScenerConfig:
    """
    Environment wins over the config file:
    SCENER_SHELL, SCENER_SPEED, SCENER_LOG_LEVEL, SCENER_CLIPBOARD, SCENER_READLINE.
    """
    env = os.environ if env is None else env
    return replace(
        config,
        shell=_as_shell(env.get("SCENER_SHELL"), config.shell),
        speed=_as_positive_float(env.get("SCENER_SPEED", config.speed), config.speed),
        log_level=_as_log_level(env.get("SCENER_LOG_LEVEL"), config.log_level),
        clipboard=_as_bool(env.get("SCENER_CLIPBOARD"), config.clipboard),
        readline=_as_bool(env.get("SCENER_READLINE"), config.readline),
    )


def load_config(path: Optional[Union[str, Path]] = None, env: Optional[Mapping[str, str]] = None) -> ScenerConfig:
    config = ScenerConfig()
    if path is not None and Path(path).is_file():
        try:
            doc = _load_yaml(path)
        except (OSError, yaml.YAMLError) as exc:
            logger.warning("Could not read config %s: %s", path, exc)
            doc = {}
        if isinstance(doc, Mapping):
            config = config_from_mapping(doc, config)
        else:
            logger.warning("Ignoring config %s: top level must be a mapping", path)
    return apply_env_overrides(config, env)
