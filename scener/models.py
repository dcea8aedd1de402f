"""Pydantic models describing scene files."""

from __future__ import annotations

import hashlib
import json
import unicodedata
from typing import Any, Dict, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator, validator

SCENE_SCHEMA_VERSION = 1

StepKind = Literal["command", "comment", "pause", "marker"]


def _find_control_char(text: str) -> Optional[str]:
    for char in text:
        if unicodedata.category(char) == "Cc":
            return char
    return None


class TimingProfile(BaseModel):
    """Typing speed and jitter parameters, all expressed in seconds."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    base_delay: float = Field(default=0.06, description="Base delay between keystrokes.")
    jitter_min: float = Field(default=0.5, description="Lower bound of the per-keystroke multiplier.")
    jitter_max: float = Field(default=1.5, description="Upper bound of the per-keystroke multiplier.")
    pre_delay: float = Field(default=0.0, description="Fixed delay before a step starts typing.")
    post_delay: float = Field(default=0.0, description="Fixed delay after a step is submitted.")

    @validator("base_delay", "jitter_min", "jitter_max", "pre_delay", "post_delay")
    def _validate_non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("timing values must be non-negative")
        return value

    @model_validator(mode="after")
    def _validate_jitter_range(self) -> "TimingProfile":
        if self.jitter_min > self.jitter_max:
            raise ValueError("jitter_min must not exceed jitter_max")
        return self


class Step(BaseModel):
    """One unit of a scene: a command to type, a comment, a pause or a marker."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: StepKind
    text: Optional[str] = None
    duration: Optional[float] = Field(default=None, description="Pause length; None waits for continue.")
    label: Optional[str] = None
    timing: Optional[TimingProfile] = Field(default=None, description="Overrides the scene timing.")

    @validator("duration")
    def _validate_duration(cls, value: Optional[float]) -> Optional[float]:
        if value is not None and value < 0:
            raise ValueError("pause duration must be non-negative")
        return value

    @model_validator(mode="after")
    def _validate_payload(self) -> "Step":
        if self.kind in ("command", "comment"):
            if self.text is None:
                raise ValueError(f"{self.kind} step requires 'text'")
            if self.kind == "command":
                bad = _find_control_char(self.text)
                if bad is not None:
                    raise ValueError(f"command text contains control character {bad!r}")
        elif self.kind == "marker":
            if not self.label or not self.label.strip():
                raise ValueError("marker step requires a non-empty 'label'")
        return self

    @classmethod
    def command(cls, text: str, timing: Optional[TimingProfile] = None) -> "Step":
        return cls(kind="command", text=text, timing=timing)

    @classmethod
    def comment(cls, text: str) -> "Step":
        return cls(kind="comment", text=text)

    @classmethod
    def pause(cls, duration: Optional[float] = None) -> "Step":
        return cls(kind="pause", duration=duration)

    @classmethod
    def marker(cls, label: str) -> "Step":
        return cls(kind="marker", label=label)

    @property
    def summary(self) -> str:
        if self.kind == "pause":
            return "pause" if self.duration is None else f"pause {self.duration:g}s"
        if self.kind == "marker":
            return f"[{self.label}]"
        return self.text or ""


class Scene(BaseModel):
    """An ordered, named script of steps to be replayed."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    version: int = Field(default=1, description="Scene revision; bump when steps change.")
    description: Optional[str] = None
    timing: TimingProfile = Field(default_factory=TimingProfile)
    steps: Tuple[Step, ...] = Field(default_factory=tuple)

    @validator("name")
    def _validate_name(cls, value: str) -> str:
        value = (value or "").strip()
        if not value:
            raise ValueError("scene name must not be empty")
        if "/" in value or "\\" in value or value.startswith("."):
            raise ValueError("scene name must be a plain file name")
        return value

    @validator("version")
    def _validate_version(cls, value: int) -> int:
        if value < 1:
            raise ValueError("scene version must be >= 1")
        return value

    def profile_for(self, step: Step) -> TimingProfile:
        return step.timing or self.timing

    def as_document(self) -> Dict[str, Any]:
        return {
            "schema_version": SCENE_SCHEMA_VERSION,
            "scene": self.model_dump(mode="json", exclude_none=True),
        }

    def digest(self) -> str:
        canonical = json.dumps(
            self.model_dump(mode="json", exclude_none=True),
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
        )
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
