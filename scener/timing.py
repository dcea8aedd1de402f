"""Deterministic keystroke schedules for simulated typing.

Every character index owns its own random generator, seeded from the session
seed, a salt (the step index) and the character index. The schedule starting at
``offset`` is therefore exactly the tail of the schedule starting at zero, which
is what lets an interrupted step resume without replaying or reshuffling
keystrokes.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import List, Optional, Sequence

from .models import Step, TimingProfile


@dataclass(frozen=True)
class Keystroke:
    """One schedule entry: wait ``delay`` seconds, then send ``char``.

    A ``char`` of None marks a synthetic wait event (pause steps). A ``delay`` of
    None on such an event means "wait until told to continue".
    """

    index: int
    char: Optional[str]
    delay: Optional[float]


def _char_rng(seed: int | str, salt: int | str, index: int) -> random.Random:
    return random.Random(f"{seed}:{salt}:{index}")


def keystroke_delay(
    profile: TimingProfile,
    *,
    seed: int | str,
    salt: int | str,
    index: int,
    speed: float = 1.0,
) -> float:
    if speed <= 0:
        raise ValueError("speed must be positive")
    multiplier = _char_rng(seed, salt, index).uniform(profile.jitter_min, profile.jitter_max)
    return profile.base_delay * multiplier / speed


def build_schedule(
    text: str,
    profile: TimingProfile,
    *,
    seed: int | str,
    salt: int | str = 0,
    offset: int = 0,
    speed: float = 1.0,
) -> List[Keystroke]:
    """Return the keystrokes for ``text[offset:]`` with their jittered delays."""
    if speed <= 0:
        raise ValueError("speed must be positive")
    if offset < 0:
        raise ValueError("offset must be non-negative")
    schedule: List[Keystroke] = []
    for index in range(offset, len(text)):
        delay = keystroke_delay(profile, seed=seed, salt=salt, index=index, speed=speed)
        schedule.append(Keystroke(index=index, char=text[index], delay=delay))
    return schedule


def pause_schedule(step: Step, *, speed: float = 1.0) -> List[Keystroke]:
    if step.kind != "pause":
        raise ValueError(f"expected a pause step, got {step.kind}")
    if speed <= 0:
        raise ValueError("speed must be positive")
    delay = None if step.duration is None else step.duration / speed
    return [Keystroke(index=0, char=None, delay=delay)]


def schedule_duration(schedule: Sequence[Keystroke]) -> float:
    return sum(entry.delay or 0.0 for entry in schedule)
