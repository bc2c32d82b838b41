"""Intensity and duration policy for outgoing control commands."""

from __future__ import annotations

import random
from typing import Optional

from software.shockosc.config_validation import BehaviourSettings


def clamp01(value: float) -> float:
    """Clamp ``value`` into ``[0, 1]``."""

    return max(0.0, min(1.0, value))


def lerp(low: float, high: float, t: float) -> float:
    return low + (high - low) * t


def pick_intensity(behaviour: BehaviourSettings, rng: Optional[random.Random] = None) -> int:
    """Fixed intensity, or a uniform pick from the half-open ``[min, max)`` range.

    A collapsed range (``min == max``) yields ``min``.
    """

    if not behaviour.random_intensity:
        return behaviour.fixed_intensity
    rng = rng or random
    low = behaviour.intensity_range.min
    high = behaviour.intensity_range.max
    if high <= low:
        return low
    return rng.randrange(low, high)


def pick_duration(behaviour: BehaviourSettings, rng: Optional[random.Random] = None) -> int:
    """Fixed duration, or a random multiple of the configured step.

    The range is quantised to ``[min // step, max // step)`` and scaled back,
    so every random duration is an exact multiple of ``random_duration_step``.
    """

    if not behaviour.random_duration:
        return behaviour.fixed_duration
    rng = rng or random
    step = max(1, behaviour.random_duration_step)
    low = behaviour.duration_range.min // step
    high = behaviour.duration_range.max // step
    if high <= low:
        return low * step
    return rng.randrange(low, high) * step


def stretch_intensity(behaviour: BehaviourSettings, stretch: float) -> int:
    """Intensity for a physbone release: ``lerp(min, max, stretch)`` truncated."""

    value = lerp(behaviour.intensity_range.min, behaviour.intensity_range.max, clamp01(stretch))
    return int(value)


def feedback_intensity(intensity: int, behaviour: BehaviourSettings) -> float:
    """Scale a 0-100 intensity into the 0-1 feedback range of the configured max."""

    ceiling = behaviour.intensity_range.max
    if ceiling <= 0:
        return 0.0
    return clamp01(intensity / ceiling)
