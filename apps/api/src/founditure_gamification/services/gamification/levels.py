"""Pure mapping from cumulative points to a bounded level."""

from __future__ import annotations

import math
from dataclasses import dataclass

from founditure_gamification.core.settings import settings


def calculate_level(
    points: int,
    *,
    multiplier: int | None = None,
    max_level: int | None = None,
) -> int:
    """Return ``clamp(floor(sqrt(points / multiplier)) + 1, 1, max_level)``.

    Total over every integer input: negative balances map to level 1.
    """

    multiplier = multiplier or settings.points_level_multiplier
    max_level = max_level or settings.points_max_level
    if points <= 0:
        return 1
    # floor(sqrt(p / m)) == isqrt(p // m) for non-negative integers, without float error.
    level = math.isqrt(int(points) // multiplier) + 1
    return min(max(level, 1), max_level)


def points_for_level(level: int, *, multiplier: int | None = None) -> int:
    """Minimum cumulative points needed to reach ``level``."""

    multiplier = multiplier or settings.points_level_multiplier
    if level <= 1:
        return 0
    return (level - 1) ** 2 * multiplier


@dataclass(slots=True)
class LevelProgress:
    level: int
    current_level_floor: int
    next_level_at: int | None
    points_into_level: int
    points_to_next_level: int | None


def level_progress(points: int) -> LevelProgress:
    """Describe how far ``points`` sits between the current and next level."""

    level = calculate_level(points)
    floor = points_for_level(level)
    points = max(int(points), 0)
    if level >= settings.points_max_level:
        return LevelProgress(
            level=level,
            current_level_floor=floor,
            next_level_at=None,
            points_into_level=points - floor,
            points_to_next_level=None,
        )

    next_at = points_for_level(level + 1)
    return LevelProgress(
        level=level,
        current_level_floor=floor,
        next_level_at=next_at,
        points_into_level=points - floor,
        points_to_next_level=next_at - points,
    )


__all__ = ["LevelProgress", "calculate_level", "level_progress", "points_for_level"]
