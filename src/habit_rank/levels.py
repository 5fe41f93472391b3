"""Level curve calculation. Pure functions, no side effects."""

from __future__ import annotations

import math
from dataclasses import dataclass

MAX_LEVEL = 100


@dataclass
class LevelProgress:
    level: int
    xp_for_current_level: int
    xp_for_next_level: int
    xp_in_current_level: int
    xp_needed_for_next_level: int
    progress_percent: int


def xp_required_for(level: int) -> int:
    """Total XP needed to reach a level. Formula: floor(50 * L^1.5), level 1 is free."""
    if level <= 1:
        return 0
    return math.floor(50 * (level ** 1.5))


def level_from_xp(total_xp: int) -> int:
    """Given total XP, return current level (1-MAX_LEVEL)."""
    level = 1
    while level < MAX_LEVEL and xp_required_for(level + 1) <= total_xp:
        level += 1
    return level


def level_progress(total_xp: int) -> LevelProgress:
    """Progress through the current level.

    At MAX_LEVEL there is no next level: xp_needed_for_next_level is 0 and
    progress_percent is 100.
    """
    level = level_from_xp(total_xp)
    current_floor = xp_required_for(level)
    xp_in_level = max(0, total_xp - current_floor)

    if level >= MAX_LEVEL:
        return LevelProgress(
            level=level,
            xp_for_current_level=current_floor,
            xp_for_next_level=current_floor,
            xp_in_current_level=xp_in_level,
            xp_needed_for_next_level=0,
            progress_percent=100,
        )

    next_floor = xp_required_for(level + 1)
    needed = next_floor - current_floor
    percent = round(100 * xp_in_level / needed) if needed > 0 else 100
    return LevelProgress(
        level=level,
        xp_for_current_level=current_floor,
        xp_for_next_level=next_floor,
        xp_in_current_level=xp_in_level,
        xp_needed_for_next_level=needed,
        progress_percent=max(0, min(100, percent)),
    )
