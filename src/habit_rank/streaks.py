"""Streak calculation for habit-rank.

Streaks count consecutive calendar days with a completed log. The walk is
not schedule-aware: a habit scheduled Mon/Wed/Fri still needs a log every
calendar day to extend its streak.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable

from habit_rank.models import Habit, HabitLog


@dataclass
class StreakResult:
    current_streak: int
    longest_streak: int


def _parse_date(d: date | str) -> date:
    """Accept a date or a YYYY-MM-DD string."""
    if isinstance(d, str):
        return date.fromisoformat(d)
    return d


def compute_streak(habit: Habit, logs: Iterable[HabitLog], today: date | str) -> StreakResult:
    """Derive current and longest streak from a habit's completion log.

    Rules:
    - Only completed logs count; input may be unsorted.
    - If the most recent completion is older than yesterday the streak is 0.
    - Otherwise walk backwards from the most recent completion, one calendar
      day at a time, until a gap. A duplicate of the day just counted is skipped.
    - The longest streak never shrinks below the habit's recorded best.
    """
    today_date = _parse_date(today)
    completed = sorted(
        (_parse_date(log.date) for log in logs if log.completed),
        reverse=True,
    )

    if not completed:
        return StreakResult(current_streak=0, longest_streak=habit.longest_streak)

    last = completed[0]
    current = 0
    if (today_date - last).days <= 1:
        expected = last
        for day in completed:
            if day == expected:
                current += 1
                expected -= timedelta(days=1)
            elif day == expected + timedelta(days=1):
                continue  # duplicate
            else:
                break

    return StreakResult(
        current_streak=current,
        longest_streak=max(habit.longest_streak, current),
    )


def is_scheduled_on(habit: Habit, day: date) -> bool:
    return habit.schedule.is_scheduled(day)


def scheduled_habits(habits: Iterable[Habit], day: date) -> list[Habit]:
    """Habits whose schedule includes the given day."""
    return [h for h in habits if is_scheduled_on(h, day)]
