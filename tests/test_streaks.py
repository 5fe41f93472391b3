"""Tests for streak calculation."""

from datetime import date, timedelta

from habit_rank.models import Habit, HabitLog, Schedule
from habit_rank.streaks import compute_streak, scheduled_habits

TODAY = date(2026, 1, 5)


def _habit(longest: int = 0, schedule: Schedule | None = None, habit_id: int = 1) -> Habit:
    return Habit(id=habit_id, owner="alice", title="Read", schedule=schedule or Schedule(), longest_streak=longest)


def _logs(*days_ago: int, completed: bool = True) -> list[HabitLog]:
    return [HabitLog(habit_id=1, date=TODAY - timedelta(days=n), completed=completed) for n in days_ago]


class TestComputeStreak:
    def test_no_logs(self):
        result = compute_streak(_habit(), [], TODAY)
        assert result.current_streak == 0
        assert result.longest_streak == 0

    def test_single_log_today(self):
        assert compute_streak(_habit(), _logs(0), TODAY).current_streak == 1

    def test_consecutive_days(self):
        result = compute_streak(_habit(), _logs(0, 1, 2, 3), TODAY)
        assert result.current_streak == 4
        assert result.longest_streak == 4

    def test_yesterday_keeps_streak_alive(self):
        assert compute_streak(_habit(), _logs(1, 2), TODAY).current_streak == 2

    def test_two_days_ago_breaks_streak(self):
        assert compute_streak(_habit(), _logs(2, 3, 4), TODAY).current_streak == 0

    def test_stops_at_gap(self):
        assert compute_streak(_habit(), _logs(0, 1, 3, 4, 5), TODAY).current_streak == 2

    def test_unsorted_input(self):
        assert compute_streak(_habit(), _logs(2, 0, 1), TODAY).current_streak == 3

    def test_duplicate_dates_counted_once(self):
        assert compute_streak(_habit(), _logs(0, 0, 1), TODAY).current_streak == 2

    def test_incomplete_logs_ignored(self):
        logs = _logs(0) + _logs(1, completed=False)
        assert compute_streak(_habit(), logs, TODAY).current_streak == 1

    def test_longest_never_shrinks(self):
        result = compute_streak(_habit(longest=10), _logs(0, 1), TODAY)
        assert result.current_streak == 2
        assert result.longest_streak == 10

    def test_longest_grows_with_current(self):
        result = compute_streak(_habit(longest=2), _logs(0, 1, 2), TODAY)
        assert result.longest_streak == 3

    def test_string_dates(self):
        logs = [HabitLog(habit_id=1, date="2026-01-05"), HabitLog(habit_id=1, date="2026-01-04")]
        assert compute_streak(_habit(), logs, "2026-01-05").current_streak == 2

    def test_future_log_counts_from_latest(self):
        # A log dated after "today" is the most recent completion
        assert compute_streak(_habit(), _logs(-1, 0), TODAY).current_streak == 2

    def test_calendar_days_even_with_weekday_schedule(self):
        habit = _habit(schedule=Schedule(days=frozenset({0, 2, 4})))
        # Mon 5th and Fri 2nd logged; Sat/Sun gap breaks the run
        logs = [HabitLog(habit_id=1, date=date(2026, 1, 5)), HabitLog(habit_id=1, date=date(2026, 1, 2))]
        assert compute_streak(habit, logs, TODAY).current_streak == 1


class TestScheduledHabits:
    def test_filters_by_weekday(self):
        daily = _habit(habit_id=1)
        weekdays = _habit(habit_id=2, schedule=Schedule(days=frozenset({1, 3})))
        assert [h.id for h in scheduled_habits([daily, weekdays], date(2026, 1, 5))] == [1]
        assert [h.id for h in scheduled_habits([daily, weekdays], date(2026, 1, 6))] == [1, 2]
