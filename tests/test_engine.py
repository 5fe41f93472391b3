"""Tests for the gamification engine: completion and undo events end to end."""

import threading
from datetime import date, timedelta
from unittest.mock import patch

import pytest

from habit_rank.db import Database
from habit_rank.engine import EventStage, GamificationEngine, correlation_key
from habit_rank.errors import (
    AlreadyLogged,
    HabitNotFound,
    NotLogged,
    StoreUnavailable,
    UserNotFound,
)
from habit_rank.models import (
    ChallengeTargetType,
    Difficulty,
    ParticipantState,
    Schedule,
    XpSource,
    format_ts,
)

MONDAY = date(2026, 1, 5)


@pytest.fixture
def db(tmp_path):
    """Create a temporary database for testing."""
    db_path = tmp_path / "test.db"
    database = Database(db_path=db_path)
    yield database
    database.close()


@pytest.fixture
def engine(db, clock):
    eng = GamificationEngine(db, clock=clock)
    eng.setup(seed_challenges=False)
    db.add_user("alice", "Alice", format_ts(clock()))
    return eng


@pytest.fixture
def habit(engine):
    return engine.db.add_habit("alice", "Read")


def _log_days(engine, clock, habit_id, days):
    """Log ``days`` consecutive days, advancing the clock so each is 'today'."""
    results = []
    for i in range(days):
        if i:
            clock.advance(days=1)
        results.append(engine.log_habit("alice", habit_id, clock().date()))
    return results


class TestLogHabit:
    def test_first_completion(self, engine, habit):
        result = engine.log_habit("alice", habit.id, MONDAY)
        assert result.streak.current_streak == 1
        # base 10 + perfect day 25 (only habit)
        assert result.xp_granted == 35
        assert [b.id for b in result.new_badges] == ["first_steps"]
        assert result.total_xp == 45
        assert result.level == 1
        assert not result.level_up

    def test_accepts_iso_string(self, engine, habit):
        assert engine.log_habit("alice", habit.id, "2026-01-05").streak.current_streak == 1

    def test_grants_carry_correlation_key(self, engine, habit):
        result = engine.log_habit("alice", habit.id, MONDAY)
        assert {t.correlation_key for t in result.transactions} == {correlation_key(habit.id, MONDAY)}
        assert {t.source for t in result.transactions} == {XpSource.HABIT_COMPLETE, XpSource.PERFECT_DAY}

    def test_duplicate_rejected_without_reward(self, engine, habit):
        engine.log_habit("alice", habit.id, MONDAY)
        total = engine.ledger.total_xp("alice")
        with pytest.raises(AlreadyLogged):
            engine.log_habit("alice", habit.id, MONDAY)
        assert engine.ledger.total_xp("alice") == total

    def test_unknown_user(self, engine, habit):
        with pytest.raises(UserNotFound):
            engine.log_habit("mallory", habit.id, MONDAY)

    def test_unknown_habit(self, engine):
        with pytest.raises(HabitNotFound):
            engine.log_habit("alice", 999, MONDAY)

    def test_someone_elses_habit(self, engine, clock):
        engine.db.add_user("bob", "Bob", format_ts(clock()))
        bobs = engine.db.add_habit("bob", "Swim")
        with pytest.raises(HabitNotFound):
            engine.log_habit("alice", bobs.id, MONDAY)

    def test_streak_persisted_on_habit(self, engine, habit, clock):
        _log_days(engine, clock, habit.id, 3)
        stored = engine.db.get_habit(habit.id)
        assert (stored.current_streak, stored.longest_streak) == (3, 3)

    def test_streak_base_xp_grows(self, engine, habit, clock):
        results = _log_days(engine, clock, habit.id, 3)
        base = [
            next(t.amount for t in r.transactions if t.source == XpSource.HABIT_COMPLETE)
            for r in results
        ]
        assert base == [10, 12, 14]

    def test_seven_day_week(self, engine, habit, clock):
        results = _log_days(engine, clock, habit.id, 7)
        last = results[-1]
        assert last.streak.current_streak == 7
        amounts = {t.source: t.amount for t in last.transactions}
        assert amounts == {
            XpSource.HABIT_COMPLETE: 22,
            XpSource.STREAK_BONUS: 50,
            XpSource.PERFECT_DAY: 25,
        }
        assert {b.id for b in last.new_badges} == {"flame", "weekly_warrior"}
        earned = {b.id for r in results for b in r.new_badges}
        assert earned == {"first_steps", "spark", "flame", "weekly_warrior"}
        # completions 112 + 175 perfect + 50 milestone; badges 10 + 25 + 50 + 50
        assert engine.ledger.total_xp("alice") == 472

    def test_backfill_keeps_todays_streak(self, engine, habit, clock):
        engine.log_habit("alice", habit.id, MONDAY)
        result = engine.log_habit("alice", habit.id, MONDAY - timedelta(days=1))
        assert result.streak.current_streak == 2
        # previous streak was 1 when the backfill arrived
        assert next(t.amount for t in result.transactions if t.source == XpSource.HABIT_COMPLETE) == 12

    def test_level_up(self, engine, habit):
        engine.ledger.grant("alice", 100, XpSource.CHALLENGE_COMPLETE, "0")
        result = engine.log_habit("alice", habit.id, MONDAY)
        assert result.total_xp == 145
        assert result.level == 2
        assert result.level_up

    def test_to_dict(self, engine, habit):
        data = engine.log_habit("alice", habit.id, MONDAY).to_dict()
        assert data["streak"] == {"current_streak": 1, "longest_streak": 1}
        assert data["new_badges"][0]["id"] == "first_steps"


class TestPerfectDay:
    def test_bonus_when_last_scheduled_habit_done(self, engine, habit):
        run = engine.db.add_habit("alice", "Run")
        first = engine.log_habit("alice", habit.id, MONDAY)
        second = engine.log_habit("alice", run.id, MONDAY)
        assert first.xp_granted == 10
        assert second.xp_granted == 35

    def test_unscheduled_habits_ignored(self, engine, habit):
        engine.db.add_habit("alice", "Gym", Schedule(days=frozenset({1, 3})))
        assert engine.log_habit("alice", habit.id, MONDAY).xp_granted == 35

    def test_logging_unscheduled_habit_is_not_perfect(self, engine):
        gym = engine.db.add_habit("alice", "Gym", Schedule(days=frozenset({1, 3})))
        assert engine.log_habit("alice", gym.id, MONDAY).xp_granted == 10

    def test_at_most_once_per_day(self, engine, habit):
        run = engine.db.add_habit("alice", "Run")
        engine.log_habit("alice", habit.id, MONDAY)
        engine.log_habit("alice", run.id, MONDAY)
        engine.undo_habit("alice", habit.id, MONDAY)
        again = engine.log_habit("alice", habit.id, MONDAY)
        assert again.xp_granted == 10
        perfect = engine.db.unreversed_grants("alice", source=XpSource.PERFECT_DAY)
        assert len(perfect) == 1


class TestUndoHabit:
    def test_round_trip_restores_xp(self, engine, habit, clock):
        engine.log_habit("alice", habit.id, MONDAY)
        clock.advance(days=1)
        before = engine.ledger.total_xp("alice")
        tuesday = clock().date()

        logged = engine.log_habit("alice", habit.id, tuesday)
        assert logged.new_badges == []
        undone = engine.undo_habit("alice", habit.id, tuesday)

        assert undone.xp_reversed == logged.xp_granted == 37
        assert undone.total_xp == before
        assert undone.streak.current_streak == 1
        assert engine.db.get_log(habit.id, tuesday) is None

    def test_undo_reverses_only_that_completion(self, engine, habit):
        run = engine.db.add_habit("alice", "Run")
        engine.log_habit("alice", habit.id, MONDAY)
        engine.log_habit("alice", run.id, MONDAY)  # carries the perfect-day bonus
        result = engine.undo_habit("alice", habit.id, MONDAY)
        assert result.xp_reversed == 10

    def test_badges_stay_earned(self, engine, habit):
        engine.log_habit("alice", habit.id, MONDAY)
        engine.undo_habit("alice", habit.id, MONDAY)
        assert engine.get_badge_detail("alice", "first_steps")["state"] == "earned"
        assert engine.ledger.total_xp("alice") == 10

    def test_undo_not_logged(self, engine, habit):
        with pytest.raises(NotLogged):
            engine.undo_habit("alice", habit.id, MONDAY)

    def test_undo_twice(self, engine, habit):
        engine.log_habit("alice", habit.id, MONDAY)
        engine.undo_habit("alice", habit.id, MONDAY)
        with pytest.raises(NotLogged):
            engine.undo_habit("alice", habit.id, MONDAY)

    def test_relog_after_undo_rewards_again(self, engine, habit):
        first = engine.log_habit("alice", habit.id, MONDAY)
        engine.undo_habit("alice", habit.id, MONDAY)
        again = engine.log_habit("alice", habit.id, MONDAY)
        assert again.xp_granted == first.xp_granted
        assert again.new_badges == []


class TestRollback:
    def test_failure_mid_event_leaves_no_trace(self, engine, habit):
        with patch.object(engine.badges, "evaluate", side_effect=StoreUnavailable("disk I/O error")):
            with pytest.raises(StoreUnavailable):
                engine.log_habit("alice", habit.id, MONDAY)
        assert engine.db.get_log(habit.id, MONDAY) is None
        assert engine.ledger.total_xp("alice") == 0
        assert engine.db.get_habit(habit.id).current_streak == 0
        assert not engine.db.in_transaction

    def test_retry_after_failure_succeeds(self, engine, habit):
        with patch.object(engine.badges, "evaluate", side_effect=StoreUnavailable("busy")):
            with pytest.raises(StoreUnavailable):
                engine.log_habit("alice", habit.id, MONDAY)
        assert engine.log_habit("alice", habit.id, MONDAY).xp_granted == 35

    def test_rollback_is_logged(self, engine, habit, caplog):
        with patch.object(engine.challenges, "update_all", side_effect=StoreUnavailable("busy")):
            with caplog.at_level("WARNING", logger="habit_rank.engine"):
                with pytest.raises(StoreUnavailable):
                    engine.log_habit("alice", habit.id, MONDAY)
        assert EventStage.BADGES_EVALUATED.value in caplog.text


class TestChallengeIntegration:
    def test_completion_advances_and_completes_challenge(self, engine, habit, clock):
        challenge = engine.challenges.create_challenge(
            "Two days", ChallengeTargetType.DAILY_COMPLETIONS, 2, Difficulty.EASY,
            MONDAY, MONDAY + timedelta(days=6), created_by="alice",
        )
        day_one, day_two = _log_days(engine, clock, habit.id, 2)
        assert [(u.challenge_id, u.progress, u.completed) for u in day_one.challenge_updates] == [
            (challenge.id, 1, False)
        ]
        update = day_two.challenge_updates[0]
        assert update.completed
        assert update.xp_awarded == 100
        history = engine.get_challenge_history("alice")
        assert [h["id"] for h in history["history"]] == [challenge.id]

    def test_challenge_xp_can_unlock_xp_badge(self, engine, habit, clock):
        engine.ledger.grant("alice", 400, XpSource.HABIT_COMPLETE, "0")
        engine.challenges.create_challenge(
            "One day", ChallengeTargetType.TOTAL_COMPLETIONS, 1, Difficulty.EASY,
            MONDAY, MONDAY, created_by="alice",
        )
        result = engine.log_habit("alice", habit.id, MONDAY)
        # 400 + 35 + 10 first_steps + 100 challenge crosses 500
        assert "xp_collector" in {b.id for b in result.new_badges}

    def test_ten_completions_complete_once(self, engine, clock):
        challenge = engine.challenges.create_challenge(
            "Ten habits", ChallengeTargetType.TOTAL_COMPLETIONS, 10, Difficulty.MEDIUM,
            MONDAY, MONDAY + timedelta(days=6), created_by="alice",
        )
        habits = [engine.db.add_habit("alice", f"Habit {i}") for i in range(11)]
        for h in habits[:9]:
            engine.log_habit("alice", h.id, MONDAY)
        participant = engine.db.get_participant(challenge.id, "alice")
        assert (participant.progress, participant.state) == (9, ParticipantState.JOINED)
        assert participant.completed_at is None

        tenth = engine.log_habit("alice", habits[9].id, MONDAY)
        assert [(u.progress, u.completed, u.xp_awarded) for u in tenth.challenge_updates] == [(10, True, 150)]
        participant = engine.db.get_participant(challenge.id, "alice")
        assert participant.state == ParticipantState.COMPLETED
        assert participant.completed_at == format_ts(clock())

        eleventh = engine.log_habit("alice", habits[10].id, MONDAY)
        assert eleventh.challenge_updates == []
        rewards = engine.db.unreversed_grants("alice", source=XpSource.CHALLENGE_COMPLETE)
        assert [t.amount for t in rewards] == [150]

    def test_challenge_reward_counts_toward_xp_gain(self, engine, habit):
        xp_rush = engine.challenges.create_challenge(
            "XP rush", ChallengeTargetType.XP_GAIN, 140, Difficulty.EASY,
            MONDAY, MONDAY, created_by="alice",
        )
        one_day = engine.challenges.create_challenge(
            "One day", ChallengeTargetType.TOTAL_COMPLETIONS, 1, Difficulty.EASY,
            MONDAY, MONDAY, created_by="alice",
        )
        result = engine.log_habit("alice", habit.id, MONDAY)
        # 35 completion + 10 first_steps + 100 from "One day" reaches 140
        assert {u.challenge_id for u in result.challenge_updates if u.completed} == {xp_rush.id, one_day.id}
        assert engine.db.get_participant(xp_rush.id, "alice").state == ParticipantState.COMPLETED
        assert engine.db.get_participant(xp_rush.id, "alice").progress == 140
        assert result.total_xp == 245

    def test_badge_reward_after_challenge_counts_toward_xp_gain(self, engine, habit, clock):
        engine.ledger.grant("alice", 400, XpSource.HABIT_COMPLETE, "0")
        clock.advance(minutes=1)
        xp_rush = engine.challenges.create_challenge(
            "XP rush", ChallengeTargetType.XP_GAIN, 160, Difficulty.EASY,
            MONDAY, MONDAY, created_by="alice",
        )
        engine.challenges.create_challenge(
            "One day", ChallengeTargetType.TOTAL_COMPLETIONS, 1, Difficulty.EASY,
            MONDAY, MONDAY, created_by="alice",
        )
        result = engine.log_habit("alice", habit.id, MONDAY)
        # gain since joining: 35 + 10 + 100 = 145, then xp_collector (+25) at 545 total
        assert "xp_collector" in {b.id for b in result.new_badges}
        assert engine.db.get_participant(xp_rush.id, "alice").state == ParticipantState.COMPLETED
        assert result.total_xp == 400 + 170 + 100

    def test_seeded_challenges(self, db, clock):
        engine = GamificationEngine(db, clock=clock)
        engine.setup()
        db.add_user("alice", "Alice", format_ts(clock()))
        assert len(engine.get_challenges("alice")) == 4


class TestConcurrentConnections:
    def test_second_connection_rejects_same_day(self, engine, habit, clock, tmp_path):
        other_db = Database(db_path=tmp_path / "test.db")
        try:
            other = GamificationEngine(other_db, clock=clock)
            engine.log_habit("alice", habit.id, MONDAY)
            with pytest.raises(AlreadyLogged):
                other.log_habit("alice", habit.id, MONDAY)
            grants = other_db.unreversed_grants("alice", correlation_key=correlation_key(habit.id, MONDAY))
            assert len(grants) == 2
            assert other.ledger.total_xp("alice") == 45
        finally:
            other_db.close()

    def test_racing_logs_reward_once(self, engine, habit, clock, tmp_path):
        barrier = threading.Barrier(2)
        outcomes: list[str] = []

        def worker():
            database = Database(db_path=tmp_path / "test.db")
            try:
                racer = GamificationEngine(database, clock=clock)
                barrier.wait()
                try:
                    racer.log_habit("alice", habit.id, MONDAY)
                    outcomes.append("logged")
                except AlreadyLogged:
                    outcomes.append("already_logged")
            finally:
                database.close()

        threads = [threading.Thread(target=worker) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(outcomes) == ["already_logged", "logged"]
        assert engine.ledger.total_xp("alice") == 45
        assert len(engine.db.unreversed_grants("alice", source=XpSource.BADGE_UNLOCK)) == 1


class TestQueries:
    def test_xp_history_labels(self, engine, habit):
        engine.log_habit("alice", habit.id, MONDAY)
        page = engine.get_xp_history("alice")
        names = {t["source"]: t["source_name"] for t in page["transactions"]}
        assert names["habit_complete"] == "Read"
        assert names["perfect_day"] == "Perfect day"
        assert names["badge_unlock"] == "First Steps"
        assert not any(t["is_reversal"] for t in page["transactions"])

    def test_xp_history_marks_reversals(self, engine, habit):
        engine.log_habit("alice", habit.id, MONDAY)
        engine.undo_habit("alice", habit.id, MONDAY)
        page = engine.get_xp_history("alice")
        assert sum(1 for t in page["transactions"] if t["is_reversal"]) == 2

    def test_breakdown(self, engine, habit):
        engine.log_habit("alice", habit.id, MONDAY)
        data = engine.get_xp_breakdown("alice")
        assert data["total_xp"] == 45
        assert data["xp_today"] == 45

    def test_queries_require_user(self, engine):
        with pytest.raises(UserNotFound):
            engine.get_badges("mallory")
        with pytest.raises(UserNotFound):
            engine.get_xp_breakdown("mallory")
        with pytest.raises(UserNotFound):
            engine.get_challenge_history("mallory")

    def test_next_badge_goals(self, engine, habit):
        engine.log_habit("alice", habit.id, MONDAY)
        goals = engine.get_next_badge_goals("alice")
        assert len(goals) == 3
        assert all(g["state"] == "locked" for g in goals)

    def test_join_and_leave(self, engine):
        challenge = engine.challenges.create_challenge(
            "Open", ChallengeTargetType.STREAK_DAYS, 3, Difficulty.EASY, MONDAY, MONDAY + timedelta(days=3)
        )
        engine.join_challenge("alice", challenge.id)
        assert engine.get_challenge_leaderboard(challenge.id)[0]["user_id"] == "alice"
        engine.leave_challenge("alice", challenge.id)
        assert engine.get_challenge_leaderboard(challenge.id) == []
