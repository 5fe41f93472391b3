"""Gamification engine: the entry point for habit completion and undo events.

Each event runs inside one database transaction and walks the stages
Idle -> Validating -> StreakUpdated -> XpGranted -> BadgesEvaluated ->
ChallengesUpdated -> Done. A failure at any stage rolls the whole event back.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Callable

from habit_rank.badges import BadgeEvaluator
from habit_rank.challenges import ChallengeEvent, ChallengeTracker, ChallengeUpdate
from habit_rank.db import Database
from habit_rank.economy import DEFAULT_ECONOMY, Economy
from habit_rank.errors import AlreadyLogged, HabitNotFound, NotLogged, UserNotFound
from habit_rank.levels import level_from_xp
from habit_rank.models import BadgeDef, BadgeMetric, Habit, XpSource, XpTransaction, format_ts
from habit_rank.streaks import StreakResult, compute_streak, scheduled_habits
from habit_rank.xp import XpLedger, calculate_completion_xp

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

SOURCE_NAMES: dict[XpSource, str] = {
    XpSource.HABIT_COMPLETE: "Habit completed",
    XpSource.STREAK_BONUS: "Streak bonus",
    XpSource.PERFECT_DAY: "Perfect day",
    XpSource.BADGE_UNLOCK: "Badge unlocked",
    XpSource.CHALLENGE_COMPLETE: "Challenge completed",
}


def system_clock() -> datetime:
    return datetime.now(tz=timezone.utc)


def correlation_key(habit_id: int, day: date) -> str:
    """Key stamped on every grant one completion produces."""
    return f"{habit_id}:{day.isoformat()}"


def _as_date(day: date | str) -> date:
    if isinstance(day, str):
        return date.fromisoformat(day)
    return day


class EventStage(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    STREAK_UPDATED = "streak_updated"
    XP_GRANTED = "xp_granted"
    BADGES_EVALUATED = "badges_evaluated"
    CHALLENGES_UPDATED = "challenges_updated"
    DONE = "done"


@dataclass
class CompletionResult:
    streak: StreakResult
    xp_granted: int
    transactions: list[XpTransaction] = field(default_factory=list)
    new_badges: list[BadgeDef] = field(default_factory=list)
    challenge_updates: list[ChallengeUpdate] = field(default_factory=list)
    total_xp: int = 0
    level: int = 1
    level_up: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class UndoResult:
    streak: StreakResult
    xp_reversed: int
    total_xp: int = 0
    level: int = 1

    def to_dict(self) -> dict:
        return asdict(self)


class GamificationEngine:
    """Sequences streak, XP, badge and challenge rules for each habit event."""

    def __init__(self, db: Database, clock: Clock = system_clock, economy: Economy = DEFAULT_ECONOMY) -> None:
        self.db = db
        self.clock = clock
        self.economy = economy
        self.ledger = XpLedger(db, clock, economy)
        self.badges = BadgeEvaluator(db, self.ledger, clock)
        self.challenges = ChallengeTracker(db, self.ledger, clock)

    def setup(self, seed_challenges: bool = True) -> None:
        """Sync the badge catalogue and, optionally, the default challenges."""
        self.badges.sync_definitions()
        if seed_challenges:
            self.challenges.seed_defaults()

    # ── Validation ────────────────────────────────────────────────────────────

    def require_user(self, user_id: str) -> None:
        if self.db.get_user(user_id) is None:
            raise UserNotFound(f"User {user_id!r} not found")

    def _require_habit(self, user_id: str, habit_id: int) -> Habit:
        self.require_user(user_id)
        habit = self.db.get_habit(habit_id)
        if habit is None or habit.owner != user_id:
            raise HabitNotFound(f"Habit {habit_id} not found for user {user_id!r}")
        return habit

    def _advance(self, current: EventStage, nxt: EventStage, event: str) -> EventStage:
        logger.debug("%s: %s -> %s", event, current.value, nxt.value)
        return nxt

    # ── Events ────────────────────────────────────────────────────────────────

    def log_habit(self, user_id: str, habit_id: int, day: date | str) -> CompletionResult:
        """Record a completion and apply every reward it earns.

        Raises AlreadyLogged if (habit, day) is already completed; nothing is
        re-awarded in that case.
        """
        day = _as_date(day)
        event = f"log_habit({user_id}, {habit_id}, {day})"
        stage = EventStage.IDLE
        try:
            with self.db.transaction():
                stage = self._advance(stage, EventStage.VALIDATING, event)
                habit = self._require_habit(user_id, habit_id)
                if self.db.get_log(habit_id, day) is not None:
                    raise AlreadyLogged(f"Habit {habit_id} already completed on {day.isoformat()}")
                xp_before = self.ledger.total_xp(user_id)
                now = self.clock()
                today = now.date()

                before = compute_streak(habit, self.db.get_habit_logs(habit_id), today)
                self.db.insert_log(habit_id, day, format_ts(now))
                streak = compute_streak(habit, self.db.get_habit_logs(habit_id), today)
                self.db.update_habit_streak(habit_id, streak.current_streak, streak.longest_streak)
                stage = self._advance(stage, EventStage.STREAK_UPDATED, event)

                transactions = self._grant_completion_xp(
                    habit, day, before.current_streak, streak.current_streak
                )
                stage = self._advance(stage, EventStage.XP_GRANTED, event)

                new_badges = self._evaluate_badges(user_id, day)
                stage = self._advance(stage, EventStage.BADGES_EVALUATED, event)

                updates, reward_badges = self._update_challenges(
                    ChallengeEvent(user_id, habit_id, day, streak.current_streak)
                )
                new_badges.extend(reward_badges)
                stage = self._advance(stage, EventStage.CHALLENGES_UPDATED, event)

                total_xp = self.ledger.total_xp(user_id)
        except Exception as exc:
            logger.warning("%s rolled back at stage %s: %s", event, stage.value, exc)
            raise

        stage = self._advance(stage, EventStage.DONE, event)
        level = level_from_xp(total_xp)
        xp_granted = sum(t.amount for t in transactions)
        logger.info(
            "%s: streak=%d xp=+%d badges=%d challenges=%d",
            event, streak.current_streak, xp_granted, len(new_badges), len(updates),
        )
        return CompletionResult(
            streak=streak,
            xp_granted=xp_granted,
            transactions=transactions,
            new_badges=new_badges,
            challenge_updates=updates,
            total_xp=total_xp,
            level=level,
            level_up=level > level_from_xp(xp_before),
        )

    def undo_habit(self, user_id: str, habit_id: int, day: date | str) -> UndoResult:
        """Remove a completion and reverse exactly the XP it granted.

        Badge and challenge progress is left as is.
        """
        day = _as_date(day)
        event = f"undo_habit({user_id}, {habit_id}, {day})"
        stage = EventStage.IDLE
        try:
            with self.db.transaction():
                stage = self._advance(stage, EventStage.VALIDATING, event)
                habit = self._require_habit(user_id, habit_id)
                existing = self.db.get_log(habit_id, day)
                if existing is None or not existing.completed:
                    raise NotLogged(f"Habit {habit_id} has no completion on {day.isoformat()}")

                self.db.delete_log(habit_id, day)
                streak = compute_streak(habit, self.db.get_habit_logs(habit_id), self.clock().date())
                self.db.update_habit_streak(habit_id, streak.current_streak, streak.longest_streak)
                stage = self._advance(stage, EventStage.STREAK_UPDATED, event)

                reversals = self.ledger.reverse_correlated(user_id, correlation_key(habit_id, day))
                stage = self._advance(stage, EventStage.XP_GRANTED, event)
                total_xp = self.ledger.total_xp(user_id)
        except Exception as exc:
            logger.warning("%s rolled back at stage %s: %s", event, stage.value, exc)
            raise

        self._advance(stage, EventStage.DONE, event)
        xp_reversed = -sum(r.amount for r in reversals)
        logger.info("%s: streak=%d xp=-%d", event, streak.current_streak, xp_reversed)
        return UndoResult(
            streak=streak,
            xp_reversed=xp_reversed,
            total_xp=total_xp,
            level=level_from_xp(total_xp),
        )

    def _is_perfect_day(self, habit: Habit, day: date) -> bool:
        """True if this completion finished every habit scheduled for the day."""
        if not habit.schedule.is_scheduled(day):
            return False
        scheduled = {h.id for h in scheduled_habits(self.db.get_user_habits(habit.owner), day)}
        if not scheduled <= self.db.completed_habit_ids_on(habit.owner, day):
            return False
        already = self.db.unreversed_grants(
            habit.owner, source=XpSource.PERFECT_DAY, key_suffix=f":{day.isoformat()}"
        )
        return not already

    def _grant_completion_xp(
        self, habit: Habit, day: date, previous_streak: int, new_streak: int
    ) -> list[XpTransaction]:
        xp = calculate_completion_xp(
            previous_streak, new_streak, self._is_perfect_day(habit, day), self.economy
        )
        key = correlation_key(habit.id, day)
        source_id = str(habit.id)
        grants = [
            (XpSource.HABIT_COMPLETE, xp.base_xp),
            (XpSource.STREAK_BONUS, xp.streak_bonus),
            (XpSource.PERFECT_DAY, xp.perfect_day_bonus),
        ]
        return [
            self.ledger.grant(habit.owner, amount, source, source_id, correlation_key=key)
            for source, amount in grants
            if amount > 0
        ]

    def _evaluate_badges(self, user_id: str, day: date) -> list[BadgeDef]:
        habits = self.db.get_user_habits(user_id)
        week_start = day - timedelta(days=day.weekday())
        metrics = [
            (BadgeMetric.CURRENT_STREAK, max((h.current_streak for h in habits), default=0)),
            (BadgeMetric.TOTAL_COMPLETIONS, self.db.count_completions(user_id)),
            (
                BadgeMetric.WEEKLY_COMPLETIONS,
                self.db.count_completions(
                    user_id, from_date=week_start, to_date=week_start + timedelta(days=6)
                ),
            ),
        ]
        earned: list[BadgeDef] = []
        for metric, value in metrics:
            earned.extend(self.badges.evaluate(user_id, metric, value))
        earned.extend(self._evaluate_xp_badges(user_id))
        return earned

    def _evaluate_xp_badges(self, user_id: str) -> list[BadgeDef]:
        """Badge rewards raise total XP, which can unlock further XP badges."""
        earned: list[BadgeDef] = []
        while True:
            batch = self.badges.evaluate(user_id, BadgeMetric.TOTAL_XP, self.ledger.total_xp(user_id))
            if not batch:
                return earned
            earned.extend(batch)

    def _update_challenges(self, event: ChallengeEvent) -> tuple[list[ChallengeUpdate], list[BadgeDef]]:
        """Challenge and XP badge rewards count toward xp_gain targets; repeat until nothing changes."""
        latest: dict[int, ChallengeUpdate] = {}
        earned: list[BadgeDef] = []
        while True:
            batch = self.challenges.update_all(event)
            for update in batch:
                latest[update.challenge_id] = update
            badges = self._evaluate_xp_badges(event.user_id)
            earned.extend(badges)
            if not batch and not badges:
                return list(latest.values()), earned

    # ── Queries ───────────────────────────────────────────────────────────────

    def get_xp_breakdown(self, user_id: str) -> dict:
        with self.db.transaction():
            self.require_user(user_id)
            return self.ledger.breakdown(user_id)

    def get_xp_history(self, user_id: str, limit: int = 50, offset: int = 0) -> dict:
        """A page of the user's ledger, each row labelled with what caused it."""
        with self.db.transaction():
            self.require_user(user_id)
            page = self.ledger.history(user_id, limit, offset)
            page["transactions"] = [self._describe(t) for t in page["transactions"]]
        return page

    def _describe(self, txn: XpTransaction) -> dict:
        name = SOURCE_NAMES[txn.source]
        if txn.source_id is not None:
            if txn.source == XpSource.HABIT_COMPLETE:
                habit = self.db.get_habit(int(txn.source_id))
                if habit is not None:
                    name = habit.title
            elif txn.source == XpSource.BADGE_UNLOCK:
                badge = self.db.get_badge(txn.source_id)
                if badge is not None:
                    name = badge.name
            elif txn.source == XpSource.CHALLENGE_COMPLETE:
                challenge = self.db.get_challenge(int(txn.source_id))
                if challenge is not None:
                    name = challenge.title
        data = asdict(txn)
        data["source"] = txn.source.value
        data["source_name"] = name
        data["is_reversal"] = txn.reverses_id is not None
        return data

    def get_badges(self, user_id: str) -> list[dict]:
        with self.db.transaction():
            self.require_user(user_id)
            return self.badges.get_badges(user_id)

    def get_badge_detail(self, user_id: str, badge_id: str) -> dict:
        with self.db.transaction():
            self.require_user(user_id)
            return self.badges.get_badge_detail(user_id, badge_id)

    def get_next_badge_goals(self, user_id: str, n: int = 3) -> list[dict]:
        with self.db.transaction():
            self.require_user(user_id)
            return self.badges.next_goals(user_id, n)

    def join_challenge(self, user_id: str, challenge_id: int) -> None:
        with self.db.transaction():
            self.require_user(user_id)
            self.challenges.join(user_id, challenge_id)

    def leave_challenge(self, user_id: str, challenge_id: int) -> None:
        with self.db.transaction():
            self.require_user(user_id)
            self.challenges.leave(user_id, challenge_id)

    def get_challenges(self, user_id: str) -> list[dict]:
        with self.db.transaction():
            self.require_user(user_id)
            return self.challenges.get_challenges(user_id)

    def get_challenge_leaderboard(self, challenge_id: int, current_user_id: str | None = None) -> list[dict]:
        with self.db.transaction():
            return self.challenges.leaderboard(challenge_id, current_user_id)

    def get_challenge_history(self, user_id: str, limit: int = 20, offset: int = 0) -> dict:
        with self.db.transaction():
            self.require_user(user_id)
            return self.challenges.get_history(user_id, limit, offset)
