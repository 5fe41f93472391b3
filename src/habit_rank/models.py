"""Records and closed vocabularies shared by the rules engine."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import Enum

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def format_ts(moment: datetime) -> str:
    """Render a datetime as a fixed-width UTC string that sorts chronologically."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def parse_ts(value: str) -> datetime:
    return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


class XpSource(str, Enum):
    HABIT_COMPLETE = "habit_complete"
    STREAK_BONUS = "streak_bonus"
    PERFECT_DAY = "perfect_day"
    BADGE_UNLOCK = "badge_unlock"
    CHALLENGE_COMPLETE = "challenge_complete"


class BadgeTier(str, Enum):
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"

    @property
    def rank(self) -> int:
        return _TIER_ORDER.index(self)


_TIER_ORDER = [BadgeTier.BRONZE, BadgeTier.SILVER, BadgeTier.GOLD, BadgeTier.PLATINUM]


class BadgeRarity(str, Enum):
    COMMON = "common"
    RARE = "rare"
    EPIC = "epic"
    LEGENDARY = "legendary"


class BadgeCategory(str, Enum):
    STREAK = "streak"
    VOLUME = "volume"
    CONSISTENCY = "consistency"
    DISCIPLINE = "discipline"


class BadgeMetric(str, Enum):
    CURRENT_STREAK = "current_streak"
    TOTAL_COMPLETIONS = "total_completions"
    WEEKLY_COMPLETIONS = "weekly_completions"
    TOTAL_XP = "total_xp"


class BadgeState(str, Enum):
    LOCKED = "locked"
    EARNED = "earned"


class ChallengeTargetType(str, Enum):
    DAILY_COMPLETIONS = "daily_completions"
    STREAK_DAYS = "streak_days"
    TOTAL_COMPLETIONS = "total_completions"
    XP_GAIN = "xp_gain"


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"
    EXTREME = "extreme"

    @property
    def xp_reward(self) -> int:
        return CHALLENGE_XP[self]


CHALLENGE_XP: dict[Difficulty, int] = {
    Difficulty.EASY: 100,
    Difficulty.MEDIUM: 150,
    Difficulty.HARD: 250,
    Difficulty.EXTREME: 400,
}


class ParticipantState(str, Enum):
    JOINED = "joined"
    COMPLETED = "completed"


@dataclass(frozen=True)
class Schedule:
    """Either every day (``days is None``) or a set of weekdays, Monday=0."""

    days: frozenset[int] | None = None

    def is_scheduled(self, day: date) -> bool:
        return self.days is None or day.weekday() in self.days

    def to_db(self) -> str:
        if self.days is None:
            return "daily"
        return ",".join(str(d) for d in sorted(self.days))

    @classmethod
    def from_db(cls, raw: str | None) -> Schedule:
        if not raw or raw == "daily":
            return cls()
        days = frozenset(int(part) for part in raw.split(","))
        if not days or any(d < 0 or d > 6 for d in days):
            raise ValueError(f"Invalid weekday schedule: {raw!r}")
        return cls(days=days)


@dataclass
class Habit:
    id: int
    owner: str
    title: str
    schedule: Schedule
    current_streak: int = 0
    longest_streak: int = 0
    daily_goal: int = 1


@dataclass
class HabitLog:
    habit_id: int
    date: date
    completed: bool = True
    logged_at: str | None = None


@dataclass
class XpTransaction:
    id: int
    user_id: str
    amount: int
    source: XpSource
    source_id: str | None
    correlation_key: str | None
    reverses_id: int | None
    created_at: str


@dataclass
class BadgeDef:
    id: str
    name: str
    description: str
    category: BadgeCategory
    tier: BadgeTier
    rarity: BadgeRarity
    threshold: int
    xp_reward: int
    metric: BadgeMetric
    icon: str = ""


@dataclass
class BadgeProgress:
    user_id: str
    badge_id: str
    progress: int
    state: BadgeState
    earned_at: str | None


@dataclass
class Challenge:
    id: int
    title: str
    description: str
    target_type: ChallengeTargetType
    target_value: int
    difficulty: Difficulty
    start_date: date
    end_date: date

    @property
    def xp_reward(self) -> int:
        return self.difficulty.xp_reward


@dataclass
class ChallengeParticipant:
    challenge_id: int
    user_id: str
    joined_at: str
    progress: int
    state: ParticipantState
    completed_at: str | None
