"""XP economy constants.

Configured once per process; ``load_economy`` in config.py applies overrides
from the user's config file on top of these defaults.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields

from habit_rank.models import CHALLENGE_XP, BadgeTier

HABIT_BASE_XP = 10
STREAK_BONUS_PER_DAY = 2
STREAK_BONUS_CAP = 40
PERFECT_DAY_BONUS = 25

# Streak length -> one-time bonus when the streak reaches it
STREAK_MILESTONES: dict[int, int] = {
    7: 50,
    30: 200,
    100: 500,
    365: 2000,
}

BADGE_XP_RANGES: dict[BadgeTier, tuple[int, int]] = {
    BadgeTier.BRONZE: (10, 25),
    BadgeTier.SILVER: (50, 75),
    BadgeTier.GOLD: (100, 150),
    BadgeTier.PLATINUM: (200, 500),
}

LEVEL_FORMULA = "XP = 50 * level^1.5"


@dataclass(frozen=True)
class Economy:
    habit_base: int = HABIT_BASE_XP
    streak_bonus_per_day: int = STREAK_BONUS_PER_DAY
    streak_bonus_cap: int = STREAK_BONUS_CAP
    perfect_day_bonus: int = PERFECT_DAY_BONUS
    streak_milestones: dict[int, int] = field(default_factory=lambda: dict(STREAK_MILESTONES))

    def milestone_bonus(self, previous_streak: int, new_streak: int) -> int:
        """Sum of bonuses for milestones crossed going from previous_streak to new_streak."""
        return sum(
            bonus
            for days, bonus in self.streak_milestones.items()
            if previous_streak < days <= new_streak
        )

    def to_dict(self) -> dict:
        data = asdict(self)
        data["streak_milestones"] = [
            {"days": days, "bonus": bonus}
            for days, bonus in sorted(self.streak_milestones.items())
        ]
        data["badge_xp"] = {
            tier.value: {"min": low, "max": high} for tier, (low, high) in BADGE_XP_RANGES.items()
        }
        data["challenge_xp"] = {d.value: xp for d, xp in CHALLENGE_XP.items()}
        data["level_formula"] = LEVEL_FORMULA
        return data

    @classmethod
    def from_overrides(cls, overrides: dict | None) -> Economy:
        """Build an Economy from a config dict, ignoring unknown keys."""
        if not overrides:
            return cls()
        known = {f.name for f in fields(cls)}
        kwargs: dict = {}
        for key, value in overrides.items():
            if key not in known:
                continue
            if key == "streak_milestones":
                kwargs[key] = {int(days): int(bonus) for days, bonus in dict(value).items()}
            else:
                kwargs[key] = int(value)
        return cls(**kwargs)


DEFAULT_ECONOMY = Economy()
