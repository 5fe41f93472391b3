"""Badge definitions, progress tracking and one-time unlocking for habit-rank."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from habit_rank.db import Database
from habit_rank.errors import BadgeNotFound
from habit_rank.models import (
    BadgeCategory,
    BadgeDef,
    BadgeMetric,
    BadgeRarity,
    BadgeState,
    BadgeTier,
    XpSource,
    format_ts,
)
from habit_rank.xp import XpLedger

logger = logging.getLogger(__name__)


def _badge(
    badge_id: str,
    name: str,
    description: str,
    category: BadgeCategory,
    tier: BadgeTier,
    rarity: BadgeRarity,
    threshold: int,
    xp_reward: int,
    metric: BadgeMetric,
    icon: str,
) -> BadgeDef:
    return BadgeDef(
        id=badge_id,
        name=name,
        description=description,
        category=category,
        tier=tier,
        rarity=rarity,
        threshold=threshold,
        xp_reward=xp_reward,
        metric=metric,
        icon=icon,
    )


_S, _V, _C, _D = (
    BadgeCategory.STREAK,
    BadgeCategory.VOLUME,
    BadgeCategory.CONSISTENCY,
    BadgeCategory.DISCIPLINE,
)
_B, _SI, _G, _P = BadgeTier.BRONZE, BadgeTier.SILVER, BadgeTier.GOLD, BadgeTier.PLATINUM
_COMMON, _RARE, _EPIC, _LEGENDARY = (
    BadgeRarity.COMMON,
    BadgeRarity.RARE,
    BadgeRarity.EPIC,
    BadgeRarity.LEGENDARY,
)
_STREAK = BadgeMetric.CURRENT_STREAK
_TOTAL = BadgeMetric.TOTAL_COMPLETIONS
_WEEKLY = BadgeMetric.WEEKLY_COMPLETIONS
_XP = BadgeMetric.TOTAL_XP

BADGE_DEFINITIONS: list[BadgeDef] = [
    # Streak
    _badge("spark", "Spark", "Complete habits for 3 days in a row", _S, _B, _COMMON, 3, 25, _STREAK, "\U0001f525"),
    _badge("flame", "Flame", "Maintain a 7-day streak", _S, _SI, _COMMON, 7, 50, _STREAK, "\U0001f525"),
    _badge("inferno", "Inferno", "Maintain a 14-day streak", _S, _G, _RARE, 14, 100, _STREAK, "\U0001f525"),
    _badge("blaze_master", "Blaze Master", "Maintain a 30-day streak", _S, _P, _EPIC, 30, 200, _STREAK, "\U0001f525"),
    _badge("eternal_flame", "Eternal Flame", "Maintain a 60-day streak", _S, _P, _LEGENDARY, 60, 500, _STREAK, "\U0001f451"),
    # Volume
    _badge("first_steps", "First Steps", "Complete your first habit", _V, _B, _COMMON, 1, 10, _TOTAL, "⭐"),
    _badge("getting_started", "Getting Started", "Complete 10 habits", _V, _B, _COMMON, 10, 25, _TOTAL, "\U0001f31f"),
    _badge("building_momentum", "Building Momentum", "Complete 25 habits", _V, _SI, _COMMON, 25, 50, _TOTAL, "\U0001f4aa"),
    _badge("habit_hero", "Habit Hero", "Complete 100 habits", _V, _G, _RARE, 100, 150, _TOTAL, "\U0001f3c6"),
    _badge("habit_legend", "Habit Legend", "Complete 500 habits", _V, _P, _EPIC, 500, 300, _TOTAL, "\U0001f451"),
    _badge("habit_deity", "Habit Deity", "Complete 1000 habits", _V, _P, _LEGENDARY, 1000, 500, _TOTAL, "✨"),
    # Consistency
    _badge("weekly_warrior", "Weekly Warrior", "Complete 7 habits in a single week", _C, _B, _COMMON, 7, 50, _WEEKLY, "\U0001f4c5"),
    _badge("month_master", "Month Master", "Complete habits for 30 consecutive days", _C, _G, _EPIC, 30, 250, _STREAK, "\U0001f4c6"),
    # Discipline (XP)
    _badge("xp_collector", "XP Collector", "Earn 500 XP", _D, _B, _COMMON, 500, 25, _XP, "⚡"),
    _badge("xp_hunter", "XP Hunter", "Earn 2,000 XP", _D, _SI, _COMMON, 2000, 50, _XP, "⚡"),
    _badge("xp_master", "XP Master", "Earn 5,000 XP", _D, _G, _RARE, 5000, 100, _XP, "⚡"),
    _badge("xp_legend", "XP Legend", "Earn 10,000 XP", _D, _P, _EPIC, 10000, 200, _XP, "\U0001f48e"),
]


class BadgeEvaluator:
    """Tracks per-user badge progress and unlocks each badge at most once."""

    def __init__(self, db: Database, ledger: XpLedger, clock: Callable[[], datetime]) -> None:
        self.db = db
        self.ledger = ledger
        self.clock = clock

    def sync_definitions(self, definitions: list[BadgeDef] | None = None) -> None:
        """Ensure the badge catalogue exists in the database (idempotent upsert)."""
        with self.db.transaction():
            for i, badge in enumerate(definitions or BADGE_DEFINITIONS):
                self.db.upsert_badge(badge, sort_order=i)

    def evaluate(self, user_id: str, metric: BadgeMetric, value: int) -> list[BadgeDef]:
        """Raise progress for every badge driven by ``metric`` and unlock the ones now due.

        Progress is max(existing, value). The locked -> earned flip is a
        conditional update, so only one caller can win it and grant the XP.
        Returns the badges that flipped in this call.
        """
        newly_earned: list[BadgeDef] = []
        with self.db.transaction():
            for badge in self.db.list_badges(metric=BadgeMetric(metric)):
                self.db.raise_badge_progress(user_id, badge.id, value)
                if not self.db.mark_badge_earned(user_id, badge.id, format_ts(self.clock())):
                    continue
                self.ledger.grant(user_id, badge.xp_reward, XpSource.BADGE_UNLOCK, badge.id)
                logger.info("User %s earned badge %s", user_id, badge.id)
                newly_earned.append(badge)
        return newly_earned

    def _merge(self, badge: BadgeDef, progress) -> dict:
        current = progress.progress if progress else 0
        state = progress.state if progress else BadgeState.LOCKED
        return {
            "id": badge.id,
            "name": badge.name,
            "description": badge.description,
            "category": badge.category.value,
            "tier": badge.tier.value,
            "rarity": badge.rarity.value,
            "threshold": badge.threshold,
            "xp_reward": badge.xp_reward,
            "metric": badge.metric.value,
            "icon": badge.icon,
            "state": state.value,
            "progress": min(current, badge.threshold),
            "progress_percent": min(100, round(100 * current / badge.threshold)) if badge.threshold else 100,
            "earned_at": progress.earned_at if progress else None,
        }

    def get_badges(self, user_id: str) -> list[dict]:
        """All badges with the user's progress and state merged in."""
        progress = self.db.list_badge_progress(user_id)
        return [self._merge(badge, progress.get(badge.id)) for badge in self.db.list_badges()]

    def get_badge_detail(self, user_id: str, badge_id: str) -> dict:
        badge = self.db.get_badge(badge_id)
        if badge is None:
            raise BadgeNotFound(f"Badge {badge_id!r} not found")
        detail = self._merge(badge, self.db.get_badge_progress(user_id, badge_id))
        detail["tier_index"] = badge.tier.rank
        return detail

    def next_goals(self, user_id: str, n: int = 3) -> list[dict]:
        """The N unearned badges closest to unlocking (highest progress first)."""
        unearned = [b for b in self.get_badges(user_id) if b["state"] != BadgeState.EARNED.value]
        unearned.sort(key=lambda b: b["progress_percent"], reverse=True)
        for b in unearned:
            b["remaining"] = b["threshold"] - b["progress"]
        return unearned[:n]
