"""XP ledger and completion XP calculation for habit-rank.

The ledger is append-only: grants are positive rows, reversals are new
negative rows pointing at the grant they cancel. A user's total XP is the
sum of their rows and is never allowed to go negative.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Callable

from habit_rank.db import Database
from habit_rank.economy import DEFAULT_ECONOMY, Economy
from habit_rank.errors import ConsistencyError
from habit_rank.levels import level_from_xp, level_progress
from habit_rank.models import XpSource, XpTransaction, format_ts

logger = logging.getLogger(__name__)

MAX_HISTORY_LIMIT = 100
DEFAULT_HISTORY_LIMIT = 50


@dataclass
class CompletionXP:
    """XP breakdown for a single habit completion."""

    base_xp: int
    streak_bonus: int
    perfect_day_bonus: int
    total: int = field(init=False)

    def __post_init__(self) -> None:
        self.total = self.base_xp + self.streak_bonus + self.perfect_day_bonus


def calculate_completion_xp(
    previous_streak: int,
    new_streak: int,
    perfect_day: bool,
    economy: Economy = DEFAULT_ECONOMY,
) -> CompletionXP:
    """Calculate XP for one completion.

    1. Base XP = habit_base + min(previous_streak * per_day, cap).
    2. Streak bonus for every milestone (7, 30, ...) crossed by this completion.
    3. Perfect-day bonus when this completion finished every scheduled habit.
    """
    previous_streak = max(0, previous_streak)
    base = economy.habit_base + min(
        previous_streak * economy.streak_bonus_per_day, economy.streak_bonus_cap
    )
    return CompletionXP(
        base_xp=base,
        streak_bonus=economy.milestone_bonus(previous_streak, new_streak),
        perfect_day_bonus=economy.perfect_day_bonus if perfect_day else 0,
    )


def _start_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


class XpLedger:
    """Append-only XP transaction log backed by the ``xp_transactions`` table."""

    def __init__(
        self,
        db: Database,
        clock: Callable[[], datetime],
        economy: Economy = DEFAULT_ECONOMY,
    ) -> None:
        self.db = db
        self.clock = clock
        self.economy = economy

    def grant(
        self,
        user_id: str,
        amount: int,
        source: XpSource,
        source_id: str | None,
        correlation_key: str | None = None,
    ) -> XpTransaction:
        """Append a positive transaction."""
        if amount <= 0:
            raise ValueError(f"XP grant must be positive, got {amount}")
        with self.db.transaction():
            txn = self.db.insert_transaction(
                user_id, amount, XpSource(source), source_id, correlation_key, format_ts(self.clock())
            )
        logger.debug("Granted %d XP to %s (%s %s)", amount, user_id, txn.source.value, source_id)
        return txn

    def reverse(self, transaction_id: int) -> XpTransaction:
        """Append the negative twin of a grant. Reversing twice returns the first reversal."""
        with self.db.transaction():
            original = self.db.get_transaction(transaction_id)
            if original is None:
                raise ConsistencyError(f"No XP transaction {transaction_id} to reverse")
            if original.amount <= 0 or original.reverses_id is not None:
                raise ConsistencyError(f"Transaction {transaction_id} is not a grant")

            existing = self.db.get_reversal_of(transaction_id)
            if existing is not None:
                return existing

            balance = self.db.sum_xp(original.user_id)
            if balance - original.amount < 0:
                raise ConsistencyError(
                    f"Reversing transaction {transaction_id} would leave user "
                    f"{original.user_id} with {balance - original.amount} XP"
                )
            reversal = self.db.insert_transaction(
                original.user_id,
                -original.amount,
                original.source,
                original.source_id,
                original.correlation_key,
                format_ts(self.clock()),
                reverses_id=original.id,
            )
        logger.debug("Reversed XP transaction %d (%d XP)", transaction_id, original.amount)
        return reversal

    def reverse_correlated(self, user_id: str, correlation_key: str) -> list[XpTransaction]:
        """Reverse every still-standing grant stamped with ``correlation_key``."""
        with self.db.transaction():
            grants = self.db.unreversed_grants(user_id, correlation_key=correlation_key)
            return [self.reverse(txn.id) for txn in grants]

    def total_xp(self, user_id: str) -> int:
        return self.db.sum_xp(user_id)

    def level(self, user_id: str) -> int:
        return level_from_xp(self.total_xp(user_id))

    def history(self, user_id: str, limit: int = DEFAULT_HISTORY_LIMIT, offset: int = 0) -> dict:
        """Newest-first page of transactions."""
        limit = max(1, min(limit, MAX_HISTORY_LIMIT))
        offset = max(0, offset)
        transactions = self.db.list_transactions(user_id, limit, offset)
        total = self.db.count_transactions(user_id)
        return {
            "transactions": transactions,
            "total": total,
            "limit": limit,
            "offset": offset,
            "has_more": offset + len(transactions) < total,
        }

    def breakdown(self, user_id: str) -> dict:
        """Totals for today, this week (Monday start), this month and per source."""
        now = self.clock()
        today_start = _start_of_day(now)
        week_start = today_start - timedelta(days=today_start.weekday())
        month_start = today_start.replace(day=1)

        total = self.total_xp(user_id)
        sources = []
        for row in self.db.sum_xp_by_source(user_id):
            amount = row["total_xp"] or 0
            sources.append({
                "source": row["source"],
                "total_xp": amount,
                "transaction_count": row["transaction_count"],
                "percentage": round(100 * amount / total) if total > 0 else 0,
            })

        progress = level_progress(total)
        return {
            "total_xp": total,
            "level": progress.level,
            "level_progress": asdict(progress),
            "xp_today": self.db.sum_xp(user_id, since=format_ts(today_start)),
            "xp_this_week": self.db.sum_xp(user_id, since=format_ts(week_start)),
            "xp_this_month": self.db.sum_xp(user_id, since=format_ts(month_start)),
            "total_transactions": self.db.count_transactions(user_id),
            "source_breakdown": sources,
            "economy": self.economy.to_dict(),
        }
