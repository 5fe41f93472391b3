"""Error taxonomy for habit-rank.

Every failure the engine reports carries a stable ``kind`` string so callers
can show an accurate message without parsing text.
"""

from __future__ import annotations


class HabitRankError(Exception):
    """Base class for all engine errors."""

    kind = "error"
    retryable = False


class AlreadyLogged(HabitRankError):
    kind = "already_logged"


class NotLogged(HabitRankError):
    kind = "not_logged"


class ChallengeAlreadyJoined(HabitRankError):
    kind = "challenge_already_joined"


class ChallengeNotJoined(HabitRankError):
    kind = "challenge_not_joined"


class ChallengeExpired(HabitRankError):
    kind = "challenge_expired"


class ConsistencyError(HabitRankError):
    """The XP ledger would go negative, or a reversal has no valid original."""

    kind = "consistency_error"


class StoreUnavailable(HabitRankError):
    """Transient storage failure. The whole event may be retried."""

    kind = "store_unavailable"
    retryable = True


class UserNotFound(HabitRankError):
    kind = "user_not_found"


class HabitNotFound(HabitRankError):
    kind = "habit_not_found"


class BadgeNotFound(HabitRankError):
    kind = "badge_not_found"


class ChallengeNotFound(HabitRankError):
    kind = "challenge_not_found"
