"""Challenge participation, progress tracking and leaderboards for habit-rank."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable

from habit_rank.db import Database
from habit_rank.errors import ChallengeExpired, ChallengeNotFound, ChallengeNotJoined
from habit_rank.leaderboard import rank_participants
from habit_rank.models import (
    Challenge,
    ChallengeParticipant,
    ChallengeTargetType,
    Difficulty,
    ParticipantState,
    XpSource,
    format_ts,
)
from habit_rank.xp import XpLedger

logger = logging.getLogger(__name__)

MAX_HISTORY_LIMIT = 50


@dataclass
class ChallengeDefinition:
    title: str
    description: str
    target_type: ChallengeTargetType
    target_value: int
    difficulty: Difficulty
    duration_days: int


DEFAULT_CHALLENGES: list[ChallengeDefinition] = [
    ChallengeDefinition(
        title="7-Day Habit Sprint",
        description="Complete at least one habit every day for 7 days",
        target_type=ChallengeTargetType.DAILY_COMPLETIONS,
        target_value=7,
        difficulty=Difficulty.EASY,
        duration_days=7,
    ),
    ChallengeDefinition(
        title="Consistency Champion",
        description="Achieve a 7-day streak on any habit",
        target_type=ChallengeTargetType.STREAK_DAYS,
        target_value=7,
        difficulty=Difficulty.MEDIUM,
        duration_days=14,
    ),
    ChallengeDefinition(
        title="Habit Marathon",
        description="Complete 50 total habits in 2 weeks",
        target_type=ChallengeTargetType.TOTAL_COMPLETIONS,
        target_value=50,
        difficulty=Difficulty.HARD,
        duration_days=14,
    ),
    ChallengeDefinition(
        title="XP Rush",
        description="Gain 1,000 XP in a month",
        target_type=ChallengeTargetType.XP_GAIN,
        target_value=1000,
        difficulty=Difficulty.EXTREME,
        duration_days=30,
    ),
]


@dataclass
class ChallengeEvent:
    """A habit completion as seen by the challenge tracker."""

    user_id: str
    habit_id: int
    day: date
    current_streak: int


@dataclass
class ChallengeUpdate:
    challenge_id: int
    title: str
    progress: int
    target_value: int
    completed: bool
    xp_awarded: int


def _day_start(day: date) -> str:
    return format_ts(datetime.combine(day, time.min, tzinfo=timezone.utc))


class ChallengeTracker:
    """Per-participant progress against a challenge's target metric."""

    def __init__(self, db: Database, ledger: XpLedger, clock: Callable[[], datetime]) -> None:
        self.db = db
        self.ledger = ledger
        self.clock = clock

    def _today(self) -> date:
        return self.clock().date()

    def _require(self, challenge_id: int) -> Challenge:
        challenge = self.db.get_challenge(challenge_id)
        if challenge is None:
            raise ChallengeNotFound(f"Challenge {challenge_id} not found")
        return challenge

    # ── Catalogue ─────────────────────────────────────────────────────────────

    def seed_defaults(self) -> list[Challenge]:
        """Create the global default challenges once, starting today."""
        today = self._today()
        created: list[Challenge] = []
        with self.db.transaction():
            if self.db.count_global_challenges() > 0:
                return created
            for definition in DEFAULT_CHALLENGES:
                created.append(self.db.insert_challenge(
                    definition.title,
                    definition.description,
                    definition.target_type,
                    definition.target_value,
                    definition.difficulty,
                    today,
                    today + timedelta(days=definition.duration_days),
                    is_global=True,
                ))
        logger.info("Seeded %d default challenges", len(created))
        return created

    def create_challenge(
        self,
        title: str,
        target_type: ChallengeTargetType,
        target_value: int,
        difficulty: Difficulty,
        start_date: date,
        end_date: date,
        description: str = "",
        created_by: str | None = None,
    ) -> Challenge:
        """Create a challenge; the creator (if given) joins it automatically."""
        if target_value < 1:
            raise ValueError("target_value must be at least 1")
        if end_date < start_date:
            raise ValueError("end_date must not be before start_date")
        with self.db.transaction():
            challenge = self.db.insert_challenge(
                title,
                description,
                ChallengeTargetType(target_type),
                target_value,
                Difficulty(difficulty),
                start_date,
                end_date,
                created_by=created_by,
            )
            if created_by is not None:
                self.join(created_by, challenge.id)
        return challenge

    # ── Participation ─────────────────────────────────────────────────────────

    def join(self, user_id: str, challenge_id: int) -> ChallengeParticipant:
        with self.db.transaction():
            challenge = self._require(challenge_id)
            if challenge.end_date < self._today():
                raise ChallengeExpired(f"Challenge {challenge_id} ended on {challenge.end_date}")
            participant = self.db.insert_participant(challenge_id, user_id, format_ts(self.clock()))
        logger.info("User %s joined challenge %s", user_id, challenge_id)
        return participant

    def leave(self, user_id: str, challenge_id: int) -> None:
        """Remove the participant row. Progress is discarded."""
        with self.db.transaction():
            self._require(challenge_id)
            if not self.db.delete_participant(challenge_id, user_id):
                raise ChallengeNotJoined(f"User {user_id} has not joined challenge {challenge_id}")
        logger.info("User %s left challenge %s", user_id, challenge_id)

    def _measure(self, challenge: Challenge, participant: ChallengeParticipant, event: ChallengeEvent) -> int:
        since = participant.joined_at
        if challenge.target_type == ChallengeTargetType.DAILY_COMPLETIONS:
            value = self.db.count_completion_days(
                participant.user_id, logged_since=since,
                from_date=challenge.start_date, to_date=challenge.end_date,
            )
        elif challenge.target_type == ChallengeTargetType.TOTAL_COMPLETIONS:
            value = self.db.count_completions(
                participant.user_id, logged_since=since,
                from_date=challenge.start_date, to_date=challenge.end_date,
            )
        elif challenge.target_type == ChallengeTargetType.STREAK_DAYS:
            in_window = challenge.start_date <= event.day <= challenge.end_date
            value = event.current_streak if in_window else 0
        else:
            value = self.db.sum_xp(
                participant.user_id,
                since=max(since, _day_start(challenge.start_date)),
                until=_day_start(challenge.end_date + timedelta(days=1)),
            )
        return min(value, challenge.target_value)

    def update_progress(self, user_id: str, challenge_id: int, event: ChallengeEvent) -> ChallengeUpdate | None:
        """Recompute one participant's progress; complete the challenge exactly once.

        Returns None when the user is not an active participant or the
        challenge has ended.
        """
        with self.db.transaction():
            challenge = self._require(challenge_id)
            participant = self.db.get_participant(challenge_id, user_id)
            if participant is None or participant.state != ParticipantState.JOINED:
                return None
            if self._today() > challenge.end_date:
                return None

            measured = self._measure(challenge, participant, event)
            self.db.raise_participant_progress(challenge_id, user_id, measured)
            progress = max(participant.progress, measured)

            completed = self.db.mark_participant_completed(
                challenge_id, user_id, format_ts(self.clock())
            )
            xp_awarded = 0
            if completed:
                self.ledger.grant(
                    user_id, challenge.xp_reward, XpSource.CHALLENGE_COMPLETE, str(challenge_id)
                )
                xp_awarded = challenge.xp_reward
                logger.info("User %s completed challenge %s", user_id, challenge_id)

        if progress == participant.progress and not completed:
            return None
        return ChallengeUpdate(
            challenge_id=challenge_id,
            title=challenge.title,
            progress=progress,
            target_value=challenge.target_value,
            completed=completed,
            xp_awarded=xp_awarded,
        )

    def update_all(self, event: ChallengeEvent) -> list[ChallengeUpdate]:
        """Update every challenge the user is actively participating in."""
        updates: list[ChallengeUpdate] = []
        with self.db.transaction():
            for participant in self.db.list_user_participations(event.user_id, ParticipantState.JOINED):
                update = self.update_progress(event.user_id, participant.challenge_id, event)
                if update is not None:
                    updates.append(update)
        return updates

    # ── Queries ───────────────────────────────────────────────────────────────

    def leaderboard(self, challenge_id: int, current_user_id: str | None = None) -> list[dict]:
        self._require(challenge_id)
        return rank_participants(self.db.list_participants(challenge_id), current_user_id)

    def get_challenges(self, user_id: str) -> list[dict]:
        """Challenges that have not ended, with the user's participation merged in."""
        today = self._today()
        result = []
        for challenge in self.db.list_challenges(active_on=today):
            participant = self.db.get_participant(challenge.id, user_id)
            progress = participant.progress if participant else 0
            result.append({
                "id": challenge.id,
                "title": challenge.title,
                "description": challenge.description,
                "target_type": challenge.target_type.value,
                "target_value": challenge.target_value,
                "difficulty": challenge.difficulty.value,
                "xp_reward": challenge.xp_reward,
                "start_date": challenge.start_date.isoformat(),
                "end_date": challenge.end_date.isoformat(),
                "status": "upcoming" if challenge.start_date > today else "active",
                "days_remaining": (challenge.end_date - today).days,
                "participant_count": self.db.count_participants(challenge.id),
                "joined": participant is not None,
                "participant_state": participant.state.value if participant else None,
                "progress": progress,
                "progress_percent": min(100, round(100 * progress / challenge.target_value)),
                "completed_at": participant.completed_at if participant else None,
            })
        return result

    def get_history(self, user_id: str, limit: int = 20, offset: int = 0) -> dict:
        """Completed challenges, most recently completed first."""
        limit = max(1, min(limit, MAX_HISTORY_LIMIT))
        offset = max(0, offset)
        completed = self.db.list_user_participations(user_id, ParticipantState.COMPLETED)
        completed.sort(key=lambda p: p.completed_at or "", reverse=True)
        page = completed[offset:offset + limit]
        history = []
        for p in page:
            challenge = self._require(p.challenge_id)
            history.append({
                "id": challenge.id,
                "title": challenge.title,
                "target_type": challenge.target_type.value,
                "target_value": challenge.target_value,
                "difficulty": challenge.difficulty.value,
                "xp_reward": challenge.xp_reward,
                "state": p.state.value,
                "progress": p.progress,
                "joined_at": p.joined_at,
                "completed_at": p.completed_at,
                "start_date": challenge.start_date.isoformat(),
                "end_date": challenge.end_date.isoformat(),
            })
        return {
            "history": history,
            "total": len(completed),
            "limit": limit,
            "offset": offset,
            "has_more": offset + len(page) < len(completed),
        }
