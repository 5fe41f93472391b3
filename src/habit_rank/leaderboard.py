"""Challenge leaderboard ranking for habit-rank.

Pure functions: no database access, entries in, ranked entries out.
"""
from __future__ import annotations

from habit_rank.models import ChallengeParticipant, ParticipantState


def _sort_key(p: ChallengeParticipant) -> tuple:
    completed = p.state == ParticipantState.COMPLETED
    return (
        -p.progress,
        0 if completed else 1,
        p.completed_at or "",
        p.joined_at,
    )


def _tie_key(p: ChallengeParticipant) -> tuple:
    return (p.progress, p.state, p.completed_at)


def rank_participants(
    participants: list[ChallengeParticipant], current_user_id: str | None = None
) -> list[dict]:
    """Sort participants and assign 1-based ranks.

    Order: progress desc, completed before not completed, earlier
    completed_at, earlier joined_at. Participants with the same progress,
    state and completion time share a rank (1, 1, 3 style); joined_at only
    orders them within the tie.
    """
    ordered = sorted(participants, key=_sort_key)
    entries: list[dict] = []
    rank = 0
    previous = None
    for i, p in enumerate(ordered):
        key = _tie_key(p)
        if key != previous:
            rank = i + 1
        previous = key
        entries.append({
            "rank": rank,
            "user_id": p.user_id,
            "progress": p.progress,
            "state": p.state.value,
            "joined_at": p.joined_at,
            "completed_at": p.completed_at,
            "is_tied": False,
            "is_current_user": current_user_id is not None and p.user_id == current_user_id,
        })

    counts: dict[int, int] = {}
    for entry in entries:
        counts[entry["rank"]] = counts.get(entry["rank"], 0) + 1
    for entry in entries:
        entry["is_tied"] = counts[entry["rank"]] > 1
    return entries
