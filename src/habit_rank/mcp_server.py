"""MCP server for habit-rank.

Exposes the gamification engine as MCP tools so an assistant can log habits
and query progress mid-conversation.
Run via: python3 -m habit_rank.mcp_server
"""
from __future__ import annotations

import logging
from typing import Any

from mcp.server.fastmcp import FastMCP

from habit_rank.errors import HabitRankError

logger = logging.getLogger(__name__)

mcp = FastMCP(name="habit-rank")


def _get_db():
    from habit_rank.config import get_db_path
    from habit_rank.db import Database
    return Database(db_path=get_db_path())


def _get_engine(db):
    from habit_rank.config import load_economy
    from habit_rank.engine import GamificationEngine
    engine = GamificationEngine(db, economy=load_economy())
    engine.setup()
    return engine


def _error(exc: HabitRankError) -> dict[str, Any]:
    logger.info("Tool call failed: %s (%s)", exc, exc.kind)
    return {"error": str(exc), "kind": exc.kind, "retryable": exc.retryable}


@mcp.tool()
def log_habit(user_id: str, habit_id: int, date: str) -> dict[str, Any]:
    """Mark a habit complete on a date (YYYY-MM-DD): streak, XP, badges and challenges."""
    db = _get_db()
    try:
        return _get_engine(db).log_habit(user_id, habit_id, date).to_dict()
    except HabitRankError as exc:
        return _error(exc)
    finally:
        db.close()


@mcp.tool()
def undo_habit(user_id: str, habit_id: int, date: str) -> dict[str, Any]:
    """Remove a habit completion and reverse the XP it granted."""
    db = _get_db()
    try:
        return _get_engine(db).undo_habit(user_id, habit_id, date).to_dict()
    except HabitRankError as exc:
        return _error(exc)
    finally:
        db.close()


@mcp.tool()
def get_xp_breakdown(user_id: str) -> dict[str, Any]:
    """Get total XP, level progress, period totals and XP by source."""
    db = _get_db()
    try:
        return _get_engine(db).get_xp_breakdown(user_id)
    except HabitRankError as exc:
        return _error(exc)
    finally:
        db.close()


@mcp.tool()
def get_xp_history(user_id: str, limit: int = 50, offset: int = 0) -> dict[str, Any]:
    """Get a page of XP transactions, newest first (limit max 100)."""
    db = _get_db()
    try:
        return _get_engine(db).get_xp_history(user_id, limit, offset)
    except HabitRankError as exc:
        return _error(exc)
    finally:
        db.close()


@mcp.tool()
def get_badges(user_id: str) -> dict[str, Any]:
    """Get every badge with the user's progress, plus the three closest to unlocking."""
    db = _get_db()
    try:
        engine = _get_engine(db)
        badges = engine.get_badges(user_id)
        return {
            "badges": badges,
            "earned_count": sum(1 for b in badges if b["state"] == "earned"),
            "total_count": len(badges),
            "next_goals": engine.get_next_badge_goals(user_id),
        }
    except HabitRankError as exc:
        return _error(exc)
    finally:
        db.close()


@mcp.tool()
def get_badge_detail(user_id: str, badge_id: str) -> dict[str, Any]:
    """Get one badge with the user's progress toward it."""
    db = _get_db()
    try:
        return _get_engine(db).get_badge_detail(user_id, badge_id)
    except HabitRankError as exc:
        return _error(exc)
    finally:
        db.close()


@mcp.tool()
def join_challenge(user_id: str, challenge_id: int) -> dict[str, Any]:
    """Join an active or upcoming challenge."""
    db = _get_db()
    try:
        _get_engine(db).join_challenge(user_id, challenge_id)
        return {"ok": True, "challenge_id": challenge_id}
    except HabitRankError as exc:
        return _error(exc)
    finally:
        db.close()


@mcp.tool()
def leave_challenge(user_id: str, challenge_id: int) -> dict[str, Any]:
    """Leave a challenge. Progress is discarded."""
    db = _get_db()
    try:
        _get_engine(db).leave_challenge(user_id, challenge_id)
        return {"ok": True, "challenge_id": challenge_id}
    except HabitRankError as exc:
        return _error(exc)
    finally:
        db.close()


@mcp.tool()
def get_challenges(user_id: str) -> dict[str, Any]:
    """Get challenges that have not ended, with the user's participation."""
    db = _get_db()
    try:
        challenges = _get_engine(db).get_challenges(user_id)
        return {"challenges": challenges, "count": len(challenges)}
    except HabitRankError as exc:
        return _error(exc)
    finally:
        db.close()


@mcp.tool()
def get_challenge_leaderboard(challenge_id: int, user_id: str | None = None) -> dict[str, Any]:
    """Get the ranked participants of a challenge."""
    db = _get_db()
    try:
        entries = _get_engine(db).get_challenge_leaderboard(challenge_id, user_id)
        return {"challenge_id": challenge_id, "entries": entries, "count": len(entries)}
    except HabitRankError as exc:
        return _error(exc)
    finally:
        db.close()


@mcp.tool()
def get_challenge_history(user_id: str, limit: int = 20, offset: int = 0) -> dict[str, Any]:
    """Get completed challenges, most recent first (limit max 50)."""
    db = _get_db()
    try:
        return _get_engine(db).get_challenge_history(user_id, limit, offset)
    except HabitRankError as exc:
        return _error(exc)
    finally:
        db.close()


def main() -> None:
    mcp.run()


if __name__ == "__main__":
    main()
