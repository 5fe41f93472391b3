"""CLI commands for habit-rank."""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import date
from pathlib import Path

from habit_rank.config import get_db_path, get_log_level, load_economy, set_db_path
from habit_rank.db import Database
from habit_rank.display import (
    console,
    print_badge_detail,
    print_badges,
    print_challenge_history,
    print_challenges,
    print_completion_result,
    print_error,
    print_leaderboard,
    print_undo_result,
    print_xp_breakdown,
    print_xp_history,
)
from habit_rank.engine import GamificationEngine
from habit_rank.errors import HabitRankError
from habit_rank.models import Schedule, format_ts

logger = logging.getLogger(__name__)


def _user_arg(p: argparse.ArgumentParser) -> None:
    p.add_argument("user", help="User id")


def build_parser() -> argparse.ArgumentParser:
    """Build and return the argument parser."""
    parser = argparse.ArgumentParser(
        prog="habit-rank",
        description="Streaks, XP, badges and challenges for your habits",
    )
    parser.add_argument("--db", default=None, help="Path to the SQLite database")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log debug output")
    subparsers = parser.add_subparsers(dest="command")

    user_p = subparsers.add_parser("user", help="Manage users")
    user_sub = user_p.add_subparsers(dest="user_command")
    user_add_p = user_sub.add_parser("add", help="Create a user")
    user_add_p.add_argument("user_id")
    user_add_p.add_argument("--name", default=None)

    habit_p = subparsers.add_parser("habit", help="Manage habits")
    habit_sub = habit_p.add_subparsers(dest="habit_command")
    habit_add_p = habit_sub.add_parser("add", help="Create a habit")
    _user_arg(habit_add_p)
    habit_add_p.add_argument("title")
    habit_add_p.add_argument(
        "--days", default="daily",
        help="'daily' or comma-separated weekdays, Monday=0 (e.g. 0,2,4)",
    )

    for name, help_text in (("log", "Mark a habit done"), ("undo", "Remove a habit completion")):
        p = subparsers.add_parser(name, help=help_text)
        _user_arg(p)
        p.add_argument("habit_id", type=int)
        p.add_argument("--date", default=None, help="YYYY-MM-DD (default: today)")

    _user_arg(subparsers.add_parser("xp", help="XP totals and level"))
    history_p = subparsers.add_parser("history", help="XP transaction history")
    _user_arg(history_p)
    history_p.add_argument("--limit", type=int, default=20)
    history_p.add_argument("--offset", type=int, default=0)

    _user_arg(subparsers.add_parser("badges", help="List badges with progress"))
    badge_p = subparsers.add_parser("badge", help="Show one badge")
    _user_arg(badge_p)
    badge_p.add_argument("badge_id")

    _user_arg(subparsers.add_parser("challenges", help="List active challenges"))
    for name, help_text in (("join", "Join a challenge"), ("leave", "Leave a challenge")):
        p = subparsers.add_parser(name, help=help_text)
        _user_arg(p)
        p.add_argument("challenge_id", type=int)
    lb_p = subparsers.add_parser("leaderboard", help="Challenge leaderboard")
    lb_p.add_argument("challenge_id", type=int)
    lb_p.add_argument("--user", default=None, help="Highlight this user")
    ch_hist_p = subparsers.add_parser("challenge-history", help="Completed challenges")
    _user_arg(ch_hist_p)
    ch_hist_p.add_argument("--limit", type=int, default=20)
    ch_hist_p.add_argument("--offset", type=int, default=0)

    config_p = subparsers.add_parser("config", help="Show or change saved settings")
    config_p.add_argument("--db-path", default=None, help="Database file to use from now on")
    return parser


def do_config(db_path: str | None = None) -> dict:
    """Save a new database location (if given) and show the one in use."""
    if db_path:
        set_db_path(Path(db_path).expanduser().resolve())
    current = get_db_path()
    console.print(f"Database: [bold]{current}[/]")
    return {"ok": True, "db_path": str(current)}


def _parse_day(raw: str | None, engine: GamificationEngine) -> date:
    if raw is None:
        return engine.clock().date()
    return date.fromisoformat(raw)


def do_user_add(engine: GamificationEngine, user_id: str, name: str | None = None) -> dict:
    """Create a user."""
    with engine.db.transaction():
        if engine.db.get_user(user_id) is not None:
            console.print(f"[yellow]User {user_id} already exists[/]")
            return {"ok": False, "reason": "exists"}
        engine.db.add_user(user_id, name or user_id, format_ts(engine.clock()))
    console.print(f"[green]Created user[/] [bold]{user_id}[/]")
    return {"ok": True, "user_id": user_id}


def do_habit_add(engine: GamificationEngine, user_id: str, title: str, days: str = "daily") -> dict:
    """Create a habit on the given schedule."""
    schedule = Schedule.from_db(days)
    with engine.db.transaction():
        engine.require_user(user_id)
        habit = engine.db.add_habit(user_id, title, schedule)
    console.print(f"[green]Created habit[/] #{habit.id} [bold]{title}[/] ({schedule.to_db()})")
    return {"ok": True, "habit_id": habit.id}


def do_log(engine: GamificationEngine, user_id: str, habit_id: int, day: str | None = None) -> dict:
    result = engine.log_habit(user_id, habit_id, _parse_day(day, engine)).to_dict()
    print_completion_result(result)
    return result


def do_undo(engine: GamificationEngine, user_id: str, habit_id: int, day: str | None = None) -> dict:
    result = engine.undo_habit(user_id, habit_id, _parse_day(day, engine)).to_dict()
    print_undo_result(result)
    return result


def do_xp(engine: GamificationEngine, user_id: str) -> dict:
    data = engine.get_xp_breakdown(user_id)
    print_xp_breakdown(data)
    return data


def do_history(engine: GamificationEngine, user_id: str, limit: int = 20, offset: int = 0) -> dict:
    page = engine.get_xp_history(user_id, limit, offset)
    print_xp_history(page)
    return page


def do_badges(engine: GamificationEngine, user_id: str) -> dict:
    """Show all badges, then the closest locked ones."""
    badges = engine.get_badges(user_id)
    print_badges(badges)
    goals = engine.get_next_badge_goals(user_id)
    if goals:
        console.print("\n[bold]Next goals:[/]")
        for goal in goals:
            console.print(f"  {goal['name']}: {goal['remaining']} to go ({goal['progress_percent']}%)")
    return {"badges": badges, "next_goals": goals}


def do_badge(engine: GamificationEngine, user_id: str, badge_id: str) -> dict:
    detail = engine.get_badge_detail(user_id, badge_id)
    print_badge_detail(detail)
    return detail


def do_challenges(engine: GamificationEngine, user_id: str) -> dict:
    challenges = engine.get_challenges(user_id)
    if not challenges:
        console.print("[dim]No active challenges.[/]")
    else:
        print_challenges(challenges)
    return {"challenges": challenges}


def do_join(engine: GamificationEngine, user_id: str, challenge_id: int) -> dict:
    engine.join_challenge(user_id, challenge_id)
    console.print(f"[green]Joined challenge[/] #{challenge_id}")
    return {"ok": True, "challenge_id": challenge_id}


def do_leave(engine: GamificationEngine, user_id: str, challenge_id: int) -> dict:
    engine.leave_challenge(user_id, challenge_id)
    console.print(f"Left challenge #{challenge_id}")
    return {"ok": True, "challenge_id": challenge_id}


def do_leaderboard(engine: GamificationEngine, challenge_id: int, user_id: str | None = None) -> dict:
    entries = engine.get_challenge_leaderboard(challenge_id, user_id)
    print_leaderboard(entries, highlight_user=user_id)
    return {"challenge_id": challenge_id, "entries": entries}


def do_challenge_history(engine: GamificationEngine, user_id: str, limit: int = 20, offset: int = 0) -> dict:
    page = engine.get_challenge_history(user_id, limit, offset)
    print_challenge_history(page)
    return page


def _dispatch(engine: GamificationEngine, args: argparse.Namespace) -> dict | None:
    command = args.command
    if command == "user" and args.user_command == "add":
        return do_user_add(engine, args.user_id, name=args.name)
    if command == "habit" and args.habit_command == "add":
        return do_habit_add(engine, args.user, args.title, days=args.days)
    if command == "log":
        return do_log(engine, args.user, args.habit_id, day=args.date)
    if command == "undo":
        return do_undo(engine, args.user, args.habit_id, day=args.date)
    if command == "xp":
        return do_xp(engine, args.user)
    if command == "history":
        return do_history(engine, args.user, args.limit, args.offset)
    if command == "badges":
        return do_badges(engine, args.user)
    if command == "badge":
        return do_badge(engine, args.user, args.badge_id)
    if command == "challenges":
        return do_challenges(engine, args.user)
    if command == "join":
        return do_join(engine, args.user, args.challenge_id)
    if command == "leave":
        return do_leave(engine, args.user, args.challenge_id)
    if command == "leaderboard":
        return do_leaderboard(engine, args.challenge_id, user_id=args.user)
    if command == "challenge-history":
        return do_challenge_history(engine, args.user, args.limit, args.offset)
    return None


def main(argv: list[str] | None = None) -> None:
    """Entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else get_log_level(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "config":
        do_config(args.db_path)
        return

    db = Database(db_path=Path(args.db) if args.db else get_db_path())
    try:
        engine = GamificationEngine(db, economy=load_economy())
        engine.setup()
        if _dispatch(engine, args) is None:
            parser.print_help()
    except HabitRankError as exc:
        logger.debug("Command %s failed", args.command, exc_info=True)
        print_error(str(exc), exc.kind)
        sys.exit(1)
    except ValueError as exc:
        print_error(str(exc), "invalid_argument")
        sys.exit(1)
    finally:
        db.close()


if __name__ == "__main__":
    main()
