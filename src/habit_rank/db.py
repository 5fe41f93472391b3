"""SQLite database layer for habit-rank."""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import date
from pathlib import Path
from typing import Iterator

from habit_rank.errors import AlreadyLogged, ChallengeAlreadyJoined, StoreUnavailable
from habit_rank.models import (
    BadgeCategory,
    BadgeDef,
    BadgeMetric,
    BadgeProgress,
    BadgeRarity,
    BadgeState,
    BadgeTier,
    Challenge,
    ChallengeParticipant,
    ChallengeTargetType,
    Difficulty,
    Habit,
    HabitLog,
    ParticipantState,
    Schedule,
    XpSource,
    XpTransaction,
)

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path.home() / ".habit-rank" / "data.db"
DEFAULT_TIMEOUT = 5.0


def _row_to_habit(row: sqlite3.Row) -> Habit:
    return Habit(
        id=row["id"],
        owner=row["user_id"],
        title=row["title"],
        schedule=Schedule.from_db(row["schedule"]),
        current_streak=row["current_streak"],
        longest_streak=row["longest_streak"],
        daily_goal=row["daily_goal"],
    )


def _row_to_log(row: sqlite3.Row) -> HabitLog:
    return HabitLog(
        habit_id=row["habit_id"],
        date=date.fromisoformat(row["date"]),
        completed=bool(row["completed"]),
        logged_at=row["logged_at"],
    )


def _row_to_transaction(row: sqlite3.Row) -> XpTransaction:
    return XpTransaction(
        id=row["id"],
        user_id=row["user_id"],
        amount=row["amount"],
        source=XpSource(row["source"]),
        source_id=row["source_id"],
        correlation_key=row["correlation_key"],
        reverses_id=row["reverses_id"],
        created_at=row["created_at"],
    )


def _row_to_badge(row: sqlite3.Row) -> BadgeDef:
    return BadgeDef(
        id=row["id"],
        name=row["name"],
        description=row["description"],
        category=BadgeCategory(row["category"]),
        tier=BadgeTier(row["tier"]),
        rarity=BadgeRarity(row["rarity"]),
        threshold=row["threshold"],
        xp_reward=row["xp_reward"],
        metric=BadgeMetric(row["metric"]),
        icon=row["icon"] or "",
    )


def _row_to_badge_progress(row: sqlite3.Row) -> BadgeProgress:
    return BadgeProgress(
        user_id=row["user_id"],
        badge_id=row["badge_id"],
        progress=row["progress"],
        state=BadgeState(row["state"]),
        earned_at=row["earned_at"],
    )


def _row_to_challenge(row: sqlite3.Row) -> Challenge:
    return Challenge(
        id=row["id"],
        title=row["title"],
        description=row["description"] or "",
        target_type=ChallengeTargetType(row["target_type"]),
        target_value=row["target_value"],
        difficulty=Difficulty(row["difficulty"]),
        start_date=date.fromisoformat(row["start_date"]),
        end_date=date.fromisoformat(row["end_date"]),
    )


def _row_to_participant(row: sqlite3.Row) -> ChallengeParticipant:
    return ChallengeParticipant(
        challenge_id=row["challenge_id"],
        user_id=row["user_id"],
        joined_at=row["joined_at"],
        progress=row["progress"],
        state=ParticipantState(row["state"]),
        completed_at=row["completed_at"],
    )


class Database:
    """SQLite database manager with WAL mode and explicit transactions.

    The connection runs in autocommit mode; ``transaction()`` opens a
    ``BEGIN IMMEDIATE`` block so concurrent writers on the same file are
    serialised. Nested ``transaction()`` calls join the outermost one.
    """

    def __init__(self, db_path: Path | None = None, timeout: float = DEFAULT_TIMEOUT) -> None:
        self.db_path = db_path or DEFAULT_DB_PATH
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self.conn = sqlite3.connect(str(self.db_path), timeout=timeout, isolation_level=None)
            self.conn.row_factory = sqlite3.Row
            self.conn.execute("PRAGMA journal_mode=WAL")
            self.init_db()
        except sqlite3.OperationalError as exc:
            raise StoreUnavailable(f"Cannot open database {self.db_path}: {exc}") from exc
        self._depth = 0

    def init_db(self) -> None:
        """Create tables if they do not exist."""
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL DEFAULT '',
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS habits (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL REFERENCES users(id),
                title TEXT NOT NULL,
                schedule TEXT NOT NULL DEFAULT 'daily',
                current_streak INTEGER NOT NULL DEFAULT 0,
                longest_streak INTEGER NOT NULL DEFAULT 0,
                daily_goal INTEGER NOT NULL DEFAULT 1
            );

            CREATE TABLE IF NOT EXISTS habit_logs (
                habit_id INTEGER NOT NULL REFERENCES habits(id),
                date TEXT NOT NULL,
                completed BOOLEAN NOT NULL DEFAULT 1,
                logged_at TEXT NOT NULL,
                PRIMARY KEY (habit_id, date)
            );

            CREATE TABLE IF NOT EXISTS xp_transactions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                amount INTEGER NOT NULL,
                source TEXT NOT NULL,
                source_id TEXT,
                correlation_key TEXT,
                reverses_id INTEGER UNIQUE REFERENCES xp_transactions(id),
                created_at TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_xp_user_created
                ON xp_transactions (user_id, created_at);
            CREATE INDEX IF NOT EXISTS idx_xp_user_correlation
                ON xp_transactions (user_id, correlation_key);

            CREATE TABLE IF NOT EXISTS badges (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                description TEXT NOT NULL DEFAULT '',
                category TEXT NOT NULL,
                tier TEXT NOT NULL,
                rarity TEXT NOT NULL,
                threshold INTEGER NOT NULL,
                xp_reward INTEGER NOT NULL,
                metric TEXT NOT NULL,
                icon TEXT,
                sort_order INTEGER DEFAULT 0
            );

            CREATE TABLE IF NOT EXISTS badge_progress (
                user_id TEXT NOT NULL,
                badge_id TEXT NOT NULL REFERENCES badges(id),
                progress INTEGER NOT NULL DEFAULT 0,
                state TEXT NOT NULL DEFAULT 'locked',
                earned_at TEXT,
                PRIMARY KEY (user_id, badge_id)
            );

            CREATE TABLE IF NOT EXISTS challenges (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                title TEXT NOT NULL,
                description TEXT DEFAULT '',
                target_type TEXT NOT NULL,
                target_value INTEGER NOT NULL,
                difficulty TEXT NOT NULL,
                start_date TEXT NOT NULL,
                end_date TEXT NOT NULL,
                is_global BOOLEAN DEFAULT 0,
                created_by TEXT
            );

            CREATE TABLE IF NOT EXISTS challenge_participants (
                challenge_id INTEGER NOT NULL REFERENCES challenges(id),
                user_id TEXT NOT NULL,
                joined_at TEXT NOT NULL,
                progress INTEGER NOT NULL DEFAULT 0,
                state TEXT NOT NULL DEFAULT 'joined',
                completed_at TEXT,
                PRIMARY KEY (challenge_id, user_id)
            );
        """)

    # ── Transactions ──────────────────────────────────────────────────────────

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    @contextmanager
    def transaction(self) -> Iterator[Database]:
        """Run the enclosed block atomically.

        Any exception rolls back every write made inside the outermost block.
        sqlite3.OperationalError (locked, busy, I/O) surfaces as StoreUnavailable.
        """
        if self._depth:
            self._depth += 1
            try:
                yield self
            finally:
                self._depth -= 1
            return

        try:
            self.conn.execute("BEGIN IMMEDIATE")
        except sqlite3.OperationalError as exc:
            raise StoreUnavailable(f"Could not begin transaction: {exc}") from exc

        self._depth = 1
        try:
            yield self
        except sqlite3.OperationalError as exc:
            self._rollback()
            raise StoreUnavailable(str(exc)) from exc
        except BaseException:
            self._rollback()
            raise
        else:
            try:
                self.conn.execute("COMMIT")
            except sqlite3.OperationalError as exc:
                self._rollback()
                raise StoreUnavailable(f"Commit failed: {exc}") from exc
        finally:
            self._depth = 0

    def _rollback(self) -> None:
        if self.conn.in_transaction:
            self.conn.execute("ROLLBACK")
            logger.warning("Rolled back transaction on %s", self.db_path)

    # ── Users ─────────────────────────────────────────────────────────────────

    def add_user(self, user_id: str, name: str, created_at: str) -> None:
        self.conn.execute(
            "INSERT INTO users (id, name, created_at) VALUES (?, ?, ?)",
            (user_id, name, created_at),
        )

    def get_user(self, user_id: str) -> dict | None:
        row = self.conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return dict(row) if row else None

    # ── Habits ────────────────────────────────────────────────────────────────

    def add_habit(
        self, user_id: str, title: str, schedule: Schedule | None = None, daily_goal: int = 1
    ) -> Habit:
        schedule = schedule or Schedule()
        cursor = self.conn.execute(
            "INSERT INTO habits (user_id, title, schedule, daily_goal) VALUES (?, ?, ?, ?)",
            (user_id, title, schedule.to_db(), daily_goal),
        )
        return Habit(
            id=cursor.lastrowid,
            owner=user_id,
            title=title,
            schedule=schedule,
            daily_goal=daily_goal,
        )

    def get_habit(self, habit_id: int) -> Habit | None:
        row = self.conn.execute("SELECT * FROM habits WHERE id = ?", (habit_id,)).fetchone()
        return _row_to_habit(row) if row else None

    def get_user_habits(self, user_id: str) -> list[Habit]:
        rows = self.conn.execute(
            "SELECT * FROM habits WHERE user_id = ? ORDER BY id", (user_id,)
        ).fetchall()
        return [_row_to_habit(row) for row in rows]

    def update_habit_streak(self, habit_id: int, current_streak: int, longest_streak: int) -> None:
        self.conn.execute(
            "UPDATE habits SET current_streak = ?, longest_streak = ? WHERE id = ?",
            (current_streak, longest_streak, habit_id),
        )

    # ── Habit logs ────────────────────────────────────────────────────────────

    def insert_log(self, habit_id: int, day: date, logged_at: str) -> HabitLog:
        """Insert a completed log. The (habit, date) primary key rejects duplicates."""
        try:
            self.conn.execute(
                "INSERT INTO habit_logs (habit_id, date, completed, logged_at) VALUES (?, ?, 1, ?)",
                (habit_id, day.isoformat(), logged_at),
            )
        except sqlite3.IntegrityError as exc:
            raise AlreadyLogged(f"Habit {habit_id} already logged for {day.isoformat()}") from exc
        return HabitLog(habit_id=habit_id, date=day, completed=True, logged_at=logged_at)

    def get_log(self, habit_id: int, day: date) -> HabitLog | None:
        row = self.conn.execute(
            "SELECT * FROM habit_logs WHERE habit_id = ? AND date = ?",
            (habit_id, day.isoformat()),
        ).fetchone()
        return _row_to_log(row) if row else None

    def delete_log(self, habit_id: int, day: date) -> bool:
        cursor = self.conn.execute(
            "DELETE FROM habit_logs WHERE habit_id = ? AND date = ?",
            (habit_id, day.isoformat()),
        )
        return cursor.rowcount == 1

    def get_habit_logs(self, habit_id: int) -> list[HabitLog]:
        rows = self.conn.execute(
            "SELECT * FROM habit_logs WHERE habit_id = ? ORDER BY date DESC", (habit_id,)
        ).fetchall()
        return [_row_to_log(row) for row in rows]

    def completed_habit_ids_on(self, user_id: str, day: date) -> set[int]:
        rows = self.conn.execute(
            "SELECT l.habit_id FROM habit_logs l JOIN habits h ON h.id = l.habit_id "
            "WHERE h.user_id = ? AND l.date = ? AND l.completed = 1",
            (user_id, day.isoformat()),
        ).fetchall()
        return {row["habit_id"] for row in rows}

    def _completion_filter(
        self,
        user_id: str,
        logged_since: str | None,
        from_date: date | None,
        to_date: date | None,
    ) -> tuple[str, list]:
        clauses = ["h.user_id = ?", "l.completed = 1"]
        params: list = [user_id]
        if logged_since is not None:
            clauses.append("l.logged_at >= ?")
            params.append(logged_since)
        if from_date is not None:
            clauses.append("l.date >= ?")
            params.append(from_date.isoformat())
        if to_date is not None:
            clauses.append("l.date <= ?")
            params.append(to_date.isoformat())
        return " AND ".join(clauses), params

    def count_completions(
        self,
        user_id: str,
        logged_since: str | None = None,
        from_date: date | None = None,
        to_date: date | None = None,
    ) -> int:
        """Count completed logs across all of a user's habits."""
        where, params = self._completion_filter(user_id, logged_since, from_date, to_date)
        row = self.conn.execute(
            f"SELECT COUNT(*) AS n FROM habit_logs l JOIN habits h ON h.id = l.habit_id WHERE {where}",
            params,
        ).fetchone()
        return row["n"]

    def count_completion_days(
        self,
        user_id: str,
        logged_since: str | None = None,
        from_date: date | None = None,
        to_date: date | None = None,
    ) -> int:
        """Count distinct calendar days with at least one completion."""
        where, params = self._completion_filter(user_id, logged_since, from_date, to_date)
        row = self.conn.execute(
            "SELECT COUNT(DISTINCT l.date) AS n FROM habit_logs l "
            f"JOIN habits h ON h.id = l.habit_id WHERE {where}",
            params,
        ).fetchone()
        return row["n"]

    # ── XP ledger ─────────────────────────────────────────────────────────────

    def insert_transaction(
        self,
        user_id: str,
        amount: int,
        source: XpSource,
        source_id: str | None,
        correlation_key: str | None,
        created_at: str,
        reverses_id: int | None = None,
    ) -> XpTransaction:
        cursor = self.conn.execute(
            "INSERT INTO xp_transactions "
            "(user_id, amount, source, source_id, correlation_key, reverses_id, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (user_id, amount, source.value, source_id, correlation_key, reverses_id, created_at),
        )
        return XpTransaction(
            id=cursor.lastrowid,
            user_id=user_id,
            amount=amount,
            source=source,
            source_id=source_id,
            correlation_key=correlation_key,
            reverses_id=reverses_id,
            created_at=created_at,
        )

    def get_transaction(self, transaction_id: int) -> XpTransaction | None:
        row = self.conn.execute(
            "SELECT * FROM xp_transactions WHERE id = ?", (transaction_id,)
        ).fetchone()
        return _row_to_transaction(row) if row else None

    def get_reversal_of(self, transaction_id: int) -> XpTransaction | None:
        row = self.conn.execute(
            "SELECT * FROM xp_transactions WHERE reverses_id = ?", (transaction_id,)
        ).fetchone()
        return _row_to_transaction(row) if row else None

    def sum_xp(self, user_id: str, since: str | None = None, until: str | None = None) -> int:
        """Sum of transaction amounts, optionally within [since, until)."""
        query = "SELECT COALESCE(SUM(amount), 0) AS total FROM xp_transactions WHERE user_id = ?"
        params: list = [user_id]
        if since is not None:
            query += " AND created_at >= ?"
            params.append(since)
        if until is not None:
            query += " AND created_at < ?"
            params.append(until)
        return self.conn.execute(query, params).fetchone()["total"]

    def list_transactions(self, user_id: str, limit: int, offset: int = 0) -> list[XpTransaction]:
        rows = self.conn.execute(
            "SELECT * FROM xp_transactions WHERE user_id = ? "
            "ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
            (user_id, limit, offset),
        ).fetchall()
        return [_row_to_transaction(row) for row in rows]

    def count_transactions(self, user_id: str) -> int:
        row = self.conn.execute(
            "SELECT COUNT(*) AS n FROM xp_transactions WHERE user_id = ?", (user_id,)
        ).fetchone()
        return row["n"]

    def sum_xp_by_source(self, user_id: str) -> list[dict]:
        rows = self.conn.execute(
            "SELECT source, SUM(amount) AS total_xp, COUNT(*) AS transaction_count "
            "FROM xp_transactions WHERE user_id = ? GROUP BY source ORDER BY source",
            (user_id,),
        ).fetchall()
        return [dict(row) for row in rows]

    def unreversed_grants(
        self,
        user_id: str,
        correlation_key: str | None = None,
        source: XpSource | None = None,
        key_suffix: str | None = None,
    ) -> list[XpTransaction]:
        """Positive transactions without a matching reversal row."""
        query = (
            "SELECT t.* FROM xp_transactions t WHERE t.user_id = ? AND t.amount > 0 "
            "AND NOT EXISTS (SELECT 1 FROM xp_transactions r WHERE r.reverses_id = t.id)"
        )
        params: list = [user_id]
        if correlation_key is not None:
            query += " AND t.correlation_key = ?"
            params.append(correlation_key)
        if source is not None:
            query += " AND t.source = ?"
            params.append(source.value)
        if key_suffix is not None:
            query += " AND t.correlation_key LIKE ?"
            params.append(f"%{key_suffix}")
        query += " ORDER BY t.id"
        return [_row_to_transaction(row) for row in self.conn.execute(query, params).fetchall()]

    # ── Badges ────────────────────────────────────────────────────────────────

    def upsert_badge(self, badge: BadgeDef, sort_order: int = 0) -> None:
        self.conn.execute(
            "INSERT INTO badges "
            "(id, name, description, category, tier, rarity, threshold, xp_reward, metric, icon, sort_order) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET name = excluded.name, description = excluded.description, "
            "category = excluded.category, tier = excluded.tier, rarity = excluded.rarity, "
            "threshold = excluded.threshold, xp_reward = excluded.xp_reward, "
            "metric = excluded.metric, icon = excluded.icon, sort_order = excluded.sort_order",
            (
                badge.id, badge.name, badge.description, badge.category.value, badge.tier.value,
                badge.rarity.value, badge.threshold, badge.xp_reward, badge.metric.value,
                badge.icon, sort_order,
            ),
        )

    def get_badge(self, badge_id: str) -> BadgeDef | None:
        row = self.conn.execute("SELECT * FROM badges WHERE id = ?", (badge_id,)).fetchone()
        return _row_to_badge(row) if row else None

    def list_badges(self, metric: BadgeMetric | None = None) -> list[BadgeDef]:
        if metric is None:
            rows = self.conn.execute(
                "SELECT * FROM badges ORDER BY category, sort_order"
            ).fetchall()
        else:
            rows = self.conn.execute(
                "SELECT * FROM badges WHERE metric = ? ORDER BY sort_order", (metric.value,)
            ).fetchall()
        return [_row_to_badge(row) for row in rows]

    def raise_badge_progress(self, user_id: str, badge_id: str, value: int) -> None:
        """Create the progress row or raise it to ``value``; never lowers progress."""
        self.conn.execute(
            "INSERT INTO badge_progress (user_id, badge_id, progress, state) VALUES (?, ?, ?, 'locked') "
            "ON CONFLICT(user_id, badge_id) DO UPDATE SET progress = MAX(progress, excluded.progress)",
            (user_id, badge_id, max(0, value)),
        )

    def mark_badge_earned(self, user_id: str, badge_id: str, earned_at: str) -> bool:
        """Flip locked -> earned if progress reached the threshold. True only for the winner."""
        cursor = self.conn.execute(
            "UPDATE badge_progress SET state = 'earned', earned_at = ? "
            "WHERE user_id = ? AND badge_id = ? AND state = 'locked' "
            "AND progress >= (SELECT threshold FROM badges WHERE id = ?)",
            (earned_at, user_id, badge_id, badge_id),
        )
        return cursor.rowcount == 1

    def get_badge_progress(self, user_id: str, badge_id: str) -> BadgeProgress | None:
        row = self.conn.execute(
            "SELECT * FROM badge_progress WHERE user_id = ? AND badge_id = ?",
            (user_id, badge_id),
        ).fetchone()
        return _row_to_badge_progress(row) if row else None

    def list_badge_progress(self, user_id: str) -> dict[str, BadgeProgress]:
        rows = self.conn.execute(
            "SELECT * FROM badge_progress WHERE user_id = ?", (user_id,)
        ).fetchall()
        return {row["badge_id"]: _row_to_badge_progress(row) for row in rows}

    # ── Challenges ────────────────────────────────────────────────────────────

    def insert_challenge(
        self,
        title: str,
        description: str,
        target_type: ChallengeTargetType,
        target_value: int,
        difficulty: Difficulty,
        start_date: date,
        end_date: date,
        is_global: bool = False,
        created_by: str | None = None,
    ) -> Challenge:
        cursor = self.conn.execute(
            "INSERT INTO challenges "
            "(title, description, target_type, target_value, difficulty, start_date, end_date, "
            "is_global, created_by) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                title, description, target_type.value, target_value, difficulty.value,
                start_date.isoformat(), end_date.isoformat(), is_global, created_by,
            ),
        )
        return Challenge(
            id=cursor.lastrowid,
            title=title,
            description=description,
            target_type=target_type,
            target_value=target_value,
            difficulty=difficulty,
            start_date=start_date,
            end_date=end_date,
        )

    def get_challenge(self, challenge_id: int) -> Challenge | None:
        row = self.conn.execute(
            "SELECT * FROM challenges WHERE id = ?", (challenge_id,)
        ).fetchone()
        return _row_to_challenge(row) if row else None

    def list_challenges(self, active_on: date | None = None) -> list[Challenge]:
        if active_on is None:
            rows = self.conn.execute("SELECT * FROM challenges ORDER BY start_date, id").fetchall()
        else:
            rows = self.conn.execute(
                "SELECT * FROM challenges WHERE end_date >= ? ORDER BY start_date, id",
                (active_on.isoformat(),),
            ).fetchall()
        return [_row_to_challenge(row) for row in rows]

    def count_global_challenges(self) -> int:
        row = self.conn.execute(
            "SELECT COUNT(*) AS n FROM challenges WHERE is_global = 1"
        ).fetchone()
        return row["n"]

    def insert_participant(self, challenge_id: int, user_id: str, joined_at: str) -> ChallengeParticipant:
        try:
            self.conn.execute(
                "INSERT INTO challenge_participants (challenge_id, user_id, joined_at, progress, state) "
                "VALUES (?, ?, ?, 0, 'joined')",
                (challenge_id, user_id, joined_at),
            )
        except sqlite3.IntegrityError as exc:
            raise ChallengeAlreadyJoined(
                f"User {user_id} already joined challenge {challenge_id}"
            ) from exc
        return ChallengeParticipant(
            challenge_id=challenge_id,
            user_id=user_id,
            joined_at=joined_at,
            progress=0,
            state=ParticipantState.JOINED,
            completed_at=None,
        )

    def delete_participant(self, challenge_id: int, user_id: str) -> bool:
        cursor = self.conn.execute(
            "DELETE FROM challenge_participants WHERE challenge_id = ? AND user_id = ?",
            (challenge_id, user_id),
        )
        return cursor.rowcount == 1

    def get_participant(self, challenge_id: int, user_id: str) -> ChallengeParticipant | None:
        row = self.conn.execute(
            "SELECT * FROM challenge_participants WHERE challenge_id = ? AND user_id = ?",
            (challenge_id, user_id),
        ).fetchone()
        return _row_to_participant(row) if row else None

    def list_participants(self, challenge_id: int) -> list[ChallengeParticipant]:
        rows = self.conn.execute(
            "SELECT * FROM challenge_participants WHERE challenge_id = ?", (challenge_id,)
        ).fetchall()
        return [_row_to_participant(row) for row in rows]

    def list_user_participations(
        self, user_id: str, state: ParticipantState | None = None
    ) -> list[ChallengeParticipant]:
        query = "SELECT * FROM challenge_participants WHERE user_id = ?"
        params: list = [user_id]
        if state is not None:
            query += " AND state = ?"
            params.append(state.value)
        query += " ORDER BY joined_at"
        return [_row_to_participant(row) for row in self.conn.execute(query, params).fetchall()]

    def count_participants(self, challenge_id: int) -> int:
        row = self.conn.execute(
            "SELECT COUNT(*) AS n FROM challenge_participants WHERE challenge_id = ?",
            (challenge_id,),
        ).fetchone()
        return row["n"]

    def raise_participant_progress(self, challenge_id: int, user_id: str, value: int) -> None:
        self.conn.execute(
            "UPDATE challenge_participants SET progress = MAX(progress, ?) "
            "WHERE challenge_id = ? AND user_id = ?",
            (max(0, value), challenge_id, user_id),
        )

    def mark_participant_completed(self, challenge_id: int, user_id: str, completed_at: str) -> bool:
        """Flip joined -> completed once progress reached the target. True only for the winner."""
        cursor = self.conn.execute(
            "UPDATE challenge_participants SET state = 'completed', completed_at = ? "
            "WHERE challenge_id = ? AND user_id = ? AND state = 'joined' "
            "AND progress >= (SELECT target_value FROM challenges WHERE id = ?)",
            (completed_at, challenge_id, user_id, challenge_id),
        )
        return cursor.rowcount == 1

    def close(self) -> None:
        """Close the database connection."""
        self.conn.close()
