"""Append-only attempt log and the statistics derived from it."""
import sqlite3
from datetime import datetime, timedelta
from typing import Callable, Optional

from rad_tutor.db import transaction
from rad_tutor.models import Attempt


def _row_to_attempt(row: sqlite3.Row) -> Attempt:
    return Attempt(
        id=row["id"],
        user_id=row["user_id"],
        case_id=row["case_id"],
        correct=bool(row["correct"]),
        time_spent_ms=row["time_spent_ms"] or 0,
        session_id=row["session_id"],
        answer_index=row["answer_index"],
        correct_index=row["correct_index"],
        attempted_at=datetime.fromisoformat(row["attempted_at"]),
    )


class AttemptLog:
    def __init__(self, db_path: str, clock: Callable[[], datetime] = datetime.now, timeout: float = 5.0):
        self.db_path = db_path
        self.clock = clock
        self.timeout = timeout

    def append(
        self,
        conn: sqlite3.Connection,
        case_id: str,
        correct: bool,
        user_id: Optional[str] = None,
        time_spent_ms: int = 0,
        session_id: Optional[str] = None,
        answer_index: Optional[int] = None,
        correct_index: Optional[int] = None,
        attempted_at: Optional[datetime] = None,
    ) -> int:
        """Insert one attempt on the caller's transaction and return its id."""
        attempted_at = attempted_at or self.clock()
        cur = conn.execute(
            """INSERT INTO attempts
            (user_id, case_id, correct, time_spent_ms, session_id, answer_index, correct_index, attempted_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                user_id, case_id, int(correct), time_spent_ms or 0, session_id,
                answer_index, correct_index, attempted_at.isoformat(),
            ),
        )
        return cur.lastrowid

    def for_user(self, user_id: str) -> list[Attempt]:
        with transaction(self.db_path, immediate=False, timeout=self.timeout) as conn:
            rows = conn.execute(
                "SELECT * FROM attempts WHERE user_id = ? ORDER BY attempted_at, id", (user_id,)
            ).fetchall()
        return [_row_to_attempt(r) for r in rows]

    def case_stats(self, user_id: str) -> list[dict]:
        """Attempt and correct counts per case for a user."""
        with transaction(self.db_path, immediate=False, timeout=self.timeout) as conn:
            rows = conn.execute(
                """SELECT case_id, COUNT(*) as attempts, SUM(correct) as correct
                FROM attempts WHERE user_id = ?
                GROUP BY case_id""",
                (user_id,),
            ).fetchall()
        return [
            {"case_id": r["case_id"], "attempts": r["attempts"], "correct": r["correct"] or 0}
            for r in rows
        ]

    def daily_counts(self, user_id: str, days: int = 30) -> list[dict]:
        """Attempts per calendar day over the last ``days`` days, most recent first."""
        since = (self.clock() - timedelta(days=days)).date().isoformat()
        with transaction(self.db_path, immediate=False, timeout=self.timeout) as conn:
            rows = conn.execute(
                """SELECT substr(attempted_at, 1, 10) as day, COUNT(*) as attempts
                FROM attempts
                WHERE user_id = ? AND substr(attempted_at, 1, 10) >= ?
                GROUP BY day
                ORDER BY day DESC""",
                (user_id, since),
            ).fetchall()
        return [{"day": r["day"], "attempts": r["attempts"]} for r in rows]

    def progress_summary(self, user_id: str) -> dict:
        with transaction(self.db_path, immediate=False, timeout=self.timeout) as conn:
            stats = conn.execute(
                """SELECT COUNT(*) as total, SUM(correct) as correct, COUNT(DISTINCT case_id) as unique_cases
                FROM attempts WHERE user_id = ?""",
                (user_id,),
            ).fetchone()
            mastered = conn.execute(
                """SELECT COUNT(*) FROM case_progress
                WHERE user_id = ? AND repetitions >= 3 AND interval_days >= 21""",
                (user_id,),
            ).fetchone()[0]
            learning = conn.execute(
                """SELECT COUNT(*) FROM case_progress
                WHERE user_id = ? AND repetitions > 0 AND (repetitions < 3 OR interval_days < 21)""",
                (user_id,),
            ).fetchone()[0]
        total = stats["total"] or 0
        correct = stats["correct"] or 0
        return {
            "total_attempts": total,
            "correct_count": correct,
            "accuracy": round(correct / total * 100) if total else 0,
            "unique_cases": stats["unique_cases"] or 0,
            "mastered_cases": mastered,
            "learning_cases": learning,
            "streak_data": self.daily_counts(user_id),
        }
