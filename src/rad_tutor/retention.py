"""Per-user, per-case spaced repetition state."""
import sqlite3
from datetime import date, datetime, timedelta
from typing import Callable, Optional

import structlog

from rad_tutor.db import transaction
from rad_tutor.models import CaseProgress
from rad_tutor.sm2 import grade_for_outcome, sm2_update

logger = structlog.get_logger()

DEFAULT_EASE_FACTOR = 2.5
DEFAULT_INTERVAL_DAYS = 1


def _row_to_progress(row: sqlite3.Row) -> CaseProgress:
    return CaseProgress(
        user_id=row["user_id"],
        case_id=row["case_id"],
        ease_factor=row["ease_factor"],
        interval_days=row["interval_days"],
        repetitions=row["repetitions"],
        next_review_date=date.fromisoformat(row["next_review_date"]),
        last_reviewed_at=datetime.fromisoformat(row["last_reviewed_at"]),
    )


def next_progress(
    previous: Optional[CaseProgress],
    user_id: str,
    case_id: str,
    correct: bool,
    now: datetime,
) -> CaseProgress:
    """Apply one outcome to a progress record (or to the defaults when there is none)."""
    if previous is None:
        ease_factor, interval, repetitions = DEFAULT_EASE_FACTOR, DEFAULT_INTERVAL_DAYS, 0
    else:
        ease_factor, interval, repetitions = (
            previous.ease_factor, previous.interval_days, previous.repetitions,
        )
    updated = sm2_update(
        quality=grade_for_outcome(correct),
        repetitions=repetitions,
        ease_factor=ease_factor,
        interval=interval,
    )
    return CaseProgress(
        user_id=user_id,
        case_id=case_id,
        ease_factor=updated["ease_factor"],
        interval_days=updated["interval"],
        repetitions=updated["repetitions"],
        next_review_date=now.date() + timedelta(days=updated["interval"]),
        last_reviewed_at=now,
    )


class RetentionStore:
    """Reads and updates CaseProgress rows keyed by (user_id, case_id)."""

    def __init__(self, db_path: str, clock: Callable[[], datetime] = datetime.now, timeout: float = 5.0):
        self.db_path = db_path
        self.clock = clock
        self.timeout = timeout

    def get_progress(self, user_id: str, case_id: str) -> Optional[CaseProgress]:
        with transaction(self.db_path, immediate=False, timeout=self.timeout) as conn:
            row = conn.execute(
                "SELECT * FROM case_progress WHERE user_id = ? AND case_id = ?",
                (user_id, case_id),
            ).fetchone()
        return _row_to_progress(row) if row else None

    def list_progress(self, user_id: str) -> list[CaseProgress]:
        with transaction(self.db_path, immediate=False, timeout=self.timeout) as conn:
            rows = conn.execute(
                "SELECT * FROM case_progress WHERE user_id = ? ORDER BY next_review_date",
                (user_id,),
            ).fetchall()
        return [_row_to_progress(r) for r in rows]

    def record_outcome(self, user_id: str, case_id: str, correct: bool) -> CaseProgress:
        """Apply one answer to the user's progress on a case and persist it atomically."""
        with transaction(self.db_path, timeout=self.timeout) as conn:
            return self.apply_outcome(conn, user_id, case_id, correct)

    def apply_outcome(
        self,
        conn: sqlite3.Connection,
        user_id: str,
        case_id: str,
        correct: bool,
        now: Optional[datetime] = None,
    ) -> CaseProgress:
        """Same as record_outcome, on a transaction owned by the caller."""
        now = now or self.clock()
        row = conn.execute(
            "SELECT * FROM case_progress WHERE user_id = ? AND case_id = ?",
            (user_id, case_id),
        ).fetchone()
        progress = next_progress(
            _row_to_progress(row) if row else None, user_id, case_id, correct, now,
        )
        conn.execute(
            """INSERT INTO case_progress
            (user_id, case_id, ease_factor, interval_days, repetitions, next_review_date, last_reviewed_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(user_id, case_id) DO UPDATE SET
                ease_factor = excluded.ease_factor,
                interval_days = excluded.interval_days,
                repetitions = excluded.repetitions,
                next_review_date = excluded.next_review_date,
                last_reviewed_at = excluded.last_reviewed_at""",
            (
                user_id, case_id, progress.ease_factor, progress.interval_days,
                progress.repetitions, progress.next_review_date.isoformat(),
                progress.last_reviewed_at.isoformat(),
            ),
        )
        logger.debug(
            "retention_updated", user_id=user_id, case_id=case_id, correct=correct,
            interval_days=progress.interval_days, repetitions=progress.repetitions,
        )
        return progress

    def rebuild(self, user_id: str) -> int:
        """Recompute every progress row for a user by replaying their attempt log."""
        with transaction(self.db_path, timeout=self.timeout) as conn:
            attempts = conn.execute(
                """SELECT case_id, correct, attempted_at FROM attempts
                WHERE user_id = ? ORDER BY attempted_at, id""",
                (user_id,),
            ).fetchall()
            conn.execute("DELETE FROM case_progress WHERE user_id = ?", (user_id,))
            rebuilt = set()
            for a in attempts:
                self.apply_outcome(
                    conn, user_id, a["case_id"], bool(a["correct"]),
                    now=datetime.fromisoformat(a["attempted_at"]),
                )
                rebuilt.add(a["case_id"])
        logger.info("retention_rebuilt", user_id=user_id, cases=len(rebuilt), attempts=len(attempts))
        return len(rebuilt)
