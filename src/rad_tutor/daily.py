"""Daily challenge case selection and once-per-day completion."""
import json
import random
from datetime import date, datetime
from typing import Callable, Optional

import structlog

from rad_tutor.db import transaction

logger = structlog.get_logger()

# (difficulty, count): 1 easy, 2 medium, 1 hard, 1 expert
DIFFICULTY_MIX = [(1, 1), (2, 2), (3, 1), (4, 1)]


class DailyChallenge:
    def __init__(
        self,
        db_path: str,
        size: int = 5,
        clock: Callable[[], datetime] = datetime.now,
        rng: Optional[random.Random] = None,
    ):
        self.db_path = db_path
        self.size = size
        self.clock = clock
        self.rng = rng or random.Random()

    def today(self) -> date:
        return self.clock().date()

    def get_or_create(self, day: Optional[date] = None) -> list[str]:
        """Case ids for the day's challenge, picking and storing them on first request."""
        day = day or self.today()
        with transaction(self.db_path) as conn:
            existing = conn.execute(
                "SELECT case_ids FROM daily_challenges WHERE challenge_date = ?", (day.isoformat(),)
            ).fetchone()
            if existing:
                return json.loads(existing["case_ids"])

            rows = conn.execute(
                """SELECT id, difficulty FROM cases
                WHERE diagnosis IS NOT NULL AND diagnosis != ''
                ORDER BY id"""
            ).fetchall()
            picks = []
            for difficulty, count in DIFFICULTY_MIX:
                pool = [r["id"] for r in rows if r["difficulty"] == difficulty]
                picks.extend(self.rng.sample(pool, min(count, len(pool))))
            if len(picks) < self.size:
                rest = [r["id"] for r in rows if r["id"] not in picks]
                picks.extend(self.rng.sample(rest, min(self.size - len(picks), len(rest))))
            picks = picks[: self.size]
            if not picks:
                return []
            conn.execute(
                "INSERT INTO daily_challenges (challenge_date, case_ids) VALUES (?, ?)",
                (day.isoformat(), json.dumps(picks)),
            )
        logger.info("daily_challenge_created", day=day.isoformat(), cases=len(picks))
        return picks

    def is_completed(self, user_id: str, day: Optional[date] = None) -> bool:
        day = day or self.today()
        with transaction(self.db_path, immediate=False) as conn:
            row = conn.execute(
                "SELECT 1 FROM daily_completions WHERE user_id = ? AND challenge_date = ?",
                (user_id, day.isoformat()),
            ).fetchone()
        return row is not None

    def mark_completed(self, user_id: str, score: int, total: int, day: Optional[date] = None) -> bool:
        """Record the day's completion. Returns False when it was already recorded."""
        day = day or self.today()
        with transaction(self.db_path) as conn:
            cur = conn.execute(
                """INSERT OR IGNORE INTO daily_completions
                (user_id, challenge_date, score, total, completed_at)
                VALUES (?, ?, ?, ?, ?)""",
                (user_id, day.isoformat(), score, total, self.clock().isoformat()),
            )
        first = cur.rowcount == 1
        if not first:
            logger.info("daily_challenge_repeat", user_id=user_id, day=day.isoformat())
        return first
