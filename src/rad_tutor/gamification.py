"""XP rewards for answers and finished sessions."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional, Protocol

import structlog

from rad_tutor.db import transaction
from rad_tutor.models import SessionSummary

logger = structlog.get_logger()

PERFECT_SESSION_MIN_CARDS = 5


@dataclass
class AnswerReward:
    xp_earned: int
    level_up: bool = False
    new_badges: list[str] = field(default_factory=list)


@dataclass
class SessionReward:
    bonus_xp: int
    new_badges: list[str] = field(default_factory=list)


class Gamification(Protocol):
    def award_answer(
        self, user_id: str, correct: bool, time_spent_ms: int, difficulty: int, streak: int,
    ) -> AnswerReward: ...

    def award_session(self, user_id: str, summary: SessionSummary) -> SessionReward:
        """Completion bonus. May be called again for the same session and must pay once."""
        ...


def calculate_xp(correct: bool, difficulty: int, time_spent_ms: int, streak: int) -> int:
    """XP for a single answer: base by difficulty, speed bonus, streak bonus."""
    if not correct:
        return 2
    xp = 10 + (difficulty or 2) * 2
    seconds = (time_spent_ms or 0) / 1000
    if 0 < seconds < 8:
        xp += 10
    elif 0 < seconds < 15:
        xp += 5
    if streak >= 3:
        xp += 5
    return xp


def session_bonus(summary: SessionSummary) -> int:
    if summary.total == 0:
        return 0
    bonus = 10
    if summary.total >= PERFECT_SESSION_MIN_CARDS and summary.correct_count == summary.total:
        bonus += 25
    return bonus


class XpGamification:
    """Keeps an XP ledger per user. Badges and levels live outside this package."""

    def __init__(self, db_path: str, clock: Callable[[], datetime] = datetime.now):
        self.db_path = db_path
        self.clock = clock

    def _award(self, user_id: str, amount: int, reason: str, reference: Optional[str] = None) -> int:
        """Credit ``amount`` and return what was credited under ``reference``."""
        with transaction(self.db_path) as conn:
            if reference is not None:
                row = conn.execute(
                    "SELECT amount FROM xp_transactions WHERE user_id = ? AND reference = ?",
                    (user_id, reference),
                ).fetchone()
                if row is not None:
                    return row["amount"]
            conn.execute("INSERT OR IGNORE INTO user_xp (user_id) VALUES (?)", (user_id,))
            conn.execute(
                "UPDATE user_xp SET total_xp = total_xp + ? WHERE user_id = ?", (amount, user_id)
            )
            conn.execute(
                """INSERT INTO xp_transactions (user_id, amount, reason, reference, created_at)
                VALUES (?, ?, ?, ?, ?)""",
                (user_id, amount, reason, reference, self.clock().isoformat()),
            )
        return amount

    def award_answer(
        self, user_id: str, correct: bool, time_spent_ms: int, difficulty: int, streak: int,
    ) -> AnswerReward:
        xp = calculate_xp(correct, difficulty, time_spent_ms, streak)
        self._award(user_id, xp, "answer_correct" if correct else "answer_participation")
        return AnswerReward(xp_earned=xp)

    def award_session(self, user_id: str, summary: SessionSummary) -> SessionReward:
        bonus = session_bonus(summary)
        if bonus:
            bonus = self._award(
                user_id, bonus, f"session_{summary.mode.value}", reference=f"session:{summary.session_id}",
            )
            logger.info("session_bonus", user_id=user_id, session_id=summary.session_id, bonus_xp=bonus)
        return SessionReward(bonus_xp=bonus)

    def total_xp(self, user_id: str) -> int:
        with transaction(self.db_path, immediate=False) as conn:
            row = conn.execute("SELECT total_xp FROM user_xp WHERE user_id = ?", (user_id,)).fetchone()
        return row["total_xp"] if row else 0
