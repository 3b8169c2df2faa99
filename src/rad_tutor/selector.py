"""Due, new and weak case selection for review sessions."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from rad_tutor.catalog import CaseCatalog
from rad_tutor.db import transaction
from rad_tutor.models import Case, CaseProgress
from rad_tutor.retention import _row_to_progress


@dataclass
class DueCard:
    case: Case
    progress: CaseProgress


@dataclass
class ReviewQueue:
    due: list[DueCard] = field(default_factory=list)
    new: list[Case] = field(default_factory=list)

    def cases(self) -> list[Case]:
        return [d.case for d in self.due] + self.new


@dataclass(frozen=True)
class WeakCase:
    case_id: str
    attempts: int
    correct: int

    @property
    def accuracy(self) -> float:
        return round(self.correct / self.attempts * 100, 1) if self.attempts else 0.0


class DueCardSelector:
    def __init__(self, db_path: str, catalog: CaseCatalog, clock: Callable[[], datetime] = datetime.now):
        self.db_path = db_path
        self.catalog = catalog
        self.clock = clock

    def get_due_and_new(self, user_id: str, limit: int = 10) -> ReviewQueue:
        """Cases whose review date has passed, topped up with never-seen cases up to ``limit``."""
        if limit <= 0:
            return ReviewQueue()
        today = self.clock().date().isoformat()
        with transaction(self.db_path, immediate=False) as conn:
            due_rows = conn.execute(
                """SELECT * FROM case_progress
                WHERE user_id = ? AND next_review_date <= ?
                ORDER BY next_review_date ASC
                LIMIT ?""",
                (user_id, today, limit),
            ).fetchall()
            seen = [
                r["case_id"] for r in conn.execute(
                    "SELECT case_id FROM case_progress WHERE user_id = ?", (user_id,)
                ).fetchall()
            ]
        progress = [_row_to_progress(r) for r in due_rows]
        cases = {c.id: c for c in self.catalog.get_cases(p.case_id for p in progress)}
        due = [DueCard(case=cases[p.case_id], progress=p) for p in progress if p.case_id in cases]
        remaining = limit - len(due_rows)
        new = self.catalog.random_cases(limit=remaining, exclude=seen) if remaining > 0 else []
        return ReviewQueue(due=due, new=new)

    def get_weakest(self, user_id: str, top_n: int = 10) -> list[WeakCase]:
        """Cases attempted at least twice, worst accuracy first, ties broken by attempt count."""
        with transaction(self.db_path, immediate=False) as conn:
            rows = conn.execute(
                """SELECT case_id, COUNT(*) as attempts, SUM(correct) as correct
                FROM attempts
                WHERE user_id = ?
                GROUP BY case_id
                HAVING attempts >= 2
                ORDER BY CAST(SUM(correct) AS REAL) / COUNT(*) ASC, attempts DESC
                LIMIT ?""",
                (user_id, top_n),
            ).fetchall()
        return [WeakCase(case_id=r["case_id"], attempts=r["attempts"], correct=r["correct"] or 0) for r in rows]
