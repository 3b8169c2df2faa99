"""Case catalog and multiple-choice card building."""
import random
import sqlite3
from dataclasses import dataclass
from typing import Iterable, Optional, Protocol

from rad_tutor.db import transaction
from rad_tutor.models import Case, CaseFilters, CardRef

DEFAULT_QUESTION = "What is the most likely diagnosis?"
DISTRACTOR_COUNT = 3


@dataclass(frozen=True)
class Mcq:
    options: tuple[str, ...]
    correct_index: int


class CaseCatalog(Protocol):
    def get_case(self, case_id: str) -> Optional[Case]: ...

    def get_cases(self, case_ids: Iterable[str]) -> list[Case]: ...

    def random_cases(
        self, filters: Optional[CaseFilters] = None, limit: int = 10, exclude: Iterable[str] = (),
    ) -> list[Case]: ...

    def combos(self) -> set[tuple[str, str]]: ...

    def count(self) -> int: ...


class McqBuilder(Protocol):
    def build(self, case: Case) -> Optional[Mcq]: ...


def _row_to_case(row: sqlite3.Row) -> Case:
    return Case(
        id=row["id"],
        title=row["title"],
        modality=row["modality"],
        body_part=row["body_part"],
        diagnosis=row["diagnosis"],
        difficulty=row["difficulty"] or 2,
        clinical_history=row["clinical_history"] or "",
        findings=row["findings"] or "",
        teaching_points=row["teaching_points"] or "",
        image_url=row["image_url"] or "",
    )


class SqliteCaseCatalog:
    """Catalog backed by the local ``cases`` table."""

    def __init__(self, db_path: str):
        self.db_path = db_path

    def add_case(self, case: Case) -> None:
        with transaction(self.db_path) as conn:
            conn.execute(
                """INSERT OR REPLACE INTO cases
                (id, title, modality, body_part, diagnosis, difficulty,
                 clinical_history, findings, teaching_points, image_url)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    case.id, case.title, case.modality, case.body_part, case.diagnosis,
                    case.difficulty, case.clinical_history, case.findings,
                    case.teaching_points, case.image_url,
                ),
            )

    def get_case(self, case_id: str) -> Optional[Case]:
        with transaction(self.db_path, immediate=False) as conn:
            row = conn.execute("SELECT * FROM cases WHERE id = ?", (case_id,)).fetchone()
        return _row_to_case(row) if row else None

    def get_cases(self, case_ids: Iterable[str]) -> list[Case]:
        """Fetch cases by id, keeping the order of ``case_ids`` and dropping unknown ids."""
        ids = list(case_ids)
        if not ids:
            return []
        placeholders = ",".join("?" for _ in ids)
        with transaction(self.db_path, immediate=False) as conn:
            rows = conn.execute(f"SELECT * FROM cases WHERE id IN ({placeholders})", ids).fetchall()
        by_id = {r["id"]: _row_to_case(r) for r in rows}
        return [by_id[i] for i in ids if i in by_id]

    def random_cases(
        self, filters: Optional[CaseFilters] = None, limit: int = 10, exclude: Iterable[str] = (),
    ) -> list[Case]:
        if limit <= 0:
            return []
        conditions, params = [], []
        if filters is not None:
            if filters.modality:
                conditions.append("modality = ?")
                params.append(filters.modality)
            if filters.body_part:
                conditions.append("body_part = ?")
                params.append(filters.body_part)
            if filters.difficulty:
                conditions.append("difficulty = ?")
                params.append(filters.difficulty)
        excluded = list(exclude)
        if excluded:
            conditions.append(f"id NOT IN ({','.join('?' for _ in excluded)})")
            params.extend(excluded)
        sql = "SELECT * FROM cases"
        if conditions:
            sql += " WHERE " + " AND ".join(conditions)
        sql += " ORDER BY RANDOM() LIMIT ?"
        params.append(limit)
        with transaction(self.db_path, immediate=False) as conn:
            rows = conn.execute(sql, params).fetchall()
        return [_row_to_case(r) for r in rows]

    def combos(self) -> set[tuple[str, str]]:
        """Distinct (body_part, modality) pairs present in the catalog."""
        with transaction(self.db_path, immediate=False) as conn:
            rows = conn.execute(
                """SELECT DISTINCT body_part, modality FROM cases
                WHERE body_part IS NOT NULL AND modality IS NOT NULL"""
            ).fetchall()
        return {(r["body_part"], r["modality"]) for r in rows}

    def count(self) -> int:
        with transaction(self.db_path, immediate=False) as conn:
            return conn.execute("SELECT COUNT(*) FROM cases").fetchone()[0]


class SqliteMcqBuilder:
    """Builds options from the case diagnosis plus distractor diagnoses of other cases."""

    def __init__(self, db_path: str, rng: Optional[random.Random] = None):
        self.db_path = db_path
        self.rng = rng or random.Random()

    def build(self, case: Case) -> Optional[Mcq]:
        if not case.diagnosis:
            return None
        with transaction(self.db_path, immediate=False) as conn:
            rows = conn.execute(
                """SELECT DISTINCT diagnosis FROM cases
                WHERE diagnosis IS NOT NULL AND diagnosis != '' AND diagnosis != ?""",
                (case.diagnosis,),
            ).fetchall()
        pool = [r["diagnosis"] for r in rows]
        if not pool:
            return None
        distractors = self.rng.sample(pool, min(DISTRACTOR_COUNT, len(pool)))
        options = [case.diagnosis, *distractors]
        self.rng.shuffle(options)
        return Mcq(options=tuple(options), correct_index=options.index(case.diagnosis))


def build_card(case: Case, mcq: Mcq) -> CardRef:
    """Combine a catalog case with its options into a session card."""
    return CardRef(
        case_id=case.id,
        title=case.title,
        question=DEFAULT_QUESTION,
        options=mcq.options,
        correct_answer_index=mcq.correct_index,
        image_url=case.image_url,
        explanation=case.teaching_points or case.findings,
        difficulty=case.difficulty,
        specialty=case.body_part or case.modality or "General",
    )
