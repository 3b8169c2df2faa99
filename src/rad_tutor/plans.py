"""Study plans: milestone-based case batches built from templates."""
import json
import sqlite3
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, Optional, Protocol

import structlog

from rad_tutor.catalog import _row_to_case
from rad_tutor.db import transaction
from rad_tutor.errors import NotFoundError
from rad_tutor.models import Case

logger = structlog.get_logger()


@dataclass
class PlanBatch:
    cases: list[Case]
    milestone_index: int
    milestone_name: str = ""
    remaining: int = 0
    complete: bool = False


class StudyPlanService(Protocol):
    def next_session(self, plan_id: str, user_id: str) -> PlanBatch: ...

    def record_progress(
        self, plan_id: str, case_id: str, correct: bool, milestone_index: Optional[int] = None,
    ) -> None: ...


def _select_for_milestone(
    conn: sqlite3.Connection, criteria: dict, count: int, exclude: Iterable[str] = (),
) -> list[str]:
    sql = "SELECT id FROM cases WHERE diagnosis IS NOT NULL AND diagnosis != ''"
    params: list = []
    exclude = list(exclude)
    if exclude:
        sql += f" AND id NOT IN ({','.join('?' for _ in exclude)})"
        params.extend(exclude)
    body_part = criteria.get("body_part")
    if isinstance(body_part, list):
        sql += f" AND body_part IN ({','.join('?' for _ in body_part)})"
        params.extend(body_part)
    elif body_part:
        sql += " AND body_part = ?"
        params.append(body_part)
    if criteria.get("modality"):
        sql += " AND modality = ?"
        params.append(criteria["modality"])
    difficulty = criteria.get("difficulty")
    if difficulty:
        sql += f" AND difficulty IN ({','.join('?' for _ in difficulty)})"
        params.extend(difficulty)
    sql += " ORDER BY RANDOM() LIMIT ?"
    params.append(count)
    return [r["id"] for r in conn.execute(sql, params).fetchall()]


class SqliteStudyPlans:
    def __init__(self, db_path: str, batch_size: int = 10, clock: Callable[[], datetime] = datetime.now):
        self.db_path = db_path
        self.batch_size = batch_size
        self.clock = clock

    def templates(self) -> list[dict]:
        with transaction(self.db_path, immediate=False) as conn:
            rows = conn.execute("SELECT * FROM study_plan_templates ORDER BY name").fetchall()
        return [{**dict(r), "milestones": json.loads(r["milestones"])} for r in rows]

    def create_plan(self, user_id: str, template_id: str, name: Optional[str] = None) -> str:
        """Instantiate a template for a user, resolving each milestone to concrete case ids."""
        plan_id = uuid.uuid4().hex
        with transaction(self.db_path) as conn:
            template = conn.execute(
                "SELECT * FROM study_plan_templates WHERE id = ?", (template_id,)
            ).fetchone()
            if template is None:
                raise NotFoundError(f"study plan template {template_id} not found")
            # Each case belongs to at most one milestone; milestones left empty are dropped.
            milestones, assigned = [], []
            for m in json.loads(template["milestones"]):
                m["case_ids"] = _select_for_milestone(conn, m.get("criteria", {}), m["case_count"], assigned)
                if m["case_ids"]:
                    assigned.extend(m["case_ids"])
                    milestones.append(m)
            conn.execute(
                """INSERT INTO user_study_plans (id, user_id, template_id, name, milestones, created_at)
                VALUES (?, ?, ?, ?, ?, ?)""",
                (plan_id, user_id, template_id, name or template["name"], json.dumps(milestones),
                 self.clock().isoformat()),
            )
        logger.info("study_plan_created", user_id=user_id, plan_id=plan_id, template_id=template_id)
        return plan_id

    def list_plans(self, user_id: str) -> list[dict]:
        with transaction(self.db_path, immediate=False) as conn:
            rows = conn.execute(
                """SELECT id, name, status, current_milestone, milestones FROM user_study_plans
                WHERE user_id = ?
                ORDER BY CASE status WHEN 'active' THEN 0 ELSE 1 END, created_at DESC""",
                (user_id,),
            ).fetchall()
        return [
            {
                "id": r["id"],
                "name": r["name"],
                "status": r["status"],
                "current_milestone": r["current_milestone"],
                "total_milestones": len(json.loads(r["milestones"])),
            }
            for r in rows
        ]

    def _load_plan(self, conn: sqlite3.Connection, plan_id: str, user_id: Optional[str] = None) -> sqlite3.Row:
        if user_id is None:
            plan = conn.execute("SELECT * FROM user_study_plans WHERE id = ?", (plan_id,)).fetchone()
        else:
            plan = conn.execute(
                "SELECT * FROM user_study_plans WHERE id = ? AND user_id = ?", (plan_id, user_id)
            ).fetchone()
        if plan is None:
            raise NotFoundError(f"study plan {plan_id} not found")
        return plan

    def next_session(self, plan_id: str, user_id: str) -> PlanBatch:
        """Next batch of unattempted cases from the plan's current milestone."""
        with transaction(self.db_path, immediate=False) as conn:
            plan = self._load_plan(conn, plan_id, user_id)
            milestones = json.loads(plan["milestones"])
            index = plan["current_milestone"]
            if index >= len(milestones) or plan["status"] == "completed":
                return PlanBatch(cases=[], milestone_index=index, complete=True)
            milestone = milestones[index]
            attempted = {
                r["case_id"] for r in conn.execute(
                    "SELECT case_id FROM study_plan_progress WHERE plan_id = ?", (plan_id,)
                ).fetchall()
            }
            remaining = [cid for cid in milestone.get("case_ids", []) if cid not in attempted]
            batch = remaining[: self.batch_size]
            rows = []
            for cid in batch:
                row = conn.execute("SELECT * FROM cases WHERE id = ?", (cid,)).fetchone()
                if row is not None:
                    rows.append(row)
        return PlanBatch(
            cases=[_row_to_case(r) for r in rows],
            milestone_index=index,
            milestone_name=milestone.get("name", ""),
            remaining=len(remaining),
            complete=not remaining,
        )

    def record_progress(
        self, plan_id: str, case_id: str, correct: bool, milestone_index: Optional[int] = None,
    ) -> None:
        """Mark a case attempted and advance the milestone once all of its cases are done."""
        with transaction(self.db_path) as conn:
            plan = self._load_plan(conn, plan_id)
            current = plan["current_milestone"]
            if milestone_index is None:
                milestone_index = current
            conn.execute(
                """INSERT OR REPLACE INTO study_plan_progress
                (plan_id, case_id, milestone_index, correct, attempted_at)
                VALUES (?, ?, ?, ?, ?)""",
                (plan_id, case_id, milestone_index, int(correct), self.clock().isoformat()),
            )
            milestones = json.loads(plan["milestones"])
            if current >= len(milestones):
                return
            case_ids = milestones[current].get("case_ids", [])
            done = conn.execute(
                "SELECT COUNT(*) FROM study_plan_progress WHERE plan_id = ? AND milestone_index = ?",
                (plan_id, current),
            ).fetchone()[0]
            if done < len(case_ids):
                return
            if current < len(milestones) - 1:
                conn.execute(
                    "UPDATE user_study_plans SET current_milestone = current_milestone + 1 WHERE id = ?",
                    (plan_id,),
                )
                logger.info("milestone_complete", plan_id=plan_id, milestone_index=current)
            else:
                conn.execute("UPDATE user_study_plans SET status = 'completed' WHERE id = ?", (plan_id,))
                logger.info("study_plan_complete", plan_id=plan_id)
