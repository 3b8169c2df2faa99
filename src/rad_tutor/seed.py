"""Seed the database with teaching cases and study plan templates."""
import json
from pathlib import Path

import structlog

from rad_tutor.db import get_connection

CONTENT_DIR = Path(__file__).parent / "content"

logger = structlog.get_logger()


def is_seeded(db_path: str) -> bool:
    """Check whether the database has already been seeded with cases."""
    conn = get_connection(db_path)
    count = conn.execute("SELECT COUNT(*) FROM cases").fetchone()[0]
    conn.close()
    return count > 0


def seed_cases(db_path: str) -> int:
    """Insert all teaching cases from cases.json."""
    data = json.loads((CONTENT_DIR / "cases.json").read_text())
    conn = get_connection(db_path)
    for case in data["cases"]:
        conn.execute(
            """INSERT OR IGNORE INTO cases
            (id, title, modality, body_part, diagnosis, difficulty,
             clinical_history, findings, teaching_points, image_url)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                case["id"], case["title"], case["modality"], case["body_part"], case["diagnosis"],
                case.get("difficulty", 2), case.get("clinical_history", ""), case.get("findings", ""),
                case.get("teaching_points", ""), case.get("image_url", ""),
            ),
        )
    conn.commit()
    conn.close()
    return len(data["cases"])


def seed_study_plans(db_path: str) -> int:
    """Insert study plan templates from study_plans.json."""
    data = json.loads((CONTENT_DIR / "study_plans.json").read_text())
    conn = get_connection(db_path)
    for template in data["templates"]:
        conn.execute(
            """INSERT OR IGNORE INTO study_plan_templates (id, name, description, category, milestones)
            VALUES (?, ?, ?, ?, ?)""",
            (
                template["id"], template["name"], template.get("description", ""),
                template.get("category", ""), json.dumps(template["milestones"]),
            ),
        )
    conn.commit()
    conn.close()
    return len(data["templates"])


def seed_all(db_path: str) -> None:
    """Run all seed functions in order."""
    if is_seeded(db_path):
        return
    cases = seed_cases(db_path)
    templates = seed_study_plans(db_path)
    logger.info("database_seeded", cases=cases, templates=templates)
