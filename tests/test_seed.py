import json

from rad_tutor.db import get_connection, init_db
from rad_tutor.seed import CONTENT_DIR, is_seeded, seed_all


def test_seed_all_populates_cases_and_templates(tmp_db):
    init_db(tmp_db)
    assert not is_seeded(tmp_db)
    seed_all(tmp_db)
    assert is_seeded(tmp_db)
    conn = get_connection(tmp_db)
    cases = conn.execute("SELECT COUNT(*) FROM cases").fetchone()[0]
    templates = conn.execute("SELECT COUNT(*) FROM study_plan_templates").fetchone()[0]
    conn.close()
    assert cases == len(json.loads((CONTENT_DIR / "cases.json").read_text())["cases"])
    assert templates == 5


def test_seed_all_is_idempotent(tmp_db):
    init_db(tmp_db)
    seed_all(tmp_db)
    seed_all(tmp_db)
    conn = get_connection(tmp_db)
    count = conn.execute("SELECT COUNT(*) FROM study_plan_templates").fetchone()[0]
    conn.close()
    assert count == 5


def test_seeded_cases_are_quiz_ready(tmp_db):
    init_db(tmp_db)
    seed_all(tmp_db)
    conn = get_connection(tmp_db)
    rows = conn.execute("SELECT id, diagnosis, difficulty, body_part, modality FROM cases").fetchall()
    conn.close()
    assert all(r["diagnosis"] for r in rows)
    assert len({r["diagnosis"] for r in rows}) == len(rows)
    assert {r["difficulty"] for r in rows} == {1, 2, 3, 4, 5}


def test_template_milestones_are_well_formed(tmp_db):
    init_db(tmp_db)
    seed_all(tmp_db)
    conn = get_connection(tmp_db)
    rows = conn.execute("SELECT milestones FROM study_plan_templates").fetchall()
    conn.close()
    for row in rows:
        for milestone in json.loads(row["milestones"]):
            assert milestone["name"]
            assert milestone["case_count"] > 0
            assert isinstance(milestone["criteria"], dict)
