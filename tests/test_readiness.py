"""Tests for board readiness scoring."""
import pytest

from rad_tutor.attempts import AttemptLog
from rad_tutor.catalog import SqliteCaseCatalog
from rad_tutor.db import init_db, transaction
from rad_tutor.readiness import BoardReadinessCalculator, readiness_color, readiness_label
from rad_tutor.retention import RetentionStore

from conftest import make_case

BODY_PARTS = ["Chest", "Head", "Abdomen", "Pelvis", "Spine"]
MODALITIES = ["X-Ray", "CT"]


@pytest.fixture
def grid_catalog(tmp_db):
    """Ten cases, one per (body part, modality) pair."""
    init_db(tmp_db)
    cat = SqliteCaseCatalog(tmp_db)
    for i, body_part in enumerate(BODY_PARTS):
        for j, modality in enumerate(MODALITIES):
            cat.add_case(make_case(f"{body_part}-{modality}", f"Dx {i}-{j}", body_part, modality, difficulty=i + 1))
    return cat


def _calculator(tmp_db, catalog, clock):
    return BoardReadinessCalculator(
        catalog, AttemptLog(tmp_db, clock=clock), RetentionStore(tmp_db, clock=clock), clock=clock,
    )


def _answer(tmp_db, clock, case_id, correct, user_id="u1"):
    with transaction(tmp_db) as conn:
        AttemptLog(tmp_db, clock=clock).append(conn, case_id, correct, user_id=user_id)
        RetentionStore(tmp_db, clock=clock).apply_outcome(conn, user_id, case_id, correct)


@pytest.mark.parametrize("score,label,color", [
    (85, "READY", "green"),
    (80, "READY", "green"),
    (70, "LIKELY", "yellow"),
    (55, "NEEDS WORK", "dark_orange"),
    (10, "NOT READY", "red"),
])
def test_label_and_color_bands(score, label, color):
    assert readiness_label(score) == label
    assert readiness_color(score) == color


def test_no_history_scores_zero(grid_catalog, tmp_db, clock):
    score = _calculator(tmp_db, grid_catalog, clock).compute_score("u1")
    assert score.total == 0
    assert score.label == "NOT READY"
    assert score.breakdown["accuracy"].detail == "No data"
    assert score.breakdown["coverage"].detail == "0/10 combos"


def test_half_of_combos_attempted_gives_coverage_ten(grid_catalog, tmp_db, clock):
    for body_part in BODY_PARTS:
        _answer(tmp_db, clock, f"{body_part}-CT", True)
    score = _calculator(tmp_db, grid_catalog, clock).compute_score("u1")
    assert score.breakdown["coverage"].score == 10
    assert score.breakdown["coverage"].detail == "5/10 combos"


def test_difficulty_spread_counts_levels(grid_catalog, tmp_db, clock):
    _answer(tmp_db, clock, "Chest-CT", True)      # difficulty 1
    _answer(tmp_db, clock, "Head-X-Ray", False)   # difficulty 2
    score = _calculator(tmp_db, grid_catalog, clock).compute_score("u1")
    assert score.breakdown["difficulty_spread"].score == 8
    assert score.breakdown["difficulty_spread"].detail == "2/5 levels"


def test_accuracy_is_weighted_by_difficulty(grid_catalog, tmp_db, clock):
    _answer(tmp_db, clock, "Spine-CT", True)    # difficulty 5
    _answer(tmp_db, clock, "Chest-CT", False)   # difficulty 1
    score = _calculator(tmp_db, grid_catalog, clock).compute_score("u1")
    # 5/3 correct over 6/3 total
    assert score.breakdown["accuracy"].detail == "83% weighted"
    assert score.breakdown["accuracy"].score == 17


def test_consistency_counts_study_days(grid_catalog, tmp_db, clock):
    for _ in range(5):
        _answer(tmp_db, clock, "Chest-CT", True)
        clock.advance(days=1)
    score = _calculator(tmp_db, grid_catalog, clock).compute_score("u1")
    assert score.breakdown["consistency"].score == 5
    assert score.breakdown["consistency"].detail == "5/20 days"


def test_attempts_on_unknown_cases_are_ignored(grid_catalog, tmp_db, clock):
    with transaction(tmp_db) as conn:
        AttemptLog(tmp_db, clock=clock).append(conn, "retired-case", True, user_id="u1")
    score = _calculator(tmp_db, grid_catalog, clock).compute_score("u1")
    assert score.breakdown["accuracy"].detail == "No data"
    assert score.breakdown["difficulty_spread"].score == 0


def test_mastered_progress_on_unknown_cases_is_ignored(grid_catalog, tmp_db, clock):
    with transaction(tmp_db) as conn:
        for case_id in ("retired-case", "Chest-CT"):
            conn.execute(
                """INSERT INTO case_progress
                (user_id, case_id, ease_factor, interval_days, repetitions, next_review_date, last_reviewed_at)
                VALUES ('u1', ?, 2.6, 30, 4, '2024-04-09', '2024-03-10T09:00:00')""",
                (case_id,),
            )
    score = _calculator(tmp_db, grid_catalog, clock).compute_score("u1")
    assert score.breakdown["retention"].detail == "1 mastered"
    assert score.breakdown["retention"].score == 2


def test_scores_stay_in_bounds(grid_catalog, tmp_db, clock):
    case_ids = [f"{b}-{m}" for b in BODY_PARTS for m in MODALITIES]
    for _ in range(25):
        for case_id in case_ids:
            _answer(tmp_db, clock, case_id, True)
        clock.advance(days=1)
    score = _calculator(tmp_db, grid_catalog, clock).compute_score("u1")
    assert 0 <= score.total <= 100
    for component in score.breakdown.values():
        assert 0 <= component.score <= 20
    assert score.breakdown["coverage"].score == 20
    assert score.breakdown["consistency"].score == 20
    assert score.breakdown["retention"].score == 20
    assert score.label == "READY"


def test_empty_catalog(tmp_db, clock):
    init_db(tmp_db)
    cat = SqliteCaseCatalog(tmp_db)
    score = _calculator(tmp_db, cat, clock).compute_score("u1")
    assert score.total == 0
