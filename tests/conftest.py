from datetime import datetime, timedelta

import pytest

from rad_tutor.catalog import SqliteCaseCatalog
from rad_tutor.db import init_db
from rad_tutor.models import Case


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def make_case(case_id: str, diagnosis: str, body_part: str = "Chest", modality: str = "X-Ray",
              difficulty: int = 2) -> Case:
    return Case(
        id=case_id,
        title=f"Case {case_id}",
        modality=modality,
        body_part=body_part,
        diagnosis=diagnosis,
        difficulty=difficulty,
        teaching_points=f"Teaching point for {diagnosis}",
    )


SAMPLE_CASES = [
    make_case("c1", "Pneumothorax", "Chest", "X-Ray", 1),
    make_case("c2", "Lobar pneumonia", "Chest", "X-Ray", 2),
    make_case("c3", "Pulmonary embolism", "Chest", "CT", 2),
    make_case("c4", "Subarachnoid hemorrhage", "Head", "CT", 3),
    make_case("c5", "Acute ischemic stroke", "Head", "MRI", 4),
    make_case("c6", "Acute appendicitis", "Abdomen", "CT", 1),
]


@pytest.fixture
def tmp_db(tmp_path):
    """Provide a temporary SQLite database path for tests."""
    db_path = str(tmp_path / "test_tutor.db")
    return db_path


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 3, 10, 9, 0, 0))


@pytest.fixture
def catalog(tmp_db):
    """Initialized database holding the sample cases."""
    init_db(tmp_db)
    cat = SqliteCaseCatalog(tmp_db)
    for case in SAMPLE_CASES:
        cat.add_case(case)
    return cat
