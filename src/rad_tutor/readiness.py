"""Board readiness scoring."""
from datetime import datetime
from typing import Callable

from rad_tutor.attempts import AttemptLog
from rad_tutor.catalog import CaseCatalog
from rad_tutor.models import BoardReadinessScore, ReadinessComponent
from rad_tutor.retention import RetentionStore

COMPONENT_MAX = 20
CONSISTENCY_TARGET_DAYS = 20
CONSISTENCY_WINDOW_DAYS = 30
DIFFICULTY_LEVELS = 5


def readiness_label(score: float) -> str:
    if score >= 80:
        return "READY"
    elif score >= 65:
        return "LIKELY"
    elif score >= 50:
        return "NEEDS WORK"
    return "NOT READY"


def readiness_color(score: float) -> str:
    if score >= 80:
        return "green"
    elif score >= 65:
        return "yellow"
    elif score >= 50:
        return "dark_orange"
    return "red"


def _capped(value: float) -> int:
    return max(0, min(COMPONENT_MAX, round(value)))


class BoardReadinessCalculator:
    """Read-only five-factor score over the attempt log and retention state."""

    def __init__(
        self,
        catalog: CaseCatalog,
        attempts: AttemptLog,
        retention: RetentionStore,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.catalog = catalog
        self.attempts = attempts
        self.retention = retention
        self.clock = clock

    def compute_score(self, user_id: str) -> BoardReadinessScore:
        stats = self.attempts.case_stats(user_id)
        cases = {c.id: c for c in self.catalog.get_cases(s["case_id"] for s in stats)}

        # Coverage: distinct (body part, modality) pairs attempted
        all_combos = self.catalog.combos()
        attempted_combos = {
            (c.body_part, c.modality) for c in cases.values() if c.body_part and c.modality
        }
        coverage = _capped(len(attempted_combos) / len(all_combos) * COMPONENT_MAX) if all_combos else 0

        # Accuracy weighted by difficulty, normalized around difficulty 3
        weighted_correct = weighted_total = 0.0
        levels = set()
        for s in stats:
            case = cases.get(s["case_id"])
            if case is None:
                continue
            difficulty = case.difficulty or 2
            levels.add(difficulty)
            weight = difficulty / 3
            weighted_correct += s["correct"] * weight
            weighted_total += s["attempts"] * weight
        weighted_accuracy = weighted_correct / weighted_total if weighted_total else 0.0
        accuracy = _capped(weighted_accuracy * COMPONENT_MAX) if weighted_total else 0

        # Consistency: days with any attempt in the last 30
        study_days = len(self.attempts.daily_counts(user_id, days=CONSISTENCY_WINDOW_DAYS))
        consistency = _capped(study_days / CONSISTENCY_TARGET_DAYS * COMPONENT_MAX)

        # Difficulty spread: 4 points per level attempted
        spread = min(COMPONENT_MAX, len(levels) * (COMPONENT_MAX // DIFFICULTY_LEVELS))

        # Retention: mastered cases over the whole catalog
        progress = self.retention.list_progress(user_id)
        known = {c.id for c in self.catalog.get_cases(p.case_id for p in progress)}
        mastered = sum(1 for p in progress if p.mastered and p.case_id in known)
        total_cases = self.catalog.count()
        retention = _capped(mastered / total_cases * COMPONENT_MAX) if total_cases else 0

        breakdown = {
            "coverage": ReadinessComponent(coverage, f"{len(attempted_combos)}/{len(all_combos)} combos"),
            "accuracy": ReadinessComponent(
                accuracy,
                f"{round(weighted_accuracy * 100)}% weighted" if weighted_total else "No data",
            ),
            "consistency": ReadinessComponent(consistency, f"{study_days}/{CONSISTENCY_TARGET_DAYS} days"),
            "difficulty_spread": ReadinessComponent(spread, f"{len(levels)}/{DIFFICULTY_LEVELS} levels"),
            "retention": ReadinessComponent(retention, f"{mastered} mastered"),
        }
        total = sum(c.score for c in breakdown.values())
        return BoardReadinessScore(total=total, breakdown=breakdown, label=readiness_label(total))
