"""Request/response operations over the review core, independent of transport."""
from dataclasses import asdict
from datetime import datetime, timedelta
from typing import Callable, Optional

import structlog

from rad_tutor.active import CrossDeviceSessionState
from rad_tutor.attempts import AttemptLog
from rad_tutor.catalog import CaseCatalog, McqBuilder, SqliteCaseCatalog, SqliteMcqBuilder
from rad_tutor.config import Settings
from rad_tutor.daily import DailyChallenge
from rad_tutor.db import init_db, transaction
from rad_tutor.errors import NotFoundError, ValidationError
from rad_tutor.gamification import Gamification, XpGamification
from rad_tutor.models import Case, CaseFilters, Session, SessionSummary
from rad_tutor.plans import SqliteStudyPlans, StudyPlanService
from rad_tutor.readiness import BoardReadinessCalculator
from rad_tutor.retention import RetentionStore
from rad_tutor.selector import DueCardSelector
from rad_tutor.sessions import SessionOrchestrator

logger = structlog.get_logger()


def case_to_dict(case: Case) -> dict:
    return asdict(case)


def summary_to_dict(summary: SessionSummary, session: Optional[Session] = None) -> dict:
    """Serialize a summary; with the session at hand, missed answers carry their card."""
    missed = []
    for m in summary.missed:
        item = {
            "card_index": m.card_index,
            "case_id": m.case_id,
            "answer_index": m.answer_index,
            "correct_index": m.correct_index,
        }
        if session is not None:
            card = session.cards[m.card_index]
            item.update({
                "question": card.question,
                "your_answer": card.options[m.answer_index],
                "correct_answer": card.options[m.correct_index],
                "explanation": card.explanation,
            })
        missed.append(item)
    return {
        "session_id": summary.session_id,
        "mode": summary.mode.value,
        "total": summary.total,
        "correct_count": summary.correct_count,
        "accuracy": summary.accuracy,
        "duration_ms": summary.duration_ms,
        "xp_earned": summary.xp_earned,
        "missed_answers": missed,
    }


class ReviewService:
    def __init__(
        self,
        db_path: str,
        catalog: CaseCatalog,
        orchestrator: SessionOrchestrator,
        selector: DueCardSelector,
        retention: RetentionStore,
        attempts: AttemptLog,
        active_sessions: CrossDeviceSessionState,
        readiness: BoardReadinessCalculator,
        gamification: Optional[Gamification] = None,
        plan_store: Optional[SqliteStudyPlans] = None,
        timeout: float = 5.0,
    ):
        self.db_path = db_path
        self.catalog = catalog
        self.orchestrator = orchestrator
        self.selector = selector
        self.retention = retention
        self.attempts = attempts
        self.active_sessions = active_sessions
        self.readiness = readiness
        self.gamification = gamification
        self.plan_store = plan_store
        self.timeout = timeout

    def record_attempt(
        self,
        case_id: str,
        correct: bool,
        time_spent_ms: int = 0,
        session_id: Optional[str] = None,
        answer_index: Optional[int] = None,
        correct_index: Optional[int] = None,
        user_id: Optional[str] = None,
    ) -> dict:
        """Log a stand-alone attempt; signed-in users also get a retention update and XP."""
        if not case_id:
            raise ValidationError("case_id is required")
        if time_spent_ms is not None and (not isinstance(time_spent_ms, int) or time_spent_ms < 0):
            raise ValidationError(f"time_spent_ms {time_spent_ms!r} must be a non-negative integer")
        time_spent_ms = time_spent_ms or 0
        case = self.catalog.get_case(case_id)
        if case is None:
            raise NotFoundError(f"case {case_id} not found")
        with transaction(self.db_path, timeout=self.timeout) as conn:
            self.attempts.append(
                conn, case_id, correct, user_id=user_id, time_spent_ms=time_spent_ms,
                session_id=session_id, answer_index=answer_index, correct_index=correct_index,
            )
            if user_id:
                self.retention.apply_outcome(conn, user_id, case_id, correct)
        result: dict = {"success": True}
        if user_id and self.gamification is not None:
            reward = self.gamification.award_answer(user_id, correct, time_spent_ms, case.difficulty, 0)
            result.update({
                "xp_earned": reward.xp_earned,
                "level_up": reward.level_up,
                "new_badges": reward.new_badges,
            })
        return result

    def get_due_for_review(self, user_id: str, limit: int = 10) -> dict:
        if limit < 0:
            raise ValidationError("limit must not be negative")
        queue = self.selector.get_due_and_new(user_id, limit)
        due = [
            {
                **case_to_dict(d.case),
                "next_review_date": d.progress.next_review_date.isoformat(),
                "repetitions": d.progress.repetitions,
                "interval_days": d.progress.interval_days,
            }
            for d in queue.due
        ]
        return {
            "due_cases": due,
            "new_cases": [case_to_dict(c) for c in queue.new],
            "total_due": len(due),
            "total_new": len(queue.new),
        }

    def get_progress_summary(self, user_id: str) -> dict:
        return self.attempts.progress_summary(user_id)

    def start_session(
        self,
        user_id: Optional[str],
        mode: str,
        plan_id: Optional[str] = None,
        filters: Optional[CaseFilters] = None,
    ) -> dict:
        session = self.orchestrator.start_session(user_id, mode, plan_id=plan_id, filters=filters)
        return {
            "session_id": session.id,
            "mode": session.mode.value,
            "cards": [asdict(c) for c in session.cards],
        }

    def submit_answer(
        self,
        session_id: str,
        answer_index: int,
        time_spent_ms: int = 0,
        card_index: Optional[int] = None,
    ) -> dict:
        result = self.orchestrator.submit_answer(session_id, answer_index, time_spent_ms, card_index)
        return {
            "correct": result.correct,
            "correct_index": result.correct_index,
            "xp_earned": result.xp_earned,
            "completed": result.completed,
        }

    def get_session(self, session_id: str) -> dict:
        session = self.orchestrator.get_session(session_id)
        return {
            "session_id": session.id,
            "mode": session.mode.value,
            "status": session.status.value,
            "current_index": session.current_index,
            "correct_count": session.correct_count,
            "cards": [asdict(c) for c in session.cards],
        }

    def complete_session(self, session_id: str) -> dict:
        summary = self.orchestrator.end_session(session_id)
        session = self.orchestrator.get_session(session_id)
        return {
            "bonus_xp": summary.bonus_xp,
            "new_badges": summary.new_badges,
            "summary": summary_to_dict(summary, session),
        }

    def get_active_session(self, user_id: str) -> Optional[dict]:
        snapshot = self.active_sessions.get(user_id)
        if snapshot is None:
            return None
        return {
            "state": snapshot.state,
            "device_id": snapshot.device_id,
            "updated_at": snapshot.updated_at.isoformat(),
        }

    def put_active_session(self, user_id: str, state: dict, device_id: Optional[str] = None) -> dict:
        self.active_sessions.put(user_id, state, device_id)
        return {"success": True}

    def delete_active_session(self, user_id: str) -> dict:
        self.active_sessions.delete(user_id)
        return {"success": True}

    def get_board_readiness(self, user_id: str) -> dict:
        score = self.readiness.compute_score(user_id)
        return {
            "total": score.total,
            "label": score.label,
            "breakdown": {
                name: {"score": c.score, "max": c.max, "detail": c.detail}
                for name, c in score.breakdown.items()
            },
        }

    def rebuild_progress(self, user_id: str) -> dict:
        return {"rebuilt": self.retention.rebuild(user_id)}

    # ========== Study plans ==========

    def _plans(self) -> SqliteStudyPlans:
        if self.plan_store is None:
            raise ValidationError("study plans are not available")
        return self.plan_store

    def list_plan_templates(self) -> list[dict]:
        return self._plans().templates()

    def list_study_plans(self, user_id: str) -> list[dict]:
        return self._plans().list_plans(user_id)

    def create_study_plan(self, user_id: str, template_id: str, name: Optional[str] = None) -> dict:
        if not user_id:
            raise ValidationError("user_id is required")
        return {"plan_id": self._plans().create_plan(user_id, template_id, name)}


def build_service(
    settings: Settings,
    clock: Callable[[], datetime] = datetime.now,
    catalog: Optional[CaseCatalog] = None,
    mcq_builder: Optional[McqBuilder] = None,
    gamification: Optional[Gamification] = None,
    study_plans: Optional[StudyPlanService] = None,
) -> ReviewService:
    """Wire every component against one database, using local collaborators unless given."""
    db_path = settings.db_path
    timeout = settings.busy_timeout_seconds
    init_db(db_path)
    catalog = catalog or SqliteCaseCatalog(db_path)
    mcq_builder = mcq_builder or SqliteMcqBuilder(db_path)
    gamification = gamification or XpGamification(db_path, clock=clock)
    plan_store = SqliteStudyPlans(db_path, batch_size=settings.plan_batch_size, clock=clock)
    study_plans = study_plans or plan_store
    retention = RetentionStore(db_path, clock=clock, timeout=timeout)
    attempts = AttemptLog(db_path, clock=clock, timeout=timeout)
    selector = DueCardSelector(db_path, catalog, clock=clock)
    daily = DailyChallenge(db_path, size=settings.daily_challenge_size, clock=clock)
    orchestrator = SessionOrchestrator(
        db_path, catalog, mcq_builder, selector, retention, attempts, daily,
        gamification=gamification,
        study_plans=study_plans,
        quick_size=settings.quick_session_size,
        review_size=settings.review_session_size,
        weakness_top_n=settings.weakness_top_n,
        clock=clock,
        timeout=timeout,
    )
    active = CrossDeviceSessionState(
        db_path, ttl=timedelta(minutes=settings.active_session_ttl_minutes), clock=clock,
    )
    readiness = BoardReadinessCalculator(catalog, attempts, retention, clock=clock)
    logger.debug("service_ready", db_path=db_path)
    return ReviewService(
        db_path, catalog, orchestrator, selector, retention, attempts, active, readiness,
        gamification=gamification, plan_store=plan_store, timeout=timeout,
    )
