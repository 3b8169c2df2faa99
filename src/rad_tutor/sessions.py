"""Session lifecycle: card sourcing per mode, answering, and completion.

A session moves from ``active`` to ``completed`` exactly once, either when the
last card is answered or when ``end_session`` is called early. Answers are
stored one row per card index, so a card can never be counted twice, and each
answer commits together with its attempt log entry and retention update.
Reward calls to the gamification and study plan collaborators happen after
the commit and never touch this module's tables. Daily sessions of one user
compete for a single reward claim per day, taken with the first answer.
"""
import json
import sqlite3
import uuid
from dataclasses import asdict
from datetime import datetime
from typing import Callable, Iterable, Optional, Union

import structlog

from rad_tutor.attempts import AttemptLog
from rad_tutor.catalog import CaseCatalog, McqBuilder, build_card
from rad_tutor.daily import DailyChallenge
from rad_tutor.db import transaction
from rad_tutor.errors import ConflictError, NotFoundError, ValidationError
from rad_tutor.gamification import Gamification
from rad_tutor.models import (
    AnswerRecord, AnswerResult, CardRef, Case, CaseFilters, Session, SessionMode,
    SessionStatus, SessionSummary,
)
from rad_tutor.plans import StudyPlanService
from rad_tutor.retention import RetentionStore
from rad_tutor.selector import DueCardSelector

logger = structlog.get_logger()

# Modes whose cards depend on the user's own history.
USER_MODES = {SessionMode.REVIEW, SessionMode.PLAN, SessionMode.WEAKNESS}


def parse_mode(mode: Union[str, SessionMode]) -> SessionMode:
    try:
        return SessionMode(mode)
    except ValueError:
        valid = ", ".join(m.value for m in SessionMode)
        raise ValidationError(f"unknown session mode {mode!r} (expected one of: {valid})") from None


def _card_from_dict(data: dict) -> CardRef:
    return CardRef(**{**data, "options": tuple(data["options"])})


def _answer_from_row(row: sqlite3.Row) -> AnswerRecord:
    return AnswerRecord(
        card_index=row["card_index"],
        case_id=row["case_id"],
        answer_index=row["answer_index"],
        correct_index=row["correct_index"],
        correct=bool(row["correct"]),
        answered_at=datetime.fromisoformat(row["answered_at"]),
        time_spent_ms=row["time_spent_ms"] or 0,
        xp_earned=row["xp_earned"] or 0,
    )


def summarize(session: Session, bonus_xp: int = 0, new_badges: Optional[list[str]] = None) -> SessionSummary:
    """Build the end-of-session summary from the stored session alone."""
    total = len(session.answers)
    ended = session.completed_at or session.started_at
    return SessionSummary(
        session_id=session.id,
        mode=session.mode,
        total=total,
        correct_count=session.correct_count,
        accuracy=round(session.correct_count / total * 100) if total else 0,
        duration_ms=max(0, int((ended - session.started_at).total_seconds() * 1000)),
        xp_earned=session.xp_earned,
        bonus_xp=bonus_xp,
        new_badges=list(new_badges or []),
        missed=[a for a in session.answers if not a.correct],
    )


class SessionOrchestrator:
    def __init__(
        self,
        db_path: str,
        catalog: CaseCatalog,
        mcq_builder: McqBuilder,
        selector: DueCardSelector,
        retention: RetentionStore,
        attempts: AttemptLog,
        daily: DailyChallenge,
        gamification: Optional[Gamification] = None,
        study_plans: Optional[StudyPlanService] = None,
        quick_size: int = 10,
        review_size: int = 20,
        weakness_top_n: int = 10,
        clock: Callable[[], datetime] = datetime.now,
        timeout: float = 5.0,
    ):
        self.db_path = db_path
        self.catalog = catalog
        self.mcq_builder = mcq_builder
        self.selector = selector
        self.retention = retention
        self.attempts = attempts
        self.daily = daily
        self.gamification = gamification
        self.study_plans = study_plans
        self.quick_size = quick_size
        self.review_size = review_size
        self.weakness_top_n = weakness_top_n
        self.clock = clock
        self.timeout = timeout

    # ========== Card sourcing ==========

    def _source_cases(
        self,
        mode: SessionMode,
        user_id: Optional[str],
        plan_id: Optional[str],
        filters: Optional[CaseFilters],
    ) -> tuple[list[Union[Case, CardRef]], Optional[int]]:
        if mode is SessionMode.QUICK:
            return self.catalog.random_cases(filters, limit=self.quick_size), None
        if mode is SessionMode.DAILY:
            return self.catalog.get_cases(self.daily.get_or_create()), None
        if mode is SessionMode.REVIEW:
            return self.selector.get_due_and_new(user_id, self.review_size).cases(), None
        if mode is SessionMode.PLAN:
            if not plan_id:
                raise ValidationError("plan_id is required for plan sessions")
            if self.study_plans is None:
                raise ValidationError("no study plan service configured")
            batch = self.study_plans.next_session(plan_id, user_id)
            return batch.cases, batch.milestone_index
        weak = self.selector.get_weakest(user_id, self.weakness_top_n)
        return self.catalog.get_cases(w.case_id for w in weak), None

    def _build_cards(self, items: Iterable[Union[Case, CardRef]]) -> list[CardRef]:
        cards = []
        for item in items:
            if isinstance(item, CardRef):
                cards.append(item)
                continue
            mcq = self.mcq_builder.build(item)
            if mcq is None:
                logger.warning("mcq_unavailable", case_id=item.id)
                continue
            cards.append(build_card(item, mcq))
        return cards

    # ========== Lifecycle ==========

    def start_session(
        self,
        user_id: Optional[str],
        mode: Union[str, SessionMode],
        plan_id: Optional[str] = None,
        filters: Optional[CaseFilters] = None,
    ) -> Session:
        mode = parse_mode(mode)
        if mode in USER_MODES and not user_id:
            raise ValidationError(f"{mode.value} sessions require a signed-in user")

        items, milestone_index = self._source_cases(mode, user_id, plan_id, filters)
        cards = self._build_cards(items)
        if not cards:
            raise NotFoundError(f"no cards available for a {mode.value} session")

        rewards_enabled = bool(user_id)
        if mode is SessionMode.DAILY and user_id and self.daily.is_completed(user_id):
            # Replaying today's challenge is allowed but earns nothing.
            rewards_enabled = False

        session = Session(
            id=uuid.uuid4().hex,
            user_id=user_id,
            mode=mode,
            started_at=self.clock(),
            cards=tuple(cards),
            plan_id=plan_id if mode is SessionMode.PLAN else None,
            milestone_index=milestone_index,
            rewards_enabled=rewards_enabled,
        )
        with transaction(self.db_path, timeout=self.timeout) as conn:
            conn.execute(
                """INSERT INTO sessions
                (id, user_id, mode, status, started_at, cards, plan_id, milestone_index, rewards_enabled)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    session.id, user_id, mode.value, session.status.value,
                    session.started_at.isoformat(),
                    json.dumps([asdict(c) for c in session.cards]),
                    session.plan_id, milestone_index, int(rewards_enabled),
                ),
            )
        logger.info(
            "session_started", session_id=session.id, user_id=user_id, mode=mode.value,
            cards=len(cards),
        )
        return session

    def _load(self, conn: sqlite3.Connection, session_id: str) -> tuple[Session, Optional[dict]]:
        row = conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()
        if row is None:
            raise NotFoundError(f"session {session_id} not found")
        answers = conn.execute(
            "SELECT * FROM session_answers WHERE session_id = ? ORDER BY card_index", (session_id,)
        ).fetchall()
        session = Session(
            id=row["id"],
            user_id=row["user_id"],
            mode=SessionMode(row["mode"]),
            status=SessionStatus(row["status"]),
            started_at=datetime.fromisoformat(row["started_at"]),
            completed_at=datetime.fromisoformat(row["completed_at"]) if row["completed_at"] else None,
            cards=tuple(_card_from_dict(c) for c in json.loads(row["cards"])),
            current_index=row["current_index"],
            correct_count=row["correct_count"],
            streak=row["streak"],
            xp_earned=row["xp_earned"],
            answers=tuple(_answer_from_row(a) for a in answers),
            plan_id=row["plan_id"],
            milestone_index=row["milestone_index"],
            rewards_enabled=bool(row["rewards_enabled"]),
        )
        stored = json.loads(row["summary"]) if row["summary"] else None
        return session, stored

    def get_session(self, session_id: str) -> Session:
        with transaction(self.db_path, immediate=False, timeout=self.timeout) as conn:
            session, _ = self._load(conn, session_id)
        return session

    def _claim_daily_rewards(self, conn: sqlite3.Connection, session: Session, now: datetime) -> bool:
        """Take the user's daily reward claim for this session, or lose rewards to its holder."""
        day = session.started_at.date().isoformat()
        conn.execute(
            """INSERT OR IGNORE INTO daily_reward_claims (user_id, challenge_date, session_id, claimed_at)
            VALUES (?, ?, ?, ?)""",
            (session.user_id, day, session.id, now.isoformat()),
        )
        holder = conn.execute(
            "SELECT session_id FROM daily_reward_claims WHERE user_id = ? AND challenge_date = ?",
            (session.user_id, day),
        ).fetchone()["session_id"]
        if holder == session.id:
            return True
        conn.execute("UPDATE sessions SET rewards_enabled = 0 WHERE id = ?", (session.id,))
        logger.info(
            "daily_rewards_claimed_elsewhere", session_id=session.id, user_id=session.user_id,
            holder=holder,
        )
        return False

    def submit_answer(
        self,
        session_id: str,
        answer_index: int,
        time_spent_ms: int = 0,
        card_index: Optional[int] = None,
    ) -> AnswerResult:
        """Answer the current card. An index that was already answered is rejected."""
        if time_spent_ms is not None and (not isinstance(time_spent_ms, int) or time_spent_ms < 0):
            raise ValidationError(f"time_spent_ms {time_spent_ms!r} must be a non-negative integer")
        time_spent_ms = time_spent_ms or 0
        now = self.clock()
        with transaction(self.db_path, timeout=self.timeout) as conn:
            session, _ = self._load(conn, session_id)
            if session.is_complete:
                raise ConflictError(f"session {session_id} is already completed")
            index = session.current_index if card_index is None else card_index
            if index < session.current_index:
                raise ConflictError(f"card {index} of session {session_id} was already answered")
            if index > session.current_index:
                raise ValidationError(
                    f"card {index} is not the current card ({session.current_index})"
                )
            if index >= len(session.cards):
                raise ConflictError(f"all cards of session {session_id} are answered")
            card = session.cards[index]
            if not isinstance(answer_index, int) or not 0 <= answer_index < len(card.options):
                raise ValidationError(f"answer_index {answer_index!r} is out of range")

            correct = answer_index == card.correct_answer_index
            try:
                conn.execute(
                    """INSERT INTO session_answers
                    (session_id, card_index, case_id, answer_index, correct_index, correct,
                     time_spent_ms, answered_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                    (
                        session_id, index, card.case_id, answer_index, card.correct_answer_index,
                        int(correct), time_spent_ms, now.isoformat(),
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise ConflictError(f"card {index} of session {session_id} was already answered") from exc
            self.attempts.append(
                conn, card.case_id, correct, user_id=session.user_id, time_spent_ms=time_spent_ms,
                session_id=session_id, answer_index=answer_index,
                correct_index=card.correct_answer_index, attempted_at=now,
            )
            if session.user_id:
                self.retention.apply_outcome(conn, session.user_id, card.case_id, correct, now=now)
            rewards_enabled = session.rewards_enabled
            if rewards_enabled and session.user_id and session.mode is SessionMode.DAILY:
                rewards_enabled = self._claim_daily_rewards(conn, session, now)
            streak = session.streak + 1 if correct else 0
            conn.execute(
                """UPDATE sessions
                SET current_index = current_index + 1, correct_count = correct_count + ?, streak = ?
                WHERE id = ?""",
                (int(correct), streak, session_id),
            )

        xp = 0
        if session.user_id and rewards_enabled and self.gamification is not None:
            reward = self.gamification.award_answer(
                session.user_id, correct, time_spent_ms, card.difficulty, streak,
            )
            xp = reward.xp_earned
            with transaction(self.db_path, timeout=self.timeout) as conn:
                conn.execute("UPDATE sessions SET xp_earned = xp_earned + ? WHERE id = ?", (xp, session_id))
                conn.execute(
                    "UPDATE session_answers SET xp_earned = ? WHERE session_id = ? AND card_index = ?",
                    (xp, session_id, index),
                )

        completed = index + 1 == len(session.cards)
        summary = self.end_session(session_id) if completed else None
        return AnswerResult(
            correct=correct,
            correct_index=card.correct_answer_index,
            xp_earned=xp,
            completed=completed,
            summary=summary,
        )

    def end_session(self, session_id: str) -> SessionSummary:
        """Complete the session and grant its completion rewards once.

        The summary is stored only after the rewards went through. A completed
        session without a summary had its rewards interrupted, so calling this
        again runs them again; every reward step is safe to repeat.
        """
        now = self.clock()
        with transaction(self.db_path, timeout=self.timeout) as conn:
            session, stored = self._load(conn, session_id)
            if not session.is_complete:
                conn.execute(
                    "UPDATE sessions SET status = ?, completed_at = ? WHERE id = ? AND status = ?",
                    (SessionStatus.COMPLETED.value, now.isoformat(), session_id,
                     SessionStatus.ACTIVE.value),
                )
                session.status = SessionStatus.COMPLETED
                session.completed_at = now
        if stored is not None:
            return summarize(session, stored.get("bonus_xp", 0), stored.get("new_badges"))

        summary = summarize(session)
        bonus_xp, new_badges = self._finalize(session, summary)
        with transaction(self.db_path, timeout=self.timeout) as conn:
            cur = conn.execute(
                "UPDATE sessions SET xp_earned = xp_earned + ?, summary = ? WHERE id = ? AND summary IS NULL",
                (bonus_xp, json.dumps({"bonus_xp": bonus_xp, "new_badges": new_badges}), session_id),
            )
            if cur.rowcount == 0:
                # A concurrent call stored its summary first.
                session, stored = self._load(conn, session_id)
                return summarize(session, stored.get("bonus_xp", 0), stored.get("new_badges"))
        session.xp_earned += bonus_xp
        summary = summarize(session, bonus_xp, new_badges)
        logger.info(
            "session_completed", session_id=session_id, mode=session.mode.value,
            answered=summary.total, total_cards=len(session.cards), accuracy=summary.accuracy,
            xp_earned=summary.xp_earned,
        )
        return summary

    def _finalize(self, session: Session, summary: SessionSummary) -> tuple[int, list[str]]:
        if not session.user_id:
            return 0, []
        if session.mode is SessionMode.DAILY:
            self.daily.mark_completed(
                session.user_id, summary.correct_count, summary.total, day=session.started_at.date(),
            )
        if session.mode is SessionMode.PLAN and session.plan_id and self.study_plans is not None:
            for answer in session.answers:
                self.study_plans.record_progress(
                    session.plan_id, answer.case_id, answer.correct, session.milestone_index,
                )
        if self.gamification is None or not session.rewards_enabled:
            return 0, []
        reward = self.gamification.award_session(session.user_id, summary)
        return reward.bonus_xp, list(reward.new_badges)
