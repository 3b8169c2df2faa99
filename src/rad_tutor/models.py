"""Data classes for the review domain model."""
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Optional


class SessionMode(str, Enum):
    QUICK = "quick"
    DAILY = "daily"
    REVIEW = "review"
    PLAN = "plan"
    WEAKNESS = "weakness"


class SessionStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


@dataclass(frozen=True)
class Case:
    id: str
    title: str
    modality: Optional[str] = None
    body_part: Optional[str] = None
    diagnosis: Optional[str] = None
    difficulty: int = 2
    clinical_history: str = ""
    findings: str = ""
    teaching_points: str = ""
    image_url: str = ""


@dataclass(frozen=True)
class CaseFilters:
    modality: Optional[str] = None
    body_part: Optional[str] = None
    difficulty: Optional[int] = None


@dataclass
class CaseProgress:
    user_id: str
    case_id: str
    ease_factor: float = 2.5
    interval_days: int = 1
    repetitions: int = 0
    next_review_date: Optional[date] = None
    last_reviewed_at: Optional[datetime] = None

    @property
    def mastered(self) -> bool:
        return self.repetitions >= 3 and self.interval_days >= 21


@dataclass(frozen=True)
class Attempt:
    id: int
    case_id: str
    correct: bool
    attempted_at: datetime
    user_id: Optional[str] = None
    time_spent_ms: int = 0
    session_id: Optional[str] = None
    answer_index: Optional[int] = None
    correct_index: Optional[int] = None


@dataclass(frozen=True)
class CardRef:
    """One multiple-choice card as shown in a session."""

    case_id: str
    title: str
    question: str
    options: tuple[str, ...]
    correct_answer_index: int
    image_url: str = ""
    explanation: str = ""
    difficulty: int = 2
    specialty: str = "General"


@dataclass(frozen=True)
class AnswerRecord:
    card_index: int
    case_id: str
    answer_index: int
    correct_index: int
    correct: bool
    answered_at: datetime
    time_spent_ms: int = 0
    xp_earned: int = 0


@dataclass
class Session:
    id: str
    user_id: Optional[str]
    mode: SessionMode
    started_at: datetime
    cards: tuple[CardRef, ...]
    status: SessionStatus = SessionStatus.ACTIVE
    current_index: int = 0
    correct_count: int = 0
    streak: int = 0
    xp_earned: int = 0
    answers: tuple[AnswerRecord, ...] = ()
    plan_id: Optional[str] = None
    milestone_index: Optional[int] = None
    rewards_enabled: bool = True
    completed_at: Optional[datetime] = None

    @property
    def is_complete(self) -> bool:
        return self.status is SessionStatus.COMPLETED

    @property
    def current_card(self) -> Optional[CardRef]:
        if self.current_index >= len(self.cards):
            return None
        return self.cards[self.current_index]


@dataclass
class SessionSummary:
    session_id: str
    mode: SessionMode
    total: int
    correct_count: int
    accuracy: int
    duration_ms: int
    xp_earned: int
    bonus_xp: int = 0
    new_badges: list[str] = field(default_factory=list)
    missed: list[AnswerRecord] = field(default_factory=list)


@dataclass
class AnswerResult:
    correct: bool
    correct_index: int
    xp_earned: int = 0
    completed: bool = False
    summary: Optional[SessionSummary] = None


@dataclass
class ActiveSessionSnapshot:
    user_id: str
    state: dict
    updated_at: datetime
    device_id: Optional[str] = None


@dataclass(frozen=True)
class ReadinessComponent:
    score: int
    detail: str
    max: int = 20


@dataclass
class BoardReadinessScore:
    total: int
    breakdown: dict[str, ReadinessComponent]
    label: str = "NOT READY"
