from pydantic import BaseModel
from typing import Any, Optional


class Question(BaseModel):
    id: str
    question_text: str
    answer: str
    options: list[str] = []
    operation: str
    grade: str
    source: str = "static"   # static | dynamic

    def public_dict(self) -> dict:
        """Question payload without the answer, for sending to a learner."""
        return self.model_dump(exclude={"answer"})


# ──────────────────────────────────────────────
# Request schemas
# ──────────────────────────────────────────────

class StartAssessmentRequest(BaseModel):
    user_id: str
    user_grade: Optional[Any] = None


class SubmitAnswerRequest(BaseModel):
    answer: str


class PracticeBatchRequest(BaseModel):
    user_id: str
    session_id: Optional[str] = None   # omit to start a new practice session
    grade: Optional[Any] = None
    count: Optional[int] = None
    force_dynamic: bool = False


# ──────────────────────────────────────────────
# Response schemas
# ──────────────────────────────────────────────

class SessionSnapshot(BaseModel):
    session_id: str
    user_id: str
    operation: str
    status: str
    current_grade: str
    question_index: int = 0
    batch_size: int = 0
    current_question: Optional[dict] = None
    final_grade: Optional[str] = None
    error: Optional[str] = None
    questions_answered: int = 0
    max_grade_tested: Optional[str] = None
    grade_cache: dict[str, dict] = {}
    completion_recorded: bool = False


class AnswerResponse(BaseModel):
    is_correct: Optional[bool] = None
    accepted: bool = True
    effects: list[dict] = []
    session: SessionSnapshot


class PracticeBatchResponse(BaseModel):
    user_id: str
    session_id: str
    operation: str
    grade: str
    questions: list[dict]


class HistorySummaryResponse(BaseModel):
    user_id: str
    total_seen: int
    recent_ids: list[str]


class ResetResponse(BaseModel):
    ok: bool = True
