import logging

from fastapi import APIRouter, HTTPException

from mathquest.core.config import get_settings
from mathquest.core.deps import build_dedup_gate, build_history_store
from mathquest.models.placement import (
    HistorySummaryResponse,
    PracticeBatchRequest,
    PracticeBatchResponse,
    ResetResponse,
)
from mathquest.services.dedup_gate import FetchRequest
from mathquest.services.errors import ContentUnavailable
from mathquest.services.grade_levels import clamp_grade
from mathquest.services.session_registry import get_practice_registry
from mathquest.services.telemetry import instrument
from mathquest.skills.registry import OPERATIONS

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/practice", tags=["practice"])

_MAX_PRACTICE_BATCH = 20


@router.post("/{operation}/batch", response_model=PracticeBatchResponse)
@instrument(route="/api/practice/batch", version="v1")
async def practice_batch(operation: str, body: PracticeBatchRequest):
    """Serve a practice batch that avoids the learner's recent questions."""
    if operation not in OPERATIONS:
        raise HTTPException(status_code=422, detail=f"Unknown operation: {operation}")

    settings = get_settings()
    count = body.count or settings.practice_batch_size
    if count < 1 or count > _MAX_PRACTICE_BATCH:
        raise HTTPException(status_code=422, detail=f"count must be between 1 and {_MAX_PRACTICE_BATCH}")

    grade = clamp_grade(body.grade, settings.min_grade, settings.max_grade)
    session_id, gate = get_practice_registry().get_or_create(
        body.user_id,
        body.session_id,
        lambda: build_dedup_gate(body.user_id, settings),
    )
    try:
        questions = await gate.fetch(FetchRequest(
            operation=operation,
            grade=grade,
            batch_size=count,
            force_dynamic=body.force_dynamic,
        ))
    except ContentUnavailable as exc:
        logger.warning("[practice.practice_batch] %s", exc)
        raise HTTPException(status_code=503, detail=str(exc))

    return PracticeBatchResponse(
        user_id=body.user_id,
        session_id=session_id,
        operation=operation,
        grade=grade,
        questions=[q.model_dump() for q in questions],
    )


@router.get("/history/{user_id}", response_model=HistorySummaryResponse)
def get_history(user_id: str, limit: int = 20):
    store = build_history_store(user_id)
    return HistorySummaryResponse(
        user_id=user_id,
        total_seen=len(store.history),
        recent_ids=store.build_exclusion_list(max(0, limit)),
    )


@router.delete("/history/{user_id}", response_model=ResetResponse)
def clear_history(user_id: str):
    store = build_history_store(user_id)
    store.clear()
    get_practice_registry().discard_user(user_id)
    return ResetResponse(ok=True)
