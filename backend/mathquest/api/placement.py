import logging

from fastapi import APIRouter, HTTPException

from mathquest.core.deps import build_placement_controller
from mathquest.models.placement import (
    AnswerResponse,
    SessionSnapshot,
    StartAssessmentRequest,
    SubmitAnswerRequest,
)
from mathquest.services.errors import CompletionSinkFailure
from mathquest.services.placement_controller import GradePlacementController, effect_to_dict
from mathquest.services.session_registry import get_session_registry
from mathquest.services.telemetry import instrument
from mathquest.skills.registry import OPERATIONS

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/placement", tags=["placement"])


def _get_controller(session_id: str) -> GradePlacementController:
    controller = get_session_registry().get(session_id)
    if controller is None:
        raise HTTPException(status_code=404, detail="Assessment session not found")
    return controller


def _snapshot(controller: GradePlacementController) -> SessionSnapshot:
    return SessionSnapshot(**controller.snapshot())


# ---------------------------------------------------------------------------
# Endpoint 1: Start an assessment
# ---------------------------------------------------------------------------

@router.post("/{operation}/start", response_model=SessionSnapshot)
@instrument(route="/api/placement/start", version="v1")
async def start_assessment(operation: str, body: StartAssessmentRequest):
    """Clamp the learner's grade, fetch the first batch, and begin testing."""
    if operation not in OPERATIONS:
        raise HTTPException(status_code=422, detail=f"Unknown operation: {operation}")

    controller = build_placement_controller(body.user_id)
    await controller.start(body.user_id, body.user_grade, operation)
    get_session_registry().register(controller)
    return _snapshot(controller)


# ---------------------------------------------------------------------------
# Endpoint 2: Submit an answer
# ---------------------------------------------------------------------------

@router.post("/sessions/{session_id}/answer", response_model=AnswerResponse)
@instrument(route="/api/placement/answer", version="v1")
async def submit_answer(session_id: str, body: SubmitAnswerRequest):
    controller = _get_controller(session_id)
    transition = await controller.submit_answer(body.answer)
    if controller.session.is_terminal:
        get_session_registry().prune()
    if not transition.accepted:
        raise HTTPException(
            status_code=409,
            detail=f"Session is {controller.session.status}; not accepting answers",
        )
    return AnswerResponse(
        is_correct=transition.is_correct,
        accepted=transition.accepted,
        effects=[effect_to_dict(e) for e in transition.effects],
        session=_snapshot(controller),
    )


# ---------------------------------------------------------------------------
# Endpoint 3: Inspect a session
# ---------------------------------------------------------------------------

@router.get("/sessions/{session_id}", response_model=SessionSnapshot)
def get_session(session_id: str):
    return _snapshot(_get_controller(session_id))


# ---------------------------------------------------------------------------
# Endpoint 4: Retry recording a finished placement
# ---------------------------------------------------------------------------

@router.post("/sessions/{session_id}/complete", response_model=SessionSnapshot)
async def record_completion(session_id: str):
    controller = _get_controller(session_id)
    if not controller.session.is_terminal:
        raise HTTPException(status_code=409, detail="Assessment has not finished")
    try:
        await controller.record_completion()
    except CompletionSinkFailure as exc:
        logger.error("[placement.record_completion] session=%s: %s", session_id, exc)
        raise HTTPException(status_code=502, detail=str(exc))
    return _snapshot(controller)


# ---------------------------------------------------------------------------
# Endpoint 5: Cancel
# ---------------------------------------------------------------------------

@router.delete("/sessions/{session_id}", response_model=SessionSnapshot)
def cancel_session(session_id: str):
    controller = _get_controller(session_id)
    controller.cancel()
    snapshot = _snapshot(controller)
    get_session_registry().discard(session_id)
    return snapshot
