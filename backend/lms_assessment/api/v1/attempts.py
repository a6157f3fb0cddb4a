"""
LMS Assessment Engine - Attempt API
Endpoints for taking tests, reading results, grading and summaries
"""
import uuid
from typing import Optional

from fastapi import APIRouter

from lms_assessment.api.deps import CurrentUser, DbSession, NotifierDep
from lms_assessment.schemas.attempt import (
    AttemptResult,
    AttemptSession,
    GradeAttemptRequest,
    SaveAnswerRequest,
    SavedAnswer,
    SubmitAttemptRequest,
    TestSummary,
)
from lms_assessment.services.analytics import TestAnalyticsService
from lms_assessment.services.attempts import AttemptService
from lms_assessment.services.manual_grading import ManualGradingService
from lms_assessment.services.results import ResultService

router = APIRouter(prefix="/tests", tags=["Attempts"])


@router.post("/{test_id}/start", response_model=AttemptSession)
async def start_attempt(test_id: uuid.UUID, current_user: CurrentUser, db: DbSession):
    """
    Start a test, or resume the attempt already in progress.
    
    Questions come back in this attempt's fixed order, without answer keys.
    """
    return await AttemptService(db).start_attempt(current_user.id, test_id)


@router.post("/save-answer", response_model=SavedAnswer)
async def save_answer(request: SaveAnswerRequest, current_user: CurrentUser, db: DbSession):
    """Auto-save one answer. Saving again overwrites it."""
    return await AttemptService(db).save_answer(
        current_user.id,
        request.attempt_id,
        request.question_id,
        request.selected_option_ids,
        request.text_answer,
    )


@router.post("/submit", response_model=AttemptResult)
async def submit_attempt(request: SubmitAttemptRequest, current_user: CurrentUser, db: DbSession):
    """
    Submit an attempt for grading.
    
    When the test withholds results until grading, only the attempt
    header is returned (results_available is false).
    """
    attempt = await AttemptService(db).submit_attempt(
        current_user.id, request.attempt_id, request.answers
    )
    return await ResultService(db).get_attempt_result(
        attempt.id, current_user.id, allow_pending=True
    )


@router.get("/my-attempts", response_model=list[AttemptResult])
async def get_my_attempts(
    current_user: CurrentUser,
    db: DbSession,
    test_id: Optional[uuid.UUID] = None,
):
    return await ResultService(db).get_my_attempts(current_user.id, test_id)


@router.get("/attempts/{attempt_id}", response_model=AttemptResult)
async def get_attempt_result(attempt_id: uuid.UUID, current_user: CurrentUser, db: DbSession):
    return await ResultService(db).get_attempt_result(attempt_id, current_user.id)


@router.get("/{test_id}/attempts", response_model=list[AttemptResult])
async def get_test_attempts(test_id: uuid.UUID, current_user: CurrentUser, db: DbSession):
    """All attempts of a test (teacher only)."""
    return await ResultService(db).get_test_attempts(current_user.id, test_id)


@router.post("/grade", response_model=AttemptResult)
async def grade_attempt(
    request: GradeAttemptRequest,
    current_user: CurrentUser,
    db: DbSession,
    notifier: NotifierDep,
):
    """Grade essay answers (or override scores) of a submitted attempt."""
    attempt = await ManualGradingService(db, notifier).grade_attempt(
        current_user.id, request.attempt_id, request.grades, request.feedback
    )
    return await ResultService(db).get_attempt_result(attempt.id, current_user.id)


@router.get("/{test_id}/summary", response_model=TestSummary)
async def get_test_summary(test_id: uuid.UUID, current_user: CurrentUser, db: DbSession):
    return await TestAnalyticsService(db).get_test_summary(current_user.id, test_id)
