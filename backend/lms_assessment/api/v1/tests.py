"""
LMS Assessment Engine - Test Authoring API
Endpoints for teachers to build, publish and close tests
"""
import uuid

from fastapi import APIRouter, status

from lms_assessment.api.deps import CurrentUser, DbSession, NotifierDep
from lms_assessment.schemas.test import (
    QuestionCreate,
    QuestionResponse,
    QuestionUpdate,
    TestCreate,
    TestListItem,
    TestResponse,
    TestUpdate,
)
from lms_assessment.services.question_bank import QuestionBankService

router = APIRouter(prefix="/tests", tags=["Tests"])


@router.post("", response_model=TestResponse, status_code=status.HTTP_201_CREATED)
async def create_test(data: TestCreate, current_user: CurrentUser, db: DbSession):
    """Create a draft test, optionally with questions."""
    test = await QuestionBankService(db).create_test(current_user.id, data)
    return QuestionBankService.to_response(test, include_questions=True)


@router.get("/course/{course_id}", response_model=list[TestListItem])
async def list_course_tests(course_id: uuid.UUID, current_user: CurrentUser, db: DbSession):
    """List a course's tests. Students only see published ones."""
    return await QuestionBankService(db).get_course_tests(course_id, current_user.id)


@router.get("/{test_id}", response_model=TestResponse)
async def get_test(test_id: uuid.UUID, current_user: CurrentUser, db: DbSession):
    return await QuestionBankService(db).get_test(test_id, current_user.id)


@router.put("/{test_id}", response_model=TestResponse)
async def update_test(
    test_id: uuid.UUID, data: TestUpdate, current_user: CurrentUser, db: DbSession
):
    test = await QuestionBankService(db).update_test(test_id, current_user.id, data)
    return QuestionBankService.to_response(test, include_questions=True)


@router.delete("/{test_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_test(test_id: uuid.UUID, current_user: CurrentUser, db: DbSession):
    await QuestionBankService(db).delete_test(test_id, current_user.id)


@router.post("/{test_id}/publish", response_model=TestResponse)
async def publish_test(
    test_id: uuid.UUID, current_user: CurrentUser, db: DbSession, notifier: NotifierDep
):
    """Publish a draft test. Requires at least one question."""
    test = await QuestionBankService(db, notifier).publish_test(test_id, current_user.id)
    return QuestionBankService.to_response(test, include_questions=True)


@router.post("/{test_id}/close", response_model=TestResponse)
async def close_test(test_id: uuid.UUID, current_user: CurrentUser, db: DbSession):
    test = await QuestionBankService(db).close_test(test_id, current_user.id)
    return QuestionBankService.to_response(test, include_questions=True)


@router.post(
    "/{test_id}/questions",
    response_model=QuestionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_question(
    test_id: uuid.UUID, data: QuestionCreate, current_user: CurrentUser, db: DbSession
):
    """Add a question to a draft test."""
    return await QuestionBankService(db).add_question(test_id, current_user.id, data)


@router.put("/questions/{question_id}", response_model=QuestionResponse)
async def update_question(
    question_id: uuid.UUID, data: QuestionUpdate, current_user: CurrentUser, db: DbSession
):
    """
    Update a question.
    
    After publishing only the wording, explanation and order may change;
    answer keys and points are fixed.
    """
    return await QuestionBankService(db).update_question(question_id, current_user.id, data)


@router.delete("/questions/{question_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_question(question_id: uuid.UUID, current_user: CurrentUser, db: DbSession):
    await QuestionBankService(db).delete_question(question_id, current_user.id)
