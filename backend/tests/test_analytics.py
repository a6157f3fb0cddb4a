"""
LMS Assessment Engine - Test Summary Tests
"""
from decimal import Decimal

import pytest

from lms_assessment import models
from lms_assessment.schemas.attempt import SubmitAnswerItem
from lms_assessment.services.analytics import TestAnalyticsService
from lms_assessment.services.attempts import AttemptService
from lms_assessment.services.exceptions import NotFoundError, UnauthorizedError
from tests.factories import choice_question, essay_question, option_id


async def _enroll(db, course, email, first):
    user = models.User(email=email, first_name=first, last_name="Learner", role=models.UserRole.STUDENT)
    db.add(user)
    await db.flush()
    db.add(models.Enrollment(course_id=course.id, student_id=user.id, status=models.EnrollmentStatus.APPROVED))
    await db.flush()
    return user


async def _take(db, test, user, picks):
    service = AttemptService(db)
    view = await service.start_attempt(user.id, test.id)
    answers = [
        SubmitAnswerItem(question_id=question.id, selected_option_ids=[option_id(question, label)])
        for question, label in picks
    ]
    return await service.submit_attempt(user.id, view.attempt_id, answers)


@pytest.mark.asyncio
async def test_summary_over_graded_attempts(db_session, make_test, course, student, teacher):
    q1 = choice_question(order=1, points="1")
    q2 = choice_question(order=2, points="1")
    q3 = choice_question(order=3, points="1")
    test = await make_test(q1, q2, q3, max_attempts=0, passing_score=Decimal("60"))
    second = await _enroll(db_session, course, "ann@example.com", "Ann")

    await _take(db_session, test, student, [(q1, "A"), (q2, "A"), (q3, "A")])  # 100.00
    await _take(db_session, test, student, [(q1, "A")])                        # 33.33
    await _take(db_session, test, second, [(q1, "A"), (q2, "A")])              # 66.67
    # Still running, not counted
    await AttemptService(db_session).start_attempt(second.id, test.id)

    summary = await TestAnalyticsService(db_session).get_test_summary(teacher.id, test.id)

    assert summary.test_title == "Capitals quiz"
    assert summary.total_attempts == 3
    assert summary.unique_students == 2
    assert summary.graded_attempts == 3
    assert summary.average_score == Decimal("66.67")
    assert summary.highest_score == Decimal("100.00")
    assert summary.lowest_score == Decimal("33.33")
    assert summary.passed_count == 2
    assert summary.failed_count == 1
    assert summary.pass_rate == Decimal("66.67")


@pytest.mark.asyncio
async def test_summary_is_all_zero_without_graded_attempts(db_session, make_test, student, teacher):
    test = await make_test(essay_question())
    await _take(db_session, test, student, [])

    summary = await TestAnalyticsService(db_session).get_test_summary(teacher.id, test.id)

    assert summary.total_attempts == 1
    assert summary.unique_students == 1
    assert summary.graded_attempts == 0
    assert summary.average_score == Decimal("0")
    assert summary.highest_score == Decimal("0")
    assert summary.lowest_score == Decimal("0")
    assert summary.pass_rate == Decimal("0")


@pytest.mark.asyncio
async def test_summary_requires_course_teacher(db_session, make_test, student):
    test = await make_test(choice_question())
    with pytest.raises(UnauthorizedError):
        await TestAnalyticsService(db_session).get_test_summary(student.id, test.id)


@pytest.mark.asyncio
async def test_summary_of_missing_test(db_session, teacher):
    import uuid

    with pytest.raises(NotFoundError):
        await TestAnalyticsService(db_session).get_test_summary(teacher.id, uuid.uuid4())
