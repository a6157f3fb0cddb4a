"""
LMS Assessment Engine - Result Visibility Tests
"""
from datetime import timedelta
from decimal import Decimal

import pytest

from lms_assessment import models
from lms_assessment.core.timeutil import utc_now
from lms_assessment.schemas.attempt import GradeAnswerItem, SubmitAnswerItem
from lms_assessment.services.attempts import AttemptService
from lms_assessment.services.exceptions import BadRequestError, UnauthorizedError
from lms_assessment.services.manual_grading import ManualGradingService
from lms_assessment.services.results import ResultService
from tests.factories import (
    choice_question,
    essay_question,
    option_id,
    short_answer_question,
)


async def _take(db, test, student, answers=()):
    service = AttemptService(db)
    view = await service.start_attempt(student.id, test.id)
    return await service.submit_attempt(student.id, view.attempt_id, list(answers))


@pytest.mark.asyncio
async def test_student_sees_correct_answers_after_submit(db_session, make_test, student):
    mc = choice_question(explanation="A is first")
    short = short_answer_question(order=2)
    test = await make_test(mc, short)
    attempt = await _take(
        db_session,
        test,
        student,
        [SubmitAnswerItem(question_id=mc.id, selected_option_ids=[option_id(mc, "B")])],
    )

    result = await ResultService(db_session).get_attempt_result(attempt.id, student.id)

    assert result.results_available is True
    assert result.student_name == "Sam Student"
    assert result.test_title == "Capitals quiz"
    mc_review, short_review = result.answers
    assert mc_review.points_earned == Decimal("0")
    assert mc_review.explanation == "A is first"
    assert {o.option_text: o.is_correct for o in mc_review.answer_options} == {
        "A": True, "B": False, "C": False, "D": False,
    }
    assert short_review.correct_short_answer == "Paris"


@pytest.mark.asyncio
async def test_correct_answers_hidden_when_disclosure_is_off(db_session, make_test, student):
    mc = choice_question(explanation="A is first")
    short = short_answer_question(order=2)
    test = await make_test(mc, short, show_correct_answers=False)
    attempt = await _take(db_session, test, student)

    result = await ResultService(db_session).get_attempt_result(attempt.id, student.id)

    assert result.score == Decimal("0")
    for answer in result.answers:
        assert answer.explanation is None
        assert answer.correct_short_answer is None
        assert all(option.is_correct is None for option in answer.answer_options)


@pytest.mark.asyncio
async def test_withheld_results_are_not_available_to_student(db_session, make_test, student, teacher):
    test = await make_test(choice_question(), essay_question(order=2), show_results_immediately=False)
    attempt = await _take(db_session, test, student)
    assert attempt.status == models.AttemptStatus.SUBMITTED

    with pytest.raises(BadRequestError, match="not available yet"):
        await ResultService(db_session).get_attempt_result(attempt.id, student.id)

    # The teacher always sees everything
    teacher_view = await ResultService(db_session).get_attempt_result(attempt.id, teacher.id)
    assert teacher_view.results_available is True
    assert len(teacher_view.answers) == 2
    assert any(o.is_correct for o in teacher_view.answers[0].answer_options)


@pytest.mark.asyncio
async def test_withheld_results_become_visible_once_graded(db_session, make_test, student, teacher):
    essay = essay_question()
    test = await make_test(essay, show_results_immediately=False)
    attempt = await _take(db_session, test, student)
    answer_id = (await ResultService(db_session).get_attempt_result(attempt.id, teacher.id)).answers[0].id

    await ManualGradingService(db_session).grade_attempt(
        teacher.id, attempt.id, [GradeAnswerItem(student_answer_id=answer_id, points_earned=Decimal("4"))]
    )

    result = await ResultService(db_session).get_attempt_result(attempt.id, student.id)
    assert result.status == models.AttemptStatus.GRADED
    assert result.percentage == Decimal("80.00")
    assert result.graded_by_name == "Tina Teacher"


@pytest.mark.asyncio
async def test_submit_view_is_header_only_when_withheld(db_session, make_test, student):
    test = await make_test(essay_question(), show_results_immediately=False)
    attempt = await _take(db_session, test, student)

    result = await ResultService(db_session).get_attempt_result(
        attempt.id, student.id, allow_pending=True
    )
    assert result.results_available is False
    assert result.status == models.AttemptStatus.SUBMITTED
    assert result.answers == []
    assert result.score is None


@pytest.mark.asyncio
async def test_other_student_cannot_view_attempt(db_session, make_test, student, other_student):
    test = await make_test(choice_question())
    attempt = await _take(db_session, test, student)

    with pytest.raises(UnauthorizedError):
        await ResultService(db_session).get_attempt_result(attempt.id, other_student.id)


@pytest.mark.asyncio
async def test_in_progress_attempt_does_not_disclose_keys(db_session, make_test, student):
    test = await make_test(choice_question())
    view = await AttemptService(db_session).start_attempt(student.id, test.id)

    result = await ResultService(db_session).get_attempt_result(view.attempt_id, student.id)
    assert result.status == models.AttemptStatus.IN_PROGRESS
    assert result.answers == []
    assert result.score is None


@pytest.mark.asyncio
async def test_my_attempts_lists_newest_first_with_withheld_headers(db_session, make_test, student):
    open_test = await make_test(choice_question(), title="Open results")
    closed_test = await make_test(
        choice_question(), essay_question(order=2), title="Withheld results", show_results_immediately=False
    )
    await _take(db_session, open_test, student)
    await _take(db_session, closed_test, student)

    attempts = await ResultService(db_session).get_my_attempts(student.id)
    assert [a.test_title for a in attempts] == ["Withheld results", "Open results"]
    assert attempts[0].results_available is False
    assert attempts[1].results_available is True

    filtered = await ResultService(db_session).get_my_attempts(student.id, open_test.id)
    assert [a.test_title for a in filtered] == ["Open results"]


@pytest.mark.asyncio
async def test_test_attempts_sweeps_overdue_and_is_teacher_only(db_session, make_test, student, teacher):
    test = await make_test(choice_question())
    view = await AttemptService(db_session).start_attempt(student.id, test.id)
    attempt = await db_session.get(models.TestAttempt, view.attempt_id)
    attempt.expires_at = utc_now() - timedelta(minutes=5)
    await db_session.flush()

    with pytest.raises(UnauthorizedError):
        await ResultService(db_session).get_test_attempts(student.id, test.id)

    [listed] = await ResultService(db_session).get_test_attempts(teacher.id, test.id)
    assert listed.id == view.attempt_id
    assert listed.status == models.AttemptStatus.TIMED_OUT
