"""
LMS Assessment Engine - Question Bank Tests
"""
import uuid
from datetime import timedelta
from decimal import Decimal

import pytest

from lms_assessment import models
from lms_assessment.core.timeutil import utc_now
from lms_assessment.schemas.test import (
    AnswerOptionCreate,
    QuestionCreate,
    QuestionUpdate,
    TestCreate,
    TestUpdate,
)
from lms_assessment.services.exceptions import (
    BadRequestError,
    NotFoundError,
    UnauthorizedError,
)
from lms_assessment.services.attempts import AttemptService
from lms_assessment.services.notifications import NullNotifier
from lms_assessment.services.question_bank import QuestionBankService
from tests.factories import choice_question, essay_question


def mc_payload(**overrides) -> QuestionCreate:
    data = {
        "question_text": "Capital of Italy?",
        "type": models.QuestionType.MULTIPLE_CHOICE,
        "points": Decimal("2"),
        "answer_options": [
            AnswerOptionCreate(option_text="Rome", is_correct=True),
            AnswerOptionCreate(option_text="Milan"),
        ],
    }
    data.update(overrides)
    return QuestionCreate(**data)


class RecordingNotifier(NullNotifier):
    def __init__(self):
        self.published = []

    async def test_published(self, notice):
        self.published.append(notice)


@pytest.mark.asyncio
async def test_create_test_with_questions(db_session, course, teacher):
    data = TestCreate(
        course_id=course.id,
        title="  Europe  ",
        questions=[
            mc_payload(),
            QuestionCreate(
                question_text="Capital of Spain?",
                type=models.QuestionType.SHORT_ANSWER,
                correct_short_answer=" Madrid ",
            ),
        ],
    )

    test = await QuestionBankService(db_session).create_test(teacher.id, data)

    assert test.title == "Europe"
    assert test.status == models.TestStatus.DRAFT
    assert test.time_limit_minutes == 60
    assert test.max_attempts == 1
    assert test.passing_score == Decimal("50")
    assert [q.order_index for q in test.questions] == [1, 2]
    assert test.questions[1].correct_short_answer == "Madrid"
    assert [o.option_text for o in test.questions[0].answer_options] == ["Rome", "Milan"]


@pytest.mark.asyncio
async def test_create_test_requires_course_teacher(db_session, course, student):
    with pytest.raises(UnauthorizedError):
        await QuestionBankService(db_session).create_test(
            student.id, TestCreate(course_id=course.id, title="Sneaky")
        )
    with pytest.raises(NotFoundError):
        await QuestionBankService(db_session).create_test(
            student.id, TestCreate(course_id=uuid.uuid4(), title="Nowhere")
        )


@pytest.mark.parametrize(
    "payload, message",
    [
        (mc_payload(answer_options=[]), "must have answer options"),
        (
            mc_payload(answer_options=[AnswerOptionCreate(option_text="Rome")]),
            "At least one answer option must be marked as correct",
        ),
        (
            mc_payload(
                answer_options=[
                    AnswerOptionCreate(option_text="Rome", is_correct=True),
                    AnswerOptionCreate(option_text="  ", is_correct=False),
                ]
            ),
            "must have text",
        ),
        (
            mc_payload(
                answer_options=[
                    AnswerOptionCreate(option_text="Rome", is_correct=True),
                    AnswerOptionCreate(option_text="Roma", is_correct=True),
                ]
            ),
            "exactly one correct option",
        ),
        (
            QuestionCreate(
                question_text="Capital?",
                type=models.QuestionType.SHORT_ANSWER,
                correct_short_answer=" , ",
            ),
            "at least one acceptable answer",
        ),
        (
            QuestionCreate(
                question_text="Discuss",
                type=models.QuestionType.ESSAY,
                answer_options=[AnswerOptionCreate(option_text="x", is_correct=True)],
            ),
            "do not take answer options",
        ),
    ],
)
@pytest.mark.asyncio
async def test_invalid_question_keys_are_rejected(db_session, course, teacher, payload, message):
    with pytest.raises(BadRequestError, match=message):
        await QuestionBankService(db_session).create_test(
            teacher.id, TestCreate(course_id=course.id, title="Bad", questions=[payload])
        )


@pytest.mark.asyncio
async def test_multiple_select_accepts_several_correct_options(db_session, course, teacher):
    payload = mc_payload(
        type=models.QuestionType.MULTIPLE_SELECT,
        answer_options=[
            AnswerOptionCreate(option_text="Rome", is_correct=True),
            AnswerOptionCreate(option_text="Paris", is_correct=True),
            AnswerOptionCreate(option_text="Sydney"),
        ],
    )
    test = await QuestionBankService(db_session).create_test(
        teacher.id, TestCreate(course_id=course.id, title="Capitals", questions=[payload])
    )
    assert len(test.questions[0].answer_options) == 3


@pytest.mark.asyncio
async def test_publish_requires_questions(db_session, make_test, teacher):
    empty = await make_test(status=models.TestStatus.DRAFT)
    with pytest.raises(BadRequestError, match="without questions"):
        await QuestionBankService(db_session).publish_test(empty.id, teacher.id)


@pytest.mark.asyncio
async def test_publish_notifies_enrolled_students(db_session, make_test, teacher, student):
    test = await make_test(choice_question(), status=models.TestStatus.DRAFT)
    notifier = RecordingNotifier()

    published = await QuestionBankService(db_session, notifier).publish_test(test.id, teacher.id)

    assert published.status == models.TestStatus.PUBLISHED
    [notice] = notifier.published
    assert notice.student_ids == (student.id,)
    assert notice.test_id == test.id


@pytest.mark.asyncio
async def test_publish_survives_broken_notifier(db_session, make_test, teacher):
    class BrokenNotifier(NullNotifier):
        async def test_published(self, notice):
            raise ConnectionError("push service unreachable")

    test = await make_test(choice_question(), status=models.TestStatus.DRAFT)
    published = await QuestionBankService(db_session, BrokenNotifier()).publish_test(
        test.id, teacher.id
    )
    assert published.status == models.TestStatus.PUBLISHED


@pytest.mark.asyncio
async def test_publish_and_close_transitions(db_session, make_test, teacher):
    test = await make_test(choice_question())
    service = QuestionBankService(db_session)

    with pytest.raises(BadRequestError, match="Only draft tests"):
        await service.publish_test(test.id, teacher.id)

    closed = await service.close_test(test.id, teacher.id)
    assert closed.status == models.TestStatus.CLOSED
    with pytest.raises(BadRequestError, match="already closed"):
        await service.close_test(test.id, teacher.id)


@pytest.mark.asyncio
async def test_only_owner_manages_test(db_session, make_test, student):
    test = await make_test(choice_question(), status=models.TestStatus.DRAFT)
    service = QuestionBankService(db_session)

    with pytest.raises(UnauthorizedError):
        await service.publish_test(test.id, student.id)
    with pytest.raises(UnauthorizedError):
        await service.update_test(test.id, student.id, TestUpdate(title="Mine now"))
    with pytest.raises(UnauthorizedError):
        await service.add_question(test.id, student.id, mc_payload())


@pytest.mark.asyncio
async def test_update_test_settings(db_session, make_test, teacher):
    test = await make_test(choice_question())
    updated = await QuestionBankService(db_session).update_test(
        test.id,
        teacher.id,
        TestUpdate(title="Renamed", time_limit_minutes=0, description=None, max_attempts=None),
    )
    assert updated.title == "Renamed"
    assert updated.time_limit_minutes == 0
    assert updated.max_attempts == 1


@pytest.mark.asyncio
async def test_update_test_rejects_inverted_window(db_session, make_test, teacher):
    test = await make_test(choice_question(), available_until=utc_now() + timedelta(days=1))
    with pytest.raises(BadRequestError, match="available_until"):
        await QuestionBankService(db_session).update_test(
            test.id, teacher.id, TestUpdate(available_from=utc_now() + timedelta(days=2))
        )


@pytest.mark.asyncio
async def test_deleted_test_is_not_found(db_session, make_test, teacher, student):
    test = await make_test(choice_question())
    service = QuestionBankService(db_session)
    await service.delete_test(test.id, teacher.id)

    with pytest.raises(NotFoundError):
        await service.get_test(test.id, student.id)
    assert await service.get_course_tests(test.course_id, teacher.id) == []


@pytest.mark.asyncio
async def test_question_crud_on_draft(db_session, make_test, teacher):
    test = await make_test(choice_question(), status=models.TestStatus.DRAFT)
    service = QuestionBankService(db_session)

    added = await service.add_question(test.id, teacher.id, mc_payload())
    assert added.order_index == 2

    updated = await service.update_question(
        added.id,
        teacher.id,
        QuestionUpdate(
            points=Decimal("3"),
            answer_options=[
                AnswerOptionCreate(option_text="Rome", is_correct=True),
                AnswerOptionCreate(option_text="Turin"),
                AnswerOptionCreate(option_text="Naples"),
            ],
        ),
    )
    assert updated.points == Decimal("3")
    assert [o.option_text for o in updated.answer_options] == ["Rome", "Turin", "Naples"]

    await service.delete_question(added.id, teacher.id)
    with pytest.raises(NotFoundError):
        await service.update_question(added.id, teacher.id, QuestionUpdate(question_text="Gone"))


@pytest.mark.asyncio
async def test_changing_type_revalidates_key(db_session, make_test, teacher):
    question = essay_question()
    await make_test(question, status=models.TestStatus.DRAFT)

    with pytest.raises(BadRequestError, match="at least one acceptable answer"):
        await QuestionBankService(db_session).update_question(
            question.id, teacher.id, QuestionUpdate(type=models.QuestionType.SHORT_ANSWER)
        )


@pytest.mark.asyncio
async def test_answer_key_is_frozen_after_publish(db_session, make_test, teacher):
    question = choice_question()
    test = await make_test(question)
    service = QuestionBankService(db_session)

    with pytest.raises(BadRequestError, match="once the test has been published"):
        await service.update_question(question.id, teacher.id, QuestionUpdate(points=Decimal("9")))
    with pytest.raises(BadRequestError, match="once the test has been published"):
        await service.add_question(test.id, teacher.id, mc_payload())
    with pytest.raises(BadRequestError, match="once the test has been published"):
        await service.delete_question(question.id, teacher.id)

    reworded = await service.update_question(
        question.id,
        teacher.id,
        QuestionUpdate(question_text="Pick the first letter", explanation="A comes first"),
    )
    assert reworded.question_text == "Pick the first letter"
    assert reworded.explanation == "A comes first"


@pytest.mark.asyncio
async def test_teacher_and_student_views_of_test(db_session, make_test, teacher, student, other_student):
    test = await make_test(choice_question(), essay_question(order=2))
    service = QuestionBankService(db_session)

    teacher_view = await service.get_test(test.id, teacher.id)
    assert teacher_view.question_count == 2
    assert teacher_view.total_points == Decimal("7")
    assert teacher_view.questions[0].answer_options[0].is_correct is True

    student_view = await service.get_test(test.id, student.id)
    assert student_view.questions is None
    assert student_view.attempts_used == 0
    assert student_view.best_score is None
    assert student_view.has_passed is False

    with pytest.raises(UnauthorizedError):
        await service.get_test(test.id, other_student.id)


@pytest.mark.asyncio
async def test_students_only_list_published_tests(db_session, make_test, course, teacher, student):
    await make_test(choice_question(), title="Live")
    await make_test(choice_question(), title="Draft", status=models.TestStatus.DRAFT)
    service = QuestionBankService(db_session)

    assert {t.title for t in await service.get_course_tests(course.id, teacher.id)} == {"Live", "Draft"}
    assert [t.title for t in await service.get_course_tests(course.id, student.id)] == ["Live"]


@pytest.mark.asyncio
async def test_explicit_option_order_starting_at_zero_is_kept(db_session, course, teacher):
    payload = mc_payload(
        answer_options=[
            AnswerOptionCreate(option_text="Milan", order_index=1),
            AnswerOptionCreate(option_text="Rome", is_correct=True, order_index=0),
        ]
    )
    test = await QuestionBankService(db_session).create_test(
        teacher.id, TestCreate(course_id=course.id, title="Italy", questions=[payload])
    )

    stored = sorted((o.order_index, o.option_text) for o in test.questions[0].answer_options)
    assert stored == [(0, "Rome"), (1, "Milan")]


@pytest.mark.asyncio
async def test_attempts_used_excludes_running_attempt(db_session, make_test, student):
    test = await make_test(choice_question(), max_attempts=2)
    attempts = AttemptService(db_session)
    service = QuestionBankService(db_session)

    view = await attempts.start_attempt(student.id, test.id)
    assert (await service.get_test(test.id, student.id)).attempts_used == 0

    await attempts.submit_attempt(student.id, view.attempt_id, [])
    assert (await service.get_test(test.id, student.id)).attempts_used == 1

    await attempts.start_attempt(student.id, test.id)
    assert (await service.get_test(test.id, student.id)).attempts_used == 1
