"""
LMS Assessment Engine - Question Bank Service
Authoring of tests and questions, and the draft -> published -> closed lifecycle

Scoring-relevant parts of a test (which questions exist, their type, points
and answer keys) can only change while the test is a draft. Wording,
explanations and ordering stay editable after publishing, so attempts that
are already running keep being graded against the key they were shown.
"""
import logging
import uuid
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from lms_assessment.core.timeutil import ensure_timezone_aware, utc_now
from lms_assessment.models.attempt import AttemptStatus, TestAttempt
from lms_assessment.models.test import AnswerOption, Question, QuestionType, Test, TestStatus
from lms_assessment.schemas.test import (
    AnswerOptionCreate,
    QuestionCreate,
    QuestionResponse,
    QuestionUpdate,
    TestCreate,
    TestListItem,
    TestResponse,
    TestUpdate,
)
from lms_assessment.services.access import CourseAccess
from lms_assessment.services.exceptions import (
    BadRequestError,
    NotFoundError,
    UnauthorizedError,
)
from lms_assessment.services.grading import parse_acceptable_answers
from lms_assessment.services.notifications import (
    NullNotifier,
    Notifier,
    TestPublishedNotice,
    dispatch_notification,
)

logger = logging.getLogger(__name__)

CHOICE_TYPES = (
    QuestionType.MULTIPLE_CHOICE,
    QuestionType.MULTIPLE_SELECT,
    QuestionType.TRUE_FALSE,
)
SINGLE_ANSWER_TYPES = (QuestionType.MULTIPLE_CHOICE, QuestionType.TRUE_FALSE)


def validate_question_key(
    question_type: QuestionType,
    options: list[AnswerOptionCreate],
    correct_short_answer: str | None,
) -> None:
    """
    Check that a question's answer key is gradable.

    Raises:
        BadRequestError: If the key does not fit the question type
    """
    if question_type in CHOICE_TYPES:
        if not options:
            raise BadRequestError(f"{question_type.value} questions must have answer options")
        if any(not option.option_text.strip() for option in options):
            raise BadRequestError("All answer options must have text")
        correct = sum(1 for option in options if option.is_correct)
        if correct == 0:
            raise BadRequestError("At least one answer option must be marked as correct")
        if question_type in SINGLE_ANSWER_TYPES and correct != 1:
            raise BadRequestError(
                f"{question_type.value} questions must have exactly one correct option"
            )
        return

    if options:
        raise BadRequestError(f"{question_type.value} questions do not take answer options")

    if question_type == QuestionType.SHORT_ANSWER and not parse_acceptable_answers(
        correct_short_answer
    ):
        raise BadRequestError("Short answer questions must have at least one acceptable answer")


def _build_options(options: list[AnswerOptionCreate]) -> list[AnswerOption]:
    return [
        AnswerOption(
            option_text=option.option_text.strip(),
            is_correct=option.is_correct,
            order_index=option.order_index if option.order_index is not None else index,
        )
        for index, option in enumerate(options, start=1)
    ]


class QuestionBankService:
    """Service for authoring tests and their questions."""

    def __init__(self, db: AsyncSession, notifier: Notifier | None = None):
        self.db = db
        self.access = CourseAccess(db)
        self.notifier = notifier or NullNotifier()

    # ------------------------------------------------------------------
    # Loading and ownership
    # ------------------------------------------------------------------

    async def get_active_test(self, test_id: uuid.UUID) -> Test:
        """Load a non-deleted test with its questions and options."""
        result = await self.db.execute(
            select(Test)
            .where(Test.id == test_id, Test.is_active.is_(True))
            .options(selectinload(Test.questions).selectinload(Question.answer_options))
            .execution_options(populate_existing=True)
        )
        test = result.scalar_one_or_none()
        if not test:
            raise NotFoundError("Test not found")
        return test

    async def _get_owned_test(self, test_id: uuid.UUID, teacher_id: uuid.UUID) -> Test:
        test = await self.get_active_test(test_id)
        if not await self.access.is_teacher(test.course_id, teacher_id):
            raise UnauthorizedError("You can only manage tests of your own courses")
        return test

    async def _get_owned_question(
        self, question_id: uuid.UUID, teacher_id: uuid.UUID
    ) -> tuple[Test, Question]:
        result = await self.db.execute(
            select(Question.test_id).where(
                Question.id == question_id, Question.is_active.is_(True)
            )
        )
        test_id = result.scalar_one_or_none()
        if test_id is None:
            raise NotFoundError("Question not found")

        test = await self._get_owned_test(test_id, teacher_id)
        question = next((q for q in test.questions if q.id == question_id), None)
        if question is None:
            raise NotFoundError("Question not found")
        return test, question

    @staticmethod
    def _require_draft(test: Test, action: str) -> None:
        if test.status != TestStatus.DRAFT:
            raise BadRequestError(f"Cannot {action} once the test has been published")

    # ------------------------------------------------------------------
    # Tests
    # ------------------------------------------------------------------

    async def create_test(self, teacher_id: uuid.UUID, data: TestCreate) -> Test:
        """
        Create a draft test, optionally with its questions.

        Raises:
            NotFoundError: If the course does not exist
            UnauthorizedError: If the caller does not teach the course
            BadRequestError: If a question key is invalid
        """
        course = await self.access.get_course(data.course_id)
        if not course:
            raise NotFoundError("Course not found")
        if course.teacher_id != teacher_id:
            raise UnauthorizedError("You can only create tests for your own courses")

        for question in data.questions:
            validate_question_key(
                question.type, question.answer_options, question.correct_short_answer
            )

        test = Test(
            course_id=data.course_id,
            created_by_id=teacher_id,
            title=data.title.strip(),
            description=data.description,
            instructions=data.instructions,
            time_limit_minutes=data.time_limit_minutes,
            max_attempts=data.max_attempts,
            passing_score=data.passing_score,
            shuffle_questions=data.shuffle_questions,
            shuffle_answers=data.shuffle_answers,
            show_results_immediately=data.show_results_immediately,
            show_correct_answers=data.show_correct_answers,
            available_from=data.available_from,
            available_until=data.available_until,
            status=TestStatus.DRAFT,
            questions=[
                self._build_question(question, position)
                for position, question in enumerate(data.questions, start=1)
            ],
        )
        self.db.add(test)
        await self.db.flush()

        logger.info("Test %s created for course %s", test.id, test.course_id)
        return await self.get_active_test(test.id)

    async def update_test(
        self, test_id: uuid.UUID, teacher_id: uuid.UUID, data: TestUpdate
    ) -> Test:
        """Update a test's settings. Status changes go through publish/close."""
        test = await self._get_owned_test(test_id, teacher_id)

        nullable = {"description", "instructions", "available_from", "available_until"}
        for field, value in data.model_dump(exclude_unset=True).items():
            if value is None and field not in nullable:
                continue
            if field == "title":
                value = value.strip()
            setattr(test, field, value)

        available_from = ensure_timezone_aware(test.available_from)
        available_until = ensure_timezone_aware(test.available_until)
        if available_from and available_until and available_until <= available_from:
            raise BadRequestError("available_until must be after available_from")

        test.updated_at = utc_now()
        await self.db.flush()
        return await self.get_active_test(test.id)

    async def delete_test(self, test_id: uuid.UUID, teacher_id: uuid.UUID) -> None:
        """Soft-delete a test. Its attempts stay on record."""
        test = await self._get_owned_test(test_id, teacher_id)
        test.is_active = False
        test.updated_at = utc_now()
        await self.db.flush()
        logger.info("Test %s deleted", test_id)

    async def publish_test(self, test_id: uuid.UUID, teacher_id: uuid.UUID) -> Test:
        """
        Publish a draft test and notify the course's students.

        Raises:
            BadRequestError: If the test is not a draft or has no questions
        """
        test = await self._get_owned_test(test_id, teacher_id)
        if test.status != TestStatus.DRAFT:
            raise BadRequestError("Only draft tests can be published")
        if not test.active_questions:
            raise BadRequestError("Cannot publish a test without questions")

        test.status = TestStatus.PUBLISHED
        test.updated_at = utc_now()
        await self.db.flush()
        logger.info("Test %s published", test.id)

        student_ids = await self.access.approved_student_ids(test.course_id)
        await dispatch_notification(
            self.notifier.test_published(
                TestPublishedNotice(
                    course_id=test.course_id,
                    test_id=test.id,
                    test_title=test.title,
                    student_ids=tuple(student_ids),
                    available_until=test.available_until,
                )
            )
        )
        return test

    async def close_test(self, test_id: uuid.UUID, teacher_id: uuid.UUID) -> Test:
        """Close a test to new attempts."""
        test = await self._get_owned_test(test_id, teacher_id)
        if test.status == TestStatus.CLOSED:
            raise BadRequestError("Test is already closed")

        test.status = TestStatus.CLOSED
        test.updated_at = utc_now()
        await self.db.flush()
        logger.info("Test %s closed", test.id)
        return test

    async def get_test(self, test_id: uuid.UUID, user_id: uuid.UUID) -> TestResponse:
        """
        Get a test for its teacher (with questions and keys) or for an
        approved student (header and own attempt stats only).
        """
        test = await self.get_active_test(test_id)

        if await self.access.is_teacher(test.course_id, user_id):
            return self.to_response(test, include_questions=True)

        if not await self.access.is_approved_student(test.course_id, user_id):
            raise UnauthorizedError("You do not have access to this test")
        if test.status == TestStatus.DRAFT:
            raise NotFoundError("Test not found")

        response = self.to_response(test, include_questions=False)

        result = await self.db.execute(
            select(TestAttempt.status, TestAttempt.percentage, TestAttempt.passed).where(
                TestAttempt.test_id == test.id,
                TestAttempt.student_id == user_id,
            )
        )
        rows = result.all()
        finished = [
            row for row in rows
            if row.status in (AttemptStatus.SUBMITTED, AttemptStatus.GRADED)
        ]
        scores = [row.percentage for row in finished if row.percentage is not None]

        # Same count the attempt limit applies: the running attempt is excluded
        response.attempts_used = sum(
            1 for row in rows if row.status != AttemptStatus.IN_PROGRESS
        )
        response.best_score = max(scores) if scores else None
        response.has_passed = any(row.passed for row in finished)
        return response

    async def get_course_tests(
        self, course_id: uuid.UUID, user_id: uuid.UUID
    ) -> list[TestListItem]:
        """List a course's tests. Students only see published ones."""
        course = await self.access.get_course(course_id)
        if not course:
            raise NotFoundError("Course not found")

        query = (
            select(Test)
            .where(Test.course_id == course_id, Test.is_active.is_(True))
            .options(selectinload(Test.questions))
            .order_by(Test.created_at.desc())
        )
        if course.teacher_id != user_id:
            if not await self.access.is_approved_student(course_id, user_id):
                raise UnauthorizedError("You do not have access to this course")
            query = query.where(Test.status == TestStatus.PUBLISHED)

        result = await self.db.execute(query)
        items = []
        for test in result.scalars().all():
            questions = test.active_questions
            items.append(
                TestListItem(
                    id=test.id,
                    title=test.title,
                    status=test.status,
                    time_limit_minutes=test.time_limit_minutes,
                    max_attempts=test.max_attempts,
                    available_from=test.available_from,
                    available_until=test.available_until,
                    question_count=len(questions),
                    total_points=sum((q.points for q in questions), Decimal("0")),
                )
            )
        return items

    # ------------------------------------------------------------------
    # Questions
    # ------------------------------------------------------------------

    @staticmethod
    def _build_question(data: QuestionCreate, position: int) -> Question:
        return Question(
            question_text=data.question_text.strip(),
            explanation=data.explanation,
            type=data.type,
            points=data.points,
            order_index=data.order_index if data.order_index is not None else position,
            correct_short_answer=(
                data.correct_short_answer.strip()
                if data.type == QuestionType.SHORT_ANSWER and data.correct_short_answer
                else None
            ),
            case_sensitive=data.case_sensitive,
            answer_options=_build_options(data.answer_options),
        )

    async def add_question(
        self, test_id: uuid.UUID, teacher_id: uuid.UUID, data: QuestionCreate
    ) -> Question:
        """Add a question to a draft test."""
        test = await self._get_owned_test(test_id, teacher_id)
        self._require_draft(test, "add questions")
        validate_question_key(data.type, data.answer_options, data.correct_short_answer)

        result = await self.db.execute(
            select(func.max(Question.order_index)).where(Question.test_id == test.id)
        )
        position = (result.scalar() or 0) + 1

        question = self._build_question(data, position)
        question.test_id = test.id
        self.db.add(question)
        await self.db.flush()
        return question

    async def update_question(
        self, question_id: uuid.UUID, teacher_id: uuid.UUID, data: QuestionUpdate
    ) -> Question:
        """
        Update a question.

        Text, explanation and order can change at any time; the answer key
        (type, points, options, acceptable answers, case flag) only while
        the test is a draft.
        """
        test, question = await self._get_owned_question(question_id, teacher_id)
        changes = data.model_dump(exclude_unset=True)

        key_fields = {"type", "points", "correct_short_answer", "case_sensitive", "answer_options"}
        if key_fields & changes.keys():
            self._require_draft(test, "change a question's answer key")

        question_type = data.type or question.type
        if "answer_options" in changes:
            options = data.answer_options or []
        else:
            options = [
                AnswerOptionCreate(
                    option_text=o.option_text, is_correct=o.is_correct, order_index=o.order_index
                )
                for o in question.answer_options
            ]
        short_answer = changes.get("correct_short_answer", question.correct_short_answer)
        if key_fields & changes.keys():
            validate_question_key(question_type, options, short_answer)

        if changes.get("question_text"):
            question.question_text = data.question_text.strip()
        if "explanation" in changes:
            question.explanation = data.explanation
        if changes.get("order_index") is not None:
            question.order_index = data.order_index
        if data.type is not None:
            question.type = data.type
        if data.points is not None:
            question.points = data.points
        if data.case_sensitive is not None:
            question.case_sensitive = data.case_sensitive
        if "correct_short_answer" in changes or "type" in changes:
            question.correct_short_answer = (
                short_answer.strip()
                if question_type == QuestionType.SHORT_ANSWER and short_answer
                else None
            )
        if "answer_options" in changes:
            question.answer_options = _build_options(options)

        await self.db.flush()
        return question

    async def delete_question(self, question_id: uuid.UUID, teacher_id: uuid.UUID) -> None:
        """Soft-delete a question of a draft test."""
        test, question = await self._get_owned_question(question_id, teacher_id)
        self._require_draft(test, "delete questions")
        question.is_active = False
        await self.db.flush()

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    @staticmethod
    def to_response(test: Test, include_questions: bool) -> TestResponse:
        questions = test.active_questions
        return TestResponse(
            id=test.id,
            course_id=test.course_id,
            title=test.title,
            description=test.description,
            instructions=test.instructions,
            time_limit_minutes=test.time_limit_minutes,
            max_attempts=test.max_attempts,
            passing_score=test.passing_score,
            shuffle_questions=test.shuffle_questions,
            shuffle_answers=test.shuffle_answers,
            show_results_immediately=test.show_results_immediately,
            show_correct_answers=test.show_correct_answers,
            available_from=test.available_from,
            available_until=test.available_until,
            status=test.status,
            created_at=test.created_at,
            question_count=len(questions),
            total_points=sum((q.points for q in questions), Decimal("0")),
            questions=(
                [QuestionResponse.model_validate(q) for q in questions]
                if include_questions
                else None
            ),
        )
