"""
LMS Assessment Engine - Result Service
Builds attempt views and decides what a viewer may see in them
"""
import uuid

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from lms_assessment.core.timeutil import ensure_timezone_aware
from lms_assessment.models.attempt import AttemptStatus, TestAttempt
from lms_assessment.models.test import Question, Test
from lms_assessment.schemas.attempt import AnswerReview, AttemptResult, OptionReview
from lms_assessment.services.access import CourseAccess
from lms_assessment.services.attempts import expire_overdue_attempts
from lms_assessment.services.exceptions import (
    BadRequestError,
    NotFoundError,
    UnauthorizedError,
)

FINISHED_STATUSES = (AttemptStatus.SUBMITTED, AttemptStatus.GRADED)


def results_visible_to_student(test: Test, attempt: TestAttempt) -> bool:
    """A submitted attempt stays hidden until graded when immediate results are off."""
    return test.show_results_immediately or attempt.status != AttemptStatus.SUBMITTED


def answers_disclosed(test: Test, attempt: TestAttempt, is_teacher: bool) -> bool:
    """Whether correct options, accepted answers and explanations are shown."""
    if is_teacher:
        return True
    return test.show_correct_answers and attempt.status in FINISHED_STATUSES


class ResultService:
    """Service for reading attempt results."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.access = CourseAccess(db)

    def _attempt_query(self):
        return select(TestAttempt).options(
            selectinload(TestAttempt.test)
            .selectinload(Test.questions)
            .selectinload(Question.answer_options),
            selectinload(TestAttempt.answers),
            selectinload(TestAttempt.student),
            selectinload(TestAttempt.graded_by),
        ).execution_options(populate_existing=True)

    async def _load_attempt(self, attempt_id: uuid.UUID) -> TestAttempt:
        result = await self.db.execute(
            self._attempt_query().where(TestAttempt.id == attempt_id)
        )
        attempt = result.scalar_one_or_none()
        if not attempt:
            raise NotFoundError("Attempt not found")
        return attempt

    async def get_attempt_result(
        self,
        attempt_id: uuid.UUID,
        viewer_id: uuid.UUID,
        allow_pending: bool = False,
    ) -> AttemptResult:
        """
        Get an attempt as its student or the course teacher may see it.

        Args:
            attempt_id: Attempt to show
            viewer_id: Requesting user
            allow_pending: Return the bare attempt header instead of failing
                when the results are still withheld from the student

        Raises:
            NotFoundError: If the attempt does not exist
            UnauthorizedError: If the viewer is neither its student nor the teacher
            BadRequestError: If the results are not available to the student yet
        """
        attempt = await self._load_attempt(attempt_id)
        is_teacher = await self.access.is_teacher(attempt.test.course_id, viewer_id)

        if not is_teacher and attempt.student_id != viewer_id:
            raise UnauthorizedError("You do not have access to this attempt")

        if not is_teacher and not results_visible_to_student(attempt.test, attempt):
            if allow_pending:
                return self.build_result(attempt, is_teacher=False, withheld=True)
            raise BadRequestError("Results for this attempt are not available yet")

        return self.build_result(attempt, is_teacher=is_teacher)

    async def get_my_attempts(
        self, student_id: uuid.UUID, test_id: uuid.UUID | None = None
    ) -> list[AttemptResult]:
        """A student's own attempts, newest first. Withheld results show as headers."""
        query = self._attempt_query().where(TestAttempt.student_id == student_id)
        if test_id is not None:
            query = query.where(TestAttempt.test_id == test_id)
        result = await self.db.execute(query.order_by(TestAttempt.started_at.desc()))

        return [
            self.build_result(
                attempt,
                is_teacher=False,
                withheld=not results_visible_to_student(attempt.test, attempt),
            )
            for attempt in result.scalars().all()
        ]

    async def get_test_attempts(
        self, teacher_id: uuid.UUID, test_id: uuid.UUID
    ) -> list[AttemptResult]:
        """
        All attempts of a test for its teacher, most recent activity first.

        Overdue running attempts are timed out before listing.
        """
        test = await self.db.get(Test, test_id)
        if not test or not test.is_active:
            raise NotFoundError("Test not found")
        if not await self.access.is_teacher(test.course_id, teacher_id):
            raise UnauthorizedError("You can only view attempts of your own tests")

        await expire_overdue_attempts(self.db, test.id)

        result = await self.db.execute(
            self._attempt_query()
            .where(TestAttempt.test_id == test.id)
            .order_by(
                func.coalesce(TestAttempt.submitted_at, TestAttempt.started_at).desc()
            )
        )
        return [
            self.build_result(attempt, is_teacher=True)
            for attempt in result.scalars().all()
        ]

    @staticmethod
    def build_result(
        attempt: TestAttempt,
        is_teacher: bool,
        withheld: bool = False,
    ) -> AttemptResult:
        test = attempt.test
        result = AttemptResult(
            id=attempt.id,
            test_id=test.id,
            test_title=test.title,
            student_id=attempt.student_id,
            student_name=attempt.student.full_name if attempt.student else "",
            attempt_number=attempt.attempt_number,
            status=attempt.status,
            started_at=ensure_timezone_aware(attempt.started_at),
            submitted_at=ensure_timezone_aware(attempt.submitted_at),
            graded_at=ensure_timezone_aware(attempt.graded_at),
            expires_at=ensure_timezone_aware(attempt.expires_at),
            results_available=not withheld,
        )
        if withheld:
            return result

        result.score = attempt.score
        result.max_score = attempt.max_score
        result.percentage = attempt.percentage
        result.passed = attempt.passed
        result.feedback = attempt.feedback
        result.graded_by_name = attempt.graded_by.full_name if attempt.graded_by else None

        disclose = answers_disclosed(test, attempt, is_teacher)
        questions = {q.id: q for q in test.questions}
        position = {qid: index for index, qid in enumerate(attempt.question_order or [])}

        answers = [a for a in attempt.answers if a.question_id in questions]
        answers.sort(
            key=lambda a: (
                position.get(str(a.question_id), len(position)),
                questions[a.question_id].order_index,
            )
        )

        for answer in answers:
            question = questions[answer.question_id]
            options = {str(o.id): o for o in question.answer_options}
            order = (attempt.option_order or {}).get(str(question.id), list(options))
            result.answers.append(
                AnswerReview(
                    id=answer.id,
                    question_id=question.id,
                    question_text=question.question_text,
                    type=question.type,
                    points=question.points,
                    selected_option_ids=answer.selected_option_ids or [],
                    text_answer=answer.text_answer,
                    points_earned=answer.points_earned,
                    is_correct=answer.is_correct,
                    feedback=answer.feedback,
                    answer_options=[
                        OptionReview(
                            id=options[oid].id,
                            option_text=options[oid].option_text,
                            is_correct=options[oid].is_correct if disclose else None,
                        )
                        for oid in order
                        if oid in options
                    ],
                    correct_short_answer=question.correct_short_answer if disclose else None,
                    explanation=question.explanation if disclose else None,
                )
            )
        return result
