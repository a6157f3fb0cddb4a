"""
LMS Assessment Engine - Manual Grading Service
Merges teacher-assigned points into a submitted attempt and re-totals it
"""
import logging
import uuid
from collections.abc import Callable
from datetime import datetime
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from lms_assessment.core.timeutil import utc_now
from lms_assessment.models.attempt import AttemptStatus, StudentAnswer, TestAttempt
from lms_assessment.models.test import Question, Test
from lms_assessment.schemas.attempt import GradeAnswerItem
from lms_assessment.services.access import CourseAccess
from lms_assessment.services.exceptions import (
    BadRequestError,
    NotFoundError,
    UnauthorizedError,
)
from lms_assessment.services.grading import ZERO, compute_totals, round_half_even
from lms_assessment.services.notifications import (
    NullNotifier,
    Notifier,
    TestGradedNotice,
    dispatch_notification,
)

logger = logging.getLogger(__name__)


def clamp_points(points: Decimal, maximum: Decimal) -> Decimal:
    return round_half_even(min(max(Decimal(points), ZERO), Decimal(maximum)))


class ManualGradingService:
    """Service for teacher grading of submitted attempts."""

    def __init__(
        self,
        db: AsyncSession,
        notifier: Notifier | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db = db
        self.access = CourseAccess(db)
        self.notifier = notifier or NullNotifier()
        self.clock = clock

    async def grade_attempt(
        self,
        teacher_id: uuid.UUID,
        attempt_id: uuid.UUID,
        grades: list[GradeAnswerItem],
        feedback: str | None = None,
    ) -> TestAttempt:
        """
        Apply manual grades and recompute the attempt from all of its answers.

        The attempt becomes Graded once no answer is left without points;
        otherwise it stays Submitted with the grades applied so far.

        Raises:
            NotFoundError: If the attempt or a graded answer does not exist
            UnauthorizedError: If the caller does not teach the test's course
            BadRequestError: If the attempt is not awaiting grading, or an
                answer belongs to another attempt
        """
        result = await self.db.execute(
            select(TestAttempt)
            .where(TestAttempt.id == attempt_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        attempt = result.scalar_one_or_none()
        if not attempt:
            raise NotFoundError("Attempt not found")

        test_result = await self.db.execute(
            select(Test)
            .where(Test.id == attempt.test_id)
            .options(selectinload(Test.questions).selectinload(Question.answer_options))
        )
        test = test_result.scalar_one()
        if not await self.access.is_teacher(test.course_id, teacher_id):
            raise UnauthorizedError("You can only grade attempts of your own tests")

        if attempt.status != AttemptStatus.SUBMITTED:
            raise BadRequestError(
                f"Only submitted attempts can be graded (attempt is {attempt.status.value})"
            )

        answers_result = await self.db.execute(
            select(StudentAnswer)
            .where(StudentAnswer.test_attempt_id == attempt.id)
            .execution_options(populate_existing=True)
        )
        answers = {a.id: a for a in answers_result.scalars().all()}
        questions = {q.id: q for q in test.questions}

        for grade in grades:
            answer = answers.get(grade.student_answer_id)
            if answer is None:
                exists = await self.db.get(StudentAnswer, grade.student_answer_id)
                if exists is None:
                    raise NotFoundError("Answer not found")
                raise BadRequestError("Answer does not belong to this attempt")

            question = questions[answer.question_id]
            points = clamp_points(grade.points_earned, question.points)
            answer.points_earned = points
            answer.is_correct = points == Decimal(question.points)
            answer.feedback = grade.feedback

        # Full recomputation over every scored question
        active = [q for q in test.questions if q.is_active]
        by_question = {a.question_id: a for a in answers.values()}
        totals = compute_totals(
            (
                (q.points, by_question[q.id].points_earned if q.id in by_question else ZERO)
                for q in active
            ),
            test.passing_score,
        )

        attempt.score = totals.score
        attempt.max_score = totals.max_score
        attempt.percentage = totals.percentage
        attempt.passed = totals.passed
        if feedback is not None:
            attempt.feedback = feedback
        await self.db.flush()

        if totals.needs_manual_grading:
            logger.info("Attempt %s partially graded, essays still pending", attempt.id)
            return attempt

        now = self.clock()
        result = await self.db.execute(
            update(TestAttempt)
            .where(TestAttempt.id == attempt.id, TestAttempt.status == AttemptStatus.SUBMITTED)
            .values(status=AttemptStatus.GRADED, graded_by_id=teacher_id, graded_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise BadRequestError("This attempt has already been graded")
        await self.db.refresh(attempt)

        logger.info(
            "Attempt %s graded by %s: %s%% passed=%s",
            attempt.id,
            teacher_id,
            attempt.percentage,
            attempt.passed,
        )
        await dispatch_notification(
            self.notifier.test_graded(
                TestGradedNotice(
                    student_id=attempt.student_id,
                    test_id=test.id,
                    test_title=test.title,
                    attempt_id=attempt.id,
                    score=attempt.score,
                    max_score=attempt.max_score,
                    percentage=attempt.percentage,
                    passed=attempt.passed,
                )
            )
        )
        return attempt
