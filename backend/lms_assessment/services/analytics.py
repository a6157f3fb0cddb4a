"""
LMS Assessment Engine - Test Analytics Service
Summary statistics over a test's completed attempts for its teacher
"""
import uuid
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lms_assessment.models.attempt import AttemptStatus, TestAttempt
from lms_assessment.models.test import Test
from lms_assessment.schemas.attempt import TestSummary
from lms_assessment.services.access import CourseAccess
from lms_assessment.services.exceptions import NotFoundError, UnauthorizedError
from lms_assessment.services.grading import HUNDRED, ZERO, round_half_even


class TestAnalyticsService:
    """Service for aggregating attempt results of a test."""
    __test__ = False  # not a pytest class

    def __init__(self, db: AsyncSession):
        self.db = db
        self.access = CourseAccess(db)

    async def get_test_summary(self, teacher_id: uuid.UUID, test_id: uuid.UUID) -> TestSummary:
        """
        Summarize submitted and graded attempts of a test.

        Score statistics only count attempts that have a percentage; all of
        them are zero when no attempt is fully graded.
        """
        test = await self.db.get(Test, test_id)
        if not test or not test.is_active:
            raise NotFoundError("Test not found")
        if not await self.access.is_teacher(test.course_id, teacher_id):
            raise UnauthorizedError("You can only view summaries for your own tests")

        result = await self.db.execute(
            select(TestAttempt.student_id, TestAttempt.percentage, TestAttempt.passed).where(
                TestAttempt.test_id == test.id,
                TestAttempt.status.in_([AttemptStatus.SUBMITTED, AttemptStatus.GRADED]),
            )
        )
        attempts = result.all()
        graded = [row for row in attempts if row.percentage is not None]
        percentages = [Decimal(row.percentage) for row in graded]
        passed_count = sum(1 for row in graded if row.passed is True)
        failed_count = sum(1 for row in graded if row.passed is False)

        if graded:
            average = round_half_even(sum(percentages, ZERO) / len(percentages))
            pass_rate = round_half_even(Decimal(passed_count) / len(graded) * HUNDRED)
        else:
            average = pass_rate = ZERO

        return TestSummary(
            test_id=test.id,
            test_title=test.title,
            total_attempts=len(attempts),
            unique_students=len({row.student_id for row in attempts}),
            graded_attempts=len(graded),
            average_score=average,
            highest_score=max(percentages, default=ZERO),
            lowest_score=min(percentages, default=ZERO),
            passed_count=passed_count,
            failed_count=failed_count,
            pass_rate=pass_rate,
        )
