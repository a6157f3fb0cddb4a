"""
LMS Assessment Engine - Course Access
Answers who teaches a course and who is an approved student of it
"""
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lms_assessment.models.course import Course, Enrollment, EnrollmentStatus


class CourseAccess:
    """Read-only relationship checks against the membership tables."""
    
    def __init__(self, db: AsyncSession):
        self.db = db
    
    async def get_course(self, course_id: uuid.UUID) -> Course | None:
        return await self.db.get(Course, course_id)
    
    async def is_teacher(self, course_id: uuid.UUID, user_id: uuid.UUID) -> bool:
        result = await self.db.execute(
            select(Course.id).where(Course.id == course_id, Course.teacher_id == user_id)
        )
        return result.scalar_one_or_none() is not None
    
    async def is_approved_student(self, course_id: uuid.UUID, user_id: uuid.UUID) -> bool:
        result = await self.db.execute(
            select(Enrollment.id).where(
                Enrollment.course_id == course_id,
                Enrollment.student_id == user_id,
                Enrollment.status == EnrollmentStatus.APPROVED,
            )
        )
        return result.scalar_one_or_none() is not None
    
    async def approved_student_ids(self, course_id: uuid.UUID) -> list[uuid.UUID]:
        result = await self.db.execute(
            select(Enrollment.student_id).where(
                Enrollment.course_id == course_id,
                Enrollment.status == EnrollmentStatus.APPROVED,
            )
        )
        return list(result.scalars().all())
