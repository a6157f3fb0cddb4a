"""LMS Assessment Engine - Database Models."""
from lms_assessment.models.user import User, UserRole
from lms_assessment.models.course import Course, Enrollment, EnrollmentStatus
from lms_assessment.models.test import AnswerOption, Question, QuestionType, Test, TestStatus
from lms_assessment.models.attempt import AttemptStatus, StudentAnswer, TestAttempt

__all__ = [
    "User",
    "UserRole",
    "Course",
    "Enrollment",
    "EnrollmentStatus",
    "Test",
    "TestStatus",
    "Question",
    "QuestionType",
    "AnswerOption",
    "TestAttempt",
    "AttemptStatus",
    "StudentAnswer",
]
