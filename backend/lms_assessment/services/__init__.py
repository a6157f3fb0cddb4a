"""LMS Assessment Engine - Services initialization."""
from lms_assessment.services.exceptions import (
    AssessmentError,
    BadRequestError,
    NotFoundError,
    UnauthorizedError,
)
from lms_assessment.services.analytics import TestAnalyticsService
from lms_assessment.services.attempts import AttemptService, expire_overdue_attempts
from lms_assessment.services.manual_grading import ManualGradingService
from lms_assessment.services.notifications import (
    LoggingNotifier,
    Notifier,
    NullNotifier,
    get_notifier,
)
from lms_assessment.services.question_bank import QuestionBankService
from lms_assessment.services.results import ResultService

__all__ = [
    "AssessmentError",
    "BadRequestError",
    "NotFoundError",
    "UnauthorizedError",
    "AttemptService",
    "expire_overdue_attempts",
    "ManualGradingService",
    "QuestionBankService",
    "ResultService",
    "TestAnalyticsService",
    "Notifier",
    "NullNotifier",
    "LoggingNotifier",
    "get_notifier",
]
