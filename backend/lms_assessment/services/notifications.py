"""
LMS Assessment Engine - Notifications
Best-effort outbound notices for test publication and grading
"""
import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from collections.abc import Awaitable
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from lms_assessment.core.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TestPublishedNotice:
    """Sent to every approved student of the course."""
    __test__ = False  # not a pytest class
    
    course_id: uuid.UUID
    test_id: uuid.UUID
    test_title: str
    student_ids: tuple[uuid.UUID, ...]
    available_until: datetime | None = None


@dataclass(frozen=True)
class TestGradedNotice:
    """Sent to the student once an attempt reaches its final grade."""
    __test__ = False  # not a pytest class
    
    student_id: uuid.UUID
    test_id: uuid.UUID
    test_title: str
    attempt_id: uuid.UUID
    score: Decimal | None
    max_score: Decimal | None
    percentage: Decimal | None
    passed: bool | None


class Notifier(ABC):
    """Delivery channel for assessment notices."""
    
    @abstractmethod
    async def test_published(self, notice: TestPublishedNotice) -> None:
        ...
    
    @abstractmethod
    async def test_graded(self, notice: TestGradedNotice) -> None:
        ...


class NullNotifier(Notifier):
    """Drops every notice."""
    
    async def test_published(self, notice: TestPublishedNotice) -> None:
        return None
    
    async def test_graded(self, notice: TestGradedNotice) -> None:
        return None


class LoggingNotifier(Notifier):
    """Writes notices to the application log."""
    
    async def test_published(self, notice: TestPublishedNotice) -> None:
        logger.info(
            "Test '%s' (%s) published to %d students of course %s",
            notice.test_title,
            notice.test_id,
            len(notice.student_ids),
            notice.course_id,
        )
    
    async def test_graded(self, notice: TestGradedNotice) -> None:
        logger.info(
            "Attempt %s of test '%s' graded for student %s: %s/%s (%s%%) passed=%s",
            notice.attempt_id,
            notice.test_title,
            notice.student_id,
            notice.score,
            notice.max_score,
            notice.percentage,
            notice.passed,
        )


async def dispatch_notification(
    send: Awaitable[None],
    *,
    timeout: float | None = None,
) -> bool:
    """
    Await a notifier call without letting it fail or stall the caller.
    
    Returns True when the notice was delivered.
    """
    try:
        await asyncio.wait_for(send, timeout=timeout or settings.NOTIFY_TIMEOUT_SECONDS)
        return True
    except Exception:
        # TimeoutError included; the grade or publish has already been applied
        logger.warning("Notification delivery failed (non-critical)", exc_info=True)
        return False


def get_notifier() -> Notifier:
    """Notifier selected by NOTIFIER_BACKEND."""
    if settings.NOTIFIER_BACKEND == "log":
        return LoggingNotifier()
    return NullNotifier()
