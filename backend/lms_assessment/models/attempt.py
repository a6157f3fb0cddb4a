"""
LMS Assessment Engine - Attempt Models
Test attempts and the per-question answers recorded within them
"""
import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lms_assessment.core.database import Base, str_enum

if TYPE_CHECKING:
    from lms_assessment.models.test import Question, Test
    from lms_assessment.models.user import User


# Partial-index predicate for the single running attempt per (test, student)
IN_PROGRESS_PREDICATE = text("status = 'in_progress'")


class AttemptStatus(str, Enum):
    """
    Attempt lifecycle.
    
    in_progress -> submitted -> graded, or in_progress -> timed_out.
    graded and timed_out are terminal.
    """
    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"
    GRADED = "graded"
    TIMED_OUT = "timed_out"


class TestAttempt(Base):
    """One student's sitting of a test."""
    
    __tablename__ = "test_attempts"
    __test__ = False  # not a pytest class
    __table_args__ = (
        # At most one in-progress attempt per (test, student)
        Index(
            "uq_test_attempts_in_progress",
            "test_id",
            "student_id",
            unique=True,
            sqlite_where=IN_PROGRESS_PREDICATE,
            postgresql_where=IN_PROGRESS_PREDICATE,
        ),
    )
    
    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), 
        primary_key=True, 
        default=uuid.uuid4
    )
    test_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("tests.id"), index=True
    )
    student_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), index=True
    )
    attempt_number: Mapped[int] = mapped_column(Integer)
    status: Mapped[AttemptStatus] = mapped_column(
        str_enum(AttemptStatus, length=20),
        default=AttemptStatus.IN_PROGRESS,
    )
    
    # Timing
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    graded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    
    # Totals (null until computable)
    score: Mapped[Decimal | None] = mapped_column(Numeric(7, 2), nullable=True)
    max_score: Mapped[Decimal | None] = mapped_column(Numeric(7, 2), nullable=True)
    percentage: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    passed: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    
    feedback: Mapped[str | None] = mapped_column(Text, nullable=True)
    graded_by_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=True
    )
    
    # Presentation order fixed at start, replayed on resume
    # question_order: [question_id, ...]; option_order: {question_id: [option_id, ...]}
    question_order: Mapped[list[str]] = mapped_column(JSON, default=list)
    option_order: Mapped[dict[str, list[str]]] = mapped_column(JSON, default=dict)
    
    test: Mapped["Test"] = relationship("Test", back_populates="attempts")
    student: Mapped["User"] = relationship("User", foreign_keys=[student_id])
    graded_by: Mapped["User | None"] = relationship("User", foreign_keys=[graded_by_id])
    answers: Mapped[list["StudentAnswer"]] = relationship(
        "StudentAnswer",
        back_populates="attempt",
        cascade="all, delete-orphan",
    )
    
    def __repr__(self) -> str:
        return f"<TestAttempt #{self.attempt_number} {self.status}>"


class StudentAnswer(Base):
    """The answer recorded for one question within one attempt."""
    
    __tablename__ = "student_answers"
    __table_args__ = (
        UniqueConstraint(
            "test_attempt_id", "question_id", name="uq_student_answers_attempt_question"
        ),
    )
    
    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), 
        primary_key=True, 
        default=uuid.uuid4
    )
    test_attempt_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("test_attempts.id", ondelete="CASCADE"), index=True
    )
    question_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("questions.id")
    )
    
    # Option ids as strings
    selected_option_ids: Mapped[list[str]] = mapped_column(JSON, default=list)
    text_answer: Mapped[str | None] = mapped_column(Text, nullable=True)
    
    # Null means "not graded yet"
    points_earned: Mapped[Decimal | None] = mapped_column(Numeric(6, 2), nullable=True)
    is_correct: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    feedback: Mapped[str | None] = mapped_column(Text, nullable=True)
    
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    
    attempt: Mapped["TestAttempt"] = relationship("TestAttempt", back_populates="answers")
    question: Mapped["Question"] = relationship("Question")
