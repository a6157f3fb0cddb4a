"""
LMS Assessment Engine - Test Models
Tests, their questions and answer options (the question bank)
"""
import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lms_assessment.core.database import Base, str_enum

if TYPE_CHECKING:
    from lms_assessment.models.attempt import TestAttempt


class TestStatus(str, Enum):
    """Test lifecycle: draft -> published -> closed."""
    DRAFT = "draft"
    PUBLISHED = "published"
    CLOSED = "closed"


class QuestionType(str, Enum):
    MULTIPLE_CHOICE = "multiple_choice"
    MULTIPLE_SELECT = "multiple_select"
    TRUE_FALSE = "true_false"
    SHORT_ANSWER = "short_answer"
    ESSAY = "essay"


class Test(Base):
    """
    A timed, gradable test attached to a course.
    
    time_limit_minutes and max_attempts use 0 for "unlimited".
    passing_score is a percentage in [0, 100].
    """
    __tablename__ = "tests"
    __test__ = False  # not a pytest class
    
    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), 
        primary_key=True, 
        default=uuid.uuid4
    )
    course_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("courses.id"), index=True
    )
    created_by_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id")
    )
    
    title: Mapped[str] = mapped_column(String(200))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    instructions: Mapped[str | None] = mapped_column(Text, nullable=True)
    
    # Rules
    time_limit_minutes: Mapped[int] = mapped_column(Integer, default=60)
    max_attempts: Mapped[int] = mapped_column(Integer, default=1)
    passing_score: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("50"))
    shuffle_questions: Mapped[bool] = mapped_column(Boolean, default=False)
    shuffle_answers: Mapped[bool] = mapped_column(Boolean, default=False)
    show_results_immediately: Mapped[bool] = mapped_column(Boolean, default=True)
    show_correct_answers: Mapped[bool] = mapped_column(Boolean, default=True)
    
    # Availability window
    available_from: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    available_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    
    status: Mapped[TestStatus] = mapped_column(str_enum(TestStatus), default=TestStatus.DRAFT)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), 
        server_default=func.now()
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), 
        nullable=True,
        onupdate=func.now()
    )
    
    # Relationships
    questions: Mapped[list["Question"]] = relationship(
        "Question",
        back_populates="test",
        order_by="Question.order_index",
        cascade="all, delete-orphan",
    )
    attempts: Mapped[list["TestAttempt"]] = relationship(
        "TestAttempt",
        back_populates="test",
    )
    
    @property
    def active_questions(self) -> list["Question"]:
        return [q for q in self.questions if q.is_active]
    
    def __repr__(self) -> str:
        return f"<Test {self.title} ({self.status})>"


class Question(Base):
    """A question within a test. Its type decides how the answer key is read."""
    
    __tablename__ = "questions"
    
    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), 
        primary_key=True, 
        default=uuid.uuid4
    )
    test_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("tests.id", ondelete="CASCADE"), index=True
    )
    
    question_text: Mapped[str] = mapped_column(Text)
    explanation: Mapped[str | None] = mapped_column(Text, nullable=True)
    type: Mapped[QuestionType] = mapped_column(str_enum(QuestionType))
    points: Mapped[Decimal] = mapped_column(Numeric(6, 2), default=Decimal("1"))
    order_index: Mapped[int] = mapped_column(Integer, default=0)
    
    # ShortAnswer key: comma-delimited acceptable answers
    correct_short_answer: Mapped[str | None] = mapped_column(Text, nullable=True)
    case_sensitive: Mapped[bool] = mapped_column(Boolean, default=False)
    
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    
    test: Mapped["Test"] = relationship("Test", back_populates="questions")
    answer_options: Mapped[list["AnswerOption"]] = relationship(
        "AnswerOption",
        back_populates="question",
        order_by="AnswerOption.order_index",
        cascade="all, delete-orphan",
    )
    
    def __repr__(self) -> str:
        return f"<Question {self.type} points={self.points}>"


class AnswerOption(Base):
    """A selectable option of a choice-type question."""
    
    __tablename__ = "answer_options"
    
    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), 
        primary_key=True, 
        default=uuid.uuid4
    )
    question_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("questions.id", ondelete="CASCADE"), index=True
    )
    option_text: Mapped[str] = mapped_column(Text)
    is_correct: Mapped[bool] = mapped_column(Boolean, default=False)
    order_index: Mapped[int] = mapped_column(Integer, default=0)
    
    question: Mapped["Question"] = relationship("Question", back_populates="answer_options")
