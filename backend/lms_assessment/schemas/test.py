"""
LMS Assessment Engine - Test Schemas
Pydantic schemas for authoring tests and questions
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from lms_assessment.models.test import QuestionType, TestStatus


# ============================================================================
# Requests
# ============================================================================

class AnswerOptionCreate(BaseModel):
    option_text: str = Field(..., max_length=1000)
    is_correct: bool = False
    order_index: Optional[int] = Field(default=None, ge=0)


class QuestionCreate(BaseModel):
    """A question with its answer key."""
    question_text: str = Field(..., min_length=1)
    explanation: Optional[str] = None
    type: QuestionType
    points: Decimal = Field(default=Decimal("1"), gt=0, max_digits=6, decimal_places=2)
    order_index: Optional[int] = Field(default=None, ge=0)
    correct_short_answer: Optional[str] = Field(default=None, max_length=2000)
    case_sensitive: bool = False
    answer_options: list[AnswerOptionCreate] = []


class QuestionUpdate(BaseModel):
    """Partial update. answer_options, when given, replaces the whole set."""
    question_text: Optional[str] = Field(default=None, min_length=1)
    explanation: Optional[str] = None
    type: Optional[QuestionType] = None
    points: Optional[Decimal] = Field(default=None, gt=0, max_digits=6, decimal_places=2)
    order_index: Optional[int] = Field(default=None, ge=0)
    correct_short_answer: Optional[str] = Field(default=None, max_length=2000)
    case_sensitive: Optional[bool] = None
    answer_options: Optional[list[AnswerOptionCreate]] = None


class _TestRules(BaseModel):
    time_limit_minutes: int = Field(default=60, ge=0)
    max_attempts: int = Field(default=1, ge=0)
    passing_score: Decimal = Field(default=Decimal("50"), ge=0, le=100, decimal_places=2)
    shuffle_questions: bool = False
    shuffle_answers: bool = False
    show_results_immediately: bool = True
    show_correct_answers: bool = True
    available_from: Optional[datetime] = None
    available_until: Optional[datetime] = None

    @model_validator(mode="after")
    def check_window(self):
        if (
            self.available_from is not None
            and self.available_until is not None
            and self.available_until <= self.available_from
        ):
            raise ValueError("available_until must be after available_from")
        return self


class TestCreate(_TestRules):
    __test__ = False  # not a pytest class

    course_id: UUID
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    instructions: Optional[str] = None
    questions: list[QuestionCreate] = []


class TestUpdate(BaseModel):
    """Partial update of a test's settings."""
    __test__ = False  # not a pytest class

    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    instructions: Optional[str] = None
    time_limit_minutes: Optional[int] = Field(default=None, ge=0)
    max_attempts: Optional[int] = Field(default=None, ge=0)
    passing_score: Optional[Decimal] = Field(default=None, ge=0, le=100, decimal_places=2)
    shuffle_questions: Optional[bool] = None
    shuffle_answers: Optional[bool] = None
    show_results_immediately: Optional[bool] = None
    show_correct_answers: Optional[bool] = None
    available_from: Optional[datetime] = None
    available_until: Optional[datetime] = None


# ============================================================================
# Responses
# ============================================================================

class AnswerOptionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    option_text: str
    is_correct: bool
    order_index: int


class QuestionResponse(BaseModel):
    """Full question including its key. Teacher view only."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    question_text: str
    explanation: Optional[str] = None
    type: QuestionType
    points: Decimal
    order_index: int
    correct_short_answer: Optional[str] = None
    case_sensitive: bool
    answer_options: list[AnswerOptionResponse] = []


class TestResponse(BaseModel):
    """
    A test as seen by its teacher or an enrolled student.

    questions is populated for the teacher only. attempts_used, best_score
    and has_passed are populated for students.
    """
    __test__ = False  # not a pytest class
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    course_id: UUID
    title: str
    description: Optional[str] = None
    instructions: Optional[str] = None
    time_limit_minutes: int
    max_attempts: int
    passing_score: Decimal
    shuffle_questions: bool
    shuffle_answers: bool
    show_results_immediately: bool
    show_correct_answers: bool
    available_from: Optional[datetime] = None
    available_until: Optional[datetime] = None
    status: TestStatus
    created_at: Optional[datetime] = None
    question_count: int = 0
    total_points: Decimal = Decimal("0")
    questions: Optional[list[QuestionResponse]] = None

    attempts_used: Optional[int] = None
    best_score: Optional[Decimal] = None
    has_passed: Optional[bool] = None


class TestListItem(BaseModel):
    __test__ = False  # not a pytest class

    id: UUID
    title: str
    status: TestStatus
    time_limit_minutes: int
    max_attempts: int
    available_from: Optional[datetime] = None
    available_until: Optional[datetime] = None
    question_count: int
    total_points: Decimal
