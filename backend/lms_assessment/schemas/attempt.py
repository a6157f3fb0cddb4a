"""
LMS Assessment Engine - Attempt Schemas
Pydantic schemas for taking tests, results, grading and summaries
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from lms_assessment.models.attempt import AttemptStatus
from lms_assessment.models.test import QuestionType


# ============================================================================
# Taking a test (never carries correctness data)
# ============================================================================

class OptionForTaking(BaseModel):
    id: UUID
    option_text: str


class QuestionForTaking(BaseModel):
    id: UUID
    question_text: str
    type: QuestionType
    points: Decimal
    answer_options: list[OptionForTaking] = []
    # Previously saved answer, present on resume
    selected_option_ids: list[UUID] = []
    text_answer: Optional[str] = None


class AttemptSession(BaseModel):
    """An attempt opened for taking, with questions in presentation order."""
    attempt_id: UUID
    test_id: UUID
    title: str
    instructions: Optional[str] = None
    attempt_number: int
    started_at: datetime
    expires_at: Optional[datetime] = None
    time_limit_minutes: int
    resumed: bool = False
    questions: list[QuestionForTaking]


class SaveAnswerRequest(BaseModel):
    attempt_id: UUID
    question_id: UUID
    selected_option_ids: list[UUID] = []
    text_answer: Optional[str] = Field(default=None, max_length=10000)


class SavedAnswer(BaseModel):
    attempt_id: UUID
    question_id: UUID
    saved_at: datetime


class SubmitAnswerItem(BaseModel):
    question_id: UUID
    selected_option_ids: list[UUID] = []
    text_answer: Optional[str] = Field(default=None, max_length=10000)


class SubmitAttemptRequest(BaseModel):
    attempt_id: UUID
    answers: list[SubmitAnswerItem] = []


# ============================================================================
# Results
# ============================================================================

class OptionReview(BaseModel):
    id: UUID
    option_text: str
    # Only present when correct answers are disclosed
    is_correct: Optional[bool] = None


class AnswerReview(BaseModel):
    id: UUID
    question_id: UUID
    question_text: str
    type: QuestionType
    points: Decimal
    selected_option_ids: list[UUID] = []
    text_answer: Optional[str] = None
    points_earned: Optional[Decimal] = None
    is_correct: Optional[bool] = None
    feedback: Optional[str] = None
    answer_options: list[OptionReview] = []
    # Disclosure-gated key data
    correct_short_answer: Optional[str] = None
    explanation: Optional[str] = None


class AttemptResult(BaseModel):
    """
    An attempt as seen by its student or the course teacher.

    answers is empty and totals are absent when results_available is False.
    """
    id: UUID
    test_id: UUID
    test_title: str
    student_id: UUID
    student_name: str
    attempt_number: int
    status: AttemptStatus
    started_at: datetime
    submitted_at: Optional[datetime] = None
    graded_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    score: Optional[Decimal] = None
    max_score: Optional[Decimal] = None
    percentage: Optional[Decimal] = None
    passed: Optional[bool] = None
    feedback: Optional[str] = None
    graded_by_name: Optional[str] = None
    results_available: bool = True
    answers: list[AnswerReview] = []


# ============================================================================
# Grading and analytics
# ============================================================================

class GradeAnswerItem(BaseModel):
    student_answer_id: UUID
    points_earned: Decimal = Field(..., max_digits=6, decimal_places=2)
    feedback: Optional[str] = Field(default=None, max_length=1000)


class GradeAttemptRequest(BaseModel):
    attempt_id: UUID
    feedback: Optional[str] = Field(default=None, max_length=2000)
    grades: list[GradeAnswerItem] = []


class TestSummary(BaseModel):
    """Aggregate statistics over a test's completed attempts."""
    __test__ = False  # not a pytest class

    test_id: UUID
    test_title: str
    total_attempts: int
    unique_students: int
    graded_attempts: int
    average_score: Decimal
    highest_score: Decimal
    lowest_score: Decimal
    passed_count: int
    failed_count: int
    pass_rate: Decimal
