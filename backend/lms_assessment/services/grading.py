"""
LMS Assessment Engine - Grading Engine
Pure scoring of answers against question keys, and attempt totals.

Every question type carries its own key variant, so a scorer only ever sees
the data that type needs. Nothing here touches the database.
"""
from dataclasses import dataclass, field
from decimal import ROUND_HALF_EVEN, Decimal
from typing import Iterable, Union

from lms_assessment.models.test import Question, QuestionType

CENT = Decimal("0.01")
ZERO = Decimal("0")
HUNDRED = Decimal("100")


def round_half_even(value: Decimal) -> Decimal:
    """Round to two decimal places, ties to even."""
    return value.quantize(CENT, rounding=ROUND_HALF_EVEN)


# ============================================================================
# Answer keys
# ============================================================================

@dataclass(frozen=True)
class SingleChoiceKey:
    """MultipleChoice and TrueFalse: exactly one correct option."""
    points: Decimal
    correct_option_id: str


@dataclass(frozen=True)
class MultiSelectKey:
    """MultipleSelect: any non-empty set of correct options."""
    points: Decimal
    correct_option_ids: frozenset[str]

    def __post_init__(self):
        assert self.correct_option_ids, "multiple select key needs a correct option"


@dataclass(frozen=True)
class ShortAnswerKey:
    points: Decimal
    acceptable: tuple[str, ...]
    case_sensitive: bool = False


@dataclass(frozen=True)
class EssayKey:
    points: Decimal


QuestionKey = Union[SingleChoiceKey, MultiSelectKey, ShortAnswerKey, EssayKey]


def parse_acceptable_answers(raw: str | None) -> tuple[str, ...]:
    """Split a comma-delimited key into trimmed, non-empty answers."""
    if not raw:
        return ()
    return tuple(part.strip() for part in raw.split(",") if part.strip())


def build_key(question: Question) -> QuestionKey:
    """Build the answer key for a question from its stored definition."""
    points = Decimal(question.points)
    correct = [str(o.id) for o in question.answer_options if o.is_correct]

    if question.type in (QuestionType.MULTIPLE_CHOICE, QuestionType.TRUE_FALSE):
        assert len(correct) == 1, f"question {question.id} must have one correct option"
        return SingleChoiceKey(points=points, correct_option_id=correct[0])
    if question.type == QuestionType.MULTIPLE_SELECT:
        return MultiSelectKey(points=points, correct_option_ids=frozenset(correct))
    if question.type == QuestionType.SHORT_ANSWER:
        return ShortAnswerKey(
            points=points,
            acceptable=parse_acceptable_answers(question.correct_short_answer),
            case_sensitive=question.case_sensitive,
        )
    if question.type == QuestionType.ESSAY:
        return EssayKey(points=points)
    raise TypeError(f"Unknown question type: {question.type!r}")


# ============================================================================
# Scoring
# ============================================================================

@dataclass(frozen=True)
class AnswerInput:
    """What the student submitted for one question."""
    selected_option_ids: frozenset[str] = field(default_factory=frozenset)
    text_answer: str | None = None


@dataclass(frozen=True)
class AnswerScore:
    """
    Result of scoring one answer.

    points_earned is None when the answer waits for a teacher.
    """
    points_earned: Decimal | None
    is_correct: bool | None

    @property
    def needs_manual_grading(self) -> bool:
        return self.points_earned is None


def _full_or_nothing(points: Decimal, correct: bool) -> AnswerScore:
    return AnswerScore(points_earned=points if correct else ZERO, is_correct=correct)


def score_answer(key: QuestionKey, answer: AnswerInput | None) -> AnswerScore:
    """
    Score one answer against its key.

    An unanswered auto-gradable question scores zero. Essays are never
    scored here.
    """
    answer = answer or AnswerInput()

    if isinstance(key, SingleChoiceKey):
        selected = answer.selected_option_ids
        correct = len(selected) == 1 and key.correct_option_id in selected
        return _full_or_nothing(key.points, correct)

    if isinstance(key, MultiSelectKey):
        selected = answer.selected_option_ids
        if selected == key.correct_option_ids:
            return AnswerScore(points_earned=key.points, is_correct=True)
        # Partial credit: right picks minus wrong picks, floored at zero
        right = len(selected & key.correct_option_ids)
        wrong = len(selected - key.correct_option_ids)
        total = len(key.correct_option_ids)
        earned = key.points * right / total - key.points * wrong / total
        return AnswerScore(points_earned=round_half_even(max(ZERO, earned)), is_correct=False)

    if isinstance(key, ShortAnswerKey):
        given = (answer.text_answer or "").strip()
        if not given:
            return _full_or_nothing(key.points, False)
        if key.case_sensitive:
            correct = given in key.acceptable
        else:
            folded = given.casefold()
            correct = any(folded == a.casefold() for a in key.acceptable)
        return _full_or_nothing(key.points, correct)

    if isinstance(key, EssayKey):
        return AnswerScore(points_earned=None, is_correct=None)

    raise TypeError(f"Unsupported answer key: {type(key).__name__}")


# ============================================================================
# Totals
# ============================================================================

@dataclass(frozen=True)
class AttemptTotals:
    score: Decimal
    max_score: Decimal
    percentage: Decimal | None
    passed: bool | None

    @property
    def needs_manual_grading(self) -> bool:
        return self.percentage is None


def percentage_of(score: Decimal, max_score: Decimal) -> Decimal:
    if max_score <= ZERO:
        return ZERO
    return round_half_even(score / max_score * HUNDRED)


def compute_totals(
    scored: Iterable[tuple[Decimal, Decimal | None]],
    passing_score: Decimal,
) -> AttemptTotals:
    """
    Aggregate (question points, points earned) pairs into attempt totals.

    Percentage and pass/fail stay None while any answer is ungraded.
    """
    score = ZERO
    max_score = ZERO
    pending = False
    for points, earned in scored:
        max_score += Decimal(points)
        if earned is None:
            pending = True
        else:
            score += Decimal(earned)

    if pending:
        return AttemptTotals(score=score, max_score=max_score, percentage=None, passed=None)

    percentage = percentage_of(score, max_score)
    return AttemptTotals(
        score=score,
        max_score=max_score,
        percentage=percentage,
        passed=percentage >= Decimal(passing_score),
    )
