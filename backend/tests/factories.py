"""
LMS Assessment Engine - Test Factories
Builders for questions with known answer keys
"""
import uuid
from decimal import Decimal

from lms_assessment import models


def choice_question(
    options=("A", "B", "C", "D"),
    correct=("A",),
    points="2",
    qtype=models.QuestionType.MULTIPLE_CHOICE,
    order=1,
    text="Pick the right one",
    explanation=None,
) -> models.Question:
    return models.Question(
        question_text=text,
        explanation=explanation,
        type=qtype,
        points=Decimal(points),
        order_index=order,
        answer_options=[
            models.AnswerOption(option_text=label, is_correct=label in correct, order_index=i)
            for i, label in enumerate(options, start=1)
        ],
    )


def true_false_question(answer=True, points="1", order=1) -> models.Question:
    return choice_question(
        options=("True", "False"),
        correct=("True",) if answer else ("False",),
        points=points,
        qtype=models.QuestionType.TRUE_FALSE,
        order=order,
        text="Paris is the capital of France",
    )


def multi_select_question(points="4", order=1) -> models.Question:
    return choice_question(
        correct=("A", "B", "C"),
        points=points,
        qtype=models.QuestionType.MULTIPLE_SELECT,
        order=order,
        text="Select all European capitals",
    )


def short_answer_question(accept="Paris", case_sensitive=False, points="1", order=1):
    return models.Question(
        question_text="What is the capital of France?",
        explanation="Paris has been the capital since 508 AD.",
        type=models.QuestionType.SHORT_ANSWER,
        points=Decimal(points),
        order_index=order,
        correct_short_answer=accept,
        case_sensitive=case_sensitive,
    )


def essay_question(points="5", order=1) -> models.Question:
    return models.Question(
        question_text="Describe the geography of France.",
        type=models.QuestionType.ESSAY,
        points=Decimal(points),
        order_index=order,
    )


def option_id(question: models.Question, label: str) -> uuid.UUID:
    return next(o.id for o in question.answer_options if o.option_text == label)
