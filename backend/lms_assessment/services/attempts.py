"""
LMS Assessment Engine - Attempt Service
Attempt lifecycle (start, resume, expiry, submit) and answer recording

Expiry is checked lazily whenever an attempt is touched; there is no
background scheduler. Races are settled by the database:
- a partial unique index allows one in_progress attempt per (test, student)
- answers are upserted on (attempt, question)
- status transitions are compare-and-swap UPDATEs
"""
import logging
import random
import uuid
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta

from sqlalchemy import func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from lms_assessment.core.config import settings
from lms_assessment.core.timeutil import ensure_timezone_aware, utc_now
from lms_assessment.models.attempt import (
    IN_PROGRESS_PREDICATE,
    AttemptStatus,
    StudentAnswer,
    TestAttempt,
)
from lms_assessment.models.test import Question, Test, TestStatus
from lms_assessment.schemas.attempt import (
    AttemptSession,
    OptionForTaking,
    QuestionForTaking,
    SavedAnswer,
    SubmitAnswerItem,
)
from lms_assessment.services.access import CourseAccess
from lms_assessment.services.exceptions import (
    BadRequestError,
    NotFoundError,
    UnauthorizedError,
)
from lms_assessment.services.grading import (
    AnswerInput,
    build_key,
    compute_totals,
    score_answer,
)
from lms_assessment.services.question_bank import CHOICE_TYPES, QuestionBankService

logger = logging.getLogger(__name__)

IN_PROGRESS_WHERE = TestAttempt.status == AttemptStatus.IN_PROGRESS


def _dialect_insert(db: AsyncSession):
    """INSERT construct supporting ON CONFLICT for the session's backend."""
    if db.get_bind().dialect.name == "postgresql":
        return postgresql.insert
    return sqlite.insert


async def expire_overdue_attempts(
    db: AsyncSession, test_id: uuid.UUID, now: datetime | None = None
) -> int:
    """Flip every overdue in_progress attempt of a test to timed_out."""
    result = await db.execute(
        update(TestAttempt)
        .where(
            TestAttempt.test_id == test_id,
            IN_PROGRESS_WHERE,
            TestAttempt.expires_at.is_not(None),
            TestAttempt.expires_at < (now or utc_now()),
        )
        .values(status=AttemptStatus.TIMED_OUT)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount:
        logger.warning("Timed out %d overdue attempts of test %s", result.rowcount, test_id)
    return result.rowcount


class AttemptService:
    """Service for taking tests."""

    def __init__(
        self,
        db: AsyncSession,
        clock: Callable[[], datetime] = utc_now,
        rng: random.Random | None = None,
    ):
        self.db = db
        self.clock = clock
        self.rng = rng or random.Random()
        self.access = CourseAccess(db)
        self.question_bank = QuestionBankService(db)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def _lock_attempt(self, attempt_id: uuid.UUID) -> TestAttempt:
        """Load an attempt, holding its row lock where the backend has one."""
        result = await self.db.execute(
            select(TestAttempt)
            .where(TestAttempt.id == attempt_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        attempt = result.scalar_one_or_none()
        if not attempt:
            raise NotFoundError("Attempt not found")
        return attempt

    async def _get_in_progress(
        self, test_id: uuid.UUID, student_id: uuid.UUID
    ) -> TestAttempt | None:
        result = await self.db.execute(
            select(TestAttempt)
            .where(
                TestAttempt.test_id == test_id,
                TestAttempt.student_id == student_id,
                IN_PROGRESS_WHERE,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _load_test(self, test_id: uuid.UUID) -> Test:
        """Load an attempt's test, including soft-deleted ones."""
        result = await self.db.execute(
            select(Test)
            .where(Test.id == test_id)
            .options(selectinload(Test.questions).selectinload(Question.answer_options))
        )
        return result.scalar_one()

    async def _load_answers(self, attempt_id: uuid.UUID) -> list[StudentAnswer]:
        result = await self.db.execute(
            select(StudentAnswer)
            .where(StudentAnswer.test_attempt_id == attempt_id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Expiry
    # ------------------------------------------------------------------

    def _is_expired(self, attempt: TestAttempt, grace_seconds: int = 0) -> bool:
        expires_at = ensure_timezone_aware(attempt.expires_at)
        if expires_at is None:
            return False
        return self.clock() > expires_at + timedelta(seconds=grace_seconds)

    async def _transition(
        self,
        attempt: TestAttempt,
        expected: AttemptStatus,
        target: AttemptStatus,
        **values,
    ) -> bool:
        """Compare-and-swap the attempt's status. Returns False if it had moved on."""
        result = await self.db.execute(
            update(TestAttempt)
            .where(TestAttempt.id == attempt.id, TestAttempt.status == expected)
            .values(status=target, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False
        await self.db.refresh(attempt)
        return True

    async def _time_out(self, attempt: TestAttempt) -> None:
        if await self._transition(attempt, AttemptStatus.IN_PROGRESS, AttemptStatus.TIMED_OUT):
            logger.warning(
                "Attempt %s of student %s timed out (expired at %s)",
                attempt.id,
                attempt.student_id,
                attempt.expires_at,
            )

    async def _reject_expired(self, attempt: TestAttempt) -> None:
        await self._time_out(attempt)
        # Keep the timeout through the rejection's rollback
        await self.db.commit()
        raise BadRequestError("Time limit exceeded for this attempt")

    # ------------------------------------------------------------------
    # Start / resume
    # ------------------------------------------------------------------

    async def start_attempt(self, student_id: uuid.UUID, test_id: uuid.UUID) -> AttemptSession:
        """
        Start a new attempt or resume the running one.

        Raises:
            NotFoundError: If the test does not exist
            BadRequestError: If the test is not published, outside its
                availability window, or the attempt limit is used up
            UnauthorizedError: If the student is not enrolled in the course
        """
        test = await self.question_bank.get_active_test(test_id)
        now = self.clock()

        if test.status != TestStatus.PUBLISHED:
            raise BadRequestError("This test is not available")

        available_from = ensure_timezone_aware(test.available_from)
        available_until = ensure_timezone_aware(test.available_until)
        if available_from and now < available_from:
            raise BadRequestError("This test is not yet available")
        if available_until and now > available_until:
            raise BadRequestError("This test is no longer available")

        if not await self.access.is_approved_student(test.course_id, student_id):
            raise UnauthorizedError("You must be enrolled in this course to take the test")

        existing = await self._get_in_progress(test.id, student_id)
        if existing:
            if not self._is_expired(existing):
                logger.info("Resuming attempt %s for student %s", existing.id, student_id)
                return await self._build_session(test, existing, resumed=True)
            await self._time_out(existing)
            # Keep the timeout even if the attempt limit rejects this start
            await self.db.commit()

        result = await self.db.execute(
            select(func.count(TestAttempt.id)).where(
                TestAttempt.test_id == test.id,
                TestAttempt.student_id == student_id,
                TestAttempt.status != AttemptStatus.IN_PROGRESS,
            )
        )
        prior_attempts = result.scalar() or 0
        if test.max_attempts > 0 and prior_attempts >= test.max_attempts:
            raise BadRequestError(
                f"Maximum number of attempts ({test.max_attempts}) reached for this test"
            )

        question_order, option_order = self._shuffle(test.active_questions, test)
        attempt_id = uuid.uuid4()
        insert = _dialect_insert(self.db)
        await self.db.execute(
            insert(TestAttempt)
            .values(
                id=attempt_id,
                test_id=test.id,
                student_id=student_id,
                attempt_number=prior_attempts + 1,
                status=AttemptStatus.IN_PROGRESS,
                started_at=now,
                expires_at=(
                    now + timedelta(minutes=test.time_limit_minutes)
                    if test.time_limit_minutes > 0
                    else None
                ),
                question_order=question_order,
                option_order=option_order,
            )
            .on_conflict_do_nothing(
                index_elements=[TestAttempt.test_id, TestAttempt.student_id],
                index_where=IN_PROGRESS_PREDICATE,
            )
        )

        attempt = await self._get_in_progress(test.id, student_id)
        if attempt is None:
            raise BadRequestError("Could not start the attempt, please retry")
        if attempt.id != attempt_id:
            logger.warning(
                "Concurrent start for test %s by student %s, returning attempt %s",
                test.id,
                student_id,
                attempt.id,
            )
            return await self._build_session(test, attempt, resumed=True)

        logger.info(
            "Student %s started attempt #%d (%s) of test %s",
            student_id,
            attempt.attempt_number,
            attempt.id,
            test.id,
        )
        return await self._build_session(test, attempt, resumed=False)

    def _shuffle(
        self, questions: list[Question], test: Test
    ) -> tuple[list[str], dict[str, list[str]]]:
        """Decide the presentation order once, for the lifetime of the attempt."""
        question_ids = [str(q.id) for q in questions]
        if test.shuffle_questions:
            self.rng.shuffle(question_ids)

        option_order = {}
        for question in questions:
            option_ids = [str(o.id) for o in question.answer_options]
            if test.shuffle_answers:
                self.rng.shuffle(option_ids)
            option_order[str(question.id)] = option_ids
        return question_ids, option_order

    async def _build_session(
        self, test: Test, attempt: TestAttempt, resumed: bool
    ) -> AttemptSession:
        questions = {str(q.id): q for q in test.active_questions}
        saved = {str(a.question_id): a for a in await self._load_answers(attempt.id)}

        view = []
        for question_id in attempt.question_order:
            question = questions.get(question_id)
            if question is None:
                continue
            options = {str(o.id): o for o in question.answer_options}
            ordered = attempt.option_order.get(question_id, list(options))
            answer = saved.get(question_id)
            view.append(
                QuestionForTaking(
                    id=question.id,
                    question_text=question.question_text,
                    type=question.type,
                    points=question.points,
                    answer_options=[
                        OptionForTaking(id=options[oid].id, option_text=options[oid].option_text)
                        for oid in ordered
                        if oid in options
                    ],
                    selected_option_ids=answer.selected_option_ids if answer else [],
                    text_answer=answer.text_answer if answer else None,
                )
            )

        return AttemptSession(
            attempt_id=attempt.id,
            test_id=test.id,
            title=test.title,
            instructions=test.instructions,
            attempt_number=attempt.attempt_number,
            started_at=ensure_timezone_aware(attempt.started_at),
            expires_at=ensure_timezone_aware(attempt.expires_at),
            time_limit_minutes=test.time_limit_minutes,
            resumed=resumed,
            questions=view,
        )

    # ------------------------------------------------------------------
    # Answers
    # ------------------------------------------------------------------

    async def _check_open(self, attempt: TestAttempt, student_id: uuid.UUID) -> None:
        if attempt.student_id != student_id:
            raise UnauthorizedError("This attempt belongs to another student")
        if attempt.status != AttemptStatus.IN_PROGRESS:
            raise BadRequestError("This attempt is no longer in progress")

    @staticmethod
    def _normalize_answer(
        question: Question,
        selected_option_ids: Iterable[uuid.UUID],
        text_answer: str | None,
    ) -> tuple[list[str], str | None]:
        """Validate an answer against its question and return what gets stored."""
        selected = list(dict.fromkeys(str(option_id) for option_id in selected_option_ids))

        if question.type in CHOICE_TYPES:
            valid = {str(o.id) for o in question.answer_options}
            if any(option_id not in valid for option_id in selected):
                raise BadRequestError("Selected option does not belong to this question")
            return selected, None

        if selected:
            raise BadRequestError("This question does not take answer options")
        return [], text_answer

    async def _upsert_answer(
        self,
        attempt_id: uuid.UUID,
        question_id: uuid.UUID,
        selected: list[str],
        text_answer: str | None,
    ) -> None:
        """One row per (attempt, question); the last write wins."""
        insert = _dialect_insert(self.db)
        stmt = insert(StudentAnswer).values(
            id=uuid.uuid4(),
            test_attempt_id=attempt_id,
            question_id=question_id,
            selected_option_ids=selected,
            text_answer=text_answer,
            updated_at=self.clock(),
        )
        await self.db.execute(
            stmt.on_conflict_do_update(
                index_elements=[StudentAnswer.test_attempt_id, StudentAnswer.question_id],
                set_={
                    "selected_option_ids": stmt.excluded.selected_option_ids,
                    "text_answer": stmt.excluded.text_answer,
                    "updated_at": stmt.excluded.updated_at,
                },
            )
        )

    def _question_of(self, test: Test, question_id: uuid.UUID) -> Question:
        question = next((q for q in test.active_questions if q.id == question_id), None)
        if question is None:
            raise BadRequestError("Question does not belong to this test")
        return question

    async def save_answer(
        self,
        student_id: uuid.UUID,
        attempt_id: uuid.UUID,
        question_id: uuid.UUID,
        selected_option_ids: Iterable[uuid.UUID] = (),
        text_answer: str | None = None,
    ) -> SavedAnswer:
        """
        Auto-save one answer of a running attempt.

        Raises:
            NotFoundError: If the attempt does not exist
            UnauthorizedError: If the attempt belongs to someone else
            BadRequestError: If the attempt is closed or expired, or the
                answer does not fit the question
        """
        attempt = await self._lock_attempt(attempt_id)
        await self._check_open(attempt, student_id)
        if self._is_expired(attempt):
            await self._reject_expired(attempt)

        test = await self._load_test(attempt.test_id)
        question = self._question_of(test, question_id)
        selected, text = self._normalize_answer(question, selected_option_ids, text_answer)

        await self._upsert_answer(attempt.id, question.id, selected, text)
        return SavedAnswer(attempt_id=attempt.id, question_id=question.id, saved_at=self.clock())

    # ------------------------------------------------------------------
    # Submit
    # ------------------------------------------------------------------

    async def submit_attempt(
        self,
        student_id: uuid.UUID,
        attempt_id: uuid.UUID,
        answers: list[SubmitAnswerItem],
    ) -> TestAttempt:
        """
        Submit an attempt: merge the final answers, auto-grade and total it.

        The attempt ends Graded when every answer could be scored
        automatically, otherwise Submitted until a teacher grades the rest.
        """
        attempt = await self._lock_attempt(attempt_id)
        await self._check_open(attempt, student_id)
        if self._is_expired(attempt, grace_seconds=settings.SUBMIT_GRACE_SECONDS):
            await self._reject_expired(attempt)

        test = await self._load_test(attempt.test_id)
        final_answers = {}
        for item in answers:
            question = self._question_of(test, item.question_id)
            final_answers[question.id] = self._normalize_answer(
                question, item.selected_option_ids, item.text_answer
            )

        now = self.clock()
        if not await self._transition(
            attempt, AttemptStatus.IN_PROGRESS, AttemptStatus.SUBMITTED, submitted_at=now
        ):
            raise BadRequestError("This attempt has already been submitted")

        for question_id, (selected, text) in final_answers.items():
            await self._upsert_answer(attempt.id, question_id, selected, text)

        questions = test.active_questions
        stored = {a.question_id: a for a in await self._load_answers(attempt.id)}
        for question in questions:
            if question.id not in stored:
                answer = StudentAnswer(
                    test_attempt_id=attempt.id,
                    question_id=question.id,
                    selected_option_ids=[],
                    updated_at=now,
                )
                self.db.add(answer)
                stored[question.id] = answer

        scored = []
        for question in questions:
            answer = stored[question.id]
            result = score_answer(
                build_key(question),
                AnswerInput(
                    selected_option_ids=frozenset(answer.selected_option_ids or ()),
                    text_answer=answer.text_answer,
                ),
            )
            answer.points_earned = result.points_earned
            answer.is_correct = result.is_correct
            scored.append((question.points, result.points_earned))

        totals = compute_totals(scored, test.passing_score)
        attempt.score = totals.score
        attempt.max_score = totals.max_score
        attempt.percentage = totals.percentage
        attempt.passed = totals.passed
        if not totals.needs_manual_grading:
            attempt.status = AttemptStatus.GRADED
            attempt.graded_at = now

        await self.db.flush()
        logger.info(
            "Attempt %s submitted: %s/%s, status=%s",
            attempt.id,
            attempt.score,
            attempt.max_score,
            attempt.status.value,
        )
        return attempt
