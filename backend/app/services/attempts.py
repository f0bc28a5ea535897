from __future__ import annotations

import logging
import random
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import (
    AlreadySubmittedError,
    ForbiddenError,
    InvalidStateError,
    LimitExceededError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from app.core.ids import as_utc, parse_uuid, utcnow
from app.db.session import unit_of_work
from app.models.attempt import FINISHED_STATUSES, AttemptStatus, QuizAttempt
from app.models.question import Question, QuestionType
from app.models.quiz import Quiz, QuizStatus
from app.models.user import User, UserRole
from app.services.quizzes import load_options, load_quiz_questions, question_points, question_view
from app.services.scoring import (
    AnswerKey,
    QuestionResult,
    ScoredItem,
    apply_manual_awards,
    parse_answer,
    percentage_of,
    score_items,
)
from app.services.statistics import StatisticsService

log = logging.getLogger(__name__)


def is_staff(user: User) -> bool:
    return user.role in (UserRole.teacher, UserRole.admin)


def attempt_deadline(quiz: Quiz, attempt: QuizAttempt) -> datetime:
    """Hard end of an attempt: quiz close or duration elapsed, whichever is first."""
    end = as_utc(quiz.end_date)
    if quiz.duration:
        end = min(end, as_utc(attempt.started_at) + timedelta(minutes=int(quiz.duration)))
    return end


def is_overdue(quiz: Quiz, attempt: QuizAttempt, now: datetime) -> bool:
    grace = timedelta(seconds=max(0, int(settings.attempt_grace_seconds)))
    return now > attempt_deadline(quiz, attempt) + grace


class AttemptService:
    """Start, submit, review and grade quiz attempts.

    ``rng`` drives question/option shuffling and ``clock`` supplies "now";
    both are injectable so lifecycle behaviour is reproducible in tests.
    """

    def __init__(
        self,
        db: Session,
        *,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.rng = rng or random.Random()
        self.clock = clock

    # -- lookups -------------------------------------------------------------

    def _get_attempt(self, attempt_id) -> QuizAttempt:
        attempt = self.db.get(QuizAttempt, parse_uuid(attempt_id, what="attempt id"))
        if attempt is None:
            raise NotFoundError("attempt not found")
        return attempt

    def _visible_attempt(self, attempt_id, viewer: User) -> QuizAttempt:
        attempt = self._get_attempt(attempt_id)
        # other students' attempts do not exist as far as a student can tell
        if not is_staff(viewer) and attempt.user_id != viewer.id:
            raise NotFoundError("attempt not found")
        return attempt

    def _quiz(self, quiz_id) -> Quiz:
        quiz = self.db.get(Quiz, quiz_id)
        if quiz is None:
            raise NotFoundError("quiz not found")
        return quiz

    def _count_attempts(self, quiz_id: uuid.UUID, user_id: uuid.UUID) -> int:
        return int(
            self.db.scalar(
                select(func.count(QuizAttempt.id)).where(
                    QuizAttempt.quiz_id == quiz_id,
                    QuizAttempt.user_id == user_id,
                )
            )
            or 0
        )

    # -- start ---------------------------------------------------------------

    def _check_startable(self, quiz: Quiz, now: datetime) -> None:
        if quiz.status != QuizStatus.active:
            raise InvalidStateError("quiz is not active")
        if now < as_utc(quiz.start_date) or now > as_utc(quiz.end_date):
            raise InvalidStateError("quiz is not available at this time")

    def start(self, quiz_id, user: User) -> dict[str, Any]:
        quiz_uuid = parse_uuid(quiz_id, what="quiz id")
        retries = max(1, int(settings.attempt_start_max_retries))

        attempt: QuizAttempt | None = None
        for n in range(1, retries + 1):
            with unit_of_work(self.db, "start attempt"):
                quiz = self._quiz(quiz_uuid)
                now = self.clock()
                self._check_startable(quiz, now)

                prior = self._count_attempts(quiz.id, user.id)
                if prior >= int(quiz.max_attempts):
                    raise LimitExceededError("maximum attempts reached")

                attempt = QuizAttempt(
                    quiz_id=quiz.id,
                    user_id=user.id,
                    attempt_number=prior + 1,
                    status=AttemptStatus.in_progress,
                    started_at=now,
                    responses={},
                    question_results={},
                )
                self.db.add(attempt)
                try:
                    self.db.commit()
                except IntegrityError:
                    # a concurrent start took this attempt number; recount and retry
                    self.db.rollback()
                    attempt = None
                    log.warning("attempt number collision quiz_id=%s user_id=%s try=%s", quiz_uuid, user.id, n)
            if attempt is not None:
                break

        if attempt is None:
            raise PersistenceError("could not start attempt, please retry")

        quiz = self._quiz(quiz_uuid)
        log.info(
            "attempt started attempt_id=%s quiz_id=%s user_id=%s number=%s",
            attempt.id,
            quiz.id,
            user.id,
            attempt.attempt_number,
        )
        return {
            "attempt_id": str(attempt.id),
            "attempt_number": int(attempt.attempt_number),
            "quiz": {
                "id": str(quiz.id),
                "title": quiz.title,
                "description": quiz.description,
                "duration": int(quiz.duration),
                "instructions": quiz.instructions,
                "show_results": bool(quiz.show_results),
                "allow_review": bool(quiz.allow_review),
            },
            "questions": self._attempt_questions(quiz),
            "started_at": as_utc(attempt.started_at),
            "expires_at": attempt_deadline(quiz, attempt),
        }

    def _attempt_questions(self, quiz: Quiz) -> list[dict[str, Any]]:
        links = load_quiz_questions(self.db, quiz.id)
        options = load_options(self.db, [q.id for _, q in links])

        if quiz.shuffle_questions:
            links = list(links)
            self.rng.shuffle(links)

        out = []
        for link, question in links:
            opts = list(options.get(question.id, []))
            if quiz.shuffle_options and question.question_type == QuestionType.multiple_choice:
                # view-only permutation; stored option order is untouched
                self.rng.shuffle(opts)
            out.append(question_view(question, opts, points=question_points(link, question), order=link.order))
        return out

    # -- submit --------------------------------------------------------------

    def _typed_answers(self, links, responses: dict[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
        """Split raw responses into (stored raw values, typed answers) for the quiz's questions."""
        by_id: dict[str, Any] = {}
        for key, raw in (responses or {}).items():
            try:
                by_id[str(parse_uuid(key, what="question id"))] = raw
            except ValidationError:
                log.warning("dropping response with malformed question id %r", key)

        known = {str(q.id): q for _, q in links}
        unknown = set(by_id) - set(known)
        if unknown:
            log.warning("dropping responses for questions not on this quiz: %s", sorted(unknown))

        stored: dict[str, Any] = {}
        typed: dict[str, Any] = {}
        for qid, question in known.items():
            if qid not in by_id:
                continue
            raw = by_id[qid]
            stored[qid] = raw
            try:
                typed[qid] = parse_answer(QuestionType(question.question_type), raw)
            except ValidationError as e:
                log.warning("malformed answer question_id=%s: %s", qid, e.message)
                typed[qid] = None
        return stored, typed

    def _expire(self, attempt: QuizAttempt, now: datetime) -> None:
        self.db.execute(
            update(QuizAttempt)
            .where(QuizAttempt.id == attempt.id, QuizAttempt.status == AttemptStatus.in_progress)
            .values(status=AttemptStatus.expired, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        log.info("attempt expired attempt_id=%s quiz_id=%s", attempt.id, attempt.quiz_id)

    def submit(self, attempt_id, responses: dict[str, Any], time_spent: int | None, user: User) -> dict[str, Any]:
        with unit_of_work(self.db, "submit attempt"):
            attempt = self._get_attempt(attempt_id)
            if attempt.user_id != user.id:
                raise NotFoundError("attempt not found")
            if attempt.status != AttemptStatus.in_progress:
                raise AlreadySubmittedError("attempt already submitted")

            quiz = self._quiz(attempt.quiz_id)
            now = self.clock()
            if is_overdue(quiz, attempt, now):
                self._expire(attempt, now)
                raise InvalidStateError("attempt expired")

            links = load_quiz_questions(self.db, quiz.id)
            options = load_options(self.db, [q.id for _, q in links])
            stored, typed = self._typed_answers(links, responses)

            result = score_items(
                ScoredItem(
                    question_id=str(q.id),
                    key=AnswerKey.from_question(q, options.get(q.id, [])),
                    points=question_points(link, q),
                    answer=typed.get(str(q.id)),
                )
                for link, q in links
            )
            score = round(result.percentage, 2)
            if time_spent is None:
                time_spent = int((now - as_utc(attempt.started_at)).total_seconds())

            # conditional on status: of two racing submits only one updates a row
            res = self.db.execute(
                update(QuizAttempt)
                .where(QuizAttempt.id == attempt.id, QuizAttempt.status == AttemptStatus.in_progress)
                .values(
                    responses=stored,
                    question_results={qid: r.to_dict() for qid, r in result.results.items()},
                    score=score,
                    total_score=result.total_score,
                    max_score=result.max_score,
                    status=AttemptStatus.submitted,
                    submitted_at=now,
                    time_spent=max(0, int(time_spent)),
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if res.rowcount != 1:
                raise AlreadySubmittedError("attempt already submitted")
            self.db.commit()

            quiz_id = quiz.id
            passing_score = float(quiz.passing_score)
            show_results = bool(quiz.show_results)
            allow_review = bool(quiz.allow_review)

        log.info(
            "attempt submitted attempt_id=%s quiz_id=%s score=%s pending_review=%s",
            attempt.id,
            quiz_id,
            score,
            result.pending_review,
        )
        StatisticsService(self.db).recompute_best_effort(quiz_id)

        return {
            "attempt_id": str(attempt.id),
            "score": score,
            "total_score": result.total_score,
            "max_score": result.max_score,
            "is_passing": result.is_passing(passing_score),
            "pending_review": result.pending_review,
            "show_results": show_results,
            "allow_review": allow_review,
        }

    # -- results -------------------------------------------------------------

    @staticmethod
    def _is_passing(attempt: QuizAttempt, quiz: Quiz) -> bool:
        # the stored score is rounded; pass/fail uses the exact percentage
        percentage = percentage_of(float(attempt.total_score or 0), float(attempt.max_score or 0))
        return percentage >= float(quiz.passing_score)

    def _answered_questions(self, attempt: QuizAttempt, quiz: Quiz) -> list[tuple[Question, int, int]]:
        """(question, points, order) for what the attempt was scored on.

        An attempt with recorded results keeps its own question set and points even
        after the quiz's questions are replaced; unlinked questions follow in recorded order.
        """
        links = load_quiz_questions(self.db, quiz.id)
        recorded = attempt.question_results or {}
        if not recorded:
            return [(q, question_points(link, q), int(link.order or 0)) for link, q in links]

        linked = {str(q.id): link for link, q in links}
        ids = [parse_uuid(qid, what="question id") for qid in recorded]
        by_id = {str(q.id): q for q in self.db.scalars(select(Question).where(Question.id.in_(ids)))}

        rows = []
        tail = len(linked)
        for idx, (qid, result) in enumerate(recorded.items()):
            question = by_id.get(qid)
            if question is None:
                log.warning("recorded question missing attempt_id=%s question_id=%s", attempt.id, qid)
                continue
            link = linked.get(qid)
            order = int(link.order or 0) if link is not None else tail + idx
            points = int(float((result or {}).get("points_possible") or 0))
            rows.append((question, points, order))
        rows.sort(key=lambda row: row[2])
        return rows

    def _attempt_view(self, attempt: QuizAttempt, quiz: Quiz, *, reveal_score: bool) -> dict[str, Any]:
        status = AttemptStatus(attempt.status)
        finished = status in FINISHED_STATUSES
        pending = sum(
            1 for r in (attempt.question_results or {}).values() if bool((r or {}).get("requires_manual_grading"))
        )
        show = reveal_score and finished
        return {
            "id": str(attempt.id),
            "quiz_id": str(attempt.quiz_id),
            "user_id": str(attempt.user_id),
            "attempt_number": int(attempt.attempt_number),
            "status": status.value,
            "started_at": as_utc(attempt.started_at),
            "submitted_at": as_utc(attempt.submitted_at),
            "graded_at": as_utc(attempt.graded_at),
            "time_spent": int(attempt.time_spent or 0),
            "score": float(attempt.score) if show else None,
            "total_score": float(attempt.total_score) if show else None,
            "max_score": float(attempt.max_score) if show else None,
            "is_passing": self._is_passing(attempt, quiz) if show else None,
            "pending_review": pending,
        }

    def get_results(self, attempt_id, viewer: User) -> dict[str, Any]:
        attempt = self._visible_attempt(attempt_id, viewer)
        if attempt.status == AttemptStatus.in_progress:
            raise InvalidStateError("attempt not yet submitted")

        quiz = self._quiz(attempt.quiz_id)
        staff = is_staff(viewer)
        reveal_key = staff or bool(quiz.allow_review)
        reveal_score = staff or bool(quiz.show_results)

        answered = self._answered_questions(attempt, quiz)
        options = load_options(self.db, [q.id for q, _, _ in answered])
        responses = attempt.responses or {}
        results = attempt.question_results or {}

        questions = []
        for q, points, order in answered:
            qid = str(q.id)
            item = question_view(q, options.get(q.id, []), points=points, order=order, include_key=reveal_key)
            item["user_response"] = responses.get(qid)
            item["result"] = results.get(qid) if reveal_score else None
            questions.append(item)

        return {
            "attempt": self._attempt_view(attempt, quiz, reveal_score=reveal_score),
            "questions": questions,
            "show_results": bool(quiz.show_results),
            "allow_review": bool(quiz.allow_review),
        }

    # -- manual grading ------------------------------------------------------

    def grade(self, attempt_id, awards: dict[str, float], grader: User) -> dict[str, Any]:
        if not is_staff(grader):
            raise ForbiddenError("only teachers can grade attempts")

        with unit_of_work(self.db, "grade attempt"):
            attempt = self._get_attempt(attempt_id)
            if attempt.status not in FINISHED_STATUSES:
                raise InvalidStateError("only submitted attempts can be graded")

            stored = {qid: QuestionResult.from_dict(r or {}) for qid, r in (attempt.question_results or {}).items()}
            normalized = {str(parse_uuid(k, what="question id")): v for k, v in (awards or {}).items()}
            result = apply_manual_awards(stored, normalized)

            now = self.clock()
            attempt.question_results = {qid: r.to_dict() for qid, r in result.results.items()}
            attempt.total_score = result.total_score
            attempt.max_score = result.max_score
            attempt.score = round(result.percentage, 2)
            # essays still awaiting a grader keep the attempt in "submitted"
            if result.pending_review == 0:
                attempt.status = AttemptStatus.graded
                attempt.graded_at = now
            attempt.updated_at = now
            self.db.commit()

            quiz = self._quiz(attempt.quiz_id)
            view = self._attempt_view(attempt, quiz, reveal_score=True)

        log.info(
            "attempt graded attempt_id=%s by=%s score=%s status=%s",
            attempt.id,
            grader.id,
            view["score"],
            view["status"],
        )
        StatisticsService(self.db).recompute_best_effort(quiz.id)
        return view

    # -- expiry --------------------------------------------------------------

    def expire_overdue(self, now: datetime | None = None) -> int:
        now = now or self.clock()
        rows = self.db.execute(
            select(QuizAttempt, Quiz)
            .join(Quiz, Quiz.id == QuizAttempt.quiz_id)
            .where(QuizAttempt.status == AttemptStatus.in_progress)
        ).all()
        overdue = [a.id for a, q in rows if is_overdue(q, a, now)]
        if not overdue:
            return 0

        with unit_of_work(self.db, "expire attempts"):
            res = self.db.execute(
                update(QuizAttempt)
                .where(QuizAttempt.id.in_(overdue), QuizAttempt.status == AttemptStatus.in_progress)
                .values(status=AttemptStatus.expired, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()

        count = int(res.rowcount or 0)
        log.info("expired %s overdue attempts", count)
        return count
