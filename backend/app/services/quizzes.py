from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from typing import Any

from sqlalchemy import delete, func, or_, select
from sqlalchemy.orm import Session

from app.core.errors import InvalidStateError, NotFoundError, ValidationError
from app.core.ids import as_utc, parse_uuid, utcnow
from app.db.session import unit_of_work
from app.models.attempt import AttemptStatus, QuizAttempt
from app.models.course import Course, SchoolClass
from app.models.question import Difficulty, Option, Question, QuestionType
from app.models.quiz import QUIZ_STATUS_RANK, EvaluationType, Quiz, QuizClass, QuizQuestion, QuizStatus
from app.models.user import User
from app.schemas.quiz import QuizCreateRequest, QuizQuestionIn, QuizUpdateRequest
from app.services.statistics import StatisticsService

log = logging.getLogger(__name__)

_SCALAR_FIELDS = (
    "title",
    "description",
    "evaluation_type",
    "start_date",
    "end_date",
    "duration",
    "max_attempts",
    "passing_score",
    "show_results",
    "allow_review",
    "shuffle_questions",
    "shuffle_options",
    "instructions",
)
_CLEARABLE_FIELDS = frozenset({"description", "instructions"})


def question_points(link: QuizQuestion, question: Question) -> int:
    return int(link.points if link.points is not None else (question.points or 0))


def option_view(option: Option, *, include_key: bool = False) -> dict[str, Any]:
    out: dict[str, Any] = {"id": str(option.id), "text": option.text, "order": int(option.order or 0)}
    if include_key:
        out["is_correct"] = bool(option.is_correct)
        out["explanation"] = option.explanation
    return out


def question_view(
    question: Question,
    options: Iterable[Option] = (),
    *,
    points: int,
    order: int = 0,
    include_key: bool = False,
) -> dict[str, Any]:
    """Client-facing question. The answer key is only present with include_key."""
    qtype = QuestionType(question.question_type)
    out: dict[str, Any] = {
        "id": str(question.id),
        "text": question.text,
        "question_type": qtype.value,
        "multiple_correct": bool(question.multiple_correct),
        "max_length": question.max_length,
        "points": int(points),
        "order": int(order),
        "options": [],
    }
    if qtype == QuestionType.multiple_choice:
        out["options"] = [option_view(o, include_key=include_key) for o in options]
    if include_key:
        out["correct_option_ids"] = [str(o.id) for o in options if o.is_correct]
        out["correct_boolean"] = question.correct_boolean
        out["correct_answer"] = question.correct_answer
        out["sample_answer"] = question.sample_answer
        out["explanation"] = question.explanation
    return out


def load_quiz_questions(db: Session, quiz_id: uuid.UUID) -> list[tuple[QuizQuestion, Question]]:
    rows = db.execute(
        select(QuizQuestion, Question)
        .join(Question, Question.id == QuizQuestion.question_id)
        .where(QuizQuestion.quiz_id == quiz_id)
        .order_by(QuizQuestion.order, QuizQuestion.id)
    ).all()
    return [(link, question) for link, question in rows]


def load_options(db: Session, question_ids: Iterable[uuid.UUID]) -> dict[uuid.UUID, list[Option]]:
    ids = list(question_ids)
    if not ids:
        return {}
    out: dict[uuid.UUID, list[Option]] = {}
    for o in db.scalars(select(Option).where(Option.question_id.in_(ids)).order_by(Option.order, Option.id)):
        out.setdefault(o.question_id, []).append(o)
    return out


def quiz_view(quiz: Quiz) -> dict[str, Any]:
    return {
        "id": str(quiz.id),
        "quiz_code": quiz.quiz_code,
        "title": quiz.title,
        "description": quiz.description,
        "course_id": str(quiz.course_id),
        "evaluation_type": EvaluationType(quiz.evaluation_type).value,
        "status": QuizStatus(quiz.status).value,
        "start_date": as_utc(quiz.start_date),
        "end_date": as_utc(quiz.end_date),
        "duration": int(quiz.duration),
        "max_attempts": int(quiz.max_attempts),
        "passing_score": float(quiz.passing_score),
        "show_results": bool(quiz.show_results),
        "allow_review": bool(quiz.allow_review),
        "shuffle_questions": bool(quiz.shuffle_questions),
        "shuffle_options": bool(quiz.shuffle_options),
        "instructions": quiz.instructions,
        "total_points": int(quiz.total_points or 0),
        "total_questions": int(quiz.total_questions or 0),
        "total_attempts": int(quiz.total_attempts or 0),
        "participation_rate": float(quiz.participation_rate or 0.0),
        "average_score": float(quiz.average_score or 0.0),
        "completion_rate": float(quiz.completion_rate or 0.0),
        "graded_responses": int(quiz.graded_responses or 0),
    }


class QuizService:
    def __init__(self, db: Session):
        self.db = db

    def get(self, quiz_id) -> Quiz:
        quiz = self.db.get(Quiz, parse_uuid(quiz_id, what="quiz id"))
        if quiz is None:
            raise NotFoundError("quiz not found")
        return quiz

    def _quiz_code(self, course: Course, evaluation_type: EvaluationType) -> str:
        prefix = evaluation_type.value.upper()[:3]
        year = utcnow().year
        n = (
            self.db.scalar(
                select(func.count(Quiz.id)).where(
                    Quiz.course_id == course.id,
                    Quiz.evaluation_type == evaluation_type,
                )
            )
            or 0
        ) + 1
        code = f"{prefix}-{course.code}-{year}-{n}"
        # a deleted quiz can leave a hole; skip forward past taken codes
        while self.db.scalar(select(Quiz.id).where(Quiz.quiz_code == code)) is not None:
            n += 1
            code = f"{prefix}-{course.code}-{year}-{n}"
        return code

    def _replace_questions(self, quiz: Quiz, items: list[QuizQuestionIn]) -> None:
        qids = [parse_uuid(i.question_id, what="question id") for i in items]
        if len(set(qids)) != len(qids):
            raise ValidationError("duplicate question in quiz")

        questions = {q.id: q for q in self.db.scalars(select(Question).where(Question.id.in_(qids)))} if qids else {}
        missing = [str(q) for q in qids if q not in questions]
        if missing:
            raise ValidationError(f"unknown question ids: {', '.join(missing)}")

        self.db.execute(delete(QuizQuestion).where(QuizQuestion.quiz_id == quiz.id))
        total_points = 0
        for order, (qid, item) in enumerate(zip(qids, items)):
            link = QuizQuestion(quiz_id=quiz.id, question_id=qid, points=item.points, order=order)
            self.db.add(link)
            total_points += question_points(link, questions[qid])

        quiz.total_questions = len(qids)
        quiz.total_points = total_points

    def _replace_classes(self, quiz: Quiz, class_ids: list[str]) -> None:
        cids = list(dict.fromkeys(parse_uuid(c, what="class id") for c in class_ids))
        if cids:
            found = set(self.db.scalars(select(SchoolClass.id).where(SchoolClass.id.in_(cids))))
            missing = [str(c) for c in cids if c not in found]
            if missing:
                raise ValidationError(f"unknown class ids: {', '.join(missing)}")

        self.db.execute(delete(QuizClass).where(QuizClass.quiz_id == quiz.id))
        for cid in cids:
            self.db.add(QuizClass(quiz_id=quiz.id, class_id=cid))

    @staticmethod
    def _check_window(start, end) -> None:
        if as_utc(end) <= as_utc(start):
            raise ValidationError("end_date must be after start_date")

    def create(self, payload: QuizCreateRequest, author: User) -> Quiz:
        with unit_of_work(self.db, "create quiz"):
            course = self.db.get(Course, parse_uuid(payload.course_id, what="course id"))
            if course is None:
                raise NotFoundError("course not found")
            self._check_window(payload.start_date, payload.end_date)

            quiz = Quiz(
                quiz_code=self._quiz_code(course, payload.evaluation_type),
                title=payload.title,
                description=payload.description,
                course_id=course.id,
                evaluation_type=payload.evaluation_type,
                status=QuizStatus.draft,
                start_date=as_utc(payload.start_date),
                end_date=as_utc(payload.end_date),
                duration=payload.duration,
                max_attempts=payload.max_attempts,
                passing_score=payload.passing_score,
                show_results=payload.show_results,
                allow_review=payload.allow_review,
                shuffle_questions=payload.shuffle_questions,
                shuffle_options=payload.shuffle_options,
                instructions=payload.instructions,
                total_points=0,
                total_questions=0,
                created_by=author.id,
            )
            self.db.add(quiz)
            self.db.flush()

            self._replace_classes(quiz, payload.class_ids)
            self._replace_questions(quiz, payload.questions)
            self.db.commit()

        log.info("quiz created quiz_id=%s code=%s by=%s", quiz.id, quiz.quiz_code, author.id)
        return quiz

    def list_quizzes(
        self,
        *,
        status: QuizStatus | None = None,
        course_id: str | None = None,
        evaluation_type: EvaluationType | None = None,
    ) -> list[Quiz]:
        stmt = select(Quiz)
        if status is not None:
            stmt = stmt.where(Quiz.status == status)
        if course_id:
            stmt = stmt.where(Quiz.course_id == parse_uuid(course_id, what="course id"))
        if evaluation_type is not None:
            stmt = stmt.where(Quiz.evaluation_type == evaluation_type)
        return list(self.db.scalars(stmt.order_by(Quiz.created_at.desc())))

    def detail(self, quiz_id) -> dict[str, Any]:
        quiz = self.get(quiz_id)
        links = load_quiz_questions(self.db, quiz.id)
        options = load_options(self.db, [q.id for _, q in links])
        class_ids = self.db.scalars(select(QuizClass.class_id).where(QuizClass.quiz_id == quiz.id))
        return {
            **quiz_view(quiz),
            "class_ids": [str(c) for c in class_ids],
            "questions": [
                question_view(
                    q, options.get(q.id, []), points=question_points(link, q), order=link.order, include_key=True
                )
                for link, q in links
            ],
        }

    def update(self, quiz_id, payload: QuizUpdateRequest) -> Quiz:
        with unit_of_work(self.db, "update quiz"):
            quiz = self.get(quiz_id)
            data = payload.model_dump(exclude_unset=True)

            for name in _SCALAR_FIELDS:
                if name in data and (data[name] is not None or name in _CLEARABLE_FIELDS):
                    value = data[name]
                    if name in {"start_date", "end_date"}:
                        value = as_utc(value)
                    setattr(quiz, name, value)
            self._check_window(quiz.start_date, quiz.end_date)

            if payload.class_ids is not None:
                self._replace_classes(quiz, payload.class_ids)
            if payload.questions is not None:
                self._replace_questions(quiz, payload.questions)
                if quiz.status in (QuizStatus.active, QuizStatus.scheduled) and not quiz.total_questions:
                    raise InvalidStateError("an open quiz must keep at least one question")
            self.db.commit()

        log.info("quiz updated quiz_id=%s fields=%s", quiz.id, sorted(data))
        return quiz

    def delete(self, quiz_id) -> None:
        with unit_of_work(self.db, "delete quiz"):
            quiz = self.get(quiz_id)
            self.db.execute(delete(QuizQuestion).where(QuizQuestion.quiz_id == quiz.id))
            self.db.execute(delete(QuizClass).where(QuizClass.quiz_id == quiz.id))
            self.db.execute(delete(QuizAttempt).where(QuizAttempt.quiz_id == quiz.id))
            self.db.delete(quiz)
            self.db.commit()
        log.info("quiz deleted quiz_id=%s", quiz_id)

    def transition(self, quiz_id, target: QuizStatus) -> Quiz:
        with unit_of_work(self.db, "change quiz status"):
            quiz = self.get(quiz_id)
            current = QuizStatus(quiz.status)
            if QUIZ_STATUS_RANK[target] < QUIZ_STATUS_RANK[current]:
                raise InvalidStateError(f"quiz cannot move from {current.value} back to {target.value}")
            if target in (QuizStatus.active, QuizStatus.scheduled) and not quiz.total_questions:
                raise InvalidStateError("cannot publish quiz with no questions")
            quiz.status = target
            self.db.commit()

        log.info("quiz status changed quiz_id=%s %s -> %s", quiz.id, current.value, target.value)
        return quiz

    def publish(self, quiz_id) -> Quiz:
        return self.transition(quiz_id, QuizStatus.active)

    def question_bank(
        self,
        *,
        course_id: str | None = None,
        difficulty: Difficulty | None = None,
        question_type: QuestionType | None = None,
        search: str | None = None,
    ) -> list[dict[str, Any]]:
        stmt = select(Question).where(Question.is_active == True)  # noqa: E712
        if course_id:
            stmt = stmt.where(Question.course_id == parse_uuid(course_id, what="course id"))
        if difficulty is not None:
            stmt = stmt.where(Question.difficulty == difficulty)
        if question_type is not None:
            stmt = stmt.where(Question.question_type == question_type)
        term = (search or "").strip()
        if term:
            like = f"%{term}%"
            stmt = stmt.where(or_(Question.text.ilike(like), Question.topic.ilike(like)))

        questions = list(self.db.scalars(stmt.order_by(Question.created_at.desc())))
        options = load_options(self.db, [q.id for q in questions])
        out = []
        for q in questions:
            item = question_view(q, options.get(q.id, []), points=int(q.points or 0), include_key=True)
            item.pop("order", None)
            item["course_id"] = str(q.course_id) if q.course_id else None
            item["difficulty"] = Difficulty(q.difficulty).value
            item["topic"] = q.topic
            out.append(item)
        return out

    def responses(
        self,
        quiz_id,
        *,
        student_id: str | None = None,
        status: AttemptStatus | None = None,
    ) -> dict[str, Any]:
        quiz = self.get(quiz_id)
        stmt = (
            select(QuizAttempt, User)
            .join(User, User.id == QuizAttempt.user_id)
            .where(QuizAttempt.quiz_id == quiz.id)
        )
        if student_id:
            stmt = stmt.where(QuizAttempt.user_id == parse_uuid(student_id, what="student id"))
        if status is not None:
            stmt = stmt.where(QuizAttempt.status == status)
        stmt = stmt.order_by(QuizAttempt.submitted_at.is_(None), QuizAttempt.submitted_at.desc())

        rows = self.db.execute(stmt).all()
        return {
            "responses": [
                {
                    "id": str(a.id),
                    "user_id": str(u.id),
                    "user_name": u.name,
                    "user_email": u.email,
                    "attempt_number": int(a.attempt_number),
                    "status": AttemptStatus(a.status).value,
                    "score": float(a.score or 0.0),
                    "started_at": as_utc(a.started_at),
                    "submitted_at": as_utc(a.submitted_at),
                    "graded_at": as_utc(a.graded_at),
                    "time_spent": int(a.time_spent or 0),
                }
                for a, u in rows
            ],
            "statistics": StatisticsService(self.db).response_statistics(quiz.id),
        }
