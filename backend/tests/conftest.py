import itertools
import random
import sys
import time
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

backend_dir = Path(__file__).resolve().parents[1]
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

import app.core.rate_limit as rate_limit_module
import app.routers.health as health_router_module
import app.services.attempt_expiry_jobs as expiry_jobs_module
from app.core.security import create_access_token, hash_password
from app.db.session import Database
from app.main import create_app
from app.models.course import ClassStudent, Course, EnrollmentStatus, SchoolClass
from app.models.question import Difficulty, Option, Question, QuestionType
from app.models.quiz import EvaluationType, Quiz, QuizClass, QuizQuestion, QuizStatus
from app.models.user import User, UserRole


class _MemoryRedis:
    def __init__(self):
        self._data: dict[str, tuple[str, float | None]] = {}

    def ping(self):
        return True

    def _now(self) -> float:
        return time.time()

    def _get_entry(self, key: str):
        v = self._data.get(key)
        if not v:
            return None
        value, exp = v
        if exp is not None and exp <= self._now():
            self._data.pop(key, None)
            return None
        return value, exp

    def get(self, key: str):
        entry = self._get_entry(key)
        return entry[0] if entry else None

    def set(self, key: str, value: str, ex: int | None = None, nx: bool = False):
        if nx and self._get_entry(key) is not None:
            return None
        exp = (self._now() + int(ex)) if ex else None
        self._data[key] = (value, exp)
        return True

    def delete(self, key: str):
        self._data.pop(key, None)
        return 1

    def incr(self, key: str):
        cur = self.get(key)
        n = int(cur or 0) + 1
        _, exp = self._data.get(key, ("", None))
        self._data[key] = (str(n), exp)
        return n

    def expire(self, key: str, seconds: int):
        entry = self._get_entry(key)
        if not entry:
            return False
        value, _ = entry
        self._data[key] = (value, self._now() + int(seconds))
        return True

    def ttl(self, key: str):
        entry = self._get_entry(key)
        if not entry:
            return -2
        _, exp = entry
        if exp is None:
            return -1
        return max(0, int(exp - self._now()))


class _Job:
    def __init__(self, func, kwargs):
        self.id = uuid.uuid4().hex
        self.func = func
        self.kwargs = kwargs


class _MemoryQueue:
    """Records enqueued jobs instead of talking to redis."""

    def __init__(self):
        self.jobs: list[_Job] = []

    def enqueue(self, func, *args, **kwargs):
        job = _Job(func, kwargs)
        self.jobs.append(job)
        return job


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Factory:
    """Inserts fixture rows through its own session and hands back detached objects."""

    def __init__(self, database: Database):
        self.database = database
        self._seq = itertools.count(1)

    def _save(self, *objs):
        with self.database.session() as s:
            for obj in objs:
                s.add(obj)
            s.commit()
            for obj in objs:
                s.refresh(obj)
                s.expunge(obj)
        return objs[0]

    def user(self, role: UserRole = UserRole.student, *, password: str | None = None, email: str | None = None) -> User:
        n = next(self._seq)
        return self._save(
            User(
                name=f"{role.value} {n}",
                email=email or f"{role.value}{n}_{uuid.uuid4().hex[:6]}@school.test",
                role=role,
                # token-only users never log in, so skip the bcrypt cost
                password_hash=hash_password(password) if password else "!",
                is_active=True,
            )
        )

    def headers(self, user: User) -> dict[str, str]:
        token = create_access_token(user_id=str(user.id), role=user.role.value)
        return {"Authorization": f"Bearer {token}"}

    def course(self, code: str | None = None) -> Course:
        n = next(self._seq)
        return self._save(Course(code=code or f"C{n:03d}", name=f"Course {n}"))

    def school_class(self, course: Course, students=(), *, dropped=()) -> SchoolClass:
        n = next(self._seq)
        klass = self._save(SchoolClass(class_code=f"CL{n:03d}", name=f"Class {n}", course_id=course.id))
        rows = [ClassStudent(class_id=klass.id, student_id=s.id) for s in students]
        rows += [
            ClassStudent(class_id=klass.id, student_id=s.id, enrollment_status=EnrollmentStatus.dropped)
            for s in dropped
        ]
        if rows:
            self._save(*rows)
        return klass

    def question(
        self,
        course: Course | None = None,
        *,
        question_type: QuestionType = QuestionType.multiple_choice,
        text: str | None = None,
        options=(),
        multiple_correct: bool = False,
        correct_boolean: bool | None = None,
        correct_answer: str | None = None,
        points: int = 10,
        difficulty: Difficulty = Difficulty.medium,
        topic: str | None = None,
    ) -> Question:
        n = next(self._seq)
        question = self._save(
            Question(
                course_id=course.id if course else None,
                text=text or f"Question {n}?",
                question_type=question_type,
                multiple_correct=multiple_correct,
                correct_boolean=correct_boolean,
                correct_answer=correct_answer,
                points=points,
                difficulty=difficulty,
                topic=topic,
            )
        )
        if options:
            self._save(
                *[
                    Option(question_id=question.id, text=opt_text, is_correct=is_correct, order=i)
                    for i, (opt_text, is_correct) in enumerate(options)
                ]
            )
        return question

    def mc(self, course: Course | None = None, *, points: int = 10, **kw) -> Question:
        """Single-answer multiple choice with options A (correct), B, C."""
        return self.question(course, options=[("A", True), ("B", False), ("C", False)], points=points, **kw)

    def options(self, question: Question) -> list[Option]:
        from sqlalchemy import select

        with self.database.session() as s:
            rows = list(s.scalars(select(Option).where(Option.question_id == question.id).order_by(Option.order)))
            for o in rows:
                s.expunge(o)
        return rows

    def correct_option_id(self, question: Question) -> str:
        return next(str(o.id) for o in self.options(question) if o.is_correct)

    def wrong_option_id(self, question: Question) -> str:
        return next(str(o.id) for o in self.options(question) if not o.is_correct)

    def quiz(
        self,
        course: Course,
        questions=(),
        *,
        status: QuizStatus = QuizStatus.active,
        start: datetime | None = None,
        end: datetime | None = None,
        duration: int = 60,
        max_attempts: int = 1,
        passing_score: float = 50.0,
        show_results: bool = True,
        allow_review: bool = True,
        shuffle_questions: bool = False,
        shuffle_options: bool = False,
        classes=(),
        points: dict | None = None,
    ) -> Quiz:
        n = next(self._seq)
        now = utcnow()
        points = points or {}
        total_points = sum(int(points.get(q.id, q.points)) for q in questions)
        quiz = self._save(
            Quiz(
                quiz_code=f"PRA-{course.code}-{now.year}-{n}",
                title=f"Quiz {n}",
                course_id=course.id,
                evaluation_type=EvaluationType.practice,
                status=status,
                start_date=start or now - timedelta(hours=1),
                end_date=end or now + timedelta(hours=2),
                duration=duration,
                max_attempts=max_attempts,
                passing_score=passing_score,
                show_results=show_results,
                allow_review=allow_review,
                shuffle_questions=shuffle_questions,
                shuffle_options=shuffle_options,
                total_points=total_points,
                total_questions=len(questions),
            )
        )
        links = [
            QuizQuestion(quiz_id=quiz.id, question_id=q.id, points=points.get(q.id), order=i)
            for i, q in enumerate(questions)
        ]
        links += [QuizClass(quiz_id=quiz.id, class_id=c.id) for c in classes]
        if links:
            self._save(*links)
        return quiz


@pytest.fixture()
def database():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    database = Database(engine)
    database.create_all()
    yield database
    database.dispose()


@pytest.fixture()
def mem_redis(monkeypatch):
    r = _MemoryRedis()
    monkeypatch.setattr(rate_limit_module, "get_redis", lambda: r)
    monkeypatch.setattr(health_router_module, "get_redis", lambda: r)
    monkeypatch.setattr(expiry_jobs_module, "get_redis", lambda: r)
    return r


@pytest.fixture()
def queue(monkeypatch):
    q = _MemoryQueue()
    monkeypatch.setattr(expiry_jobs_module, "get_queue", lambda name=None, **kw: q)
    return q


@pytest.fixture()
def app(database, mem_redis, queue):
    return create_app(database=database, rng=random.Random(1234))


@pytest.fixture()
def client(app):
    return TestClient(app)


@pytest.fixture()
def db(database):
    with database.session() as session:
        yield session


@pytest.fixture()
def factory(database):
    return Factory(database)


@pytest.fixture()
def course(factory):
    return factory.course()


@pytest.fixture()
def student(factory):
    return factory.user(UserRole.student)


@pytest.fixture()
def teacher(factory):
    return factory.user(UserRole.teacher)


@pytest.fixture()
def admin(factory):
    return factory.user(UserRole.admin)
