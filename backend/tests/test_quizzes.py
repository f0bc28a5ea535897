import uuid
from datetime import timedelta

from sqlalchemy import func, select

from app.core.ids import utcnow
from app.models.attempt import QuizAttempt
from app.models.question import Difficulty, QuestionType
from app.models.quiz import QuizQuestion, QuizStatus


def _payload(course, questions=(), **overrides):
    now = utcnow()
    body = {
        "title": "Week 1 check",
        "course_id": str(course.id),
        "start_date": (now - timedelta(hours=1)).isoformat(),
        "end_date": (now + timedelta(days=1)).isoformat(),
        "duration": 45,
        "questions": [{"question_id": str(q.id)} for q in questions],
    }
    body.update(overrides)
    return body


def _create(client, factory, teacher, course, questions=(), **overrides):
    return client.post("/quizzes", json=_payload(course, questions, **overrides), headers=factory.headers(teacher))


def test_create_generates_code_and_totals(client, factory, teacher):
    course = factory.course(code="CS101")
    q1, q2 = factory.mc(course, points=10), factory.mc(course, points=5)

    r = _create(client, factory, teacher, course, [q1, q2], evaluation_type="mid-term")
    assert r.status_code == 201
    body = r.json()
    year = utcnow().year
    assert body["quiz_code"] == f"MID-CS101-{year}-1"
    assert body["status"] == "draft"
    assert body["total_questions"] == 2
    assert body["total_points"] == 15

    r = _create(client, factory, teacher, course, [q1], evaluation_type="mid-term")
    assert r.json()["quiz_code"] == f"MID-CS101-{year}-2"


def test_create_applies_per_quiz_points(client, factory, teacher, course):
    q = factory.mc(course, points=10)
    body = {**_payload(course), "questions": [{"question_id": str(q.id), "points": 25}]}
    r = client.post("/quizzes", json=body, headers=factory.headers(teacher))
    assert r.json()["total_points"] == 25


def test_create_validates_input(client, factory, teacher, course):
    now = utcnow()
    r = _create(
        client,
        factory,
        teacher,
        course,
        start_date=now.isoformat(),
        end_date=(now - timedelta(hours=1)).isoformat(),
    )
    assert r.status_code == 400
    assert r.json()["error_code"] == "validation"

    r = client.post(
        "/quizzes",
        json={**_payload(course), "questions": [{"question_id": str(uuid.uuid4())}]},
        headers=factory.headers(teacher),
    )
    assert r.status_code == 400

    q = factory.mc(course)
    r = _create(client, factory, teacher, course, [q, q])
    assert r.status_code == 400

    r = _create(client, factory, teacher, course, duration=0)
    assert r.status_code == 400


def test_create_with_unknown_course(client, factory, teacher, course):
    r = client.post(
        "/quizzes",
        json={**_payload(course), "course_id": str(uuid.uuid4())},
        headers=factory.headers(teacher),
    )
    assert r.status_code == 404


def test_detail_includes_key_and_classes(client, factory, teacher, course):
    q = factory.mc(course)
    klass = factory.school_class(course)
    quiz_id = _create(client, factory, teacher, course, [q], class_ids=[str(klass.id)]).json()["id"]

    r = client.get(f"/quizzes/{quiz_id}", headers=factory.headers(teacher))
    assert r.status_code == 200
    body = r.json()
    assert body["class_ids"] == [str(klass.id)]
    assert body["questions"][0]["correct_option_ids"] == [factory.correct_option_id(q)]


def test_publish_requires_questions(client, factory, teacher, course):
    quiz_id = _create(client, factory, teacher, course).json()["id"]
    r = client.post(f"/quizzes/{quiz_id}/publish", headers=factory.headers(teacher))
    assert r.status_code == 400
    assert r.json()["error_code"] == "invalid_state"

    quiz_id = _create(client, factory, teacher, course, [factory.mc(course)]).json()["id"]
    r = client.post(f"/quizzes/{quiz_id}/publish", headers=factory.headers(teacher))
    assert r.status_code == 200
    assert r.json()["status"] == "active"


def test_status_moves_forward_only(client, factory, teacher, course):
    quiz = factory.quiz(course, [factory.mc(course)], status=QuizStatus.active)
    headers = factory.headers(teacher)

    r = client.post(f"/quizzes/{quiz.id}/status", json={"status": "draft"}, headers=headers)
    assert r.status_code == 400

    r = client.post(f"/quizzes/{quiz.id}/status", json={"status": "completed"}, headers=headers)
    assert r.status_code == 200
    assert r.json()["status"] == "completed"

    r = client.post(f"/quizzes/{quiz.id}/status", json={"status": "active"}, headers=headers)
    assert r.status_code == 400

    r = client.post(f"/quizzes/{quiz.id}/status", json={"status": "archived"}, headers=headers)
    assert r.json()["status"] == "archived"


def test_update_replaces_questions_and_recomputes_totals(client, factory, teacher, course, db):
    q1, q2, q3 = factory.mc(course, points=10), factory.mc(course, points=20), factory.mc(course, points=30)
    quiz_id = _create(client, factory, teacher, course, [q1, q2]).json()["id"]

    r = client.put(
        f"/quizzes/{quiz_id}",
        json={"title": "Renamed", "questions": [{"question_id": str(q3.id)}]},
        headers=factory.headers(teacher),
    )
    assert r.status_code == 200
    body = r.json()
    assert body["title"] == "Renamed"
    assert body["total_questions"] == 1
    assert body["total_points"] == 30

    links = db.scalars(select(QuizQuestion.question_id).where(QuizQuestion.quiz_id == uuid.UUID(quiz_id))).all()
    assert links == [q3.id]


def test_open_quiz_cannot_drop_all_questions(client, factory, teacher, course):
    quiz = factory.quiz(course, [factory.mc(course)], status=QuizStatus.active)
    r = client.put(f"/quizzes/{quiz.id}", json={"questions": []}, headers=factory.headers(teacher))
    assert r.status_code == 400


def test_delete_removes_quiz_and_attempts(client, factory, teacher, course, student, db):
    q = factory.mc(course)
    quiz = factory.quiz(course, [q])
    client.post(f"/quizzes/{quiz.id}/attempt", headers=factory.headers(student))

    r = client.delete(f"/quizzes/{quiz.id}", headers=factory.headers(teacher))
    assert r.status_code == 200

    assert client.get(f"/quizzes/{quiz.id}", headers=factory.headers(teacher)).status_code == 404
    assert db.scalar(select(func.count(QuizAttempt.id)).where(QuizAttempt.quiz_id == quiz.id)) == 0
    assert db.scalar(select(func.count(QuizQuestion.id)).where(QuizQuestion.quiz_id == quiz.id)) == 0


def test_list_filters(client, factory, teacher, course):
    other = factory.course()
    factory.quiz(course, [factory.mc(course)], status=QuizStatus.active)
    factory.quiz(course, [factory.mc(course)], status=QuizStatus.draft)
    factory.quiz(other, [factory.mc(other)], status=QuizStatus.active)
    headers = factory.headers(teacher)

    assert len(client.get("/quizzes", headers=headers).json()["quizzes"]) == 3
    assert len(client.get("/quizzes", params={"status": "active"}, headers=headers).json()["quizzes"]) == 2
    assert len(client.get("/quizzes", params={"course_id": str(other.id)}, headers=headers).json()["quizzes"]) == 1


def test_question_bank_filters(client, factory, teacher, course):
    factory.mc(course, text="What is a closure?", topic="functions", difficulty=Difficulty.hard)
    factory.question(course, question_type=QuestionType.true_false, correct_boolean=True, text="Lists are mutable")
    factory.question(course, question_type=QuestionType.essay, text="Describe the GIL")
    headers = factory.headers(teacher)

    all_items = client.get("/question-bank", params={"course_id": str(course.id)}, headers=headers).json()
    assert len(all_items) == 3

    r = client.get("/question-bank", params={"search": "FUNCTIONS"}, headers=headers)
    assert [q["text"] for q in r.json()] == ["What is a closure?"]
    assert r.json()[0]["correct_option_ids"]

    r = client.get("/question-bank", params={"question_type": "true-false"}, headers=headers)
    assert [q["correct_boolean"] for q in r.json()] == [True]

    r = client.get("/question-bank", params={"difficulty": "hard"}, headers=headers)
    assert len(r.json()) == 1


def test_responses_report(client, factory, teacher, course):
    q = factory.mc(course)
    quiz = factory.quiz(course, [q])
    s1, s2 = factory.user(), factory.user()

    attempt_id = client.post(f"/quizzes/{quiz.id}/attempt", headers=factory.headers(s1)).json()["attempt_id"]
    client.post(
        f"/attempts/{attempt_id}/submit",
        json={"responses": {str(q.id): factory.correct_option_id(q)}},
        headers=factory.headers(s1),
    )
    client.post(f"/quizzes/{quiz.id}/attempt", headers=factory.headers(s2))

    headers = factory.headers(teacher)
    body = client.get(f"/quizzes/{quiz.id}/responses", headers=headers).json()
    assert len(body["responses"]) == 2
    # submitted attempts first
    assert body["responses"][0]["user_id"] == str(s1.id)
    assert body["responses"][0]["user_email"] == s1.email
    assert body["statistics"] == {
        "total_responses": 2,
        "average_score": 100.0,
        "graded_responses": 0,
        "completion_rate": 50.0,
    }

    body = client.get(f"/quizzes/{quiz.id}/responses", params={"status": "in-progress"}, headers=headers).json()
    assert [r["user_id"] for r in body["responses"]] == [str(s2.id)]

    body = client.get(f"/quizzes/{quiz.id}/responses", params={"student_id": str(s1.id)}, headers=headers).json()
    assert [r["user_id"] for r in body["responses"]] == [str(s1.id)]


def test_update_can_clear_description_and_instructions(client, factory, teacher, course):
    quiz_id = _create(
        client, factory, teacher, course, description="Covers chapter 1", instructions="No notes"
    ).json()["id"]
    headers = factory.headers(teacher)

    r = client.put(f"/quizzes/{quiz_id}", json={"description": None, "instructions": None}, headers=headers)
    assert r.status_code == 200
    assert r.json()["description"] is None
    assert r.json()["instructions"] is None

    r = client.put(f"/quizzes/{quiz_id}", json={"title": None}, headers=headers)
    assert r.status_code == 200
    assert r.json()["title"] == "Week 1 check"
