import uuid

from app.models.attempt import AttemptStatus, QuizAttempt
from app.models.question import QuestionType
from app.models.quiz import Quiz
from app.models.user import UserRole


def _take(client, factory, quiz, student, responses):
    attempt_id = client.post(f"/quizzes/{quiz.id}/attempt", headers=factory.headers(student)).json()["attempt_id"]
    r = client.post(
        f"/attempts/{attempt_id}/submit",
        json={"responses": responses},
        headers=factory.headers(student),
    )
    assert r.status_code == 200
    return attempt_id


def _results(client, factory, attempt_id, user):
    return client.get(f"/attempts/{attempt_id}/results", headers=factory.headers(user))


def test_results_with_review_and_scores(client, factory, course, student):
    q = factory.mc(course)
    quiz = factory.quiz(course, [q], show_results=True, allow_review=True)
    answer = factory.correct_option_id(q)
    attempt_id = _take(client, factory, quiz, student, {str(q.id): answer})

    r = _results(client, factory, attempt_id, student)
    assert r.status_code == 200
    body = r.json()
    assert body["attempt"]["score"] == 100.0
    assert body["attempt"]["is_passing"] is True
    assert body["attempt"]["status"] == "submitted"

    item = body["questions"][0]
    assert item["user_response"] == answer
    assert item["correct_option_ids"] == [answer]
    assert item["result"]["is_correct"] is True
    assert item["result"]["points_awarded"] == 10


def test_results_hide_key_and_score_when_disabled(client, factory, course, student):
    q = factory.mc(course)
    quiz = factory.quiz(course, [q], show_results=False, allow_review=False)
    attempt_id = _take(client, factory, quiz, student, {str(q.id): factory.correct_option_id(q)})

    body = _results(client, factory, attempt_id, student).json()
    assert body["attempt"]["score"] is None
    assert body["attempt"]["is_passing"] is None
    item = body["questions"][0]
    assert item["correct_option_ids"] is None
    assert item["result"] is None
    assert all(o.get("is_correct") is None for o in item["options"])
    # the student still sees what they answered
    assert item["user_response"] is not None


def test_teacher_always_sees_key_and_score(client, factory, course, student, teacher):
    q = factory.mc(course)
    quiz = factory.quiz(course, [q], show_results=False, allow_review=False)
    attempt_id = _take(client, factory, quiz, student, {str(q.id): factory.wrong_option_id(q)})

    body = _results(client, factory, attempt_id, teacher).json()
    assert body["attempt"]["score"] == 0.0
    assert body["questions"][0]["correct_option_ids"] == [factory.correct_option_id(q)]


def test_results_of_in_progress_attempt_are_rejected(client, factory, course, student):
    quiz = factory.quiz(course, [factory.mc(course)])
    attempt_id = client.post(f"/quizzes/{quiz.id}/attempt", headers=factory.headers(student)).json()["attempt_id"]

    r = _results(client, factory, attempt_id, student)
    assert r.status_code == 400
    assert r.json()["error_code"] == "invalid_state"


def test_results_of_another_student_are_not_found(client, factory, course, student):
    q = factory.mc(course)
    quiz = factory.quiz(course, [q])
    attempt_id = _take(client, factory, quiz, student, {})

    r = _results(client, factory, attempt_id, factory.user(UserRole.student))
    assert r.status_code == 404


def test_essay_stays_pending_until_graded(client, factory, course, student, teacher, db):
    mc = factory.mc(course)
    essay = factory.question(course, question_type=QuestionType.essay, points=20)
    quiz = factory.quiz(course, [mc, essay])

    attempt_id = client.post(f"/quizzes/{quiz.id}/attempt", headers=factory.headers(student)).json()["attempt_id"]
    r = client.post(
        f"/attempts/{attempt_id}/submit",
        json={"responses": {str(mc.id): factory.correct_option_id(mc), str(essay.id): "My essay."}},
        headers=factory.headers(student),
    )
    body = r.json()
    assert body["pending_review"] == 1
    assert body["total_score"] == 10
    assert body["max_score"] == 30

    r = client.post(
        f"/attempts/{attempt_id}/grade",
        json={"awards": {str(essay.id): 20}},
        headers=factory.headers(teacher),
    )
    assert r.status_code == 200
    graded = r.json()
    assert graded["status"] == "graded"
    assert graded["total_score"] == 30
    assert graded["score"] == 100.0
    assert graded["pending_review"] == 0
    assert graded["graded_at"] is not None

    attempt = db.get(QuizAttempt, uuid.UUID(attempt_id))
    assert attempt.status == AttemptStatus.graded
    assert attempt.question_results[str(essay.id)]["manually_graded"] is True
    assert db.get(Quiz, quiz.id).graded_responses == 1


def test_partial_grading_keeps_attempt_submitted(client, factory, course, student, teacher):
    e1 = factory.question(course, question_type=QuestionType.essay)
    e2 = factory.question(course, question_type=QuestionType.essay)
    quiz = factory.quiz(course, [e1, e2])
    attempt_id = _take(client, factory, quiz, student, {str(e1.id): "a", str(e2.id): "b"})

    r = client.post(
        f"/attempts/{attempt_id}/grade",
        json={"awards": {str(e1.id): 5}},
        headers=factory.headers(teacher),
    )
    body = r.json()
    assert body["status"] == "submitted"
    assert body["pending_review"] == 1
    assert body["total_score"] == 5


def test_regrade_overrides_auto_score(client, factory, course, student, teacher):
    q = factory.mc(course)
    quiz = factory.quiz(course, [q])
    attempt_id = _take(client, factory, quiz, student, {str(q.id): factory.wrong_option_id(q)})

    r = client.post(
        f"/attempts/{attempt_id}/grade",
        json={"awards": {str(q.id): 10}},
        headers=factory.headers(teacher),
    )
    assert r.status_code == 200
    assert r.json()["score"] == 100.0
    assert r.json()["status"] == "graded"


def test_grade_rejects_out_of_range_points(client, factory, course, student, teacher):
    essay = factory.question(course, question_type=QuestionType.essay, points=10)
    quiz = factory.quiz(course, [essay])
    attempt_id = _take(client, factory, quiz, student, {str(essay.id): "text"})

    r = client.post(
        f"/attempts/{attempt_id}/grade",
        json={"awards": {str(essay.id): 11}},
        headers=factory.headers(teacher),
    )
    assert r.status_code == 400
    assert r.json()["error_code"] == "validation"


def test_students_cannot_grade(client, factory, course, student):
    essay = factory.question(course, question_type=QuestionType.essay)
    quiz = factory.quiz(course, [essay])
    attempt_id = _take(client, factory, quiz, student, {str(essay.id): "text"})

    r = client.post(
        f"/attempts/{attempt_id}/grade",
        json={"awards": {str(essay.id): 10}},
        headers=factory.headers(student),
    )
    assert r.status_code == 403


def test_in_progress_attempt_cannot_be_graded(client, factory, course, student, teacher):
    quiz = factory.quiz(course, [factory.mc(course)])
    attempt_id = client.post(f"/quizzes/{quiz.id}/attempt", headers=factory.headers(student)).json()["attempt_id"]

    r = client.post(f"/attempts/{attempt_id}/grade", json={"awards": {}}, headers=factory.headers(teacher))
    assert r.status_code == 400


def test_pass_fail_uses_exact_percentage(client, factory, course, student, teacher):
    questions = [factory.mc(course, points=10) for _ in range(3)]
    quiz = factory.quiz(course, questions, passing_score=66.67)
    responses = {str(q.id): factory.correct_option_id(q) for q in questions[:2]}
    responses[str(questions[2].id)] = factory.wrong_option_id(questions[2])

    attempt_id = client.post(f"/quizzes/{quiz.id}/attempt", headers=factory.headers(student)).json()["attempt_id"]
    submitted = client.post(
        f"/attempts/{attempt_id}/submit",
        json={"responses": responses},
        headers=factory.headers(student),
    ).json()
    assert submitted["score"] == 66.67
    assert submitted["is_passing"] is False

    body = _results(client, factory, attempt_id, student).json()
    assert body["attempt"]["score"] == 66.67
    assert body["attempt"]["is_passing"] is False

    graded = client.post(f"/attempts/{attempt_id}/grade", json={"awards": {}}, headers=factory.headers(teacher))
    assert graded.json()["is_passing"] is False


def test_results_keep_answered_questions_after_quiz_edit(client, factory, course, student, teacher):
    q1, q2 = factory.mc(course, points=10), factory.mc(course, points=30)
    quiz = factory.quiz(course, [q1])
    answer = factory.correct_option_id(q1)
    attempt_id = _take(client, factory, quiz, student, {str(q1.id): answer})

    r = client.put(
        f"/quizzes/{quiz.id}",
        json={"questions": [{"question_id": str(q2.id)}]},
        headers=factory.headers(teacher),
    )
    assert r.status_code == 200

    body = _results(client, factory, attempt_id, student).json()
    assert [item["id"] for item in body["questions"]] == [str(q1.id)]
    item = body["questions"][0]
    assert item["points"] == 10
    assert item["user_response"] == answer
    assert item["result"]["is_correct"] is True
    assert body["attempt"]["score"] == 100.0
