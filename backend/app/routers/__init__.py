from app.routers import attempts, auth, health, question_bank, quizzes

__all__ = [
    "attempts",
    "auth",
    "health",
    "question_bank",
    "quizzes",
]
