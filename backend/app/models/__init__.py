from app.models.user import User, UserRole
from app.models.course import ClassStudent, Course, SchoolClass
from app.models.question import Option, Question, QuestionType
from app.models.quiz import Quiz, QuizClass, QuizQuestion, QuizStatus
from app.models.attempt import AttemptStatus, QuizAttempt

__all__ = [
    "User",
    "UserRole",
    "Course",
    "SchoolClass",
    "ClassStudent",
    "Question",
    "QuestionType",
    "Option",
    "Quiz",
    "QuizStatus",
    "QuizQuestion",
    "QuizClass",
    "QuizAttempt",
    "AttemptStatus",
]
