"""create quizzes, quiz links and attempts

Revision ID: 0002
Revises: 0001
Create Date: 2026-10-19

"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "0002"
down_revision = "0001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "quizzes",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("quiz_code", sa.String(length=100), nullable=False),
        sa.Column("title", sa.String(length=300), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("course_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("courses.id"), nullable=False),
        sa.Column(
            "evaluation_type",
            sa.Enum("practice", "mid-term", "final", "assignment", "draft", name="evaluationtype"),
            nullable=False,
        ),
        sa.Column(
            "status",
            sa.Enum("draft", "active", "scheduled", "completed", "archived", name="quizstatus"),
            nullable=False,
        ),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("duration", sa.Integer(), nullable=False),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("passing_score", sa.Float(), nullable=False, server_default="50"),
        sa.Column("show_results", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("allow_review", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("shuffle_questions", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("shuffle_options", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("instructions", sa.Text(), nullable=True),
        sa.Column("total_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_questions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("participation_rate", sa.Float(), nullable=False, server_default="0"),
        sa.Column("average_score", sa.Float(), nullable=False, server_default="0"),
        sa.Column("completion_rate", sa.Float(), nullable=False, server_default="0"),
        sa.Column("graded_responses", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_by", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_quizzes_quiz_code", "quizzes", ["quiz_code"], unique=True)
    op.create_index("ix_quizzes_course_id", "quizzes", ["course_id"], unique=False)
    op.create_index("ix_quizzes_status", "quizzes", ["status"], unique=False)

    op.create_table(
        "quiz_questions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("quiz_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("quizzes.id"), nullable=False),
        sa.Column("question_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("questions.id"), nullable=False),
        sa.Column("points", sa.Integer(), nullable=True),
        sa.Column("order", sa.Integer(), nullable=False, server_default="0"),
        sa.UniqueConstraint("quiz_id", "question_id", name="uq_quiz_question"),
    )
    op.create_index("ix_quiz_questions_quiz_id", "quiz_questions", ["quiz_id"], unique=False)
    op.create_index("ix_quiz_questions_question_id", "quiz_questions", ["question_id"], unique=False)

    op.create_table(
        "quiz_classes",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("quiz_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("quizzes.id"), nullable=False),
        sa.Column("class_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("classes.id"), nullable=False),
        sa.UniqueConstraint("quiz_id", "class_id", name="uq_quiz_class"),
    )
    op.create_index("ix_quiz_classes_quiz_id", "quiz_classes", ["quiz_id"], unique=False)
    op.create_index("ix_quiz_classes_class_id", "quiz_classes", ["class_id"], unique=False)

    op.create_table(
        "quiz_attempts",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("quiz_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("quizzes.id"), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("attempt_number", sa.Integer(), nullable=False),
        sa.Column(
            "status",
            sa.Enum("in-progress", "submitted", "graded", "expired", name="attemptstatus"),
            nullable=False,
        ),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("graded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("time_spent", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("responses", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("question_results", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("score", sa.Float(), nullable=False, server_default="0"),
        sa.Column("total_score", sa.Float(), nullable=False, server_default="0"),
        sa.Column("max_score", sa.Float(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint("quiz_id", "user_id", "attempt_number", name="uq_quiz_attempt_number"),
    )
    op.create_index("ix_quiz_attempts_quiz_id", "quiz_attempts", ["quiz_id"], unique=False)
    op.create_index("ix_quiz_attempts_user_id", "quiz_attempts", ["user_id"], unique=False)
    op.create_index("ix_quiz_attempts_status", "quiz_attempts", ["status"], unique=False)
    op.create_index("ix_quiz_attempts_submitted_at", "quiz_attempts", ["submitted_at"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_quiz_attempts_submitted_at", table_name="quiz_attempts")
    op.drop_index("ix_quiz_attempts_status", table_name="quiz_attempts")
    op.drop_index("ix_quiz_attempts_user_id", table_name="quiz_attempts")
    op.drop_index("ix_quiz_attempts_quiz_id", table_name="quiz_attempts")
    op.drop_table("quiz_attempts")

    op.drop_index("ix_quiz_classes_class_id", table_name="quiz_classes")
    op.drop_index("ix_quiz_classes_quiz_id", table_name="quiz_classes")
    op.drop_table("quiz_classes")

    op.drop_index("ix_quiz_questions_question_id", table_name="quiz_questions")
    op.drop_index("ix_quiz_questions_quiz_id", table_name="quiz_questions")
    op.drop_table("quiz_questions")

    op.drop_index("ix_quizzes_status", table_name="quizzes")
    op.drop_index("ix_quizzes_course_id", table_name="quizzes")
    op.drop_index("ix_quizzes_quiz_code", table_name="quizzes")
    op.drop_table("quizzes")

    for enum_name in ("attemptstatus", "quizstatus", "evaluationtype"):
        op.execute(f"DROP TYPE IF EXISTS {enum_name}")
