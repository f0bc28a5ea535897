"""create users, courses, classes and question bank

Revision ID: 0001
Revises:
Create Date: 2026-10-19

"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("role", sa.Enum("student", "teacher", "admin", name="userrole"), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_role", "users", ["role"], unique=False)

    op.create_table(
        "courses",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("code", sa.String(length=50), nullable=False),
        sa.Column("name", sa.String(length=300), nullable=False),
        sa.Column("description", sa.String(length=5000), nullable=True),
        sa.Column("status", sa.Enum("active", "inactive", name="coursestatus"), nullable=False),
    )
    op.create_index("ix_courses_code", "courses", ["code"], unique=True)

    op.create_table(
        "classes",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("class_code", sa.String(length=50), nullable=False),
        sa.Column("name", sa.String(length=300), nullable=False),
        sa.Column("course_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("courses.id"), nullable=False),
        sa.Column("teacher_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=True),
        sa.Column(
            "status",
            sa.Enum("active", "inactive", "completed", "cancelled", name="classstatus"),
            nullable=False,
        ),
    )
    op.create_index("ix_classes_class_code", "classes", ["class_code"], unique=True)
    op.create_index("ix_classes_course_id", "classes", ["course_id"], unique=False)
    op.create_index("ix_classes_teacher_id", "classes", ["teacher_id"], unique=False)
    op.create_index("ix_classes_status", "classes", ["status"], unique=False)

    op.create_table(
        "class_students",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("class_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("classes.id"), nullable=False),
        sa.Column("student_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column(
            "enrollment_status",
            sa.Enum("enrolled", "dropped", "completed", "failed", name="enrollmentstatus"),
            nullable=False,
        ),
        sa.Column("enrolled_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint("class_id", "student_id", name="uq_class_student"),
    )
    op.create_index("ix_class_students_class_id", "class_students", ["class_id"], unique=False)
    op.create_index("ix_class_students_student_id", "class_students", ["student_id"], unique=False)

    op.create_table(
        "questions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("course_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("courses.id"), nullable=True),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column(
            "question_type",
            sa.Enum("multiple-choice", "true-false", "short-answer", "essay", name="questiontype"),
            nullable=False,
        ),
        sa.Column("multiple_correct", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("correct_boolean", sa.Boolean(), nullable=True),
        sa.Column("correct_answer", sa.Text(), nullable=True),
        sa.Column("sample_answer", sa.Text(), nullable=True),
        sa.Column("max_length", sa.Integer(), nullable=True),
        sa.Column("difficulty", sa.Enum("easy", "medium", "hard", name="difficulty"), nullable=False),
        sa.Column("points", sa.Integer(), nullable=False, server_default="10"),
        sa.Column("topic", sa.String(length=200), nullable=True),
        sa.Column("explanation", sa.Text(), nullable=True),
        sa.Column("created_by", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_questions_course_id", "questions", ["course_id"], unique=False)
    op.create_index("ix_questions_question_type", "questions", ["question_type"], unique=False)
    op.create_index("ix_questions_difficulty", "questions", ["difficulty"], unique=False)
    op.create_index("ix_questions_is_active", "questions", ["is_active"], unique=False)

    op.create_table(
        "options",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column(
            "question_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("questions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("is_correct", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("explanation", sa.Text(), nullable=True),
        sa.Column("order", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index("ix_options_question_id", "options", ["question_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_options_question_id", table_name="options")
    op.drop_table("options")

    op.drop_index("ix_questions_is_active", table_name="questions")
    op.drop_index("ix_questions_difficulty", table_name="questions")
    op.drop_index("ix_questions_question_type", table_name="questions")
    op.drop_index("ix_questions_course_id", table_name="questions")
    op.drop_table("questions")

    op.drop_index("ix_class_students_student_id", table_name="class_students")
    op.drop_index("ix_class_students_class_id", table_name="class_students")
    op.drop_table("class_students")

    op.drop_index("ix_classes_status", table_name="classes")
    op.drop_index("ix_classes_teacher_id", table_name="classes")
    op.drop_index("ix_classes_course_id", table_name="classes")
    op.drop_index("ix_classes_class_code", table_name="classes")
    op.drop_table("classes")

    op.drop_index("ix_courses_code", table_name="courses")
    op.drop_table("courses")

    op.drop_index("ix_users_role", table_name="users")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")

    for enum_name in ("difficulty", "questiontype", "enrollmentstatus", "classstatus", "coursestatus", "userrole"):
        op.execute(f"DROP TYPE IF EXISTS {enum_name}")
