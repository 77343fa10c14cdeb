"""baseline schema for subjects, category/topic trees and topic progress

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 09:00:00
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if not inspector.has_table("subjects"):
        op.create_table(
            "subjects",
            sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
            sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("emoji", sa.String(length=16), nullable=True),
            sa.Column("color", sa.String(length=32), nullable=True),
            sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("tree_version", sa.Integer(), nullable=False, server_default="0"),
            *_timestamps(),
            sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_subjects_user_id", "subjects", ["user_id"], unique=False)

    if not inspector.has_table("categories"):
        op.create_table(
            "categories",
            sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
            sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
            sa.Column("subject_id", postgresql.UUID(as_uuid=True), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("depth", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("parent_id", postgresql.UUID(as_uuid=True), nullable=True),
            sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
            *_timestamps(),
            sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["subject_id"], ["subjects.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["parent_id"], ["categories.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_categories_subject_user", "categories", ["subject_id", "user_id"], unique=False)
        op.create_index("idx_categories_parent_id", "categories", ["parent_id"], unique=False)
        op.create_index("idx_categories_subject_deleted", "categories", ["subject_id", "deleted_at"], unique=False)

    if not inspector.has_table("topics"):
        op.create_table(
            "topics",
            sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
            sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
            sa.Column("category_id", postgresql.UUID(as_uuid=True), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("difficulty", sa.String(length=32), nullable=True),
            sa.Column("topic_type", sa.String(length=64), nullable=True),
            sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
            *_timestamps(),
            sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["category_id"], ["categories.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_topics_category_id", "topics", ["category_id"], unique=False)
        op.create_index("idx_topics_user_category", "topics", ["user_id", "category_id"], unique=False)

    if not inspector.has_table("user_topic_progress"):
        op.create_table(
            "user_topic_progress",
            sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
            sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
            sa.Column("topic_id", postgresql.UUID(as_uuid=True), nullable=False),
            sa.Column("understood", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("question_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("good_question_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("last_accessed_at", sa.DateTime(timezone=True), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["topic_id"], ["topics.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index(
            "idx_user_topic_progress_user_topic",
            "user_topic_progress",
            ["user_id", "topic_id"],
            unique=True,
        )


def downgrade() -> None:
    op.drop_index("idx_user_topic_progress_user_topic", table_name="user_topic_progress")
    op.drop_table("user_topic_progress")
    op.drop_index("idx_topics_user_category", table_name="topics")
    op.drop_index("idx_topics_category_id", table_name="topics")
    op.drop_table("topics")
    op.drop_index("idx_categories_subject_deleted", table_name="categories")
    op.drop_index("idx_categories_parent_id", table_name="categories")
    op.drop_index("idx_categories_subject_user", table_name="categories")
    op.drop_table("categories")
    op.drop_index("idx_subjects_user_id", table_name="subjects")
    op.drop_table("subjects")
