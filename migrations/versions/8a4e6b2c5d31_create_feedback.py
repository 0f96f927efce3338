"""create feedback

Revision ID: 8a4e6b2c5d31
Revises: 3f1c2a9d7b10
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "8a4e6b2c5d31"
down_revision = "3f1c2a9d7b10"
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "feedback",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("category", sa.String(length=80), nullable=True),
        sa.Column("priority", sa.String(length=40), nullable=True),
        sa.Column("status", sa.String(length=40), nullable=False, server_default="Pending"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_feedback_user_id", "feedback", ["user_id"], unique=False)
    op.create_index("ix_feedback_status", "feedback", ["status"], unique=False)
    op.create_index("ix_feedback_user_created_at", "feedback", ["user_id", "created_at"], unique=False)


def downgrade():
    op.drop_index("ix_feedback_user_created_at", table_name="feedback")
    op.drop_index("ix_feedback_status", table_name="feedback")
    op.drop_index("ix_feedback_user_id", table_name="feedback")
    op.drop_table("feedback")
