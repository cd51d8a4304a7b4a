"""Create vocabulary items, learning records and the review log."""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20251101_0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "vocabulary_items",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("chat_id", sa.BigInteger(), nullable=False),
        sa.Column("term", sa.Text(), nullable=False),
        sa.Column("translation", sa.Text(), nullable=False),
        sa.Column("example", sa.Text(), nullable=True),
        sa.Column("is_user_added", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("incorrect_count", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            server_onupdate=sa.func.now(),
            nullable=False,
        ),
        sa.UniqueConstraint("chat_id", "term", name="uq_vocabulary_items_chat_term"),
    )
    op.create_index("ix_vocabulary_items_chat_id", "vocabulary_items", ("chat_id",))

    op.create_table(
        "learning_records",
        sa.Column("item_id", sa.Integer(), primary_key=True, autoincrement=False, nullable=False),
        sa.Column("srs_level", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("ease_factor", sa.Float(), server_default=sa.text("2.5"), nullable=False),
        sa.Column("consecutive_correct", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("total_reviews", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("average_response_time", sa.Float(), server_default=sa.text("0"), nullable=False),
        sa.Column("last_reviewed_date", sa.Date(), nullable=True),
        sa.Column("next_review_date", sa.Date(), nullable=True),
        sa.Column("confidence_level", sa.Integer(), server_default=sa.text("1"), nullable=False),
        sa.Column("is_mastered", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.ForeignKeyConstraint(
            ("item_id",),
            ("vocabulary_items.id",),
            name="fk_learning_records_item_id",
            ondelete="CASCADE",
        ),
    )
    op.create_index(
        "ix_learning_records_next_review_date",
        "learning_records",
        ("next_review_date",),
    )

    op.create_table(
        "review_log",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("item_id", sa.Integer(), nullable=False),
        sa.Column("is_correct", sa.Boolean(), nullable=False),
        sa.Column("response_time", sa.Float(), nullable=False),
        sa.Column("confidence", sa.Integer(), nullable=False),
        sa.Column("reviewed_on", sa.Date(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(
            ("item_id",),
            ("vocabulary_items.id",),
            name="fk_review_log_item_id",
            ondelete="CASCADE",
        ),
    )
    op.create_index("ix_review_log_item_id", "review_log", ("item_id",))


def downgrade() -> None:
    op.drop_index("ix_review_log_item_id", table_name="review_log")
    op.drop_table("review_log")
    op.drop_index("ix_learning_records_next_review_date", table_name="learning_records")
    op.drop_table("learning_records")
    op.drop_index("ix_vocabulary_items_chat_id", table_name="vocabulary_items")
    op.drop_table("vocabulary_items")
